"""Command-line entry point: ``ytdlp-ui [--host HOST] [--port PORT] [--open|--no-open]``."""
from __future__ import annotations

import argparse
import errno
import logging
import socket
import threading
import webbrowser
from typing import List, Optional, Sequence

import uvicorn

from ytui_config import HOST, LOG_LEVEL, PORT, PORT_ATTEMPTS

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ytdlp-ui",
        description="Local web UI for yt-dlp.",
        epilog="Env: YTDLP_UI_PORT, YTDLP_UI_HOST, YTDLP_BIN, YTDLP_UI_DOWNLOADS_DIR",
    )
    parser.add_argument("--host", default=None, help=f"interface to listen on (default {HOST})")
    parser.add_argument("--port", type=int, default=None, help=f"port to listen on (default {PORT})")
    parser.add_argument("--open", dest="open", action="store_true", default=None, help="open a browser (default)")
    parser.add_argument("--no-open", dest="open", action="store_false", help="do not open a browser")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def find_open_port(host: str, port: int, attempts: int = PORT_ATTEMPTS) -> int:
    """Return ``port`` or the first free port after it, trying ``attempts`` more."""
    candidates: List[int] = [port + offset for offset in range(attempts + 1)]
    for candidate in candidates:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            try:
                probe.bind((host, candidate))
            except OSError as exc:
                if exc.errno != errno.EADDRINUSE:
                    raise
                logger.info("Port %d is in use, trying %d ...", candidate, candidate + 1)
                continue
        return candidate
    raise OSError(errno.EADDRINUSE, f"no free port in {port}-{candidates[-1]}")


def open_browser(url: str) -> None:
    """Open ``url`` in the default browser; failing to do so only gets logged."""
    try:
        webbrowser.open(url)
    except webbrowser.Error as exc:
        logger.debug("Could not open a browser: %s", exc)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging()

    host = args.host or HOST
    port = find_open_port(host, args.port if args.port is not None else PORT)
    url = f"http://{host}:{port}"
    logger.info("yt-dlp UI running on %s", url)

    if args.open is not False:
        threading.Timer(1.0, open_browser, args=(url,)).start()

    uvicorn.run("server:app", host=host, port=port, log_level=LOG_LEVEL.lower(), reload=False)


if __name__ == "__main__":
    main()
