from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

logger = logging.getLogger(__name__)

UNSAFE_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')


def safe_basename(name: str) -> str:
    """Collapse a requested name to a bare file name with no separators or control characters."""
    text = str(name or "")
    base = re.split(r"[/\\]", text)[-1]
    return UNSAFE_CHARS_RE.sub("_", base)


def list_job_files(directory: Optional[Path]) -> List[str]:
    """Plain files directly inside ``directory``; empty when it is missing or unreadable."""
    if directory is None:
        return []
    try:
        with os.scandir(directory) as entries:
            names = [entry.name for entry in entries if entry.is_file()]
    except OSError as exc:
        logger.debug("Cannot list %s: %s", directory, exc)
        return []
    return sorted(names)


def file_download_url(job_id: str, name: str) -> str:
    return f"/api/file/{job_id}/{quote(name, safe='')}"


def resolve_job_file(directory: Optional[Path], requested: str) -> Optional[Path]:
    """Resolve a requested name inside ``directory``, or ``None`` if there is no such file.

    The result is always a regular file whose real path lies inside the
    directory, whatever the requested name contains.
    """
    if directory is None:
        return None
    name = safe_basename(requested)
    if name in ("", ".", ".."):
        return None
    root = Path(directory).resolve()
    candidate = (root / name).resolve()
    if candidate.parent != root or not candidate.is_file():
        return None
    return candidate
