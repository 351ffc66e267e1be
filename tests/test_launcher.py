import asyncio
import sys

import pytest

from ytui_errors import LaunchFailure, RuntimeFailure
from ytui_launcher import SubprocessLauncher, run_to_completion

SCRIPT = "import sys; print('out'); print('err', file=sys.stderr); sys.exit(int(sys.argv[1]))"


def test_run_to_completion_captures_both_streams():
    launcher = SubprocessLauncher([sys.executable, "-c", SCRIPT])
    run = asyncio.run(run_to_completion(launcher, ["0"]))
    assert run.exit_code == 0
    assert run.stdout.strip() == "out"
    assert run.stderr.strip() == "err"


def test_run_to_completion_check_raises_on_nonzero_exit():
    launcher = SubprocessLauncher([sys.executable, "-c", SCRIPT])
    with pytest.raises(RuntimeFailure) as info:
        asyncio.run(run_to_completion(launcher, ["3"], check=True))
    assert info.value.exit_code == 3
    assert "err" in info.value.output


def test_missing_binary_is_a_launch_failure(tmp_path):
    launcher = SubprocessLauncher([str(tmp_path / "no-such-yt-dlp")])
    with pytest.raises(LaunchFailure) as info:
        asyncio.run(run_to_completion(launcher, ["--version"]))
    assert info.value.command == str(tmp_path / "no-such-yt-dlp")
    assert isinstance(info.value.cause, FileNotFoundError)


def test_empty_prefix_is_rejected():
    with pytest.raises(ValueError):
        SubprocessLauncher([])


def test_kill_stops_a_running_process():
    launcher = SubprocessLauncher([sys.executable, "-c", "import time; time.sleep(30)"])

    async def scenario():
        handle = await launcher.launch([])
        handle.kill()
        code = await asyncio.wait_for(handle.wait(), timeout=10)
        handle.kill()
        return code

    assert asyncio.run(scenario()) != 0
