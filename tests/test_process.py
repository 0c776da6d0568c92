import os
from pathlib import Path
import signal
import subprocess
import sys
import textwrap
import time

import pytest

from packdeploy.process import RUNNING, STOPPED, ServeProcess

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


def test_serve_process_streams_output_and_stops(tmp_path):
    lines = []
    script = "import time; print('serving', flush=True); time.sleep(60)"
    process = ServeProcess.start(
        command=[sys.executable, "-c", script],
        cwd=tmp_path,
        port=8123,
        log_handler=lines.append,
    )
    try:
        assert _wait_for(lambda: "[serve] serving" in lines)
        assert "serving" in process.capture_output()
        assert process.is_alive()
        assert process.state == RUNNING
    finally:
        process.stop(timeout=5)

    assert process.state == STOPPED
    assert process.stop(timeout=5) == process.returncode


def test_serve_process_exposes_output_after_exit(tmp_path):
    script = "import sys; print('address already in use'); sys.exit(3)"
    process = ServeProcess.start(
        command=[sys.executable, "-c", script],
        cwd=tmp_path,
        port=8123,
    )
    assert _wait_for(lambda: not process.is_alive())
    assert process.returncode == 3
    assert "address already in use" in process.capture_output()


def test_serve_process_with_log_file_reads_output_from_it(tmp_path):
    log_path = tmp_path / ".bin" / "packwiz-serve.log"
    script = "import sys; print('bad pack.toml', flush=True); sys.exit(2)"
    process = ServeProcess.start(
        command=[sys.executable, "-c", script],
        cwd=tmp_path,
        port=8123,
        log_path=log_path,
    )
    assert _wait_for(lambda: not process.is_alive())
    assert process.capture_output() == ["bad pack.toml"]
    assert log_path.exists()


@pytest.mark.skipif(os.name == "nt", reason="posix signals")
def test_logged_serve_process_survives_its_parent_exiting(tmp_path):
    marker = tmp_path / "last-tick.txt"
    log_path = tmp_path / ".bin" / "packwiz-serve.log"
    serve_script = textwrap.dedent(
        f"""\
        import time
        time.sleep(1.0)
        for tick in range(400):
            print("tick", tick, flush=True)
            with open({str(marker)!r}, "w") as handle:
                handle.write(str(tick))
            time.sleep(0.05)
        """
    )
    parent_script = textwrap.dedent(
        f"""\
        import sys
        from pathlib import Path
        from packdeploy.process import ServeProcess
        served = ServeProcess.start(
            command=[sys.executable, "-c", {serve_script!r}],
            cwd=Path({str(tmp_path)!r}),
            port=8123,
            log_path=Path({str(log_path)!r}),
        )
        print(served.pid)
        """
    )
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(
        filter(None, [str(PROJECT_ROOT), env.get("PYTHONPATH")])
    )
    parent = subprocess.run(
        [sys.executable, "-c", parent_script],
        capture_output=True,
        text=True,
        env=env,
        timeout=30,
    )
    assert parent.returncode == 0, parent.stderr
    pid = int(parent.stdout.strip().splitlines()[-1])

    def _ticks_written():
        try:
            return int(marker.read_text() or "-1")
        except (OSError, ValueError):
            return -1

    try:
        assert _wait_for(lambda: _ticks_written() >= 10, timeout=15)
        assert "tick 0" in log_path.read_text(encoding="utf-8")
    finally:
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            pass
