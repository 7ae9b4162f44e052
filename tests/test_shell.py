from __future__ import annotations

from collections.abc import Iterator
import logging
from pathlib import Path
import subprocess

import pytest

from prbuddy.observability import configure_logging
from prbuddy.shell import CommandError, _preview, run


@pytest.fixture(autouse=True)
def quiet_logging() -> Iterator[None]:
    yield
    configure_logging(verbose=None)
    logging.getLogger("prbuddy").handlers.clear()


def test_run_success(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    called: dict[str, object] = {}

    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        called["args"] = args
        called["kwargs"] = kwargs
        return subprocess.CompletedProcess(args=["gh"], returncode=0, stdout="ok", stderr="")

    monkeypatch.setattr(subprocess, "run", fake_run)

    out = run(["gh", "auth", "status"], cwd=tmp_path, input_text="hi")

    assert out == "ok"
    assert called["args"] == (["gh", "auth", "status"],)
    kwargs = called["kwargs"]
    assert isinstance(kwargs, dict)
    assert kwargs["cwd"] == str(tmp_path)
    assert kwargs["input"] == "hi"
    assert kwargs["check"] is False
    assert kwargs["capture_output"] is True


def test_run_failure_raises(
    monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        return subprocess.CompletedProcess(args=["gh"], returncode=2, stdout="out", stderr="err")

    monkeypatch.setattr(subprocess, "run", fake_run)
    configure_logging(verbose=True)

    with pytest.raises(CommandError, match="Command failed") as exc_info:
        run(["gh", "pr", "view"])

    assert exc_info.value.exit_code == 2
    assert exc_info.value.stdout == "out"
    assert exc_info.value.stderr == "err"
    assert exc_info.value.argv == ("gh", "pr", "view")
    stderr = capsys.readouterr().err
    assert "event=command_failed command=gh pr view exit_code=2" in stderr
    assert "stderr=err" in stderr


def test_run_without_check_returns_stdout(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        subprocess,
        "run",
        lambda *a, **k: subprocess.CompletedProcess(args=a, returncode=1, stdout="x", stderr=""),
    )
    assert run(["acli", "--version"], check=False) == "x"


def test_run_missing_executable_raises_command_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(*args: object, **kwargs: object) -> subprocess.CompletedProcess[str]:
        _ = args, kwargs
        raise FileNotFoundError("No such file or directory: 'acli'")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(CommandError) as exc_info:
        run(["acli", "--version"])
    assert exc_info.value.exit_code == 127
    assert "acli" in exc_info.value.stderr


def test_preview_handles_empty_and_truncation() -> None:
    assert _preview("") == "<empty>"
    assert _preview("a\nb") == "a\\nb"
    assert _preview("x" * 10, limit=4) == "xxxx..."
