from __future__ import annotations

import argparse
import io
from contextlib import redirect_stderr
from pathlib import Path

from shellmux import cli
from shellmux.config import AppConfig
from shellmux.errors import ExitCode, SpawnError


def _runner(calls: list[tuple[argparse.Namespace, AppConfig]], code: int = 0):
    def run(namespace: argparse.Namespace, config: AppConfig) -> int:
        calls.append((namespace, config))
        return code

    return run


def test_cli_help_includes_public_flags() -> None:
    help_text = cli.build_parser().format_help()

    for flag in ("--cwd", "--command", "--cols", "--rows", "--config", "--log-level", "--log-file"):
        assert flag in help_text


def test_invalid_dimensions_return_invalid_args(tmp_path: Path) -> None:
    calls: list[tuple[argparse.Namespace, AppConfig]] = []
    log_file = str(tmp_path / "smx.log")

    assert cli.main(["--cols", "0", "--log-file", log_file], session_runner=_runner(calls)) == 2
    assert cli.main(["--rows", "abc", "--log-file", log_file], session_runner=_runner(calls)) == 2
    assert calls == []


def test_flags_reach_the_session_runner(tmp_path: Path) -> None:
    calls: list[tuple[argparse.Namespace, AppConfig]] = []

    code = cli.main(
        [
            "--cwd",
            str(tmp_path),
            "--command",
            "npm test",
            "--cols",
            "100",
            "--rows",
            "40",
            "--log-file",
            str(tmp_path / "smx.log"),
        ],
        session_runner=_runner(calls, code=3),
    )

    assert code == 3
    namespace, config = calls[0]
    assert namespace.cwd == str(tmp_path)
    assert namespace.command == "npm test"
    assert (namespace.cols, namespace.rows) == (100, 40)
    assert config == AppConfig()


def test_config_file_is_loaded(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("default_cols = 132\n", encoding="utf-8")
    calls: list[tuple[argparse.Namespace, AppConfig]] = []

    cli.main(
        ["--config", str(config_path), "--log-file", str(tmp_path / "smx.log")],
        session_runner=_runner(calls),
    )

    assert calls[0][1].default_cols == 132


def test_log_level_aliases_are_accepted(tmp_path: Path) -> None:
    calls: list[tuple[argparse.Namespace, AppConfig]] = []
    log_file = str(tmp_path / "smx.log")

    assert cli.main(["--log-level", "DEBUG", "--log-file", log_file], session_runner=_runner(calls)) == 0
    assert cli.main(["--log-level", "warning", "--log-file", log_file], session_runner=_runner(calls)) == 0
    assert calls[1][0].log_level == "WARN"
    assert cli.main(["--log-level", "loud", "--log-file", log_file], session_runner=_runner(calls)) == 2


def test_shellmux_error_is_reported_to_stderr(tmp_path: Path) -> None:
    def failing(namespace: argparse.Namespace, config: AppConfig) -> int:
        raise SpawnError("Failed to spawn shell 'bash'", hint="Install bash.")

    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--log-file", str(tmp_path / "smx.log")], session_runner=failing)

    assert code == int(ExitCode.SPAWN_ERROR)
    assert "Install bash." in stream.getvalue()


def test_unexpected_failure_maps_to_runtime_error(tmp_path: Path) -> None:
    def failing(namespace: argparse.Namespace, config: AppConfig) -> int:
        raise RuntimeError("boom")

    stream = io.StringIO()
    with redirect_stderr(stream):
        code = cli.main(["--log-file", str(tmp_path / "smx.log")], session_runner=failing)

    assert code == int(ExitCode.RUNTIME_ERROR)
    assert "Unexpected runtime failure" in stream.getvalue()
    assert "Inspect logs" in stream.getvalue()
