"""Tests for the reencoder command-line driver."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from cli import reencoder_cli
from cli.reencoder_cli import build_parser, load_settings, main
from reencoder.exceptions import ToolNotFoundError
from tests.conftest import CONFORMING, FakeTransform, fake_classify, write_file

if TYPE_CHECKING:
    from pathlib import Path

    from reencoder.config import Settings


def _exit_code(argv: list[str]) -> int | str | None:
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


@pytest.fixture
def fake_tools(monkeypatch: pytest.MonkeyPatch) -> FakeTransform:
    """Replace the flac collaborators with in-process fakes."""
    transform = FakeTransform()

    def _no_check(settings: Settings) -> None:
        return None

    monkeypatch.setattr(reencoder_cli, "check_tools", _no_check)
    monkeypatch.setattr(reencoder_cli, "FlacClassifier", lambda settings: fake_classify)
    monkeypatch.setattr(reencoder_cli, "FlacTransformer", lambda settings: transform)
    return transform


class TestParser:
    def test_global_flags(self, tmp_path: Path) -> None:
        args = build_parser().parse_args(["--db", str(tmp_path / "x.db"), "-t", "7", "status"])
        assert args.db == tmp_path / "x.db"
        assert args.threads == 7
        assert args.command == "status"

    def test_run_collects_flac_args(self) -> None:
        args = build_parser().parse_args(["run", "-a", "-5", "--flac-arg", "-f"])
        assert args.flac_args == ["-5", "-f"]
        assert args.root is None

    def test_load_settings_applies_overrides(self, tmp_path: Path) -> None:
        args = build_parser().parse_args(
            ["--db", str(tmp_path / "x.db"), "--threads", "2", "--debug", "run", "-a", "-5"]
        )
        settings = load_settings(args)
        assert settings.resolved_database_path == tmp_path / "x.db"
        assert settings.max_workers == 2
        assert settings.debug is True
        assert settings.flac_args == ["-5"]

    def test_load_settings_keeps_defaults_without_flags(self) -> None:
        settings = load_settings(build_parser().parse_args(["status"]))
        assert settings.max_workers == 4
        assert settings.flac_args == ["-8", "-f", "--silent"]


class TestCommands:
    def test_status_on_empty_store(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _exit_code(["--db", str(tmp_path / "s.db"), "status"]) == 0
        assert "Files to reencode:\t0" in capsys.readouterr().out

    def test_no_command_prints_status(
        self, tmp_path: Path, capsys: pytest.CaptureFixture[str]
    ) -> None:
        assert _exit_code(["--db", str(tmp_path / "s.db")]) == 0
        assert "Files to reencode:\t0" in capsys.readouterr().out

    def test_invalid_thread_count_exits_2(self, tmp_path: Path) -> None:
        assert _exit_code(["--db", str(tmp_path / "s.db"), "-t", "0", "status"]) == 2

    def test_scan_run_status_cycle(
        self,
        tmp_path: Path,
        music_dir: Path,
        fake_tools: FakeTransform,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        db = str(tmp_path / "s.db")
        write_file(music_dir / "a.flac", b"OLD")
        write_file(music_dir / "b.flac", CONFORMING + b"x")
        write_file(music_dir / "notes.txt", b"OLD")

        assert _exit_code(["--db", db, "scan", str(music_dir)]) == 0
        out = capsys.readouterr().out
        assert "2 inserted" in out
        assert "Files to reencode:\t1" in out

        assert _exit_code(["--db", db, "run"]) == 0
        assert "1 succeeded" in capsys.readouterr().out
        assert fake_tools.calls == [str((music_dir / "a.flac").resolve())]

        assert _exit_code(["--db", db, "status"]) == 0
        assert "Files to reencode:\t0" in capsys.readouterr().out

    def test_run_restricted_to_subtree(
        self,
        tmp_path: Path,
        music_dir: Path,
        fake_tools: FakeTransform,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        db = str(tmp_path / "s.db")
        write_file(music_dir / "x" / "1.flac", b"OLD")
        write_file(music_dir / "y" / "2.flac", b"OLD")
        assert _exit_code(["--db", db, "scan", str(music_dir)]) == 0

        assert _exit_code(["--db", db, "run", str(music_dir / "x")]) == 0
        assert fake_tools.calls == [str((music_dir / "x" / "1.flac").resolve())]

        capsys.readouterr()
        assert _exit_code(["--db", db, "status", str(music_dir / "y")]) == 0
        assert "Files to reencode:\t1" in capsys.readouterr().out

    def test_scan_invalid_root_exits_1(self, tmp_path: Path, fake_tools: FakeTransform) -> None:
        argv = ["--db", str(tmp_path / "s.db"), "scan", str(tmp_path / "missing")]
        assert _exit_code(argv) == 1

    def test_missing_tools_exit_1(
        self, tmp_path: Path, music_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _missing(settings: Settings) -> None:
            raise ToolNotFoundError("missing flac executable")

        monkeypatch.setattr(reencoder_cli, "check_tools", _missing)
        assert _exit_code(["--db", str(tmp_path / "s.db"), "scan", str(music_dir)]) == 1

    def test_clean_drops_deleted_files(
        self,
        tmp_path: Path,
        music_dir: Path,
        fake_tools: FakeTransform,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        db = str(tmp_path / "s.db")
        gone = write_file(music_dir / "gone.flac", b"OLD")
        write_file(music_dir / "kept.flac", b"OLD")
        assert _exit_code(["--db", db, "scan", str(music_dir)]) == 0
        gone.unlink()

        capsys.readouterr()
        assert _exit_code(["--db", db, "clean"]) == 0
        assert "1 removed" in capsys.readouterr().out

        assert _exit_code(["--db", db, "status"]) == 0
        assert "Files to reencode:\t1" in capsys.readouterr().out
