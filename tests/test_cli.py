"""Tests for the relstore command line interface."""

import json
import textwrap
from pathlib import Path

import pytest

from relstore.cli import build_parser, main

DUMP = {
    "metadata": {"created_at": "2026-01-01T00:00:00", "database": "library", "version": "1.0"},
    "collections": {
        "authors": {"1": {"id": 1, "name": "Ann", "books": ["/books/1"]}},
        "books": {
            "1": {"id": 1, "title": "One", "year": None, "level": 1, "author": "/authors/1"}
        },
    },
}


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "relstore.toml"
    path.write_text(
        textwrap.dedent(f"""\
            [profiles.local]
            provider = "sql"
            url = "sqlite:///{tmp_path / 'library.db'}"
            description = "Local SQLite file"

            [profiles.scratch]
            provider = "memory"

            [schema]
            ref = "conftest:build_library"

            [dump]
            dir = "backups"
        """)
    )
    return path


@pytest.fixture
def dump_file(tmp_path: Path) -> Path:
    path = tmp_path / "dump.json"
    path.write_text(json.dumps(DUMP))
    return path


class TestParser:
    def test_restore_defaults(self) -> None:
        args = build_parser().parse_args(["restore", "d.json"])
        assert args.mode == "skip"
        assert args.dry_run is False
        assert args.profile is None

    def test_global_flags(self) -> None:
        args = build_parser().parse_args(
            ["--env-prefix", "APP_", "--profile", "local", "dump", "-o", "x.json"]
        )
        assert args.env_prefix == "APP_"
        assert args.output == "x.json"

    def test_unknown_mode_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["restore", "d.json", "--mode", "merge"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestProfilesCommand:
    def test_lists_profiles(
        self, config_file: Path, capsys: pytest.CaptureFixture, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("RELSTORE_PROFILE", "scratch")
        assert main(["--config", str(config_file), "profiles"]) == 0
        out = capsys.readouterr().out
        assert "local" in out
        assert "scratch" in out
        assert "active profile" in out

    def test_missing_config(self, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(tmp_path / "none.toml"), "profiles"]) == 1
        assert "not found" in capsys.readouterr().out


class TestSchemaCommand:
    def test_shows_collections(self, config_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_file), "schema"]) == 0
        out = capsys.readouterr().out
        assert "library.authors" in out
        assert "library.books" in out

    def test_schema_flag_overrides_config(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["--schema", "conftest:build_blog", "schema"]) == 0
        assert "blog.users" in capsys.readouterr().out

    def test_bad_schema_reference(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["--schema", "conftest:nothing_here", "schema"]) == 1
        assert "not a CompiledDb" in capsys.readouterr().out


class TestValidateCommand:
    def test_valid(self, config_file: Path, dump_file: Path, capsys: pytest.CaptureFixture) -> None:
        assert main(["--config", str(config_file), "validate", str(dump_file)]) == 0
        assert "is valid" in capsys.readouterr().out

    def test_invalid(self, config_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
        path = tmp_path / "bad.json"
        path.write_text("[]")
        assert main(["--config", str(config_file), "validate", str(path)]) == 1
        assert "JSON object" in capsys.readouterr().out


class TestDumpRestoreCommands:
    """restore then dump round trip against a SQLite profile."""

    def test_restore_then_dump(
        self, config_file: Path, dump_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        base = ["--config", str(config_file), "--profile", "local"]
        assert main([*base, "restore", str(dump_file)]) == 0
        assert "Restore Summary" in capsys.readouterr().out

        output = tmp_path / "out.json"
        assert main([*base, "dump", "-o", str(output)]) == 0
        with open(output) as f:
            dumped = json.load(f)
        assert dumped["collections"] == DUMP["collections"]
        assert dumped["metadata"]["authors_count"] == 1

    def test_dry_run(
        self, config_file: Path, dump_file: Path, tmp_path: Path, capsys: pytest.CaptureFixture
    ) -> None:
        base = ["--config", str(config_file), "--profile", "local"]
        assert main([*base, "restore", str(dump_file), "--dry-run"]) == 0
        assert "DRY RUN" in capsys.readouterr().out

        output = tmp_path / "out.json"
        assert main([*base, "dump", "-o", str(output)]) == 0
        with open(output) as f:
            assert json.load(f)["collections"] == {"authors": {}, "books": {}}

    def test_fail_mode_reports_error(
        self, config_file: Path, dump_file: Path, capsys: pytest.CaptureFixture
    ) -> None:
        base = ["--config", str(config_file), "--profile", "local"]
        assert main([*base, "restore", str(dump_file)]) == 0
        assert main([*base, "restore", str(dump_file), "--mode", "fail"]) == 1
        assert "already exists" in capsys.readouterr().out

    def test_dump_uses_configured_dir(
        self, config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(tmp_path)
        assert main(["--config", str(config_file), "--profile", "scratch", "dump"]) == 0
        dumps = list((tmp_path / "backups").glob("dump-*.json"))
        assert len(dumps) == 1

    def test_profile_from_env(
        self, config_file: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("APP_RELSTORE_PROFILE", "scratch")
        output = tmp_path / "env.json"
        assert main(["--config", str(config_file), "--env-prefix", "APP_", "dump", "-o", str(output)]) == 0
        assert output.is_file()

    def test_missing_profile(
        self, config_file: Path, capsys: pytest.CaptureFixture, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("RELSTORE_PROFILE", raising=False)
        assert main(["--config", str(config_file), "dump", "-o", "x.json"]) == 1
        assert "No storage profile configured" in capsys.readouterr().out
