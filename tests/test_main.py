"""Tests for the command-line entry point."""

from __future__ import annotations

from pathlib import Path

import pytest

from marquee.main import EXIT_FAILURE, EXIT_OK, EXIT_USAGE, build_arg_parser, main


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(
        f"db_path: {tmp_path / 'marquee.db'}\n"
        "catalog_cache_enabled: true\n"
        "log_level: WARNING\n",
        encoding="utf-8",
    )
    return path


class TestArgParser:
    def test_upload_options(self):
        args = build_arg_parser().parse_args(["upload", "movie.mkv", "--category", "docs"])
        assert args.command == "upload"
        assert args.path == "movie.mkv"
        assert args.category == "docs"
        assert args.with_uploads

    def test_assign_takes_ids(self):
        args = build_arg_parser().parse_args(["assign", "7", "603"])
        assert (args.record_id, args.external_id) == (7, 603)

    def test_search_defaults(self):
        args = build_arg_parser().parse_args(["search", "Heat", "--year", "1995"])
        assert args.year == 1995
        assert args.limit == 10

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_arg_parser().parse_args([])


class TestMain:
    def test_pending_on_empty_database(self, config_file: Path, capsys):
        assert main(["--config", str(config_file), "pending"]) == EXIT_OK
        assert "Nothing waiting for review." in capsys.readouterr().out

    def test_show_missing_record(self, config_file: Path, capsys):
        assert main(["--config", str(config_file), "show", "42"]) == EXIT_FAILURE
        assert "No record with id 42" in capsys.readouterr().out

    def test_resolve_missing_record(self, config_file: Path):
        assert main(["--config", str(config_file), "resolve", "42"]) == EXIT_FAILURE

    def test_search_without_api_key(self, config_file: Path, capsys):
        assert main(["--config", str(config_file), "search", "Heat"]) == EXIT_FAILURE
        assert "Catalog error" in capsys.readouterr().err

    def test_upload_without_storage_service(self, config_file: Path, tmp_path: Path, capsys):
        code = main(["--config", str(config_file), "upload", str(tmp_path / "movie.mkv")])
        assert code == EXIT_USAGE
        assert "storage_api_url" in capsys.readouterr().err

    def test_upload_missing_file(self, config_file: Path, tmp_path: Path, capsys):
        with open(config_file, "a", encoding="utf-8") as f:
            f.write("storage_api_url: https://storage.invalid/api\n")
        code = main(["--config", str(config_file), "upload", str(tmp_path / "missing.mkv")])
        assert code == EXIT_USAGE
        assert "Cannot upload" in capsys.readouterr().err
