"""Tests for the trilium-sync command line entry point."""

import json

import pytest

from trilium_sync import cli
from trilium_sync.config_schema import DuplicateHandling
from trilium_sync.core.errors import EtapiConnectionError


@pytest.fixture
def cli_env(monkeypatch, fake_client):
    """Isolate main() from .env, config files, logging and the network."""
    monkeypatch.setenv("TRILIUM_URL", "http://localhost:8080")
    monkeypatch.setenv("TRILIUM_TOKEN", "tok")
    for key in ("TRILIUM_INSECURE", "TRILIUM_DEBUG", "TRILIUM_CACHE_TTL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)
    monkeypatch.setattr(cli, "discover_config_files", lambda: [])
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)
    monkeypatch.setattr(cli, "EtapiClient", lambda config: fake_client)
    return fake_client


class TestOptionTranslation:
    def test_import_defaults(self):
        args = cli.build_parser().parse_args(["import", "directory", "./notes"])
        options = cli.import_options(args)
        assert options == {
            "source_path": "./notes",
            "parent_note_id": "root",
            "dry_run": False,
            "duplicate_handling": DuplicateHandling.SKIP,
            "create_index": False,
            "preserve_structure": True,
        }

    def test_import_flags(self):
        args = cli.build_parser().parse_args(
            [
                "import", "obsidian", "vault", "--overwrite", "--flat",
                "--include", "*.md", "--include", "*.png", "--max-depth", "2",
            ]
        )
        options = cli.import_options(args)
        assert options["duplicate_handling"] == DuplicateHandling.OVERWRITE
        assert options["preserve_structure"] is False
        assert options["include"] == ["*.md", "*.png"]
        assert options["max_depth"] == 2

    def test_sync_repeated_notes(self):
        args = cli.build_parser().parse_args(
            ["sync", "repo", "--note", "a", "--note", "b", "--direction", "export"]
        )
        options = cli.sync_options(args)
        assert options["note_ids"] == ["a", "b"]
        assert options["sync_direction"] == "export"
        assert "branch" not in options

    def test_unknown_format_rejected_by_parser(self):
        with pytest.raises(SystemExit) as exc:
            cli.build_parser().parse_args(["import", "notion", "x"])
        assert exc.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            cli.build_parser().parse_args(["--version"])
        assert exc.value.code == 0
        assert "trilium-sync version" in capsys.readouterr().out


class TestMain:
    def test_import_dry_run(self, cli_env, write_tree, capsys):
        source = write_tree({"a.md": "# A"})
        code = cli.main(["import", "directory", str(source), "--dry-run"])

        out = capsys.readouterr().out
        assert code == cli.EXIT_OK
        assert out.startswith("DRY RUN -- No changes will be made")
        assert "Import report (directory) (DRY RUN)" in out
        assert not cli_env.writes

    def test_import_missing_source_fails(self, cli_env, tmp_path, capsys):
        code = cli.main(["import", "directory", str(tmp_path / "missing")])
        assert code == cli.EXIT_FAILED
        assert "(ABORTED)" in capsys.readouterr().out

    def test_export_plan(self, cli_env, tmp_path, capsys):
        note = cli_env.add_note("Plan", "<p>x</p>")
        out_dir = tmp_path / "out"
        code = cli.main(["export", "directory", str(out_dir), note, "--plan"])

        assert code == cli.EXIT_OK
        assert capsys.readouterr().out.strip() == "Plan.html"
        assert not out_dir.exists()

    def test_export_json(self, cli_env, tmp_path, capsys):
        note = cli_env.add_note("Report", "<p>x</p>")
        out_dir = tmp_path / "out"
        code = cli.main(["--json", "export", "directory", str(out_dir), note])

        data = json.loads(capsys.readouterr().out)
        assert code == cli.EXIT_OK
        assert data["operation"] == "export"
        assert data["counts"]["successful"] == 1
        assert (out_dir / "Report.html").exists()

    def test_missing_token_is_config_error(self, cli_env, monkeypatch, capsys):
        monkeypatch.delenv("TRILIUM_TOKEN")
        code = cli.main(["import", "directory", "."])
        assert code == cli.EXIT_CONFIG
        assert "Configuration error" in capsys.readouterr().err

    def test_unreachable_server(self, cli_env, monkeypatch, capsys):
        def refuse():
            raise EtapiConnectionError("connection refused")

        monkeypatch.setattr(cli_env, "get_app_info", refuse)
        code = cli.main(["import", "directory", "."])

        assert code == cli.EXIT_CONFIG
        assert "Cannot reach Trilium" in capsys.readouterr().err
        assert not cli_env.calls

    def test_init_config(self, monkeypatch, tmp_path, capsys):
        target = tmp_path / "config.yml"
        monkeypatch.setattr(cli, "ensure_config", lambda: target)
        assert cli.main(["init-config"]) == cli.EXIT_OK
        assert capsys.readouterr().out.strip() == str(target)
