"""Tests for the command line entry point."""

from repoindex.main import build_parser, main
from repoindex.store import SQLiteRepositoryStore


class TestCLI:
    def test_add_repo_registers(self, tmp_path, capsys):
        db = str(tmp_path / "cli.sqlite")
        assert main(["--db", db, "add-repo", "5", "octo/tools"]) == 0
        store = SQLiteRepositoryStore(db)
        repo = store.get(5)
        store.close()
        assert (repo.owner_login, repo.name) == ("octo", "tools")
        assert "Registered octo/tools" in capsys.readouterr().out

    def test_add_repo_rejects_bad_name(self, tmp_path):
        assert main(["--db", str(tmp_path / "cli.sqlite"), "add-repo", "5", "no-slash"]) == 2

    def test_search_arguments(self):
        args = build_parser().parse_args(["search", "3", "retry policy", "-k", "5", "--min-score", "0.5"])
        assert (args.repository_id, args.query, args.limit, args.min_score) == (3, "retry policy", 5, 0.5)
