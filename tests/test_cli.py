"""
tests/test_cli.py -- Admin CLI: stdout carries results only, stderr diagnostics.
"""

import pytest

from auth.secret_store import SecretStore
from main import build_parser, main


@pytest.fixture
def run(secrets_dir, capsys):
    """Run the CLI against a temp secrets dir; return (exit_code, stdout, stderr)."""

    def _run(*args):
        code = main(["--secrets-dir", str(secrets_dir), *args])
        out, err = capsys.readouterr()
        return code, out, err

    return _run


class TestSecretGet:
    def test_creates_then_returns_same(self, run, secrets_dir):
        code, out, err = run("secret", "get", "app.example.com")
        assert code == 0
        assert "Created new secret" in err
        secret = out.strip()
        assert out == f"{secret}\n"
        assert SecretStore(secrets_dir).resolve("app.example.com") == secret

        code, out, err = run("secret", "get", "app.example.com")
        assert code == 0
        assert out.strip() == secret
        assert "Created" not in err

    def test_stdout_is_only_the_secret(self, run):
        _, out, _ = run("secret", "get", "app.example.com")
        assert len(out.splitlines()) == 1

    def test_invalid_domain(self, run, secrets_dir):
        code, out, err = run("secret", "get", "../etc/passwd")
        assert code == 1
        assert out == ""
        assert "invalid domain" in err
        assert not (secrets_dir.parent / "etc").exists()

    def test_localhost_prints_note(self, run):
        code, out, err = run("secret", "get", "localhost")
        assert code == 0
        assert out.strip()
        assert "dev secret" in err


class TestSecretRotate:
    def test_rotate_prints_new_secret(self, run):
        _, first, _ = run("secret", "get", "app.example.com")
        code, out, err = run("secret", "rotate", "app.example.com")
        assert code == 0
        assert out.strip() != first.strip()
        assert "Rotated" in err

    def test_rotate_creates_when_absent(self, run, secrets_dir):
        code, out, _ = run("secret", "rotate", "new.example.com")
        assert code == 0
        assert (secrets_dir / "new.example.com").read_text() == out.strip()

    def test_rotate_invalid_domain(self, run):
        code, out, _ = run("secret", "rotate", "a/b")
        assert (code, out) == (1, "")


class TestSecretList:
    def test_empty(self, run):
        code, out, err = run("secret", "list")
        assert code == 0
        assert out == ""
        assert "No secrets configured" in err

    def test_sorted_one_per_line(self, run):
        for domain in ("zeta.example.com", "alpha.example.com"):
            run("secret", "get", domain)
        code, out, _ = run("secret", "list")
        assert code == 0
        assert out.splitlines() == ["alpha.example.com", "zeta.example.com"]


class TestSecretDelete:
    def test_delete_existing(self, run, secrets_dir):
        run("secret", "get", "app.example.com")
        code, out, err = run("secret", "delete", "app.example.com")
        assert code == 0
        assert out == ""
        assert "Deleted" in err
        assert not (secrets_dir / "app.example.com").exists()

    def test_delete_missing_fails(self, run):
        code, _, err = run("secret", "delete", "missing.example.com")
        assert code == 1
        assert "No secret found" in err


class TestParser:
    def test_requires_subcommand(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args([])
        assert exc_info.value.code != 0

    def test_unwritable_directory_reports_error(self, tmp_path, capsys):
        blocker = tmp_path / "file"
        blocker.write_text("not a dir")
        code = main(["--secrets-dir", str(blocker / "secrets"), "secret", "get", "app.example.com"])
        _, err = capsys.readouterr()
        assert code == 1
        assert err.startswith("Error:")
