"""Tests for n8n_bootstrap.core.pipeline: end-to-end bootstrap runs."""

import os
import stat
from unittest.mock import patch

import pytest

from n8n_bootstrap.core.config_loader import BootstrapSettings
from n8n_bootstrap.core.credential_store import CredentialStore
from n8n_bootstrap.core.errors import InvalidSecret, PathUnwritable
from n8n_bootstrap.core.pipeline import (
    BootstrapPipeline,
    RunReport,
    RunStatus,
    SecretOutcome,
    SecretStatus,
    run_bootstrap,
)
from n8n_bootstrap.core.secret_generator import ADMIN_PASSWORD, DEFAULT_SECRET_SPECS

from conftest import running_as_root


def read_all(secrets_dir):
    return {spec.name: (secrets_dir / spec.filename).read_text() for spec in DEFAULT_SECRET_SPECS}


class TestFreshRun:
    def test_success(self, tmp_path, settings, secrets_dir):
        report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.SUCCESS
        assert [o.status for o in report.outcomes] == [SecretStatus.CREATED] * 6

    def test_exactly_six_credential_files(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        files = sorted(p.name for p in secrets_dir.iterdir())
        expected = sorted([spec.filename for spec in DEFAULT_SECRET_SPECS] + ["SECRETS_INFO.md"])
        assert files == expected

    def test_file_permissions(self, tmp_path, settings, secrets_dir):
        report = run_bootstrap(tmp_path, settings)
        for spec in DEFAULT_SECRET_SPECS:
            assert stat.S_IMODE(os.stat(secrets_dir / spec.filename).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(report.summary_path).st_mode) == 0o600

    def test_env_references_all_secrets(self, tmp_path, settings, secrets_dir):
        report = run_bootstrap(tmp_path, settings)
        env = report.env_path.read_text()
        assert report.env_path == tmp_path / ".env"
        assert "N8N_DOMAIN=n8n.example.com" in env
        assert "N8N_EMAIL=admin@example.com" in env
        for spec in DEFAULT_SECRET_SPECS:
            assert f"{spec.env_key}=/run/secrets/{spec.name}" in env

    def test_env_holds_no_secret_values(self, tmp_path, settings, secrets_dir):
        report = run_bootstrap(tmp_path, settings)
        env = report.env_path.read_text()
        for value in read_all(secrets_dir).values():
            assert value not in env

    def test_summary_discloses_admin_password_only(self, tmp_path, settings, secrets_dir):
        report = run_bootstrap(tmp_path, settings)
        summary = report.summary_path.read_text()
        for name, value in read_all(secrets_dir).items():
            assert (value in summary) == (name == ADMIN_PASSWORD)

    def test_lock_released(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        assert not (secrets_dir / ".bootstrap.lock").exists()

    def test_defaults_without_settings(self, tmp_path):
        report = run_bootstrap(tmp_path)
        assert report.status == RunStatus.SUCCESS
        assert "N8N_DOMAIN=n8n.yourdomain.com" in report.env_path.read_text()


class TestRerun:
    def test_existing_secrets_kept(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        before = read_all(secrets_dir)
        report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.SUCCESS
        assert all(o.status == SecretStatus.SKIPPED for o in report.outcomes)
        assert read_all(secrets_dir) == before

    def test_env_identical_on_rerun(self, tmp_path, settings):
        first = run_bootstrap(tmp_path, settings).env_path.read_bytes()
        second = run_bootstrap(tmp_path, settings).env_path.read_bytes()
        assert first == second

    def test_summary_uses_kept_admin_password(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        admin = (secrets_dir / "n8n_admin_password.txt").read_text()
        report = run_bootstrap(tmp_path, settings)
        assert admin in report.summary_path.read_text()

    def test_overwrite_changes_every_value(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        before = read_all(secrets_dir)
        rotated = settings.model_copy(update={"overwrite_existing": True})
        report = run_bootstrap(tmp_path, rotated)
        after = read_all(secrets_dir)
        assert report.status == RunStatus.SUCCESS
        assert all(o.status == SecretStatus.OVERWRITTEN for o in report.outcomes)
        for name in before:
            assert before[name] != after[name]

    def test_missing_secret_regenerated(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        (secrets_dir / "jwt_secret.txt").unlink()
        report = run_bootstrap(tmp_path, settings)
        assert report.outcome("jwt_secret").status == SecretStatus.CREATED
        assert report.outcome("postgres_password").status == SecretStatus.SKIPPED

    def test_require_fresh_fails_without_writing(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        (secrets_dir / "jwt_secret.txt").unlink()
        report = run_bootstrap(tmp_path, settings, require_fresh=True)
        assert report.status != RunStatus.SUCCESS
        assert report.outcome("postgres_password").status == SecretStatus.FAILED
        assert report.outcome("jwt_secret").status == SecretStatus.ABORTED
        assert not (secrets_dir / "jwt_secret.txt").exists()

    def test_loose_permissions_restricted(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        loose = secrets_dir / "postgres_password.txt"
        loose.chmod(0o644)
        report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.SUCCESS
        assert stat.S_IMODE(os.stat(loose).st_mode) == 0o600
        outcome = report.outcome("postgres_password")
        assert outcome.status == SecretStatus.SKIPPED
        assert "restricted" in outcome.reason
        assert report.outcome("redis_password").reason == "already exists"

    def test_undecodable_secret_fails(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        env_before = (tmp_path / ".env").read_bytes()
        (secrets_dir / "redis_password.txt").write_bytes(b"\xff\xfe\x00bad")
        report = run_bootstrap(tmp_path, settings)
        assert report.status != RunStatus.SUCCESS
        outcome = report.outcome("redis_password")
        assert outcome.status == SecretStatus.FAILED
        assert outcome.reason == "not valid UTF-8"
        assert isinstance(report.error, InvalidSecret)
        assert (tmp_path / ".env").read_bytes() == env_before

    def test_empty_secret_fails(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        (secrets_dir / "n8n_admin_password.txt").write_text("")
        report = run_bootstrap(tmp_path, settings)
        assert report.status != RunStatus.SUCCESS
        outcome = report.outcome(ADMIN_PASSWORD)
        assert outcome.status == SecretStatus.FAILED
        assert outcome.reason == "empty"

    def test_truncated_secret_fails(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        key = secrets_dir / "n8n_encryption_key.txt"
        key.write_text(key.read_text()[:20])
        report = run_bootstrap(tmp_path, settings)
        outcome = report.outcome("n8n_encryption_key")
        assert outcome.status == SecretStatus.FAILED
        assert "found 20" in outcome.reason

    def test_overwrite_replaces_invalid_secret(self, tmp_path, settings, secrets_dir):
        run_bootstrap(tmp_path, settings)
        (secrets_dir / "n8n_admin_password.txt").write_text("")
        rotated = settings.model_copy(update={"overwrite_existing": True})
        report = run_bootstrap(tmp_path, rotated)
        assert report.status == RunStatus.SUCCESS
        assert len((secrets_dir / "n8n_admin_password.txt").read_text()) == 16


class TestFailures:
    def test_no_secure_source(self, tmp_path, settings, secrets_dir):
        with patch("n8n_bootstrap.core.secret_generator.os.urandom", side_effect=NotImplementedError):
            report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.FAILED
        assert all(o.status == SecretStatus.FAILED for o in report.outcomes)
        assert not secrets_dir.exists()
        assert not (tmp_path / ".env").exists()

    def test_unwritable_stops_run(self, tmp_path, settings, secrets_dir):
        with patch("n8n_bootstrap.core.credential_store.tempfile.mkstemp",
                   side_effect=PermissionError(13, "Permission denied")):
            report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.FAILED
        assert report.outcomes[0].status == SecretStatus.FAILED
        assert report.outcomes[0].reason == "Permission denied"
        assert all(o.status == SecretStatus.ABORTED for o in report.outcomes[1:])
        assert report.env_path is None
        assert not (tmp_path / ".env").exists()

    def test_best_effort_attempts_every_secret(self, tmp_path, settings, secrets_dir):
        best_effort = settings.model_copy(update={"best_effort": True})
        with patch("n8n_bootstrap.core.credential_store.tempfile.mkstemp",
                   side_effect=PermissionError(13, "Permission denied")):
            report = run_bootstrap(tmp_path, best_effort)
        assert report.status == RunStatus.FAILED
        assert all(o.status == SecretStatus.FAILED for o in report.outcomes)
        assert not (tmp_path / ".env").exists()

    def test_best_effort_partial(self, tmp_path, settings, secrets_dir):
        from n8n_bootstrap.core import credential_store

        best_effort = settings.model_copy(update={"best_effort": True})
        real_mkstemp = credential_store.tempfile.mkstemp

        def flaky_mkstemp(prefix="", suffix="", dir=None):
            if "redis_password" in prefix:
                raise PermissionError(13, "Permission denied")
            return real_mkstemp(prefix=prefix, suffix=suffix, dir=dir)

        with patch("n8n_bootstrap.core.credential_store.tempfile.mkstemp", side_effect=flaky_mkstemp):
            report = run_bootstrap(tmp_path, best_effort)
        assert report.status == RunStatus.PARTIAL
        assert report.outcome("redis_password").status == SecretStatus.FAILED
        assert len(report.succeeded) == 5
        assert not (tmp_path / ".env").exists()

    @pytest.mark.skipif(running_as_root, reason="root ignores file permission bits")
    def test_read_only_directory(self, tmp_path, settings, secrets_dir):
        secrets_dir.mkdir()
        secrets_dir.chmod(0o500)
        try:
            report = run_bootstrap(tmp_path, settings)
        finally:
            secrets_dir.chmod(0o700)
        assert report.status == RunStatus.FAILED
        assert all(o.status == SecretStatus.FAILED for o in report.outcomes)
        assert list(secrets_dir.iterdir()) == []
        assert isinstance(report.error, PathUnwritable)
        assert not (tmp_path / ".env").exists()

    def test_uncreatable_directory(self, tmp_path, settings, secrets_dir):
        with patch("pathlib.Path.mkdir", side_effect=PermissionError(13, "Permission denied")):
            report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.FAILED
        assert all(o.status == SecretStatus.FAILED for o in report.outcomes)
        assert all("Permission denied" in o.reason for o in report.outcomes)
        assert isinstance(report.error, PathUnwritable)
        assert not secrets_dir.exists()
        assert not (tmp_path / ".env").exists()

    def test_lock_denied_writes_nothing(self, tmp_path, settings, secrets_dir):
        from n8n_bootstrap.core import credential_store

        secrets_dir.mkdir()
        real_open = credential_store.os.open

        def denying_open(path, flags, mode=0o777):
            if os.fspath(path).endswith(credential_store.LOCK_FILENAME):
                raise PermissionError(13, "Permission denied")
            return real_open(path, flags, mode)

        with patch("n8n_bootstrap.core.credential_store.os.open", side_effect=denying_open):
            report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.FAILED
        assert all(o.status == SecretStatus.FAILED for o in report.outcomes)
        assert all("Permission denied" in o.reason for o in report.outcomes)
        assert isinstance(report.error, PathUnwritable)
        assert report.error.path == secrets_dir / credential_store.LOCK_FILENAME
        assert list(secrets_dir.iterdir()) == []
        assert not (tmp_path / ".env").exists()

    def test_locked(self, tmp_path, settings, secrets_dir):
        store = CredentialStore(secrets_dir)
        with store.lock():
            report = run_bootstrap(tmp_path, settings)
        assert report.status == RunStatus.FAILED
        assert "lock" in str(report.error)
        assert store.list_secrets() == []


class TestRunReport:
    def test_empty_report_failed(self):
        assert RunReport().status == RunStatus.FAILED

    def test_summary_lines(self, tmp_path):
        report = RunReport(outcomes=[
            SecretOutcome("a", tmp_path / "a.txt", SecretStatus.CREATED),
            SecretOutcome("b", tmp_path / "b.txt", SecretStatus.FAILED, "denied"),
        ])
        lines = report.summary_lines()
        assert "created" in lines[0]
        assert "(denied)" in lines[1]
        assert lines[-1] == "status: partial"

    def test_pipeline_paths(self, tmp_path):
        pipeline = BootstrapPipeline(tmp_path, BootstrapSettings(secrets_dir="creds", env_file="n8n.env"))
        assert pipeline.env_path == tmp_path / "n8n.env"
        assert pipeline.summary_path == tmp_path / "creds" / "SECRETS_INFO.md"
