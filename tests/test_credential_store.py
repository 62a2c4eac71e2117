"""Tests for n8n_bootstrap.core.credential_store."""

import os
import stat
from unittest.mock import patch

import pytest

from n8n_bootstrap.core.credential_store import (
    LOCK_FILENAME,
    CredentialArtifact,
    CredentialStore,
    atomic_write_text,
)
from n8n_bootstrap.core.errors import ArtifactAlreadyExists, BootstrapLocked, InvalidSecret, PathUnwritable
from n8n_bootstrap.core.secret_generator import DEFAULT_SECRET_SPECS, GeneratedSecret, SecretGenerator


def mode_of(path):
    return stat.S_IMODE(os.stat(path).st_mode)


@pytest.fixture
def spec():
    return DEFAULT_SECRET_SPECS[0]


@pytest.fixture
def first(spec):
    return SecretGenerator().generate(spec)


@pytest.fixture
def second(spec):
    return SecretGenerator().generate(spec)


class TestAtomicWrite:
    def test_writes_content_with_mode(self, tmp_path):
        path = atomic_write_text(tmp_path / "a.txt", "value", 0o600)
        assert path.read_text() == "value"
        assert mode_of(path) == 0o600

    def test_public_mode(self, tmp_path):
        path = atomic_write_text(tmp_path / "a.env", "X=1\n", 0o644)
        assert mode_of(path) == 0o644

    def test_replaces_existing(self, tmp_path):
        target = tmp_path / "a.txt"
        target.write_text("old")
        atomic_write_text(target, "new")
        assert target.read_text() == "new"

    def test_no_temp_files_left(self, tmp_path):
        atomic_write_text(tmp_path / "a.txt", "value")
        assert [p.name for p in tmp_path.iterdir()] == ["a.txt"]

    def test_temp_file_removed_on_failure(self, tmp_path):
        with patch("n8n_bootstrap.core.credential_store.os.replace", side_effect=PermissionError(13, "denied")):
            with pytest.raises(PathUnwritable):
                atomic_write_text(tmp_path / "a.txt", "value")
        assert list(tmp_path.iterdir()) == []

    def test_missing_parent_is_unwritable(self, tmp_path):
        with pytest.raises(PathUnwritable):
            atomic_write_text(tmp_path / "missing" / "a.txt", "value")


class TestCredentialStore:
    def test_creates_private_dir(self, secrets_dir):
        CredentialStore(secrets_dir).ensure_dir()
        assert secrets_dir.is_dir()
        assert mode_of(secrets_dir) == 0o700

    def test_existing_dir_mode_untouched(self, secrets_dir):
        secrets_dir.mkdir(mode=0o755)
        secrets_dir.chmod(0o755)
        CredentialStore(secrets_dir).ensure_dir()
        assert mode_of(secrets_dir) == 0o755

    def test_store_writes_owner_only(self, secrets_dir, spec):
        store = CredentialStore(secrets_dir)
        path = store.store(GeneratedSecret(spec=spec, value="s3cret"))
        assert path == secrets_dir / spec.filename
        assert path.read_text() == "s3cret"
        assert mode_of(path) == 0o600

    def test_no_trailing_newline(self, secrets_dir, spec):
        store = CredentialStore(secrets_dir)
        path = store.store(GeneratedSecret(spec=spec, value="abc"))
        assert path.read_bytes() == b"abc"

    def test_existing_is_not_overwritten(self, secrets_dir, spec, first, second):
        store = CredentialStore(secrets_dir)
        store.store(first)
        with pytest.raises(ArtifactAlreadyExists):
            store.store(second)
        assert store.read_secret(spec).value == first.value

    def test_overwrite_replaces(self, secrets_dir, spec, first, second):
        store = CredentialStore(secrets_dir, overwrite_existing=True)
        store.store(first)
        store.store(second)
        assert store.read_secret(spec).value == second.value

    def test_overwrite_argument_wins(self, secrets_dir, spec, first, second):
        store = CredentialStore(secrets_dir)
        store.store(first)
        store.store(second, overwrite=True)
        assert store.read_secret(spec).value == second.value

    def test_list_and_delete(self, secrets_dir, spec):
        store = CredentialStore(secrets_dir)
        assert store.list_secrets() == []
        store.store(GeneratedSecret(spec=spec, value="x"))
        assert store.list_secrets() == [spec.filename]
        assert store.delete_secret(spec) is True
        assert store.delete_secret(spec) is False
        assert not store.exists(spec)

    def test_unwritable_raises(self, secrets_dir, spec):
        store = CredentialStore(secrets_dir)
        with patch("n8n_bootstrap.core.credential_store.tempfile.mkstemp",
                   side_effect=PermissionError(13, "Permission denied")):
            with pytest.raises(PathUnwritable) as exc_info:
                store.store(GeneratedSecret(spec=spec, value="x"))
        assert exc_info.value.reason == "Permission denied"
        assert not store.exists(spec)

    def test_artifact_repr_hides_content(self, secrets_dir, spec):
        artifact = CredentialArtifact.from_secret(GeneratedSecret(spec=spec, value="topsecret"), secrets_dir)
        assert "topsecret" not in repr(artifact)


class TestLock:
    def test_lock_released(self, secrets_dir):
        store = CredentialStore(secrets_dir)
        with store.lock() as lock_path:
            assert lock_path == secrets_dir / LOCK_FILENAME
            assert lock_path.exists()
        assert not (secrets_dir / LOCK_FILENAME).exists()

    def test_second_lock_fails(self, secrets_dir):
        store = CredentialStore(secrets_dir)
        with store.lock():
            with pytest.raises(BootstrapLocked):
                with CredentialStore(secrets_dir).lock():
                    pass

    def test_released_on_error(self, secrets_dir):
        store = CredentialStore(secrets_dir)
        with pytest.raises(RuntimeError):
            with store.lock():
                raise RuntimeError("boom")
        assert not (secrets_dir / LOCK_FILENAME).exists()


class TestReadSecret:
    def test_strips_trailing_newline(self, secrets_dir, spec, first):
        secrets_dir.mkdir()
        (secrets_dir / spec.filename).write_text(first.value + "\n")
        assert CredentialStore(secrets_dir).read_secret(spec).value == first.value

    def test_not_utf8(self, secrets_dir, spec):
        secrets_dir.mkdir()
        (secrets_dir / spec.filename).write_bytes(b"\xff\xfe\x00bad")
        with pytest.raises(InvalidSecret) as exc_info:
            CredentialStore(secrets_dir).read_secret(spec)
        assert exc_info.value.reason == "not valid UTF-8"
        assert exc_info.value.path == secrets_dir / spec.filename

    def test_empty(self, secrets_dir, spec):
        secrets_dir.mkdir()
        (secrets_dir / spec.filename).write_text("")
        with pytest.raises(InvalidSecret, match="empty"):
            CredentialStore(secrets_dir).read_secret(spec)

    def test_truncated(self, secrets_dir, spec, first):
        secrets_dir.mkdir()
        (secrets_dir / spec.filename).write_text(first.value[:10])
        with pytest.raises(InvalidSecret, match="expected 24 characters, found 10"):
            CredentialStore(secrets_dir).read_secret(spec)

    def test_foreign_characters(self, secrets_dir, spec):
        secrets_dir.mkdir()
        (secrets_dir / spec.filename).write_text("p@ss word!" * 2 + "abcd")
        with pytest.raises(InvalidSecret, match="alphabet"):
            CredentialStore(secrets_dir).read_secret(spec)


class TestRestrict:
    def test_tightens_loose_mode(self, secrets_dir, spec, first):
        store = CredentialStore(secrets_dir)
        path = store.store(first)
        path.chmod(0o644)
        assert store.restrict(spec) is True
        assert mode_of(path) == 0o600

    def test_private_file_untouched(self, secrets_dir, spec, first):
        store = CredentialStore(secrets_dir)
        store.store(first)
        assert store.restrict(spec) is False

    def test_chmod_failure(self, secrets_dir, spec, first):
        store = CredentialStore(secrets_dir)
        path = store.store(first)
        path.chmod(0o640)
        with patch("pathlib.Path.chmod", side_effect=PermissionError(1, "Operation not permitted")):
            with pytest.raises(PathUnwritable, match="Operation not permitted"):
                store.restrict(spec)
