"""Tests for the encrypted secret store."""

import base64
import stat

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from kubexds.config import Settings
from kubexds.errors import ConfigInvalid
from kubexds.secret_store import SecretStore, decode_master_key, generate_password


class TestSecretStore:
    """AES-GCM sealed files, one per service secret."""

    def test_put_and_get(self, secret_store):
        path = secret_store.put("pg", "pass", "hunter2")

        assert secret_store.get("pg", "pass") == "hunter2"
        assert secret_store.exists("pg", "pass")
        assert b"hunter2" not in path.read_bytes()
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_missing_secret(self, secret_store):
        assert secret_store.get("pg", "pass") is None
        assert not secret_store.exists("pg", "pass")

    def test_get_or_create_is_stable(self, secret_store):
        first = secret_store.get_or_create("cache", "pass")
        second = secret_store.get_or_create("cache", "pass")
        assert first == second
        assert len(first) == 40
        assert first.isalnum()

    def test_wrong_key(self, secret_store):
        secret_store.put("pg", "pass", "hunter2")
        other = SecretStore(secret_store.root, AESGCM.generate_key(bit_length=256))
        with pytest.raises(ConfigInvalid):
            other.get("pg", "pass")

    def test_secret_bound_to_its_path(self, secret_store):
        """A blob copied to another service's path does not decrypt."""
        source = secret_store.put("pg", "pass", "hunter2")
        target = secret_store.root / "cache" / "pass"
        target.parent.mkdir(parents=True)
        target.write_bytes(source.read_bytes())
        with pytest.raises(ConfigInvalid):
            secret_store.get("cache", "pass")

    @pytest.mark.parametrize("service", ["..", "a/b", "", "with space"])
    def test_invalid_segments(self, secret_store, service):
        with pytest.raises(ConfigInvalid):
            secret_store.put(service, "pass", "x")

    def test_short_key(self, tmp_path):
        with pytest.raises(ConfigInvalid):
            SecretStore(tmp_path, b"short")


class TestMasterKey:
    def test_from_settings_with_key(self, tmp_path):
        key = AESGCM.generate_key(bit_length=256)
        settings = Settings(
            kubexds_config_root=tmp_path, app_master_key=base64.b64encode(key).decode()
        )

        store = SecretStore.from_settings(settings)
        store.put("pg", "pass", "v")

        assert store.ephemeral is False
        assert store.root == tmp_path / "secrets"
        assert SecretStore(store.root, key).get("pg", "pass") == "v"

    def test_ephemeral_without_key(self, tmp_path):
        store = SecretStore.from_settings(Settings(kubexds_config_root=tmp_path))
        assert store.ephemeral is True

    def test_ephemeral_stores_stay_in_memory(self, tmp_path):
        """Separate keyless runs over one directory never trip over each other."""
        settings = Settings(kubexds_config_root=tmp_path)
        first = SecretStore.from_settings(settings)
        second = SecretStore.from_settings(settings)

        password = first.get_or_create("postgres", "pass")

        assert first.put("postgres", "other", "v") is None
        assert first.get_or_create("postgres", "pass") == password
        assert first.exists("postgres", "pass")
        assert not (tmp_path / "secrets").exists()
        assert second.get("postgres", "pass") is None
        assert len(second.get_or_create("postgres", "pass")) == 40

    def test_wrong_key_names_master_key(self, secret_store):
        secret_store.put("pg", "pass", "hunter2")
        other = SecretStore(secret_store.root, AESGCM.generate_key(bit_length=256))
        with pytest.raises(ConfigInvalid, match="APP_MASTER_KEY"):
            other.get("pg", "pass")

    @pytest.mark.parametrize("value", ["not base64!", base64.b64encode(b"x" * 16).decode()])
    def test_invalid_key(self, value):
        with pytest.raises(ConfigInvalid):
            decode_master_key(value)

    def test_generate_password(self):
        password = generate_password(12)
        assert len(password) == 12
        assert password.isalnum()
