"""Tests for VaultClient with hvac mocked out."""

from unittest.mock import MagicMock, patch

import pytest
from hvac.exceptions import Forbidden, InvalidPath

import clients.vault_client as vault_module
from clients.vault_client import VaultClient, get_database_url, get_square_config


@pytest.fixture
def vault_env(monkeypatch):
    monkeypatch.setenv("VAULT_ADDR", "https://vault.example.test")
    monkeypatch.setenv("VAULT_ROLE_ID", "role")
    monkeypatch.setenv("VAULT_SECRET_ID", "secret")
    monkeypatch.delenv("VAULT_NAMESPACE", raising=False)


@pytest.fixture
def hvac_client(vault_env):
    """Authenticated hvac.Client double."""
    with patch("clients.vault_client.hvac.Client") as client_cls:
        client = client_cls.return_value
        client.auth.approle.login.return_value = {"auth": {"client_token": "tok"}}
        client.is_authenticated.return_value = True
        yield client


@pytest.fixture(autouse=True)
def reset_singleton():
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()
    yield
    vault_module._vault_client_instance = None
    vault_module._secret_cache.clear()


def _secret(data):
    return {"data": {"data": data}}


class TestVaultClientInit:
    """Initialization and authentication."""

    def test_missing_vault_addr_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_ADDR")

        with pytest.raises(ValueError, match="VAULT_ADDR"):
            VaultClient()

    def test_missing_approle_credentials_raises(self, vault_env, monkeypatch):
        monkeypatch.delenv("VAULT_SECRET_ID")

        with pytest.raises(ValueError, match="VAULT_ROLE_ID"):
            VaultClient()

    def test_login_failure_raises_permission_error(self, hvac_client):
        hvac_client.auth.approle.login.side_effect = Exception("invalid role_id")

        with pytest.raises(PermissionError, match="authentication"):
            VaultClient()

    def test_authenticates_with_approle(self, hvac_client):
        client = VaultClient()

        hvac_client.auth.approle.login.assert_called_once_with(role_id="role", secret_id="secret")
        assert client.client.token == "tok"


class TestGetSecret:
    """Secret retrieval, always under the ledger/ prefix."""

    def test_scoped_path(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({"url": "postgresql://x"})

        assert VaultClient().get_secret("database", "url") == "postgresql://x"
        hvac_client.secrets.kv.v2.read_secret_version.assert_called_once_with(
            path="ledger/database", raise_on_deleted_version=True
        )

    def test_missing_path(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = InvalidPath()

        with pytest.raises(PermissionError, match="not found"):
            VaultClient().get_secret("nonexistent", "field")

    def test_forbidden(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.side_effect = Forbidden()

        with pytest.raises(PermissionError, match="Access denied"):
            VaultClient().get_secret("square", "access_token")

    def test_missing_field(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({"url": "x"})

        with pytest.raises(KeyError, match="Available: url"):
            VaultClient().get_secret("database", "password")


class TestConvenienceFunctions:

    def test_database_url_is_cached(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({"url": "postgresql://x"})

        assert get_database_url() == "postgresql://x"
        assert get_database_url() == "postgresql://x"
        assert hvac_client.secrets.kv.v2.read_secret_version.call_count == 1

    def test_square_config(self, hvac_client):
        hvac_client.secrets.kv.v2.read_secret_version.return_value = _secret({
            "access_token": "t", "location_id": "l",
            "webhook_signature_key": "k", "environment": "sandbox",
        })

        assert get_square_config() == {
            "access_token": "t", "location_id": "l",
            "webhook_signature_key": "k", "environment": "sandbox",
        }

    def test_cached_values_skip_vault(self):
        vault_module._secret_cache["ledger/database/url"] = "postgresql://cached"

        with patch.object(vault_module, "VaultClient", MagicMock(side_effect=AssertionError("not called"))):
            assert get_database_url() == "postgresql://cached"
