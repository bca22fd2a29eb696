from pathlib import Path

import pytest

from vault_ocsp.config import Config, VaultConfig
from vault_ocsp.errors import ConfigurationError

RESPONDER_ENV = {
    "VAULT_OCSP_RESPONDER_CERT": "/etc/vault-ocsp/cert.pem",
    "VAULT_OCSP_RESPONDER_KEY": "/etc/vault-ocsp/key.pem",
}


class TestVaultConfig:
    def test_defaults(self) -> None:
        config = VaultConfig.from_env({})
        assert config.address == "https://127.0.0.1:8200"
        assert config.token is None
        assert config.timeout == 60.0
        assert config.verify is True

    def test_from_env(self) -> None:
        config = VaultConfig.from_env(
            {
                "VAULT_ADDR": "https://vault.example.com:8200/",
                "VAULT_TOKEN": "s.hemmelig",
                "VAULT_CACERT": "/etc/ssl/vault-ca.pem",
                "VAULT_CLIENT_TIMEOUT": "30s",
            }
        )
        assert config.address == "https://vault.example.com:8200"
        assert config.token == "s.hemmelig"
        assert config.ca_cert == Path("/etc/ssl/vault-ca.pem")
        assert config.timeout == 30.0
        assert config.verify == "/etc/ssl/vault-ca.pem"

    def test_skip_verify_wins_over_ca_cert(self) -> None:
        config = VaultConfig.from_env(
            {"VAULT_CACERT": "/etc/ssl/vault-ca.pem", "VAULT_SKIP_VERIFY": "true"}
        )
        assert config.verify is False

    @pytest.mark.parametrize(
        "env",
        [
            {"VAULT_SKIP_VERIFY": "kanskje"},
            {"VAULT_CLIENT_TIMEOUT": "lenge"},
            {"VAULT_CLIENT_TIMEOUT": "0"},
            {"VAULT_CLIENT_TIMEOUT": "-5s"},
        ],
    )
    def test_invalid_values(self, env: dict[str, str]) -> None:
        with pytest.raises(ConfigurationError):
            VaultConfig.from_env(env)


class TestConfig:
    def test_defaults(self) -> None:
        config = Config.from_env(RESPONDER_ENV)
        assert config.responder_cert == Path("/etc/vault-ocsp/cert.pem")
        assert config.responder_key == Path("/etc/vault-ocsp/key.pem")
        assert config.pki_mount == "pki"
        assert config.automount == 0
        assert config.fixed_mount

    def test_automount(self) -> None:
        config = Config.from_env(
            RESPONDER_ENV | {"VAULT_OCSP_AUTOMOUNT": "2", "VAULT_OCSP_PKI_MOUNT": "x"}
        )
        assert config.automount == 2
        assert not config.fixed_mount

    @pytest.mark.parametrize("levels", ["-1", "to", "1.5"])
    def test_invalid_automount(self, levels: str) -> None:
        with pytest.raises(ConfigurationError):
            Config.from_env(RESPONDER_ENV | {"VAULT_OCSP_AUTOMOUNT": levels})

    @pytest.mark.parametrize(
        "missing", ["VAULT_OCSP_RESPONDER_CERT", "VAULT_OCSP_RESPONDER_KEY"]
    )
    def test_responder_required(self, missing: str) -> None:
        env = {k: v for k, v in RESPONDER_ENV.items() if k != missing}
        with pytest.raises(ConfigurationError) as error:
            Config.from_env(env)
        assert "responder key and certificate" in str(error.value)
