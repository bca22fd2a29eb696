from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from attrs import field, frozen

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_VAULT_ADDR = "https://127.0.0.1:8200"
DEFAULT_VAULT_TIMEOUT = 60.0
DEFAULT_PKI_MOUNT = "pki"

TRUTHY_VALUES = {"1", "t", "true", "y", "yes", "on"}
FALSY_VALUES = {"", "0", "f", "false", "n", "no", "off"}


def _parse_bool(name: str, value: str) -> bool:
    if value.lower() in TRUTHY_VALUES:
        return True
    if value.lower() in FALSY_VALUES:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: '{value}'")


def _parse_timeout(name: str, value: str) -> float:
    # Vault accepts both "30" and "30s"
    try:
        timeout = float(value.removesuffix("s"))
    except ValueError:
        raise ConfigurationError(f"Invalid timeout for {name}: '{value}'") from None
    if timeout <= 0:
        raise ConfigurationError(f"Timeout for {name} must be positive: '{value}'")
    return timeout


def _parse_levels(value: str | int) -> int:
    try:
        levels = int(value)
    except ValueError:
        raise ConfigurationError(
            f"Invalid number of automount levels: '{value}'"
        ) from None
    if levels < 0:
        raise ConfigurationError(
            f"Number of automount levels can't be negative: {levels}"
        )
    return levels


@frozen
class VaultConfig:
    """
    How to reach Vault. Uses the same environment variables
    as the official Vault clients.
    """

    address: str = DEFAULT_VAULT_ADDR
    token: str | None = None
    ca_cert: Path | None = None
    skip_verify: bool = False
    timeout: float = DEFAULT_VAULT_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> VaultConfig:
        if environ is None:
            environ = os.environ

        ca_cert = environ.get("VAULT_CACERT")
        return cls(
            address=environ.get("VAULT_ADDR", DEFAULT_VAULT_ADDR).rstrip("/"),
            token=environ.get("VAULT_TOKEN") or None,
            ca_cert=Path(ca_cert) if ca_cert else None,
            skip_verify=_parse_bool(
                "VAULT_SKIP_VERIFY", environ.get("VAULT_SKIP_VERIFY", "")
            ),
            timeout=_parse_timeout(
                "VAULT_CLIENT_TIMEOUT",
                environ.get("VAULT_CLIENT_TIMEOUT", str(DEFAULT_VAULT_TIMEOUT)),
            ),
        )

    @property
    def verify(self) -> bool | str:
        if self.skip_verify:
            return False
        if self.ca_cert is not None:
            return str(self.ca_cert)
        return True


@frozen
class Config:
    responder_cert: Path
    responder_key: Path
    vault: VaultConfig = field(factory=VaultConfig)
    pki_mount: str = DEFAULT_PKI_MOUNT
    # 0 means that every request is answered by `pki_mount`,
    # anything else is the number of path segments that
    # make up the mount name.
    automount: int = field(default=0, converter=_parse_levels)

    @property
    def fixed_mount(self) -> bool:
        return self.automount == 0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        if environ is None:
            environ = os.environ

        responder_cert = environ.get("VAULT_OCSP_RESPONDER_CERT")
        responder_key = environ.get("VAULT_OCSP_RESPONDER_KEY")
        if not responder_cert or not responder_key:
            raise ConfigurationError(
                "You have to specify a responder key and certificate"
            )

        return cls(
            responder_cert=Path(responder_cert),
            responder_key=Path(responder_key),
            vault=VaultConfig.from_env(environ),
            pki_mount=environ.get("VAULT_OCSP_PKI_MOUNT", DEFAULT_PKI_MOUNT),
            automount=environ.get("VAULT_OCSP_AUTOMOUNT", "0"),
        )
