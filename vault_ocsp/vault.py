from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx
from attrs import frozen
from cattrs.errors import BaseValidationError
from cattrs.preconf.json import make_converter
from cryptography import x509

from .config import VaultConfig
from .errors import AuthorityError, MalformedRecordError
from .logging import performance_log

logger = logging.getLogger(__name__)

Converter = make_converter()


def _structure_strict_int(value: Any, _: type) -> int:
    # The default hook would happily turn "12" and 1.5 into ints.
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"Expected an integer, got {value!r}")
    return value


Converter.register_structure_hook(int, _structure_strict_int)


@frozen
class VaultCertData:
    certificate: str | None = None
    revocation_time: int | None = None


@frozen
class VaultCertResponse:
    data: VaultCertData | None = None


@frozen
class RevocationRecord:
    """
    What Vault knows about a single certificate.

    `revocation_time` is None when Vault didn't include the field at all,
    and 0 when the certificate is not revoked.
    """

    revocation_time: int | None
    certificate: x509.Certificate | None

    @classmethod
    def empty(cls) -> RevocationRecord:
        return cls(None, None)

    @classmethod
    def from_vault_data(cls, data: VaultCertData | None) -> RevocationRecord:
        if data is None:
            return cls.empty()

        certificate = None
        if data.certificate is not None:
            try:
                certificate = x509.load_pem_x509_certificate(data.certificate.encode())
            except ValueError as error:
                # Only the expiry of certificates that aren't
                # revoked is looked at.
                if data.revocation_time:
                    logger.warning(
                        "Ignoring unparsable certificate of revoked record: %s", error
                    )
                else:
                    raise MalformedRecordError(
                        f"Could not parse certificate from Vault: {error}"
                    ) from error

        return cls(data.revocation_time, certificate)

    @property
    def is_revoked(self) -> bool:
        return bool(self.revocation_time)

    @property
    def revoked_at(self) -> datetime | None:
        if not self.revocation_time:
            return None
        return datetime.fromtimestamp(self.revocation_time, tz=UTC)


class AuthorityClientProto(Protocol):
    async def get_ca(self, mount: str) -> bytes:
        ...

    async def get_cert_status(self, mount: str, serial: str) -> RevocationRecord:
        ...


class VaultClient:
    """
    Read-only client for the PKI secrets engine in Vault.

    One instance (and one connection pool) is shared by all mounts.
    """

    HEADERS = {"user-agent": "vault-ocsp"}

    def __init__(self, httpx_client: httpx.AsyncClient) -> None:
        self._client = httpx_client

    @classmethod
    def create(cls, config: VaultConfig) -> VaultClient:
        headers = dict(cls.HEADERS)
        if config.token is not None:
            headers["X-Vault-Token"] = config.token

        return cls(
            httpx.AsyncClient(
                base_url=config.address,
                headers=headers,
                timeout=config.timeout,
                verify=config.verify,
            )
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _read(self, path: str) -> httpx.Response:
        logger.debug("Reading %s from Vault", path)
        try:
            return await self._client.get(f"/v1/{path}")
        except httpx.HTTPError as error:
            raise AuthorityError(
                f"Error while reading {path} from Vault: {error!r}"
            ) from error

    @performance_log(id_param=1)
    async def get_ca(self, mount: str) -> bytes:
        """Returns the DER encoded CA certificate for the mount"""
        resp = await self._read(f"{mount}/ca")

        if resp.status_code != 200:
            raise AuthorityError(
                f"Got status code {resp.status_code} while reading "
                f"CA certificate for mount '{mount}'"
            )
        if not resp.content:
            raise AuthorityError(f"Vault returned an empty CA certificate for '{mount}'")

        return resp.content

    @performance_log(id_param=1)
    async def get_cert_status(self, mount: str, serial: str) -> RevocationRecord:
        """
        Returns the revocation record for the certificate with
        the specified serial, which must be in Vault format ("0f-ff").
        """
        resp = await self._read(f"{mount}/cert/{serial}")

        if resp.status_code == 404:
            logger.info("Certificate %s not found in mount '%s'", serial, mount)
            return RevocationRecord.empty()

        if resp.status_code != 200:
            raise AuthorityError(
                f"Got status code {resp.status_code} while reading "
                f"certificate {serial} from mount '{mount}'"
            )

        try:
            vault_resp = Converter.loads(resp.content, VaultCertResponse)
        except (ValueError, TypeError, BaseValidationError) as error:
            raise MalformedRecordError(
                f"Could not decode certificate {serial} from mount '{mount}'"
            ) from error

        return RevocationRecord.from_vault_data(vault_resp.data)
