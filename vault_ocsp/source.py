from __future__ import annotations

import logging
import threading

from attrs import evolve, field, frozen
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.x509.ocsp import OCSPRequest

from .crypto import (
    UNAUTHORIZED_RESPONSE,
    ResponderIdentity,
    ResponseBuilder,
    check_ca_public_key,
    get_issuer_key_hash,
)
from .enums import CertificateStatus
from .errors import (
    AuthorityError,
    IssuerMismatchError,
    MalformedRequestError,
    MountInitializationError,
)
from .utils import datetime_now_utc, to_vault_serial
from .vault import AuthorityClientProto

logger = logging.getLogger(__name__)


@frozen
class OcspResult:
    status: CertificateStatus
    response: bytes | None
    from_cache: bool = False


class ResponseCache:
    """
    Signed responses for certificates whose status can't change anymore
    (revoked or expired). Entries are never replaced or removed.
    """

    def __init__(self) -> None:
        self._results: dict[str, OcspResult] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> OcspResult | None:
        with self._lock:
            return self._results.get(key)

    def add(self, key: str, result: OcspResult) -> OcspResult:
        """
        Stores the result, unless there already is one for the key.
        Returns the result that ended up in the cache.
        """
        assert result.status.is_terminal
        with self._lock:
            return self._results.setdefault(key, result)

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._results


@frozen
class MountSource:
    """Answers OCSP requests for the certificates issued by one PKI mount"""

    mount: str
    ca_cert: x509.Certificate
    authority: AuthorityClientProto
    builder: ResponseBuilder
    cache: ResponseCache = field(factory=ResponseCache)

    @classmethod
    async def create(
        cls,
        mount: str,
        authority: AuthorityClientProto,
        identity: ResponderIdentity,
    ) -> MountSource:
        try:
            raw_ca_cert = await authority.get_ca(mount)
        except AuthorityError as error:
            raise MountInitializationError(
                f"Error getting CA certificate for mount '{mount}' from Vault: {error}"
            ) from error

        try:
            ca_cert = x509.load_der_x509_certificate(raw_ca_cert)
        except ValueError as error:
            raise MountInitializationError(
                f"Could not parse CA certificate for mount '{mount}': {error}"
            ) from error

        try:
            check_ca_public_key(ca_cert)
        except (ValueError, UnsupportedAlgorithm) as error:
            raise MountInitializationError(
                f"Unsupported CA public key for mount '{mount}': {error}"
            ) from error

        logger.info(
            "Found CA certificate '%s' for mount '%s'",
            ca_cert.subject.rfc4514_string(),
            mount,
        )
        return cls(mount, ca_cert, authority, ResponseBuilder(ca_cert, identity))

    def _check_issuer(self, ocsp_request: OCSPRequest) -> None:
        try:
            algorithm = ocsp_request.hash_algorithm
        except UnsupportedAlgorithm as error:
            raise MalformedRequestError(
                f"Unsupported hash algorithm in request: {error}"
            ) from error

        if ocsp_request.issuer_key_hash != get_issuer_key_hash(self.ca_cert, algorithm):
            raise IssuerMismatchError(
                f"Request issuer key hash {ocsp_request.issuer_key_hash.hex()} "
                f"does not match CA of mount '{self.mount}'"
            )

    async def respond(self, ocsp_request: OCSPRequest) -> OcspResult:
        self._check_issuer(ocsp_request)

        # The CertID in the response uses the hash algorithm of the request,
        # so a response can only be reused for requests hashed the same way.
        algorithm = ocsp_request.hash_algorithm
        cache_key = f"{ocsp_request.serial_number}/{algorithm.name}"
        if (cached_result := self.cache.get(cache_key)) is not None:
            logger.debug(
                "Returning cached response for %s in mount '%s'",
                cache_key,
                self.mount,
            )
            return evolve(cached_result, from_cache=True)

        vault_serial = to_vault_serial(ocsp_request.serial_number)
        logger.info(
            "OCSP request for serial %s in mount '%s'", vault_serial, self.mount
        )
        record = await self.authority.get_cert_status(self.mount, vault_serial)

        if record.revocation_time is None:
            logger.info(
                "No revocation time for serial %s in mount '%s'",
                vault_serial,
                self.mount,
            )
            return OcspResult(CertificateStatus.INDETERMINATE, None)

        if record.revoked_at is not None:
            logger.info(
                "Certificate with serial %s in mount '%s' is revoked",
                vault_serial,
                self.mount,
            )
            response = self.builder.build_revoked(
                ocsp_request.serial_number, algorithm, record.revoked_at
            )
            return self.cache.add(
                cache_key, OcspResult(CertificateStatus.REVOKED, response)
            )

        if record.certificate is None:
            logger.info(
                "No certificate for serial %s in mount '%s'", vault_serial, self.mount
            )
            return OcspResult(CertificateStatus.INDETERMINATE, None)

        if record.certificate.not_valid_after_utc < datetime_now_utc():
            logger.info(
                "Certificate with serial %s in mount '%s' expired at %s, "
                "returning unauthorized",
                vault_serial,
                self.mount,
                record.certificate.not_valid_after_utc,
            )
            return self.cache.add(
                cache_key, OcspResult(CertificateStatus.EXPIRED, UNAUTHORIZED_RESPONSE)
            )

        logger.info(
            "Certificate with serial %s in mount '%s' is valid", vault_serial, self.mount
        )
        response = self.builder.build_good(ocsp_request.serial_number, algorithm)
        return OcspResult(CertificateStatus.GOOD, response)
