from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path

from attrs import frozen
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric.ec import (
    EllipticCurvePrivateKey,
    EllipticCurvePublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed448 import (
    Ed448PrivateKey,
    Ed448PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPrivateKey, RSAPublicKey
from cryptography.hazmat.primitives.asymmetric.types import CertificatePublicKeyTypes
from cryptography.hazmat.primitives.hashes import SHA256, Hash, HashAlgorithm
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_pem_private_key,
)
from cryptography.x509.ocsp import (
    OCSPCertStatus,
    OCSPResponderEncoding,
    OCSPResponseBuilder,
    OCSPResponseStatus,
)

from .errors import ConfigurationError
from .logging import performance_log
from .utils import datetime_now_utc

logger = logging.getLogger(__name__)

GOOD_RESPONSE_LIFETIME = timedelta(hours=1)

SigningKey = (
    RSAPrivateKey | EllipticCurvePrivateKey | Ed25519PrivateKey | Ed448PrivateKey
)


def get_error_response(status: OCSPResponseStatus) -> bytes:
    return OCSPResponseBuilder.build_unsuccessful(status).public_bytes(Encoding.DER)


UNAUTHORIZED_RESPONSE = get_error_response(OCSPResponseStatus.UNAUTHORIZED)


def get_public_key_bit_string(public_key: CertificatePublicKeyTypes) -> bytes:
    """
    Returns the content of the subjectPublicKey BIT STRING,
    which is what the issuerKeyHash in OCSP is calculated over.
    """
    match public_key:
        case RSAPublicKey():
            return public_key.public_bytes(Encoding.DER, PublicFormat.PKCS1)
        case EllipticCurvePublicKey():
            return public_key.public_bytes(
                Encoding.X962, PublicFormat.UncompressedPoint
            )
        case Ed25519PublicKey() | Ed448PublicKey():
            return public_key.public_bytes(Encoding.Raw, PublicFormat.Raw)
        case _:
            raise ValueError(f"Unsupported key type: {type(public_key)}")


def check_ca_public_key(ca_cert: x509.Certificate) -> None:
    """
    Raises ValueError if we can't calculate the issuer key hash for
    the CA, either because the key type is unsupported or because the
    certificate encodes the key differently from us (e.g. a compressed
    EC point), in which case the hashes would never match.
    """
    public_key = ca_cert.public_key()
    get_public_key_bit_string(public_key)
    spki = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    if spki not in ca_cert.public_bytes(Encoding.DER):
        raise ValueError("Unsupported encoding of the CA public key")


def get_issuer_key_hash(issuer: x509.Certificate, algorithm: HashAlgorithm) -> bytes:
    key_hash = Hash(algorithm)
    key_hash.update(get_public_key_bit_string(issuer.public_key()))
    return key_hash.finalize()


def get_issuer_name_hash(issuer: x509.Certificate, algorithm: HashAlgorithm) -> bytes:
    name_hash = Hash(algorithm)
    name_hash.update(issuer.subject.public_bytes())
    return name_hash.finalize()


@frozen
class ResponderIdentity:
    """The certificate and key used to sign all OCSP responses"""

    cert: x509.Certificate
    private_key: SigningKey

    @classmethod
    def load(cls, cert_path: Path, key_path: Path) -> ResponderIdentity:
        try:
            cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
        except OSError as error:
            raise ConfigurationError(
                f"Could not read responder certificate data: {error}"
            ) from error
        except ValueError as error:
            raise ConfigurationError(
                f"Could not parse responder certificate: {error}"
            ) from error

        try:
            private_key = load_pem_private_key(key_path.read_bytes(), password=None)
        except OSError as error:
            raise ConfigurationError(
                f"Could not read responder key data: {error}"
            ) from error
        except (ValueError, TypeError, UnsupportedAlgorithm) as error:
            raise ConfigurationError(
                f"Could not parse responder key: {error}"
            ) from error

        if not isinstance(private_key, SigningKey):
            raise ConfigurationError(
                f"Unsupported responder key type: {type(private_key)}"
            )

        if private_key.public_key() != cert.public_key():
            raise ConfigurationError(
                "Responder key does not match the responder certificate"
            )

        logger.info(
            "Loaded responder certificate '%s' from '%s'",
            cert.subject.rfc4514_string(),
            cert_path,
        )
        return cls(cert, private_key)

    @property
    def signature_hash_algorithm(self) -> HashAlgorithm | None:
        match self.private_key:
            case Ed25519PrivateKey() | Ed448PrivateKey():
                return None
            case _:
                return SHA256()


@frozen
class ResponseBuilder:
    """
    Builds signed OCSP responses on behalf of one CA,
    using the shared responder identity.
    """

    ca_cert: x509.Certificate
    identity: ResponderIdentity

    def build_good(self, serial_number: int, algorithm: HashAlgorithm) -> bytes:
        this_update = datetime_now_utc()
        return self._build(
            serial_number,
            algorithm,
            OCSPCertStatus.GOOD,
            this_update,
            next_update=this_update + GOOD_RESPONSE_LIFETIME,
            revocation_time=None,
        )

    def build_revoked(
        self, serial_number: int, algorithm: HashAlgorithm, revoked_at: datetime
    ) -> bytes:
        return self._build(
            serial_number,
            algorithm,
            OCSPCertStatus.REVOKED,
            datetime_now_utc(),
            next_update=None,
            revocation_time=revoked_at,
        )

    @performance_log(id_param=1)
    def _build(
        self,
        serial_number: int,
        algorithm: HashAlgorithm,
        cert_status: OCSPCertStatus,
        this_update: datetime,
        *,
        next_update: datetime | None,
        revocation_time: datetime | None,
    ) -> bytes:
        resp_builder = (
            OCSPResponseBuilder()
            .add_response_by_hash(
                issuer_name_hash=get_issuer_name_hash(self.ca_cert, algorithm),
                issuer_key_hash=get_issuer_key_hash(self.ca_cert, algorithm),
                serial_number=serial_number,
                algorithm=algorithm,
                cert_status=cert_status,
                this_update=this_update,
                next_update=next_update,
                revocation_time=revocation_time,
                revocation_reason=(
                    x509.ReasonFlags.unspecified
                    if cert_status is OCSPCertStatus.REVOKED
                    else None
                ),
            )
            .responder_id(OCSPResponderEncoding.HASH, self.identity.cert)
            .certificates([self.identity.cert])
        )

        ocsp_response = resp_builder.sign(
            self.identity.private_key, self.identity.signature_hash_algorithm
        )
        return ocsp_response.public_bytes(Encoding.DER)
