from cryptography.x509.ocsp import OCSPResponseStatus


class VaultOcspError(Exception):
    """Superclass for all exceptions"""


class ConfigurationError(VaultOcspError):
    """vault-ocsp was configured incorrectly"""


class RoutingError(VaultOcspError):
    """The request path or method can't be mapped to a PKI mount"""

    http_code = 404


class MountNotFoundError(RoutingError):
    http_code = 404


class MethodNotAllowedError(RoutingError):
    http_code = 405


class MountInitializationError(VaultOcspError):
    """Could not set up the responder for a PKI mount"""


class AuthorityError(VaultOcspError):
    """Signifies that a read against Vault failed"""


class MalformedRecordError(AuthorityError):
    """Vault returned data we don't understand"""


class OcspRequestError(VaultOcspError):
    ocsp_status = OCSPResponseStatus.INTERNAL_ERROR
    http_code = 500


class MalformedRequestError(OcspRequestError):
    ocsp_status = OCSPResponseStatus.MALFORMED_REQUEST
    http_code = 400


class IssuerMismatchError(OcspRequestError):
    ocsp_status = OCSPResponseStatus.UNAUTHORIZED
    http_code = 400
