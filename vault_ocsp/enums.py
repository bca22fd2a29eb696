from enum import Enum


class CertificateStatus(Enum):
    GOOD = "good"
    REVOKED = "revoked"
    EXPIRED = "expired"
    INDETERMINATE = "indeterminate"

    @property
    def is_terminal(self) -> bool:
        return self in {CertificateStatus.REVOKED, CertificateStatus.EXPIRED}


class HttpMethod(Enum):
    GET = "GET"
    POST = "POST"
