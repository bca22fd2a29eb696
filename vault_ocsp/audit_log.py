from types import TracebackType
from typing import Self

from starlette.requests import Request

from .errors import OcspRequestError, RoutingError
from .logging import audit_logger, correlation_id_var
from .source import OcspResult


class AuditLogger:
    """Writes one line to the audit log for each OCSP request"""

    def __init__(self, request: Request) -> None:
        self.request = request
        self.mount: str | None = None
        self.serial: int | None = None
        self.result: OcspResult | None = None

    def set_mount(self, mount: str) -> None:
        self.mount = mount

    def set_serial(self, serial: int) -> None:
        self.serial = serial

    def set_result(self, result: OcspResult) -> None:
        self.result = result

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        ex_type: type[BaseException] | None,
        value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        if not (ip := self.request.headers.get("X-Forwarded-For")):
            ip = self.request.client.host if self.request.client else "UNKNOWN"

        match value:
            case None if self.result is not None:
                result = self.result.status.value
                if self.result.from_cache:
                    result += "(CACHED)"
            case RoutingError():
                result = "NOT_FOUND"
            case OcspRequestError():
                result = "BAD_REQUEST"
            case _:
                result = "ERROR"

        audit_logger.info(
            "IP=%s METHOD=%s MOUNT='%s' SERIAL=%s RESULT=%s CORRELATION_ID=%s",
            ip,
            self.request.method,
            self.mount or "",
            self.serial if self.serial is not None else "",
            result,
            correlation_id_var.get(),
        )
