from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime
from email.utils import format_datetime
from hashlib import sha256
from urllib.parse import unquote

from cryptography.x509.ocsp import (
    OCSPRequest,
    OCSPResponseStatus,
    load_der_ocsp_request,
    load_der_ocsp_response,
)

from .errors import MalformedRequestError
from .utils import datetime_now_utc

logger = logging.getLogger(__name__)

OCSP_RESPONSE_CONTENT_TYPE = "application/ocsp-response"
OCSP_REQUEST_CONTENT_TYPE = "application/ocsp-request"

# Same limit as the cfssl responder.
MAX_REQUEST_SIZE = 10000


def _load_ocsp_request(raw_request: bytes) -> OCSPRequest:
    try:
        ocsp_request = load_der_ocsp_request(raw_request)
    except (ValueError, NotImplementedError) as error:
        # NotImplementedError is raised for requests
        # with more than one certificate in them.
        raise MalformedRequestError(f"Could not parse OCSP request: {error}") from error

    logger.debug("Decoded OCSP request for serial %s", ocsp_request.serial_number)
    return ocsp_request


def decode_get_request(path: str) -> OCSPRequest:
    """
    Decodes an OCSP request sent as base64 in the URL path.

    Clients are sloppy with this, so the base64 can be percent
    encoded, URL-safe, without padding and have an extra slash
    in front of it. A '+' that was turned into a space by
    someone along the way is turned back into a '+'.
    """
    b64_request = unquote(path).replace(" ", "+").lstrip("/")
    if not b64_request:
        raise MalformedRequestError("Empty OCSP request in URL path")

    b64_request = b64_request.replace("-", "+").replace("_", "/")
    b64_request += "=" * (-len(b64_request) % 4)
    try:
        raw_request = base64.b64decode(b64_request, validate=True)
    except binascii.Error as error:
        raise MalformedRequestError(
            f"Could not base64 decode OCSP request: {error}"
        ) from error

    return _load_ocsp_request(raw_request)


def decode_post_request(body: bytes) -> OCSPRequest:
    if len(body) > MAX_REQUEST_SIZE:
        raise MalformedRequestError(
            f"OCSP request too large: {len(body)} > {MAX_REQUEST_SIZE} bytes"
        )
    if not body:
        raise MalformedRequestError("Empty OCSP request body")
    return _load_ocsp_request(body)


def _http_date(value: datetime) -> str:
    return format_datetime(value, usegmt=True)


def get_response_headers(
    response: bytes, now: datetime | None = None
) -> dict[str, str]:
    """
    HTTP caching headers for a signed OCSP response, as recommended
    by RFC 5019. Unsuccessful responses don't get any.
    """
    ocsp_response = load_der_ocsp_response(response)
    if ocsp_response.response_status != OCSPResponseStatus.SUCCESSFUL:
        return {}

    if now is None:
        now = datetime_now_utc()

    headers = {
        "Last-Modified": _http_date(ocsp_response.this_update_utc),
        "ETag": f'"{sha256(response).hexdigest().upper()}"',
    }

    next_update = ocsp_response.next_update_utc
    if next_update is not None:
        max_age = max(int((next_update - now).total_seconds()), 0)
        headers["Expires"] = _http_date(next_update)
        headers["Cache-Control"] = (
            f"max-age={max_age}, public, no-transform, must-revalidate"
        )

    return headers
