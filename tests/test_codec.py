from base64 import urlsafe_b64encode
from datetime import timedelta
from email.utils import parsedate_to_datetime
from hashlib import sha256
from urllib.parse import quote

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.serialization import Encoding
from cryptography.x509.ocsp import OCSPRequestBuilder, load_der_ocsp_response

from vault_ocsp.codec import (
    MAX_REQUEST_SIZE,
    decode_get_request,
    decode_post_request,
    get_response_headers,
)
from vault_ocsp.crypto import (
    UNAUTHORIZED_RESPONSE,
    ResponderIdentity,
    ResponseBuilder,
)
from vault_ocsp.errors import MalformedRequestError
from vault_ocsp.utils import datetime_now_utc
from tests.testlib import CertificateAuthority


class TestDecodeGetRequest:
    def test_standard_base64(self, ca: CertificateAuthority) -> None:
        ocsp_request = decode_get_request(ca.b64_ocsp_request(4095))
        assert ocsp_request.serial_number == 4095
        assert isinstance(ocsp_request.hash_algorithm, hashes.SHA1)

    def test_variants(self, ca: CertificateAuthority) -> None:
        # Find a serial whose request contains both '+' and '/' in base64
        serial_number = next(
            serial
            for serial in range(1, 100000)
            if "+" in ca.b64_ocsp_request(serial) and "/" in ca.b64_ocsp_request(serial)
        )
        raw_request = ca.raw_ocsp_request(serial_number)
        b64_request = ca.b64_ocsp_request(serial_number)

        variants = [
            b64_request,
            b64_request.rstrip("="),
            "/" + b64_request,
            quote(b64_request, safe=""),
            b64_request.replace("+", " "),
            urlsafe_b64encode(raw_request).decode(),
            urlsafe_b64encode(raw_request).decode().rstrip("="),
        ]
        for variant in variants:
            assert decode_get_request(variant).serial_number == serial_number, variant

    @pytest.mark.parametrize(
        "path", ["", "/", "!!!!", "MEIw", "aGVpIHDDpSBkZWc=", "a"]
    )
    def test_malformed(self, path: str) -> None:
        with pytest.raises(MalformedRequestError):
            decode_get_request(path)


class TestDecodePostRequest:
    def test_ok(self, ca: CertificateAuthority) -> None:
        assert decode_post_request(ca.raw_ocsp_request(100)).serial_number == 100

    def test_empty(self) -> None:
        with pytest.raises(MalformedRequestError):
            decode_post_request(b"")

    def test_garbage(self) -> None:
        with pytest.raises(MalformedRequestError):
            decode_post_request(b"\x30\x03\x02\x01\x01")

    def test_too_large(self, ca: CertificateAuthority) -> None:
        body = ca.raw_ocsp_request(100) + b"\x00" * MAX_REQUEST_SIZE
        with pytest.raises(MalformedRequestError) as error:
            decode_post_request(body)
        assert "too large" in str(error.value)

    def test_real_certificate(self, ca: CertificateAuthority) -> None:
        cert, _ = ca.generate_ee_cert("post.example.com")
        raw_request = (
            OCSPRequestBuilder()
            .add_certificate(cert, ca.cert, hashes.SHA256())
            .build()
            .public_bytes(Encoding.DER)
        )
        assert decode_post_request(raw_request).serial_number == cert.serial_number


class TestGetResponseHeaders:
    def test_good(
        self, ca: CertificateAuthority, responder: ResponderIdentity
    ) -> None:
        response = ResponseBuilder(ca.cert, responder).build_good(1, hashes.SHA1())
        ocsp_response = load_der_ocsp_response(response)
        now = ocsp_response.this_update_utc

        headers = get_response_headers(response, now)

        assert parsedate_to_datetime(headers["Last-Modified"]) == now
        assert parsedate_to_datetime(headers["Expires"]) == ocsp_response.next_update_utc
        assert headers["ETag"] == f'"{sha256(response).hexdigest().upper()}"'
        assert headers["Cache-Control"] == (
            "max-age=3600, public, no-transform, must-revalidate"
        )

    def test_expired_next_update(
        self, ca: CertificateAuthority, responder: ResponderIdentity
    ) -> None:
        response = ResponseBuilder(ca.cert, responder).build_good(1, hashes.SHA1())
        now = load_der_ocsp_response(response).this_update_utc + timedelta(hours=2)

        headers = get_response_headers(response, now)
        assert headers["Cache-Control"].startswith("max-age=0,")

    def test_revoked(
        self, ca: CertificateAuthority, responder: ResponderIdentity
    ) -> None:
        response = ResponseBuilder(ca.cert, responder).build_revoked(
            1, hashes.SHA1(), datetime_now_utc() - timedelta(days=1)
        )
        headers = get_response_headers(response)
        assert "Last-Modified" in headers
        assert "ETag" in headers
        assert "Expires" not in headers
        assert "Cache-Control" not in headers

    def test_unsuccessful(self) -> None:
        assert get_response_headers(UNAUTHORIZED_RESPONSE) == {}
