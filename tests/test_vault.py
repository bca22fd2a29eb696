import json
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
import pytest

from vault_ocsp.config import VaultConfig
from vault_ocsp.errors import AuthorityError, MalformedRecordError
from vault_ocsp.vault import RevocationRecord, VaultClient
from tests.testlib import CertificateAuthority, cert_to_pem


def _client(handler: Callable[[httpx.Request], httpx.Response]) -> VaultClient:
    return VaultClient(
        httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://vault:8200"
        )
    )


def _json_response(data: object) -> httpx.Response:
    return httpx.Response(
        200,
        headers={"Content-Type": "application/json"},
        content=json.dumps(data).encode(),
    )


class TestVaultClient:
    def test_create(self) -> None:
        client = VaultClient.create(
            VaultConfig(address="http://vault:8200", token="s.hemmelig")
        )
        assert client._client.headers["X-Vault-Token"] == "s.hemmelig"
        assert client._client.headers["User-Agent"] == "vault-ocsp"
        assert client._client.base_url.host == "vault"

    def test_create_without_token(self) -> None:
        client = VaultClient.create(VaultConfig(address="http://vault:8200"))
        assert "X-Vault-Token" not in client._client.headers

    async def test_get_ca(self, ca: CertificateAuthority) -> None:
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=ca.der)

        assert await _client(handler).get_ca("team/pki") == ca.der
        assert requests[0].url.path == "/v1/team/pki/ca"

    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, content=b"oops"),
            httpx.Response(404, content=b""),
            httpx.Response(200, content=b""),
        ],
    )
    async def test_get_ca_error(self, response: httpx.Response) -> None:
        with pytest.raises(AuthorityError):
            await _client(lambda _: response).get_ca("pki")

    async def test_get_ca_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(AuthorityError) as error:
            await _client(handler).get_ca("pki")
        assert "Connection refused" in str(error.value)

    async def test_get_cert_status_revoked(self, ca: CertificateAuthority) -> None:
        cert, _ = ca.generate_ee_cert("revoked.example.com", serial_number=4095)
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _json_response(
                {
                    "data": {
                        "certificate": cert_to_pem(cert),
                        "revocation_time": 1700000000,
                    }
                }
            )

        record = await _client(handler).get_cert_status("pki", "0f-ff")
        assert requests[0].url.path == "/v1/pki/cert/0f-ff"
        assert record.is_revoked
        assert record.revoked_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
        assert record.certificate == cert

    @pytest.mark.parametrize(
        "certificate", ["", "garbage", "-----BEGIN CERTIFICATE-----"]
    )
    async def test_get_cert_status_revoked_bad_certificate(
        self, certificate: str
    ) -> None:
        record = await _client(
            lambda _: _json_response(
                {"data": {"certificate": certificate, "revocation_time": 1700000000}}
            )
        ).get_cert_status("pki", "64")
        assert record.is_revoked
        assert record.revoked_at == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
        assert record.certificate is None

    async def test_get_cert_status_not_revoked(self, ca: CertificateAuthority) -> None:
        cert, _ = ca.generate_ee_cert("good.example.com")
        record = await _client(
            lambda _: _json_response(
                {"data": {"certificate": cert_to_pem(cert), "revocation_time": 0}}
            )
        ).get_cert_status("pki", "01")
        assert not record.is_revoked
        assert record.revoked_at is None
        assert record.revocation_time == 0
        assert record.certificate == cert

    @pytest.mark.parametrize("body", [{}, {"data": None}, {"data": {}}])
    async def test_get_cert_status_no_data(self, body: dict) -> None:
        record = await _client(lambda _: _json_response(body)).get_cert_status(
            "pki", "01"
        )
        assert record == RevocationRecord.empty()

    async def test_get_cert_status_not_found(self) -> None:
        record = await _client(
            lambda _: httpx.Response(404, json={"errors": []})
        ).get_cert_status("pki", "01")
        assert record == RevocationRecord.empty()

    @pytest.mark.parametrize(
        "content",
        [
            b"not json",
            b'{"data": {"revocation_time": "1700000000"}}',
            b'{"data": {"revocation_time": 1.5}}',
            b'{"data": {"revocation_time": true}}',
            b'{"data": {"certificate": "-----BEGIN CERTIFICATE-----", '
            b'"revocation_time": 0}}',
            b'{"data": {"certificate": "", "revocation_time": 0}}',
        ],
    )
    async def test_get_cert_status_malformed(self, content: bytes) -> None:
        with pytest.raises(MalformedRecordError):
            await _client(lambda _: httpx.Response(200, content=content)).get_cert_status(
                "pki", "01"
            )

    async def test_get_cert_status_server_error(self) -> None:
        with pytest.raises(AuthorityError) as error:
            await _client(lambda _: httpx.Response(503)).get_cert_status("pki", "01")
        assert "503" in str(error.value)
