import pytest

from vault_ocsp.crypto import ResponderIdentity
from tests.testlib import CertificateAuthority


@pytest.fixture(scope="module")
def ca() -> CertificateAuthority:
    return CertificateAuthority.create("vault-ocsp test CA")


@pytest.fixture(scope="module")
def responder_ca() -> CertificateAuthority:
    return CertificateAuthority.create("vault-ocsp responder CA")


@pytest.fixture(scope="module")
def responder(responder_ca: CertificateAuthority) -> ResponderIdentity:
    return responder_ca.generate_responder()
