import base64
import re

import pytest
from cryptography import x509
from fastapi.testclient import TestClient

from app import create_app
from client import ClientConfig, ClientError, OTSClient
from conftest import DOMAIN, make_csr_der
from provisioning import crypto_utils
from provisioning.dns_records import A_RECORD

CLIENT_ID = "11111111-1111-1111-1111-111111111111"
HOSTNAME_RE = re.compile(r"^[a-z]+-[a-z]+\." + re.escape(DOMAIN) + "$")


@pytest.fixture
def http(service):
    with TestClient(create_app(service)) as client:
        yield client


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def register(http, client_id=CLIENT_ID, ip="10.0.0.5"):
    return http.post("/register", json={"clientID": client_id, "ip": ip})


def test_register_then_get_certificate(http, dns_provider):
    response = register(http)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    hostname = body["hostname"]
    assert HOSTNAME_RE.match(hostname)
    assert dns_provider.contents(A_RECORD, hostname) == ["10.0.0.5"]

    response = http.post(
        "/get_certificate",
        json={"clientID": CLIENT_ID, "csr": b64(make_csr_der(hostname))},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    chain = [base64.b64decode(cert) for cert in body["certificates"]]
    leaf = x509.load_der_x509_certificate(chain[0])
    assert crypto_utils.certificate_dns_names(leaf) == [hostname]


def test_duplicate_registration_conflicts(http, store):
    assert register(http).status_code == 200

    response = register(http, ip="10.0.0.6")
    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "message": "The client with provided UUID is already registered",
    }
    assert store.count() == 1


@pytest.mark.parametrize(
    "client_id, ip",
    [
        ("not-a-uuid", "10.0.0.5"),
        (CLIENT_ID, "8.8.8.8"),
        (CLIENT_ID, "not-an-ip"),
    ],
)
def test_invalid_registrations(http, store, client_id, ip):
    response = register(http, client_id, ip)

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert store.count() == 0


def test_malformed_json(http):
    response = http.post(
        "/register", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_missing_fields(http):
    response = http.post("/register", json={"clientID": CLIENT_ID})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_client(http):
    response = http.post(
        "/get_certificate",
        json={"clientID": CLIENT_ID, "csr": b64(make_csr_der(f"x.{DOMAIN}"))},
    )
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_csr_for_another_hostname_is_refused(http):
    register(http)

    response = http.post(
        "/get_certificate",
        json={"clientID": CLIENT_ID, "csr": b64(make_csr_der(f"victim.{DOMAIN}"))},
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_csr_that_is_not_base64(http):
    register(http)

    response = http.post(
        "/get_certificate", json={"clientID": CLIENT_ID, "csr": "***not base64***"}
    )
    assert response.status_code == 400


def test_dns_failure_is_retryable(http, dns_provider, store):
    dns_provider.fail_on.add("create")

    response = register(http)
    assert response.status_code == 503
    assert response.json()["success"] is False
    # The registration itself is kept
    assert store.count() == 1


def test_welcome_and_health(http):
    response = http.get("/")
    assert response.status_code == 200
    assert response.json() == f"Welcome to the OTS Certificate generator for {DOMAIN}"

    response = http.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["clients"] == 0


def test_service_not_available():
    with TestClient(create_app()) as client:
        assert client.get("/health").status_code == 503
        response = register(client)
        assert response.status_code == 503
        assert response.json()["success"] is False


def client_config(tmp_path):
    return ClientConfig(
        registration_url="http://testserver/register",
        certificate_url="http://testserver/get_certificate",
        cert_filename=str(tmp_path / "client.crt"),
        key_filename=str(tmp_path / "client.key"),
        csr_filename=str(tmp_path / "client.csr"),
        port=8444,
        interface=None,
    )


def test_reference_client_provisions_against_server(http, tmp_path):
    hostname = OTSClient(client_config(tmp_path), session=http).provision("10.0.0.8")

    assert HOSTNAME_RE.match(hostname)
    with open(tmp_path / "client.crt", "rb") as f:
        leaf = x509.load_pem_x509_certificates(f.read())[0]
    assert crypto_utils.certificate_dns_names(leaf) == [hostname]
    assert (tmp_path / "client.key").exists()
    assert (tmp_path / "client.csr").exists()


def test_reference_client_reports_server_errors(http, tmp_path):
    with pytest.raises(ClientError, match="not private"):
        OTSClient(client_config(tmp_path), session=http).provision("8.8.8.8")
