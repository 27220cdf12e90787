"""In-memory Fabric CA server for httpx.MockTransport."""
from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


def _envelope(result=None, *, success=True, errors=None, status=200) -> httpx.Response:
    return httpx.Response(
        status,
        json={"success": success, "result": result, "errors": errors or [], "messages": []},
    )


class FakeFabricCa:
    """Enough of the Fabric CA REST API to enroll, register and remove identities."""

    def __init__(self, bootstrap: tuple[str, str] = ("admin", "adminpw"), ca_name: str = "Org1 CA") -> None:
        self.ca_name = ca_name
        self.key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.now(timezone.utc)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "fake-ca")])
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=1))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.key, hashes.SHA256())
        )
        self.secrets: dict[str, str] = {bootstrap[0]: bootstrap[1]}
        self.types: dict[str, str] = {bootstrap[0]: "client"}
        self.enrolled_certs: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.signed_payloads: list[str] = []
        self.fail_register_with: list[str] = []

    @property
    def cert_pem(self) -> bytes:
        return self.cert.public_bytes(serialization.Encoding.PEM)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/v1/cainfo":
            return _envelope({"CAName": self.ca_name, "CAChain": base64.b64encode(self.cert_pem).decode()})
        if path == "/api/v1/enroll":
            return self._enroll(request)
        if path == "/api/v1/register":
            return self._register(request)
        if path.startswith("/api/v1/identities/") and request.method == "DELETE":
            return self._remove(request, path.rsplit("/", 1)[-1])
        return httpx.Response(404, text="not found")

    def _issue(self, csr: x509.CertificateSigningRequest) -> bytes:
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self.cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=1))
            .sign(self.key, hashes.SHA256())
        )
        return cert.public_bytes(serialization.Encoding.PEM)

    def _enroll(self, request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization", "")
        if not auth.startswith("Basic "):
            return _envelope(success=False, errors=[{"code": 20, "message": "missing basic auth"}], status=401)
        name, _, secret = base64.b64decode(auth[6:]).decode().partition(":")
        if self.secrets.get(name) != secret:
            return _envelope(success=False, errors=[{"code": 20, "message": "Authentication failure"}], status=401)
        body = json.loads(request.content)
        csr = x509.load_pem_x509_csr(body["certificate_request"].encode())
        pem = self._issue(csr)
        self.enrolled_certs[name] = pem
        return _envelope({"Cert": base64.b64encode(pem).decode(), "ServerInfo": {"CAName": self.ca_name}})

    def _verify_token(self, request: httpx.Request) -> str | None:
        """Return the caller's CN when the token is valid."""

        token = request.headers.get("Authorization", "")
        b64_cert, _, b64_sig = token.partition(".")
        if not b64_sig:
            return None
        cert_pem = base64.b64decode(b64_cert)
        cert = x509.load_pem_x509_certificate(cert_pem)
        uri = request.url.raw_path.decode()
        payload = ".".join(
            [
                request.method,
                base64.b64encode(uri.encode()).decode(),
                base64.b64encode(request.content).decode(),
                b64_cert,
            ]
        )
        signature = base64.b64decode(b64_sig)
        _, s = decode_dss_signature(signature)
        if s > P256_ORDER // 2:
            return None
        try:
            cert.public_key().verify(signature, payload.encode(), ec.ECDSA(hashes.SHA256()))
        except InvalidSignature:
            return None
        self.signed_payloads.append(payload)
        return cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value

    def _register(self, request: httpx.Request) -> httpx.Response:
        if self._verify_token(request) is None:
            return _envelope(success=False, errors=[{"code": 71, "message": "Authorization failure"}], status=401)
        if self.fail_register_with:
            message = self.fail_register_with.pop(0)
            return _envelope(success=False, errors=[{"code": 74, "message": message}], status=500)
        body = json.loads(request.content)
        name = body["id"]
        if name in self.secrets:
            message = f"Identity '{name}' is already registered"
            return _envelope(success=False, errors=[{"code": 74, "message": message}], status=500)
        secret = body.get("secret") or f"{name}-generated"
        self.secrets[name] = secret
        self.types[name] = body.get("type", "client")
        return _envelope({"secret": secret})

    def _remove(self, request: httpx.Request, name: str) -> httpx.Response:
        if self._verify_token(request) is None:
            return _envelope(success=False, errors=[{"code": 71, "message": "Authorization failure"}], status=401)
        if name not in self.secrets:
            return _envelope(success=False, errors=[{"code": 63, "message": f"{name} not found"}], status=404)
        self.secrets.pop(name)
        self.types.pop(name, None)
        return _envelope({"id": name, "type": "admin"})


