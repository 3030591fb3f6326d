"""Test fixtures for pki_controller tests."""

import base64
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from pki_controller.lib.cert_utils import generate_private_key, generate_serial_number
from pki_controller.lib.config import ControllerConfig
from pki_controller.lib.models import PodCertificateRequestObject


class FrozenClock:
    """Settable UTC clock shared by the CA manager, reconciler and fake backend."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def _parse_ttl_hours(ttl: str) -> timedelta:
    return timedelta(hours=int(ttl.rstrip("h")))


def build_root_ca(key: ec.EllipticCurvePrivateKey, not_before: datetime) -> x509.Certificate:
    """Build a self-signed P-256 root CA valid for one year."""
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Root CA")])
    return (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(generate_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=365))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )


def sign_intermediate_csr(
    csr: x509.CertificateSigningRequest,
    root_cert: x509.Certificate,
    root_key: ec.EllipticCurvePrivateKey,
    not_before: datetime,
    lifetime: timedelta,
) -> x509.Certificate:
    """Sign a CSR as an intermediate CA the way the PKI backend does."""
    return (
        x509.CertificateBuilder()
        .subject_name(csr.subject)
        .issuer_name(root_cert.subject)
        .public_key(csr.public_key())
        .serial_number(generate_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + lifetime)
        .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
        .sign(root_key, hashes.SHA256())
    )


class FakeBaoClient:
    """In-process stand-in for BaoClient that signs CSRs with a local root CA."""

    def __init__(
        self,
        root_cert: x509.Certificate,
        root_key: ec.EllipticCurvePrivateKey,
        clock: FrozenClock,
    ) -> None:
        self.root_cert = root_cert
        self.root_key = root_key
        self.clock = clock
        self.calls: list[tuple[str, str, str]] = []
        self.started = threading.Event()
        self.release = threading.Event()
        self.release.set()
        self.error: Exception | None = None
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def sign_intermediate(self, csr_pem: str, common_name: str, ttl: str = "168h") -> str:
        with self._lock:
            self.calls.append((csr_pem, common_name, ttl))
        self.started.set()
        self.release.wait(timeout=10)
        if self.error is not None:
            raise self.error

        csr = x509.load_pem_x509_csr(csr_pem.encode("ascii"))
        cert = sign_intermediate_csr(
            csr,
            self.root_cert,
            self.root_key,
            not_before=self.clock() - timedelta(minutes=1),
            lifetime=_parse_ttl_hours(ttl),
        )
        return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture
def clock() -> FrozenClock:
    """Return a clock frozen at a fixed instant (whole seconds)."""
    return FrozenClock(datetime.now(UTC).replace(microsecond=0))


@pytest.fixture
def root_key() -> ec.EllipticCurvePrivateKey:
    """Generate P-256 key for the test root CA."""
    return generate_private_key()


@pytest.fixture
def root_cert(root_key: ec.EllipticCurvePrivateKey, clock: FrozenClock) -> x509.Certificate:
    """Generate self-signed root CA certificate."""
    return build_root_ca(root_key, clock() - timedelta(days=1))


@pytest.fixture
def intermediate_key() -> ec.EllipticCurvePrivateKey:
    """Generate P-256 key for the intermediate CA."""
    return generate_private_key()


@pytest.fixture
def intermediate_cert(
    intermediate_key: ec.EllipticCurvePrivateKey,
    root_cert: x509.Certificate,
    root_key: ec.EllipticCurvePrivateKey,
    clock: FrozenClock,
) -> x509.Certificate:
    """Generate a 7-day intermediate CA certificate signed by the root."""
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "ca-host-01")]))
        .sign(intermediate_key, hashes.SHA256())
    )
    return sign_intermediate_csr(
        csr, root_cert, root_key, not_before=clock() - timedelta(minutes=1),
        lifetime=timedelta(hours=168),
    )


@pytest.fixture
def intermediate_cert_pem(intermediate_cert: x509.Certificate) -> str:
    """Return the intermediate CA certificate as PEM text."""
    return intermediate_cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


@pytest.fixture
def requester_key() -> ec.EllipticCurvePrivateKey:
    """Generate the pod's key pair."""
    return generate_private_key()


@pytest.fixture
def requester_spki(requester_key: ec.EllipticCurvePrivateKey) -> bytes:
    """Return the pod's public key as SubjectPublicKeyInfo DER."""
    return requester_key.public_key().public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture
def controller_config() -> ControllerConfig:
    """Return configuration with a fixed CA common name."""
    return ControllerConfig(bao_addr="http://bao.test:8200", common_name="ca-host-01")


@pytest.fixture
def fake_bao(
    root_cert: x509.Certificate,
    root_key: ec.EllipticCurvePrivateKey,
    clock: FrozenClock,
) -> FakeBaoClient:
    """Return fake backend client signing with the test root."""
    return FakeBaoClient(root_cert, root_key, clock)


@pytest.fixture
def make_pcr(requester_spki: bytes) -> Callable[..., PodCertificateRequestObject]:
    """Return factory for PodCertificateRequest API objects."""

    def _make(
        name: str | None = "worker-1-pcr",
        namespace: str | None = "demo",
        pod_name: str = "worker-1",
        max_expiration_seconds: int | None = 7200,
        status: dict | None = None,
        public_key: bytes | None = None,
    ) -> PodCertificateRequestObject:
        metadata: dict = {"uid": "pcr-uid-1"}
        if name is not None:
            metadata["name"] = name
        if namespace is not None:
            metadata["namespace"] = namespace
        spec: dict = {
            "podUID": "pod-uid-1",
            "podName": pod_name,
            "pkixPublicKey": base64.b64encode(
                requester_spki if public_key is None else public_key
            ).decode("ascii"),
            "signerName": "example.com/openbao",
        }
        if max_expiration_seconds is not None:
            spec["maxExpirationSeconds"] = max_expiration_seconds
        obj: dict = {"metadata": metadata, "spec": spec}
        if status is not None:
            obj["status"] = status
        return obj  # type: ignore[return-value]

    return _make
