"""Intermediate CA manager: lazy bootstrap, renewal and leaf signing."""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

from cryptography import x509

from .bao_client import BaoClient
from .cert_utils import (
    build_csr,
    certificate_matches_key,
    generate_private_key,
    get_certificate_serial_hex,
    get_common_name,
    is_expired,
    parse_certificate,
    serialize_csr,
)
from .certificate_builder import CertificateBuilder, pod_common_name
from .config import ControllerConfig
from .errors import CSRCreateError, DecodeError, SigningError, VaultRequestFailed
from .logging_config import LOGGER
from .models import CACertificate, CertificateRequest

# Attempts at signing before giving up when the CA expires between check and use
MAX_SIGN_ATTEMPTS = 2


class _ReadWriteLock:
    """Many concurrent readers or one writer, with writers preferred.

    A writer holds the underlying lock for its whole critical section, so new
    readers and writers block until it is done. While a writer waits for
    in-flight readers to drain, new readers queue behind it.
    """

    def __init__(self) -> None:
        self._read_ready = threading.Condition(threading.Lock())
        self._readers = 0
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._read_ready:
            while self._writers_waiting > 0:
                self._read_ready.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._read_ready:
                self._readers -= 1
                if self._readers == 0:
                    self._read_ready.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._read_ready:
            self._writers_waiting += 1
            try:
                while self._readers > 0:
                    self._read_ready.wait()
            finally:
                self._writers_waiting -= 1
            try:
                yield
            finally:
                self._read_ready.notify_all()


class IntermediateCA:
    """Owns the single in-memory intermediate CA and signs leaf certificates with it.

    Nothing happens on construction: the CA is issued from the backend when the
    first leaf is requested, and re-issued with a fresh key pair once expired.
    At most one issuance is in flight at any time.
    """

    def __init__(
        self,
        bao_client: BaoClient,
        config: ControllerConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize CA manager.

        Args:
            bao_client: Backend client used to sign the intermediate CSR
            config: Controller configuration (TTL, CN, leaf validity)
            clock: Returns the current UTC time, injectable for tests
        """
        self.bao = bao_client
        self.config = config
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = _ReadWriteLock()
        self._ca: CACertificate | None = None

    def current(self) -> CACertificate | None:
        """Return the installed CA, which may be absent or expired."""
        with self._lock.read_locked():
            return self._ca

    def ensure_valid(self) -> CACertificate:
        """Return a non-expired CA, bootstrapping or renewing it first if needed.

        Callers that observed an absent or expired CA re-check after taking the
        write lock, so concurrent callers trigger exactly one backend call.

        Raises:
            CSRCreateError: If the key pair or CSR cannot be generated
            VaultRequestFailed: If the backend call fails or returns unusable data
        """
        with self._lock.read_locked():
            ca = self._ca
            if ca is not None and not ca.is_expired(self._clock()):
                return ca

        with self._lock.write_locked():
            ca = self._ca
            if ca is None:
                LOGGER.info("issuing intermediate CA certificate")
            elif ca.is_expired(self._clock()):
                LOGGER.info("renewing intermediate CA certificate")
            else:
                return ca

            self._ca = self._issue_ca_certificate()
            return self._ca

    def sign_for(self, request: CertificateRequest) -> x509.Certificate:
        """Sign a leaf certificate for a pod certificate request.

        Raises:
            PKIControllerError: Any bootstrap, renewal or signing failure
        """
        common_name = pod_common_name(request.namespace or "default", request.pod_name)

        for _ in range(MAX_SIGN_ATTEMPTS):
            self.ensure_valid()
            with self._lock.read_locked():
                ca = self._ca
                if ca is None or ca.is_expired(self._clock()):
                    continue
                return CertificateBuilder.build_leaf_certificate(
                    requester_public_key=request.pkix_public_key,
                    ca_certificate_pem=ca.certificate_pem,
                    ca_key=ca.private_key,
                    common_name=common_name,
                    now=self._clock(),
                    validity=self.config.leaf_validity,
                )

        raise SigningError("no valid intermediate CA available")

    def _issue_ca_certificate(self) -> CACertificate:
        """Generate a fresh key pair and CSR and have the backend sign it.

        Must be called with the write lock held.
        """
        LOGGER.debug("generating CA key pair")
        try:
            key = generate_private_key()
        except ValueError as e:
            raise CSRCreateError("failed to generate CA key pair") from e

        common_name = self.config.ca_common_name()
        csr = build_csr(key, common_name)

        certificate_pem = self.bao.sign_intermediate(
            csr_pem=serialize_csr(csr),
            common_name=common_name,
            ttl=self.config.intermediate_ttl,
        )

        try:
            cert = parse_certificate(certificate_pem)
        except DecodeError as e:
            raise VaultRequestFailed("backend returned an unparseable certificate") from e
        if not certificate_matches_key(cert, key):
            raise VaultRequestFailed("backend certificate does not match the CSR key pair")
        if is_expired(cert, self._clock()):
            raise VaultRequestFailed("backend returned an already expired certificate")

        LOGGER.info(
            "Intermediate CA certificate issued from backend: CN=%s, serial %s, expires %s",
            get_common_name(cert.subject),
            get_certificate_serial_hex(cert),
            cert.not_valid_after_utc.isoformat(),
        )
        return CACertificate(certificate_pem=certificate_pem, private_key=key)
