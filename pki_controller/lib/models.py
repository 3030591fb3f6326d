"""Data models for the PKI controller."""

import base64
import binascii
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import NotRequired, TypedDict

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.ec import EllipticCurvePrivateKey

from .cert_utils import is_expired, parse_certificate
from .errors import DecodeError


@dataclass(frozen=True)
class CACertificate:
    """Intermediate CA material: PEM certificate and its P-256 private key.

    Replaced wholesale on renewal, never mutated.
    """

    certificate_pem: str
    private_key: EllipticCurvePrivateKey

    def certificate(self) -> x509.Certificate:
        """Parse and return the CA certificate."""
        return parse_certificate(self.certificate_pem)

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True if the certificate is past notAfter or unparseable."""
        return is_expired(self.certificate_pem, now)


class ObjectMeta(TypedDict, total=False):
    name: str
    namespace: str
    uid: str
    resourceVersion: str


class PodCertificateRequestSpec(TypedDict, total=False):
    podUID: str
    podName: str
    pkixPublicKey: str
    maxExpirationSeconds: int
    signerName: str


class Condition(TypedDict):
    """Status condition record written by the reconciler."""

    type: str
    status: str
    reason: str
    message: str
    lastTransitionTime: str


class PodCertificateRequestStatus(TypedDict, total=False):
    certificateChain: str
    notBefore: str
    notAfter: str
    beginRefreshAt: str
    conditions: list[Condition]


class PodCertificateRequestObject(TypedDict):
    """certificates.k8s.io/v1alpha1 PodCertificateRequest as returned by the API."""

    metadata: ObjectMeta
    spec: PodCertificateRequestSpec
    status: NotRequired[PodCertificateRequestStatus]


@dataclass(frozen=True)
class CertificateRequest:
    """Read-only view of the request fields the reconciler consumes."""

    name: str | None
    namespace: str | None
    pod_uid: str
    pod_name: str
    pkix_public_key: bytes
    max_expiration_seconds: int | None
    certificate_chain: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or "unknown"

    @staticmethod
    def is_issued_object(obj: PodCertificateRequestObject) -> bool:
        """Return True if the raw API object already carries a certificate chain."""
        return bool((obj.get("status") or {}).get("certificateChain"))

    @classmethod
    def from_object(cls, obj: PodCertificateRequestObject) -> "CertificateRequest":
        """Decode an API object into a CertificateRequest.

        Raises:
            DecodeError: If spec.pkixPublicKey is not valid base64
        """
        metadata = obj.get("metadata", {})
        spec = obj.get("spec", {})
        status = obj.get("status") or {}

        raw_key = spec.get("pkixPublicKey", "")
        try:
            public_key = base64.b64decode(raw_key, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError("spec.pkixPublicKey is not valid base64") from e

        return cls(
            name=metadata.get("name"),
            namespace=metadata.get("namespace"),
            pod_uid=spec.get("podUID", ""),
            pod_name=spec.get("podName", ""),
            pkix_public_key=public_key,
            max_expiration_seconds=spec.get("maxExpirationSeconds"),
            certificate_chain=status.get("certificateChain"),
        )


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of one reconciliation: when to run again and whether status was written."""

    requeue_after: timedelta
    patched: bool = False
