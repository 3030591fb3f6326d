"""Certificate builder for short-lived pod leaf certificates."""

import secrets
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from .cert_utils import generate_serial_number, parse_certificate, parse_public_key
from .errors import (
    DecodeError,
    InvalidCACertificate,
    InvalidPublicKey,
    SigningError,
    UnsupportedKeyType,
)
from .logging_config import LOGGER

LEAF_VALIDITY = timedelta(hours=24)
PLACEHOLDER_COMMON_NAME = "pod-certificate"


def pod_common_name(namespace: str, pod_name: str) -> str:
    """Return the leaf subject CN for a pod: system:pod:<namespace>:<pod_name>."""
    return f"system:pod:{namespace}:{pod_name}"


def _subject_name(common_name: str) -> x509.Name:
    """Return CN=<common_name>, or CN=pod-certificate when it cannot be encoded."""
    try:
        return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    except ValueError:
        if common_name:
            LOGGER.warning("Invalid common name %r, using %s", common_name, PLACEHOLDER_COMMON_NAME)
        return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, PLACEHOLDER_COMMON_NAME)])


class CertificateBuilder:
    """Builds leaf certificates signed by the in-memory intermediate CA."""

    @staticmethod
    def build_leaf_certificate(
        requester_public_key: bytes,
        ca_certificate_pem: str,
        ca_key: ec.EllipticCurvePrivateKey,
        common_name: str,
        now: datetime | None = None,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
        validity: timedelta = LEAF_VALIDITY,
    ) -> x509.Certificate:
        """Build a leaf certificate for a requester's public key, signed by the CA.

        The leaf has no key agreement or key encipherment usage, CA:FALSE, and a
        validity window of [now, now + validity). An empty common_name is
        replaced by the placeholder CN=pod-certificate.

        Args:
            requester_public_key: SubjectPublicKeyInfo DER of the requester
            ca_certificate_pem: Intermediate CA certificate (issuer)
            ca_key: Intermediate CA private key for signing (P-256)
            common_name: Subject CN of the leaf
            now: Signing instant (defaults to current UTC time)
            random_bytes: Randomness source for the serial number
            validity: Lifetime of the leaf

        Returns:
            X.509 end-entity certificate signed by the intermediate CA

        Raises:
            InvalidPublicKey: If requester_public_key is not SPKI DER
            InvalidCACertificate: If ca_certificate_pem cannot be parsed
            UnsupportedKeyType: If ca_key is not on the P-256 curve
            SigningError: If the certificate cannot be built or signed
        """
        LOGGER.debug("Signing certificate for CN=%s", common_name)

        try:
            public_key = parse_public_key(requester_public_key)
        except DecodeError as e:
            raise InvalidPublicKey("failed to parse requester public key as SPKI") from e

        try:
            ca_cert = parse_certificate(ca_certificate_pem)
        except DecodeError as e:
            raise InvalidCACertificate("failed to parse CA certificate from PEM") from e

        if not isinstance(ca_key, ec.EllipticCurvePrivateKey) or not isinstance(
            ca_key.curve, ec.SECP256R1
        ):
            raise UnsupportedKeyType("CA key must be an elliptic curve P-256 key")

        subject = _subject_name(common_name)

        # X.509 time has second precision
        not_before = (now or datetime.now(UTC)).replace(microsecond=0)
        not_after = not_before + validity

        try:
            builder = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(ca_cert.subject)
                .public_key(public_key)
                .serial_number(generate_serial_number(random_bytes))
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(
                    x509.BasicConstraints(ca=False, path_length=None),
                    critical=True,
                )
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=True,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(
                    x509.SubjectKeyIdentifier.from_public_key(public_key),
                    critical=False,
                )
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                    critical=False,
                )
            )
            return builder.sign(ca_key, hashes.SHA256(), ecdsa_deterministic=True)
        except (ValueError, TypeError) as e:
            raise SigningError(f"certificate signing failed: {e}") from e
