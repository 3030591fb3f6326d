"""Certificate codec: key generation, PEM/DER/SPKI parsing and serialization, expiry."""

import secrets
from collections.abc import Callable
from datetime import UTC, datetime

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.types import PublicKeyTypes
from cryptography.x509.oid import NameOID

from .errors import CSRCreateError, DecodeError, EncodeError

SERIAL_NUMBER_BYTES = 8


def generate_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate an elliptic curve P-256 private key."""
    return ec.generate_private_key(ec.SECP256R1())


def parse_certificate(pem: str | bytes) -> x509.Certificate:
    """Parse a PEM encoded X.509 certificate.

    Raises:
        DecodeError: If the input is not a PEM certificate
    """
    data = pem.encode("ascii") if isinstance(pem, str) else pem
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise DecodeError("certificate is not valid PEM") from e


def encode_pem(cert: x509.Certificate) -> str:
    """Encode a certificate as PEM text with LF line endings.

    Raises:
        EncodeError: If the certificate cannot be serialized
    """
    try:
        return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")
    except ValueError as e:
        raise EncodeError("certificate could not be encoded to PEM") from e


def is_expired(cert: x509.Certificate | str | bytes, now: datetime | None = None) -> bool:
    """Return True if the certificate's notAfter is before now.

    PEM input that fails to parse is treated as expired.
    """
    if not isinstance(cert, x509.Certificate):
        try:
            cert = parse_certificate(cert)
        except DecodeError:
            return True
    now = now or datetime.now(UTC)
    return cert.not_valid_after_utc < now


def parse_public_key(spki_der: bytes) -> PublicKeyTypes:
    """Parse SubjectPublicKeyInfo DER bytes into a public key.

    No other encodings are attempted.

    Raises:
        DecodeError: If the bytes are not a supported SPKI structure
    """
    try:
        return serialization.load_der_public_key(spki_der)
    except UnsupportedAlgorithm as e:
        raise DecodeError(f"public key algorithm not supported: {e}") from e
    except (ValueError, TypeError) as e:
        raise DecodeError("public key is not valid SubjectPublicKeyInfo DER") from e


def generate_serial_number(random_bytes: Callable[[int], bytes] = secrets.token_bytes) -> int:
    """Generate a serial number from 8 random bytes read as an unsigned 64-bit integer.

    Args:
        random_bytes: Source of randomness, injectable for deterministic tests

    Returns:
        Integer serial number for x509.CertificateBuilder.serial_number()
    """
    return int.from_bytes(random_bytes(SERIAL_NUMBER_BYTES), "big", signed=False)


def get_certificate_serial_hex(cert: x509.Certificate) -> str:
    """Return certificate serial number as hex with colons (e.g., 3A:F2:B1:...)."""
    serial_hex = f"{cert.serial_number:X}"
    if len(serial_hex) % 2 != 0:
        serial_hex = "0" + serial_hex
    return ":".join(serial_hex[i : i + 2] for i in range(0, len(serial_hex), 2))


def get_common_name(name: x509.Name) -> str:
    """Return the first CN of a name, or an empty string when it has none."""
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not attributes:
        return ""
    value = attributes[0].value
    return value if isinstance(value, str) else value.decode("utf-8")


def build_csr(
    key: ec.EllipticCurvePrivateKey, common_name: str
) -> x509.CertificateSigningRequest:
    """Build a CSR with subject CN and a matching DNS subject alternative name.

    Raises:
        CSRCreateError: If the CSR cannot be built or signed
    """
    try:
        return (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(common_name)]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError) as e:
        raise CSRCreateError(f"failed to build CSR for {common_name!r}") from e


def serialize_csr(csr: x509.CertificateSigningRequest) -> str:
    """Serialize CSR to PEM text."""
    return csr.public_bytes(serialization.Encoding.PEM).decode("ascii")


def certificate_matches_key(cert: x509.Certificate, key: ec.EllipticCurvePrivateKey) -> bool:
    """Return True if the certificate carries the public half of key."""
    public_key = cert.public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        return False
    return public_key.public_numbers() == key.public_key().public_numbers()
