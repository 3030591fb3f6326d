"""Error taxonomy for the PKI controller.

Every error raised by the library derives from PKIControllerError. Library
exceptions are wrapped with ``raise ... from exc`` so the original cause stays
reachable through ``chain()``.
"""

from collections.abc import Iterator


class PKIControllerError(Exception):
    """Base error carrying an explicit chain of wrapped causes."""

    def chain(self) -> Iterator[BaseException]:
        """Yield this error followed by each wrapped cause, outermost first."""
        seen: set[int] = set()
        current: BaseException | None = self
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            yield current
            current = current.__cause__ or current.__context__

    def causes(self) -> list[BaseException]:
        """Return the wrapped causes without this error itself."""
        return list(self.chain())[1:]


class ConfigurationError(PKIControllerError):
    """Required startup configuration is missing or invalid."""


class StatusPatchFailed(PKIControllerError):
    """The orchestration API rejected the status merge patch."""


class MissingObjectKey(PKIControllerError):
    """A required field of the request object is absent."""

    def __init__(self, key: str) -> None:
        super().__init__(f"missing object key: {key}")
        self.key = key


class VaultRequestFailed(PKIControllerError):
    """The upstream PKI backend call failed or returned unusable data."""


class CSRCreateError(PKIControllerError):
    """Local key pair or CSR generation failed."""


class CodecError(PKIControllerError):
    """Encoding or decoding of certificate or key material failed."""


class DecodeError(CodecError):
    """Input could not be decoded as the expected PEM/DER structure."""


class EncodeError(CodecError):
    """A structure could not be encoded."""


class SigningError(PKIControllerError):
    """Building or signing a leaf certificate failed."""


class InvalidPublicKey(SigningError):
    """Requester public key is not valid SubjectPublicKeyInfo DER."""


class InvalidCACertificate(SigningError):
    """CA certificate PEM could not be parsed."""


class UnsupportedKeyType(SigningError):
    """CA key is not an elliptic curve P-256 key."""
