"""Reconciliation of PodCertificateRequest objects into issued certificates."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from cryptography import x509

from .ca_manager import IntermediateCA
from .cert_utils import encode_pem
from .config import ControllerConfig
from .errors import MissingObjectKey, PKIControllerError
from .k8s_client import PodCertificateRequestClient
from .logging_config import LOGGER, log_error_chain
from .models import (
    CertificateRequest,
    Condition,
    PodCertificateRequestObject,
    PodCertificateRequestStatus,
    ReconcileResult,
)

CONDITION_ISSUED = "Issued"
REASON_ISSUED = "CertificateIssuedSuccessfully"
MESSAGE_ISSUED = "Certificate issued successfully"


def format_time(value: datetime) -> str:
    """Format a datetime as an RFC 3339 UTC timestamp with second precision."""
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def compute_begin_refresh_at(
    now: datetime, max_expiration_seconds: int, refresh_margin: timedelta
) -> datetime:
    """Return when the requester should start refreshing: now + max lifetime - margin."""
    return now + timedelta(seconds=max_expiration_seconds) - refresh_margin


def build_issued_status(
    existing: PodCertificateRequestStatus,
    cert: x509.Certificate,
    max_expiration_seconds: int,
    now: datetime,
    refresh_margin: timedelta,
) -> PodCertificateRequestStatus:
    """Build the complete status for a freshly issued certificate.

    Existing status fields are kept; the certificate fields are set and one
    Issued condition is appended.
    """
    conditions: list[Condition] = list(existing.get("conditions", []))
    conditions.append(
        Condition(
            type=CONDITION_ISSUED,
            status="True",
            reason=REASON_ISSUED,
            message=MESSAGE_ISSUED,
            lastTransitionTime=format_time(now),
        )
    )

    status = PodCertificateRequestStatus(**existing)
    status["certificateChain"] = encode_pem(cert)
    status["notBefore"] = format_time(cert.not_valid_before_utc)
    status["notAfter"] = format_time(cert.not_valid_after_utc)
    status["beginRefreshAt"] = format_time(
        compute_begin_refresh_at(now, max_expiration_seconds, refresh_margin)
    )
    status["conditions"] = conditions
    return status


class Reconciler:
    """Maps one request to at most one signing call and one status patch."""

    def __init__(
        self,
        ca: IntermediateCA,
        requests_client: PodCertificateRequestClient,
        config: ControllerConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ca = ca
        self.requests = requests_client
        self.config = config
        self._clock = clock or (lambda: datetime.now(UTC))

    def reconcile(self, obj: PodCertificateRequestObject) -> ReconcileResult:
        """Issue a certificate for a request unless one was already issued.

        Returns:
            ReconcileResult with the success requeue interval

        Raises:
            PKIControllerError: If decoding, signing or the status patch fails
        """
        # Issued requests are not decoded again; a malformed public key must not fail them
        if CertificateRequest.is_issued_object(obj):
            LOGGER.debug(
                "Certificate already issued for PCR %s",
                obj.get("metadata", {}).get("name") or "unknown",
            )
            return ReconcileResult(requeue_after=self.config.success_requeue)

        request = CertificateRequest.from_object(obj)
        name = request.display_name

        LOGGER.debug("Reconciling PCR %s for pod %s", name, request.pod_uid)

        if not request.namespace:
            raise MissingObjectKey(".metadata.namespace")
        if not request.name:
            raise MissingObjectKey(".metadata.name")
        if request.max_expiration_seconds is None:
            raise MissingObjectKey(".spec.maxExpirationSeconds")

        LOGGER.info("Issuing certificate for pod %s (PCR: %s)", request.pod_uid, name)
        try:
            cert = self.ca.sign_for(request)
        except PKIControllerError as e:
            log_error_chain(LOGGER, e, f"Failed to sign certificate for PCR {name}")
            raise

        LOGGER.debug("Certificate signed successfully for PCR %s", name)

        status = build_issued_status(
            existing=obj.get("status") or {},
            cert=cert,
            max_expiration_seconds=request.max_expiration_seconds,
            now=self._clock(),
            refresh_margin=self.config.refresh_margin,
        )

        LOGGER.debug("Patching status for PCR %s (pod %s)", name, request.pod_uid)
        try:
            self.requests.patch_status(request.name, request.namespace, status)
        except PKIControllerError as e:
            log_error_chain(LOGGER, e, f"Failed to patch status for PCR {name}")
            raise

        LOGGER.info(
            "Successfully issued certificate for pod %s (PCR: %s)", request.pod_uid, name
        )
        return ReconcileResult(requeue_after=self.config.success_requeue, patched=True)

    def error_policy(self, obj: PodCertificateRequestObject, error: Exception) -> timedelta:
        """Return the requeue interval after a failed reconciliation (retried forever)."""
        name = obj.get("metadata", {}).get("name") or "unknown"
        LOGGER.warning("Reconciliation error for PCR %s: %s", name, error)
        return self.config.error_requeue
