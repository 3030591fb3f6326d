"""Controller configuration dataclass."""

import os
import socket
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import timedelta

from .errors import ConfigurationError


@dataclass(frozen=True)
class ControllerConfig:
    """Configuration assembled once at startup and passed to components."""

    bao_addr: str
    bao_token: str | None = None
    pki_mount_point: str = "pki"
    intermediate_ttl: str = "168h"
    leaf_validity: timedelta = timedelta(hours=24)
    refresh_margin: timedelta = timedelta(seconds=3600)
    concurrency: int = 2
    success_requeue: timedelta = timedelta(seconds=300)
    error_requeue: timedelta = timedelta(seconds=5)
    common_name: str | None = None

    def ca_common_name(self) -> str:
        """Return the CN used for the intermediate CA CSR (host name by default)."""
        return self.common_name or socket.gethostname()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ControllerConfig":
        """Build configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            ControllerConfig populated from BAO_ADDR, BAO_TOKEN and
            PKI_CONTROLLER_CONCURRENCY

        Raises:
            ConfigurationError: If BAO_ADDR is missing or concurrency is invalid
        """
        env = os.environ if environ is None else environ

        bao_addr = env.get("BAO_ADDR", "")
        if not bao_addr:
            raise ConfigurationError("Please set BAO_ADDR")

        # TODO: kubernetes auth method for the backend when BAO_TOKEN is unset
        bao_token = env.get("BAO_TOKEN") or None

        raw_concurrency = env.get("PKI_CONTROLLER_CONCURRENCY", "2")
        try:
            concurrency = int(raw_concurrency)
        except ValueError as e:
            raise ConfigurationError(
                f"PKI_CONTROLLER_CONCURRENCY must be an integer, got {raw_concurrency!r}"
            ) from e
        if concurrency < 1:
            raise ConfigurationError("PKI_CONTROLLER_CONCURRENCY must be at least 1")

        return cls(bao_addr=bao_addr, bao_token=bao_token, concurrency=concurrency)
