"""OpenBao/Vault client for signing the intermediate CA via the PKI secrets engine."""

import hvac
import requests
from hvac.exceptions import VaultError

from .config import ControllerConfig
from .errors import VaultRequestFailed


class BaoClient:
    """PKI backend client (only the sign-intermediate operation is consumed)."""

    def __init__(self, address: str, token: str | None = None, mount_point: str = "pki") -> None:
        """Initialize backend client.

        Args:
            address: Backend URL (e.g. https://bao.example:8200)
            token: Static bearer token, or None when none is configured
            mount_point: Path the PKI secrets engine is mounted at
        """
        self.client = hvac.Client(url=address, token=token)
        # hvac falls back to VAULT_TOKEN or ~/.vault-token when token is None
        self.client.token = token
        self.mount_point = mount_point

    @classmethod
    def from_config(cls, config: ControllerConfig) -> "BaoClient":
        return cls(
            address=config.bao_addr,
            token=config.bao_token,
            mount_point=config.pki_mount_point,
        )

    def sign_intermediate(self, csr_pem: str, common_name: str, ttl: str = "168h") -> str:
        """Submit a CSR to the root PKI and return the signed intermediate certificate.

        Args:
            csr_pem: PEM encoded certificate signing request
            common_name: CN requested for the intermediate
            ttl: Requested lifetime (e.g. '168h')

        Returns:
            PEM encoded intermediate CA certificate

        Raises:
            VaultRequestFailed: If the request fails or the response has no certificate
        """
        try:
            response = self.client.secrets.pki.sign_intermediate(
                csr=csr_pem,
                common_name=common_name,
                extra_params={"ttl": ttl},
                mount_point=self.mount_point,
            )
        except (VaultError, requests.exceptions.RequestException) as e:
            raise VaultRequestFailed(
                f"sign-intermediate request to '{self.mount_point}' failed"
            ) from e

        data = (response or {}).get("data") or {}
        certificate = data.get("certificate")
        if not isinstance(certificate, str) or not certificate:
            raise VaultRequestFailed("sign-intermediate response did not contain a certificate")
        return certificate
