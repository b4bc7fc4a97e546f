"""
Authentication module — certificate-based app-only and device-code delegated auth.
Uses MSAL for token acquisition against Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, CertificateAuth, REQUIRED_PERMISSIONS

logger = logging.getLogger("m365_license_engine.auth")

APP_SCOPES = ["https://graph.microsoft.com/.default"]
AUTHORITY_TEMPLATE = "https://login.microsoftonline.com/{tenant_id}"


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def load_certificate_credential(cert_config: CertificateAuth) -> dict[str, str]:
    """
    Read a base64-encoded PFX and return the MSAL client_credential dict
    (thumbprint + PEM private key).
    """
    password = (
        cert_config.certificate_password
        or os.environ.get("M365_CERT_PASSWORD", "")
        or getpass.getpass("Enter the certificate password: ")
    )
    try:
        with open(cert_config.certificate_path, "r") as f:
            cert_bytes = base64.b64decode(f.read().strip())
        private_key, certificate, _ = pkcs12.load_key_and_certificates(
            cert_bytes, password.encode("utf-8") if password else None
        )
    except FileNotFoundError:
        raise AuthenticationError(
            f"Certificate file not found: {cert_config.certificate_path}"
        )
    except (ValueError, TypeError) as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError("Certificate bundle has no private key or certificate")

    thumbprint = certificate.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
    return {
        "thumbprint": thumbprint,
        "private_key": private_key.private_bytes(
            Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
        ).decode("utf-8"),
    }


class Authenticator:
    """
    Handles MSAL-based authentication for Microsoft Graph.
    Supports:
      - Certificate-based app-only authentication
      - Delegated interactive authentication (device code flow)
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._access_token: Optional[str] = None
        self._claims: dict = {}

    async def acquire_token(self) -> str:
        """Acquire an access token based on configured auth mode."""
        if self.config.mode == "certificate":
            return self._acquire_certificate_token()
        elif self.config.mode == "delegated":
            return self._acquire_delegated_token()
        raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        cert_config = self.config.certificate
        if not cert_config:
            raise AuthenticationError("Certificate auth config not provided.")

        logger.info("Authenticating with certificate-based app credentials...")
        app = msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=AUTHORITY_TEMPLATE.format(tenant_id=cert_config.tenant_id),
            client_credential=load_certificate_credential(cert_config),
        )
        return self._accept(app.acquire_token_for_client(scopes=APP_SCOPES), "Certificate")

    def _acquire_delegated_token(self) -> str:
        deleg_config = self.config.delegated
        if not deleg_config:
            raise AuthenticationError("Delegated auth config not provided.")

        logger.info("Initiating device code authentication flow...")
        app = msal.PublicClientApplication(
            client_id=deleg_config.client_id,
            authority=AUTHORITY_TEMPLATE.format(tenant_id=deleg_config.tenant_id),
        )
        flow = app.initiate_device_flow(scopes=deleg_config.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        return self._accept(app.acquire_token_by_device_flow(flow), "Delegated")

    def _accept(self, result: dict, mode: str) -> str:
        if "access_token" not in result:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"{mode} auth failed: {error}")
        self._access_token = result["access_token"]
        self._claims = result.get("id_token_claims") or {}
        logger.info(f"{mode} authentication successful.")
        return self._access_token

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def caller_identity(self) -> str:
        """UPN for delegated sign-in, client id for app-only."""
        if self._claims.get("preferred_username"):
            return self._claims["preferred_username"]
        if self.config.certificate:
            return f"app:{self.config.certificate.client_id}"
        if self.config.delegated:
            return f"app:{self.config.delegated.client_id}"
        return "unknown"

    @staticmethod
    def list_required_permissions() -> dict[str, str]:
        """Return the map of required Graph API permissions."""
        return REQUIRED_PERMISSIONS
