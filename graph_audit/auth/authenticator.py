"""
Authentication module — Client-credentials flow with a secret or certificate.
Uses MSAL for token acquisition against Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal
import requests

from ..config import AuthConfig, GRAPH_SCOPES

logger = logging.getLogger("graph_audit.auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class Authenticator:
    """
    Handles MSAL-based app-only authentication for Microsoft Graph.
    Supports:
      - Client secret credentials
      - Certificate-based credentials (base64-encoded PFX)
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._access_token: Optional[str] = None

    async def acquire_token(self) -> str:
        """Acquire an access token based on configured auth mode."""
        if self.config.mode == "secret":
            credential = self._secret_credential()
        elif self.config.mode == "certificate":
            credential = self._certificate_credential()
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")
        return self._acquire_for_client(credential)

    def _secret_credential(self) -> str:
        if not self.config.client_secret:
            raise AuthenticationError("Client secret not provided.")
        logger.info("Authenticating with client secret credentials...")
        return self.config.client_secret

    def _certificate_credential(self) -> dict:
        if not self.config.certificate:
            raise AuthenticationError("Certificate auth config not provided.")
        logger.info("Authenticating with certificate-based app credentials...")
        return load_pfx_credential(
            self.config.certificate.certificate_path,
            self.config.certificate.certificate_password,
        )

    def _acquire_for_client(self, credential) -> str:
        try:
            app = msal.ConfidentialClientApplication(
                client_id=self.config.client_id,
                authority=self.config.authority,
                client_credential=credential,
            )
            result = app.acquire_token_for_client(scopes=GRAPH_SCOPES)
        except (ValueError, requests.exceptions.RequestException) as e:
            # MSAL fetches the authority metadata on construction
            raise AuthenticationError(f"Token request failed: {e}")

        if "access_token" in result:
            self._access_token = result["access_token"]
            logger.debug("Access token obtained successfully.")
            return self._access_token
        else:
            error = result.get("error_description", result.get("error", "Unknown"))
            raise AuthenticationError(f"Client credentials auth failed: {error}")

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token


def load_pfx_credential(path: str, password: str = "") -> dict:
    """
    Read a base64-encoded PFX and return the MSAL certificate credential
    (SHA-1 thumbprint plus PKCS#8 PEM private key).
    """
    try:
        blob = base64.b64decode(Path(path).read_text().strip())
        key, cert, _ = pkcs12.load_key_and_certificates(
            blob, password.encode("utf-8") if password else None
        )
        if key is None or cert is None:
            raise ValueError("PFX does not contain both a key and a certificate")
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {path}")
    except Exception as e:
        raise AuthenticationError(f"Failed to load certificate: {e}")

    thumbprint = cert.fingerprint(SHA1()).hex()
    logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")
    pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    return {"thumbprint": thumbprint, "private_key": pem.decode("utf-8")}


async def acquire_token(tenant_id: str, client_id: str, client_secret: str) -> str:
    """Acquire a Graph bearer token with a client secret."""
    config = AuthConfig(tenant_id=tenant_id, client_id=client_id, client_secret=client_secret)
    return await Authenticator(config).acquire_token()
