"""
Identity Verification
Capability interface for the external identity provider. Token issuance and
account provisioning live with the provider; this service only asks it who a
bearer token belongs to.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import firebase_admin
from firebase_admin import auth, credentials
from firebase_admin.exceptions import FirebaseError

from utils.exception_handler import AuthError, ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    email: str


class IdentityVerifier(Protocol):
    def verify(self, token: str) -> Identity:
        """Return the identity behind token or raise AuthError"""
        ...


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an 'Authorization: Bearer <token>' header"""
    if not authorization:
        raise AuthError("No Token Unauthorized Access!")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Malformed authorization header")
    return token.strip()


def verify_request(verifier: Optional[IdentityVerifier], authorization: Optional[str]) -> Identity:
    if verifier is None:
        logger.warning("⚠️ IDENTITY_UNCONFIGURED: rejecting request that requires identity")
        raise AuthError("Identity verification is not configured")
    identity = verifier.verify(bearer_token(authorization))
    if not identity or not identity.email:
        raise AuthError("Unauthorized Access!")
    return identity


class FirebaseIdentityVerifier:
    """Verifies Firebase Auth ID tokens through the Admin SDK"""

    APP_NAME = "civic-issue-backend"

    def __init__(self, app):
        self.app = app

    @classmethod
    def from_service_key(cls, encoded_key: str) -> "FirebaseIdentityVerifier":
        """Build from a base64-encoded service account JSON (FB_SERVICE_KEY)"""
        try:
            service_account = json.loads(base64.b64decode(encoded_key).decode("utf-8"))
        except ValueError as e:
            raise ValueError(f"FB_SERVICE_KEY is not base64-encoded service account JSON: {e}")

        try:
            app = firebase_admin.get_app(cls.APP_NAME)
        except ValueError:
            app = firebase_admin.initialize_app(credentials.Certificate(service_account), name=cls.APP_NAME)
        logger.info(f"✅ FIREBASE_READY: project {service_account.get('project_id')}")
        return cls(app)

    def verify(self, token: str) -> Identity:
        try:
            decoded = auth.verify_id_token(token, app=self.app)
        except (auth.InvalidIdTokenError, auth.UserDisabledError, ValueError) as e:
            logger.warning(f"🚫 TOKEN_REJECTED: {type(e).__name__}: {e}")
            raise AuthError("Unauthorized Access!")
        except auth.CertificateFetchError as e:
            logger.error(f"❌ FIREBASE_UNAVAILABLE: {e}")
            raise ExternalServiceError("firebase", str(e))
        except FirebaseError as e:
            logger.error(f"❌ FIREBASE_VERIFY_FAILED: {type(e).__name__}: {e}")
            raise ExternalServiceError("firebase", str(e))

        email = decoded.get("email")
        if not email:
            raise AuthError("Token carries no email")
        return Identity(email=email)
