"""JWT token management"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any

from core.exceptions import AuthorizationError
from config import Settings, settings as default_settings


class JWTError(AuthorizationError):
    """Missing, malformed or expired bearer token"""
    pass


class JWTManager:
    """Bearer token issue and verification; the engine only needs the subject"""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        access_token_expiry: timedelta = timedelta(hours=1),
    ):
        """
        Initialize JWT manager

        Args:
            secret_key: Secret key for signing tokens
            algorithm: JWT algorithm (HS256, RS256, etc.)
            access_token_expiry: Access token expiration time
        """
        if not secret_key:
            raise JWTError("JWT secret key is not configured")
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.access_token_expiry = access_token_expiry

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "JWTManager":
        config = config or default_settings
        return cls(
            secret_key=config.JWT_SECRET_KEY,
            algorithm=config.JWT_ALGORITHM,
            access_token_expiry=timedelta(hours=config.JWT_ACCESS_TOKEN_EXPIRY_HOURS),
        )

    def generate_access_token(self, subject: str, extra_claims: Optional[Dict[str, Any]] = None) -> str:
        """
        Generate access token

        Args:
            subject: Caller identity placed in the ``sub`` claim
            extra_claims: Additional claims to embed

        Returns:
            JWT access token
        """
        now = datetime.now(timezone.utc)
        payload = {
            **(extra_claims or {}),
            "sub": subject,
            "type": "access",
            "exp": now + self.access_token_expiry,
            "iat": now,
        }

        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_token(self, token: str) -> Dict[str, Any]:
        """
        Verify and decode JWT token

        Raises:
            JWTError: If token is invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise JWTError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            raise JWTError(f"Invalid token: {e}") from e

        if payload.get("type", "access") != "access":
            raise JWTError("Invalid token type. Expected access")
        return payload

    def verify_token(self, token: str) -> str:
        """Subject of a valid access token"""
        subject = self.decode_token(token).get("sub")
        if not isinstance(subject, str) or not subject:
            raise JWTError("Token has no subject")
        return subject
