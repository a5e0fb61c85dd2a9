"""
Administrator credentials and session tokens.

Passwords are hashed with werkzeug.security ("<method>$<salt>$<hash>").
Tokens are "<base64url claims>.<base64url HMAC-SHA256>" with sub, iat, exp
and jti claims; nothing is stored server-side.
"""
import argparse
import base64
import getpass
import hashlib
import hmac
import json
import time
import uuid
from typing import Any, Dict, Optional

import structlog
from werkzeug.security import check_password_hash, generate_password_hash

from core.exceptions import AuthError

logger = structlog.get_logger(__name__)

DEFAULT_HASH_METHOD = "pbkdf2:sha256"


def hash_password(password: str, method: str = DEFAULT_HASH_METHOD) -> str:
    """
    Hash a password for storage in ADMIN_PASSWORD_HASH.

    Args:
        password: Plain-text password
        method: werkzeug hash method, e.g. "pbkdf2:sha256:600000" or "scrypt"
    """
    if not password:
        raise ValueError("Password must not be empty")
    return generate_password_hash(password, method=method)


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a stored hash. Malformed hashes never match."""
    if not password or not encoded:
        return False
    try:
        return check_password_hash(encoded, password)
    except ValueError:
        # unknown hash method or bad iteration count
        logger.warning("admin_password_hash_malformed")
        return False


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def _b64decode(data: str) -> bytes:
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


class AdminTokenSigner:
    """Issues and checks signed, expiring administrator tokens."""

    def __init__(self, secret: str, ttl_seconds: int = 3600):
        self._key = secret.encode()
        self.ttl_seconds = ttl_seconds

    def _sign(self, body: str) -> str:
        return _b64encode(hmac.new(self._key, body.encode(), hashlib.sha256).digest())

    def issue(self, subject: str, now: Optional[float] = None) -> Dict[str, Any]:
        """
        Issue a token for an authenticated administrator.

        Returns:
            Dict[str, Any]: token, token_type, expires_in and expires_at
        """
        issued_at = int(time.time() if now is None else now)
        claims = {
            "sub": subject,
            "iat": issued_at,
            "exp": issued_at + self.ttl_seconds,
            "jti": str(uuid.uuid4()),
        }
        body = _b64encode(json.dumps(claims, separators=(",", ":"), sort_keys=True).encode())
        return {
            "token": f"{body}.{self._sign(body)}",
            "token_type": "Bearer",
            "expires_in": self.ttl_seconds,
            "expires_at": claims["exp"],
        }

    def verify(self, token: Optional[str], now: Optional[float] = None) -> Dict[str, Any]:
        """
        Check a token and return its claims.

        Raises:
            AuthError: If the token is missing, tampered with or expired
        """
        if not token:
            raise AuthError("Missing admin token", user_message="Authentication required")

        body, _, signature = token.partition(".")
        # bytes: compare_digest rejects non-ASCII str, and headers can carry latin-1
        if not body or not signature or not hmac.compare_digest(
            self._sign(body).encode(), signature.encode()
        ):
            raise AuthError("Invalid admin token signature", user_message="Invalid token")

        try:
            claims = json.loads(_b64decode(body))
            expires_at = int(claims["exp"])
        except (ValueError, KeyError, TypeError):
            raise AuthError("Malformed admin token", user_message="Invalid token")

        current = time.time() if now is None else now
        if current >= expires_at:
            raise AuthError("Admin token expired", user_message="Token expired")
        return claims


def main() -> None:
    """Print a password hash suitable for ADMIN_PASSWORD_HASH."""
    parser = argparse.ArgumentParser(description="Hash an administrator password")
    parser.add_argument(
        "--method",
        default=DEFAULT_HASH_METHOD,
        help="werkzeug hash method (default: %(default)s)",
    )
    args = parser.parse_args()

    password = getpass.getpass("Admin password: ")
    if password != getpass.getpass("Repeat password: "):
        raise SystemExit("Passwords do not match")
    print(hash_password(password, method=args.method))


if __name__ == "__main__":
    main()
