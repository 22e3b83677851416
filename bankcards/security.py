"""
Security utilities: password hashing and signed session tokens.

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - Argon2id is memory-hard and time-hard, resistant to GPU cracking
   - passlib's CryptContext gives us safe, high-level Argon2 operations

2. SESSION TOKENS (JWT, HS256)
   - After login, the user receives a signed token carrying their username
     ("sub") and role ("role"), plus "iat" and "exp" timestamps
   - The token is signed with SECRET_KEY using HMAC-SHA256 and travels as
     three base64url segments: header.payload.signature
   - Tokens expire ACCESS_TOKEN_EXPIRE_MINUTES after issuance, with no leeway
   - There is no revocation list: a token stays valid for its whole lifetime.
     The authentication gate compensates by re-reading the user on every
     request, so disabled users and demoted admins lose access immediately.

Card number encryption lives in bankcards.crypto.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable

from jose import JWTError, jwt
from passlib.context import CryptContext

from bankcards.config import settings


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

# "deprecated='auto'" lets passlib verify hashes from retired schemes while
# new passwords use the active one.
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """
    Hash a plaintext password using Argon2id.

    Returns:
        An Argon2 hash string (e.g., "$argon2id$v=19$m=65536,t=3,p=4$...").
    """
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a stored Argon2 hash."""
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. Session Tokens
# ---------------------------------------------------------------------------

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """
    Issues and verifies signed, time-bound identity tokens.

    The clock is injectable so expiry can be tested without sleeping.
    Instances hold only immutable key material and are safe to share
    between concurrent requests.
    """

    def __init__(
        self,
        secret: str,
        lifetime: timedelta,
        algorithm: str = "HS256",
        clock: Clock | None = None,
    ):
        self._secret = secret
        self._lifetime = lifetime
        self._algorithm = algorithm
        self._clock = clock or _utcnow

    def issue(self, subject: str, role: str) -> str:
        """
        Create a signed token for `subject` carrying a role claim.

        Claims: sub, role, iat, exp (epoch seconds, fractional part kept so
        a token lives exactly `lifetime` from the instant it was issued).
        """
        issued_at = self._clock().timestamp()
        claims = {
            "sub": subject,
            "role": role,
            "iat": issued_at,
            "exp": issued_at + self._lifetime.total_seconds(),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> bool:
        """
        Check signature, structure and expiry.

        Returns False (never raises) for a bad signature, a malformed token,
        missing claims, or when the current time is at or past "exp".
        """
        try:
            # Expiry is checked below against our own clock.
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError:
            return False

        expires_at = claims.get("exp")
        if not isinstance(claims.get("sub"), str):
            return False
        if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
            return False
        return self._clock().timestamp() < expires_at

    def subject_of(self, token: str) -> str:
        """
        Read the subject claim WITHOUT checking the signature.

        Only call this after verify() has returned True.
        """
        return jwt.get_unverified_claims(token)["sub"]

    def role_of(self, token: str) -> str | None:
        """Read the role claim WITHOUT checking the signature. See subject_of()."""
        role = jwt.get_unverified_claims(token).get("role")
        return None if role is None else str(role)


# Application-wide instance configured from the environment.
token_service = TokenService(
    secret=settings.SECRET_KEY,
    lifetime=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    algorithm=settings.ALGORITHM,
)
