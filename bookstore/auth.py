import hashlib
from dataclasses import dataclass
from datetime import timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from bookstore.config import settings
from bookstore.models import utcnow

ACCESS = "access"
REFRESH = "refresh"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


class TokenError(Exception):
    pass


class InvalidSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


@dataclass(frozen=True)
class TokenPayload:
    user_id: int
    issued_at: float


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str


def hash_password(password: str):
    return pwd_context.hash(password)


def verify_password(password, hash):
    return pwd_context.verify(password, hash)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _secret_for(kind: str) -> str:
    if kind == ACCESS:
        return settings.JWT_SECRET
    if kind == REFRESH:
        return settings.JWT_REFRESH_SECRET
    raise ValueError(f"Unknown token kind: {kind}")


def _create_token(user_id: int, kind: str, expires_delta: timedelta) -> str:
    now = utcnow()
    payload = {
        "id": user_id,
        "type": kind,
        # fractional seconds so a token minted right after a password change
        # is distinguishable from one minted right before it
        "iat": now.timestamp(),
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, _secret_for(kind), algorithm=settings.JWT_ALGORITHM)


def create_access_token(user_id: int) -> str:
    return _create_token(user_id, ACCESS, timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS))


def create_refresh_token(user_id: int) -> str:
    return _create_token(user_id, REFRESH, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS))


def issue_auth_tokens(user_id: int) -> AuthTokens:
    return AuthTokens(
        access_token=create_access_token(user_id),
        refresh_token=create_refresh_token(user_id),
    )


def verify_token(token: str, kind: str) -> TokenPayload:
    """
    Check signature, expiry and token type.

    Raises TokenExpired for a well-signed token past its ``exp`` and
    InvalidSignature for everything else, so callers can tell "refresh and
    retry" apart from "log in again".
    """
    try:
        payload = jwt.decode(token, _secret_for(kind), algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired("Token has expired") from exc
    except JWTError as exc:
        raise InvalidSignature("Invalid token") from exc

    if payload.get("type") != kind:
        raise InvalidSignature("Invalid token type")

    user_id = payload.get("id")
    issued_at = payload.get("iat")
    if user_id is None or issued_at is None:
        raise InvalidSignature("Token missing required claims")

    try:
        return TokenPayload(user_id=int(user_id), issued_at=float(issued_at))
    except (TypeError, ValueError) as exc:
        raise InvalidSignature("Invalid claims in token") from exc
