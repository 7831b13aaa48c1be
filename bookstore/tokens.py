"""
One-time opaque tokens for out-of-band flows (email verification, password reset).

Only the sha256 of the secret is stored; the plaintext goes out by email.
A unique constraint on (user_id, type) keeps at most one live token per pair.
"""
import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from bookstore import models
from bookstore.auth import hash_token
from bookstore.config import settings

logger = logging.getLogger(__name__)


class TokenNotFoundOrExpired(Exception):
    pass


def issue(db: Session, user_id: int, token_type: str) -> str:
    if token_type not in models.TOKEN_TYPES:
        raise ValueError(f"Unknown token type: {token_type}")

    plain_token = secrets.token_hex(32)

    db.execute(
        delete(models.OneTimeToken).where(
            models.OneTimeToken.user_id == user_id,
            models.OneTimeToken.type == token_type,
        )
    )
    db.add(
        models.OneTimeToken(
            user_id=user_id,
            token_hash=hash_token(plain_token),
            type=token_type,
            expires_at=models.utcnow() + timedelta(minutes=settings.ONE_TIME_TOKEN_EXPIRE_MINUTES),
        )
    )
    db.commit()
    return plain_token


def consume(db: Session, plain_token: str, token_type: str) -> models.User:
    db_token = db.scalars(
        select(models.OneTimeToken).where(
            models.OneTimeToken.token_hash == hash_token(plain_token),
            models.OneTimeToken.type == token_type,
            models.OneTimeToken.expires_at > models.utcnow(),
        )
    ).first()
    if db_token is None:
        raise TokenNotFoundOrExpired("Invalid or expired token")

    user_id = db_token.user_id
    # guarded delete: of two concurrent consumers only one sees a row go away
    result = db.execute(
        delete(models.OneTimeToken)
        .where(models.OneTimeToken.id == db_token.id)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise TokenNotFoundOrExpired("Invalid or expired token")
    db.expunge(db_token)
    db.commit()

    user = db.get(models.User, user_id)
    if user is None:
        raise TokenNotFoundOrExpired("Invalid or expired token")
    return user


def revoke(db: Session, user_id: int, token_type: str) -> None:
    db.execute(
        delete(models.OneTimeToken).where(
            models.OneTimeToken.user_id == user_id,
            models.OneTimeToken.type == token_type,
        )
    )
    db.commit()


def purge_expired(db: Session) -> int:
    result = db.execute(delete(models.OneTimeToken).where(models.OneTimeToken.expires_at <= models.utcnow()))
    db.commit()
    if result.rowcount:
        logger.info(f"Purged {result.rowcount} expired one-time tokens")
    return result.rowcount
