"""
Account lifecycle: registration, login, email verification, password
recovery and change, session refresh and the authentication gate.

There is no session table. A session is valid while its signed token is
valid and was issued after the user's ``password_changed_at`` watermark;
bumping the watermark invalidates every token issued before it.
"""
import logging
from typing import Any, Mapping, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bookstore import models, tokens
from bookstore.auth import (
    ACCESS,
    REFRESH,
    AuthTokens,
    InvalidSignature,
    TokenExpired,
    hash_password,
    issue_auth_tokens,
    pwd_context,
    verify_password,
    verify_token,
)
from bookstore.errors import (
    AccountDeactivated,
    AlreadyVerified,
    DuplicateEmail,
    IncorrectCurrentPassword,
    InvalidCredentials,
    InvalidOrExpiredToken,
    StaleToken,
    Unauthenticated,
    Unexpected,
    UserGone,
    ValidationFailed,
)
from bookstore.mailer import Mailer, MailDeliveryError
from bookstore.notifications import NotificationDispatcher
from bookstore.validation import ensure_valid, validate_user

logger = logging.getLogger(__name__)

RESET_REQUESTED_MESSAGE = "If an account exists with that email, a password reset link has been sent."


def find_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.scalars(select(models.User).where(models.User.email == email.strip().lower())).first()


def _start_session(db: Session, user: models.User) -> AuthTokens:
    auth_tokens = issue_auth_tokens(user.id)
    user.refresh_token = auth_tokens.refresh_token
    db.commit()
    db.refresh(user)
    return auth_tokens


def _set_password(user: models.User, new_password: str) -> None:
    # stamp first: tokens minted after this call must postdate the watermark
    user.password_changed_at = models.utcnow()
    user.password = hash_password(new_password)


async def register(db: Session, mailer: Mailer, name: str, email: str,
                   password: str) -> Tuple[models.User, AuthTokens]:
    email = email.strip().lower()
    ensure_valid(validate_user({"name": name, "email": email}))

    if find_by_email(db, email) is not None:
        raise DuplicateEmail()

    user = models.User(name=name.strip(), email=email, password=hash_password(password), role="user")
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # lost a race with a concurrent registration for the same address
        db.rollback()
        raise DuplicateEmail()
    db.refresh(user)

    verification_token = tokens.issue(db, user.id, models.EMAIL_VERIFICATION)
    try:
        await mailer.send_verification_email(user.email, user.name, verification_token)
    except MailDeliveryError as exc:
        logger.error(f"Error sending verification email to user {user.id}: {exc}")

    auth_tokens = _start_session(db, user)
    logger.info(f"Registered user {user.id}")
    return user, auth_tokens


async def login(db: Session, notifier: NotificationDispatcher, email: str,
                password: str) -> Tuple[models.User, AuthTokens]:
    user = find_by_email(db, email)
    if user is None:
        # keep response time independent of whether the account exists
        pwd_context.dummy_verify()
        raise InvalidCredentials()
    if not verify_password(password, user.password) or not user.is_active:
        raise InvalidCredentials()

    auth_tokens = _start_session(db, user)
    await notifier.notify(user.id, "login", {"message": "You have successfully logged in"})
    return user, auth_tokens


async def verify_email(db: Session, mailer: Mailer, notifier: NotificationDispatcher,
                       plain_token: str) -> models.User:
    try:
        user = tokens.consume(db, plain_token, models.EMAIL_VERIFICATION)
    except tokens.TokenNotFoundOrExpired:
        raise InvalidOrExpiredToken()

    if user.is_email_verified:
        raise AlreadyVerified()

    user.is_email_verified = True
    db.commit()
    db.refresh(user)

    try:
        await mailer.send_welcome_email(user.email, user.name)
    except MailDeliveryError as exc:
        logger.error(f"Error sending welcome email to user {user.id}: {exc}")

    await notifier.notify(user.id, "email_verified", {"message": "Your email has been verified successfully!"})
    return user


async def resend_verification(db: Session, mailer: Mailer, user: models.User) -> None:
    if user.is_email_verified:
        raise AlreadyVerified()

    verification_token = tokens.issue(db, user.id, models.EMAIL_VERIFICATION)
    try:
        await mailer.send_verification_email(user.email, user.name, verification_token)
    except MailDeliveryError:
        tokens.revoke(db, user.id, models.EMAIL_VERIFICATION)
        raise Unexpected("Error sending email. Please try again later.")


async def forgot_password(db: Session, mailer: Mailer, email: str) -> str:
    user = find_by_email(db, email)
    if user is None:
        return RESET_REQUESTED_MESSAGE

    reset_token = tokens.issue(db, user.id, models.PASSWORD_RESET)
    try:
        await mailer.send_password_reset_email(user.email, user.name, reset_token)
    except MailDeliveryError:
        tokens.revoke(db, user.id, models.PASSWORD_RESET)
        raise Unexpected("Error sending email. Please try again later.")

    return RESET_REQUESTED_MESSAGE


async def reset_password(db: Session, notifier: NotificationDispatcher, plain_token: str,
                         new_password: str) -> models.User:
    try:
        user = tokens.consume(db, plain_token, models.PASSWORD_RESET)
    except tokens.TokenNotFoundOrExpired:
        raise InvalidOrExpiredToken()

    _set_password(user, new_password)
    user.refresh_token = None
    db.commit()
    db.refresh(user)

    await notifier.notify(user.id, "password_reset", {"message": "Your password has been reset successfully"})
    return user


async def change_password(db: Session, notifier: NotificationDispatcher, user: models.User,
                          current_password: str, new_password: str) -> AuthTokens:
    if not verify_password(current_password, user.password):
        raise IncorrectCurrentPassword()

    _set_password(user, new_password)
    auth_tokens = _start_session(db, user)

    await notifier.notify(user.id, "password_changed", {"message": "Your password has been changed successfully"})
    return auth_tokens


def refresh_session(db: Session, refresh_token: str) -> Tuple[models.User, AuthTokens]:
    try:
        payload = verify_token(refresh_token, REFRESH)
    except TokenExpired:
        raise Unauthenticated("Your refresh token has expired. Please log in again.")
    except InvalidSignature:
        raise Unauthenticated("Invalid refresh token. Please log in again.")

    user = db.get(models.User, payload.user_id)
    if user is None:
        raise UserGone()
    if not user.is_active:
        raise AccountDeactivated()
    if user.refresh_token != refresh_token:
        raise Unauthenticated("Refresh token has been revoked. Please log in again.")
    if user.changed_password_after(payload.issued_at):
        raise StaleToken()

    return user, _start_session(db, user)


def logout(db: Session, user: models.User) -> None:
    user.refresh_token = None
    db.commit()


def update_profile(db: Session, user: models.User, changes: Mapping[str, Any]) -> models.User:
    if "email" in changes or "password" in changes:
        raise ValidationFailed("This route is not for password or email updates")

    updates = {field: changes[field] for field in ("name", "avatar") if changes.get(field) is not None}
    ensure_valid(validate_user({"name": updates.get("name", user.name), "email": user.email}))

    for field, value in updates.items():
        setattr(user, field, value.strip() if isinstance(value, str) else value)
    db.commit()
    db.refresh(user)
    return user


def authenticate(db: Session, token: Optional[str]) -> models.User:
    """Gate for protected operations: the user behind a valid, fresh access token."""
    if not token:
        raise Unauthenticated()

    try:
        payload = verify_token(token, ACCESS)
    except TokenExpired:
        raise Unauthenticated("Your token has expired. Please log in again.")
    except InvalidSignature:
        raise Unauthenticated("Invalid token. Please log in again.")

    user = db.get(models.User, payload.user_id)
    if user is None:
        raise UserGone()
    if not user.is_active:
        raise AccountDeactivated()
    if user.changed_password_after(payload.issued_at):
        raise StaleToken()
    return user
