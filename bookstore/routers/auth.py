from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from bookstore import accounts, models, schemas
from bookstore.config import settings
from bookstore.database import get_db
from bookstore.deps import get_current_user, get_mailer, get_notifier
from bookstore.mailer import Mailer
from bookstore.notifications import NotificationDispatcher
from bookstore.rate_limiter import limiter
from bookstore.responses import api_response

router = APIRouter(prefix="/auth", tags=["Auth"])


def _session_payload(user: models.User, auth_tokens) -> dict:
    return {
        "user": schemas.UserPublic.model_validate(user),
        "tokens": schemas.TokenPair(
            access_token=auth_tokens.access_token,
            refresh_token=auth_tokens.refresh_token,
        ),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def register(
    request: Request,
    payload: schemas.RegisterRequest,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    user, auth_tokens = await accounts.register(db, mailer, payload.name, payload.email, payload.password)
    return api_response(
        "Registration successful! Please check your email to verify your account.",
        _session_payload(user, auth_tokens),
    )


@router.post("/login")
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(
    request: Request,
    payload: schemas.LoginRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    user, auth_tokens = await accounts.login(db, notifier, payload.email, payload.password)
    return api_response("Login successful!", _session_payload(user, auth_tokens))


@router.post("/refresh-token")
def refresh_token(payload: schemas.RefreshTokenRequest, db: Session = Depends(get_db)):
    user, auth_tokens = accounts.refresh_session(db, payload.refresh_token)
    return api_response("Token refreshed successfully", _session_payload(user, auth_tokens))


@router.get("/verify-email/{token}")
async def verify_email(
    token: str,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    await accounts.verify_email(db, mailer, notifier, token)
    return api_response("Email verified successfully!")


@router.post("/resend-verification")
async def resend_verification(
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
    user: models.User = Depends(get_current_user),
):
    await accounts.resend_verification(db, mailer, user)
    return api_response("Verification email sent successfully!")


@router.post("/forgot-password")
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def forgot_password(
    request: Request,
    payload: schemas.ForgotPasswordRequest,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    message = await accounts.forgot_password(db, mailer, payload.email)
    return api_response(message)


@router.post("/reset-password/{token}")
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def reset_password(
    request: Request,
    token: str,
    payload: schemas.ResetPasswordRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    await accounts.reset_password(db, notifier, token, payload.password)
    return api_response("Password reset successful! Please login with your new password.")


@router.post("/change-password")
async def change_password(
    payload: schemas.ChangePasswordRequest,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
    user: models.User = Depends(get_current_user),
):
    auth_tokens = await accounts.change_password(
        db, notifier, user, payload.current_password, payload.new_password
    )
    return api_response(
        "Password changed successfully!",
        {"tokens": schemas.TokenPair(access_token=auth_tokens.access_token,
                                     refresh_token=auth_tokens.refresh_token)},
    )


@router.post("/logout")
def logout(db: Session = Depends(get_db), user: models.User = Depends(get_current_user)):
    accounts.logout(db, user)
    return api_response("Logged out successfully!")


@router.get("/me")
def get_me(user: models.User = Depends(get_current_user)):
    return api_response("User profile retrieved successfully", {"user": schemas.UserPublic.model_validate(user)})


@router.patch("/update-profile")
def update_profile(
    payload: schemas.UpdateProfileRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    # extra keys (email, password) are passed through so they can be refused
    changes = {**payload.model_dump(exclude_unset=True), **(payload.model_extra or {})}
    user = accounts.update_profile(db, user, changes)
    return api_response("Profile updated successfully", {"user": schemas.UserPublic.model_validate(user)})
