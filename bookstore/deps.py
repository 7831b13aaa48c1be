from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from bookstore import accounts, models
from bookstore.database import get_db
from bookstore.errors import Forbidden
from bookstore.mailer import Mailer
from bookstore.notifications import NotificationDispatcher
from bookstore.storage import SupabaseStorage

security = HTTPBearer(auto_error=False)


def get_mailer(request: Request) -> Mailer:
    return request.app.state.mailer


def get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier


def get_storage(request: Request) -> SupabaseStorage:
    return request.app.state.storage


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    token = credentials.credentials if credentials else None
    return accounts.authenticate(db, token)


def require_role(*roles: str):
    def checker(user: models.User = Depends(get_current_user)) -> models.User:
        if user.role not in roles:
            raise Forbidden()
        return user

    return checker
