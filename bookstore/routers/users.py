import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from bookstore import models, schemas
from bookstore.database import get_db
from bookstore.deps import require_role
from bookstore.errors import Conflict, NotFound, ValidationFailed
from bookstore.pagination import compute_pagination
from bookstore.query_builder import QueryBuilder, parse_query_params
from bookstore.responses import api_response

router = APIRouter(prefix="/users", tags=["Users"], dependencies=[Depends(require_role("admin"))])
logger = logging.getLogger(__name__)


def _get_user_or_404(db: Session, user_id: int) -> models.User:
    user = db.get(models.User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


def _user_payload(user: models.User) -> dict:
    return {"user": schemas.UserPublic.model_validate(user)}


@router.get("")
def list_users(request: Request, db: Session = Depends(get_db)):
    params = parse_query_params(request.query_params.multi_items())
    # sort and paginate only: arbitrary filters on user rows are not exposed
    builder = QueryBuilder(models.User, params).sort().paginate()
    users = db.scalars(builder.statement()).all()
    total = db.scalar(builder.count_statement())
    return api_response(
        "Users retrieved successfully",
        {
            "users": [schemas.UserPublic.model_validate(user) for user in users],
            "pagination": compute_pagination(builder.page, builder.limit, total),
        },
    )


@router.get("/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db)):
    return api_response("User retrieved successfully", _user_payload(_get_user_or_404(db, user_id)))


@router.patch("/{user_id}/role")
def update_role(user_id: int, payload: schemas.RoleUpdateRequest, db: Session = Depends(get_db)):
    user = _get_user_or_404(db, user_id)
    user.role = payload.role
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} role set to {user.role}")
    return api_response("User role updated successfully", _user_payload(user))


@router.patch("/{user_id}/deactivate")
def deactivate_user(user_id: int, db: Session = Depends(get_db)):
    user = _get_user_or_404(db, user_id)
    user.is_active = False
    db.commit()
    db.refresh(user)
    return api_response("User deactivated successfully", _user_payload(user))


@router.patch("/{user_id}/activate")
def activate_user(user_id: int, db: Session = Depends(get_db)):
    user = _get_user_or_404(db, user_id)
    user.is_active = True
    db.commit()
    db.refresh(user)
    return api_response("User activated successfully", _user_payload(user))


@router.delete("/{user_id}")
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    user = _get_user_or_404(db, user_id)
    if user.id == admin.id:
        raise ValidationFailed("You cannot delete your own account")
    if user.books:
        raise Conflict("This user has added books to the catalog; deactivate the account instead")

    db.delete(user)
    db.commit()
    logger.info(f"User {user_id} deleted by admin {admin.id}")
    return api_response("User deleted successfully")
