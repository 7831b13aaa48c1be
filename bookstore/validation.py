"""
Explicit validation pass for records, run before every create and update.

Request schemas check shapes and types; these functions check the record
invariants on the full (merged) set of values and return every violation,
not just the first.
"""
import re
from typing import Any, List, Mapping

from bookstore.errors import FieldError, ValidationFailed
from bookstore.models import GENRES, ROLES

ISBN_PATTERN = re.compile(r"^(?:\d{10}|\d{13})$")
EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _text(errors: List[FieldError], values: Mapping[str, Any], field: str, label: str,
          *, required: bool = False, min_length: int = 0, max_length: int = 0) -> None:
    value = values.get(field)
    if _is_blank(value):
        if required:
            errors.append(FieldError(field, "required", f"{label} is required"))
        return
    length = len(value.strip())
    if min_length and length < min_length:
        errors.append(FieldError(field, "too_short", f"{label} must be at least {min_length} characters long"))
    if max_length and length > max_length:
        errors.append(FieldError(field, "too_long", f"{label} cannot exceed {max_length} characters"))


def validate_book(values: Mapping[str, Any]) -> List[FieldError]:
    errors: List[FieldError] = []

    _text(errors, values, "title", "Book title", required=True, max_length=200)
    _text(errors, values, "author", "Author name", required=True, max_length=100)
    _text(errors, values, "description", "Book description", required=True, max_length=2000)

    isbn = values.get("isbn")
    if not _is_blank(isbn) and not ISBN_PATTERN.match(isbn):
        errors.append(FieldError("isbn", "invalid_format", "ISBN must be 10 or 13 digits"))

    genre = values.get("genre")
    if _is_blank(genre):
        errors.append(FieldError("genre", "required", "Genre is required"))
    elif genre not in GENRES:
        errors.append(FieldError("genre", "invalid_choice", "Invalid genre"))

    price = values.get("price")
    if price is None:
        errors.append(FieldError("price", "required", "Price is required"))
    elif price < 0:
        errors.append(FieldError("price", "out_of_range", "Price cannot be negative"))

    discount_price = values.get("discount_price")
    if discount_price is not None:
        if discount_price < 0:
            errors.append(FieldError("discount_price", "out_of_range", "Discount price cannot be negative"))
        elif price is not None and discount_price >= price:
            errors.append(FieldError("discount_price", "not_less_than_price",
                                     "Discount price must be less than regular price"))

    stock = values.get("stock")
    if stock is None:
        errors.append(FieldError("stock", "required", "Stock quantity is required"))
    elif stock < 0:
        errors.append(FieldError("stock", "out_of_range", "Stock cannot be negative"))

    pages = values.get("pages")
    if pages is not None and pages < 1:
        errors.append(FieldError("pages", "out_of_range", "Pages must be at least 1"))

    rating = values.get("average_rating")
    if rating is not None and not 0 <= rating <= 5:
        errors.append(FieldError("average_rating", "out_of_range", "Rating must be between 0 and 5"))

    for flag in ("is_active", "is_featured"):
        if flag in values and values[flag] is None:
            errors.append(FieldError(flag, "required", f"{flag} must be true or false"))

    return errors


def validate_user(values: Mapping[str, Any]) -> List[FieldError]:
    errors: List[FieldError] = []

    _text(errors, values, "name", "Name", required=True, min_length=2, max_length=50)

    email = values.get("email")
    if _is_blank(email):
        errors.append(FieldError("email", "required", "Email is required"))
    elif not EMAIL_PATTERN.match(email):
        errors.append(FieldError("email", "invalid_format", "Please provide a valid email address"))

    role = values.get("role")
    if role is not None and role not in ROLES:
        errors.append(FieldError("role", "invalid_choice", "Invalid role"))

    return errors


def password_problems(password: str) -> List[str]:
    problems = []
    if len(password) < 6:
        problems.append("Password must be at least 6 characters long")
    if not PASSWORD_PATTERN.match(password):
        problems.append(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return problems


def ensure_valid(errors: List[FieldError]) -> None:
    if errors:
        raise ValidationFailed(errors=errors)
