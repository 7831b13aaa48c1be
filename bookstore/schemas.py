from datetime import date, datetime
from typing import List, Literal, Optional, Sequence

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from bookstore.validation import password_problems


def _check_password(value: str) -> str:
    problems = password_problems(value)
    if problems:
        raise ValueError(problems[0])
    return value


# Users
class RegisterRequest(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(max_length=128)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        return value.strip()

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ForgotPasswordRequest(BaseModel):
    email: EmailStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class ResetPasswordRequest(BaseModel):
    password: str = Field(max_length=128)
    confirm_password: str

    @field_validator("password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password(value)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(max_length=128)
    confirm_password: str

    @field_validator("new_password")
    @classmethod
    def strong_password(cls, value: str) -> str:
        return _check_password(value)

    @model_validator(mode="after")
    def passwords_consistent(self):
        if self.new_password == self.current_password:
            raise ValueError("New password must be different from current password")
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class RefreshTokenRequest(BaseModel):
    refresh_token: str = Field(min_length=1)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    avatar: Optional[str] = None

    # unknown keys are kept so the handler can refuse email/password changes
    model_config = ConfigDict(extra="allow")


class RoleUpdateRequest(BaseModel):
    role: Literal["user", "admin"]


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str


class UserSummary(BaseModel):
    id: int
    name: str
    email: EmailStr

    model_config = ConfigDict(from_attributes=True)


class UserPublic(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: str
    avatar: Optional[str]
    is_email_verified: bool
    is_active: bool
    created_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)


# Books
class BookCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    author: str = Field(min_length=1, max_length=100)
    isbn: Optional[str] = None
    description: str = Field(min_length=1, max_length=2000)
    genre: str
    price: float
    discount_price: Optional[float] = None
    stock: int
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    language: Optional[str] = None
    pages: Optional[int] = None
    tags: List[str] = []

    @field_validator("title", "author", "description", "isbn", "publisher", "language")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class BookUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    author: Optional[str] = Field(default=None, min_length=1, max_length=100)
    isbn: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    genre: Optional[str] = None
    price: Optional[float] = None
    discount_price: Optional[float] = None
    stock: Optional[int] = None
    publisher: Optional[str] = None
    published_date: Optional[date] = None
    language: Optional[str] = None
    pages: Optional[int] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None

    @field_validator("title", "author", "description", "isbn", "publisher", "language")
    @classmethod
    def strip_text(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class BookOut(BaseModel):
    id: int
    title: str
    author: str
    isbn: Optional[str]
    description: str
    genre: str
    tags: List[str] = []
    publisher: Optional[str]
    published_date: Optional[date]
    language: Optional[str]
    pages: Optional[int]
    price: float
    discount_price: Optional[float]
    final_price: float
    discount_percentage: int
    stock: int
    in_stock: bool
    cover_image_url: Optional[str]
    cover_image_id: Optional[str]
    average_rating: float
    ratings_count: int
    is_active: bool
    is_featured: bool
    added_by_id: int
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    model_config = ConfigDict(from_attributes=True)

    @field_validator("tags", mode="before")
    @classmethod
    def default_tags(cls, value):
        return value or []


def serialize_book(book, projection: Optional[Sequence[str]] = None, includes: Sequence[str] = ()) -> dict:
    """Book as a plain dict, limited to ``projection`` and extended with opted-in relations."""
    if projection is None:
        data = BookOut.model_validate(book).model_dump()
    else:
        data = {name: getattr(book, name) for name in projection}
    for name in includes:
        related = getattr(book, name)
        data[name] = UserSummary.model_validate(related).model_dump() if related is not None else None
    return data
