from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from bookstore.database import Base

ROLES = ("user", "admin")

GENRES = (
    "Fiction",
    "Non-Fiction",
    "Science Fiction",
    "Fantasy",
    "Mystery",
    "Thriller",
    "Romance",
    "Horror",
    "Biography",
    "History",
    "Science",
    "Self-Help",
    "Business",
    "Technology",
    "Other",
)

EMAIL_VERIFICATION = "email_verification"
PASSWORD_RESET = "password_reset"
TOKEN_TYPES = (EMAIL_VERIFICATION, PASSWORD_RESET)

DEFAULT_AVATAR_URL = "https://via.placeholder.com/150"
DEFAULT_COVER_URL = "https://via.placeholder.com/400x600?text=No+Cover"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password = Column(String, nullable=False)
    avatar = Column(String, default=DEFAULT_AVATAR_URL)
    role = Column(String(16), default="user", nullable=False)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    password_changed_at = Column(DateTime(timezone=True), nullable=True)
    refresh_token = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    hidden_fields = ("password", "refresh_token")

    books = relationship("Book", back_populates="added_by")
    tokens = relationship("OneTimeToken", back_populates="user", cascade="all, delete-orphan")

    def changed_password_after(self, issued_at: float) -> bool:
        """True when the password was changed after a token issued at ``issued_at``."""
        changed_at = as_utc(self.password_changed_at)
        if changed_at is None:
            return False
        return issued_at < changed_at.timestamp()


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True)
    title = Column(String(200), nullable=False, index=True)
    author = Column(String(100), nullable=False, index=True)
    isbn = Column(String(13), unique=True, nullable=True)
    description = Column(Text, nullable=False)
    genre = Column(String(32), nullable=False, index=True)
    tags = Column(JSON, default=list)
    publisher = Column(String, nullable=True)
    published_date = Column(Date, nullable=True)
    language = Column(String(32), default="English")
    pages = Column(Integer, nullable=True)
    price = Column(Float, nullable=False, index=True)
    discount_price = Column(Float, nullable=True)
    stock = Column(Integer, nullable=False, default=0)
    cover_image_url = Column(String, default=DEFAULT_COVER_URL)
    cover_image_id = Column(String, nullable=True)
    average_rating = Column(Float, default=0, index=True)
    ratings_count = Column(Integer, default=0)
    is_active = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False, index=True)
    added_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version_id = Column(Integer, nullable=False)

    added_by = relationship("User", back_populates="books")

    hidden_fields = ("version_id",)
    derived_fields = {
        "in_stock": ("stock",),
        "discount_percentage": ("price", "discount_price"),
        "final_price": ("price", "discount_price"),
    }

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def in_stock(self) -> bool:
        return (self.stock or 0) > 0

    @property
    def discount_percentage(self) -> int:
        if self.discount_price is not None and self.price and self.discount_price < self.price:
            return round((self.price - self.discount_price) / self.price * 100)
        return 0

    @property
    def final_price(self) -> float:
        return self.discount_price if self.discount_price is not None else self.price


class OneTimeToken(Base):
    __tablename__ = "one_time_tokens"
    __table_args__ = (UniqueConstraint("user_id", "type", name="uq_one_time_tokens_user_type"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)
    type = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="tokens")
