import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from bookstore import cache, models, schemas
from bookstore.config import settings
from bookstore.database import get_db
from bookstore.deps import get_notifier, get_storage, require_role
from bookstore.errors import ApiError, Conflict, NotFound, ValidationFailed
from bookstore.notifications import NotificationDispatcher
from bookstore.pagination import compute_pagination
from bookstore.query_builder import QueryBuilder, parse_query_params
from bookstore.rate_limiter import limiter
from bookstore.responses import api_response
from bookstore.storage import StorageError, SupabaseStorage
from bookstore.validation import ensure_valid, validate_book

router = APIRouter(prefix="/books", tags=["Books"])
logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "title", "author", "isbn", "description", "genre", "tags", "publisher",
    "published_date", "language", "pages", "price", "discount_price", "stock",
    "average_rating", "is_active", "is_featured",
)
RELATIONS = ("added_by",)
CATEGORY_PAGE_SIZE = 12


def _get_book_or_404(db: Session, book_id: int) -> models.Book:
    book = db.get(models.Book, book_id)
    if not book:
        raise NotFound("Book not found")
    return book


def _ensure_isbn_available(db: Session, isbn: str | None, exclude_id: int | None = None) -> None:
    if not isbn:
        return
    query = select(models.Book.id).where(models.Book.isbn == isbn)
    if exclude_id is not None:
        query = query.where(models.Book.id != exclude_id)
    if db.scalar(query) is not None:
        raise Conflict(f"isbn '{isbn}' already exists. Please use another value.")


async def _delete_cover(storage: SupabaseStorage, storage_id: str | None) -> None:
    if not storage_id:
        return
    if not storage.configured:
        logger.warning(f"Storage not configured; leaving cover {storage_id} in place")
        return
    try:
        await storage.delete(storage_id)
    except StorageError as exc:
        logger.error(f"Error deleting cover image {storage_id}: {exc}")


def _listing(db: Session, builder: QueryBuilder, message: str, **extra) -> dict:
    books = db.scalars(builder.statement()).all()
    total = db.scalar(builder.count_statement())
    return api_response(
        message,
        {
            "books": [schemas.serialize_book(book, builder.projection, builder.includes) for book in books],
            "pagination": compute_pagination(builder.page, builder.limit, total),
            **extra,
        },
    )


# Get Books
@router.get("")
def list_books(request: Request, db: Session = Depends(get_db)):
    params = parse_query_params(request.query_params.multi_items())

    cache_key = cache.listing_key("all", params)
    cached = cache.get_listing(cache_key)
    if cached:
        return cached

    builder = (
        QueryBuilder(models.Book, params)
        .filter()
        .search()
        .sort()
        .limit_fields()
        .paginate()
        .include(*RELATIONS)
    )
    payload = _listing(db, builder, "Books retrieved successfully")
    cache.store_listing(cache_key, payload)
    return payload


@router.get("/featured")
def featured_books(db: Session = Depends(get_db)):
    books = db.scalars(
        select(models.Book)
        .where(models.Book.is_featured.is_(True), models.Book.is_active.is_(True))
        .order_by(models.Book.average_rating.desc(), models.Book.created_at.desc())
        .limit(10)
    ).all()
    return api_response(
        "Featured books retrieved successfully",
        {"books": [schemas.serialize_book(book) for book in books]},
    )


@router.get("/search")
def search_books(request: Request, db: Session = Depends(get_db)):
    params = parse_query_params(request.query_params.multi_items())
    term = params.get("q")
    if not isinstance(term, str) or not term.strip():
        raise ValidationFailed("Search query is required")

    builder = (
        QueryBuilder(models.Book, {**params, "search": term})
        .where(models.Book.is_active.is_(True))
        .search()
        .sort()
        .paginate(default_limit=CATEGORY_PAGE_SIZE)
    )
    return _listing(db, builder, f'Search results for "{term}"', search_query=term)


@router.get("/genre/{genre}")
def books_by_genre(genre: str, request: Request, db: Session = Depends(get_db)):
    params = parse_query_params(request.query_params.multi_items())
    builder = (
        QueryBuilder(models.Book, params)
        .where(models.Book.genre == genre, models.Book.is_active.is_(True))
        .order_by(models.Book.average_rating.desc(), models.Book.created_at.desc())
        .paginate(default_limit=CATEGORY_PAGE_SIZE)
    )
    return _listing(db, builder, f"Books in {genre} retrieved successfully", genre=genre)


@router.get("/admin/stats")
def book_stats(db: Session = Depends(get_db), admin: models.User = Depends(require_role("admin"))):
    active = models.Book.is_active.is_(True)
    book_count = func.count(models.Book.id)
    rows = db.execute(
        select(
            models.Book.genre,
            book_count,
            func.avg(models.Book.price),
            func.avg(models.Book.average_rating),
            func.sum(models.Book.stock),
        )
        .where(active)
        .group_by(models.Book.genre)
        .order_by(book_count.desc())
    ).all()

    total_books = db.scalar(select(func.count()).select_from(models.Book).where(active))
    inventory_value = db.scalar(
        select(func.coalesce(func.sum(models.Book.price * models.Book.stock), 0)).where(active)
    )

    genre_stats = [
        {
            "genre": genre,
            "count": count,
            "avg_price": round(avg_price or 0, 2),
            "avg_rating": round(avg_rating or 0, 2),
            "total_stock": total_stock or 0,
        }
        for genre, count, avg_price, avg_rating, total_stock in rows
    ]
    return api_response(
        "Book statistics retrieved successfully",
        {"total_books": total_books, "inventory_value": inventory_value, "genre_stats": genre_stats},
    )


@router.get("/{book_id}")
def get_book(book_id: int, request: Request, db: Session = Depends(get_db)):
    params = parse_query_params(request.query_params.multi_items())
    includes = QueryBuilder(models.Book, params).include(*RELATIONS).includes
    book = _get_book_or_404(db, book_id)
    return api_response("Book retrieved successfully", {"book": schemas.serialize_book(book, includes=includes)})


# Add Book
@router.post("", status_code=status.HTTP_201_CREATED)
async def create_book(
    payload: schemas.BookCreate,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
    admin: models.User = Depends(require_role("admin")),
):
    values = payload.model_dump(exclude_none=True)
    if not values.get("isbn"):
        values.pop("isbn", None)
    ensure_valid(validate_book(values))
    _ensure_isbn_available(db, values.get("isbn"))

    book = models.Book(**values, added_by_id=admin.id)
    db.add(book)
    db.commit()
    db.refresh(book)
    cache.invalidate_listings()

    await notifier.notify(admin.id, "book_created", {
        "message": f'New book "{book.title}" has been added',
        "book": {"id": book.id, "title": book.title, "author": book.author},
    })
    return api_response("Book created successfully", {"book": schemas.serialize_book(book)})


@router.patch("/{book_id}")
async def update_book(
    book_id: int,
    payload: schemas.BookUpdate,
    db: Session = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
    admin: models.User = Depends(require_role("admin")),
):
    book = _get_book_or_404(db, book_id)

    changes = payload.model_dump(exclude_unset=True)
    if "isbn" in changes and not changes["isbn"]:
        changes["isbn"] = None
    merged = {field: getattr(book, field) for field in EDITABLE_FIELDS}
    merged.update(changes)
    ensure_valid(validate_book(merged))
    if changes.get("isbn") and changes["isbn"] != book.isbn:
        _ensure_isbn_available(db, changes["isbn"], exclude_id=book.id)

    for field, value in changes.items():
        setattr(book, field, value)
    db.commit()
    db.refresh(book)
    cache.invalidate_listings()

    await notifier.notify(admin.id, "book_updated", {
        "message": f'Book "{book.title}" has been updated',
        "book": {"id": book.id, "title": book.title},
    })
    return api_response("Book updated successfully", {"book": schemas.serialize_book(book)})


@router.patch("/{book_id}/cover")
@limiter.limit(settings.RATE_LIMIT_UPLOAD)
async def upload_cover(
    request: Request,
    book_id: int,
    cover_image: UploadFile = File(...),
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
    notifier: NotificationDispatcher = Depends(get_notifier),
    admin: models.User = Depends(require_role("admin")),
):
    book = _get_book_or_404(db, book_id)

    content = await cover_image.read()
    if len(content) > settings.MAX_FILE_SIZE:
        raise ValidationFailed(f"File size too large. Maximum size is {settings.MAX_FILE_SIZE // (1024 * 1024)}MB.")

    try:
        stored = await storage.store(content, cover_image.filename, cover_image.content_type)
    except StorageError as exc:
        raise ApiError(str(exc), status_code=status.HTTP_502_BAD_GATEWAY)

    previous_id = book.cover_image_id
    book.cover_image_url = stored.url
    book.cover_image_id = stored.storage_id
    db.commit()
    db.refresh(book)
    cache.invalidate_listings()

    if previous_id and previous_id != stored.storage_id:
        await _delete_cover(storage, previous_id)

    await notifier.notify(admin.id, "book_updated", {
        "message": f'Cover of "{book.title}" has been updated',
        "book": {"id": book.id, "title": book.title},
    })
    return api_response("Cover image updated successfully", {"book": schemas.serialize_book(book)})


@router.patch("/{book_id}/featured")
def toggle_featured(
    book_id: int,
    db: Session = Depends(get_db),
    admin: models.User = Depends(require_role("admin")),
):
    book = _get_book_or_404(db, book_id)
    book.is_featured = not book.is_featured
    db.commit()
    db.refresh(book)
    cache.invalidate_listings()

    message = "Book marked as featured" if book.is_featured else "Book removed from featured"
    return api_response(message, {"book": schemas.serialize_book(book)})


@router.delete("/{book_id}")
async def delete_book(
    book_id: int,
    db: Session = Depends(get_db),
    storage: SupabaseStorage = Depends(get_storage),
    notifier: NotificationDispatcher = Depends(get_notifier),
    admin: models.User = Depends(require_role("admin")),
):
    book = _get_book_or_404(db, book_id)
    title = book.title

    await _delete_cover(storage, book.cover_image_id)
    db.delete(book)
    db.commit()
    cache.invalidate_listings()

    await notifier.notify(admin.id, "book_deleted", {"message": f'Book "{title}" has been deleted'})
    return api_response("Book deleted successfully")
