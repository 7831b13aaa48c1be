import pytest

from bookstore import models
from bookstore.conftest import make_book
from bookstore.errors import QueryParamError
from bookstore.query_builder import MAX_LIMIT, MAX_PAGE, QueryBuilder, parse_query_params


@pytest.fixture
def catalog(db_session, admin):
    return [
        make_book(db_session, admin, title="Dune", author="Frank Herbert", genre="Science Fiction", price=15.0),
        make_book(db_session, admin, title="Emma", author="Jane Austen", genre="Romance", price=8.5, stock=0),
        make_book(db_session, admin, title="It", author="Stephen King", genre="Horror", price=22.0),
        make_book(db_session, admin, title="100% Sure", author="A. Writer", genre="Other", price=40.0),
    ]


def titles(db, builder):
    return [book.title for book in db.scalars(builder.statement()).all()]


def test_parse_query_params_nests_operators():
    params = parse_query_params([("price[gte]", "10"), ("price[lt]", "30"), ("genre", "Horror")])
    assert params == {"price": {"gte": "10", "lt": "30"}, "genre": "Horror"}


def test_transforms_return_new_builders():
    base = QueryBuilder(models.Book, {"sort": "price", "limit": "5"})
    sorted_builder = base.sort()
    paged = sorted_builder.paginate()

    assert base.ordering == ()
    assert base.limit is None
    assert sorted_builder.limit is None
    assert paged.limit == 5
    assert paged.ordering is sorted_builder.ordering


def test_filter_equality_and_ranges(db_session, catalog):
    builder = QueryBuilder(models.Book, {"price": {"gte": "10", "lte": "25"}}).filter().sort()
    assert sorted(titles(db_session, builder)) == ["Dune", "It"]

    builder = QueryBuilder(models.Book, {"genre": "Romance"}).filter()
    assert titles(db_session, builder) == ["Emma"]


def test_filter_coerces_booleans(db_session, catalog):
    catalog[0].is_featured = True
    db_session.commit()

    builder = QueryBuilder(models.Book, {"is_featured": "yes"}).filter()
    assert titles(db_session, builder) == ["Dune"]


def test_filter_on_unknown_field_matches_nothing(db_session, catalog):
    builder = QueryBuilder(models.Book, {"colour": "red"}).filter()
    assert titles(db_session, builder) == []
    assert db_session.scalar(builder.count_statement()) == 0


def test_filter_ignores_reserved_params(db_session, catalog):
    builder = QueryBuilder(models.Book, {"page": "1", "limit": "2", "sort": "price"}).filter()
    assert len(titles(db_session, builder)) == 4


def test_filter_rejects_bad_operator_and_value():
    with pytest.raises(QueryParamError):
        QueryBuilder(models.Book, {"price": {"ne": "10"}}).filter()
    with pytest.raises(QueryParamError):
        QueryBuilder(models.Book, {"price": {"gte": "cheap"}}).filter()


def test_search_is_case_insensitive(db_session, catalog):
    builder = QueryBuilder(models.Book, {"search": "sTePhEn"}).search()
    assert titles(db_session, builder) == ["It"]


def test_search_escapes_wildcards(db_session, catalog):
    builder = QueryBuilder(models.Book, {"search": "100%"}).search()
    assert titles(db_session, builder) == ["100% Sure"]


def test_blank_search_is_noop():
    builder = QueryBuilder(models.Book, {"search": "   "})
    assert builder.search() is builder


def test_sort_multiple_fields(db_session, catalog):
    builder = QueryBuilder(models.Book, {"sort": "-price,title"}).sort()
    assert titles(db_session, builder) == ["100% Sure", "It", "Dune", "Emma"]


def test_sort_ignores_unknown_fields(db_session, catalog):
    builder = QueryBuilder(models.Book, {"sort": "nonsense,price"}).sort()
    assert titles(db_session, builder) == ["Emma", "Dune", "It", "100% Sure"]


def test_paginate_defaults_and_clamps():
    assert QueryBuilder(models.Book, {}).paginate().limit == 10
    assert QueryBuilder(models.Book, {"limit": "9999"}).paginate().limit == MAX_LIMIT
    builder = QueryBuilder(models.Book, {"page": "0", "limit": "abc"}).paginate()
    assert (builder.page, builder.limit) == (1, 10)
    builder = QueryBuilder(models.Book, {"page": "3", "limit": "5"}).paginate()
    assert builder.offset == 10


def test_paginate_rejects_oversized_page():
    builder = QueryBuilder(models.Book, {"page": "9" * 20}).paginate()
    assert builder.page == 1
    assert QueryBuilder(models.Book, {"page": str(MAX_PAGE)}).paginate().page == MAX_PAGE


def test_paginate_slices_results(db_session, catalog):
    builder = QueryBuilder(models.Book, {"sort": "price", "page": "2", "limit": "3"}).sort().paginate()
    assert titles(db_session, builder) == ["100% Sure"]
    assert db_session.scalar(builder.count_statement()) == 4


def test_projection_always_keeps_id():
    builder = QueryBuilder(models.Book, {"fields": "title,final_price,version_id,bogus"}).limit_fields()
    assert builder.projection == ("id", "title", "final_price")


def test_include_only_allowed_relations():
    builder = QueryBuilder(models.Book, {"include": "added_by,secrets"}).include("added_by")
    assert builder.includes == ("added_by",)
    assert QueryBuilder(models.Book, {}).include("added_by").includes == ()
