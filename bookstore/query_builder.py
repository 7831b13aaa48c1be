"""
Translate untyped query-string parameters into composed SQLAlchemy selects.

``QueryBuilder`` is an immutable value: every transform returns a new
builder, so transforms can be applied in any order, any number of times,
and a partially built query can be shared safely. The caller executes
``statement()`` (and ``count_statement()`` for pagination totals)::

    builder = (
        QueryBuilder(models.Book, params)
        .filter()
        .search()
        .sort()
        .limit_fields()
        .paginate()
    )
    books = db.scalars(builder.statement()).all()
"""
import operator
import re
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

from sqlalchemy import false, func, inspect, or_, select
from sqlalchemy.orm import load_only, selectinload

from bookstore.errors import QueryParamError

RESERVED_PARAMS = frozenset({"page", "sort", "limit", "fields", "search", "include"})

COMPARISON_OPERATORS = {
    "gte": operator.ge,
    "gt": operator.gt,
    "lte": operator.le,
    "lt": operator.lt,
}

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 10
MAX_LIMIT = 100
# offsets must fit a signed 32-bit integer column
MAX_PAGE = 2 ** 31 // MAX_LIMIT
DEFAULT_SEARCH_FIELDS = ("title", "author", "description")

_BRACKET_KEY = re.compile(r"^([^\[\]]+)\[([^\[\]]+)\]$")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_TRUE_VALUES = {"true", "1", "yes"}
_FALSE_VALUES = {"false", "0", "no"}


def parse_query_params(items: Iterable[Tuple[str, str]]) -> Dict[str, Any]:
    """Nest bracketed keys: ``price[gte]=20`` becomes ``{"price": {"gte": "20"}}``."""
    params: Dict[str, Any] = {}
    for key, value in items:
        match = _BRACKET_KEY.match(key)
        if match is None:
            params[key] = value
            continue
        name, op = match.groups()
        nested = params.get(name)
        if not isinstance(nested, dict):
            nested = {}
            params[name] = nested
        nested[op] = value
    return params


def _columns(model) -> Dict[str, Any]:
    hidden = set(getattr(model, "hidden_fields", ()))
    return {
        prop.key: getattr(model, prop.key)
        for prop in inspect(model).column_attrs
        if prop.key not in hidden
    }


def _coerce(name: str, column, raw: Any) -> Any:
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return raw

    text = str(raw).strip()
    try:
        if python_type is bool:
            lowered = text.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(text)
        if python_type is datetime:
            return datetime.fromisoformat(text)
        if python_type is date:
            return date.fromisoformat(text)
        if python_type in (int, float, str):
            return python_type(text)
    except (TypeError, ValueError):
        raise QueryParamError(f"Invalid value for {name}: {raw}")
    raise QueryParamError(f"Filtering on {name} is not supported")


def _parse_int(raw: Any, default: int, maximum: Optional[int] = None) -> int:
    """parseInt-style: leading digits win, anything unusable, < 1 or above ``maximum`` gives the default."""
    if raw is None or isinstance(raw, Mapping):
        return default
    match = _LEADING_INT.match(str(raw))
    if match is None:
        return default
    value = int(match.group(1))
    if value < 1 or (maximum is not None and value > maximum):
        return default
    return value


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_filters(model, params: Mapping[str, Any]) -> list:
    columns = _columns(model)
    criteria = []
    for name, value in params.items():
        if name in RESERVED_PARAMS:
            continue
        column = columns.get(name)
        if column is None:
            # no such attribute: an equality on it can never match
            criteria.append(false())
            continue
        if isinstance(value, Mapping):
            for op_name, raw in value.items():
                compare = COMPARISON_OPERATORS.get(op_name)
                if compare is None:
                    raise QueryParamError(f"Unsupported operator '{op_name}' for {name}")
                criteria.append(compare(column, _coerce(name, column, raw)))
        else:
            criteria.append(column == _coerce(name, column, value))
    return criteria


def build_search(model, term: str, fields: Sequence[str]):
    columns = _columns(model)
    pattern = f"%{_escape_like(term)}%"
    clauses = [columns[field].ilike(pattern, escape="\\") for field in fields if field in columns]
    if not clauses:
        return false()
    return or_(*clauses)


def default_ordering(model) -> tuple:
    columns = _columns(model)
    if "created_at" in columns:
        return (columns["created_at"].desc(), columns["id"].desc())
    return (columns["id"].desc(),)


def build_ordering(model, raw: Any) -> tuple:
    if not isinstance(raw, str) or not raw.strip():
        return default_ordering(model)

    columns = _columns(model)
    ordering = []
    for token in raw.split(","):
        token = token.strip()
        descending = token.startswith("-")
        column = columns.get(token[1:] if descending else token)
        if column is None:
            continue
        ordering.append(column.desc() if descending else column.asc())
    return tuple(ordering) or default_ordering(model)


def output_fields(model) -> Tuple[str, ...]:
    derived = tuple(getattr(model, "derived_fields", {}))
    return tuple(_columns(model)) + derived


def build_projection(model, raw: Any) -> Optional[Tuple[str, ...]]:
    if not isinstance(raw, str) or not raw.strip():
        return None
    allowed = output_fields(model)
    requested = [name.strip() for name in raw.split(",")]
    projection = ["id"]
    for name in requested:
        if name in allowed and name not in projection:
            projection.append(name)
    return tuple(projection)


@dataclass(frozen=True)
class QueryBuilder:
    model: Any
    params: Mapping[str, Any]
    criteria: Tuple[Any, ...] = ()
    ordering: Tuple[Any, ...] = ()
    projection: Optional[Tuple[str, ...]] = None
    includes: Tuple[str, ...] = ()
    page: int = DEFAULT_PAGE
    limit: Optional[int] = None

    def where(self, *criteria) -> "QueryBuilder":
        return replace(self, criteria=self.criteria + tuple(criteria))

    def filter(self) -> "QueryBuilder":
        return self.where(*build_filters(self.model, self.params))

    def search(self, fields: Sequence[str] = DEFAULT_SEARCH_FIELDS) -> "QueryBuilder":
        term = self.params.get("search")
        if not isinstance(term, str) or not term.strip():
            return self
        return self.where(build_search(self.model, term.strip(), fields))

    def sort(self) -> "QueryBuilder":
        return replace(self, ordering=build_ordering(self.model, self.params.get("sort")))

    def order_by(self, *clauses) -> "QueryBuilder":
        return replace(self, ordering=tuple(clauses))

    def limit_fields(self) -> "QueryBuilder":
        return replace(self, projection=build_projection(self.model, self.params.get("fields")))

    def paginate(self, default_limit: int = DEFAULT_LIMIT) -> "QueryBuilder":
        page = _parse_int(self.params.get("page"), DEFAULT_PAGE, maximum=MAX_PAGE)
        limit = min(_parse_int(self.params.get("limit"), default_limit), MAX_LIMIT)
        return replace(self, page=page, limit=limit)

    def include(self, *allowed: str) -> "QueryBuilder":
        raw = self.params.get("include")
        if not isinstance(raw, str):
            return self
        requested = [name.strip() for name in raw.split(",")]
        includes = tuple(name for name in allowed if name in requested)
        return replace(self, includes=includes)

    @property
    def offset(self) -> int:
        if self.limit is None:
            return 0
        return (self.page - 1) * self.limit

    def _load_columns(self) -> list:
        derived = getattr(self.model, "derived_fields", {})
        mapper = inspect(self.model)
        names = []
        for name in self.projection:
            names.extend(derived.get(name, (name,)))
        for relation in self.includes:
            names.extend(column.key for column in mapper.relationships[relation].local_columns)
        return [getattr(self.model, name) for name in dict.fromkeys(names)]

    def statement(self):
        stmt = select(self.model)
        if self.criteria:
            stmt = stmt.where(*self.criteria)
        if self.ordering:
            stmt = stmt.order_by(*self.ordering)
        options = [selectinload(getattr(self.model, name)) for name in self.includes]
        if self.projection is not None:
            options.append(load_only(*self._load_columns()))
        if options:
            stmt = stmt.options(*options)
        if self.limit is not None:
            stmt = stmt.offset(self.offset).limit(self.limit)
        return stmt

    def count_statement(self):
        stmt = select(func.count()).select_from(self.model)
        if self.criteria:
            stmt = stmt.where(*self.criteria)
        return stmt
