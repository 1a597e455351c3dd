"""
Dialect boundary.

``Dialect`` lists everything statement generation needs from a vendor:
identifier quoting, type names, placeholders, auto-increment syntax,
``IF [NOT] EXISTS`` guards and the per-operator SQL table.
``SQLAlchemyDialect`` answers those questions by delegating to a
SQLAlchemy dialect object, so quoting rules and type names are exactly
the ones SQLAlchemy itself would emit.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from sqlalchemy import types as sa_types
from sqlalchemy.engine import make_url

from .config import DEFAULT_SETTINGS, ORMSettings
from .exceptions import UnsupportedDialectError
from .fields import FieldType
from .utils import parse_bool

if TYPE_CHECKING:
    from sqlalchemy.engine import Dialect as SADialect
    from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

MARK = "?"

_LIKE = "LIKE ?"

BASE_OPERATORS: dict[str, str] = {
    "exact": "= ?",
    "iexact": _LIKE,
    "contains": _LIKE,
    "icontains": _LIKE,
    "gt": "> ?",
    "gte": ">= ?",
    "lt": "< ?",
    "lte": "<= ?",
    "eq": "= ?",
    "nq": "!= ?",
    "ne": "!= ?",
    "startswith": _LIKE,
    "endswith": _LIKE,
    "istartswith": _LIKE,
    "iendswith": _LIKE,
}

CASE_INSENSITIVE_OPERATORS = frozenset(
    {"iexact", "icontains", "istartswith", "iendswith"}
)


class Dialect(ABC):
    """Vendor-specific SQL services consumed by statement generation."""

    name: str = "generic"
    paramstyle: str = "qmark"
    supports_native_decimal: bool = True
    supports_native_boolean: bool = True
    supports_schemas: bool = True
    auto_incr_uses_returning: bool = False

    @property
    def cache_key(self) -> tuple[str, str]:
        """Identity under which generated SQL may be shared."""
        return (self.name, self.paramstyle)

    # ── Identifiers ──────────────────────────────────────────────────

    @abstractmethod
    def quote_field(self, name: str) -> str: ...

    def quoted_table_for_query(self, schema: str, table: str) -> str:
        if schema and self.supports_schemas:
            return f"{self.quote_field(schema)}.{self.quote_field(table)}"
        return self.quote_field(table)

    # ── Types ────────────────────────────────────────────────────────

    @abstractmethod
    def to_sql_type(
        self,
        field_type: FieldType,
        *,
        size: int = 0,
        digits: int = 0,
        decimals: int = 0,
        auto: bool = False,
    ) -> str: ...

    def default_literal(self, field_type: FieldType, raw: str) -> str:
        """Render a validated tag default as a SQL literal."""
        if field_type is FieldType.BOOLEAN:
            value = parse_bool(raw)
            if self.supports_native_boolean:
                return "TRUE" if value else "FALSE"
            return "1" if value else "0"
        if field_type.is_integer:
            return str(int(raw))
        if field_type in (FieldType.FLOAT, FieldType.DECIMAL):
            return raw
        return "'" + raw.replace("'", "''") + "'"

    # ── Placeholders ─────────────────────────────────────────────────

    def bind_var(self, i: int) -> str:
        """Placeholder for the ``i``-th (zero-based) bound parameter."""
        style = self.paramstyle
        if style == "qmark":
            return MARK
        if style in ("format", "pyformat"):
            return "%s"
        if style == "numeric":
            return f":{i + 1}"
        if style == "numeric_dollar":
            return f"${i + 1}"
        raise UnsupportedDialectError(f"paramstyle `{style}` is not supported")

    def replace_marks(self, sql: str) -> str:
        """Rewrite ``?`` marks produced by the compiler into driver placeholders."""
        if self.paramstyle == "qmark":
            return sql
        parts = sql.split(MARK)
        out = [parts[0]]
        for i, part in enumerate(parts[1:]):
            out.append(self.bind_var(i))
            out.append(part)
        return "".join(out)

    # ── Auto increment ───────────────────────────────────────────────

    def auto_incr_str(self) -> str:
        return ""

    def auto_incr_bind_value(self) -> str:
        """Insert-time value for auto columns; empty means omit the column."""
        return ""

    def auto_incr_insert_suffix(self, column_sql: str) -> str:
        return ""

    # ── DDL helpers ──────────────────────────────────────────────────

    def create_table_suffix(self) -> str:
        return ""

    def query_suffix(self) -> str:
        return ""

    def if_schema_not_exists(self, command: str, schema: str) -> str:
        return f"{command} IF NOT EXISTS"

    def if_table_not_exists(self, command: str, schema: str, table: str) -> str:
        return f"{command} IF NOT EXISTS"

    def if_table_exists(self, command: str, schema: str, table: str) -> str:
        return f"{command} IF EXISTS"

    # ── Operators ────────────────────────────────────────────────────

    def operator_sql(self, operator: str) -> str:
        return BASE_OPERATORS[operator]

    def operator_left_col(self, operator: str, column_sql: str) -> str:
        return column_sql

    def limit_offset_sql(self, limit: int | None, offset: int | None) -> str:
        parts = []
        if limit is not None:
            parts.append(f"LIMIT {int(limit)}")
        if offset is not None:
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)


class SQLAlchemyDialect(Dialect):
    """
    ``Dialect`` backed by a SQLAlchemy dialect instance.

    Usage::

        dialect = SQLAlchemyDialect.from_engine(engine)
        dialect.quote_field("user")          # '"user"' on SQLite
        dialect.to_sql_type(FieldType.CHAR, size=64)  # 'VARCHAR(64)'
    """

    def __init__(
        self, sa_dialect: SADialect, *, settings: ORMSettings = DEFAULT_SETTINGS
    ) -> None:
        self._sa = sa_dialect
        self._settings = settings
        self.name = sa_dialect.name
        self.paramstyle = sa_dialect.paramstyle
        if self.paramstyle == "named":
            raise UnsupportedDialectError(
                f"dialect `{self.name}` uses the named paramstyle; "
                "positional placeholders are required"
            )
        self.supports_native_decimal = bool(
            getattr(sa_dialect, "supports_native_decimal", True)
        )
        self.supports_native_boolean = bool(
            getattr(sa_dialect, "supports_native_boolean", True)
        )
        self.supports_schemas = self.name != "sqlite"
        self.auto_incr_uses_returning = self.name == "postgresql"

    @classmethod
    def from_engine(
        cls, engine: Engine, *, settings: ORMSettings = DEFAULT_SETTINGS
    ) -> SQLAlchemyDialect:
        return cls(engine.dialect, settings=settings)

    @classmethod
    def for_name(
        cls,
        name: str,
        *,
        paramstyle: str | None = None,
        settings: ORMSettings = DEFAULT_SETTINGS,
    ) -> SQLAlchemyDialect:
        """Build from a backend name such as ``sqlite`` or ``postgresql``."""
        dialect_cls = make_url(f"{name}://").get_dialect()
        kwargs: dict[str, Any] = {}
        if paramstyle is not None:
            kwargs["paramstyle"] = paramstyle
        return cls(dialect_cls(**kwargs), settings=settings)

    @property
    def sa_dialect(self) -> SADialect:
        return self._sa

    def quote_field(self, name: str) -> str:
        return self._sa.identifier_preparer.quote_identifier(name)

    # ── Types ────────────────────────────────────────────────────────

    def to_sql_type(
        self,
        field_type: FieldType,
        *,
        size: int = 0,
        digits: int = 0,
        decimals: int = 0,
        auto: bool = False,
    ) -> str:
        if auto:
            auto_type = self._auto_type(field_type)
            if auto_type:
                return auto_type
        sa_type = self._sa_type(field_type, size, digits, decimals)
        return self._sa.type_compiler_instance.process(sa_type)

    def _auto_type(self, field_type: FieldType) -> str:
        if self.name == "sqlite":
            return "INTEGER"
        if self.name == "postgresql":
            if field_type in (FieldType.BIT, FieldType.SMALL_INTEGER):
                return "SMALLSERIAL"
            if field_type is FieldType.INTEGER:
                return "SERIAL"
            return "BIGSERIAL"
        return ""

    def _sa_type(
        self, field_type: FieldType, size: int, digits: int, decimals: int
    ) -> sa_types.TypeEngine[Any]:
        if field_type is FieldType.BOOLEAN:
            return sa_types.Boolean()
        if field_type is FieldType.CHAR:
            return sa_types.String(size or self._settings.default_char_size)
        if field_type is FieldType.TEXT:
            return sa_types.Text()
        if field_type is FieldType.JSONB and self.name == "postgresql":
            from sqlalchemy.dialects.postgresql import JSONB

            return JSONB()
        if field_type in (FieldType.JSON, FieldType.JSONB):
            return sa_types.JSON()
        if field_type is FieldType.TIME:
            return sa_types.Time()
        if field_type is FieldType.DATE:
            return sa_types.Date()
        if field_type is FieldType.DATETIME:
            return sa_types.DateTime()
        if field_type in (FieldType.BIT, FieldType.SMALL_INTEGER, FieldType.POSITIVE_BIT):
            return sa_types.SmallInteger()
        if field_type in (FieldType.INTEGER, FieldType.POSITIVE_SMALL_INTEGER):
            return sa_types.Integer()
        if field_type.is_integer:
            return sa_types.BigInteger()
        if field_type is FieldType.FLOAT:
            return sa_types.Float()
        if field_type is FieldType.DECIMAL:
            return sa_types.Numeric(digits, decimals)
        raise UnsupportedDialectError(
            f"no column type for `{field_type.value}` on `{self.name}`"
        )

    # ── Auto increment ───────────────────────────────────────────────

    def auto_incr_str(self) -> str:
        if self.name == "sqlite":
            return "AUTOINCREMENT"
        if self.name in ("mysql", "mariadb"):
            return "AUTO_INCREMENT"
        return ""

    def auto_incr_bind_value(self) -> str:
        if self.name in ("sqlite", "mysql", "mariadb"):
            return "NULL"
        if self.name == "postgresql":
            return "DEFAULT"
        return ""

    def auto_incr_insert_suffix(self, column_sql: str) -> str:
        if self.auto_incr_uses_returning:
            return f" RETURNING {column_sql}"
        return ""

    def create_table_suffix(self) -> str:
        if self.name in ("mysql", "mariadb"):
            return (
                f" ENGINE={self._settings.mysql_engine}"
                f" DEFAULT CHARSET={self._settings.mysql_charset}"
            )
        return ""

    # ── Operators ────────────────────────────────────────────────────

    def operator_sql(self, operator: str) -> str:
        if self.name == "postgresql":
            if operator == "iexact":
                return "= UPPER(?)"
            if operator in CASE_INSENSITIVE_OPERATORS:
                return "LIKE UPPER(?)"
        elif self.name in ("mysql", "mariadb"):
            if operator in ("contains", "startswith", "endswith"):
                return "LIKE BINARY ?"
        sql = BASE_OPERATORS[operator]
        if self.name == "sqlite" and sql == _LIKE:
            return f"{_LIKE} ESCAPE '\\'"
        return sql

    def operator_left_col(self, operator: str, column_sql: str) -> str:
        if self.name == "postgresql" and operator in CASE_INSENSITIVE_OPERATORS:
            return f"UPPER({column_sql})"
        return column_sql

    def limit_offset_sql(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            if self.name == "sqlite":
                limit = -1
            elif self.name in ("mysql", "mariadb"):
                limit = 2**64 - 1
        return super().limit_offset_sql(limit, offset)


def dialect_for(engine: Engine, settings: ORMSettings = DEFAULT_SETTINGS) -> Dialect:
    dialect = SQLAlchemyDialect.from_engine(engine, settings=settings)
    logger.debug(
        "Using dialect %s (paramstyle=%s)", dialect.name, dialect.paramstyle
    )
    return dialect
