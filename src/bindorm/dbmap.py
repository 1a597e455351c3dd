"""
Execution facade.

``DbMap`` binds a bootstrapped ``ModelCatalog`` to a SQLAlchemy
``Engine``. Generated statements run through
``Connection.exec_driver_sql`` with positional parameters; writes run in
``engine.begin()`` blocks unless an explicit ``transaction()`` is open::

    engine = create_engine("sqlite://")
    db = DbMap(engine, registry.bootstrap())
    db.create_tables()

    user = User(name="ann", age=31)
    db.insert(user)                 # user.id is filled in
    db.query_table(User).filter(age__gte=30).count()

Raw SQL passed to ``select``/``exec`` uses ``?`` marks, which are
rewritten into the driver's placeholder style.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from .bindings import junction_sides
from .compiler import ConditionCompiler
from .converters import DefaultTypeConverter, TypeConverter
from .criteria import Criteria
from .dialects import Dialect, dialect_for
from .exceptions import (
    DatabaseNotConfiguredError,
    MultipleRowsError,
    OptimisticLockError,
    QueryConstructionError,
)
from .fields import ColumnDescriptor, FieldType
from .queryset import QuerySet

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection, CursorResult, Engine

    from .config import ORMSettings
    from .model import ModelInfo
    from .operators import OperatorRegistry
    from .registry import ModelCatalog

logger = logging.getLogger(__name__)

_SINGULAR_FORWARD = (FieldType.FOREIGN_KEY, FieldType.ONE_TO_ONE)


class DbMap:
    def __init__(
        self,
        engine: Engine,
        catalog: ModelCatalog,
        *,
        dialect: Dialect | None = None,
        settings: ORMSettings | None = None,
        converter: TypeConverter | None = None,
        operators: OperatorRegistry | None = None,
    ) -> None:
        self.engine = engine
        self.catalog = catalog
        self.settings = settings or catalog.settings
        self.dialect = dialect or dialect_for(engine, self.settings)
        self.converter: TypeConverter = converter or DefaultTypeConverter(
            catalog, self.dialect, self.settings.time_zone
        )
        self.compiler = ConditionCompiler(
            catalog,
            self.dialect,
            operators=operators,
            zone=self.settings.time_zone,
        )
        self._active: ContextVar[Connection | None] = ContextVar(
            f"bindorm_connection_{id(self)}", default=None
        )

    def __repr__(self) -> str:
        return f"<DbMap dialect={self.dialect.name} tables={len(self.catalog)}>"

    # ── Connections ──────────────────────────────────────────────────

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """
        Run every statement issued inside the block on one transaction.
        Nested blocks join the outer one.
        """
        current = self._active.get()
        if current is not None:
            yield current
            return
        with self.engine.begin() as conn:
            token = self._active.set(conn)
            try:
                yield conn
            finally:
                self._active.reset(token)

    @contextmanager
    def _connection(self, *, write: bool) -> Iterator[Connection]:
        current = self._active.get()
        if current is not None:
            yield current
        elif write:
            with self.engine.begin() as conn:
                yield conn
        else:
            with self.engine.connect() as conn:
                yield conn

    def _run(
        self, conn: Connection, sql: str, params: Sequence[Any] = ()
    ) -> CursorResult[Any]:
        args = tuple(params) or None
        start = time.perf_counter()
        result = conn.exec_driver_sql(sql, args)
        if self.settings.log_sql:
            elapsed = (time.perf_counter() - start) * 1000
            logger.debug("%s %r (%.2fms)", sql, args or (), elapsed)
        return result

    def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[Any]:
        """Rows of a ready-to-run statement (driver placeholders)."""
        with self._connection(write=False) as conn:
            return list(self._run(conn, sql, params).fetchall())

    def fetch_scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        with self._connection(write=False) as conn:
            return self._run(conn, sql, params).scalar()

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a ready-to-run write; returns the affected row count."""
        with self._connection(write=True) as conn:
            return self._run(conn, sql, params).rowcount

    # ── Models and rows ──────────────────────────────────────────────

    def model(self, model: Any) -> ModelInfo:
        """Descriptor for a model class, instance or table name."""
        if isinstance(model, str):
            return self.catalog.get(model)
        return self.catalog.for_type(model)

    def from_row(
        self, mi: ModelInfo, fields: Sequence[ColumnDescriptor], row: Sequence[Any]
    ) -> Any:
        """
        Build a model instance from ``row`` whose values follow ``fields``.
        Junction tables without a model class come back as dicts.
        """
        values = {
            fi.name: self.converter.from_db(fi, value) for fi, value in zip(fields, row)
        }
        if mi.model_type is None:
            return values
        return mi.model_type.model_construct(**values)

    def _from_mapping(self, mi: ModelInfo, row: Any) -> Any:
        fields: list[ColumnDescriptor] = []
        values: list[Any] = []
        for column, value in row._mapping.items():
            fi = mi.get_by_any(str(column))
            if fi is not None and fi.dbcol:
                fields.append(fi)
                values.append(value)
        return self.from_row(mi, fields, values)

    def _stamp(self, mi: ModelInfo, obj: Any, *, inserting: bool) -> None:
        now = datetime.now(self.settings.time_zone).replace(microsecond=0)
        for fi in mi.fields.db_fields:
            if not (fi.auto_now or (inserting and fi.auto_now_add)):
                continue
            if fi.field_type is FieldType.DATE:
                setattr(obj, fi.name, now.date())
            elif fi.field_type is FieldType.TIME:
                setattr(obj, fi.name, now.time())
            else:
                setattr(obj, fi.name, now)

    # ── Mutations ────────────────────────────────────────────────────

    def insert(self, *objs: BaseModel) -> None:
        """
        Insert each object, filling in generated keys, timestamps and
        the version column.
        """
        with self._connection(write=True) as conn:
            for obj in objs:
                mi = self.catalog.for_type(obj)
                self._stamp(mi, obj, inserting=True)
                bi = mi.bind_insert(self.dialect, obj, self.converter.to_db)
                result = self._run(conn, bi.query, bi.args)
                if bi.auto_incr_field is not None:
                    if self.dialect.auto_incr_uses_returning:
                        new_id = result.scalar_one()
                    else:
                        new_id = result.lastrowid
                    setattr(obj, bi.auto_incr_field, new_id)
                if bi.version_field is not None:
                    setattr(obj, bi.version_field, bi.new_version)

    def update(self, *objs: BaseModel, columns: Sequence[str] | None = None) -> int:
        """
        Update each object by primary key; ``columns`` restricts the SET
        list. Returns the total row count.

        Raises:
            OptimisticLockError: A versioned row was not matched.
        """
        total = 0
        with self._connection(write=True) as conn:
            for obj in objs:
                mi = self.catalog.for_type(obj)
                self._stamp(mi, obj, inserting=False)
                bi = mi.bind_update(self.dialect, obj, self.converter.to_db, columns)
                count = self._run(conn, bi.query, bi.args).rowcount
                if bi.version_field is not None:
                    if count == 0:
                        raise OptimisticLockError(
                            mi.table, bi.keys, bi.existing_version or 0
                        )
                    setattr(obj, bi.version_field, bi.new_version)
                total += count
        return total

    def delete(self, *objs: BaseModel) -> int:
        total = 0
        with self._connection(write=True) as conn:
            for obj in objs:
                mi = self.catalog.for_type(obj)
                bi = mi.bind_delete(self.dialect, obj, self.converter.to_db)
                count = self._run(conn, bi.query, bi.args).rowcount
                if bi.version_field is not None and count == 0:
                    raise OptimisticLockError(mi.table, bi.keys, bi.existing_version or 0)
                total += count
        return total

    # ── Lookups ──────────────────────────────────────────────────────

    def get(self, model: Any, *keys: Any) -> Any | None:
        """Instance by primary key, or ``None``."""
        mi = self.model(model)
        bi = mi.bind_get(self.dialect, keys, self.converter.to_db)
        rows = self.fetch(bi.query, bi.args)
        if not rows:
            return None
        fields = [fi for fi in mi.fields.db_fields if not fi.transient]
        return self.from_row(mi, fields, rows[0])

    def load_related(self, obj: BaseModel, field: str) -> Any:
        """
        Load relation ``field`` of ``obj`` and assign it when the model
        declares the attribute. Returns the loaded value.
        """
        mi = self.catalog.for_type(obj)
        fi = mi.col_map(field)
        rel = fi.relation
        if rel is None:
            raise QueryConstructionError(f"`{fi.full_name}` is not a relation")
        target = self.catalog.target_of(fi)

        related: Any
        if fi.field_type in _SINGULAR_FORWARD:
            value = getattr(obj, fi.name, None)
            if isinstance(value, BaseModel):
                value = self.catalog.pk_value(value)
            related = None if value is None else self.get(target.table, value)
        elif rel.through_table is not None:
            related = self.m2m(obj, fi.name).all()
        else:
            paired = target.fields.get(rel.reverse_field or "")
            if paired is None:
                raise QueryConstructionError(f"`{fi.full_name}` has no paired field")
            query = self.query_table(target.table).filter(
                **{paired.name: self.catalog.pk_value(obj)}
            )
            if fi.field_type is FieldType.REVERSE_ONE:
                related = query.first()
            else:
                related = query.all()

        if fi.in_model:
            setattr(obj, fi.name, related)
        return related

    def m2m(self, obj: BaseModel, field: str) -> M2MManager:
        return M2MManager(self, obj, field)

    # ── Raw SQL ──────────────────────────────────────────────────────

    def select(self, model: Any, sql: str, *params: Any) -> list[Any]:
        """Map rows of a raw query onto ``model`` by column name."""
        mi = self.model(model)
        with self._connection(write=False) as conn:
            rows = self._run(conn, self.dialect.replace_marks(sql), params).fetchall()
        return [self._from_mapping(mi, row) for row in rows]

    def select_one(self, model: Any, sql: str, *params: Any) -> Any | None:
        rows = self.select(model, sql, *params)
        if len(rows) > 1:
            raise MultipleRowsError(f"select_one returned {len(rows)} rows")
        return rows[0] if rows else None

    def select_int(self, sql: str, *params: Any) -> int:
        value = self.fetch_scalar(self.dialect.replace_marks(sql), params)
        return int(value or 0)

    def exec(self, sql: str, *params: Any) -> int:
        return self.execute(self.dialect.replace_marks(sql), params)

    # ── Schema ───────────────────────────────────────────────────────

    def creation_order(self) -> list[ModelInfo]:
        """Models ordered so that referenced tables come first."""
        ordered: list[ModelInfo] = []
        done: set[str] = set()
        visiting: set[str] = set()

        def visit(mi: ModelInfo) -> None:
            if mi.table in done:
                return
            if mi.table in visiting:
                logger.warning("Foreign key cycle through table %s", mi.table)
                return
            visiting.add(mi.table)
            for fi in mi.fields.db_fields:
                if fi.relation is not None and fi.relation.target_table != mi.table:
                    visit(self.catalog.target_of(fi))
            visiting.discard(mi.table)
            done.add(mi.table)
            ordered.append(mi)

        for mi in self.catalog.models():
            visit(mi)
        return ordered

    def create_tables_sql(self, if_not_exists: bool = True) -> list[str]:
        statements: list[str] = []
        for mi in self.creation_order():
            statements.extend(mi.sql_for_create(self.dialect, self.catalog, if_not_exists))
            statements.extend(mi.sql_for_indexes(self.dialect, if_not_exists))
        return statements

    def create_tables(self, if_not_exists: bool = True) -> None:
        with self._connection(write=True) as conn:
            for sql in self.create_tables_sql(if_not_exists):
                self._run(conn, sql)
        logger.info("Created %d tables", len(self.catalog))

    def drop_tables(self, if_exists: bool = True) -> None:
        with self._connection(write=True) as conn:
            for mi in reversed(self.creation_order()):
                self._run(conn, mi.sql_for_drop(self.dialect, if_exists))

    # ── Builders ─────────────────────────────────────────────────────

    def query_table(self, model: Any) -> QuerySet:
        return QuerySet(self, self.model(model))

    def criteria(self, model: Any) -> Criteria:
        return Criteria(self, self.model(model))


class M2MManager:
    """
    Junction rows of one object's many-to-many field.

    Works from either side: the declaring m2m field or the reverse field
    paired with it.
    """

    def __init__(self, db: DbMap, obj: BaseModel, field: str) -> None:
        self._db = db
        self._obj = obj
        self._model = db.catalog.for_type(obj)
        self._field = self._model.col_map(field)
        rel = self._field.relation
        if rel is None or rel.through_table is None:
            raise QueryConstructionError(
                f"`{self._field.full_name}` is not a many-to-many relation"
            )
        self._junction, self._mine, self._other = junction_sides(
            self._model, self._field, db.catalog
        )
        self._target = db.catalog.target_of(self._field)

    def _owner_key(self) -> Any:
        return self._db.converter.to_db(self._mine, self._db.catalog.pk_value(self._obj))

    def _target_keys(self, targets: Sequence[Any]) -> list[Any]:
        keys = []
        for target in targets:
            if isinstance(target, BaseModel):
                target = self._db.catalog.pk_value(target)
            keys.append(self._db.converter.to_db(self._other, target))
        return keys

    def add(self, *targets: Any) -> int:
        """Link ``targets`` (instances or keys); returns rows inserted."""
        if not targets:
            return 0
        plan = self._model.m2m_insert_plan(self._db.dialect, self._db.catalog, self._field)
        bi = plan.bind(self._owner_key(), self._target_keys(targets), self._db.dialect)
        return self._db.execute(bi.query, bi.args)

    def remove(self, *targets: Any) -> int:
        if not targets:
            return 0
        q = self._db.dialect.quote_field
        keys = self._target_keys(targets)
        marks = ", ".join("?" for _ in keys)
        sql = (
            f"DELETE FROM {self._junction.quoted_table(self._db.dialect)} "
            f"WHERE {q(self._mine.column)} = ? AND {q(self._other.column)} IN ({marks})"
        )
        return self._db.exec(sql, self._owner_key(), *keys)

    def clear(self) -> int:
        q = self._db.dialect.quote_field
        sql = (
            f"DELETE FROM {self._junction.quoted_table(self._db.dialect)} "
            f"WHERE {q(self._mine.column)} = ?"
        )
        return self._db.exec(sql, self._owner_key())

    def query(self) -> QuerySet:
        """Targets linked to the object, as a further filterable query."""
        return self._db.query_table(self._target.table).through(
            self._field, self._db.catalog.pk_value(self._obj)
        )

    def count(self) -> int:
        return self.query().count()

    def exist(self) -> bool:
        return self.query().exist()

    def all(self) -> list[Any]:
        plan = self._model.m2m_query_plan(self._db.dialect, self._db.catalog, self._field)
        bi = plan.bind(self._obj, self._model, self._db.converter.to_db)
        rows = self._db.fetch(bi.query, bi.args)
        fields = [fi for fi in self._target.fields.db_fields if not fi.transient]
        return [self._db.from_row(self._target, fields, row) for row in rows]


class DatabaseHolder:
    """Process-wide ``DbMap`` handle, set once during startup."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._db: DbMap | None = None

    @property
    def is_set(self) -> bool:
        return self._db is not None

    def set(self, db: DbMap) -> None:
        with self._lock:
            self._db = db

    def get(self) -> DbMap:
        db = self._db
        if db is None:
            raise DatabaseNotConfiguredError(
                "database handle used before it was set; call set_database() first"
            )
        return db

    def get_or_init(self, factory: Callable[[], DbMap]) -> DbMap:
        """Return the handle, creating it with ``factory`` on first use."""
        db = self._db
        if db is not None:
            return db
        with self._lock:
            if self._db is None:
                self._db = factory()
            return self._db

    def reset(self) -> None:
        with self._lock:
            self._db = None


DATABASE = DatabaseHolder()


def database() -> DbMap:
    return DATABASE.get()


def set_database(db: DbMap) -> None:
    DATABASE.set(db)
