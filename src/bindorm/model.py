"""
Model Descriptor.

One ``ModelInfo`` exists per registered model and per synthesized
junction table. It owns its column descriptors and its bind-plan cache;
structural mutators invalidate the cache.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from .bindings import (
    BindInstance,
    BindPlan,
    BindPlanCache,
    M2MInsertPlan,
    Operation,
    build_delete_plan,
    build_get_plan,
    build_insert_plan,
    build_m2m_insert_plan,
    build_m2m_query_plan,
    build_update_plan,
)
from .exceptions import (
    ConfigurationError,
    FieldDefinitionError,
    FieldNotFoundError,
    QueryConstructionError,
    RelationResolutionError,
)
from .fields import ColumnDescriptor, FieldCollection, FieldType, RelationInfo
from .utils import camel_string

if TYPE_CHECKING:
    from .dialects import Dialect
    from .registry import ModelCatalog

logger = logging.getLogger(__name__)

Converter = Callable[[ColumnDescriptor, Any], Any]

_UNSET: Any = object()


@dataclass(frozen=True)
class IndexInfo:
    name: str
    fields: tuple[str, ...]
    unique: bool = False
    index_type: str = ""


class ModelInfo:
    """
    Compiled description of one table.

    Attributes:
        name: Short type name (``User``).
        full_name: ``module.QualName`` identity.
        table: Table name, also the model's key in the catalog.
        model_type: The pydantic class, or ``None`` for synthesized junctions.
        manual: ``False`` for junctions synthesized during bootstrap.
    """

    def __init__(
        self,
        *,
        name: str,
        full_name: str,
        table: str,
        module: str = "",
        model_type: type | None = None,
        schema: str = "",
        manual: bool = True,
    ) -> None:
        self.name = name
        self.full_name = full_name
        self.table = table
        self.module = module
        self.model_type = model_type
        self.schema = schema
        self.manual = manual
        self.is_through = False
        self.fields = FieldCollection()
        self.version: ColumnDescriptor | None = None
        self.unique_together: list[tuple[str, ...]] = []
        self.indexes: dict[str, IndexInfo] = {}
        self.plans = BindPlanCache()

    def __repr__(self) -> str:
        return f"<ModelInfo {self.full_name} table={self.table!r}>"

    # ── Lookup ───────────────────────────────────────────────────────

    @property
    def keys(self) -> list[ColumnDescriptor]:
        return self.fields.keys

    @property
    def primary_key(self) -> ColumnDescriptor:
        """The single key field; composite or missing keys are an error."""
        if len(self.keys) != 1:
            raise QueryConstructionError(
                f"`{self.table}` needs exactly one primary key, has {len(self.keys)}"
            )
        return self.keys[0]

    def add_field(self, fi: ColumnDescriptor) -> None:
        if not self.fields.add(fi):
            raise FieldDefinitionError(
                f"duplicate field name or column `{fi.column}`", fi.full_name
            )

    def get_by_any(self, name: str) -> ColumnDescriptor | None:
        return self.fields.get_by_any(name)

    def col_map(self, name: str) -> ColumnDescriptor:
        fi = self.fields.get_by_any(name)
        if fi is None:
            raise FieldNotFoundError(name, self.table, self.fields.names)
        return fi

    def quoted_table(self, dialect: Dialect) -> str:
        return dialect.quoted_table_for_query(self.schema, self.table)

    # ── Staging ──────────────────────────────────────────────────────

    def copy(self) -> ModelInfo:
        """
        Independent copy of the structure: descriptors and their relation
        info are duplicated, plans start empty.
        """
        other = ModelInfo(
            name=self.name,
            full_name=self.full_name,
            table=self.table,
            module=self.module,
            model_type=self.model_type,
            schema=self.schema,
            manual=self.manual,
        )
        other.is_through = self.is_through
        for fi in self.fields:
            relation = replace(fi.relation) if fi.relation is not None else None
            other.fields.add(replace(fi, relation=relation))
        other.fields.set_keys([other.fields.get(k.name) for k in self.keys])
        if self.version is not None:
            other.version = other.fields.get(self.version.name)
        other.unique_together = list(self.unique_together)
        other.indexes = dict(self.indexes)
        return other

    def adopt(self, staged: ModelInfo) -> None:
        """Take over the structure of ``staged``, a resolved copy of this model."""
        self.is_through = staged.is_through
        self.fields = staged.fields
        self.version = staged.version
        self.unique_together = staged.unique_together
        self.indexes = staged.indexes
        self.reset_sql()

    # ── Structural mutators ──────────────────────────────────────────

    def set_keys(self, auto: bool, *names: str) -> ModelInfo:
        """
        Replace the key set. ``auto`` marks the single key auto-increment.
        """
        keys = [self.col_map(n) for n in names]
        if auto and len(keys) != 1:
            raise ConfigurationError(
                f"`{self.table}`: auto increment requires exactly one key, "
                f"got {len(keys)}"
            )
        if auto and not keys[0].field_type.is_integer:
            raise FieldDefinitionError(
                "auto is only allowed on integer fields", keys[0].full_name
            )
        self.fields.set_keys(keys)
        for fi in keys:
            fi.auto = auto
            fi.null = fi.index = fi.unique = False
            fi.initial = None
        self.reset_sql()
        return self

    def set_unique_together(self, *names: str) -> ModelInfo:
        if len(names) < 2:
            raise ConfigurationError(
                f"`{self.table}`: unique together needs at least two fields"
            )
        group = tuple(self.col_map(n).name for n in names)
        if group not in self.unique_together:
            self.unique_together.append(group)
        self.reset_sql()
        return self

    def add_index(
        self, name: str, *names: str, unique: bool = False, index_type: str = ""
    ) -> ModelInfo:
        """Declare an index; adding an existing name is a no-op."""
        if name in self.indexes:
            return self
        fields = tuple(self.col_map(n).name for n in names)
        if not fields:
            raise ConfigurationError(f"index `{name}` needs at least one field")
        self.indexes[name] = IndexInfo(name, fields, unique, index_type)
        self.reset_sql()
        return self

    def set_version_col(self, name: str) -> ModelInfo:
        fi = self.col_map(name)
        if not fi.field_type.is_integer:
            raise FieldDefinitionError("version column must be an integer", fi.full_name)
        self.version = fi
        self.reset_sql()
        return self

    def configure_column(
        self,
        name: str,
        *,
        column: str | None = None,
        transient: bool | None = None,
        unique: bool | None = None,
        not_null: bool | None = None,
        max_size: int | None = None,
        default_value: str | None = _UNSET,
    ) -> ColumnDescriptor:
        """
        Adjust one column after reflection.

        ``default_value`` is a SQL literal written on insert in place of a
        placeholder; pass ``None`` to remove it.
        """
        fi = self.col_map(name)
        if column is not None:
            if not self.fields.rename_column(fi, column):
                raise FieldDefinitionError(f"column `{column}` already exists", fi.full_name)
            fi.column_explicit = True
        if transient is not None:
            fi.transient = transient
        if unique is not None:
            fi.unique = unique
        if not_null is not None:
            fi.not_null = not_null
        if max_size is not None:
            fi.size = max_size
        if default_value is not _UNSET:
            fi.default_value = default_value
        self.reset_sql()
        return fi

    def reset_sql(self) -> None:
        """Drop every cached bind plan of this model."""
        self.plans.reset()

    # ── Bind plans ───────────────────────────────────────────────────

    def insert_plan(self, dialect: Dialect) -> BindPlan:
        return self.plans.get(
            (Operation.INSERT, dialect.cache_key),
            lambda: self._built(Operation.INSERT, build_insert_plan(self, dialect)),
        )

    def update_plan(
        self, dialect: Dialect, columns: Iterable[str] | None = None
    ) -> BindPlan:
        accepted = None if columns is None else frozenset(
            self.col_map(c).name for c in columns
        )
        return self.plans.get(
            (Operation.UPDATE, dialect.cache_key, accepted),
            lambda: self._built(
                Operation.UPDATE, build_update_plan(self, dialect, accepted)
            ),
        )

    def delete_plan(self, dialect: Dialect) -> BindPlan:
        return self.plans.get(
            (Operation.DELETE, dialect.cache_key),
            lambda: self._built(Operation.DELETE, build_delete_plan(self, dialect)),
        )

    def get_plan(self, dialect: Dialect) -> BindPlan:
        return self.plans.get(
            (Operation.GET, dialect.cache_key),
            lambda: self._built(Operation.GET, build_get_plan(self, dialect)),
        )

    def m2m_insert_plan(
        self, dialect: Dialect, catalog: ModelCatalog, field: ColumnDescriptor
    ) -> M2MInsertPlan:
        return self.plans.get(
            (Operation.M2M_INSERT, dialect.cache_key, field.name),
            lambda: self._built(
                Operation.M2M_INSERT,
                build_m2m_insert_plan(self, field, catalog, dialect),
            ),
        )

    def m2m_query_plan(
        self, dialect: Dialect, catalog: ModelCatalog, field: ColumnDescriptor
    ) -> BindPlan:
        return self.plans.get(
            (Operation.M2M_QUERY, dialect.cache_key, field.name),
            lambda: self._built(
                Operation.M2M_QUERY,
                build_m2m_query_plan(self, field, catalog, dialect),
            ),
        )

    def _built(self, operation: Operation, plan: Any) -> Any:
        logger.debug("Generated %s plan for %s: %s", operation.value, self.table, plan)
        return plan

    def bind_insert(self, dialect: Dialect, obj: Any, convert: Converter) -> BindInstance:
        return self.insert_plan(dialect).bind(obj, self, convert)

    def bind_update(
        self,
        dialect: Dialect,
        obj: Any,
        convert: Converter,
        columns: Iterable[str] | None = None,
    ) -> BindInstance:
        return self.update_plan(dialect, columns).bind(obj, self, convert)

    def bind_delete(self, dialect: Dialect, obj: Any, convert: Converter) -> BindInstance:
        return self.delete_plan(dialect).bind(obj, self, convert)

    def bind_get(
        self, dialect: Dialect, keys: Sequence[Any], convert: Converter
    ) -> BindInstance:
        plan = self.get_plan(dialect)
        if len(keys) != len(self.keys):
            raise QueryConstructionError(
                f"`{self.table}` has {len(self.keys)} key(s), got {len(keys)} value(s)"
            )
        args = tuple(convert(fi, v) for fi, v in zip(self.keys, keys))
        return BindInstance(query=plan.query, args=args, keys=args)

    # ── DDL ──────────────────────────────────────────────────────────

    def sql_for_create(
        self, dialect: Dialect, catalog: ModelCatalog, if_not_exists: bool = False
    ) -> list[str]:
        """Schema (when set) and ``CREATE TABLE`` statements."""
        q = dialect.quote_field
        statements: list[str] = []
        if self.schema and dialect.supports_schemas:
            command = "CREATE SCHEMA"
            if if_not_exists:
                command = dialect.if_schema_not_exists(command, self.schema)
            statements.append(f"{command} {q(self.schema)}{dialect.query_suffix()}")

        single_key = len(self.keys) == 1
        lines: list[str] = []
        references: list[str] = []
        for fi in self.fields.db_fields:
            if fi.transient:
                continue
            lines.append(self._column_sql(fi, dialect, catalog, single_key))
            if fi.relation is not None and fi.relation.target_table is not None:
                target = catalog.target_of(fi)
                references.append(
                    f"FOREIGN KEY ({q(fi.column)}) REFERENCES "
                    f"{target.quoted_table(dialect)} ({q(target.primary_key.column)}) "
                    f"ON DELETE {fi.relation.on_delete.sql}"
                )
        if len(self.keys) > 1:
            lines.append(f"PRIMARY KEY ({', '.join(q(k.column) for k in self.keys)})")
        for group in self.unique_together:
            cols = ", ".join(q(self.col_map(n).column) for n in group)
            lines.append(f"UNIQUE ({cols})")
        lines.extend(references)

        command = "CREATE TABLE"
        if if_not_exists:
            command = dialect.if_table_not_exists(command, self.schema, self.table)
        statements.append(
            f"{command} {self.quoted_table(dialect)} ({', '.join(lines)})"
            f"{dialect.create_table_suffix()}{dialect.query_suffix()}"
        )
        return statements

    def _column_sql(
        self,
        fi: ColumnDescriptor,
        dialect: Dialect,
        catalog: ModelCatalog,
        single_key: bool,
    ) -> str:
        source = fi
        if fi.relation is not None:
            source = catalog.target_of(fi).primary_key
        sql_type = dialect.to_sql_type(
            source.field_type,
            size=source.size,
            digits=source.digits,
            decimals=source.decimals,
            auto=fi.auto,
        )
        parts = [dialect.quote_field(fi.column), sql_type]
        if fi.pk or fi.not_null or not fi.null:
            parts.append("NOT NULL")
        if fi.pk and single_key:
            parts.append("PRIMARY KEY")
        if fi.unique:
            parts.append("UNIQUE")
        if fi.auto and dialect.auto_incr_str():
            parts.append(dialect.auto_incr_str())
        if fi.initial is not None:
            parts.append(f"DEFAULT {dialect.default_literal(fi.field_type, fi.initial)}")
        return " ".join(parts)

    def sql_for_indexes(self, dialect: Dialect, if_not_exists: bool = False) -> list[str]:
        q = dialect.quote_field
        indexes = [
            IndexInfo(f"{self.table}_{fi.column}", (fi.name,))
            for fi in self.fields.db_fields
            if fi.index and not fi.transient
        ]
        indexes.extend(self.indexes.values())
        statements = []
        for index in indexes:
            command = "CREATE UNIQUE INDEX" if index.unique else "CREATE INDEX"
            if if_not_exists:
                command = f"{command} IF NOT EXISTS"
            cols = ", ".join(q(self.col_map(n).column) for n in index.fields)
            using = ""
            if index.index_type and dialect.name in ("mysql", "mariadb"):
                using = f" USING {index.index_type.upper()}"
            statements.append(
                f"{command} {q(index.name)} ON {self.quoted_table(dialect)} "
                f"({cols}){using}{dialect.query_suffix()}"
            )
        return statements

    def sql_for_drop(self, dialect: Dialect, if_exists: bool = False) -> str:
        command = "DROP TABLE"
        if if_exists:
            command = dialect.if_table_exists(command, self.schema, self.table)
        return f"{command} {self.quoted_table(dialect)}{dialect.query_suffix()}"

    # ── Junctions ────────────────────────────────────────────────────

    @classmethod
    def for_junction(
        cls, m1: ModelInfo, m2: ModelInfo, table: str | None = None
    ) -> ModelInfo:
        """
        Synthesize the junction table linking ``m1`` and ``m2``.

        Both sides need exactly one primary key. The junction's two
        foreign keys together form its primary key.
        """
        for side in (m1, m2):
            if len(side.keys) != 1:
                raise RelationResolutionError(
                    "m2m sides need exactly one primary key", side.full_name
                )
        table = table or f"{m1.table}_{m2.table}"
        type_name = camel_string(table)
        mi = cls(
            name=type_name,
            full_name=f"{m1.module}.{type_name}",
            table=table,
            module=m1.module,
            schema=m1.schema,
            manual=False,
        )
        first = m1.table
        second = m2.table if m2.table != m1.table else f"to_{m2.table}"
        for field_name, side in ((first, m1), (second, m2)):
            pk = side.keys[0]
            mi.add_field(
                ColumnDescriptor(
                    name=field_name,
                    column=f"{field_name}_{pk.column}",
                    field_type=FieldType.FOREIGN_KEY,
                    model_table=table,
                    full_name=f"{mi.full_name}.{field_name}",
                    python_type=side.model_type,
                    pk=True,
                    column_explicit=True,
                    in_model=False,
                    relation=RelationInfo(
                        kind=FieldType.FOREIGN_KEY,
                        target=side.model_type,
                        target_table=side.table,
                    ),
                )
            )
        return mi
