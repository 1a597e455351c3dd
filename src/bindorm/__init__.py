"""bindorm: tag-driven object/relational mapping over SQLAlchemy engines.

Models are pydantic classes whose fields carry ``Tag`` markers; a
``ModelRegistry`` reflects them, resolves relations once at bootstrap and
hands out a ``ModelCatalog`` that ``DbMap`` executes against.
"""

from __future__ import annotations

# ── Configuration ────────────────────────────────────────────────
from .config import DEFAULT_SETTINGS, ORMSettings

# ── Query layer ──────────────────────────────────────────────────
from .compiler import ConditionCompiler, JoinTracker
from .conditions import Condition
from .converters import DefaultTypeConverter, TypeConverter
from .criteria import Criteria, Criterion, Projection, Projections, Restrictions

# ── Execution ────────────────────────────────────────────────────
from .dbmap import DATABASE, DatabaseHolder, DbMap, M2MManager, database, set_database
from .dialects import Dialect, SQLAlchemyDialect, dialect_for

# ── Errors ───────────────────────────────────────────────────────
from .exceptions import (
    BindORMError,
    ConditionError,
    ConfigurationError,
    DatabaseNotConfiguredError,
    DuplicateModelError,
    FieldDefinitionError,
    FieldNotFoundError,
    ModelNotRegisteredError,
    ModelRegistrationError,
    MultipleRowsError,
    NoRowsError,
    OperatorArgumentError,
    OperatorNotFoundError,
    OptimisticLockError,
    QueryConstructionError,
    RegistryFrozenError,
    RelationResolutionError,
    RelationshipTraversalError,
    UnknownTagError,
    UnresolvableValueError,
    UnsupportedDialectError,
)

# ── Model description ────────────────────────────────────────────
from .fields import ColumnDescriptor, FieldType, OnDelete, RelationInfo
from .model import IndexInfo, ModelInfo
from .operators import DEFAULT_REGISTRY, Operator, OperatorRegistry, SQLOperator
from .queryset import QuerySet
from .registry import ModelCatalog, ModelRegistry
from .statement import SelectStatement
from .tags import Tag

__all__ = [
    "DATABASE",
    "DEFAULT_REGISTRY",
    "DEFAULT_SETTINGS",
    "BindORMError",
    "ColumnDescriptor",
    "Condition",
    "ConditionCompiler",
    "ConditionError",
    "ConfigurationError",
    "Criteria",
    "Criterion",
    "DatabaseHolder",
    "DatabaseNotConfiguredError",
    "DbMap",
    "DefaultTypeConverter",
    "Dialect",
    "DuplicateModelError",
    "FieldDefinitionError",
    "FieldNotFoundError",
    "FieldType",
    "IndexInfo",
    "JoinTracker",
    "M2MManager",
    "ModelCatalog",
    "ModelInfo",
    "ModelNotRegisteredError",
    "ModelRegistrationError",
    "ModelRegistry",
    "MultipleRowsError",
    "NoRowsError",
    "ORMSettings",
    "OnDelete",
    "Operator",
    "OperatorArgumentError",
    "OperatorNotFoundError",
    "OperatorRegistry",
    "OptimisticLockError",
    "Projection",
    "Projections",
    "QueryConstructionError",
    "QuerySet",
    "RegistryFrozenError",
    "RelationInfo",
    "RelationResolutionError",
    "RelationshipTraversalError",
    "Restrictions",
    "SQLAlchemyDialect",
    "SQLOperator",
    "SelectStatement",
    "Tag",
    "TypeConverter",
    "UnknownTagError",
    "UnresolvableValueError",
    "UnsupportedDialectError",
    "database",
    "dialect_for",
    "set_database",
]
