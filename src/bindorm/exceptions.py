"""
Exception hierarchy for the mapping engine.

Two tiers mirror when a problem can be detected:

* ``ConfigurationError`` - bad tags, duplicate registration, unresolved
  relation targets or malformed junctions. Raised from registration and
  bootstrap; callers are expected to abort startup.
* ``QueryConstructionError`` - unknown field paths, wrong operator arity,
  values that cannot be bound. Raised the moment a condition or bind plan
  is assembled.

Errors coming from the database driver are never wrapped.
All exceptions provide ``to_dict()`` for API-friendly error responses.
"""

from __future__ import annotations

from difflib import get_close_matches
from typing import Any


class BindORMError(Exception):
    """Base exception for all mapping errors."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": str(self),
        }


# ── Configuration tier ───────────────────────────────────────────────


class ConfigurationError(BindORMError):
    """Model definitions are inconsistent; detected at startup."""


class FieldDefinitionError(ConfigurationError):
    """A single field's declaration or tag is invalid."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(f"{message} `{path}`" if path else message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "FIELD_DEFINITION_ERROR",
            "message": self.message,
            "path": self.path,
        }


class UnknownTagError(FieldDefinitionError):
    """
    Unrecognized tag attribute.

    Provides fuzzy-matched suggestions for likely intended attributes.
    """

    def __init__(
        self, attribute: str, valid_attributes: list[str], path: str | None = None
    ) -> None:
        self.attribute = attribute
        self.valid_attributes = valid_attributes
        self.suggestions = get_close_matches(
            attribute, valid_attributes, n=3, cutoff=0.6
        )

        message = f"Unknown tag attribute: '{attribute}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message, path)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "UNKNOWN_TAG",
            "attribute": self.attribute,
            "path": self.path,
            "suggestions": self.suggestions,
        }


class ModelRegistrationError(ConfigurationError):
    """A model could not be registered."""


class DuplicateModelError(ModelRegistrationError):
    """Table name or model identity registered twice."""

    def __init__(self, kind: str, value: str) -> None:
        self.kind = kind
        self.value = value
        super().__init__(f"{kind} `{value}` is already registered")


class RegistryFrozenError(ModelRegistrationError):
    """Registration attempted after bootstrap."""


class RelationResolutionError(ConfigurationError):
    """Bootstrap could not wire a relation field."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(f"{message} `{path}`" if path else message)


class UnsupportedDialectError(ConfigurationError):
    """The SQLAlchemy dialect cannot be driven by this engine."""


# ── Query construction tier ──────────────────────────────────────────


class QueryConstructionError(BindORMError):
    """A condition, statement or bind instance could not be assembled."""


class FieldNotFoundError(QueryConstructionError):
    """
    A path segment names neither a field nor a column of a table.

    Lookup goes field name, lower-cased field name, then column, so the
    message lists the field names and the closest ones to the segment::

        no field or column `agee` on table `user` in path `agee__gt`
        (closest: age; fields: age, created, email, id, name, status)
    """

    def __init__(
        self,
        segment: str,
        table: str,
        fields: list[str],
        path: str | None = None,
    ) -> None:
        self.segment = segment
        self.table = table
        self.fields = sorted(fields)
        self.path = path or segment
        by_lower = {f.lower(): f for f in fields}
        matches = get_close_matches(segment.lower(), list(by_lower), n=3, cutoff=0.6)
        self.suggestions = [by_lower[m] for m in matches]

        message = f"no field or column `{segment}` on table `{table}`"
        if self.path != segment:
            message += f" in path `{self.path}`"
        hint = f"fields: {', '.join(self.fields)}"
        if self.suggestions:
            hint = f"closest: {', '.join(self.suggestions)}; {hint}"
        super().__init__(f"{message} ({hint})")

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "FIELD_NOT_FOUND",
            "table": self.table,
            "segment": self.segment,
            "path": self.path,
            "suggestions": self.suggestions,
            "fields": self.fields,
        }


class RelationshipTraversalError(QueryConstructionError):
    """A path steps through a scalar or past the one allowed relation hop."""

    def __init__(self, field: str, table: str, path: str | None = None) -> None:
        self.field = field
        self.table = table
        self.path = path or field
        super().__init__(
            f"cannot join through `{table}.{field}` in path `{self.path}`"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "RELATIONSHIP_TRAVERSAL",
            "table": self.table,
            "field": self.field,
            "path": self.path,
        }


class OperatorNotFoundError(QueryConstructionError):
    """No compiler strategy is registered for an operator keyword."""

    def __init__(self, operator: str, valid_operators: list[str]) -> None:
        self.operator = operator
        self.valid_operators = valid_operators
        self.suggestions = get_close_matches(operator, valid_operators, n=3, cutoff=0.6)

        message = f"Unknown operator: '{operator}'."
        if self.suggestions:
            message += f" Did you mean: {', '.join(self.suggestions)}?"
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "OPERATOR_NOT_FOUND",
            "operator": self.operator,
            "suggestions": self.suggestions,
            "valid_operators": sorted(self.valid_operators),
        }


class OperatorArgumentError(QueryConstructionError):
    """Wrong number or kind of arguments for an operator."""

    def __init__(self, operator: str, message: str) -> None:
        self.operator = operator
        super().__init__(f"operator `{operator}` {message}")


class UnresolvableValueError(QueryConstructionError):
    """A value cannot be turned into something the driver can bind."""


class ConditionError(QueryConstructionError):
    """A condition tree was built with invalid input."""


class ModelNotRegisteredError(QueryConstructionError):
    """Lookup of a type or table that the catalog does not know."""

    def __init__(self, model: str) -> None:
        self.model = model
        super().__init__(f"model `{model}` is not registered")


# ── Runtime ──────────────────────────────────────────────────────────


class DatabaseNotConfiguredError(BindORMError):
    """The process-wide database handle was read before being set."""


class OptimisticLockError(BindORMError):
    """
    A versioned update or delete matched no row.

    Either the row was removed or its version moved on since it was read.
    """

    def __init__(self, table: str, keys: tuple[Any, ...], version: int) -> None:
        self.table = table
        self.keys = keys
        self.version = version
        super().__init__(
            f"optimistic lock failed for `{table}` with keys {keys!r}: "
            f"expected version {version}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": "OPTIMISTIC_LOCK",
            "table": self.table,
            "keys": list(self.keys),
            "version": self.version,
        }


class NoRowsError(BindORMError):
    """A query expected exactly one row and found none."""


class MultipleRowsError(BindORMError):
    """A query expected exactly one row and found several."""
