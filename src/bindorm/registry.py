"""
Model Registry.

``ModelRegistry`` collects model descriptors during startup. Its
``bootstrap()`` runs the relationship resolver once and returns a
read-only ``ModelCatalog`` that query-time components consume::

    registry = ModelRegistry()
    registry.register(User)
    registry.register(Group)
    catalog = registry.bootstrap()

Models are keyed by table name; relation descriptors hold table names,
which the catalog turns back into descriptors on demand.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel

from .config import DEFAULT_SETTINGS, ORMSettings
from .exceptions import (
    ConfigurationError,
    DuplicateModelError,
    ModelNotRegisteredError,
    ModelRegistrationError,
    RegistryFrozenError,
    UnresolvableValueError,
)
from .fields import ColumnDescriptor
from .model import ModelInfo
from .reflector import reflect_model
from .relations import RelationResolver
from .utils import model_identity, snake_string

logger = logging.getLogger(__name__)


class _ModelLookup:
    def __init__(self, settings: ORMSettings) -> None:
        self.settings = settings
        self._by_table: dict[str, ModelInfo] = {}
        self._by_full_name: dict[str, ModelInfo] = {}
        self._by_type: dict[type, ModelInfo] = {}

    def __contains__(self, table: object) -> bool:
        return table in self._by_table

    def __iter__(self) -> Iterator[ModelInfo]:
        return iter(list(self._by_table.values()))

    def __len__(self) -> int:
        return len(self._by_table)

    def models(self) -> list[ModelInfo]:
        """Descriptors in registration order, junctions included."""
        return list(self._by_table.values())

    def find(self, table: str) -> ModelInfo | None:
        return self._by_table.get(table)

    def get(self, table: str) -> ModelInfo:
        mi = self._by_table.get(table)
        if mi is None:
            raise ModelNotRegisteredError(table)
        return mi

    def find_by_full_name(self, full_name: str) -> ModelInfo | None:
        return self._by_full_name.get(full_name)

    def get_by_full_name(self, full_name: str) -> ModelInfo:
        mi = self._by_full_name.get(full_name)
        if mi is None:
            raise ModelNotRegisteredError(full_name)
        return mi

    def for_type(self, model: Any) -> ModelInfo:
        """Descriptor for a model class or instance."""
        cls = model if isinstance(model, type) else type(model)
        mi = self._by_type.get(cls)
        if mi is None:
            raise ModelNotRegisteredError(getattr(cls, "__qualname__", repr(cls)))
        return mi

    def is_model(self, value: Any) -> bool:
        return type(value) in self._by_type

    def target_of(self, fi: ColumnDescriptor) -> ModelInfo:
        """Model on the far side of a relation field."""
        if fi.relation is None or fi.relation.target_table is None:
            raise ModelNotRegisteredError(f"target of {fi.full_name}")
        return self.get(fi.relation.target_table)

    def pk_value(self, obj: Any) -> Any:
        """
        Primary-key value of a model instance.

        Raises:
            UnresolvableValueError: Composite keys or an unset key.
        """
        mi = self.for_type(obj)
        if len(mi.keys) != 1:
            raise UnresolvableValueError(
                f"`{mi.full_name}` has {len(mi.keys)} primary keys; "
                "a single key is required to use it as a value"
            )
        pk = mi.keys[0]
        value = getattr(obj, pk.name, None)
        if isinstance(value, BaseModel) and self.is_model(value):
            value = self.pk_value(value)
        if value is None:
            raise UnresolvableValueError(
                f"`{mi.full_name}` instance has no primary key value"
            )
        return value

    def _store(self, mi: ModelInfo) -> None:
        self._by_table[mi.table] = mi
        self._by_full_name[mi.full_name] = mi
        if mi.model_type is not None:
            self._by_type[mi.model_type] = mi


class ModelCatalog(_ModelLookup):
    """Read-only view of a bootstrapped registry."""

    def __init__(self, source: _ModelLookup) -> None:
        super().__init__(source.settings)
        for mi in source.models():
            self._store(mi)

    def __repr__(self) -> str:
        return f"<ModelCatalog tables={list(self._by_table)}>"


class ModelRegistry(_ModelLookup):
    """
    Startup-time store of model descriptors.

    Registration is unique on both table name and model identity.
    Once ``bootstrap()`` has run the registry is frozen; further
    ``bootstrap()`` calls return the same catalog.
    """

    def __init__(self, settings: ORMSettings = DEFAULT_SETTINGS) -> None:
        super().__init__(settings)
        self._lock = threading.RLock()
        self._catalog: ModelCatalog | None = None

    @property
    def bootstrapped(self) -> bool:
        return self._catalog is not None

    def register(self, model: Any, *, schema: str = "") -> ModelInfo:
        """
        Reflect and store a pydantic model class (or an instance of one).

        Raises:
            RegistryFrozenError: After bootstrap.
            DuplicateModelError: Table name or identity already taken.
            FieldDefinitionError: A field is declared incorrectly.
        """
        cls = model if isinstance(model, type) else type(model)
        if not issubclass(cls, BaseModel):
            raise ModelRegistrationError(
                f"`{cls.__qualname__}` is not a pydantic model"
            )
        with self._lock:
            if self._catalog is not None:
                raise RegistryFrozenError(
                    f"cannot register `{cls.__qualname__}` after bootstrap"
                )
            full_name = model_identity(cls)
            table = _table_name(cls)
            if full_name in self._by_full_name:
                raise DuplicateModelError("model", full_name)
            if table in self._by_table:
                raise DuplicateModelError("table", table)

            mi = ModelInfo(
                name=cls.__name__,
                full_name=full_name,
                table=table,
                module=cls.__module__,
                model_type=cls,
                schema=schema or cls.__dict__.get("__table_schema__", ""),
            )
            for fi in reflect_model(cls, table, self.settings):
                mi.add_field(fi)
            if any(k.auto for k in mi.keys) and len(mi.keys) != 1:
                raise ConfigurationError(
                    f"`{full_name}`: auto increment requires exactly one key"
                )
            _apply_class_hooks(mi, cls)
            self._store(mi)
            logger.debug("Registered model %s -> table %s", full_name, table)
            return mi

    def register_all(self, *models: Any) -> list[ModelInfo]:
        return [self.register(m) for m in models]

    def add_junction(self, mi: ModelInfo) -> None:
        """Store a synthesized junction; used by the relation resolver."""
        if mi.table in self._by_table:
            raise DuplicateModelError("table", mi.table)
        if mi.full_name in self._by_full_name:
            raise DuplicateModelError("model", mi.full_name)
        self._store(mi)
        logger.debug("Synthesized junction table %s", mi.table)

    def bootstrap(self) -> ModelCatalog:
        """
        Resolve relations across all models and freeze the registry.

        Raises:
            RelationResolutionError: Any relation cannot be wired.
        """
        with self._lock:
            if self._catalog is not None:
                return self._catalog
            # Resolve on copies so a failed run leaves the registry untouched.
            staging = ModelRegistry(self.settings)
            for mi in self._by_table.values():
                staging._store(mi.copy())
            RelationResolver(staging).run()
            for staged in staging.models():
                current = self._by_table.get(staged.table)
                if current is None:
                    self._store(staged)
                else:
                    current.adopt(staged)
            self._catalog = ModelCatalog(self)
            logger.info("Bootstrapped %d models", len(self._by_table))
            return self._catalog

    def clear(self) -> None:
        """Forget every model. Intended for tests."""
        with self._lock:
            self._by_table.clear()
            self._by_full_name.clear()
            self._by_type.clear()
            self._catalog = None


def _table_name(cls: type) -> str:
    name = cls.__dict__.get("__tablename__")
    if isinstance(name, str) and name:
        return name
    return snake_string(cls.__name__)


def _apply_class_hooks(mi: ModelInfo, cls: type) -> None:
    for group in getattr(cls, "__table_indexes__", ()) or ():
        names = (group,) if isinstance(group, str) else tuple(group)
        mi.add_index(f"{mi.table}_{'_'.join(names)}", *names)
    for group in getattr(cls, "__table_unique__", ()) or ():
        mi.set_unique_together(*group)
    version = getattr(cls, "__version_field__", None)
    if version:
        mi.set_version_col(version)
