"""
Value conversion at the driver boundary.

``TypeConverter.to_db`` turns attribute values into driver-bindable
primitives using the column's semantic type; ``from_db`` reverses it for
values read back from rows.
"""

from __future__ import annotations

import json
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, get_origin
from uuid import UUID

from pydantic import BaseModel

from .exceptions import UnresolvableValueError
from .fields import ColumnDescriptor, FieldType
from .utils import DATE_FORMAT, DATETIME_FORMAT, TIME_FORMAT, parse_temporal, to_zone

if TYPE_CHECKING:
    from datetime import tzinfo

    from .dialects import Dialect
    from .registry import ModelCatalog


class TypeConverter(Protocol):
    def to_db(self, field: ColumnDescriptor, value: Any) -> Any: ...

    def from_db(self, field: ColumnDescriptor, value: Any) -> Any: ...


def format_temporal(
    field_type: FieldType, value: datetime | date | time, zone: tzinfo | None = None
) -> str:
    """Format a temporal value the way a column of ``field_type`` stores it."""
    if isinstance(value, datetime):
        value = to_zone(value, zone)
        if field_type is FieldType.DATE:
            return value.strftime(DATE_FORMAT)
        if field_type is FieldType.TIME:
            return value.strftime(TIME_FORMAT)
        return value.strftime(DATETIME_FORMAT)
    if isinstance(value, date):
        if field_type is FieldType.DATETIME:
            return datetime.combine(value, time()).strftime(DATETIME_FORMAT)
        return value.strftime(DATE_FORMAT)
    return value.strftime(TIME_FORMAT)


def parse_temporal_for(field_type: FieldType, raw: str) -> datetime | date | time:
    try:
        value = parse_temporal(raw)
    except ValueError:
        raise UnresolvableValueError(
            f"`{raw}` is not a valid {field_type.value} value"
        ) from None
    return value


class DefaultTypeConverter:
    """
    Conversion rules shared by bind instances, conditions and row loading.

    Model instances are reduced to their primary key; foreign keys read
    from rows come back as key-only stub instances of the target model.
    """

    def __init__(
        self,
        catalog: ModelCatalog,
        dialect: Dialect,
        zone: tzinfo | None = None,
    ) -> None:
        self._catalog = catalog
        self._dialect = dialect
        self._zone = zone

    # ── Outbound ─────────────────────────────────────────────────────

    def to_db(self, field: ColumnDescriptor, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, Enum):
            value = value.value
        ft = field.field_type
        if ft.is_relation:
            if isinstance(value, BaseModel):
                return self._catalog.pk_value(value)
            return value
        if ft in (FieldType.JSON, FieldType.JSONB):
            if isinstance(value, str):
                return value
            if isinstance(value, BaseModel):
                return value.model_dump_json()
            return json.dumps(value)
        if ft.is_temporal:
            if isinstance(value, str):
                value = parse_temporal_for(ft, value)
            return format_temporal(ft, value, self._zone)
        if isinstance(value, Decimal) and not self._dialect.supports_native_decimal:
            return str(value)
        if isinstance(value, UUID):
            return str(value)
        return value

    # ── Inbound ──────────────────────────────────────────────────────

    def from_db(self, field: ColumnDescriptor, value: Any) -> Any:
        if value is None:
            return None
        ft = field.field_type
        if ft in (FieldType.FOREIGN_KEY, FieldType.ONE_TO_ONE):
            return self._stub(field, value)
        if ft is FieldType.BOOLEAN:
            return bool(value)
        if ft.is_integer:
            value = int(value)
        elif ft is FieldType.FLOAT:
            value = float(value)
        elif ft is FieldType.DECIMAL:
            value = Decimal(str(value))
        elif ft.is_temporal:
            value = self._temporal(ft, value)
        elif ft in (FieldType.JSON, FieldType.JSONB):
            if isinstance(value, (str, bytes)):
                value = json.loads(value)
            py = field.python_type
            if _is_class(py) and issubclass(py, BaseModel):
                return py.model_validate(value)
            return value
        py = field.python_type
        if _is_class(py) and issubclass(py, (Enum, UUID)):
            return py(value)
        return value

    def _temporal(self, ft: FieldType, value: Any) -> Any:
        if isinstance(value, str):
            value = parse_temporal_for(ft, value)
        if ft is FieldType.DATE and isinstance(value, datetime):
            return value.date()
        if ft is FieldType.TIME and isinstance(value, datetime):
            return value.time()
        if ft is FieldType.DATETIME and not isinstance(value, datetime):
            if isinstance(value, date):
                return datetime.combine(value, time())
        return value

    def _stub(self, field: ColumnDescriptor, value: Any) -> Any:
        target = self._catalog.target_of(field)
        if target.model_type is None:
            return value
        pk = target.primary_key
        return target.model_type.model_construct(**{pk.name: self.from_db(pk, value)})


def _is_class(tp: Any) -> bool:
    return isinstance(tp, type) and get_origin(tp) is None
