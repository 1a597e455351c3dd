"""
Field Reflector.

Turns the declared fields of a pydantic model into ``ColumnDescriptor``
instances. Every configuration problem surfaces here as a
``FieldDefinitionError`` carrying the field's full path.
"""

from __future__ import annotations

import inspect
import logging
import types
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Union, get_args, get_origin
from uuid import UUID

from pydantic import BaseModel

from .config import DEFAULT_SETTINGS, ORMSettings
from .exceptions import FieldDefinitionError
from .fields import INTEGER_RANGES, ColumnDescriptor, FieldType, OnDelete, RelationInfo
from .tags import ParsedTag, collect_tags, parse_tag
from .utils import model_identity, parse_bool, snake_string

logger = logging.getLogger(__name__)

_REL_KINDS = {
    "fk": FieldType.FOREIGN_KEY,
    "one": FieldType.ONE_TO_ONE,
    "m2m": FieldType.MANY_TO_MANY,
}
_REVERSE_KINDS = {
    "one": FieldType.REVERSE_ONE,
    "many": FieldType.REVERSE_MANY,
}
_INTEGER_OVERRIDES = {ft.value: ft for ft in INTEGER_RANGES}
_CHAR_OVERRIDES = {
    "text": FieldType.TEXT,
    "json": FieldType.JSON,
    "jsonb": FieldType.JSONB,
}
_DATETIME_OVERRIDES = {"date": FieldType.DATE, "time": FieldType.TIME}
_SIZED_TYPES = frozenset({FieldType.CHAR, FieldType.JSON, FieldType.JSONB})
_INT8 = (-(2**7), 2**7 - 1)
_INT32_MAX = 2**31 - 1


def reflect_model(
    cls: type[BaseModel], table: str, settings: ORMSettings = DEFAULT_SETTINGS
) -> list[ColumnDescriptor]:
    """
    Reflect every mapped field of ``cls``.

    Inherited fields are flattened into the result, parents first; the
    descriptor's ``full_name`` names the class that declared the field.
    """
    identity = model_identity(cls)
    owners = _annotation_owners(cls)
    result: list[ColumnDescriptor] = []
    for name, info in cls.model_fields.items():
        if name.startswith("_"):
            continue
        owner, hint = owners.get(name, (cls, None))
        if hint is None:
            hint = info.annotation
        path = identity if owner is cls else f"{identity}.{owner.__name__}"
        fi = new_field_info(
            name,
            hint,
            table=table,
            path=f"{path}.{name}",
            extra_metadata=tuple(info.metadata),
            settings=settings,
        )
        if fi is not None:
            result.append(fi)
    return result


def new_field_info(
    name: str,
    hint: Any,
    *,
    table: str,
    path: str,
    extra_metadata: tuple[Any, ...] = (),
    settings: ORMSettings = DEFAULT_SETTINGS,
) -> ColumnDescriptor | None:
    """
    Build the descriptor for one field, or ``None`` when it is excluded.

    ``hint`` may carry ``Annotated`` metadata; ``Tag`` markers inside it
    (and in ``extra_metadata``) form the field's tag.
    """
    base, metadata = _strip_annotated(hint)
    base, optional = _unwrap_optional(base)
    base, inner_metadata = _strip_annotated(base)
    raw = collect_tags(_dedupe(metadata + inner_metadata + tuple(extra_metadata)))
    tag = parse_tag(raw, path)
    if tag.has("-"):
        logger.debug("Skipping excluded field %s", path)
        return None

    field_type, target = _resolve_kind(base, tag, path)
    fi = ColumnDescriptor(
        name=name,
        column=snake_string(name),
        field_type=field_type,
        model_table=table,
        full_name=path,
        python_type=target,
    )

    if field_type.is_relation:
        _apply_relation(fi, tag, path)
    else:
        fi.null = tag.has("null") or optional
    fi.index = tag.has("index")
    fi.unique = tag.has("unique")
    fi.pk = tag.has("pk")
    fi.auto = tag.has("auto")
    if "default" in tag.values:
        fi.initial = tag.get("default")

    if "column" in tag.values:
        fi.column = tag.get("column")
        fi.column_explicit = True
    elif field_type in (FieldType.FOREIGN_KEY, FieldType.ONE_TO_ONE):
        fi.column = f"{snake_string(name)}_id"

    if field_type is FieldType.ONE_TO_ONE:
        fi.unique = True
    if not field_type.has_column:
        fi.null = fi.index = fi.unique = fi.auto = fi.pk = False
        fi.initial = None

    if fi.relation is not None and field_type in (
        FieldType.FOREIGN_KEY,
        FieldType.ONE_TO_ONE,
    ):
        fi.relation.on_delete = _parse_on_delete(fi, tag.get("on_delete"), path)

    _apply_scalar_rules(fi, tag, settings, path, base)

    if fi.auto and not (fi.field_type.is_integer):
        raise FieldDefinitionError("auto is only allowed on integer fields", path)
    if fi.auto:
        fi.pk = True
    if fi.auto or fi.pk:
        fi.null = fi.index = fi.unique = False
    if fi.unique:
        fi.index = False

    if fi.auto or fi.pk or fi.unique or fi.field_type.is_temporal:
        fi.initial = None
    if fi.initial is not None:
        _validate_default(fi, path)
    return fi


# ── Annotation helpers ───────────────────────────────────────────────


def _annotation_owners(cls: type[BaseModel]) -> dict[str, tuple[type, Any]]:
    owners: dict[str, tuple[type, Any]] = {}
    for klass in reversed(cls.__mro__):
        if klass is BaseModel or not (
            isinstance(klass, type) and issubclass(klass, BaseModel)
        ):
            continue
        try:
            annotations = inspect.get_annotations(klass, eval_str=True)
        except NameError as exc:
            raise FieldDefinitionError(
                f"cannot resolve annotations ({exc})", model_identity(klass)
            ) from exc
        for name, hint in annotations.items():
            owners[name] = (klass, hint)
    return owners


def _strip_annotated(hint: Any) -> tuple[Any, tuple[Any, ...]]:
    if get_origin(hint) is Annotated:
        args = get_args(hint)
        return args[0], tuple(args[1:])
    return hint, ()


def _unwrap_optional(hint: Any) -> tuple[Any, bool]:
    origin = get_origin(hint)
    if origin is Union or origin is types.UnionType:
        args = get_args(hint)
        rest = [a for a in args if a is not type(None)]
        if len(rest) == 1 and len(args) == 2:
            return rest[0], True
    return hint, False


def _dedupe(metadata: tuple[Any, ...]) -> tuple[Any, ...]:
    seen: list[Any] = []
    for m in metadata:
        if not any(m is s for s in seen):
            seen.append(m)
    return tuple(seen)


def _model_class(tp: Any) -> type[BaseModel] | None:
    if isinstance(tp, type) and get_origin(tp) is None and issubclass(tp, BaseModel):
        return tp
    return None


def _list_element(tp: Any) -> Any:
    if get_origin(tp) is list:
        args = get_args(tp)
        return args[0] if args else None
    return None


# ── Kind detection ───────────────────────────────────────────────────


def _resolve_kind(base: Any, tag: ParsedTag, path: str) -> tuple[FieldType, Any]:
    rel = tag.get("rel").lower()
    reverse = tag.get("reverse").lower()
    if rel and reverse:
        raise FieldDefinitionError("rel and reverse cannot be combined", path)

    kind: FieldType | None = None
    if rel:
        kind = _REL_KINDS.get(rel)
        if kind is None:
            raise FieldDefinitionError("rel only allows fk, one or m2m", path)
    elif reverse:
        kind = _REVERSE_KINDS.get(reverse)
        if kind is None:
            raise FieldDefinitionError("reverse only allows one or many", path)

    if kind is not None:
        if kind.is_plural:
            target = _model_class(_list_element(base))
            if target is None:
                raise FieldDefinitionError(
                    f"{kind.value} field must be declared as list[Model]", path
                )
        else:
            target = _model_class(base)
            if target is None:
                raise FieldDefinitionError(
                    f"{kind.value} field must be declared as a model reference", path
                )
        return kind, target

    field_type = _detect_scalar(base, tag, path)
    return _apply_type_override(field_type, tag.get("type").lower(), path), base


def _detect_scalar(tp: Any, tag: ParsedTag, path: str) -> FieldType:
    if isinstance(tp, type) and get_origin(tp) is None:
        if issubclass(tp, Enum):
            members = list(tp)
            value_type = type(members[0].value) if members else str
            return _detect_scalar(value_type, tag, path)
        if issubclass(tp, bool):
            return FieldType.BOOLEAN
        if issubclass(tp, int):
            return FieldType.INTEGER
        if issubclass(tp, float):
            if "digits" in tag.values or "decimals" in tag.values:
                return FieldType.DECIMAL
            return FieldType.FLOAT
        if issubclass(tp, Decimal):
            return FieldType.DECIMAL
        if issubclass(tp, (str, UUID)):
            return FieldType.CHAR
        if issubclass(tp, datetime):
            return FieldType.DATETIME
        if issubclass(tp, date):
            return FieldType.DATE
        if issubclass(tp, time):
            return FieldType.TIME
        if issubclass(tp, (dict, list)):
            return FieldType.JSON
        if issubclass(tp, BaseModel):
            if tag.get("type").lower() in ("json", "jsonb"):
                return FieldType.JSON
            raise FieldDefinitionError(
                "model-typed field needs rel=fk|one, reverse=one or type=json", path
            )
    origin = get_origin(tp)
    if origin is dict:
        return FieldType.JSON
    if origin is list:
        if _model_class(_list_element(tp)) is not None:
            raise FieldDefinitionError(
                "list of models needs rel=m2m or reverse=many", path
            )
        return FieldType.JSON
    raise FieldDefinitionError(f"unsupported field type {tp!r}", path)


def _apply_type_override(field_type: FieldType, override: str, path: str) -> FieldType:
    if not override:
        return field_type
    if field_type in (FieldType.CHAR, FieldType.JSON) and override in _CHAR_OVERRIDES:
        if field_type is FieldType.JSON and override == "text":
            raise FieldDefinitionError("type=text needs a str field", path)
        return _CHAR_OVERRIDES[override]
    if field_type is FieldType.DATETIME and override in _DATETIME_OVERRIDES:
        return _DATETIME_OVERRIDES[override]
    if field_type.is_integer and override in _INTEGER_OVERRIDES:
        return _INTEGER_OVERRIDES[override]
    raise FieldDefinitionError(
        f"type={override} cannot be applied to a {field_type.value} field", path
    )


# ── Rules ────────────────────────────────────────────────────────────


def _apply_relation(fi: ColumnDescriptor, tag: ParsedTag, path: str) -> None:
    fi.relation = RelationInfo(kind=fi.field_type, target=fi.python_type)
    fi.null = tag.has("null")
    through = tag.get("rel_through")
    table = tag.get("rel_table")
    if not (through or table):
        return
    if fi.field_type not in (FieldType.MANY_TO_MANY, FieldType.REVERSE_MANY):
        raise FieldDefinitionError(
            "rel_table and rel_through only apply to m2m relations", path
        )
    if through and table:
        raise FieldDefinitionError(
            "rel_table and rel_through cannot be combined", path
        )
    if through and "." not in through:
        raise FieldDefinitionError(
            f"rel_through `{through}` must be a full `module.Type` name", path
        )
    fi.relation.rel_through = through
    fi.relation.rel_table = table


def _parse_on_delete(fi: ColumnDescriptor, raw: str, path: str) -> OnDelete:
    if not raw:
        return OnDelete.CASCADE
    try:
        policy = OnDelete(raw.lower())
    except ValueError:
        raise FieldDefinitionError(
            f"on_delete `{raw}` must be one of "
            f"{', '.join(p.value for p in OnDelete)}",
            path,
        ) from None
    if policy is OnDelete.SET_DEFAULT and fi.initial is None:
        raise FieldDefinitionError("on_delete=set_default needs a default", path)
    if policy is OnDelete.SET_NULL and not fi.null:
        raise FieldDefinitionError("on_delete=set_null needs null", path)
    return policy


def _apply_scalar_rules(
    fi: ColumnDescriptor,
    tag: ParsedTag,
    settings: ORMSettings,
    path: str,
    base: Any,
) -> None:
    ft = fi.field_type
    if ft in _SIZED_TYPES:
        if "size" in tag.values:
            fi.size = _parse_int(tag.get("size"), (1, _INT32_MAX), "size", path)
        elif base is UUID:
            fi.size = 36
        elif ft is FieldType.CHAR:
            fi.size = settings.default_char_size
    if ft is FieldType.TEXT:
        fi.index = fi.unique = False
    if ft.is_temporal:
        fi.auto_now = tag.has("auto_now")
        fi.auto_now_add = tag.has("auto_now_add")
    if ft is FieldType.DECIMAL:
        if "digits" not in tag.values or "decimals" not in tag.values:
            raise FieldDefinitionError("decimal fields need digits and decimals", path)
        fi.digits = _parse_int(tag.get("digits"), _INT8, "digits", path)
        fi.decimals = _parse_int(tag.get("decimals"), _INT8, "decimals", path)


def _parse_int(raw: str, bounds: tuple[int, int], what: str, path: str) -> int:
    try:
        value = int(raw)
    except ValueError:
        raise FieldDefinitionError(f"wrong {what} value `{raw}`", path) from None
    if not bounds[0] <= value <= bounds[1]:
        raise FieldDefinitionError(f"{what} value `{raw}` is out of range", path)
    return value


def _validate_default(fi: ColumnDescriptor, path: str) -> None:
    raw = fi.initial or ""
    ft = fi.field_type
    try:
        if ft is FieldType.BOOLEAN:
            parse_bool(raw)
        elif ft in (FieldType.FLOAT, FieldType.DECIMAL):
            float(raw)
        elif ft.is_integer:
            _parse_int(raw, INTEGER_RANGES[ft], "default", path)
    except ValueError:
        raise FieldDefinitionError(f"wrong default value `{raw}`", path) from None
