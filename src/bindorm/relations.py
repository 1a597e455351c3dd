"""
Relationship Resolver.

Runs once, from ``ModelRegistry.bootstrap()``, in four stages:

1. forward link: resolve every relation target, settle foreign-key
   column names and attach (or synthesize) m2m junction tables;
2. reverse synthesis: give every forward relation a reverse field on its
   target when the target does not declare one;
3. m2m cross link: find the owner-side and target-side foreign keys of
   every junction;
4. reverse pairing: cross-link each reverse field with its forward field.

Every failure raises ``RelationResolutionError``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from .exceptions import DuplicateModelError, RelationResolutionError
from .fields import ColumnDescriptor, FieldType, RelationInfo
from .model import ModelInfo
from .utils import model_identity, snake_string

if TYPE_CHECKING:
    from .registry import ModelRegistry

logger = logging.getLogger(__name__)

_SINGULAR_FORWARD = (FieldType.FOREIGN_KEY, FieldType.ONE_TO_ONE)


class RelationResolver:
    def __init__(self, registry: ModelRegistry) -> None:
        self._registry = registry
        self._attempts = registry.settings.reverse_name_attempts

    def run(self) -> None:
        self.link_forward()
        self.synthesize_reverse()
        self.link_m2m()
        self.pair_reverse()

    # ── Stage 1 ──────────────────────────────────────────────────────

    def link_forward(self) -> None:
        for mi in self._registry.models():
            for fi in list(mi.fields):
                if fi.relation is None:
                    continue
                target = self._resolve_target(fi)
                fi.relation.target_table = target.table
                if fi.field_type in _SINGULAR_FORWARD:
                    self._settle_column(mi, fi, target)
                elif fi.field_type is FieldType.MANY_TO_MANY:
                    self._attach_through(mi, fi, target)

    def _resolve_target(self, fi: ColumnDescriptor) -> ModelInfo:
        assert fi.relation is not None
        if fi.relation.target_table is not None:
            return self._registry.get(fi.relation.target_table)
        target = fi.relation.target
        mi = None
        if isinstance(target, type):
            mi = self._registry.find_by_full_name(model_identity(target))
        if mi is None:
            name = getattr(target, "__qualname__", repr(target))
            raise RelationResolutionError(
                f"relation target `{name}` is not registered", fi.full_name
            )
        return mi

    def _settle_column(
        self, mi: ModelInfo, fi: ColumnDescriptor, target: ModelInfo
    ) -> None:
        if len(target.keys) != 1:
            raise RelationResolutionError(
                f"relation target `{target.table}` needs exactly one primary key",
                fi.full_name,
            )
        if fi.column_explicit:
            return
        column = f"{snake_string(fi.name)}_{target.keys[0].column}"
        if not mi.fields.rename_column(fi, column):
            raise RelationResolutionError(
                f"derived column `{column}` collides with another column",
                fi.full_name,
            )

    def _attach_through(
        self, mi: ModelInfo, fi: ColumnDescriptor, target: ModelInfo
    ) -> None:
        rel = fi.relation
        assert rel is not None
        if rel.rel_through:
            through = self._registry.find_by_full_name(rel.rel_through)
            if through is None:
                raise RelationResolutionError(
                    f"rel_through `{rel.rel_through}` is not registered", fi.full_name
                )
        else:
            through = ModelInfo.for_junction(mi, target, rel.rel_table or None)
            try:
                self._registry.add_junction(through)
            except DuplicateModelError as exc:
                raise RelationResolutionError(
                    f"junction table `{through.table}` collides with an "
                    "existing registration",
                    fi.full_name,
                ) from exc
        through.is_through = True
        rel.through_table = through.table

    # ── Stage 2 ──────────────────────────────────────────────────────

    def synthesize_reverse(self) -> None:
        for mi in self._registry.models():
            for fi in mi.fields.rel_fields:
                assert fi.relation is not None and fi.relation.target_table
                target = self._registry.get(fi.relation.target_table)
                if any(
                    r.relation is not None and r.relation.target_table == mi.table
                    for r in target.fields.reverse_fields
                ):
                    continue
                kind = (
                    FieldType.REVERSE_ONE
                    if fi.field_type is FieldType.ONE_TO_ONE
                    else FieldType.REVERSE_MANY
                )
                name = self._free_name(target, snake_string(mi.name), fi)
                target.add_field(
                    ColumnDescriptor(
                        name=name,
                        column=name,
                        field_type=kind,
                        model_table=target.table,
                        full_name=f"{target.full_name}.{name}",
                        python_type=mi.model_type,
                        in_model=False,
                        relation=RelationInfo(
                            kind=kind,
                            target=mi.model_type,
                            target_table=mi.table,
                            rel_table=fi.relation.rel_table,
                            rel_through=fi.relation.rel_through,
                        ),
                    )
                )
                logger.debug(
                    "Synthesized reverse field %s.%s for %s",
                    target.table,
                    name,
                    fi.full_name,
                )

    def _free_name(self, target: ModelInfo, base: str, fi: ColumnDescriptor) -> str:
        candidates = [base] + [f"{base}{i}" for i in range(self._attempts)]
        for name in candidates:
            if name not in target.fields and target.fields.get_by_column(name) is None:
                return name
        raise RelationResolutionError(
            f"no free reverse field name on `{target.table}` "
            f"(tried {', '.join(candidates)})",
            fi.full_name,
        )

    # ── Stage 3 ──────────────────────────────────────────────────────

    def link_m2m(self) -> None:
        for mi in self._registry.models():
            for fi in mi.fields.by_type(FieldType.MANY_TO_MANY):
                rel = fi.relation
                assert rel is not None and rel.through_table is not None
                through = self._registry.get(rel.through_table)
                links = [
                    f
                    for f in through.fields.rel_fields
                    if f.field_type in _SINGULAR_FORWARD and f.relation is not None
                ]
                owner = next(
                    (f for f in links if f.relation.target_table == mi.table), None
                )
                target = next(
                    (
                        f
                        for f in links
                        if f.relation.target_table == rel.target_table
                        and f is not owner
                    ),
                    None,
                )
                if owner is None or target is None:
                    raise RelationResolutionError(
                        f"junction `{through.table}` lacks foreign keys to both "
                        f"`{mi.table}` and `{rel.target_table}`",
                        fi.full_name,
                    )
                rel.reverse_field = owner.name
                rel.reverse_field_two = target.name

    # ── Stage 4 ──────────────────────────────────────────────────────

    def pair_reverse(self) -> None:
        for mi in self._registry.models():
            for fi in mi.fields.reverse_fields:
                rel = fi.relation
                assert rel is not None and rel.target_table is not None
                target = self._registry.get(rel.target_table)
                if fi.field_type is FieldType.REVERSE_ONE:
                    ffi = self._pick(
                        fi,
                        self._pointing_at(target, FieldType.ONE_TO_ONE, mi),
                        lambda f: f.relation.reverse_field is None,
                    )
                    if ffi is None:
                        raise RelationResolutionError(
                            f"no one-to-one field on `{target.table}` points "
                            f"back at `{mi.table}`",
                            fi.full_name,
                        )
                    self._cross(fi, ffi)
                    continue

                ffi = self._pick(
                    fi,
                    self._pointing_at(target, FieldType.FOREIGN_KEY, mi),
                    lambda f: f.relation.reverse_field is None,
                )
                if ffi is not None:
                    self._cross(fi, ffi)
                    continue
                ffi = self._pick(
                    fi,
                    [
                        f
                        for f in self._pointing_at(target, FieldType.MANY_TO_MANY, mi)
                        if _through_matches(fi, f)
                    ],
                    lambda f: f.relation.reverse_field_m2m is None,
                )
                if ffi is None:
                    raise RelationResolutionError(
                        f"no foreign key or m2m field on `{target.table}` "
                        f"points back at `{mi.table}`",
                        fi.full_name,
                    )
                frel = ffi.relation
                assert frel is not None
                rel.reverse_field = frel.reverse_field_two
                rel.reverse_field_two = frel.reverse_field
                rel.through_table = frel.through_table
                rel.reverse_field_m2m = ffi.name
                frel.reverse_field_m2m = fi.name

    @staticmethod
    def _pointing_at(
        target: ModelInfo, kind: FieldType, mi: ModelInfo
    ) -> list[ColumnDescriptor]:
        return [
            f
            for f in target.fields.by_type(kind)
            if f.relation is not None and f.relation.target_table == mi.table
        ]

    @staticmethod
    def _pick(
        fi: ColumnDescriptor,
        candidates: list[ColumnDescriptor],
        unpaired: Callable[[ColumnDescriptor], bool],
    ) -> ColumnDescriptor | None:
        pool = [c for c in candidates if unpaired(c)] or candidates
        if len(pool) > 1:
            logger.warning(
                "Ambiguous reverse pairing for %s between %s; using %s",
                fi.full_name,
                ", ".join(c.full_name for c in pool),
                pool[0].full_name,
            )
        return pool[0] if pool else None

    @staticmethod
    def _cross(fi: ColumnDescriptor, ffi: ColumnDescriptor) -> None:
        assert fi.relation is not None and ffi.relation is not None
        fi.relation.reverse_field = ffi.name
        ffi.relation.reverse_field = fi.name


def _through_matches(fi: ColumnDescriptor, ffi: ColumnDescriptor) -> bool:
    rel, frel = fi.relation, ffi.relation
    assert rel is not None and frel is not None
    if rel.rel_through and rel.rel_through == frel.rel_through:
        return True
    if rel.rel_table and rel.rel_table == frel.rel_table:
        return True
    return not rel.rel_through and not rel.rel_table
