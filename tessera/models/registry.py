"""
Model registry.

Holds every registered ``ModelInfo`` keyed by table name and by full class
name. Registration happens at import/startup time; ``bootstrap()`` then wires
relations once:

1. resolve every relation's target model, creating implicit m2m through
   tables (or binding an explicit ``rel_through`` model)
2. synthesize a reverse field on targets that do not declare one
3. locate the two foreign keys of every m2m through model
4. pair reverse fields with the forward field pointing back
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from ..faults import ModelRegistrationFault
from .field_info import FieldInfo
from .fields import FieldType, IS_INTEGER_FIELD
from .model_info import ModelInfo, new_m2m_model_info, new_model_info
from .utils import get_full_name, get_table_name, snake_string

logger = logging.getLogger("tessera.models.registry")

__all__ = [
    "ModelCache",
    "model_cache",
    "register_model",
    "register_model_with_prefix",
    "register_model_with_suffix",
    "bootstrap",
    "reset_model_cache",
]


class ModelCache:
    """Registry of model metadata. Mutations hold ``_lock``."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._orders: List[str] = []
        self._cache: Dict[str, ModelInfo] = {}
        self._cache_by_full_name: Dict[str, ModelInfo] = {}
        self.done = False

    # ── Lookups ──────────────────────────────────────────────────────

    def all(self) -> Dict[str, ModelInfo]:
        return dict(self._cache)

    def all_ordered(self) -> List[ModelInfo]:
        return [self._cache[table] for table in self._orders]

    def empty(self) -> bool:
        return not self._cache

    def get(self, table: str) -> Optional[ModelInfo]:
        return self._cache.get(table)

    def get_by_full_name(self, name: str) -> Optional[ModelInfo]:
        return self._cache_by_full_name.get(name)

    def get_by_md(self, md: Any) -> Optional[ModelInfo]:
        """Look up by a model instance or class."""
        cls = md if isinstance(md, type) else type(md)
        return self.get_by_full_name(get_full_name(cls))

    def set(self, table: str, mi: ModelInfo) -> Optional[ModelInfo]:
        """Store ``mi``; returns the previous entry for ``table`` if any."""
        previous = self._cache.get(table)
        self._cache[table] = mi
        self._cache_by_full_name[mi.full_name] = mi
        if previous is None:
            self._orders.append(table)
        return previous

    def clean(self) -> None:
        with self._lock:
            self._orders = []
            self._cache = {}
            self._cache_by_full_name = {}
            self.done = False

    # ── Registration ─────────────────────────────────────────────────

    def register(self, prefix_or_suffix: str, is_prefix: bool, *models: type) -> None:
        """
        Register model classes.

        Raises:
            ModelRegistrationFault: a model is not a class, is registered
                twice, or has an invalid declaration
        """
        with self._lock:
            for model in models:
                if not isinstance(model, type):
                    raise ModelRegistrationFault(
                        repr(model),
                        f"<orm.RegisterModel> cannot use non-class model `{model!r}`",
                    )
                table = get_table_name(model)
                if prefix_or_suffix:
                    table = prefix_or_suffix + table if is_prefix else table + prefix_or_suffix

                name = get_full_name(model)
                if self.get_by_full_name(name) is not None:
                    raise ModelRegistrationFault(
                        name, f"<orm.RegisterModel> model `{name}` repeat Register, must be unique"
                    )
                if self.get(table) is not None:
                    logger.warning(f"table `{table}` already registered, skip model `{name}`")
                    continue

                mi = new_model_info(model)
                if mi.fields.pk is None:
                    for fi in mi.fields.fields_db:
                        if fi.name.lower() == "id" and fi.field_type & IS_INTEGER_FIELD:
                            fi.auto = True
                            fi.pk = True
                            mi.fields.pk = fi
                            break

                mi.table = table
                mi.pkg = model.__module__
                mi.manual = True
                self.set(table, mi)
                logger.debug(f"registered model `{name}` as table `{table}`")

    # ── Bootstrap ────────────────────────────────────────────────────

    def bootstrap(self) -> None:
        """
        Wire relations between registered models. Runs once.

        Raises:
            ModelRegistrationFault: a relation cannot be resolved; through
                models and reverse fields added so far are removed again
        """
        with self._lock:
            if self.done:
                return
            orders = list(self._orders)
            added: List[FieldInfo] = []
            try:
                self._resolve_relations()
                self._add_reverse_fields(added)
                self._link_m2m_through()
                self._link_reverses()
            except ModelRegistrationFault:
                self._rollback(orders, added)
                raise
            self.done = True

    def _rollback(self, orders: List[str], added: List[FieldInfo]) -> None:
        for fi in added:
            fi.mi.fields.remove(fi)
        for table in self._orders[len(orders):]:
            mi = self._cache.pop(table)
            self._cache_by_full_name.pop(mi.full_name, None)
        self._orders = orders
        logger.debug(f"bootstrap rolled back {len(added)} reverse field(s)")

    def _resolve_relations(self) -> None:
        for mi in list(self.all().values()):
            for fi in list(mi.fields.columns.values()):
                if not (fi.rel or fi.reverse):
                    continue
                target_name = get_full_name(fi.rel_cls) if fi.rel_cls is not None else ""
                mii = self.get_by_full_name(target_name)
                if mii is None:
                    raise ModelRegistrationFault(
                        mi.full_name,
                        f"can not find rel in field `{fi.full_name}`, `{target_name}` may be miss Register",
                    )
                fi.rel_model_info = mii

                if fi.field_type != FieldType.REL_MANY_TO_MANY:
                    continue
                if fi.rel_through:
                    i = fi.rel_through.rfind(".")
                    if i == -1 or len(fi.rel_through) <= i + 1:
                        raise ModelRegistrationFault(
                            mi.full_name,
                            f"field `{fi.full_name}` wrong rel_through value `{fi.rel_through}`",
                        )
                    rmi = self.get_by_full_name(fi.rel_through)
                    if rmi is None or rmi.pkg != fi.rel_through[:i]:
                        raise ModelRegistrationFault(
                            mi.full_name,
                            f"field `{fi.full_name}` wrong rel_through value `{fi.rel_through}` cannot find table",
                        )
                    fi.rel_through_model_info = rmi
                    fi.rel_table = rmi.table
                else:
                    through = new_m2m_model_info(mi, mii)
                    if fi.rel_table:
                        through.table = fi.rel_table
                    if self.get(through.table) is not None:
                        raise ModelRegistrationFault(
                            mi.full_name,
                            f"the rel table name `{fi.rel_table}` already registered, cannot be use, please change one",
                        )
                    self.set(through.table, through)
                    fi.rel_table = through.table
                    fi.rel_through_model_info = through
                fi.rel_through_model_info.is_through = True

    def _add_reverse_fields(self, added: List[FieldInfo]) -> None:
        for mi in list(self.all().values()):
            for fi in list(mi.fields.fields_rel):
                rmi = fi.rel_model_info
                if any(ffi.rel_model_info is mi for ffi in rmi.fields.fields_reverse):
                    continue
                base_name = snake_string(mi.name)
                ffi = FieldInfo()
                ffi.reverse = True
                ffi.rel_model_info = mi
                ffi.rel_cls = mi.model
                ffi.mi = rmi
                if fi.field_type == FieldType.REL_ONE_TO_ONE:
                    ffi.field_type = FieldType.REL_REVERSE_ONE
                else:
                    ffi.field_type = FieldType.REL_REVERSE_MANY

                for candidate in [base_name] + [f"{base_name}{cnt}" for cnt in range(5)]:
                    ffi.name = candidate
                    ffi.column = candidate
                    ffi.full_name = f"{rmi.full_name}.{candidate}"
                    if rmi.fields.add(ffi):
                        added.append(ffi)
                        break
                else:
                    raise ModelRegistrationFault(
                        mi.full_name,
                        f"cannot generate auto reverse field info `{fi.full_name}` to `{ffi.full_name}`",
                    )

    def _link_m2m_through(self) -> None:
        for mi in list(self.all().values()):
            for fi in mi.fields.fields_rel:
                if fi.field_type != FieldType.REL_MANY_TO_MANY:
                    continue
                for ffi in fi.rel_through_model_info.fields.fields_rel:
                    if ffi.field_type not in (FieldType.REL_ONE_TO_ONE, FieldType.REL_FOREIGN_KEY):
                        continue
                    if ffi.rel_model_info is fi.rel_model_info:
                        fi.reverse_field_info_two = ffi
                    if ffi.rel_model_info is mi:
                        fi.reverse_field = ffi.name
                        fi.reverse_field_info = ffi
                if fi.reverse_field_info_two is None:
                    raise ModelRegistrationFault(
                        mi.full_name,
                        f"can not find m2m field for m2m model `{fi.rel_through_model_info.full_name}`, "
                        f"ensure your m2m model defined correct",
                    )

    def _link_reverses(self) -> None:
        for mi in list(self.all().values()):
            for fi in mi.fields.fields_reverse:
                rmi = fi.rel_model_info
                if fi.field_type == FieldType.REL_REVERSE_ONE:
                    for ffi in rmi.fields.fields_by_type.get(FieldType.REL_ONE_TO_ONE, []):
                        if ffi.rel_model_info is mi:
                            fi.reverse_field = ffi.name
                            fi.reverse_field_info = ffi
                            ffi.reverse_field = fi.name
                            ffi.reverse_field_info = fi
                            break
                    else:
                        raise ModelRegistrationFault(
                            mi.full_name,
                            f"reverse field `{fi.full_name}` not found in model `{rmi.full_name}`",
                        )
                elif fi.field_type == FieldType.REL_REVERSE_MANY:
                    if self._link_reverse_fk(mi, fi) or self._link_reverse_m2m(mi, fi):
                        continue
                    raise ModelRegistrationFault(
                        mi.full_name,
                        f"reverse field for `{fi.full_name}` not found in model `{rmi.full_name}`",
                    )

    @staticmethod
    def _link_reverse_fk(mi: ModelInfo, fi: FieldInfo) -> bool:
        for ffi in fi.rel_model_info.fields.fields_by_type.get(FieldType.REL_FOREIGN_KEY, []):
            if ffi.rel_model_info is mi:
                fi.reverse_field = ffi.name
                fi.reverse_field_info = ffi
                ffi.reverse_field = fi.name
                ffi.reverse_field_info = fi
                return True
        return False

    @staticmethod
    def _link_reverse_m2m(mi: ModelInfo, fi: FieldInfo) -> bool:
        for ffi in fi.rel_model_info.fields.fields_by_type.get(FieldType.REL_MANY_TO_MANY, []):
            matches = (
                (fi.rel_through and fi.rel_through == ffi.rel_through)
                or (fi.rel_table and fi.rel_table == ffi.rel_table)
                or (not fi.rel_through and not fi.rel_table)
            )
            if ffi.rel_model_info is mi and matches:
                fi.reverse_field = ffi.reverse_field_info_two.name
                fi.reverse_field_info = ffi.reverse_field_info_two
                fi.rel_through_model_info = ffi.rel_through_model_info
                fi.reverse_field_info_two = ffi.reverse_field_info
                fi.reverse_field_info_m2m = ffi
                ffi.reverse_field_info_m2m = fi
                return True
        return False


model_cache = ModelCache()


def register_model(*models: type) -> None:
    """Register models with their default table names."""
    model_cache.register("", True, *models)


def register_model_with_prefix(prefix: str, *models: type) -> None:
    """Register models with a table-name prefix."""
    model_cache.register(prefix, True, *models)


def register_model_with_suffix(suffix: str, *models: type) -> None:
    """Register models with a table-name suffix."""
    model_cache.register(suffix, False, *models)


def bootstrap() -> None:
    """Wire relations of every registered model. Idempotent."""
    model_cache.bootstrap()


def reset_model_cache() -> None:
    """Forget every registered model (tests)."""
    model_cache.clean()
