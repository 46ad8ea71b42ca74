from __future__ import annotations

import importlib
import logging
import os
import sys
from dataclasses import dataclass
from types import ModuleType
from typing import List, Optional

from sqlalchemy import CheckConstraint, ForeignKeyConstraint, MetaData, PrimaryKeyConstraint, UniqueConstraint
from sqlalchemy import Column as SAColumn, Index as SAIndex, Table as SATable
from sqlalchemy.dialects import postgresql as pg

from schema_lens.adapters.base import SchemaAdapter
from schema_lens.core.errors import ConfigError
from schema_lens.core.ir import Check, Column, ForeignKey, Index, PrimaryKey, Schema, Table, Unique
from schema_lens.core.parser import allowed_values, normalize_default
from schema_lens.core.types import parse_type

logger = logging.getLogger(__name__)

_METHODS = {"BTREE", "HASH", "GIN", "GIST", "BRIN", "SPGIST"}


def _compile_type(sa_type) -> str:
    return sa_type.compile(dialect=pg.dialect())


def _compile_clause(clause) -> str:
    if hasattr(clause, "text"):
        return str(clause.text)
    return str(clause.compile(dialect=pg.dialect(), compile_kwargs={"literal_binds": True}))


def _compile_default(default) -> Optional[str]:
    if default is None:
        return None
    # server_default is a DefaultClause whose .arg is a string, TextClause or SQL function
    arg = getattr(default, "arg", default)
    if isinstance(arg, str):
        return normalize_default(f"'{arg}'")
    return normalize_default(_compile_clause(arg))


def _action(value: Optional[str]) -> Optional[str]:
    return " ".join(value.upper().split()) if value else None


def _constraint_name(constraint) -> Optional[str]:
    # unnamed constraints carry a non-string sentinel
    return constraint.name if isinstance(constraint.name, str) else None


@dataclass
class LoadedModule:
    module: ModuleType
    sys_path_added: bool


def _purge_package_cache(module_hint: str) -> None:
    root_pkg = module_hint.split(".")[0]
    for key in list(sys.modules.keys()):
        if key == root_pkg or key.startswith(root_pkg + "."):
            sys.modules.pop(key, None)


def _import_models(repo_path: str, module_hint: Optional[str]) -> LoadedModule:
    if not module_hint:
        raise ConfigError("module_hint is required for the SQLAlchemy adapter")
    abs_repo = os.path.abspath(repo_path) if repo_path else None
    sys_path_added = False
    if abs_repo and abs_repo not in sys.path:
        sys.path.insert(0, abs_repo)
        sys_path_added = True
    # fresh import so two trees with the same package name do not collide
    _purge_package_cache(module_hint)
    try:
        module = importlib.import_module(module_hint)
    except ImportError as exc:
        if sys_path_added:
            sys.path.remove(abs_repo)
        raise ConfigError(f"cannot import models module {module_hint}: {exc}") from exc
    return LoadedModule(module=module, sys_path_added=sys_path_added)


def schema_from_metadata(metadata: MetaData) -> Schema:
    """Build a Schema from SQLAlchemy metadata, tables in dependency order."""
    return Schema(tables=[table_from_sqlalchemy(t) for t in metadata.sorted_tables])


def table_from_sqlalchemy(satable: SATable) -> Table:
    pk_columns = {c.name for c in satable.primary_key.columns}
    columns: List[Column] = []
    for col in satable.columns:  # type: SAColumn
        columns.append(
            Column(
                name=col.name,
                type=parse_type(_compile_type(col.type)),
                nullability="not_null" if (not col.nullable or col.name in pk_columns) else "unspecified",
                default=_compile_default(col.server_default),
                collation=getattr(col.type, "collation", None),
                comment=col.comment,
            )
        )

    constraints = []
    ordered = sorted(
        satable.constraints,
        key=lambda c: (c.__class__.__name__, _constraint_name(c) or "", [x.name for x in c.columns]),
    )
    for c in ordered:
        name = _constraint_name(c)
        if isinstance(c, PrimaryKeyConstraint):
            if c.columns:
                constraints.insert(0, PrimaryKey(name=name, columns=[col.name for col in c.columns]))
        elif isinstance(c, UniqueConstraint):
            constraints.append(Unique(name=name, columns=[col.name for col in c.columns]))
        elif isinstance(c, CheckConstraint):
            expression = _compile_clause(c.sqltext)
            constraints.append(Check(name=name, expression=expression, values=allowed_values(expression)))
        elif isinstance(c, ForeignKeyConstraint):
            constraints.append(
                ForeignKey(
                    name=name,
                    columns=[fk.parent.name for fk in c.elements],
                    ref_table=c.elements[0].column.table.name,
                    ref_columns=[fk.column.name for fk in c.elements],
                    ref_schema=c.elements[0].column.table.schema,
                    on_delete=_action(c.ondelete),
                    on_update=_action(c.onupdate),
                    deferrable=bool(c.deferrable),
                    initially_deferred=(c.initially or "").upper() == "DEFERRED",
                )
            )

    indexes: List[Index] = []
    for idx in sorted(satable.indexes, key=lambda i: i.name or ""):  # type: SAIndex
        options = idx.dialect_options["postgresql"]
        method = (options.get("using") or "btree").upper()
        if method not in _METHODS:
            logger.warning("index %s uses unsupported method %s, skipped", idx.name, method)
            continue
        names = [e.name for e in idx.expressions if isinstance(e, SAColumn)]
        expression = None
        if len(names) != len(idx.expressions):
            names = []
            expression = ", ".join(_compile_clause(e) for e in idx.expressions)
        where = options.get("where")
        indexes.append(
            Index(
                name=idx.name,
                columns=names,
                expression=expression,
                unique=bool(idx.unique),
                method=method,
                include=[c if isinstance(c, str) else c.name for c in (options.get("include") or [])],
                where=_compile_clause(where) if where is not None else None,
            )
        )

    return Table(
        name=satable.name,
        schema_name=satable.schema,
        columns=columns,
        constraints=constraints,
        indexes=indexes,
        comment=satable.comment,
    )


class SQLAlchemyAdapter(SchemaAdapter):
    def emit_schema(self, repo_path: str, module_hint: Optional[str] = None) -> Schema:
        loaded = _import_models(repo_path, module_hint)
        try:
            base = getattr(loaded.module, "Base", None)
            if base is None:
                raise ConfigError(f"{module_hint} defines no declarative Base")
            metadata = base.metadata
        finally:
            # purge package and sys.path insertion to avoid cross-tree bleed
            _purge_package_cache(module_hint)
            if loaded.sys_path_added and sys.path and sys.path[0] == os.path.abspath(repo_path):
                sys.path.pop(0)

        schema = schema_from_metadata(metadata)
        logger.info("loaded %d table(s) from %s", len(schema.tables), module_hint)
        return schema
