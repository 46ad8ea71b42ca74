from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, Iterator, List, Optional, Set, Tuple

from schema_lens.core.catalog import Catalog, RuleDefinition, fill, load_catalog
from schema_lens.core.diagnostics import AutoFix, Diagnostic, Location
from schema_lens.core.ir import (
    Column,
    Constraint,
    ForeignKey,
    Function,
    Index,
    Schema,
    Sequence,
    Table,
    Trigger,
    View,
)
from schema_lens.policy.config_schema import ToolkitConfig

logger = logging.getLogger(__name__)

Diagnostics = Iterator[Diagnostic]


class DialectHandler(ABC):
    """Dialect-specific checks over one Schema.

    The validator drives the walk and calls one hook per entity; each hook
    yields diagnostics built from the handler's catalogs. The base class
    carries the checks every dialect shares and subclasses extend them via
    ``super()``.
    """

    name: str = ""
    label: str = ""
    catalog_names: Tuple[str, ...] = ("core",)

    def __init__(self, config: Optional[ToolkitConfig] = None):
        self.config = config or ToolkitConfig()
        self.catalogs: List[Catalog] = [load_catalog(n) for n in self.catalog_names]

    @property
    def catalog(self) -> Catalog:
        """The dialect's own catalog (the last one listed)."""
        return self.catalogs[-1]

    def rule(self, code: str) -> RuleDefinition:
        for catalog in self.catalogs:
            if code in catalog.rules:
                return catalog.rules[code]
        return self.catalog.lookup(code)

    def diag(self, code: str, location: Optional[Location] = None, auto_fix: Optional[AutoFix] = None,
             **context) -> Diagnostic:
        rule = self.rule(code)
        location = location or Location()
        values = {k: v for k, v in location.model_dump().items() if v is not None}
        values.update(context)
        if auto_fix is None and rule.auto_fix is not None:
            auto_fix = AutoFix(**rule.auto_fix.model_dump())
        return Diagnostic(
            code=code,
            severity=rule.severity,
            category=rule.category,
            message=fill(rule.message, values),
            location=location,
            alternative=fill(rule.alternative, values) if rule.alternative else None,
            docs_url=rule.docs_url,
            auto_fix=auto_fix,
        )

    def type_diag(self, column: Column, table: Table) -> Optional[Diagnostic]:
        rule = self.catalog.type_rule(column.type.key)
        if rule is None:
            return None
        return self.diag(rule.code, Location(table=table.name, column=column.column_name),
                         actual_type=column.type.to_sql())

    # schema scope

    def check_schema(self, schema: Schema) -> Diagnostics:
        for statement in schema.skipped_statements:
            yield self.diag("SCHEMA-PARSE-002", statement=_excerpt(statement))

    def check_table(self, table: Table, schema: Schema) -> Diagnostics:
        location = Location(table=table.name)
        for fragment in table.unparsed:
            yield self.diag("SCHEMA-PARSE-001", location, fragment=_excerpt(fragment))
        if table.partitioning and table.partitioning.strategy == "HASH" and len(table.partitioning.key) > 1:
            yield self.diag("SCHEMA-PART-001", location, key=", ".join(table.partitioning.key))

    @abstractmethod
    def check_column(self, column: Column, table: Table, schema: Schema) -> Diagnostics:
        ...

    def _column_reference(self, column: Column, table: Table, schema: Schema) -> Diagnostics:
        ref = column.references
        if ref is None:
            return
        yield from self._dangling(table, ref.table, [ref.column], schema, column=column.column_name)

    def check_constraint(self, constraint: Constraint, table: Table, schema: Schema) -> Diagnostics:
        if isinstance(constraint, ForeignKey):
            yield from self._dangling(table, constraint.ref_table, constraint.ref_columns, schema,
                                      constraint=constraint.name)

    def _dangling(self, table: Table, ref_table: str, ref_columns: Iterable[str], schema: Schema,
                  **where) -> Diagnostics:
        location = Location(table=table.name, **where)
        target = schema.table(ref_table)
        if target is None:
            yield self.diag("SCHEMA-REF-001", location, ref_table=ref_table)
            return
        for col in ref_columns:
            if target.column(col) is None:
                yield self.diag("SCHEMA-REF-002", location, ref_table=ref_table, ref_column=col)

    def check_indexes(self, table: Table, schema: Schema) -> Diagnostics:
        return iter(())

    def check_function(self, function: Function, schema: Schema) -> Diagnostics:
        return iter(())

    def check_trigger(self, trigger: Trigger, schema: Schema) -> Diagnostics:
        return iter(())

    def check_sequence(self, sequence: Sequence, schema: Schema) -> Diagnostics:
        return iter(())

    def check_view(self, view: View, schema: Schema) -> Diagnostics:
        return iter(())

    def check_views(self, views: List[View], schema: Schema) -> Diagnostics:
        for view in views:
            yield from self.check_view(view, schema)

    def check_sql(self, sql: str, already: Set[str]) -> Diagnostics:
        """Scan free-form SQL for catalog patterns; codes in ``already`` are skipped."""
        seen = set(already)
        for catalog in self.catalogs:
            for item in catalog.sql_patterns:
                if item.code in seen:
                    continue
                found = item.compiled().search(sql)
                if found:
                    seen.add(item.code)
                    yield self.diag(item.code, **{k: v for k, v in found.groupdict().items() if v})


def index_label(index: Index, table: Table) -> str:
    return index.name or f"{table.name}_{'_'.join(index.columns) or 'expr'}_idx"


def _excerpt(text: str, limit: int = 80) -> str:
    flat = " ".join(text.split())
    return flat if len(flat) <= limit else flat[: limit - 3] + "..."
