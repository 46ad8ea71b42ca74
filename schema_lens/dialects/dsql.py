from __future__ import annotations

import re
from typing import List

from schema_lens.core.diagnostics import Location
from schema_lens.core.ir import Column, Exclusion, ForeignKey, Function, PrimaryKey, Schema, Sequence, Table, Trigger, View
from schema_lens.dialects.base import DialectHandler, Diagnostics, index_label

MAX_TABLES = 1000
MAX_SCHEMAS = 10
MAX_COLUMNS = 255
MAX_INDEXES = 24
MAX_INDEX_COLUMNS = 8
MAX_VIEWS = 5000
MAX_VIEW_DEFINITION = 2 * 1024 * 1024

VARCHAR_MAX = 65535
CHAR_MAX = 4096
NUMERIC_PRECISION_MAX = 38
NUMERIC_SCALE_MAX = 37

_INDEX_METHOD_RULES = {
    "GIN": "DSQL-IDX-001",
    "GIST": "DSQL-IDX-002",
    "SPGIST": "DSQL-IDX-003",
    "BRIN": "DSQL-IDX-004",
    "HASH": "DSQL-IDX-005",
}
_UNINDEXABLE = {"bytea": "DSQL-IDX-LIMIT-003", "interval": "DSQL-IDX-LIMIT-004", "timetz": "DSQL-IDX-LIMIT-005"}
_LANGUAGE_RULES = (
    ("plpgsql", "DSQL-FN-001"),
    ("plpython", "DSQL-FN-002"),
    ("plperl", "DSQL-FN-003"),
    ("pltcl", "DSQL-FN-004"),
)
_CREATE_SCHEMA = re.compile(r"\bCREATE\s+SCHEMA\s+(?:IF\s+NOT\s+EXISTS\s+)?\"?(\w+)", re.I)
_NEXTVAL = re.compile(r"\bnextval\s*\(", re.I)
_MACADDR_KEYS = ("macaddr", "macaddr8")


class DsqlHandler(DialectHandler):
    name = "dsql"
    label = "DSQL"
    catalog_names = ("core", "dsql")

    def check_schema(self, schema: Schema) -> Diagnostics:
        yield from super().check_schema(schema)
        if len(schema.tables) > MAX_TABLES:
            yield self.diag("DSQL-DB-003", count=len(schema.tables))
        names = {t.schema_name or "public" for t in schema.tables}
        names.update(m.group(1).lower() for m in _CREATE_SCHEMA.finditer(schema.source_sql or ""))
        if len(names) > MAX_SCHEMAS:
            yield self.diag("DSQL-DB-002", count=len(names))
        for extension in schema.extensions:
            yield self.diag("DSQL-EXT-001", extension=extension)

    def check_table(self, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_table(table, schema)
        location = Location(table=table.name)
        flags = (
            (table.temporary, "DSQL-TBL-001"),
            (table.unlogged, "DSQL-TBL-002"),
            (bool(table.inherits), "DSQL-TBL-003"),
            (bool(table.tablespace), "DSQL-TBL-004"),
            (table.partitioning is not None or bool(table.partition_of), "DSQL-TBL-005"),
            (bool(table.with_options), "DSQL-TBL-006"),
            (bool(table.on_commit), "DSQL-TBL-007"),
        )
        for present, code in flags:
            if present:
                yield self.diag(code, location)
        if len(table.columns) > MAX_COLUMNS:
            yield self.diag("DSQL-DB-004", location, count=len(table.columns))

    def check_column(self, column: Column, table: Table, schema: Schema) -> Diagnostics:
        location = Location(table=table.name, column=column.column_name)
        key = column.type.key

        if column.is_array:
            yield self.diag("DSQL-TYPE-014", location)
        else:
            found = self.type_diag(column, table)
            if found is not None:
                if key in _MACADDR_KEYS:
                    fix = found.auto_fix.model_copy(update={
                        "original_type": key,
                        "replacement_type": self.config.macaddr_replacement,
                    })
                    found = found.model_copy(update={"auto_fix": fix})
                yield found
            else:
                yield from self._limits(column, location)

        if column.identity is not None:
            yield self.diag("DSQL-MOD-001", location)
        if column.default and _NEXTVAL.search(column.default):
            yield self.diag("DSQL-MOD-002", location)
        if column.collation and column.collation.strip('"') != "C":
            yield self.diag("DSQL-MOD-003", location)

        ref = column.references
        if ref is not None:
            yield self.diag("DSQL-CONS-002", location)
            yield from self._fk_options(ref.on_delete, ref.on_update, ref.match, location)
            if ref.deferrable or ref.initially_deferred:
                yield self.diag("DSQL-CONS-006", location)
        yield from self._column_reference(column, table, schema)

    def _limits(self, column: Column, location: Location) -> Diagnostics:
        key = column.type.key
        if key == "varchar" and (column.length or 0) > VARCHAR_MAX:
            yield self.diag("DSQL-LIMIT-001", location)
        elif key == "char" and (column.length or 0) > CHAR_MAX:
            yield self.diag("DSQL-LIMIT-002", location)
        elif key == "numeric":
            if (column.precision or 0) > NUMERIC_PRECISION_MAX:
                yield self.diag("DSQL-LIMIT-003", location)
            if (column.scale or 0) > NUMERIC_SCALE_MAX:
                yield self.diag("DSQL-LIMIT-004", location)

    def _fk_options(self, on_delete, on_update, match, location: Location) -> Diagnostics:
        if on_delete and on_delete != "NO ACTION":
            yield self.diag("DSQL-CONS-003", location)
        if on_update and on_update != "NO ACTION":
            yield self.diag("DSQL-CONS-004", location)
        if match and match != "SIMPLE":
            yield self.diag("DSQL-CONS-007", location)

    def check_constraint(self, constraint, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_constraint(constraint, table, schema)
        location = Location(table=table.name, constraint=constraint.name)
        if isinstance(constraint, Exclusion):
            yield self.diag("DSQL-CONS-005", location)
        if constraint.deferrable or constraint.initially_deferred:
            yield self.diag("DSQL-CONS-006", location)
        if isinstance(constraint, ForeignKey):
            yield self.diag("DSQL-CONS-001", location)
            yield from self._fk_options(constraint.on_delete, constraint.on_update, constraint.match, location)
        if isinstance(constraint, PrimaryKey) and len(constraint.columns) > MAX_INDEX_COLUMNS:
            yield self.diag("DSQL-IDX-LIMIT-002", location)

    def check_indexes(self, table: Table, schema: Schema) -> Diagnostics:
        if len(table.indexes) > MAX_INDEXES:
            yield self.diag("DSQL-IDX-LIMIT-001", Location(table=table.name), count=len(table.indexes))
        for index in table.indexes:
            location = Location(table=table.name, index=index_label(index, table))
            code = _INDEX_METHOD_RULES.get(index.method)
            if code:
                yield self.diag(code, location)
            if index.concurrently:
                yield self.diag("DSQL-IDX-006", location)
            if index.opclass:
                yield self.diag("DSQL-IDX-007", location, opclass=index.opclass)
            if len(index.columns) > MAX_INDEX_COLUMNS:
                yield self.diag("DSQL-IDX-LIMIT-002", location)
            reported: List[str] = []
            for name in index.columns:
                column = table.column(name)
                code = _UNINDEXABLE.get(column.type.key) if column is not None else None
                if code and code not in reported:
                    reported.append(code)
                    yield self.diag(code, location)

    def check_function(self, function: Function, schema: Schema) -> Diagnostics:
        location = Location(function=function.name)
        if function.kind == "do_block":
            yield self.diag("DSQL-FN-007", location)
            return
        language = function.language or "sql"
        for prefix, code in _LANGUAGE_RULES:
            if language.startswith(prefix):
                yield self.diag(code, location)
        if language == "c":
            yield self.diag("DSQL-FN-005", location)
        if function.kind == "procedure" and language != "sql":
            yield self.diag("DSQL-FN-006", location)
        if function.returns == "trigger":
            yield self.diag("DSQL-TRIG-003", location)

    def check_trigger(self, trigger: Trigger, schema: Schema) -> Diagnostics:
        yield self.diag("DSQL-TRIG-001", Location(table=trigger.table, trigger=trigger.name))

    def check_sequence(self, sequence: Sequence, schema: Schema) -> Diagnostics:
        yield self.diag("DSQL-SEQ-001", Location(sequence=sequence.name))

    def check_view(self, view: View, schema: Schema) -> Diagnostics:
        location = Location(view=view.name)
        if view.materialized:
            yield self.diag("DSQL-VIEW-001", location)
        if len(view.definition.encode("utf-8")) > MAX_VIEW_DEFINITION:
            yield self.diag("DSQL-VIEW-004", location)

    def check_views(self, views: List[View], schema: Schema) -> Diagnostics:
        yield from super().check_views(views, schema)
        if len(views) > MAX_VIEWS:
            yield self.diag("DSQL-VIEW-003", count=len(views))
