from __future__ import annotations

import re
from typing import Literal

from schema_lens.core.diagnostics import Location
from schema_lens.core.ir import Column, Exclusion, ForeignKey, Function, Schema, Sequence, Table, Trigger, Unique
from schema_lens.dialects.base import DialectHandler, Diagnostics

TENANT_COLUMN = "tenant_id"
BUILTIN_TABLES = frozenset({"tenants", "users", "tenant_users"})
EXTENSION_TYPES = frozenset({
    "vector", "halfvec", "sparsevec", "geometry", "geography", "citext", "hstore", "ltree", "cube",
})
_SERIAL_TYPES = {"serial", "bigserial", "smallserial"}
_CASCADING = {"CASCADE", "SET NULL"}
_NEXTVAL = re.compile(r"\bnextval\s*\(", re.I)
_TENANT_ID = re.compile(r"\btenant_id\b", re.I)

TableKind = Literal["builtin", "tenant", "shared"]


def classify(table: Table) -> TableKind:
    if table.name.lower() in BUILTIN_TABLES:
        return "builtin"
    if table.column(TENANT_COLUMN) is not None:
        return "tenant"
    return "shared"


class NileHandler(DialectHandler):
    name = "nile"
    label = "Nile"
    catalog_names = ("core", "nile")

    def check_schema(self, schema: Schema) -> Diagnostics:
        yield from super().check_schema(schema)
        for extension in schema.extensions:
            yield self.diag("NILE-EXT-001", extension=extension)
        if any(classify(t) == "tenant" for t in schema.tables):
            yield self.diag("NILE-TX-003")

    def check_table(self, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_table(table, schema)
        location = Location(table=table.name)
        kind = classify(table)
        if kind == "builtin":
            yield self.diag("NILE-BT-001", location)
            return
        if kind == "shared":
            return

        tenant = table.column(TENANT_COLUMN)
        tenant_location = Location(table=table.name, column=TENANT_COLUMN)
        yield self.diag("NILE-TC-001", tenant_location)
        if tenant.type.key != "uuid" or tenant.is_array:
            yield self.diag("NILE-TC-002", tenant_location, actual_type=tenant.type.to_sql())
        if tenant.nullable:
            yield self.diag("NILE-TC-003", tenant_location)

        pk = table.primary_key
        if pk is None:
            yield self.diag("NILE-PK-004", location)
        elif len(pk.columns) == 1 and pk.columns[0] != TENANT_COLUMN:
            yield self.diag("NILE-PK-003", location)
        elif TENANT_COLUMN not in pk.columns:
            yield self.diag("NILE-PK-001", location)
        elif pk.columns[0] != TENANT_COLUMN:
            yield self.diag("NILE-PK-002", location)

    def check_column(self, column: Column, table: Table, schema: Schema) -> Diagnostics:
        location = Location(table=table.name, column=column.column_name)
        kind = classify(table)
        key = column.type.key
        if kind == "tenant":
            if key in _SERIAL_TYPES:
                yield self.diag("NILE-CT-001", location)
            elif column.identity is not None:
                yield self.diag("NILE-CT-002", location)
            elif column.default and _NEXTVAL.search(column.default):
                yield self.diag("NILE-CT-003", location)
        elif kind == "shared" and key in _SERIAL_TYPES:
            yield self.diag("NILE-SEQ-003", location)
        if key in EXTENSION_TYPES:
            yield self.diag("NILE-CT-005", location)

        if column.references is not None:
            ref = column.references
            yield from self._foreign_key(table, [column.column_name], ref.table, [ref.column],
                                         ref.on_delete, ref.on_update, location, schema)
        yield from self._column_reference(column, table, schema)

    def check_constraint(self, constraint, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_constraint(constraint, table, schema)
        location = Location(table=table.name, constraint=constraint.name)
        kind = classify(table)
        if isinstance(constraint, ForeignKey):
            yield from self._foreign_key(table, constraint.columns, constraint.ref_table, constraint.ref_columns,
                                         constraint.on_delete, constraint.on_update, location, schema)
        elif kind == "tenant" and isinstance(constraint, Unique):
            if TENANT_COLUMN not in constraint.columns:
                yield self.diag("NILE-CON-001", location, columns=", ".join(constraint.columns))
            elif constraint.columns[0] != TENANT_COLUMN:
                yield self.diag("NILE-CON-002", location)
        elif kind == "tenant" and isinstance(constraint, Exclusion):
            if not _TENANT_ID.search(constraint.raw):
                yield self.diag("NILE-CON-003", location)
        elif kind == "shared" and isinstance(constraint, (Unique, Exclusion)):
            yield self.diag("NILE-CON-004", location)

    def _foreign_key(self, table: Table, columns, ref_table: str, ref_columns, on_delete, on_update,
                     location: Location, schema: Schema) -> Diagnostics:
        target = schema.table(ref_table)
        if target is None:
            return
        source_kind, target_kind = classify(table), classify(target)
        if "builtin" in (source_kind, target_kind):
            return
        if source_kind == "tenant" and target_kind == "shared":
            yield self.diag("NILE-FK-001", location, ref_table=ref_table)
        elif source_kind == "shared" and target_kind == "tenant":
            yield self.diag("NILE-FK-002", location, ref_table=ref_table)
        elif source_kind == "tenant" and target_kind == "tenant":
            if TENANT_COLUMN not in columns or TENANT_COLUMN not in ref_columns:
                yield self.diag("NILE-FK-003", location)
            if on_delete in _CASCADING or on_update in _CASCADING:
                yield self.diag("NILE-FK-004", location)

    def check_function(self, function: Function, schema: Schema) -> Diagnostics:
        location = Location(function=function.name)
        if function.kind == "do_block":
            yield self.diag("NILE-TF-004", location)
        elif function.kind == "procedure":
            yield self.diag("NILE-TF-003", location)
        else:
            yield self.diag("NILE-TF-002", location)
        if function.language == "plpgsql":
            yield self.diag("NILE-TF-005", location)

    def check_trigger(self, trigger: Trigger, schema: Schema) -> Diagnostics:
        yield self.diag("NILE-TF-001", Location(table=trigger.table, trigger=trigger.name))

    def check_sequence(self, sequence: Sequence, schema: Schema) -> Diagnostics:
        location = Location(sequence=sequence.name)
        if sequence.owned_by:
            owner = sequence.owned_by.split(".")
            table = schema.table(owner[-2]) if len(owner) >= 2 else None
            if table is not None and classify(table) == "tenant":
                yield self.diag("NILE-SEQ-004", location)
        else:
            yield self.diag("NILE-SEQ-002", location)
