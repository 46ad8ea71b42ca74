from __future__ import annotations

from typing import Optional

from schema_lens.core.diagnostics import Diagnostic, Location
from schema_lens.core.ir import Column, Schema, Table
from schema_lens.dialects.base import DialectHandler, Diagnostics, index_label

MAX_IDENTIFIER_BYTES = 63
MAX_COLUMNS = 1600
MAX_INDEX_COLUMNS = 32


class PostgresHandler(DialectHandler):
    name = "postgres"
    label = "PostgreSQL"
    catalog_names = ("core", "postgres")

    def _ident(self, identifier: Optional[str], location: Location) -> Optional[Diagnostic]:
        if identifier and len(identifier.encode("utf-8")) > MAX_IDENTIFIER_BYTES:
            return self.diag("PG-IDENT-001", location, identifier=identifier)
        return None

    def check_schema(self, schema: Schema) -> Diagnostics:
        yield from super().check_schema(schema)
        named = [(e.name, Location()) for e in schema.enums]
        named += [(s.name, Location(sequence=s.name)) for s in schema.sequences]
        named += [(v.name, Location(view=v.name)) for v in schema.views]
        named += [(f.name, Location(function=f.name)) for f in schema.functions if f.kind != "do_block"]
        named += [(t.name, Location(table=t.table, trigger=t.name)) for t in schema.triggers]
        for identifier, location in named:
            found = self._ident(identifier, location)
            if found:
                yield found

    def check_table(self, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_table(table, schema)
        found = self._ident(table.name, Location(table=table.name))
        if found:
            yield found
        if len(table.columns) > MAX_COLUMNS:
            yield self.diag("PG-LIMIT-001", Location(table=table.name), count=len(table.columns))

    def check_column(self, column: Column, table: Table, schema: Schema) -> Diagnostics:
        found = self._ident(column.column_name, Location(table=table.name, column=column.column_name))
        if found:
            yield found
        yield from self._column_reference(column, table, schema)

    def check_constraint(self, constraint, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_constraint(constraint, table, schema)
        found = self._ident(constraint.name, Location(table=table.name, constraint=constraint.name))
        if found:
            yield found

    def check_indexes(self, table: Table, schema: Schema) -> Diagnostics:
        for index in table.indexes:
            location = Location(table=table.name, index=index_label(index, table))
            found = self._ident(index.name, location)
            if found:
                yield found
            width = len(index.columns) + len(index.include)
            if width > MAX_INDEX_COLUMNS:
                yield self.diag("PG-LIMIT-002", location, count=width)
