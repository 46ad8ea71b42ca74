from __future__ import annotations

import re
from typing import List, Optional

from schema_lens.core.diagnostics import Location
from schema_lens.core.ir import Column, Exclusion, ForeignKey, Function, Schema, Sequence, Table, Trigger, View
from schema_lens.dialects.base import DialectHandler, Diagnostics, index_label

BUILTIN_OPCLASSES = frozenset({
    "jsonb_ops",
    "jsonb_path_ops",
    "gin_trgm_ops",
    "gist_trgm_ops",
    "text_pattern_ops",
    "varchar_pattern_ops",
    "bpchar_pattern_ops",
    "array_ops",
})
MIN_BUCKETS = 2
MAX_BUCKETS = 256
MIN_SURVIVAL_REGIONS = 3

_SEQUENTIAL_TYPES = {"serial", "bigserial", "smallserial", "timestamp", "timestamptz", "date"}
_SEQUENTIAL_DEFAULT = re.compile(r"\b(?:nextval|now|unique_rowid)\s*\(|\bCURRENT_(?:TIMESTAMP|DATE)\b", re.I)
_CRON_SHORTCUTS = {"@yearly", "@annually", "@monthly", "@weekly", "@daily", "@midnight", "@hourly"}
_CRON_FIELD = re.compile(r"^(\*|(\d+|\*)([/\-,]\d+)*)$")

_PRIMARY_REGION = re.compile(r"\bPRIMARY\s+REGION\s*=?\s*\"?([\w-]+)\"?", re.I)
_REGIONS = re.compile(r"\bREGIONS\s*=?\s*((?:\"[^\"]+\"\s*,?\s*)+)", re.I)
_ADD_REGION = re.compile(r"\bADD\s+REGION\s+(?:IF\s+NOT\s+EXISTS\s+)?\"?([\w-]+)\"?", re.I)
_SURVIVE_REGION = re.compile(r"\bSURVIVE\s*=?\s*REGION\s+FAILURE\b", re.I)
_SUPER_REGION = re.compile(
    r"\bADD\s+SUPER\s+REGION\s+\"?[\w-]+\"?\s+VALUES\s+((?:\"[^\"]+\"\s*,?\s*)+)", re.I
)
_QUOTED = re.compile(r"\"([^\"]+)\"")
_TG_ARGV = re.compile(r"\bTG_ARGV\b", re.I)
_ORDER_BY = re.compile(r"\bORDER\s+BY\b", re.I)
_NULLS = re.compile(r"\bNULLS\s+(?:FIRST|LAST)\b", re.I)


def valid_cron(expression: str) -> bool:
    expression = expression.strip()
    if expression.lower() in _CRON_SHORTCUTS:
        return True
    fields = expression.split()
    return len(fields) == 5 and all(_CRON_FIELD.match(f) for f in fields)


def database_regions(schema: Schema) -> List[str]:
    """Regions declared on the schema, or found in CREATE/ALTER DATABASE statements."""
    if schema.regions:
        return list(schema.regions)
    sql = schema.source_sql or ""
    regions: List[str] = []
    found = [m.group(1) for m in _PRIMARY_REGION.finditer(sql)]
    for m in _REGIONS.finditer(sql):
        found.extend(_QUOTED.findall(m.group(1)))
    found.extend(m.group(1) for m in _ADD_REGION.finditer(sql))
    for region in found:
        if region not in regions:
            regions.append(region)
    return regions


class CockroachHandler(DialectHandler):
    name = "cockroachdb"
    label = "CockroachDB"
    catalog_names = ("core", "cockroachdb")

    def check_schema(self, schema: Schema) -> Diagnostics:
        yield from super().check_schema(schema)
        for domain in schema.domains:
            yield self.diag("CRDB_E400", Location(table=domain.name))
        for composite in schema.composite_types:
            yield self.diag("CRDB_E401", Location(table=composite.name))

        sql = schema.source_sql or ""
        regions = database_regions(schema)
        if _SURVIVE_REGION.search(sql) and len(regions) < MIN_SURVIVAL_REGIONS:
            yield self.diag("CRDB_E702", count=len(regions))
        for m in _SUPER_REGION.finditer(sql):
            missing = [r for r in _QUOTED.findall(m.group(1)) if r not in regions]
            if missing:
                yield self.diag("CRDB_E703", regions=", ".join(missing))

    def check_table(self, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_table(table, schema)
        location = Location(table=table.name)
        if table.inherits:
            yield self.diag("CRDB_E300", location)
        if table.unlogged:
            yield self.diag("CRDB_E301", location)
        if table.tablespace:
            yield self.diag("CRDB_E302", location)
        if table.temporary:
            yield self.diag("CRDB_E303", location)

        options = table.with_options
        if "toast_tuple_target" in options:
            yield self.diag("CRDB_E310", location)
        if any(k.startswith("autovacuum") for k in options):
            yield self.diag("CRDB_E311", location)
        if "parallel_workers" in options:
            yield self.diag("CRDB_E312", location)

        if table.primary_key is None and not table.partition_of:
            yield self.diag("CRDB_E730", location)

        locality = (table.locality or "").upper()
        regional_by_row = locality.startswith("REGIONAL BY ROW")
        if locality and not database_regions(schema):
            if regional_by_row:
                yield self.diag("CRDB_E700", location)
            elif locality.startswith("GLOBAL"):
                yield self.diag("CRDB_E701", location)

        ttl = {k: v for k, v in options.items() if k.startswith("ttl")}
        if ttl:
            if "ttl_expiration_expression" not in ttl and "ttl_expire_after" not in ttl:
                yield self.diag("CRDB_E710", location)
            cron = ttl.get("ttl_job_cron")
            if cron is not None and not valid_cron(cron):
                yield self.diag("CRDB_E711", location, cron=cron)
            if regional_by_row:
                yield self.diag("CRDB_W710", location)

    def check_column(self, column: Column, table: Table, schema: Schema) -> Diagnostics:
        location = Location(table=table.name, column=column.column_name)
        found = self.type_diag(column, table)
        if found is not None:
            yield found
        ref = column.references
        if ref is not None:
            if ref.deferrable:
                yield self.diag("CRDB_E101", location)
            if ref.initially_deferred:
                yield self.diag("CRDB_E102", location)
            if ref.match == "PARTIAL":
                yield self.diag("CRDB_E103", location)
        yield from self._column_reference(column, table, schema)

    def check_constraint(self, constraint, table: Table, schema: Schema) -> Diagnostics:
        yield from super().check_constraint(constraint, table, schema)
        location = Location(table=table.name, constraint=constraint.name)
        if isinstance(constraint, Exclusion):
            yield self.diag("CRDB_E100", location)
        if constraint.deferrable:
            yield self.diag("CRDB_E101", location)
        if constraint.initially_deferred:
            yield self.diag("CRDB_E102", location)
        if isinstance(constraint, ForeignKey) and constraint.match == "PARTIAL":
            yield self.diag("CRDB_E103", location)
        if constraint.not_enforced:
            yield self.diag("CRDB_E104", location)

    def check_indexes(self, table: Table, schema: Schema) -> Diagnostics:
        for index in table.indexes:
            location = Location(table=table.name, index=index_label(index, table))
            if index.method == "SPGIST":
                yield self.diag("CRDB_E200", location)
            elif index.method == "BRIN":
                yield self.diag("CRDB_E201", location)

            if index.opclass == "tsvector_ops":
                yield self.diag("CRDB_E202", location)
            elif index.opclass == "range_ops":
                yield self.diag("CRDB_E203", location)
            elif index.opclass and index.opclass not in BUILTIN_OPCLASSES:
                yield self.diag("CRDB_E204", location, opclass=index.opclass)

            if index.concurrently:
                yield self.diag("CRDB_W040", location)
            if index.sort_order and not index.nulls_ordering:
                yield self.diag("CRDB_W011", location)

            if index.method == "HASH":
                yield from self._hash_sharded(index, table, location)

    def _hash_sharded(self, index, table: Table, location: Location) -> Diagnostics:
        buckets = _int(index.storage_params.get("bucket_count"))
        if buckets is not None:
            if buckets < MIN_BUCKETS:
                yield self.diag("CRDB_E720", location)
            elif buckets > MAX_BUCKETS:
                yield self.diag("CRDB_W721", location)
        if index.columns:
            first = table.column(index.columns[0])
            if first is not None and not _sequential(first):
                yield self.diag("CRDB_W720", location, column=first.column_name)

    def check_function(self, function: Function, schema: Schema) -> Diagnostics:
        if function.language != "plpgsql":
            return
        location = Location(function=function.name)
        yield self.diag("CRDB_I600", location)
        for item in self.catalog.body_patterns:
            if item.compiled().search(function.body):
                yield self.diag(item.code, location)

    def check_trigger(self, trigger: Trigger, schema: Schema) -> Diagnostics:
        location = Location(table=trigger.table, trigger=trigger.name)
        if trigger.update_of:
            yield self.diag("CRDB_E500", location)
        if "TRUNCATE" in trigger.events:
            yield self.diag("CRDB_E501", location)
        if trigger.referencing_old_table:
            yield self.diag("CRDB_E502", location)
        if trigger.referencing_new_table:
            yield self.diag("CRDB_E503", location)
        if trigger.constraint:
            yield self.diag("CRDB_E504", location)
        function = schema.function(trigger.function)
        if function is not None and _TG_ARGV.search(function.body):
            yield self.diag("CRDB_W500", location)

    def check_sequence(self, sequence: Sequence, schema: Schema) -> Diagnostics:
        if sequence.cache is not None and sequence.cache > 1:
            yield self.diag("CRDB_W030", Location(sequence=sequence.name))

    def check_view(self, view: View, schema: Schema) -> Diagnostics:
        if _ORDER_BY.search(view.definition) and not _NULLS.search(view.definition):
            yield self.diag("CRDB_W010", Location(view=view.name))


def _sequential(column: Column) -> bool:
    if column.type.key in _SEQUENTIAL_TYPES or column.identity is not None:
        return True
    return bool(column.default and _SEQUENTIAL_DEFAULT.search(column.default))


def _int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None
