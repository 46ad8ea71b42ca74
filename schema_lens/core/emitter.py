from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict

from schema_lens.core.ir import (
    Check,
    Column,
    CompositeType,
    Domain,
    EnumType,
    Exclusion,
    ForeignKey,
    Function,
    Index,
    Partitioning,
    PrimaryKey,
    Schema,
    Sequence,
    Table,
    Trigger,
    Unique,
    View,
)
from schema_lens.core.types import TypeDescriptor, builder_name

logger = logging.getLogger(__name__)

INDENT = "    "

# Defaults that are SQL functions and round-trip as double-quoted strings.
KNOWN_FUNCTION_DEFAULTS = frozenset({
    "NOW()",
    "CURRENT_TIMESTAMP",
    "CURRENT_DATE",
    "CURRENT_TIME",
    "LOCALTIMESTAMP",
    "LOCALTIME",
    "GEN_RANDOM_UUID()",
})
_BIG_INTEGER_KEYS = {"bigint", "bigserial"}
_INTEGER = re.compile(r"^-?(?:0|[1-9]\d*)$")
_FLOAT = re.compile(r"^-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?$")
_SQL_STRING = re.compile(r"^'(?:[^']|'')*'$", re.S)
_BARE_KEY = re.compile(r"^[A-Za-z_$][\w$]*$")
_JS_ESCAPES = {"\\": "\\\\", "'": "\\'", "\n": "\\n", "\r": "\\r"}


class EmitOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    import_path: str
    camel_case: bool = True
    include_types: bool = False
    # a single name (one-table schemas) or a table name -> export name map
    export_name: Union[str, Dict[str, str], None] = None


def camelize(name: str) -> str:
    return re.sub(r"_+([A-Za-z0-9])", lambda m: m.group(1).upper(), name.strip("_")) or name


def pascalize(name: str) -> str:
    camel = camelize(name)
    return camel[:1].upper() + camel[1:]


def js_string(value: str) -> str:
    # SQL string defaults are written verbatim by format_default, everything else is a JS string
    return "'" + "".join(_JS_ESCAPES.get(ch, ch) for ch in value) + "'"


def js_template(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("`", "\\`").replace("${", "\\${")
    return f"sql`{escaped}`"


def js_literal(value) -> str:
    """Render a plain Python value (str, int, bool, None, list, dict) as a literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return js_string(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(js_literal(v) for v in value) + "]"
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = []
        for key, item in value.items():
            name = key if _BARE_KEY.match(key) else js_string(key)
            items.append(f"{name}: {js_literal(item)}")
        return "{ " + ", ".join(items) + " }"
    raise TypeError(f"cannot render {type(value).__name__} as a literal")


def format_default(raw: str, column: Optional[Column] = None) -> str:
    text = raw.strip()
    upper = text.upper()
    if upper in KNOWN_FUNCTION_DEFAULTS:
        return f'"{upper}"'
    if upper in ("TRUE", "FALSE"):
        return upper.lower()
    if upper == "NULL":
        return "null"
    if _INTEGER.match(text):
        big = column is not None and column.type.key in _BIG_INTEGER_KEYS
        return text + "n" if big else text
    if _FLOAT.match(text):
        return text
    if _SQL_STRING.match(text):
        return text
    return js_template(text)


def type_call(descriptor: TypeDescriptor, sql_name: str) -> str:
    """Builder call for a type, carrying the SQL column name as first argument."""
    p = descriptor.params
    options: Dict[str, object] = {}
    if descriptor.custom:
        options["dataType"] = descriptor.base
    if p.length is not None:
        options["length"] = p.length
    if p.fields:
        options["fields"] = p.fields
    if p.precision is not None:
        options["precision"] = p.precision
    if p.scale is not None:
        options["scale"] = p.scale
    args = js_string(sql_name)
    if options:
        args += ", " + js_literal(options)
    return f"{builder_name(descriptor)}({args})"


def _constraint_flags(constraint) -> Dict[str, object]:
    flags: Dict[str, object] = {}
    if constraint.name:
        flags["name"] = constraint.name
    if constraint.deferrable:
        flags["deferrable"] = True
    if constraint.initially_deferred:
        flags["initiallyDeferred"] = True
    if constraint.not_enforced:
        flags["notEnforced"] = True
    if constraint.tracking_id:
        flags["$id"] = constraint.tracking_id
    return flags


class _Emitter:
    def __init__(self, schema: Schema, options: EmitOptions):
        self.schema = schema
        self.options = options
        self.imports: Set[str] = set()
        self.exports: List[str] = []

    def key(self, name: str) -> str:
        key = camelize(name) if self.options.camel_case else name
        return key if _BARE_KEY.match(key) else js_string(key)

    def export_name(self, table: Table) -> str:
        chosen = self.options.export_name
        if isinstance(chosen, dict) and table.name in chosen:
            return chosen[table.name]
        if isinstance(chosen, str) and len(self.schema.tables) == 1:
            return chosen
        return pascalize(table.name)

    def type_call(self, descriptor: TypeDescriptor, sql_name: str) -> str:
        self.imports.add(builder_name(descriptor))
        return type_call(descriptor, sql_name)

    def raw_sql(self, text: str) -> str:
        self.imports.add("sql")
        return js_template(text)

    # tables

    def column(self, column: Column, table: Table) -> str:
        parts = [self.type_call(column.type, column.column_name)]
        if column.is_array:
            parts.append("array()" if column.dimensions == 1 else f"array({column.dimensions})")
        if column.nullability == "not_null":
            parts.append("notNull()")
        elif column.nullability == "nullable":
            parts.append("nullable()")
        if column.primary_key:
            flags = _constraint_flags(table.primary_key)
            parts.append(f"primaryKey({js_literal(flags)})" if flags else "primaryKey()")
        if column.unique:
            parts.append("unique()")
        if column.default is not None:
            rendered = format_default(column.default, column)
            if rendered.startswith("sql`"):
                self.imports.add("sql")
            parts.append(f"default({rendered})")
        ref = column.references
        if ref is not None:
            opts: Dict[str, object] = {}
            for key, value in (
                ("onDelete", ref.on_delete),
                ("onUpdate", ref.on_update),
                ("match", ref.match),
                ("schema", ref.schema_name),
            ):
                if value:
                    opts[key] = value
            if ref.deferrable:
                opts["deferrable"] = True
            if ref.initially_deferred:
                opts["initiallyDeferred"] = True
            args = f"{js_string(ref.table)}, {js_string(ref.column)}"
            parts.append(f"references({args}, {js_literal(opts)})" if opts else f"references({args})")
        if column.check is not None:
            args = js_string(column.check.expression)
            if column.check.name:
                args += ", " + js_literal({"name": column.check.name})
            parts.append(f"check({args})")
        if column.generated is not None:
            gen = column.generated
            parts.append(f"generatedAs({js_string(gen.expression)}, {js_literal(gen.stored)})")
        if column.identity is not None:
            method = "generatedAlwaysAsIdentity" if column.identity.mode == "always" else "generatedByDefaultAsIdentity"
            args = js_string(column.identity.options) if column.identity.options else ""
            parts.append(f"{method}({args})")
        if column.collation:
            parts.append(f"collate({js_string(column.collation)})")
        if column.comment:
            parts.append(f"comment({js_string(column.comment)})")
        if column.tracking_id:
            parts.append(f"$id({js_string(column.tracking_id)})")
        return f"{self.key(column.name)}: " + ".".join(parts)

    def index(self, index: Index) -> Dict[str, object]:
        out: Dict[str, object] = {}
        if index.name:
            out["name"] = index.name
        if index.columns:
            out["columns"] = list(index.columns)
        else:
            out["expression"] = index.expression
        if index.unique:
            out["unique"] = True
        if index.method != "BTREE":
            out["using"] = index.method
        if index.opclass:
            out["opclass"] = index.opclass
        if index.sort_order:
            out["order"] = index.sort_order
        if index.nulls_ordering:
            out["nulls"] = index.nulls_ordering
        if index.include:
            out["include"] = list(index.include)
        if index.storage_params:
            out["with"] = dict(index.storage_params)
        if index.where:
            out["where"] = index.where
        if index.concurrently:
            out["concurrently"] = True
        if index.comment:
            out["comment"] = index.comment
        if index.tracking_id:
            out["$id"] = index.tracking_id
        return out

    def partitioning(self, partitioning: Partitioning) -> Dict[str, object]:
        key = list(partitioning.key)
        if partitioning.strategy == "HASH" and len(key) > 1:
            logger.warning("HASH partition key %s emitted with its first column only", ", ".join(key))
            key = key[:1]
        out: Dict[str, object] = {"strategy": partitioning.strategy, "key": key}
        if partitioning.subpartition is not None:
            out["subpartition"] = self.partitioning(partitioning.subpartition)
        return out

    def table_options(self, table: Table) -> List[str]:
        lines: List[str] = []

        def add(key: str, value) -> None:
            lines.append(f"{key}: {js_literal(value)}")

        if table.schema_name:
            add("schema", table.schema_name)
        pk = table.primary_key
        if pk is not None and not any(c.primary_key for c in table.columns):
            flags = _constraint_flags(pk)
            add("primaryKey", {**flags, "columns": list(pk.columns)} if flags else list(pk.columns))

        uniques, checks, foreign_keys, exclusions = [], [], [], []
        for constraint in table.constraints:
            flags = _constraint_flags(constraint)
            if isinstance(constraint, Unique):
                item = {"columns": list(constraint.columns), **flags}
                if constraint.nulls_not_distinct:
                    item["nullsNotDistinct"] = True
                uniques.append(item)
            elif isinstance(constraint, Check):
                checks.append({"expression": constraint.expression, **flags})
            elif isinstance(constraint, ForeignKey):
                target: Dict[str, object] = {"table": constraint.ref_table, "columns": list(constraint.ref_columns)}
                if constraint.ref_schema:
                    target["schema"] = constraint.ref_schema
                item = {"columns": list(constraint.columns), "references": target, **flags}
                for key, value in (("onDelete", constraint.on_delete), ("onUpdate", constraint.on_update),
                                   ("match", constraint.match)):
                    if value:
                        item[key] = value
                foreign_keys.append(item)
            elif isinstance(constraint, Exclusion):
                item = {"definition": constraint.raw, **flags}
                if constraint.method:
                    item["using"] = constraint.method
                exclusions.append(item)
            elif not isinstance(constraint, PrimaryKey):
                raise TypeError(f"unknown constraint {constraint!r}")
        for key, items in (("uniqueConstraints", uniques), ("checkConstraints", checks),
                           ("foreignKeys", foreign_keys), ("exclusions", exclusions)):
            if items:
                add(key, items)
        if table.indexes:
            add("indexes", [self.index(i) for i in table.indexes])

        if table.partitioning is not None:
            add("partitionBy", self.partitioning(table.partitioning))
        if table.partitions:
            add("partitions", [p.model_dump() for p in table.partitions])
        if table.partition_of:
            add("partitionOf", table.partition_of)
        if table.partition_bound is not None:
            add("partitionBound", table.partition_bound.model_dump())

        for key, value in (
            ("temporary", table.temporary),
            ("unlogged", table.unlogged),
            ("inherits", list(table.inherits)),
            ("tablespace", table.tablespace),
            ("with", dict(table.with_options)),
            ("onCommit", table.on_commit),
            ("locality", table.locality),
            ("comment", table.comment),
            ("$id", table.tracking_id),
        ):
            if value:
                add(key, value)
        return lines

    def table(self, table: Table) -> str:
        self.imports.add("defineTable")
        name = self.export_name(table)
        self.exports.append(name)
        out = [f"export const {name} = defineTable({js_string(table.name)}, {{"]
        out.extend(f"{INDENT}{self.column(c, table)}," for c in table.columns)
        options = self.table_options(table)
        if options:
            out.append("}, {")
            out.extend(f"{INDENT}{line}," for line in options)
        out.append("});")
        return "\n".join(out)

    # other entities

    def enum(self, enum: EnumType) -> str:
        self.imports.add("pgEnum")
        args = f"{js_string(enum.name)}, {js_literal(list(enum.values))}"
        if enum.schema_name:
            args += ", " + js_literal({"schema": enum.schema_name})
        return f"export const {camelize(enum.name)}Enum = pgEnum({args});"

    def domain(self, domain: Domain) -> str:
        self.imports.add("pgDomain")
        opts: Dict[str, object] = {}
        if domain.not_null:
            opts["notNull"] = True
        if domain.default is not None:
            opts["default"] = domain.default
        if domain.check:
            opts["check"] = domain.check
        if domain.schema_name:
            opts["schema"] = domain.schema_name
        args = f"{js_string(domain.name)}, {self.type_call(domain.base_type, domain.name)}"
        if opts:
            args += ", " + js_literal(opts)
        return f"export const {camelize(domain.name)}Domain = pgDomain({args});"

    def composite(self, composite: CompositeType) -> str:
        self.imports.add("pgComposite")
        out = [f"export const {camelize(composite.name)}Type = pgComposite({js_string(composite.name)}, {{"]
        for attribute in composite.attributes:
            out.append(f"{INDENT}{self.key(attribute.name)}: {self.type_call(attribute.type, attribute.name)},")
        out.append("});")
        return "\n".join(out)

    def sequence(self, sequence: Sequence) -> str:
        self.imports.add("pgSequence")
        opts: Dict[str, object] = {}
        for key, value in (
            ("start", sequence.start),
            ("increment", sequence.increment),
            ("minValue", sequence.min_value),
            ("maxValue", sequence.max_value),
            ("cache", sequence.cache),
            ("ownedBy", sequence.owned_by),
            ("schema", sequence.schema_name),
        ):
            if value is not None:
                opts[key] = value
        if sequence.cycle:
            opts["cycle"] = True
        args = js_string(sequence.name) + (", " + js_literal(opts) if opts else "")
        return f"export const {camelize(sequence.name)}Sequence = pgSequence({args});"

    def view(self, view: View) -> str:
        builder = "pgMaterializedView" if view.materialized else "pgView"
        self.imports.add(builder)
        return f"export const {camelize(view.name)}View = {builder}({js_string(view.name)}, {self.raw_sql(view.definition)});"

    def function(self, function: Function) -> str:
        self.imports.add("pgFunction")
        opts: Dict[str, object] = {"kind": function.kind}
        for key, value in (("language", function.language), ("returns", function.returns),
                           ("arguments", function.arguments), ("schema", function.schema_name)):
            if value:
                opts[key] = value
        rendered = js_literal(opts)[:-2] + f", body: {self.raw_sql(function.body)} }}"
        return f"export const {camelize(function.name)}Function = pgFunction({js_string(function.name)}, {rendered});"

    def trigger(self, trigger: Trigger) -> str:
        self.imports.add("pgTrigger")
        opts: Dict[str, object] = {
            "table": trigger.table,
            "function": trigger.function,
            "timing": trigger.timing,
            "events": list(trigger.events),
            "forEach": trigger.for_each,
        }
        if trigger.update_of:
            opts["updateOf"] = list(trigger.update_of)
        for key, value in (("when", trigger.when), ("oldTable", trigger.referencing_old_table),
                           ("newTable", trigger.referencing_new_table)):
            if value:
                opts[key] = value
        if trigger.constraint:
            opts["constraint"] = True
        return f"export const {camelize(trigger.name)}Trigger = pgTrigger({js_string(trigger.name)}, {js_literal(opts)});"

    def render(self) -> str:
        blocks: List[str] = []
        schema = self.schema
        if schema.extensions:
            self.imports.add("pgExtensions")
            blocks.append(f"export const extensions = pgExtensions({js_literal(list(schema.extensions))});")
        blocks.extend(self.enum(e) for e in schema.enums)
        blocks.extend(self.domain(d) for d in schema.domains)
        blocks.extend(self.composite(c) for c in schema.composite_types)
        blocks.extend(self.sequence(s) for s in schema.sequences)
        blocks.extend(self.table(t) for t in schema.tables)
        blocks.extend(self.view(v) for v in schema.views)
        blocks.extend(self.function(f) for f in schema.functions)
        blocks.extend(self.trigger(t) for t in schema.triggers)

        if self.options.include_types and self.exports:
            types = []
            for name in self.exports:
                types.append(f"export type {name}Row = typeof {name}.$inferSelect;")
                types.append(f"export type New{name}Row = typeof {name}.$inferInsert;")
            blocks.append("\n".join(types))
            blocks.append("export const schema = { " + ", ".join(self.exports) + " };")

        header = f"import {{ {', '.join(sorted(self.imports))} }} from {js_string(self.options.import_path)};"
        return "\n\n".join([header, *blocks]) + "\n"


def emit_builder_code(schema: Union[Schema, Table], options: EmitOptions) -> str:
    """Render builder code that reconstructs ``schema`` in a defineTable host.

    Every table becomes one ``defineTable(name, {columns}, {options})``
    export. Column definitions chain one modifier per call in a fixed
    order, so output for a given schema is byte-stable.
    """
    if isinstance(schema, Table):
        schema = Schema(tables=[schema])
    code = _Emitter(schema, options).render()
    logger.debug("emitted builder code for %d table(s)", len(schema.tables))
    return code
