from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from schema_lens.core.diagnostics import Diagnostic, ValidationResult
from schema_lens.core.ir import Schema
from schema_lens.core.registry import DialectRegistry
from schema_lens.core.tokenizer import strip_comments
from schema_lens.dialects.base import DialectHandler, index_label
from schema_lens.policy.config_schema import ToolkitConfig

logger = logging.getLogger(__name__)


def get_handler(dialect: str, config: Optional[ToolkitConfig] = None) -> DialectHandler:
    handler_cls = DialectRegistry.get(dialect)
    return handler_cls(config)


def validate(schema: Schema, dialect: str = "postgres", config: Optional[ToolkitConfig] = None) -> ValidationResult:
    """Check a Schema against one dialect.

    The walk order is fixed: schema-wide checks, then each table (table
    flags, columns, constraints, indexes), functions, triggers, sequences,
    views and finally the free-form SQL scan over ``schema.source_sql``.
    Diagnostics come out in that order, which keeps the output stable.
    """
    config = config or ToolkitConfig()
    handler = get_handler(dialect, config)
    ignored = set(config.ignore_codes)
    out: List[Diagnostic] = []

    def emit(items: Iterable[Diagnostic]) -> None:
        out.extend(d for d in items if d.code not in ignored)

    emit(handler.check_schema(schema))

    for table in schema.tables:
        column_level: List[Diagnostic] = []
        column_codes: Dict[str, Set[str]] = {}
        for column in table.columns:
            found = list(handler.check_column(column, table, schema))
            column_level.extend(found)
            codes = {d.code for d in found}
            column_codes[column.name] = codes
            column_codes[column.column_name] = codes
        index_columns = {index_label(i, table): i.columns for i in table.indexes}

        def table_scope(items: Iterable[Diagnostic], covered: Sequence[str] = ()) -> List[Diagnostic]:
            # the column diagnostic wins when the same code fired on a column this subject covers
            out = []
            for d in items:
                columns = [*covered, *index_columns.get(d.location.index, ()), d.location.column]
                if not any(d.code in column_codes.get(c, ()) for c in columns if c):
                    out.append(d)
            return out

        emit(table_scope(handler.check_table(table, schema)))
        emit(column_level)
        for constraint in table.constraints:
            emit(table_scope(handler.check_constraint(constraint, table, schema), getattr(constraint, "columns", ())))
        emit(table_scope(handler.check_indexes(table, schema)))

    for function in schema.functions:
        emit(handler.check_function(function, schema))
    for trigger in schema.triggers:
        emit(handler.check_trigger(trigger, schema))
    for sequence in schema.sequences:
        emit(handler.check_sequence(sequence, schema))
    emit(handler.check_views(schema.views, schema))

    if schema.source_sql:
        already: Set[str] = {d.code for d in out} | ignored
        emit(handler.check_sql(strip_comments(schema.source_sql), already))

    result = ValidationResult(dialect=handler.name, label=handler.label, all=out)
    logger.info(
        "validated %d table(s) for %s: %d error(s), %d warning(s), %d info(s)",
        len(schema.tables), handler.name, len(result.errors), len(result.warnings), len(result.infos),
    )
    return result
