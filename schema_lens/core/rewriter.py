from __future__ import annotations

import logging
import re
from typing import List

from pydantic import BaseModel, ConfigDict, Field

from schema_lens.core.catalog import load_catalog

logger = logging.getLogger(__name__)

_CLEANUPS = (
    (re.compile(r"\n\s*\n\s*\n"), "\n\n"),
    (re.compile(r",\s*\)"), "\n)"),
    (re.compile(r"\(\s*,"), "("),
    (re.compile(r"  +"), " "),
)


class RewriteChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_code: str
    description: str
    original: str
    replacement: str


class RewriteResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    sql: str
    changes: List[RewriteChange] = Field(default_factory=list)
    modified: bool = False


def rewrite_for_dsql(sql: str) -> RewriteResult:
    """Apply the DSQL rewrite rules, in catalog order, to one SQL text.

    Each rule that matches records a single change (its first match); all
    matches are replaced. Array types are left alone: they stay a DSQL error
    and need a manual data-model change.
    """
    text = sql
    changes: List[RewriteChange] = []
    for rule in load_catalog("dsql").rewrites:
        pattern = rule.compiled()
        first = pattern.search(text)
        if first is None:
            continue
        changes.append(
            RewriteChange(
                rule_code=rule.code,
                description=rule.description,
                original=first.group(0),
                replacement=first.expand(rule.replacement),
            )
        )
        text = pattern.sub(rule.replacement, text)

    for pattern, repl in _CLEANUPS:
        text = pattern.sub(repl, text)
    text = text.strip()

    if changes:
        logger.debug("DSQL rewrite applied %d rule(s): %s", len(changes), ", ".join(c.rule_code for c in changes))
    return RewriteResult(sql=text, changes=changes, modified=bool(changes))


def rewrite_statements_for_dsql(sql: str) -> RewriteResult:
    """Rewrite a script statement by statement (split on ``;``) and join the results."""
    statements = [s.strip() for s in sql.split(";")]
    results = [rewrite_for_dsql(s) for s in statements if s]
    joined = ";\n\n".join(r.sql for r in results)
    if joined:
        joined += ";"
    changes = [c for r in results for c in r.changes]
    return RewriteResult(sql=joined, changes=changes, modified=bool(changes))


def needs_dsql_rewrite(sql: str) -> bool:
    return any(rule.compiled().search(sql) for rule in load_catalog("dsql").rewrites)


def format_changes(changes: List[RewriteChange]) -> str:
    if not changes:
        return "No DSQL transformations needed."
    lines = [f"DSQL Transformations ({len(changes)}):"]
    for change in changes:
        lines.append(f"  [{change.rule_code}] {change.description}")
        lines.append(f"    - {change.original.strip()}")
        lines.append(f"    + {change.replacement.strip() or '(removed)'}")
    return "\n".join(lines)
