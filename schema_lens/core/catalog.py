from __future__ import annotations

import hashlib
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from schema_lens.core.errors import CatalogError

logger = logging.getLogger(__name__)

RULES_DIR = Path(__file__).resolve().parent.parent / "rules"
CATALOG_NAMES = ("core", "postgres", "dsql", "cockroachdb", "nile")

Severity = Literal["error", "warning", "info"]
Category = Literal[
    "column-type",
    "column-limit",
    "column-modifier",
    "constraint",
    "index",
    "index-limit",
    "table-feature",
    "function",
    "trigger",
    "view",
    "extension",
    "sequence",
    "database-limit",
    "transaction",
    "miscellaneous",
]

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


def fill(template: str, context: Mapping[str, object]) -> str:
    """Substitute ``{name}`` placeholders; unknown names are left as written."""

    def repl(m: re.Match) -> str:
        value = context.get(m.group(1))
        return m.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(repl, template)


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class AutoFixSpec(_Frozen):
    description: str
    original_type: str
    replacement_type: str
    additional_changes: List[str] = Field(default_factory=list)


class RuleDefinition(_Frozen):
    code: str
    severity: Severity
    category: Category
    message: str
    alternative: Optional[str] = None
    docs_url: Optional[str] = None
    auto_fix: Optional[AutoFixSpec] = None


class SqlPattern(_Frozen):
    code: str
    pattern: str

    def compiled(self) -> re.Pattern:
        return _compile(self.pattern)


class RewriteRule(_Frozen):
    code: str
    description: str
    pattern: str
    replacement: str

    def compiled(self) -> re.Pattern:
        return _compile(self.pattern)


class Catalog(_Frozen):
    namespace: str
    prefix: str
    label: str
    version: str
    rules: Dict[str, RuleDefinition]
    type_map: Dict[str, str] = Field(default_factory=dict)
    sql_patterns: List[SqlPattern] = Field(default_factory=list)
    body_patterns: List[SqlPattern] = Field(default_factory=list)
    rewrites: List[RewriteRule] = Field(default_factory=list)

    def lookup(self, code: str) -> RuleDefinition:
        try:
            return self.rules[code]
        except KeyError:
            raise CatalogError(f"Unknown rule code {code!r} in catalog {self.namespace!r}") from None

    def type_rule(self, key: str) -> Optional[RuleDefinition]:
        code = self.type_map.get(key)
        return self.rules[code] if code else None


@lru_cache(maxsize=None)
def _compile(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


def _resolve_docs(value: Optional[str], docs: Mapping[str, str], code: str) -> Optional[str]:
    if value is None:
        return None
    if value in docs:
        return docs[value]
    if value.startswith(("http://", "https://")):
        return value
    raise CatalogError(f"{code}: docs key {value!r} is not defined")


def _build(name: str, raw: Mapping, version: str) -> Catalog:
    prefix = raw.get("prefix")
    if not prefix:
        raise CatalogError(f"catalog {name!r} does not declare a prefix")
    docs = raw.get("docs") or {}

    rules: Dict[str, RuleDefinition] = {}
    for code, body in (raw.get("rules") or {}).items():
        if not code.startswith(prefix):
            raise CatalogError(f"rule {code!r} does not carry the {prefix!r} prefix of catalog {name!r}")
        body = dict(body or {})
        body["docs_url"] = _resolve_docs(body.pop("docs", None), docs, code)
        try:
            rules[code] = RuleDefinition(code=code, **body)
        except ValidationError as exc:
            raise CatalogError(f"rule {code!r} in catalog {name!r} is invalid: {exc}") from exc

    def known(code: str, where: str) -> str:
        if code not in rules:
            raise CatalogError(f"{where} in catalog {name!r} references undefined rule {code!r}")
        return code

    type_map = {str(k).lower(): known(v, f"type_map[{k}]") for k, v in (raw.get("type_map") or {}).items()}

    def patterns(section: str) -> List[SqlPattern]:
        out = []
        for entry in raw.get(section) or []:
            item = SqlPattern(**entry)
            known(item.code, section)
            _check_regex(item.pattern, item.code)
            out.append(item)
        return out

    rewrites = []
    for entry in raw.get("rewrites") or []:
        item = RewriteRule(**entry)
        known(item.code, "rewrites")
        _check_regex(item.pattern, item.code)
        rewrites.append(item)

    return Catalog(
        namespace=raw.get("namespace", name),
        prefix=prefix,
        label=raw.get("label", name),
        version=version,
        rules=rules,
        type_map=type_map,
        sql_patterns=patterns("sql_patterns"),
        body_patterns=patterns("body_patterns"),
        rewrites=rewrites,
    )


def _check_regex(pattern: str, code: str) -> None:
    try:
        _compile(pattern)
    except re.error as exc:
        raise CatalogError(f"{code}: invalid pattern {pattern!r}: {exc}") from exc


@lru_cache(maxsize=None)
def load_catalog(name: str) -> Catalog:
    path = RULES_DIR / f"{name}.yaml"
    if not path.exists():
        raise CatalogError(f"No rule catalog named {name!r} (looked for {path})")
    text = path.read_text(encoding="utf-8")
    try:
        raw = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise CatalogError(f"catalog {name!r} is not valid YAML: {exc}") from exc
    if not isinstance(raw, dict):
        raise CatalogError(f"catalog {name!r} must be a mapping")
    catalog = _build(name, raw, hashlib.sha256(text.encode("utf-8")).hexdigest())
    logger.debug("loaded catalog %s: %d rules, version %s", name, len(catalog.rules), catalog.version[:12])
    return catalog


@lru_cache(maxsize=None)
def all_rules() -> Tuple[RuleDefinition, ...]:
    seen: Dict[str, str] = {}
    out: List[RuleDefinition] = []
    for name in CATALOG_NAMES:
        for code, rule in load_catalog(name).rules.items():
            if code in seen:
                raise CatalogError(f"rule {code!r} is defined in both {seen[code]!r} and {name!r}")
            seen[code] = name
            out.append(rule)
    return tuple(out)


def lookup(code: str) -> RuleDefinition:
    for rule in all_rules():
        if rule.code == code:
            return rule
    raise CatalogError(f"Unknown rule code {code!r}")
