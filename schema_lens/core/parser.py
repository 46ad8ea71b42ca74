from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

from pydantic import ValidationError

from schema_lens.core.errors import InvalidCreateTable, ParseError, SchemaInvariantError, UnparseableBody
from schema_lens.core.ir import (
    Check,
    ChildPartition,
    Column,
    ColumnCheck,
    ColumnReference,
    CompositeAttribute,
    CompositeType,
    DefaultPartition,
    Domain,
    EnumType,
    Exclusion,
    ForeignKey,
    Function,
    GeneratedExpression,
    HashPartition,
    Identity,
    Index,
    ListPartition,
    Partitioning,
    PrimaryKey,
    RangePartition,
    Schema,
    Sequence,
    Table,
    Trigger,
    Unique,
    View,
)
from schema_lens.core.tokenizer import (
    Token,
    find_closing_paren,
    iter_tokens,
    split_statements,
    split_table_body,
    split_top_level,
    strip_comments,
    tokenize,
)
from schema_lens.core.types import parse_type

logger = logging.getLogger(__name__)

_IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][\w$]*)'
_QUALIFIED = rf"{_IDENT}(?:\s*\.\s*{_IDENT})?"

_CREATE_TABLE = re.compile(
    r"^\s*CREATE\s+(?:(?:GLOBAL|LOCAL)\s+)?(?:(?P<kind>TEMPORARY|TEMP|UNLOGGED)\s+)?TABLE\s+"
    rf"(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>{_QUALIFIED})",
    re.I,
)
_PARTITION_OF = re.compile(rf"^\s*PARTITION\s+OF\s+(?P<parent>{_QUALIFIED})", re.I)
_CREATE_INDEX = re.compile(
    r"^CREATE\s+(?P<unique>UNIQUE\s+)?INDEX\s+(?P<concurrently>CONCURRENTLY\s+)?(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"(?:(?P<name>{_QUALIFIED})\s+)?ON\s+(?:ONLY\s+)?(?P<table>{_QUALIFIED})\s*"
    r"(?:USING\s+(?P<method>\w+)\s*)?(?P<rest>\(.*)$",
    re.I | re.S,
)
_CREATE_ENUM = re.compile(rf"^CREATE\s+TYPE\s+(?P<name>{_QUALIFIED})\s+AS\s+ENUM\s*\((?P<values>.*)\)$", re.I | re.S)
_CREATE_COMPOSITE = re.compile(rf"^CREATE\s+TYPE\s+(?P<name>{_QUALIFIED})\s+AS\s*\((?P<body>.*)\)$", re.I | re.S)
_CREATE_DOMAIN = re.compile(rf"^CREATE\s+DOMAIN\s+(?P<name>{_QUALIFIED})\s+(?:AS\s+)?(?P<rest>.+)$", re.I | re.S)
_CREATE_SEQUENCE = re.compile(
    r"^CREATE\s+(?:(?:TEMP|TEMPORARY|UNLOGGED)\s+)?SEQUENCE\s+(?:IF\s+NOT\s+EXISTS\s+)?"
    rf"(?P<name>{_QUALIFIED})(?P<rest>.*)$",
    re.I | re.S,
)
_CREATE_EXTENSION = re.compile(r'^CREATE\s+EXTENSION\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>"[^"]+"|[\w-]+)', re.I)
_CREATE_VIEW = re.compile(
    r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?:(?:TEMP|TEMPORARY)\s+)?(?:RECURSIVE\s+)?(?P<materialized>MATERIALIZED\s+)?"
    rf"VIEW\s+(?:IF\s+NOT\s+EXISTS\s+)?(?P<name>{_QUALIFIED})(?:\s*\([^)]*\))?(?:\s+WITH\s*\([^)]*\))?"
    r"\s+AS\s+(?P<definition>.+)$",
    re.I | re.S,
)
_CREATE_ROUTINE = re.compile(
    rf"^CREATE\s+(?:OR\s+REPLACE\s+)?(?P<kind>FUNCTION|PROCEDURE)\s+(?P<name>{_QUALIFIED})\s*\(", re.I
)
_DO_BLOCK = re.compile(
    r"^DO\s+(?:LANGUAGE\s+'?(?P<lang1>\w+)'?\s+)?(?P<tag>\$\w*\$)(?P<body>.*?)(?P=tag)"
    r"(?:\s+LANGUAGE\s+'?(?P<lang2>\w+)'?)?",
    re.I | re.S,
)
_CREATE_TRIGGER = re.compile(
    r"^CREATE\s+(?:OR\s+REPLACE\s+)?(?P<constraint>CONSTRAINT\s+)?TRIGGER\s+"
    rf"(?P<name>{_IDENT})\s+(?P<timing>BEFORE|AFTER|INSTEAD\s+OF)\s+(?P<events>.+?)\s+ON\s+"
    rf"(?P<table>{_QUALIFIED})(?P<rest>.*?)\bEXECUTE\s+(?:FUNCTION|PROCEDURE)\s+(?P<function>{_QUALIFIED})\s*\(",
    re.I | re.S,
)
_COMMENT_ON = re.compile(
    r"^COMMENT\s+ON\s+(?P<kind>TABLE|COLUMN)\s+(?P<target>[\w\".$]+)\s+IS\s+(?P<value>'(?:[^']|'')*'|NULL)\s*$",
    re.I | re.S,
)
_ALTER_ADD_CONSTRAINT = re.compile(
    rf"^ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?(?P<table>{_QUALIFIED})\s+ADD\s+"
    r"(?P<constraint>(?:CONSTRAINT\s+\S+\s+)?(?:PRIMARY\s+KEY|UNIQUE|CHECK|FOREIGN\s+KEY|EXCLUDE)\b.*)$",
    re.I | re.S,
)
_DOLLAR_BODY = re.compile(r"(?P<tag>\$\w*\$)(?P<body>.*?)(?P=tag)", re.S)
_QUOTED_BODY = re.compile(r"\bAS\s+'(?P<body>(?:[^']|'')*)'", re.I | re.S)
_RETURNS = re.compile(
    r"\bRETURNS\s+(?P<returns>TABLE\s*\([^)]*\)|SETOF\s+[\w.\"]+|[\w.\"]+(?:\s+(?:VARYING|PRECISION))?(?:\s*\[\])?)",
    re.I,
)
_LANGUAGE = re.compile(r"\bLANGUAGE\s+'?(?P<language>\w+)'?", re.I)
_ALLOWED_VALUES = re.compile(r"^\s*\(?\s*(?:\"[^\"]+\"|\w+)\s+IN\s*\((?P<items>.*)\)\s*\)?\s*$", re.I | re.S)

# a bare word alone is a column name: `check INT` declares a column
_TABLE_CONSTRAINT_HEAD = re.compile(
    r"^\s*(?:CONSTRAINT\s+(?:\"[^\"]+\"|\w+)\s+(?:PRIMARY|UNIQUE|CHECK|FOREIGN|EXCLUDE)\b"
    r"|PRIMARY\s+KEY\b|FOREIGN\s+KEY\b|UNIQUE\s*(?:\(|NULLS\b|USING\b)"
    r"|CHECK\s*\(|EXCLUDE\s*(?:\(|USING\b))",
    re.I,
)
_DEFAULT_STOP = {
    "NOT", "NULL", "PRIMARY", "UNIQUE", "REFERENCES", "CHECK", "GENERATED", "CONSTRAINT", "COLLATE",
    "DEFERRABLE", "INITIALLY",
}
_INTERVAL_WORDS = {"YEAR", "MONTH", "DAY", "HOUR", "MINUTE", "SECOND", "TO"}
_INDEX_METHODS = {"BTREE", "HASH", "GIN", "GIST", "BRIN", "SPGIST"}
_KNOWN_DEFAULTS = {
    "NOW()", "CURRENT_TIMESTAMP", "CURRENT_DATE", "CURRENT_TIME", "LOCALTIMESTAMP", "LOCALTIME",
    "TRUE", "FALSE", "NULL", "GEN_RANDOM_UUID()",
}


def normalize_identifier(raw: str) -> str:
    """Quoted identifiers keep their case, bare ones fold to lower case."""
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == '"' and raw[-1] == '"':
        return raw[1:-1].replace('""', '"')
    return raw.lower()


def split_qualified(raw: str) -> Tuple[Optional[str], str]:
    parts = split_top_level(raw.strip(), ".")
    if len(parts) >= 2:
        return normalize_identifier(parts[-2]), normalize_identifier(parts[-1])
    return None, normalize_identifier(parts[0])


def normalize_default(raw: str) -> str:
    compact = re.sub(r"\s+", "", raw).upper()
    if compact in _KNOWN_DEFAULTS:
        return compact
    return raw.strip()


def allowed_values(expression: str) -> List[str]:
    """Values of a ``col IN ('a', 'b')`` check, empty for any other expression."""
    m = _ALLOWED_VALUES.match(expression)
    if not m:
        return []
    values = []
    for item in split_top_level(m.group("items")):
        if len(item) < 2 or item[0] != "'" or item[-1] != "'":
            return []
        values.append(item[1:-1].replace("''", "'"))
    return values


def _inner(paren_token: str) -> str:
    return paren_token[1:-1].strip() if paren_token.startswith("(") and paren_token.endswith(")") else paren_token


def _unquote(raw: str) -> str:
    raw = raw.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in ("'", '"'):
        return raw[1:-1].replace(raw[0] * 2, raw[0])
    return raw


def _column_list(paren_token: str) -> List[str]:
    cols = []
    for item in split_top_level(_inner(paren_token)):
        words = tokenize(item)
        if words:
            cols.append(normalize_identifier(words[0]))
    return cols


def _words(tokens: List[Token]) -> List[str]:
    return [t.text.upper() for t in tokens]


def _read_action(words: List[str], k: int) -> Tuple[Optional[str], int]:
    if k >= len(words):
        return None, k
    if words[k] in ("CASCADE", "RESTRICT"):
        return words[k], k + 1
    if k + 1 < len(words) and (words[k], words[k + 1]) in (("NO", "ACTION"), ("SET", "NULL"), ("SET", "DEFAULT")):
        return f"{words[k]} {words[k + 1]}", k + 2
    return None, k + 1


def _read_reference(tokens: List[Token], k: int) -> Tuple[Dict, int]:
    """Parse ``REFERENCES target [(cols)] [MATCH x] [ON DELETE a] [ON UPDATE a] [DEFERRABLE ...]``.

    ``k`` points at the token after REFERENCES.
    """
    words = _words(tokens)
    ref: Dict = {"columns": []}
    ref["schema_name"], ref["table"] = split_qualified(tokens[k].text)
    k += 1
    if k < len(tokens) and tokens[k].text.startswith("("):
        ref["columns"] = _column_list(tokens[k].text)
        k += 1
    while k < len(tokens):
        w = words[k]
        if w == "MATCH" and k + 1 < len(words):
            ref["match"] = words[k + 1]
            k += 2
        elif w == "ON" and k + 1 < len(words) and words[k + 1] in ("DELETE", "UPDATE"):
            which = words[k + 1]
            action, k = _read_action(words, k + 2)
            if action:
                ref["on_delete" if which == "DELETE" else "on_update"] = action
        elif w == "DEFERRABLE":
            ref["deferrable"] = True
            k += 1
        elif w == "NOT" and k + 1 < len(words) and words[k + 1] == "DEFERRABLE":
            k += 2
        elif w == "INITIALLY" and k + 1 < len(words):
            ref["initially_deferred"] = words[k + 1] == "DEFERRED"
            k += 2
        else:
            break
    return ref, k


def _read_type(tokens: List[Token], i: int) -> int:
    """Return the index one past the last token of the type starting at ``tokens[i]``."""
    words = _words(tokens)
    n = len(tokens)
    first = words[i]
    j = i + 1

    def word(at: int) -> str:
        return words[at] if at < n else ""

    if first in ("CHARACTER", "CHAR") and word(j) == "VARYING":
        j += 1
    elif first == "DOUBLE" and word(j) == "PRECISION":
        j += 1
    elif first == "BIT" and word(j) == "VARYING":
        j += 1
    elif first in ("TIMESTAMP", "TIME", "TIMESTAMPTZ", "TIMETZ"):
        if j < n and tokens[j].text.startswith("("):
            j += 1
        if word(j) in ("WITH", "WITHOUT") and word(j + 1) == "TIME" and word(j + 2) == "ZONE":
            j += 3
    elif first == "INTERVAL":
        while word(j) in _INTERVAL_WORDS:
            j += 1
    if j < n and tokens[j].text.startswith("(") and first not in ("TIMESTAMP", "TIME", "TIMESTAMPTZ", "TIMETZ"):
        j += 1
    while j < n and tokens[j].text.startswith("["):
        j += 1
    if word(j).startswith("ARRAY"):
        j += 1
    return j


def _parse_column(fragment: str) -> Optional[Dict]:
    tokens = list(iter_tokens(fragment))
    if len(tokens) < 2 or tokens[0].text.startswith("("):
        return None
    words = _words(tokens)
    n = len(tokens)
    name = normalize_identifier(tokens[0].text)
    type_end = _read_type(tokens, 1)
    type_text = fragment[tokens[1].start:tokens[type_end - 1].end]

    col: Dict = {"name": name, "type": parse_type(type_text), "nullability": "unspecified"}
    pending_name: Optional[str] = None
    k = type_end
    while k < n:
        w = words[k]
        nxt = words[k + 1] if k + 1 < n else ""
        if w == "CONSTRAINT" and k + 1 < n:
            pending_name = normalize_identifier(tokens[k + 1].text)
            k += 2
            continue
        if w == "NOT" and nxt == "NULL":
            if col["nullability"] == "nullable":
                raise SchemaInvariantError(f"column {name}", "conflicting NULL/NOT NULL declarations")
            col["nullability"] = "not_null"
            k += 2
        elif w == "NULL":
            if col["nullability"] == "not_null":
                raise SchemaInvariantError(f"column {name}", "conflicting NULL/NOT NULL declarations")
            col["nullability"] = "nullable"
            k += 1
        elif w == "PRIMARY" and nxt == "KEY":
            col["primary_key"] = True
            col["_pk_name"] = pending_name
            k += 2
        elif w == "UNIQUE":
            col["unique"] = True
            k += 1
            if k < n and words[k] == "NULLS":
                k += 3 if k + 1 < n and words[k + 1] == "NOT" else 2
        elif w == "DEFAULT" and k + 1 < n:
            start = k + 1
            k += 2
            while k < n and words[k] not in _DEFAULT_STOP:
                k += 1
            col["default"] = normalize_default(fragment[tokens[start].start:tokens[k - 1].end])
        elif w == "CHECK" and k + 1 < n and tokens[k + 1].text.startswith("("):
            expression = _inner(tokens[k + 1].text)
            col["check"] = ColumnCheck(expression=expression, name=pending_name, values=allowed_values(expression))
            k += 2
            if k + 1 < n and words[k] == "NO" and words[k + 1] == "INHERIT":
                k += 2
        elif w == "GENERATED":
            k += 1
            mode = "always"
            if k < n and words[k] == "ALWAYS":
                k += 1
            elif k + 1 < n and words[k] == "BY" and words[k + 1] == "DEFAULT":
                mode = "by_default"
                k += 2
            if k < n and words[k] == "AS":
                k += 1
            if k < n and words[k] == "IDENTITY":
                k += 1
                options = None
                if k < n and tokens[k].text.startswith("("):
                    options = _inner(tokens[k].text)
                    k += 1
                col["identity"] = Identity(mode=mode, options=options)
            elif k < n and tokens[k].text.startswith("("):
                expression = _inner(tokens[k].text)
                k += 1
                stored = k < n and words[k] == "STORED"
                if stored:
                    k += 1
                col["generated"] = GeneratedExpression(expression=expression, stored=stored)
        elif w == "REFERENCES" and k + 1 < n:
            ref, k = _read_reference(tokens, k + 1)
            target_cols = ref.pop("columns")
            col["references"] = ColumnReference(column=target_cols[0] if target_cols else "id", **ref)
        elif w == "COLLATE" and k + 1 < n:
            col["collation"] = _unquote(tokens[k + 1].text)
            k += 2
        else:
            logger.debug("Ignoring token %r in column %s", tokens[k].text, name)
            k += 1
        pending_name = None
    return col


def _constraint_flags(words: List[str], k: int) -> Dict:
    flags: Dict = {}
    while k < len(words):
        w = words[k]
        nxt = words[k + 1] if k + 1 < len(words) else ""
        if w == "DEFERRABLE":
            flags["deferrable"] = True
        elif w == "INITIALLY" and nxt:
            flags["initially_deferred"] = nxt == "DEFERRED"
            k += 1
        elif w == "NOT" and nxt == "ENFORCED":
            flags["not_enforced"] = True
            k += 1
        elif w == "NOT" and nxt in ("DEFERRABLE", "VALID"):
            k += 1
        k += 1
    return flags


def parse_table_constraint(fragment: str):
    """Parse a table-level constraint fragment, ``None`` when it does not match."""
    tokens = list(iter_tokens(fragment))
    words = _words(tokens)
    n = len(tokens)
    name: Optional[str] = None
    k = 0
    if n >= 2 and words[0] == "CONSTRAINT":
        name = normalize_identifier(tokens[1].text)
        k = 2
    if k >= n:
        return None

    def paren(at: int) -> bool:
        return at < n and tokens[at].text.startswith("(")

    w = words[k]
    if w == "PRIMARY" and k + 2 < n and words[k + 1] == "KEY" and paren(k + 2):
        return PrimaryKey(name=name, columns=_column_list(tokens[k + 2].text), **_constraint_flags(words, k + 3))
    if w == "UNIQUE":
        k += 1
        nulls_not_distinct = False
        if k < n and words[k] == "NULLS":
            nulls_not_distinct = k + 1 < n and words[k + 1] == "NOT"
            k += 3 if nulls_not_distinct else 2
        if not paren(k):
            return None
        return Unique(
            name=name,
            columns=_column_list(tokens[k].text),
            nulls_not_distinct=nulls_not_distinct,
            **_constraint_flags(words, k + 1),
        )
    if w == "CHECK" and paren(k + 1):
        expression = _inner(tokens[k + 1].text)
        return Check(name=name, expression=expression, values=allowed_values(expression),
                     **_constraint_flags(words, k + 2))
    if w == "FOREIGN" and k + 3 < n and words[k + 1] == "KEY" and paren(k + 2) and words[k + 3] == "REFERENCES":
        if k + 4 >= n:
            return None
        columns = _column_list(tokens[k + 2].text)
        ref, end = _read_reference(tokens, k + 4)
        ref_columns = ref.pop("columns") or ["id"]
        flags = _constraint_flags(words, end)
        flags.setdefault("deferrable", ref.pop("deferrable", False))
        flags.setdefault("initially_deferred", ref.pop("initially_deferred", False))
        ref.pop("deferrable", None)
        ref.pop("initially_deferred", None)
        return ForeignKey(
            name=name,
            columns=columns,
            ref_table=ref.pop("table"),
            ref_schema=ref.pop("schema_name"),
            ref_columns=ref_columns,
            **ref,
            **flags,
        )
    if w == "EXCLUDE":
        method = None
        if k + 2 < n and words[k + 1] == "USING" and words[k + 2] in _INDEX_METHODS:
            method = words[k + 2]
        return Exclusion(name=name, raw=fragment[tokens[k].start:].strip(), method=method,
                         **_constraint_flags(words, k + 1))
    return None


def _parse_tail(tail: str, table: Dict) -> None:
    """Trailing clauses after the table body: INHERITS, PARTITION BY, WITH, ON COMMIT, TABLESPACE, LOCALITY."""
    tokens = list(iter_tokens(tail))
    words = _words(tokens)
    n = len(tokens)
    k = 0
    while k < n:
        w = words[k]
        if w == "INHERITS" and k + 1 < n:
            table["inherits"] = [split_qualified(p)[1] for p in split_top_level(_inner(tokens[k + 1].text))]
            k += 2
        elif w == "PARTITION" and k + 3 < n and words[k + 1] == "BY":
            table["partitioning"] = Partitioning(strategy=words[k + 2], key=_partition_key(tokens[k + 3].text))
            k += 4
        elif w == "WITH" and k + 1 < n and tokens[k + 1].text.startswith("("):
            table["with_options"] = _storage_params(tokens[k + 1].text)
            k += 2
        elif w == "ON" and k + 2 < n and words[k + 1] == "COMMIT":
            action = words[k + 2]
            if action in ("PRESERVE", "DELETE") and k + 3 < n:
                table["on_commit"] = f"{action} ROWS"
                k += 4
            else:
                table["on_commit"] = action
                k += 3
        elif w == "TABLESPACE" and k + 1 < n:
            table["tablespace"] = normalize_identifier(tokens[k + 1].text)
            k += 2
        elif w == "LOCALITY" and k + 1 < n:
            end = k + 1
            while end < n and words[end] not in ("WITH", "TABLESPACE", "PARTITION"):
                end += 1
            table["locality"] = " ".join(tail[tokens[k + 1].start:tokens[end - 1].end].split())
            k = end
        else:
            logger.debug("Ignoring trailing table clause token %r", tokens[k].text)
            k += 1


def _partition_key(paren_token: str) -> List[str]:
    key = []
    for item in split_top_level(_inner(paren_token)):
        parts = tokenize(item)
        if len(parts) == 1 and re.fullmatch(_IDENT, parts[0]):
            key.append(normalize_identifier(parts[0]))
        else:
            key.append(item.strip())
    return key


def _storage_params(paren_token: str) -> Dict[str, str]:
    params: Dict[str, str] = {}
    for item in split_top_level(_inner(paren_token)):
        key, _, value = item.partition("=")
        params[key.strip().lower()] = _unquote(value) if value else "true"
    return params


def _parse_partition_bound(name: str, tokens: List[Token]) -> Tuple[Optional[ChildPartition], int]:
    words = _words(tokens)
    n = len(tokens)
    k = 0
    while k < n:
        w = words[k]
        if w == "DEFAULT":
            return DefaultPartition(name=name), k + 1
        if w == "FOR" and k + 2 < n and words[k + 1] == "VALUES":
            kind = words[k + 2]
            if kind == "IN" and k + 3 < n:
                values = split_top_level(_inner(tokens[k + 3].text))
                return ListPartition(name=name, values=values), k + 4
            if kind == "FROM" and k + 5 < n and words[k + 4] == "TO":
                return RangePartition(
                    name=name, from_bound=_inner(tokens[k + 3].text), to_bound=_inner(tokens[k + 5].text)
                ), k + 6
            if kind == "WITH" and k + 3 < n:
                opts = {}
                for item in split_top_level(_inner(tokens[k + 3].text)):
                    parts = item.split()
                    if len(parts) == 2:
                        opts[parts[0].upper()] = int(parts[1])
                return HashPartition(name=name, modulus=opts.get("MODULUS", 1), remainder=opts.get("REMAINDER", 0)), k + 4
            break
        k += 1
    return None, k


def parse_ddl(sql: str) -> Table:
    """Parse a single ``CREATE TABLE`` statement into a Table.

    Raises InvalidCreateTable when the header is missing and UnparseableBody
    when no column list can be located. Fragments that match neither a column
    nor a table constraint are skipped and kept on ``Table.unparsed``.
    """
    text = strip_comments(sql).strip().rstrip(";").strip()
    m = _CREATE_TABLE.match(text)
    if not m:
        raise InvalidCreateTable(statement=sql)
    schema_name, name = split_qualified(m.group("name"))
    kind = (m.group("kind") or "").upper()
    table: Dict = {
        "name": name,
        "schema_name": schema_name,
        "temporary": kind in ("TEMP", "TEMPORARY"),
        "unlogged": kind == "UNLOGGED",
    }
    rest = text[m.end():]

    child = _PARTITION_OF.match(rest)
    if child:
        table["partition_of"] = split_qualified(child.group("parent"))[1]
        tokens = list(iter_tokens(rest[child.end():]))
        bound, end = _parse_partition_bound(name, tokens)
        if bound is None:
            raise UnparseableBody(statement=sql)
        table["partition_bound"] = bound
        if end < len(tokens):
            _parse_tail(rest[child.end():][tokens[end].start:], table)
        return Table(**table)

    stripped = rest.lstrip()
    if not stripped.startswith("("):
        raise UnparseableBody(statement=sql)
    offset = len(rest) - len(stripped)
    close = find_closing_paren(rest, offset)
    if close < 0:
        raise UnparseableBody(statement=sql)

    columns: List[Dict] = []
    constraints: List = []
    unparsed: List[str] = []
    for fragment in split_table_body(rest[offset + 1:close]):
        lead = re.match(r"\s*([A-Za-z_]+)", fragment)
        head = lead.group(1).upper() if lead else ""
        if _TABLE_CONSTRAINT_HEAD.match(fragment):
            constraint = parse_table_constraint(fragment)
            if constraint is None:
                unparsed.append(fragment)
            else:
                constraints.append(constraint)
            continue
        col = _parse_column(fragment) if head != "LIKE" else None
        if col is None:
            unparsed.append(fragment)
        else:
            columns.append(col)
    for fragment in unparsed:
        logger.warning("Skipping unrecognised fragment in table %s: %s", name, fragment)

    _parse_tail(rest[close + 1:], table)
    table["columns"], table["constraints"] = _resolve_keys(name, columns, constraints)
    table["unparsed"] = unparsed
    return Table(**table)


def _resolve_keys(table_name: str, columns: List[Dict], constraints: List) -> Tuple[List[Column], List]:
    """Derive the table PRIMARY KEY from inline declarations and force NOT NULL on key columns."""
    resolved = list(constraints)
    inline = [c for c in columns if c.get("primary_key")]
    for col in inline:
        resolved.insert(0, PrimaryKey(name=col.get("_pk_name"), columns=[col["name"]]))
    pk_columns = set()
    for constraint in resolved:
        if isinstance(constraint, PrimaryKey):
            pk_columns.update(constraint.columns)
    out = []
    for col in columns:
        col.pop("_pk_name", None)
        if col["name"] in pk_columns:
            if col["nullability"] == "nullable":
                raise SchemaInvariantError(
                    f"table {table_name}", f"column {col['name']} is declared NULL but is part of the PRIMARY KEY"
                )
            col["nullability"] = "not_null"
        out.append(Column(**col))
    return out, resolved


def _rebuild(model, **changes):
    data = {name: getattr(model, name) for name in type(model).model_fields}
    data.update(changes)
    return type(model)(**data)


def parse_index(statement: str) -> Tuple[str, Index]:
    """Parse ``CREATE INDEX``; returns the target table name and the Index."""
    m = _CREATE_INDEX.match(statement)
    if not m:
        raise ParseError("Invalid CREATE INDEX statement", hint="Expected CREATE INDEX name ON table (...)",
                         statement=statement)
    method = (m.group("method") or "btree").upper()
    if method not in _INDEX_METHODS:
        raise ParseError(f"Unsupported index access method {method.lower()}", statement=statement)
    rest = m.group("rest")
    close = find_closing_paren(rest, 0)
    if close < 0:
        raise ParseError("Could not parse index column list", statement=statement)
    inner = rest[1:close]
    columns: List[str] = []
    is_expression = False
    sort_order = nulls_ordering = opclass = None
    for element in split_top_level(inner):
        parts = tokenize(element)
        upper = [p.upper() for p in parts]
        i = 1
        if parts[0].startswith("(") or (len(parts) > 1 and parts[1].startswith("(")):
            is_expression = True
            i = 1 if parts[0].startswith("(") else 2
        else:
            columns.append(normalize_identifier(parts[0]))
        while i < len(parts):
            if upper[i] in ("ASC", "DESC"):
                sort_order = sort_order or upper[i]
            elif upper[i] == "NULLS" and i + 1 < len(parts):
                nulls_ordering = nulls_ordering or f"NULLS {upper[i + 1]}"
                i += 1
            elif upper[i] == "COLLATE":
                i += 1
            elif not parts[i].startswith("("):
                opclass = opclass or parts[i].lower()
            i += 1

    after = rest[close + 1:]
    include: List[str] = []
    storage: Dict[str, str] = {}
    where = None
    tokens = list(iter_tokens(after))
    words = _words(tokens)
    k = 0
    while k < len(tokens):
        if words[k] == "INCLUDE" and k + 1 < len(tokens):
            include = _column_list(tokens[k + 1].text)
            k += 2
        elif words[k] == "WITH" and k + 1 < len(tokens) and tokens[k + 1].text.startswith("("):
            storage = _storage_params(tokens[k + 1].text)
            k += 2
        elif words[k] == "WHERE" and k + 1 < len(tokens):
            where = after[tokens[k + 1].start:].strip()
            break
        else:
            k += 1

    name = split_qualified(m.group("name"))[1] if m.group("name") else None
    index = Index(
        name=name,
        columns=[] if is_expression else columns,
        expression=inner.strip() if is_expression else None,
        unique=bool(m.group("unique")),
        method=method,
        where=where,
        include=include,
        opclass=opclass,
        storage_params=storage,
        nulls_ordering=nulls_ordering,
        sort_order=sort_order,
        concurrently=bool(m.group("concurrently")),
    )
    return split_qualified(m.group("table"))[1], index


def _parse_domain(m) -> Domain:
    schema_name, name = split_qualified(m.group("name"))
    rest = m.group("rest")
    tokens = list(iter_tokens(rest))
    words = _words(tokens)
    end = _read_type(tokens, 0)
    data: Dict = {"name": name, "schema_name": schema_name,
                  "base_type": parse_type(rest[tokens[0].start:tokens[end - 1].end])}
    k = end
    while k < len(tokens):
        if words[k] == "NOT" and k + 1 < len(tokens) and words[k + 1] == "NULL":
            data["not_null"] = True
            k += 2
        elif words[k] == "DEFAULT" and k + 1 < len(tokens):
            start = k + 1
            k += 2
            while k < len(tokens) and words[k] not in _DEFAULT_STOP:
                k += 1
            data["default"] = normalize_default(rest[tokens[start].start:tokens[k - 1].end])
        elif words[k] == "CHECK" and k + 1 < len(tokens):
            data["check"] = _inner(tokens[k + 1].text)
            k += 2
        else:
            k += 1
    return Domain(**data)


def _parse_sequence(m) -> Sequence:
    schema_name, name = split_qualified(m.group("name"))
    rest = m.group("rest")
    data: Dict = {"name": name, "schema_name": schema_name}
    for field, pattern in (
        ("start", r"\bSTART\s+(?:WITH\s+)?(-?\d+)"),
        ("increment", r"\bINCREMENT\s+(?:BY\s+)?(-?\d+)"),
        ("min_value", r"\bMINVALUE\s+(-?\d+)"),
        ("max_value", r"\bMAXVALUE\s+(-?\d+)"),
        ("cache", r"\bCACHE\s+(\d+)"),
    ):
        found = re.search(pattern, rest, re.I)
        if found:
            data[field] = int(found.group(1))
    data["cycle"] = bool(re.search(r"\bCYCLE\b", rest, re.I)) and not re.search(r"\bNO\s+CYCLE\b", rest, re.I)
    owned = re.search(r"\bOWNED\s+BY\s+([\w.\"]+)", rest, re.I)
    if owned and owned.group(1).upper() != "NONE":
        data["owned_by"] = ".".join(normalize_identifier(p) for p in split_top_level(owned.group(1), "."))
    return Sequence(**data)


def _parse_routine(statement: str, m) -> Function:
    schema_name, name = split_qualified(m.group("name"))
    open_idx = m.end() - 1
    close = find_closing_paren(statement, open_idx)
    if close < 0:
        raise ParseError(f"Could not parse argument list of {name}", statement=statement)
    arguments = " ".join(statement[open_idx + 1:close].split())
    rest = statement[close + 1:]
    body = ""
    found = _DOLLAR_BODY.search(rest)
    if found:
        body = found.group("body")
        header = rest[:found.start()] + " " + rest[found.end():]
    else:
        quoted = _QUOTED_BODY.search(rest)
        if quoted:
            body = quoted.group("body").replace("''", "'")
            header = rest[:quoted.start()] + " " + rest[quoted.end():]
        else:
            atomic = re.search(r"\bBEGIN\s+ATOMIC\b", rest, re.I)
            header = rest[:atomic.start()] if atomic else rest
            body = rest[atomic.start():] if atomic else ""
    kind = m.group("kind").lower()
    returns = _RETURNS.search(header)
    language = _LANGUAGE.search(header)
    return Function(
        name=name,
        schema_name=schema_name,
        kind=kind,
        arguments=arguments,
        returns=" ".join(returns.group("returns").split()).lower() if returns and kind == "function" else None,
        language=language.group("language").lower() if language else None,
        body=body.strip(),
    )


def _parse_trigger(statement: str, m) -> Trigger:
    events: List[str] = []
    update_of: List[str] = []
    for event in re.split(r"\s+OR\s+", m.group("events").strip(), flags=re.I):
        parts = event.split(None, 2)
        kind = parts[0].upper()
        events.append(kind)
        if kind == "UPDATE" and len(parts) == 3 and parts[1].upper() == "OF":
            update_of = [normalize_identifier(c) for c in split_top_level(parts[2])]
    rest = m.group("rest")
    for_each = "ROW" if re.search(r"\bFOR\s+(?:EACH\s+)?ROW\b", rest, re.I) else "STATEMENT"
    old_table = re.search(r"\bOLD\s+TABLE\s+(?:AS\s+)?(\w+)", rest, re.I)
    new_table = re.search(r"\bNEW\s+TABLE\s+(?:AS\s+)?(\w+)", rest, re.I)
    when = None
    when_at = re.search(r"\bWHEN\s*\(", rest, re.I)
    if when_at:
        close = find_closing_paren(rest, when_at.end() - 1)
        if close > 0:
            when = rest[when_at.end():close].strip()
    return Trigger(
        name=normalize_identifier(m.group("name")),
        table=split_qualified(m.group("table"))[1],
        function=split_qualified(m.group("function"))[1],
        timing=" ".join(m.group("timing").upper().split()),
        events=events,
        update_of=update_of,
        for_each=for_each,
        when=when,
        referencing_old_table=old_table.group(1) if old_table else None,
        referencing_new_table=new_table.group(1) if new_table else None,
        constraint=bool(m.group("constraint")),
    )


def parse_schema(sql: str) -> Schema:
    """Parse a DDL script into a Schema.

    Statements are handled independently: a statement that fails to parse is
    logged, recorded on ``Schema.skipped_statements`` and the rest of the script
    is still read. Statements outside the supported set are ignored but stay in
    ``source_sql`` for pattern-based checks.
    """
    tables: Dict[str, Table] = {}
    children: List[Table] = []
    entities: Dict[str, List] = {
        "enums": [], "domains": [], "composite_types": [], "sequences": [], "views": [], "functions": [],
        "triggers": [],
    }
    extensions: List[str] = []
    skipped: List[str] = []
    do_blocks = 0

    for statement in split_statements(sql):
        try:
            if _CREATE_TABLE.match(statement):
                table = parse_ddl(statement)
                if table.partition_of:
                    children.append(table)
                else:
                    tables[table.name] = table
            elif re.match(r"^CREATE\s+(?:UNIQUE\s+)?INDEX\b", statement, re.I):
                table_name, index = parse_index(statement)
                if table_name not in tables:
                    raise ParseError(f"CREATE INDEX references unknown table {table_name}", statement=statement)
                target = tables[table_name]
                tables[table_name] = _rebuild(target, indexes=list(target.indexes) + [index])
            elif _CREATE_ENUM.match(statement):
                m = _CREATE_ENUM.match(statement)
                schema_name, name = split_qualified(m.group("name"))
                values = [_unquote(v) for v in split_top_level(m.group("values"))]
                entities["enums"].append(EnumType(name=name, schema_name=schema_name, values=values))
            elif _CREATE_COMPOSITE.match(statement):
                m = _CREATE_COMPOSITE.match(statement)
                schema_name, name = split_qualified(m.group("name"))
                attributes = []
                for item in split_top_level(m.group("body")):
                    attr_name, _, attr_type = item.strip().partition(" ")
                    attributes.append(CompositeAttribute(name=normalize_identifier(attr_name),
                                                         type=parse_type(attr_type)))
                entities["composite_types"].append(
                    CompositeType(name=name, schema_name=schema_name, attributes=attributes)
                )
            elif _CREATE_DOMAIN.match(statement):
                entities["domains"].append(_parse_domain(_CREATE_DOMAIN.match(statement)))
            elif _CREATE_SEQUENCE.match(statement):
                entities["sequences"].append(_parse_sequence(_CREATE_SEQUENCE.match(statement)))
            elif _CREATE_EXTENSION.match(statement):
                name = normalize_identifier(_CREATE_EXTENSION.match(statement).group("name"))
                if name not in extensions:
                    extensions.append(name)
            elif _CREATE_VIEW.match(statement):
                m = _CREATE_VIEW.match(statement)
                schema_name, name = split_qualified(m.group("name"))
                definition = re.sub(r"\s+WITH\s+(?:NO\s+)?DATA\s*$", "", m.group("definition").strip(), flags=re.I)
                entities["views"].append(View(name=name, schema_name=schema_name, definition=definition,
                                              materialized=bool(m.group("materialized"))))
            elif _CREATE_ROUTINE.match(statement):
                entities["functions"].append(_parse_routine(statement, _CREATE_ROUTINE.match(statement)))
            elif _DO_BLOCK.match(statement):
                m = _DO_BLOCK.match(statement)
                do_blocks += 1
                language = (m.group("lang1") or m.group("lang2") or "plpgsql").lower()
                entities["functions"].append(Function(name=f"do_block_{do_blocks}", kind="do_block",
                                                      language=language, body=m.group("body").strip()))
            elif _CREATE_TRIGGER.match(statement):
                entities["triggers"].append(_parse_trigger(statement, _CREATE_TRIGGER.match(statement)))
            elif _COMMENT_ON.match(statement):
                _apply_comment(tables, _COMMENT_ON.match(statement))
            elif _ALTER_ADD_CONSTRAINT.match(statement):
                _apply_constraint(tables, statement, _ALTER_ADD_CONSTRAINT.match(statement))
            else:
                logger.debug("Ignoring statement: %s", statement.split("\n", 1)[0])
        except (ParseError, SchemaInvariantError, ValidationError) as exc:
            logger.warning("Skipping statement: %s", exc)
            skipped.append(statement)

    for child in children:
        parent = tables.get(child.partition_of)
        if parent is None:
            tables[child.name] = child
            continue
        changes = {"partitions": list(parent.partitions) + [child.partition_bound]}
        if child.partitioning and parent.partitioning and parent.partitioning.subpartition is None:
            changes["partitioning"] = _rebuild(parent.partitioning, subpartition=child.partitioning)
        tables[parent.name] = _rebuild(parent, **changes)

    return Schema(
        tables=list(tables.values()),
        extensions=extensions,
        source_sql=sql,
        skipped_statements=skipped,
        **entities,
    )


def _apply_comment(tables: Dict[str, Table], m) -> None:
    value = None if m.group("value").upper() == "NULL" else _unquote(m.group("value"))
    parts = [normalize_identifier(p) for p in split_top_level(m.group("target"), ".")]
    if m.group("kind").upper() == "TABLE":
        table = tables.get(parts[-1])
        if table is not None:
            tables[table.name] = _rebuild(table, comment=value)
        return
    if len(parts) < 2 or parts[-2] not in tables:
        return
    table = tables[parts[-2]]
    columns = [c.model_copy(update={"comment": value}) if c.column_name == parts[-1] else c for c in table.columns]
    tables[table.name] = _rebuild(table, columns=columns)


def _apply_constraint(tables: Dict[str, Table], statement: str, m) -> None:
    table_name = split_qualified(m.group("table"))[1]
    table = tables.get(table_name)
    if table is None:
        raise ParseError(f"ALTER TABLE references unknown table {table_name}", statement=statement)
    constraint = parse_table_constraint(m.group("constraint"))
    if constraint is None:
        raise ParseError("Could not parse constraint in ALTER TABLE", statement=statement)
    columns = list(table.columns)
    if isinstance(constraint, PrimaryKey):
        columns = [
            c.model_copy(update={"nullability": "not_null"}) if c.column_name in constraint.columns else c
            for c in columns
        ]
    tables[table_name] = _rebuild(table, columns=columns, constraints=list(table.constraints) + [constraint])
