from __future__ import annotations

import re
from typing import Iterator, List, NamedTuple, Optional

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")


class Token(NamedTuple):
    text: str
    start: int
    end: int


def iter_tokens(sql: str) -> Iterator[Token]:
    """Yield depth-aware tokens of ``sql`` together with their source offsets.

    Whitespace and commas separate tokens at paren depth 0. An opening paren at
    depth 0 closes the pending bare token and starts a parenthesised token that
    runs to the matching close paren. Quoted text (single or double quotes, a
    doubled quote being an escape) never splits. Unbalanced input is flushed
    as-is instead of raising.
    """
    tokens: List[Token] = []
    depth = 0
    quote: Optional[str] = None
    start: Optional[int] = None

    def flush(end: int) -> None:
        nonlocal start
        if start is not None:
            raw = sql[start:end]
            text = raw.strip()
            if text:
                lead = len(raw) - len(raw.lstrip())
                tokens.append(Token(text, start + lead, start + lead + len(text)))
        start = None

    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if quote:
            if ch == quote:
                if i + 1 < n and sql[i + 1] == quote:
                    i += 2
                    continue
                quote = None
            i += 1
            continue
        if ch in ("'", '"'):
            if start is None:
                start = i
            quote = ch
        elif ch == "(":
            if depth == 0:
                flush(i)
                start = i
            depth += 1
        elif ch == ")":
            if depth > 0:
                depth -= 1
                if depth == 0:
                    flush(i + 1)
            elif start is None:
                start = i
        elif depth == 0 and (ch == "," or ch.isspace()):
            flush(i)
        elif start is None:
            start = i
        i += 1
    flush(n)
    yield from tokens


def tokenize(sql: str) -> List[str]:
    return [tok.text for tok in iter_tokens(sql)]


def split_table_body(body: str) -> List[str]:
    """Split a table body on commas at paren depth 0, keeping quoted text intact."""
    return split_top_level(body, ",")


def split_top_level(text: str, sep: str = ",") -> List[str]:
    parts: List[str] = []
    depth = 0
    quote: Optional[str] = None
    current: List[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            current.append(ch)
            if ch == quote:
                if i + 1 < n and text[i + 1] == quote:
                    current.append(text[i + 1])
                    i += 2
                    continue
                quote = None
            i += 1
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in "([":
            depth += 1
        elif ch in ")]" and depth > 0:
            depth -= 1
        elif ch == sep and depth == 0:
            part = "".join(current).strip()
            if part:
                parts.append(part)
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1
    part = "".join(current).strip()
    if part:
        parts.append(part)
    return parts


def find_closing_paren(text: str, open_index: int) -> int:
    """Return the index of the paren closing the one at ``open_index``, or -1."""
    depth = 0
    quote: Optional[str] = None
    i = open_index
    n = len(text)
    while i < n:
        ch = text[i]
        if quote:
            if ch == quote:
                if i + 1 < n and text[i + 1] == quote:
                    i += 2
                    continue
                quote = None
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def strip_comments(sql: str) -> str:
    """Remove ``--`` and (nested) ``/* */`` comments outside quotes and dollar-quoted bodies."""
    out: List[str] = []
    i = 0
    n = len(sql)
    while i < n:
        ch = sql[i]
        if ch in ("'", '"'):
            end = _skip_quoted(sql, i)
            out.append(sql[i:end])
            i = end
        elif ch == "$":
            m = _DOLLAR_TAG.match(sql, i)
            if m:
                close = sql.find(m.group(0), m.end())
                end = n if close < 0 else close + len(m.group(0))
                out.append(sql[i:end])
                i = end
            else:
                out.append(ch)
                i += 1
        elif sql.startswith("--", i):
            newline = sql.find("\n", i)
            i = n if newline < 0 else newline
        elif sql.startswith("/*", i):
            depth = 0
            while i < n:
                if sql.startswith("/*", i):
                    depth += 1
                    i += 2
                elif sql.startswith("*/", i):
                    depth -= 1
                    i += 2
                    if depth == 0:
                        break
                else:
                    i += 1
            out.append(" ")
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def split_statements(sql: str) -> List[str]:
    """Split a script on top-level semicolons.

    Comments are dropped first; quoted strings and dollar-quoted bodies are
    never split. Returned statements are stripped and carry no trailing ``;``.
    """
    text = strip_comments(sql)
    statements: List[str] = []
    start = 0
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch in ("'", '"'):
            i = _skip_quoted(text, i)
            continue
        if ch == "$":
            m = _DOLLAR_TAG.match(text, i)
            if m:
                close = text.find(m.group(0), m.end())
                i = n if close < 0 else close + len(m.group(0))
                continue
        if ch == ";":
            stmt = text[start:i].strip()
            if stmt:
                statements.append(stmt)
            start = i + 1
        i += 1
    tail = text[start:].strip()
    if tail:
        statements.append(tail)
    return statements


def _skip_quoted(text: str, i: int) -> int:
    quote = text[i]
    i += 1
    n = len(text)
    while i < n:
        if text[i] == quote:
            if i + 1 < n and text[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n
