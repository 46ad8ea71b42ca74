from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Union

from schema_lens.core.ir import Schema, Table

MIN_DIGEST_BITS = 160

# presentation and bookkeeping fields that never change the structure
_STRIPPED = frozenset({"tracking_id", "comment", "docs_url", "source_sql", "skipped_statements", "unparsed"})
# columns keep declaration order, it is visible to SELECT * and COPY
_SORTED_LISTS = (
    "tables",
    "enums",
    "domains",
    "composite_types",
    "sequences",
    "views",
    "functions",
    "triggers",
    "constraints",
    "indexes",
)


def _strip(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip(v) for k, v in value.items() if k not in _STRIPPED}
    if isinstance(value, list):
        return [_strip(v) for v in value]
    return value


def _sort_key(item: Any) -> str:
    if isinstance(item, dict):
        name = item.get("name")
        if name is not None:
            return f"{item.get('schema_name') or ''}.{name}"
    return json.dumps(item, sort_keys=True, separators=(",", ":"))


def _sort(value: Any) -> Any:
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            item = _sort(item)
            if key in _SORTED_LISTS and isinstance(item, list):
                item = sorted(item, key=_sort_key)
            out[key] = item
        return out
    if isinstance(value, list):
        return [_sort(v) for v in value]
    return value


def canonicalize(model: Union[Schema, Table]) -> Dict[str, Any]:
    """Canonical dict form of a Schema or Table.

    Entity lists are sorted by name (constraints without a name by their
    content) while columns stay in declaration order. Comments, tracking
    ids and parse bookkeeping are removed.
    """
    return _sort(_strip(model.model_dump(mode="json")))


def canonical_json(model: Union[Schema, Table]) -> str:
    return json.dumps(canonicalize(model), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_schema(schema: Union[Schema, Table], algorithm: str = "sha256") -> str:
    try:
        digest = hashlib.new(algorithm)
    except ValueError as exc:
        raise ValueError(f"unknown hash algorithm: {algorithm}") from exc
    if digest.digest_size * 8 < MIN_DIGEST_BITS:
        raise ValueError(f"{algorithm} produces a {digest.digest_size * 8}-bit digest, at least {MIN_DIGEST_BITS} required")
    digest.update(canonical_json(schema).encode("utf-8"))
    return digest.hexdigest()
