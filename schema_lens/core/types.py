from __future__ import annotations

import re
from types import MappingProxyType
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from schema_lens.core.errors import SchemaInvariantError

# Parameterless spellings folded onto their canonical base name.
TYPE_ALIASES = MappingProxyType(
    {
        # integers
        "INT": "INTEGER",
        "INT4": "INTEGER",
        "INTEGER": "INTEGER",
        "INT2": "SMALLINT",
        "SMALLINT": "SMALLINT",
        "INT8": "BIGINT",
        "BIGINT": "BIGINT",
        "SERIAL": "SERIAL",
        "SERIAL4": "SERIAL",
        "SMALLSERIAL": "SMALLSERIAL",
        "SERIAL2": "SMALLSERIAL",
        "BIGSERIAL": "BIGSERIAL",
        "SERIAL8": "BIGSERIAL",
        # floating point / money
        "REAL": "REAL",
        "FLOAT4": "REAL",
        "DOUBLE PRECISION": "DOUBLE PRECISION",
        "FLOAT8": "DOUBLE PRECISION",
        "MONEY": "MONEY",
        # text / binary / boolean
        "TEXT": "TEXT",
        "BYTEA": "BYTEA",
        "BOOLEAN": "BOOLEAN",
        "BOOL": "BOOLEAN",
        # temporal
        "DATE": "DATE",
        # identifiers and documents
        "UUID": "UUID",
        "JSON": "JSON",
        "JSONB": "JSONB",
        "XML": "XML",
        # geometric
        "POINT": "POINT",
        "LINE": "LINE",
        "LSEG": "LSEG",
        "BOX": "BOX",
        "PATH": "PATH",
        "POLYGON": "POLYGON",
        "CIRCLE": "CIRCLE",
        # network
        "CIDR": "CIDR",
        "INET": "INET",
        "MACADDR": "MACADDR",
        "MACADDR8": "MACADDR8",
        # text search
        "TSVECTOR": "TSVECTOR",
        "TSQUERY": "TSQUERY",
        # ranges
        "INT4RANGE": "INT4RANGE",
        "INT8RANGE": "INT8RANGE",
        "NUMRANGE": "NUMRANGE",
        "TSRANGE": "TSRANGE",
        "TSTZRANGE": "TSTZRANGE",
        "DATERANGE": "DATERANGE",
        "INT4MULTIRANGE": "INT4MULTIRANGE",
        "INT8MULTIRANGE": "INT8MULTIRANGE",
        "NUMMULTIRANGE": "NUMMULTIRANGE",
        "TSMULTIRANGE": "TSMULTIRANGE",
        "TSTZMULTIRANGE": "TSTZMULTIRANGE",
        "DATEMULTIRANGE": "DATEMULTIRANGE",
        # object identifiers and internals
        "OID": "OID",
        "REGCLASS": "REGCLASS",
        "REGPROC": "REGPROC",
        "REGTYPE": "REGTYPE",
        "PG_LSN": "PG_LSN",
        "PG_SNAPSHOT": "PG_SNAPSHOT",
    }
)

# Builder function names that differ from the lowercased base.
BUILDER_NAMES = MappingProxyType(
    {
        "DOUBLE PRECISION": "doublePrecision",
        "NUMERIC": "decimal",
        "CHARACTER VARYING": "varchar",
        "CHARACTER": "char",
        "BIT VARYING": "bitVarying",
        "PG_LSN": "pgLsn",
        "PG_SNAPSHOT": "pgSnapshot",
    }
)

# Lookup keys used by dialect type maps when they differ from the lowercased base.
_TYPE_KEYS = MappingProxyType(
    {
        "CHARACTER VARYING": "varchar",
        "CHARACTER": "char",
        "BIT VARYING": "varbit",
    }
)

_LENGTH_FAMILIES = ("CHARACTER VARYING", "CHARACTER", "BIT", "BIT VARYING")
_INTERVAL_FIELD = r"(?:YEAR|MONTH|DAY|HOUR|MINUTE|SECOND)"

_ARRAY_SUFFIX = re.compile(r"^(.*?)((?:\s*\[\s*\d*\s*\])+)$", re.S)
_ARRAY_KEYWORD = re.compile(r"^(.*?)\s+ARRAY(?:\s*\[\s*\d*\s*\])?$", re.I | re.S)
_VARCHAR = re.compile(r"^(?:VARCHAR|CHARACTER\s+VARYING)(?:\s*\(\s*(\d+)\s*\))?$", re.I)
_CHAR = re.compile(r"^(?:CHAR|CHARACTER|BPCHAR)(?:\s*\(\s*(\d+)\s*\))?$", re.I)
_VARBIT = re.compile(r"^(?:BIT\s+VARYING|VARBIT)(?:\s*\(\s*(\d+)\s*\))?$", re.I)
_BIT = re.compile(r"^BIT(?:\s*\(\s*(\d+)\s*\))?$", re.I)
_NUMERIC = re.compile(r"^(?:NUMERIC|DECIMAL)(?:\s*\(\s*(\d+)\s*(?:,\s*(-?\d+)\s*)?\))?$", re.I)
_FLOAT = re.compile(r"^FLOAT(?:\s*\(\s*(\d+)\s*\))?$", re.I)
_TIMESTAMP = re.compile(
    r"^(TIMESTAMPTZ|TIMESTAMP)(?:\s*\(\s*(\d+)\s*\))?(?:\s+(WITH|WITHOUT)\s+TIME\s+ZONE)?$", re.I
)
_TIME = re.compile(r"^(TIMETZ|TIME)(?:\s*\(\s*(\d+)\s*\))?(?:\s+(WITH|WITHOUT)\s+TIME\s+ZONE)?$", re.I)
_INTERVAL = re.compile(
    rf"^INTERVAL(?:\s+({_INTERVAL_FIELD}(?:\s+TO\s+{_INTERVAL_FIELD})?))?(?:\s*\(\s*(\d+)\s*\))?$", re.I
)


class TypeParams(BaseModel):
    model_config = ConfigDict(frozen=True)

    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    timezone: Optional[bool] = None
    fields: Optional[str] = None


class TypeDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    base: str
    params: TypeParams = Field(default_factory=TypeParams)
    array: bool = False
    dimensions: int = 0
    custom: bool = False

    @model_validator(mode="after")
    def _check_dimensions(self) -> "TypeDescriptor":
        if self.array != (self.dimensions >= 1):
            raise SchemaInvariantError(
                f"type {self.base}", f"array={self.array} requires dimensions >= 1 iff array (got {self.dimensions})"
            )
        return self

    @property
    def key(self) -> str:
        """Lowercase lookup key used by dialect type maps (``timestamptz``, ``varchar``, ``geometry``...)."""
        if self.custom:
            return re.sub(r"\s*\(.*$", "", self.base).strip().lower()
        if self.base in ("TIMESTAMP", "TIME") and self.params.timezone:
            return self.base.lower() + "tz"
        return _TYPE_KEYS.get(self.base, self.base.lower())

    @property
    def builder(self) -> str:
        if self.custom:
            return f"customType('{self.base}')"
        p = self.params
        if self.base in _LENGTH_FAMILIES:
            return f"{builder_name(self)}({'' if p.length is None else p.length})"
        if self.base == "NUMERIC":
            if p.precision is None:
                return "decimal()"
            if p.scale is None:
                return f"decimal({p.precision})"
            return f"decimal({p.precision}, {p.scale})"
        if self.base in ("TIMESTAMP", "TIME"):
            return f"{builder_name(self)}({'' if p.precision is None else p.precision})"
        if self.base == "INTERVAL":
            args = []
            if p.fields:
                args.append(f"'{p.fields}'")
            if p.precision is not None:
                args.append(str(p.precision))
            return f"interval({', '.join(args)})"
        return f"{builder_name(self)}()"

    def to_sql(self) -> str:
        p = self.params
        sql = self.base
        if self.base in _LENGTH_FAMILIES and p.length is not None:
            sql = f"{self.base}({p.length})"
        elif self.base == "NUMERIC" and p.precision is not None:
            sql = f"NUMERIC({p.precision})" if p.scale is None else f"NUMERIC({p.precision},{p.scale})"
        elif self.base in ("TIMESTAMP", "TIME"):
            if p.precision is not None:
                sql = f"{self.base}({p.precision})"
            if p.timezone:
                sql += " WITH TIME ZONE"
        elif self.base == "INTERVAL":
            if p.fields:
                sql += f" {p.fields}"
            if p.precision is not None:
                sql += f"({p.precision})"
        return sql + "[]" * self.dimensions


def builder_name(descriptor: TypeDescriptor) -> str:
    if descriptor.custom:
        return "customType"
    if descriptor.base in ("TIMESTAMP", "TIME") and descriptor.params.timezone:
        return descriptor.base.lower() + "tz"
    return BUILDER_NAMES.get(descriptor.base, descriptor.base.lower())


def parse_type(text: str) -> TypeDescriptor:
    """Parse a SQL type spelling into its canonical descriptor.

    Never fails: spellings outside the known families become custom types
    carrying the lowercased, whitespace-normalised text.
    """
    raw = " ".join(text.split())
    dimensions = 0
    m = _ARRAY_SUFFIX.match(raw)
    if m:
        raw = m.group(1).strip()
        dimensions = m.group(2).count("[")
    else:
        m = _ARRAY_KEYWORD.match(raw)
        if m:
            raw = m.group(1).strip()
            dimensions = 1
    array_kwargs = {"array": dimensions > 0, "dimensions": dimensions}
    upper = raw.upper()

    if upper in TYPE_ALIASES:
        return TypeDescriptor(base=TYPE_ALIASES[upper], **array_kwargs)

    m = _VARCHAR.match(raw)
    if m:
        return TypeDescriptor(base="CHARACTER VARYING", params=TypeParams(length=_int(m.group(1))), **array_kwargs)
    m = _CHAR.match(raw)
    if m:
        return TypeDescriptor(base="CHARACTER", params=TypeParams(length=_int(m.group(1))), **array_kwargs)
    m = _VARBIT.match(raw)
    if m:
        return TypeDescriptor(base="BIT VARYING", params=TypeParams(length=_int(m.group(1))), **array_kwargs)
    m = _BIT.match(raw)
    if m:
        return TypeDescriptor(base="BIT", params=TypeParams(length=_int(m.group(1))), **array_kwargs)
    m = _NUMERIC.match(raw)
    if m:
        params = TypeParams(precision=_int(m.group(1)), scale=_int(m.group(2)))
        return TypeDescriptor(base="NUMERIC", params=params, **array_kwargs)
    m = _FLOAT.match(raw)
    if m:
        # FLOAT(1..24) is single precision, anything else double
        p = _int(m.group(1))
        base = "REAL" if p is not None and p <= 24 else "DOUBLE PRECISION"
        return TypeDescriptor(base=base, **array_kwargs)
    for pattern, base in ((_TIMESTAMP, "TIMESTAMP"), (_TIME, "TIME")):
        m = pattern.match(raw)
        if m:
            tz = m.group(1).upper().endswith("TZ") or (m.group(3) or "").upper() == "WITH"
            params = TypeParams(precision=_int(m.group(2)), timezone=True if tz else None)
            return TypeDescriptor(base=base, params=params, **array_kwargs)
    m = _INTERVAL.match(raw)
    if m:
        fields = " ".join(m.group(1).upper().split()) if m.group(1) else None
        params = TypeParams(fields=fields, precision=_int(m.group(2)))
        return TypeDescriptor(base="INTERVAL", params=params, **array_kwargs)

    return TypeDescriptor(base=raw.lower(), custom=True, **array_kwargs)


def _int(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None else None
