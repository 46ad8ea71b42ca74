from __future__ import annotations

from typing import Optional


class SchemaLensError(Exception):
    """Base class for every error raised by schema_lens."""


class ParseError(SchemaLensError):
    def __init__(self, message: str, hint: Optional[str] = None, statement: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.statement = statement

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} ({self.hint})"
        return self.message


class InvalidCreateTable(ParseError):
    def __init__(self, statement: Optional[str] = None):
        super().__init__(
            "Invalid CREATE TABLE statement",
            hint="SQL must start with CREATE TABLE",
            statement=statement,
        )


class UnparseableBody(ParseError):
    def __init__(self, statement: Optional[str] = None):
        super().__init__(
            "Could not parse table body",
            hint="Ensure table definition includes column list in parentheses",
            statement=statement,
        )


class SchemaInvariantError(SchemaLensError):
    """An ASR entity violates a structural invariant."""

    def __init__(self, entity: str, message: str):
        super().__init__(f"{entity}: {message}")
        self.entity = entity


class CatalogError(SchemaLensError):
    pass


class UnknownDialectError(SchemaLensError, KeyError):
    def __init__(self, dialect: str, supported):
        super().__init__(f"Unsupported dialect '{dialect}'. Supported: {', '.join(supported)}")
        self.dialect = dialect

    def __str__(self) -> str:
        return str(self.args[0])


class ConfigError(SchemaLensError):
    pass
