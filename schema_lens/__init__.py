from .core.catalog import load_catalog
from .core.emitter import EmitOptions, emit_builder_code
from .core.hasher import hash_schema
from .core.parser import parse_ddl, parse_schema
from .core.registry import AdapterRegistry, DialectRegistry
from .core.rewriter import rewrite_for_dsql, rewrite_statements_for_dsql
from .core.validator import validate

__all__ = [
    "__version__",
    "AdapterRegistry",
    "DialectRegistry",
    "EmitOptions",
    "emit_builder_code",
    "hash_schema",
    "load_catalog",
    "parse_ddl",
    "parse_schema",
    "rewrite_for_dsql",
    "rewrite_statements_for_dsql",
    "validate",
]

__version__ = "0.1.0"
