from __future__ import annotations

from typing import Callable, Dict, Optional, Tuple, Type

from schema_lens.core.errors import UnknownDialectError

# Adapters build a Schema from a repo path + module hint
AdapterFactory = Callable[[], object]


class AdapterRegistry:
    _registry: Dict[str, AdapterFactory] = {}

    @classmethod
    def register(cls, name: str, factory: AdapterFactory) -> None:
        cls._registry[name] = factory

    @classmethod
    def get(cls, name: str) -> Optional[AdapterFactory]:
        return cls._registry.get(name)

    @classmethod
    def names(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._registry.keys()))


class DialectRegistry:
    _handlers: Dict[str, Type] = {}
    _aliases: Dict[str, str] = {}

    @classmethod
    def register(cls, name: str, handler: Type, aliases: Tuple[str, ...] = ()) -> None:
        cls._handlers[name] = handler
        for alias in aliases:
            cls._aliases[alias] = name

    @classmethod
    def resolve(cls, dialect: str) -> str:
        key = (dialect or "").strip().lower()
        key = cls._aliases.get(key, key)
        if key not in cls._handlers:
            raise UnknownDialectError(dialect, cls.supported_dialects())
        return key

    @classmethod
    def get(cls, dialect: str) -> Type:
        return cls._handlers[cls.resolve(dialect)]

    @classmethod
    def supported_dialects(cls) -> Tuple[str, ...]:
        return tuple(sorted(cls._handlers.keys()))


# Bootstrap built-ins so existing behavior works out-of-the-box
def _bootstrap_defaults() -> None:
    from schema_lens.adapters.sqlalchemy.adapter import SQLAlchemyAdapter

    AdapterRegistry.register("sqlalchemy", SQLAlchemyAdapter)

    from schema_lens.dialects.cockroachdb import CockroachHandler
    from schema_lens.dialects.dsql import DsqlHandler
    from schema_lens.dialects.nile import NileHandler
    from schema_lens.dialects.postgres import PostgresHandler

    DialectRegistry.register("postgres", PostgresHandler, aliases=("postgresql", "pg"))
    DialectRegistry.register("dsql", DsqlHandler, aliases=("aurora-dsql",))
    DialectRegistry.register("cockroachdb", CockroachHandler, aliases=("crdb",))
    DialectRegistry.register("nile", NileHandler)


_bootstrap_defaults()
