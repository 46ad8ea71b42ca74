from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from schema_lens.core.ir import Schema


class SchemaAdapter(ABC):
    @abstractmethod
    def emit_schema(self, repo_path: str, module_hint: Optional[str] = None) -> Schema:  # pragma: no cover - interface
        """Return a Schema by loading models inside repo_path."""
