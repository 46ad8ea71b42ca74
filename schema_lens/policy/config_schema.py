from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ToolkitConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    dialect: str = Field(default="postgres")

    # emitter
    import_path: Optional[str] = None
    camel_case: bool = Field(default=True)
    include_types: bool = Field(default=False)

    hash_algorithm: Literal["sha1", "sha224", "sha256", "sha384", "sha512", "blake2b", "blake2s"] = "sha256"
    macaddr_replacement: str = Field(default="varchar(17)")

    ignore_codes: List[str] = Field(default_factory=list)
    fail_on_error: bool = Field(default=False)
    summary_json: Optional[str] = None
