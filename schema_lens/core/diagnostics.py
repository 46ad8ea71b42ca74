from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

_TAGS = {"error": "ERROR", "warning": "WARN", "info": "INFO"}


class Location(BaseModel):
    model_config = ConfigDict(frozen=True)

    table: Optional[str] = None
    column: Optional[str] = None
    index: Optional[str] = None
    constraint: Optional[str] = None
    function: Optional[str] = None
    trigger: Optional[str] = None
    sequence: Optional[str] = None
    view: Optional[str] = None

    def __str__(self) -> str:
        if self.table:
            for part in (self.column, self.index, self.trigger, self.constraint):
                if part:
                    return f"{self.table}.{part}"
            return self.table
        for part in (self.function, self.trigger, self.sequence, self.view, self.index, self.constraint):
            if part:
                return part
        return ""


class AutoFix(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    original_type: str
    replacement_type: str
    additional_changes: List[str] = Field(default_factory=list)


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    severity: Literal["error", "warning", "info"]
    category: str
    message: str
    location: Location = Field(default_factory=Location)
    alternative: Optional[str] = None
    docs_url: Optional[str] = None
    auto_fix: Optional[AutoFix] = None

    def format(self) -> str:
        lines = [f"[{_TAGS[self.severity]}] {self.code}: {self.message}"]
        where = str(self.location)
        if where:
            lines.append(f"  Location: {where}")
        if self.alternative:
            lines.append(f"  Alternative: {self.alternative}")
        if self.docs_url:
            lines.append(f"  Docs: {self.docs_url}")
        return "\n".join(lines)


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    dialect: str
    label: str
    all: List[Diagnostic] = Field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.all if d.severity == "error"]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.all if d.severity == "warning"]

    @property
    def infos(self) -> List[Diagnostic]:
        return [d for d in self.all if d.severity == "info"]

    @property
    def valid(self) -> bool:
        return not self.errors

    def codes(self) -> List[str]:
        return [d.code for d in self.all]

    def format(self) -> str:
        if not self.all:
            return f"Schema is fully {self.label}-compatible."
        sections = []
        for title, items in (("Error(s)", self.errors), ("Warning(s)", self.warnings), ("Info(s)", self.infos)):
            if items:
                body = "\n\n".join(d.format() for d in items)
                sections.append(f"=== {len(items)} {title} ===\n\n{body}")
        return "\n\n".join(sections)

    def summary(self) -> dict:
        return {
            "dialect": self.dialect,
            "valid": self.valid,
            "errors": len(self.errors),
            "warnings": len(self.warnings),
            "infos": len(self.infos),
            "diagnostics": [d.model_dump(mode="json", exclude_none=True) for d in self.all],
        }
