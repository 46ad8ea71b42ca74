from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from schema_lens.core.catalog import CATALOG_NAMES, load_catalog
from schema_lens.core.emitter import EmitOptions, emit_builder_code
from schema_lens.core.errors import SchemaLensError
from schema_lens.core.hasher import hash_schema
from schema_lens.core.ir import Schema
from schema_lens.core.parser import parse_schema
from schema_lens.core.registry import AdapterRegistry, DialectRegistry
from schema_lens.core.rewriter import format_changes, rewrite_statements_for_dsql
from schema_lens.core.validator import validate as validate_schema
from schema_lens.policy.config import DEFAULT_CONFIG_NAME, load_config
from schema_lens.policy.config_schema import ToolkitConfig

app = typer.Typer(add_completion=False, help="Schema Lens CLI")
console = Console()
err_console = Console(stderr=True)

SEVERITY_STYLES = {"error": "red", "warning": "yellow", "info": "cyan"}


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline details to stderr")):
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=err_console, show_path=False)],
        )


def _config(path: Optional[str]) -> ToolkitConfig:
    return load_config(path or os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME))


def _load_schema(source: str, module: Optional[str], adapter: str) -> Schema:
    """A .sql file, or with --module, models loaded through a schema adapter."""
    if module:
        factory = AdapterRegistry.get(adapter)
        if not factory:
            raise typer.BadParameter(f"Unknown adapter '{adapter}'. Available: {', '.join(AdapterRegistry.names())}")
        return factory().emit_schema(repo_path=source, module_hint=module)
    path = Path(source)
    if not path.is_file():
        raise typer.BadParameter(f"SQL file not found: {source}")
    return parse_schema(path.read_text())


def _fail(exc: SchemaLensError) -> None:
    err_console.print(f"[red]error:[/red] {exc}", highlight=False)
    raise typer.Exit(code=1)


@app.command("parse")
def parse(
    source: str = typer.Argument(..., help="SQL file, or a repo directory when --module is given"),
    module: Optional[str] = typer.Option(None, help="Dotted module holding the models"),
    adapter: str = typer.Option("sqlalchemy", help="Schema adapter used with --module"),
    as_json: bool = typer.Option(False, "--json", help="Print the schema as JSON"),
):
    """Parse a schema and print an overview of its tables."""
    try:
        schema = _load_schema(source, module, adapter)
    except SchemaLensError as exc:
        _fail(exc)
    if as_json:
        typer.echo(schema.model_dump_json(indent=2, exclude={"source_sql"}))
        return

    table = Table(title="Parsed Schema")
    table.add_column("Table")
    table.add_column("Columns", justify="right")
    table.add_column("Constraints", justify="right")
    table.add_column("Indexes", justify="right")
    for t in schema.tables:
        table.add_row(t.qualified_name, str(len(t.columns)), str(len(t.constraints)), str(len(t.indexes)))
    console.print(table)
    for statement in schema.skipped_statements:
        err_console.print(f"[yellow]skipped:[/yellow] {statement[:80]}", highlight=False)


@app.command("validate")
def validate(
    source: str = typer.Argument(..., help="SQL file, or a repo directory when --module is given"),
    dialect: Optional[str] = typer.Option(None, help=f"Target dialect. Supported: {', '.join(DialectRegistry.supported_dialects())}"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=f"Path to {DEFAULT_CONFIG_NAME}"),
    module: Optional[str] = typer.Option(None, help="Dotted module holding the models"),
    adapter: str = typer.Option("sqlalchemy", help="Schema adapter used with --module"),
    ignore: List[str] = typer.Option([], "--ignore", help="Rule code to suppress (repeatable)"),
    summary_json: Optional[str] = typer.Option(None, help="If set, write the result summary JSON to this file"),
    fail_on_error: bool = typer.Option(False, help="Exit with code 2 when the schema has errors"),
):
    """Validate a schema against a dialect and print its diagnostics."""
    try:
        cfg = _config(config)
        updates = {"ignore_codes": [*cfg.ignore_codes, *ignore]}
        if dialect:
            updates["dialect"] = dialect
        cfg = cfg.model_copy(update=updates)
        schema = _load_schema(source, module, adapter)
        result = validate_schema(schema, cfg.dialect, cfg)
    except SchemaLensError as exc:
        _fail(exc)

    typer.echo(result.format())
    _print_summary(result)

    out = summary_json or cfg.summary_json
    if out:
        Path(out).write_text(json.dumps(result.summary(), indent=2))

    if (fail_on_error or cfg.fail_on_error) and not result.valid:
        raise typer.Exit(code=2)


def _print_summary(result) -> None:
    table = Table(title=f"{result.label} Validation Summary")
    table.add_column("Severity")
    table.add_column("Count", justify="right")
    table.add_column("Codes")
    for severity, items in (("error", result.errors), ("warning", result.warnings), ("info", result.infos)):
        codes = sorted({d.code for d in items})
        style = SEVERITY_STYLES[severity]
        table.add_row(f"[{style}]{severity}[/{style}]", str(len(items)), ", ".join(codes))
    console.print(table)


@app.command("rewrite")
def rewrite(
    source: str = typer.Argument(..., help="SQL file to rewrite for Aurora DSQL"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Write the rewritten SQL here instead of stdout"),
    show_changes: bool = typer.Option(True, help="Print the list of applied transformations to stderr"),
):
    """Rewrite PostgreSQL DDL into DSQL-compatible DDL."""
    path = Path(source)
    if not path.is_file():
        raise typer.BadParameter(f"SQL file not found: {source}")
    result = rewrite_statements_for_dsql(path.read_text())
    if out:
        Path(out).write_text(result.sql + "\n")
    else:
        typer.echo(result.sql)
    if show_changes:
        err_console.print(format_changes(result.changes), markup=False, highlight=False)


@app.command("emit")
def emit(
    source: str = typer.Argument(..., help="SQL file, or a repo directory when --module is given"),
    import_path: Optional[str] = typer.Option(None, help="Module the builder functions are imported from"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=f"Path to {DEFAULT_CONFIG_NAME}"),
    camel_case: Optional[bool] = typer.Option(None, "--camel-case/--no-camel-case", help="camelCase column keys"),
    include_types: Optional[bool] = typer.Option(None, "--include-types/--no-include-types", help="Add row type aliases"),
    module: Optional[str] = typer.Option(None, help="Dotted module holding the models"),
    adapter: str = typer.Option("sqlalchemy", help="Schema adapter used with --module"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Write the code here instead of stdout"),
):
    """Emit builder code that reconstructs the schema."""
    try:
        cfg = _config(config)
        schema = _load_schema(source, module, adapter)
    except SchemaLensError as exc:
        _fail(exc)
    import_path = import_path or cfg.import_path
    if not import_path:
        raise typer.BadParameter("--import-path is required (or set import_path in the config)")
    options = EmitOptions(
        import_path=import_path,
        camel_case=cfg.camel_case if camel_case is None else camel_case,
        include_types=cfg.include_types if include_types is None else include_types,
    )
    code = emit_builder_code(schema, options)
    if out:
        Path(out).write_text(code)
    else:
        typer.echo(code, nl=False)


@app.command("hash")
def hash_(
    source: str = typer.Argument(..., help="SQL file, or a repo directory when --module is given"),
    algorithm: Optional[str] = typer.Option(None, help="hashlib algorithm, at least 160 bits"),
    config: Optional[str] = typer.Option(None, "--config", "-c", help=f"Path to {DEFAULT_CONFIG_NAME}"),
    module: Optional[str] = typer.Option(None, help="Dotted module holding the models"),
    adapter: str = typer.Option("sqlalchemy", help="Schema adapter used with --module"),
):
    """Print the content hash of a schema."""
    try:
        cfg = _config(config)
        schema = _load_schema(source, module, adapter)
    except SchemaLensError as exc:
        _fail(exc)
    try:
        typer.echo(hash_schema(schema, algorithm or cfg.hash_algorithm))
    except ValueError as exc:
        raise typer.BadParameter(str(exc))


@app.command("rules")
def rules(
    dialect: Optional[str] = typer.Option(None, help="Only list the rules a dialect checks"),
    severity: Optional[str] = typer.Option(None, help="Filter by severity (error, warning, info)"),
):
    """List the rule catalog."""
    names = CATALOG_NAMES
    if dialect:
        try:
            names = DialectRegistry.get(dialect).catalog_names
        except SchemaLensError as exc:
            _fail(exc)

    table = Table(title="Rule Catalog")
    table.add_column("Code")
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Message")
    count = 0
    for name in names:
        for rule in load_catalog(name).rules.values():
            if severity and rule.severity != severity:
                continue
            style = SEVERITY_STYLES[rule.severity]
            table.add_row(rule.code, f"[{style}]{rule.severity}[/{style}]", rule.category, rule.message)
            count += 1
    console.print(table)
    console.print(f"{count} rule(s)")


if __name__ == "__main__":
    app()
