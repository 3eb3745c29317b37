"""dbforge CLI entry point."""

import json
from pathlib import Path

import click

from dbforge.errors import DbForgeError
from dbforge.metadata.loader import SchemaLoader
from dbforge.metadata.validator import validate_path
from dbforge.query.base import Backend
from dbforge.query.compiler import compile_query
from dbforge.query.filter import QueryFilter
from dbforge.query.mongo import DocumentQuery


@click.group()
def cli():
    """dbforge - schema-driven persistence CLI."""
    pass


@cli.group()
def schema():
    """Entity schema commands."""
    pass


@schema.command("validate")
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Treat warnings as errors.",
)
def validate(path: Path, strict: bool):
    """Validate entity YAML files against the bundled JSON Schemas."""
    issues = validate_path(path, strict=strict)
    errors = [i for i in issues if i.severity == "error"]
    warnings = [i for i in issues if i.severity == "warning"]

    for issue in issues:
        colour = "red" if issue.severity == "error" else "yellow"
        click.echo(click.style(str(issue), fg=colour))

    if errors:
        click.echo(click.style(f"\n{len(errors)} schema error(s) found", fg="red", bold=True))
        raise SystemExit(1)
    if warnings:
        click.echo(click.style(f"{len(warnings)} warning(s) found.", fg="yellow"))

    # Semantic checks the JSON Schema cannot express (behavior names, options)
    loader = SchemaLoader(path)
    try:
        loader.load_all()
    except DbForgeError as e:
        click.echo(click.style(f"\nSemantic validation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)

    click.echo(f"\nLoaded {len(loader.schemas)} entities:")
    for name in loader.list_schemas():
        entity = loader.get_schema(name)
        click.echo(f"  {name} ({len(entity.fields)} fields, collection: {entity.collection})")
    click.echo(click.style("\nAll schemas are valid.", fg="green", bold=True))


@cli.group()
def query():
    """Query compiler commands."""
    pass


@query.command("compile")
@click.argument("schema_path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--backend",
    type=click.Choice([b.value for b in Backend]),
    default=Backend.SQLITE.value,
    show_default=True,
)
@click.option("--filter", "filter_json", default="{}", help="Query parameters as JSON.")
@click.option("--entity", default=None, help="Entity name when the path holds several schemas.")
@click.option("--count", "counting", is_flag=True, default=False, help="Compile a count query.")
def compile_cmd(schema_path: Path, backend: str, filter_json: str, entity: str | None, counting: bool):
    """Print the native query a filter compiles to (dry-run)."""
    loader = SchemaLoader(schema_path)
    try:
        loader.load_all()
        names = loader.list_schemas()
        if entity is None:
            if len(names) != 1:
                raise click.UsageError(f"--entity is required; found {', '.join(names) or 'none'}")
            entity = names[0]
        target = loader.get_schema(entity)
        if target is None:
            raise click.UsageError(f"Unknown entity '{entity}'")
        params = json.loads(filter_json)
        native = compile_query(QueryFilter.from_params(params), target, backend, counting=counting)
    except json.JSONDecodeError as e:
        click.echo(click.style(f"--filter is not valid JSON: {e}", fg="red"), err=True)
        raise SystemExit(1)
    except DbForgeError as e:
        click.echo(click.style(f"Compilation failed: {e}", fg="red"), err=True)
        raise SystemExit(1)

    if isinstance(native, DocumentQuery):
        payload = {
            "filter": native.filter,
            "sort": native.sort,
            "skip": native.skip,
            "limit": native.limit,
        }
        click.echo(json.dumps(payload, indent=2, default=str))
    elif counting:
        click.echo(native.count_sql())
    else:
        click.echo(native.to_sql())
