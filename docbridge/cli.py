# Copyright (c) 2025 Kenneth Stott
#
# This source code is licensed under the Business Source License 1.1
# found in the LICENSE file in the root directory of this source tree.
#
# NOTICE: Use of this software for training artificial intelligence or
# machine learning models is strictly prohibited without explicit written
# permission from the copyright holder.

"""Command-line interface for DocBridge."""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from docbridge.catalog.nosql.couchdb import CouchDBClient
from docbridge.catalog.nosql.schema import Field, infer_schema
from docbridge.core.config import StoreConfig
from docbridge.core.errors import DocBridgeError, PartialWriteError
from docbridge.relation import Relation

console = Console()


def _load_config(config_path: str, overrides: dict) -> StoreConfig:
    config = StoreConfig.from_yaml(config_path)
    overrides = {k: v for k, v in overrides.items() if v is not None}
    if overrides:
        config = StoreConfig.from_options({**config.model_dump(), **overrides})
    return config


def _field_rows(fields: tuple[Field, ...], prefix: str = ""):
    for f in fields:
        yield f"{prefix}{f.name}", f.data_type.simple_string(), f.nullable
        if f.data_type.name == "struct":
            yield from _field_rows(f.data_type.fields, prefix=f"{prefix}{f.name}.")


@click.group()
@click.version_option(version="0.1.0", prog_name="docbridge")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """DocBridge - document stores as partitioned tables.

    \b
    Quick start:
        docbridge schema --config store.yaml
        docbridge scan --config store.yaml --columns name,total
        docbridge load --config store.yaml rows.jsonl
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command()
@click.option("--config", "-c", "config_path", required=True, type=click.Path(exists=True),
              help="Store config YAML")
@click.option("--sample-size", type=int, default=None,
              help="Documents to sample (-1 for all)")
@click.option("--json", "as_json", is_flag=True, help="Print the schema as JSON")
def schema(config_path: str, sample_size: Optional[int], as_json: bool):
    """Infer and print the schema of a database."""
    try:
        config = _load_config(config_path, {"schema_sample_size": sample_size})
        with CouchDBClient(config) as client:
            relation = Relation.create(config, client=client)
    except DocBridgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(relation.schema.to_dict(), indent=2))
        return

    table = Table(title=f"{config.database} ({len(relation.schema)} fields)")
    table.add_column("Field", style="cyan")
    table.add_column("Type")
    table.add_column("Nullable")
    for name, type_name, nullable in _field_rows(relation.schema.fields):
        table.add_row(name, type_name, "yes" if nullable else "no")
    console.print(table)


@cli.command()
@click.option("--config", "-c", "config_path", required=True, type=click.Path(exists=True),
              help="Store config YAML")
@click.option("--columns", default=None, help="Comma-separated columns to print")
@click.option("--limit", type=int, default=None, help="Maximum documents to print")
def scan(config_path: str, columns: Optional[str], limit: Optional[int]):
    """Print documents as JSON lines."""
    column_list = [c.strip() for c in columns.split(",")] if columns else None
    try:
        config = _load_config(config_path, {})
        with CouchDBClient(config) as client:
            relation = Relation.create(config, client=client)
            for i, doc in enumerate(relation.scan(column_list)):
                if limit is not None and i >= limit:
                    break
                click.echo(json.dumps(doc, default=str))
    except DocBridgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


@cli.command()
@click.option("--config", "-c", "config_path", required=True, type=click.Path(exists=True),
              help="Store config YAML")
@click.option("--create/--no-create", default=None, help="Create the database if missing")
@click.argument("rows_file", type=click.Path(exists=True))
def load(config_path: str, create: Optional[bool], rows_file: str):
    """Write a JSON lines file to the store."""
    rows = [
        json.loads(line)
        for line in Path(rows_file).read_text().splitlines()
        if line.strip()
    ]
    try:
        config = _load_config(config_path, {"create_db_on_save": create})
        with CouchDBClient(config) as client:
            relation = Relation(config, infer_schema(rows), client)
            report = relation.insert(rows)
    except PartialWriteError as e:
        console.print(f"[yellow]Partial write:[/yellow] {e}")
        for p in e.failed:
            console.print(f"  partition {p.partition}: {p.cause}")
        sys.exit(2)
    except DocBridgeError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(
        f"[green]Saved {report.saved} documents[/green] to {config.database} "
        f"in {len(report.partitions)} partitions"
    )


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
