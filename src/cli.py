"""
CLI tool for the convergence engine.
Provides a kubectl-like interface for reconciling resource manifests.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List

import click
import yaml
from pydantic import BaseModel
from tabulate import tabulate

from config import Config
from controller import Controller, EntryResult, ManifestEntry, build_reconcilers, load_manifest
from differ import diff
from reconciler import IdentifierLocks
from transport import RemoteClient

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _configure_logging(level: str) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)


def _load_entries(filename: str) -> List[ManifestEntry]:
    try:
        return load_manifest(filename)
    except (ValueError, yaml.YAMLError) as e:
        raise click.ClickException(f"Invalid manifest {filename}: {e}")


def _load_document(filename: str) -> Any:
    try:
        with open(filename, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise click.ClickException(f"Invalid document {filename}: {e}")


def _get_config(ctx: click.Context) -> Config:
    try:
        return Config.from_env(base_url=ctx.obj["base_url"])
    except ValueError as e:
        raise click.UsageError(f"{e} (or pass --base-url)")


async def _reconcile(
    config: Config, action: str, entries: List[ManifestEntry], **kwargs
) -> List[EntryResult]:
    async with RemoteClient(
        config.api.base_url, timeout=config.api.timeout, headers=config.api.headers
    ) as client:
        reconcilers = build_reconcilers(client, config, locks=IdentifierLocks())
        controller = Controller(reconcilers, config.controller)
        return await getattr(controller, action)(entries, **kwargs)


def _run(ctx: click.Context, action: str, filename: str, **kwargs) -> List[EntryResult]:
    entries = _load_entries(filename)
    if not entries:
        click.echo(f"No resources in {filename}")
        return []
    return asyncio.run(_reconcile(_get_config(ctx), action, entries, **kwargs))


def _message(item: EntryResult) -> str:
    result = item.result
    if not result.success:
        return result.message
    if result.changed_fields:
        return f"changed: {', '.join(result.changed_fields)}"
    return ""


def _print_table(results: List[EntryResult]) -> None:
    headers = ["Kind", "Name", "Action", "ID", "Message"]
    rows = []
    for item in results:
        rows.append(
            [
                item.entry.kind,
                item.entry.display_name,
                item.result.action if item.success else "✗ failed",
                item.result.identifier or "-",
                _message(item),
            ]
        )
    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


def _state(state: Any) -> Any:
    if isinstance(state, BaseModel):
        return state.model_dump(mode="json", by_alias=True, exclude_none=True)
    return state


def _as_dict(item: EntryResult) -> Dict[str, Any]:
    return {
        "kind": item.entry.kind,
        "name": item.entry.display_name,
        "id": item.result.identifier,
        "success": item.success,
        "action": item.result.action,
        "state": _state(item.result.state),
        "error": None if item.success else item.result.message,
    }


def _exit_on_failure(results: List[EntryResult]) -> None:
    if any(not item.success for item in results):
        sys.exit(1)


@click.group()
@click.option(
    "--base-url",
    envvar="API_BASE_URL",
    help="Remote API base URL (defaults to API_BASE_URL)",
)
@click.option(
    "--log-level",
    envvar="LOG_LEVEL",
    default="INFO",
    show_default=True,
    type=click.Choice(
        ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False
    ),
)
@click.pass_context
def cli(ctx, base_url, log_level):
    """convergectl - converge remote resources to their declared state"""
    _configure_logging(log_level)
    ctx.ensure_object(dict)
    ctx.obj["base_url"] = base_url


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def apply(ctx, filename):
    """Create or update the resources in a YAML/JSON manifest"""
    results = _run(ctx, "apply", filename)
    if results:
        _print_table(results)
    _exit_on_failure(results)


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "yaml"]), default="table"
)
@click.pass_context
def get(ctx, filename, output):
    """Show the remote state of the resources in a manifest"""
    results = _run(ctx, "read", filename)
    if output == "json":
        click.echo(json.dumps([_as_dict(item) for item in results], indent=2))
    elif output == "yaml":
        click.echo(
            yaml.safe_dump(
                [_as_dict(item) for item in results], default_flow_style=False
            )
        )
    elif results:
        _print_table(results)
    _exit_on_failure(results)


@cli.command()
@click.argument("filename", type=click.Path(exists=True, dir_okay=False))
@click.option("--purge", is_flag=True, help="Purge all data instead of a soft delete")
@click.confirmation_option(prompt="Are you sure you want to delete these resources?")
@click.pass_context
def delete(ctx, filename, purge):
    """Delete the resources in a manifest"""
    results = _run(ctx, "delete", filename, purge=purge)
    if results:
        _print_table(results)
    _exit_on_failure(results)


@cli.command(name="diff")
@click.argument("before", type=click.Path(exists=True, dir_okay=False))
@click.argument("after", type=click.Path(exists=True, dir_okay=False))
def diff_command(before, after):
    """Print the JSON Patch that turns BEFORE into AFTER"""
    patch = diff(_load_document(before), _load_document(after))
    click.echo(json.dumps(patch.to_list(), indent=2))


if __name__ == "__main__":
    cli()
