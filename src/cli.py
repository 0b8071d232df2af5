"""
CLI tool for the resource providers.

Provides a small Terraform-like interface: apply manifests, read, delete
and import resources by ID.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

import click
import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from tabulate import tabulate

from config import LoggingConfig, get_config
from errors import ProviderError
from resources.base import (
    ChangeAction,
    ProviderContext,
    ResourceData,
    ResourceProvider,
)
from resources.registry import get_registry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
SENSITIVE_MASK = "(sensitive value)"


class ResourceManifest(BaseModel):
    """One resource entry of an apply manifest."""

    type: str
    id: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    timeouts: Optional[Dict[str, int]] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if not get_registry().has(v):
            available = ", ".join(get_registry().list_types())
            raise ValueError(f"unknown resource type {v!r} (available: {available})")
        return v


class Manifest(BaseModel):
    """An apply manifest: a list of resources."""

    resources: List[ResourceManifest]

    @classmethod
    def from_document(cls, document: Any) -> "Manifest":
        """Accept a list, a single resource, or {'resources': [...]}."""
        if isinstance(document, list):
            return cls(resources=document)
        if isinstance(document, dict) and "resources" in document:
            return cls(**document)
        return cls(resources=[document])


def _load_document(filename: str) -> Any:
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return yaml.safe_load(f)
        return json.load(f)


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    if value is None:
        return ""
    return str(value)


def render_state(
    provider: ResourceProvider, state: ResourceData, output: str = "table"
) -> str:
    """Render resource state as a table (sensitive values masked) or JSON."""
    if output == "json":
        return json.dumps(
            {"id": state.id, "attributes": state.attributes}, indent=2, sort_keys=True
        )

    rows = [["id", state.id]]
    for key in sorted(state.attributes):
        value = state.attributes[key]
        if key in provider.sensitive and value:
            rows.append([key, SENSITIVE_MASK])
        else:
            rows.append([key, _format_value(value)])
    return tabulate(rows, headers=["ATTRIBUTE", "VALUE"], tablefmt="simple")


def _provider_context(ctx: click.Context) -> ProviderContext:
    obj = ctx.ensure_object(dict)
    if "provider_context" not in obj:
        try:
            obj["provider_context"] = ProviderContext.from_config(get_config())
        except ValueError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    return obj["provider_context"]


def _provider(type_name: str) -> ResourceProvider:
    try:
        return get_registry().get(type_name)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _run(coro) -> Any:
    try:
        return asyncio.run(coro)
    except (ProviderError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


async def apply_resource(
    provider: ResourceProvider, entry: ResourceManifest, ctx: ProviderContext
) -> ResourceData:
    """Create, update or replace one manifest entry."""
    data = ResourceData(
        id=entry.id, attributes=dict(entry.config), timeouts=entry.timeouts
    )

    if entry.id is None:
        click.echo(f"{provider.type_name}: creating")
        return await provider.create(data, ctx)

    prior = await provider.read(
        ResourceData(id=entry.id, timeouts=entry.timeouts), ctx
    )
    if prior is None:
        click.echo(f"{provider.type_name}: {entry.id} no longer exists, creating")
        data.id = None
        return await provider.create(data, ctx)

    plan = provider.plan(prior.attributes, entry.config)
    if plan.action is ChangeAction.NO_OP:
        click.echo(f"{provider.type_name}: {entry.id} is up to date")
        return prior

    if plan.action is ChangeAction.REPLACE:
        click.echo(
            f"{provider.type_name}: {entry.id} must be replaced "
            f"(changed: {', '.join(plan.replace_reasons)})"
        )
        await provider.delete(prior, ctx)
        data.id = None
        return await provider.create(data, ctx)

    click.echo(
        f"{provider.type_name}: updating {entry.id} "
        f"(changed: {', '.join(plan.changed)})"
    )
    data.prior = prior.attributes
    return await provider.update(data, ctx)


@click.group()
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
@click.pass_context
def cli(ctx, log_level):
    """Resource provider CLI - manage relay namespaces and ML workspaces"""
    ctx.ensure_object(dict)
    level = log_level or LoggingConfig.from_env().log_level
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


@cli.command("types")
def list_types():
    """List supported resource types"""
    registry = get_registry()
    rows = []
    for type_name in registry.list_types():
        info = registry.get_info(type_name)
        t = info["timeouts"]
        rows.append(
            [
                type_name,
                f"{t.create}s/{t.read}s/{t.update}s/{t.delete}s",
                ", ".join(info["force_new"]),
            ]
        )
    click.echo(tabulate(rows, headers=["TYPE", "TIMEOUTS (C/R/U/D)", "FORCE NEW"]))


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.option(
    "--output", "-o", type=click.Choice(["table", "json"]), default="table"
)
@click.pass_context
def apply(ctx, filename, output):
    """Apply resources from a YAML/JSON manifest"""
    try:
        manifest = Manifest.from_document(_load_document(filename))
    except (ValidationError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Error: invalid manifest: {e}", err=True)
        sys.exit(1)

    provider_ctx = _provider_context(ctx)
    registry = get_registry()

    async def run():
        for entry in manifest.resources:
            provider = registry.get(entry.type)
            state = await apply_resource(provider, entry, provider_ctx)
            click.echo(render_state(provider, state, output))

    _run(run())


@cli.command()
@click.argument("type_name")
@click.argument("resource_id")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json"]), default="table"
)
@click.pass_context
def get(ctx, type_name, resource_id, output):
    """Show the current state of a resource"""
    provider = _provider(type_name)
    provider_ctx = _provider_context(ctx)

    state = _run(provider.read(ResourceData(id=resource_id), provider_ctx))
    if state is None:
        click.echo(f"Error: {resource_id} was not found", err=True)
        sys.exit(1)
    click.echo(render_state(provider, state, output))


@cli.command()
@click.argument("type_name")
@click.argument("resource_id")
@click.pass_context
def delete(ctx, type_name, resource_id):
    """Delete a resource and wait until it is gone"""
    provider = _provider(type_name)
    provider_ctx = _provider_context(ctx)

    _run(provider.delete(ResourceData(id=resource_id), provider_ctx))
    click.echo(f"{type_name}: {resource_id} deleted")


@cli.command("import")
@click.argument("type_name")
@click.argument("resource_id")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json"]), default="table"
)
@click.pass_context
def import_resource(ctx, type_name, resource_id, output):
    """Import an existing resource by ID"""
    provider = _provider(type_name)
    provider_ctx = _provider_context(ctx)

    state = _run(provider.import_state(resource_id, provider_ctx))
    click.echo(render_state(provider, state, output))


if __name__ == "__main__":
    cli()
