"""CLI for PersonaResolver.

Commands:
    init-db                     - Create the directory tables
    add-entity <name>           - Create an entity with optional platform identities
    resolve <identifier>        - Rank the entities an identifier may refer to
    show-entity <id>            - Show entity details
    merge <primary> <ids...>    - Merge entities into a primary entity
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated
from uuid import UUID

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from persona_resolver.clients.llm import OpenAIOracle
from persona_resolver.db import async_session_factory, engine, init_db
from persona_resolver.directory.sql import SqlEntityDirectory, SqlRelationshipRedirector
from persona_resolver.entity import PlatformIdentity
from persona_resolver.errors import ResolverError
from persona_resolver.events import InMemoryEventBus
from persona_resolver.merging.executor import MergeOptions
from persona_resolver.resolution.resolver import EntityResolver
from persona_resolver.resolution.types import ResolutionContext, TrustRequirements

app = typer.Typer(
    name="persona-resolver",
    help="PersonaResolver: entity resolution and identity reconciliation",
    no_args_is_help=True,
)
console = Console()


def run_async(coro):
    """Run an async coroutine in sync context."""
    return asyncio.run(coro)


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def parse_uuid(value: str, label: str = "ID") -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Error:[/red] Invalid {label}: {value}")
        raise typer.Exit(1) from None


def parse_identity(value: str, *, verified: bool = False) -> PlatformIdentity:
    """Parse ``platform:handle`` into a PlatformIdentity."""
    platform, sep, handle = value.partition(":")
    if not sep or not platform or not handle:
        console.print(f"[red]Error:[/red] Expected platform:handle, got {value}")
        raise typer.Exit(1)
    return PlatformIdentity(
        platform=platform.lower(),
        handle=handle,
        verified=verified,
        confidence=1.0 if verified else 0.5,
    )


def build_resolver() -> tuple[EntityResolver, SqlEntityDirectory]:
    directory = SqlEntityDirectory(async_session_factory)
    resolver = EntityResolver(
        directory,
        OpenAIOracle(),
        redirector=SqlRelationshipRedirector(async_session_factory),
        events=InMemoryEventBus(),
    )
    return resolver, directory


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Debug logging")] = False,
) -> None:
    configure_logging(verbose)


@app.command("init-db")
def init_db_command() -> None:
    """Create the directory tables."""

    async def _init():
        await init_db()
        await engine.dispose()

    run_async(_init())
    console.print("[green]Database schema initialized.[/green]")


@app.command("add-entity")
def add_entity(
    name: Annotated[str, typer.Argument(help="Display name")],
    room: Annotated[str | None, typer.Option(help="Room ID (UUID) to join")] = None,
    platform: Annotated[
        list[str] | None,
        typer.Option("--platform", "-p", help="platform:handle (repeatable)"),
    ] = None,
    verified: Annotated[bool, typer.Option(help="Mark platform identities verified")] = False,
) -> None:
    """Create an entity and link it to look-alikes."""
    room_id = parse_uuid(room, "room ID") if room else None
    identities = [parse_identity(p, verified=verified) for p in platform or []]

    async def _add():
        await init_db()
        resolver, _ = build_resolver()
        try:
            entity_id = await resolver.create_entity_with_identity(
                name, ResolutionContext(room_id=room_id), platform_identities=identities
            )
            graph = resolver.graphs.get(entity_id)
        finally:
            await engine.dispose()

        console.print(f"[green]Created[/green] {name} → {entity_id}")
        if graph and graph.cross_references:
            table = Table(title="Cross References")
            table.add_column("Target", style="cyan")
            table.add_column("Linking Factor")
            table.add_column("Confidence", justify="right")
            for ref in graph.cross_references:
                table.add_row(str(ref.target_id), ref.linking_factor, f"{ref.confidence:.2f}")
            console.print(table)

    run_async(_add())


@app.command()
def resolve(
    identifier: Annotated[str, typer.Argument(help="Name, alias or handle")],
    room: Annotated[str | None, typer.Option(help="Room ID (UUID) for context")] = None,
    platform_hint: Annotated[
        str | None, typer.Option("--platform-hint", help="Platform to search handles on")
    ] = None,
    security_sensitive: Annotated[
        bool, typer.Option(help="Treat the lookup as security sensitive")
    ] = False,
) -> None:
    """Rank the entities an identifier may refer to."""
    room_id = parse_uuid(room, "room ID") if room else None
    context = ResolutionContext(
        room_id=room_id,
        trust=TrustRequirements(security_sensitive=security_sensitive),
    )

    async def _resolve():
        resolver, _ = build_resolver()
        try:
            candidates = await resolver.resolve_entity(identifier, context, platform_hint)
        finally:
            await engine.dispose()

        if not candidates:
            console.print(f"[yellow]No candidates found for '{identifier}'[/yellow]")
            return

        table = Table(title=f"Candidates for '{identifier}'")
        table.add_column("Entity", style="cyan")
        table.add_column("Names")
        table.add_column("Confidence", justify="right")
        table.add_column("Matches")
        table.add_column("Risks", style="red")
        for c in candidates:
            table.add_row(
                str(c.entity_id),
                ", ".join(c.entity.names),
                f"{c.confidence:.2f}",
                ", ".join(f.type.value for f in c.match_factors),
                ", ".join(r.type.value for r in c.risk_factors),
            )
        console.print(table)

    run_async(_resolve())


@app.command("show-entity")
def show_entity(
    entity_id: Annotated[str, typer.Argument(help="Entity ID (UUID)")],
) -> None:
    """Show details for a specific entity."""
    eid = parse_uuid(entity_id, "UUID")

    async def _show():
        _, directory = build_resolver()
        try:
            entity = await directory.get_entity_by_id(eid)
        finally:
            await engine.dispose()

        if entity is None:
            console.print(f"[red]Error:[/red] Entity not found: {entity_id}")
            raise typer.Exit(1)

        panel_content = [
            f"[bold]ID:[/bold] {entity.id}",
            f"[bold]Names:[/bold] {', '.join(entity.names)}",
        ]
        identities = entity.platform_identities()
        if identities:
            panel_content.append("[bold]Platform Identities:[/bold]")
            for platform, identity in identities.items():
                mark = "✓" if identity.verified else "?"
                panel_content.append(
                    f"  • {platform}: {identity.identifier} {mark} ({identity.confidence:.2f})"
                )
        other = {k: v for k, v in entity.metadata.items() if k != "platform_identities"}
        if other:
            panel_content.append("[bold]Metadata:[/bold]")
            for k, v in other.items():
                panel_content.append(f"  • {k}: {v}")

        console.print(Panel("\n".join(panel_content), title="Entity Details"))

    run_async(_show())


@app.command()
def merge(
    primary: Annotated[str, typer.Argument(help="Primary entity ID (survives)")],
    candidates: Annotated[list[str], typer.Argument(help="Entity IDs to merge in")],
    strategy: Annotated[
        str, typer.Option(help="'automatic' absorbs candidates; 'manual' merges fields")
    ] = "automatic",
    relationships: Annotated[
        bool, typer.Option(help="Redirect relationships to the primary")
    ] = True,
    history: Annotated[bool, typer.Option(help="Record candidate snapshots")] = True,
) -> None:
    """Merge entities into a primary entity."""
    primary_id = parse_uuid(primary, "primary ID")
    candidate_ids = [parse_uuid(c, "candidate ID") for c in candidates]
    options = MergeOptions(
        strategy=strategy, update_relationships=relationships, preserve_history=history
    )

    async def _merge():
        resolver, _ = build_resolver()
        try:
            merged = await resolver.merge_entities(primary_id, candidate_ids, options)
        except ResolverError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(1) from None
        finally:
            await engine.dispose()

        console.print(
            f"[green]Merged[/green] {len(candidate_ids)} entities into {merged.id} "
            f"({', '.join(merged.names)})"
        )

    run_async(_merge())


if __name__ == "__main__":
    app()
