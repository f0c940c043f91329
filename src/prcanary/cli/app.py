"""
Root Typer application for the prcanary CLI.

Commands::

    prcanary serve                  API + control loops under uvicorn
    prcanary run [--once]           control loops only (polling feed)
    prcanary plan ID REVISION       render a template and show the plan
    prcanary resolve TARGET [TAG]   preview a routing decision
    prcanary check-tag VALUE        validate a tag value
"""

from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import typer

from prcanary import __version__
from prcanary.cli.utils import console, print_error, print_json, print_table
from prcanary.core.config import get_settings
from prcanary.core.errors import CanaryError
from prcanary.core.logging import configure_logging
from prcanary.model.environments import AppliedEnvironment, ControllerState, ResourceObject
from prcanary.model.tags import CanaryID, Protocol, canary_id, is_valid_tag
from prcanary.model.template import EnvironmentTemplate
from prcanary.reconcile.plan import compute_plan
from prcanary.routing.engine import resolve as resolve_decision
from prcanary.routing.rules import build_rule_set

app = typer.Typer(
    name="prcanary",
    help="prcanary: PR-scoped canary routing and environment reconciliation.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"prcanary {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """prcanary CLI."""


def _load_template(path: Path | None) -> EnvironmentTemplate:
    if path is not None:
        return EnvironmentTemplate.from_yaml_file(path)
    settings = get_settings()
    if settings.template_path:
        return EnvironmentTemplate.from_yaml_file(settings.template_path)
    return EnvironmentTemplate.default()


# ── serve / run ──────────────────────────────────────────────────────────


@app.command("serve")
def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Start the HTTP API together with the control loops."""
    import uvicorn

    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"[bold green]Starting prcanary[/bold green] on {host}:{port}")
    uvicorn.run(
        "prcanary.api:create_app",
        factory=True,
        host=host,
        port=port,
        log_level=log_level,
    )


async def _run(once: bool) -> list[AppliedEnvironment]:
    from prcanary.runtime import ControlPlane

    plane = ControlPlane.from_settings(get_settings())
    await plane.start()
    try:
        if once:
            if plane.poller is not None:
                await plane.poller.poll_once()
            await plane.push.drain()
            await plane.controller.drain()
        else:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, plane.request_stop)
            await plane.wait()
        return plane.registry.applied_snapshot()
    finally:
        await plane.stop()


@app.command("run")
def run(
    once: bool = typer.Option(False, "--once", help="Poll once, converge, print and exit"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run the control loops without the HTTP API."""
    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_format == "json")
    try:
        applied = asyncio.run(_run(once))
    except CanaryError as e:
        print_error(e.message)
        raise typer.Exit(code=1) from e
    if json_out:
        print_json([env.to_dict() for env in applied])
        return
    print_table(
        "Environments",
        ["ID", "State", "Revision", "Resources", "Last error"],
        [
            (env.canary_id, env.state.value, env.last_applied_revision, len(env.resource_set), env.last_error)
            for env in sorted(applied, key=lambda e: e.canary_id)
        ],
    )


# ── plan ─────────────────────────────────────────────────────────────────


@app.command("plan")
def plan(
    canary: str = typer.Argument(..., help="Canary id, e.g. a PR number"),
    revision: str = typer.Argument(..., help="Revision to render"),
    template: Path | None = typer.Option(None, "--template", "-t", exists=True, dir_okay=False),
    from_revision: str | None = typer.Option(
        None, "--from", help="Diff against this revision instead of an empty environment"
    ),
    close: bool = typer.Option(False, "--close", help="Plan pruning of REVISION"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Render a template for an environment and show the resulting plan."""
    try:
        cid = canary_id(canary)
        tmpl = _load_template(template)
        applied: tuple[ResourceObject, ...] = ()
        if from_revision is not None:
            applied = tmpl.render(cid, from_revision)
        if close:
            applied = applied or tmpl.render(cid, revision)
            result = compute_plan(cid, revision, None, applied)
        else:
            result = compute_plan(cid, revision, tmpl.render(cid, revision), applied)
    except CanaryError as e:
        print_error(e.message)
        raise typer.Exit(code=1) from e

    if json_out:
        print_json(result.to_dict())
        return
    if result.is_noop:
        console.print("[green]No changes.[/green]")
        return
    print_table(
        f"Plan for {cid} @ {revision}",
        ["#", "Action", "Resource", "Phase", "Spec hash"],
        [
            (i, op.action.value, op.resource.ref, op.resource.phase.name.lower(), op.resource.spec_hash[:12])
            for i, op in enumerate(result, start=1)
        ],
    )


# ── resolve / check-tag ──────────────────────────────────────────────────


@app.command("resolve")
def resolve(
    target: str = typer.Argument(..., help="Logical target, e.g. frontend"),
    tag: str | None = typer.Argument(None, help="Tag value carried by the request"),
    protocol: Protocol = typer.Option(Protocol.HTTP, "--protocol"),
    ready: list[str] = typer.Option([], "--ready", help="Treat this id as Ready (repeatable)"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Preview the routing decision for a request."""
    settings = get_settings()
    try:
        applied = [
            AppliedEnvironment(canary_id=canary_id(r, settings.tag_max_length), state=ControllerState.READY)
            for r in ready
        ]
    except CanaryError as e:
        print_error(e.message)
        raise typer.Exit(code=1) from e
    rule_set = build_rule_set(
        version=1,
        stable_routes=settings.stable_routes,
        applied=applied,
        destination_pattern=settings.canary_destination,
        canary_priority=settings.canary_priority,
    )
    decision = resolve_decision(rule_set, tag, protocol, target, settings.tag_max_length)
    if json_out:
        print_json(decision.to_dict())
        return
    kind = "fallback" if decision.fallback else f"canary {decision.canary_id}"
    console.print(f"{protocol.value}/{target} → [bold]{decision.destination}[/bold] ({kind})")


@app.command("check-tag")
def check_tag(
    value: str = typer.Argument(..., help="Tag value to validate"),
    max_length: int | None = typer.Option(None, "--max-length"),
) -> None:
    """Exit 0 if VALUE is a valid canary tag, 1 otherwise."""
    limit = max_length or get_settings().tag_max_length
    if is_valid_tag(value, limit):
        console.print(f"[green]valid[/green] {CanaryID(value)}")
        return
    console.print(f"[red]invalid[/red] {value!r}")
    raise typer.Exit(code=1)
