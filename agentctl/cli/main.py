"""agentctl CLI — run an agent config and watch its events live.

`agentctl run agent.json` starts the worker and streams events until it
exits. Ctrl+C stops the worker (SIGTERM, then SIGKILL after the grace
period) before returning.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from agentctl.bridge.facade import OrchestrationBridge
from agentctl.cli.context import build_settings, configure_logging, run_async
from agentctl.config import AgentctlSettings
from agentctl.processes.resolver import RuntimeResolver, resolve_runtime
from agentctl.types import KILLED_EXIT_CODE, LogEvent, LogKind

console = Console()

app = typer.Typer(
    name="agentctl",
    help="agentctl -- launch, watch and stop an agent worker process.",
    no_args_is_help=True,
)

_KIND_STYLES = {
    LogKind.INFO: "cyan",
    LogKind.WARN: "yellow",
    LogKind.ERROR: "bold red",
    LogKind.AGENT_EVENT: "magenta",
    LogKind.STEP: "blue",
    LogKind.START: "bold green",
    LogKind.COMPLETE: "bold green",
    LogKind.EXIT: "bold white",
    LogKind.STDOUT_RAW: "dim",
}


def _print_event(event: LogEvent, as_json: bool = False) -> None:
    if as_json:
        console.print_json(event.model_dump_json())
        return
    style = _KIND_STYLES.get(event.kind, "white")
    stamp = event.timestamp.strftime("%H:%M:%S")
    console.print(
        f"[dim]{stamp}[/dim] [{style}]{event.kind.value:<11}[/{style}] {escape(event.message)}"
    )


def _exit_status(event: LogEvent) -> int:
    code = event.data.get("code")
    if code == KILLED_EXIT_CODE:
        return 137
    return code if isinstance(code, int) and code >= 0 else 1


async def _run_and_watch(
    document: str,
    candidates: list[str] | None,
    cfg: AgentctlSettings,
    as_json: bool,
) -> int:
    bridge = OrchestrationBridge(config=cfg)
    stream = bridge.stream()
    try:
        ack = await bridge.run(document, candidates)
        if not ack.ok:
            console.print(f"[bold red]Run refused ({ack.error}):[/bold red] {escape(ack.message)}")
            return 2

        async for event in stream:
            _print_event(event, as_json)
            if event.kind == LogKind.EXIT and event.run_id == ack.run_id:
                return _exit_status(event)
        return 1
    except asyncio.CancelledError:
        console.print("[yellow]Interrupted, stopping agent...[/yellow]")
        await bridge.stop()
        raise
    finally:
        stream.close()


@app.command("run")
def run(
    config_file: Path = typer.Argument(
        exists=True, dir_okay=False, readable=True, help="Agent config JSON document",
    ),
    candidate: Optional[list[str]] = typer.Option(
        None, "--candidate", "-c", help="Runtime candidate path (repeatable, first existing wins)",
    ),
    grace: Optional[float] = typer.Option(None, "--grace", help="Seconds between SIGTERM and SIGKILL"),
    delivery: Optional[str] = typer.Option(None, "--delivery", help="Config delivery: stdin or env"),
    no_stub: bool = typer.Option(False, "--no-stub", help="Fail instead of using the stub worker"),
    as_json: bool = typer.Option(False, "--json", help="Print events as JSON"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Operator log level"),
):
    """Run an agent and stream its events until it exits."""
    configure_logging(log_level)
    if delivery is not None and delivery not in ("stdin", "env"):
        raise typer.BadParameter("must be 'stdin' or 'env'", param_hint="--delivery")

    cfg = build_settings(
        grace_period_s=grace,
        config_delivery=delivery,
        stub_enabled=False if no_stub else None,
    )
    document = config_file.read_text(encoding="utf-8")
    try:
        status = run_async(_run_and_watch(document, candidate or None, cfg, as_json))
    except KeyboardInterrupt:
        raise typer.Exit(130)
    raise typer.Exit(status)


@app.command("resolve")
def resolve(
    candidate: Optional[list[str]] = typer.Option(
        None, "--candidate", "-c", help="Runtime candidate path (repeatable)",
    ),
):
    """Show which runtime `run` would execute."""
    cfg = build_settings()
    candidates = candidate or cfg.runtime_candidates

    table = Table(title="Runtime candidates")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Path", style="white")
    table.add_column("Exists", justify="center")
    for i, path in enumerate(candidates, start=1):
        found = resolve_runtime([path], cfg.base_dir) is not None
        table.add_row(str(i), path, "[green]yes[/green]" if found else "[red]no[/red]")
    console.print(table)

    resolver = RuntimeResolver(
        candidates=tuple(candidates),
        base_dir=cfg.base_dir,
        stub_enabled=True,
        interpreters=dict(cfg.interpreters),
    )
    target = resolver.resolve()
    label = "stub worker" if target.is_stub else str(target.path)
    console.print(f"[bold]Runtime:[/bold] {escape(label)}")
    console.print(f"[bold]Command:[/bold] {escape(' '.join(target.command))}")


@app.command("serve")
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Expose run/stop over JSON-RPC and events over a WebSocket."""
    from agentctl.bridge.routes import create_app

    configure_logging()
    cfg = build_settings()
    host = host or cfg.api_host
    port = port or cfg.api_port

    console.print(f"[bold cyan]agentctl[/bold cyan] listening on http://{host}:{port}")
    console.print("[dim]POST /rpc, WS /ws/events. Press Ctrl+C to stop.[/dim]")

    import uvicorn
    uvicorn.run(create_app(OrchestrationBridge(config=cfg)), host=host, port=port, log_level="warning")


@app.command("version")
def version_cmd():
    """Show agentctl version."""
    from agentctl import __version__
    console.print(f"agentctl v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
