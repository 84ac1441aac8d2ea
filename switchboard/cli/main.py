"""CLI entry point for switchboard.

  serve                      Start plugins, the scheduler and the HTTP API
  catalog                    List available plugin types
  chat <assistant> <message> One-shot generation as an assistant
  run <automation>           Run an automation once
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from switchboard.cli import config as cli_config
from switchboard.cli.config import load_project_settings, suppress_runtime_logs
from switchboard.host.runtime import Runtime
from switchboard.shared.errors import SwitchboardError
from switchboard.shared.trace import start_trace
from switchboard.shared.types import ConversationMessage


@click.group()
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
    default=None, help="Path to switchboard.yaml",
)
@click.pass_context
def cli(ctx, config_path):
    """Switchboard -- route channel messages through tool-using assistants."""
    from dotenv import load_dotenv

    load_dotenv(cli_config.ENV_FILE)
    ctx.obj = {"config_path": config_path}


def _runtime(ctx) -> Runtime:
    config_path = ctx.obj["config_path"]
    try:
        settings = load_project_settings(config_path)
    except SwitchboardError as e:
        raise click.ClickException(str(e)) from e
    return Runtime(settings, load_settings=lambda: load_project_settings(config_path))


# ── serve ────────────────────────────────────────────────────

@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
@click.pass_context
def serve(ctx, host, port):
    """Start every configured plugin and serve the HTTP API."""
    import uvicorn

    from switchboard.host.server import create_app

    runtime = _runtime(ctx)
    server = runtime.settings.server
    app = create_app(runtime)
    uvicorn.run(app, host=host or server.host, port=port or server.port)


# ── catalog ──────────────────────────────────────────────────

@cli.command()
@click.pass_context
def catalog(ctx):
    """List plugin types that can be instantiated."""
    runtime = _runtime(ctx)
    for manifest in runtime.catalog.entries():
        features = ", ".join(manifest.features)
        click.echo(f"{manifest.type:<12} {manifest.name:<16} [{features}]  {manifest.description}")


# ── chat ─────────────────────────────────────────────────────

@cli.command()
@click.argument("assistant_id")
@click.argument("message")
@click.option("--show-tools", is_flag=True, help="Print tool calls made during generation")
@click.pass_context
def chat(ctx, assistant_id, message, show_tools):
    """Send one message to an assistant and print the answer."""
    suppress_runtime_logs()
    runtime = _runtime(ctx)

    async def _chat():
        await runtime.start(run_scheduler=False, channels=False)
        try:
            start_trace()
            return await runtime.service.generate_for_assistant(
                assistant_id, [ConversationMessage(role="user", content=message)],
            )
        finally:
            await runtime.stop()

    try:
        result = asyncio.run(_chat())
    except SwitchboardError as e:
        raise click.ClickException(str(e)) from e
    if show_tools:
        for usage in result.tool_usages:
            status = "error" if usage.error else "ok"
            click.echo(f"  [{usage.tool_name}] {status} ({usage.duration_ms}ms) {json.dumps(usage.input)}")
    click.echo(result.response.content)


# ── run ──────────────────────────────────────────────────────

@cli.command()
@click.argument("automation_id")
@click.pass_context
def run(ctx, automation_id):
    """Run an automation once and deliver its result."""
    suppress_runtime_logs()
    runtime = _runtime(ctx)

    async def _run():
        await runtime.start(run_scheduler=False)
        try:
            return await runtime.scheduler.run_automation_now(automation_id)
        finally:
            await runtime.stop()

    try:
        execution = asyncio.run(_run())
    except SwitchboardError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"success:   {execution.success}")
    click.echo(f"result:    {execution.result}")
    click.echo(f"delivered: {execution.delivered}")
    if execution.delivery_error:
        click.echo(f"delivery error: {execution.delivery_error}")
    if not execution.success:
        ctx.exit(1)
