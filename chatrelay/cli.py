"""Click CLI for running the relay and managing its local data."""

from __future__ import annotations

import json
import os
import sys
import uuid
from pathlib import Path

import click

from chatrelay.audit.logger import validate_audit_chain
from chatrelay.models import Chatbot
from chatrelay.store.chatbots import ChatbotStore
from chatrelay.store.db import Database
from chatrelay.store.rate_limits import RateLimitStore


@click.group()
@click.option(
    "--db",
    default="data/chatflowui.db",
    envvar="DATABASE_PATH",
    help="SQLite database path.",
)
@click.pass_context
def cli(ctx: click.Context, db: str) -> None:
    """chatflow-relay command line."""
    ctx.ensure_object(dict)
    ctx.obj["db_path"] = db


def _database(ctx: click.Context) -> Database:
    return Database(ctx.obj["db_path"])


@cli.command()
@click.option("--host", default=None, help="Bind address (defaults to HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Port (defaults to PORT or 7861).")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Run the relay server with uvicorn."""
    import uvicorn

    from chatrelay.config import Settings

    # The app factory reads its config from the environment, reload workers included
    os.environ["DATABASE_PATH"] = ctx.obj["db_path"]
    settings = Settings.from_env()
    uvicorn.run(
        "chatrelay.server.app:create_app_from_env",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        proxy_headers=True,
    )


@cli.group("chatbot")
def chatbot_group() -> None:
    """Inspect and seed chatbot records."""


@chatbot_group.command("add")
@click.option("--id", "chatbot_id", default=None, help="Chatbot id (random if omitted).")
@click.option("--name", default="", help="Display name.")
@click.option("--webhook-url", required=True, help="Webhook the relay forwards messages to.")
@click.option("--secret", default=None, help="HMAC secret for signing and callbacks.")
@click.option(
    "--origin", "origins", multiple=True, required=True,
    help="Allowed origin (repeatable; '*.example.com' for subdomains).",
)
@click.pass_context
def chatbot_add(
    ctx: click.Context,
    chatbot_id: str | None,
    name: str,
    webhook_url: str,
    secret: str | None,
    origins: tuple[str, ...],
) -> None:
    """Create or replace a chatbot."""
    chatbot = Chatbot(
        id=chatbot_id or str(uuid.uuid4()),
        name=name,
        webhook_url=webhook_url,
        webhook_secret=secret,
        allowed_origins=list(origins),
    )
    with _database(ctx) as db:
        store = ChatbotStore(db)
        store.ensure_default_theme()
        store.save_chatbot(chatbot)
    click.echo(chatbot.id)


@chatbot_group.command("list")
@click.pass_context
def chatbot_list(ctx: click.Context) -> None:
    """List chatbots (secrets are not printed)."""
    with _database(ctx) as db:
        items = ChatbotStore(db).list_chatbots()
    output = [
        {
            "id": c.id,
            "name": c.name,
            "webhook_url": c.webhook_url,
            "signed": bool(c.webhook_secret),
            "allowed_origins": c.allowed_origins,
        }
        for c in items
    ]
    click.echo(json.dumps(output, indent=2))


@cli.group("ratelimit")
def ratelimit_group() -> None:
    """Maintain rate-limit counters."""


@ratelimit_group.command("sweep")
@click.pass_context
def ratelimit_sweep(ctx: click.Context) -> None:
    """Delete expired rate-limit counters."""
    with _database(ctx) as db:
        removed = RateLimitStore(db).sweep_expired()
    click.echo(f"Removed {removed} expired counters")


@cli.group("audit")
def audit_group() -> None:
    """Audit log tools."""


@audit_group.command("verify")
@click.argument("log_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def audit_verify(log_path: Path) -> None:
    """Check the hash chain of an audit log."""
    result = validate_audit_chain(log_path)
    if result.valid:
        click.echo("Audit chain valid")
        return
    click.echo(f"Audit chain broken at line {result.broken_at_line}", err=True)
    sys.exit(1)
