from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Optional

import typer

from tiergate import __version__
from tiergate.config import get_settings
from tiergate.exceptions import TierGateError

app = typer.Typer(add_completion=False, help="TierGate CLI")


@app.callback()
def _root() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _runtime():
    from tiergate.runtime import Runtime

    return Runtime.from_settings()


def _prepare_db() -> None:
    from tiergate.database import init_db

    init_db(create_tables=True)


def _fail(exc: TierGateError) -> None:
    typer.echo(f"Error [{exc.code}]: {exc.message}", err=True)
    raise typer.Exit(1)


@app.command()
def version() -> None:
    typer.echo(__version__)


@app.command("init-db")
def init_db_cmd() -> None:
    """Create the membership, usage and entry tables (SCHEMA_MODE=create_all)."""
    try:
        _prepare_db()
    except RuntimeError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    typer.echo("Database ready.")


@app.command()
def modules(
    user: Optional[int] = typer.Option(None, "--user", help="Show access for this user id"),
    errors: bool = typer.Option(False, "--errors", help="Also print discovery errors"),
) -> None:
    """List discovered feature modules."""
    try:
        runtime = _runtime()
        entries = runtime.registry.list_all()
        lines = []
        if user is None:
            for entry in entries:
                state = "enabled" if entry.enabled else "disabled"
                lines.append(
                    f"{entry.id}\t{entry.descriptor.version}\t{entry.descriptor.min_tier.value}\t{state}"
                )
        else:
            _prepare_db()
            with runtime.session_engine() as engine:
                for entry in entries:
                    state = "enabled" if entry.enabled else "disabled"
                    access = "yes" if engine.can_access_module(entry.id, user) else "no"
                    lines.append(f"{entry.id}\t{entry.descriptor.version}\t{state}\taccess={access}")
    except TierGateError as exc:
        _fail(exc)

    for line in lines:
        typer.echo(line)
    if not entries:
        typer.echo("No modules found.", err=True)

    if errors:
        for message in runtime.registry.get_errors():
            typer.echo(f"error: {message}", err=True)


@app.command()
def tier(
    user: int = typer.Argument(..., help="User id"),
    new_tier: str = typer.Argument(..., help="Tier name (free, bronze, silver, gold, platinum, custom)"),
    expires: Optional[datetime] = typer.Option(None, "--expires", help="Expiry timestamp (ISO 8601)"),
    limits: Optional[str] = typer.Option(
        None, "--limits", help='Custom limits as JSON, e.g. {"episodes": 100}'
    ),
) -> None:
    """Set a user's membership tier."""
    custom_limits = None
    if limits:
        try:
            custom_limits = json.loads(limits)
        except ValueError as exc:
            typer.echo(f"Error: --limits is not valid JSON: {exc}", err=True)
            raise typer.Exit(1)

    try:
        runtime = _runtime()
        _prepare_db()
        with runtime.session_engine() as engine:
            record = engine.update_tier(
                user, new_tier, expires_at=expires, custom_limits=custom_limits
            )
    except TierGateError as exc:
        _fail(exc)
    typer.echo(f"User {user}: tier={record.tier.value} status={record.status.value}")


@app.command()
def show(user: int = typer.Argument(..., help="User id")) -> None:
    """Print a user's membership and usage for the current month."""
    try:
        runtime = _runtime()
        _prepare_db()
        with runtime.session_engine() as engine:
            membership = engine.get_membership(user)
            payload = {
                "user_id": user,
                "tier": engine.get_tier(user).value,
                "membership": membership.to_dict() if membership else None,
                "usage": engine.usage_summary(user),
                "modules": [e.id for e in runtime.registry.list_for_user(user, engine)],
            }
    except TierGateError as exc:
        _fail(exc)
    typer.echo(json.dumps(payload, indent=2, default=str))


@app.command()
def usage(
    user: int = typer.Argument(..., help="User id"),
    resource: str = typer.Argument(..., help="Resource type, e.g. ai_analyses"),
    amount: int = typer.Option(1, "--amount", help="Units to record"),
    strict: bool = typer.Option(False, "--strict", help="Refuse usage beyond the limit"),
) -> None:
    """Record usage of a metered resource."""
    try:
        runtime = _runtime()
        _prepare_db()
        with runtime.session_engine() as engine:
            if strict:
                total = engine.record_usage_if_allowed(resource, user, amount)
            else:
                total = engine.record_usage(resource, user, amount)
    except TierGateError as exc:
        _fail(exc)
    typer.echo(f"User {user}: {resource}={total}")


@app.command()
def sweep() -> None:
    """Expire active memberships whose expiry has passed."""
    try:
        runtime = _runtime()
        _prepare_db()
        with runtime.session_engine() as engine:
            count = engine.sweep_expirations()
    except TierGateError as exc:
        _fail(exc)
    typer.echo(f"Expired {count} memberships.")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
