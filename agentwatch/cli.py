import click


@click.group()
def main() -> None:
    """agentwatch - observability event server for AI agent runtimes."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from AGENTWATCH_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from AGENTWATCH_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the event server."""
    import uvicorn

    from agentwatch.event_server.settings import AgentWatchSettings

    settings = AgentWatchSettings()

    uvicorn.run(
        "agentwatch.event_server.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Leave room for in-flight commits to drain plus post-drain cleanup
        # (stream close, Redis close, engine dispose).
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 30,
    )


@main.command("config")
def show_config() -> None:
    """Print the effective settings (environment and .env resolved) as JSON."""
    from agentwatch.event_server.settings import AgentWatchSettings

    click.echo(AgentWatchSettings().model_dump_json(indent=2))


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "event_server" / "alembic.ini"
    cfg = Config(str(ini_path))
    cfg.set_main_option("script_location", str(ini_path.parent / "alembic"))
    return cfg


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from model changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def seed() -> None:
    """Insert the built-in platforms that are missing from the registry."""
    import asyncio

    from agentwatch.event_server.db.engine import create_engine, create_session_factory
    from agentwatch.event_server.managers.platforms import seed_builtin_platforms
    from agentwatch.event_server.settings import AgentWatchSettings

    async def _seed() -> int:
        engine = create_engine(AgentWatchSettings().database_url)
        try:
            async with create_session_factory(engine)() as session:
                return await seed_builtin_platforms(session)
        finally:
            await engine.dispose()

    added = asyncio.run(_seed())
    click.echo(f"Seeded {added} built-in platform(s).")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
