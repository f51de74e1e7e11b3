"""Operator commands: run the server, manage superusers, deploy the model.

Engine connection details come from the same settings as the server
(``OPENFGA_API_HOST``, ``OPENFGA_STORE_ID``, ...).
"""

import asyncio
import logging
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import typer

from .authorization.authorizer import AdminAuthorizer
from .config import get_settings
from .observability.logging import configure_logging
from .openfga.client import OpenFGAClient
from .openfga.exceptions import AuthorizationEngineError
from .openfga.schema import SchemaProvider

logger = logging.getLogger(__name__)

DEFAULT_STORE_NAME = "rebac-admin"

T = TypeVar("T")

app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="ReBAC admin CLI (serve, admin, create-fga-model).",
)
admin_app = typer.Typer(
    add_completion=False,
    invoke_without_command=True,
    help="Grant or revoke the superuser relation.",
)
app.add_typer(admin_app, name="admin")


def build_client(settings, store_id: Optional[str] = None) -> OpenFGAClient:
    client = OpenFGAClient.from_settings(settings)
    if store_id:
        client.store_id = store_id
    return client


def _run(operation: Callable[[OpenFGAClient], Awaitable[T]], store_id: Optional[str] = None) -> T:
    """Run ``operation`` against a fresh engine client, exiting 1 on engine errors."""

    async def _session() -> T:
        client = build_client(get_settings(), store_id)
        try:
            return await operation(client)
        finally:
            await client.close()

    try:
        return asyncio.run(_session())
    except AuthorizationEngineError as e:
        typer.echo(f"error: {e}", err=True)
        raise typer.Exit(code=1)


@app.callback()
def _main(ctx: typer.Context) -> None:
    settings = get_settings()
    configure_logging(environment=settings.environment, log_level=settings.log_level)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@admin_app.callback()
def _admin(ctx: typer.Context) -> None:
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


@admin_app.command(name="create", help="Make USER a superuser.")
def create_admin(user: Annotated[str, typer.Argument(help="User identifier.")]) -> None:
    _run(lambda client: AdminAuthorizer(client).create_admin(user))
    typer.echo(f"{user} is now a superuser")


@admin_app.command(name="remove", help="Revoke superuser from USER.")
def remove_admin(user: Annotated[str, typer.Argument(help="User identifier.")]) -> None:
    _run(lambda client: AdminAuthorizer(client).remove_admin(user))
    typer.echo(f"{user} is no longer a superuser")


@app.command(name="create-fga-model", help="Write the bundled authorization model to the engine.")
def create_fga_model(
    store_id: Annotated[
        Optional[str],
        typer.Option("--store-id", help="Target store; defaults to OPENFGA_STORE_ID."),
    ] = None,
    store_name: Annotated[
        str,
        typer.Option("--store-name", help="Name of the store created when no store is configured."),
    ] = DEFAULT_STORE_NAME,
) -> None:
    async def _write(client: OpenFGAClient):
        if not client.store_id:
            await client.create_store(store_name)
            logger.info("Created store %s (%s)", store_name, client.store_id)
        model_id = await client.write_model(SchemaProvider().model)
        return client.store_id, model_id

    created_store, model_id = _run(_write, store_id)
    typer.echo(f"store id: {created_store}")
    typer.echo(f"model id: {model_id}")


@app.command(name="serve", help="Run the HTTP server.")
def serve() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "rebac_admin.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
    )


def main() -> None:
    app()
