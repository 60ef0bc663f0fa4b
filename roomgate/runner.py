"""
CLI entrypoint for roomgate.
"""
import asyncio
import importlib
from datetime import datetime

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from roomgate.client.realtime_client import RealtimeClient
from roomgate.server.registry import RouteDescriptor
from roomgate.shared.config import Settings, load_settings
from roomgate.shared.errors import ConfigError
from roomgate.shared.log_setup import configure_logging

app = typer.Typer(help="roomgate: authenticated JSON API gateway with realtime rooms")
console = Console()


def load_routes(target: str) -> list[RouteDescriptor]:
    """Import `package.module:attribute` and return it as a list of routes."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise typer.BadParameter(f"expected 'module:attribute', got {target!r}")
    module = importlib.import_module(module_name)
    routes = getattr(module, attribute)
    return list(routes() if callable(routes) else routes)


def _settings() -> Settings:
    settings = load_settings()
    configure_logging(settings.LOG_LEVEL, settings.DEBUG)
    return settings


@app.command()
def server(
    routes: str = typer.Option(..., help="Route list to serve, as 'module:attribute'"),
    host: str | None = typer.Option(None, help="Interface to bind, defaults to VAR_HOST"),
    port: int | None = typer.Option(None, help="Port to bind, defaults to VAR_PORT"),
):
    """Start the gateway with Uvicorn."""
    import uvicorn

    from roomgate.server.main import create_app

    settings = _settings()
    try:
        web_app = create_app(settings.to_config(), load_routes(routes))
    except ConfigError as e:
        logger.error(f"Startup aborted: {e}")
        raise typer.Exit(1)

    bind_host, bind_port = host or settings.HOST, port or settings.PORT
    typer.echo(f"Starting server on {bind_host}:{bind_port}...")
    uvicorn.run(web_app, host=bind_host, port=bind_port, log_level=settings.LOG_LEVEL.lower())


@app.command("routes")
def show_routes(routes: str = typer.Option(..., help="Route list, as 'module:attribute'")):
    """Print the route table the server would register."""
    table = Table(title="Routes")
    table.add_column("Method", style="cyan")
    table.add_column("Path")
    table.add_column("Auth")
    table.add_column("Schema fields")
    for route in load_routes(routes):
        fields = ", ".join(route.schema) if route.schema else "-"
        table.add_row(route.method, route.path, "yes" if route.require_auth else "no", fields)
    console.print(table)


@app.command()
def listen(
    token: str = typer.Option(..., envvar="ROOMGATE_SESSION", help="Session token sent as the cookie"),
    room: list[str] = typer.Option([], help="Room to join, repeatable"),
    url: str | None = typer.Option(None, help="Server base URL"),
):
    """Connect to the realtime channel and print every event received."""
    settings = _settings()
    client = _client(settings, token, url)

    async def print_frame(event: str, data) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        console.print(f"[dim]{ts}[/dim] [bold cyan]{event}[/bold cyan] {data}")

    client.on_frame = print_frame
    try:
        asyncio.run(client.listen(room))
    except KeyboardInterrupt:
        pass


@app.command()
def send(
    to: str = typer.Option(..., help="Target room"),
    message: str = typer.Option(..., help="Message text"),
    token: str = typer.Option(..., envvar="ROOMGATE_SESSION", help="Session token sent as the cookie"),
    url: str | None = typer.Option(None, help="Server base URL"),
):
    """Send a single message to a room."""
    settings = _settings()
    asyncio.run(_client(settings, token, url).send_message(to, message))


def _client(settings: Settings, token: str, url: str | None) -> RealtimeClient:
    if not settings.ORIGIN:
        logger.error("VAR_ORIGIN is missing")
        raise typer.Exit(1)
    return RealtimeClient(
        url or f"http://{settings.HOST}:{settings.PORT}",
        settings.COOKIE_NAME,
        token,
        settings.ORIGIN,
        settings.REALTIME_PATH,
    )


if __name__ == "__main__":
    app()
