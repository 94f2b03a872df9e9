from __future__ import annotations

import json
from typing import Optional

import typer
import uvicorn

from edge_api.core.config import Settings, get_settings


cli = typer.Typer(name="edge-api", help="EDGE completion endpoint")
config_cli = typer.Typer(help="Configuration")

cli.add_typer(config_cli, name="config")


@cli.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Run the FastAPI server."""
    settings = get_settings()
    uvicorn.run(
        "edge_api.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@config_cli.command("print")
def config_print() -> None:
    """Print the effective settings (the token is masked)."""
    data = Settings().model_dump()
    if data.get("hf_token"):
        data["hf_token"] = "***"
    typer.echo(json.dumps(data, ensure_ascii=False, default=str))


if __name__ == "__main__":
    cli()
