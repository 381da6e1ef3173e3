"""Launcher for the Site Capture API using uvicorn."""

from __future__ import annotations

from typing import Optional

import typer
import uvicorn

from sitecapture.settings import load_config

app = typer.Typer(help="Run the Site Capture FastAPI app with uvicorn.", add_completion=False)


@app.callback(invoke_without_command=True)
def serve(  # type: ignore[no-untyped-def]
    host: Optional[str] = typer.Option(None, "--host", help="Bind host."),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port."),
    app_path: Optional[str] = typer.Option(
        None, "--app", help="ASGI import path (default sitecapture.main:app)."
    ),
    reload: Optional[bool] = typer.Option(None, "--reload/--no-reload", help="Enable auto-reload."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Log level."),
    env_file: str = typer.Option(".env", "--env-file", help="python-decouple .env file."),
) -> None:
    """Launch the FastAPI app.

    Always a single worker process: the job registry lives in process memory.
    """

    cfg = load_config(env_file)
    try:
        bind_port = port or cfg("PORT", cast=int, default=8000)
    except ValueError as exc:
        raise typer.BadParameter("PORT must be an integer", param_hint="--port") from exc
    if reload is None:
        reload = cfg("SITECAPTURE_SERVER_RELOAD", cast=bool, default=False)

    uvicorn.run(
        app_path or cfg("APP_MODULE", default="sitecapture.main:app"),
        host=host or cfg("HOST", default="127.0.0.1"),
        port=bind_port,
        reload=reload,
        workers=1,
        log_level=(log_level or cfg("SITECAPTURE_LOG_LEVEL", default="info")).lower(),
    )


def main() -> None:
    app()


if __name__ == "__main__":
    main()
