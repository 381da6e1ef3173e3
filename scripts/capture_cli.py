#!/usr/bin/env python3
"""Command-line client for the Site Capture API."""

from __future__ import annotations

import base64
import json
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import httpx
import typer
from decouple import Config as DecoupleConfig, RepositoryEnv
from rich.console import Console
from rich.table import Table

console = Console()
cli = typer.Typer(help="Submit capture jobs and inspect their results")

_TERMINAL_STATES = {"completed", "failed"}


@dataclass
class APISettings:
    base_url: str
    poll_interval: float


def _load_env_settings() -> APISettings:
    env_path = Path(".env")
    if env_path.exists():
        config = DecoupleConfig(RepositoryEnv(str(env_path)))
        return APISettings(
            base_url=config("API_BASE_URL", default="http://localhost:8000"),
            poll_interval=config("CLI_POLL_INTERVAL", cast=float, default=2.0),
        )
    return APISettings(base_url="http://localhost:8000", poll_interval=2.0)


def _resolve_settings(override_base: Optional[str]) -> APISettings:
    settings = _load_env_settings()
    if override_base:
        settings.base_url = override_base
    return settings


def _client(settings: APISettings) -> httpx.Client:
    return httpx.Client(
        base_url=settings.base_url,
        timeout=httpx.Timeout(connect=10.0, read=60.0, write=30.0, pool=10.0),
    )


def _wait_for_job(
    client: httpx.Client,
    job_id: int,
    *,
    interval: float,
    timeout: float,
) -> dict[str, Any]:
    deadline = time.monotonic() + timeout
    last_progress = -1
    while True:
        response = client.get(f"/api/job/{job_id}")
        response.raise_for_status()
        job = response.json()
        progress = int(job.get("progress") or 0)
        if progress != last_progress:
            console.print(f"[cyan]job {job_id}[/] {job.get('status')} {progress}%")
            last_progress = progress
        if job.get("status") in _TERMINAL_STATES:
            return job
        if time.monotonic() >= deadline:
            console.print(f"[yellow]Gave up waiting for job {job_id} after {timeout:.0f}s[/]")
            raise typer.Exit(code=2)
        time.sleep(interval)


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-") or "device"


def _write_screenshots(result: dict[str, Any], out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    screenshots = result.get("screenshots") or {}
    desktop = screenshots.get("desktop")
    if desktop and desktop.get("base64"):
        path = out_dir / "desktop.png"
        path.write_bytes(base64.b64decode(desktop["base64"]))
        written.append(path)
    for entry in screenshots.get("mobile") or []:
        if not entry.get("base64"):
            continue
        path = out_dir / f"{_slug(str(entry.get('device')))}.png"
        path.write_bytes(base64.b64decode(entry["base64"]))
        written.append(path)
    return written


def _print_analysis(label: str, analysis: dict[str, Any] | None) -> None:
    if not analysis:
        return
    histogram = analysis.get("pixelHistogram")
    if histogram and histogram.get("colors"):
        table = Table("Color", "Share", "Pixels", title=f"{label}: top pixel colors")
        for bucket in histogram["colors"][:10]:
            table.add_row(
                f"rgb({bucket['r']}, {bucket['g']}, {bucket['b']})",
                f"{bucket['percentage']:.1f}%",
                str(bucket["count"]),
            )
        console.print(table)
    fonts = analysis.get("fonts")
    if fonts and fonts.get("unique"):
        console.print(f"[bold]{label} fonts:[/] {', '.join(fonts['unique'])}")


@cli.command()
def capture(
    url: str = typer.Argument(..., help="URL to capture"),
    api_base: Optional[str] = typer.Option(None, help="Override API base URL"),
    mode: str = typer.Option("both", "--mode", help="desktop, mobile or both"),
    device: Optional[list[str]] = typer.Option(None, "--device", help="Device profile name (repeatable)"),
    full_page: bool = typer.Option(False, "--full-page/--viewport", help="Capture the full scrollable page"),
    width: int = typer.Option(1920, "--width"),
    height: int = typer.Option(1080, "--height"),
    out: Optional[Path] = typer.Option(None, "--out", help="Directory for PNG screenshots"),
    timeout: float = typer.Option(600.0, "--timeout", help="Seconds to wait for the job"),
    json_output: bool = typer.Option(False, "--json", help="Print the final job payload as JSON"),
) -> None:
    """Submit URL, wait for the job to finish and summarize the result."""

    settings = _resolve_settings(api_base)
    options: dict[str, Any] = {
        "width": width,
        "height": height,
        "fullPage": full_page,
        "captureMode": mode,
    }
    if device:
        options["mobileDevices"] = list(device)

    with _client(settings) as client:
        response = client.post("/api/screenshot-async", json={"url": url, "options": options})
        if response.status_code >= 400:
            console.print(f"[red]Submission failed ({response.status_code})[/]: {response.text}")
            raise typer.Exit(code=1)
        job_id = response.json()["jobId"]
        console.print(f"Queued job [bold]{job_id}[/] for {url}")
        job = _wait_for_job(client, job_id, interval=settings.poll_interval, timeout=timeout)

    if json_output:
        console.print_json(data=job)
    if job.get("status") == "failed":
        console.print(f"[red]Job {job_id} failed:[/] {job.get('error')}")
        raise typer.Exit(code=1)

    result = job.get("result") or {}
    analysis = result.get("analysis") or {}
    _print_analysis("desktop", analysis.get("desktop"))
    for entry in analysis.get("mobile") or []:
        _print_analysis(str(entry.get("device")), entry)
    if out is not None:
        for path in _write_screenshots(result, out):
            console.print(f"[green]wrote[/] {path}")


@cli.command()
def stats(api_base: Optional[str] = typer.Option(None, help="Override API base URL")) -> None:
    """Show queue counts by status."""

    settings = _resolve_settings(api_base)
    with _client(settings) as client:
        response = client.get("/api/queue/stats")
        response.raise_for_status()
        data = response.json()
    table = Table("Status", "Jobs", title="Queue")
    for key in ("waiting", "active", "completed", "failed", "total"):
        table.add_row(key, str(data.get(key, 0)))
    console.print(table)


@cli.command()
def show(
    job_id: int = typer.Argument(..., help="Job identifier"),
    api_base: Optional[str] = typer.Option(None, help="Override API base URL"),
) -> None:
    """Print the raw poll payload for a job (screenshots elided)."""

    settings = _resolve_settings(api_base)
    with _client(settings) as client:
        response = client.get(f"/api/job/{job_id}")
        if response.status_code == 404:
            console.print(f"[red]Job {job_id} not found[/]")
            raise typer.Exit(code=1)
        response.raise_for_status()
        job = response.json()
    console.print_json(json.dumps(_elide_images(job)))


def _elide_images(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: (f"<{len(item)} chars>" if key == "base64" and isinstance(item, str) else _elide_images(item))
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_elide_images(item) for item in value]
    return value


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
