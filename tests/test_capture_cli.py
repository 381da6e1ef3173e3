from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

from typer.testing import CliRunner

from scripts import capture_cli

runner = CliRunner()


class DummyResponse:
    def __init__(self, status_code: int, payload=None, text: str = "") -> None:
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):  # noqa: ANN001
        return self._payload or {}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise RuntimeError(self.text or f"status {self.status_code}")


class FakeClient:
    def __init__(self, polls: list[dict[str, Any]], *, submit_status: int = 202) -> None:
        self.polls = polls
        self.submit_status = submit_status
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self.gets: list[str] = []

    def __enter__(self) -> "FakeClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        return None

    def post(self, url: str, json=None):  # noqa: ANN001
        self.posts.append((url, json))
        if self.submit_status >= 400:
            return DummyResponse(self.submit_status, text="invalid url")
        return DummyResponse(self.submit_status, {"jobId": 7, "status": "waiting"})

    def get(self, url: str):  # noqa: ANN001
        self.gets.append(url)
        if url == "/api/queue/stats":
            return DummyResponse(200, {"waiting": 1, "active": 1, "completed": 4, "failed": 2, "total": 8})
        return DummyResponse(200, self.polls.pop(0))


def _completed_job() -> dict[str, Any]:
    png = base64.b64encode(b"\x89PNG desktop").decode()
    return {
        "jobId": 7,
        "status": "completed",
        "progress": 100,
        "result": {
            "screenshots": {
                "desktop": {"base64": png, "format": "png"},
                "mobile": [{"device": "iPhone 12", "base64": png, "format": "png"}],
            },
            "analysis": {
                "desktop": {
                    "fonts": {"unique": ["Inter"], "detailed": [], "totalCount": 1},
                    "colors": None,
                    "pixelHistogram": {
                        "totalPixels": 10,
                        "colors": [{"r": 255, "g": 255, "b": 255, "count": 10, "percentage": 100.0}],
                    },
                },
                "mobile": [],
            },
        },
    }


def test_capture_submits_polls_and_writes_screenshots(monkeypatch, tmp_path: Path):
    client = FakeClient([{"jobId": 7, "status": "active", "progress": 50}, _completed_job()])
    monkeypatch.setattr(capture_cli, "_client", lambda settings: client)
    monkeypatch.setattr(capture_cli.time, "sleep", lambda _: None)

    result = runner.invoke(
        capture_cli.cli,
        ["capture", "https://example.com", "--device", "iPhone 12", "--mode", "both", "--full-page", "--out", str(tmp_path)],
    )

    assert result.exit_code == 0, result.output
    url, body = client.posts[0]
    assert url == "/api/screenshot-async"
    assert body["url"] == "https://example.com"
    assert body["options"]["fullPage"] is True
    assert body["options"]["mobileDevices"] == ["iPhone 12"]
    assert client.gets == ["/api/job/7", "/api/job/7"]
    assert (tmp_path / "desktop.png").read_bytes() == b"\x89PNG desktop"
    assert (tmp_path / "iphone-12.png").exists()
    assert "Inter" in result.output
    assert "rgb(255, 255, 255)" in result.output


def test_capture_reports_failed_job(monkeypatch):
    failed = {"jobId": 7, "status": "failed", "progress": 25, "error": "Navigation to https://slow.example timed out"}
    monkeypatch.setattr(capture_cli, "_client", lambda settings: FakeClient([failed]))

    result = runner.invoke(capture_cli.cli, ["capture", "https://slow.example"])

    assert result.exit_code == 1
    assert "timed out" in result.output


def test_capture_surfaces_rejected_submission(monkeypatch):
    monkeypatch.setattr(capture_cli, "_client", lambda settings: FakeClient([], submit_status=422))

    result = runner.invoke(capture_cli.cli, ["capture", "not-a-url"])

    assert result.exit_code == 1
    assert "422" in result.output


def test_stats_prints_counts(monkeypatch):
    monkeypatch.setattr(capture_cli, "_client", lambda settings: FakeClient([]))

    result = runner.invoke(capture_cli.cli, ["stats"])

    assert result.exit_code == 0
    assert "completed" in result.output
    assert "8" in result.output


def test_show_elides_image_data():
    job = _completed_job()

    elided = capture_cli._elide_images(job)

    assert elided["result"]["screenshots"]["desktop"]["base64"].startswith("<")
    assert elided["result"]["analysis"]["desktop"]["fonts"]["unique"] == ["Inter"]
