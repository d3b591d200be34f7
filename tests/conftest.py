"""Shared pytest fixtures for the gclid conversion sync."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from app.models.model import SyncSettings

POSTHOG_URL = "https://app.posthog.test"
WEBHOOK_URL = "https://hooks.zapier.test/hooks/catch/123/abc/"


class MemoryWatermarkStore:
    """Dict-backed stand-in for the S3 watermark store."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(initial or {})
        self.writes: list[tuple[str, str]] = []

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.writes.append((key, value))
        self.data[key] = value


class FakePostHogAPI:
    """Routes httpx requests to canned event pages, persons and a webhook sink."""

    def __init__(self) -> None:
        self.pages: dict[int, list[list[dict[str, Any]]]] = {}
        self.persons: dict[str, list[dict[str, Any]]] = {}
        self.page_failures: dict[tuple[int, int], int] = {}
        self.webhook_status = 200
        self.requests: list[httpx.Request] = []
        self.deliveries: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url

        if str(url).startswith(WEBHOOK_URL):
            self.deliveries.append(json.loads(request.content))
            return httpx.Response(self.webhook_status, json={"status": "success"})

        if url.path == "/api/event/":
            action_id = int(url.params["action_id"])
            page = int(url.params.get("page", "0"))
            status = self.page_failures.get((action_id, page))
            if status:
                return httpx.Response(status, json={"detail": "boom"})
            pages = self.pages.get(action_id, [[]])
            next_url = None
            if page + 1 < len(pages):
                next_url = f"{POSTHOG_URL}/api/event/?action_id={action_id}&page={page + 1}"
            return httpx.Response(200, json={"results": pages[page], "next": next_url})

        if url.path == "/api/person/":
            distinct_id = url.params["distinct_id"]
            return httpx.Response(200, json={"results": self.persons.get(distinct_id, [])})

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def requests_for(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == path and not str(r.url).startswith(WEBHOOK_URL)]


@pytest.fixture
def secrets() -> dict[str, Any]:
    """Secret payload as stored in Secrets Manager."""
    return {
        "posthog_url": POSTHOG_URL + "/",
        "posthog_api_token": "phx_test_api_token",
        "posthog_project_token": "phc_project_token",
        "webhook_url": WEBHOOK_URL,
        "action_map": "11036:Sign up - cloud,11037:Sign up - self-hosted free",
        "default_start_date": "2021-07-01",
        "state_bucket": "gclid-sync-state",
    }


@pytest.fixture
def settings(secrets: dict[str, Any]) -> SyncSettings:
    return SyncSettings.from_env(secrets)


@pytest.fixture
def store() -> MemoryWatermarkStore:
    return MemoryWatermarkStore()


@pytest.fixture
def api() -> FakePostHogAPI:
    return FakePostHogAPI()


def make_event(
    distinct_id: str,
    properties: dict[str, Any] | None = None,
    timestamp: str = "2021-07-01T10:00:00.123Z",
    **extra: Any,
) -> dict[str, Any]:
    """Raw event row as returned by /api/event/."""
    return {
        "id": f"evt-{distinct_id}-{timestamp}",
        "distinct_id": distinct_id,
        "properties": properties or {},
        "timestamp": timestamp,
        **extra,
    }
