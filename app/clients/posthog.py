from collections.abc import Iterable, Iterator
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from app.models.errors import FetchError
from app.models.model import ConversionEvent, SyncSettings
from app.services.window import QueryWindow

logger = structlog.get_logger(__name__)

HTTP_TIMEOUT = 30.0


class PostHogAPIClient:
    """Reads conversion events and persons from the PostHog REST API."""

    def __init__(self, settings: SyncSettings, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings
        self.client = httpx.Client(
            timeout=HTTP_TIMEOUT,
            transport=transport,
            headers={
                "Authorization": f"Bearer {settings.api_token}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
        )

    def close(self) -> None:
        self.client.close()

    def _get(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        try:
            response = self.client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "posthog_request_failed",
                url=str(exc.request.url),
                status_code=exc.response.status_code,
            )
            raise FetchError(f"PostHog returned {exc.response.status_code} for {exc.request.url}") from exc
        except httpx.HTTPError as exc:
            logger.error("posthog_request_error", url=url, error=str(exc))
            raise FetchError(f"PostHog request to {url} failed: {exc}") from exc

        try:
            data = response.json()
        except ValueError as exc:
            raise FetchError(f"PostHog returned a non-JSON body for {response.request.url}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("results"), list):
            raise FetchError(f"PostHog response for {response.request.url} has no 'results' list")
        return data

    def iter_event_pages(self, action_id: int, window: QueryWindow) -> Iterator[list[dict[str, Any]]]:
        """Yield one list of raw events per page, following `next` until it runs out."""
        url: str | None = f"{self.settings.posthog_url}/api/event/"
        params: dict[str, Any] | None = {
            "limit": self.settings.page_limit,
            "token": self.settings.project_token,
            "action_id": action_id,
            "after": window.start.isoformat(),
            "before": window.end.isoformat(),
        }

        while url:
            data = self._get(url, params)
            results = data["results"]
            logger.info(
                "events_page_loaded",
                action_id=action_id,
                results=len(results),
                next=data.get("next"),
                period=f"{window.start.isoformat()} - {window.end.isoformat()}",
            )
            yield results
            # the cursor URL already carries every query parameter
            url = data.get("next")
            params = None

    def fetch_events(self, action_ids: Iterable[int], window: QueryWindow) -> list[ConversionEvent]:
        """Load every page for every action id into one batch, tagged by action id."""
        events: list[ConversionEvent] = []
        for action_id in action_ids:
            for page in self.iter_event_pages(action_id, window):
                for raw in page:
                    try:
                        events.append(ConversionEvent.model_validate({**raw, "action_id": action_id}))
                    except (ValidationError, TypeError) as exc:
                        raise FetchError(f"Malformed event for action {action_id}: {exc}") from exc

        logger.info("conversion_events_loaded", count=len(events))
        return events

    def get_persons(self, distinct_id: str) -> list[dict[str, Any]]:
        """Return the person records matching a distinct id."""
        logger.info("fetching_person", distinct_id=distinct_id)
        data = self._get(
            f"{self.settings.posthog_url}/api/person/",
            {"distinct_id": distinct_id, "token": self.settings.project_token},
        )
        persons = data["results"]
        if not all(isinstance(person, dict) for person in persons):
            raise FetchError(f"Malformed person record for distinct_id {distinct_id}")
        return persons
