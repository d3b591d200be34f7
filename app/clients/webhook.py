import httpx
import structlog

from app.models.errors import DeliveryError
from app.models.model import ConversionEvent, ConversionPayload
from app.utils.dates import format_timestamp

logger = structlog.get_logger(__name__)

HTTP_TIMEOUT = 30.0


def build_payload(event: ConversionEvent, gclid: str, action_map: dict[int, str]) -> ConversionPayload:
    """Build the webhook body for a resolved conversion without sending it."""
    return ConversionPayload(
        action_id=event.action_id,
        gclid=gclid,
        conversion_name=action_map[event.action_id],
        timestamp=format_timestamp(event.sent_at or event.timestamp),
    )


class WebhookClient:
    """POSTs conversion payloads to the attribution webhook (e.g. a Zapier catch hook)."""

    def __init__(self, url: str, transport: httpx.BaseTransport | None = None) -> None:
        self.url = url
        self.client = httpx.Client(
            timeout=HTTP_TIMEOUT,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def close(self) -> None:
        self.client.close()

    def post_conversion(self, payload: ConversionPayload) -> int:
        """Send one conversion. Returns the response status code."""
        body = payload.model_dump()
        try:
            response = self.client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise DeliveryError(
                f"Webhook returned {exc.response.status_code} for action {payload.action_id}"
            ) from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Webhook delivery failed: {exc}") from exc

        logger.info("write_to_webhook", payload=body, status_code=response.status_code)
        return response.status_code
