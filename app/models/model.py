from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from app.models.errors import ConfigurationError
from app.utils.dates import parse_iso_datetime

DEFAULT_STATE_KEY = "gclid-sync/googleAdsLastQueryStartTime"
DEFAULT_CATCHUP_DAYS = 1
DEFAULT_PAGE_LIMIT = 1000
DELIVERY_POLICIES = ("warn", "abort")


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ConversionEvent(BaseModel):
    """One event row from the PostHog events API, tagged with its action id."""
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    distinct_id: str
    properties: dict[str, Any] = Field(default_factory=dict)
    person: dict[str, Any] | None = None  # attached person snapshot, if any
    timestamp: Any = None
    sent_at: Any = None
    action_id: int

    @property
    def person_properties(self) -> dict[str, Any]:
        if not self.person:
            return {}
        return self.person.get("properties") or {}


class ConversionPayload(BaseModel):
    """Body POSTed to the webhook for each matched conversion."""
    action_id: int
    gclid: str
    conversion_name: str
    timestamp: Any


class SyncResult(BaseModel):
    """Counters reported at the end of a tick."""
    window_start: datetime
    window_end: datetime
    events: int = 0
    processed: int = 0
    writes: int = 0
    skipped: int = 0
    failed_deliveries: int = 0
    lookups: int = 0
    dry_run: bool = False
    watermark_updated: bool = False


# =============================================================================
# CONFIGURATION
# =============================================================================

def parse_action_map(raw: str) -> dict[int, str]:
    """Parse '11036:Sign up - cloud,11037:Sign up - self-hosted' into {id: name}."""
    action_map: dict[int, str] = {}
    for chunk in (raw or "").split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        action_id, sep, name = chunk.partition(":")
        if not sep or not name.strip():
            raise ConfigurationError(f"Invalid action_map entry '{chunk}', expected 'id:name'")
        try:
            key = int(action_id.strip())
        except ValueError as e:
            raise ConfigurationError(f"Invalid action id '{action_id.strip()}' in action_map") from e
        if key in action_map:
            raise ConfigurationError(f"Duplicate action id {key} in action_map")
        action_map[key] = name.strip()

    if not action_map:
        raise ConfigurationError("action_map must contain at least one 'id:name' pair")
    return action_map


def _positive_int(secrets: dict, key: str, default: int) -> int:
    raw = secrets.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e
    if value < 1:
        raise ConfigurationError(f"{key} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class SyncSettings:
    """Process-wide settings, built once at setup and passed into every tick."""
    posthog_url: str
    api_token: str
    project_token: str
    webhook_url: str
    action_map: dict[int, str]
    default_start: datetime
    state_bucket: str
    state_key: str = DEFAULT_STATE_KEY
    catchup_days: int = DEFAULT_CATCHUP_DAYS
    page_limit: int = DEFAULT_PAGE_LIMIT
    delivery_failure_policy: str = "warn"

    @classmethod
    def from_env(cls, secrets: dict) -> "SyncSettings":
        required = (
            "posthog_url",
            "posthog_api_token",
            "posthog_project_token",
            "webhook_url",
            "action_map",
            "default_start_date",
            "state_bucket",
        )
        missing = [key for key in required if not str(secrets.get(key) or "").strip()]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        webhook_url = str(secrets["webhook_url"]).strip()
        if urlparse(webhook_url).scheme not in ("http", "https"):
            raise ConfigurationError(f"webhook_url must be an http(s) URL, got {webhook_url!r}")

        try:
            default_start = parse_iso_datetime(str(secrets["default_start_date"]))
        except ValueError as e:
            raise ConfigurationError(
                f"default_start_date is not an ISO date: {secrets['default_start_date']!r}"
            ) from e

        policy = str(secrets.get("delivery_failure_policy") or "warn").strip().lower()
        if policy not in DELIVERY_POLICIES:
            raise ConfigurationError(
                f"delivery_failure_policy must be one of {DELIVERY_POLICIES}, got {policy!r}"
            )

        return cls(
            posthog_url=str(secrets["posthog_url"]).strip().rstrip("/"),
            api_token=str(secrets["posthog_api_token"]).strip(),
            project_token=str(secrets["posthog_project_token"]).strip(),
            webhook_url=webhook_url,
            action_map=parse_action_map(str(secrets["action_map"])),
            default_start=default_start,
            state_bucket=str(secrets["state_bucket"]).strip(),
            state_key=str(secrets.get("state_key") or DEFAULT_STATE_KEY).strip(),
            catchup_days=_positive_int(secrets, "catchup_days", DEFAULT_CATCHUP_DAYS),
            page_limit=_positive_int(secrets, "page_limit", DEFAULT_PAGE_LIMIT),
            delivery_failure_policy=policy,
        )

    @property
    def catchup(self) -> timedelta:
        return timedelta(days=self.catchup_days)
