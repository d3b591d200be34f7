from datetime import datetime, timezone
from typing import Any

import httpx
import structlog

from app.clients.posthog import PostHogAPIClient
from app.clients.webhook import WebhookClient, build_payload
from app.models.errors import DeliveryError
from app.models.model import ConversionEvent, SyncResult, SyncSettings
from app.services.resolver import GclidResolver
from app.services.watermark import S3WatermarkStore, WatermarkStore, load_watermark, save_watermark
from app.services.window import QueryWindow, compute_window
from app.utils.dates import to_utc
from app.utils.utils import save_json

logger = structlog.get_logger(__name__)

_last_result: SyncResult | None = None


def get_last_result() -> SyncResult | None:
    """Counters from the most recent successful tick in this process."""
    return _last_result


# =============================================================================
# PHASE 1: Work out the query window from the stored watermark
# =============================================================================

def run_phase_1(store: WatermarkStore, settings: SyncSettings, now: datetime) -> QueryWindow:
    logger.info("phase_1_starting")

    watermark = load_watermark(store, settings.state_key)
    window = compute_window(watermark, settings.default_start, settings.catchup, now)

    logger.info(
        "phase_1_complete",
        watermark=watermark.isoformat() if watermark else None,
        window_start=window.start.isoformat(),
        window_end=window.end.isoformat(),
        empty=window.is_empty,
    )
    return window


# =============================================================================
# PHASE 2: Fetch conversion events for every configured action
# =============================================================================

def run_phase_2(
    posthog_client: PostHogAPIClient,
    settings: SyncSettings,
    window: QueryWindow,
) -> list[ConversionEvent]:
    """Batch-load every page for every action id. Any fetch failure aborts the tick."""
    logger.info("phase_2_starting", action_ids=list(settings.action_map))

    if window.is_empty:
        logger.info("phase_2_skipped_empty_window", window_start=window.start.isoformat())
        return []

    events = posthog_client.fetch_events(settings.action_map.keys(), window)

    logger.info("phase_2_complete", count=len(events))
    return events


# =============================================================================
# PHASE 3: Resolve gclids and deliver conversions (or dry run)
# =============================================================================

def run_phase_3(
    events: list[ConversionEvent],
    resolver: GclidResolver,
    webhook_client: WebhookClient,
    settings: SyncSettings,
    result: SyncResult,
    dry_run: bool,
) -> list[dict[str, Any]]:
    """
    Process events in fetch order. Events without a gclid are skipped.
    Dry run: payloads are collected and returned, nothing is POSTed.
    """
    logger.info("phase_3_starting", count=len(events), dry_run=dry_run)

    preview: list[dict[str, Any]] = []
    for event in events:
        logger.info(
            "processing_progress",
            processed=result.processed,
            total=len(events),
            writes=result.writes,
        )

        gclid = resolver.resolve(event)
        if not gclid:
            result.skipped += 1
            result.processed += 1
            continue

        payload = build_payload(event, gclid, settings.action_map)
        if dry_run:
            preview.append({"_distinct_id": event.distinct_id, "payload": payload.model_dump()})
        else:
            try:
                webhook_client.post_conversion(payload)
                result.writes += 1
            except DeliveryError as e:
                if settings.delivery_failure_policy == "abort":
                    raise
                result.failed_deliveries += 1
                logger.warning(
                    "webhook_delivery_failed",
                    distinct_id=event.distinct_id,
                    action_id=event.action_id,
                    error=str(e),
                )
        result.processed += 1

    result.lookups = resolver.lookups
    logger.info(
        "phase_3_complete",
        processed=result.processed,
        writes=result.writes,
        skipped=result.skipped,
        failed_deliveries=result.failed_deliveries,
        lookups=result.lookups,
    )
    return preview


# =============================================================================
# PHASE 4: Advance the watermark
# =============================================================================

def run_phase_4(store: WatermarkStore, settings: SyncSettings, window: QueryWindow, result: SyncResult) -> None:
    """Only reached once every event in the window has been handled."""
    save_watermark(store, settings.state_key, window.end)
    result.watermark_updated = True
    logger.info("phase_4_complete", updated_time_to=window.end.isoformat())


# =============================================================================
# MAIN PIPELINE
# =============================================================================

def sync(
    settings: SyncSettings,
    store: WatermarkStore | None = None,
    *,
    now: datetime | None = None,
    dry_run: bool = False,
    transport: httpx.BaseTransport | None = None,
) -> int:
    """
    Run one tick of the gclid conversion sync.
    Returns 0 on success, 1 on failure. The watermark is untouched on failure,
    so the next tick retries the same window.
    """
    global _last_result

    run_id = datetime.now().strftime("%Y%m%d_%H%M%S")
    now = to_utc(now or datetime.now(timezone.utc))
    logger.info("pipeline_starting", run_id=run_id, dry_run=dry_run, now=now.isoformat())

    if store is None:
        store = S3WatermarkStore(settings.state_bucket)

    posthog_client = PostHogAPIClient(settings, transport=transport)
    webhook_client = WebhookClient(settings.webhook_url, transport=transport)
    resolver = GclidResolver(posthog_client.get_persons)

    try:
        # Phase 1: Window
        window = run_phase_1(store, settings, now)
        result = SyncResult(window_start=window.start, window_end=window.end, dry_run=dry_run)

        # Phase 2: Events
        events = run_phase_2(posthog_client, settings, window)
        result.events = len(events)

        # Phase 3: Resolve + deliver
        preview = run_phase_3(events, resolver, webhook_client, settings, result, dry_run)

        # Phase 4: Watermark (skipped for dry runs)
        if dry_run:
            save_json(preview, "dry_run_preview.json", settings.state_bucket)
            logger.info("dry_run_complete", would_write=len(preview))
        else:
            run_phase_4(store, settings, window, result)

        _last_result = result
        logger.info("pipeline_complete", run_id=run_id, **result.model_dump(mode="json"))
        return 0

    except Exception as e:
        logger.error("pipeline_fatal_error", run_id=run_id, error=str(e), exc_info=True)
        return 1

    finally:
        posthog_client.close()
        webhook_client.close()
