import os

import structlog
from aws_lambda_powertools.utilities.typing import LambdaContext

from app.models.model import SyncSettings
from app.services.secrets_service import SecretsService
from app.services.sync import get_last_result, sync
from app.utils.observability import aws_xray_tracer

logger = structlog.get_logger(__name__)

DEFAULT_SECRET_NAME = "posthog-gclid-sync"

_settings: SyncSettings | None = None


def setup(secret_name: str | None = None, secrets_service: SecretsService | None = None) -> SyncSettings:
    """
    One-time setup: load and validate settings.
    Raises ConfigurationError so a misconfigured job never runs a tick.
    """
    global _settings
    secret_name = secret_name or os.getenv("SYNC_SECRET_NAME", DEFAULT_SECRET_NAME)
    secrets = (secrets_service or SecretsService()).get_secret(secret_name)
    _settings = SyncSettings.from_env(secrets)
    logger.info(
        "configurations_loaded",
        secret_name=secret_name,
        action_ids=list(_settings.action_map),
        delivery_failure_policy=_settings.delivery_failure_policy,
    )
    return _settings


@aws_xray_tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext):
    """
    Lambda entry point, scheduled every minute via EventBridge.

    Event payload:
        {
            "dry_run": false    # optional, default false
        }
    """
    settings = _settings or setup()
    status = sync(settings, dry_run=bool((event or {}).get("dry_run", False)))
    result = get_last_result()
    return {
        "status": "ok" if status == 0 else "error",
        "result": result.model_dump(mode="json") if status == 0 and result else None,
    }
