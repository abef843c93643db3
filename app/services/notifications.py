"""Best-effort "export ready" broadcasts.

With realtime enabled the Supabase RPC ``notify_export_ready`` fans the
event out on the ``export_channel`` broadcast channel. Otherwise the event
is only logged and clients poll ``GET /v1/exports/{id}``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
import uuid

from app.core.metrics import record_notification
from app.core.settings import Settings


logger = logging.getLogger(__name__)


class ExportNotifier(Protocol):
    def export_ready(self, export_id: uuid.UUID, glb_url: str | None) -> None: ...


class LogNotifier:
    def export_ready(self, export_id: uuid.UUID, glb_url: str | None) -> None:
        logger.info("export_ready", extra={"export_id": str(export_id), "glb_url": glb_url})


class SupabaseRpcNotifier:
    def __init__(self, client: Any, function_name: str) -> None:
        self._client = client
        self._function_name = function_name

    def export_ready(self, export_id: uuid.UUID, glb_url: str | None) -> None:
        self._client.rpc(
            self._function_name,
            {"export_id": str(export_id), "glb_url": glb_url},
        ).execute()
        logger.info("export_ready_broadcast", extra={"export_id": str(export_id)})


def notify_ready(notifier: ExportNotifier, export_id: uuid.UUID, glb_url: str | None) -> bool:
    """Send the notification; failures are logged and reported as False."""
    try:
        notifier.export_ready(export_id, glb_url)
    except Exception:  # noqa: BLE001
        logger.exception("export_notification_failed", extra={"export_id": str(export_id)})
        record_notification("error")
        return False
    record_notification("success")
    return True


_notifier: ExportNotifier | None = None


def build_notifier(config: Settings) -> ExportNotifier:
    if config.realtime_notify_enabled:
        from app.services.supabase_client import get_supabase

        return SupabaseRpcNotifier(get_supabase(config), config.realtime_notify_rpc)
    return LogNotifier()


def init_notifier(config: Settings) -> None:
    global _notifier
    _notifier = build_notifier(config)


def set_notifier(notifier: ExportNotifier) -> None:
    global _notifier
    _notifier = notifier


def get_notifier() -> ExportNotifier:
    if _notifier is None:
        raise RuntimeError("Notifier is not initialized")
    return _notifier
