"""Notification delivery for finished runs.

Every ``cloudEvent`` output resource of a run is a notification target.
The dispatcher keeps one :class:`NotificationDeliveryRecord` per target
on the run's status and, once the run is terminal, sends each target one
CloudEvents-shaped JSON event::

    record lifecycle (max_attempts = N)

    Unknown/0 ──send ok──► Sent/1                       (never sent again)
        │
        └──send fails──► Unknown/1 ─ ... ─► Failed/N    (gives up)

Attempts increase by exactly one per send.  A failing target never stops
the others from being tried in the same call.  Records are plain status
data, so a later reconcile pass (for example after a controller restart)
picks up where the previous one stopped.

Tags:
    notifications, cloudevents, webhook, delivery, steprun
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request
import uuid
from datetime import UTC, datetime
from typing import Any

from steprun.core.errors import DeliveryError
from steprun.core.logging import get_logger
from steprun.models.run import (
    ConditionStatus,
    DeliveryStatus,
    NotificationDeliveryRecord,
    Run,
)
from steprun.protocols import DeliveryResult, EventSink

logger = get_logger(__name__)

EVENT_SOURCE_PREFIX = "/apis/tekton.dev/v1alpha1/namespaces"
_EVENT_TYPES = {
    ConditionStatus.TRUE: "dev.tekton.event.task.successful.v1",
    ConditionStatus.FALSE: "dev.tekton.event.task.failed.v1",
    ConditionStatus.UNKNOWN: "dev.tekton.event.task.unknown.v1",
}


def build_event(run: Run) -> dict[str, Any]:
    """CloudEvents 1.0 structured-mode envelope describing the run's outcome."""
    condition = run.status.condition
    status = condition.status if condition else ConditionStatus.UNKNOWN
    return {
        "specversion": "1.0",
        "id": str(uuid.uuid4()),
        "source": f"{EVENT_SOURCE_PREFIX}/{run.namespace}/taskruns/{run.name}",
        "type": _EVENT_TYPES[status],
        "time": datetime.now(UTC).isoformat(),
        "datacontenttype": "application/json",
        "data": {
            "taskRun": {
                "name": run.name,
                "namespace": run.namespace,
                "condition": {
                    "status": status.value,
                    "reason": condition.reason.value if condition else "",
                    "message": condition.message if condition else "",
                },
                "podName": run.status.pod_name,
                "results": [r.to_dict() for r in run.status.results],
            }
        },
    }


class NotificationDispatcher:
    """Initializes and delivers a run's notification records."""

    def __init__(self, sink: EventSink, *, max_attempts: int = 3):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self._sink = sink
        self._max_attempts = max_attempts

    @staticmethod
    def prepare(run: Run, targets: list[str]) -> bool:
        """Create one Unknown record per target if the run has none yet.

        Returns whether records were added.
        """
        if run.status.notifications or not targets:
            return False
        run.status.notifications = [NotificationDeliveryRecord(target=t) for t in targets]
        return True

    def pending(self, run: Run) -> bool:
        """True while some record may still be delivered by a later pass."""
        return any(
            r.status is DeliveryStatus.UNKNOWN and r.attempts < self._max_attempts
            for r in run.status.notifications
        )

    async def dispatch(self, run: Run) -> bool:
        """Send to every undelivered target of a terminal run.

        No-op while the run is still running.  Returns whether any record
        changed.
        """
        if not run.status.is_done() or not self.pending(run):
            return False

        event = build_event(run)
        changed = False
        for record in run.status.notifications:
            if record.status is not DeliveryStatus.UNKNOWN or record.attempts >= self._max_attempts:
                continue
            result = await self._send(record.target, event)
            record.attempts += 1
            changed = True
            if result.success:
                record.status = DeliveryStatus.SENT
                record.message = ""
                logger.info("notification.sent", target=record.target, attempts=record.attempts)
            else:
                record.message = result.message or "delivery failed"
                if record.attempts >= self._max_attempts:
                    record.status = DeliveryStatus.FAILED
                logger.warning(
                    "notification.failed",
                    target=record.target,
                    attempts=record.attempts,
                    status=record.status.value,
                    error=record.message,
                )
        return changed

    async def _send(self, target: str, event: dict[str, Any]) -> DeliveryResult:
        try:
            return await asyncio.to_thread(self._sink.send, target, event)
        except Exception as e:
            # A sink that raises is treated like one that reported failure
            return DeliveryResult.fail(target, DeliveryError(str(e), cause=e))


# ---------------------------------------------------------------------------
# Webhook sink
# ---------------------------------------------------------------------------

class WebhookEventSink:
    """
    HTTP event sink.

    POSTs the event as ``application/cloudevents+json`` to the target URI.
    """

    def __init__(self, *, headers: dict[str, str] | None = None, timeout: float = 10.0):
        self._headers = headers or {}
        self._timeout = timeout

    def send(self, target: str, event: dict[str, Any]) -> DeliveryResult:
        """Send event to the target URI."""
        headers = {"Content-Type": "application/cloudevents+json"}
        headers.update(self._headers)

        try:
            req = urllib.request.Request(
                target,
                data=json.dumps(event).encode("utf-8"),
                headers=headers,
                method="POST",
            )

            with urllib.request.urlopen(req, timeout=self._timeout) as response:
                return DeliveryResult.ok(target, response={"status": response.status})

        except urllib.error.HTTPError as e:
            return DeliveryResult.fail(target, DeliveryError(f"HTTP {e.code}: {e.reason}", cause=e))
        except urllib.error.URLError as e:
            return DeliveryResult.fail(target, DeliveryError(str(e.reason), cause=e))
        except (OSError, ValueError) as e:
            return DeliveryResult.fail(target, DeliveryError(str(e), cause=e))


__all__ = [
    "build_event",
    "NotificationDispatcher",
    "WebhookEventSink",
]
