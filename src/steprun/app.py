"""Controller assembly.

Wires settings, logging and the in-process pieces (entrypoint cache,
timers, dispatcher, work queue) around the caller's cluster adapters.

Example::

    controller = build_controller(
        runs=run_store,
        pods=pod_store,
        templates=template_source,
        registry=registry,
        credentials=credential_resolver,
    )
    await controller.run()
"""

from __future__ import annotations

from steprun.core.config.settings import StepRunSettings, get_settings
from steprun.core.logging import configure_logging, get_logger
from steprun.pod.entrypoint import EntrypointCache
from steprun.pod.names import NameGenerator
from steprun.protocols import CredentialResolver, EventSink, ImageRegistry, PodStore, RunStore, TemplateSource
from steprun.reconciler.controller import Controller
from steprun.reconciler.notifications import NotificationDispatcher, WebhookEventSink
from steprun.reconciler.queue import ExponentialBackoff, WorkQueue
from steprun.reconciler.reconciler import Reconciler
from steprun.reconciler.timeout import TimeoutHandler

logger = get_logger(__name__)


def build_controller(
    *,
    runs: RunStore,
    pods: PodStore,
    templates: TemplateSource,
    registry: ImageRegistry,
    credentials: CredentialResolver,
    sink: EventSink | None = None,
    names: NameGenerator | None = None,
    settings: StepRunSettings | None = None,
    setup_logging: bool = True,
) -> Controller:
    """Build a ready-to-run :class:`Controller`.

    ``sink`` defaults to a :class:`WebhookEventSink` using
    ``notification_timeout_seconds``.
    """
    settings = settings or get_settings()
    if setup_logging:
        configure_logging(
            level=settings.log_level,
            json_format=settings.log_format.lower() == "json",
        )

    timeouts = TimeoutHandler()
    queue = WorkQueue(
        ExponentialBackoff(
            base_delay=settings.requeue_base_delay_seconds,
            max_delay=settings.requeue_max_delay_seconds,
        )
    )
    reconciler = Reconciler(
        runs,
        pods,
        templates,
        EntrypointCache(registry, credentials),
        NotificationDispatcher(
            sink or WebhookEventSink(timeout=settings.notification_timeout_seconds),
            max_attempts=settings.notification_max_attempts,
        ),
        timeouts,
        settings=settings,
        names=names,
    )
    logger.debug("controller.built", workers=settings.workers, release=settings.release)
    return Controller(reconciler, queue, timeouts, workers=settings.workers, settings=settings)


__all__ = ["build_controller"]
