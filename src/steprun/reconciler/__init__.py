"""Run reconciliation: state machine, timers, notifications and the worker pool."""

from steprun.reconciler.controller import Controller
from steprun.reconciler.notifications import NotificationDispatcher, WebhookEventSink, build_event
from steprun.reconciler.queue import ExponentialBackoff, WorkQueue
from steprun.reconciler.reconciler import ReconcileOutcome, Reconciler, render_pod
from steprun.reconciler.results import extract_results
from steprun.reconciler.timeout import TimeoutHandler

__all__ = [
    "Controller",
    "ExponentialBackoff",
    "NotificationDispatcher",
    "ReconcileOutcome",
    "Reconciler",
    "TimeoutHandler",
    "WebhookEventSink",
    "WorkQueue",
    "build_event",
    "extract_results",
    "render_pod",
]
