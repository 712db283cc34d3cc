"""Run reconciler: one pass of the run state machine.

Manifesto:
    A pass reads the run and its pod, decides what the run's Succeeded
    condition should be, makes at most one pod mutation to get there and
    writes the status back.  Passes are idempotent: running one twice in a
    row changes nothing the second time (apart from notification retries).

Architecture:
    ::

        reconcile(key)
          │
          ├─ run missing ─────────────────► cancel timer
          ├─ condition terminal ──────────► notification bookkeeping only
          ├─ cancel requested ────────────► False/TaskRunCancelled, delete pod
          │
          ├─ locate pod (pod_name, else label tekton.dev/taskRun) ── error ─► PodFetchError
          ├─ deadline passed ─────────────► False/TaskRunTimeout, delete pod
          │
          ├─ no pod ─► resolve template ─── error ─► False/FailedResolution
          │            resolve resources ── error ─► False/FailedResolution | TaskRunValidationFailed
          │            build pod ────────── error ─► False/FailedResolution | TaskRunValidationFailed
          │            create pod ───────── quota ─► Unknown/ExceededResourceQuota (requeue)
          │                              └─ other ─► False/CouldntGetTask
          │            start_time, arm timer, Unknown/Running
          │
          └─ pod ─► phase Pending/Running ─► Unknown/Running (mark pod ready)
                    phase Succeeded ──────► results, True/Succeeded
                    phase Failed ─────────► False/Failed
          │
          persist status if changed ─► dispatch notifications ─► persist again

Guardrails:
    ❌ DON'T: Touch a terminal condition
    ✅ DO: Return early; only notification records may still change

    ❌ DON'T: Create a pod when resolution failed
    ✅ DO: Build the whole pod first so a pass creates it fully or not at all

Tags:
    reconciler, state-machine, controller, steprun

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from steprun.core.config.settings import StepRunSettings, get_settings
from steprun.core.deadline import TimeoutExpired, run_with_timeout_async
from steprun.core.errors import (
    ExtractionError,
    PodFetchError,
    PodStoreError,
    ResolutionError,
    StepRunError,
    TemplateKindError,
    TemplatingError,
    is_quota_error,
)
from steprun.core.logging import LogContext, get_logger
from steprun.models.pod import OwnerReference, Pod, PodPhase
from steprun.models.run import (
    Condition,
    ConditionStatus,
    Reason,
    Result,
    Run,
    split_key,
)
from steprun.models.task import ResourceType, TaskKind, TaskSpec
from steprun.pod.builder import READY_ANNOTATION, READY_VALUE, build_pod
from steprun.pod.entrypoint import EntrypointCache
from steprun.pod.names import NameGenerator, RandomSuffixGenerator
from steprun.pod.resources import ResolvedResources, is_result_container, resolve_resources
from steprun.pod.status import (
    MSG_RUNNING,
    completion_time,
    condition_for,
    format_duration,
    step_states,
)
from steprun.protocols import PodStore, RunStore, TemplateSource
from steprun.reconciler.notifications import NotificationDispatcher
from steprun.reconciler.results import extract_results
from steprun.reconciler.timeout import TimeoutHandler

logger = get_logger(__name__)

TASK_LABEL = "tekton.dev/task"
RUN_LABEL = "tekton.dev/taskRun"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "tekton-pipelines"
RELEASE_ANNOTATION = "pipeline.tekton.dev/release"
RUN_API_VERSION = "tekton.dev/v1alpha1"
RUN_KIND = "TaskRun"


def _utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass(frozen=True)
class ReconcileOutcome:
    """What the queue should do with the key after a pass.

    ``requeue_after`` re-adds the key after a fixed delay; ``requeue``
    alone re-adds it with the queue's per-key backoff.
    """

    requeue: bool = False
    requeue_after: float | None = None

    @classmethod
    def done(cls) -> ReconcileOutcome:
        return cls()

    @classmethod
    def retry(cls, after: float | None = None) -> ReconcileOutcome:
        return cls(requeue=True, requeue_after=after)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


async def resolve_template(templates: TemplateSource, run: Run) -> tuple[str, TaskSpec]:
    """The task name and spec ``run`` executes.

    An embedded spec wins over a reference and has no name.

    Raises:
        ResolutionError: no reference, missing template, or a kind mismatch.
    """
    if run.spec.task_spec is not None:
        return "", run.spec.task_spec
    ref = run.spec.task_ref
    if ref is None:
        raise ResolutionError(f'TaskRun "{run.name}" has neither a task reference nor an embedded spec')
    if ref.kind is TaskKind.CLUSTER_TASK:
        task = await templates.get_cluster_task(ref.name)
    else:
        task = await templates.get_task(run.namespace, ref.name)
    if task.kind is not ref.kind:
        raise TemplateKindError(ref.kind.value, task.kind.value, ref.name)
    return task.name, task.spec


def pod_labels(run: Run, task_name: str) -> dict[str, str]:
    labels = dict(run.labels)
    if task_name:
        labels[TASK_LABEL] = task_name
    labels[RUN_LABEL] = run.name
    labels[MANAGED_BY_LABEL] = MANAGED_BY_VALUE
    return labels


async def render_pod(
    run: Run,
    *,
    templates: TemplateSource,
    entrypoint_cache: EntrypointCache,
    names: NameGenerator,
    settings: StepRunSettings,
) -> tuple[Pod, ResolvedResources]:
    """Resolve everything ``run`` references and build its pod.

    Nothing is created; the reconciler and ``steprun render`` share this.

    Raises:
        ResolutionError: template, resource or image entrypoint unresolvable.
        TemplatingError: bindings do not satisfy the template.
    """
    task_name, task_spec = await resolve_template(templates, run)
    resources = await resolve_resources(templates, run, task_spec)
    pod = await build_pod(
        settings.helper_images(),
        run,
        task_spec,
        resources=resources,
        entrypoint_cache=entrypoint_cache,
        names=names,
        service_account=run.spec.service_account or settings.default_service_account,
        labels=pod_labels(run, task_name),
        annotations={**run.annotations, RELEASE_ANNOTATION: settings.release},
        owner=OwnerReference(api_version=RUN_API_VERSION, kind=RUN_KIND, name=run.name),
        pin_digests=settings.pin_image_digests,
    )
    return pod, resources


class Reconciler:
    """Drives one run towards its terminal condition per call to :meth:`reconcile`."""

    def __init__(
        self,
        runs: RunStore,
        pods: PodStore,
        templates: TemplateSource,
        entrypoint_cache: EntrypointCache,
        dispatcher: NotificationDispatcher,
        timeouts: TimeoutHandler,
        *,
        settings: StepRunSettings | None = None,
        names: NameGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._runs = runs
        self._pods = pods
        self._templates = templates
        self._entrypoints = entrypoint_cache
        self._dispatcher = dispatcher
        self._timeouts = timeouts
        self._settings = settings or get_settings()
        self._names = names or RandomSuffixGenerator()
        self._clock = clock or _utcnow
        # Runs whose outputs resolved to no notification target
        self._without_targets: set[str] = set()

    # ------------------------------------------------------------------ #
    # Entry point
    # ------------------------------------------------------------------ #

    async def reconcile(self, key: str) -> ReconcileOutcome:
        """Run one pass for ``key`` (``namespace/name``).

        Raises:
            ValueError: ``key`` is malformed.
            PodFetchError: the run's pod could not be looked up.
            TimeoutExpired: a store call exceeded its deadline.
        """
        namespace, name = split_key(key)
        async with LogContext(run=key):
            run = await self._call(self._runs.get(namespace, name), "runs.get")
            if run is None:
                self._timeouts.cancel(key)
                self._without_targets.discard(key)
                logger.debug("run.gone")
                return ReconcileOutcome.done()

            before = copy.deepcopy(run.status)
            outcome = await self._reconcile_run(run)
            if run.status.is_done():
                await self._ensure_notification_records(run)
            if run.status != before:
                run = await self._call(self._runs.update_status(run), "runs.update_status")
                logger.info(
                    "run.status_updated",
                    status=run.status.condition.status.value if run.status.condition else None,
                    reason=run.status.condition.reason.value if run.status.condition else None,
                )

            if run.status.is_done():
                self._timeouts.cancel(key)
                if await self._dispatcher.dispatch(run):
                    run = await self._call(self._runs.update_status(run), "runs.update_status")
                if self._dispatcher.pending(run) and not outcome.requeue:
                    return ReconcileOutcome.retry(self._settings.notification_retry_seconds)
            return outcome

    def timeout_for(self, run: Run) -> timedelta:
        """The run's own timeout, or the process default."""
        if run.spec.timeout is not None:
            return run.spec.timeout
        return self._settings.default_timeout

    # ------------------------------------------------------------------ #
    # State machine
    # ------------------------------------------------------------------ #

    async def _reconcile_run(self, run: Run) -> ReconcileOutcome:
        if run.status.is_done():
            return ReconcileOutcome.done()

        if run.is_cancelled():
            await self._stop_pod(run)
            self._finish(run, Condition(
                ConditionStatus.FALSE,
                Reason.CANCELLED,
                f'TaskRun "{run.name}" was cancelled',
            ))
            return ReconcileOutcome.done()

        pod = await self._find_pod(run)

        if self._timed_out(run):
            timeout = self.timeout_for(run)
            logger.warning("run.timed_out", timeout=format_duration(timeout))
            await self._stop_pod(run, pod)
            self._finish(run, Condition(
                ConditionStatus.FALSE,
                Reason.TIMEOUT,
                f'TaskRun "{run.name}" failed to finish within "{format_duration(timeout)}"',
            ))
            return ReconcileOutcome.done()

        if pod is None:
            return await self._create(run)
        return await self._track(run, pod)

    async def _create(self, run: Run) -> ReconcileOutcome:
        try:
            pod, resources = await self._call(
                render_pod(
                    run,
                    templates=self._templates,
                    entrypoint_cache=self._entrypoints,
                    names=self._names,
                    settings=self._settings,
                ),
                "render_pod",
            )
        except ResolutionError as e:
            return self._fail(run, Reason.FAILED_RESOLUTION, e)
        except TemplatingError as e:
            return self._fail(run, Reason.VALIDATION_FAILED, e)

        targets = resources.cloud_event_targets()
        if not targets:
            self._without_targets.add(run.key)
        self._dispatcher.prepare(run, targets)

        try:
            created = await self._call(self._pods.create(pod), "pods.create")
        except PodStoreError as e:
            if is_quota_error(e):
                logger.warning("pod.quota_exceeded", error=e.message)
                run.status.set_condition(Condition(
                    ConditionStatus.UNKNOWN,
                    Reason.EXCEEDED_RESOURCE_QUOTA,
                    f'TaskRun pod "{run.name}" exceeded available resources: {e.message}',
                ))
                return ReconcileOutcome.retry(self._settings.quota_requeue_seconds)
            return self._fail(
                run,
                Reason.COULDNT_GET_TASK,
                e,
                message=f'failed to create task run pod "{run.name}": {e.message}',
            )

        logger.info("pod.created", pod=created.name)
        self._adopt(run, created)
        run.status.set_condition(Condition(ConditionStatus.UNKNOWN, Reason.RUNNING, MSG_RUNNING))
        return ReconcileOutcome.done()

    async def _track(self, run: Run, pod: Pod) -> ReconcileOutcome:
        self._adopt(run, pod)
        await self._ensure_notification_records(run)
        outcome = ReconcileOutcome.done()

        if pod.status.phase is PodPhase.RUNNING and pod.metadata.annotations.get(READY_ANNOTATION) != READY_VALUE:
            try:
                await self._call(
                    self._pods.annotate(run.namespace, pod.name, {READY_ANNOTATION: READY_VALUE}),
                    "pods.annotate",
                )
            except (PodStoreError, TimeoutExpired) as e:
                # Status of this pass is still stored; the annotation is retried on requeue
                logger.warning("pod.mark_ready_failed", pod=pod.name, error=str(e))
                outcome = ReconcileOutcome.retry()
            else:
                logger.info("pod.marked_ready", pod=pod.name)

        run.status.steps = step_states(pod)
        condition = condition_for(pod)
        if condition.status is ConditionStatus.TRUE:
            await self._collect_results(run, pod)
        if condition.is_terminal:
            self._finish(run, condition, completion_time(pod, self._clock()))
            logger.info("run.finished", pod=pod.name, reason=condition.reason.value)
        else:
            run.status.set_condition(condition)
        return outcome

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    async def _call(self, coro: Awaitable[Any], operation: str) -> Any:
        return await run_with_timeout_async(
            coro, self._settings.store_call_timeout_seconds, operation=operation
        )

    async def _find_pod(self, run: Run) -> Pod | None:
        try:
            if run.status.pod_name:
                return await self._call(
                    self._pods.get(run.namespace, run.status.pod_name), "pods.get"
                )
            pods = await self._call(
                self._pods.list(run.namespace, {RUN_LABEL: run.name}), "pods.list"
            )
        except (PodStoreError, TimeoutExpired) as e:
            raise PodFetchError(
                f'failed to get pod for TaskRun "{run.name}": {e}', cause=e
            ).with_context(run=run.key, pod=run.status.pod_name or None) from e
        return pods[0] if pods else None

    def _adopt(self, run: Run, pod: Pod) -> None:
        run.status.pod_name = pod.name
        if run.status.start_time is None:
            run.status.start_time = self._clock()
        if not self._timeouts.is_armed(run.key):
            self._timeouts.wait_run(run, self._settings.default_timeout, now=self._clock())

    def _timed_out(self, run: Run) -> bool:
        timeout = self.timeout_for(run)
        if run.status.start_time is None or timeout <= timedelta(0):
            return False
        return self._clock() - run.status.start_time > timeout

    def _finish(self, run: Run, condition: Condition, when: datetime | None = None) -> None:
        run.status.set_condition(condition)
        if run.status.completion_time is None:
            run.status.completion_time = when or self._clock()
        self._timeouts.cancel(run.key)

    def _fail(
        self,
        run: Run,
        reason: Reason,
        error: StepRunError,
        *,
        message: str | None = None,
    ) -> ReconcileOutcome:
        logger.warning("run.failed", reason=reason.value, error=error.to_dict())
        self._finish(run, Condition(ConditionStatus.FALSE, reason, message or error.message))
        return ReconcileOutcome.done()

    async def _stop_pod(self, run: Run, pod: Pod | None = None) -> None:
        name = pod.name if pod is not None else run.status.pod_name
        if not name:
            return
        try:
            await self._call(self._pods.delete(run.namespace, name), "pods.delete")
        except (PodStoreError, TimeoutExpired) as e:
            # Status transition stands regardless
            logger.warning("pod.delete_failed", pod=name, error=str(e))

    async def _collect_results(self, run: Run, pod: Pod) -> None:
        collected: list[Result] = []
        found = False
        for container in pod.spec.containers:
            if not is_result_container(container.name):
                continue
            try:
                raw = await self._call(
                    self._pods.logs(run.namespace, pod.name, container.name), "pods.logs"
                )
                results = extract_results(raw)
            except (ExtractionError, PodStoreError, TimeoutExpired) as e:
                logger.warning("results.extraction_failed", container=container.name, error=str(e))
                continue
            collected.extend(results)
            found = True
        if found:
            run.status.results = collected

    async def _ensure_notification_records(self, run: Run) -> None:
        if run.status.notifications or not run.spec.outputs or run.key in self._without_targets:
            return
        targets = []
        unresolved = False
        for binding in run.spec.outputs:
            resource = binding.resource_spec
            if resource is None and binding.resource_ref:
                try:
                    resource = await self._call(
                        self._templates.get_resource(run.namespace, binding.resource_ref),
                        "templates.get_resource",
                    )
                except (ResolutionError, TimeoutExpired) as e:
                    logger.warning("notification.target_unresolved", resource=binding.resource_ref, error=str(e))
                    unresolved = True
                    continue
            if resource is not None and resource.type is ResourceType.CLOUD_EVENT:
                target = resource.param("targetURI")
                if target:
                    targets.append(target)
        if not targets and not unresolved:
            self._without_targets.add(run.key)
        self._dispatcher.prepare(run, targets)


__all__ = [
    "TASK_LABEL",
    "RUN_LABEL",
    "ReconcileOutcome",
    "Reconciler",
    "pod_labels",
    "render_pod",
    "resolve_template",
]
