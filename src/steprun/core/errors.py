"""
Structured error types for steprun.

Every failure the reconciler can meet is expressed as a typed error that
carries a category, a retry flag and an optional chained cause.  The
reconciler never inspects error messages: it maps error *types* onto run
conditions (terminal failure, transient requeue, or a plain log line).

Manifesto:
    - **Typed Error Hierarchy:** One class per failure class the state
      machine distinguishes
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Error Chaining:** Preserve collaborator exceptions as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       StepRunError                               │
        │  (category, retryable, retry_after, context, cause)             │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ResolutionError        TemplatingError     PodStoreError        │
        │  (RESOLUTION)           (VALIDATION)        (STORE)              │
        │       │                                          │               │
        │  TemplateNotFoundError                      QuotaExceededError   │
        │  TemplateKindError                          PodNotFoundError     │
        │  EntrypointResolutionError                                       │
        │                                                                  │
        │  PodFetchError          ExtractionError     DeliveryError        │
        │  (STORE, retryable)     (PARSE)             (NETWORK, retryable) │
        └─────────────────────────────────────────────────────────────────┘

    Reconciler mapping::

        ResolutionError            -> False / FailedResolution
        TemplatingError            -> False / TaskRunValidationFailed
        QuotaExceededError         -> Unknown / ExceededResourceQuota + requeue
        other PodStoreError (create) -> False / CouldntGetTask
        PodFetchError              -> propagated to the work queue (backoff)
        ExtractionError            -> logged, status untouched
        DeliveryError              -> recorded on the delivery record

Guardrails:
    ❌ DON'T: Raise bare Exception from a collaborator
    ✅ DO: Wrap it in the matching StepRunError subclass with ``cause=``

    ❌ DON'T: Decide terminal vs transient by parsing ``str(error)``
    ✅ DO: Check the error type or ``retryable``

Tags:
    error-handling, exception-hierarchy, retry-logic, steprun

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Standard error categories for classification and routing.

    Categories group errors by where they come from so log lines and
    queue retry decisions can be made without looking at messages.

    Attributes:
        RESOLUTION: Template or image lookups that cannot succeed
        VALIDATION: Run bindings that do not satisfy the template
        STORE: Pod store calls (create/get/list/delete)
        PARSE: Malformed result payloads
        NETWORK: Event delivery and registry transport
        CONFIG: Missing or invalid settings
        INTERNAL: Bugs, unexpected state
    """

    RESOLUTION = "RESOLUTION"
    VALIDATION = "VALIDATION"
    STORE = "STORE"
    PARSE = "PARSE"
    NETWORK = "NETWORK"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata context for errors.

    Typed fields cover the identifiers the reconciler knows about; anything
    else goes in ``metadata``.  ``to_dict()`` only emits fields that are set.

    Attributes:
        run: Run key ``namespace/name``
        task: Task template name
        pod: Pod name
        image: Image reference being resolved
        target: Notification target URI
        metadata: Additional key-value pairs
    """

    run: str | None = None
    task: str | None = None
    pod: str | None = None
    image: str | None = None
    target: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run", "task", "pod", "image", "target"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class StepRunError(Exception):
    """
    Base exception for all steprun errors.

    Subclasses set ``default_category`` and ``default_retryable`` so call
    sites only pass a message (and a cause when wrapping).

    Examples:
        >>> error = StepRunError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = PodFetchError("pod lookup failed")
        >>> error.retryable
        True
        >>> error.with_context(run="default/build-1").to_dict()["context"]
        {'run': 'default/build-1'}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> StepRunError:
        """
        Add context to this error (fluent API).

        Usage:
            raise TemplateNotFoundError("missing").with_context(
                run="default/build-1",
                task="build-push",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# RESOLUTION ERRORS (terminal)
# =============================================================================


class ResolutionError(StepRunError):
    """
    A referenced template, resource or image could not be resolved.

    Never retryable: the run references something that does not exist or
    has the wrong shape, so the run fails with ``FailedResolution``.
    """

    default_category = ErrorCategory.RESOLUTION
    default_retryable = False


class TemplateNotFoundError(ResolutionError):
    """Task, ClusterTask or PipelineResource does not exist."""

    def __init__(self, kind: str, name: str, namespace: str | None = None, **kwargs: Any):
        self.kind = kind
        self.name = name
        self.namespace = namespace
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found", **kwargs)


class TemplateKindError(ResolutionError):
    """Reference names an object of a different kind than requested."""

    def __init__(self, expected: str, actual: str, name: str, **kwargs: Any):
        self.expected = expected
        self.actual = actual
        self.name = name
        super().__init__(f"{name} is a {actual}, not a {expected}", **kwargs)


class EntrypointResolutionError(ResolutionError):
    """Image config could not be read, or it declares no command."""

    def __init__(self, image: str, reason: str, **kwargs: Any):
        self.image = image
        self.reason = reason
        super().__init__(f"failed to resolve entrypoint of {image}: {reason}", **kwargs)


# =============================================================================
# TEMPLATING ERRORS (terminal)
# =============================================================================


class TemplatingError(StepRunError):
    """Run bindings do not satisfy the task template (e.g. missing params)."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        missing_params: list[str] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.missing_params = missing_params or []


# =============================================================================
# POD STORE ERRORS
# =============================================================================


class PodStoreError(StepRunError):
    """
    Error returned by the pod store.

    ``kind`` mirrors the store's own classification: ``"forbidden"`` for
    admission/quota rejections, ``"not_found"`` for lookups, ``"other"``
    for everything else.
    """

    default_category = ErrorCategory.STORE
    default_retryable = False
    default_kind = "other"

    def __init__(self, message: str, *, kind: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.kind = kind or self.default_kind

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["kind"] = self.kind
        return result


class QuotaExceededError(PodStoreError):
    """Pod creation was forbidden, typically by a ResourceQuota."""

    default_retryable = True
    default_kind = "forbidden"


class PodNotFoundError(PodStoreError):
    """The named pod does not exist."""

    default_kind = "not_found"


class PodFetchError(StepRunError):
    """Locating the run's pod failed; the pass is retried by the queue."""

    default_category = ErrorCategory.STORE
    default_retryable = True


# =============================================================================
# RESULT / DELIVERY ERRORS
# =============================================================================


class ExtractionError(StepRunError):
    """Result payload in a container log is missing or malformed."""

    default_category = ErrorCategory.PARSE
    default_retryable = False


class DeliveryError(StepRunError):
    """A notification target did not accept the event."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class ManifestError(StepRunError):
    """A manifest file is not valid YAML or does not describe a known object."""

    default_category = ErrorCategory.PARSE
    default_retryable = False

    def __init__(self, message: str, *, source: str | None = None, field: str | None = None, **kwargs: Any):
        self.source = source
        self.field = field
        if source:
            message = f"{source}: {message}"
        super().__init__(message, **kwargs)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, StepRunError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def is_quota_error(error: Exception) -> bool:
    """True when a create failure should leave the run pending and requeue."""
    return isinstance(error, PodStoreError) and error.kind == "forbidden"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "StepRunError",
    "ResolutionError",
    "TemplateNotFoundError",
    "TemplateKindError",
    "EntrypointResolutionError",
    "TemplatingError",
    "PodStoreError",
    "QuotaExceededError",
    "PodNotFoundError",
    "PodFetchError",
    "ExtractionError",
    "DeliveryError",
    "ManifestError",
    "is_retryable",
    "is_quota_error",
]
