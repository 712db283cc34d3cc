"""In-memory collaborators for tests and local experiments."""

from steprun.testing.fakes import (
    FakeCredentialResolver,
    FakePodStore,
    FakeRegistry,
    FakeTemplateSource,
    InMemoryRunStore,
    RecordingEventSink,
    SequenceNameGenerator,
    pod_for,
)

__all__ = [
    "FakeCredentialResolver",
    "FakePodStore",
    "FakeRegistry",
    "FakeTemplateSource",
    "InMemoryRunStore",
    "RecordingEventSink",
    "SequenceNameGenerator",
    "pod_for",
]
