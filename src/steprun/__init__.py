"""
Steprun - sequential-step task runs on a container orchestrator.

A run references a reusable task template.  The reconciler turns it into
exactly one pod whose containers execute the task's steps one after the
other, follows the pod to completion and projects the outcome back onto
the run's status.

Packages:
    steprun.core        settings, logging, errors, cache, deadlines
    steprun.models      run, task template and pod data model
    steprun.pod         pod synthesis (builder, entrypoint cache, substitution)
    steprun.reconciler  state machine, timeouts, results, notifications, queue
    steprun.testing     in-memory collaborators for tests and local runs
"""

__version__ = "0.1.0"
