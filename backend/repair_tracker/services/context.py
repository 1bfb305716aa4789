"""Request-scoped construction of the repair engines.

Long-lived collaborators (view cache, locks, notifier, clock) live in
``app.extensions`` and are created once by the app factory; the store wraps
the request's scoped session.
"""
from __future__ import annotations
from flask import current_app
from repair_tracker import get_db
from repair_tracker.services.customers import CustomerDirectory
from repair_tracker.services.estimates import EstimateWorkflow
from repair_tracker.services.lifecycle import RepairLifecycle
from repair_tracker.services.store import RecordStore


def ext(name: str):
    return current_app.extensions[name]


def store() -> RecordStore:
    return RecordStore(get_db())


def _engine_args():
    return (store(), ext('notifier'), ext('repair_views'), ext('repair_locks'))


def lifecycle() -> RepairLifecycle:
    return RepairLifecycle(*_engine_args(), clock=ext('repair_clock'))


def estimates() -> EstimateWorkflow:
    return EstimateWorkflow(*_engine_args(), clock=ext('repair_clock'))


def customers() -> CustomerDirectory:
    return CustomerDirectory(store(), ext('repair_views'), clock=ext('repair_clock'))


def views():
    return ext('repair_views')


def now():
    return ext('repair_clock')()
