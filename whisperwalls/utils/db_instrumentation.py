"""Runtime patching helpers to instrument AstraDBCollection methods.

Call `instrument_astra_collection()` during application startup (done in
`whisperwalls.utils.observability`) and every write the stores issue
(`insert_one`, `find_one_and_update`, `update_many`, `delete_many`) plus the
`count_documents` used by moderation stats is surrounded by an OpenTelemetry
span and a Prometheus histogram sample.
"""
from __future__ import annotations

import functools
import time
from typing import Any, Awaitable

from opentelemetry import trace

from whisperwalls.db.astra_client import AstraDBCollection
from whisperwalls.metrics import ASTRA_DB_QUERY_DURATION_SECONDS

_tracer = trace.get_tracer(__name__)

# collection method -> operation label
INSTRUMENTED_OPERATIONS = {
    "insert_one": "insert",
    "find_one_and_update": "update",
    "update_many": "update_many",
    "delete_many": "delete",
    "count_documents": "count",
}


async def _observe(op: str, coro: Awaitable[Any]):
    """Await *coro* while recording span + histogram for DB *op*."""

    start = time.perf_counter()
    with _tracer.start_as_current_span(f"astra.{op}") as span:
        try:
            return await coro
        finally:
            duration = time.perf_counter() - start
            ASTRA_DB_QUERY_DURATION_SECONDS.labels(operation=op).observe(duration)
            span.set_attribute("duration_ms", int(duration * 1000))


def _wrap(original, op: str):
    @functools.wraps(original)
    async def wrapper(self, *args, **kwargs):
        return await _observe(op, original(self, *args, **kwargs))

    return wrapper


def instrument_astra_collection() -> None:
    """Monkey-patch AstraDBCollection once per process."""

    if getattr(AstraDBCollection, "_ww_instrumented", False):
        return  # Already patched

    for method, op in INSTRUMENTED_OPERATIONS.items():
        original = getattr(AstraDBCollection, method, None)
        if original is not None:
            setattr(AstraDBCollection, method, _wrap(original, op))

    AstraDBCollection._ww_instrumented = True  # type: ignore[attr-defined]
