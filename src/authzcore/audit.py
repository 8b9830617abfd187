"""Decision audit recording.

Mutating actions (create, update, delete, admin) are written synchronously:
``record`` returns only after the sink accepted the event, and a sink failure
raises ``BackendUnavailableError`` so the caller never performs an unaudited
side effect. Reads are handed to a single background worker and may be lost;
a failure there is logged, not raised.

Events reach the sink in the order they were recorded. Reads queue behind
each other on the one worker, and a mutating event first waits for every
queued read to be delivered.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional

from .config import AuditConfig
from .exceptions import BackendUnavailableError
from .interfaces import AuditSink
from .permissions.constants import Action, Resource
from .permissions.models import AuditEvent, PermissionDecision, TargetRef, UserContext

logger = logging.getLogger(__name__)


class AuditRecorder:
    """Routes audit events to the sink with the right delivery guarantee.

    Args:
        sink: Destination for audit events.
        config: Flush timeout for the read queue.
    """

    def __init__(self, sink: AuditSink, config: AuditConfig | None = None) -> None:
        self._sink = sink
        self._config = config or AuditConfig()
        # One worker keeps queued reads in submission order
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="authz-audit")
        self._lock = threading.Lock()
        self._last_queued: Optional[Future] = None

    def record(self, event: AuditEvent) -> Optional[Future]:
        """Record one decision.

        Returns:
            None for mutating actions (already written), or the future of the
            background write for reads.

        Raises:
            BackendUnavailableError: the sink rejected a mutating-action event,
                or queued reads did not drain within the flush timeout.
        """
        with self._lock:
            if not event.is_mutating:
                self._last_queued = self._executor.submit(self._record_best_effort, event)
                return self._last_queued
            self._flush(event)
            try:
                self._sink.record(event)
            except Exception as e:
                logger.error(
                    "Audit write failed for %s %s:%s: %s",
                    event.actor,
                    event.resource.value,
                    event.action.value,
                    e,
                    extra={"alert": True},
                )
                raise BackendUnavailableError("Audit sink unavailable") from e
            return None

    def record_decision(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
        decision: PermissionDecision,
        target: TargetRef | None = None,
    ) -> Optional[Future]:
        return self.record(
            AuditEvent(actor=user.user_id, resource=resource, action=action, decision=decision, target=target)
        )

    def _flush(self, event: AuditEvent) -> None:
        """Wait for queued reads; called with the lock held."""
        pending = self._last_queued
        if pending is None or pending.done():
            return
        try:
            pending.result(timeout=self._config.flush_timeout_seconds)
        except FutureTimeoutError:
            logger.error(
                "Audit queue did not drain within %.1fs before %s %s:%s",
                self._config.flush_timeout_seconds,
                event.actor,
                event.resource.value,
                event.action.value,
                extra={"alert": True},
            )
            raise BackendUnavailableError("Audit sink unavailable") from None

    def _record_best_effort(self, event: AuditEvent) -> None:
        try:
            self._sink.record(event)
        except Exception as e:
            logger.warning(
                "Dropped audit record for %s %s:%s: %s",
                event.actor,
                event.resource.value,
                event.action.value,
                e,
            )

    def close(self, wait: bool = True) -> None:
        """Stop the background worker; ``wait`` flushes pending read records."""
        self._executor.shutdown(wait=wait)


__all__ = ["AuditRecorder"]
