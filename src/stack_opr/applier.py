"""Applier: execute a change-set against a provider.

Waves (same phase and rank) run strictly in order; the items of one wave
run concurrently on a thread pool. After every successful item the state
store is updated for that resource alone, so an interrupted run leaves
state that matches what actually exists.

On the first terminal failure no further items start, in-flight items of
the same wave finish, and the completed items are rolled back according to
the rollback policy. Cancellation behaves the same way.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional

import requests

from common import ActionResult, retry_call
from config import ApplySettings
from providers.base import NotFoundError, Provider, ProviderError, TerminalError
from resources import resolve_attributes
from stack_opr.planner import CREATE, DESTROY, NO_OP, UPDATE, ChangeSet, ChangeSetItem
from stack_opr.rollback import RollbackController, RollbackError, RollbackResult
from stack_opr.state import StateEntry, StateStore

logger = logging.getLogger(__name__)

TRANSIENT = 'transient'
TERMINAL = 'terminal'


def classify_error(exc: Exception) -> str:
    """Classify an exception raised by a provider call.

    Transient: TransientError (and other retryable ProviderErrors),
    connection errors, timeouts, HTTP 429 and 5xx. Everything else is
    terminal.
    """
    if isinstance(exc, ProviderError):
        return TRANSIENT if exc.retryable else TERMINAL
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return TRANSIENT
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        status = exc.response.status_code
        if status == 429 or status >= 500:
            return TRANSIENT
    return TERMINAL


def is_transient(exc: Exception) -> bool:
    return classify_error(exc) == TRANSIENT


@dataclass
class ApplyResult:
    """Outcome of one apply run.

    Attributes:
        succeeded: Identities applied, in completion order
        failed: Identity whose terminal failure stopped the run
        error: Error message of that failure
        rolled_back: Identities reverted, in rollback order
        unresolved: Rollback steps that need manual intervention
        skipped: Identities never started (halted or cancelled)
        cancelled: True when the run was cancelled
        results: Per-item ActionResult
    """
    succeeded: list[str] = field(default_factory=list)
    failed: Optional[str] = None
    error: Optional[str] = None
    rolled_back: list[str] = field(default_factory=list)
    unresolved: list[RollbackError] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    cancelled: bool = False
    results: dict[str, ActionResult] = field(default_factory=dict)
    duration: float = 0.0

    @property
    def success(self) -> bool:
        return self.failed is None and not self.cancelled

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'succeeded': list(self.succeeded),
            'failed': self.failed,
            'error': self.error,
            'rolled_back': list(self.rolled_back),
            'unresolved': [{'identity': e.identity, 'action': e.action, 'error': str(e.cause)}
                           for e in self.unresolved],
            'skipped': list(self.skipped),
            'cancelled': self.cancelled,
            'duration': round(self.duration, 3),
        }


class Applier:
    """Executes change-sets wave by wave.

    Attributes:
        provider: Provider performing the side effects
        store: State store updated after every successful item
        settings: Retry, concurrency and rollback settings
        cancel_event: Set to request cancellation (e.g. from a signal handler)
    """

    def __init__(
        self,
        provider: Provider,
        store: StateStore,
        settings: ApplySettings,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.provider = provider
        self.store = store
        self.settings = settings
        self.cancel_event = cancel_event or threading.Event()
        self._halt = threading.Event()
        self._lock = threading.Lock()
        self._completed: list[ChangeSetItem] = []

    @property
    def stopping(self) -> bool:
        return self._halt.is_set() or self.cancel_event.is_set()

    def apply(self, changeset: ChangeSet) -> ApplyResult:
        """Apply every non no-op item of the change-set.

        Returns:
            ApplyResult (never raises for provider failures)
        """
        start = time.time()
        result = ApplyResult()
        self._halt.clear()
        self._completed = []

        waves = changeset.waves()
        total = sum(len(w.items) for w in waves)
        logger.info(f"Applying {total} change(s) in {len(waves)} wave(s)")

        for index, wave in enumerate(waves, 1):
            if self.stopping:
                result.skipped.extend(i.identity for i in wave.items)
                continue
            logger.debug(f"Wave {index}/{len(waves)}: {wave.phase} rank {wave.rank} ({len(wave.items)} item(s))")
            workers = min(self.settings.max_workers, len(wave.items))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='apply') as pool:
                futures = [(item, pool.submit(self._run_item, item)) for item in wave.items]
                outcomes = [(item, future.result()) for item, future in futures]

            for item, outcome in outcomes:
                if outcome is None:
                    result.skipped.append(item.identity)
                    continue
                result.results[item.identity] = outcome
                if not outcome.success and result.failed is None:
                    result.failed = item.identity
                    result.error = outcome.message

        result.succeeded = [i.identity for i in self._completed]
        result.cancelled = self.cancel_event.is_set()

        if result.failed or result.cancelled:
            reason = 'cancelled' if result.cancelled and not result.failed else f"{result.failed} failed"
            logger.error(f"Apply stopped ({reason}); rollback policy: {self.settings.rollback_policy}")
            rollback = self._rollback()
            result.rolled_back = rollback.reverted
            result.unresolved = rollback.unresolved

        result.duration = time.time() - start
        return result

    def _rollback(self) -> RollbackResult:
        policy = self.settings.rollback_policy
        if policy == 'none':
            return RollbackResult()
        controller = RollbackController(self.provider, self.store, self.settings, is_transient=is_transient)
        if policy == 'all':
            return controller.teardown()
        return controller.rollback(list(self._completed))

    def _run_item(self, item: ChangeSetItem) -> Optional[ActionResult]:
        """Run one item; None when it was never started."""
        if item.action == NO_OP or self.stopping:
            return None

        start = time.time()
        attempts = 0
        try:
            entry, attempts = retry_call(
                lambda: self._execute(item),
                attempts=self.settings.max_attempts,
                base_delay=self.settings.base_delay,
                max_delay=self.settings.max_delay,
                is_transient=is_transient,
                wait=self.cancel_event.wait,
                description=f"{item.action} {item.identity}",
            )
        except Exception as e:
            if self.cancel_event.is_set() and is_transient(e):
                logger.info(f"{item.identity}: cancelled while retrying")
                return None
            self._halt.set()
            logger.error(f"{item.action} {item.identity} failed ({classify_error(e)}): {e}")
            return ActionResult(success=False, message=str(e), duration=time.time() - start)

        with self._lock:
            self._completed.append(item)
        logger.info(f"{item.action} {item.identity}: ok")
        return ActionResult(
            success=True,
            message=item.action,
            duration=time.time() - start,
            attempts=attempts,
            outputs=entry.outputs if entry else {},
        )

    def _resolve(self, item: ChangeSetItem) -> dict:
        try:
            return resolve_attributes(item.node.attributes, self.store.lookup)
        except KeyError as e:
            raise TerminalError(f"unresolved reference in {item.identity}: {e}") from e

    def _execute(self, item: ChangeSetItem) -> Optional[StateEntry]:
        node = item.node
        if item.action == DESTROY:
            prior = item.prior
            if prior.external_id:
                try:
                    self.provider.delete(prior.type, prior.external_id)
                except NotFoundError:
                    logger.warning(f"{item.identity} ({prior.external_id}) already gone")
            self.store.delete(item.identity)
            return None

        attributes = self._resolve(item)
        if item.action == UPDATE and item.prior.external_id:
            resp = self.provider.update(node.type, item.prior.external_id, attributes)
        elif item.action in (CREATE, UPDATE):
            resp = self.provider.create(node.type, node.name, attributes)
        else:
            raise ValueError(f"Unknown action: {item.action}")

        entry = StateEntry(
            identity=item.identity,
            attributes=dict(node.attributes),
            depends_on=node.dependencies,
            external_id=resp.external_id,
            outputs=resp.outputs,
            applied_at=time.time(),
        )
        self.store.put(entry)
        return entry
