"""Rollback controller.

Reverts the steps an apply run completed, newest first:
- create  -> destroy the resource
- update  -> restore the prior attributes in place (same external id)
- destroy -> re-create it from the prior state entry

Rollback is best-effort. A step that fails is recorded as a RollbackError and
the remaining steps still run; what could not be reverted needs manual
intervention.
"""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Optional

from common import retry_call
from config import ApplySettings
from providers.base import NotFoundError, Provider
from resources import resolve_attributes
from stack_opr.graph import compute_ranks
from stack_opr.planner import CREATE, DESTROY, UPDATE, ChangeSetItem
from stack_opr.state import APPLIED, StateEntry, StateStore

logger = logging.getLogger(__name__)


class RollbackError(Exception):
    """A rollback step that could not be completed.

    Attributes:
        identity: Resource identity
        action: The action being reverted
        cause: Underlying exception
    """

    def __init__(self, identity: str, action: str, cause: Exception):
        self.identity = identity
        self.action = action
        self.cause = cause
        super().__init__(f"rollback of {action} {identity} failed: {cause}")


@dataclass
class RollbackResult:
    reverted: list[str] = field(default_factory=list)
    unresolved: list[RollbackError] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.unresolved


class RollbackController:
    """Reverts completed apply steps through the provider."""

    def __init__(
        self,
        provider: Provider,
        store: StateStore,
        settings: ApplySettings,
        is_transient: Optional[Callable[[Exception], bool]] = None,
        wait: Optional[Callable[[float], object]] = None,
    ):
        self.provider = provider
        self.store = store
        self.settings = settings
        self.is_transient = is_transient or (lambda e: getattr(e, 'retryable', False))
        self.wait = wait or time.sleep

    def _call(self, fn, description: str):
        result, _ = retry_call(
            fn,
            attempts=self.settings.max_attempts,
            base_delay=self.settings.base_delay,
            max_delay=self.settings.max_delay,
            is_transient=self.is_transient,
            wait=self.wait,
            description=description,
        )
        return result

    def rollback(self, completed: Iterable[ChangeSetItem]) -> RollbackResult:
        """Revert completed items in reverse completion order.

        Args:
            completed: Items in the order they completed

        Returns:
            RollbackResult with reverted identities (in rollback order) and
            the steps that could not be reverted
        """
        result = RollbackResult()
        for item in reversed(list(completed)):
            logger.info(f"Rolling back {item.action} {item.identity}")
            try:
                if item.action == CREATE:
                    self._destroy(item.identity)
                elif item.action == UPDATE:
                    self._restore(item.prior)
                elif item.action == DESTROY:
                    self._recreate(item.prior)
                else:
                    continue
            except Exception as e:
                error = RollbackError(item.identity, item.action, e)
                logger.error(str(error))
                if item.action in (CREATE, UPDATE):
                    self._mark_failed(item.identity, str(e))
                result.unresolved.append(error)
                continue
            result.reverted.append(item.identity)

        self._log_result(result)
        return result

    def teardown(self) -> RollbackResult:
        """Destroy every resource in the store, dependents first."""
        entries = {e.identity: e for e in self.store.all()}
        ranks = compute_ranks({i: e.depends_on for i, e in entries.items()})
        result = RollbackResult()
        for identity in sorted(entries, key=lambda i: (-ranks[i], i)):
            logger.info(f"Tearing down {identity}")
            try:
                self._destroy(identity)
            except Exception as e:
                error = RollbackError(identity, DESTROY, e)
                logger.error(str(error))
                self._mark_failed(identity, str(e))
                result.unresolved.append(error)
                continue
            result.reverted.append(identity)

        self._log_result(result)
        return result

    def _destroy(self, identity: str) -> None:
        entry = self.store.get(identity)
        if entry is None:
            return
        if entry.external_id:
            try:
                self._call(
                    lambda: self.provider.delete(entry.type, entry.external_id),
                    f"delete {identity}",
                )
            except NotFoundError:
                logger.warning(f"{identity} ({entry.external_id}) already gone")
        self.store.delete(identity)

    def _restore(self, prior: StateEntry) -> None:
        """Put an updated resource back to its prior attributes.

        Dependents that were left untouched keep pointing at the same
        external id. An entry that never had one (a failed create being
        reconciled) is removed again and its prior entry put back.
        """
        if not prior.external_id:
            self._destroy(prior.identity)
            self.store.put(prior)
            return
        attributes = resolve_attributes(prior.attributes, self.store.lookup)
        resp = self._call(
            lambda: self.provider.update(prior.type, prior.external_id, attributes),
            f"restore {prior.identity}",
        )
        self.store.put(replace(prior, outputs=resp.outputs or prior.outputs))

    def _recreate(self, prior: StateEntry) -> None:
        attributes = resolve_attributes(prior.attributes, self.store.lookup)
        resp = self._call(
            lambda: self.provider.create(prior.type, prior.name, attributes),
            f"re-create {prior.identity}",
        )
        self.store.put(replace(
            prior,
            external_id=resp.external_id,
            outputs=resp.outputs,
            applied_at=time.time(),
            status=APPLIED,
            error=None,
        ))

    def _mark_failed(self, identity: str, error: str) -> None:
        entry = self.store.get(identity)
        if entry is not None:
            self.store.put(entry.mark_failed(error))

    @staticmethod
    def _log_result(result: RollbackResult) -> None:
        if result.complete:
            logger.info(f"Rollback complete ({len(result.reverted)} reverted)")
        else:
            logger.error(
                f"Rollback incomplete: {len(result.unresolved)} step(s) need manual intervention: "
                f"{', '.join(e.identity for e in result.unresolved)}"
            )
