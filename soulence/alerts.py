"""
Alert Lifecycle Manager.

Owns every ``CrisisAlert`` from the moment a crisis is detected until its
notifications are delivered, exhausted, or a human resolves it.

**State machine:**

    PENDING -> DISPATCHING -> DELIVERED
                    |  ^
                    v  |  (retry while attempts remain)
                   FAILED  -- exhausted --> terminal, manual follow-up

    PENDING -> SUPPRESSED          (duplicate trigger merged into active alert)
    PENDING | DISPATCHING | FAILED -> RESOLVED   (closed by a human)

**Guarantees:**

* At most one active alert per user.  An alert is active while it is
  PENDING or DISPATCHING, or FAILED with a retry still pending.  A new
  detection for a user with an active alert escalates that alert's severity
  and is recorded as a SUPPRESSED evidence record; no parallel alert is
  created.  The check and the create-or-update happen inside a per-user
  critical section.
* Dispatch attempts for one alert are serialized, so concurrent calls never
  notify the same contact twice.  Contacts notified by an earlier attempt
  are skipped on retry.
* Delivery runs in a background worker per alert; detection never waits on
  it.  Each notify call is bounded by a timeout; retries back off
  exponentially with jitter; resolving an alert stops pending retries.
* Exhausted alerts are never dropped: they stay FAILED with
  ``exhausted=True`` and are listed by ``needs_follow_up()``.  Cancelling
  pending retries, or shutting down while an alert is still undelivered,
  exhausts the alert the same way and frees its user's slot.
* Contacts are re-selected after each round of notifications, so an alert
  escalated while delivery is in flight also reaches the contacts the
  higher severity makes eligible.

DISCLAIMER: Alerts route a heuristic crisis signal to humans.  They are not
a clinical judgment and do not replace emergency services.
"""

from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime, timezone
from typing import Any, Optional

from soulence.audit import AuditEventType, AuditLog
from soulence.config import DEFAULT_POLICY, ContactDirectory, CorePolicy
from soulence.errors import ContractViolation, TransientChannelError
from soulence.locks import KeyedLocks
from soulence.models import AlertState, Contact, CrisisAlert, CrisisDetermination
from soulence.notifications import build_payload, select_contacts
from soulence.ports import NotificationChannel, PersistencePort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Valid state transitions
# ---------------------------------------------------------------------------

_VALID_TRANSITIONS: dict[AlertState, set[AlertState]] = {
    AlertState.PENDING: {
        AlertState.DISPATCHING,
        AlertState.SUPPRESSED,
        AlertState.RESOLVED,
    },
    AlertState.DISPATCHING: {
        AlertState.DELIVERED,
        AlertState.FAILED,
        AlertState.RESOLVED,
    },
    AlertState.FAILED: {AlertState.DISPATCHING, AlertState.RESOLVED},
    AlertState.DELIVERED: set(),  # terminal
    AlertState.SUPPRESSED: set(),  # terminal
    AlertState.RESOLVED: set(),  # terminal
}

_RESOLVABLE = (AlertState.PENDING, AlertState.DISPATCHING, AlertState.FAILED)

_RETRIES_CANCELLED = "Pending retries cancelled before delivery completed."
_SHUT_DOWN = "Shut down before delivery completed."


def more_severe(a: int, b: int) -> int:
    """Return the more severe of two severity levels (lower is more severe)."""
    return min(a, b)


def is_active(alert: CrisisAlert) -> bool:
    """Whether *alert* occupies its user's active-alert slot."""
    if alert.state in (AlertState.PENDING, AlertState.DISPATCHING):
        return True
    return alert.state == AlertState.FAILED and not alert.exhausted


class AlertLifecycleManager:
    """Creates, de-duplicates, dispatches and retries crisis alerts.

    Must be used from a single asyncio event loop.

    Args:
        channel: Outbound notification channel.
        contacts: Directory of each user's trusted contacts, in notify order.
        policy: Core policy (retry and alert sections are used).
        store: Optional persistence port receiving every alert transition.
        audit_log: Optional audit trail; a private one is created if omitted.
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        contacts: ContactDirectory,
        policy: Optional[CorePolicy] = None,
        store: Optional[PersistencePort] = None,
        audit_log: Optional[AuditLog] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._channel = channel
        self._contacts = contacts
        self._policy = policy or DEFAULT_POLICY
        self._store = store
        self._audit_log = audit_log if audit_log is not None else AuditLog()
        self._rng = rng or random.Random()

        self._alerts: dict[str, CrisisAlert] = {}
        self._active: dict[str, str] = {}
        self._user_locks = KeyedLocks()
        self._alert_locks = KeyedLocks()
        self._workers: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    # -- helpers --

    def _validate_transition(self, alert: CrisisAlert, target: AlertState) -> None:
        allowed = _VALID_TRANSITIONS.get(alert.state, set())
        if alert.exhausted:
            allowed = allowed - {AlertState.DISPATCHING}
        if target not in allowed:
            message = (
                f"Alert {alert.alert_id}: cannot transition from {alert.state.value} "
                f"to {target.value}. Allowed transitions: {sorted(s.value for s in allowed)}"
            )
            logger.error(message)
            raise ContractViolation(message)

    def _record(
        self,
        event_type: AuditEventType,
        alert: CrisisAlert,
        actor_id: str = "SYSTEM",
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self._audit_log.record(
            event_type=event_type,
            user_id=alert.user_id,
            target_entity=alert.alert_id,
            actor_id=actor_id,
            metadata={"state": alert.state.value, **(metadata or {})},
        )
        if self._store is not None:
            self._store.record_alert(alert, event_type.value)

    def _transition(
        self,
        alert: CrisisAlert,
        target: AlertState,
        event_type: AuditEventType,
        actor_id: str = "SYSTEM",
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self._validate_transition(alert, target)
        previous = alert.state
        alert.state = target
        logger.debug("Alert %s: %s -> %s", alert.alert_id, previous.value, target.value)
        self._record(
            event_type,
            alert,
            actor_id=actor_id,
            metadata={"previous_state": previous.value, **(metadata or {})},
        )

    def _release_slot(self, alert: CrisisAlert) -> None:
        if self._active.get(alert.user_id) == alert.alert_id:
            del self._active[alert.user_id]

    def _abandon(self, alert: CrisisAlert, reason: str) -> None:
        """Exhaust an alert nobody will retry so it surfaces for follow-up."""
        if not is_active(alert):
            return
        alert.exhausted = True
        alert.last_error = f"{alert.last_error} {reason}" if alert.last_error else reason
        logger.error(
            "Alert %s for user %s abandoned after %d attempt(s): %s "
            "Manual follow-up required.",
            alert.alert_id, alert.user_id, alert.attempt_count, reason,
        )
        metadata = {"reason": reason, "attempt": alert.attempt_count}
        if alert.state == AlertState.FAILED:
            self._record(AuditEventType.ALERT_EXHAUSTED, alert, metadata=metadata)
        else:
            self._transition(
                alert, AlertState.FAILED, AuditEventType.ALERT_EXHAUSTED, metadata=metadata
            )
        self._release_slot(alert)

    def _lookup(self, alert: CrisisAlert | str) -> CrisisAlert:
        alert_id = alert if isinstance(alert, str) else alert.alert_id
        managed = self._alerts.get(alert_id)
        if managed is None:
            message = f"Alert {alert_id} is not managed by this lifecycle manager."
            logger.error(message)
            raise ContractViolation(message)
        return managed

    # -- detection path --

    async def on_crisis_detected(
        self, user_id: str, determination: CrisisDetermination
    ) -> CrisisAlert:
        """Create an alert for *user_id*, or fold the trigger into the active one.

        Returns:
            The new alert (already DISPATCHING), or the user's existing
            active alert -- the same object -- with escalated severity.

        Raises:
            ContractViolation: If the determination is not triggered, has no
                severity, or belongs to another user.
        """
        if not determination.triggered or determination.severity is None:
            message = f"Determination for user {user_id} is not a triggered crisis."
            logger.error(message)
            raise ContractViolation(message)
        if determination.user_id != user_id:
            message = (
                f"Determination for user {determination.user_id} "
                f"passed for user {user_id}."
            )
            logger.error(message)
            raise ContractViolation(message)

        async with self._user_locks.hold(user_id):
            active = self.active_alert(user_id)
            if active is not None:
                self._merge_trigger(active, determination)
                return active

            alert = CrisisAlert(
                user_id=user_id,
                severity_level=determination.severity,
                trigger_pattern=determination.trigger_pattern,
            )
            self._alerts[alert.alert_id] = alert
            self._active[user_id] = alert.alert_id
            logger.warning(
                "Crisis alert %s created for user %s (severity %d): %s",
                alert.alert_id, user_id, alert.severity_level, alert.trigger_pattern,
            )
            self._record(
                AuditEventType.ALERT_CREATED,
                alert,
                metadata={
                    "severity_level": alert.severity_level,
                    "trigger_pattern": alert.trigger_pattern,
                    "manual": determination.manual,
                    "consistent_low_mood": determination.consistent_low_mood,
                    "rapid_decline": determination.rapid_decline,
                },
            )
            self._transition(alert, AlertState.DISPATCHING, AuditEventType.DISPATCH_STARTED)

            if self._policy.alerts.auto_dispatch:
                self._start_worker(alert)
            return alert

    def _merge_trigger(
        self, active: CrisisAlert, determination: CrisisDetermination
    ) -> None:
        previous = active.severity_level
        active.severity_level = more_severe(previous, determination.severity)
        active.trigger_history.append(determination.trigger_pattern)

        evidence = CrisisAlert(
            user_id=active.user_id,
            severity_level=determination.severity,
            trigger_pattern=determination.trigger_pattern,
            merged_into=active.alert_id,
        )
        self._alerts[evidence.alert_id] = evidence
        self._transition(
            evidence,
            AlertState.SUPPRESSED,
            AuditEventType.ALERT_SUPPRESSED,
            metadata={"merged_into": active.alert_id},
        )

        if active.severity_level != previous:
            logger.warning(
                "Alert %s for user %s escalated from severity %d to %d",
                active.alert_id, active.user_id, previous, active.severity_level,
            )
            self._record(
                AuditEventType.ALERT_ESCALATED,
                active,
                metadata={
                    "previous_severity": previous,
                    "severity_level": active.severity_level,
                    "suppressed_alert_id": evidence.alert_id,
                },
            )
        else:
            logger.info(
                "Duplicate crisis trigger for user %s merged into alert %s",
                active.user_id, active.alert_id,
            )

    # -- dispatch path --

    def _start_worker(self, alert: CrisisAlert) -> None:
        if alert.alert_id in self._workers:
            return
        self._cancel_events[alert.alert_id] = asyncio.Event()
        self._workers[alert.alert_id] = asyncio.get_running_loop().create_task(
            self._run_worker(alert), name=f"dispatch-{alert.alert_id}"
        )

    async def _run_worker(self, alert: CrisisAlert) -> None:
        cancelled = self._cancel_events[alert.alert_id]
        try:
            while not cancelled.is_set():
                async with self._alert_locks.hold(alert.alert_id):
                    if alert.is_terminal:
                        return
                    await self._attempt(alert)
                if alert.state != AlertState.FAILED or alert.exhausted:
                    return
                delay = self.backoff_delay(alert.attempt_count)
                logger.info(
                    "Retrying alert %s in %.2fs (attempt %d of %d)",
                    alert.alert_id, delay, alert.attempt_count + 1,
                    self._policy.retry.max_attempts,
                )
                try:
                    await asyncio.wait_for(cancelled.wait(), timeout=delay)
                except TimeoutError:
                    continue
            logger.info("Pending retries for alert %s cancelled", alert.alert_id)
            self._abandon(alert, _RETRIES_CANCELLED)
        finally:
            self._workers.pop(alert.alert_id, None)
            self._cancel_events.pop(alert.alert_id, None)

    def backoff_delay(self, attempt_count: int) -> float:
        """Delay before the retry following attempt number *attempt_count*."""
        retry = self._policy.retry
        delay = min(
            retry.base_delay_seconds * (2 ** max(attempt_count - 1, 0)),
            retry.max_delay_seconds,
        )
        return delay + self._rng.uniform(0, retry.jitter_ratio * delay)

    async def dispatch(self, alert: CrisisAlert) -> CrisisAlert:
        """Run one delivery attempt for *alert*.

        Attempts on the same alert are serialized.  A FAILED alert with
        attempts remaining is moved back to DISPATCHING first.

        Returns:
            The alert after the attempt (DELIVERED or FAILED, or RESOLVED if a
            human closed it mid-attempt).

        Raises:
            ContractViolation: If the alert is unknown or already terminal.
        """
        alert = self._lookup(alert)
        async with self._alert_locks.hold(alert.alert_id):
            if alert.is_terminal:
                message = (
                    f"Cannot dispatch alert {alert.alert_id} in terminal state "
                    f"{alert.state.value}{' (exhausted)' if alert.exhausted else ''}."
                )
                logger.error(message)
                raise ContractViolation(message)
            return await self._attempt(alert)

    def _eligible_contacts(self, alert: CrisisAlert) -> list[Contact]:
        return select_contacts(
            self._contacts.contacts_for(alert.user_id),
            alert.severity_level,
            self._policy.alerts,
        )

    async def _attempt(self, alert: CrisisAlert) -> CrisisAlert:
        if alert.state in (AlertState.PENDING, AlertState.FAILED):
            self._transition(alert, AlertState.DISPATCHING, AuditEventType.DISPATCH_STARTED)

        alert.attempt_count += 1
        alert.last_attempt_at = datetime.now(timezone.utc)
        retry = self._policy.retry

        contacts = self._eligible_contacts(alert)
        if not contacts:
            alert.exhausted = True
            alert.last_error = "No trusted contacts configured for user."
            logger.error(
                "Alert %s for user %s has no contacts to notify; manual follow-up required",
                alert.alert_id, alert.user_id,
            )
            self._transition(
                alert, AlertState.FAILED, AuditEventType.ALERT_EXHAUSTED,
                metadata={"reason": alert.last_error, "attempt": alert.attempt_count},
            )
            self._release_slot(alert)
            return alert

        while True:
            pending = [c for c in contacts if c.contact_id not in alert.notified_contacts]
            if not pending:
                break
            payload = build_payload(alert)
            for contact in pending:
                try:
                    receipt = await asyncio.wait_for(
                        self._channel.notify(contact, payload),
                        timeout=retry.attempt_timeout_seconds,
                    )
                except TransientChannelError as exc:
                    reason = f"Delivery to {contact.contact_id} failed: {exc}"
                except TimeoutError:
                    reason = (
                        f"Delivery to {contact.contact_id} timed out after "
                        f"{retry.attempt_timeout_seconds:g}s"
                    )
                except Exception as exc:
                    logger.exception(
                        "Unexpected error from notification channel for alert %s",
                        alert.alert_id,
                    )
                    reason = f"Delivery to {contact.contact_id} failed: {exc!r}"
                else:
                    alert.notified_contacts.append(contact.contact_id)
                    self._record(
                        AuditEventType.CONTACT_NOTIFIED,
                        alert,
                        metadata={
                            "contact_id": contact.contact_id,
                            "contact_role": contact.role.value,
                            "channel": receipt.channel,
                            "reference": receipt.reference,
                            "severity_level": payload["severity_level"],
                            "position": len(alert.notified_contacts),
                        },
                    )
                    if alert.state != AlertState.DISPATCHING:
                        return alert
                    continue

                if alert.state != AlertState.DISPATCHING:
                    return alert
                return self._fail_attempt(alert, reason)

            # Severity may have escalated while notifications were in flight.
            contacts = self._eligible_contacts(alert)

        if alert.state != AlertState.DISPATCHING:
            return alert
        alert.delivered_at = datetime.now(timezone.utc)
        alert.last_error = ""
        self._transition(
            alert, AlertState.DELIVERED, AuditEventType.ALERT_DELIVERED,
            metadata={
                "notified_contacts": list(alert.notified_contacts),
                "attempt": alert.attempt_count,
            },
        )
        self._release_slot(alert)
        logger.info(
            "Alert %s delivered to %d contacts after %d attempt(s)",
            alert.alert_id, len(alert.notified_contacts), alert.attempt_count,
        )
        return alert

    def _fail_attempt(self, alert: CrisisAlert, reason: str) -> CrisisAlert:
        alert.last_error = reason
        max_attempts = self._policy.retry.max_attempts
        if alert.attempt_count >= max_attempts:
            alert.exhausted = True
            logger.error(
                "Alert %s for user %s exhausted after %d attempts: %s. "
                "Manual follow-up required.",
                alert.alert_id, alert.user_id, alert.attempt_count, reason,
            )
            self._transition(
                alert, AlertState.FAILED, AuditEventType.ALERT_EXHAUSTED,
                metadata={"reason": reason, "attempt": alert.attempt_count},
            )
            self._release_slot(alert)
        else:
            logger.warning(
                "Alert %s attempt %d of %d failed: %s",
                alert.alert_id, alert.attempt_count, max_attempts, reason,
            )
            self._transition(
                alert, AlertState.FAILED, AuditEventType.DISPATCH_FAILED,
                metadata={"reason": reason, "attempt": alert.attempt_count},
            )
        return alert

    # -- human actions --

    def cancel(self, alert_id: str) -> bool:
        """Stop pending retries for an alert.

        An alert left undelivered is marked exhausted, frees its user's slot
        and is listed by ``needs_follow_up()``.  An attempt already in flight
        finishes first.

        Returns:
            True if a dispatch worker was running for the alert.
        """
        event = self._cancel_events.get(alert_id)
        if event is None:
            return False
        event.set()
        alert = self._alerts.get(alert_id)
        if alert is not None and alert.state == AlertState.FAILED:
            self._abandon(alert, _RETRIES_CANCELLED)
        return True

    async def resolve(
        self, alert_id: str, actor_id: str, resolution_notes: str
    ) -> CrisisAlert:
        """Close an alert after human follow-up and stop its pending retries.

        Raises:
            ValueError: If ``resolution_notes`` is empty.
            ContractViolation: If the alert is unknown, delivered, suppressed
                or already resolved.
        """
        if not resolution_notes.strip():
            raise ValueError(
                "Resolution notes are mandatory. Cannot resolve an alert "
                "without documenting the follow-up."
            )
        alert = self._lookup(alert_id)
        async with self._user_locks.hold(alert.user_id):
            if alert.state not in _RESOLVABLE:
                message = f"Alert {alert_id} in state {alert.state.value} cannot be resolved."
                logger.error(message)
                raise ContractViolation(message)
            alert.resolved_at = datetime.now(timezone.utc)
            alert.resolved_by = actor_id
            alert.resolution_notes = resolution_notes
            self._transition(
                alert, AlertState.RESOLVED, AuditEventType.ALERT_RESOLVED,
                actor_id=actor_id,
                metadata={"resolution_notes": resolution_notes},
            )
            self._release_slot(alert)
        self.cancel(alert_id)
        logger.info("Alert %s resolved by %s", alert_id, actor_id)
        return alert

    # -- queries --

    def get_alert(self, alert_id: str) -> Optional[CrisisAlert]:
        return self._alerts.get(alert_id)

    def active_alert(self, user_id: str) -> Optional[CrisisAlert]:
        """The user's active alert, or None."""
        alert_id = self._active.get(user_id)
        if alert_id is None:
            return None
        alert = self._alerts[alert_id]
        if not is_active(alert):
            del self._active[user_id]
            return None
        return alert

    def alerts_for(self, user_id: str, include_suppressed: bool = True) -> list[CrisisAlert]:
        """All alerts of a user, newest first."""
        alerts = [
            a for a in self._alerts.values()
            if a.user_id == user_id
            and (include_suppressed or a.state != AlertState.SUPPRESSED)
        ]
        return sorted(alerts, key=lambda a: a.created_at, reverse=True)

    def needs_follow_up(self) -> list[CrisisAlert]:
        """Exhausted alerts awaiting manual follow-up, oldest first."""
        return sorted(
            (a for a in self._alerts.values()
             if a.state == AlertState.FAILED and a.exhausted),
            key=lambda a: a.created_at,
        )

    def has_pending_retry(self, alert_id: str) -> bool:
        return alert_id in self._workers

    async def wait_idle(self) -> None:
        """Wait until every dispatch worker has finished."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel all pending retries and wait for workers to stop.

        Alerts still undelivered afterwards are exhausted for manual
        follow-up.
        """
        for alert_id in list(self._cancel_events):
            self.cancel(alert_id)
        await self.wait_idle()
        for alert in list(self._alerts.values()):
            self._abandon(alert, _SHUT_DOWN)
