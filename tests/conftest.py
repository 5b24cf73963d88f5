"""Shared fixtures: a scriptable notification channel, contacts and fast policies."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from soulence.config import AlertPolicy, ContactDirectory, CorePolicy, RetryPolicy
from soulence.errors import TransientChannelError
from soulence.models import Contact, ContactRole, DeliveryReceipt


class FakeChannel:
    """Notification channel whose failures are scripted per contact.

    Args:
        fail_counts: contact_id -> number of calls that fail before succeeding.
        always_fail: Every call fails.
        delay: Seconds each call sleeps before answering.
    """

    def __init__(
        self,
        fail_counts: dict[str, int] | None = None,
        always_fail: bool = False,
        delay: float = 0.0,
    ) -> None:
        self.fail_counts = dict(fail_counts or {})
        self.always_fail = always_fail
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self.delivered: list[tuple[str, str]] = []
        self.payloads: list[dict[str, Any]] = []

    async def notify(self, contact: Contact, payload: dict[str, Any]) -> DeliveryReceipt:
        self.calls.append((contact.contact_id, payload["alert_id"]))
        self.payloads.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail:
            raise TransientChannelError("provider unavailable", contact_id=contact.contact_id)
        if self.fail_counts.get(contact.contact_id, 0) > 0:
            self.fail_counts[contact.contact_id] -= 1
            raise TransientChannelError("provider unavailable", contact_id=contact.contact_id)
        self.delivered.append((contact.contact_id, payload["alert_id"]))
        return DeliveryReceipt(
            contact_id=contact.contact_id,
            channel=contact.channel,
            reference=f"msg-{len(self.delivered)}",
        )

    def calls_for(self, contact_id: str) -> int:
        return sum(1 for cid, _ in self.calls if cid == contact_id)


def make_policy(
    max_attempts: int = 3,
    base_delay: float = 0.001,
    attempt_timeout: float = 1.0,
    auto_dispatch: bool = True,
    parent_cutoff: int = 2,
) -> CorePolicy:
    return CorePolicy(
        retry=RetryPolicy(
            max_attempts=max_attempts,
            base_delay_seconds=base_delay,
            max_delay_seconds=max(base_delay, 0.01),
            jitter_ratio=0.0,
            attempt_timeout_seconds=attempt_timeout,
        ),
        alerts=AlertPolicy(
            parent_severity_cutoff=parent_cutoff,
            auto_dispatch=auto_dispatch,
        ),
    )


@pytest.fixture
def contacts() -> ContactDirectory:
    directory = ContactDirectory()
    directory.set_contacts("student_1", [
        Contact(contact_id="therapist_1", name="Dr. Rivera", role=ContactRole.THERAPIST,
                channel="email", address="rivera@example.org"),
        Contact(contact_id="parent_1", name="Sam", role=ContactRole.PARENT,
                channel="sms", address="+1-555-0100"),
    ])
    directory.set_contacts("student_2", [
        Contact(contact_id="therapist_2", name="Dr. Okafor", role=ContactRole.THERAPIST),
    ])
    return directory


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def make_channel() -> Callable[..., FakeChannel]:
    return FakeChannel


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Yield to the event loop until *predicate* holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)
