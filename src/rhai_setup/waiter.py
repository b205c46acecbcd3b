"""
Delete a named resource and poll until it is gone.

The waiter issues a single delete request and then checks, at a fixed
interval, whether the resource still exists. It never watches events and
never retries the delete. Waiting is bounded by ``max_wait_seconds``; when
the bound is reached the outcome is ``Outcome.TIMED_OUT``, which means the
resource manager has not finished yet, not that something failed.

The resource is anything exposing ``kind``, ``exists(name) -> bool`` and
``delete(name)``, where ``exists`` raises ``CheckFailed`` for errors other
than "not found" and ``delete`` raises ``ResourceNotFound`` or
``DeletionRequestFailed``. See ``rhai_setup.cluster.ProjectResource``.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from rhai_setup.functions import announce
from rhai_setup.exceptions import CheckFailed, DeletionRequestFailed, ResourceNotFound

logger = logging.getLogger(__name__)

DEFAULT_MAX_WAIT_TIME = 300
DEFAULT_POLL_INTERVAL = 5
DEFAULT_PROGRESS_EVERY = 30


class Outcome(Enum):
    DELETED = "deleted"
    NOTHING_TO_DELETE = "nothing_to_delete"
    TIMED_OUT = "timed_out"
    REQUEST_FAILED = "request_failed"
    CHECK_FAILED = "check_failed"

    @property
    def exit_code(self) -> int:
        return {
            Outcome.DELETED: 0,
            Outcome.NOTHING_TO_DELETE: 0,
            Outcome.TIMED_OUT: 2,
            Outcome.REQUEST_FAILED: 3,
            Outcome.CHECK_FAILED: 4,
        }[self]


@dataclass
class DeletionConfig:
    """
    Tunables for one delete-and-wait cycle.

    max_wait_seconds: bound on the time spent polling (MAX_WAIT_TIME, default 300)
    poll_interval_seconds: sleep between two existence checks (POLL_INTERVAL, default 5)
    progress_every_seconds: a "still waiting" line is emitted each time this much
        more waiting has elapsed (default 30)
    """
    max_wait_seconds: int = DEFAULT_MAX_WAIT_TIME
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL
    progress_every_seconds: int = DEFAULT_PROGRESS_EVERY

    def __post_init__(self):
        for field_name in ("max_wait_seconds", "poll_interval_seconds", "progress_every_seconds"):
            value = getattr(self, field_name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{field_name} must be a positive integer, got {value!r}")

    @classmethod
    def from_env(cls, ev: dict) -> "DeletionConfig":
        return cls(
            max_wait_seconds=ev.get("max_wait_time", DEFAULT_MAX_WAIT_TIME),
            poll_interval_seconds=ev.get("poll_interval", DEFAULT_POLL_INTERVAL),
        )


@dataclass
class DeletionAttempt:
    resource_identifier: str
    max_wait_seconds: int
    poll_interval_seconds: int
    elapsed_seconds: int = 0
    checks: int = 0
    sleeps: int = 0


@dataclass
class DeletionResult:
    """Outcome of one teardown. ``simulated`` is set for dry runs, where nothing was deleted."""
    outcome: Outcome
    message: str
    attempt: DeletionAttempt = None
    simulated: bool = False

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code


class ResourceDeletionWaiter:

    def __init__(self, resource, config: DeletionConfig = None, sleep: Callable[[float], None] = time.sleep):
        self.resource = resource
        self.config = config or DeletionConfig()
        self.sleep = sleep

    def request_deletion(self, identifier: str):
        """
        Issue the delete call once.

        Raises ResourceNotFound when there is nothing to delete and
        DeletionRequestFailed when the request is rejected.
        """
        self.resource.delete(identifier)
        announce(f"✅ {self.resource.kind} deletion initiated for {identifier}")

    def _is_present(self, attempt: DeletionAttempt) -> bool:
        # CheckFailed propagates, it must never read as present or absent
        present = self.resource.exists(attempt.resource_identifier)
        attempt.checks += 1
        logger.debug(
            f"check #{attempt.checks}: {self.resource.kind} {attempt.resource_identifier} "
            f"{'still present' if present else 'absent'} "
            f"({attempt.elapsed_seconds}/{attempt.max_wait_seconds} seconds elapsed)"
        )
        return present

    def await_absence(self, identifier: str, max_wait_seconds: int = None, poll_interval_seconds: int = None):
        """
        Poll until ``identifier`` is gone or ``max_wait_seconds`` is used up.

        Returns ``(Outcome.DELETED | Outcome.TIMED_OUT, DeletionAttempt)``.
        A last check always follows the final sleep since that sleep may
        overshoot the bound and the resource may disappear during it.
        """
        if max_wait_seconds is None:
            max_wait_seconds = self.config.max_wait_seconds
        if poll_interval_seconds is None:
            poll_interval_seconds = self.config.poll_interval_seconds
        if max_wait_seconds < 0 or poll_interval_seconds <= 0:
            raise ValueError(
                f"invalid wait bounds: max_wait_seconds={max_wait_seconds}, "
                f"poll_interval_seconds={poll_interval_seconds}"
            )

        attempt = DeletionAttempt(
            resource_identifier=identifier,
            max_wait_seconds=max_wait_seconds,
            poll_interval_seconds=poll_interval_seconds,
        )
        every = self.config.progress_every_seconds
        next_progress = every

        while attempt.elapsed_seconds < attempt.max_wait_seconds:
            if not self._is_present(attempt):
                return Outcome.DELETED, attempt

            if attempt.elapsed_seconds >= next_progress:
                announce(
                    f"Still waiting... ({attempt.elapsed_seconds}/{attempt.max_wait_seconds} seconds elapsed)"
                )
                next_progress = (attempt.elapsed_seconds // every + 1) * every

            self.sleep(attempt.poll_interval_seconds)
            attempt.sleeps += 1
            attempt.elapsed_seconds += attempt.poll_interval_seconds

        if not self._is_present(attempt):
            return Outcome.DELETED, attempt
        return Outcome.TIMED_OUT, attempt

    def run(self, identifier: str, dry_run: bool = False) -> DeletionResult:
        """Pre-check, delete once, then wait. Every path ends in a DeletionResult."""
        kind = self.resource.kind
        try:
            present = self.resource.exists(identifier)
        except CheckFailed as e:
            return DeletionResult(Outcome.CHECK_FAILED, str(e))

        if not present:
            return DeletionResult(
                Outcome.NOTHING_TO_DELETE, f"{kind} {identifier} does not exist. Nothing to delete."
            )

        if dry_run:
            announce(f"[DRY RUN] Would have deleted {kind} {identifier} and waited for its removal.")
            return DeletionResult(
                Outcome.DELETED, f"[DRY RUN] {kind} {identifier} left untouched.", simulated=True
            )

        announce(f"🗑️ Deleting {kind}: {identifier}")
        try:
            self.request_deletion(identifier)
        except ResourceNotFound:
            # removed by someone else between the pre-check and our request
            return DeletionResult(
                Outcome.NOTHING_TO_DELETE, f"{kind} {identifier} does not exist. Nothing to delete."
            )
        except DeletionRequestFailed as e:
            return DeletionResult(Outcome.REQUEST_FAILED, str(e))

        announce(f"⏳ Waiting for {kind} to be fully deleted...")
        announce(
            f"This may take a few minutes. Maximum wait time: {self.config.max_wait_seconds} seconds"
        )
        try:
            outcome, attempt = self.await_absence(identifier)
        except CheckFailed as e:
            return DeletionResult(Outcome.CHECK_FAILED, str(e))

        if outcome is Outcome.DELETED:
            message = f"{kind} {identifier} has been fully deleted!"
        else:
            message = (
                f"{kind} {identifier} still exists after {attempt.elapsed_seconds} seconds. "
                f"The {kind.lower()} may still be in the process of deletion."
            )
        return DeletionResult(outcome, message, attempt)
