"""
Decision Poller - waits for an asynchronous credit decision.

After an initial delay the poller fetches the account's decision every
interval until the decision is terminal or the attempt budget is spent, then
emits a single completion (the "advance" signal for the intake workflow).

Rules:
- A tick with no resolvable account id is skipped and not counted.
- A fetch failure stops polling and is reported once; it is never retried.
- A terminal decision wins over the attempt budget on the same tick.
- After stop() returns no tick, completion or failure is delivered.
"""
import asyncio
import logging
import os
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Optional, Union

from models.credit import (
    DecisionSnapshot,
    PollCompletion,
    PollConfig,
    PollOutcome,
    PollState,
    PollStatus,
)

logger = logging.getLogger(__name__)

FetchSnapshot = Callable[[str], Awaitable[DecisionSnapshot]]
TargetSource = Union[str, None, Callable[[], Optional[str]]]
TerminalPredicate = Callable[[Optional[str]], bool]


def default_poll_config() -> PollConfig:
    """Poll configuration from the environment (CREDIT_POLL_*)."""
    sentinels = os.environ.get("CREDIT_POLL_PENDING_SENTINELS", "Pending")
    return PollConfig(
        max_attempts=int(os.environ.get("CREDIT_POLL_MAX_ATTEMPTS", "5")),
        interval_ms=int(os.environ.get("CREDIT_POLL_INTERVAL_MS", "10000")),
        initial_delay_ms=int(os.environ.get("CREDIT_POLL_INITIAL_DELAY_MS", "10000")),
        pending_sentinels=[s.strip() for s in sentinels.split(",") if s.strip()],
    )


def make_terminal_predicate(pending_sentinels: Iterable[str] = ("Pending",)) -> TerminalPredicate:
    """Build the terminality check for a set of "still waiting" values.

    A decision is terminal when present, non-empty after trimming and not one
    of the sentinels (case-insensitive).
    """
    sentinels = {s.strip().lower() for s in pending_sentinels}

    def is_terminal(decision: Optional[str]) -> bool:
        if decision is None:
            return False
        value = str(decision).strip()
        if not value:
            return False
        return value.lower() not in sentinels

    return is_terminal


is_terminal_decision = make_terminal_predicate()


class DecisionPoller:
    """Bounded poll for a terminal decision on one account."""

    def __init__(
        self,
        fetch_snapshot: FetchSnapshot,
        on_complete: Callable[[PollCompletion], None],
        on_failure: Optional[Callable[[Exception], None]] = None,
        config: Optional[PollConfig] = None,
        is_terminal: Optional[TerminalPredicate] = None,
        notify_changed: Optional[Callable[[str], Awaitable[None]]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or default_poll_config()
        self.state = PollState.from_config(self.config)
        self._fetch_snapshot = fetch_snapshot
        self._on_complete = on_complete
        self._on_failure = on_failure
        self._is_terminal = is_terminal or make_terminal_predicate(self.config.pending_sentinels)
        self._notify_changed = notify_changed
        self._sleep = sleep
        self._target: TargetSource = None
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self._done = asyncio.Event()

        self.completion: Optional[PollCompletion] = None
        self.error: Optional[Exception] = None
        self.last_snapshot: Optional[DecisionSnapshot] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, target_id_source: TargetSource):
        """Begin polling. target_id_source is an id, or a callable resolving one per tick."""
        if self._task is not None or self._stopped:
            raise RuntimeError("DecisionPoller can only be started once")
        self._target = target_id_source
        self.state.status = PollStatus.WAITING
        logger.info(
            f"Decision poller started: initial_delay={self.config.initial_delay_ms}ms "
            f"interval={self.config.interval_ms}ms max_attempts={self.config.max_attempts}"
        )
        self._task = asyncio.create_task(self._run())

    def set_target(self, target_id_source: TargetSource):
        """Point the poller at a late-resolved account id."""
        self._target = target_id_source

    def stop(self):
        """Tear down. Synchronous so that nothing observable happens after it returns."""
        if self._stopped:
            return
        self._stopped = True
        self.state.status = PollStatus.STOPPED
        self._cancel_task()
        self._done.set()
        logger.info(f"Decision poller stopped target_id={self.state.target_id}")

    @property
    def active(self) -> bool:
        return not self._stopped

    async def wait(self) -> Optional[PollCompletion]:
        """Wait until the poller completes, fails or is stopped."""
        await self._done.wait()
        return self.completion

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    def resolve_target(self) -> Optional[str]:
        source = self._target
        target = source() if callable(source) else source
        return target or None

    async def _run(self):
        try:
            await self._sleep(self.config.initial_delay_ms / 1000)
            if self._stopped:
                return
            self.state.status = PollStatus.POLLING
            logger.info("Decision poller initial delay finished, polling")
            while not self._stopped:
                await self.poll_once()
                if self._stopped:
                    break
                await self._sleep(self.config.interval_ms / 1000)
        except asyncio.CancelledError:
            pass

    async def poll_once(self):
        """Run one tick. No-op once the poller has completed, failed or stopped."""
        if self._stopped or self.state.has_completed:
            return

        target_id = self.resolve_target()
        if not target_id:
            logger.debug("Decision poll tick skipped - no account id yet")
            return

        self.state.target_id = target_id
        self.state.attempt_count += 1
        attempt = self.state.attempt_count
        logger.info(f"Decision poll #{attempt} target_id={target_id}")

        try:
            snapshot = await self._fetch_snapshot(target_id)
        except Exception as e:
            if self._stopped:
                return
            self._fail(e)
            return

        if self._stopped:
            return
        self.last_snapshot = snapshot

        if self._notify_changed is not None:
            try:
                await self._notify_changed(target_id)
            except Exception as e:
                logger.warning(f"notify_changed failed target_id={target_id}: {e}")
            if self._stopped:
                return

        if self._is_terminal(snapshot.decision_label):
            logger.info(f"Decision found on poll #{attempt}: {snapshot.decision_label}")
            self._complete(PollOutcome.DECISION_FOUND, snapshot)
        elif attempt >= self.state.max_attempts:
            logger.info(f"Max polls reached ({attempt}) without a decision")
            self._complete(PollOutcome.MAX_ATTEMPTS, snapshot)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _complete(self, outcome: PollOutcome, snapshot: Optional[DecisionSnapshot]):
        if self.state.has_completed:
            return
        self.state.has_completed = True
        self.state.status = PollStatus.COMPLETED
        self._stopped = True
        self._cancel_task()
        self.completion = PollCompletion(
            outcome=outcome,
            attempts=self.state.attempt_count,
            target_id=self.state.target_id,
            snapshot=snapshot,
            completed_at=datetime.now(timezone.utc),
        )
        self._done.set()
        try:
            self._on_complete(self.completion)
        except Exception as e:
            logger.error(f"Poll completion handler failed: {e}")

    def _fail(self, error: Exception):
        self.error = error
        self.state.status = PollStatus.FAILED
        self._stopped = True
        self._cancel_task()
        self._done.set()
        logger.error(f"Decision poll fetch failed, polling stopped target_id={self.state.target_id}: {error}")
        if self._on_failure is not None:
            try:
                self._on_failure(error)
            except Exception as e:
                logger.error(f"Poll failure handler failed: {e}")

    def _cancel_task(self):
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # The loop exits on its own when the transition happens inside a tick
        if task is not current:
            try:
                task.cancel()
            except RuntimeError as e:
                # Owning loop already closed
                logger.debug(f"Poll task cancel skipped: {e}")
