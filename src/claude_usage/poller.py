"""Background polling of the usage and profile endpoints.

``UsagePoller`` owns everything the presentation layer reads: the latest
usage and profile snapshots, the current error, and the loading flag. Only
the thread running a refresh writes that state, and it does so by swapping
in a new immutable ``PollerState``, so readers never see a half-updated
snapshot.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable

from claude_usage.api.client import UsageClient
from claude_usage.api.models import ProfileSnapshot, UsageSnapshot
from claude_usage.config.settings import load_config
from claude_usage.errors import APIError, ErrorCategory, RequestCancelledError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 30  # seconds
MAX_CONSECUTIVE_FAILURES = 5
CANCEL_CHECK_INTERVAL = 0.1  # seconds


@dataclass(frozen=True)
class ErrorState:
    """User-facing description of the last failed refresh."""

    kind: str
    category: ErrorCategory
    message: str
    recoverable: bool
    action_hint: str | None = None


@dataclass(frozen=True)
class PollerState:
    usage: UsageSnapshot | None = None
    profile: ProfileSnapshot | None = None
    error: ErrorState | None = None
    updated_at: datetime | None = None


def classify_error(error: BaseException) -> ErrorState | None:
    """Convert a refresh failure into an ErrorState.

    Returns None for cancellation, which is never reported.
    """
    if isinstance(error, RequestCancelledError):
        return None
    if isinstance(error, APIError):
        return ErrorState(
            kind=error.kind,
            category=error.category,
            message=error.message,
            recoverable=error.recoverable,
            action_hint=error.action_hint,
        )
    return ErrorState(
        kind="unknown",
        category=ErrorCategory.UNKNOWN,
        message=str(error) or type(error).__name__,
        recoverable=True,
    )


Listener = Callable[["UsagePoller"], None]


class UsagePoller:
    """Refreshes usage and profile on a timer, with auto-pause on failure.

    Args:
        client: API client used for both fetches.
        interval: Seconds between automatic refreshes.
        max_consecutive_failures: Failed refreshes in a row after which the
            timer is stopped until ``resume_auto_refresh`` is called.
    """

    def __init__(
        self,
        client: UsageClient,
        interval: float = POLL_INTERVAL,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
    ):
        self.client = client
        self.interval = interval
        self.max_consecutive_failures = max_consecutive_failures

        self._state = PollerState()
        self._lock = threading.Lock()
        self._is_loading = False
        self._consecutive_failures = 0
        self._cancel_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="claude-usage-fetch")
        self._closed = False

        self._timer_lock = threading.Lock()
        self._timer_stop: threading.Event | None = None
        self._listeners: list[Listener] = []

    # Read-only view for the presentation layer

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def usage(self) -> UsageSnapshot | None:
        return self._state.usage

    @property
    def profile(self) -> ProfileSnapshot | None:
        return self._state.profile

    @property
    def error_state(self) -> ErrorState | None:
        return self._state.error

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def timer_active(self) -> bool:
        stop = self._timer_stop
        return stop is not None and not stop.is_set()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(poller)`` whenever the state or loading flag changes.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("State listener %r failed", listener)

    # Refresh

    def refresh(self) -> bool:
        """Fetch usage and profile concurrently and publish the outcome.

        Never raises. Returns False without doing anything if a refresh is
        already in flight or the poller has been stopped.
        """
        with self._lock:
            if self._is_loading or self._closed:
                logger.debug("Refresh skipped (loading=%s, closed=%s)", self._is_loading, self._closed)
                return False
            self._is_loading = True
            cancel_event = threading.Event()
            self._cancel_event = cancel_event

        self._notify()
        try:
            self._run_refresh(cancel_event)
        finally:
            with self._lock:
                self._is_loading = False
                pause = self._consecutive_failures >= self.max_consecutive_failures
            if pause and self.timer_active:
                logger.warning(
                    "%d consecutive failed refreshes; pausing automatic refresh",
                    self._consecutive_failures,
                )
                self.pause_auto_refresh()
            self._notify()
        return True

    def _run_refresh(self, cancel_event: threading.Event) -> None:
        try:
            usage_future = self._executor.submit(self.client.fetch_usage, cancel_event)
            profile_future = self._executor.submit(self.client.fetch_profile, cancel_event)
        except RuntimeError:
            # Executor shut down by stop() while this refresh was starting
            logger.debug("Refresh abandoned: poller stopped")
            return

        # A cancelled refresh returns without waiting for blocked fetches;
        # they finish in the background and their results are dropped.
        pending = {usage_future, profile_future}
        while pending:
            if cancel_event.is_set():
                logger.debug("Refresh cancelled; abandoning in-flight requests")
                return
            _, pending = wait(pending, timeout=CANCEL_CHECK_INTERVAL)

        results = []
        errors: list[BaseException] = []
        for future in (usage_future, profile_future):
            try:
                results.append(future.result())
            except Exception as e:
                errors.append(e)

        if cancel_event.is_set() or any(isinstance(e, RequestCancelledError) for e in errors):
            logger.debug("Refresh cancelled; keeping previous state")
            return

        if errors:
            error_state = classify_error(errors[0])
            with self._lock:
                self._consecutive_failures += 1
            self._state = replace(self._state, error=error_state)
            logger.warning(
                "Refresh failed (%s): %s [failure %d]",
                error_state.kind,
                error_state.message,
                self._consecutive_failures,
            )
            return

        usage, profile = results
        with self._lock:
            self._consecutive_failures = 0
        self._state = PollerState(
            usage=usage,
            profile=profile,
            error=None,
            updated_at=datetime.now(timezone.utc),
        )
        logger.debug("Refresh succeeded")

    def cancel(self) -> None:
        """Abandon the in-flight refresh, if any. Its outcome is discarded."""
        self._cancel_event.set()

    # Timer

    def start(self, refresh_now: bool = True) -> None:
        """Start automatic refreshing, optionally refreshing immediately."""
        self._start_timer()
        if refresh_now:
            self.refresh()

    def pause_auto_refresh(self) -> None:
        with self._timer_lock:
            if self._timer_stop is not None:
                self._timer_stop.set()
                self._timer_stop = None

    def resume_auto_refresh(self) -> bool:
        """Reset the failure counter, restart the timer and refresh once.

        Returns False without doing anything once the poller is stopped.
        """
        with self._lock:
            if self._closed:
                return False
            self._consecutive_failures = 0
        self._start_timer()
        return self.refresh()

    def _start_timer(self) -> None:
        with self._timer_lock:
            if self._closed:
                logger.debug("Timer not started: poller stopped")
                return
            if self._timer_stop is not None:
                self._timer_stop.set()
            stop = threading.Event()
            self._timer_stop = stop
            thread = threading.Thread(
                target=self._poll_loop,
                args=(stop,),
                name="claude-usage-poller",
                daemon=True,
            )
            thread.start()

    def _poll_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            self.refresh()

    def stop(self) -> None:
        """Stop the timer, cancel any in-flight refresh and release threads."""
        with self._lock:
            self._closed = True
        self.pause_auto_refresh()
        self.cancel()
        self._executor.shutdown(wait=False)


def create_poller(config: dict | None = None) -> UsagePoller:
    """Build resolver, client and poller from a config dict (or the config file)."""
    if config is None:
        config = load_config()
    client = UsageClient.from_config(config)
    return UsagePoller(
        client,
        interval=config["poll_interval_seconds"],
        max_consecutive_failures=config["max_consecutive_failures"],
    )


__all__ = [
    "POLL_INTERVAL",
    "MAX_CONSECUTIVE_FAILURES",
    "ErrorState",
    "PollerState",
    "UsagePoller",
    "classify_error",
    "create_poller",
]
