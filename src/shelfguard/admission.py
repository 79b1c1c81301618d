"""Per-client admission control backed by in-memory token buckets.

Every inbound request is checked against an ``AdmissionController`` before it
reaches a handler. The controller keeps one token bucket per client key
(normally the peer IP address) and a background sweeper thread drops entries
that have been idle for longer than ``idle_timeout`` so the registry does not
grow for the lifetime of the process.

State is per process. Running several workers multiplies the effective limit.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, NamedTuple, Optional

import structlog

from shelfguard.algorithms.token_bucket import TokenBucket
from shelfguard.config import get_settings
from shelfguard.metrics import metrics

logger = structlog.get_logger()

IDLE_TIMEOUT_SECONDS = 180.0
SWEEP_INTERVAL_SECONDS = 60.0


class ClientKeyError(Exception):
    """The client key could not be determined from the transport address."""


def client_key_from_host(host: Optional[str]) -> str:
    """Return the admission key for a peer host.

    Raises:
        ClientKeyError: If the host is missing. Callers must answer with a
            server error rather than admit or deny the request.
    """
    if not host:
        raise ClientKeyError("unable to determine client address")
    return host


@dataclass
class ClientLimiterEntry:
    """Limiter state for one client key."""

    bucket: TokenBucket
    last_seen: float

    @property
    def tokens(self) -> float:
        return self.bucket.tokens

    @property
    def burst(self) -> int:
        return self.bucket.capacity

    @property
    def refill_rate(self) -> float:
        return self.bucket.refill_rate

    @property
    def last_refill(self) -> float:
        return self.bucket.last_refill

    def touch(self, now: float) -> None:
        if now > self.last_seen:
            self.last_seen = now


class LimiterState(NamedTuple):
    """Point-in-time copy of a ``ClientLimiterEntry``."""

    tokens: float
    burst: int
    refill_rate: float
    last_seen: float
    last_refill: float


class AdmissionController:
    """Token bucket admission per client key."""

    def __init__(
        self,
        *,
        refill_rate: float,
        burst: int,
        enabled: bool = True,
        idle_timeout: float = IDLE_TIMEOUT_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        autostart: bool = True,
    ) -> None:
        """
        Initialize the controller.

        Args:
            refill_rate: Tokens added per second to each client's bucket
            burst: Bucket size, the number of back-to-back requests allowed
            enabled: When False every request is admitted without bookkeeping
            idle_timeout: Seconds without a request before an entry is evicted
            sweep_interval: Seconds between two sweeps
            clock: Monotonic time source
            autostart: Start the sweeper thread immediately

        Raises:
            ValueError: If any limit is out of range.
        """
        if refill_rate <= 0:
            raise ValueError("refill_rate must be > 0")
        if burst < 1:
            raise ValueError("burst must be >= 1")
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be > 0")
        if sweep_interval <= 0:
            raise ValueError("sweep_interval must be > 0")

        self._enabled = enabled
        self._refill_rate = float(refill_rate)
        self._burst = burst
        self._idle_timeout = idle_timeout
        self._sweep_interval = sweep_interval
        self._clock = clock

        # Guards _clients and every entry in it
        self._lock = threading.Lock()
        self._clients: dict[str, ClientLimiterEntry] = {}

        self._stopped = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        if autostart and enabled:
            self.start()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def refill_rate(self) -> float:
        return self._refill_rate

    @property
    def burst(self) -> int:
        return self._burst

    @property
    def running(self) -> bool:
        """Whether the sweeper thread is alive."""
        return self._sweeper is not None and self._sweeper.is_alive()

    def admit(self, client_key: str) -> bool:
        """Decide whether a request from ``client_key`` may proceed.

        Creates a full bucket for unseen keys, refills it for the elapsed
        time, and debits one token when at least one is available. The
        entry's ``last_seen`` is refreshed whether or not the request is
        admitted.
        """
        if not self._enabled:
            return True

        with self._lock:
            now = self._clock()
            entry = self._clients.get(client_key)
            if entry is None:
                entry = ClientLimiterEntry(
                    bucket=TokenBucket(self._burst, self._refill_rate, now),
                    last_seen=now,
                )
                self._clients[client_key] = entry
            entry.touch(now)
            allowed = entry.bucket.consume(now)
            metrics.limiter_clients.set(len(self._clients))

        metrics.admission_total.labels(result="allowed" if allowed else "denied").inc()
        return allowed

    def retry_after(self, client_key: str) -> float:
        """Seconds until ``client_key`` has a token again (0 if unknown)."""
        with self._lock:
            entry = self._clients.get(client_key)
            if entry is None:
                return 0.0
            entry.bucket.refill(self._clock())
            return entry.bucket.wait_time()

    def sweep(self, now: Optional[float] = None) -> int:
        """Evict entries idle for longer than the idle timeout.

        Returns:
            Number of evicted entries.
        """
        with self._lock:
            if now is None:
                now = self._clock()
            idle = [
                key
                for key, entry in self._clients.items()
                if now - entry.last_seen > self._idle_timeout
            ]
            for key in idle:
                del self._clients[key]
            remaining = len(self._clients)
            metrics.limiter_clients.set(remaining)

        if idle:
            metrics.limiter_evictions_total.inc(len(idle))
        logger.debug("limiter_sweep", evicted=len(idle), clients=remaining)
        return len(idle)

    def start(self) -> None:
        """Start the background sweeper if it is not already running."""
        if self.running:
            return
        self._stopped.clear()
        self._sweeper = threading.Thread(
            target=self._run, name="shelfguard-limiter-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info(
            "limiter_sweeper_started",
            interval=self._sweep_interval,
            idle_timeout=self._idle_timeout,
        )

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the sweeper to exit and wait for it."""
        self._stopped.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout)
        self._sweeper = None

    def _run(self) -> None:
        while not self._stopped.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("limiter_sweep_failed")
                raise

    def snapshot(self, client_key: str) -> Optional[LimiterState]:
        """Copy of the state tracked for ``client_key``, or None."""
        with self._lock:
            entry = self._clients.get(client_key)
            if entry is None:
                return None
            return LimiterState(
                tokens=entry.tokens,
                burst=entry.burst,
                refill_rate=entry.refill_rate,
                last_seen=entry.last_seen,
                last_refill=entry.last_refill,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, client_key: object) -> bool:
        with self._lock:
            return client_key in self._clients


# Singleton instance
_controller: Optional[AdmissionController] = None


def get_controller() -> AdmissionController:
    """Get the controller singleton, building it from settings on first use."""
    global _controller
    if _controller is None:
        settings = get_settings()
        _controller = AdmissionController(
            enabled=settings.limiter_enabled,
            refill_rate=settings.limiter_rps,
            burst=settings.limiter_burst,
            idle_timeout=settings.limiter_idle_seconds,
            sweep_interval=settings.limiter_sweep_interval,
        )
    return _controller


def reset_controller() -> None:
    """Stop and discard the controller singleton."""
    global _controller
    if _controller is not None:
        _controller.stop()
    _controller = None
