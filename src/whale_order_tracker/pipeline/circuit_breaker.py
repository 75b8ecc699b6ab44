from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from whale_order_tracker.core.enums import Exchange
from whale_order_tracker.core.time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class BreakerState:
    failure_count: int = 0
    last_success_at: datetime | None = None
    opened_at: datetime | None = None
    is_open: bool = False
    probing: bool = False


class CircuitBreakerRegistry:
    """Per-exchange circuit breakers.

    ``threshold`` consecutive failures open a breaker. While open, requests are
    refused until ``cooldown`` has elapsed since it opened; then a single probe
    is let through. A failed probe re-opens the breaker with a fresh cooldown,
    a successful one closes it.
    """

    def __init__(
        self,
        *,
        threshold: int = 3,
        cooldown: timedelta = timedelta(minutes=2),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if threshold < 1:
            raise ValueError("threshold must be >= 1")
        self._threshold = threshold
        self._cooldown = cooldown
        self._clock = clock
        self._states: dict[Exchange, BreakerState] = {}

    def state(self, exchange: Exchange) -> BreakerState:
        return self._states.setdefault(exchange, BreakerState())

    def is_open(self, exchange: Exchange) -> bool:
        return self.state(exchange).is_open

    def allow_request(self, exchange: Exchange) -> bool:
        state = self.state(exchange)
        if not state.is_open:
            return True
        if state.probing:
            return False
        # an open breaker without an opening time has nothing left to wait for
        if state.opened_at is not None and self._clock() - state.opened_at < self._cooldown:
            return False
        state.probing = True
        logger.info("Circuit breaker cooldown elapsed; probing exchange", extra={"exchange": exchange.value})
        return True

    def record_success(self, exchange: Exchange) -> None:
        state = self.state(exchange)
        if state.is_open:
            logger.info("Circuit breaker closed", extra={"exchange": exchange.value})
        state.failure_count = 0
        state.last_success_at = self._clock()
        state.opened_at = None
        state.is_open = False
        state.probing = False

    def record_failure(self, exchange: Exchange) -> None:
        state = self.state(exchange)
        state.failure_count += 1
        if state.is_open:
            state.opened_at = self._clock()
            state.probing = False
            logger.warning(
                "Circuit breaker probe failed; staying open",
                extra={"exchange": exchange.value, "failure_count": state.failure_count},
            )
            return
        if state.failure_count >= self._threshold:
            state.is_open = True
            state.opened_at = self._clock()
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "exchange": exchange.value,
                    "failure_count": state.failure_count,
                    "cooldown_seconds": self._cooldown.total_seconds(),
                },
            )

    def snapshot(self) -> dict[Exchange, BreakerState]:
        return {
            exchange: BreakerState(
                failure_count=state.failure_count,
                last_success_at=state.last_success_at,
                opened_at=state.opened_at,
                is_open=state.is_open,
                probing=state.probing,
            )
            for exchange, state in self._states.items()
        }
