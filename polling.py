import asyncio
import logging
import math
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Optional, Tuple, Type, Union

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.25

# absorbs float noise such as 0.3 / 0.1 == 2.9999999999999996
_ITERATION_EPSILON = 1e-9

Duration = Union[int, float, timedelta]
Predicate = Callable[[], object]
RetryHook = Callable[[int, Optional[BaseException]], None]


class TransientFault(Exception):
    """A single predicate evaluation failed but the wait should keep going."""


def to_seconds(value: Duration, name: str = "timeout") -> float:
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        raise TypeError(f"{name} must be seconds or a timedelta, got {type(value).__name__}")

    if not math.isfinite(seconds) or seconds < 0:
        raise ValueError(f"{name} must be a finite non-negative duration, got {value!r}")
    return seconds


@dataclass(frozen=True)
class WaitBudget:
    """How long a wait may run and how often it re-checks."""

    seconds: float
    interval: float = DEFAULT_POLL_INTERVAL

    @classmethod
    def of(cls, timeout: Duration, interval: Duration = DEFAULT_POLL_INTERVAL) -> "WaitBudget":
        seconds = to_seconds(timeout)
        step = to_seconds(interval, "interval")
        if step <= 0:
            raise ValueError(f"interval must be positive, got {interval!r}")
        return cls(seconds, step)

    @property
    def iterations(self) -> int:
        return int(math.floor(self.seconds / self.interval + _ITERATION_EPSILON))

    def remaining(self, elapsed: float) -> "WaitBudget":
        """
        Budget left once ``elapsed`` seconds were spent. Only whole poll
        intervals count as consumed, and at least one interval is always left.
        """
        consumed = math.floor(elapsed / self.interval + _ITERATION_EPSILON) * self.interval
        return WaitBudget(max(self.interval, self.seconds - consumed), self.interval)


@dataclass(frozen=True)
class Attempt:
    satisfied: bool
    fault: Optional[BaseException] = None


def evaluate(predicate: Predicate, transient: Tuple[Type[BaseException], ...]) -> Attempt:
    try:
        return Attempt(bool(predicate()))
    except transient as exc:
        return Attempt(False, exc)


def _check_predicate(predicate, name="predicate"):
    if not callable(predicate):
        raise TypeError(f"{name} must be callable, got {type(predicate).__name__}")


def _check_transient(transient):
    if not isinstance(transient, tuple) or not all(
        isinstance(kind, type) and issubclass(kind, BaseException) for kind in transient
    ):
        raise TypeError("transient must be a tuple of exception types")


async def _poll(predicate, budget, transient, on_retry) -> bool:
    for iteration in range(1, budget.iterations + 1):
        attempt = evaluate(predicate, transient)
        if attempt.satisfied:
            logger.debug("Condition met on attempt %d/%d", iteration, budget.iterations)
            return True

        if attempt.fault is not None:
            logger.debug("Transient fault on attempt %d: %s", iteration, attempt.fault)
        if on_retry is not None:
            on_retry(iteration, attempt.fault)

        await asyncio.sleep(budget.interval)

    logger.debug("Condition not met after %d attempts (%.3fs budget)", budget.iterations, budget.seconds)
    return False


async def wait_until(
    predicate: Predicate,
    timeout: Duration,
    interval: Duration = DEFAULT_POLL_INTERVAL,
    *,
    transient: Tuple[Type[BaseException], ...] = (TransientFault,),
    on_retry: Optional[RetryHook] = None,
) -> bool:
    """
    Evaluate ``predicate`` every ``interval`` until it is truthy or the
    ``timeout`` budget is spent.

    Returns True as soon as the predicate holds and False once
    floor(timeout / interval) evaluations failed. Exceptions of a
    ``transient`` type count as a failed evaluation; anything else propagates.
    """
    _check_predicate(predicate)
    _check_transient(transient)
    budget = WaitBudget.of(timeout, interval)
    return await _poll(predicate, budget, transient, on_retry)


async def wait_until_chained(
    exists_predicate: Predicate,
    displayed_predicate: Predicate,
    timeout: Duration,
    interval: Duration = DEFAULT_POLL_INTERVAL,
    *,
    transient: Tuple[Type[BaseException], ...] = (TransientFault,),
    on_retry: Optional[RetryHook] = None,
) -> bool:
    """
    Wait for ``exists_predicate``, then for ``displayed_predicate`` with
    whatever is left of the same budget.

    The second stage never runs when the first one times out, and it always
    gets at least one evaluation when the first one succeeds.
    """
    _check_predicate(exists_predicate, "exists_predicate")
    _check_predicate(displayed_predicate, "displayed_predicate")
    _check_transient(transient)
    budget = WaitBudget.of(timeout, interval)

    started = time.monotonic()
    if not await _poll(exists_predicate, budget, transient, on_retry):
        return False
    elapsed = time.monotonic() - started

    second_stage = budget.remaining(elapsed)
    logger.debug("First stage took %.3fs, second stage gets %.3fs", elapsed, second_stage.seconds)
    return await _poll(displayed_predicate, second_stage, transient, on_retry)


# ---------------- Blocking entry points ----------------

def run_blocking(coro):
    """
    Run a coroutine to completion from synchronous code.

    Without a running loop in this thread the coroutine gets a fresh loop.
    Inside a running loop it is handed to a worker thread with its own loop,
    so the caller's loop is never blocked on its own future.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)

    outcome = {}

    def runner():
        try:
            outcome["value"] = asyncio.run(coro)
        except BaseException as exc:
            outcome["error"] = exc

    worker = threading.Thread(target=runner, name="blocking-wait", daemon=True)
    worker.start()
    worker.join()

    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


def wait_until_blocking(
    predicate: Predicate,
    timeout: Duration,
    interval: Duration = DEFAULT_POLL_INTERVAL,
    *,
    transient: Tuple[Type[BaseException], ...] = (TransientFault,),
    on_retry: Optional[RetryHook] = None,
) -> bool:
    return run_blocking(
        wait_until(predicate, timeout, interval, transient=transient, on_retry=on_retry)
    )


def wait_until_chained_blocking(
    exists_predicate: Predicate,
    displayed_predicate: Predicate,
    timeout: Duration,
    interval: Duration = DEFAULT_POLL_INTERVAL,
    *,
    transient: Tuple[Type[BaseException], ...] = (TransientFault,),
    on_retry: Optional[RetryHook] = None,
) -> bool:
    return run_blocking(
        wait_until_chained(
            exists_predicate,
            displayed_predicate,
            timeout,
            interval,
            transient=transient,
            on_retry=on_retry,
        )
    )
