"""
Cron front-end: evaluate a script on a schedule until it fails too often.

Usage::

    run_schedule(Script(source), evaluator, "*/5 * * * *", bail=3, initial_run=True)
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from croniter import croniter

from lam.engine import Script
from lam.evaluator import Evaluator, Outcome
from lam.exceptions import LamError

__all__ = ["run_schedule", "next_run"]

logger = logging.getLogger(__name__)


def next_run(expression: str, now: Optional[datetime] = None) -> datetime:
    """
    Next UTC fire time of *expression* after *now*.

    Raises:
        LamError: *expression* is not a valid cron expression.
    """
    now = now or datetime.now(timezone.utc)
    try:
        return croniter(expression, now).get_next(datetime)
    except (ValueError, KeyError) as exc:
        raise LamError(f"invalid cron expression {expression!r}: {exc}") from exc


def run_schedule(
    script: Script,
    evaluator: Evaluator,
    expression: str,
    bail: int = 0,
    initial_run: bool = False,
    max_runs: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_outcome: Optional[Callable[[Outcome], None]] = None,
) -> int:
    """
    Evaluate *script* at every fire time of *expression*.

    Args:
        bail:        Stop after this many consecutive failures (0 = never).
        initial_run: Evaluate once immediately before waiting for the schedule.
        max_runs:    Stop after this many evaluations (None = run forever).
        sleep:       Replaceable for tests.
        on_outcome:  Called with every Outcome.

    Returns:
        Number of consecutive failures when the loop stopped.
    """
    if not croniter.is_valid(expression):
        raise LamError(f"invalid cron expression {expression!r}")
    logger.debug("%s scheduled with %r (bail=%d)", script.chunkname, expression, bail)

    failures = 0
    runs = 0
    pending_initial = initial_run
    while max_runs is None or runs < max_runs:
        if pending_initial:
            pending_initial = False
        else:
            fire = next_run(expression)
            logger.debug("Next run at %s", fire.isoformat())
            sleep(max(0.0, (fire - datetime.now(timezone.utc)).total_seconds()))

        outcome = evaluator.evaluate(script)
        runs += 1
        if on_outcome is not None:
            on_outcome(outcome)
        if outcome.ok:
            failures = 0
            continue

        failures += 1
        logger.warning("%s failed (%d in a row): %s", script.chunkname, failures, outcome.error)
        if bail and failures >= bail:
            logger.error("Bailing out after %d consecutive failures", failures)
            break
    return failures
