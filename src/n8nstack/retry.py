"""
Retry engine.

Wraps a single idempotent operation with bounded automatic retries. When the
attempts run out, an attended run asks the operator to retry, skip or abort;
an unattended run treats exhaustion as fatal.

Operations report failure either by returning ``False`` or by raising. A
``ValidationError`` is never retried: it propagates on the first attempt.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from . import log
from .errors import RunAborted, ValidationError
from .models import AttemptResult, Escalation, Outcome, RetryPolicy
from .prompts import Prompter

ESCALATION_CHOICES = {
    "retry": "try the operation again",
    "skip": "continue without it",
    "exit": "abort the installation",
}


class RetryEngine:
    def __init__(
        self,
        attended: bool,
        prompter: Optional[Prompter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.attended = attended
        self.prompter = prompter or Prompter()
        self.sleep = sleep

    def attempt(self, name: str, operation: Callable[[], object], policy: RetryPolicy) -> AttemptResult:
        """
        Run ``operation`` until it succeeds or the operator gives up.

        Returns:
            AttemptResult with SUCCESS, or DEGRADED when the failure was skipped.

        Raises:
            RunAborted: abort was chosen, or attempts were exhausted unattended.
            ValidationError: raised by the operation itself.
        """
        total_attempts = 0
        while True:
            succeeded, attempts = self._run_attempts(name, operation, policy)
            total_attempts += attempts
            if succeeded:
                if total_attempts > 1:
                    log.success(f"{name} succeeded on attempt {attempts}/{policy.max_attempts}")
                else:
                    log.success(f"{name} completed")
                return AttemptResult(Outcome.SUCCESS, total_attempts)

            choice = self._escalate(name, policy)
            if choice == "retry":
                log.retry(f"Retrying {name} ({policy.max_attempts} more attempts)")
                continue
            if choice == "skip":
                log.warn(f"Skipping {name}; the installation will be degraded")
                return AttemptResult(Outcome.DEGRADED, total_attempts)
            log.error(f"Installation aborted at: {name}")
            raise RunAborted(f"Aborted at {name}")

    def _run_attempts(self, name: str, operation: Callable[[], object], policy: RetryPolicy) -> tuple[bool, int]:
        for attempt in range(1, policy.max_attempts + 1):
            if attempt > 1:
                log.retry(f"{name}: attempt {attempt}/{policy.max_attempts}")
            try:
                result = operation()
            except ValidationError:
                raise
            except RunAborted:
                raise
            except Exception as exc:
                log.warn(f"{name} failed: {exc}")
                result = False

            if result is not False:
                return True, attempt

            if attempt < policy.max_attempts:
                log.retry(f"{name} failed (attempt {attempt}/{policy.max_attempts}), waiting {policy.delay:g}s")
                self.sleep(policy.delay)

        log.error(f"{name} failed after {policy.max_attempts} attempts")
        return False, policy.max_attempts

    def _escalate(self, name: str, policy: RetryPolicy) -> str:
        if policy.escalation is Escalation.SKIP:
            return "skip"
        if policy.escalation is Escalation.FAIL or not self.attended:
            if not self.attended and policy.escalation is Escalation.ASK:
                log.error(f"{name}: retries exhausted in non-interactive mode")
            return "exit"
        return self.prompter.choose(f"{name} failed. What now?", ESCALATION_CHOICES)
