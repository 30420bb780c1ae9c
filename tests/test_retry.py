#!/usr/bin/env python3
"""
Retry engine tests.
"""

from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from n8nstack.errors import RunAborted, ValidationError  # noqa: E402
from n8nstack.models import Escalation, Outcome, RetryPolicy  # noqa: E402
from n8nstack.retry import RetryEngine  # noqa: E402

from conftest import ScriptedPrompter  # noqa: E402


class Flaky:
    """Operation failing ``failures`` times before succeeding."""

    def __init__(self, failures, how="false"):
        self.failures = failures
        self.how = how
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            if self.how == "raise":
                raise RuntimeError("transient")
            return False
        return True


def _engine(attended=False, prompter=None, sleeps=None):
    sleeps = sleeps if sleeps is not None else []
    return RetryEngine(attended, prompter or ScriptedPrompter(), sleep=sleeps.append)


class TestRetryPolicy:
    def test_defaults(self):
        policy = RetryPolicy()

        assert policy.max_attempts == 3
        assert policy.delay == 5.0
        assert policy.escalation is Escalation.ASK

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self):
        with pytest.raises(ValueError, match="delay"):
            RetryPolicy(delay=-1)


class TestRetrySuccess:
    def test_first_attempt_success_does_not_sleep(self):
        sleeps = []
        op = Flaky(0)

        result = _engine(sleeps=sleeps).attempt("op", op, RetryPolicy(max_attempts=3, delay=5))

        assert result.outcome is Outcome.SUCCESS
        assert result.attempts == 1
        assert op.calls == 1
        assert sleeps == []

    def test_success_on_attempt_k_uses_exactly_k_attempts(self):
        sleeps = []
        op = Flaky(2)

        result = _engine(sleeps=sleeps).attempt("op", op, RetryPolicy(max_attempts=5, delay=2))

        assert result.outcome is Outcome.SUCCESS
        assert result.attempts == 3
        assert op.calls == 3
        assert sleeps == [2, 2]

    def test_exceptions_count_as_failures(self):
        op = Flaky(1, how="raise")

        result = _engine().attempt("op", op, RetryPolicy(max_attempts=3, delay=0))

        assert result.attempts == 2

    def test_none_return_is_success(self):
        result = _engine().attempt("op", lambda: None, RetryPolicy(max_attempts=1, delay=0))

        assert result.outcome is Outcome.SUCCESS


class TestRetryExhaustion:
    def test_unattended_exhaustion_is_fatal_after_max_attempts(self):
        sleeps = []
        op = Flaky(100)

        with pytest.raises(RunAborted):
            _engine(sleeps=sleeps).attempt("op", op, RetryPolicy(max_attempts=3, delay=1))

        assert op.calls == 3
        assert sleeps == [1, 1]

    def test_attended_skip_degrades(self):
        prompter = ScriptedPrompter(choices=["skip"])
        op = Flaky(100)

        result = _engine(attended=True, prompter=prompter).attempt("op", op, RetryPolicy(max_attempts=3, delay=0))

        assert result.outcome is Outcome.DEGRADED
        assert result.degraded is True
        assert op.calls == 3

    def test_attended_retry_restarts_counter(self):
        prompter = ScriptedPrompter(choices=["retry", "skip"])
        op = Flaky(100)

        result = _engine(attended=True, prompter=prompter).attempt("op", op, RetryPolicy(max_attempts=2, delay=0))

        assert result.outcome is Outcome.DEGRADED
        assert op.calls == 4
        assert result.attempts == 4

    def test_attended_retry_then_success(self):
        prompter = ScriptedPrompter(choices=["retry"])
        op = Flaky(3)

        result = _engine(attended=True, prompter=prompter).attempt("op", op, RetryPolicy(max_attempts=2, delay=0))

        assert result.outcome is Outcome.SUCCESS
        assert op.calls == 4

    def test_attended_abort_raises(self):
        prompter = ScriptedPrompter(choices=["exit"])

        with pytest.raises(RunAborted, match="op"):
            _engine(attended=True, prompter=prompter).attempt("op", Flaky(100), RetryPolicy(max_attempts=1, delay=0))

    def test_fail_escalation_never_prompts(self):
        prompter = ScriptedPrompter()

        with pytest.raises(RunAborted):
            _engine(attended=True, prompter=prompter).attempt(
                "op", Flaky(100), RetryPolicy(max_attempts=1, delay=0, escalation=Escalation.FAIL)
            )

        assert prompter.questions == []

    def test_skip_escalation_degrades_unattended(self):
        result = _engine().attempt(
            "op", Flaky(100), RetryPolicy(max_attempts=2, delay=0, escalation=Escalation.SKIP)
        )

        assert result.outcome is Outcome.DEGRADED


class TestRetryValidation:
    def test_validation_error_is_never_retried(self):
        calls = []

        def op():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError, match="bad input"):
            _engine().attempt("op", op, RetryPolicy(max_attempts=5, delay=0))

        assert len(calls) == 1

    def test_logs_attempt_counter(self, caplog):
        caplog.set_level("DEBUG", logger="n8nstack")

        _engine().attempt("Package install", Flaky(1), RetryPolicy(max_attempts=3, delay=0))

        assert "attempt 1/3" in caplog.text
        assert "attempt 2/3" in caplog.text
