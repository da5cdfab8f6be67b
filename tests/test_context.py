"""Tests for the run context."""
import pytest

from learner_e2e.context import RunContext
from learner_e2e.errors import RunCancelledError


@pytest.mark.unit
class TestRunContext:
    """Derivation, cancellation and deadlines"""

    def test_derive_leaves_parent_untouched(self):
        root = RunContext.background().derive(a=1)
        child = root.derive(b=2)

        assert "b" not in root
        assert child["a"] == 1 and child["b"] == 2

    def test_values_are_read_only(self):
        ctx = RunContext.background().derive(a=1)

        with pytest.raises(TypeError):
            ctx.values["a"] = 2

    def test_cancel_reaches_derived_contexts(self):
        root = RunContext.background()
        child = root.derive(a=1).with_timeout(60)

        root.cancel()

        assert child.cancelled
        with pytest.raises(RunCancelledError):
            child.raise_if_cancelled()

    def test_sleep_wakes_on_cancel(self):
        ctx = RunContext.background()
        ctx.cancel()

        assert ctx.sleep(30) is True

    def test_with_timeout_never_extends_deadline(self):
        ctx = RunContext.background().with_timeout(1).with_timeout(60)

        assert ctx.remaining() <= 1

    def test_background_has_no_deadline(self):
        ctx = RunContext.background()

        assert ctx.remaining() is None
        assert not ctx.expired
