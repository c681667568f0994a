"""Tests for the session gate."""

import logging

import pytest

from chartspot.application.services.session_gate import SessionGate


class TestSessionGate:
    """Test last-request-wins filtering."""

    def test_begin_issues_fresh_tokens(self) -> None:
        gate = SessionGate()
        first = gate.begin()
        second = gate.begin()

        assert first != second
        assert gate.current == second
        assert gate.is_current(second)
        assert not gate.is_current(first)

    def test_apply_runs_for_current_token(self) -> None:
        gate = SessionGate()
        token = gate.begin()
        applied: list[str] = []

        assert gate.apply(token, lambda: applied.append("seed"), stage="seed") is True
        assert applied == ["seed"]

    def test_stale_token_is_discarded(self, caplog: pytest.LogCaptureFixture) -> None:
        caplog.set_level(logging.INFO, logger="chartspot.application.services.session_gate")
        gate = SessionGate()
        stale = gate.begin()
        gate.begin()
        applied: list[str] = []

        result = gate.apply(stale, lambda: applied.append("final"), stage="final")

        assert result is False
        assert applied == []
        assert "discarding final results" in caplog.text

    def test_no_session_yet(self) -> None:
        assert SessionGate().is_current("anything") is False
