"""Tests for the SessionRegistry class."""

import logging
import threading

import pytest

from preemptive_compaction.errors import ConfigurationError, InvalidStateError
from preemptive_compaction.scheduler.registry import SessionRegistry
from preemptive_compaction.scheduler.scheduler import CompactionScheduler
from preemptive_compaction.scheduler.types import (
    CompactionConfig,
    CompactionState,
    Decision,
)

LIMIT = 100_000

# ── Construction ─────────────────────────────────────────────────────────


class TestSessionRegistryInit:
    """Tests for SessionRegistry construction."""

    def test_starts_empty(self, registry):
        assert len(registry) == 0
        assert registry.session_ids() == []

    def test_builds_scheduler_from_config(self):
        registry = SessionRegistry(CompactionConfig(high_usage_cooldown=3))
        assert registry.scheduler.config.high_usage_cooldown == 3

    def test_uses_given_scheduler(self):
        scheduler = CompactionScheduler()
        assert SessionRegistry(scheduler=scheduler).scheduler is scheduler

    def test_rejects_config_and_scheduler(self):
        with pytest.raises(ConfigurationError, match="either config or scheduler"):
            SessionRegistry(CompactionConfig(), scheduler=CompactionScheduler())


# ── report_usage ─────────────────────────────────────────────────────────


class TestReportUsage:
    """Tests for SessionRegistry.report_usage."""

    def test_creates_state_on_first_report(self, registry, clock):
        registry.report_usage("s1", 10_000, LIMIT, clock())
        assert "s1" in registry
        assert registry.get_state("s1") == CompactionState(session_id="s1")

    def test_returns_decision(self, registry, clock):
        assert registry.report_usage("s1", 75_000, LIMIT, clock()) is Decision.COMPACT
        assert registry.report_usage("s2", 95_000, LIMIT, clock()) is Decision.EMERGENCY_COMPACT
        assert registry.report_usage("s3", 50_000, LIMIT, clock()) is Decision.NO_OP

    def test_report_does_not_change_state(self, registry, clock):
        registry.report_usage("s1", 75_000, LIMIT, clock())
        state = registry.get_state("s1")
        assert state.compaction_in_progress is False
        assert state.last_compaction_at is None

    def test_defaults_now_to_wall_clock(self, registry):
        assert registry.report_usage("s1", 75_000, LIMIT) is Decision.COMPACT

    def test_malformed_usage_raises(self, registry):
        with pytest.raises(ConfigurationError):
            registry.report_usage("s1", 10, 0)
        assert "s1" not in registry

    @pytest.mark.parametrize(
        "tokens_used, token_limit", [(75_000.5, LIMIT), ("many", LIMIT), (75_000, None)]
    )
    def test_mistyped_usage_raises_configuration_error(self, registry, tokens_used, token_limit):
        with pytest.raises(ConfigurationError, match="Malformed usage sample"):
            registry.report_usage("s1", tokens_used, token_limit, 0.0)
        assert "s1" not in registry

    def test_sessions_are_independent(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        registry.mark_compaction_complete("s1", clock())
        assert registry.report_usage("s1", 75_000, LIMIT, clock()) is Decision.NO_OP
        assert registry.report_usage("s2", 75_000, LIMIT, clock()) is Decision.COMPACT

    def test_cooldown_cycle(self, registry, clock):
        assert registry.report_usage("s1", 75_000, LIMIT, clock()) is Decision.COMPACT
        registry.mark_compaction_started("s1", clock())
        assert registry.report_usage("s1", 95_000, LIMIT, clock()) is Decision.NO_OP
        registry.mark_compaction_complete("s1", clock.advance(2))
        assert registry.report_usage("s1", 75_000, LIMIT, clock.advance(5)) is Decision.NO_OP
        assert registry.report_usage("s1", 75_000, LIMIT, clock.advance(5)) is Decision.COMPACT

    def test_logs_over_limit_sample(self, registry, clock, caplog):
        with caplog.at_level(logging.WARNING, logger="preemptive_compaction.scheduler.registry"):
            decision = registry.report_usage("s1", 120_000, LIMIT, clock())
        assert decision is Decision.EMERGENCY_COMPACT
        assert "over its context limit" in caplog.text


# ── Transitions ──────────────────────────────────────────────────────────


class TestTransitions:
    """Tests for mark_compaction_* on the registry."""

    def test_start_complete(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        assert registry.get_state("s1").compaction_in_progress is True
        registry.mark_compaction_complete("s1", clock.advance(1))
        state = registry.get_state("s1")
        assert state.compaction_in_progress is False
        assert state.last_compaction_at == clock()

    def test_double_start_raises(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        with pytest.raises(InvalidStateError):
            registry.mark_compaction_started("s1", clock())

    def test_complete_unknown_session_raises(self, registry, clock):
        with pytest.raises(InvalidStateError, match="Unknown session"):
            registry.mark_compaction_complete("missing", clock())
        assert "missing" not in registry

    def test_failed_unknown_session_raises(self, registry, clock):
        with pytest.raises(InvalidStateError, match="Unknown session"):
            registry.mark_compaction_failed("missing", clock())

    def test_failed_allows_retry(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        registry.mark_compaction_failed("s1", clock())
        assert registry.report_usage("s1", 75_000, LIMIT, clock()) is Decision.COMPACT


# ── Teardown ─────────────────────────────────────────────────────────────


class TestEndSession:
    """Tests for SessionRegistry.end_session."""

    def test_removes_state(self, registry, clock):
        registry.report_usage("s1", 1_000, LIMIT, clock())
        assert registry.end_session("s1") is True
        assert "s1" not in registry
        assert registry.get_state("s1") is None

    def test_unknown_session(self, registry):
        assert registry.end_session("missing") is False

    def test_warns_when_in_progress(self, registry, clock, caplog):
        registry.mark_compaction_started("s1", clock())
        with caplog.at_level(logging.WARNING, logger="preemptive_compaction.scheduler.registry"):
            assert registry.end_session("s1") is True
        assert "still in progress" in caplog.text

    def test_new_session_after_end_starts_fresh(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        registry.mark_compaction_complete("s1", clock())
        registry.end_session("s1")
        assert registry.report_usage("s1", 75_000, LIMIT, clock()) is Decision.COMPACT


# ── Stalled compactions ──────────────────────────────────────────────────


class TestFindStalled:
    """Tests for SessionRegistry.find_stalled."""

    def test_reports_sessions_past_timeout(self, registry, clock):
        registry.mark_compaction_started("old", clock())
        registry.mark_compaction_started("new", clock.advance(50))
        registry.report_usage("idle", 1_000, LIMIT, clock())
        assert registry.find_stalled(clock.advance(20), timeout=60) == ["old"]

    def test_watchdog_can_release_stalled_session(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        for session_id in registry.find_stalled(clock.advance(300), timeout=120):
            registry.mark_compaction_failed(session_id, clock())
        assert registry.report_usage("s1", 75_000, LIMIT, clock()) is Decision.COMPACT

    def test_nothing_stalled(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        assert registry.find_stalled(clock.advance(1), timeout=60) == []


# ── Persistence ──────────────────────────────────────────────────────────


class TestSnapshotRestore:
    """Tests for SessionRegistry.snapshot and restore."""

    def test_snapshot_is_plain_data(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        registry.mark_compaction_complete("s1", clock())
        snapshot = registry.snapshot()
        assert snapshot == [
            {
                "session_id": "s1",
                "last_compaction_at": clock(),
                "compaction_in_progress": False,
                "compaction_started_at": None,
                "compaction_count": 1,
                "failed_compaction_count": 0,
            }
        ]

    def test_restore_preserves_cooldown(self, registry, clock):
        registry.mark_compaction_started("s1", clock())
        registry.mark_compaction_complete("s1", clock())

        restored = SessionRegistry()
        restored.restore(registry.snapshot())
        assert restored.report_usage("s1", 75_000, LIMIT, clock.advance(5)) is Decision.NO_OP
        assert restored.report_usage("s1", 75_000, LIMIT, clock.advance(5)) is Decision.COMPACT

    def test_restore_accepts_state_objects(self, registry):
        registry.restore([CompactionState(session_id="s1", last_compaction_at=1.0)])
        assert registry.get_state("s1").last_compaction_at == 1.0


# ── Concurrency ──────────────────────────────────────────────────────────


class TestConcurrency:
    """Many sessions reported from many threads."""

    def test_concurrent_sessions_get_one_state_each(self, registry):
        barrier = threading.Barrier(8)

        def worker(index: int):
            barrier.wait()
            for n in range(50):
                registry.report_usage(f"session-{n}", 10_000 + index, LIMIT, 0.0)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(registry) == 50
        assert sorted(registry.session_ids()) == sorted(f"session-{n}" for n in range(50))
