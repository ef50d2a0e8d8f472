"""
Unit tests for the pure session state machine.
"""

import json

import pytest

from taxi_meter.session import (
    SessionSnapshot,
    SessionState,
    apply_sample,
    can_transition,
    elapsed_ms,
    finish_session,
    idle_session,
    pause_session,
    restore_session,
    resume_session,
    snapshot_from_session,
    start_session,
)

T0 = 1_700_000_000_000


def _feed(session, preset, samples):
    outcomes = []
    for s in samples:
        session, outcome = apply_sample(session, preset, s)
        outcomes.append(outcome)
    return session, outcomes


class TestTransitions:
    """Tests for legal and illegal transitions."""

    def test_start_from_idle(self, tokyo):
        session = start_session(idle_session(tokyo), tokyo, T0)
        assert session.state is SessionState.RUNNING
        assert session.started_at_ms == T0
        assert session.fare_yen == tokyo.base_fare_yen
        assert [e.type for e in session.events] == ["start"]

    def test_transition_table(self):
        assert can_transition(SessionState.IDLE, "start")
        assert can_transition(SessionState.IDLE, "restore")
        assert can_transition(SessionState.RUNNING, "finish")
        assert not can_transition(SessionState.IDLE, "resume")
        assert not can_transition(SessionState.RUNNING, "resume")
        assert not can_transition(SessionState.PAUSED, "pause")
        assert not can_transition(SessionState.PAUSED, "start")

    def test_illegal_transitions_are_noops(self, tokyo):
        idle = idle_session(tokyo)
        assert pause_session(idle, T0) is idle
        assert resume_session(idle, T0) is idle
        assert finish_session(idle, tokyo, T0) == (idle, None)

        running = start_session(idle, tokyo, T0)
        assert start_session(running, tokyo, T0 + 1000) is running
        assert resume_session(running, T0 + 1000) is running


class TestElapsedTime:
    """Elapsed time only advances while running."""

    def test_pause_resume_preserves_elapsed(self, tokyo):
        session = start_session(idle_session(tokyo), tokyo, T0)
        assert elapsed_ms(session, T0 + 10_000) == 10_000

        session = pause_session(session, T0 + 10_000)
        assert elapsed_ms(session, T0 + 10_000) == 10_000
        assert elapsed_ms(session, T0 + 1_000_000) == 10_000

        session = resume_session(session, T0 + 1_000_000)
        assert elapsed_ms(session, T0 + 1_000_000) == 10_000
        assert elapsed_ms(session, T0 + 1_005_000) == 15_000

        assert len(session.pause_logs) == 1
        log = session.pause_logs[0]
        assert (log.paused_at_ms, log.resumed_at_ms, log.duration_ms) == (T0 + 10_000, T0 + 1_000_000, 990_000)
        assert [e.type for e in session.events] == ["start", "pause", "resume"]

    def test_clock_going_backwards_is_clamped(self, tokyo):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session = pause_session(session, T0 - 5_000)
        assert session.elapsed_accumulated_ms == 0


class TestSamples:
    """Tests for sample processing while running."""

    def test_first_sample_is_baseline(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session, outcome = apply_sample(session, tokyo, make_sample(0, T0 + 1000))
        assert outcome.status == "baseline"
        assert session.accepted_sample_count == 0
        assert session.last_point is not None

    def test_samples_ignored_unless_running(self, tokyo, make_sample):
        idle = idle_session(tokyo)
        after, outcome = apply_sample(idle, tokyo, make_sample(0, T0))
        assert outcome.status == "ignored"
        assert after is idle

    def test_distance_charging(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        samples = [make_sample(15 * i, T0 + 1000 * i, speed_mps=15.0) for i in range(101)]
        session, _ = _feed(session, tokyo, samples)

        assert session.accepted_sample_count == 100
        assert session.filtered_sample_count == 0
        assert session.distance_km == pytest.approx(1.5, rel=1e-3)
        assert session.fare_yen == 600
        assert session.distance_charge_steps == 1
        assert session.time_charge_steps == 0
        assert session.billing_mode == "distance"
        assert session.speed_kmh == pytest.approx(54.0)
        assert session.first_accepted_point == samples[1].coordinate
        assert session.last_accepted_point == samples[-1].coordinate

    def test_waiting_is_charged_by_time(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        samples = [make_sample(0, T0 + 30_000 * i, speed_mps=0.0) for i in range(11)]
        session, _ = _feed(session, tokyo, samples)

        assert session.fare_yen == 800
        assert session.time_charge_steps == 3
        assert session.fare_runtime.low_speed_remainder_seconds == pytest.approx(30)
        assert session.fare_runtime.base_distance_remaining_km == tokyo.base_distance_km
        assert session.billing_mode == "time"

    def test_rejected_sample_becomes_reference_point(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session, outcomes = _feed(
            session,
            tokyo,
            [
                make_sample(0, T0 + 1000),
                make_sample(500, T0 + 2000),
                make_sample(510, T0 + 3000, speed_mps=10.0),
            ],
        )
        assert [o.status for o in outcomes] == ["baseline", "rejected", "accepted"]
        assert outcomes[1].reason == "speed_spike"
        assert session.filtered_sample_count == 1
        assert session.accepted_sample_count == 1
        # measured from the rejected fix, not from the last accepted one
        assert session.distance_km == pytest.approx(0.010, rel=1e-3)

    def test_rejection_clears_speed_and_mode(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session, _ = _feed(
            session,
            tokyo,
            [make_sample(0, T0), make_sample(15, T0 + 1000, speed_mps=15.0)],
        )
        assert session.billing_mode == "distance"

        session, outcome = apply_sample(session, tokyo, make_sample(3000, T0 + 2000))
        assert outcome.status == "rejected"
        assert session.speed_kmh is None
        assert session.billing_mode == "unknown"

    def test_resume_rebaselines(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session, _ = _feed(
            session,
            tokyo,
            [make_sample(0, T0), make_sample(15, T0 + 1000, speed_mps=15.0)],
        )
        session = pause_session(session, T0 + 2000)
        session = resume_session(session, T0 + 600_000)
        assert session.last_point is None

        # far from the pre-pause position; only sets the new baseline
        session, outcome = apply_sample(session, tokyo, make_sample(5000, T0 + 601_000))
        assert outcome.status == "baseline"
        assert session.distance_km == pytest.approx(0.015, rel=1e-3)
        assert session.filtered_sample_count == 0

    def test_duplicate_timestamp_uses_minimum_interval(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session, outcomes = _feed(session, tokyo, [make_sample(0, T0), make_sample(0, T0)])
        assert outcomes[1].status == "accepted"
        assert outcomes[1].delta_seconds == pytest.approx(0.1)


class TestFinish:
    """Tests for finishing a session into a history record."""

    def test_finish_from_running(self, tokyo):
        session = start_session(idle_session(tokyo), tokyo, T0)
        idle, item = finish_session(session, tokyo, T0 + 42_000)

        assert idle.state is SessionState.IDLE
        assert idle.fare_yen == tokyo.base_fare_yen
        assert item is not None
        assert item.elapsed_ms == 42_000
        assert item.started_at_ms == T0
        assert item.finished_at_ms == T0 + 42_000
        assert item.preset_id == "tokyo"
        assert item.pause_logs == ()
        assert [e.type for e in item.events] == ["start", "finish"]

    def test_finish_from_paused_closes_pause(self, tokyo):
        session = start_session(idle_session(tokyo), tokyo, T0)
        session = pause_session(session, T0 + 10_000)
        _, item = finish_session(session, tokyo, T0 + 70_000)

        assert item.elapsed_ms == 10_000
        assert len(item.pause_logs) == 1
        assert item.pause_logs[0].duration_ms == 60_000
        assert [e.type for e in item.events] == ["start", "pause", "finish"]


class TestSnapshots:
    """Tests for snapshot projection and restore."""

    def _active_session(self, tokyo, make_sample):
        session = start_session(idle_session(tokyo), tokyo, T0)
        samples = [make_sample(15 * i, T0 + 1000 * i, speed_mps=15.0) for i in range(90)]
        samples.append(make_sample(5000, T0 + 90_000))
        session, _ = _feed(session, tokyo, samples)
        return session

    def test_idle_has_no_snapshot(self, tokyo):
        assert snapshot_from_session(idle_session(tokyo), T0) is None

    def test_round_trip_through_json(self, tokyo, make_sample):
        session = pause_session(self._active_session(tokyo, make_sample), T0 + 95_000)
        snap = snapshot_from_session(session, T0 + 96_000)

        loaded = SessionSnapshot.from_dict(json.loads(json.dumps(snap.to_dict())))
        restored = restore_session(idle_session(tokyo), loaded)

        assert restored.state is SessionState.PAUSED
        assert restored.fare_runtime == session.fare_runtime
        assert restored.fare_yen == session.fare_yen
        assert restored.distance_km == session.distance_km
        assert restored.accepted_sample_count == session.accepted_sample_count
        assert restored.filtered_sample_count == session.filtered_sample_count
        assert restored.distance_charge_steps == session.distance_charge_steps
        assert restored.elapsed_accumulated_ms == 95_000
        assert restored.paused_at_ms == T0 + 95_000
        assert restored.events == session.events

    def test_running_snapshot_restores_paused_at_save_time(self, tokyo, make_sample):
        session = self._active_session(tokyo, make_sample)
        snap = snapshot_from_session(session, T0 + 100_000)
        assert snap.state is SessionState.RUNNING
        assert snap.elapsed_ms == 100_000

        restored = restore_session(idle_session(tokyo), snap)
        assert restored.state is SessionState.PAUSED
        assert restored.paused_at_ms == T0 + 100_000
        assert restored.events[-1].type == "pause"
        assert elapsed_ms(restored, T0 + 500_000) == 100_000

    def test_restore_only_from_idle(self, tokyo, make_sample):
        session = self._active_session(tokyo, make_sample)
        snap = snapshot_from_session(session, T0 + 100_000)
        assert restore_session(session, snap) is session

    def test_rejects_malformed_snapshot(self, tokyo):
        with pytest.raises(ValueError):
            SessionSnapshot.from_dict({"version": 99})
        with pytest.raises(KeyError):
            SessionSnapshot.from_dict({"version": 1, "sessionState": "paused"})
        with pytest.raises(ValueError):
            SessionSnapshot.from_dict({"version": 1, "sessionState": "idle"})
