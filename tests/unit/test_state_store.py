"""
Unit tests for runslot.state.store module.

Tests cover:
- Recording and updating runs
- Listing with filters
- Statistics
- Recovery of runs left running by a previous session
"""

import time

import pytest


def _run_dict(run_id="run-1", branch="feature-x", pipeline="build-test", state="running",
              outcome=None, submitted_at=None, finished_at=None):
    submitted_at = submitted_at if submitted_at is not None else time.time()
    return {
        "run_id": run_id,
        "key": f"{pipeline}-{branch}-anysha",
        "pipeline": pipeline,
        "event_type": "synchronize",
        "branch": branch,
        "commit_hash": "c1",
        "state": state,
        "outcome": outcome,
        "submitted_at": submitted_at,
        "finished_at": finished_at,
    }


class TestRunStore:
    """Tests for run recording."""

    @pytest.mark.unit
    def test_record_and_get(self, test_db):
        from runslot.state import store

        store.record_run(_run_dict("run-a"))
        run = store.get_run("run-a")

        assert run is not None
        assert run["id"] == "run-a"
        assert run["state"] == "running"
        assert run["branch"] == "feature-x"

    @pytest.mark.unit
    def test_get_nonexistent_run(self, test_db):
        from runslot.state import store

        assert store.get_run("run-missing") is None

    @pytest.mark.unit
    def test_record_updates_state(self, test_db):
        """Recording the same run again updates its transition fields."""
        from runslot.state import store

        data = _run_dict("run-a")
        store.record_run(data)
        data.update(state="completed", outcome="success", finished_at=data["submitted_at"] + 3)
        store.record_run(data)

        run = store.get_run("run-a")
        assert run["state"] == "completed"
        assert run["outcome"] == "success"
        assert run["finished_at"] == pytest.approx(data["submitted_at"] + 3)
        assert len(store.list_runs()) == 1

    @pytest.mark.unit
    def test_finished_run_is_not_reopened(self, test_db):
        """A late write of the admitted state does not undo a completion."""
        from runslot.state import store

        admitted = _run_dict("run-a")
        finished = dict(admitted, state="completed", outcome="failure", finished_at=admitted["submitted_at"] + 1)

        store.record_run(finished)
        store.record_run(admitted)

        run = store.get_run("run-a")
        assert run["state"] == "completed"
        assert run["outcome"] == "failure"
        assert store.list_runs(state="running") == []

    @pytest.mark.unit
    def test_cancelled_run_stays_cancelled(self, test_db):
        from runslot.state import store

        data = _run_dict("run-a")
        store.record_run(data)
        store.record_run(dict(data, state="cancelled", finished_at=time.time()))
        store.record_run(dict(data, state="completed", outcome="success", finished_at=time.time()))

        assert store.get_run("run-a")["state"] == "cancelled"

    @pytest.mark.unit
    def test_record_from_run_model(self, test_db, make_event):
        from runslot.state import store
        from runslot.scheduler.models import PipelineKind, Run

        run = Run(key="style-check-main-c1", pipeline=PipelineKind.STYLE_CHECK, event=make_event("main", "c1"))
        store.record_run(run.to_dict())

        assert store.get_run(run.run_id)["pipeline"] == "style-check"

    @pytest.mark.unit
    def test_list_runs_filters(self, test_db):
        from runslot.state import store

        now = time.time()
        store.record_run(_run_dict("run-1", branch="feature-x", submitted_at=now - 3))
        store.record_run(_run_dict("run-2", branch="feature-y", submitted_at=now - 2))
        store.record_run(_run_dict("run-3", branch="feature-x", pipeline="style-check", submitted_at=now - 1))

        assert [r["id"] for r in store.list_runs()] == ["run-3", "run-2", "run-1"]
        assert [r["id"] for r in store.list_runs(branch="feature-x")] == ["run-3", "run-1"]
        assert [r["id"] for r in store.list_runs(pipeline="style-check")] == ["run-3"]
        assert [r["id"] for r in store.list_runs(limit=1)] == ["run-3"]

    @pytest.mark.unit
    def test_run_stats(self, test_db):
        from runslot.state import store

        now = time.time()
        store.record_run(_run_dict("run-1", state="completed", outcome="success", submitted_at=now - 10, finished_at=now - 6))
        store.record_run(_run_dict("run-2", state="completed", outcome="failure", submitted_at=now - 10, finished_at=now - 8))
        store.record_run(_run_dict("run-3", state="cancelled", submitted_at=now - 10, finished_at=now - 9))
        store.record_run(_run_dict("run-4"))

        stats = store.get_run_stats()

        assert stats["total_runs"] == 3
        assert stats["successful_runs"] == 1
        assert stats["failed_runs"] == 1
        assert stats["cancelled_runs"] == 1
        assert stats["success_rate"] == 0.5
        assert stats["avg_duration"] == pytest.approx(7 / 3)

    @pytest.mark.unit
    def test_run_stats_empty(self, test_db):
        from runslot.state import store

        stats = store.get_run_stats()

        assert stats["total_runs"] == 0
        assert stats["success_rate"] == 0

    @pytest.mark.unit
    def test_mark_interrupted(self, test_db):
        from runslot.state import store

        store.record_run(_run_dict("run-1"))
        store.record_run(_run_dict("run-2", state="completed", outcome="success", finished_at=time.time()))

        assert store.mark_interrupted() == 1
        assert store.get_run("run-1")["state"] == "cancelled"
        assert store.get_run("run-2")["state"] == "completed"

    @pytest.mark.unit
    def test_clear_runs_keeps_active(self, test_db):
        """Clearing removes finished runs only."""
        from runslot.state import store

        store.record_run(_run_dict("run-1"))
        store.record_run(_run_dict("run-2", state="completed", outcome="success", finished_at=time.time()))
        store.record_run(_run_dict("run-3", state="cancelled", finished_at=time.time()))

        assert store.clear_runs() == 2
        assert [run["id"] for run in store.list_runs()] == ["run-1"]
        assert store.clear_runs() == 0
