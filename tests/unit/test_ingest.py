"""
Unit tests for runslot.scheduler.ingest module.

Tests cover:
- Validation and fan-out of trigger events
- Ordered admission per slot
- Worker lifecycle
"""

import pytest


@pytest.fixture
def scheduler():
    from runslot.scheduler.scheduler import RunScheduler
    return RunScheduler()


class TestEventQueue:
    """Tests for EventQueue."""

    @pytest.mark.unit
    def test_fans_out_to_all_pipelines(self, scheduler):
        from runslot.scheduler.ingest import EventQueue
        from runslot.scheduler.models import PipelineKind

        events = EventQueue(scheduler, workers=2)
        events.start()
        try:
            kinds = events.put({"event_type": "opened", "branch_ref": "feature-x", "commit_hash": "c1"})
            events.join()
        finally:
            events.stop()

        assert set(kinds) == {PipelineKind.BUILD_TEST, PipelineKind.STYLE_CHECK}
        assert {h.pipeline for h in scheduler.active_runs()} == set(kinds)

    @pytest.mark.unit
    def test_selected_pipelines_only(self, scheduler, make_event):
        from runslot.scheduler.ingest import EventQueue
        from runslot.scheduler.models import PipelineKind

        events = EventQueue(scheduler, workers=1)
        events.start()
        try:
            kinds = events.put(make_event(), pipelines=["style-check"])
            events.join()
        finally:
            events.stop()

        assert kinds == [PipelineKind.STYLE_CHECK]
        assert [h.pipeline for h in scheduler.active_runs()] == [PipelineKind.STYLE_CHECK]

    @pytest.mark.unit
    def test_rejects_unknown_event_type(self, scheduler):
        from runslot.scheduler.ingest import EventQueue
        from runslot.scheduler.models import UnknownEventError

        events = EventQueue(scheduler)
        with pytest.raises(UnknownEventError):
            events.put({"event_type": "closed", "branch_ref": "b", "commit_hash": "c"})
        assert events.pending() == 0

    @pytest.mark.unit
    def test_rejects_unknown_pipeline(self, scheduler, make_event):
        from runslot.scheduler.ingest import EventQueue
        from runslot.scheduler.models import UnknownPipelineError

        events = EventQueue(scheduler)
        with pytest.raises(UnknownPipelineError):
            events.put(make_event(), pipelines=["build-test", "deploy"])
        assert events.pending() == 0

    @pytest.mark.unit
    def test_put_before_start_is_queued(self, scheduler, make_event):
        from runslot.scheduler.ingest import EventQueue

        events = EventQueue(scheduler, workers=3)
        events.put(make_event())

        assert events.pending() == 2
        assert len(scheduler.table) == 0

        events.start()
        events.join()
        events.stop()
        assert len(scheduler.table) == 2

    @pytest.mark.unit
    def test_last_event_per_key_wins(self, scheduler, make_event):
        """Events of one branch are admitted in arrival order."""
        from runslot.scheduler.ingest import EventQueue
        from runslot.scheduler.models import RunState

        admitted = []
        events = EventQueue(scheduler, workers=4, on_admitted=admitted.append)
        for i in range(20):
            events.put(make_event("feature-x", f"c{i}"), pipelines=["build-test"])

        events.start()
        events.join()
        events.stop()

        running = [h for h in admitted if h.state is RunState.RUNNING]
        assert [h.event.commit_hash for h in admitted] == [f"c{i}" for i in range(20)]
        assert len(running) == 1
        assert running[0].event.commit_hash == "c19"

    @pytest.mark.unit
    def test_admission_errors_do_not_stop_workers(self, scheduler, make_event):
        from runslot.scheduler.ingest import EventQueue

        calls = []

        def flaky(handle):
            calls.append(handle)
            if len(calls) == 1:
                raise RuntimeError("observer down")

        events = EventQueue(scheduler, workers=1, on_admitted=flaky)
        events.start()
        events.put(make_event("feature-a", "c1"), pipelines=["build-test"])
        events.put(make_event("feature-b", "c1"), pipelines=["build-test"])
        events.join()
        events.stop()

        assert len(calls) == 2
        assert len(scheduler.table) == 2

    @pytest.mark.unit
    def test_start_stop(self, scheduler):
        from runslot.scheduler.ingest import EventQueue

        events = EventQueue(scheduler, workers=2)
        assert not events.is_running

        events.start()
        assert events.is_running

        events.stop()
        assert not events.is_running
