"""Tests for RunRegistry — active set plus bounded history."""

import threading

import pytest

from sentinelhub.errors import RunNotFoundError
from sentinelhub.pipeline.models import PipelineRun, RequestKind
from sentinelhub.pipeline.registry import RunRegistry


def make_run(run_id: str | None = None) -> PipelineRun:
    run = PipelineRun(kind=RequestKind.CODE_ANALYSIS, input="x")
    if run_id:
        run.id = run_id
    return run


def complete(registry: RunRegistry, run: PipelineRun) -> PipelineRun | None:
    run.mark_completed()
    return registry.complete(run.id)


class TestRegistration:
    def test_get_finds_active_run(self):
        registry = RunRegistry()
        run = make_run()
        registry.register(run)

        assert registry.get(run.id) is run
        assert registry.active_count == 1
        assert registry.history_count == 0

    def test_duplicate_id_rejected(self):
        registry = RunRegistry()
        registry.register(make_run("pipeline_dup"))

        with pytest.raises(ValueError, match="Duplicate"):
            registry.register(make_run("pipeline_dup"))

    def test_unknown_id(self):
        assert RunRegistry().get("pipeline_missing") is None

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            RunRegistry(history_limit=0)


class TestCompletion:
    def test_moves_to_history(self):
        registry = RunRegistry()
        run = make_run()
        registry.register(run)
        complete(registry, run)

        assert registry.active_count == 0
        assert registry.history_count == 1
        assert registry.get(run.id) is run

    def test_refuses_running_run(self):
        registry = RunRegistry()
        run = make_run()
        registry.register(run)

        with pytest.raises(ValueError, match="still running"):
            registry.complete(run.id)
        assert registry.active_count == 1

    def test_unknown_run(self):
        with pytest.raises(RunNotFoundError):
            RunRegistry().complete("pipeline_missing")


class TestHistory:
    """History is most-recent-first and FIFO-bounded."""

    def test_most_recent_first(self):
        registry = RunRegistry()
        runs = [make_run(f"pipeline_{i}") for i in range(3)]
        for run in runs:
            registry.register(run)
            complete(registry, run)

        assert [r.id for r in registry.list_history()] == ["pipeline_2", "pipeline_1", "pipeline_0"]
        assert [r.id for r in registry.list_history(limit=2)] == ["pipeline_2", "pipeline_1"]

    def test_oldest_evicted_at_capacity(self):
        registry = RunRegistry(history_limit=3)
        for i in range(5):
            run = make_run(f"pipeline_{i}")
            registry.register(run)
            complete(registry, run)

        assert registry.history_count == 3
        assert [r.id for r in registry.list_history()] == ["pipeline_4", "pipeline_3", "pipeline_2"]
        assert registry.get("pipeline_0") is None
        assert registry.get("pipeline_1") is None

    def test_complete_returns_evicted_run(self):
        registry = RunRegistry(history_limit=2)
        runs = [make_run(f"pipeline_{i}") for i in range(3)]
        evicted = []
        for run in runs:
            registry.register(run)
            evicted.append(complete(registry, run))

        assert evicted[:2] == [None, None]
        assert evicted[2] is runs[0]

    def test_concurrent_completion_from_threads(self):
        """Runs completed from many threads never land twice or get lost."""
        registry = RunRegistry(history_limit=500)
        runs = [make_run() for _ in range(200)]
        for run in runs:
            registry.register(run)
            run.mark_completed()

        threads = [threading.Thread(target=registry.complete, args=(run.id,)) for run in runs]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert registry.active_count == 0
        assert registry.history_count == 200
        assert len({r.id for r in registry.list_history()}) == 200
