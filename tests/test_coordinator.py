"""Tests for the fetch/map/reduce coordinator."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from mapper.src.processor import MapperProcessor
from master.src.coordinator import JobNotFound, MapReduceCoordinator
from master.src.fetcher import FetchError
from master.src.job_state import InvalidTransition, JobInputError
from master.src.sink import SinkError
from master.src.workers import HttpMapWorker, WorkerError
from reducer.src.processor import ReducerProcessor


class FakeFetcher:
    """Serves documents from a dict; unknown locations fail."""

    def __init__(self, pages: dict, delays: dict | None = None):
        self.pages = pages
        self.delays = delays or {}
        self.completed = 0
        self.lock = threading.Lock()

    def fetch(self, location: str) -> str:
        time.sleep(self.delays.get(location, 0))
        with self.lock:
            self.completed += 1
        if location not in self.pages:
            raise FetchError(f"Failed to retrieve {location} with status code 404")
        return self.pages[location]


def _coordinator(fetcher, **kwargs) -> MapReduceCoordinator:
    kwargs.setdefault("map_worker", MapperProcessor().map_document)
    kwargs.setdefault("reduce_worker", ReducerProcessor().process_partial_indexes)
    return MapReduceCoordinator(fetcher=fetcher, **kwargs)


def _docs(*names: str) -> list:
    return [{"name": name, "url": f"http://books/{name}"} for name in names]


class TestRunJob:
    """Test MapReduceCoordinator.run_job."""

    def test_whale_example(self) -> None:
        """Two one-word documents produce the documented index."""
        fetcher = FakeFetcher({"http://books/doc1": "whale whale", "http://books/doc2": "whale"})
        coordinator = _coordinator(fetcher)
        job = coordinator.create_job(_docs("doc1", "doc2"))

        index = coordinator.run_job(job)

        assert index == {
            "whale": [
                {"book_name": "doc1", "bucket_index": 0, "frequency": 2},
                {"book_name": "doc2", "bucket_index": 0, "frequency": 1},
            ]
        }
        assert job.state == "done"
        assert job.index == index
        assert job.failed_documents == []

    def test_fetch_failure_tolerated(self) -> None:
        """One unreachable document of three still finishes with the other two."""
        fetcher = FakeFetcher({"http://books/a": "whale sea", "http://books/c": "ship"})
        coordinator = _coordinator(fetcher)
        job = coordinator.create_job(_docs("a", "b", "c"))

        index = coordinator.run_job(job)

        assert job.state == "done"
        assert job.failed_documents == ["b"]
        assert set(index) == {"whale", "sea", "ship"}
        books = {occ["book_name"] for occs in index.values() for occ in occs}
        assert books == {"a", "c"}

    def test_all_fetches_fail(self) -> None:
        """An all-failed job is done with an empty index."""
        coordinator = _coordinator(FakeFetcher({}))
        job = coordinator.create_job(_docs("a", "b"))

        assert coordinator.run_job(job) == {}
        assert job.state == "done"
        assert job.failed_documents == ["a", "b"]

    def test_strict_fetch_fails_job(self) -> None:
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}), strict_fetch=True)
        job = coordinator.create_job(_docs("a", "b"))

        assert coordinator.run_job(job) is None
        assert job.state == "failed"
        assert "b" in job.error

    def test_tokenization_error_contributes_nothing(self) -> None:
        """A document that cannot be tokenized is treated like a failed fetch."""
        fetcher = FakeFetcher({"http://books/a": "whale", "http://books/bad": "sea \ud800"})
        coordinator = _coordinator(fetcher)
        job = coordinator.create_job(_docs("a", "bad"))

        index = coordinator.run_job(job)

        assert job.state == "done"
        assert job.failed_documents == ["bad"]
        assert index == {"whale": [{"book_name": "a", "bucket_index": 0, "frequency": 1}]}

    def test_remote_mapper_failure_contributes_nothing(self) -> None:
        def map_worker(content):
            if content.name == "b":
                raise WorkerError("mapper down")
            return MapperProcessor().map_document(content)

        fetcher = FakeFetcher({"http://books/a": "whale", "http://books/b": "sea"})
        coordinator = _coordinator(fetcher, map_worker=map_worker)
        job = coordinator.create_job(_docs("a", "b"))

        assert set(coordinator.run_job(job)) == {"whale"}
        assert job.failed_documents == ["b"]

    @patch("master.src.workers.requests.post")
    def test_unreadable_mapper_replies_fail_documents(self, mock_post: MagicMock) -> None:
        """Mappers answering 200 with a non-JSON body fail their documents, not the job."""
        response = MagicMock()
        response.status_code = 200
        response.json.side_effect = requests.JSONDecodeError("Expecting value", "<html>", 0)
        mock_post.return_value = response
        fetcher = FakeFetcher({"http://books/a": "whale", "http://books/b": "sea"})
        coordinator = _coordinator(fetcher, map_worker=HttpMapWorker(["http://m1"]))
        job = coordinator.create_job(_docs("a", "b"))

        assert coordinator.run_job(job) == {}
        assert job.state == "done"
        assert sorted(job.failed_documents) == ["a", "b"]

    def test_state_while_mapping(self) -> None:
        """Map tasks run while the job reports mapping."""
        states = []
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}))
        job = coordinator.create_job(_docs("a"))

        def map_worker(content):
            states.append(job.state)
            return MapperProcessor().map_document(content)

        coordinator.map_worker = map_worker
        coordinator.run_job(job)

        assert states == ["mapping"]

    def test_state_while_reducing(self) -> None:
        states = []
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}))
        job = coordinator.create_job(_docs("a"))

        def reduce_worker(partials):
            states.append(job.state)
            return ReducerProcessor().process_partial_indexes(partials)

        coordinator.reduce_worker = reduce_worker
        coordinator.run_job(job)

        assert states == ["reducing"]
        assert job.state == "done"

    def test_map_waits_for_all_fetches(self) -> None:
        """No map task starts before every fetch has returned."""
        fetcher = FakeFetcher(
            {f"http://books/{n}": "whale" for n in "abcd"},
            delays={"http://books/c": 0.1},
        )
        seen = []

        def map_worker(content):
            seen.append(fetcher.completed)
            return MapperProcessor().map_document(content)

        coordinator = _coordinator(fetcher, map_worker=map_worker, max_workers=4)
        coordinator.run_job(coordinator.create_job(_docs(*"abcd")))

        assert seen == [4, 4, 4, 4]

    def test_reduce_called_once_with_all_partials(self) -> None:
        fetcher = FakeFetcher({f"http://books/{n}": "whale" for n in "ab"})
        reduce_worker = MagicMock(side_effect=ReducerProcessor().process_partial_indexes)
        coordinator = _coordinator(fetcher, reduce_worker=reduce_worker)

        coordinator.run_job(coordinator.create_job(_docs("a", "b", "c")))

        reduce_worker.assert_called_once()
        partials = reduce_worker.call_args[0][0]
        assert len(partials) == 3
        assert partials[2] == {}

    def test_reduce_failure_fails_job(self) -> None:
        coordinator = _coordinator(
            FakeFetcher({"http://books/a": "whale"}),
            reduce_worker=MagicMock(side_effect=WorkerError("reducer down")),
        )
        job = coordinator.create_job(_docs("a"))

        with pytest.raises(WorkerError):
            coordinator.run_job(job)
        assert job.state == "failed"
        assert job.error == "reducer down"

    def test_writes_to_sink(self) -> None:
        sink = MagicMock()
        sink.write.return_value = "/out/inverted_index.json"
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}), sink=sink)
        job = coordinator.create_job(_docs("a"))

        coordinator.run_job(job)

        sink.write.assert_called_once_with(job.job_id, job.index)
        assert job.result_location == "/out/inverted_index.json"

    def test_sink_error_keeps_index(self) -> None:
        """A sink failure is surfaced but the index survives for a retry."""
        sink = MagicMock()
        sink.write.side_effect = [SinkError("disk full"), "/out/index.json"]
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}), sink=sink)
        job = coordinator.create_job(_docs("a"))

        with pytest.raises(SinkError):
            coordinator.run_job(job)
        assert job.state == "done"
        assert job.index == {"whale": [{"book_name": "a", "bucket_index": 0, "frequency": 1}]}
        assert job.sink_error == "disk full"

        coordinator.retry_sink(job.job_id)
        assert job.result_location == "/out/index.json"
        assert job.sink_error is None
        assert sink.write.call_count == 2


class TestJobManagement:
    """Test submission, lookup, cancellation and sink retries."""

    def test_create_job_rejects_empty_list(self) -> None:
        coordinator = _coordinator(FakeFetcher({}))
        with pytest.raises(JobInputError):
            coordinator.create_job([])
        assert coordinator.jobs == {}

    def test_submit_runs_in_background(self) -> None:
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}))
        job = coordinator.submit(_docs("a"))
        coordinator.shutdown()

        assert job.state == "done"
        assert coordinator.get_job(job.job_id) is job
        assert coordinator.get_job_status()[job.job_id]["state"] == "done"

    def test_unknown_job(self) -> None:
        coordinator = _coordinator(FakeFetcher({}))
        with pytest.raises(JobNotFound):
            coordinator.get_job("nope")

    def test_cancel_before_start(self) -> None:
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}))
        job = coordinator.create_job(_docs("a"))

        coordinator.cancel(job.job_id)

        assert coordinator.run_job(job) is None
        assert job.state == "failed"
        assert job.error == "Job cancelled"

    def test_cancel_while_fetching(self) -> None:
        """In-flight fetches finish but nothing is mapped or merged."""
        started = threading.Event()
        release = threading.Event()

        class BlockingFetcher:
            def fetch(self, location):
                started.set()
                release.wait(5)
                return "whale"

        map_worker = MagicMock()
        coordinator = _coordinator(BlockingFetcher(), map_worker=map_worker)
        job = coordinator.submit(_docs("a"))

        assert started.wait(5)
        coordinator.cancel(job.job_id)
        release.set()
        coordinator.shutdown()

        assert job.state == "failed"
        assert job.error == "Job cancelled"
        assert job.index is None
        map_worker.assert_not_called()

    def test_cancel_while_mapping(self) -> None:
        """In-flight map tasks finish but their partials are never merged."""
        started = threading.Event()
        release = threading.Event()

        def map_worker(content):
            started.set()
            release.wait(5)
            return MapperProcessor().map_document(content)

        reduce_worker = MagicMock()
        coordinator = _coordinator(
            FakeFetcher({"http://books/a": "whale"}),
            map_worker=map_worker,
            reduce_worker=reduce_worker,
        )
        job = coordinator.submit(_docs("a"))

        assert started.wait(5)
        assert job.state == "mapping"
        coordinator.cancel(job.job_id)
        release.set()
        coordinator.shutdown()

        assert job.state == "failed"
        assert job.error == "Job cancelled"
        assert job.index is None
        reduce_worker.assert_not_called()

    def test_cancel_finished_job(self) -> None:
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}))
        job = coordinator.create_job(_docs("a"))
        coordinator.run_job(job)

        with pytest.raises(InvalidTransition):
            coordinator.cancel(job.job_id)

    def test_retry_sink_requires_done_job(self) -> None:
        coordinator = _coordinator(FakeFetcher({}), sink=MagicMock())
        job = coordinator.create_job(_docs("a"))
        with pytest.raises(InvalidTransition):
            coordinator.retry_sink(job.job_id)

    def test_finished_jobs_evicted_past_cap(self) -> None:
        """Only the newest finished jobs stay registered."""
        coordinator = _coordinator(FakeFetcher({"http://books/a": "whale"}), max_retained_jobs=2)
        first = coordinator.create_job(_docs("a"))
        coordinator.run_job(first)
        second = coordinator.create_job(_docs("a"))
        coordinator.run_job(second)

        third = coordinator.create_job(_docs("a"))

        assert set(coordinator.jobs) == {second.job_id, third.job_id}
        with pytest.raises(JobNotFound):
            coordinator.get_job(first.job_id)

    def test_unfinished_jobs_never_evicted(self) -> None:
        coordinator = _coordinator(FakeFetcher({}), max_retained_jobs=1)
        pending = coordinator.create_job(_docs("a"))

        newer = coordinator.create_job(_docs("a"))

        assert set(coordinator.jobs) == {pending.job_id, newer.job_id}

    def test_jobs_awaiting_sink_retry_kept(self) -> None:
        sink = MagicMock()
        sink.write.side_effect = SinkError("disk full")
        coordinator = _coordinator(
            FakeFetcher({"http://books/a": "whale"}), sink=sink, max_retained_jobs=1
        )
        unsaved = coordinator.create_job(_docs("a"))
        with pytest.raises(SinkError):
            coordinator.run_job(unsaved)

        coordinator.create_job(_docs("a"))

        assert coordinator.get_job(unsaved.job_id) is unsaved
