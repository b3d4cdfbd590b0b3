"""
Tests for the fork/join thread dispatch.
"""

import threading

import pytest

from torchxmatch.threads import distribute_indices, spin_off


class TestDistributeIndices:
    """Contiguous chunking of work items."""

    def test_uneven_split(self):
        assert distribute_indices(10, 3) == [range(0, 4), range(4, 7), range(7, 10)]

    def test_more_threads_than_items(self):
        assert distribute_indices(2, 5) == [range(0, 1), range(1, 2)]

    def test_no_items(self):
        assert distribute_indices(0, 4) == []

    @pytest.mark.parametrize("num_items", [1, 7, 100, 1001])
    @pytest.mark.parametrize("num_threads", [1, 2, 3, 8])
    def test_chunks_cover_range(self, num_items, num_threads):
        chunks = distribute_indices(num_items, num_threads)
        assert [i for chunk in chunks for i in chunk] == list(range(num_items))
        sizes = [len(chunk) for chunk in chunks]
        assert max(sizes) - min(sizes) <= 1
        assert sizes == sorted(sizes, reverse=True)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            distribute_indices(-1, 2)
        with pytest.raises(ValueError):
            distribute_indices(10, 0)


class TestSpinOff:
    """Running workers and collecting their results."""

    def test_results_in_chunk_order(self):
        results = spin_off(lambda indices, p: [i * p for i in indices], 2, 10, 4)
        assert [len(part) for part in results] == [3, 3, 2, 2]
        assert [x for part in results for x in part] == [2 * i for i in range(10)]

    def test_runs_on_worker_threads(self):
        names = set()
        lock = threading.Lock()

        def worker(indices, params):
            with lock:
                names.add(threading.current_thread().name)
            return len(indices)

        assert spin_off(worker, None, 100, 4) == [25, 25, 25, 25]
        assert names == {f"torchxmatch-worker-{slot}" for slot in range(4)}

    def test_small_jobs_stay_on_caller(self):
        names = []

        def worker(indices, params):
            names.append(threading.current_thread().name)
            return list(indices)

        results = spin_off(worker, None, 10, 4, min_items_for_parallel=100)
        assert results == [list(range(10))]
        assert names == [threading.current_thread().name]

    def test_no_items(self):
        assert spin_off(lambda indices, p: 1, None, 0, 4) == []

    def test_worker_error_propagates(self):
        def worker(indices, params):
            if 5 in indices:
                raise RuntimeError("bad chunk")
            return len(indices)

        with pytest.raises(RuntimeError, match="bad chunk"):
            spin_off(worker, None, 10, 3)
