"""
Tests for fan-out (worker pool) and fan-in (stream merger).
"""

import threading

import pytest

from data_structures import ResultStatus, make_record
from pipeline_errors import SourceDecodeError
from record_transform import PipelineTask
from stream_merger import merge_streams
from worker_pool import (StreamState, batch_generator, fan_out,
                         indexed_records, process_batch_worker)


class TestMergeStreams:
    """Tests for the fan-in merger."""

    def test_every_element_exactly_once(self):
        streams = [range(0, 100), range(100, 250), range(250, 260)]
        merged = list(merge_streams(streams, maxsize=4))
        assert sorted(merged) == list(range(260))

    def test_empty_streams(self):
        assert list(merge_streams([[], [], []])) == []

    def test_no_streams(self):
        assert list(merge_streams([])) == []

    def test_preserves_order_within_a_stream(self):
        merged = list(merge_streams([["a1", "a2", "a3"], ["b1", "b2"]], maxsize=1))
        assert [x for x in merged if x.startswith("a")] == ["a1", "a2", "a3"]
        assert [x for x in merged if x.startswith("b")] == ["b1", "b2"]

    def test_closes_only_after_slow_stream(self):
        release = threading.Event()

        def slow():
            release.wait(timeout=5)
            yield "late"

        def fast():
            yield "early"
            release.set()

        assert sorted(merge_streams([slow(), fast()])) == ["early", "late"]


class TestFanOut:
    """Tests for the thread worker pool."""

    def test_each_record_processed_once(self, fastq_records):
        streams = fan_out(fastq_records, PipelineTask(), num_workers=4, queue_size=8)
        assert len(streams) == 4
        indexes = [result.index for result in merge_streams(streams)]
        assert sorted(indexes) == list(range(len(fastq_records)))

    def test_streams_close_on_empty_input(self):
        streams = fan_out([], PipelineTask(), num_workers=3)
        assert [list(s) for s in streams] == [[], [], []]

    def test_more_workers_than_records(self):
        records = [make_record(f"r{i}", "ACGT") for i in range(3)]
        streams = fan_out(records, PipelineTask(), num_workers=16, queue_size=2)
        results = list(merge_streams(streams))
        assert len(results) == 3
        assert all(r.status is ResultStatus.SUMMARIZED for r in results)

    @pytest.mark.parametrize("num_workers", [0, -2])
    def test_invalid_worker_count(self, num_workers):
        with pytest.raises(ValueError, match="num_workers must be positive"):
            fan_out([], PipelineTask(), num_workers=num_workers)

    def test_cancelled_before_start_processes_nothing(self, fastq_records):
        cancel = threading.Event()
        cancel.set()
        state = StreamState()
        streams = fan_out(fastq_records, PipelineTask(), num_workers=2,
                          cancel_event=cancel, stream_state=state)
        assert list(merge_streams(streams)) == []
        assert state.records_read == 0


class TestIndexedRecords:
    def test_numbers_records(self):
        records = [make_record("a", "A"), make_record("b", "C")]
        items = list(indexed_records(records, threading.Event(), StreamState()))
        assert [(i, r.name) for i, r in items] == [(0, "a"), (1, "b")]

    def test_source_error_captured(self):
        def broken_source():
            yield make_record("a", "A")
            yield make_record("b", "C")
            raise SourceDecodeError("bad record", line_number=9)

        cancel = threading.Event()
        state = StreamState()
        items = list(indexed_records(broken_source(), cancel, state))
        assert len(items) == 2
        assert isinstance(state.source_error, SourceDecodeError)
        assert "line 9" in str(state.source_error)
        assert cancel.is_set()


class TestBatches:
    """Tests for the process backend helpers."""

    def test_batch_sizes(self):
        batches = list(batch_generator(range(7), 3))
        assert [len(b) for b in batches] == [3, 3, 1]
        assert [x for b in batches for x in b] == list(range(7))

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError, match="batch_size must be positive"):
            list(batch_generator(range(3), 0))

    def test_process_batch_worker(self):
        batch = [(10, make_record("a", "ACGT")), (11, make_record("b", "GG"))]
        results = process_batch_worker(batch, PipelineTask())
        assert [r.index for r in results] == [10, 11]
        assert [r.metrics.length for r in results] == [4, 2]
