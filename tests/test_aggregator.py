"""
Tests for the aggregator, reorder buffer and summary computation.
"""

import threading

import pytest

from aggregator import Aggregator, ReorderBuffer, summarize
from data_structures import (RecordResult, ResultStatus, RunningSummary,
                             make_record)
from record_transform import FilterConfig, PipelineTask, compute_metrics


def summarized(index, record):
    return RecordResult(index=index, name=record.name, status=ResultStatus.SUMMARIZED,
                        metrics=compute_metrics(record))


def kept(index, record):
    return RecordResult(index=index, name=record.name, status=ResultStatus.KEPT,
                        metrics=compute_metrics(record), record=record)


def dropped(index, name):
    return RecordResult(index=index, name=name, status=ResultStatus.DROPPED)


class TestReorderBuffer:
    """Tests for restoring input order."""

    def test_releases_in_order(self):
        buf = ReorderBuffer()
        assert buf.push(dropped(2, "c")) == []
        assert buf.push(dropped(1, "b")) == []
        released = buf.push(dropped(0, "a"))
        assert [r.index for r in released] == [0, 1, 2]
        assert buf.pending_count == 0

    def test_duplicate_index_fails(self):
        buf = ReorderBuffer()
        buf.push(dropped(0, "a"))
        with pytest.raises(ValueError, match="Duplicate result"):
            buf.push(dropped(0, "a"))


class TestAggregator:
    """Tests for folding and forwarding."""

    def test_info_mode_folds_metrics(self):
        agg = Aggregator(PipelineTask())
        agg.consume(summarized(0, make_record("a", "GGCC", "IIII")))
        agg.consume(summarized(1, make_record("b", "AATTNN", "++++++")))
        summary = agg.summary
        assert summary.total_records == 2
        assert summary.total_bases == 10
        assert summary.gc_count == 4
        assert summary.at_count == 4
        assert summary.n_count == 2
        assert summary.quality_records == 2
        assert summary.base_quality_sum == 4 * 40 + 6 * 10
        assert sorted(summary.lengths) == [4, 6]

    def test_on_metrics_callback(self):
        seen = []
        agg = Aggregator(PipelineTask(), on_metrics=lambda name, m: seen.append((name, m.length)))
        agg.consume(summarized(0, make_record("a", "ACG")))
        assert seen == [("a", 3)]

    def test_filter_mode_forwards_kept_records_once(self):
        written = []
        task = PipelineTask(mode="filter", filter_config=FilterConfig(length_min=2))
        agg = Aggregator(task, sink=written.append)
        first = make_record("a", "ACGT")
        agg.consume(kept(0, first))
        agg.consume(dropped(1, "b"))
        assert written == [first]
        assert agg.forwarded == 1

    def test_filter_mode_requires_sink(self):
        with pytest.raises(ValueError, match="requires a record sink"):
            Aggregator(PipelineTask(mode="filter"))

    def test_ordered_forwarding(self):
        written = []
        agg = Aggregator(PipelineTask(mode="filter"), sink=written.append, ordered=True)
        records = [make_record(f"r{i}", "ACGT") for i in range(4)]
        agg.consume(kept(2, records[2]))
        agg.consume(dropped(1, "r1"))
        assert written == []
        agg.consume(kept(0, records[0]))
        agg.consume(kept(3, records[3]))
        assert [r.name for r in written] == ["r0", "r2", "r3"]

    def test_failure_sets_cancel_and_stops_folding(self):
        cancel = threading.Event()
        agg = Aggregator(PipelineTask(), cancel_event=cancel)
        agg.consume(RecordResult(index=0, name="bad", status=ResultStatus.FAILED, error="boom"))
        agg.consume(summarized(1, make_record("a", "ACGT")))
        assert cancel.is_set()
        assert agg.failure.name == "bad"
        assert agg.summary.total_records == 0


class TestSummarize:
    """Tests for the final report."""

    def test_empty_summary_is_undefined(self):
        report = summarize(RunningSummary())
        assert report.total_records == 0
        assert report.total_bases == 0
        assert report.gc_percent is None
        assert report.gc_percent_unambiguous is None
        assert report.shortest is None
        assert report.longest is None
        assert report.mean_length is None
        assert report.median_length is None
        assert report.nxx == {20: None, 50: None, 80: None}
        assert report.has_quality is False
        assert report.mean_quality_per_base is None

    def test_report_values(self):
        summary = RunningSummary()
        for seq in ("GGGGGGGGGG", "AAAAA", "CCC", "NT"):
            summary.add(compute_metrics(make_record("r", seq)))
        report = summarize(summary)
        assert report.total_records == 4
        assert report.total_bases == 20
        assert report.gc_percent == pytest.approx(65.0)
        assert report.gc_percent_unambiguous == pytest.approx(13 / 19 * 100)
        assert report.n_count == 1
        assert report.shortest == 2
        assert report.longest == 10
        assert report.mean_length == pytest.approx(5.0)
        assert report.median_length == pytest.approx(4.0)
        assert report.nxx == {20: 10, 50: 10, 80: 3}
        assert report.has_quality is False

    def test_non_atgcn_bases_counted_as_ambiguous(self):
        summary = RunningSummary()
        for seq in ("SSWWUU", "ACGTNR"):
            summary.add(compute_metrics(make_record("r", seq)))
        report = summarize(summary)
        assert report.ambiguous_count == 7
        assert report.n_count == 1
        assert report.gc_percent == pytest.approx(2 / 12 * 100)
        assert report.gc_percent_unambiguous == pytest.approx(50.0)

    def test_invalid_percentile(self):
        with pytest.raises(ValueError, match="out of range"):
            summarize(RunningSummary(), percentiles=(50, 100))

    def test_quality_means(self):
        summary = RunningSummary()
        summary.add(compute_metrics(make_record("a", "ACGT", "IIII")))    # Q40
        summary.add(compute_metrics(make_record("b", "AC", "++")))        # Q10
        report = summarize(summary)
        assert report.has_quality
        assert report.mean_quality_per_seq == pytest.approx(25.0)
        assert report.mean_quality_per_base == pytest.approx((160 + 20) / 6)
        assert report.mean_error_prob_per_seq == pytest.approx((1e-4 + 0.1) / 2)
        assert report.mean_error_prob_per_base == pytest.approx((4e-4 + 0.2) / 6)

    def test_custom_percentiles(self):
        summary = RunningSummary()
        summary.add(compute_metrics(make_record("a", "ACGT")))
        assert summarize(summary, percentiles=(10, 90)).nxx == {10: 4, 90: 4}
