import logging
import threading
from typing import Callable, Iterable, List, Optional

from data_structures import (RecordMetrics, RecordResult, ResultStatus,
                             RunningSummary, SequenceRecord, SummaryReport)
from length_stats import DEFAULT_PERCENTILES, median_length, nxx_at
from record_transform import PipelineTask

logger = logging.getLogger(__name__)


class ReorderBuffer:
    """
    Releases results in input order. Results arriving early wait until every
    lower index has been seen; dropped results still advance the expected index.
    """

    def __init__(self, start_index: int = 0):
        self._pending = {}
        self._next_index = start_index

    def push(self, result: RecordResult) -> List[RecordResult]:
        if result.index < self._next_index or result.index in self._pending:
            raise ValueError(f"Duplicate result for record index {result.index}")
        self._pending[result.index] = result
        released = []
        while self._next_index in self._pending:
            released.append(self._pending.pop(self._next_index))
            self._next_index += 1
        return released

    @property
    def pending_count(self) -> int:
        return len(self._pending)


def summarize(summary: RunningSummary, percentiles: Iterable[int] = DEFAULT_PERCENTILES) -> SummaryReport:
    """
    Compute the order-dependent statistics once the stream is drained.
    Degenerate values (no records, no unambiguous bases, no quality) are None.
    """
    lengths = summary.lengths
    nxx_values = nxx_at(lengths, percentiles, summary.total_bases)

    def ratio(numerator, denominator, scale=1.0):
        if denominator == 0:
            return None
        return numerator / denominator * scale

    unambiguous = summary.gc_count + summary.at_count
    report = SummaryReport(
        total_records=summary.total_records,
        total_bases=summary.total_bases,
        n_count=summary.n_count,
        ambiguous_count=summary.ambiguous_count,
        gc_percent=ratio(summary.gc_count, summary.total_bases, 100),
        gc_percent_unambiguous=ratio(summary.gc_count, unambiguous, 100),
        shortest=min(lengths) if lengths else None,
        longest=max(lengths) if lengths else None,
        mean_length=ratio(summary.total_bases, summary.total_records),
        median_length=median_length(lengths),
        nxx=nxx_values,
    )

    if summary.quality_records > 0:
        report.has_quality = True
        report.mean_quality_per_seq = ratio(summary.seq_mean_quality_sum, summary.quality_records)
        report.mean_error_prob_per_seq = ratio(summary.seq_mean_error_prob_sum, summary.quality_records)
        report.mean_quality_per_base = ratio(summary.base_quality_sum, summary.quality_bases)
        report.mean_error_prob_per_base = ratio(summary.base_error_prob_sum, summary.quality_bases)
    return report


class Aggregator:
    """
    Single consumer of the merged result stream.

    In info mode every result is folded into a RunningSummary. In filter/grep
    mode kept records are handed to the sink exactly once, in merge order unless
    ordered=True. No locking: this object is only touched by the consuming thread.
    """

    def __init__(self, task: PipelineTask,
                 sink: Optional[Callable[[SequenceRecord], None]] = None,
                 on_metrics: Optional[Callable[[str, RecordMetrics], None]] = None,
                 ordered: bool = False,
                 cancel_event: Optional[threading.Event] = None):
        if task.forwards_records and sink is None:
            raise ValueError(f"{task.mode} mode requires a record sink")
        self.task = task
        self.sink = sink
        self.on_metrics = on_metrics
        self.summary = RunningSummary()
        self.reorder = ReorderBuffer() if ordered else None
        self.cancel_event = cancel_event
        self.failure: Optional[RecordResult] = None
        self.consumed = 0
        self.forwarded = 0

    def consume(self, result: RecordResult):
        self.consumed += 1
        if result.failed:
            if self.failure is None:
                self.failure = result
                logger.error(f"Record {result.name} failed: {result.error}")
            if self.cancel_event is not None:
                self.cancel_event.set()
            return
        if self.failure is not None:
            return  # draining after a failure

        if self.reorder is None:
            self._dispatch(result)
        else:
            for ready in self.reorder.push(result):
                self._dispatch(ready)

        if self.consumed % 100000 == 0:
            logger.info(f"Processed {self.consumed:,} sequences...")

    def _dispatch(self, result: RecordResult):
        if result.status is ResultStatus.KEPT:
            self.sink(result.record)
            self.forwarded += 1
        elif result.status is ResultStatus.SUMMARIZED:
            self.summary.add(result.metrics)
            if self.on_metrics is not None:
                self.on_metrics(result.name, result.metrics)

    def finalize(self, percentiles: Iterable[int] = DEFAULT_PERCENTILES) -> SummaryReport:
        if self.reorder is not None and self.reorder.pending_count:
            raise RuntimeError(f"{self.reorder.pending_count} results still waiting for reordering")
        return summarize(self.summary, percentiles)
