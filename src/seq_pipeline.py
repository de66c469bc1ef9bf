import logging
import threading
import time
from dataclasses import dataclass
from functools import partial
from multiprocessing import Pool
from typing import Callable, Iterable, Iterator, Optional

from aggregator import Aggregator
from data_structures import RecordMetrics, RecordResult, SequenceRecord, SummaryReport
from length_stats import DEFAULT_PERCENTILES, validate_percentiles
from pipeline_errors import (PipelineCancelled, PipelineError,
                             RecordProcessingError, SourceDecodeError)
from record_transform import PipelineTask
from stream_merger import merge_streams
from worker_pool import (DEFAULT_QUEUE_SIZE, StreamState, batch_generator,
                         default_worker_count, fan_out, indexed_records,
                         process_batch_worker)

logger = logging.getLogger(__name__)

BACKENDS = ("thread", "process")


@dataclass(frozen=True)
class PipelineOptions:
    num_workers: Optional[int] = None
    backend: str = "thread"
    queue_size: int = DEFAULT_QUEUE_SIZE
    batch_size: int = 1000
    ordered: bool = False
    percentiles: tuple = DEFAULT_PERCENTILES

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"Unknown backend: {self.backend!r} (expected one of {BACKENDS})")
        if self.num_workers is not None and self.num_workers <= 0:
            raise ValueError(f"num_workers must be positive, got {self.num_workers}")
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.queue_size <= 0:
            raise ValueError(f"queue_size must be positive, got {self.queue_size}")
        # Validated before any record is read
        object.__setattr__(self, "percentiles", validate_percentiles(self.percentiles))

    @property
    def workers(self) -> int:
        return self.num_workers if self.num_workers is not None else default_worker_count()


@dataclass
class PipelineResult:
    records_in: int
    records_out: int
    elapsed_sec: float
    report: Optional[SummaryReport] = None


def _thread_results(records, task, options, cancel_event, stream_state) -> Iterator[RecordResult]:
    streams = fan_out(
        records, task,
        num_workers=options.workers,
        queue_size=options.queue_size,
        cancel_event=cancel_event,
        stream_state=stream_state,
    )
    return merge_streams(streams, maxsize=options.queue_size)


def _bounded(batches, slots: threading.Semaphore, cancel_event: threading.Event):
    # Pool feeds tasks eagerly; the semaphore caps the batches in flight
    for batch in batches:
        slots.acquire()
        if cancel_event.is_set():
            slots.release()
            return
        yield batch


def _process_results(records, task, options, cancel_event, stream_state) -> Iterator[RecordResult]:
    num_workers = options.workers
    slots = threading.Semaphore(num_workers * 2)
    batches = _bounded(
        batch_generator(indexed_records(records, cancel_event, stream_state), options.batch_size),
        slots, cancel_event,
    )
    logger.debug(f"Starting process pool with {num_workers} workers")
    with Pool(processes=num_workers) as pool:
        worker_func = partial(process_batch_worker, task=task)
        # imap_unordered: fan-out and fan-in in one step, results in completion order
        batch_results = pool.imap_unordered(worker_func, batches, chunksize=1)
        while True:
            try:
                results = next(batch_results)
            except StopIteration:
                break
            except Exception as e:
                logger.error(f"Error in pool worker: {e}")
                cancel_event.set()
                # Unblock the task feeder so it can observe the cancel
                slots.release(num_workers * 2)
                raise PipelineError(f"worker failed: {e}") from e
            slots.release()
            yield from results


def run_pipeline(records: Iterable[SequenceRecord], task: PipelineTask,
                 options: Optional[PipelineOptions] = None,
                 sink: Optional[Callable[[SequenceRecord], None]] = None,
                 on_metrics: Optional[Callable[[str, RecordMetrics], None]] = None,
                 cancel_event: Optional[threading.Event] = None) -> PipelineResult:
    """
    Stream records through the worker pool and reduce the merged results.

    Info mode returns a PipelineResult with a SummaryReport. Filter and grep
    modes hand kept records to sink and return counts only.

    Raises:
        SourceDecodeError: the record source failed
        RecordProcessingError: a record failed in a worker
        PipelineCancelled: cancel_event was set before the input was exhausted
    No partial summary is ever returned alongside an error.
    """
    if options is None:
        options = PipelineOptions()
    if cancel_event is None:
        cancel_event = threading.Event()
    stream_state = StreamState()
    aggregator = Aggregator(
        task, sink=sink, on_metrics=on_metrics,
        ordered=options.ordered, cancel_event=cancel_event,
    )

    logger.info(f"Running {task.mode} with {options.workers} {options.backend} workers")
    start_time = time.perf_counter()

    if options.backend == "process":
        results = _process_results(records, task, options, cancel_event, stream_state)
    else:
        results = _thread_results(records, task, options, cancel_event, stream_state)

    try:
        for result in results:
            aggregator.consume(result)
    except BaseException:
        cancel_event.set()
        # Let workers and forwarders finish before propagating
        for _ in results:
            pass
        raise

    elapsed = time.perf_counter() - start_time

    if stream_state.source_error is not None:
        error = stream_state.source_error
        if isinstance(error, SourceDecodeError):
            raise error
        raise SourceDecodeError(f"failed to read records: {error}") from error
    if stream_state.worker_error is not None:
        raise PipelineError(f"worker failed: {stream_state.worker_error}") from stream_state.worker_error
    if aggregator.failure is not None:
        failure = aggregator.failure
        raise RecordProcessingError(failure.name, failure.error, index=failure.index)
    if cancel_event.is_set():
        raise PipelineCancelled(
            f"Pipeline cancelled after {aggregator.consumed:,} of {stream_state.records_read:,} records"
        )

    report = aggregator.finalize(options.percentiles) if task.mode == "info" else None
    logger.info(f"Processed {stream_state.records_read:,} records in {elapsed:.4f} seconds")
    return PipelineResult(
        records_in=stream_state.records_read,
        records_out=aggregator.forwarded,
        elapsed_sec=elapsed,
        report=report,
    )
