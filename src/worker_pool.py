import logging
import os
import queue
import threading
from typing import Iterable, Iterator, List, Optional, Tuple

from data_structures import RecordResult, SequenceRecord
from record_transform import PipelineTask, process_record

logger = logging.getLogger(__name__)

# End-of-stream marker for the internal queues
END_OF_STREAM = object()

DEFAULT_QUEUE_SIZE = 1024


def default_worker_count() -> int:
    return os.cpu_count() or 1


class StreamState:
    """Failures seen off the consumer thread, re-raised by the pipeline driver."""

    def __init__(self):
        self.source_error: Optional[BaseException] = None
        self.worker_error: Optional[BaseException] = None
        self.records_read = 0


def iterate_queue(q: queue.Queue) -> Iterator:
    """Yield items from a queue until the end-of-stream marker arrives."""
    while True:
        item = q.get()
        if item is END_OF_STREAM:
            return
        yield item


def indexed_records(records: Iterable[SequenceRecord], cancel_event: threading.Event,
                    stream_state: StreamState) -> Iterator[Tuple[int, SequenceRecord]]:
    """
    Number the records as they leave the source. Stops early when cancelled, and
    records a source failure in stream_state instead of raising into a pool thread.
    """
    try:
        for index, record in enumerate(records):
            if cancel_event.is_set():
                logger.debug(f"Source stopped after {index} records (cancelled)")
                return
            stream_state.records_read += 1
            yield index, record
    except Exception as e:
        logger.error(f"Error reading records: {e}")
        stream_state.source_error = e
        cancel_event.set()


def _feed(records, in_queue: queue.Queue, num_workers: int,
          cancel_event: threading.Event, stream_state: StreamState):
    try:
        for item in indexed_records(records, cancel_event, stream_state):
            in_queue.put(item)
    finally:
        # One marker per worker so every worker sees the end of input
        for _ in range(num_workers):
            in_queue.put(END_OF_STREAM)
        logger.debug(f"Feeder finished after {stream_state.records_read:,} records")


def _work(worker_id: int, in_queue: queue.Queue, out_queue: queue.Queue,
          task: PipelineTask, cancel_event: threading.Event, stream_state: StreamState):
    processed = 0
    try:
        while True:
            item = in_queue.get()
            if item is END_OF_STREAM:
                break
            if cancel_event.is_set():
                continue  # drain without transforming
            index, record = item
            out_queue.put(process_record(index, record, task))
            processed += 1
    except Exception as e:
        logger.error(f"Error in worker {worker_id}: {e}", exc_info=True)
        if stream_state.worker_error is None:
            stream_state.worker_error = e
        cancel_event.set()
        # Keep draining so the feeder never blocks on a full queue
        for _ in iterate_queue(in_queue):
            pass
    finally:
        out_queue.put(END_OF_STREAM)
        logger.debug(f"Worker {worker_id} finished after {processed:,} records")


def fan_out(records: Iterable[SequenceRecord], task: PipelineTask,
            num_workers: Optional[int] = None, queue_size: int = DEFAULT_QUEUE_SIZE,
            cancel_event: Optional[threading.Event] = None,
            stream_state: Optional[StreamState] = None) -> List[Iterator[RecordResult]]:
    """
    Start one feeder and num_workers worker threads sharing a single bounded
    input queue. Each worker pulls the next unclaimed record, so no record is
    processed twice.

    Returns: one output stream per worker. A stream ends exactly when the shared
    input is exhausted.
    """
    if num_workers is None:
        num_workers = default_worker_count()
    if num_workers <= 0:
        raise ValueError(f"num_workers must be positive, got {num_workers}")
    if queue_size <= 0:
        raise ValueError(f"queue_size must be positive, got {queue_size}")
    if cancel_event is None:
        cancel_event = threading.Event()
    if stream_state is None:
        stream_state = StreamState()

    in_queue = queue.Queue(maxsize=queue_size)
    out_queues = [queue.Queue(maxsize=queue_size) for _ in range(num_workers)]

    logger.debug(f"Starting {num_workers} worker threads")
    threading.Thread(
        target=_feed, name="seqpipe-feeder", daemon=True,
        args=(records, in_queue, num_workers, cancel_event, stream_state),
    ).start()
    for worker_id, out_queue in enumerate(out_queues):
        threading.Thread(
            target=_work, name=f"seqpipe-worker-{worker_id}", daemon=True,
            args=(worker_id, in_queue, out_queue, task, cancel_event, stream_state),
        ).start()

    return [iterate_queue(q) for q in out_queues]


def process_batch_worker(batch: List[Tuple[int, SequenceRecord]], task: PipelineTask) -> List[RecordResult]:
    """
    Worker function that transforms one batch of records in a pool process.
    Returns: list of RecordResult, one per input record
    """
    try:
        return [process_record(index, record, task) for index, record in batch]
    except Exception as e:
        first = batch[0][0] if batch else -1
        logger.error(f"Error in worker processing batch starting at record {first}: {e}", exc_info=True)
        raise


def batch_generator(items: Iterable[Tuple[int, SequenceRecord]], batch_size: int):
    """
    Group indexed records into fixed-size batches for the process pool.
    Yields: list of (index, record)
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    batch = []
    batch_count = 0
    for item in items:
        batch.append(item)
        if len(batch) == batch_size:
            yield batch
            batch = []
            batch_count += 1
            if batch_count % 100 == 0:
                logger.debug(f"Queued {batch_count} batches...")
    if batch:
        yield batch
