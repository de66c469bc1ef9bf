import logging
import queue
import threading
from typing import Iterable, Iterator, List

from worker_pool import DEFAULT_QUEUE_SIZE, END_OF_STREAM, iterate_queue

logger = logging.getLogger(__name__)


def merge_streams(streams: List[Iterable], maxsize: int = DEFAULT_QUEUE_SIZE) -> Iterator:
    """
    Fan-in: copy every element of every input stream into one merged stream.

    One forwarder thread per input stream. A closer thread joins all forwarders
    and only then closes the merged stream, so the close happens exactly once and
    after the last element. Interleaving across streams is unspecified.
    """
    merged = queue.Queue(maxsize=maxsize)
    errors = []

    def forward(stream_id, stream):
        count = 0
        try:
            for item in stream:
                merged.put(item)
                count += 1
        except Exception as e:
            logger.error(f"Error forwarding stream {stream_id}: {e}", exc_info=True)
            errors.append(e)
        logger.debug(f"Stream {stream_id} closed after {count:,} items")

    forwarders = [
        threading.Thread(target=forward, args=(i, s), name=f"seqpipe-merge-{i}", daemon=True)
        for i, s in enumerate(streams)
    ]

    def close_when_done():
        for t in forwarders:
            t.join()
        merged.put(END_OF_STREAM)

    for t in forwarders:
        t.start()
    threading.Thread(target=close_when_done, name="seqpipe-merge-closer", daemon=True).start()

    yield from iterate_queue(merged)
    if errors:
        raise errors[0]
