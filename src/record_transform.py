import dataclasses
import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from numba import njit

from data_structures import RecordMetrics, RecordResult, ResultStatus, SequenceRecord
from quality_model import QualityDomainError, quality_sums

logger = logging.getLogger(__name__)

# Base classes used by the composition pass
GC_CLASS = 0
AT_CLASS = 1
N_CLASS = 2
AMBIGUOUS_CLASS = 3


def create_base_class_map() -> np.ndarray:
    """
    Lookup table from byte value to base class.
    GC: G/C, AT: A/T, N: N. Every other byte (IUPAC codes such as S/W, U, gaps)
    is ambiguous, so the ambiguous count is the count of non-ACGTN bases.
    Case-insensitive.
    """
    class_map = np.full(256, AMBIGUOUS_CLASS, dtype=np.uint8)
    for bases, base_class in (("GC", GC_CLASS), ("AT", AT_CLASS), ("N", N_CLASS)):
        for base in bases:
            class_map[ord(base)] = base_class
            class_map[ord(base.lower())] = base_class
    return class_map


BASE_CLASS_MAP = create_base_class_map()
BASE_CLASS_MAP.flags.writeable = False


@njit(nogil=True, cache=False)
def _count_base_classes(sequence, class_map):
    """
    Single pass over sequence bytes.

    WARNING: JIT-compiled with @njit. Only plain numpy arrays are supported.
    Returns: int64 array of [gc, at, n, ambiguous] counts
    """
    counts = np.zeros(4, dtype=np.int64)
    for i in range(sequence.shape[0]):
        counts[class_map[sequence[i]]] += 1
    return counts


def compute_metrics(record: SequenceRecord) -> RecordMetrics:
    """
    Compute length, base composition and quality means for one record.
    Raises QualityDomainError if any quality score is outside [0,200].
    """
    length = len(record.sequence)
    counts = _count_base_classes(
        np.ascontiguousarray(record.sequence, dtype=np.uint8), BASE_CLASS_MAP
    )
    gc_count, at_count, n_count, ambiguous_count = (int(c) for c in counts)

    metrics = RecordMetrics(
        length=length,
        gc_count=gc_count,
        at_count=at_count,
        ambiguous_count=ambiguous_count,
        n_count=n_count,
    )

    unambiguous = length - n_count - ambiguous_count
    if unambiguous > 0:
        metrics.gc_ratio = gc_count / unambiguous

    if record.quality is not None:
        metrics.has_quality = True
        metrics.quality_sum, metrics.error_prob_sum = quality_sums(record.quality)
        if length > 0:
            metrics.mean_quality = metrics.quality_sum / length
            metrics.mean_error_prob = metrics.error_prob_sum / length

    return metrics


def _unbounded(bound) -> bool:
    return bound is None or bound < 0


@dataclass(frozen=True)
class FilterConfig:
    """
    Inclusive filter bounds. None, or any negative value, means unbounded.
    Built once before the pipeline starts and shared read-only by all workers.
    """
    length_min: Optional[int] = None
    length_max: Optional[int] = None
    error_rate_min: Optional[float] = None
    error_rate_max: Optional[float] = None
    qual_min: Optional[float] = None
    qual_max: Optional[float] = None

    def __post_init__(self):
        pairs = (
            ("length_min", "length_max"),
            ("error_rate_min", "error_rate_max"),
            ("qual_min", "qual_max"),
        )
        for low_name, high_name in pairs:
            for name in (low_name, high_name):
                if _unbounded(getattr(self, name)):
                    object.__setattr__(self, name, None)
            low, high = getattr(self, low_name), getattr(self, high_name)
            if low is not None and high is not None and low > high:
                raise ValueError(f"{low_name} ({low}) is greater than {high_name} ({high})")


GREP_FIELDS = ("header", "seq", "both")


@dataclass(frozen=True)
class GrepConfig:
    pattern: str
    field: str = "header"
    invert: bool = False
    ignore_case: bool = False
    # Qualified name: the "field" attribute above shadows dataclasses.field here
    regex: re.Pattern = dataclasses.field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.field not in GREP_FIELDS:
            raise ValueError(f"Unknown grep field: {self.field!r} (expected one of {GREP_FIELDS})")
        flags = re.IGNORECASE if self.ignore_case else 0
        object.__setattr__(self, "regex", re.compile(self.pattern.encode("utf-8"), flags))

    def matches(self, record: SequenceRecord) -> bool:
        matched = False
        if self.field in ("header", "both"):
            matched = self.regex.search(record.raw_header) is not None
        if not matched and self.field in ("seq", "both"):
            matched = self.regex.search(record.sequence_bytes()) is not None
        return matched != self.invert


def passes_filters(metrics: RecordMetrics, config: FilterConfig) -> bool:
    """
    Keep decision for one record. Length bounds always apply; quality bounds
    are vacuously true without quality data or for zero-length records.
    """
    if config.length_min is not None and metrics.length < config.length_min:
        return False
    if config.length_max is not None and metrics.length > config.length_max:
        return False

    if not metrics.has_quality or metrics.length == 0:
        return True

    if config.error_rate_min is not None and metrics.mean_error_prob < config.error_rate_min:
        return False
    if config.error_rate_max is not None and metrics.mean_error_prob > config.error_rate_max:
        return False
    if config.qual_min is not None and metrics.mean_quality < config.qual_min:
        return False
    if config.qual_max is not None and metrics.mean_quality > config.qual_max:
        return False
    return True


def evaluate_record(record: SequenceRecord, config: FilterConfig) -> Tuple[RecordMetrics, bool]:
    metrics = compute_metrics(record)
    return metrics, passes_filters(metrics, config)


MODES = ("info", "filter", "grep")


@dataclass(frozen=True)
class PipelineTask:
    mode: str = "info"
    filter_config: FilterConfig = field(default_factory=FilterConfig)
    grep_config: Optional[GrepConfig] = None

    def __post_init__(self):
        if self.mode not in MODES:
            raise ValueError(f"Invalid mode: {self.mode}")
        if self.mode == "grep" and self.grep_config is None:
            raise ValueError("grep mode requires a GrepConfig")

    @property
    def forwards_records(self) -> bool:
        return self.mode in ("filter", "grep")


def process_record(index: int, record: SequenceRecord, task: PipelineTask) -> RecordResult:
    """
    Run the transform for one record and wrap the outcome in a tagged result.
    Quality domain errors become FAILED results instead of escaping the worker.
    """
    try:
        if task.mode == "grep":
            matched = task.grep_config.matches(record)
            metrics = None
        else:
            metrics, matched = evaluate_record(record, task.filter_config)
    except QualityDomainError as e:
        logger.error(f"Error processing record {record.name}: {e}")
        return RecordResult(
            index=index, name=record.name, status=ResultStatus.FAILED, error=str(e)
        )

    if task.mode == "info":
        return RecordResult(
            index=index, name=record.name, status=ResultStatus.SUMMARIZED, metrics=metrics
        )
    if matched:
        logger.debug(f"PASSED FILTER   Acc: {record.name}\tLength: {len(record)}")
        return RecordResult(
            index=index, name=record.name, status=ResultStatus.KEPT,
            metrics=metrics, record=record,
        )
    return RecordResult(
        index=index, name=record.name, status=ResultStatus.DROPPED, metrics=metrics
    )
