from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np

from quality_model import decode_phred


@dataclass
class SequenceRecord:
    name: str
    sequence: np.ndarray
    quality: Optional[np.ndarray] = None
    description: str = ""
    raw_header: bytes = b""
    raw_quality: bytes = b""

    def __len__(self):
        return len(self.sequence)

    def sequence_bytes(self) -> bytes:
        return self.sequence.tobytes()

    def __eq__(self, other):
        if not isinstance(other, SequenceRecord):
            return NotImplemented
        if self.name != other.name or self.description != other.description:
            return False
        if self.raw_header != other.raw_header or self.raw_quality != other.raw_quality:
            return False
        if not np.array_equal(self.sequence, other.sequence):
            return False
        if (self.quality is None) != (other.quality is None):
            return False
        return self.quality is None or np.array_equal(self.quality, other.quality)


def make_record(header: str, sequence: str, quality: Optional[str] = None,
                phred_offset: int = 33) -> SequenceRecord:
    """
    Build a record from plain strings (header without the '>'/'@' prefix).
    Handy for callers that already hold sequences in memory.
    """
    name, _, description = header.partition(" ")
    seq = np.frombuffer(sequence.encode("ascii"), dtype=np.uint8).copy()
    qual = None
    raw_quality = b""
    if quality is not None:
        raw_quality = quality.encode("ascii")
        qual = decode_phred(raw_quality, phred_offset)
    return SequenceRecord(
        name=name,
        sequence=seq,
        quality=qual,
        description=description,
        raw_header=header.encode("ascii"),
        raw_quality=raw_quality,
    )


@dataclass
class RecordMetrics:
    length: int
    gc_count: int
    at_count: int
    ambiguous_count: int
    n_count: int
    quality_sum: int = 0
    error_prob_sum: float = 0.0
    has_quality: bool = False
    mean_quality: float = float("nan")
    mean_error_prob: float = float("nan")
    gc_ratio: float = float("nan")

    @property
    def gc_percent(self) -> float:
        return self.gc_ratio * 100


class ResultStatus(Enum):
    KEPT = "kept"
    DROPPED = "dropped"
    SUMMARIZED = "summarized"
    FAILED = "failed"


@dataclass
class RecordResult:
    """
    Tagged output of one transform call. The original record only travels
    downstream when the status is KEPT.
    """
    index: int
    name: str
    status: ResultStatus
    metrics: Optional[RecordMetrics] = None
    record: Optional[SequenceRecord] = None
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status is ResultStatus.FAILED


@dataclass
class RunningSummary:
    total_records: int = 0
    total_bases: int = 0
    gc_count: int = 0
    at_count: int = 0
    n_count: int = 0
    ambiguous_count: int = 0
    quality_records: int = 0
    quality_bases: int = 0
    base_quality_sum: int = 0
    base_error_prob_sum: float = 0.0
    seq_mean_quality_sum: float = 0.0
    seq_mean_error_prob_sum: float = 0.0
    lengths: list = field(default_factory=list)

    def add(self, metrics: RecordMetrics):
        self.total_records += 1
        self.total_bases += metrics.length
        self.gc_count += metrics.gc_count
        self.at_count += metrics.at_count
        self.n_count += metrics.n_count
        self.ambiguous_count += metrics.ambiguous_count
        # Zero-length records have undefined means and do not count towards them
        if metrics.has_quality and metrics.length > 0:
            self.quality_records += 1
            self.quality_bases += metrics.length
            self.base_quality_sum += metrics.quality_sum
            self.base_error_prob_sum += metrics.error_prob_sum
            self.seq_mean_quality_sum += metrics.mean_quality
            self.seq_mean_error_prob_sum += metrics.mean_error_prob
        self.lengths.append(metrics.length)


@dataclass
class SummaryReport:
    total_records: int
    total_bases: int
    n_count: int
    ambiguous_count: int
    gc_percent: Optional[float]
    gc_percent_unambiguous: Optional[float]
    shortest: Optional[int]
    longest: Optional[int]
    mean_length: Optional[float]
    median_length: Optional[float]
    nxx: dict
    has_quality: bool = False
    mean_quality_per_seq: Optional[float] = None
    mean_error_prob_per_seq: Optional[float] = None
    mean_quality_per_base: Optional[float] = None
    mean_error_prob_per_base: Optional[float] = None
