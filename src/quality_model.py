import numpy as np
from numba import njit

MIN_QUALITY = 0
MAX_QUALITY = 200

# Pre-compute P(e) = 10^(-Q/10) up to Q=200
ERROR_PROB_TABLE = np.power(10.0, -np.arange(MAX_QUALITY + 1, dtype=np.float64) / 10.0)
ERROR_PROB_TABLE.flags.writeable = False


class QualityDomainError(ValueError):
    def __init__(self, quality):
        super().__init__(
            f"Quality value {quality} out of bounds [{MIN_QUALITY},{MAX_QUALITY}]"
        )
        self.quality = quality

    def __reduce__(self):
        return (QualityDomainError, (self.quality,))


def error_probability(quality: int) -> float:
    """Error probability for a single Phred score; raises outside [0,200]."""
    if quality < MIN_QUALITY or quality > MAX_QUALITY:
        raise QualityDomainError(quality)
    return float(ERROR_PROB_TABLE[int(quality)])


@njit(nogil=True, cache=False)
def _sum_qualities(quals, table, max_quality):
    """
    Fused pass over a quality array.

    WARNING: JIT-compiled with @njit. Returns the index of the first score
    outside [0, max_quality] instead of raising, -1 when all are valid.
    """
    q_sum = 0
    p_sum = 0.0
    for i in range(quals.shape[0]):
        q = quals[i]
        if q < 0 or q > max_quality:
            return q_sum, p_sum, i
        q_sum += q
        p_sum += table[q]
    return q_sum, p_sum, -1


def quality_sums(quals: np.ndarray):
    """
    Sum quality scores and their error probabilities in one pass.
    Returns: (sum_of_scores, sum_of_error_probabilities)
    """
    if len(quals) == 0:
        return 0, 0.0
    q_sum, p_sum, bad_index = _sum_qualities(
        np.ascontiguousarray(quals, dtype=np.int64), ERROR_PROB_TABLE, MAX_QUALITY
    )
    if bad_index >= 0:
        raise QualityDomainError(int(quals[bad_index]))
    return int(q_sum), float(p_sum)


def decode_phred(raw_quality: bytes, phred_offset: int = 33) -> np.ndarray:
    """
    Map an ASCII quality string to integer Phred scores.
    No clamping: out-of-range scores are left for quality_sums to reject.
    """
    return np.frombuffer(raw_quality, dtype=np.uint8).astype(np.int16) - phred_offset
