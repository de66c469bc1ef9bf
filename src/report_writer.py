from typing import List, Optional

from data_structures import RecordMetrics, SummaryReport

SEPARATOR = "-" * 20
LINE_WIDTH = 39
UNDEFINED = "NA"

PER_RECORD_COLUMNS = ("accession", "length", "gc-content", "mean quality", "mean P(error)")


def _format_value(value, precision: Optional[int] = None) -> str:
    if value is None:
        return UNDEFINED
    if precision is None:
        return str(value)
    return f"{value:.{precision}f}"


def _line(label: str, value, precision: Optional[int] = None) -> str:
    text = _format_value(value, precision)
    return f"{label}: {text:>{max(LINE_WIDTH - len(label) - 2, len(text))}}"


def _length_value(value):
    # Median of an even count can fall between two lengths
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def format_summary(report: SummaryReport) -> str:
    """Render the summary as aligned key/value lines."""
    lines: List[str] = ["", "SUMMARY", SEPARATOR]
    lines.append(_line("Total Seqs (#)", report.total_records))
    lines.append(_line("Total Length (bp)", report.total_bases))
    lines.append(_line("Overall GC Content (%)", report.gc_percent, 2))
    lines.append(_line("GC Content excl. ambiguous (%)", report.gc_percent_unambiguous, 2))
    lines.append(_line("N bases (#)", report.n_count))
    lines.append(_line("Non-ATGCN bases (#)", report.ambiguous_count))
    lines.append(_line("Shortest (bp)", report.shortest))
    lines.append(_line("Longest (bp)", report.longest))
    lines.append(_line("Mean length (bp)", report.mean_length, 2))
    median = _length_value(report.median_length)
    lines.append(_line("Median length (bp)", median, 1 if isinstance(median, float) else None))
    for p, value in sorted(report.nxx.items()):
        lines.append(_line(f"N{p} (bp)", value))

    if report.has_quality:
        lines.extend(["", "PER-SEQ", SEPARATOR])
        lines.append(_line("Mean Phred quality score", report.mean_quality_per_seq, 2))
        lines.append(_line("Mean error rate", report.mean_error_prob_per_seq, 4))
        lines.extend(["", "PER-BASE", SEPARATOR])
        lines.append(_line("Mean Phred quality score", report.mean_quality_per_base, 2))
        lines.append(_line("Mean error rate", report.mean_error_prob_per_base, 4))
    return "\n".join(lines) + "\n"


def format_record_line(name: str, metrics: RecordMetrics) -> str:
    """Tab-separated per-record line: name, length, gc-percent[, mean Q, mean P(error)]"""
    fields = [name, str(metrics.length), f"{metrics.gc_percent:.2f}"]
    if metrics.has_quality:
        fields.append(f"{metrics.mean_quality:.2f}")
        fields.append(f"{metrics.mean_error_prob:.4f}")
    return "\t".join(fields)


def format_record_header(with_quality: bool) -> str:
    columns = PER_RECORD_COLUMNS if with_quality else PER_RECORD_COLUMNS[:3]
    return "\t".join(columns)
