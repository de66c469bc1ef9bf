import argparse
import cProfile
import logging
import pstats
import sys
import threading
from io import StringIO

from fastx_parser import FASTA_FORMAT, FASTQ_FORMAT, guess_format, read_records
from fastx_writer import FastxWriter
from length_stats import DEFAULT_PERCENTILES
from pipeline_errors import PipelineError
from record_transform import GREP_FIELDS, FilterConfig, GrepConfig, PipelineTask
from report_writer import format_record_header, format_record_line, format_summary
from seq_pipeline import BACKENDS, PipelineOptions, run_pipeline
from worker_pool import DEFAULT_QUEUE_SIZE, default_worker_count

__version__ = "1.0.0"

logger = logging.getLogger("seqpipe")


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )
    logging.getLogger().setLevel(logging.DEBUG if verbose else logging.INFO)


def _input_format(args) -> str:
    if args.format is not None:
        return args.format
    if args.input_path is None or args.input_path == "-":
        raise PipelineError("No format given for STDIN input; use --format fasta|fastq")
    return guess_format(args.input_path)


def _open_output(path):
    if path is None or path == "-":
        return sys.stdout.buffer, False
    return open(path, "wb"), True


def _pipeline_options(args, ordered=False) -> PipelineOptions:
    return PipelineOptions(
        num_workers=args.workers,
        backend=args.backend,
        queue_size=args.queue_size,
        batch_size=args.batch_size,
        ordered=ordered,
        percentiles=tuple(args.percentiles),
    )


def _records(args, fmt):
    if args.input_path is None:
        logger.info("No input sequence file given. Reading from STDIN.")
    return read_records(args.input_path, fmt, phred_offset=args.phred_off)


def run_info(args, cancel_event: threading.Event) -> int:
    fmt = _input_format(args)
    summary_only = args.summary == 1
    options = _pipeline_options(args, ordered=args.ordered == 1)

    outfile, should_close = _open_output(args.output)
    try:
        on_metrics = None
        if not summary_only:
            if args.print_header == 1:
                outfile.write((format_record_header(fmt == FASTQ_FORMAT) + "\n").encode("utf-8"))

            def on_metrics(name, metrics):
                outfile.write((format_record_line(name, metrics) + "\n").encode("utf-8"))

        result = run_pipeline(
            _records(args, fmt), PipelineTask(mode="info"), options,
            on_metrics=on_metrics, cancel_event=cancel_event,
        )
        summary_text = format_summary(result.report)
        if summary_only:
            outfile.write(summary_text.encode("utf-8"))
        else:
            outfile.flush()
            sys.stderr.write(summary_text)
    finally:
        outfile.flush()
        if should_close:
            outfile.close()
    return 0


def _run_forwarding(args, task: PipelineTask, cancel_event: threading.Event) -> int:
    fmt = _input_format(args)
    options = _pipeline_options(args, ordered=args.ordered == 1)

    outfile, should_close = _open_output(args.output)
    writer = FastxWriter(outfile, fmt, line_width=args.line_width)
    try:
        result = run_pipeline(
            _records(args, fmt), task, options, sink=writer, cancel_event=cancel_event
        )
    finally:
        writer.flush()
        if should_close:
            outfile.close()
    logger.info(f"Kept {result.records_out:,} of {result.records_in:,} sequences")
    return 0


def run_filter(args, cancel_event: threading.Event) -> int:
    try:
        config = FilterConfig(
            length_min=args.length_min,
            length_max=args.length_max,
            error_rate_min=args.error_rate_avg_min,
            error_rate_max=args.error_rate_avg_max,
            qual_min=args.qual_avg_min,
            qual_max=args.qual_avg_max,
        )
    except ValueError as e:
        raise PipelineError(f"Invalid filter bounds: {e}") from e
    return _run_forwarding(args, PipelineTask(mode="filter", filter_config=config), cancel_event)


def run_grep(args, cancel_event: threading.Event) -> int:
    try:
        config = GrepConfig(
            pattern=args.pattern,
            field=args.field,
            invert=args.invert_match == 1,
            ignore_case=args.ignore_case == 1,
        )
    except Exception as e:
        raise PipelineError(f"Invalid pattern {args.pattern!r}: {e}") from e
    return _run_forwarding(args, PipelineTask(mode="grep", grep_config=config), cancel_event)


def run_version(args, cancel_event: threading.Event) -> int:
    print(f"seqpipe version {__version__}")
    return 0


def _add_input_args(parser):
    parser.add_argument("input_path", metavar="FILE", nargs="?", default=None,
                        help="Path of .fasta or .fastq file (optionally .gz); STDIN if omitted")
    io_group = parser.add_argument_group("INPUT & OUTPUT")
    io_group.add_argument("--format", type=str, metavar="STR", default=None,
                          choices=[FASTA_FORMAT, FASTQ_FORMAT],
                          help="Input format, guessed from the file extension if not given. "
                               "Required for STDIN. Available options: {'fasta', 'fastq'} [null]")
    io_group.add_argument("--output", type=str, metavar="FILE", default=None,
                          help="Output file path [STDOUT]")
    io_group.add_argument("--phred_off", type=int, default=33, metavar="INT",
                          help="Phred quality offset [33]")

    perf_group = parser.add_argument_group("PERFORMANCE & PARALLELIZATION")
    perf_group.add_argument("--workers", type=int, default=default_worker_count(), metavar="INT",
                            help=f"Number of parallel workers [{default_worker_count()}]")
    perf_group.add_argument("--backend", type=str, default="thread", metavar="STR",
                            choices=list(BACKENDS),
                            help="Worker backend. Available options: {'thread', 'process'} [thread]")
    perf_group.add_argument("--queue_size", type=int, default=DEFAULT_QUEUE_SIZE, metavar="INT",
                            help=f"Capacity of the bounded record queues [{DEFAULT_QUEUE_SIZE}]")
    perf_group.add_argument("--batch_size", type=int, default=1000, metavar="INT",
                            help="Records per batch for the process backend [1000]")
    perf_group.add_argument("--ordered", type=int, default=0, metavar="INT", choices=[0, 1],
                            help="Emit records in input order (0/1) [0]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="seqpipe",
        description="Parallel info, filtering and matching for FASTA/FASTQ sequences.",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--verbose", type=int, metavar="INT", default=0, choices=[0, 1],
                        help="Enable verbose logging (0/1) [0]")
    parser.add_argument("--profile", type=int, metavar="INT", default=0, choices=[0, 1],
                        help="Enable cProfile profiling (0/1) [0]")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # info
    info_parser = subparsers.add_parser(
        "info", help="Show basic sequence info.",
        formatter_class=argparse.RawTextHelpFormatter,
        description="Print name, length, GC content, mean quality and mean P(error) per sequence,\n"
                    "followed by a summary over all sequences.",
    )
    _add_input_args(info_parser)
    info_group = info_parser.add_argument_group("INFO")
    info_group.add_argument("--summary", type=int, default=0, metavar="INT", choices=[0, 1],
                            help="Only output summary info for all sequences (0/1) [0]")
    info_group.add_argument("--print_header", type=int, default=0, metavar="INT", choices=[0, 1],
                            help="Include column header in per-sequence output (0/1) [0]")
    info_group.add_argument("--percentiles", type=int, nargs="+", default=list(DEFAULT_PERCENTILES),
                            metavar="INT", help="Nxx percentiles to report [20 50 80]")
    info_parser.set_defaults(func=run_info)

    # filter
    filter_parser = subparsers.add_parser(
        "filter", help="Filter sequences from (multi-)sequence files.",
        formatter_class=argparse.RawTextHelpFormatter,
        description="Filter input sequences by combinations of simple criteria.\n"
                    "Negative bounds are treated as unbounded.",
    )
    _add_input_args(filter_parser)
    bounds_group = filter_parser.add_argument_group("FILTER BOUNDS")
    bounds_group.add_argument("--length_min", type=int, default=-1, metavar="INT",
                              help="Minimum sequence length to keep [0]")
    bounds_group.add_argument("--length_max", type=int, default=-1, metavar="INT",
                              help="Maximum sequence length to keep [inf]")
    bounds_group.add_argument("--error_rate_avg_min", type=float, default=-1, metavar="FLOAT",
                              help="Keep reads with a mean error rate equal to or greater than this [0.00]")
    bounds_group.add_argument("--error_rate_avg_max", type=float, default=-1, metavar="FLOAT",
                              help="Keep reads with a mean error rate equal to or less than this [1.00]")
    bounds_group.add_argument("--qual_avg_min", type=float, default=-1, metavar="FLOAT",
                              help="Keep reads with a mean phred base quality equal to or greater than this [0.00]")
    bounds_group.add_argument("--qual_avg_max", type=float, default=-1, metavar="FLOAT",
                              help="Keep reads with a mean phred base quality equal to or less than this [inf]")
    bounds_group.add_argument("--line_width", type=int, default=0, metavar="INT",
                              help="Wrap FASTA output at this width, 0 for no wrapping [0]")
    filter_parser.set_defaults(func=run_filter, percentiles=list(DEFAULT_PERCENTILES))

    # grep
    grep_parser = subparsers.add_parser(
        "grep", help="Match a regular expression in sequences from (multi-)sequence files.",
        formatter_class=argparse.RawTextHelpFormatter,
        description="Output only the sequences whose header and/or sequence match PATTERN\n"
                    "(Python regular expression syntax).",
    )
    grep_parser.add_argument("pattern", metavar="PATTERN", help="Regular expression to match")
    _add_input_args(grep_parser)
    grep_group = grep_parser.add_argument_group("MATCHING")
    grep_group.add_argument("--field", type=str, default="header", metavar="STR",
                            choices=list(GREP_FIELDS),
                            help="Which field to match against. Available options: "
                                 "{'header', 'seq', 'both'} [header]")
    grep_group.add_argument("--invert_match", type=int, default=0, metavar="INT", choices=[0, 1],
                            help="Select sequences that do not match (0/1) [0]")
    grep_group.add_argument("--ignore_case", type=int, default=0, metavar="INT", choices=[0, 1],
                            help="Case insensitive matching (0/1) [0]")
    grep_group.add_argument("--line_width", type=int, default=0, metavar="INT",
                            help="Wrap FASTA output at this width, 0 for no wrapping [0]")
    grep_parser.set_defaults(func=run_grep, percentiles=list(DEFAULT_PERCENTILES))

    # version
    version_parser = subparsers.add_parser("version", help="Print the version number.")
    version_parser.set_defaults(func=run_version)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose == 1)

    profiler = None
    if args.profile == 1:
        profiler = cProfile.Profile()
        profiler.enable()
        logger.info("Profiling enabled...")

    cancel_event = threading.Event()
    try:
        return args.func(args, cancel_event)
    except (PipelineError, ValueError, OSError) as e:
        logger.error(f"ERROR: {e}")
        return 1
    except KeyboardInterrupt:
        cancel_event.set()
        logger.error("Interrupted; no results were reported")
        return 130
    finally:
        if profiler is not None:
            profiler.disable()
            s = StringIO()
            ps = pstats.Stats(profiler, stream=s).sort_stats("cumulative")
            ps.print_stats(20)
            sys.stderr.write("\n" + "=" * 80 + "\nProfiling Results:\n" + "=" * 80 + "\n")
            sys.stderr.write(s.getvalue())


if __name__ == "__main__":
    sys.exit(main())
