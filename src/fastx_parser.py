import gzip
import logging
import os
import sys
from typing import BinaryIO, Iterator, Optional

import numpy as np

from data_structures import SequenceRecord
from pipeline_errors import SourceDecodeError, UnknownFormatError
from quality_model import decode_phred

logger = logging.getLogger(__name__)

FASTA_FORMAT = "fasta"
FASTQ_FORMAT = "fastq"

FORMAT_EXTENSIONS = {
    ".fastq": FASTQ_FORMAT,
    ".fq": FASTQ_FORMAT,
    ".fasta": FASTA_FORMAT,
    ".fa": FASTA_FORMAT,
    ".fna": FASTA_FORMAT,
    ".faa": FASTA_FORMAT,
}


def guess_format(path: str) -> str:
    """Guess fasta/fastq from the file extension, ignoring a trailing .gz"""
    name = path.lower()
    if name.endswith(".gz"):
        name = name[:-3]
    ext = os.path.splitext(name)[1]
    if ext not in FORMAT_EXTENSIONS:
        raise UnknownFormatError(f"Unknown file format: {ext or path!r}")
    return FORMAT_EXTENSIONS[ext]


def open_input(path: Optional[str]) -> BinaryIO:
    if path is None or path == "-":
        return sys.stdin.buffer
    if path.lower().endswith(".gz"):
        return gzip.open(path, "rb")
    return open(path, "rb")


def _split_header(header: bytes):
    text = header.decode("utf-8", errors="replace")
    parts = text.split(maxsplit=1)
    if not parts:
        return "", ""
    return parts[0], parts[1].strip() if len(parts) > 1 else ""


def read_fasta(handle: BinaryIO) -> Iterator[SequenceRecord]:
    """
    Yield FASTA records lazily. Sequences may span multiple lines; blank lines
    are skipped.
    """
    header = None
    chunks = []
    line_number = 0

    def build(header_bytes, seq_chunks):
        name, description = _split_header(header_bytes)
        sequence = np.frombuffer(b"".join(seq_chunks), dtype=np.uint8).copy()
        return SequenceRecord(
            name=name, sequence=sequence, description=description, raw_header=header_bytes
        )

    for line in handle:
        line_number += 1
        line = line.rstrip(b"\r\n")
        if not line:
            continue
        if line.startswith(b">"):
            if header is not None:
                yield build(header, chunks)
            header = line[1:]
            chunks = []
        elif header is None:
            raise SourceDecodeError("sequence data before first '>' header", line_number)
        else:
            chunks.append(line.strip())

    if header is not None:
        yield build(header, chunks)


def read_fastq(handle: BinaryIO, phred_offset: int = 33) -> Iterator[SequenceRecord]:
    """
    Yield 4-line FASTQ records lazily.
    Raises SourceDecodeError on malformed or truncated records.
    """
    line_number = 0
    lines = iter(handle)

    def next_line(what):
        nonlocal line_number
        try:
            line = next(lines)
        except StopIteration:
            raise SourceDecodeError(f"truncated record: missing {what}", line_number + 1) from None
        line_number += 1
        return line.rstrip(b"\r\n")

    for header_line in lines:
        line_number += 1
        header_line = header_line.rstrip(b"\r\n")
        if not header_line:
            continue
        if not header_line.startswith(b"@"):
            raise SourceDecodeError("expected '@' at start of FASTQ header", line_number)

        seq_line = next_line("sequence")
        plus_line = next_line("'+' separator")
        if not plus_line.startswith(b"+"):
            raise SourceDecodeError("expected '+' separator line", line_number)
        qual_line = next_line("quality")
        if len(qual_line) != len(seq_line):
            raise SourceDecodeError(
                f"quality length {len(qual_line)} does not match sequence length {len(seq_line)}",
                line_number,
            )

        raw_header = header_line[1:]
        name, description = _split_header(raw_header)
        yield SequenceRecord(
            name=name,
            sequence=np.frombuffer(seq_line, dtype=np.uint8).copy(),
            quality=decode_phred(qual_line, phred_offset),
            description=description,
            raw_header=raw_header,
            raw_quality=qual_line,
        )


def read_records(path: Optional[str], fmt: Optional[str] = None,
                 phred_offset: int = 33) -> Iterator[SequenceRecord]:
    """
    Open path (None or '-' for stdin) and yield its records.
    The format is guessed from the extension when not given.
    """
    if fmt is None:
        if path is None or path == "-":
            raise UnknownFormatError("format must be given when reading from STDIN")
        fmt = guess_format(path)
    if fmt not in (FASTA_FORMAT, FASTQ_FORMAT):
        raise UnknownFormatError(f"Unknown sequence format: {fmt!r}")

    logger.debug(f"Reading {fmt} records from {path or 'STDIN'}")
    return _iter_records(open_input(path), fmt, phred_offset)


def _iter_records(handle: BinaryIO, fmt: str, phred_offset: int) -> Iterator[SequenceRecord]:
    try:
        if fmt == FASTQ_FORMAT:
            yield from read_fastq(handle, phred_offset)
        else:
            yield from read_fasta(handle)
    finally:
        if handle is not sys.stdin.buffer:
            handle.close()
