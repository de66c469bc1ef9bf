import logging
from typing import BinaryIO

from data_structures import SequenceRecord
from fastx_parser import FASTA_FORMAT, FASTQ_FORMAT
from pipeline_errors import UnknownFormatError

logger = logging.getLogger(__name__)


class FastxWriter:
    """
    Record sink that serializes records back into their original format.
    Headers and quality strings are written exactly as they were read.
    """

    def __init__(self, handle: BinaryIO, fmt: str, line_width: int = 0):
        if fmt not in (FASTA_FORMAT, FASTQ_FORMAT):
            raise UnknownFormatError(f"Unknown sequence format: {fmt!r}")
        if line_width < 0:
            raise ValueError(f"line_width must not be negative, got {line_width}")
        self.handle = handle
        self.fmt = fmt
        self.line_width = line_width
        self.records_written = 0

    def __call__(self, record: SequenceRecord):
        self.write(record)

    def write(self, record: SequenceRecord):
        seq_data = record.sequence_bytes()
        if self.fmt == FASTQ_FORMAT:
            if record.quality is None:
                raise ValueError(f"Record {record.name} has no quality data to write as FASTQ")
            self.handle.write(b"@" + record.raw_header + b"\n")
            self.handle.write(seq_data + b"\n")
            self.handle.write(b"+\n")
            self.handle.write(record.raw_quality + b"\n")
        else:
            self.handle.write(b">" + record.raw_header + b"\n")
            if self.line_width > 0:
                for start in range(0, len(seq_data), self.line_width):
                    self.handle.write(seq_data[start:start + self.line_width] + b"\n")
            else:
                self.handle.write(seq_data + b"\n")
        self.records_written += 1

    def flush(self):
        self.handle.flush()
        logger.debug(f"Wrote {self.records_written:,} records")
