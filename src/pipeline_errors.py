class PipelineError(Exception):
    """Base class for errors that abort a pipeline run."""


class SourceDecodeError(PipelineError):
    """Input could not be decoded as FASTA/FASTQ."""

    def __init__(self, message, line_number=None):
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class UnknownFormatError(PipelineError):
    pass


class RecordProcessingError(PipelineError):
    """A single record failed in a worker; no summary is produced."""

    def __init__(self, record_name, reason, index=None):
        super().__init__(f"record '{record_name}': {reason}")
        self.record_name = record_name
        self.reason = reason
        self.index = index


class PipelineCancelled(PipelineError):
    pass
