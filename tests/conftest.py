import numpy as np
import pytest

from data_structures import make_record

BASES = "ACGTN"


def random_records(count, seed=42, with_quality=True, max_length=300):
    rng = np.random.default_rng(seed)
    records = []
    for i in range(count):
        length = int(rng.integers(0, max_length))
        seq = "".join(rng.choice(list(BASES), size=length, p=[0.3, 0.2, 0.2, 0.28, 0.02]))
        qual = None
        if with_quality:
            qual = "".join(chr(33 + int(q)) for q in rng.integers(2, 42, size=length))
        records.append(make_record(f"read{i} sample=test", seq, qual))
    return records


@pytest.fixture
def fastq_records():
    return random_records(250, seed=7)


@pytest.fixture
def fasta_records():
    return random_records(120, seed=11, with_quality=False)


@pytest.fixture
def fastq_file(tmp_path):
    path = tmp_path / "reads.fastq"
    path.write_bytes(
        b"@r1 first read\nACGTACGTGG\n+\nIIIIIIIIII\n"
        b"@r2\nNNNNACGT\n+\n!!!!IIII\n"
        b"@r3 third\nGGGCCCAAATTT\n+\n555555555555\n"
    )
    return path


@pytest.fixture
def fasta_file(tmp_path):
    path = tmp_path / "contigs.fa"
    path.write_bytes(
        b">c1 long contig\nACGTACGTAC\nGTACGTACGT\n"
        b">c2\nGGGGCC\n"
        b"\n"
        b">c3 short\nAT\n"
    )
    return path
