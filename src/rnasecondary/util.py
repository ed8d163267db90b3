import gzip
import os
from typing import Optional, Union

from rnasecondary.dotbracket import DotBracket
from rnasecondary.secondary import BpSeq, Ct

EXTENSIONS = {".bpseq": "bpseq", ".ct": "ct", ".dbn": "dbn", ".db": "dbn"}


def _extension(path: str) -> str:
    root, ext = os.path.splitext(path)
    if ext == ".gz":
        root, ext = os.path.splitext(root)
    return ext.lower()


def handle_input_file(path: str) -> str:
    """Read the whole text of a plain or gzip-compressed file."""
    if path.endswith(".gz"):
        with gzip.open(path, "rt") as f:
            return f.read()
    with open(path) as f:
        return f.read()


def guess_format(path: str) -> str:
    ext = _extension(path)
    if ext not in EXTENSIONS:
        raise ValueError(
            f"Cannot guess format of {path}, use one of the extensions: {', '.join(EXTENSIONS)}"
        )
    return EXTENSIONS[ext]


def read_structure(
    path: str, format: Optional[str] = None
) -> Union[BpSeq, Ct, DotBracket]:
    """Read secondary structure from a BPSEQ, CT or dot-bracket file.

    Args:
        path: Path to the file, optionally gzip-compressed (.gz suffix).
        format: One of 'bpseq', 'ct' or 'dbn' (default: guess from extension).

    Returns:
        Parsed structure of the corresponding type.
    """
    format = format or guess_format(path)
    text = handle_input_file(path)

    if format == "bpseq":
        return BpSeq.from_string(text)
    if format == "ct":
        return Ct.from_string(text)
    if format == "dbn":
        return DotBracket.from_text(text)
    raise ValueError(f"Unsupported format: {format}")


def read_bpseq(path: str, format: Optional[str] = None) -> BpSeq:
    """Read any supported structure file and convert it to BPSEQ."""
    structure = read_structure(path, format)
    if isinstance(structure, BpSeq):
        return structure
    return structure.to_bpseq()
