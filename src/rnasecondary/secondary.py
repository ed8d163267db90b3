import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, Iterable, List, Tuple

from rnasecondary.common import (
    ClassifiedBasePair,
    InvalidStructureError,
    Molecule,
    ResidueCollection,
)


@dataclass(frozen=True)
class Entry(Sequence):
    """Single BPSEQ entry (index, base, pairing partner)."""

    index_: int
    sequence: str
    pair: int
    comment: str = field(default="", compare=False)

    def __getitem__(self, item):
        """Support tuple-like access to (index, sequence, pair)."""
        if item == 0:
            return self.index_
        elif item == 1:
            return self.sequence
        elif item == 2:
            return self.pair
        raise IndexError()

    def __lt__(self, other):
        """Order entries by index."""
        return self.index_ < other.index_

    def __len__(self) -> int:
        return 3

    def __str__(self):
        """Format entry in classic BPSEQ style: 'i base j'."""
        return f"{self.index_} {self.sequence} {self.pair}"

    def to_string(self, print_comments: bool = False) -> str:
        if print_comments and self.comment.strip():
            return f"#{self.comment}\n{self}"
        return str(self)


def _strip_comment(line: str) -> Tuple[str, str]:
    hash_ = line.find("#")
    if hash_ == -1:
        return line.strip(), ""
    return line[:hash_].strip(), line[hash_ + 1 :].strip()


def _validate_pairs(entries: Iterable, kind: str):
    """Check numbering and pairing symmetry shared by BPSEQ and CT tables."""
    pairs = {}

    for entry in entries:
        if entry.index_ == entry.pair:
            raise InvalidStructureError(
                f"Invalid line in {kind} data, a residue cannot be paired with itself! Line: {entry}",
                entry,
            )
        pairs[entry.index_] = entry.pair

    previous = 0

    for entry in entries:
        if entry.index_ - previous != 1:
            raise InvalidStructureError(
                f"Inconsistent numbering in {kind} format: previous={previous}, current={entry.index_}",
                entry,
            )
        previous = entry.index_

        pair = entry.pair
        if pair != 0:
            if pair not in pairs:
                raise InvalidStructureError(
                    f"Inconsistency in {kind} format: ({entry.index_} -> {pair})",
                    entry,
                )
            if pairs[pair] != entry.index_:
                raise InvalidStructureError(
                    f"Inconsistency in {kind} format: ({entry.index_} -> {pair}) and ({pair} -> {pairs[pair]})",
                    entry,
                )


@dataclass
class BpSeq:
    """Sequence and base-pairing information in BPSEQ format.

    Entries are kept sorted by index. Pairing is validated at construction:
    numbering must be contiguous from 1 and every pair must be symmetric.
    """

    entries: List[Entry]

    @staticmethod
    def from_string(bpseq_str: str):
        """Parse BPSEQ-formatted text into a BpSeq object.

        A comment on its own line is attached to the following entry, an
        inline comment to the entry on the same line.

        Args:
            bpseq_str: Text containing BPSEQ lines.

        Returns:
            Parsed BPSEQ representation.

        Raises:
            InvalidStructureError: If a line is malformed or pairing is invalid.
        """
        entries = []
        pending_comment = ""

        for line in bpseq_str.splitlines():
            content, comment = _strip_comment(line)
            if len(content) == 0:
                if comment:
                    pending_comment = comment
                continue

            fields = content.split()
            if len(fields) != 3 or len(fields[1]) != 1:
                raise InvalidStructureError(
                    f"Line does not conform to BPSEQ format: {line}", line
                )
            try:
                index_, pair = int(fields[0]), int(fields[2])
            except ValueError as e:
                raise InvalidStructureError(
                    f"Line does not conform to BPSEQ format: {line}", line
                ) from e

            entries.append(Entry(index_, fields[1], pair, comment or pending_comment))
            pending_comment = ""

        return BpSeq(entries)

    @staticmethod
    def from_file(bpseq_path: str):
        """Read BPSEQ data from a file path."""
        with open(bpseq_path) as f:
            return BpSeq.from_string(f.read())

    @staticmethod
    def from_ct(ct: "Ct"):
        """Drop neighbor and original numbering columns of a CT table."""
        entries = [
            Entry(entry.index_, entry.sequence, entry.pair, entry.comment)
            for entry in ct.entries
        ]
        return BpSeq.__derive(entries, "CT")

    @staticmethod
    def from_dotbracket(dot_bracket):
        """Convert dot-bracket symbols to BPSEQ entries.

        Args:
            dot_bracket: Anything exposing ``symbols`` with 0-based ``index``,
                ``pair`` (partner index or None) and ``sequence``.

        Returns:
            BPSEQ representation with 1-based indices.
        """
        entries = [
            Entry(
                symbol.index + 1,
                symbol.sequence,
                symbol.pair + 1 if symbol.pair is not None else 0,
            )
            for symbol in dot_bracket.symbols
        ]
        return BpSeq.__derive(entries, "dot-bracket")

    @staticmethod
    def from_residues(
        residues: ResidueCollection, base_pairs: List[ClassifiedBasePair]
    ):
        """Build BPSEQ from ordered residues and classified base pairs.

        Residues not covered by any pair are unpaired. Entries of
        non-canonical pairs carry the pair description as a comment.

        Args:
            residues: Ordered residue collection.
            base_pairs: Pairs to represent, each residue at most once.

        Returns:
            BPSEQ representation with one entry per residue.
        """
        entries: Dict[int, Entry] = {
            i + 1: Entry(i + 1, residue.one_letter_name, 0)
            for i, residue in enumerate(residues)
        }

        for base_pair in base_pairs:
            i = residues.index_of(base_pair.nt1)
            j = residues.index_of(base_pair.nt2)
            if i is None or j is None:
                logging.warning(
                    f"Base pair {base_pair.nt1.full_name} - {base_pair.nt2.full_name} refers to residues outside of the collection"
                )
                continue
            comment = "" if base_pair.is_canonical else base_pair.description or ""
            entries[i + 1] = Entry(i + 1, entries[i + 1].sequence, j + 1, comment)
            entries[j + 1] = Entry(j + 1, entries[j + 1].sequence, i + 1, comment)

        return BpSeq.__derive(list(entries.values()), "residues")

    @staticmethod
    def __derive(entries: List[Entry], source: str):
        try:
            return BpSeq(entries)
        except InvalidStructureError as e:
            raise InvalidStructureError(
                f"Invalid BPSEQ derived from {source}: {e}", e.entry
            ) from e

    def __post_init__(self):
        self.entries = sorted(self.entries)
        _validate_pairs(self.entries, "BPSEQ")
        self.pairs = {}
        for i, _, j in self.entries:
            if j != 0:
                self.pairs[i] = j
                self.pairs[j] = i

    def __str__(self):
        return self.to_string()

    def to_string(self, print_comments: bool = False) -> str:
        """Format BPSEQ entries as text, one line per entry.

        Args:
            print_comments: Whether to render entry comments on dedicated lines.
        """
        return "".join(
            f"{entry.to_string(print_comments)}\n" for entry in self.entries
        )

    def __eq__(self, other):
        """Compare two BpSeq objects as sets of entries."""
        if not isinstance(other, BpSeq):
            return NotImplemented
        return set(self.entries) == set(other.entries)

    def __hash__(self) -> int:
        return hash(frozenset(self.entries))

    @property
    def size(self) -> int:
        return len(self.entries)

    @cached_property
    def sequence(self) -> str:
        """Return the nucleotide sequence as a string."""
        return "".join(entry.sequence for entry in self.entries)

    def paired(self, only5to3: bool = False):
        """Iterate over paired entries.

        Args:
            only5to3: If True, keep only pairs where index < partner.
        """
        result = filter(lambda entry: entry.pair != 0, self.entries)
        if only5to3:
            result = filter(lambda entry: entry.index_ < entry.pair, result)
        return result

    def without_pairs(self) -> "BpSeq":
        """Return a copy with every partner column zeroed."""
        return self.with_pairs_only(set())

    def with_pairs_only(self, indices: Iterable[int]) -> "BpSeq":
        """Return a copy keeping only pairs which involve one of the indices."""
        keep = set(indices)
        keep.update(self.pairs[i] for i in list(keep) if i in self.pairs)
        return BpSeq(
            [
                Entry(
                    entry.index_,
                    entry.sequence,
                    entry.pair if entry.index_ in keep else 0,
                    entry.comment,
                )
                for entry in self.entries
            ]
        )

    def to_ct(self) -> "Ct":
        return Ct.from_bpseq(self)


@dataclass(frozen=True)
class CtEntry:
    """Single CT entry with neighbor links and original numbering."""

    index_: int
    sequence: str
    before: int
    after: int
    pair: int
    original: int
    comment: str = field(default="", compare=False)

    def __lt__(self, other):
        return self.index_ < other.index_

    def __str__(self):
        return f"{self.index_} {self.sequence} {self.before} {self.after} {self.pair} {self.original}"

    def to_string(self, print_comments: bool = True) -> str:
        if print_comments and self.comment.strip():
            return f"{self} # {self.comment}"
        return str(self)


@dataclass
class Ct:
    """Connectivity table: BPSEQ extended with strand links and numbering.

    Besides the BPSEQ invariants, a strand must start with a zero ``before``
    exactly where the previous strand ended with a zero ``after``. A non-zero
    ``after`` in the last entry is silently replaced by zero.
    """

    entries: List[CtEntry]

    def __post_init__(self):
        self.entries = sorted(self.entries)
        self.__validate()

    def __validate(self):
        logging.debug("CT to be validated:\n%s", self)
        _validate_pairs(self.entries, "CT")
        size = len(self.entries)

        for entry in self.entries:
            if entry.before < 0 or entry.before >= size:
                raise InvalidStructureError(
                    f"Inconsistency in CT format. Third column has invalid value in entry: {entry}",
                    entry,
                )
            if entry.after == 1 or entry.after < 0 or entry.after > size + 1:
                raise InvalidStructureError(
                    f"Inconsistency in CT format. Fourth column has invalid value in entry: {entry}",
                    entry,
                )

        # a strand starts (before == 0) exactly after the previous one ended (after == 0)
        expect_new_strand = True

        for entry in self.entries:
            if (entry.before != 0) == expect_new_strand:
                raise InvalidStructureError(
                    f"Inconsistency in CT format. The field 'before' does not match strand boundary in entry: {entry}",
                    entry,
                )
            expect_new_strand = entry.after == 0

        if self.entries and self.entries[-1].after != 0:
            last = self.entries[-1]
            logging.debug(f"Fixing 'after' column of the last CT entry: {last}")
            self.entries[-1] = CtEntry(
                last.index_,
                last.sequence,
                last.before,
                0,
                last.pair,
                last.original,
                last.comment,
            )

    @staticmethod
    def from_string(ct_str: str):
        """Parse CT-formatted text.

        The first non-empty line holds the number of residues, every next one
        six columns: index, base, before, after, pair, original number.

        Raises:
            InvalidStructureError: If the header or any line is malformed.
        """
        entries = []
        count = None

        for line in ct_str.splitlines():
            content, comment = _strip_comment(line)
            if len(content) == 0:
                continue
            fields = content.split()

            if count is None:
                try:
                    count = int(fields[0])
                except ValueError as e:
                    raise InvalidStructureError(
                        f"Invalid CT format. Failed to parse line count: {line}",
                        line,
                    ) from e
                if count < 0:
                    raise InvalidStructureError(
                        f"Invalid CT format. Line count < 0 detected: {line}", line
                    )
                continue

            if len(fields) != 6:
                raise InvalidStructureError(
                    f"Invalid CT format. Six columns not found in line: {line}", line
                )
            try:
                index_, before, after, pair, original = map(
                    int, (fields[0], *fields[2:])
                )
            except ValueError as e:
                raise InvalidStructureError(
                    f"Invalid CT format. Failed to parse column values: {line}", line
                ) from e

            entries.append(
                CtEntry(index_, fields[1][0], before, after, pair, original, comment)
            )

        if count is not None and count != len(entries):
            logging.warning(
                f"CT header declares {count} residues, but {len(entries)} entries were found"
            )
        return Ct(entries)

    @staticmethod
    def from_file(ct_path: str):
        with open(ct_path) as f:
            return Ct.from_string(f.read())

    @staticmethod
    def from_bpseq(bpseq: BpSeq):
        """Convert BPSEQ to a single-strand CT."""
        size = bpseq.size
        entries = [
            CtEntry(
                entry.index_,
                entry.sequence,
                entry.index_ - 1,
                (entry.index_ + 1) % (size + 1),
                entry.pair,
                entry.index_,
                entry.comment,
            )
            for entry in bpseq.entries
        ]
        return Ct.__derive(entries, "BPSEQ")

    @staticmethod
    def from_bpseq_and_residues(
        bpseq: BpSeq, residues: ResidueCollection, molecule: Molecule = Molecule.RNA
    ):
        """Convert BPSEQ to CT with strands following physical chains.

        Args:
            bpseq: BPSEQ built from the residues of the selected molecule type.
            residues: Residue collection, filtered to ``molecule`` here.
            molecule: Molecule type to keep.

        Returns:
            CT where ``before``/``after`` restart at each chain and
            ``original`` holds residue numbers.
        """
        filtered = residues.filtered(molecule)
        if len(filtered) != bpseq.size:
            raise InvalidStructureError(
                f"Invalid CT derived from BPSEQ and residues: {bpseq.size} entries vs {len(filtered)} {molecule.value} residues"
            )

        entries = []
        chain_residues = [
            (position, len(chain))
            for _, chain in filtered.chains
            for position in range(len(chain))
        ]

        for entry, residue, (before, length) in zip(
            bpseq.entries, filtered, chain_residues
        ):
            entries.append(
                CtEntry(
                    entry.index_,
                    entry.sequence,
                    before,
                    (before + 2) % (length + 1),
                    entry.pair,
                    residue.number,
                    entry.comment,
                )
            )
        return Ct.__derive(entries, "BPSEQ and residues")

    @staticmethod
    def from_dotbracket(dot_bracket):
        """Convert dot-bracket to CT with one strand per dot-bracket strand."""
        entries = []

        for strand in dot_bracket.strands:
            for i, symbol in enumerate(strand.symbols):
                entries.append(
                    CtEntry(
                        symbol.index + 1,
                        symbol.sequence,
                        i,
                        0 if i == strand.length - 1 else i + 2,
                        symbol.pair + 1 if symbol.pair is not None else 0,
                        dot_bracket.ct_original_column(symbol.index),
                    )
                )

        return Ct.__derive(entries, "dot-bracket")

    @staticmethod
    def __derive(entries: List[CtEntry], source: str):
        try:
            return Ct(entries)
        except InvalidStructureError as e:
            raise InvalidStructureError(
                f"Invalid CT derived from {source}: {e}", e.entry
            ) from e

    @property
    def strand_count(self) -> int:
        return sum(1 for entry in self.entries if entry.after == 0)

    @cached_property
    def sequence(self) -> str:
        return "".join(entry.sequence for entry in self.entries)

    def __eq__(self, other):
        if not isinstance(other, Ct):
            return NotImplemented
        return set(self.entries) == set(other.entries)

    def __hash__(self) -> int:
        return hash(frozenset(self.entries))

    def __str__(self):
        return self.to_string()

    def to_string(self, print_comments: bool = True) -> str:
        """Format CT as text with a header line holding the entry count."""
        lines = [str(len(self.entries))]
        lines.extend(entry.to_string(print_comments) for entry in self.entries)
        return "\n".join(lines) + "\n"

    def to_bpseq(self) -> BpSeq:
        return BpSeq.from_ct(self)
