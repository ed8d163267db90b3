import logging
import re
import string
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, List, Optional, Tuple

import graphviz
from ordered_set import OrderedSet

from rnasecondary.common import (
    ClassifiedBasePair,
    InvalidStructureError,
    Residue,
    Residue2D,
    ResidueCollection,
)
from rnasecondary.secondary import BpSeq, Ct

OPENING = "([{<" + string.ascii_uppercase
CLOSING = ")]}>" + string.ascii_lowercase
BRACKETS = ["".join(pair) for pair in zip(OPENING, CLOSING)]
UNPAIRED = "."
MISSING = "-"


@dataclass(frozen=True)
class DotBracketSymbol:
    """Single position of a dot-bracket, the partner is kept as its index."""

    sequence: str
    structure: str
    index: int
    pair: Optional[int] = None
    is_non_canonical: bool = False

    @property
    def is_missing(self) -> bool:
        return self.structure == MISSING

    @property
    def is_pairing(self) -> bool:
        return self.pair is not None

    @property
    def is_opening(self) -> bool:
        return self.structure in OPENING

    @property
    def is_closing(self) -> bool:
        return self.structure in CLOSING

    @property
    def order(self) -> Optional[int]:
        """Return bracket level (0 for round brackets) or None if not a bracket."""
        if self.is_opening:
            return OPENING.index(self.structure)
        if self.is_closing:
            return CLOSING.index(self.structure)
        return None

    def __str__(self):
        return f"{self.index} {self.sequence} {self.structure}"


def _match_brackets(structure: str) -> List[Tuple[int, int]]:
    pairs = []
    begins: Dict[str, List[int]] = {bracket: [] for bracket in OPENING}
    matches = {end: begin for begin, end in zip(OPENING, CLOSING)}

    for i, c in enumerate(structure):
        if c in OPENING:
            begins[c].append(i)
        elif c in CLOSING:
            if not begins[matches[c]]:
                raise InvalidStructureError(
                    f"Unmatched closing bracket '{c}' at position {i + 1}: {structure}",
                    structure,
                )
            pairs.append((begins[matches[c]].pop(), i))
        elif c not in (UNPAIRED, MISSING):
            raise InvalidStructureError(
                f"Invalid character '{c}' at position {i + 1} in dot-bracket: {structure}",
                structure,
            )

    for bracket, positions in begins.items():
        if positions:
            raise InvalidStructureError(
                f"Unmatched opening bracket '{bracket}' at position {positions[-1] + 1}: {structure}",
                structure,
            )

    return sorted(pairs)


@dataclass(frozen=True)
class TerminalMissing:
    """Run of missing symbols at the 5' or 3' end of a strand."""

    symbols: Tuple[DotBracketSymbol, ...]

    def __len__(self) -> int:
        return len(self.symbols)

    @property
    def indices(self) -> List[int]:
        return [symbol.index for symbol in self.symbols]


@dataclass(frozen=True, eq=False)
class Strand:
    """View over a contiguous range [begin, end) of a parent's symbols."""

    parent: object = field(repr=False)
    name: str
    begin: int
    end: int

    @property
    def symbols(self) -> List[DotBracketSymbol]:
        return self.parent.symbols[self.begin : self.end]

    @property
    def length(self) -> int:
        return self.end - self.begin

    @property
    def sequence(self) -> str:
        return "".join(symbol.sequence for symbol in self.symbols)

    @property
    def structure(self) -> str:
        return "".join(symbol.structure for symbol in self.symbols)

    def contains(self, index: int) -> bool:
        return self.begin <= index < self.end

    @cached_property
    def missing_begin(self) -> TerminalMissing:
        symbols = []
        for symbol in self.symbols:
            if not symbol.is_missing:
                break
            symbols.append(symbol)
        return TerminalMissing(tuple(symbols))

    @cached_property
    def missing_end(self) -> TerminalMissing:
        symbols = []
        # stop where the leading run ended, a fully missing strand belongs to missing_begin
        for symbol in reversed(self.symbols[len(self.missing_begin) :]):
            if not symbol.is_missing:
                break
            symbols.append(symbol)
        return TerminalMissing(tuple(reversed(symbols)))

    @cached_property
    def pseudoknot_order(self) -> int:
        return max(
            (symbol.order for symbol in self.symbols if symbol.is_pairing), default=0
        )

    def __str__(self):
        return f">strand_{self.name}\n{self.sequence}\n{self.structure}"


def _strand_name(i: int) -> str:
    return string.ascii_uppercase[i % len(string.ascii_uppercase)]


class CombinedStrand:
    """Renumbered copy of one or more strands, connected by base pairs.

    Symbol indices restart at 0 and follow the order of the given strands;
    pairing partners are translated to the new numbering.
    """

    def __init__(self, strands: List[Strand]):
        mapping: Dict[int, int] = {}
        originals: List[int] = []
        i = 0
        for strand in strands:
            for symbol in strand.symbols:
                mapping[symbol.index] = i
                originals.append(strand.parent.ct_original_column(symbol.index))
                i += 1

        self.symbols: List[DotBracketSymbol] = []
        self.strands: List[Strand] = []
        self.__originals = originals

        for strand in strands:
            begin = len(self.symbols)
            for symbol in strand.symbols:
                pair = mapping.get(symbol.pair) if symbol.is_pairing else None
                if symbol.is_pairing and pair is None:
                    logging.debug(
                        f"Partner of symbol {symbol} is outside of combined strands, treating as unpaired"
                    )
                self.symbols.append(
                    DotBracketSymbol(
                        symbol.sequence,
                        symbol.structure,
                        mapping[symbol.index],
                        pair,
                        symbol.is_non_canonical,
                    )
                )
            self.strands.append(Strand(self, strand.name, begin, len(self.symbols)))

    @property
    def length(self) -> int:
        return len(self.symbols)

    @property
    def sequence(self) -> str:
        return "".join(strand.sequence for strand in self.strands)

    @property
    def structure(self) -> str:
        return "".join(strand.structure for strand in self.strands)

    @property
    def pseudoknot_order(self) -> int:
        return max((strand.pseudoknot_order for strand in self.strands), default=0)

    @property
    def terminal_missing(self) -> List[TerminalMissing]:
        result = []
        for strand in self.strands:
            result.append(strand.missing_begin)
            result.append(strand.missing_end)
        return result

    @property
    def internal_missing(self) -> List[DotBracketSymbol]:
        """Return missing symbols which are not at either end of a strand."""
        terminal = set()
        for missing in self.terminal_missing:
            terminal.update(missing.indices)
        return [
            symbol
            for symbol in self.symbols
            if symbol.is_missing and symbol.index not in terminal
        ]

    @property
    def is_invalid(self) -> bool:
        """Check if the combined strand has no base pairs (only dots and minuses)."""
        return all(c in (UNPAIRED, MISSING) for c in self.structure)

    def ct_original_column(self, index: int) -> int:
        return self.__originals[index]

    def strand_containing(self, index: int) -> Strand:
        for strand in self.strands:
            if strand.contains(index):
                return strand
        raise IndexError(f"Failed to find strand containing symbol {index}")

    def index_of_symbol(self, symbol: DotBracketSymbol) -> int:
        return self.symbols.index(symbol)

    def to_bpseq(self) -> BpSeq:
        return BpSeq.from_dotbracket(self)

    def to_ct(self) -> Ct:
        return Ct.from_dotbracket(self)

    def __eq__(self, other):
        if not isinstance(other, CombinedStrand):
            return NotImplemented
        return (
            self.symbols == other.symbols
            and [strand.name for strand in self.strands]
            == [strand.name for strand in other.strands]
            and [strand.length for strand in self.strands]
            == [strand.length for strand in other.strands]
        )

    def __hash__(self):
        return hash((tuple(self.symbols), tuple(s.name for s in self.strands)))

    def __str__(self):
        names = "".join(strand.name for strand in self.strands)
        return f">strand_{names}\n{self.sequence}\n{self.structure}"

    def to_string(self, with_strands: bool = False) -> str:
        if with_strands:
            return "\n".join(str(strand) for strand in self.strands)
        return str(self)


@dataclass
class DotBracket:
    """Sequence and structure in dot-bracket notation."""

    sequence: str
    structure: str

    @staticmethod
    def from_file(path: str):
        """Read DotBracket from a file with 2–3 lines (optional '>' header)."""
        with open(path) as f:
            return DotBracket.from_text(f.read())

    @staticmethod
    def from_text(text: str):
        """Parse sequence and structure lines, optionally preceded by '>' header."""
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if len(lines) == 2:
            return DotBracket.from_string(lines[0], lines[1])
        if len(lines) == 3 and lines[0].startswith(">"):
            return DotBracket.from_string(lines[1], lines[2])
        raise InvalidStructureError(
            f"Failed to read DotBracket, expected 2 or 3 lines but found {len(lines)}",
            text,
        )

    @staticmethod
    def from_string(sequence: str, structure: str):
        """Create a DotBracket object from raw sequence and structure strings."""
        return DotBracket(sequence, structure)

    def __post_init__(self):
        """Validate the structure and link paired symbols."""
        if len(self.sequence) != len(self.structure):
            raise InvalidStructureError(
                f"Sequence and structure lengths differ, {len(self.sequence)} vs {len(self.structure)}",
                (self.sequence, self.structure),
            )

        self.pairs = _match_brackets(self.structure)
        partners = {}
        for i, j in self.pairs:
            partners[i] = j
            partners[j] = i

        self.symbols = [
            DotBracketSymbol(
                self.sequence[i],
                self.structure[i],
                i,
                partners.get(i, None),
                self.is_non_canonical_pair(i, partners.get(i, None)),
            )
            for i in range(len(self.sequence))
        ]

    def is_non_canonical_pair(self, i: int, j: Optional[int]) -> bool:
        return False

    def __str__(self):
        """Return sequence and structure as two lines of text."""
        return f"{self.sequence}\n{self.structure}"

    def to_string(self, with_strands: bool = False) -> str:
        if with_strands:
            return "\n".join(str(strand) for strand in self.strands)
        return str(self)

    def __eq__(self, other):
        """Compare dot-bracket objects by sequence and structure."""
        if not isinstance(other, DotBracket):
            return NotImplemented
        return self.sequence == other.sequence and self.structure == other.structure

    def __hash__(self) -> int:
        return hash((self.sequence, self.structure))

    def __len__(self) -> int:
        return len(self.symbols)

    def symbol(self, index: int) -> DotBracketSymbol:
        return self.symbols[index]

    @cached_property
    def strands(self) -> List[Strand]:
        return [Strand(self, _strand_name(0), 0, len(self.symbols))]

    @property
    def pseudoknot_order(self) -> int:
        return max((strand.pseudoknot_order for strand in self.strands), default=0)

    @property
    def non_canonical_links(self) -> List[Tuple[int, int]]:
        """Pairs of symbol indices, besides brackets, which connect strands."""
        return []

    def ct_original_column(self, index: int) -> int:
        return index + 1

    def strand_of(self, index: int) -> Strand:
        for strand in self.strands:
            if strand.contains(index):
                return strand
        raise IndexError(f"Failed to find strand containing symbol {index}")

    @cached_property
    def strand_adjacency(self) -> Dict[Strand, OrderedSet]:
        """Map each strand to the strands linked with it by a base pair."""
        graph = {strand: OrderedSet([strand]) for strand in self.strands}
        links = [(i, j) for i, j in self.pairs] + list(self.non_canonical_links)

        for i, j in links:
            strand_i, strand_j = self.strand_of(i), self.strand_of(j)
            if strand_i is not strand_j:
                graph[strand_i].add(strand_j)
                graph[strand_j].add(strand_i)

        return graph

    def combine_strands(self) -> List[CombinedStrand]:
        """Merge strands connected by base pairs into combined strands.

        Returns:
            One combined strand per connected component of the strand graph,
            components ordered by their first strand.
        """
        components = {
            strand: OrderedSet(neighbors)
            for strand, neighbors in self.strand_adjacency.items()
        }

        changed = True
        while changed:
            changed = False
            for strand in self.strands:
                component = components[strand]
                for other in list(component):
                    if other is strand:
                        continue
                    if not components[other].issuperset(component):
                        components[other].update(component)
                        changed = True
                    if not component.issuperset(components[other]):
                        component.update(components[other])
                        changed = True

        order = {strand: i for i, strand in enumerate(self.strands)}
        result, used = [], set()

        for strand in self.strands:
            if strand in used:
                continue
            members = sorted(components[strand], key=order.get)
            used.update(members)
            result.append(CombinedStrand(members))

        return result

    @cached_property
    def strand_graph(self) -> graphviz.Graph:
        """Graph of strands (nodes) and base-pair links between them (edges)."""
        dot = graphviz.Graph()
        names = {}

        for i, strand in enumerate(self.strands):
            names[strand] = f"S{i}"
            dot.node(names[strand], f"strand_{strand.name} ({strand.length} nt)")

        keys = list(self.strand_adjacency.keys())
        for i in range(len(keys)):
            for j in range(i + 1, len(keys)):
                if keys[j] in self.strand_adjacency[keys[i]]:
                    dot.edge(names[keys[i]], names[keys[j]])

        return dot

    def without_pseudoknots(self) -> "DotBracket":
        """Return a copy with pseudoknot brackets replaced by dots."""
        structure = re.sub(r"[\[\]\{\}\<\>A-Za-z]", UNPAIRED, self.structure)
        return DotBracket(self.sequence, structure)

    def to_bpseq(self) -> BpSeq:
        return BpSeq.from_dotbracket(self)

    def to_ct(self) -> Ct:
        return Ct.from_dotbracket(self)


def _pair_key(i: int, j: int) -> Tuple[int, int]:
    return (i, j) if i < j else (j, i)


@dataclass(eq=False)
class DotBracketFromResidues(DotBracket):
    """Dot-bracket backed by an ordered residue collection.

    Missing residues always render as '-', and brackets touching them are
    dropped. Strands follow the physical chains of the collection.
    Classified base pairs are kept as updated copies in ``base_pairs``, with
    ``is_represented`` set for pairs realized in the structure.
    """

    residues: ResidueCollection = field(default=None)
    base_pairs: List[ClassifiedBasePair] = field(default_factory=list)

    def __post_init__(self):
        if self.residues is None or len(self.residues) != len(self.sequence):
            raise InvalidStructureError(
                f"Residue collection does not match dot-bracket of length {len(self.sequence)}"
            )
        self.structure = self.__update_missing(self.structure)
        self.__pair_map = self.__map_base_pairs()
        super().__post_init__()
        self.base_pairs = self.__mark_represented()

    def __update_missing(self, structure: str) -> str:
        if len(structure) != len(self.residues):
            raise InvalidStructureError(
                f"Sequence and structure lengths differ, {len(self.sequence)} vs {len(structure)}",
                (self.sequence, structure),
            )
        missing = [residue.is_missing for residue in self.residues]
        result = list(structure)

        for i, j in _match_brackets(structure):
            if missing[i] or missing[j]:
                logging.warning(
                    f"Dropping base pair {self.residues[i].full_name} - {self.residues[j].full_name} which involves a missing residue"
                )
                result[i] = result[j] = UNPAIRED

        for i, is_missing in enumerate(missing):
            if is_missing:
                result[i] = MISSING
        return "".join(result)

    def __map_base_pairs(self) -> Dict[Tuple[int, int], ClassifiedBasePair]:
        result = {}
        for base_pair in self.base_pairs:
            i = self.residues.index_of(base_pair.nt1)
            j = self.residues.index_of(base_pair.nt2)
            if i is None or j is None:
                logging.warning(
                    f"Base pair {base_pair.nt1.full_name} - {base_pair.nt2.full_name} refers to residues outside of the collection"
                )
                continue
            key = _pair_key(i, j)
            # one pair per residue pair, canonical first
            if key not in result or (
                base_pair.is_canonical and not result[key].is_canonical
            ):
                result[key] = base_pair
        return result

    def __mark_represented(self) -> List[ClassifiedBasePair]:
        realized = set(self.pairs)
        result = []
        for base_pair in self.base_pairs:
            i = self.residues.index_of(base_pair.nt1)
            j = self.residues.index_of(base_pair.nt2)
            if i is not None and j is not None:
                key = _pair_key(i, j)
                if key in realized and self.__pair_map.get(key) is base_pair:
                    base_pair = base_pair.represented()
            result.append(base_pair)
        return result

    def is_non_canonical_pair(self, i: int, j: Optional[int]) -> bool:
        if j is None:
            return False
        base_pair = self.__pair_map.get(_pair_key(i, j))
        return base_pair is not None and not base_pair.is_canonical

    @cached_property
    def strands(self) -> List[Strand]:
        result = []
        begin = 0
        for chain, residues in self.residues.chains:
            end = begin + len(residues)
            result.append(Strand(self, chain, begin, end))
            begin = end
        return result

    @property
    def non_canonical_links(self) -> List[Tuple[int, int]]:
        return [
            pair
            for pair, base_pair in self.__pair_map.items()
            if not base_pair.is_canonical
        ]

    def residue_of(self, index: int) -> Residue2D:
        return self.residues[index]

    def symbol_of(self, residue: Residue) -> Optional[DotBracketSymbol]:
        i = self.residues.index_of(residue)
        return self.symbols[i] if i is not None else None

    def ct_original_column(self, index: int) -> int:
        return self.residues[index].number
