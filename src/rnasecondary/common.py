import logging
import os
import string
from dataclasses import dataclass, field, replace
from enum import Enum
from functools import cached_property, total_ordering
from typing import Dict, List, Optional, Tuple, Union

LOGLEVEL = os.environ.get("LOGLEVEL", "INFO").upper()
logging.basicConfig(level=LOGLEVEL)


class InvalidStructureError(ValueError):
    """Secondary structure data violate one of the format invariants.

    Attributes:
        entry: The offending line or entry (if known).
    """

    def __init__(self, message: str, entry=None):
        super().__init__(message)
        self.entry = entry


class Molecule(Enum):
    """Simple classification of molecule type."""

    DNA = "DNA"
    RNA = "RNA"
    Other = "Other"


@total_ordering
class LeontisWesthof(Enum):
    """Leontis–Westhof base pair geometry classification."""

    cWW = "cWW"
    cWH = "cWH"
    cWS = "cWS"
    cHW = "cHW"
    cHH = "cHH"
    cHS = "cHS"
    cSW = "cSW"
    cSH = "cSH"
    cSS = "cSS"
    tWW = "tWW"
    tWH = "tWH"
    tWS = "tWS"
    tHW = "tHW"
    tHH = "tHH"
    tHS = "tHS"
    tSW = "tSW"
    tSH = "tSH"
    tSS = "tSS"

    def __lt__(self, other):
        return tuple(self.value) < tuple(other.value)


class Saenger(Enum):
    """Saenger base pair classification."""

    I = "I"
    II = "II"
    III = "III"
    IV = "IV"
    V = "V"
    VI = "VI"
    VII = "VII"
    VIII = "VIII"
    IX = "IX"
    X = "X"
    XI = "XI"
    XII = "XII"
    XIII = "XIII"
    XIV = "XIV"
    XV = "XV"
    XVI = "XVI"
    XVII = "XVII"
    XVIII = "XVIII"
    XIX = "XIX"
    XX = "XX"
    XXI = "XXI"
    XXII = "XXII"
    XXIII = "XXIII"
    XXIV = "XXIV"
    XXV = "XXV"
    XXVI = "XXVI"
    XXVII = "XXVII"
    XXVIII = "XXVIII"

    @property
    def is_canonical(self) -> bool:
        """Return True for Watson–Crick (XIX, XX) and wobble (XXVIII) pairs."""
        return self in (Saenger.XIX, Saenger.XX, Saenger.XXVIII)


@dataclass(frozen=True, order=True)
class ResidueLabel:
    """Label-style residue identifier (label chain/number/name)."""

    chain: str
    number: int
    name: str


@dataclass(frozen=True, order=True)
class ResidueAuth:
    """Auth-style residue identifier (auth chain/number/icode/name)."""

    chain: str
    number: int
    icode: Optional[str]
    name: str


@dataclass(frozen=True)
@total_ordering
class Residue:
    """Residue identifier with label and/or auth coordinates."""

    label: Optional[ResidueLabel]
    auth: Optional[ResidueAuth]

    def __lt__(self, other):
        return (self.chain, self.number, self.icode or " ") < (
            other.chain,
            other.number,
            other.icode or " ",
        )

    @property
    def chain(self) -> Optional[str]:
        if self.auth is not None:
            return self.auth.chain
        if self.label is not None:
            return self.label.chain
        return None

    @property
    def number(self) -> Optional[int]:
        if self.auth is not None:
            return self.auth.number
        if self.label is not None:
            return self.label.number
        return None

    @property
    def icode(self) -> Optional[str]:
        """Return insertion code or ``None`` if not set or blank."""
        if self.auth is not None:
            return self.auth.icode if self.auth.icode not in (" ", "?") else None
        return None

    @property
    def name(self) -> Optional[str]:
        if self.auth is not None:
            return self.auth.name
        if self.label is not None:
            return self.label.name
        return None

    @property
    def molecule_type(self) -> Molecule:
        """Classify residue as RNA, DNA or Other based on its name."""
        if self.name is not None:
            if self.name.upper() in ("A", "C", "G", "U"):
                return Molecule.RNA
            if self.name.upper() in ("DA", "DC", "DG", "DT"):
                return Molecule.DNA
        return Molecule.Other

    @property
    def full_name(self) -> Optional[str]:
        """Return human-readable residue identifier (e.g. A.A/23^A)."""
        if self.auth is not None:
            chain, name, number = self.auth.chain, self.auth.name, self.auth.number
            icode = self.auth.icode
        elif self.label is not None:
            chain, name, number = self.label.chain, self.label.name, self.label.number
            icode = None
        else:
            return None

        builder = f"{name}" if chain.isspace() else f"{chain}.{name}"
        if len(name) > 0 and name[-1] in string.digits:
            builder += "/"
        builder += f"{number}"
        if icode and icode not in (" ", "?"):
            builder += f"^{icode}"
        return builder


@dataclass(frozen=True)
class Residue2D(Residue):
    """Residue of an ordered residue collection (one position of a sequence)."""

    one_letter_name: str
    is_missing: bool = False

    def __repr__(self):
        return f"{self.full_name}"


def _residue_keys(residue: Residue) -> List[Union[ResidueLabel, ResidueAuth]]:
    return [key for key in (residue.label, residue.auth) if key is not None]


@dataclass
class ResidueCollection:
    """Ordered residues of a model, grouped into physical chains."""

    residues: List[Residue2D]
    residue_map: Dict[Union[ResidueLabel, ResidueAuth], int] = field(
        init=False, repr=False
    )

    def __post_init__(self):
        self.residue_map = {}
        for i, residue in enumerate(self.residues):
            for key in _residue_keys(residue):
                self.residue_map[key] = i

    def __len__(self) -> int:
        return len(self.residues)

    def __iter__(self):
        return iter(self.residues)

    def __getitem__(self, item) -> Residue2D:
        return self.residues[item]

    def find_residue(
        self, label: Optional[ResidueLabel], auth: Optional[ResidueAuth]
    ) -> Optional[Residue2D]:
        i = self.__find_index(label, auth)
        return self.residues[i] if i is not None else None

    def index_of(self, residue: Residue) -> Optional[int]:
        """Return 0-based position of a residue (matched by label or auth)."""
        return self.__find_index(residue.label, residue.auth)

    def __find_index(
        self, label: Optional[ResidueLabel], auth: Optional[ResidueAuth]
    ) -> Optional[int]:
        if label is not None and label in self.residue_map:
            return self.residue_map[label]
        if auth is not None and auth in self.residue_map:
            return self.residue_map[auth]
        return None

    @cached_property
    def chains(self) -> List[Tuple[str, List[Residue2D]]]:
        """Split residues into consecutive runs sharing the same chain."""
        result: List[Tuple[str, List[Residue2D]]] = []
        for residue in self.residues:
            if not result or result[-1][0] != residue.chain:
                result.append((residue.chain, [residue]))
            else:
                result[-1][1].append(residue)
        return result

    @cached_property
    def sequence(self) -> str:
        return "".join(residue.one_letter_name for residue in self.residues)

    def filtered(self, molecule: Molecule) -> "ResidueCollection":
        """Return a new collection with residues of a single molecule type."""
        return ResidueCollection(
            [residue for residue in self.residues if residue.molecule_type == molecule]
        )


@dataclass(frozen=True, order=True)
class BasePair:
    """Base pair reported by an annotation tool."""

    nt1: Residue
    nt2: Residue
    lw: LeontisWesthof
    saenger: Optional[Saenger]


def one_letter_name(residue: Residue) -> str:
    if isinstance(residue, Residue2D):
        return residue.one_letter_name
    name = residue.name or "?"
    # DNA residues are named DA, DC, ...
    return name[-1].upper()


@dataclass(frozen=True)
class ClassifiedBasePair:
    """Base pair tagged as canonical or not, with an optional justification.

    The pair is unordered: two instances with swapped residues are equal.
    ``is_represented`` is set (on a copy, see ``represented``) once the pair
    is confirmed to be present in a derived bracket structure.
    """

    nt1: Residue
    nt2: Residue
    is_canonical: bool
    description: Optional[str] = None
    is_represented: bool = False

    @classmethod
    def from_base_pair(cls, base_pair: BasePair) -> "ClassifiedBasePair":
        """Classify an annotated base pair.

        Args:
            base_pair: Base pair with Leontis–Westhof and optional Saenger class.

        Returns:
            Canonical pair for Saenger XIX/XX/XXVIII or, without Saenger class,
            for cWW A-U, A-T, C-G and G-U; non-canonical otherwise.
        """
        if base_pair.saenger is not None:
            is_canonical = base_pair.saenger.is_canonical
            description = f"{base_pair.lw.value} {base_pair.saenger.value}"
        else:
            # modified residues often have lowercase one-letter names
            nts = "".join(
                sorted(
                    [
                        one_letter_name(base_pair.nt1).upper(),
                        one_letter_name(base_pair.nt2).upper(),
                    ]
                )
            )
            is_canonical = base_pair.lw == LeontisWesthof.cWW and nts in (
                "AU",
                "AT",
                "CG",
                "GU",
            )
            description = base_pair.lw.value
        return cls(base_pair.nt1, base_pair.nt2, is_canonical, description)

    @property
    def sorted_residues(self) -> Tuple[Residue, Residue]:
        if self.nt2 < self.nt1:
            return self.nt2, self.nt1
        return self.nt1, self.nt2

    def __eq__(self, other):
        if not isinstance(other, ClassifiedBasePair):
            return NotImplemented
        return (
            self.sorted_residues == other.sorted_residues
            and self.is_canonical == other.is_canonical
            and self.description == other.description
            and self.is_represented == other.is_represented
        )

    def __hash__(self):
        return hash(
            (
                self.sorted_residues,
                self.is_canonical,
                self.description,
                self.is_represented,
            )
        )

    def represented(self) -> "ClassifiedBasePair":
        """Return a copy marked as represented in a bracket structure."""
        return replace(self, is_represented=True)

