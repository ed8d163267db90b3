#! /usr/bin/env python
import argparse
import logging
from collections import defaultdict
from typing import List, Optional, Tuple

import orjson

from rnasecondary.common import (
    BasePair,
    ClassifiedBasePair,
    InvalidStructureError,
    LeontisWesthof,
    Molecule,
    Residue,
    Residue2D,
    ResidueAuth,
    ResidueCollection,
    ResidueLabel,
    Saenger,
    one_letter_name,
)
from rnasecondary.dotbracket import (
    BRACKETS,
    UNPAIRED,
    DotBracket,
    DotBracketFromResidues,
)
from rnasecondary.pseudoknots import (
    FINDERS,
    MixedIntegerProgramming,
    PseudoknotFinder,
    assign_orders,
)
from rnasecondary.secondary import BpSeq, Ct
from rnasecondary.util import handle_input_file, read_structure


def bpseq_to_ct(bpseq: BpSeq) -> Ct:
    return Ct.from_bpseq(bpseq)


def ct_to_bpseq(ct: Ct) -> BpSeq:
    return BpSeq.from_ct(ct)


def dot_bracket_to_bpseq(dot_bracket: DotBracket) -> BpSeq:
    return BpSeq.from_dotbracket(dot_bracket)


def dot_bracket_to_ct(dot_bracket: DotBracket) -> Ct:
    return Ct.from_dotbracket(dot_bracket)


def bpseq_to_dot_bracket(
    bpseq: BpSeq, finder: Optional[PseudoknotFinder] = None
) -> DotBracket:
    """Convert BPSEQ to dot-bracket, pseudoknots get higher bracket levels.

    Args:
        bpseq: Input structure.
        finder: Pseudoknot finder used to layer the pairs (default: MILP).

    Returns:
        Dot-bracket with '()' for nested pairs, '[]' for first order
        pseudoknots and so on.

    Raises:
        InvalidStructureError: If more bracket levels are needed than available.
    """
    finder = finder if finder is not None else MixedIntegerProgramming()
    orders = assign_orders(bpseq, finder)
    structure = [UNPAIRED for _ in range(bpseq.size)]

    for entry in bpseq.paired(only5to3=True):
        order = orders[entry.index_]
        if order >= len(BRACKETS):
            raise InvalidStructureError(
                f"Cannot represent pseudoknot of order {order} in dot-bracket, entry: {entry}",
                entry,
            )
        structure[entry.index_ - 1] = BRACKETS[order][0]
        structure[entry.pair - 1] = BRACKETS[order][1]

    return DotBracket(bpseq.sequence, "".join(structure))


def ct_to_dot_bracket(ct: Ct, finder: Optional[PseudoknotFinder] = None) -> DotBracket:
    return bpseq_to_dot_bracket(ct.to_bpseq(), finder)


def select_base_pairs(
    residues: ResidueCollection,
    base_pairs: List[ClassifiedBasePair],
    include_non_canonical: bool = False,
) -> List[ClassifiedBasePair]:
    """Choose pairs to represent, so that each residue is paired at most once.

    Self-pairs and pairs of residues outside of the collection are dropped.
    Of pairs joining the same residues, the first canonical one is kept (or
    the first one, if none is canonical). Then, while some residue takes part in more than one pair,
    the conflicting pair with the lowest priority (non-canonical after
    canonical) is removed.
    """
    selected = {}
    for base_pair in base_pairs:
        if not include_non_canonical and not base_pair.is_canonical:
            continue
        i = residues.index_of(base_pair.nt1)
        j = residues.index_of(base_pair.nt2)
        if i is None or j is None or i == j:
            continue
        key = (i, j) if i < j else (j, i)
        if key not in selected or (
            base_pair.is_canonical and not selected[key].is_canonical
        ):
            selected[key] = base_pair

    pairs = list(selected.items())

    while True:
        matches = defaultdict(list)

        for pair in pairs:
            (i, j), _ = pair
            matches[i].append(pair)
            matches[j].append(pair)

        for conflicting in matches.values():
            if len(conflicting) > 1:
                conflicting = sorted(
                    conflicting, key=lambda pair: not pair[1].is_canonical
                )
                logging.debug(
                    f"Removing conflicting base pair {conflicting[-1][1].nt1.full_name} - {conflicting[-1][1].nt2.full_name}"
                )
                pairs.remove(conflicting[-1])
                break
        else:
            break

    return [base_pair for _, base_pair in sorted(pairs, key=lambda pair: pair[0])]


def residues_to_bpseq(
    residues: ResidueCollection, base_pairs: List[ClassifiedBasePair]
) -> BpSeq:
    return BpSeq.from_residues(residues, base_pairs)


def residues_to_ct(
    residues: ResidueCollection,
    base_pairs: List[ClassifiedBasePair],
    molecule: Molecule = Molecule.RNA,
) -> Ct:
    """Convert residues and pairs of one molecule type to a multi-strand CT."""
    filtered = residues.filtered(molecule)
    bpseq = residues_to_bpseq(filtered, base_pairs)
    return Ct.from_bpseq_and_residues(bpseq, filtered, molecule)


def residues_to_dot_bracket(
    residues: ResidueCollection,
    base_pairs: List[ClassifiedBasePair],
    finder: Optional[PseudoknotFinder] = None,
    include_non_canonical: bool = False,
) -> DotBracketFromResidues:
    """Convert residues and classified base pairs to a dot-bracket.

    Args:
        residues: Ordered residue collection (missing residues flagged).
        base_pairs: Classified base pairs, possibly in conflict.
        finder: Pseudoknot finder used to assign bracket levels.
        include_non_canonical: Whether non-canonical pairs get brackets too.

    Returns:
        Dot-bracket whose ``base_pairs`` are copies of the input pairs,
        marked as represented when realized in the structure.
    """
    selected = select_base_pairs(residues, base_pairs, include_non_canonical)
    bpseq = residues_to_bpseq(residues, selected)
    dot_bracket = bpseq_to_dot_bracket(bpseq, finder)
    return DotBracketFromResidues(
        dot_bracket.sequence, dot_bracket.structure, residues, list(base_pairs)
    )


def dot_bracket_to_base_pairs(
    dot_bracket: DotBracketFromResidues,
) -> List[ClassifiedBasePair]:
    """List classified base pairs realized in the bracket structure.

    Pairs known from ``dot_bracket.base_pairs`` are reused, the remaining
    ones are created with canonicity taken from the paired symbols.
    """
    known = {}
    for base_pair in dot_bracket.base_pairs:
        i = dot_bracket.residues.index_of(base_pair.nt1)
        j = dot_bracket.residues.index_of(base_pair.nt2)
        if base_pair.is_represented and i is not None and j is not None:
            known[(i, j) if i < j else (j, i)] = base_pair

    result = []
    for i, j in dot_bracket.pairs:
        base_pair = known.get((i, j))
        if base_pair is None:
            base_pair = ClassifiedBasePair(
                dot_bracket.residue_of(i),
                dot_bracket.residue_of(j),
                not dot_bracket.symbol(i).is_non_canonical,
                is_represented=True,
            )
        result.append(base_pair)
    return result


def _parse_residue(data: dict) -> Residue:
    label, auth = data.get("label"), data.get("auth")
    return Residue(
        ResidueLabel(label["chain"], label["number"], label["name"])
        if label is not None
        else None,
        ResidueAuth(auth["chain"], auth["number"], auth.get("icode"), auth["name"])
        if auth is not None
        else None,
    )


def _parse_residue_2d(data: dict) -> Residue2D:
    residue = _parse_residue(data)
    return Residue2D(
        residue.label,
        residue.auth,
        data.get("one_letter_name") or one_letter_name(residue),
        data.get("is_missing", False),
    )


def _parse_base_pair(data: dict, residues: ResidueCollection) -> ClassifiedBasePair:
    nt1, nt2 = (
        residues.find_residue(nt.label, nt.auth) or nt
        for nt in (_parse_residue(data["nt1"]), _parse_residue(data["nt2"]))
    )

    if "is_canonical" in data:
        return ClassifiedBasePair(nt1, nt2, data["is_canonical"], data.get("description"))

    saenger = data.get("saenger")
    return ClassifiedBasePair.from_base_pair(
        BasePair(
            nt1,
            nt2,
            LeontisWesthof(data["lw"]),
            Saenger(saenger) if saenger is not None else None,
        )
    )


def read_residues_json(
    text: str,
) -> Tuple[ResidueCollection, List[ClassifiedBasePair]]:
    """Parse residues and base pairs from JSON.

    The expected layout is ``{"residues": [...], "base_pairs": [...]}``,
    where residues have ``label`` and/or ``auth`` objects plus optional
    ``one_letter_name`` and ``is_missing``, and base pairs have ``nt1``,
    ``nt2`` and either ``lw`` (with optional ``saenger``) or an explicit
    ``is_canonical`` (with optional ``description``). Residues of base pairs
    are resolved to the residues of the collection when possible.

    Raises:
        InvalidStructureError: If the JSON does not follow this layout.
    """
    try:
        data = orjson.loads(text)
        residues = ResidueCollection(
            [_parse_residue_2d(residue) for residue in data["residues"]]
        )
        base_pairs = [
            _parse_base_pair(base_pair, residues)
            for base_pair in data.get("base_pairs", [])
        ]
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidStructureError(f"Invalid residues JSON: {e}") from e
    return residues, base_pairs


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "path", help="path to BPSEQ, CT, dot-bracket or residues JSON file"
    )
    parser.add_argument(
        "--input-format",
        "-f",
        choices=["bpseq", "ct", "dbn"],
        help="format of the input file (default: guess from extension)",
    )
    parser.add_argument(
        "--output-format",
        "-o",
        choices=["bpseq", "ct", "dbn"],
        default="dbn",
        help="format of the output (default=dbn)",
    )
    parser.add_argument(
        "--method",
        "-m",
        choices=list(FINDERS.keys()),
        default="milp",
        help="pseudoknot finding method used for dot-bracket output (default=milp)",
    )
    parser.add_argument(
        "--print-comments",
        "-c",
        action="store_true",
        help="(optional) if set, entry comments are printed in BPSEQ and CT output",
    )
    parser.add_argument(
        "--residues",
        "-r",
        action="store_true",
        help="(optional) if set, the input is a JSON with residues and base pairs",
    )
    parser.add_argument(
        "--include-non-canonical",
        "-n",
        action="store_true",
        help="(optional) if set, non-canonical pairs from residues JSON are represented too",
    )
    parser.add_argument(
        "--strands",
        "-s",
        action="store_true",
        help="(optional) if set, dot-bracket is printed as combined strands",
    )
    parser.add_argument(
        "--graphviz",
        "-g",
        help="(optional) path to a file where DOT source of the strand graph is written",
    )
    args = parser.parse_args()

    finder = FINDERS[args.method]()

    if args.residues:
        residues, base_pairs = read_residues_json(handle_input_file(args.path))
        selected = select_base_pairs(residues, base_pairs, args.include_non_canonical)
        if args.output_format == "bpseq":
            structure = residues_to_bpseq(residues, selected)
        elif args.output_format == "ct":
            structure = residues_to_ct(residues, selected)
        else:
            structure = residues_to_dot_bracket(
                residues, base_pairs, finder, args.include_non_canonical
            )
    else:
        structure = read_structure(args.path, args.input_format)
        if args.output_format == "bpseq":
            structure = (
                structure if isinstance(structure, BpSeq) else structure.to_bpseq()
            )
        elif args.output_format == "ct":
            structure = structure if isinstance(structure, Ct) else structure.to_ct()
        elif not isinstance(structure, DotBracket):
            structure = bpseq_to_dot_bracket(
                structure if isinstance(structure, BpSeq) else structure.to_bpseq(),
                finder,
            )

    if isinstance(structure, DotBracket):
        if args.strands:
            print("\n".join(str(strand) for strand in structure.combine_strands()))
        else:
            print(structure)
        if args.graphviz:
            with open(args.graphviz, "w") as f:
                f.write(structure.strand_graph.source)
    else:
        print(structure.to_string(args.print_comments), end="")


if __name__ == "__main__":
    main()
