from hypothesis import given
from hypothesis import strategies as st

from rnasecondary.common import (
    BasePair,
    ClassifiedBasePair,
    LeontisWesthof,
    Molecule,
    Residue,
    Residue2D,
    ResidueAuth,
    ResidueCollection,
    ResidueLabel,
    Saenger,
)


def residue(chain, number, name, is_missing=False):
    return Residue2D(None, ResidueAuth(chain, number, None, name), name[-1], is_missing)


@given(st.from_type(ResidueLabel))
def test_api_compliance_residue_label(obj):
    assert obj.__dict__.keys() == {"chain", "number", "name"}


@given(st.from_type(ResidueAuth))
def test_api_compliance_residue_auth(obj):
    assert obj.__dict__.keys() == {"chain", "number", "icode", "name"}


@given(st.from_type(Residue))
def test_api_compliance_residue(obj):
    # explicitly use all properties to make sure they are not added to __dict__ as @cached_property
    obj.chain
    obj.number
    obj.icode
    obj.name
    obj.molecule_type
    obj.full_name
    assert obj.__dict__.keys() == {"label", "auth"}


@given(st.from_type(BasePair))
def test_api_compliance_base_pair(obj):
    if obj.saenger is not None:
        obj.saenger.is_canonical
    assert obj.__dict__.keys() == {"nt1", "nt2", "lw", "saenger"}


def test_saenger_canonical():
    canonical = {saenger for saenger in Saenger if saenger.is_canonical}
    assert canonical == {Saenger.XIX, Saenger.XX, Saenger.XXVIII}


def test_full_name():
    assert Residue(None, ResidueAuth("A", 23, "B", "G")).full_name == "A.G23^B"
    assert Residue(ResidueLabel("A", 5, "DA"), None).full_name == "A.DA5"
    assert Residue(None, ResidueAuth(" ", 1, None, "PSU")).full_name == "PSU1"


def test_molecule_type():
    assert residue("A", 1, "G").molecule_type == Molecule.RNA
    assert residue("A", 1, "DG").molecule_type == Molecule.DNA
    assert residue("A", 1, "HOH").molecule_type == Molecule.Other


def test_residue_collection_lookup():
    residues = ResidueCollection([residue("A", 1, "G"), residue("A", 2, "C")])

    assert residues.index_of(Residue(None, ResidueAuth("A", 2, None, "C"))) == 1
    assert residues.index_of(Residue(None, ResidueAuth("B", 2, None, "C"))) is None
    assert residues.find_residue(None, ResidueAuth("A", 1, None, "G")) == residues[0]
    assert residues.sequence == "GC"


def test_residue_collection_chains():
    residues = ResidueCollection(
        [
            residue("A", 1, "G"),
            residue("A", 2, "C"),
            residue("B", 1, "DA"),
            residue("B", 2, "G"),
        ]
    )

    assert [(chain, len(members)) for chain, members in residues.chains] == [
        ("A", 2),
        ("B", 2),
    ]
    assert residues.filtered(Molecule.RNA).sequence == "GCG"
    assert residues.filtered(Molecule.DNA).sequence == "A"


def test_classification_by_saenger():
    g, c = residue("A", 1, "G"), residue("A", 2, "C")

    canonical = ClassifiedBasePair.from_base_pair(
        BasePair(g, c, LeontisWesthof.cWW, Saenger.XIX)
    )
    assert canonical.is_canonical
    assert canonical.description == "cWW XIX"

    # Saenger class takes precedence over residue names
    sheared = ClassifiedBasePair.from_base_pair(
        BasePair(g, c, LeontisWesthof.cWW, Saenger.XI)
    )
    assert not sheared.is_canonical


def test_classification_without_saenger():
    g, u, a = residue("A", 1, "G"), residue("A", 2, "U"), residue("A", 3, "A")

    wobble = ClassifiedBasePair.from_base_pair(BasePair(g, u, LeontisWesthof.cWW, None))
    assert wobble.is_canonical
    assert wobble.description == "cWW"

    assert not ClassifiedBasePair.from_base_pair(
        BasePair(g, u, LeontisWesthof.tWW, None)
    ).is_canonical
    assert not ClassifiedBasePair.from_base_pair(
        BasePair(g, a, LeontisWesthof.cWW, None)
    ).is_canonical


def test_classification_of_modified_residue():
    omg = Residue2D(None, ResidueAuth("A", 1, None, "OMG"), "g", False)
    c = residue("A", 2, "C")

    assert ClassifiedBasePair.from_base_pair(
        BasePair(omg, c, LeontisWesthof.cWW, None)
    ).is_canonical


def test_classified_base_pair_is_unordered():
    g, c = residue("A", 1, "G"), residue("A", 2, "C")

    assert ClassifiedBasePair(g, c, True) == ClassifiedBasePair(c, g, True)
    assert hash(ClassifiedBasePair(g, c, True)) == hash(ClassifiedBasePair(c, g, True))
    assert ClassifiedBasePair(g, c, True) != ClassifiedBasePair(g, c, False)
    assert ClassifiedBasePair(c, g, True).sorted_residues == (g, c)


def test_represented_returns_copy():
    base_pair = ClassifiedBasePair(residue("A", 1, "G"), residue("A", 2, "C"), True)
    represented = base_pair.represented()

    assert represented.is_represented
    assert not base_pair.is_represented
    assert represented.nt1 == base_pair.nt1
