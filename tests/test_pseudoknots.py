import sys

import orjson
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from rnasecondary.pseudoknots import (
    AllPermutations,
    FirstComeFirstServed,
    MixedIntegerProgramming,
    Region,
    assign_orders,
    conflict_graph,
    crossing_pairs,
    find_pseudoknots,
    find_regions,
    main,
)
from rnasecondary.secondary import BpSeq, Entry

HAIRPIN = "1 G 4\n2 C 3\n3 G 2\n4 C 1\n"

# pairs (1, 8) and (2, 9) cross each other
KISSING = "1 G 8\n2 G 9\n3 A 0\n4 A 0\n5 A 0\n6 A 0\n7 A 0\n8 C 1\n9 C 2\n"


def bpseq_from_pairs(size, pairs):
    partners = {}
    for i, j in pairs:
        partners[i] = j
        partners[j] = i
    return BpSeq([Entry(i, "N", partners.get(i, 0)) for i in range(1, size + 1)])


@st.composite
def bpseqs(draw, max_size=16):
    size = draw(st.integers(min_value=0, max_value=max_size))
    indices = draw(st.permutations(list(range(1, size + 1))))
    count = draw(st.integers(min_value=0, max_value=size // 2))
    pairs = [(indices[2 * k], indices[2 * k + 1]) for k in range(count)]
    return bpseq_from_pairs(size, pairs)


def residual_pairs(bpseq, pseudoknots):
    return [
        (entry.index_, entry.pair)
        for entry in bpseq.paired(only5to3=True)
        if entry.index_ not in pseudoknots.pairs
    ]


def test_find_regions():
    # two stems: (1-2, 9-10) and (4-5, 12-13) crossing each other
    bpseq = bpseq_from_pairs(13, [(1, 10), (2, 9), (4, 13), (5, 12)])

    regions = find_regions(bpseq)
    assert regions == [Region(1, 10, 2), Region(4, 13, 2)]
    assert regions[0].pairs == [(1, 10), (2, 9)]
    assert regions[0].conflicts(regions[1])
    assert conflict_graph(regions) == {0: {1}, 1: {0}}


def test_crossing_pairs():
    assert crossing_pairs([(1, 8), (2, 9), (3, 4)]) == [((1, 8), (2, 9))]
    assert crossing_pairs([(1, 8), (2, 7)]) == []


@pytest.mark.parametrize(
    "finder", [FirstComeFirstServed(), MixedIntegerProgramming(), AllPermutations()]
)
def test_nested_structure_has_no_pseudoknots(finder):
    bpseq = BpSeq.from_string(HAIRPIN)

    result = finder.find_pseudoknots(bpseq)
    assert len(result) == 1
    assert result[0] == bpseq.without_pairs()
    assert list(result[0].paired()) == []


def test_default_finder_on_nested_structure():
    result = find_pseudoknots(BpSeq.from_string(HAIRPIN))
    assert [list(bpseq.paired()) for bpseq in result] == [[]]


def test_fcfs_keeps_first_pair():
    bpseq = BpSeq.from_string(KISSING)

    (pseudoknots,) = FirstComeFirstServed().find_pseudoknots(bpseq)
    assert pseudoknots.pairs == {2: 9, 9: 2}
    assert pseudoknots.sequence == bpseq.sequence
    assert residual_pairs(bpseq, pseudoknots) == [(1, 8)]


def test_milp_prefers_longer_stem():
    # stem (1-3, 10-12) of length 3 crosses a single pair (5, 14)
    bpseq = bpseq_from_pairs(14, [(1, 12), (2, 11), (3, 10), (5, 14)])

    (pseudoknots,) = MixedIntegerProgramming().find_pseudoknots(bpseq)
    assert pseudoknots.pairs == {5: 14, 14: 5}


def test_all_permutations_finds_alternatives():
    bpseq = BpSeq.from_string(KISSING)

    result = AllPermutations().find_pseudoknots(bpseq)
    assert [bpseq.pairs for bpseq in result] == [{1: 8, 8: 1}, {2: 9, 9: 2}]


def test_all_permutations_large_component(caplog):
    # four mutually crossing pairs
    bpseq = bpseq_from_pairs(8, [(1, 5), (2, 6), (3, 7), (4, 8)])

    result = AllPermutations(max_component_size=2).find_pseudoknots(bpseq)
    assert len(result) == 1
    assert "too large" in caplog.text


def test_assign_orders():
    bpseq = bpseq_from_pairs(6, [(1, 4), (2, 5), (3, 6)])

    orders = assign_orders(bpseq, FirstComeFirstServed())
    assert orders == {1: 0, 4: 0, 2: 1, 5: 1, 3: 2, 6: 2}


@given(bpseqs())
def test_fcfs_leaves_nested_residual(bpseq):
    for pseudoknots in FirstComeFirstServed().find_pseudoknots(bpseq):
        assert crossing_pairs(residual_pairs(bpseq, pseudoknots)) == []


@given(bpseqs(max_size=10))
@settings(max_examples=30, deadline=None)
def test_all_permutations_leave_nested_residual(bpseq):
    result = AllPermutations().find_pseudoknots(bpseq)
    assert len(result) >= 1
    assert len(set(result)) == len(result)
    for pseudoknots in result:
        assert set(pseudoknots.pairs.items()) <= set(bpseq.pairs.items())
        assert crossing_pairs(residual_pairs(bpseq, pseudoknots)) == []


@given(bpseqs(max_size=12))
@settings(max_examples=15, deadline=None)
def test_milp_leaves_nested_residual(bpseq):
    (pseudoknots,) = MixedIntegerProgramming().find_pseudoknots(bpseq)
    assert crossing_pairs(residual_pairs(bpseq, pseudoknots)) == []


def test_cli_json(tmp_path, monkeypatch, capsys):
    path = tmp_path / "kissing.bpseq"
    path.write_text(KISSING)
    monkeypatch.setattr(
        sys, "argv", ["pseudoknot-finder", "-m", "fcfs", "-j", str(path)]
    )

    main()

    assert orjson.loads(capsys.readouterr().out) == [[[2, 9]]]


def test_cli_bpseq_from_dot_bracket(tmp_path, monkeypatch, capsys):
    path = tmp_path / "kissing.dbn"
    path.write_text(">strand_A\nGGAAAAACC\n([.....)]\n")
    monkeypatch.setattr(
        sys, "argv", ["pseudoknot-finder", "--method", "fcfs", str(path)]
    )

    main()

    lines = capsys.readouterr().out.splitlines()
    assert lines[1] == "2 G 9"
    assert lines[0] == "1 G 0"
