#! /usr/bin/env python
import argparse
import itertools
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Set, Tuple

import orjson
import pulp

from rnasecondary.secondary import BpSeq, Entry
from rnasecondary.util import read_bpseq


@dataclass(frozen=True, order=True)
class Region:
    """Stem of stacked pairs (first, last), (first + 1, last - 1), ..."""

    first: int
    last: int
    length: int

    def conflicts(self, other: "Region") -> bool:
        """Check if two regions cross each other (form a pseudoknot)."""
        k, l = self.first, self.last
        m, n = other.first, other.last
        return (k < m < l < n) or (m < k < n < l)

    @property
    def pairs(self) -> List[Tuple[int, int]]:
        return [(self.first + t, self.last - t) for t in range(self.length)]


def crosses(p1: Tuple[int, int], p2: Tuple[int, int]) -> bool:
    i, j = sorted(p1)
    k, l = sorted(p2)
    return (i < k < j < l) or (k < i < l < j)


def crossing_pairs(
    pairs: Iterable[Tuple[int, int]],
) -> List[Tuple[Tuple[int, int], Tuple[int, int]]]:
    """List all unordered couples of pairs which cross each other."""
    return [
        (p1, p2) for p1, p2 in itertools.combinations(pairs, 2) if crosses(p1, p2)
    ]


def find_regions(bpseq: BpSeq) -> List[Region]:
    """Group pairs of a BPSEQ into stems of directly stacked pairs."""
    regions = []
    entries: List[Entry] = []

    for entry in bpseq.paired(only5to3=True):
        if entries:
            k, _, l = entries[-1]
            if entry.index_ == k + 1 and entry.pair == l - 1:
                entries.append(entry)
                continue
            regions.append(Region(entries[0].index_, entries[0].pair, len(entries)))
        entries = [entry]

    if entries:
        regions.append(Region(entries[0].index_, entries[0].pair, len(entries)))

    return regions


def conflict_graph(regions: List[Region]) -> Dict[int, Set[int]]:
    graph = defaultdict(set)
    for i, j in itertools.combinations(range(len(regions)), 2):
        if regions[i].conflicts(regions[j]):
            graph[i].add(j)
            graph[j].add(i)
    return graph


def fcfs_orders(regions: List[Region], order: Optional[List[int]] = None) -> List[int]:
    """Assign each region the lowest layer free of earlier crossing regions.

    Args:
        regions: Regions of a structure.
        order: Order in which regions are processed (default: 5' to 3').

    Returns:
        Layer (0 for nested) of every region.
    """
    order = order if order is not None else list(range(len(regions)))
    orders = [0 for _ in range(len(regions))]

    for i in range(1, len(order)):
        used = {
            orders[order[j]]
            for j in range(i)
            if regions[order[i]].conflicts(regions[order[j]])
        }
        orders[order[i]] = next(k for k in itertools.count() if k not in used)

    return orders


class PseudoknotFinder(ABC):
    """Finds pairs whose removal leaves a nested structure."""

    @abstractmethod
    def find_pseudoknots(self, bpseq: BpSeq) -> List[BpSeq]:
        """Find pairs in 'flat' BPSEQ information which are pseudoknots.

        Args:
            bpseq: An input BPSEQ structure with all pairs.

        Returns:
            A list of BPSEQ structures, each a full copy of the input with
            zeroed 'pair' columns for non-pseudoknotted entries. For a nested
            input the list holds a single BPSEQ without pairs.
        """

    @staticmethod
    def _to_bpseq(bpseq: BpSeq, regions: List[Region], orders: List[int]) -> BpSeq:
        indices = set()
        for region, order in zip(regions, orders):
            if order > 0:
                indices.update(i for i, _ in region.pairs)
        return bpseq.with_pairs_only(indices)


class FirstComeFirstServed(PseudoknotFinder):
    """Greedy layering of regions in 5'→3' order."""

    def find_pseudoknots(self, bpseq: BpSeq) -> List[BpSeq]:
        regions = find_regions(bpseq)
        return [self._to_bpseq(bpseq, regions, fcfs_orders(regions))]


class MixedIntegerProgramming(PseudoknotFinder):
    """Layering of regions solved as an integer program with PuLP.

    The nested layer is maximised (weighted by region length) while
    higher layers are penalised by their order. Falls back to FCFS if
    the problem cannot be solved.
    """

    def __init__(self, solver: Optional[pulp.LpSolver] = None):
        self.solver = solver

    @staticmethod
    def default_solver() -> Optional[pulp.LpSolver]:
        if pulp.HiGHS_CMD().available():
            solver = pulp.HiGHS_CMD()  # much faster than default
        else:
            solver = pulp.LpSolverDefault
        if solver is not None:
            solver.msg = False
        return solver

    def find_pseudoknots(self, bpseq: BpSeq) -> List[BpSeq]:
        regions = find_regions(bpseq)
        return [self._to_bpseq(bpseq, regions, self.orders(regions))]

    def orders(self, regions: List[Region]) -> List[int]:
        solver = self.solver if self.solver is not None else self.default_solver()

        # if PuLP solvers are not installed, use FCFS
        if solver is None:
            return fcfs_orders(regions)

        graph = conflict_graph(regions)

        # return all non-pseudoknotted if the graph is empty
        if not graph:
            return [0 for _ in range(len(regions))]

        # chromatic number is bounded by maximum vertex degree + 1
        max_order = max(map(len, graph.values())) + 1

        problem = pulp.LpProblem("POA", pulp.LpMaximize)
        variables = {}
        for i in range(len(regions)):
            for order in range(max_order):
                variables[(i, order)] = pulp.LpVariable(
                    f"x_{i}_{order}", 0, 1, pulp.LpInteger
                )

        terms = []
        for (i, order), variable in variables.items():
            length = regions[i].length
            if order == 0:
                terms.append(variable * length)
            else:
                terms.append(-1 * variable * length * order)
        problem += pulp.lpSum(terms)

        # each region is assigned to exactly one order
        for i in range(len(regions)):
            problem += (
                pulp.lpSum(variables[(i, order)] for order in range(max_order)) == 1
            )

        # no two crossing regions are assigned to the same order
        for i in graph.keys():
            for j in graph[i]:
                if i < j:
                    for order in range(max_order):
                        problem += variables[(i, order)] + variables[(j, order)] <= 1

        try:
            logging.debug(f"POA: problem formulation\n{problem}")
            problem.solve(solver)
        except pulp.PulpSolverError:
            logging.warning(
                "POA: failed to solve problem using MILP approach, fallback to FCFS"
            )
            return fcfs_orders(regions)

        if problem.status != pulp.LpStatusOptimal:
            logging.warning("POA: problem is infeasible, fallback to FCFS")
            return fcfs_orders(regions)

        logging.debug(
            f"POA: solver {solver.name} took {round(problem.solutionTime, 2)} seconds"
        )

        orders = [0 for _ in range(len(regions))]
        for (i, order), variable in variables.items():
            if variable.varValue is not None and round(variable.varValue) == 1:
                orders[i] = order
        return orders


class AllPermutations(PseudoknotFinder):
    """Every distinct FCFS layering over orderings of crossing regions.

    Each connected component of the conflict graph is processed over all
    permutations of its regions; components above ``max_component_size``
    are processed in 5'→3' order only.
    """

    def __init__(self, max_component_size: int = 8):
        self.max_component_size = max_component_size

    def find_pseudoknots(self, bpseq: BpSeq) -> List[BpSeq]:
        regions = find_regions(bpseq)
        graph = conflict_graph(regions)

        # early exit for non-pseudoknotted structures
        if not graph:
            return [bpseq.without_pairs()]

        unique = []
        for component in self.__components(graph):
            if len(component) > self.max_component_size:
                logging.warning(
                    f"Conflict graph component with {len(component)} regions is too large, using only 5'-3' order"
                )
                permutations = [sorted(component)]
            else:
                permutations = itertools.permutations(component)

            removed = set()
            for permutation in permutations:
                orders = fcfs_orders(regions, list(permutation))
                removed.add(frozenset(i for i in component if orders[i] > 0))
            unique.append(sorted(removed, key=sorted))

        solutions = set()
        for assignment in itertools.product(*unique):
            solutions.add(frozenset().union(*assignment))

        result = []
        for solution in sorted(solutions, key=sorted):
            orders = [1 if i in solution else 0 for i in range(len(regions))]
            result.append(self._to_bpseq(bpseq, regions, orders))
        return result

    @staticmethod
    def __components(graph: Dict[int, Set[int]]) -> List[List[int]]:
        visited = set()
        components = []

        for vertex in sorted(graph.keys()):
            if vertex in visited:
                continue
            visited.add(vertex)
            stack = [vertex]
            components.append([vertex])

            while stack:
                current = stack.pop()
                for neighbor in sorted(graph[current]):
                    if neighbor not in visited:
                        visited.add(neighbor)
                        stack.append(neighbor)
                        components[-1].append(neighbor)

        return components


FINDERS = {
    "fcfs": FirstComeFirstServed,
    "milp": MixedIntegerProgramming,
    "all": AllPermutations,
}


def find_pseudoknots(
    bpseq: BpSeq, finder: Optional[PseudoknotFinder] = None
) -> List[BpSeq]:
    """Find alternative sets of pseudoknotted pairs (MILP finder by default)."""
    finder = finder if finder is not None else MixedIntegerProgramming()
    return finder.find_pseudoknots(bpseq)


def assign_orders(bpseq: BpSeq, finder: PseudoknotFinder) -> Dict[int, int]:
    """Assign pseudoknot order to every paired index.

    Pairs left nested by the finder get order 0, then the extracted
    pseudoknots are processed again for order 1 and so on.

    Returns:
        Mapping from both indices of every pair to its order.
    """
    orders = {}
    current = bpseq
    order = 0

    while current.pairs:
        pseudoknots = finder.find_pseudoknots(current)[0]
        if len(pseudoknots.pairs) == len(current.pairs):
            raise RuntimeError(
                f"Pseudoknot finder {type(finder).__name__} did not leave any nested pair"
            )
        for i, j in current.pairs.items():
            if i not in pseudoknots.pairs:
                orders[i] = order
        current = pseudoknots
        order += 1

    return orders


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("path", help="path to BPSEQ, CT or dot-bracket file")
    parser.add_argument(
        "--input-format",
        "-f",
        choices=["bpseq", "ct", "dbn"],
        help="format of the input file (default: guess from extension)",
    )
    parser.add_argument(
        "--method",
        "-m",
        choices=list(FINDERS.keys()),
        default="milp",
        help="pseudoknot finding method (default=milp)",
    )
    parser.add_argument(
        "--json",
        "-j",
        action="store_true",
        help="print pairs of each solution as JSON instead of BPSEQ",
    )
    args = parser.parse_args()

    bpseq = read_bpseq(args.path, args.input_format)
    solutions = find_pseudoknots(bpseq, FINDERS[args.method]())

    if args.json:
        result = [
            [[entry.index_, entry.pair] for entry in solution.paired(only5to3=True)]
            for solution in solutions
        ]
        print(orjson.dumps(result).decode("utf-8"))
    else:
        print("\n".join(str(solution) for solution in solutions), end="")


if __name__ == "__main__":
    main()
