"""Similarity primitives shared by the topology manager and the analyzers.

Collections and clusters are compared by the token overlap of their names;
document vectors are compared by cosine similarity.
"""

from collections import Counter
from itertools import combinations
from typing import Callable, Sequence, TypeVar

import numpy as np

from ..models import ClusterSnapshot, MemberSnapshot

T = TypeVar("T")


def tokenize(name: str) -> set[str]:
    return set(name.lower().split())


def name_similarity(a: str, b: str) -> float:
    """Jaccard index of the lowercase whitespace tokens of two names."""
    ta, tb = tokenize(a), tokenize(b)
    union = ta | tb
    if not union:
        return 0.0
    return len(ta & tb) / len(union)


def max_name_similarity(name: str, others: Sequence[str]) -> float:
    return max((name_similarity(name, o) for o in others), default=0.0)


def cluster_similarity(a: ClusterSnapshot, b: ClusterSnapshot) -> float:
    """Mean name similarity over every cross pair of members. 0.0 if either is empty."""
    if not a.members or not b.members:
        return 0.0
    total = sum(name_similarity(x.name, y.name) for x in a.members for y in b.members)
    return total / (len(a.members) * len(b.members))


def pairwise_cluster_similarities(clusters: Sequence[ClusterSnapshot]) -> list[float]:
    return [cluster_similarity(a, b) for a, b in combinations(clusters, 2)]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(np.dot(a, b) / denom)


def group_by_name_similarity(
    members: Sequence[MemberSnapshot],
    max_groups: int,
    threshold: float = 0.3,
) -> tuple[list[list[MemberSnapshot]], list[MemberSnapshot]]:
    """Greedy seeded grouping.

    The first ungrouped member seeds a group that absorbs every ungrouped
    member whose name similarity to the seed exceeds ``threshold``. Stops after
    ``max_groups`` groups; returns (groups, leftovers).
    """
    ungrouped = list(members)
    groups: list[list[MemberSnapshot]] = []
    while ungrouped and len(groups) < max_groups:
        seed = ungrouped.pop(0)
        group = [seed]
        rest = []
        for candidate in ungrouped:
            if name_similarity(seed.name, candidate.name) > threshold:
                group.append(candidate)
            else:
                rest.append(candidate)
        ungrouped = rest
        groups.append(group)
    return groups, ungrouped


def group_transitively(items: Sequence[T], similar: Callable[[T, T], bool]) -> list[list[T]]:
    """Connected components of the ``similar`` relation; singletons are left out."""
    parent = list(range(len(items)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    for i, j in combinations(range(len(items)), 2):
        if similar(items[i], items[j]):
            parent[find(i)] = find(j)

    components: dict[int, list[T]] = {}
    for i, item in enumerate(items):
        components.setdefault(find(i), []).append(item)
    return [group for group in components.values() if len(group) >= 2]


def common_words_name(names: Sequence[str], suffix: str = "Cluster") -> str | None:
    """``"Word1 Word2 <suffix>"`` from words repeated across names, or None."""
    counts = Counter(w for name in names for w in name.lower().split() if len(w) > 2)
    common = [w for w, c in counts.most_common() if c > 1][:2]
    if not common:
        return None
    return " ".join(w.capitalize() for w in common) + f" {suffix}"
