"""Topology: an ordered, validated dependency graph of resource specs."""

import heapq
from typing import Dict, Iterable, Iterator, List, Set, Tuple

import yaml

from learner_e2e.errors import ValidationError
from learner_e2e.models import ResourceKind, ResourceRef, ResourceSpec


def build_graph(specs: List[ResourceSpec]) -> Tuple[Dict[ResourceRef, List[ResourceRef]], Dict[ResourceRef, int]]:
    """
    Build adjacency and in-degree maps from resource specs.

    Requires:
      - spec.ref unique across ``specs``
      - every entry of spec.depends_on refers to a spec in ``specs``
    """
    refs = [s.ref for s in specs]
    seen: Set[ResourceRef] = set()
    dupes = []
    for ref in refs:
        if ref in seen:
            dupes.append(str(ref))
        seen.add(ref)
    if dupes:
        raise ValidationError(f"Duplicate resource identities: {dupes}")

    adj: Dict[ResourceRef, List[ResourceRef]] = {r: [] for r in refs}
    indeg: Dict[ResourceRef, int] = {r: 0 for r in refs}

    for spec in specs:
        for dep in spec.depends_on:
            if dep not in seen:
                raise ValidationError(f"{spec.ref} depends on unknown object {dep}")
            # Edge dep -> spec (dep must exist before spec)
            if spec.ref not in adj[dep]:
                adj[dep].append(spec.ref)
                indeg[spec.ref] += 1

    return adj, indeg


def topo_order(
    refs: List[ResourceRef],
    adj: Dict[ResourceRef, List[ResourceRef]],
    indeg: Dict[ResourceRef, int],
) -> List[ResourceRef]:
    """
    Kahn's algorithm, stable with respect to ``refs``: among objects whose
    dependencies are all satisfied, the one declared first comes first.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    position = {ref: i for i, ref in enumerate(refs)}
    ready = [position[r] for r in refs if indeg[r] == 0]
    heapq.heapify(ready)
    order: List[ResourceRef] = []

    while ready:
        ref = refs[heapq.heappop(ready)]
        order.append(ref)
        for child in adj[ref]:
            indeg[child] -= 1
            if indeg[child] == 0:
                heapq.heappush(ready, position[child])

    if len(order) != len(refs):
        stuck = [str(r) for r in refs if indeg[r] > 0]
        raise ValidationError(f"Topology has a dependency cycle. Stuck objects: {stuck}")

    return order


class Topology:
    """Immutable, topologically ordered collection of resource specs."""

    def __init__(self, specs: Iterable[ResourceSpec]):
        specs = list(specs)
        adj, indeg = build_graph(specs)
        by_ref = {s.ref: s for s in specs}
        order = topo_order([s.ref for s in specs], adj, indeg)
        self._specs: Tuple[ResourceSpec, ...] = tuple(by_ref[r] for r in order)
        self._index = {s.ref: i for i, s in enumerate(self._specs)}

    def __iter__(self) -> Iterator[ResourceSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __contains__(self, ref: ResourceRef) -> bool:
        return ref in self._index

    def __getitem__(self, ref: ResourceRef) -> ResourceSpec:
        return self._specs[self._index[ref]]

    @property
    def refs(self) -> List[ResourceRef]:
        return [s.ref for s in self._specs]

    def creation_order(self) -> List[ResourceSpec]:
        """Specs in an order where every dependency precedes its dependents."""
        return list(self._specs)

    def owned_namespaces(self) -> Set[str]:
        return {s.name for s in self._specs if s.kind is ResourceKind.NAMESPACE}

    def teardown_order(self) -> List[ResourceRef]:
        """Objects to delete, dependents first.

        Objects living in a namespace the topology itself creates are left
        to the namespace's cascading deletion, so teardown deletes the
        objects placed in pre-existing namespaces (the mesh namespace) and
        then the owned namespaces.
        """
        owned = self.owned_namespaces()
        return [
            s.ref
            for s in reversed(self._specs)
            if s.kind is ResourceKind.NAMESPACE or s.namespace not in owned
        ]

    def readiness_targets(self) -> List[ResourceSpec]:
        """Specs that need an explicit readiness wait after creation."""
        return [s for s in self._specs if s.readiness is not None]

    def kinds(self) -> List[ResourceKind]:
        """Distinct kinds in first-appearance order."""
        kinds: List[ResourceKind] = []
        for spec in self._specs:
            if spec.kind not in kinds:
                kinds.append(spec.kind)
        return kinds

    def to_yaml(self) -> str:
        """Render every object as a multi-document YAML stream."""
        return yaml.safe_dump_all(
            [s.to_manifest() for s in self._specs], sort_keys=False, default_flow_style=False
        )

    def __repr__(self) -> str:
        return f"Topology({[str(r) for r in self.refs]})"
