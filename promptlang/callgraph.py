"""
CallGraph: static unit-call graph of a promptlang program.

Nodes are units (keyed by case-folded name), edges are `UnitCall` targets
of their match arms. Used at load time for:
- dangling reference detection
- transitive blocking of units that call a blocked unit
- static cycle reporting

Runtime cycle detection does not rely on this graph: a cycle here is only a
possible cycle, since a no-match ends a chain before it loops.
"""

from typing import Any, Dict, Iterable, List, Set

import networkx as nx

from .ast import PromptUnit, call_targets


class CallGraph:

    def __init__(self):
        self.graph: nx.DiGraph = nx.DiGraph()

    @classmethod
    def from_units(cls, units: Iterable[PromptUnit]) -> "CallGraph":
        cg = cls()
        for unit in units:
            cg.add_unit(unit)
        return cg

    def add_unit(self, unit: PromptUnit) -> None:
        self.graph.add_node(unit.key, name=unit.name, defined=True)
        for arm in unit.match_block.arms:
            for target in call_targets(arm.action):
                key = target.casefold()
                if key not in self.graph.nodes:
                    self.graph.add_node(key, name=target, defined=False)
                self.graph.add_edge(unit.key, key, line=arm.line)

    def is_defined(self, key: str) -> bool:
        return bool(self.graph.nodes.get(key, {}).get("defined"))

    def dangling(self) -> List[tuple]:
        """(caller, target_name, line) for every edge to an undefined unit."""
        out = []
        for caller, target, data in self.graph.edges(data=True):
            if not self.is_defined(target):
                out.append((caller, self.graph.nodes[target]["name"], data.get("line", 0)))
        return out

    def callers_of(self, key: str) -> Set[str]:
        """All units that can reach `key` through unit calls."""
        if key not in self.graph.nodes:
            return set()
        return set(nx.ancestors(self.graph, key))

    def cycles(self) -> List[List[str]]:
        return [
            [self.graph.nodes[k]["name"] for k in cycle]
            for cycle in nx.simple_cycles(self.graph)
        ]

    @property
    def is_acyclic(self) -> bool:
        return nx.is_directed_acyclic_graph(self.graph)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_count": self.graph.number_of_nodes(),
            "edge_count": self.graph.number_of_edges(),
            "is_dag": self.is_acyclic,
            "nodes": [
                {
                    "name": data["name"],
                    "defined": data["defined"],
                    "calls": [self.graph.nodes[t]["name"] for t in self.graph.successors(key)],
                }
                for key, data in self.graph.nodes(data=True)
            ],
        }
