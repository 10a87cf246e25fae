"""
Structural and data-flow validation for workflow definitions.

Runs once, when a WorkflowDefinition is constructed. Catches "field never
populated" bugs before anything executes:

1. Successor references resolve, ids are unique, the graph is acyclic
2. Exactly one ENTRY node, and it is the only main-chain root
3. At least one EXIT node is reachable from ENTRY
4. Every input field is produced upstream along every path (def-before-use)
5. AFTER nodes only follow EXIT (or other AFTER) nodes
"""

import logging
from collections.abc import Sequence

from nodeflow.graph.node import Category, NodeDescriptor

logger = logging.getLogger(__name__)

MAIN_CHAIN = frozenset({Category.ENTRY, Category.MIDDLE, Category.EXIT})


def topological_order(nodes: Sequence[NodeDescriptor]) -> list[str] | None:
    """
    Kahn's algorithm with ties broken by declaration order.

    Returns None when the successor graph has a cycle. Unknown successor
    ids are ignored.
    """
    index = {node.id: i for i, node in enumerate(nodes)}
    in_degree = {node.id: 0 for node in nodes}
    for node in nodes:
        for succ in node.successors:
            if succ in in_degree:
                in_degree[succ] += 1

    ready = sorted((nid for nid, deg in in_degree.items() if deg == 0), key=index.__getitem__)
    order: list[str] = []
    by_id = {node.id: node for node in nodes}

    while ready:
        current = ready.pop(0)
        order.append(current)
        for succ in by_id[current].successors:
            if succ not in in_degree:
                continue
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                ready.append(succ)
                ready.sort(key=index.__getitem__)

    if len(order) != len(nodes):
        return None
    return order


class GraphValidator:
    """
    Validates a list of node descriptors.

    Example:
        errors = GraphValidator(nodes).validate()
        if errors:
            raise ConfigurationError(errors)
    """

    def __init__(self, nodes: Sequence[NodeDescriptor]):
        self.nodes = list(nodes)
        self._by_id: dict[str, NodeDescriptor] = {}
        self._predecessors: dict[str, list[str]] = {}

    def validate(self) -> list[str]:
        """Run every check and return all errors found (empty means valid)."""
        if not self.nodes:
            return ["Workflow has no nodes"]

        errors: list[str] = []
        errors.extend(self._check_ids())
        errors.extend(self._check_successor_references())
        if errors:
            # Later checks need a well-formed id space
            return errors

        self._predecessors = {node.id: [] for node in self.nodes}
        for node in self.nodes:
            for succ in node.successors:
                self._predecessors[succ].append(node.id)

        order = topological_order(self.nodes)
        if order is None:
            errors.append(f"Workflow has a cycle among nodes: {self._cycle_members()}")
            return errors

        errors.extend(self._check_entry())
        errors.extend(self._check_after_placement())
        entry = self._entry()
        if entry is None:
            return errors

        reachable = self._reachable_from(entry.id)
        errors.extend(self._check_reachability(reachable))
        if errors:
            return errors

        errors.extend(self._check_data_flow(order, reachable))
        return errors

    # --- structural checks ---

    def _check_ids(self) -> list[str]:
        errors = []
        for node in self.nodes:
            if node.id in self._by_id:
                errors.append(f"Duplicate node id: '{node.id}'")
            else:
                self._by_id[node.id] = node
        return errors

    def _check_successor_references(self) -> list[str]:
        errors = []
        for node in self.nodes:
            for succ in node.successors:
                if succ not in self._by_id:
                    errors.append(f"Node '{node.id}' references missing successor '{succ}'")
                elif succ == node.id:
                    errors.append(f"Node '{node.id}' lists itself as a successor")
        return errors

    def _cycle_members(self) -> list[str]:
        # Whatever survives repeated removal of sources and sinks lies on a cycle
        remaining = {node.id for node in self.nodes}
        changed = True
        while changed:
            changed = False
            for nid in list(remaining):
                preds = [p for p in self._predecessors[nid] if p in remaining]
                succs = [s for s in self._by_id[nid].successors if s in remaining]
                if not preds or not succs:
                    remaining.discard(nid)
                    changed = True
        return [node.id for node in self.nodes if node.id in remaining]

    def _entry(self) -> NodeDescriptor | None:
        entries = [node for node in self.nodes if node.category == Category.ENTRY]
        return entries[0] if len(entries) == 1 else None

    def _check_entry(self) -> list[str]:
        errors = []
        entries = [node for node in self.nodes if node.category == Category.ENTRY]
        if not entries:
            errors.append("Workflow has no ENTRY node")
        elif len(entries) > 1:
            errors.append(
                f"Workflow has {len(entries)} ENTRY nodes: {[n.id for n in entries]}; "
                "exactly one is allowed"
            )

        for entry in entries:
            if self._predecessors[entry.id]:
                errors.append(
                    f"ENTRY node '{entry.id}' has predecessors: {self._predecessors[entry.id]}"
                )

        # Standalone AFTER nodes are not roots of the main chain
        roots = [
            node
            for node in self.nodes
            if not self._predecessors[node.id] and node.category != Category.AFTER
        ]
        for root in roots:
            if root.category != Category.ENTRY:
                errors.append(
                    f"Node '{root.id}' has no predecessors but is {root.category.name}, "
                    "not ENTRY"
                )
        return errors

    def _check_after_placement(self) -> list[str]:
        errors = []
        for node in self.nodes:
            if node.category == Category.AFTER:
                for pred_id in self._predecessors[node.id]:
                    pred = self._by_id[pred_id]
                    if pred.category not in (Category.EXIT, Category.AFTER):
                        errors.append(
                            f"AFTER node '{node.id}' follows {pred.category.name} node "
                            f"'{pred_id}'; AFTER nodes may only follow EXIT or AFTER nodes"
                        )
            if node.category in (Category.EXIT, Category.AFTER):
                for succ_id in node.successors:
                    succ = self._by_id[succ_id]
                    if succ.category != Category.AFTER:
                        errors.append(
                            f"{node.category.name} node '{node.id}' has "
                            f"{succ.category.name} successor '{succ_id}'; only AFTER nodes "
                            "may follow it"
                        )
        return errors

    def _reachable_from(self, start: str) -> set[str]:
        reachable: set[str] = set()
        to_visit = [start]
        while to_visit:
            current = to_visit.pop()
            if current in reachable:
                continue
            reachable.add(current)
            to_visit.extend(self._by_id[current].successors)
        return reachable

    def _check_reachability(self, reachable: set[str]) -> list[str]:
        errors = []
        exits = [n for n in self.nodes if n.category == Category.EXIT and n.id in reachable]
        if not exits:
            errors.append("No EXIT node is reachable from the ENTRY node")
        for node in self.nodes:
            if node.category in MAIN_CHAIN and node.id not in reachable:
                errors.append(f"Node '{node.id}' is unreachable from entry")
        return errors

    # --- data flow ---

    def _provides(self, node: NodeDescriptor) -> set[str]:
        """Fields a node makes readable to the nodes after it."""
        provided = set(node.init_params)
        if node.category != Category.EXIT:
            # EXIT writes the output namespace, which no node reads back
            provided.update(node.output_fields)
        return provided

    def _check_data_flow(self, order: list[str], reachable: set[str]) -> list[str]:
        """
        Forward must-analysis: a field is available to N only if it is
        provided on every path from ENTRY to N.
        """
        available: dict[str, set[str]] = {}
        exits = [
            nid for nid in order if nid in reachable and self._by_id[nid].category == Category.EXIT
        ]
        # Main chain first so standalone AFTER nodes see every EXIT
        main = [nid for nid in order if self._by_id[nid].category in MAIN_CHAIN]
        after = [nid for nid in order if self._by_id[nid].category == Category.AFTER]

        for nid in main + after:
            node = self._by_id[nid]
            preds = self._predecessors[nid]

            if node.category == Category.ENTRY:
                incoming: list[set[str]] = [set()]
            elif preds:
                incoming = [available[p] | self._provides(self._by_id[p]) for p in preds]
            else:
                # Standalone AFTER node: runs once the main chain has returned
                incoming = [available[e] | self._provides(self._by_id[e]) for e in exits]

            available[nid] = set.intersection(*incoming) if incoming else set()

        errors = []
        for node in self.nodes:
            for name in node.input_fields:
                if name not in available[node.id]:
                    errors.append(
                        f"Node '{node.id}' reads '{name}' but no upstream node produces it "
                        "on every path from ENTRY"
                    )
        return errors
