"""
Connection Validator.

Pure predicates over the current graph: whether a prospective edge is legal,
whether a whole snapshot satisfies the graph invariants, and whether a flow
is complete enough to hand off (every output connected, every obligatory
parameter filled).
"""

from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence
from dataclasses import dataclass

from flowedit.engine.errors import UnknownNodeType
from flowedit.engine.registry import (
    NodeTypeRegistry,
    NodeVariant,
    is_source_handle,
    is_target_handle,
)

if TYPE_CHECKING:
    from flowedit.catalog.registry import ModuleCatalog
    from flowedit.engine.graph import Edge, GraphStore, Node


@dataclass(frozen=True)
class ConnectionCandidate:
    """A prospective edge, as produced by a connect gesture."""
    source: Optional[str]
    target: Optional[str]
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    def to_edge(self, edge_id: Optional[str] = None) -> "Edge":
        from flowedit.engine.graph import Edge, edge_id_for

        return Edge(
            id=edge_id or edge_id_for(self.source, self.target, self.source_handle, self.target_handle),
            source=self.source,
            target=self.target,
            source_handle=self.source_handle,
            target_handle=self.target_handle,
        )


def connection_rejection(store: "GraphStore", candidate: ConnectionCandidate) -> Optional[str]:
    """
    Explain why a connection would be rejected.

    Reads the store's committed edge set at call time, so two gestures
    validated back to back always see each other's edges.

    Returns:
        A human-readable reason, or None if the connection is valid
    """
    if not candidate.source or not candidate.target:
        return "source and target are required"

    if candidate.source_handle and not is_source_handle(candidate.source_handle):
        return f"'{candidate.source_handle}' is not a source handle"

    if candidate.target_handle and not is_target_handle(candidate.target_handle):
        return f"'{candidate.target_handle}' is not a target handle"

    if candidate.source == candidate.target:
        return "a node cannot connect to itself"

    source = store.get_node(candidate.source)
    if source is None:
        return f"source node '{candidate.source}' does not exist"
    target = store.get_node(candidate.target)
    if target is None:
        return f"target node '{candidate.target}' does not exist"

    try:
        source_caps = store.registry.capabilities_of(source.variant)
        target_caps = store.registry.capabilities_of(target.variant)
    except UnknownNodeType as e:
        return str(e)

    if not source_caps.has_source_handles or not source_caps.can_start_connection:
        return f"'{source.id}' ({source.variant.value}) has no outputs"
    if not target_caps.has_target_handles:
        return f"'{target.id}' ({target.variant.value}) has no inputs"

    if store.outgoing_edge(candidate.source) is not None:
        return f"'{candidate.source}' already has an outgoing edge"

    return None


def is_valid_connection(store: "GraphStore", candidate: ConnectionCandidate) -> bool:
    """True if ``candidate`` may be added to the graph right now."""
    return connection_rejection(store, candidate) is None


def check_invariants(
    nodes: Sequence["Node"],
    edges: Sequence["Edge"],
    connecting_from: Optional[str],
    registry: NodeTypeRegistry,
) -> List[str]:
    """
    Check a graph snapshot against the structural invariants.

    Returns:
        List of violations (empty if the snapshot is consistent)
    """
    errors = []
    by_id: Dict[str, "Node"] = {node.id: node for node in nodes}

    for node in nodes:
        try:
            registry.capabilities_of(node.variant)
        except UnknownNodeType as e:
            errors.append(str(e))

    outgoing: Dict[str, str] = {}
    for edge in edges:
        if edge.source not in by_id:
            errors.append(f"Edge '{edge.id}' references missing source '{edge.source}'")
        if edge.target not in by_id:
            errors.append(f"Edge '{edge.id}' references missing target '{edge.target}'")
        if edge.source == edge.target:
            errors.append(f"Edge '{edge.id}' is a self-loop on '{edge.source}'")
        if edge.source in outgoing:
            errors.append(
                f"Node '{edge.source}' has more than one outgoing edge "
                f"('{outgoing[edge.source]}', '{edge.id}')"
            )
        else:
            outgoing[edge.source] = edge.id
        if edge.source_handle and not is_source_handle(edge.source_handle):
            errors.append(f"Edge '{edge.id}' starts at non-source handle '{edge.source_handle}'")
        if edge.target_handle and not is_target_handle(edge.target_handle):
            errors.append(f"Edge '{edge.id}' ends at non-target handle '{edge.target_handle}'")

        source = by_id.get(edge.source)
        if source is not None and source.variant == NodeVariant.BRANCHING:
            errors.append(f"Branching node '{source.id}' cannot be an edge source")

    children: Dict[str, List["Node"]] = {}
    for node in nodes:
        if node.variant != NodeVariant.BRANCHING_OUTPUT:
            continue
        parent = by_id.get(node.parent_node_id) if node.parent_node_id else None
        if parent is None:
            errors.append(f"Output '{node.id}' references missing parent '{node.parent_node_id}'")
        elif parent.variant != NodeVariant.BRANCHING:
            errors.append(f"Output '{node.id}' has non-branching parent '{parent.id}'")
        else:
            children.setdefault(parent.id, []).append(node)

    for node in nodes:
        if node.variant != NodeVariant.BRANCHING:
            continue
        own = children.get(node.id, [])
        count = node.output_count
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            errors.append(f"Branching node '{node.id}' has no valid output count")
            continue
        if len(own) != node.output_count:
            errors.append(
                f"Branching node '{node.id}' declares {node.output_count} outputs "
                f"but has {len(own)}"
            )
            continue
        indices = [child.output_index for child in own]
        if not all(isinstance(i, int) and not isinstance(i, bool) for i in indices):
            errors.append(f"Outputs of '{node.id}' carry non-integer indices")
            continue
        indices.sort()
        if indices != list(range(len(own))):
            errors.append(f"Outputs of '{node.id}' are not indexed 0..{len(own) - 1}")

    if connecting_from is not None and connecting_from not in by_id:
        errors.append(f"Connecting marker references missing node '{connecting_from}'")

    return errors


# ============================================================
# Flow Completeness
# ============================================================

@dataclass
class FlowValidation:
    """Result of checking a flow for completeness."""
    is_valid: bool
    errors: List[str]
    unconnected: List[str]
    missing_params: Dict[str, List[str]]

    @property
    def message(self) -> str:
        if self.is_valid:
            return "All validations passed"
        return "; ".join(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "message": self.message,
            "errors": self.errors,
            "unconnected": self.unconnected,
            "missing_params": self.missing_params,
        }


def _describe(store: "GraphStore", node: "Node") -> str:
    label = node.label or node.id
    if node.parent_node_id:
        parent = store.get_node(node.parent_node_id)
        parent_label = (parent.label or parent.id) if parent else node.parent_node_id
        return f"{label} (parent: {parent_label})"
    return label


def validate_flow(store: "GraphStore", catalog: "ModuleCatalog") -> FlowValidation:
    """
    Check that a flow is complete.

    A flow is complete when every node exposing source handles has an
    outgoing edge and every obligatory module parameter has a value.
    """
    from flowedit.catalog.registry import OutputKind, is_empty

    errors = []

    unconnected = []
    for node in store.nodes:
        try:
            caps = store.registry.capabilities_of(node.variant)
        except UnknownNodeType:
            continue
        if caps.has_source_handles and store.outgoing_edge(node.id) is None:
            unconnected.append(node)
    if unconnected:
        labels = ", ".join(_describe(store, node) for node in unconnected)
        errors.append(f"{len(unconnected)} node(s) with outputs are not connected: {labels}")

    missing: Dict[str, List[str]] = {}
    for node in store.nodes:
        module = catalog.get(node.module_name)
        if module is None:
            continue
        names = []
        if not node.is_branching_output:
            names = [
                name for name in module.params
                if module.is_obligatory(name) and is_empty(node.params.get(name))
            ]
        elif module.output_kind == OutputKind.LIST_PARAM and is_empty(node.params.get("value")):
            names = ["value"]
        if names:
            missing[node.id] = names
    if missing:
        parts = [
            f"{_describe(store, store.get_node(node_id))}: missing {', '.join(names)}"
            for node_id, names in missing.items()
        ]
        errors.append(f"Missing obligatory params: {'; '.join(parts)}")

    return FlowValidation(
        is_valid=not errors,
        errors=errors,
        unconnected=[node.id for node in unconnected],
        missing_params=missing,
    )
