"""
Graph Store for the Flow Editor.

The store holds the nodes and edges of one flow plus the session-scoped
"connecting from" marker of an in-progress connection gesture. Every change
goes through ``apply()``: the next snapshot is built on copies, checked
against the graph invariants and only then swapped in, so a rejected
mutation never leaves a partially applied state.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, field, replace
from enum import Enum
import copy
import logging
import re

from flowedit.engine.errors import (
    DanglingReference,
    DeletionBlocked,
    InvalidConnection,
    InvariantViolation,
    NodeNotFound,
)
from flowedit.engine.registry import NodeTypeRegistry, NodeVariant, node_type_registry
from flowedit.engine.validator import ConnectionCandidate, check_invariants, connection_rejection


logger = logging.getLogger(__name__)


# ============================================================
# Data Model
# ============================================================

@dataclass(frozen=True)
class Position:
    """A free-form 2D canvas coordinate."""
    x: float = 0.0
    y: float = 0.0

    def translated(self, dx: float, dy: float) -> "Position":
        return Position(self.x + dx, self.y + dy)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True)
class Node:
    """
    A vertex of the flow.

    Attributes:
        id: Unique, stable identifier
        variant: Node-type variant
        position: Canvas position
        label: Display label
        module_name: Catalog module this node was created from
        params: Module parameter values
        width: Rendered width
        height: Rendered height
        output_count: Declared number of outputs (branching nodes only)
        parent_node_id: Owning branching node (branching outputs only)
        output_index: Slot among the parent's outputs (branching outputs only)
    """
    id: str
    variant: NodeVariant
    position: Position = field(default_factory=Position)
    label: str = ""
    module_name: Optional[str] = None
    params: Dict[str, Any] = field(default_factory=dict)
    width: Optional[float] = None
    height: Optional[float] = None
    output_count: Optional[int] = None
    parent_node_id: Optional[str] = None
    output_index: Optional[int] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Node id cannot be empty")
        object.__setattr__(self, "variant", NodeVariant(self.variant))

    @property
    def is_branching(self) -> bool:
        return self.variant == NodeVariant.BRANCHING

    @property
    def is_branching_output(self) -> bool:
        return self.variant == NodeVariant.BRANCHING_OUTPUT

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the node in the flow export format."""
        data: Dict[str, Any] = {
            "label": self.label,
            "moduleName": self.module_name,
            "params": copy.deepcopy(self.params),
        }
        if self.parent_node_id is not None:
            data["parentNodeId"] = self.parent_node_id
        if self.output_index is not None:
            data["outputIndex"] = self.output_index
        if self.output_count is not None:
            data["outputCount"] = self.output_count
        return {
            "id": self.id,
            "type": self.variant.value,
            "position": self.position.to_dict(),
            "width": self.width,
            "height": self.height,
            "data": data,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Node":
        """Create a Node from its export format."""
        data = payload.get("data") or {}
        position = payload.get("position") or {}
        return cls(
            id=payload["id"],
            variant=NodeVariant(payload.get("type", NodeVariant.SINGLE.value)),
            position=Position(float(position.get("x", 0.0)), float(position.get("y", 0.0))),
            label=data.get("label", ""),
            module_name=data.get("moduleName"),
            params=copy.deepcopy(data.get("params") or {}),
            width=payload.get("width"),
            height=payload.get("height"),
            output_count=data.get("outputCount"),
            parent_node_id=data.get("parentNodeId"),
            output_index=data.get("outputIndex"),
        )


@dataclass(frozen=True)
class Edge:
    """A directed connection from a source handle to a target handle."""
    id: str
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("Edge id cannot be empty")

    def touches(self, node_ids: Iterable[str]) -> bool:
        ids = node_ids if isinstance(node_ids, (set, frozenset)) else set(node_ids)
        return self.source in ids or self.target in ids

    def to_dict(self) -> Dict[str, str]:
        data = {"id": self.id, "source": self.source, "target": self.target}
        if self.source_handle:
            data["sourceHandle"] = self.source_handle
        if self.target_handle:
            data["targetHandle"] = self.target_handle
        return data

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Edge":
        return cls(
            id=payload["id"],
            source=payload["source"],
            target=payload["target"],
            source_handle=payload.get("sourceHandle"),
            target_handle=payload.get("targetHandle"),
        )


def edge_id_for(
    source: str,
    target: str,
    source_handle: Optional[str] = None,
    target_handle: Optional[str] = None,
) -> str:
    """Deterministic edge id for a connection."""
    return f"edge_{source}_{source_handle or ''}_{target}_{target_handle or ''}"


# ============================================================
# Mutations and Events
# ============================================================

class MutationKind(str, Enum):
    """What kind of change a commit represents."""
    ADD_NODE = "add_node"
    REMOVE_NODE = "remove_node"
    MOVE_NODE = "move_node"
    UPDATE_NODE = "update_node"
    ADD_EDGE = "add_edge"
    REMOVE_EDGE = "remove_edge"
    GESTURE = "gesture"
    FANOUT = "fanout"
    IMPORT = "import"


@dataclass
class Mutation:
    """
    One logical change to the graph, applied atomically.

    Node removals cascade to every edge touching a removed node. Nodes in
    ``put_nodes`` replace existing nodes with the same id or are appended.
    ``connecting_from`` is only written when ``set_connecting_from`` is True.
    """
    kind: MutationKind
    put_nodes: List[Node] = field(default_factory=list)
    remove_node_ids: Set[str] = field(default_factory=set)
    put_edges: List[Edge] = field(default_factory=list)
    remove_edge_ids: Set[str] = field(default_factory=set)
    set_connecting_from: bool = False
    connecting_from: Optional[str] = None
    replace_all: bool = False


@dataclass
class GraphEvent:
    """Notification sent to subscribers after every commit."""
    kind: MutationKind
    version: int
    added_nodes: List[str] = field(default_factory=list)
    updated_nodes: List[str] = field(default_factory=list)
    removed_nodes: List[str] = field(default_factory=list)
    added_edges: List[str] = field(default_factory=list)
    removed_edges: List[str] = field(default_factory=list)
    connecting_from: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "mutation",
            "kind": self.kind.value,
            "version": self.version,
            "added_nodes": self.added_nodes,
            "updated_nodes": self.updated_nodes,
            "removed_nodes": self.removed_nodes,
            "added_edges": self.added_edges,
            "removed_edges": self.removed_edges,
            "connectingFrom": self.connecting_from,
        }


Listener = Callable[[GraphEvent], None]


# ============================================================
# Graph Store
# ============================================================

class GraphStore:
    """
    The mutable node/edge collection of one editing session.

    The store is single-writer: all mutating methods are synchronous and
    must be called from one event-handling context at a time.

    Usage:
        store = GraphStore()
        a = store.add_node(Node(id=store.next_node_id(), variant="single"))
        b = store.add_node(Node(id=store.next_node_id(), variant="single"))
        store.add_edge(a.id, b.id, "right-source", "left-target")
    """

    def __init__(self, registry: Optional[NodeTypeRegistry] = None):
        self.registry = registry if registry is not None else node_type_registry
        self._nodes: Dict[str, Node] = {}
        self._edges: Dict[str, Edge] = {}
        self._connecting_from: Optional[str] = None
        self._listeners: List[Listener] = []
        self._id_counters: Dict[str, int] = {}
        self.version = 0

    # ----- read accessors ----------------------------------------------

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        return list(self._edges.values())

    @property
    def connecting_from(self) -> Optional[str]:
        """Id of the node a connection drag started from, if any."""
        return self._connecting_from

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def require_node(self, node_id: str) -> Node:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFound(node_id)
        return node

    def has_node(self, node_id: Optional[str]) -> bool:
        return node_id is not None and node_id in self._nodes

    def get_edge(self, edge_id: str) -> Optional[Edge]:
        return self._edges.get(edge_id)

    def outgoing_edge(self, node_id: str) -> Optional[Edge]:
        """The single outgoing edge of a node, if it has one."""
        for edge in self._edges.values():
            if edge.source == node_id:
                return edge
        return None

    def incoming_edges(self, node_id: str) -> List[Edge]:
        return [edge for edge in self._edges.values() if edge.target == node_id]

    def edges_touching(self, node_ids: Iterable[str]) -> List[Edge]:
        ids = set(node_ids)
        return [edge for edge in self._edges.values() if edge.touches(ids)]

    def children_of(self, branching_node_id: str) -> List[Node]:
        """Outputs of a branching node, ordered by output index."""
        children = [
            node for node in self._nodes.values()
            if node.is_branching_output and node.parent_node_id == branching_node_id
        ]
        children.sort(key=lambda n: n.output_index if n.output_index is not None else 0)
        return children

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    # ----- identity ----------------------------------------------------

    def next_node_id(self, base: Optional[str] = None) -> str:
        """
        Generate a fresh node id such as ``switch_3``.

        Args:
            base: Module name or variant; converted to snake_case
        """
        base_name = re.sub(r"\s+", "_", (base or "node").strip().lower()) or "node"
        counter = self._id_counters.get(base_name, 0)
        while True:
            counter += 1
            candidate = f"{base_name}_{counter}"
            if candidate not in self._nodes:
                break
        self._id_counters[base_name] = counter
        return candidate

    # ----- subscriptions -----------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a callback invoked after every committed mutation.

        Returns:
            A function that removes the subscription
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: GraphEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Graph listener failed on {event.kind.value} event")

    # ----- commit ------------------------------------------------------

    def apply(self, mutation: Mutation) -> GraphEvent:
        """
        Commit a mutation atomically.

        Args:
            mutation: The change to apply

        Returns:
            The event broadcast to subscribers

        Raises:
            InvariantViolation: If the resulting graph would be inconsistent.
                The store is left unchanged.
        """
        if mutation.replace_all:
            nodes: Dict[str, Node] = {}
            edges: Dict[str, Edge] = {}
        else:
            nodes = dict(self._nodes)
            edges = dict(self._edges)

        removed_nodes = [node_id for node_id in mutation.remove_node_ids if node_id in nodes]
        for node_id in removed_nodes:
            del nodes[node_id]

        added_nodes: List[str] = []
        updated_nodes: List[str] = []
        for node in mutation.put_nodes:
            if node.id in nodes:
                updated_nodes.append(node.id)
            else:
                added_nodes.append(node.id)
            nodes[node.id] = node

        removed_edges: List[str] = []
        removed_set = set(removed_nodes)
        for edge_id, edge in list(edges.items()):
            if edge_id in mutation.remove_edge_ids or edge.touches(removed_set):
                del edges[edge_id]
                removed_edges.append(edge_id)

        added_edges: List[str] = []
        for edge in mutation.put_edges:
            if edge.id not in edges:
                added_edges.append(edge.id)
            edges[edge.id] = edge

        connecting_from = self._connecting_from
        if mutation.set_connecting_from:
            connecting_from = mutation.connecting_from
        if connecting_from is not None and connecting_from not in nodes:
            if mutation.set_connecting_from:
                raise DanglingReference(
                    f"Cannot mark missing node '{connecting_from}' as connecting"
                )
            connecting_from = None

        errors = check_invariants(list(nodes.values()), list(edges.values()), connecting_from, self.registry)
        if errors:
            logger.debug(f"Rejected {mutation.kind.value} mutation: {errors}")
            raise InvariantViolation(errors)

        self._nodes = nodes
        self._edges = edges
        self._connecting_from = connecting_from
        self.version += 1

        event = GraphEvent(
            kind=mutation.kind,
            version=self.version,
            added_nodes=added_nodes,
            updated_nodes=updated_nodes,
            removed_nodes=removed_nodes,
            added_edges=added_edges,
            removed_edges=removed_edges,
            connecting_from=connecting_from,
        )
        logger.debug(
            f"Committed {mutation.kind.value} v{self.version}: "
            f"+{len(added_nodes)}/-{len(removed_nodes)} nodes, "
            f"+{len(added_edges)}/-{len(removed_edges)} edges"
        )
        self._notify(event)
        return event

    # ----- mutations ---------------------------------------------------

    def add_node(self, node: Node, children: Iterable[Node] = ()) -> Node:
        """
        Add a node, together with its outputs when it is a branching node.

        Args:
            node: The node to insert
            children: Branching outputs created in the same commit

        Returns:
            The inserted node

        Raises:
            ValueError: If the id is already taken
            UnknownNodeType: If the variant is not registered
            InvariantViolation: If the insertion breaks an invariant
        """
        children = list(children)
        for candidate in [node] + children:
            if candidate.id in self._nodes:
                raise ValueError(f"Node '{candidate.id}' already exists in the graph")
            self.registry.capabilities_of(candidate.variant)

        self.apply(Mutation(kind=MutationKind.ADD_NODE, put_nodes=[node] + children))
        return node

    def remove_node(self, node_id: str) -> List[str]:
        """
        Remove a node and everything that depends on it.

        A branching node takes its outputs and all edges touching any of
        them along in the same commit. Branching outputs cannot be removed
        here; use the fan-out controller so the parent's count follows.

        Returns:
            Ids of all removed nodes (empty if the node does not exist)

        Raises:
            DeletionBlocked: If the node is a branching output
        """
        node = self._nodes.get(node_id)
        if node is None:
            return []
        if node.is_branching_output:
            raise DeletionBlocked(
                f"Node '{node_id}' is an output of '{node.parent_node_id}'; "
                f"remove it through its branching node"
            )

        doomed = {node_id}
        if node.is_branching:
            doomed.update(child.id for child in self.children_of(node_id))

        event = self.apply(Mutation(kind=MutationKind.REMOVE_NODE, remove_node_ids=doomed))
        return event.removed_nodes

    def add_edge(
        self,
        source: str,
        target: str,
        source_handle: Optional[str] = None,
        target_handle: Optional[str] = None,
        edge_id: Optional[str] = None,
    ) -> Edge:
        """
        Add an edge after checking it with the connection validator.

        Raises:
            InvalidConnection: If the validator rejects the connection
        """
        candidate = ConnectionCandidate(
            source=source,
            target=target,
            source_handle=source_handle,
            target_handle=target_handle,
        )
        reason = connection_rejection(self, candidate)
        if reason:
            raise InvalidConnection(reason)

        edge = candidate.to_edge(edge_id)
        if edge.id in self._edges:
            raise InvalidConnection(f"edge '{edge.id}' already exists")
        self.apply(Mutation(kind=MutationKind.ADD_EDGE, put_edges=[edge]))
        return edge

    def remove_edge(self, edge_id: str) -> bool:
        """Remove an edge. Returns False if it does not exist."""
        if edge_id not in self._edges:
            return False
        self.apply(Mutation(kind=MutationKind.REMOVE_EDGE, remove_edge_ids={edge_id}))
        return True

    def update_node_position(self, node_id: str, x: float, y: float) -> Optional[Node]:
        """
        Move a node. A branching node carries its outputs along.

        Returns:
            The moved node, or None if it does not exist
        """
        node = self._nodes.get(node_id)
        if node is None:
            return None

        dx = x - node.position.x
        dy = y - node.position.y
        moved = [replace(node, position=Position(x, y))]
        if node.is_branching:
            for child in self.children_of(node_id):
                moved.append(replace(child, position=child.position.translated(dx, dy)))

        self.apply(Mutation(kind=MutationKind.MOVE_NODE, put_nodes=moved))
        return moved[0]

    def update_node(self, node: Node) -> Node:
        """Replace an existing node's data (same id)."""
        if node.id not in self._nodes:
            raise NodeNotFound(node.id)
        self.apply(Mutation(kind=MutationKind.UPDATE_NODE, put_nodes=[node]))
        return node

    def set_connecting_from(self, node_id: Optional[str]) -> None:
        """
        Set or clear the session-wide "connecting from" marker.

        Raises:
            DanglingReference: If ``node_id`` is not in the graph
        """
        if node_id == self._connecting_from:
            return
        self.apply(Mutation(
            kind=MutationKind.GESTURE,
            set_connecting_from=True,
            connecting_from=node_id,
        ))

    # ----- serialization -----------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Read-only view for rendering: the export plus gesture state."""
        data = self.to_dict()
        data["connectingFrom"] = self._connecting_from
        data["version"] = self.version
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the graph as ``{"nodes": [...], "edges": [...]}``."""
        return {
            "nodes": [node.to_dict() for node in self._nodes.values()],
            "edges": [edge.to_dict() for edge in self._edges.values()],
        }

    def load(self, data: Dict[str, Any]) -> GraphEvent:
        """
        Replace the whole graph with an exported document, atomically.

        Raises:
            UnknownNodeType: If a node carries an unregistered type
            InvariantViolation: If the document is not a valid graph
        """
        nodes = []
        for payload in data.get("nodes", []):
            self.registry.capabilities_of(payload.get("type", NodeVariant.SINGLE.value))
            try:
                nodes.append(Node.from_dict(payload))
            except (KeyError, TypeError, ValueError) as e:
                raise InvariantViolation([f"Malformed node {payload.get('id')!r}: {e}"]) from e
        edges = []
        for payload in data.get("edges", []):
            try:
                edges.append(Edge.from_dict(payload))
            except (KeyError, TypeError, ValueError) as e:
                raise InvariantViolation([f"Malformed edge {payload.get('id')!r}: {e}"]) from e

        ids = [node.id for node in nodes]
        if len(ids) != len(set(ids)):
            raise InvariantViolation(["Duplicate node ids in document"])
        edge_ids = [edge.id for edge in edges]
        if len(edge_ids) != len(set(edge_ids)):
            raise InvariantViolation(["Duplicate edge ids in document"])

        event = self.apply(Mutation(
            kind=MutationKind.IMPORT,
            put_nodes=nodes,
            put_edges=edges,
            set_connecting_from=True,
            connecting_from=None,
            replace_all=True,
        ))
        self._id_counters.clear()
        return event

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        registry: Optional[NodeTypeRegistry] = None,
    ) -> "GraphStore":
        """Build a new store from an exported document."""
        store = cls(registry=registry)
        store.load(data)
        return store

    def __repr__(self) -> str:
        return f"GraphStore(nodes={len(self._nodes)}, edges={len(self._edges)}, v{self.version})"
