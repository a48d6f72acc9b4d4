"""
Editing session: one flow being edited.

Bundles the graph store with the gesture machine and fan-out controller
that act on it, and routes node-level operations to whichever of them owns
the node's variant.
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, replace
from datetime import datetime
import asyncio
import logging

from flowedit.catalog.registry import ChildDeletionPolicy, ModuleCatalog, OutputKind, module_catalog
from flowedit.engine.errors import DeletionBlocked, InvalidConnection
from flowedit.engine.fanout import BranchingLayout, FanoutController, FanoutStatus
from flowedit.engine.gesture import ConnectionGesture
from flowedit.engine.graph import GraphEvent, GraphStore, Node, Position
from flowedit.engine.registry import NodeTypeRegistry
from flowedit.engine.validator import FlowValidation, validate_flow


logger = logging.getLogger(__name__)


@dataclass
class EditingSession:
    """
    A flow under edit.

    All mutating calls are synchronous; callers running on an event loop
    hold ``lock`` around them so that a session has a single writer.
    """
    session_id: str
    name: str = ""
    catalog: ModuleCatalog = field(default_factory=lambda: module_catalog)
    registry: Optional[NodeTypeRegistry] = None
    layout: BranchingLayout = field(default_factory=BranchingLayout)
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.store = GraphStore(registry=self.registry)
        self.gesture = ConnectionGesture(self.store)
        self.fanout = FanoutController(self.store, self.catalog, self.layout)
        self.lock = asyncio.Lock()
        self.updated_at = self.created_at

        # Keep the timestamp current on every commit
        self.store.subscribe(self._touch)

    def _touch(self, event: GraphEvent) -> None:
        self.updated_at = datetime.now()

    # ----- nodes -------------------------------------------------------

    def add_module_node(
        self,
        module_name: str,
        position: Position,
        output_count: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Node:
        """
        Drop a catalog module onto the canvas.

        Raises:
            UnknownModule: If the module is not in the catalog
        """
        spec = self.catalog.require(module_name)
        if spec.is_branching:
            return self.fanout.create_branching_node(spec, position, output_count, params=params)

        caps = self.store.registry.capabilities_of(spec.variant)
        node_params = spec.initial_params()
        if params:
            node_params.update(params)
        node = Node(
            id=self.store.next_node_id(spec.name),
            variant=spec.variant,
            position=position,
            label=spec.name,
            module_name=spec.name,
            params=node_params,
            width=caps.default_width,
            height=caps.default_height,
        )
        return self.store.add_node(node)

    def delete_node(self, node_id: str) -> List[str]:
        """
        Delete a node the way its variant requires.

        Branching nodes go with their outputs. A branching output is routed
        through the fan-out controller and obeys its module's deletion policy.

        Returns:
            Ids of every removed node

        Raises:
            NodeNotFound: If the node does not exist
            DeletionBlocked: If the node is an output whose module forbids it
        """
        node = self.store.require_node(node_id)
        if node.is_branching_output:
            result = self.fanout.remove_output(node_id)
            if result.status == FanoutStatus.BLOCKED:
                raise DeletionBlocked(result.message)
            if not result.applied:
                raise DeletionBlocked(result.message or f"Cannot delete '{node_id}'")
            return result.removed

        removed = self.store.remove_node(node_id)
        logger.info(f"Session {self.session_id}: removed {removed}")
        return removed

    def move_node(self, node_id: str, x: float, y: float) -> Node:
        """
        Move a node.

        A list-param output dropped somewhere is snapped back into its
        parent's stack at the nearest slot instead of moving freely.
        """
        node = self.store.require_node(node_id)
        if node.is_branching_output:
            self.fanout.drop_output_at(node_id, y)
            return self.store.require_node(node_id)
        return self.store.update_node_position(node_id, x, y)

    def update_params(self, node_id: str, params: Dict[str, Any]) -> Node:
        """
        Merge parameter values into a node.

        Raises:
            ValueError: If the values would edit a list parameter that
                drives branching outputs (use the output operations instead)
        """
        node = self.store.require_node(node_id)
        spec = self.catalog.get(node.module_name)
        if node.is_branching and spec is not None and spec.list_param_name in params:
            raise ValueError(
                f"'{spec.list_param_name}' of '{node_id}' is managed through its outputs"
            )
        if (
            node.is_branching_output
            and spec is not None
            and spec.output_kind == OutputKind.LIST_PARAM
            and "value" in params
        ):
            raise ValueError(
                f"'value' of '{node_id}' mirrors '{spec.list_param_name}' of "
                f"'{node.parent_node_id}'; set it through the output value instead"
            )
        merged = dict(node.params)
        merged.update(params)
        return self.store.update_node(replace(node, params=merged))

    # ----- edges -------------------------------------------------------

    def remove_edge(self, edge_id: str) -> None:
        if not self.store.remove_edge(edge_id):
            raise InvalidConnection(f"edge '{edge_id}' does not exist")

    # ----- whole graph -------------------------------------------------

    def load(self, data: Dict[str, Any]) -> GraphEvent:
        """Replace the flow with an exported document."""
        event = self.store.load(data)
        self.gesture.reset_after_load()
        return event

    def validate(self) -> FlowValidation:
        return validate_flow(self.store, self.catalog)

    def deletable(self, node_id: str) -> bool:
        """Whether ``delete_node`` would be allowed for this node."""
        node = self.store.get_node(node_id)
        if node is None:
            return False
        if not node.is_branching_output:
            return True
        parent = self.store.get_node(node.parent_node_id)
        spec = self.catalog.get(parent.module_name) if parent else None
        return spec is not None and spec.child_deletion == ChildDeletionPolicy.DECREMENT_PARENT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "name": self.name,
            "node_count": len(self.store),
            "edge_count": len(self.store.edges),
            "version": self.store.version,
            "gesture": self.gesture.phase.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
