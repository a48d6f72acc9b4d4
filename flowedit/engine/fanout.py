"""
Branching Fan-out Controller.

A branching node has no outputs of its own. Instead it owns a number of
generated ``branchingOutput`` child nodes, one per declared output. This
module keeps the child set, the parent's ``output_count``, the parent's size
and (for list-param modules) the parent's list parameter in step, always in a
single store commit.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from dataclasses import dataclass, field, replace
from enum import Enum
import logging

from flowedit.catalog.registry import (
    ChildDeletionPolicy,
    ModuleCatalog,
    ModuleSpec,
    OutputCountConfig,
    OutputKind,
    module_catalog,
)
from flowedit.engine.graph import GraphStore, Mutation, MutationKind, Node, Position
from flowedit.engine.registry import NodeVariant


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchingLayout:
    """Geometry of a branching node and its stacked outputs."""
    padding: float = 20.0
    header_height: float = 50.0
    output_spacing: float = 10.0
    output_width: float = 130.0
    output_height: float = 60.0

    def output_position(self, parent: Position, index: int) -> Position:
        """Default position of the output at ``index``, stacked vertically."""
        return Position(
            parent.x + self.padding,
            parent.y + self.header_height + self.output_spacing
            + index * (self.output_height + self.output_spacing),
        )

    def branching_size(self, output_count: int) -> Tuple[float, float]:
        """(width, height) of a branching node holding ``output_count`` outputs."""
        width = self.output_width + self.padding * 2
        height = (
            self.header_height
            + self.output_spacing
            + output_count * self.output_height
            + max(output_count - 1, 0) * self.output_spacing
            + self.padding
        )
        return width, height

    def slot_for(self, parent: Position, y: float, output_count: int) -> int:
        """Nearest output slot for a vertical position, clamped to the range."""
        base = parent.y + self.header_height + self.output_spacing
        step = self.output_height + self.output_spacing
        slot = round((y - base) / step)
        return max(0, min(output_count - 1, slot))


class FanoutStatus(str, Enum):
    """Outcome of a fan-out operation."""
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    OUT_OF_RANGE = "out_of_range"
    BLOCKED = "blocked"
    NOT_FOUND = "not_found"
    NOT_BRANCHING = "not_branching"
    UNSUPPORTED = "unsupported"


@dataclass
class FanoutResult:
    """
    Result of a fan-out operation.

    Attributes:
        status: What happened
        node_id: The branching node involved
        output_count: The branching node's count after the operation
        added: Ids of created outputs
        removed: Ids of removed outputs
        removed_edges: Ids of edges removed with them
        message: Explanation for anything other than APPLIED
    """
    status: FanoutStatus
    node_id: Optional[str] = None
    output_count: Optional[int] = None
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    removed_edges: List[str] = field(default_factory=list)
    message: str = ""

    @property
    def applied(self) -> bool:
        return self.status == FanoutStatus.APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "node_id": self.node_id,
            "output_count": self.output_count,
            "added": self.added,
            "removed": self.removed,
            "removed_edges": self.removed_edges,
            "message": self.message,
        }


# Bounds and policy used for a branching node whose module is not in the catalog
_FALLBACK_BOUNDS = OutputCountConfig(min=0)


class FanoutController:
    """
    Reconciles branching nodes with their generated outputs.

    Usage:
        fanout = FanoutController(store, catalog)
        switch = fanout.create_branching_node("Switch", Position(0, 0), output_count=2)
        fanout.set_output_count(switch.id, 5)   # five outputs
        fanout.set_output_count(switch.id, 1)   # outputs 1..4 and their edges removed
    """

    def __init__(
        self,
        store: GraphStore,
        catalog: Optional[ModuleCatalog] = None,
        layout: Optional[BranchingLayout] = None,
    ):
        self.store = store
        self.catalog = catalog if catalog is not None else module_catalog
        self.layout = layout or BranchingLayout()

    # ----- creation ----------------------------------------------------

    def create_branching_node(
        self,
        module: Union[str, ModuleSpec],
        position: Position,
        output_count: Optional[int] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Node:
        """
        Insert a branching node together with its outputs.

        A requested count outside the module's bounds is clamped into them.
        Initial ``params`` are merged in, except the list parameter, which
        always starts with one default value per output.

        Raises:
            UnknownModule: If the module is not in the catalog
            ValueError: If the module is not a branching module
        """
        spec = module if isinstance(module, ModuleSpec) else self.catalog.require(module)
        if not spec.is_branching:
            raise ValueError(f"Module '{spec.name}' is not a branching module")

        requested = spec.default_output_count if output_count is None else output_count
        count = spec.output_count.clamp(requested)

        node_params = spec.initial_params()
        if params:
            node_params.update({k: v for k, v in params.items() if k != spec.list_param_name})
        if spec.output_kind == OutputKind.LIST_PARAM:
            node_params[spec.list_param_name] = [spec.element_default() for _ in range(count)]

        width, height = self.layout.branching_size(count)
        parent = Node(
            id=self.store.next_node_id(spec.name),
            variant=NodeVariant.BRANCHING,
            position=position,
            label=spec.name,
            module_name=spec.name,
            params=node_params,
            width=width,
            height=height,
            output_count=count,
        )
        values = self._values(parent, spec, count)
        children = [self._new_output(parent, spec, i, values[i]) for i in range(count)]

        self.store.add_node(parent, children)
        logger.info(f"Created branching node {parent.id} ({spec.name}) with {count} outputs")
        return parent

    # ----- count changes -----------------------------------------------

    def set_output_count(self, node_id: str, new_count: int) -> FanoutResult:
        """
        Grow or shrink a branching node's outputs to ``new_count``.

        Growth appends outputs at the next indices. Shrinking removes the
        highest-index outputs and every edge touching them. Counts outside
        the module's bounds leave the graph untouched.
        """
        node, spec, failure = self._branching(node_id)
        if failure:
            return failure

        bounds = spec.output_count if spec else _FALLBACK_BOUNDS
        if not bounds.contains(new_count):
            logger.info(
                f"Rejected output count {new_count} for {node_id} "
                f"(allowed {bounds.min}..{bounds.max if bounds.max is not None else 'inf'})"
            )
            return FanoutResult(
                status=FanoutStatus.OUT_OF_RANGE,
                node_id=node_id,
                output_count=node.output_count,
                message=f"Output count {new_count} is outside {bounds.to_dict()}",
            )

        children = self.store.children_of(node_id)
        if new_count == len(children) == node.output_count:
            return FanoutResult(
                status=FanoutStatus.UNCHANGED,
                node_id=node_id,
                output_count=new_count,
            )

        return self._resize(node, spec, children, new_count)

    def add_output(self, node_id: str, value: Any = None) -> FanoutResult:
        """Append one output (optionally seeding its list-param value)."""
        node, spec, failure = self._branching(node_id)
        if failure:
            return failure

        children = self.store.children_of(node_id)
        new_count = len(children) + 1
        bounds = spec.output_count if spec else _FALLBACK_BOUNDS
        if not bounds.contains(new_count):
            return FanoutResult(
                status=FanoutStatus.OUT_OF_RANGE,
                node_id=node_id,
                output_count=node.output_count,
                message=f"Output count {new_count} is outside {bounds.to_dict()}",
            )
        return self._resize(node, spec, children, new_count, appended_value=value)

    def remove_output(self, child_id: str) -> FanoutResult:
        """
        Delete one output directly.

        Only allowed when the owning module's deletion policy is
        ``decrement_parent``; the parent's count is decremented and the
        remaining outputs are re-indexed in the same commit.
        """
        child, parent, spec, failure = self._output(child_id)
        if failure:
            return failure

        policy = spec.child_deletion if spec else ChildDeletionPolicy.BLOCKED
        if policy != ChildDeletionPolicy.DECREMENT_PARENT:
            logger.info(f"Blocked deletion of output {child_id} of {parent.id}")
            return FanoutResult(
                status=FanoutStatus.BLOCKED,
                node_id=parent.id,
                output_count=parent.output_count,
                message=f"Outputs of '{parent.module_name}' cannot be deleted individually",
            )

        siblings = self.store.children_of(parent.id)
        new_count = len(siblings) - 1
        bounds = spec.output_count if spec else _FALLBACK_BOUNDS
        if not bounds.contains(new_count):
            return FanoutResult(
                status=FanoutStatus.OUT_OF_RANGE,
                node_id=parent.id,
                output_count=parent.output_count,
                message=f"'{parent.id}' needs at least {bounds.min} outputs",
            )

        values = self._values(parent, spec, len(siblings))
        index = siblings.index(child)
        del values[index]
        remaining = [s for s in siblings if s.id != child_id]

        event = self.store.apply(Mutation(
            kind=MutationKind.FANOUT,
            put_nodes=self._layout(parent, spec, remaining, values),
            remove_node_ids={child_id},
        ))
        return FanoutResult(
            status=FanoutStatus.APPLIED,
            node_id=parent.id,
            output_count=new_count,
            removed=[child_id],
            removed_edges=event.removed_edges,
        )

    # ----- list-param outputs ------------------------------------------

    def set_output_value(self, child_id: str, value: Any) -> FanoutResult:
        """Set the value of a list-param output and mirror it into the parent."""
        child, parent, spec, failure = self._output(child_id, list_param_only=True)
        if failure:
            return failure

        siblings = self.store.children_of(parent.id)
        values = self._values(parent, spec, len(siblings))
        values[siblings.index(child)] = value

        self.store.apply(Mutation(
            kind=MutationKind.FANOUT,
            put_nodes=self._layout(parent, spec, siblings, values),
        ))
        return FanoutResult(
            status=FanoutStatus.APPLIED,
            node_id=parent.id,
            output_count=len(siblings),
        )

    def reorder_output(self, child_id: str, new_index: int) -> FanoutResult:
        """Move a list-param output to another slot, carrying its value."""
        child, parent, spec, failure = self._output(child_id, list_param_only=True)
        if failure:
            return failure

        siblings = self.store.children_of(parent.id)
        values = self._values(parent, spec, len(siblings))
        old_index = siblings.index(child)
        new_index = max(0, min(len(siblings) - 1, new_index))
        if new_index == old_index:
            return FanoutResult(
                status=FanoutStatus.UNCHANGED,
                node_id=parent.id,
                output_count=len(siblings),
            )

        siblings.insert(new_index, siblings.pop(old_index))
        values.insert(new_index, values.pop(old_index))

        self.store.apply(Mutation(
            kind=MutationKind.FANOUT,
            put_nodes=self._layout(parent, spec, siblings, values),
        ))
        return FanoutResult(
            status=FanoutStatus.APPLIED,
            node_id=parent.id,
            output_count=len(siblings),
        )

    def drop_output_at(self, child_id: str, y: float) -> FanoutResult:
        """Reorder a dragged list-param output to the slot nearest ``y``."""
        child = self.store.get_node(child_id)
        if child is None or child.parent_node_id is None:
            return FanoutResult(status=FanoutStatus.NOT_FOUND, message=f"Output '{child_id}' not found")
        parent = self.store.get_node(child.parent_node_id)
        slot = self.layout.slot_for(parent.position, y, parent.output_count or 0)
        return self.reorder_output(child_id, slot)

    # ----- helpers -----------------------------------------------------

    def _branching(self, node_id: str):
        node = self.store.get_node(node_id)
        if node is None:
            return None, None, FanoutResult(
                status=FanoutStatus.NOT_FOUND,
                node_id=node_id,
                message=f"Node '{node_id}' not found",
            )
        if not node.is_branching:
            return node, None, FanoutResult(
                status=FanoutStatus.NOT_BRANCHING,
                node_id=node_id,
                message=f"Node '{node_id}' is not a branching node",
            )
        return node, self.catalog.get(node.module_name), None

    def _output(self, child_id: str, list_param_only: bool = False):
        child = self.store.get_node(child_id)
        if child is None:
            return None, None, None, FanoutResult(
                status=FanoutStatus.NOT_FOUND,
                message=f"Node '{child_id}' not found",
            )
        if not child.is_branching_output:
            return child, None, None, FanoutResult(
                status=FanoutStatus.NOT_BRANCHING,
                message=f"Node '{child_id}' is not a branching output",
            )
        parent = self.store.get_node(child.parent_node_id)
        spec = self.catalog.get(parent.module_name)
        if list_param_only and (spec is None or spec.output_kind != OutputKind.LIST_PARAM):
            return child, parent, spec, FanoutResult(
                status=FanoutStatus.UNSUPPORTED,
                node_id=parent.id,
                output_count=parent.output_count,
                message=f"Outputs of '{parent.module_name}' have no editable value",
            )
        return child, parent, spec, None

    def _values(self, parent: Node, spec: Optional[ModuleSpec], count: int) -> List[Any]:
        """The parent's list-param values, padded or truncated to ``count``."""
        if spec is None or spec.output_kind != OutputKind.LIST_PARAM:
            return [None] * count
        values = list(parent.params.get(spec.list_param_name) or [])
        while len(values) < count:
            values.append(spec.element_default())
        return values[:count]

    def _new_output(self, parent: Node, spec: Optional[ModuleSpec], index: int, value: Any) -> Node:
        base = f"{spec.name} output" if spec else f"{parent.id} output"
        return Node(
            id=self.store.next_node_id(base),
            variant=NodeVariant.BRANCHING_OUTPUT,
            position=self.layout.output_position(parent.position, index),
            label=self._label(spec, index, value),
            module_name=parent.module_name,
            params=self._output_params(spec, value),
            width=self.layout.output_width,
            height=self.layout.output_height,
            parent_node_id=parent.id,
            output_index=index,
        )

    def _label(self, spec: Optional[ModuleSpec], index: int, value: Any) -> str:
        if spec is None:
            return "_"
        return spec.output_label(index, value)

    def _output_params(self, spec: Optional[ModuleSpec], value: Any) -> Dict[str, Any]:
        if spec is not None and spec.output_kind == OutputKind.LIST_PARAM:
            return {"value": value}
        return {}

    def _layout(
        self,
        parent: Node,
        spec: Optional[ModuleSpec],
        ordered: Sequence[Node],
        values: Sequence[Any],
    ) -> List[Node]:
        """Updated parent plus every output re-indexed and re-positioned in order."""
        count = len(ordered)
        params = dict(parent.params)
        if spec is not None and spec.output_kind == OutputKind.LIST_PARAM:
            params[spec.list_param_name] = list(values)
        width, height = self.layout.branching_size(count)
        updated = [replace(parent, output_count=count, params=params, width=width, height=height)]

        for index, child in enumerate(ordered):
            params = dict(child.params)
            if spec is not None and spec.output_kind == OutputKind.LIST_PARAM:
                params["value"] = values[index]
            updated.append(replace(
                child,
                output_index=index,
                position=self.layout.output_position(parent.position, index),
                label=self._label(spec, index, values[index]),
                params=params,
            ))
        return updated

    def _resize(
        self,
        node: Node,
        spec: Optional[ModuleSpec],
        children: List[Node],
        new_count: int,
        appended_value: Any = None,
    ) -> FanoutResult:
        values = self._values(node, spec, new_count)
        if appended_value is not None and new_count > len(children):
            values[new_count - 1] = appended_value

        kept = children[:new_count]
        # Highest indices go first when shrinking
        removed = [child.id for child in reversed(children[new_count:])]
        added = [
            self._new_output(node, spec, index, values[index])
            for index in range(len(children), new_count)
        ]

        event = self.store.apply(Mutation(
            kind=MutationKind.FANOUT,
            put_nodes=self._layout(node, spec, kept + added, values),
            remove_node_ids=set(removed),
        ))
        logger.info(f"Set output count of {node.id}: {len(children)} -> {new_count}")
        return FanoutResult(
            status=FanoutStatus.APPLIED,
            node_id=node.id,
            output_count=new_count,
            added=[child.id for child in added],
            removed=removed,
            removed_edges=event.removed_edges,
        )
