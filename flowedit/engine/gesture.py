"""
Connection Gesture State Machine.

Models the press / drag / release sequence of drawing an edge:

    IDLE --begin_drag--> DRAGGING --drop / cancel--> IDLE

Only one gesture may be active per session. While a gesture is active the
store's ``connecting_from`` marker names the source node; every way out of
DRAGGING clears it again.
"""

from typing import Optional
from dataclasses import dataclass, replace
from enum import Enum
import logging

from flowedit.engine.errors import UnknownNodeType
from flowedit.engine.graph import Edge, GraphEvent, GraphStore, Mutation, MutationKind
from flowedit.engine.registry import is_source_handle
from flowedit.engine.validator import ConnectionCandidate, connection_rejection


logger = logging.getLogger(__name__)


class GesturePhase(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass(frozen=True)
class ActiveGesture:
    """The drag in progress: where it started."""
    source_node_id: str
    source_handle: str


class ConnectionGesture:
    """
    Drives connection gestures against one graph store.

    Usage:
        gesture = ConnectionGesture(store)
        gesture.begin_drag("load_1", "right-source")
        edge = gesture.drop(ConnectionCandidate(None, "filter_1", target_handle="left-target"))
    """

    def __init__(self, store: GraphStore):
        self.store = store
        self._active: Optional[ActiveGesture] = None
        self.last_rejection: Optional[str] = None

        # Outputs removed by a resize or a cascade may take the drag source along
        self.store.subscribe(self._on_commit)

    @property
    def phase(self) -> GesturePhase:
        return GesturePhase.DRAGGING if self._active else GesturePhase.IDLE

    @property
    def active(self) -> Optional[ActiveGesture]:
        return self._active

    @property
    def is_dragging(self) -> bool:
        return self._active is not None

    def begin_drag(self, node_id: str, handle_id: str) -> bool:
        """
        Start a drag from a source handle.

        Ignored (returns False) while another drag is active, for handles
        not tagged ``-source``, and for nodes that cannot start connections.
        """
        if self._active is not None:
            logger.debug(f"Ignored drag from {node_id}: already dragging from {self._active.source_node_id}")
            return False
        if not is_source_handle(handle_id):
            logger.debug(f"Ignored drag from {node_id}: '{handle_id}' is not a source handle")
            return False

        node = self.store.get_node(node_id)
        if node is None:
            return False
        try:
            caps = self.store.registry.capabilities_of(node.variant)
        except UnknownNodeType:
            return False
        if not caps.can_start_connection:
            return False

        self.store.set_connecting_from(node_id)
        self._active = ActiveGesture(source_node_id=node_id, source_handle=handle_id)
        self.last_rejection = None
        logger.debug(f"Drag started from {node_id}:{handle_id}")
        return True

    def complete(self, candidate: ConnectionCandidate) -> ConnectionCandidate:
        """Fill a missing source or source handle from the active drag."""
        if self._active is None:
            return candidate
        return replace(
            candidate,
            source=candidate.source or self._active.source_node_id,
            source_handle=candidate.source_handle or self._active.source_handle,
        )

    def preview(self, candidate: ConnectionCandidate) -> bool:
        """Live validity of hovering over a target. Never mutates."""
        return connection_rejection(self.store, self.complete(candidate)) is None

    def drop(self, candidate: ConnectionCandidate) -> Optional[Edge]:
        """
        Release over a target.

        Returns:
            The created edge, or None if no gesture was active or the
            connection was rejected
        """
        if self._active is None:
            self.last_rejection = "no connection gesture in progress"
            return None

        candidate = self.complete(candidate)
        self._active = None

        reason = connection_rejection(self.store, candidate)
        edge = None if reason else candidate.to_edge()
        if edge is not None and self.store.get_edge(edge.id) is not None:
            reason = f"edge '{edge.id}' already exists"
            edge = None

        self.store.apply(Mutation(
            kind=MutationKind.GESTURE if edge is None else MutationKind.ADD_EDGE,
            put_edges=[edge] if edge is not None else [],
            set_connecting_from=True,
            connecting_from=None,
        ))

        self.last_rejection = reason
        if edge is None:
            logger.info(f"Rejected connection {candidate.source} -> {candidate.target}: {reason}")
        else:
            logger.info(f"Connected {edge.source} -> {edge.target}")
        return edge

    def cancel(self) -> None:
        """Abandon the gesture. Always leaves the session idle and unmarked."""
        if self._active is not None:
            logger.debug(f"Drag from {self._active.source_node_id} cancelled")
        self._active = None
        if self.store.connecting_from is not None:
            self.store.set_connecting_from(None)

    def _on_commit(self, event: GraphEvent) -> None:
        if self._active is not None and self._active.source_node_id in event.removed_nodes:
            logger.info(f"Drag source {self._active.source_node_id} was removed")
            self.cancel()

    def reset_after_load(self) -> None:
        """Forget any gesture after the store was replaced wholesale."""
        self._active = None

    def __repr__(self) -> str:
        return f"ConnectionGesture(phase={self.phase.value})"
