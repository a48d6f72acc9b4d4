"""
Engine package - Graph store and connection rules.
"""

from flowedit.engine.errors import (
    DanglingReference,
    DeletionBlocked,
    FlowEditError,
    InvalidConnection,
    InvariantViolation,
    NodeNotFound,
    UnknownModule,
    UnknownNodeType,
)
from flowedit.engine.registry import CapabilityRecord, NodeTypeRegistry, NodeVariant, capabilities_of
from flowedit.engine.graph import Edge, GraphEvent, GraphStore, Mutation, MutationKind, Node, Position
from flowedit.engine.validator import ConnectionCandidate, check_invariants, is_valid_connection
from flowedit.engine.gesture import ConnectionGesture, GesturePhase
from flowedit.engine.minimap import Viewport, project_minimap

__all__ = [
    "CapabilityRecord",
    "ConnectionCandidate",
    "ConnectionGesture",
    "DanglingReference",
    "DeletionBlocked",
    "Edge",
    "FlowEditError",
    "GesturePhase",
    "GraphEvent",
    "GraphStore",
    "InvalidConnection",
    "InvariantViolation",
    "Mutation",
    "MutationKind",
    "Node",
    "NodeNotFound",
    "NodeTypeRegistry",
    "NodeVariant",
    "Position",
    "UnknownModule",
    "UnknownNodeType",
    "Viewport",
    "capabilities_of",
    "check_invariants",
    "is_valid_connection",
    "project_minimap",
]
