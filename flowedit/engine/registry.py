"""
Node-Type Registry.

Static catalog of the node-type variants the editor knows about and the
handle/connection capabilities of each. Variants form a closed set: anything
that is not a ``NodeVariant`` is rejected at lookup time with
``UnknownNodeType`` so callers can skip the node instead of crashing.
"""

from typing import Dict, Iterator, List, Optional, Union
from dataclasses import dataclass
from enum import Enum

from flowedit.engine.errors import UnknownNodeType


class NodeVariant(str, Enum):
    """Closed set of node-type variants."""
    SINGLE = "single"
    BRANCHING = "branching"
    BRANCHING_OUTPUT = "branchingOutput"


class HandleRole(str, Enum):
    """Role of a connection handle, fixed by its tag."""
    SOURCE = "source"
    TARGET = "target"


HANDLE_POSITIONS = ("top", "right", "bottom", "left")


def is_source_handle(handle: Optional[str]) -> bool:
    """True if the handle id is tagged ``*-source``."""
    return bool(handle) and handle.endswith("-" + HandleRole.SOURCE.value)


def is_target_handle(handle: Optional[str]) -> bool:
    """True if the handle id is tagged ``*-target``."""
    return bool(handle) and handle.endswith("-" + HandleRole.TARGET.value)


def handle_ids(role: HandleRole) -> List[str]:
    """All handle ids for a role, e.g. ``["top-source", "right-source", ...]``."""
    return [f"{position}-{role.value}" for position in HANDLE_POSITIONS]


@dataclass(frozen=True)
class CapabilityRecord:
    """
    Immutable capabilities of a node-type variant.

    Attributes:
        variant: The variant this record describes
        name: Display name
        description: Human-readable description
        has_target_handles: Whether the node exposes ``*-target`` handles
        has_source_handles: Whether the node exposes ``*-source`` handles
        can_start_connection: Whether a drag may start from its source handles
        css_class: Rendering-only role tag
        default_width: Default rendered width
        default_height: Default rendered height
        z_index: Default stacking order
    """
    variant: NodeVariant
    name: str
    description: str
    has_target_handles: bool
    has_source_handles: bool
    can_start_connection: bool
    css_class: str = ""
    default_width: float = 150.0
    default_height: float = 80.0
    z_index: int = 2

    def to_dict(self) -> Dict[str, object]:
        return {
            "variant": self.variant.value,
            "name": self.name,
            "description": self.description,
            "has_target_handles": self.has_target_handles,
            "has_source_handles": self.has_source_handles,
            "can_start_connection": self.can_start_connection,
            "css_class": self.css_class,
            "default_width": self.default_width,
            "default_height": self.default_height,
            "z_index": self.z_index,
        }


DEFAULT_CAPABILITIES = (
    CapabilityRecord(
        variant=NodeVariant.SINGLE,
        name="Single",
        description="Standard node with input and output capabilities",
        has_target_handles=True,
        has_source_handles=True,
        can_start_connection=True,
        default_width=150.0,
        default_height=80.0,
        z_index=2,
    ),
    CapabilityRecord(
        variant=NodeVariant.BRANCHING,
        name="Branching",
        description="Routes only through its generated output nodes",
        has_target_handles=True,
        has_source_handles=False,
        can_start_connection=False,
        css_class="branching-node",
        default_width=170.0,
        default_height=140.0,
        z_index=1,
    ),
    CapabilityRecord(
        variant=NodeVariant.BRANCHING_OUTPUT,
        name="Branching Output",
        description="Generated output of a branching node",
        has_target_handles=False,
        has_source_handles=True,
        can_start_connection=True,
        css_class="branching-node-output",
        default_width=130.0,
        default_height=60.0,
        z_index=2,
    ),
)


class NodeTypeRegistry:
    """
    Lookup table of capability records keyed by variant.

    Built once from static configuration and never mutated afterwards.

    Usage:
        registry = NodeTypeRegistry()
        record = registry.capabilities_of("single")
        record.can_start_connection  # True
    """

    def __init__(self, records=DEFAULT_CAPABILITIES):
        self._records: Dict[NodeVariant, CapabilityRecord] = {
            record.variant: record for record in records
        }

    def capabilities_of(self, variant: Union[NodeVariant, str]) -> CapabilityRecord:
        """
        Get the capability record of a variant.

        Args:
            variant: A ``NodeVariant`` or its string tag

        Returns:
            The capability record

        Raises:
            UnknownNodeType: If the variant is not registered
        """
        try:
            key = NodeVariant(variant)
        except ValueError:
            raise UnknownNodeType(variant) from None
        record = self._records.get(key)
        if record is None:
            raise UnknownNodeType(variant)
        return record

    def has(self, variant: Union[NodeVariant, str]) -> bool:
        try:
            self.capabilities_of(variant)
        except UnknownNodeType:
            return False
        return True

    def list_records(self) -> List[CapabilityRecord]:
        return list(self._records.values())

    def __contains__(self, variant) -> bool:
        return self.has(variant)

    def __iter__(self) -> Iterator[CapabilityRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


# Global registry instance
node_type_registry = NodeTypeRegistry()


def capabilities_of(variant: Union[NodeVariant, str]) -> CapabilityRecord:
    """Look up a variant in the global registry."""
    return node_type_registry.capabilities_of(variant)
