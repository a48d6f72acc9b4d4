"""
Error kinds raised by the graph engine.

Store mutations raise one of these *before* touching any state, so a caught
error always means "nothing changed". Gesture and fan-out operations report
user-level rejections as return values instead.
"""


class FlowEditError(Exception):
    """Base class for all engine errors."""


class UnknownNodeType(FlowEditError, KeyError):
    """A node-type variant that is not in the registry."""

    def __init__(self, variant):
        self.variant = variant
        super().__init__(f"Unknown node type: {variant!r}")

    def __str__(self) -> str:
        return self.args[0]


class UnknownModule(FlowEditError, KeyError):
    """A module name that is not in the catalog."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Module '{name}' not found in catalog")

    def __str__(self) -> str:
        return self.args[0]


class NodeNotFound(FlowEditError):
    """An operation addressed a node id that does not exist."""

    def __init__(self, node_id: str):
        self.node_id = node_id
        super().__init__(f"Node '{node_id}' not found")


class DanglingReference(FlowEditError):
    """An edge, child or gesture marker would point at a missing node."""


class InvalidConnection(FlowEditError):
    """A prospective edge was rejected by the connection validator."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid connection: {reason}")


class DeletionBlocked(FlowEditError):
    """A node cannot be removed individually."""


class InvariantViolation(FlowEditError):
    """A mutation would leave the graph in an inconsistent state."""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))
