"""
Module Catalog for the Flow Editor.

The catalog lists the module types a user can drop onto the canvas. Each
module maps to a node-type variant; branching modules additionally declare
how many outputs they may have, how their outputs are labelled and whether
a single output may be deleted on its own.
"""

from typing import Any, Dict, Iterator, List, Optional, Sequence
from dataclasses import dataclass, field
from enum import Enum
import logging
import re

from flowedit.engine.errors import UnknownModule
from flowedit.engine.registry import NodeVariant


logger = logging.getLogger(__name__)


class OutputKind(str, Enum):
    """How a branching module produces its outputs."""
    INTERNAL = "internal"      # fixed, module-defined outputs with preset labels
    LIST_PARAM = "list_param"  # one output per element of a list parameter


class ChildDeletionPolicy(str, Enum):
    """What happens when a single branching output is deleted directly."""
    BLOCKED = "blocked"
    DECREMENT_PARENT = "decrement_parent"


@dataclass(frozen=True)
class OutputCountConfig:
    """Allowed range of a branching module's output count (``max`` optional)."""
    min: int = 1
    max: Optional[int] = None

    def __post_init__(self):
        if self.min < 0:
            raise ValueError("Output count minimum cannot be negative")
        if self.max is not None and self.max < self.min:
            raise ValueError(
                f"Output count maximum ({self.max}) is below minimum ({self.min})"
            )

    def contains(self, count: int) -> bool:
        if count < self.min:
            return False
        return self.max is None or count <= self.max

    def clamp(self, count: int) -> int:
        count = max(self.min, count)
        if self.max is not None:
            count = min(self.max, count)
        return count

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {"min": self.min, "max": self.max}


@dataclass(frozen=True)
class ModuleSpec:
    """
    A module that can be placed in a flow.

    Attributes:
        name: Unique module name
        description: Human-readable description
        variant: Node-type variant created for this module
        params: Parameter name -> type string (``str``, ``int``, ``list[str]`` ...)
        output_count: Output count bounds (branching only)
        output_kind: How outputs are produced (branching only)
        list_param_name: Parameter holding one value per output (list-param only)
        output_labels: Preset output labels (internal only)
        child_deletion: Policy for deleting a single output (branching only)
        show_menu: Whether the UI offers a parameter menu for the node
        default_output_count: Output count for a freshly dropped node
        optional_params: Parameters that may be left empty
    """
    name: str
    description: str = ""
    variant: NodeVariant = NodeVariant.SINGLE
    params: Dict[str, str] = field(default_factory=dict)
    output_count: Optional[OutputCountConfig] = None
    output_kind: Optional[OutputKind] = None
    list_param_name: Optional[str] = None
    output_labels: Sequence[str] = ()
    child_deletion: Optional[ChildDeletionPolicy] = None
    show_menu: bool = True
    default_output_count: int = 1
    optional_params: Sequence[str] = ()

    def __post_init__(self):
        if not self.name:
            raise ValueError("Module name cannot be empty")
        if self.variant == NodeVariant.BRANCHING_OUTPUT:
            raise ValueError(
                f"Module '{self.name}': branching outputs are generated, not placed"
            )
        if self.variant == NodeVariant.BRANCHING:
            if self.output_count is None:
                raise ValueError(f"Branching module '{self.name}' needs output_count")
            if self.output_kind is None:
                raise ValueError(f"Branching module '{self.name}' needs output_kind")
            # Individual output deletion is never inferred from other flags.
            if self.child_deletion is None:
                raise ValueError(f"Branching module '{self.name}' needs child_deletion")
            if self.output_kind == OutputKind.LIST_PARAM:
                if not self.list_param_name or self.list_param_name not in self.params:
                    raise ValueError(
                        f"Branching module '{self.name}' must name one of its params "
                        f"as list_param_name"
                    )

    @property
    def is_branching(self) -> bool:
        return self.variant == NodeVariant.BRANCHING

    def is_obligatory(self, param_name: str) -> bool:
        return param_name not in self.optional_params

    def output_label(self, index: int, value: Any = None) -> str:
        """Label of the output at ``index`` (``_`` when nothing better exists)."""
        if self.output_kind == OutputKind.INTERNAL:
            if 0 <= index < len(self.output_labels):
                return self.output_labels[index]
            return "_"
        if value is not None and value != "":
            return str(value)
        return "_"

    def initial_params(self) -> Dict[str, Any]:
        """Default value for every declared parameter."""
        return {name: default_for_type(type_str) for name, type_str in self.params.items()}

    def element_default(self) -> Any:
        """Default value of one element of the list parameter."""
        if not self.list_param_name:
            return ""
        return element_default(self.params.get(self.list_param_name))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "variant": self.variant.value,
            "params": dict(self.params),
            "output_count": self.output_count.to_dict() if self.output_count else None,
            "output_kind": self.output_kind.value if self.output_kind else None,
            "list_param_name": self.list_param_name,
            "output_labels": list(self.output_labels),
            "child_deletion": self.child_deletion.value if self.child_deletion else None,
            "show_menu": self.show_menu,
            "default_output_count": self.default_output_count,
        }


# ============================================================
# Parameter Types
# ============================================================

_LIST_TYPE = re.compile(r"^list\[(.+)\]$")
_DICT_TYPE = re.compile(r"^dict(?:\[(.+)\])?$")

_NUMBER_TYPES = ("int", "float", "number")
_BOOL_TYPES = ("bool", "boolean")


def parse_type(type_str: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Parse a Pythonic type string such as ``list[list[str]]``.

    Returns:
        Dict with ``base`` (outer type), ``inner`` (innermost element type
        for containers, else None) and ``full`` (the original string)
    """
    if not type_str:
        return {"base": "str", "inner": None, "full": "str"}

    type_str = type_str.strip()

    match = _LIST_TYPE.match(type_str)
    if match:
        inner = parse_type(match.group(1))
        return {"base": "list", "inner": inner["inner"] or inner["base"], "full": type_str}

    match = _DICT_TYPE.match(type_str)
    if match:
        if not match.group(1):
            return {"base": "dict", "inner": None, "full": type_str}
        # dict[key, value]: the value type is what matters
        value_type = match.group(1).split(",")[-1]
        inner = parse_type(value_type)
        return {"base": "dict", "inner": inner["inner"] or inner["base"], "full": type_str}

    return {"base": type_str, "inner": None, "full": type_str}


def default_for_type(type_str: Optional[str]) -> Any:
    """Default value for a parameter of the given type."""
    base = parse_type(type_str)["base"]
    if base in _NUMBER_TYPES:
        return 0
    if base in _BOOL_TYPES:
        return False
    if base == "list":
        return []
    if base == "dict":
        return {}
    return ""


def element_default(type_str: Optional[str]) -> Any:
    """Default value for one element of a container type (``list[int]`` -> 0)."""
    parsed = parse_type(type_str)
    element = parsed["inner"] or parsed["base"]
    if element in _NUMBER_TYPES:
        return 0
    if element in _BOOL_TYPES:
        return False
    return ""


def is_empty(value: Any) -> bool:
    """None, empty string, empty list and empty dict count as empty."""
    if value is None or value == "":
        return True
    if isinstance(value, (list, tuple, dict)) and len(value) == 0:
        return True
    return False


# ============================================================
# Catalog
# ============================================================

class ModuleCatalog:
    """
    Registry of placeable modules.

    Usage:
        catalog = ModuleCatalog()
        catalog.register(ModuleSpec(name="Load", params={"path": "str"}))

        spec = catalog.get("Load")
    """

    def __init__(self):
        self._modules: Dict[str, ModuleSpec] = {}

    def register(self, spec: ModuleSpec, replace: bool = False) -> ModuleSpec:
        """
        Add a module to the catalog.

        Args:
            spec: The module definition
            replace: Allow overwriting an existing module of the same name

        Returns:
            The registered module

        Raises:
            ValueError: If a module with that name exists and replace is False
        """
        if spec.name in self._modules and not replace:
            raise ValueError(f"Module '{spec.name}' is already registered")
        self._modules[spec.name] = spec
        logger.debug(f"Registered module: {spec.name} ({spec.variant.value})")
        return spec

    def get(self, name: Optional[str]) -> Optional[ModuleSpec]:
        """Get a module by name."""
        if name is None:
            return None
        return self._modules.get(name)

    def require(self, name: str) -> ModuleSpec:
        """Get a module by name, raising ``UnknownModule`` if it is missing."""
        spec = self.get(name)
        if spec is None:
            raise UnknownModule(name)
        return spec

    def remove(self, name: str) -> bool:
        """Remove a module from the catalog."""
        if name in self._modules:
            del self._modules[name]
            return True
        return False

    def list_modules(self) -> List[Dict[str, Any]]:
        """List all modules with their metadata."""
        return [spec.to_dict() for spec in self._modules.values()]

    def has(self, name: str) -> bool:
        return name in self._modules

    def __contains__(self, name: str) -> bool:
        return self.has(name)

    def __len__(self) -> int:
        return len(self._modules)

    def __iter__(self) -> Iterator[ModuleSpec]:
        return iter(self._modules.values())


# Global catalog instance
module_catalog = ModuleCatalog()


def register_module(spec: ModuleSpec, replace: bool = False) -> ModuleSpec:
    """Register a module in the global catalog."""
    return module_catalog.register(spec, replace=replace)


def get_module(name: str) -> Optional[ModuleSpec]:
    """Get a module from the global catalog."""
    return module_catalog.get(name)
