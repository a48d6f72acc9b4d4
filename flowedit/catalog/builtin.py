"""
Built-in Modules for the demo catalog.

Three plain processing steps plus branching modules covering both output
kinds and both child-deletion policies.
"""

from typing import List, Optional

from flowedit.catalog.registry import (
    ChildDeletionPolicy,
    ModuleCatalog,
    ModuleSpec,
    OutputCountConfig,
    OutputKind,
    module_catalog,
)
from flowedit.engine.registry import NodeVariant


BUILTIN_MODULES: List[ModuleSpec] = [
    ModuleSpec(
        name="Load",
        description="Read records from a source",
        params={"path": "str", "limit": "int"},
        optional_params=("limit",),
    ),
    ModuleSpec(
        name="Transform",
        description="Apply an expression to every record",
        params={"expression": "str"},
    ),
    ModuleSpec(
        name="Filter",
        description="Drop records that do not match a predicate",
        params={"predicate": "str", "keep_nulls": "bool"},
        optional_params=("keep_nulls",),
    ),
    # Outputs are fixed by the module itself and cannot be removed one by one
    ModuleSpec(
        name="Condition",
        description="Route records to 'then' or 'else' by a predicate",
        variant=NodeVariant.BRANCHING,
        params={"predicate": "str"},
        output_count=OutputCountConfig(min=2, max=2),
        output_kind=OutputKind.INTERNAL,
        output_labels=("then", "else"),
        child_deletion=ChildDeletionPolicy.BLOCKED,
        default_output_count=2,
    ),
    # One output per case; deleting an output drops its case
    ModuleSpec(
        name="Switch",
        description="Route records by matching a field against a list of cases",
        variant=NodeVariant.BRANCHING,
        params={"field": "str", "cases": "list[str]"},
        output_count=OutputCountConfig(min=1, max=8),
        output_kind=OutputKind.LIST_PARAM,
        list_param_name="cases",
        child_deletion=ChildDeletionPolicy.DECREMENT_PARENT,
        default_output_count=2,
    ),
    ModuleSpec(
        name="Fan Out",
        description="Send every record to each listed destination",
        variant=NodeVariant.BRANCHING,
        params={"destinations": "list[str]"},
        output_count=OutputCountConfig(min=1),
        output_kind=OutputKind.LIST_PARAM,
        list_param_name="destinations",
        child_deletion=ChildDeletionPolicy.DECREMENT_PARENT,
        show_menu=False,
    ),
]


def register_builtin_modules(catalog: Optional[ModuleCatalog] = None) -> ModuleCatalog:
    """Register the built-in modules (idempotent)."""
    catalog = catalog if catalog is not None else module_catalog
    for spec in BUILTIN_MODULES:
        catalog.register(spec, replace=True)
    return catalog


register_builtin_modules()
