"""
Catalog package - Module catalog and built-in modules.
"""

from flowedit.catalog.registry import (
    ChildDeletionPolicy,
    ModuleCatalog,
    ModuleSpec,
    OutputCountConfig,
    OutputKind,
    get_module,
    module_catalog,
    register_module,
)

__all__ = [
    "ChildDeletionPolicy",
    "ModuleCatalog",
    "ModuleSpec",
    "OutputCountConfig",
    "OutputKind",
    "get_module",
    "module_catalog",
    "register_module",
]
