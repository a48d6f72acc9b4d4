"""
Shared fixtures for the engine tests.
"""

import pytest

from flowedit.catalog.builtin import register_builtin_modules
from flowedit.catalog.registry import ModuleCatalog
from flowedit.engine.fanout import FanoutController
from flowedit.engine.gesture import ConnectionGesture
from flowedit.engine.graph import GraphStore
from flowedit.engine.session import EditingSession


@pytest.fixture
def catalog():
    """A fresh catalog holding the built-in modules."""
    return register_builtin_modules(ModuleCatalog())


@pytest.fixture
def store():
    return GraphStore()


@pytest.fixture
def fanout(store, catalog):
    return FanoutController(store, catalog)


@pytest.fixture
def gesture(store):
    return ConnectionGesture(store)


@pytest.fixture
def session(catalog):
    return EditingSession(session_id="test", catalog=catalog)
