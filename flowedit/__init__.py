"""
FlowEdit - Connection engine for a visual flow editor.

Keeps a node graph consistent while users drag connections between nodes
and resize branching nodes with generated outputs.
"""

__version__ = "1.0.0"
