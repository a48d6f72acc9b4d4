"""
Tests for exporting and importing flows.
"""

import json

import pytest

from flowedit.engine.errors import InvariantViolation, UnknownNodeType
from flowedit.engine.graph import Edge, GraphStore, Node, Position
from flowedit.engine.registry import NodeVariant
from flowedit.engine.validator import check_invariants


@pytest.fixture
def mixed_flow(session):
    """Ten nodes of all three variants joined by six edges."""
    load = session.add_module_node("Load", Position(0, 0), params={"path": "in.csv"})
    transform = session.add_module_node("Transform", Position(600, 0))
    filter_ = session.add_module_node("Filter", Position(900, 0))
    switch = session.add_module_node("Switch", Position(250, 0), output_count=3)
    condition = session.add_module_node("Condition", Position(600, 300))

    cases = session.store.children_of(switch.id)
    then_output, _ = session.store.children_of(condition.id)
    for case, value in zip(cases, ["x", "y", "z"]):
        session.fanout.set_output_value(case.id, value)

    store = session.store
    store.add_edge(load.id, switch.id, "right-source", "left-target")
    store.add_edge(cases[0].id, transform.id, "right-source", "left-target")
    store.add_edge(cases[1].id, filter_.id, "right-source", "top-target")
    store.add_edge(cases[2].id, condition.id, "right-source", "left-target")
    store.add_edge(transform.id, filter_.id, "right-source", "left-target")
    store.add_edge(then_output.id, filter_.id, "right-source", "bottom-target")
    return store


class TestRoundTrip:
    """Export followed by import reproduces the graph."""

    def test_mixed_flow_shape(self, mixed_flow):
        variants = {node.variant for node in mixed_flow.nodes}
        assert len(mixed_flow.nodes) == 10
        assert len(mixed_flow.edges) == 6
        assert variants == {NodeVariant.SINGLE, NodeVariant.BRANCHING, NodeVariant.BRANCHING_OUTPUT}

    def test_round_trip(self, mixed_flow):
        document = json.loads(json.dumps(mixed_flow.to_dict()))

        restored = GraphStore.from_dict(document)

        assert restored.to_dict() == mixed_flow.to_dict()
        assert {node.id: node for node in restored.nodes} == {node.id: node for node in mixed_flow.nodes}
        assert set(restored.edges) == set(mixed_flow.edges)
        assert check_invariants(restored.nodes, restored.edges, restored.connecting_from, restored.registry) == []

    def test_export_format(self, mixed_flow):
        document = mixed_flow.to_dict()
        switch = next(n for n in document["nodes"] if n["type"] == "branching" and n["data"]["moduleName"] == "Switch")
        output = next(n for n in document["nodes"] if n["data"].get("parentNodeId") == switch["id"])

        assert set(document) == {"nodes", "edges"}
        assert switch["data"]["outputCount"] == 3
        assert switch["data"]["params"]["cases"] == ["x", "y", "z"]
        assert output["type"] == "branchingOutput"
        assert output["data"]["outputIndex"] in (0, 1, 2)
        assert all("sourceHandle" in e and "targetHandle" in e for e in document["edges"])

    def test_import_clears_marker(self, mixed_flow):
        document = mixed_flow.to_dict()
        first = mixed_flow.nodes[0]
        mixed_flow.set_connecting_from(first.id)

        mixed_flow.load(document)

        assert mixed_flow.connecting_from is None

    def test_minimal_document(self):
        store = GraphStore.from_dict({
            "nodes": [
                {"id": "a", "type": "single", "position": {"x": 1, "y": 2}},
                {"id": "b", "position": {"x": 3, "y": 4}},
            ],
            "edges": [{"id": "e", "source": "a", "target": "b"}],
        })
        assert store.get_node("b").variant == NodeVariant.SINGLE
        assert store.get_node("a").position == Position(1, 2)
        assert store.get_edge("e") == Edge(id="e", source="a", target="b")


class TestImportRejection:
    """Invalid documents are rejected without touching the store."""

    @pytest.fixture
    def populated(self, store):
        store.add_node(Node(id="keep", variant="single"))
        return store

    def _assert_untouched(self, store: GraphStore, version: int):
        assert [node.id for node in store.nodes] == ["keep"]
        assert store.version == version

    def test_unknown_type(self, populated):
        version = populated.version
        with pytest.raises(UnknownNodeType):
            populated.load({"nodes": [{"id": "s", "type": "sticker", "position": {"x": 0, "y": 0}}]})
        self._assert_untouched(populated, version)

    def test_dangling_edge(self, populated):
        version = populated.version
        with pytest.raises(InvariantViolation):
            populated.load({
                "nodes": [{"id": "a", "type": "single", "position": {"x": 0, "y": 0}}],
                "edges": [{"id": "e", "source": "a", "target": "ghost"}],
            })
        self._assert_untouched(populated, version)

    def test_output_count_mismatch(self, mixed_flow):
        document = mixed_flow.to_dict()
        switch = next(n for n in document["nodes"] if n["data"].get("outputCount") == 3)
        switch["data"]["outputCount"] = 4
        with pytest.raises(InvariantViolation, match="declares 4 outputs"):
            GraphStore.from_dict(document)

    def test_duplicate_ids(self, populated):
        version = populated.version
        node = {"id": "a", "type": "single", "position": {"x": 0, "y": 0}}
        with pytest.raises(InvariantViolation, match="Duplicate"):
            populated.load({"nodes": [node, dict(node)]})
        self._assert_untouched(populated, version)

    def test_two_outgoing_edges(self, populated):
        nodes = [{"id": n, "type": "single", "position": {"x": 0, "y": 0}} for n in ("a", "b", "c")]
        with pytest.raises(InvariantViolation, match="more than one outgoing"):
            populated.load({
                "nodes": nodes,
                "edges": [
                    {"id": "e1", "source": "a", "target": "b"},
                    {"id": "e2", "source": "a", "target": "c"},
                ],
            })

    def test_empty_node_id(self, populated):
        version = populated.version
        with pytest.raises(InvariantViolation, match="Malformed node"):
            populated.load({"nodes": [{"id": "", "type": "single", "position": {"x": 0, "y": 0}}]})
        self._assert_untouched(populated, version)

    def test_edge_without_target(self, populated):
        version = populated.version
        with pytest.raises(InvariantViolation, match="Malformed edge"):
            populated.load({
                "nodes": [{"id": "a", "type": "single", "position": {"x": 0, "y": 0}}],
                "edges": [{"id": "e", "source": "a"}],
            })
        self._assert_untouched(populated, version)

    def test_non_integer_output_count(self, mixed_flow):
        document = mixed_flow.to_dict()
        switch = next(n for n in document["nodes"] if n["data"].get("outputCount") == 3)
        switch["data"]["outputCount"] = "3"
        with pytest.raises(InvariantViolation, match="no valid output count"):
            GraphStore.from_dict(document)
