"""
Tests for the graph engine core: node types, graph store, connection
validation and the connection gesture.
"""

import random

import pytest

from flowedit.engine.errors import (
    DanglingReference,
    DeletionBlocked,
    FlowEditError,
    InvalidConnection,
    InvariantViolation,
    UnknownNodeType,
)
from flowedit.engine.gesture import GesturePhase
from flowedit.engine.graph import (
    Edge,
    GraphStore,
    Mutation,
    MutationKind,
    Node,
    Position,
    edge_id_for,
)
from flowedit.engine.registry import (
    NodeTypeRegistry,
    NodeVariant,
    capabilities_of,
    handle_ids,
    HandleRole,
    is_source_handle,
    is_target_handle,
)
from flowedit.engine.validator import (
    ConnectionCandidate,
    check_invariants,
    connection_rejection,
    is_valid_connection,
)


def add_single(store: GraphStore, node_id: str, x: float = 0, y: float = 0) -> Node:
    return store.add_node(Node(id=node_id, variant="single", position=Position(x, y)))


def invariant_errors(store: GraphStore):
    return check_invariants(store.nodes, store.edges, store.connecting_from, store.registry)


# ============================================================
# Node-Type Registry Tests
# ============================================================

class TestNodeTypeRegistry:
    """Tests for the node-type capability records."""

    def test_single_capabilities(self):
        record = capabilities_of(NodeVariant.SINGLE)
        assert record.has_target_handles is True
        assert record.has_source_handles is True
        assert record.can_start_connection is True

    def test_branching_has_no_outputs(self):
        record = capabilities_of("branching")
        assert record.has_target_handles is True
        assert record.has_source_handles is False
        assert record.can_start_connection is False
        assert record.css_class == "branching-node"

    def test_branching_output_has_no_inputs(self):
        record = capabilities_of("branchingOutput")
        assert record.has_target_handles is False
        assert record.has_source_handles is True
        assert record.can_start_connection is True

    def test_unknown_variant(self):
        registry = NodeTypeRegistry()
        with pytest.raises(UnknownNodeType):
            registry.capabilities_of("sticker")
        assert "sticker" not in registry
        assert "single" in registry
        assert len(registry) == 3

    def test_unknown_variant_is_a_key_error(self):
        with pytest.raises(KeyError):
            capabilities_of("bogus")

    def test_restricted_registry(self):
        registry = NodeTypeRegistry([capabilities_of("single")])
        assert registry.has("single")
        assert not registry.has("branching")

    def test_handle_tags(self):
        assert handle_ids(HandleRole.SOURCE) == [
            "top-source", "right-source", "bottom-source", "left-source",
        ]
        assert is_source_handle("right-source")
        assert not is_source_handle("right-target")
        assert is_target_handle("left-target")
        assert not is_target_handle(None)


# ============================================================
# Graph Store Tests
# ============================================================

class TestGraphStore:
    """Tests for GraphStore mutations and commits."""

    def test_add_and_get_node(self, store):
        node = add_single(store, "a", 10, 20)
        assert store.get_node("a") == node
        assert store.get_node("a").position == Position(10, 20)
        assert "a" in store
        assert len(store) == 1

    def test_duplicate_node_id(self, store):
        add_single(store, "a")
        with pytest.raises(ValueError, match="already exists"):
            add_single(store, "a")

    def test_node_rejects_unknown_variant(self):
        with pytest.raises(ValueError):
            Node(id="x", variant="sticker")

    def test_next_node_id(self, store):
        assert store.next_node_id("Load") == "load_1"
        assert store.next_node_id("Load") == "load_2"
        assert store.next_node_id("Fan Out") == "fan_out_1"
        assert store.next_node_id() == "node_1"

    def test_next_node_id_skips_taken_ids(self, store):
        add_single(store, "load_1")
        assert store.next_node_id("Load") == "load_2"

    def test_add_edge(self, store):
        add_single(store, "a")
        add_single(store, "b")
        edge = store.add_edge("a", "b", "right-source", "left-target")

        assert edge.id == edge_id_for("a", "b", "right-source", "left-target")
        assert store.outgoing_edge("a") == edge
        assert store.incoming_edges("b") == [edge]

    def test_add_invalid_edge_leaves_store_unchanged(self, store):
        add_single(store, "a")
        version = store.version
        with pytest.raises(InvalidConnection, match="itself"):
            store.add_edge("a", "a", "right-source", "left-target")
        assert store.edges == []
        assert store.version == version

    def test_remove_node_cascades_edges(self, store):
        add_single(store, "a")
        add_single(store, "b")
        add_single(store, "c")
        store.add_edge("a", "b", "right-source", "left-target")
        store.add_edge("b", "c", "right-source", "left-target")

        removed = store.remove_node("b")

        assert removed == ["b"]
        assert store.edges == []
        assert invariant_errors(store) == []

    def test_remove_missing_node_is_noop(self, store):
        assert store.remove_node("ghost") == []
        assert store.version == 0

    def test_remove_edge(self, store):
        add_single(store, "a")
        add_single(store, "b")
        edge = store.add_edge("a", "b")
        assert store.remove_edge(edge.id) is True
        assert store.remove_edge(edge.id) is False

    def test_branching_output_cannot_be_removed_directly(self, store, fanout):
        switch = fanout.create_branching_node("Switch", Position(0, 0), output_count=2)
        child = store.children_of(switch.id)[0]
        with pytest.raises(DeletionBlocked):
            store.remove_node(child.id)
        assert len(store.children_of(switch.id)) == 2

    def test_rejected_mutation_is_atomic(self, store):
        add_single(store, "a")
        version = store.version
        dangling = Edge(id="e1", source="a", target="ghost")

        with pytest.raises(InvariantViolation) as exc_info:
            store.apply(Mutation(
                kind=MutationKind.ADD_EDGE,
                put_nodes=[Node(id="b", variant="single")],
                put_edges=[dangling],
            ))

        assert "ghost" in str(exc_info.value)
        assert store.get_node("b") is None
        assert store.edges == []
        assert store.version == version

    def test_connecting_from_must_reference_a_node(self, store):
        with pytest.raises(DanglingReference):
            store.set_connecting_from("ghost")
        assert store.connecting_from is None

    def test_connecting_from_cleared_when_node_removed(self, store):
        add_single(store, "a")
        store.set_connecting_from("a")
        store.remove_node("a")
        assert store.connecting_from is None

    def test_subscribe_and_unsubscribe(self, store):
        events = []
        unsubscribe = store.subscribe(events.append)

        add_single(store, "a")
        assert len(events) == 1
        assert events[0].kind == MutationKind.ADD_NODE
        assert events[0].added_nodes == ["a"]

        unsubscribe()
        add_single(store, "b")
        assert len(events) == 1

    def test_failing_listener_does_not_undo_commit(self, store):
        def broken(event):
            raise RuntimeError("renderer crashed")

        store.subscribe(broken)
        add_single(store, "a")
        assert store.has_node("a")

    def test_move_branching_node_carries_outputs(self, store, fanout):
        switch = fanout.create_branching_node("Switch", Position(0, 0), output_count=2)
        before = [child.position for child in store.children_of(switch.id)]

        store.update_node_position(switch.id, 100, 50)

        after = [child.position for child in store.children_of(switch.id)]
        assert store.get_node(switch.id).position == Position(100, 50)
        assert after == [p.translated(100, 50) for p in before]

    def test_snapshot_contains_marker(self, store):
        add_single(store, "a")
        store.set_connecting_from("a")
        snapshot = store.snapshot()
        assert snapshot["connectingFrom"] == "a"
        assert snapshot["version"] == store.version
        assert [n["id"] for n in snapshot["nodes"]] == ["a"]


# ============================================================
# Connection Validator Tests
# ============================================================

class TestConnectionValidator:
    """Tests for connection rules."""

    @pytest.fixture
    def graph(self, store):
        for node_id in ("a", "b", "c"):
            add_single(store, node_id)
        return store

    def test_valid_connection(self, graph):
        candidate = ConnectionCandidate("a", "b", "right-source", "left-target")
        assert is_valid_connection(graph, candidate)

    def test_single_outgoing_edge(self, graph):
        graph.add_edge("a", "b", "right-source", "left-target")
        for target in ("b", "c"):
            for handle in handle_ids(HandleRole.TARGET):
                candidate = ConnectionCandidate("a", target, "bottom-source", handle)
                assert not is_valid_connection(graph, candidate)

    def test_outgoing_edge_read_from_live_store(self, graph):
        candidate = ConnectionCandidate("a", "c", "right-source", "left-target")
        assert is_valid_connection(graph, candidate)
        graph.add_edge("a", "b", "right-source", "left-target")
        assert not is_valid_connection(graph, candidate)

    def test_multiple_incoming_edges_allowed(self, graph):
        graph.add_edge("a", "c", "right-source", "left-target")
        assert is_valid_connection(graph, ConnectionCandidate("b", "c", "right-source", "top-target"))

    def test_no_self_loop(self, graph):
        for source_handle in handle_ids(HandleRole.SOURCE):
            candidate = ConnectionCandidate("a", "a", source_handle, "left-target")
            assert not is_valid_connection(graph, candidate)

    def test_handle_tagging(self, graph):
        assert not is_valid_connection(graph, ConnectionCandidate("a", "b", "right-target", "left-target"))
        assert not is_valid_connection(graph, ConnectionCandidate("a", "b", "right-source", "left-source"))
        assert not is_valid_connection(graph, ConnectionCandidate("a", "b", "right", "left-target"))

    def test_missing_endpoints(self, graph):
        assert not is_valid_connection(graph, ConnectionCandidate(None, "b"))
        assert not is_valid_connection(graph, ConnectionCandidate("a", None))
        assert "does not exist" in connection_rejection(graph, ConnectionCandidate("ghost", "b"))

    def test_branching_node_cannot_be_source(self, store, fanout):
        add_single(store, "t")
        switch = fanout.create_branching_node("Switch", Position(0, 0), output_count=2)
        assert not is_valid_connection(store, ConnectionCandidate(switch.id, "t", "right-source", "left-target"))

    def test_branching_output_cannot_be_target(self, store, fanout):
        add_single(store, "s")
        switch = fanout.create_branching_node("Switch", Position(0, 0), output_count=2)
        child = store.children_of(switch.id)[0]
        assert not is_valid_connection(store, ConnectionCandidate("s", child.id, "right-source", "left-target"))
        assert is_valid_connection(store, ConnectionCandidate(child.id, "s", "right-source", "left-target"))
        assert is_valid_connection(store, ConnectionCandidate("s", switch.id, "right-source", "left-target"))

    def test_check_invariants_reports_problems(self):
        registry = NodeTypeRegistry()
        nodes = [Node(id="a", variant="single"), Node(id="b", variant="single")]
        edges = [
            Edge(id="e1", source="a", target="b", source_handle="right-source"),
            Edge(id="e2", source="a", target="a", target_handle="left-source"),
        ]
        errors = check_invariants(nodes, edges, "ghost", registry)

        assert any("more than one outgoing" in e for e in errors)
        assert any("self-loop" in e for e in errors)
        assert any("non-target handle" in e for e in errors)
        assert any("marker" in e for e in errors)


# ============================================================
# Connection Gesture Tests
# ============================================================

class TestConnectionGesture:
    """Tests for the drag-to-connect state machine."""

    @pytest.fixture
    def graph(self, store):
        for node_id in ("a", "b", "c"):
            add_single(store, node_id)
        return store

    def test_begin_drag(self, graph, gesture):
        assert gesture.begin_drag("a", "right-source") is True
        assert gesture.phase == GesturePhase.DRAGGING
        assert gesture.active.source_node_id == "a"
        assert graph.connecting_from == "a"

    def test_second_begin_is_ignored(self, graph, gesture):
        gesture.begin_drag("a", "right-source")
        assert gesture.begin_drag("b", "right-source") is False

        assert gesture.phase == GesturePhase.DRAGGING
        assert gesture.active.source_node_id == "a"
        assert graph.connecting_from == "a"

    def test_begin_from_target_handle_is_ignored(self, graph, gesture):
        assert gesture.begin_drag("a", "left-target") is False
        assert gesture.phase == GesturePhase.IDLE
        assert graph.connecting_from is None

    def test_begin_from_branching_node_is_ignored(self, store, gesture, fanout):
        switch = fanout.create_branching_node("Switch", Position(0, 0))
        assert gesture.begin_drag(switch.id, "right-source") is False
        assert store.connecting_from is None

    def test_begin_from_missing_node_is_ignored(self, graph, gesture):
        assert gesture.begin_drag("ghost", "right-source") is False
        assert gesture.phase == GesturePhase.IDLE

    def test_accepted_drop(self, graph, gesture):
        gesture.begin_drag("a", "right-source")
        events = []
        graph.subscribe(events.append)

        edge = gesture.drop(ConnectionCandidate(None, "b", target_handle="left-target"))

        assert edge is not None
        assert (edge.source, edge.target) == ("a", "b")
        assert edge.source_handle == "right-source"
        assert graph.connecting_from is None
        assert gesture.phase == GesturePhase.IDLE
        # Edge and marker clear arrive as one commit
        assert len(events) == 1
        assert events[0].added_edges == [edge.id]
        assert events[0].connecting_from is None

    def test_rejected_drop_clears_marker(self, graph, gesture):
        gesture.begin_drag("a", "right-source")

        edge = gesture.drop(ConnectionCandidate(None, "a", target_handle="left-target"))

        assert edge is None
        assert graph.edges == []
        assert graph.connecting_from is None
        assert gesture.phase == GesturePhase.IDLE
        assert "itself" in gesture.last_rejection

    def test_drop_on_second_target_rejected(self, graph, gesture):
        gesture.begin_drag("a", "right-source")
        gesture.drop(ConnectionCandidate(None, "b", target_handle="left-target"))

        gesture.begin_drag("a", "bottom-source")
        edge = gesture.drop(ConnectionCandidate(None, "c", target_handle="top-target"))

        assert edge is None
        assert len(graph.edges) == 1

    def test_drop_without_gesture(self, graph, gesture):
        assert gesture.drop(ConnectionCandidate("a", "b", "right-source", "left-target")) is None
        assert graph.edges == []

    def test_preview_does_not_mutate(self, graph, gesture):
        gesture.begin_drag("a", "right-source")
        version = graph.version

        assert gesture.preview(ConnectionCandidate(None, "b", target_handle="left-target")) is True
        assert gesture.preview(ConnectionCandidate(None, "a", target_handle="left-target")) is False
        assert graph.version == version
        assert gesture.phase == GesturePhase.DRAGGING

    def test_cancel(self, graph, gesture):
        gesture.begin_drag("a", "right-source")
        gesture.cancel()
        assert gesture.phase == GesturePhase.IDLE
        assert graph.connecting_from is None
        assert graph.edges == []

    def test_cancel_repairs_leaked_marker(self, graph, gesture):
        graph.set_connecting_from("b")
        gesture.cancel()
        assert graph.connecting_from is None

    def test_cancel_when_idle_is_noop(self, graph, gesture):
        version = graph.version
        gesture.cancel()
        assert graph.version == version

    def test_deleting_drag_source_ends_gesture(self, session):
        a = session.add_module_node("Load", Position(0, 0))
        session.gesture.begin_drag(a.id, "right-source")

        session.delete_node(a.id)

        assert session.gesture.phase == GesturePhase.IDLE
        assert session.store.connecting_from is None


# ============================================================
# Invariant Preservation
# ============================================================

class TestInvariantPreservation:
    """Random edit sequences never leave the graph inconsistent."""

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024])
    def test_random_edits(self, session, seed):
        rng = random.Random(seed)
        sources = handle_ids(HandleRole.SOURCE)
        targets = handle_ids(HandleRole.TARGET)
        modules = ["Load", "Transform", "Filter", "Switch", "Condition", "Fan Out"]

        for _ in range(150):
            nodes = session.store.nodes
            action = rng.choice(["add", "add", "edge", "edge", "edge", "remove", "unlink", "count", "gesture"])

            try:
                if action == "add" or not nodes:
                    session.add_module_node(
                        rng.choice(modules),
                        Position(rng.uniform(-500, 500), rng.uniform(-500, 500)),
                        output_count=rng.randint(0, 5),
                    )
                elif action == "edge":
                    source, target = rng.choice(nodes), rng.choice(nodes)
                    session.store.add_edge(source.id, target.id, rng.choice(sources), rng.choice(targets))
                elif action == "remove":
                    session.delete_node(rng.choice(nodes).id)
                elif action == "unlink" and session.store.edges:
                    session.store.remove_edge(rng.choice(session.store.edges).id)
                elif action == "count":
                    session.fanout.set_output_count(rng.choice(nodes).id, rng.randint(-1, 10))
                elif action == "gesture":
                    session.gesture.begin_drag(rng.choice(nodes).id, rng.choice(sources + targets))
                    if rng.random() < 0.5:
                        session.gesture.drop(ConnectionCandidate(None, rng.choice(nodes).id, None, rng.choice(targets)))
                    else:
                        session.gesture.cancel()
            except FlowEditError:
                pass

            assert invariant_errors(session.store) == []
            assert session.store.connecting_from is None or session.gesture.phase == GesturePhase.DRAGGING
