"""
Tests for the minimap projection.
"""

import pytest

from flowedit.engine.graph import Edge, Node, Position
from flowedit.engine.minimap import MinimapSize, Viewport, node_bounds, project_minimap


def node(node_id, x, y, width=None, height=None):
    return Node(id=node_id, variant="single", position=Position(x, y), width=width, height=height)


class TestMinimapProjection:
    """Tests for project_minimap."""

    def test_empty_graph(self):
        assert project_minimap([], Viewport(), 800, 600) is None

    def test_bounds_use_default_size_and_padding(self):
        bounds = node_bounds([node("a", 0, 0)])
        assert (bounds.min_x, bounds.min_y, bounds.max_x, bounds.max_y) == (-50, -50, 170, 110)
        assert (bounds.width, bounds.height) == (220, 160)

    def test_scale_preserves_aspect(self):
        projection = project_minimap([node("a", 0, 0)], Viewport(), 800, 600)
        # x: 180 / 220, y: 120 / 160; the smaller one wins
        assert projection.scale == pytest.approx(0.75)

    def test_node_rect(self):
        projection = project_minimap([node("a", 0, 0)], Viewport(), 800, 600)
        rect = projection.nodes["a"]
        assert (rect.x, rect.y) == (pytest.approx(57.5), pytest.approx(57.5))
        assert (rect.width, rect.height) == (pytest.approx(90), pytest.approx(45))

    def test_viewport_rect(self):
        projection = project_minimap([node("a", 0, 0)], Viewport(0, 0, 1), 800, 600)
        view = projection.viewport
        assert view.x == pytest.approx(57.5)
        assert view.y == pytest.approx(57.5)
        assert view.width == pytest.approx(600)
        assert view.height == pytest.approx(450)

    def test_viewport_pan_and_zoom(self):
        projection = project_minimap([node("a", 0, 0)], Viewport(-100, 0, 2), 800, 600)
        view = projection.viewport
        # Visible area starts at x = 100 / 2 = 50 in flow coordinates
        assert view.x == pytest.approx((50 + 50) * 0.75 + 20)
        assert view.width == pytest.approx(800 / 2 * 0.75)

    def test_all_nodes_fit(self):
        nodes = [node("a", -300, 40, 150, 80), node("b", 900, -200), node("c", 120, 700, 170, 210)]
        size = MinimapSize()
        projection = project_minimap(nodes, Viewport(), 800, 600, minimap=size)

        for rect in projection.nodes.values():
            assert rect.x >= size.padding - 1e-9
            assert rect.y >= size.padding - 1e-9
            assert rect.x + rect.width <= size.width - size.padding + 1e-9
            assert rect.y + rect.height <= size.height - size.padding + 1e-9

    def test_edges_join_centers(self):
        nodes = [node("a", 0, 0), node("b", 300, 0)]
        edges = [Edge(id="e", source="a", target="b"), Edge(id="x", source="a", target="ghost")]
        projection = project_minimap(nodes, Viewport(), 800, 600, edges=edges)

        assert [line["id"] for line in projection.edges] == ["e"]
        a, b = projection.nodes["a"], projection.nodes["b"]
        line = projection.edges[0]
        assert line["x1"] == pytest.approx(a.x + a.width / 2)
        assert line["x2"] == pytest.approx(b.x + b.width / 2)

    def test_zoom_must_be_positive(self):
        with pytest.raises(ValueError):
            Viewport(0, 0, 0)

    def test_to_dict(self):
        projection = project_minimap([node("a", 0, 0)], Viewport(), 800, 600)
        data = projection.to_dict()
        assert data["bounds"]["width"] == 220
        assert set(data["viewport"]) == {"x", "y", "width", "height"}
        assert "a" in data["nodes"]
