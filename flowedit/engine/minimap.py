"""
Minimap projection.

A pure geometric transform of node positions into minimap coordinates: the
node bounding box (plus padding) is scaled uniformly to fit the minimap and
the visible viewport is projected the same way.
"""

from typing import Any, Dict, List, Optional, Sequence
from dataclasses import asdict, dataclass, field

from flowedit.engine.graph import Edge, Node


DEFAULT_NODE_WIDTH = 120.0
DEFAULT_NODE_HEIGHT = 60.0
BOUNDS_PADDING = 50.0


@dataclass(frozen=True)
class Viewport:
    """Pan offset and zoom of the canvas view."""
    x: float = 0.0
    y: float = 0.0
    zoom: float = 1.0

    def __post_init__(self):
        if self.zoom <= 0:
            raise ValueError("Viewport zoom must be positive")


@dataclass(frozen=True)
class MinimapSize:
    width: float = 220.0
    height: float = 160.0
    padding: float = 20.0


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Bounds:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


@dataclass
class MinimapProjection:
    """Everything a minimap needs to draw itself."""
    bounds: Bounds
    scale: float
    viewport: Rect
    nodes: Dict[str, Rect] = field(default_factory=dict)
    edges: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounds": {**asdict(self.bounds), "width": self.bounds.width, "height": self.bounds.height},
            "scale": self.scale,
            "viewport": asdict(self.viewport),
            "nodes": {node_id: asdict(rect) for node_id, rect in self.nodes.items()},
            "edges": self.edges,
        }


def _size(node: Node):
    return (node.width or DEFAULT_NODE_WIDTH, node.height or DEFAULT_NODE_HEIGHT)


def node_bounds(nodes: Sequence[Node], padding: float = BOUNDS_PADDING) -> Optional[Bounds]:
    """Bounding box of all nodes grown by ``padding`` on every side."""
    if not nodes:
        return None
    min_x = min(node.position.x for node in nodes)
    min_y = min(node.position.y for node in nodes)
    max_x = max(node.position.x + _size(node)[0] for node in nodes)
    max_y = max(node.position.y + _size(node)[1] for node in nodes)
    return Bounds(min_x - padding, min_y - padding, max_x + padding, max_y + padding)


def project_minimap(
    nodes: Sequence[Node],
    viewport: Viewport,
    canvas_width: float,
    canvas_height: float,
    edges: Sequence[Edge] = (),
    minimap: Optional[MinimapSize] = None,
) -> Optional[MinimapProjection]:
    """
    Project the graph and the visible viewport into minimap space.

    Args:
        nodes: Nodes to draw
        viewport: Current pan/zoom
        canvas_width: Width of the visible canvas in screen pixels
        canvas_height: Height of the visible canvas in screen pixels
        edges: Edges to draw as center-to-center lines
        minimap: Minimap dimensions

    Returns:
        The projection, or None for an empty graph
    """
    minimap = minimap or MinimapSize()
    bounds = node_bounds(nodes)
    if bounds is None:
        return None

    scale_x = (minimap.width - minimap.padding * 2) / bounds.width
    scale_y = (minimap.height - minimap.padding * 2) / bounds.height
    scale = min(scale_x, scale_y)

    def to_minimap(x: float, y: float):
        return (x - bounds.min_x) * scale + minimap.padding, (y - bounds.min_y) * scale + minimap.padding

    # The visible area in flow coordinates starts at (-x/zoom, -y/zoom)
    view_x, view_y = to_minimap(-viewport.x / viewport.zoom, -viewport.y / viewport.zoom)
    view = Rect(
        x=view_x,
        y=view_y,
        width=canvas_width / viewport.zoom * scale,
        height=canvas_height / viewport.zoom * scale,
    )

    rects: Dict[str, Rect] = {}
    for node in nodes:
        width, height = _size(node)
        x, y = to_minimap(node.position.x, node.position.y)
        rects[node.id] = Rect(x, y, width * scale, height * scale)

    lines = []
    for edge in edges:
        source = rects.get(edge.source)
        target = rects.get(edge.target)
        if source is None or target is None:
            continue
        lines.append({
            "id": edge.id,
            "x1": source.x + source.width / 2,
            "y1": source.y + source.height / 2,
            "x2": target.x + target.width / 2,
            "y2": target.y + target.height / 2,
        })

    return MinimapProjection(bounds=bounds, scale=scale, viewport=view, nodes=rects, edges=lines)
