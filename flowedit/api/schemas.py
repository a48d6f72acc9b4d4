"""
Pydantic Schemas for API Request/Response Models.

These schemas define the structure of data flowing through the API,
providing automatic validation and documentation.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================
# Shared Schemas
# ============================================================

class PositionModel(BaseModel):
    """A canvas position."""
    x: float = 0.0
    y: float = 0.0


class NodeData(BaseModel):
    """Module data carried by a node."""
    label: str = ""
    moduleName: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    parentNodeId: Optional[str] = None
    outputIndex: Optional[int] = None
    outputCount: Optional[int] = None


class NodeModel(BaseModel):
    """A node in the flow export format."""
    id: str = Field(..., min_length=1)
    type: str
    position: PositionModel
    width: Optional[float] = None
    height: Optional[float] = None
    data: NodeData


class EdgeModel(BaseModel):
    """An edge in the flow export format."""
    id: str = Field(..., min_length=1)
    source: str
    target: str
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None


class FlowDocument(BaseModel):
    """A whole flow: ``{"nodes": [...], "edges": [...]}``."""
    nodes: List[NodeModel] = Field(default_factory=list)
    edges: List[EdgeModel] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "nodes": [
                    {
                        "id": "load_1",
                        "type": "single",
                        "position": {"x": 0, "y": 0},
                        "width": 150,
                        "height": 80,
                        "data": {"label": "Load", "moduleName": "Load", "params": {"path": "in.csv"}},
                    },
                    {
                        "id": "filter_1",
                        "type": "single",
                        "position": {"x": 250, "y": 0},
                        "width": 150,
                        "height": 80,
                        "data": {"label": "Filter", "moduleName": "Filter", "params": {"predicate": "x > 1"}},
                    },
                ],
                "edges": [
                    {
                        "id": "edge_load_1_right-source_filter_1_left-target",
                        "source": "load_1",
                        "target": "filter_1",
                        "sourceHandle": "right-source",
                        "targetHandle": "left-target",
                    }
                ],
            }
        }


class FlowSnapshot(FlowDocument):
    """A flow plus the live gesture marker, as sent to renderers."""
    connectingFrom: Optional[str] = None
    version: int = 0


# ============================================================
# Session Schemas
# ============================================================

class SessionCreateRequest(BaseModel):
    """Request to open a new editing session."""
    name: str = Field("", description="Display name of the flow")
    flow: Optional[FlowDocument] = Field(None, description="Flow to start from (empty if omitted)")

    class Config:
        json_schema_extra = {
            "example": {
                "name": "ingest pipeline",
            }
        }


class SessionInfoResponse(BaseModel):
    """Summary of an editing session."""
    session_id: str
    name: str
    node_count: int
    edge_count: int
    version: int
    gesture: str
    created_at: str
    updated_at: str


class SessionListResponse(BaseModel):
    """Response listing all sessions."""
    sessions: List[SessionInfoResponse]
    total: int


class SessionDetailResponse(SessionInfoResponse):
    """A session with its full flow."""
    flow: FlowSnapshot


# ============================================================
# Node Schemas
# ============================================================

class NodeCreateRequest(BaseModel):
    """Request to drop a module onto the canvas."""
    module: str = Field(..., description="Catalog module name")
    position: PositionModel = Field(default_factory=PositionModel)
    output_count: Optional[int] = Field(None, description="Initial output count (branching modules)", ge=0)
    params: Dict[str, Any] = Field(default_factory=dict, description="Initial parameter values")

    class Config:
        json_schema_extra = {
            "example": {
                "module": "Switch",
                "position": {"x": 400, "y": 120},
                "output_count": 3,
            }
        }


class NodeCreateResponse(BaseModel):
    """Response after adding a node."""
    node: NodeModel
    outputs: List[NodeModel] = Field(default_factory=list, description="Generated branching outputs")


class NodeDeleteResponse(BaseModel):
    """Response after deleting a node."""
    removed: List[str]
    message: str = "Node deleted"


class NodeMoveRequest(BaseModel):
    x: float
    y: float


class ParamsUpdateRequest(BaseModel):
    params: Dict[str, Any]


class OutputCountRequest(BaseModel):
    """Request to change a branching node's output count."""
    output_count: int = Field(..., description="Desired number of outputs")


class OutputValueRequest(BaseModel):
    value: Any = Field(..., description="New list-param value of the output")


class OutputOrderRequest(BaseModel):
    index: int = Field(..., description="New slot of the output", ge=0)


class OutputAddRequest(BaseModel):
    value: Optional[Any] = Field(None, description="Value of the new output (list-param modules)")


class FanoutResponse(BaseModel):
    """Outcome of a branching output operation."""
    status: str
    node_id: Optional[str]
    output_count: Optional[int]
    added: List[str]
    removed: List[str]
    removed_edges: List[str]
    message: str = ""


# ============================================================
# Gesture Schemas
# ============================================================

class GestureBeginRequest(BaseModel):
    """Mouse-down on a handle."""
    node_id: str
    handle_id: str = Field(..., description="Handle tag, e.g. 'right-source'")


class ConnectionCandidateModel(BaseModel):
    """A prospective connection; the source defaults to the drag origin."""
    source: Optional[str] = None
    target: Optional[str] = None
    sourceHandle: Optional[str] = None
    targetHandle: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "target": "filter_1",
                "targetHandle": "left-target",
            }
        }


class GestureStateResponse(BaseModel):
    """Gesture state after a begin/cancel."""
    phase: str
    started: bool = False
    source_node_id: Optional[str] = None
    source_handle: Optional[str] = None
    connectingFrom: Optional[str] = None


class PreviewResponse(BaseModel):
    valid: bool
    reason: Optional[str] = None


class DropResponse(BaseModel):
    """Result of releasing a drag over a target."""
    accepted: bool
    edge: Optional[EdgeModel] = None
    reason: Optional[str] = None


# ============================================================
# Minimap and Validation Schemas
# ============================================================

class MinimapRequest(BaseModel):
    """Viewport and canvas size for a minimap projection."""
    x: float = 0.0
    y: float = 0.0
    zoom: float = Field(1.0, gt=0)
    canvas_width: float = Field(..., gt=0)
    canvas_height: float = Field(..., gt=0)

    class Config:
        json_schema_extra = {
            "example": {"x": -100, "y": -40, "zoom": 1.5, "canvas_width": 1280, "canvas_height": 720}
        }


class MinimapResponse(BaseModel):
    """A minimap projection; ``empty`` is true when there is nothing to draw."""
    empty: bool
    bounds: Optional[Dict[str, float]] = None
    scale: Optional[float] = None
    viewport: Optional[Dict[str, float]] = None
    nodes: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class FlowValidationResponse(BaseModel):
    """Completeness check of a flow."""
    is_valid: bool
    message: str
    errors: List[str]
    unconnected: List[str]
    missing_params: Dict[str, List[str]]


# ============================================================
# Catalog Schemas
# ============================================================

class ModuleInfo(BaseModel):
    """Information about a catalog module."""
    name: str
    description: str
    variant: str
    params: Dict[str, str]
    output_count: Optional[Dict[str, Optional[int]]] = None
    output_kind: Optional[str] = None
    list_param_name: Optional[str] = None
    output_labels: List[str] = Field(default_factory=list)
    child_deletion: Optional[str] = None
    show_menu: bool = True
    default_output_count: int = 1


class ModuleListResponse(BaseModel):
    """Response listing all catalog modules."""
    modules: List[ModuleInfo]
    total: int


class NodeTypeInfo(BaseModel):
    """Capabilities of a node-type variant."""
    variant: str
    name: str
    description: str
    has_target_handles: bool
    has_source_handles: bool
    can_start_connection: bool
    css_class: str
    default_width: float
    default_height: float
    z_index: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
