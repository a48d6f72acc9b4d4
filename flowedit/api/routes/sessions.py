"""
Session API Routes.

Endpoints for opening editing sessions and editing their flows: nodes,
branching outputs, connection gestures, import/export, minimap and
completeness checks.
"""

from typing import Any, Dict, NoReturn
from fastapi import APIRouter, HTTPException, status
import logging

from flowedit.api.schemas import (
    ConnectionCandidateModel,
    DropResponse,
    EdgeModel,
    ErrorResponse,
    FanoutResponse,
    FlowDocument,
    FlowSnapshot,
    FlowValidationResponse,
    GestureBeginRequest,
    GestureStateResponse,
    MinimapRequest,
    MinimapResponse,
    NodeCreateRequest,
    NodeCreateResponse,
    NodeDeleteResponse,
    NodeModel,
    NodeMoveRequest,
    OutputAddRequest,
    OutputCountRequest,
    OutputOrderRequest,
    OutputValueRequest,
    ParamsUpdateRequest,
    PreviewResponse,
    SessionCreateRequest,
    SessionDetailResponse,
    SessionInfoResponse,
    SessionListResponse,
)
from flowedit.config import settings
from flowedit.engine.errors import (
    DanglingReference,
    DeletionBlocked,
    FlowEditError,
    InvalidConnection,
    InvariantViolation,
    NodeNotFound,
    UnknownModule,
    UnknownNodeType,
)
from flowedit.engine.fanout import FanoutResult, FanoutStatus
from flowedit.engine.graph import Position
from flowedit.engine.minimap import MinimapSize, Viewport, project_minimap
from flowedit.engine.session import EditingSession
from flowedit.engine.validator import ConnectionCandidate, connection_rejection
from flowedit.storage.memory import session_storage


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["Sessions"])


# ============================================================
# Helpers
# ============================================================

_ERROR_STATUS = {
    NodeNotFound: 404,
    UnknownModule: 404,
    UnknownNodeType: 422,
    InvariantViolation: 409,
    DeletionBlocked: 409,
    DanglingReference: 409,
    InvalidConnection: 409,
}

_FANOUT_STATUS = {
    FanoutStatus.NOT_FOUND: 404,
    FanoutStatus.NOT_BRANCHING: 400,
    FanoutStatus.UNSUPPORTED: 400,
    FanoutStatus.BLOCKED: 409,
    FanoutStatus.OUT_OF_RANGE: 422,
}


def _raise_http(exc: FlowEditError) -> NoReturn:
    """Translate an engine error into the matching HTTP error."""
    for error_type, code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            raise HTTPException(status_code=code, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _get_session(session_id: str) -> EditingSession:
    session = await session_storage.get(session_id)
    if not session:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


def _fanout_response(result: FanoutResult) -> FanoutResponse:
    code = _FANOUT_STATUS.get(result.status)
    if code is not None:
        raise HTTPException(status_code=code, detail=result.message)
    return FanoutResponse(**result.to_dict())


def _snapshot(session: EditingSession) -> FlowSnapshot:
    return FlowSnapshot(**session.store.snapshot())


def _gesture_state(session: EditingSession, started: bool = False) -> GestureStateResponse:
    active = session.gesture.active
    return GestureStateResponse(
        phase=session.gesture.phase.value,
        started=started,
        source_node_id=active.source_node_id if active else None,
        source_handle=active.source_handle if active else None,
        connectingFrom=session.store.connecting_from,
    )


def _candidate(model: ConnectionCandidateModel) -> ConnectionCandidate:
    return ConnectionCandidate(
        source=model.source,
        target=model.target,
        source_handle=model.sourceHandle,
        target_handle=model.targetHandle,
    )


def _document(flow: FlowDocument) -> Dict[str, Any]:
    return flow.model_dump(exclude_none=True)


# ============================================================
# Session Endpoints
# ============================================================

@router.post(
    "/create",
    response_model=SessionDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        409: {"model": ErrorResponse, "description": "Initial flow is inconsistent"},
        422: {"model": ErrorResponse, "description": "Unknown node type in initial flow"},
    }
)
async def create_session(request: SessionCreateRequest) -> SessionDetailResponse:
    """
    Open a new editing session.

    Optionally starts from an exported flow document.
    """
    session = await session_storage.create(name=request.name)
    if request.flow is not None:
        try:
            session.load(_document(request.flow))
        except FlowEditError as e:
            await session_storage.delete(session.session_id)
            _raise_http(e)

    logger.info(f"Created session: {session.session_id} ({session.name})")
    return SessionDetailResponse(**session.to_dict(), flow=_snapshot(session))


@router.get(
    "/",
    response_model=SessionListResponse,
)
async def list_sessions() -> SessionListResponse:
    """List all open sessions."""
    sessions = await session_storage.list_all()
    infos = [SessionInfoResponse(**session.to_dict()) for session in sessions]
    return SessionListResponse(sessions=infos, total=len(infos))


@router.get(
    "/{session_id}",
    response_model=SessionDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_session(session_id: str) -> SessionDetailResponse:
    """Get a session with its current flow and gesture marker."""
    session = await _get_session(session_id)
    return SessionDetailResponse(**session.to_dict(), flow=_snapshot(session))


@router.delete(
    "/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_session(session_id: str):
    """Close a session."""
    deleted = await session_storage.delete(session_id)
    if not deleted:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")


# ============================================================
# Node Endpoints
# ============================================================

@router.post(
    "/{session_id}/nodes",
    response_model=NodeCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse, "description": "Session or module not found"}},
)
async def add_node(session_id: str, request: NodeCreateRequest) -> NodeCreateResponse:
    """
    Drop a catalog module onto the canvas.

    Branching modules are created together with their outputs; a requested
    output count outside the module's bounds is clamped.
    """
    session = await _get_session(session_id)
    async with session.lock:
        try:
            node = session.add_module_node(
                request.module,
                Position(request.position.x, request.position.y),
                output_count=request.output_count,
                params=request.params,
            )
        except FlowEditError as e:
            _raise_http(e)
        outputs = session.store.children_of(node.id) if node.is_branching else []

    return NodeCreateResponse(
        node=NodeModel(**node.to_dict()),
        outputs=[NodeModel(**child.to_dict()) for child in outputs],
    )


@router.delete(
    "/{session_id}/nodes/{node_id}",
    response_model=NodeDeleteResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Output cannot be deleted on its own"},
    }
)
async def delete_node(session_id: str, node_id: str) -> NodeDeleteResponse:
    """
    Delete a node and everything attached to it.

    Deleting a branching node removes its outputs; deleting a single output
    is only allowed when its module permits it.
    """
    session = await _get_session(session_id)
    async with session.lock:
        try:
            removed = session.delete_node(node_id)
        except FlowEditError as e:
            _raise_http(e)
    return NodeDeleteResponse(removed=removed)


@router.patch(
    "/{session_id}/nodes/{node_id}/position",
    response_model=NodeModel,
    responses={404: {"model": ErrorResponse}},
)
async def move_node(session_id: str, node_id: str, request: NodeMoveRequest) -> NodeModel:
    """Move a node; branching nodes carry their outputs along."""
    session = await _get_session(session_id)
    async with session.lock:
        try:
            node = session.move_node(node_id, request.x, request.y)
        except FlowEditError as e:
            _raise_http(e)
    return NodeModel(**node.to_dict())


@router.patch(
    "/{session_id}/nodes/{node_id}/params",
    response_model=NodeModel,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def update_params(session_id: str, node_id: str, request: ParamsUpdateRequest) -> NodeModel:
    """Merge parameter values into a node."""
    session = await _get_session(session_id)
    async with session.lock:
        try:
            node = session.update_params(node_id, request.params)
        except FlowEditError as e:
            _raise_http(e)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return NodeModel(**node.to_dict())


# ============================================================
# Branching Output Endpoints
# ============================================================

@router.put(
    "/{session_id}/nodes/{node_id}/output-count",
    response_model=FanoutResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Not a branching node"},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "Count outside the module's bounds"},
    }
)
async def set_output_count(session_id: str, node_id: str, request: OutputCountRequest) -> FanoutResponse:
    """Grow or shrink a branching node's outputs."""
    session = await _get_session(session_id)
    async with session.lock:
        result = session.fanout.set_output_count(node_id, request.output_count)
    return _fanout_response(result)


@router.post(
    "/{session_id}/nodes/{node_id}/outputs",
    response_model=FanoutResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"model": ErrorResponse, "description": "Not a branching node"},
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "Module allows no more outputs"},
    }
)
async def add_output(session_id: str, node_id: str, request: OutputAddRequest) -> FanoutResponse:
    """Append one output to a branching node."""
    session = await _get_session(session_id)
    async with session.lock:
        result = session.fanout.add_output(node_id, value=request.value)
    return _fanout_response(result)


@router.patch(
    "/{session_id}/nodes/{node_id}/value",
    response_model=FanoutResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def set_output_value(session_id: str, node_id: str, request: OutputValueRequest) -> FanoutResponse:
    """Set the value of a list-param output."""
    session = await _get_session(session_id)
    async with session.lock:
        result = session.fanout.set_output_value(node_id, request.value)
    return _fanout_response(result)


@router.patch(
    "/{session_id}/nodes/{node_id}/order",
    response_model=FanoutResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def reorder_output(session_id: str, node_id: str, request: OutputOrderRequest) -> FanoutResponse:
    """Move a list-param output to another slot."""
    session = await _get_session(session_id)
    async with session.lock:
        result = session.fanout.reorder_output(node_id, request.index)
    return _fanout_response(result)


# ============================================================
# Edge and Gesture Endpoints
# ============================================================

@router.delete(
    "/{session_id}/edges/{edge_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}},
)
async def delete_edge(session_id: str, edge_id: str):
    """Delete an edge."""
    session = await _get_session(session_id)
    async with session.lock:
        if not session.store.remove_edge(edge_id):
            raise HTTPException(status_code=404, detail=f"Edge '{edge_id}' not found")


@router.post(
    "/{session_id}/gesture/begin",
    response_model=GestureStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def begin_gesture(session_id: str, request: GestureBeginRequest) -> GestureStateResponse:
    """
    Start dragging a connection from a source handle.

    Ignored (``started`` is false) while another drag is active or when the
    handle or node cannot start a connection.
    """
    session = await _get_session(session_id)
    async with session.lock:
        started = session.gesture.begin_drag(request.node_id, request.handle_id)
        return _gesture_state(session, started=started)


@router.post(
    "/{session_id}/gesture/preview",
    response_model=PreviewResponse,
    responses={404: {"model": ErrorResponse}},
)
async def preview_gesture(session_id: str, request: ConnectionCandidateModel) -> PreviewResponse:
    """Check whether releasing over a target would create an edge."""
    session = await _get_session(session_id)
    reason = connection_rejection(session.store, session.gesture.complete(_candidate(request)))
    return PreviewResponse(valid=reason is None, reason=reason)


@router.post(
    "/{session_id}/gesture/drop",
    response_model=DropResponse,
    responses={404: {"model": ErrorResponse}},
)
async def drop_gesture(session_id: str, request: ConnectionCandidateModel) -> DropResponse:
    """
    Release a drag over a target.

    A rejected connection is not an error: the gesture ends, the marker is
    cleared and ``accepted`` is false.
    """
    session = await _get_session(session_id)
    async with session.lock:
        edge = session.gesture.drop(_candidate(request))
        reason = session.gesture.last_rejection
    return DropResponse(
        accepted=edge is not None,
        edge=EdgeModel(**edge.to_dict()) if edge is not None else None,
        reason=reason,
    )


@router.post(
    "/{session_id}/gesture/cancel",
    response_model=GestureStateResponse,
    responses={404: {"model": ErrorResponse}},
)
async def cancel_gesture(session_id: str) -> GestureStateResponse:
    """Abandon the current drag (safe to call at any time)."""
    session = await _get_session(session_id)
    async with session.lock:
        session.gesture.cancel()
        return _gesture_state(session)


# ============================================================
# Flow Endpoints
# ============================================================

@router.get(
    "/{session_id}/export",
    response_model=FlowDocument,
    responses={404: {"model": ErrorResponse}},
)
async def export_flow(session_id: str) -> FlowDocument:
    """Export the flow as ``{"nodes": [...], "edges": [...]}``."""
    session = await _get_session(session_id)
    return FlowDocument(**session.store.to_dict())


@router.post(
    "/{session_id}/import",
    response_model=FlowSnapshot,
    responses={
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Document is not a consistent flow"},
        422: {"model": ErrorResponse, "description": "Unknown node type"},
    }
)
async def import_flow(session_id: str, request: FlowDocument) -> FlowSnapshot:
    """Replace the session's flow with an exported document (all or nothing)."""
    session = await _get_session(session_id)
    async with session.lock:
        try:
            session.load(_document(request))
        except FlowEditError as e:
            _raise_http(e)
        return _snapshot(session)


@router.post(
    "/{session_id}/minimap",
    response_model=MinimapResponse,
    responses={404: {"model": ErrorResponse}},
)
async def minimap(session_id: str, request: MinimapRequest) -> MinimapResponse:
    """Project the flow and the visible viewport into minimap coordinates."""
    session = await _get_session(session_id)
    projection = project_minimap(
        session.store.nodes,
        Viewport(request.x, request.y, request.zoom),
        request.canvas_width,
        request.canvas_height,
        edges=session.store.edges,
        minimap=MinimapSize(settings.MINIMAP_WIDTH, settings.MINIMAP_HEIGHT, settings.MINIMAP_PADDING),
    )
    if projection is None:
        return MinimapResponse(empty=True)
    return MinimapResponse(empty=False, **projection.to_dict())


@router.get(
    "/{session_id}/validate",
    response_model=FlowValidationResponse,
    responses={404: {"model": ErrorResponse}},
)
async def validate_flow(session_id: str) -> FlowValidationResponse:
    """Check that every output is connected and every required param is set."""
    session = await _get_session(session_id)
    return FlowValidationResponse(**session.validate().to_dict())
