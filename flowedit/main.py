"""
FlowEdit - FastAPI Application Entry Point.

Server side of a visual flow editor: keeps each session's node graph
consistent while users connect nodes and resize branching nodes.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging

from flowedit.config import settings
from flowedit.api.routes import catalog, sessions, websocket
from flowedit.engine.graph import Position
from flowedit.engine.session import EditingSession
from flowedit.storage.memory import session_storage

# Import builtin modules to register them
import flowedit.catalog.builtin  # noqa: F401


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_demo_flow(session: EditingSession) -> None:
    """Load -> Switch(2 cases) with one case wired to a Filter."""
    load = session.add_module_node("Load", Position(0, 100), params={"path": "records.csv"})
    switch = session.add_module_node("Switch", Position(250, 60), output_count=2)
    session.fanout.set_output_value(session.store.children_of(switch.id)[0].id, "orders")
    session.fanout.set_output_value(session.store.children_of(switch.id)[1].id, "refunds")
    session.update_params(switch.id, {"field": "kind"})
    target = session.add_module_node("Filter", Position(550, 60), params={"predicate": "amount > 0"})

    session.store.add_edge(load.id, switch.id, "right-source", "left-target")
    first_case = session.store.children_of(switch.id)[0]
    session.store.add_edge(first_case.id, target.id, "right-source", "left-target")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    # Open the demo session
    if not await session_storage.exists(settings.DEMO_SESSION_ID):
        demo = await session_storage.create(name="Demo flow", session_id=settings.DEMO_SESSION_ID)
        build_demo_flow(demo)

    yield

    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    description="""
## Flow Editor API

Connection engine for a node-based flow editor.

### Features
- **Nodes**: Catalog modules dropped onto a canvas
- **Edges**: One outgoing connection per node, drawn with a drag gesture
- **Branching**: Nodes that fan out through generated output nodes
- **Import/Export**: Flows as `{"nodes": [...], "edges": [...]}` documents
- **Real-time Updates**: WebSocket stream of every committed change

### Quick Start
1. List available modules: `GET /catalog`
2. Open a session: `POST /sessions/create`
3. Add nodes: `POST /sessions/{id}/nodes`
4. Connect them: `POST /sessions/{id}/gesture/begin`, then `.../gesture/drop`

### Demo Session
A pre-built flow is available with session ID: `demo`
    """,
    version=settings.APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(sessions.router)
app.include_router(catalog.router)
app.include_router(websocket.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "Connection engine for a visual flow editor",
        "docs": "/docs",
        "redoc": "/redoc",
        "endpoints": {
            "sessions": "/sessions",
            "catalog": "/catalog",
            "websocket": "/ws/sessions/{session_id}",
        },
        "demo_session": settings.DEMO_SESSION_ID,
    }


@app.get("/health", tags=["Root"])
async def health():
    """Health check endpoint."""
    from flowedit.catalog.registry import module_catalog

    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "sessions_count": len(session_storage),
        "modules_count": len(module_catalog),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
        },
    )
