# neural_mindmap_core/api/server.py

import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from neural_mindmap_core import __version__
from neural_mindmap_core.collaborators import (
    HashingEmbeddingProvider, InMemoryGraphStore, RadialVisualizationAdapter, StructuralInsightGenerator
)
from neural_mindmap_core.config import MindMapConfig
from neural_mindmap_core.custom_logger import get_logger
from neural_mindmap_core.errors import MindMapError
from neural_mindmap_core.neural_mindmap_core import NeuralMindMapCore

logger = get_logger("neural_mindmap_core.api")


# --- Request models ---

class GraphPayload(BaseModel):
    """Raw concept graph as a graph store would return it."""
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class GenerateRequest(BaseModel):
    expand_knowledge: bool = False
    expansion_timeout: Optional[float] = None
    expansion_depth: Optional[int] = None
    focus_concepts: List[str] = Field(default_factory=list)
    preferred_model: str = "balanced"
    include_meta_insights: bool = True
    include_visualization: bool = True
    similarity_threshold: Optional[float] = None
    network_depth: Optional[int] = None
    derive_similarity_connections: Optional[bool] = None


class EvolveRequest(BaseModel):
    creativity_factor: Optional[float] = Field(default=None, description="Novelty level in [0, 1]")
    evolution_steps: Optional[int] = None
    novel_concepts: Optional[int] = None
    preserve_core_concepts: bool = True
    introduce_novel_concepts: bool = True
    prune_below_relevance: float = 0.0
    include_meta_insights: bool = True


class MergeRequest(BaseModel):
    source_contexts: List[str]
    target_context: str
    similarity_threshold: Optional[float] = None
    include_visualization: bool = False


class InsightRequest(BaseModel):
    insight_types: List[str] = Field(default_factory=lambda: ["structural", "semantic", "emergent", "gap"])
    max_insights_per_type: int = 5
    min_confidence: float = 0.7


def build_default_core(config: Optional[MindMapConfig] = None) -> NeuralMindMapCore:
    """Core wired to the local collaborators shipped with the package."""
    config = config or MindMapConfig.from_env()
    return NeuralMindMapCore(
        config=config,
        embedding_provider=HashingEmbeddingProvider(config.embedding_dimension),
        graph_store=InMemoryGraphStore(),
        insight_generator=StructuralInsightGenerator(),
        visualization_adapter=RadialVisualizationAdapter(),
    )


def _core(request: Request) -> NeuralMindMapCore:
    core = getattr(request.app.state, "core", None)
    if core is None:
        raise HTTPException(status_code=503, detail="Mind map core not available")
    return core


def create_app(core: Optional[NeuralMindMapCore] = None) -> FastAPI:
    """Create the FastAPI app. A prebuilt ``core`` is used as is; otherwise one is built from the environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("API", "Starting Neural Mind Map API server...")
        app.state.startup_time = time.time()
        app.state.core = core if core is not None else build_default_core()
        yield
        logger.info("API", "Neural Mind Map API server shut down")

    app = FastAPI(
        title="Neural Mind Map API",
        description="Generate, evolve and merge neural mind maps",
        version=__version__,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MindMapError)
    async def mindmap_error_handler(request: Request, exc: MindMapError):
        logger.warning("API", f"{request.method} {request.url.path} failed: {exc.message}", {"error_type": type(exc).__name__})
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.message, "error_type": type(exc).__name__}
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Invalid request body", "details": jsonable_encoder(exc.errors()), "error_type": "ValidationError"}
        )

    @app.get("/health")
    async def health_check(request: Request):
        core = _core(request)
        return {
            "success": True,
            "data": {
                "status": "healthy",
                "uptime_seconds": time.time() - request.app.state.startup_time,
                "map_count": len(core.store),
                "version": __version__
            }
        }

    @app.get("/stats")
    async def get_stats(request: Request):
        return {"success": True, "data": _core(request).get_stats()}

    @app.put("/graphs/{user_id}/{context}")
    async def put_graph(user_id: str, context: str, payload: GraphPayload, request: Request):
        store = _core(request).graph_store
        if not hasattr(store, "put_graph"):
            raise HTTPException(status_code=405, detail="Configured graph store is read-only")
        await store.put_graph(user_id, context, payload.model_dump())
        return {"success": True, "data": {"nodes": len(payload.nodes), "edges": len(payload.edges)}}

    @app.post("/mindmaps/{user_id}/{context}/generate")
    async def generate_mind_map(user_id: str, context: str, request: Request, body: Optional[GenerateRequest] = None):
        options = (body or GenerateRequest()).model_dump(exclude_none=True)
        structure = await _core(request).generate(user_id, context, options)
        return {"success": True, "data": structure.to_dict()}

    @app.post("/mindmaps/{user_id}/{context}/evolve")
    async def evolve_mind_map(user_id: str, context: str, request: Request, body: Optional[EvolveRequest] = None):
        options = (body or EvolveRequest()).model_dump(exclude_none=True)
        structure = await _core(request).evolve(user_id, context, options)
        return {"success": True, "data": structure.to_dict()}

    @app.post("/mindmaps/{user_id}/merge")
    async def merge_mind_maps(user_id: str, body: MergeRequest, request: Request):
        options = body.model_dump(exclude_none=True, exclude={"source_contexts", "target_context"})
        structure = await _core(request).merge(user_id, body.source_contexts, body.target_context, options)
        return {"success": True, "data": structure.to_dict()}

    @app.get("/mindmaps/{user_id}/{context}")
    async def get_mind_map(user_id: str, context: str, request: Request, include_embeddings: bool = False):
        structure = _core(request).get(user_id, context)
        if structure is None:
            return JSONResponse(
                status_code=404,
                content={
                    "success": False,
                    "error": f"No existing neural mind map found for user {user_id}, context {context}",
                    "error_type": "NotFoundError"
                }
            )
        return {"success": True, "data": structure.to_dict(include_embeddings=include_embeddings)}

    @app.post("/mindmaps/{user_id}/{context}/insights")
    async def extract_insights(user_id: str, context: str, request: Request, body: Optional[InsightRequest] = None):
        options = (body or InsightRequest()).model_dump()
        insights = await _core(request).extract_cognitive_insights(user_id, context, options)
        return {"success": True, "data": [i.to_dict() for i in insights]}

    return app


app = create_app()
