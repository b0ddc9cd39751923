import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import MongoSearchCache, SearchCache
from .config import settings
from .db import (
    cache_collection,
    close_mongo_connection,
    connect_to_mongo,
    image_collection,
    mongo_configured,
    ping,
    text_collection,
)
from .errors import EmbeddingGenerationError
from .models import InvalidateRequest, MatchListResponse, MultimodalSearchResult, SearchRequest
from .search_service import MultimodalSearchService, build_cache
from .vector_search import HttpEmbeddingGenerator, MongoVectorIndex

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="Multimodal Search API", version="1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def create_search_service() -> MultimodalSearchService:
    cache: SearchCache
    if settings.cache_enabled and settings.cache_backend == "mongo":
        mongo_cache = MongoSearchCache(cache_collection())
        await mongo_cache.ensure_indexes()
        cache = mongo_cache
    else:
        cache = build_cache(settings)

    return MultimodalSearchService(
        text_index=MongoVectorIndex(
            text_collection(), settings.text_vector_index_name, "text"
        ),
        image_index=MongoVectorIndex(
            image_collection(), settings.image_vector_index_name, "image"
        ),
        embedder=HttpEmbeddingGenerator(settings),
        cache=cache,
        config=settings,
    )


@app.on_event("startup")
async def startup_event():
    await connect_to_mongo(app)
    logger.info("Connected to MongoDB")
    app.state.search_service = await create_search_service()


@app.on_event("shutdown")
async def shutdown_event():
    service: Optional[MultimodalSearchService] = getattr(app.state, "search_service", None)
    if service is not None:
        await service.aclose()
        app.state.search_service = None
    await close_mongo_connection(app)
    logger.info("Closed MongoDB connection")


def get_search_service(request: Request) -> MultimodalSearchService:
    service = getattr(request.app.state, "search_service", None)
    if service is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Search service not ready")
    return service


@app.post("/search", response_model=MultimodalSearchResult)
async def search(req: SearchRequest, service: MultimodalSearchService = Depends(get_search_service)):
    try:
        result = await service.search(req.query, req.max_results, req.user_id)
    except EmbeddingGenerationError as exc:
        logger.error("Embedding generation failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Embedding generation failed") from exc
    except Exception:
        logger.exception("Multimodal search failed")
        raise HTTPException(status_code=500, detail="Internal search error")
    if result.has_error:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.error_message)
    return result


async def _single_branch(kind: str, req: SearchRequest, service: MultimodalSearchService) -> MatchListResponse:
    runner = service.search_text if kind == "text" else service.search_images
    try:
        query, results, metrics = await runner(req.query, req.max_results)
    except ValueError as ve:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(ve)) from ve
    except EmbeddingGenerationError as exc:
        logger.error("Embedding generation failed: %s", exc)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Embedding generation failed") from exc
    except Exception:
        logger.exception("%s search failed", kind)
        raise HTTPException(status_code=500, detail="Internal search error")
    return MatchListResponse(query=query, results=results, metrics=metrics)


@app.post("/search/text", response_model=MatchListResponse)
async def search_text(req: SearchRequest, service: MultimodalSearchService = Depends(get_search_service)):
    return await _single_branch("text", req, service)


@app.post("/search/images", response_model=MatchListResponse)
async def search_images(req: SearchRequest, service: MultimodalSearchService = Depends(get_search_service)):
    return await _single_branch("image", req, service)


@app.post("/cache/invalidate")
async def invalidate_cache(
    req: Optional[InvalidateRequest] = None,
    service: MultimodalSearchService = Depends(get_search_service),
):
    if req is not None and req.user_id:
        await service.invalidate_user(req.user_id)
    else:
        await service.invalidate_all()
    return JSONResponse({"status": "invalidated"})


@app.get("/stats")
async def stats(service: MultimodalSearchService = Depends(get_search_service)):
    if not service.stats.enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return JSONResponse(service.cache_stats())


@app.get("/health")
async def health(request: Request):
    if getattr(request.app.state, "search_service", None) is None:
        raise HTTPException(status_code=503, detail="Search service not ready")
    if not mongo_configured():
        return JSONResponse({"status": "ok", "mongo": "not configured"})
    try:
        await ping()
        return JSONResponse({"status": "ok"})
    except Exception:
        logger.exception("MongoDB health check failed")
        raise HTTPException(status_code=503, detail="MongoDB unreachable")
