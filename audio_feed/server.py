from __future__ import annotations

import logging
import traceback
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

import uvicorn
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse

from .config import Settings
from .feed import FeedBuilder, FeedRequest, ResourceUrls, Tree, image_override
from .library import ItemCache
from .models import InvalidQuery, NotFound, RangeNotSatisfiable
from .query import parse_filters, parse_sort, run_query, scope_items
from .streaming import AudioStreamer

logger = logging.getLogger(__name__)


def resource_urls(request: Request, mount_path: str) -> ResourceUrls:
    """URL builder for the inbound request, keeping any root_path a proxy mounted us under."""
    root_path = request.scope.get("root_path", "").rstrip("/")
    prefix = "" if mount_path == "/" else mount_path
    return ResourceUrls(scheme=request.url.scheme, host=request.url.netloc, mount_path=f"{root_path}{prefix}" or "/")


def create_app(
    settings: Settings,
    *,
    cache: Optional[ItemCache] = None,
    modify_feed: Optional[Callable[[Tree], Tree]] = None,
) -> FastAPI:
    """Return a FastAPI application serving the library as a podcast feed."""

    cache = cache or ItemCache(settings)
    builder = FeedBuilder(settings.channel, modify=modify_feed)
    streamer = AudioStreamer(cache)
    mount_path = settings.server.mount_path

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        cache.close()

    app = FastAPI(
        title=settings.channel.title,
        description=settings.channel.description,
        lifespan=lifespan,
    )
    app.state.cache = cache
    router = APIRouter()

    async def _render_feed(request: Request, prefix: Optional[str]) -> Response:
        params = request.query_params
        filters = parse_filters(params.getlist("filterIn"), params.getlist("filterOut"))
        sort = parse_sort(params.get("sort"))
        items = scope_items(await cache.get_all(), cache.root, prefix)
        ordered = run_query(items, filters, sort)
        feed_request = FeedRequest(
            title=params.get("title"),
            image=image_override(params),
            query_string=request.url.query,
        )
        body = builder.render(ordered, resource_urls(request, mount_path), feed_request)
        return Response(content=body, media_type="text/xml")

    @router.get("/feed.xml")
    async def feed(request: Request) -> Response:
        return await _render_feed(request, None)

    @router.get("/{prefix:path}/feed.xml")
    async def directory_feed(prefix: str, request: Request) -> Response:
        return await _render_feed(request, prefix)

    @router.get("/resource/{item_id}/image")
    async def image(item_id: str) -> Response:
        payload = await streamer.open_image(item_id)
        return Response(content=payload.body, media_type=payload.content_type)

    @router.get("/resource/{item_id}/audio.mp3")
    async def audio(item_id: str, request: Request) -> StreamingResponse:
        window = await streamer.open_audio(item_id, request.headers.get("range"))
        return StreamingResponse(
            streamer.iter_window(window),
            status_code=window.status,
            headers=window.headers,
        )

    @router.get("/bust-cache")
    async def bust_cache() -> PlainTextResponse:
        await cache.bust()
        return PlainTextResponse("success")

    app.include_router(router, prefix="" if mount_path == "/" else mount_path)

    @app.exception_handler(InvalidQuery)
    async def _invalid_query(request: Request, exc: InvalidQuery) -> JSONResponse:
        logger.info("Rejected %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"message": str(exc)})

    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound) -> Response:
        return Response(status_code=404)

    @app.exception_handler(RangeNotSatisfiable)
    async def _bad_range(request: Request, exc: RangeNotSatisfiable) -> Response:
        return Response(status_code=416, headers={"Content-Range": f"bytes */{exc.size}"})

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled error for %s", request.url.path, exc_info=exc)
        content = {"message": str(exc)}
        if settings.server.expose_tracebacks:
            content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return JSONResponse(status_code=500, content=content)

    return app


def serve(settings: Settings, *, modify_feed: Optional[Callable[[Tree], Tree]] = None) -> None:
    app = create_app(settings, modify_feed=modify_feed)
    logger.info(
        "Serving %s on http://%s:%d%s",
        settings.library.root,
        settings.server.host,
        settings.server.port,
        settings.server.mount_path,
    )
    uvicorn.run(app, host=settings.server.host, port=settings.server.port, log_config=None)
