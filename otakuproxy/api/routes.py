import asyncio
import time
from typing import Optional

from fastapi import APIRouter, Request, Query, Path
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from otakuproxy.config.settings import settings, reload_settings
from otakuproxy.services.cbr import cbr_service
from otakuproxy.services.convert import convert_service
from otakuproxy.services.livechart import livechart_service
from otakuproxy.utils.errors import AppError
from otakuproxy.utils.http_client import http_client
from otakuproxy.utils.logger import api_logger, setup_logger


# ===========================
# Router Instance
# ===========================
router = APIRouter()

DISCONNECT_POLL_INTERVAL = 0.5
CLIENT_CLOSED_REQUEST = 499


# ===========================
# Disconnect Watcher
# ===========================
async def run_until_disconnect(request: Request, coro):
    task = asyncio.create_task(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                api_logger.debug(f"Client disconnected: {request.url.path}")
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                return Response(status_code=CLIENT_CLOSED_REQUEST)
    finally:
        if not task.done():
            task.cancel()


# ===========================
# Liveness Endpoint
# ===========================
@router.get("/", summary="Liveness", description="Returns a plain alive message")
async def root():
    return PlainTextResponse("🟢 API alive")


# ===========================
# Conversion Endpoint
# ===========================
@router.get("/convert",
            summary="Convert link",
            description="Returns the FastDl conversion JSON for an Instagram post or reel")
async def convert(
    request: Request,
    url: Optional[str] = Query(None, description="Instagram post or reel URL")
):
    result = await run_until_disconnect(request, convert_service.convert(url))
    if isinstance(result, Response):
        return result
    return JSONResponse(content=result)


# ===========================
# News Endpoints
# ===========================
@router.get("/uie", summary="News feed", description="Returns the latest anime news cards")
async def news_feed():
    feed = await cbr_service.get_feed()
    return JSONResponse(content=feed, headers={"Cache-Control": "public, max-age=60"})


@router.get("/news/{slug}", summary="News article", description="Returns a single anime news article")
async def news_article(slug: str = Path(..., description="Article slug")):
    article = await cbr_service.get_article(slug)
    if not article:
        return PlainTextResponse("Not found", status_code=404)
    return JSONResponse(content=article, headers={"Cache-Control": "public, max-age=300"})


# ===========================
# Anime Endpoints
# ===========================
@router.get("/anime-schedule", summary="Anime schedule", description="Returns the weekly airing timetable")
async def anime_schedule():
    try:
        schedule = await livechart_service.get_schedule()
    except AppError as e:
        api_logger.error(f"Schedule failed: {e.kind}")
        return JSONResponse(status_code=500, content={
            "error": "Error fetching anime schedule",
            "message": e.detail
        })
    return JSONResponse(content=schedule)


@router.get("/anime/{anime_id}", summary="Anime info", description="Returns details, videos and streams for an anime")
async def anime_info(anime_id: str = Path(..., description="LiveChart anime id")):
    try:
        info = await livechart_service.get_full_info(anime_id)
    except AppError as e:
        api_logger.error(f"Anime {anime_id} failed: {e.kind}")
        return JSONResponse(status_code=500, content={
            "error": "Error fetching anime info",
            "message": e.detail
        })
    return JSONResponse(content=info)


# ===========================
# Administration Endpoints
# ===========================
@router.post("/reload-settings",
             summary="Reload settings",
             description="Re-reads provider constants from the environment")
async def reload(password: str = Query(..., description="Admin password")):
    if not settings.ADMIN_PASSWORD.strip():
        return JSONResponse(status_code=403, content={"reloaded": False, "detail": "Reload disabled"})

    if password != settings.ADMIN_PASSWORD.strip():
        return JSONResponse(status_code=403, content={"reloaded": False, "detail": "Invalid password"})

    reload_settings()
    setup_logger(settings.LOG_LEVEL)
    api_logger.info(f"Settings reloaded (strategy: {settings.CONVERT_STRATEGY}, offset: {settings.FASTDL_OFFSET_MS})")
    return JSONResponse(content={"reloaded": True, "strategy": settings.CONVERT_STRATEGY})


# ===========================
# Health Check Endpoint
# ===========================
@router.get("/health",
            summary="Health check",
            description="Returns the current health status of the service")
async def health_check():
    start_time = time.time()
    health_status = {
        "status": "healthy",
        "timestamp": int(time.time()),
        "checks": {}
    }

    health_status["checks"]["server"] = {
        "status": "ok",
        "message": "Server running"
    }

    health_status["checks"]["strategy"] = {
        "status": "ok",
        "primary": settings.CONVERT_STRATEGY,
        "fallback": settings.CONVERT_FALLBACK
    }

    health_status["checks"]["browser"] = {
        "status": "ok",
        **convert_service.browser_status()
    }

    fastdl_start = time.time()
    try:
        response = await http_client.get(f"{settings.FASTDL_URL}/msec", timeout=settings.HEALTH_CHECK_TIMEOUT)
        fastdl_time = round((time.time() - fastdl_start) * 1000)

        if response.status_code == 200:
            health_status["checks"]["fastdl"] = {
                "status": "ok",
                "message": "FastDl accessible",
                "response_time_ms": fastdl_time
            }
        else:
            health_status["checks"]["fastdl"] = {
                "status": "error",
                "message": f"FastDl HTTP {response.status_code}",
                "response_time_ms": fastdl_time
            }
            health_status["status"] = "degraded"

    except Exception as e:
        fastdl_time = round((time.time() - fastdl_start) * 1000)
        health_status["checks"]["fastdl"] = {
            "status": "error",
            "message": f"FastDl unreachable: {type(e).__name__}",
            "response_time_ms": fastdl_time
        }
        health_status["status"] = "unhealthy"

    total_time = round((time.time() - start_time) * 1000)
    health_status["total_response_time_ms"] = total_time

    return health_status
