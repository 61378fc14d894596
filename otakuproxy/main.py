import asyncio
import time
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.requests import Request

from otakuproxy.api.routes import router
from otakuproxy.config.settings import settings
from otakuproxy.services.convert import convert_service
from otakuproxy.utils.cache import cleanup_expired_data
from otakuproxy.utils.errors import AppError
from otakuproxy.utils.http_client import http_client
from otakuproxy.utils.logger import setup_logger, app_logger, api_logger


# ===========================
# Logger Setup
# ===========================
setup_logger(settings.LOG_LEVEL)


# ===========================
# Custom Middleware
# ===========================
class LoguruMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            api_logger.error(f"Exception: {type(e).__name__}")
            raise
        finally:
            process_time = time.time() - start_time
            if request.url.path != "/health":
                api_logger.debug(f"{request.method} {request.url.path} - {response.status_code if 'response' in locals() else '500'} - {process_time:.2f}s")
        return response


# ===========================
# Keep-alive Ping
# ===========================
async def keepalive_ping():
    count = 0
    while True:
        await asyncio.sleep(settings.KEEPALIVE_INTERVAL)
        count += 1
        try:
            response = await http_client.get(settings.KEEPALIVE_URL)
            app_logger.debug(f"[PING {count}] {response.status_code}")
        except httpx.HTTPError as e:
            app_logger.error(f"[PING {count}] {type(e).__name__}")


# ===========================
# Application Lifecycle
# ===========================
@asynccontextmanager
async def lifespan(app: FastAPI):
    background_tasks = [asyncio.create_task(cleanup_expired_data())]
    if settings.KEEPALIVE_URL:
        background_tasks.append(asyncio.create_task(keepalive_ping()))

    yield

    for task in background_tasks:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    await convert_service.close()
    await http_client.close()


# ===========================
# FastAPI Application Setup
# ===========================
app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(LoguruMiddleware)
app.add_middleware(GZipMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(router)


# ===========================
# Exception Handlers
# ===========================
@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    api_logger.error(f"{request.url.path} failed: {exc.kind} - {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    return PlainTextResponse("Not found", status_code=404)


# ===========================
# Application Entry Point
# ===========================
def run():
    app_logger.info(f"Starting {settings.APP_NAME}")
    app_logger.info(f"Server: http://localhost:{settings.PORT}/")
    app_logger.info(f"Strategy: {settings.CONVERT_STRATEGY} (fallback {'enabled' if settings.CONVERT_FALLBACK else 'disabled'})")
    app_logger.info(f"FastDl: {settings.FASTDL_URL} (offset {settings.FASTDL_OFFSET_MS} ms)")
    app_logger.info(f"Keep-alive: {settings.KEEPALIVE_URL if settings.KEEPALIVE_URL else 'disabled'}")
    app_logger.info(f"Proxy: {'enabled' if settings.PROXY_URL else 'disabled'}")
    app_logger.info(f"Log level: {settings.LOG_LEVEL}")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.PORT,
        log_config=None
    )


if __name__ == "__main__":
    run()
