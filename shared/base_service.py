"""
Base service class for the OSM GeoJSON HTTP front end.
"""

import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.config import GeoJSONConfig, get_config
from shared.errors import GeoJSONError, RateLimitError
from shared.logging import clear_context, configure_logging, get_logger, request_id_var, set_request_id
from shared.metrics import MetricsCollector, get_metrics_collector

SERVICE_VERSION = "0.1.0"


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, config: Optional[GeoJSONConfig] = None,
                 *, metrics: Optional[MetricsCollector] = None):
        self.service_name = service_name
        self.config = config or get_config()
        self.logger = get_logger(service_name)
        self.metrics = metrics or get_metrics_collector(service_name)
        self._start_time = time.time()

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"OSM GeoJSON - {self.service_name.title()} Service",
            version=SERVICE_VERSION,
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url=None,
            lifespan=self._lifespan,
        )

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        await self.on_startup()
        try:
            yield
        finally:
            await self.on_shutdown()

    async def on_startup(self) -> None:
        """Startup hook. Override in subclasses."""

    async def on_shutdown(self) -> None:
        """Shutdown hook. Override in subclasses."""

    def _setup_middleware(self):
        """Set up middleware."""

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=[self.config.origin],
            allow_credentials=False,
            allow_methods=["GET", "HEAD", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
        )

        @self.app.middleware("http")
        async def add_request_timing(request: Request, call_next):
            start_time = time.time()
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            try:
                response = await call_next(request)
            finally:
                clear_context()

            duration = time.time() - start_time
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)

            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration
            )

            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                request_id=request_id,
            )

            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            try:
                dependencies = await self._check_dependencies()
                self.metrics.record_health_check("ok")
                return {
                    "service": self.service_name,
                    "status": "ok",
                    "uptime_seconds": self._get_uptime(),
                    "dependencies": dependencies,
                    "version": SERVICE_VERSION,
                    "commit": os.getenv("GIT_COMMIT", "unknown")
                }
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={
                        "service": self.service_name,
                        "status": "error",
                        "error": str(e)
                    }
                )

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(content=self.metrics.render(), media_type=CONTENT_TYPE_LATEST)

        @self.app.exception_handler(GeoJSONError)
        async def geojson_exception_handler(request: Request, exc: GeoJSONError):
            """Handle GeoJSONError without leaking internal details."""
            if exc.status_code >= 500:
                log = self.logger.error
            elif isinstance(exc, RateLimitError):
                log = self.logger.debug
            else:
                log = self.logger.info
            log(
                "Request failed",
                code=exc.code,
                message=exc.message,
                details=exc.details,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=exc.status_code,
                content=exc.to_response(request_id_var.get()).model_dump(),
                headers=getattr(exc, "headers", None) or None,
            )

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "code": "INTERNAL_ERROR",
                    "message": "Internal server error",
                    "details": {}
                }
            )

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        host, port = self.config.bind_address()
        uvicorn.run(
            self.app,
            host=host,
            port=port,
            log_level=self.config.log_level.lower()
        )
