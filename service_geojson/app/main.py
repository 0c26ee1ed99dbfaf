"""
HTTP front end for generated GeoJSON artifacts.
"""

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.responses import FileResponse

from shared.base_service import BaseService
from shared.config import GeoJSONConfig, get_config
from shared.errors import ArtifactNotFoundError, InvalidInputError, RateLimitError
from shared.metrics import MetricsCollector

from .context import Context
from .ratelimit.token_bucket import RateLimitDecision, RateLimitMiddleware, TokenBucketRateLimiter
from .storage.store import parse_artifact
from .subareas import SubAreaService

GEOJSON_MEDIA_TYPE = "application/geo+json"


class GeoJSONService(BaseService):
    """Serves artifacts from the output directory behind a per-client rate limit."""

    def __init__(
        self,
        config: Optional[GeoJSONConfig] = None,
        *,
        client=None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__("geojson", config or get_config(), metrics=metrics)
        self.ctx = Context.create(self.config, self.logger)
        self.rate_limiter = rate_limiter or TokenBucketRateLimiter.from_context(self.ctx)
        self.rate_limit_middleware = RateLimitMiddleware(
            self.rate_limiter, trust_proxy_headers=self.config.trust_proxy_headers
        )
        self.subareas = SubAreaService(self.ctx, client=client, metrics=self.metrics)

        self._setup_geojson_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.geojson_service = self

    async def on_startup(self) -> None:
        await self.rate_limiter.start()
        self.logger.info(
            "GeoJSON service started",
            out_dir=self.config.out_dir,
            prefix=self.config.prefix or "/",
            resolve_on_miss=self.config.resolve_on_miss,
        )

    async def on_shutdown(self) -> None:
        await self.rate_limiter.stop()
        await self.subareas.aclose()

    def _enforce_rate_limit(self, request: Request) -> RateLimitDecision:
        """Consume a token for the caller or raise a 429."""
        decision = self.rate_limit_middleware.check_request(request)
        if not decision.allowed:
            self.metrics.increment_counter("rate_limit_hits_total")
            raise RateLimitError(
                details={"client_id": self.rate_limit_middleware.get_client_id(request)},
                headers=decision.headers(),
            )
        return decision

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check that the output directory can be read."""
        self.subareas.store._check_directory(self.config.out_dir, writable=False)
        return {"out_dir": "ok"}

    def _setup_geojson_routes(self):
        """Set up artifact routes."""

        @self.app.get(f"{self.config.prefix}/{{artifact}}")
        async def get_artifact(artifact: str, request: Request):
            """Serve a stored artifact, resolving it first when configured to."""
            decision = self._enforce_rate_limit(request)

            try:
                resolution = parse_artifact(artifact, self.config.out_dir)
            except InvalidInputError as exc:
                raise ArtifactNotFoundError(artifact) from exc

            path, found = self.subareas.store.lookup(resolution)
            if not found:
                if not self.config.resolve_on_miss:
                    raise ArtifactNotFoundError(artifact)
                self.logger.info("Resolving artifact on miss", artifact=artifact, root_id=resolution.root_id)
                path, _ = await self.subareas.ensure(resolution)

            return FileResponse(path, media_type=GEOJSON_MEDIA_TYPE, headers=decision.headers())


def create_app(config: Optional[GeoJSONConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = GeoJSONService(config, **kwargs)
    return service.app


if __name__ == "__main__":
    service = GeoJSONService()
    service.run()
