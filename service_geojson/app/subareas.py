"""
Sub-area pipeline: resolve → merge → store.

Used by both the ``subarea`` command and the HTTP front end on a cache miss.
"""

from typing import List, Optional, Tuple, Union

from shared.errors import GeoJSONError
from shared.metrics import MetricsCollector

from .context import Context, ResolutionRequest
from .osm.client import OsmApiClient
from .osm.geometry import merge_subareas
from .osm.models import ResolveResult, SubArea
from .osm.resolver import SubAreaResolver
from .storage.geojson import dumps
from .storage.store import OutputStore


class SubAreaService:
    """Produces GeoJSON artifacts for root relations."""

    def __init__(
        self,
        ctx: Context,
        *,
        client=None,
        store: Optional[OutputStore] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.ctx = ctx
        self.logger = ctx.logger
        self.metrics = metrics
        self._owns_client = client is None
        self.client = client if client is not None else OsmApiClient.from_context(ctx, metrics=metrics)
        self.store = store if store is not None else OutputStore(ctx, metrics)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def resolve(self, relation: Union[int, str], ctx: Optional[Context] = None) -> Tuple[List[SubArea], ResolveResult]:
        """Resolve and, unless separated mode is on, merge sub-areas."""
        ctx = ctx or self.ctx
        result = await SubAreaResolver(ctx, self.client).resolve(relation)
        subareas = merge_subareas(result.subareas, ctx.should_combine)
        if result.partial:
            self.logger.warning(
                "Resolution finished with skipped branches",
                root_id=result.root.id,
                skipped=[f.message for f in result.failures],
            )
        return subareas, result

    async def render(self, relation: Union[int, str], *, indent: Optional[int] = None) -> bytes:
        """Resolve and serialize without touching the output directory."""
        subareas, _ = await self.resolve(relation)
        return dumps(subareas, indent=indent)

    def find(self, relation: Union[int, str]) -> Optional[str]:
        """Path of an existing artifact for the context's options, or None."""
        path, found = self.store.lookup(self.ctx.request_for(relation))
        return path if found else None

    async def generate(self, relation: Union[int, str], *, force: bool = False) -> Tuple[str, bool]:
        """Write the artifact for the context's options; returns ``(path, created)``."""
        return await self.ensure(self.ctx.request_for(relation), force=force)

    async def ensure(self, request: ResolutionRequest, *, force: bool = False) -> Tuple[str, bool]:
        """Return the artifact for ``request``, resolving it at most once per key."""
        ctx = self.ctx.with_options(raw=request.raw, separated=request.separated, out_dir=request.out_dir)

        async def compute() -> List[SubArea]:
            subareas, result = await self.resolve(request.root_id, ctx)
            self._count("partial" if result.partial else "ok")
            return subareas

        try:
            if self.metrics is not None:
                with self.metrics.time_operation("resolution_duration_seconds"):
                    path, created = await self.store.get_or_create(request, compute, force=force)
            else:
                path, created = await self.store.get_or_create(request, compute, force=force)
        except GeoJSONError as exc:
            self._count("failed")
            self.logger.error("Sub-area generation failed", root_id=request.root_id, code=exc.code, error=exc.message)
            raise

        if not created:
            self._count("cached")
        return path, created

    def _count(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.increment_counter("resolutions_total", outcome=outcome)
