"""
Sub-area resolver.

Walks a relation's membership graph level by level, starting at the root.
Every relation reached below the root becomes a :class:`SubArea` once its way
members form an area. The traversal keeps an explicit visited set, so cyclic
or shared references end that branch instead of recursing, and it fetches the
relations of one level concurrently under a semaphore. Results are sorted by
relation id before they are returned, so fetch completion order never shows.

A reference back to an ancestor is a cycle and is noted in ``result.cycles``.
A reference to a relation already claimed by another branch is a shared
sub-area and is noted in ``result.shared``.
"""

import asyncio
from typing import Dict, List, Optional, Tuple, Union

from shapely.errors import GEOSException

from shared.errors import CycleDetectedError, GeoJSONError, MissingGeometryError

from ..context import Context, parse_relation_id
from .geometry import build_area
from .models import Relation, ResolveResult, SubArea
from .tags import identity_key, normalize_tags


class SubAreaResolver:
    """Resolve the sub-areas of a root relation."""

    def __init__(self, ctx: Context, client, *, concurrency: Optional[int] = None):
        self.ctx = ctx
        self.client = client
        self.logger = ctx.logger
        limit = concurrency if concurrency is not None else ctx.config.upstream_concurrency
        self._semaphore = asyncio.Semaphore(max(1, limit))

    async def resolve(self, root: Union[int, str]) -> ResolveResult:
        """Resolve every sub-area below ``root``.

        A failure to fetch the root is fatal and propagates. Failures below the
        root only drop that branch and are reported in ``result.failures``.
        """
        root_id = parse_relation_id(root)
        root_relation = await self._fetch_root(root_id)
        result = ResolveResult(root=root_relation)

        max_depth = self.ctx.config.max_depth
        # claimed parent of every visited relation; the root has none
        parents: Dict[int, Optional[int]] = {root_id: None}
        frontier: List[Tuple[int, int]] = [(child, root_id) for child in root_relation.child_relation_ids()]
        depth = 1

        while frontier:
            batch: List[Tuple[int, int]] = []
            for relation_id, parent_id in sorted(frontier):
                if relation_id in parents:
                    self._note_revisit(relation_id, parent_id, parents, result)
                    continue
                parents[relation_id] = parent_id
                batch.append((relation_id, parent_id))

            outcomes = await self._fetch_level([relation_id for relation_id, _ in batch])

            next_frontier: List[Tuple[int, int]] = []
            for (relation_id, parent_id), outcome in zip(batch, outcomes):
                if isinstance(outcome, GeoJSONError):
                    result.failures.append(outcome)
                    self.logger.warning(
                        "Skipping sub-area branch",
                        relation_id=relation_id,
                        parent_id=parent_id,
                        error=outcome.message,
                    )
                    continue

                subarea = self._to_subarea(outcome, parent_id, depth, result)
                if subarea is not None:
                    result.subareas.append(subarea)

                if max_depth == 0 or depth < max_depth:
                    next_frontier.extend((child, relation_id) for child in outcome.child_relation_ids())

            frontier = next_frontier
            depth += 1

        result.subareas.sort(key=lambda s: s.id)
        self.logger.info("Resolved sub-areas", **result.summary())
        return result

    def _note_revisit(self, relation_id: int, parent_id: int,
                      parents: Dict[int, Optional[int]], result: ResolveResult) -> None:
        ancestor: Optional[int] = parent_id
        while ancestor is not None:
            if ancestor == relation_id:
                note = CycleDetectedError(relation_id, parent_id)
                result.cycles.append(note)
                self.logger.debug(note.message, relation_id=relation_id, parent_id=parent_id)
                return
            ancestor = parents.get(ancestor)

        result.shared.append((relation_id, parent_id))
        self.logger.debug(
            "Sub-area shared with another parent",
            relation_id=relation_id,
            parent_id=parent_id,
            claimed_by=parents[relation_id],
        )

    async def _fetch_level(self, relation_ids: List[int]) -> List[Union[Relation, GeoJSONError]]:
        """Fetch one level; an unexpected error cancels the rest of the level."""
        tasks = [asyncio.ensure_future(self._fetch_child(relation_id)) for relation_id in relation_ids]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _fetch_root(self, root_id: int) -> Relation:
        async with self._semaphore:
            return await self.client.fetch_relation(root_id)

    async def _fetch_child(self, relation_id: int) -> Union[Relation, GeoJSONError]:
        async with self._semaphore:
            try:
                return await self.client.fetch_relation(relation_id)
            except GeoJSONError as exc:
                return exc

    def _to_subarea(self, relation: Relation, parent_id: int, depth: int,
                    result: ResolveResult) -> Optional[SubArea]:
        try:
            geometry = build_area(relation)
        except (GEOSException, ValueError) as exc:
            result.failures.append(MissingGeometryError(relation.id, {"error": str(exc)}))
            self.logger.warning("Invalid sub-area geometry", relation_id=relation.id, error=str(exc))
            return None

        if geometry is None:
            result.failures.append(MissingGeometryError(relation.id))
            self.logger.info("Sub-area has no area geometry", relation_id=relation.id)
            return None

        tags = normalize_tags(relation.tags) if self.ctx.should_normalize else dict(relation.tags)
        return SubArea(
            id=relation.id,
            tags=tags,
            geometry=geometry,
            identity_key=identity_key(relation.tags),
            parent_id=parent_id,
            depth=depth,
        )
