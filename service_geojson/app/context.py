"""
Resolution context and request types.

A :class:`Context` is the immutable bundle every component receives: the
validated settings plus the logger to use. Nothing is looked up ambiently.
"""

import os
import re
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

from shared.config import GeoJSONConfig, describe
from shared.errors import InvalidInputError
from shared.logging import null_logger


_RELATION_ID_RE = re.compile(r"^(?:r|relation[/:]?)?(\d+)$", re.IGNORECASE)

_RESOLUTION_FIELDS = ("raw", "separated", "out_dir", "max_depth", "osm_api_url")


def parse_relation_id(value: Union[str, int, None]) -> int:
    """Accept ``123``, ``"123"``, ``"r123"`` or ``"relation/123"``."""
    if isinstance(value, bool):
        raise InvalidInputError("invalid OpenStreetMap relation ID", {"value": value})
    if isinstance(value, int):
        relation_id = value
    else:
        match = _RELATION_ID_RE.match((value or "").strip())
        if not match:
            raise InvalidInputError("invalid OpenStreetMap relation ID", {"value": value})
        relation_id = int(match.group(1))
    if relation_id <= 0:
        raise InvalidInputError("invalid OpenStreetMap relation ID", {"value": value})
    return relation_id


@dataclass(frozen=True)
class ResolutionRequest:
    """Everything that determines an output artifact."""

    root_id: int
    raw: bool = False
    separated: bool = False
    out_dir: str = ""

    @property
    def key(self) -> str:
        """Stable identity of the artifact, used for the per-key write lock."""
        out = os.path.normpath(os.path.abspath(self.out_dir)) if self.out_dir else ""
        return f"{self.root_id}:{int(self.raw)}:{int(self.separated)}:{out}"


@dataclass(frozen=True)
class Context:
    config: GeoJSONConfig
    logger: Any = field(default_factory=null_logger)

    @classmethod
    def create(cls, config: Optional[GeoJSONConfig] = None, logger: Any = None, **overrides: Any) -> "Context":
        config = config or GeoJSONConfig()
        if overrides:
            config = GeoJSONConfig(**{**config.model_dump(), **overrides})
        ctx = cls(config=config, logger=logger if logger is not None else null_logger())
        ctx.logger.debug("context", values=describe(config, _RESOLUTION_FIELDS))
        return ctx

    def with_options(self, **overrides: Any) -> "Context":
        """Return a copy with some settings replaced (validated)."""
        config = GeoJSONConfig(**{**self.config.model_dump(), **overrides})
        return replace(self, config=config)

    @property
    def should_normalize(self) -> bool:
        return not self.config.raw

    @property
    def should_combine(self) -> bool:
        return not self.config.separated

    @property
    def should_print(self) -> bool:
        return self.config.out_dir == ""

    @property
    def out_dir(self) -> str:
        return self.config.out_dir

    def request_for(self, relation: Union[str, int]) -> ResolutionRequest:
        return ResolutionRequest(
            root_id=parse_relation_id(relation),
            raw=self.config.raw,
            separated=self.config.separated,
            out_dir=self.config.out_dir,
        )
