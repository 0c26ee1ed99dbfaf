"""
Command line entry point: generate sub-area artifacts or serve them over HTTP.

    python -m service_geojson subarea 62422
    python -m service_geojson --out "" subarea --separated r62422
    python -m service_geojson serve --address 0.0.0.0:8181 --rate 5
"""

import argparse
import asyncio
import os
import sys
from typing import List, Optional

from pydantic import ValidationError

from shared.config import DEFAULT_OUT_DIR, GeoJSONConfig, get_config
from shared.errors import GeoJSONError, InvalidInputError, StorageUnavailableError
from shared.logging import configure_logging, get_logger

from .context import Context
from .subareas import SubAreaService

PROG = "osm-geojson"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROG, description="Build GeoJSON for OpenStreetMap sub-areas.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "-o", "--out", default=None,
        help=f"Output directory (default {DEFAULT_OUT_DIR}); an empty string prints to stdout",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    subarea = commands.add_parser("subarea", help="Generate GeoJSON for the sub-areas of a relation")
    subarea.add_argument("relation", help="Relation ID, e.g. 62422, r62422 or relation/62422")
    subarea.add_argument("-r", "--raw", action="store_true", help="Leave tags in unnormalized form")
    subarea.add_argument("-s", "--separated", action="store_true", help="Leave sub-areas unmerged")
    subarea.add_argument("-f", "--force", action="store_true", help="Regenerate even if the artifact exists")
    subarea.add_argument("-d", "--depth", type=int, default=None, help="Levels of nesting to follow (default 0 = unlimited)")

    serve = commands.add_parser("serve", help="Serve generated artifacts over HTTP")
    serve.add_argument("--address", default=None, help="Listen address (default 127.0.0.1:8181)")
    serve.add_argument("--origin", default=None, help="Allowed CORS origin (default *)")
    serve.add_argument("--rate", type=float, default=None, help="Requests per second per client (default 10)")
    serve.add_argument("--rate-burst", type=int, default=None, help="Burst size per client (default 5)")
    serve.add_argument("--rate-ttl", default=None, help="Idle time before a client is forgotten (default 2m)")
    serve.add_argument("--prefix", default=None, help="URL prefix for artifacts (default /static)")
    serve.add_argument("--resolve-on-miss", action="store_true", default=None,
                       help="Generate missing artifacts instead of returning 404")
    return parser


def _load_config(args: argparse.Namespace) -> GeoJSONConfig:
    overrides = {
        "out_dir": args.out,
        "log_level": "debug" if args.verbose else None,
    }
    if args.command == "subarea":
        overrides.update(
            raw=args.raw or None,
            separated=args.separated or None,
            max_depth=args.depth,
        )
    else:
        overrides.update(
            address=args.address,
            origin=args.origin,
            rate=args.rate,
            rate_burst=args.rate_burst,
            rate_ttl=args.rate_ttl,
            prefix=args.prefix,
            resolve_on_miss=args.resolve_on_miss,
        )
    try:
        return get_config(**overrides)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise InvalidInputError(f"invalid options: {fields}", {"errors": exc.errors()}) from exc


def _ensure_out_dir(out_dir: str) -> None:
    try:
        os.makedirs(out_dir, exist_ok=True)
    except OSError as exc:
        raise StorageUnavailableError(
            f"cannot create output directory: {exc.strerror}", {"out_dir": out_dir}
        ) from exc


async def run_subarea(ctx: Context, relation: str, *, force: bool = False, client=None) -> Optional[str]:
    """Generate one artifact; returns its path, or None in print mode."""
    service = SubAreaService(ctx, client=client)
    try:
        if ctx.should_print:
            payload = await service.render(relation, indent=2)
            sys.stdout.buffer.write(payload + b"\n")
            sys.stdout.flush()
            return None

        _ensure_out_dir(ctx.out_dir)
        path, created = await service.generate(relation, force=force)
        if not created:
            ctx.logger.info("Artifact already exists, use --force to regenerate", path=path)
        return path
    finally:
        await service.aclose()


def run_serve(config: GeoJSONConfig) -> None:
    from .main import GeoJSONService

    _ensure_out_dir(config.out_dir)
    GeoJSONService(config).run()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(PROG, "debug" if args.verbose else "warning", json_output=False)
    logger = get_logger(PROG)

    try:
        config = _load_config(args)
        if args.command == "serve":
            if not config.out_dir:
                raise InvalidInputError("serve needs an output directory")
            run_serve(config)
            return 0

        ctx = Context.create(config, logger)
        path = asyncio.run(run_subarea(ctx, args.relation, force=args.force))
    except KeyboardInterrupt:
        return 130
    except GeoJSONError as exc:
        logger.debug("Command failed", code=exc.code, details=exc.details)
        print(f"[{PROG}] {exc.code}: {exc.message}", file=sys.stderr)
        return 1

    if path is not None:
        print(path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
