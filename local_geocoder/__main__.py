"""CLI entrypoint for local_geocoder."""

from __future__ import annotations

import argparse
import json
import sys

from local_geocoder.logging_config import setup_logging


def main() -> None:
    setup_logging()

    parser = argparse.ArgumentParser(prog="local-geocoder")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve")

    lookup_parser = sub.add_parser("lookup")
    lookup_parser.add_argument("lat", type=float)
    lookup_parser.add_argument("lon", type=float)
    lookup_parser.add_argument("--country", action="append", default=[])
    lookup_parser.add_argument("--radius-km", type=float, default=None)

    stats_parser = sub.add_parser("stats")
    stats_parser.add_argument("--country", action="append", default=[])

    prepare_parser = sub.add_parser("prepare")
    prepare_parser.add_argument("--country", action="append", default=[])
    prepare_parser.add_argument("--data-dir", default=None)
    prepare_parser.add_argument("--force", action="store_true")

    args = parser.parse_args()

    if args.command == "serve":
        _serve()
    elif args.command == "lookup":
        _lookup(args.lat, args.lon, args.country, args.radius_km)
    elif args.command == "stats":
        _stats(args.country)
    elif args.command == "prepare":
        sys.exit(_prepare(args.country, args.data_dir, args.force))


def _serve() -> None:
    import uvicorn

    from local_geocoder.config import get_settings

    settings = get_settings()
    uvicorn.run(
        "local_geocoder.api:app",
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.log_level.lower(),
    )


def _lookup(lat: float, lon: float, countries: list[str], radius_km: float | None) -> None:
    from local_geocoder.errors import InvalidRequest
    from local_geocoder.service import get_service

    service = get_service()
    try:
        result = service.lookup(lat, lon, countries=countries or None, max_radius_km=radius_km)
    except InvalidRequest as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(2)

    out = {
        "location": result.label,
        "distance_km": round(result.distance_km, 3) if result.distance_km is not None else None,
        "coordinates": {"latitude": round(lat, 6), "longitude": round(lon, 6)},
    }
    print(json.dumps(out, ensure_ascii=True, indent=2))


def _stats(countries: list[str]) -> None:
    from local_geocoder.errors import GeocoderError
    from local_geocoder.service import get_service

    service = get_service()
    codes = countries or list(service.default_countries)

    print(f"{'Country':<8} {'Cities':>8} {'Rows':>9} {'Skipped':>9} {'Malformed':>10}")
    print("-" * 48)
    for code in codes:
        try:
            collection = service.cache.get_or_load(code)
        except GeocoderError as e:
            print(f"{code.upper():<8} unavailable: {e}")
            continue
        s = collection.stats
        print(f"{code.upper():<8} {len(collection):>8} {s.total_rows:>9} {s.skipped:>9} "
              f"{s.malformed + s.short:>10}")
    print(f"\nTotal cities loaded: {service.city_count()}")


def _prepare(countries: list[str], data_dir: str | None, force: bool) -> int:
    from local_geocoder.config import get_settings
    from local_geocoder.download import prepare_countries

    codes = countries or list(get_settings().gazetteer.countries)
    stats = prepare_countries(codes, data_dir=data_dir, force=force)

    print(f"Successfully processed: {stats['successful']} countries")
    if stats["failed"]:
        print(f"Failed to process: {stats['failed']} countries "
              f"({', '.join(stats['failed_countries'])})")
    return 0 if stats["failed"] == 0 else 1


if __name__ == "__main__":
    main()
