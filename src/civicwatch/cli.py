"""
CivicWatch CLI entrypoint.

This CLI is intended for quick local checks of the engine without a UI: it uses
the same `build_engine()` composition and store as the API.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from civicwatch.config.settings import get_settings
from civicwatch.core.geo import format_distance
from civicwatch.core.logging import configure_logging
from civicwatch.domain.errors import NotFoundError
from civicwatch.domain.models import Coordinate, Incident, WatchZoneInput, WatchZonePatch
from civicwatch.engine import Engine, build_engine


def _load_incidents(path: str) -> list[Incident]:
    """Read one incident object or a list of them from a JSON file."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        raise ValueError(f"{path}: expected a JSON object or list of incidents")
    return [Incident.model_validate(item) for item in raw]


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _cmd_distance(args: argparse.Namespace, engine: Engine) -> int:
    a = Coordinate(lat=args.lat1, lng=args.lng1)
    b = Coordinate(lat=args.lat2, lng=args.lng2)
    d = engine.calculator.distance_km(a, b)
    print(f"{d:.3f} km ({format_distance(d)})")
    return 0


def _cmd_locate(args: argparse.Namespace, engine: Engine) -> int:
    provider = engine.locations
    if args.refresh:
        result = asyncio.run(provider.refresh(args.user))
    else:
        result = asyncio.run(provider.get_location(args.user))

    if args.json:
        _print_json(result.model_dump(mode="json"))
        return 0

    if result.is_default:
        note = "default location (no fix available)"
    elif result.expired:
        note = "approximate: cached location has expired"
    elif result.from_cache:
        note = "cached"
    else:
        note = "fresh"
    print(f"{result.lat:.5f},{result.lng:.5f}  [{note}]")
    return 0


def _cmd_zones_add(args: argparse.Namespace, engine: Engine) -> int:
    zone = engine.zones.create(
        WatchZoneInput(
            name=args.name,
            center=Coordinate(lat=args.lat, lng=args.lng),
            radius_km=args.radius,
            owner_id=args.owner,
            active=not args.inactive,
        )
    )
    print(zone.id)
    return 0


def _cmd_zones_list(args: argparse.Namespace, engine: Engine) -> int:
    zones = engine.zones.list_by_owner(args.owner)
    if args.json:
        _print_json([z.model_dump(mode="json") for z in zones])
        return 0
    for z in zones:
        status = "active" if z.active else "inactive"
        print(f"{z.id}  {z.name}  r={z.radius_km:g}km  {z.center.lat:.4f},{z.center.lng:.4f}  {status}")
    return 0


def _cmd_zones_toggle(args: argparse.Namespace, engine: Engine) -> int:
    zone = engine.zones.update(args.zone_id, WatchZonePatch(active=args.state == "on"))
    print(f"{zone.id} {'active' if zone.active else 'inactive'}")
    return 0


def _cmd_zones_delete(args: argparse.Namespace, engine: Engine) -> int:
    engine.zones.delete(args.zone_id)
    return 0


def _cmd_match(args: argparse.Namespace, engine: Engine) -> int:
    out = []
    for incident in _load_incidents(args.incidents):
        decision = engine.matcher.decide_alert(incident, args.owner)
        out.append({"incident_id": incident.id, **decision.model_dump(mode="json")})
    if args.json:
        _print_json(out)
        return 0
    for item in out:
        if not item["notify"]:
            print(f"{item['incident_id']}: no alert")
            continue
        zones = ", ".join(
            f"{m['zone']['name']} ({format_distance(m['distance_km'])})" for m in item["matches"]
        )
        print(f"{item['incident_id']}: alert in {zones}")
    return 0


def _cmd_nearby(args: argparse.Namespace, engine: Engine) -> int:
    center = Coordinate(lat=args.lat, lng=args.lng)
    incidents = _load_incidents(args.incidents)
    nearby = engine.proximity.within(incidents, center, args.radius)
    for incident in nearby:
        d = engine.proximity.distance_to(center, incident)
        print(f"{incident.id}  {incident.type.value}/{incident.severity.value}  {format_distance(d)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the CivicWatch CLI."""
    parser = argparse.ArgumentParser(prog="civicwatch")
    parser.add_argument("--log-level", default=None, help="Override the configured log level.")
    sub = parser.add_subparsers(dest="command", required=True)

    dist = sub.add_parser("distance", help="Great-circle distance between two points.")
    for name in ("lat1", "lng1", "lat2", "lng2"):
        dist.add_argument(name, type=float)
    dist.set_defaults(func=_cmd_distance)

    loc = sub.add_parser("locate", help="Resolve a user's location (cache, source, fallback).")
    loc.add_argument("--user", required=True)
    loc.add_argument("--refresh", action="store_true", help="Forget the cached location first.")
    loc.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    loc.set_defaults(func=_cmd_locate)

    zones = sub.add_parser("zones", help="Manage watch zones.")
    zsub = zones.add_subparsers(dest="zones_command", required=True)

    add = zsub.add_parser("add", help="Create a watch zone.")
    add.add_argument("--owner", required=True)
    add.add_argument("--name", required=True)
    add.add_argument("--lat", required=True, type=float)
    add.add_argument("--lng", required=True, type=float)
    add.add_argument("--radius", type=float, default=5.0, help="Radius in km (0.5..50).")
    add.add_argument("--inactive", action="store_true")
    add.set_defaults(func=_cmd_zones_add)

    ls = zsub.add_parser("list", help="List a user's watch zones.")
    ls.add_argument("--owner", required=True)
    ls.add_argument("--json", action="store_true")
    ls.set_defaults(func=_cmd_zones_list)

    toggle = zsub.add_parser("toggle", help="Activate or deactivate a zone.")
    toggle.add_argument("zone_id")
    toggle.add_argument("state", choices=["on", "off"])
    toggle.set_defaults(func=_cmd_zones_toggle)

    rm = zsub.add_parser("delete", help="Delete a zone (no-op if absent).")
    rm.add_argument("zone_id")
    rm.set_defaults(func=_cmd_zones_delete)

    match = sub.add_parser("match", help="Check incidents (JSON file) against a user's zones.")
    match.add_argument("--owner", required=True)
    match.add_argument("--incidents", required=True, help="Path to a JSON incident or list of incidents")
    match.add_argument("--json", action="store_true")
    match.set_defaults(func=_cmd_match)

    near = sub.add_parser("nearby", help="Incidents within a radius of a point.")
    near.add_argument("--lat", required=True, type=float)
    near.add_argument("--lng", required=True, type=float)
    near.add_argument("--radius", type=float, default=None, help="Radius in km (default from settings).")
    near.add_argument("--incidents", required=True)
    near.set_defaults(func=_cmd_nearby)
    return parser


def main(argv: list[str] | None = None, *, engine: Engine | None = None) -> int:
    """CLI entrypoint callable used by `python -m civicwatch.cli`."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    engine = engine or build_engine(get_settings())
    func: Any = getattr(args, "func")
    try:
        return int(func(args, engine))
    except (ValueError, NotFoundError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
