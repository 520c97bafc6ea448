from __future__ import annotations

import argparse
import csv
import json
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from safejourney.models import (
    TERMINAL_STATES,
    GpsErrorReason,
    GpsFix,
    Instruction,
    NavigationState,
    Route,
)
from safejourney.navigation import NavigationSession
from safejourney.route_geometry import normalize_geometry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replay a recorded GPS trace against a route and summarise navigation."
    )
    parser.add_argument("--route-json", required=True)
    parser.add_argument("--trace-csv", required=True)
    parser.add_argument("--deviation-threshold-m", type=float, default=None)
    parser.add_argument("--arrival-threshold-m", type=float, default=None)
    parser.add_argument("--start-leniency-m", type=float, default=None)
    parser.add_argument("--summary-path", default=None)
    return parser


def load_route(path: str) -> Route:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    points = normalize_geometry(payload)
    if len(points) < 2:
        raise ValueError("route JSON has no usable geometry")
    return Route(points=points)


def load_trace(path: str) -> list[GpsFix | GpsErrorReason]:
    """Rows carry ``lat,lon`` or an ``error`` column naming a GPS failure."""
    items: list[GpsFix | GpsErrorReason] = []
    with Path(path).open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fields = set(reader.fieldnames or [])
        if not {"lat", "lon"}.issubset(fields):
            raise ValueError("CSV must include columns: lat, lon")
        for row in reader:
            error = (row.get("error") or "").strip()
            if error:
                items.append(GpsErrorReason(error))
                continue
            items.append(
                GpsFix(
                    lat=float(row["lat"]),
                    lon=float(row["lon"]),
                    accuracy_m=float(row["accuracy_m"]) if row.get("accuracy_m") else None,
                )
            )
    if not items:
        raise ValueError("CSV trace produced zero fixes")
    return items


def replay_trace(
    route: Route,
    trace: Sequence[GpsFix | GpsErrorReason],
    *,
    deviation_threshold_m: float | None = None,
    arrival_threshold_m: float | None = None,
    start_leniency_m: float | None = None,
) -> dict[str, Any]:
    session = NavigationSession(
        deviation_threshold_m=deviation_threshold_m,
        arrival_threshold_m=arrival_threshold_m,
        start_leniency_m=start_leniency_m,
    )
    states: list[str] = []
    spoken: list[str] = []
    deviations = 0

    def on_state(state: NavigationState) -> None:
        states.append(state.value)

    def on_instruction(instruction: Instruction) -> None:
        spoken.append(instruction.text)

    session.start(route, on_instruction_change=on_instruction, on_state_change=on_state)

    for item in trace:
        if session.state in TERMINAL_STATES:
            break
        if isinstance(item, GpsErrorReason):
            session.report_gps_error(item)
            continue
        if session.update_position(item.lat, item.lon).deviated:
            deviations += 1

    return {
        "final_state": session.state.value,
        "fix_count": len(trace),
        "deviation_count": deviations,
        "states": states,
        "instructions": spoken,
        "route_distance_m": round(session.total_distance_m, 1),
        "error": session.last_error.reason_code if session.last_error is not None else None,
    }


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    summary = replay_trace(
        load_route(args.route_json),
        load_trace(args.trace_csv),
        deviation_threshold_m=args.deviation_threshold_m,
        arrival_threshold_m=args.arrival_threshold_m,
        start_leniency_m=args.start_leniency_m,
    )
    if args.summary_path:
        out = Path(args.summary_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(summary, indent=2), encoding="utf-8")
    print(json.dumps(summary, indent=2))
    return 0 if summary["final_state"] != NavigationState.ERROR.value else 1


if __name__ == "__main__":
    raise SystemExit(main())
