from __future__ import annotations

from collections.abc import Sequence

from .geometry import haversine_m, initial_bearing_deg, signed_bearing_delta_deg
from .models import Instruction, InstructionType, RoutePoint
from .settings import settings

_TURN_PHRASES: dict[InstructionType, str] = {
    InstructionType.TURN_LEFT: "turn left",
    InstructionType.TURN_RIGHT: "turn right",
    InstructionType.U_TURN: "make a U-turn",
}


def format_distance(distance_m: float) -> str:
    if distance_m < 1000.0:
        return f"{round(distance_m)} meters"
    return f"{distance_m / 1000.0:.1f} kilometers"


def format_instruction(kind: InstructionType, distance_m: float) -> str:
    if kind == InstructionType.START:
        return "Start navigation"
    if kind == InstructionType.ARRIVE:
        return "You have arrived at your destination"
    if kind == InstructionType.CONTINUE:
        return f"Continue straight for {format_distance(distance_m)}"
    return f"In {format_distance(distance_m)}, {_TURN_PHRASES[kind]}"


def classify_turn(delta_deg: float) -> InstructionType | None:
    """Map a signed bearing change in (-180, 180] to a manoeuvre, or None for straight."""
    magnitude = abs(delta_deg)
    if magnitude <= settings.turn_min_angle_deg:
        return None
    if magnitude >= settings.uturn_min_angle_deg:
        return InstructionType.U_TURN
    return InstructionType.TURN_RIGHT if delta_deg > 0 else InstructionType.TURN_LEFT


def generate_instructions(points: Sequence[RoutePoint]) -> tuple[Instruction, ...]:
    if len(points) < 2:
        return ()

    out: list[Instruction] = [
        Instruction(
            type=InstructionType.START,
            anchor=points[0],
            point_index=0,
            distance_m=0.0,
            text=format_instruction(InstructionType.START, 0.0),
        )
    ]

    for idx in range(1, len(points) - 1):
        prev = points[idx - 1]
        current = points[idx]
        nxt = points[idx + 1]
        inbound = initial_bearing_deg(prev.lat, prev.lon, current.lat, current.lon)
        outbound = initial_bearing_deg(current.lat, current.lon, nxt.lat, nxt.lon)
        delta = signed_bearing_delta_deg(inbound, outbound)
        kind = classify_turn(delta)
        if kind is None:
            continue
        anchor = out[-1].anchor
        distance_m = haversine_m(anchor.lat, anchor.lon, current.lat, current.lon)
        out.append(
            Instruction(
                type=kind,
                anchor=current,
                point_index=idx,
                distance_m=distance_m,
                text=format_instruction(kind, distance_m),
                angle_deg=round(delta, 2),
            )
        )

    last = points[-1]
    anchor = out[-1].anchor
    out.append(
        Instruction(
            type=InstructionType.ARRIVE,
            anchor=last,
            point_index=len(points) - 1,
            distance_m=haversine_m(anchor.lat, anchor.lon, last.lat, last.lon),
            text=format_instruction(InstructionType.ARRIVE, 0.0),
        )
    )
    return tuple(out)


def next_instruction(
    instructions: Sequence[Instruction],
    segment_index: int,
) -> Instruction | None:
    """First instruction anchored ahead of the matched edge `segment_index`."""
    for instruction in instructions:
        if instruction.point_index > segment_index:
            return instruction
    return instructions[-1] if instructions else None
