from __future__ import annotations

from dataclasses import dataclass
from typing import List

from accsim.sim.rollout import SimFrame


@dataclass
class Labels:
    collision: bool
    smallest_gap: float
    min_ttc: float
    override_count: int
    mode_switches: int


def is_collision(gap: float, min_gap: float, collision_min_gap_factor: float) -> bool:
    """True when the bumper distance drops below ``min_gap * collision_min_gap_factor``.

    ``gap`` is the net gap (bumper distance minus ``min_gap``).
    """
    return gap + min_gap * (1.0 - collision_min_gap_factor) < 0.0


class Labeler:
    def __init__(self, config: dict) -> None:
        self.config = config

    def compute(self, frames: List[SimFrame], min_gap: float, collision_min_gap_factor: float) -> Labels:
        if not frames:
            return Labels(collision=False, smallest_gap=float("inf"), min_ttc=float("inf"), override_count=0, mode_switches=0)

        closing_eps = float(self.config.get("closing_speed_eps", 0.1))

        collision = False
        smallest_gap = float("inf")
        min_ttc = float("inf")
        override_count = 0
        mode_switches = 0
        prev_mode = None

        for frame in frames:
            if is_collision(frame.gap, min_gap, collision_min_gap_factor):
                collision = True
            smallest_gap = min(smallest_gap, frame.gap)
            # simple TTC estimate on bumper distance
            rel_speed = frame.ego_speed - frame.leader_speed
            if rel_speed > closing_eps:
                min_ttc = min(min_ttc, max(frame.gap + min_gap, 0.0) / rel_speed)
            if frame.overridden:
                override_count += 1
            if prev_mode is not None and frame.mode != prev_mode:
                mode_switches += 1
            prev_mode = frame.mode

        return Labels(
            collision=collision,
            smallest_gap=smallest_gap,
            min_ttc=min_ttc,
            override_count=override_count,
            mode_switches=mode_switches,
        )
