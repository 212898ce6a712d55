from __future__ import annotations

from dataclasses import dataclass
import hashlib
import random
from typing import Callable, Optional

MANEUVER_KINDS = ("cruise", "brake", "accelerate")


@dataclass
class LeaderManeuver:
    kind: str
    initial_speed: float
    start_t: float
    duration: float
    accel: float = 0.0

    def speed_fn(self) -> Callable[[float, float, float], float]:
        """Leader speed update ``(t, speed, dt) -> next speed`` for the simulator."""
        end_t = self.start_t + self.duration

        def _fn(t: float, speed: float, dt: float) -> float:
            if self.kind == "cruise" or not (self.start_t <= t < end_t):
                return speed
            return max(0.0, speed + self.accel * dt)

        return _fn


class ManeuverFactory:
    def __init__(self, config: dict) -> None:
        self.config = config

    def sample(self, token: str) -> LeaderManeuver:
        cfg = self.config.get("leader", self.config)
        global_seed = int(self.config.get("seed", 0))
        rng = random.Random(_seed_from(token, global_seed))

        kinds = cfg.get("kinds", ["brake"])
        kind = rng.choice(kinds) if kinds else "brake"
        if kind not in MANEUVER_KINDS:
            raise ValueError(f"unknown leader maneuver '{kind}', expected one of {MANEUVER_KINDS}")
        subcfg = cfg.get(kind, {}) or {}

        initial_speed = _sample_range(rng, cfg.get("initial_speed", 25.0))
        start_t = _sample_range(rng, subcfg.get("start_t"))
        duration = _sample_range(rng, subcfg.get("duration"))
        accel = abs(_sample_range(rng, subcfg.get("accel")))
        if kind == "brake":
            accel = -accel

        return LeaderManeuver(
            kind=kind,
            initial_speed=initial_speed,
            start_t=start_t,
            duration=duration,
            accel=accel,
        )


def _sample_range(rng: random.Random, value: Optional[object]) -> float:
    if value is None:
        return 0.0
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return rng.uniform(float(value[0]), float(value[1]))
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _seed_from(token: str, global_seed: int) -> int:
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    return (int(digest[:16], 16) ^ global_seed) & 0xFFFFFFFF
