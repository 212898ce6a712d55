from __future__ import annotations

from dataclasses import dataclass
from math import floor, sqrt
from typing import Any, Mapping, Optional

from accsim.utils.config import VEHICLE_TYPE_DEFAULTS, get_float, get_positive_float


NUMERICAL_EPS = 0.001


@dataclass(frozen=True)
class KernelParams:
    accel: float
    decel: float
    tau: float
    max_speed: float
    step_length: float = 1.0

    @classmethod
    def from_params(cls, params: Mapping[str, Any], step_length: float = 1.0) -> "KernelParams":
        return cls(
            accel=get_positive_float(params, "accel", VEHICLE_TYPE_DEFAULTS["accel"]),
            decel=get_positive_float(params, "decel", VEHICLE_TYPE_DEFAULTS["decel"]),
            tau=get_float(params, "tau", VEHICLE_TYPE_DEFAULTS["tau"]),
            max_speed=get_positive_float(params, "max_speed", VEHICLE_TYPE_DEFAULTS["max_speed"]),
            step_length=get_positive_float({"step_length": step_length}, "step_length", 1.0),
        )


class CarFollowingKernel:
    """Euler-update kinematic bounds shared by car-following models.

    All speeds are in m/s, distances in m and accelerations in m/s^2. One
    instance serves one vehicle type.
    """

    def __init__(self, params: KernelParams) -> None:
        self.params = params

    @property
    def headway_time(self) -> float:
        return self.params.tau

    def accel2speed(self, accel: float) -> float:
        return accel * self.params.step_length

    def speed2dist(self, speed: float) -> float:
        return speed * self.params.step_length

    def brake_gap(self, speed: float, decel: Optional[float] = None, headway: Optional[float] = None) -> float:
        decel = self.params.decel if decel is None else decel
        headway = self.params.tau if headway is None else headway
        if decel <= 0:
            return float("inf") if speed > 0 else 0.0
        reduction = self.accel2speed(decel)
        steps = floor(speed / reduction)
        return self.params.step_length * (steps * speed - reduction * steps * (steps + 1) / 2.0) + speed * headway

    def maximum_safe_stop_speed(self, gap: float, speed: float = 0.0, headway: Optional[float] = None) -> float:
        gap -= NUMERICAL_EPS
        if gap <= 0:
            return 0.0
        b = self.accel2speed(self.params.decel)
        t = self.params.tau if headway is None or headway < 0 else headway
        s = self.params.step_length
        # n: whole steps of braking by b that fit into gap after reaction time t
        n = floor((sqrt((t - s / 2.0) ** 2 + 2.0 * s * gap / b) - (t - s / 2.0)) / s)
        n = max(n, 0)
        covered = 0.5 * n * (n - 1) * b * s + n * b * t
        r = (gap - covered) / (n * s + t) if n * s + t > 0 else 0.0
        return max(0.0, n * b + r)

    def maximum_safe_follow_speed(self, gap: float, speed: float, pred_speed: float, pred_max_decel: float) -> float:
        # leader assumed to brake at least as hard as the ego
        leader_stop = self.brake_gap(pred_speed, max(self.params.decel, pred_max_decel), 0.0)
        return self.maximum_safe_stop_speed(gap + leader_stop, speed)

    def max_next_speed(self, speed: float) -> float:
        return min(speed + self.accel2speed(self.params.accel), self.params.max_speed)

    def min_next_speed(self, speed: float) -> float:
        return max(speed - self.accel2speed(self.params.decel), 0.0)
