from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Mapping, Optional, Protocol

from accsim.utils.config import get_float


DEFAULT_SC_GAIN = -0.4
DEFAULT_GCC_GAIN_SPEED = 0.8
DEFAULT_GCC_GAIN_SPACE = 0.04
DEFAULT_GC_GAIN_SPEED = 0.07
DEFAULT_GC_GAIN_SPACE = 0.23
DEFAULT_CA_GAIN_SPEED = 0.23
DEFAULT_CA_GAIN_SPACE = 0.8
DEFAULT_COLLISION_MINGAP_FACTOR = 0.1
# Margin above the safe follow speed before the law is overridden.
DEFAULT_EMERGENCY_OVERRIDE_THRESHOLD = 2.0

SPEED_CONTROL_GAP_LIMIT = 120.0
GAP_CONTROL_GAP_LIMIT = 100.0
# Radar range.
INTERACTION_GAP = 250.0

GAP_CONTROL_SPACING_TOL = 0.2
GAP_CONTROL_SPEED_TOL = 0.1


class ControlMode(IntEnum):
    SPEED = 0
    GAP = 1


class GapRegime(Enum):
    GAP_CONTROL = "gap_control"
    COLLISION_AVOIDANCE = "collision_avoidance"
    GAP_CLOSING = "gap_closing"


@dataclass(frozen=True)
class ACCConfig:
    speed_control_gain: float = DEFAULT_SC_GAIN
    gap_closing_gain_speed: float = DEFAULT_GCC_GAIN_SPEED
    gap_closing_gain_space: float = DEFAULT_GCC_GAIN_SPACE
    gap_control_gain_speed: float = DEFAULT_GC_GAIN_SPEED
    gap_control_gain_space: float = DEFAULT_GC_GAIN_SPACE
    collision_avoidance_gain_speed: float = DEFAULT_CA_GAIN_SPEED
    collision_avoidance_gain_space: float = DEFAULT_CA_GAIN_SPACE
    collision_min_gap_factor: float = DEFAULT_COLLISION_MINGAP_FACTOR
    emergency_override_threshold: float = DEFAULT_EMERGENCY_OVERRIDE_THRESHOLD

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> "ACCConfig":
        """Build a config from vehicle-type parameters, falling back to defaults."""
        return cls(
            speed_control_gain=get_float(params, "sc_gain", DEFAULT_SC_GAIN),
            gap_closing_gain_speed=get_float(params, "gcc_gain_speed", DEFAULT_GCC_GAIN_SPEED),
            gap_closing_gain_space=get_float(params, "gcc_gain_space", DEFAULT_GCC_GAIN_SPACE),
            gap_control_gain_speed=get_float(params, "gc_gain_speed", DEFAULT_GC_GAIN_SPEED),
            gap_control_gain_space=get_float(params, "gc_gain_space", DEFAULT_GC_GAIN_SPACE),
            collision_avoidance_gain_speed=get_float(params, "ca_gain_speed", DEFAULT_CA_GAIN_SPEED),
            collision_avoidance_gain_space=get_float(params, "ca_gain_space", DEFAULT_CA_GAIN_SPACE),
            collision_min_gap_factor=get_float(params, "collision_mingap_factor", DEFAULT_COLLISION_MINGAP_FACTOR),
            emergency_override_threshold=get_float(
                params, "emergency_override_threshold", DEFAULT_EMERGENCY_OVERRIDE_THRESHOLD
            ),
        )


@dataclass
class ControlState:
    mode: ControlMode = ControlMode.SPEED
    last_update_time: float = 0.0


@dataclass
class EgoVehicle:
    """Per-vehicle view the controller needs from the host."""

    speed_limit: float
    max_speed: float
    min_gap: float
    action_step_length: float
    state: ControlState = field(default_factory=ControlState)

    @property
    def desired_speed(self) -> float:
        return min(self.speed_limit, self.max_speed)


@dataclass(frozen=True)
class StepInput:
    speed: float
    pred_speed: float
    gap2pred: float
    pred_max_decel: float
    desired_speed: float
    min_gap: float
    action_step_length: float
    now: float


@dataclass(frozen=True)
class ACCResult:
    speed: float
    v_acc: float
    v_safe: float
    mode: ControlMode
    law: ControlMode
    overridden: bool


class Kernel(Protocol):
    headway_time: float

    def accel2speed(self, accel: float) -> float:
        ...

    def maximum_safe_follow_speed(self, gap: float, speed: float, pred_speed: float, pred_max_decel: float) -> float:
        ...

    def maximum_safe_stop_speed(self, gap: float, speed: float, headway: Optional[float] = None) -> float:
        ...

    def max_next_speed(self, speed: float) -> float:
        ...


def accel_speed_control(cfg: ACCConfig, v_err: float) -> float:
    return cfg.speed_control_gain * v_err


def classify_gap_regime(spacing_err: float, delta_vel: float) -> GapRegime:
    if abs(spacing_err) < GAP_CONTROL_SPACING_TOL and abs(delta_vel) < GAP_CONTROL_SPEED_TOL:
        return GapRegime.GAP_CONTROL
    if spacing_err < 0:
        return GapRegime.COLLISION_AVOIDANCE
    # spacing_err == 0 lands here
    return GapRegime.GAP_CLOSING


def accel_gap_control(
    cfg: ACCConfig,
    gap2pred: float,
    speed: float,
    pred_speed: float,
    min_gap: float,
    headway_time: float,
) -> float:
    des_spacing = headway_time * speed
    # gap2pred already excludes min_gap; the law subtracts it a second time
    gap = gap2pred - min_gap
    spacing_err = gap - des_spacing
    delta_vel = pred_speed - speed

    regime = classify_gap_regime(spacing_err, delta_vel)
    if regime is GapRegime.GAP_CONTROL:
        return cfg.gap_control_gain_speed * delta_vel + cfg.gap_control_gain_space * spacing_err
    if regime is GapRegime.COLLISION_AVOIDANCE:
        return cfg.collision_avoidance_gain_speed * delta_vel + cfg.collision_avoidance_gain_space * spacing_err
    return cfg.gap_closing_gain_speed * delta_vel + cfg.gap_closing_gain_space * spacing_err


def _acc_speed(
    state: ControlState,
    cfg: ACCConfig,
    step: StepInput,
    headway_time: float,
    accel2speed: Callable[[float], float],
) -> tuple[float, ControlMode]:
    v_err = step.speed - step.desired_speed

    may_switch = False
    if state.last_update_time != step.now:
        state.last_update_time = step.now
        may_switch = True

    if step.gap2pred > SPEED_CONTROL_GAP_LIMIT:
        law = ControlMode.SPEED
        if may_switch:
            state.mode = ControlMode.SPEED
    elif step.gap2pred < GAP_CONTROL_GAP_LIMIT:
        law = ControlMode.GAP
        if may_switch:
            state.mode = ControlMode.GAP
    else:
        law = ControlMode(state.mode)

    if law == ControlMode.SPEED:
        accel = accel_speed_control(cfg, v_err)
    else:
        accel = accel_gap_control(cfg, step.gap2pred, step.speed, step.pred_speed, step.min_gap, headway_time)

    new_speed = step.speed + accel2speed(accel)
    return max(0.0, new_speed), law


def compute_acc_speed(
    state: ControlState,
    cfg: ACCConfig,
    step: StepInput,
    headway_time: float,
    accel2speed: Callable[[float], float],
) -> tuple[float, ControlMode]:
    """Unconstrained ACC speed for one step.

    Returns the new speed and the updated ``state.mode``. The mode is only
    updated on the first call for a given ``step.now``, so within one timestamp
    the returned mode can differ from the law that produced the speed. Inside
    the deadband ``[GAP_CONTROL_GAP_LIMIT, SPEED_CONTROL_GAP_LIMIT]`` the stored
    mode selects the law.
    """
    new_speed, _ = _acc_speed(state, cfg, step, headway_time, accel2speed)
    return new_speed, ControlMode(state.mode)


class ACCController:
    def __init__(self, cfg: ACCConfig, kernel: Kernel, logger: Optional[logging.Logger] = None) -> None:
        self.cfg = cfg
        self.kernel = kernel
        self.logger = logger or logging.getLogger(__name__)

    def create_vehicle_variables(self) -> ControlState:
        return ControlState(mode=ControlMode.SPEED, last_update_time=0.0)

    def duplicate(self, cfg: ACCConfig, kernel: Optional[Kernel] = None) -> "ACCController":
        return ACCController(cfg, kernel if kernel is not None else self.kernel, logger=self.logger)

    def interaction_gap(self, ego: Optional[EgoVehicle] = None, pred_speed: float = 0.0) -> float:
        return INTERACTION_GAP

    def follow(
        self,
        ego: EgoVehicle,
        speed: float,
        gap2pred: float,
        pred_speed: float,
        pred_max_decel: float,
        now: float,
    ) -> ACCResult:
        step = StepInput(
            speed=speed,
            pred_speed=pred_speed,
            gap2pred=gap2pred,
            pred_max_decel=pred_max_decel,
            desired_speed=ego.desired_speed,
            min_gap=ego.min_gap,
            action_step_length=ego.action_step_length,
            now=now,
        )
        v_acc, law = _acc_speed(ego.state, self.cfg, step, self.kernel.headway_time, self.kernel.accel2speed)
        v_safe = self.kernel.maximum_safe_follow_speed(gap2pred, speed, pred_speed, pred_max_decel)

        mode = ControlMode(ego.state.mode)
        threshold = self.cfg.emergency_override_threshold
        if v_safe + threshold < v_acc:
            self.logger.debug(
                "t=%s override v=%.3f vL=%.3f gap=%.3f vACC=%.3f vSafe=%.3f mode=%s",
                now, speed, pred_speed, gap2pred, v_acc, v_safe, mode.name,
            )
            return ACCResult(speed=v_safe + threshold, v_acc=v_acc, v_safe=v_safe, mode=mode, law=law, overridden=True)
        return ACCResult(speed=v_acc, v_acc=v_acc, v_safe=v_safe, mode=mode, law=law, overridden=False)

    def follow_speed(
        self,
        ego: EgoVehicle,
        speed: float,
        gap2pred: float,
        pred_speed: float,
        pred_max_decel: float,
        now: float,
    ) -> float:
        return self.follow(ego, speed, gap2pred, pred_speed, pred_max_decel, now).speed

    def stop_speed(self, speed: float, gap: float, action_step_length: float) -> float:
        # headway = action step so the stop line is approached with uniform deceleration
        return min(
            self.kernel.maximum_safe_stop_speed(gap, speed, action_step_length),
            self.kernel.max_next_speed(speed),
        )
