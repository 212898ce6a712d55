from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from accsim.control.acc import ACCController, ControlMode, EgoVehicle
from accsim.sim.kernel import CarFollowingKernel


@dataclass
class LongitudinalVehicle:
    pos: float
    speed: float
    length: float = 5.0


@dataclass
class SimFrame:
    t: float
    ego_pos: float
    ego_speed: float
    leader_pos: float
    leader_speed: float
    gap: float
    mode: ControlMode
    overridden: bool


# leader_fn(t, leader_speed, dt) -> next leader speed
LeaderFn = Callable[[float, float, float], float]


class Simulator:
    def __init__(
        self,
        kernel: CarFollowingKernel,
        controller: ACCController,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.kernel = kernel
        self.controller = controller
        self.logger = logger or logging.getLogger(__name__)

    def rollout(
        self,
        ego_vehicle: EgoVehicle,
        ego: LongitudinalVehicle,
        leader: LongitudinalVehicle,
        steps: int,
        dt: float,
        leader_fn: LeaderFn,
        leader_max_decel: float,
        stop_position: Optional[float] = None,
        queries_per_step: int = 1,
    ) -> List[SimFrame]:
        frames: List[SimFrame] = []
        ego = LongitudinalVehicle(ego.pos, ego.speed, ego.length)
        leader = LongitudinalVehicle(leader.pos, leader.speed, leader.length)
        t = 0.0
        for _ in range(steps):
            t += dt
            gap = leader.pos - leader.length - ego.pos - ego_vehicle.min_gap
            overridden = False
            if gap < self.controller.interaction_gap(ego_vehicle, leader.speed):
                result = None
                for _ in range(max(1, queries_per_step)):
                    result = self.controller.follow(
                        ego_vehicle, ego.speed, gap, leader.speed, leader_max_decel, now=t
                    )
                v_next = result.speed
                overridden = result.overridden
            else:
                v_next = min(self.kernel.max_next_speed(ego.speed), ego_vehicle.desired_speed)

            if stop_position is not None:
                stop_gap = stop_position - ego.pos - ego_vehicle.min_gap
                v_next = min(v_next, self.controller.stop_speed(ego.speed, stop_gap, ego_vehicle.action_step_length))

            leader.speed = max(0.0, leader_fn(t, leader.speed, dt))
            leader.pos += leader.speed * dt
            ego.speed = v_next
            ego.pos += ego.speed * dt

            gap = leader.pos - leader.length - ego.pos - ego_vehicle.min_gap
            frames.append(
                SimFrame(
                    t=t,
                    ego_pos=ego.pos,
                    ego_speed=ego.speed,
                    leader_pos=leader.pos,
                    leader_speed=leader.speed,
                    gap=gap,
                    mode=ego_vehicle.state.mode,
                    overridden=overridden,
                )
            )
        self.logger.debug("rollout finished after %d steps at t=%.2f", steps, t)
        return frames
