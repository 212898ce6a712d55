from __future__ import annotations

import argparse
import logging

from accsim.control.acc import ACCConfig, ACCController, EgoVehicle
from accsim.io.writer import OutputWriter
from accsim.label.labeler import Labeler
from accsim.scenario.leader import ManeuverFactory
from accsim.sim.kernel import CarFollowingKernel, KernelParams
from accsim.sim.rollout import LongitudinalVehicle, Simulator
from accsim.utils.config import AppConfig, get_float, get_positive_float


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Simulate an ACC vehicle following a leader")
    parser.add_argument("--config", required=True, nargs="+")
    parser.add_argument("--vehicle_type", default="default")
    parser.add_argument("--token", default="run-0")
    parser.add_argument("--steps", type=int, required=False)
    parser.add_argument("--dt", type=float, required=False)
    parser.add_argument("--output", required=True)
    parser.add_argument("--log_level", default="INFO")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(name)s %(levelname)s %(message)s")

    cfg = AppConfig.from_files(*args.config)
    vtype = cfg.vehicle_type(args.vehicle_type)
    sample_cfg = cfg.raw.get("sample", {})
    scenario_cfg = cfg.raw.get("scenario", {})

    dt = args.dt if args.dt is not None else get_positive_float(sample_cfg, "dt", 0.1)
    steps = args.steps if args.steps is not None else int(sample_cfg.get("steps", 600))

    kernel = CarFollowingKernel(KernelParams.from_params(vtype.params, step_length=dt))
    controller = ACCController(ACCConfig.from_params(vtype.params), kernel)

    ego_vehicle = EgoVehicle(
        speed_limit=get_positive_float(scenario_cfg, "speed_limit", 33.33),
        max_speed=kernel.params.max_speed,
        min_gap=get_float(vtype.params, "min_gap", 2.5),
        action_step_length=get_positive_float(vtype.params, "action_step_length", dt),
        state=controller.create_vehicle_variables(),
    )

    maneuver = ManeuverFactory(cfg.raw).sample(args.token)
    length = get_positive_float(vtype.params, "length", 5.0)
    ego = LongitudinalVehicle(pos=0.0, speed=get_float(scenario_cfg, "ego_speed", 20.0), length=length)
    leader = LongitudinalVehicle(
        pos=get_float(scenario_cfg, "initial_distance", 150.0),
        speed=maneuver.initial_speed,
        length=get_positive_float(scenario_cfg, "leader_length", length),
    )
    stop_position = scenario_cfg.get("stop_position")

    sim = Simulator(kernel, controller)
    frames = sim.rollout(
        ego_vehicle,
        ego,
        leader,
        steps=steps,
        dt=dt,
        leader_fn=maneuver.speed_fn(),
        leader_max_decel=get_positive_float(scenario_cfg, "leader_max_decel", kernel.params.decel),
        stop_position=float(stop_position) if stop_position is not None else None,
        queries_per_step=int(sample_cfg.get("queries_per_step", 1)),
    )

    labels = Labeler(cfg.raw.get("label", {})).compute(
        frames, ego_vehicle.min_gap, controller.cfg.collision_min_gap_factor
    )

    trajectory = [
        {
            "t": f.t,
            "ego_pos": f.ego_pos,
            "ego_speed": f.ego_speed,
            "leader_pos": f.leader_pos,
            "leader_speed": f.leader_speed,
            "gap": f.gap,
            "mode": f.mode.name,
            "overridden": f.overridden,
        }
        for f in frames
    ]
    meta = {
        "token": args.token,
        "vehicle_type": vtype.name,
        "maneuver": {
            "kind": maneuver.kind,
            "initial_speed": maneuver.initial_speed,
            "start_t": maneuver.start_t,
            "duration": maneuver.duration,
            "accel": maneuver.accel,
        },
        "dt": dt,
        "steps": steps,
    }

    writer = OutputWriter(args.output)
    run_dir = writer.write_run(args.token, trajectory, labels.__dict__, meta)

    print(
        f"Wrote run output to {run_dir} "
        f"(collision={labels.collision}, smallest_gap={labels.smallest_gap:.2f}, min_ttc={labels.min_ttc:.2f}, "
        f"overrides={labels.override_count})"
    )


if __name__ == "__main__":
    main()
