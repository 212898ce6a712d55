import dataclasses
import logging

import pytest

from accsim.control.acc import (
    ACCConfig,
    ACCController,
    ControlMode,
    ControlState,
    EgoVehicle,
    GapRegime,
    INTERACTION_GAP,
    StepInput,
    accel_gap_control,
    accel_speed_control,
    classify_gap_regime,
    compute_acc_speed,
)
from accsim.sim.kernel import CarFollowingKernel, KernelParams
from accsim.utils.config import ConfigError


class StubKernel:
    headway_time = 1.0

    def __init__(self, v_safe=1e9, v_stop=1e9, v_next=1e9, step_length=1.0):
        self.v_safe = v_safe
        self.v_stop = v_stop
        self.v_next = v_next
        self.step_length = step_length
        self.stop_calls = []

    def accel2speed(self, accel):
        return accel * self.step_length

    def maximum_safe_follow_speed(self, gap, speed, pred_speed, pred_max_decel):
        return self.v_safe

    def maximum_safe_stop_speed(self, gap, speed, headway=None):
        self.stop_calls.append((gap, speed, headway))
        return self.v_stop

    def max_next_speed(self, speed):
        return self.v_next


def _step(speed, gap2pred, now, pred_speed=20.0, desired_speed=30.0, min_gap=2.5):
    return StepInput(
        speed=speed,
        pred_speed=pred_speed,
        gap2pred=gap2pred,
        pred_max_decel=4.5,
        desired_speed=desired_speed,
        min_gap=min_gap,
        action_step_length=1.0,
        now=now,
    )


def _identity(accel):
    return accel


def test_speed_law_accelerates_below_desired_speed():
    cfg = ACCConfig()
    assert accel_speed_control(cfg, 25.0 - 30.0) == pytest.approx(2.0)
    assert accel_speed_control(cfg, 35.0 - 30.0) == pytest.approx(-2.0)


def test_speed_law_converges_on_open_road():
    cfg = ACCConfig()
    state = ControlState()
    speed = 25.0
    prev_err = abs(speed - 30.0)
    for i in range(20):
        speed, mode = compute_acc_speed(state, cfg, _step(speed, 200.0, now=float(i + 1)), 1.0, _identity)
        err = abs(speed - 30.0)
        assert mode == ControlMode.SPEED
        assert err < prev_err
        assert speed <= 30.0
        prev_err = err
    assert speed == pytest.approx(30.0, abs=1e-3)


def test_mode_switches_once_per_timestamp():
    cfg = ACCConfig()
    state = ControlState()

    compute_acc_speed(state, cfg, _step(20.0, 50.0, now=1.0), 1.0, _identity)
    assert state.mode == ControlMode.GAP
    assert state.last_update_time == 1.0

    # speed law still applies: -0.4 * (20 - 30) = 4.0
    speed, mode = compute_acc_speed(state, cfg, _step(20.0, 200.0, now=1.0), 1.0, _identity)
    assert speed == pytest.approx(24.0)
    assert mode == state.mode == ControlMode.GAP

    compute_acc_speed(state, cfg, _step(20.0, 200.0, now=2.0), 1.0, _identity)
    assert state.mode == ControlMode.SPEED


def test_initial_timestamp_does_not_switch_mode():
    state = ControlState()
    compute_acc_speed(state, ACCConfig(), _step(20.0, 50.0, now=0.0), 1.0, _identity)
    assert state.mode == ControlMode.SPEED


def test_deadband_keeps_gap_law():
    cfg = ACCConfig()
    state = ControlState(mode=ControlMode.GAP, last_update_time=0.0)
    # gap law: spacing_err = 107.5 - 20 = 87.5, gap closing -> 0.04 * 87.5
    speed, mode = compute_acc_speed(state, cfg, _step(20.0, 110.0, now=5.0), 1.0, _identity)
    assert mode == ControlMode.GAP
    assert speed == pytest.approx(23.5)
    assert state.mode == ControlMode.GAP
    assert state.last_update_time == 5.0


def test_deadband_keeps_speed_law():
    state = ControlState(mode=ControlMode.SPEED)
    speed, mode = compute_acc_speed(state, ACCConfig(), _step(20.0, 110.0, now=5.0), 1.0, _identity)
    assert mode == ControlMode.SPEED
    assert speed == pytest.approx(24.0)


@pytest.mark.parametrize("gap2pred", [100.0, 120.0])
def test_deadband_bounds_are_inclusive(gap2pred):
    state = ControlState(mode=ControlMode.GAP)
    _, mode = compute_acc_speed(state, ACCConfig(), _step(20.0, gap2pred, now=1.0), 1.0, _identity)
    assert mode == ControlMode.GAP


def test_gap_regime_priority():
    assert classify_gap_regime(0.1, 0.05) is GapRegime.GAP_CONTROL
    assert classify_gap_regime(-0.2, 0.0) is GapRegime.COLLISION_AVOIDANCE
    assert classify_gap_regime(0.1, 0.1) is GapRegime.GAP_CLOSING
    assert classify_gap_regime(5.0, -3.0) is GapRegime.GAP_CLOSING


def test_zero_spacing_error_is_gap_closing():
    assert classify_gap_regime(0.0, 1.0) is GapRegime.GAP_CLOSING
    cfg = ACCConfig()
    # gap = 12.5 - 2.5 = 10 = headway * speed
    accel = accel_gap_control(cfg, gap2pred=12.5, speed=10.0, pred_speed=11.0, min_gap=2.5, headway_time=1.0)
    assert accel == pytest.approx(0.8)


def test_collision_avoidance_gains():
    cfg = ACCConfig()
    accel = accel_gap_control(cfg, gap2pred=12.5, speed=20.0, pred_speed=15.0, min_gap=2.5, headway_time=1.0)
    assert accel == pytest.approx(0.23 * -5.0 + 0.8 * -10.0)


def test_gap_following_gains():
    cfg = ACCConfig()
    accel = accel_gap_control(cfg, gap2pred=22.6, speed=20.0, pred_speed=20.05, min_gap=2.5, headway_time=1.0)
    assert accel == pytest.approx(0.07 * 0.05 + 0.23 * 0.1)


def test_speed_is_floored_at_zero():
    state = ControlState()
    speed, _ = compute_acc_speed(state, ACCConfig(), _step(5.0, 3.0, now=1.0, pred_speed=0.0), 1.0, lambda a: 2.0 * a)
    assert speed == 0.0


def _ego(speed_limit=43.0, max_speed=60.0):
    return EgoVehicle(speed_limit=speed_limit, max_speed=max_speed, min_gap=2.5, action_step_length=1.0)


def test_follow_speed_overrides_unsafe_command():
    controller = ACCController(ACCConfig(), StubKernel(v_safe=20.0))
    # speed law: -0.4 * (38 - 43) = 2.0 -> vACC = 40
    result = controller.follow(_ego(), 38.0, 200.0, 10.0, 4.5, now=1.0)
    assert result.v_acc == pytest.approx(40.0)
    assert result.overridden
    assert result.speed == pytest.approx(22.0)
    assert controller.follow_speed(_ego(), 38.0, 200.0, 10.0, 4.5, now=1.0) == pytest.approx(22.0)


@pytest.mark.parametrize("v_safe", [38.0, 38.5, 60.0])
def test_follow_speed_keeps_safe_command(v_safe):
    controller = ACCController(ACCConfig(), StubKernel(v_safe=v_safe))
    result = controller.follow(_ego(), 38.0, 200.0, 10.0, 4.5, now=1.0)
    assert not result.overridden
    assert result.speed == pytest.approx(40.0)


def test_follow_speed_uses_configured_override_margin():
    controller = ACCController(ACCConfig(emergency_override_threshold=0.5), StubKernel(v_safe=20.0))
    result = controller.follow(_ego(), 38.0, 200.0, 10.0, 4.5, now=1.0)
    assert result.overridden
    assert result.speed == pytest.approx(20.5)


def test_follow_reports_law_and_debounced_mode():
    controller = ACCController(ACCConfig(), StubKernel())
    ego = _ego()
    first = controller.follow(ego, 20.0, 50.0, 20.0, 4.5, now=1.0)
    assert first.mode == first.law == ControlMode.GAP

    second = controller.follow(ego, 20.0, 200.0, 20.0, 4.5, now=1.0)
    assert second.law == ControlMode.SPEED
    assert second.mode == ego.state.mode == ControlMode.GAP


def test_follow_speed_uses_desired_speed_minimum():
    controller = ACCController(ACCConfig(), StubKernel())
    ego = _ego(speed_limit=50.0, max_speed=30.0)
    assert controller.follow_speed(ego, 25.0, 200.0, 10.0, 4.5, now=1.0) == pytest.approx(27.0)


def test_follow_speed_updates_vehicle_state():
    controller = ACCController(ACCConfig(), StubKernel())
    ego = _ego()
    controller.follow_speed(ego, 20.0, 50.0, 20.0, 4.5, now=3.0)
    assert ego.state.mode == ControlMode.GAP
    assert ego.state.last_update_time == 3.0


def test_follow_speed_never_negative():
    controller = ACCController(ACCConfig(), StubKernel(step_length=2.0))
    assert controller.follow_speed(_ego(), 5.0, 3.0, 0.0, 4.5, now=1.0) == 0.0


def test_override_is_logged(caplog):
    caplog.set_level(logging.DEBUG, logger="accsim.control.acc")
    controller = ACCController(ACCConfig(), StubKernel(v_safe=20.0))
    controller.follow_speed(_ego(), 38.0, 200.0, 10.0, 4.5, now=1.0)
    assert "override" in caplog.text


def test_override_log_accepts_integer_mode(caplog):
    caplog.set_level(logging.DEBUG, logger="accsim.control.acc")
    controller = ACCController(ACCConfig(), StubKernel(v_safe=20.0))
    ego = _ego()
    ego.state = ControlState(mode=0, last_update_time=1.0)
    result = controller.follow(ego, 38.0, 200.0, 10.0, 4.5, now=1.0)
    assert result.overridden
    assert result.mode == ControlMode.SPEED
    assert "mode=SPEED" in caplog.text


def test_stop_speed_is_min_of_kernel_bounds():
    kernel = StubKernel(v_stop=7.0, v_next=9.0)
    controller = ACCController(ACCConfig(), kernel)
    assert controller.stop_speed(10.0, 30.0, 0.5) == 7.0
    assert kernel.stop_calls == [(30.0, 10.0, 0.5)]

    kernel.v_stop, kernel.v_next = 9.0, 7.0
    assert controller.stop_speed(10.0, 30.0, 0.5) == 7.0


def test_stop_speed_bounded_by_real_kernel():
    kernel = CarFollowingKernel(KernelParams(accel=2.6, decel=4.5, tau=1.0, max_speed=55.56, step_length=0.1))
    controller = ACCController(ACCConfig(), kernel)
    state = ControlState(mode=ControlMode.GAP, last_update_time=7.0)
    for speed in (0.0, 5.0, 20.0, 40.0):
        for gap in (-1.0, 0.0, 2.0, 25.0, 300.0):
            v = controller.stop_speed(speed, gap, 0.1)
            assert v <= min(kernel.maximum_safe_stop_speed(gap, speed, 0.1), kernel.max_next_speed(speed))
            assert v >= 0.0
    assert state == ControlState(mode=ControlMode.GAP, last_update_time=7.0)


def test_interaction_gap_is_radar_range():
    controller = ACCController(ACCConfig(), StubKernel())
    assert controller.interaction_gap() == INTERACTION_GAP == 250.0
    assert controller.interaction_gap(_ego(), 30.0) == 250.0


def test_duplicate_has_independent_config():
    kernel = StubKernel()
    controller = ACCController(ACCConfig(), kernel)
    truck = controller.duplicate(ACCConfig(speed_control_gain=-0.8))
    assert truck is not controller
    assert truck.kernel is kernel
    assert truck.cfg.speed_control_gain == -0.8
    assert controller.cfg.speed_control_gain == -0.4


def test_config_is_read_only():
    cfg = ACCConfig()
    with pytest.raises(dataclasses.FrozenInstanceError):
        cfg.speed_control_gain = 1.0


def test_vehicle_variables_are_fresh():
    controller = ACCController(ACCConfig(), StubKernel())
    a = controller.create_vehicle_variables()
    b = controller.create_vehicle_variables()
    assert a == ControlState(mode=ControlMode.SPEED, last_update_time=0.0)
    assert a is not b


def test_config_from_params():
    cfg = ACCConfig.from_params({"sc_gain": "-0.5", "ca_gain_space": 1.2})
    assert cfg.speed_control_gain == -0.5
    assert cfg.collision_avoidance_gain_space == 1.2
    assert cfg.gap_closing_gain_speed == 0.8
    assert cfg.emergency_override_threshold == 2.0

    with pytest.raises(ConfigError):
        ACCConfig.from_params({"gc_gain_speed": "fast"})
