"""Tests for the burn/recover state machine and fallback regulation."""

import signal

import pytest

from burn_control.controller import (
    BurnOutcome,
    ControllerState,
    ReactorController,
    regulation_setpoints,
)
from burn_control.planner import BurnPlan
from burn_control.simulation import SimulatedReactor
from burn_control.telemetry import ReactorStatusSnapshot

from conftest import FakeClock, MockReactor, make_info, make_snapshot


@pytest.fixture
def burn_config(config):
    # Small enough outflow for a 1e9 buffer to allow a ~2s burn
    return config.replace(max_outflow=1.0e8)


def make_controller(infos, config, clock=None):
    device = MockReactor(infos)
    controller = ReactorController(device, config, clock or FakeClock())
    return controller, device


class TestBurnTransition:
    def test_idle_to_burning_and_back(self, burn_config):
        controller, device = make_controller([make_info()], burn_config)
        assert controller.state is ControllerState.IDLE

        states = []
        original = controller.execute_burn

        def spy(plan):
            states.append(controller.state)
            result = original(plan)
            states.append(controller.state)
            return result

        controller.execute_burn = spy
        controller.run_cycle()

        result = controller.last_burn
        assert result is not None
        assert result.outcome is BurnOutcome.COMPLETED
        assert result.elapsed >= result.plan.burn_duration
        assert states == [ControllerState.IDLE, ControllerState.IDLE]
        assert controller.state is ControllerState.IDLE

    def test_burn_sequence_of_writes(self, burn_config):
        controller, device = make_controller([make_info()], burn_config)
        clock = controller.clock
        controller.run_cycle()
        plan = controller.last_burn.plan

        inflow = device.gate_writes("in")
        outflow = device.gate_writes("out")
        # Pre-charge ramp to full inflow, then back to full charge at the end
        assert inflow[:6][-1] == burn_config.charge_inflow
        assert inflow[-1] == burn_config.charge_inflow
        # Outflow ramp reaches the planned value, then closes
        assert outflow[5] == plan.allowed_outflow
        assert outflow[-1] == 0
        # Rest of floor(rest_duration), at least 1s
        assert clock.sleeps[-1] == max(1, int(plan.rest_duration))
        assert burn_config.pre_charge_delay in clock.sleeps

    def test_state_is_burning_inside_burn_loop(self, burn_config):
        controller, device = make_controller([make_info()], burn_config)
        seen = []
        original = controller.watchdog.check

        def check(snapshot):
            seen.append(controller.state)
            return original(snapshot)

        controller.watchdog.check = check
        controller.run_cycle()
        assert seen
        assert set(seen) == {ControllerState.BURNING}

    def test_watchdog_trip_aborts_burn(self, burn_config):
        infos = [make_info(), make_info(), make_info(saturation=0.05)]
        controller, device = make_controller(infos, burn_config)
        controller.run_cycle()

        result = controller.last_burn
        assert result.outcome is BurnOutcome.WATCHDOG_TRIP
        assert result.elapsed < result.plan.burn_duration
        assert device.gate_writes("out")[-2:] == [0, 0]
        assert device.gate_writes("in")[-1] == burn_config.charge_inflow
        assert controller.state is ControllerState.IDLE

    def test_field_collapse_trips_watchdog(self, burn_config):
        infos = [make_info(), make_info(field=0.1)]
        controller, _ = make_controller(infos, burn_config)
        controller.run_cycle()
        assert controller.last_burn.outcome is BurnOutcome.WATCHDOG_TRIP

    def test_lost_telemetry_aborts_burn(self, burn_config):
        controller, device = make_controller([make_info(), None], burn_config)
        controller.run_cycle()

        assert controller.last_burn.outcome is BurnOutcome.TELEMETRY_LOST
        assert controller.consecutive_failures == 1
        assert device.gate_writes("out")[-1] == 0
        assert controller.clock.sleeps[-1] >= 1

    def test_stop_signal_aborts_without_rest(self, burn_config):
        controller, device = make_controller([make_info()], burn_config)
        controller.refresh_status()
        plan = controller.planner.plan(controller.snapshot, 0.0)
        controller.running = False

        result = controller.execute_burn(plan)

        assert result.outcome is BurnOutcome.STOPPED
        assert device.gate_writes("out")[-1] == 0
        assert controller.clock.sleeps[-1] == burn_config.ramp_step_delay

    def test_short_rest_rounds_up_to_one_second(self, burn_config):
        controller, _ = make_controller([make_info()], burn_config)
        plan = BurnPlan(
            allowed_outflow=1000,
            burn_duration=0.1,
            rest_duration=0.4,
            predicted_net=-1000.0,
            required_reserve_fraction=0.05,
        )
        result = controller.execute_burn(plan)
        assert result.outcome is BurnOutcome.COMPLETED
        assert controller.clock.sleeps[-1] == 1

    def test_planner_not_called_during_burn(self, burn_config):
        controller, _ = make_controller([make_info()], burn_config)
        calls = []
        original = controller.planner.plan

        def plan(*args, **kwargs):
            calls.append(args)
            return original(*args, **kwargs)

        controller.planner.plan = plan
        controller.run_cycle()
        assert len(calls) == 1


class TestNoBurn:
    def test_low_saturation_stays_idle_and_regulates(self, burn_config):
        controller, device = make_controller([make_info(saturation=0.05)], burn_config)
        controller.run_cycle()

        assert controller.last_burn is None
        assert controller.state is ControllerState.IDLE
        assert device.gate_writes("in") == [100000]
        assert device.gate_writes("out") == [0]

    def test_no_plan_falls_back_to_regulation(self, config):
        # Gate conditions hold, but 0.95 * 2e9 RF/s is never safe for a 1e9 buffer
        controller, device = make_controller([make_info()], config)
        controller.run_cycle()

        assert controller.last_burn is None
        assert device.gate_writes("in") == [100000]
        assert device.gate_writes("out") == [0]

    def test_hot_reactor_does_not_burn(self, burn_config):
        controller, device = make_controller([make_info(temperature=8100)], burn_config)
        controller.run_cycle()
        assert controller.last_burn is None
        assert device.gate_writes("out") == [2000000]
        assert device.gate_writes("in") == [burn_config.charge_inflow]

    def test_estimator_updated_every_cycle(self, config):
        infos = [make_info(saturation=0.40), make_info(saturation=0.41)]
        clock = FakeClock()
        controller, _ = make_controller(infos, config, clock)
        controller.run_cycle()
        clock.sleep(5.0)
        controller.run_cycle()
        # 0.01 * 1e9 RF over the elapsed time
        assert controller.estimator.estimated_rate == pytest.approx(0.01e9 / 5.0)


class TestRegulationSetpoints:
    def test_below_target_holds_field(self, config):
        inflow, outflow = regulation_setpoints(make_snapshot(field=0.5), config)
        assert (inflow, outflow) == (100000, 0)

    def test_field_error_correction(self, config):
        inflow, _ = regulation_setpoints(make_snapshot(field=0.45), config)
        assert inflow == pytest.approx(3100000, abs=1)

    def test_strong_field_clamped_to_zero(self, config):
        inflow, _ = regulation_setpoints(make_snapshot(field=0.9), config)
        assert inflow == 0

    def test_temperature_outflow(self, config):
        inflow, outflow = regulation_setpoints(make_snapshot(temperature=8010), config)
        assert outflow == 200000
        assert inflow == 100000

    def test_large_outflow_forces_full_charge(self, config):
        inflow, outflow = regulation_setpoints(make_snapshot(temperature=8100), config)
        assert outflow == 2000000
        assert inflow == config.charge_inflow

    def test_safe_dump_near_full(self, config):
        _, outflow = regulation_setpoints(make_snapshot(saturation=0.95), config)
        assert outflow == pytest.approx(0.5 * config.max_outflow, rel=1e-6)

    def test_no_dump_into_weak_field(self, config):
        inflow, outflow = regulation_setpoints(
            make_snapshot(saturation=0.95, field=0.25), config
        )
        assert outflow == 0
        assert inflow == config.charge_inflow

    def test_outflow_clamped_to_max(self, config):
        _, outflow = regulation_setpoints(make_snapshot(temperature=2.0e6), config)
        assert outflow == config.max_outflow

    def test_missing_fields(self, config):
        info = make_info()
        info["maxFieldStrength"] = 0
        del info["fieldDrainRate"]
        inflow, outflow = regulation_setpoints(
            ReactorStatusSnapshot.from_info(info, 0.0), config
        )
        assert inflow == config.charge_inflow
        assert outflow == 0


class TestProtection:
    def test_emergency_shutdown(self, config):
        controller, device = make_controller([make_info(temperature=8300)], config)
        controller.run_cycle()

        assert device.stopped
        assert device.gate_writes("in") == [0]
        assert device.gate_writes("out") == [0]
        assert controller.shutdown_executed
        assert not controller.running

    def test_no_fuel_shutdown(self, config):
        controller, device = make_controller([make_info(fuel_used=1.0, status="warming_up")], config)
        controller.run_cycle()
        assert device.stopped
        assert controller.shutdown_executed

    def test_full_buffer_shutdown(self, config):
        controller, device = make_controller([make_info(saturation=1.0)], config)
        assert controller.refresh_status()
        assert controller.check_fuel_and_chaos() is False
        assert device.stopped

    def test_fuel_check_repeatable(self, config):
        controller, device = make_controller([make_info(saturation=0.96)], config)
        controller.refresh_status()
        assert [controller.check_fuel_and_chaos() for _ in range(3)] == [True] * 3
        assert not device.stopped

    def test_emergency_check_repeatable(self, config):
        controller, _ = make_controller([make_info(field=0.1)], config)
        controller.refresh_status()
        assert [controller.is_emergency() for _ in range(3)] == [True] * 3

    def test_stopping_zeroes_gates(self, config):
        controller, device = make_controller([make_info(status="stopping")], config)
        controller.run_cycle()
        assert device.gate_writes("in") == [0]
        assert device.gate_writes("out") == [0]
        assert not device.stopped

    def test_failed_read_keeps_last_snapshot(self, config):
        controller, _ = make_controller([make_info(temperature=7100), None], config)
        controller.refresh_status()
        assert not controller.refresh_status()
        assert controller.snapshot.temperature == 7100

    def test_consecutive_failures_escalate(self, config):
        controller, device = make_controller([None], config.replace(max_consecutive_failures=3))
        for _ in range(2):
            controller.run_cycle()
        assert not device.stopped
        controller.run_cycle()
        assert device.stopped
        assert not controller.running

    def test_success_resets_failure_count(self, config):
        infos = [None, None, make_info(), None, None]
        controller, device = make_controller(infos, config.replace(max_consecutive_failures=3))
        for _ in range(5):
            controller.run_cycle()
        assert controller.consecutive_failures == 2
        assert not device.stopped

    def test_failed_writes_do_not_raise(self, config):
        controller, device = make_controller([make_info(saturation=0.05)], config)
        device.fail_writes.update({"in", "out"})
        controller.run_cycle()
        assert len(device.writes) == 2

    def test_non_finite_telemetry_regulates(self, config):
        info = make_info()
        info["fieldStrength"] = float("nan")
        info["maxEnergySaturation"] = float("inf")
        controller, device = make_controller([info], config)
        controller.run_cycle()

        assert controller.last_burn is None
        assert not device.stopped
        assert device.gate_writes("in") == [config.charge_inflow]
        assert device.gate_writes("out") == [0]

    def test_non_finite_temperature_skips_cycle(self, config):
        info = make_info()
        info["temperature"] = float("inf")
        controller, device = make_controller([info], config)
        controller.run_cycle()

        assert controller.consecutive_failures == 0
        assert not device.stopped
        assert device.writes == []


class TestSetupAndRun:
    def test_setup_takes_manual_control(self, config):
        controller, device = make_controller([make_info()], config)
        controller.estimator.update(0.0, 0.5, 1.0e9)
        controller.setup()
        assert device.overrides == {"in": True, "out": True}
        assert device.writes == [("in", 0), ("out", 0)]
        assert controller.estimator._last_timestamp is None

    def test_run_until_fail_safe(self, config, monkeypatch):
        monkeypatch.setattr(signal, "signal", lambda *args: None)
        controller, device = make_controller([make_info(), make_info(temperature=8500)], config)
        controller.run()
        assert device.stopped
        # No extra writes after the shutdown
        assert device.writes[-2:] == [("in", 0), ("out", 0)]

    def test_run_survives_unexpected_errors(self, config, monkeypatch):
        monkeypatch.setattr(signal, "signal", lambda *args: None)
        controller, device = make_controller([make_info()], config)
        calls = []

        def broken_cycle():
            calls.append(1)
            if len(calls) == 3:
                controller.running = False
            raise RuntimeError("boom")

        controller.run_cycle = broken_cycle
        controller.run()
        assert len(calls) == 3
        assert device.writes[-2:] == [("out", 0), ("in", config.charge_inflow)]

    def test_signal_handler_stops_loop(self, config):
        controller, _ = make_controller([make_info()], config)
        controller._signal_handler(signal.SIGTERM, None)
        assert not controller.running


class TestSimulatedPlant:
    def test_burn_keeps_buffer_above_floor(self, config):
        clock = FakeClock()
        cfg = config.replace(max_outflow=2.0e7)
        reactor = SimulatedReactor(clock)
        controller = ReactorController(reactor, cfg, clock)
        controller.setup()

        controller.run_cycle()

        result = controller.last_burn
        assert result is not None
        assert result.outcome is BurnOutcome.COMPLETED
        assert reactor.energy / reactor.max_energy > cfg.min_safe_saturation_frac
        assert reactor.flows["out"] == 0
        assert reactor.flows["in"] == cfg.charge_inflow

    def test_regulates_without_burn(self, config):
        clock = FakeClock()
        reactor = SimulatedReactor(clock)
        controller = ReactorController(reactor, config, clock)
        controller.setup()
        for _ in range(10):
            controller.run_cycle()
            clock.sleep(config.control_interval)

        assert controller.last_burn is None
        assert controller.running
        assert 0.4 < reactor.field_strength / reactor.max_field < 0.6

    def test_stop_reactor_cools_down(self):
        clock = FakeClock()
        reactor = SimulatedReactor(clock)
        reactor.stop_reactor()
        clock.sleep(600)
        assert reactor.get_reactor_info()["status"] == "cold"
