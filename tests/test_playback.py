import pytest

from pipeline_core import PipelineSimulator, SimulationConfig
from playback import PlaybackController

LW_1_0_2 = "8c410000"   # lw  $1, 0($2)
ADD_3_1_4 = "00241820"  # add $3, $1, $4


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def simulator(program):
    return PipelineSimulator(
        program(LW_1_0_2, ADD_3_1_4), SimulationConfig(stalls_enabled=True)
    )


def test_tick_waits_for_deadline(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, clock=clock)
    assert playback.start()
    assert playback.tick() is False
    clock.advance(0.5)
    assert playback.seconds_until_due() == pytest.approx(0.5)
    assert playback.tick() is False
    clock.advance(0.5)
    assert playback.tick() is True
    assert simulator.cycle == 1


def test_late_tick_steps_only_once(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, clock=clock)
    playback.start()
    clock.advance(10.0)
    assert playback.tick() is True
    assert playback.tick() is False
    assert simulator.cycle == 1


def test_pause_is_idempotent_and_cancels(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, clock=clock)
    playback.start()
    playback.pause()
    playback.pause()
    assert not playback.is_running
    assert playback.seconds_until_due() is None
    clock.advance(5.0)
    assert playback.tick() is False
    assert simulator.cycle == 0


def test_resume_continues_without_replaying(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, clock=clock)
    assert playback.resume() is False

    playback.start()
    clock.advance(1.0)
    playback.tick()
    playback.pause()
    assert playback.resume() is True
    clock.advance(1.0)
    playback.tick()
    assert [s.cycle for s in simulator.history] == [1, 2]


def test_playback_stops_when_finished(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, clock=clock)
    playback.start()
    for _ in range(20):
        clock.advance(1.0)
        playback.tick()
    assert simulator.is_finished()
    assert simulator.cycle == 7
    assert not playback.is_running
    assert playback.start() is False


def test_reset_cancels_then_resets(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, clock=clock)
    playback.start()
    clock.advance(1.0)
    playback.tick()
    playback.reset()
    assert not playback.is_running
    assert simulator.cycle == 0
    assert simulator.history == []
    playback.reset()


def test_speed_scales_period(simulator, clock):
    playback = PlaybackController(simulator, interval=1.0, speed=2.0, clock=clock)
    assert playback.period == pytest.approx(0.5)
    playback.start()
    clock.advance(0.5)
    assert playback.tick() is True
    with pytest.raises(ValueError):
        playback.speed = 0


def test_timing_defaults_live_on_controller(simulator):
    playback = PlaybackController(simulator)
    assert playback.interval == PlaybackController.DEFAULT_INTERVAL
    assert playback.speed == PlaybackController.DEFAULT_SPEED
    assert not hasattr(SimulationConfig, "DEFAULT_SPEED")
