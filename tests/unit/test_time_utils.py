from sharedkit.utils.time import seconds_since, elapsed_ms
from tests.helpers.fake_clock import FakeClock

def test_seconds_since_clamps_at_zero():
    clock = FakeClock(100.0)
    assert seconds_since(90.0, clock) == 10.0
    assert seconds_since(150.0, clock) == 0.0

def test_elapsed_ms():
    clock = FakeClock(10.0)
    clock.advance(0.25)
    assert elapsed_ms(10.0, clock) == 250.0
