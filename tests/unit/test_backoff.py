import pytest

from sharedkit.utils.backoff import exp_backoff, additive_jitter, capped
from sharedkit.http.retry import RetryConfig, calculate_retry_delay

def test_exp_backoff_progression():
    assert [exp_backoff(i, 0.25) for i in range(4)] == [0.25, 0.5, 1.0, 2.0]

def test_additive_jitter_bounds(monkeypatch):
    monkeypatch.setattr("sharedkit.utils.backoff.random.random", lambda: 0.0)
    assert additive_jitter(10.0) == 10.0
    monkeypatch.setattr("sharedkit.utils.backoff.random.random", lambda: 0.999)
    assert additive_jitter(10.0) == pytest.approx(10.999)

def test_capped():
    assert capped(5.0, 4.0) == 4.0
    assert capped(3.0, 4.0) == 3.0

def test_retry_delay_stays_within_jitter_band():
    cfg = RetryConfig(base_delay_s=1.0, max_delay_s=30.0)
    for attempt in range(4):
        d = calculate_retry_delay(attempt, cfg)
        assert 2 ** attempt <= d < 2 ** attempt * 1.1

def test_retry_delay_capped():
    cfg = RetryConfig(base_delay_s=1.0, max_delay_s=5.0)
    assert calculate_retry_delay(10, cfg) == 5.0
