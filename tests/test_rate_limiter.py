from __future__ import annotations

import asyncio

import pytest

from chatrelay.core.limiter import CooldownRateLimiter


def test_second_call_within_window_is_rejected(rate_limiter):
    assert rate_limiter.allow("session-a") is True
    assert rate_limiter.allow("session-a") is False


def test_call_after_window_is_accepted(rate_limiter, clock):
    assert rate_limiter.allow("session-a")
    clock.advance(2.9)
    assert not rate_limiter.allow("session-a")
    clock.advance(0.5)
    assert rate_limiter.allow("session-a")


def test_rejected_call_does_not_extend_the_window(rate_limiter, clock):
    assert rate_limiter.allow("k")
    clock.advance(2.0)
    assert not rate_limiter.allow("k")
    clock.advance(1.0)
    # 3s since the accepted call, even though the rejected one was 1s ago
    assert rate_limiter.allow("k")


def test_keys_are_independent(rate_limiter):
    assert rate_limiter.allow("a")
    assert rate_limiter.allow("b")
    assert not rate_limiter.allow("a")


def test_sweep_drops_only_idle_entries(rate_limiter, clock):
    rate_limiter.allow("old")
    clock.advance(5.0)
    rate_limiter.allow("fresh")

    assert rate_limiter.sweep() == 1
    assert len(rate_limiter) == 1
    # "fresh" is still cooling down, so its entry must have survived
    assert not rate_limiter.allow("fresh")
    assert rate_limiter.allow("old")


def test_zero_cooldown_never_rejects():
    limiter = CooldownRateLimiter(cooldown_seconds=0)
    assert all(limiter.allow("k") for _ in range(5))


@pytest.mark.asyncio
async def test_background_sweeper_runs_until_stopped(clock):
    limiter = CooldownRateLimiter(cooldown_seconds=1.0, sweep_interval_seconds=0.01, clock=clock)
    limiter.allow("k")
    clock.advance(2.0)

    limiter.start()
    for _ in range(100):
        if len(limiter) == 0:
            break
        await asyncio.sleep(0.01)
    await limiter.stop()

    assert len(limiter) == 0
