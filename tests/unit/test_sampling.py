"""Tests for deterministic rate sampling."""

import math
import threading

import pytest
from hypothesis import given
from hypothesis import strategies as st

from capturepy.core.sampling import RateSampler


@pytest.mark.core
class TestRateSampler:
    """Tests for RateSampler."""

    @pytest.mark.tier(0)
    @pytest.mark.tra("Core.Sampling.Exact")
    @given(
        rate=st.floats(min_value=0.0, max_value=1.0, allow_nan=False),
        n=st.integers(min_value=0, max_value=400),
    )
    def test_keeps_exactly_floor_n_rate(self, rate: float, n: int) -> None:
        sampler = RateSampler(rate)
        kept = sum(sampler.should_keep() for _ in range(n))
        assert kept == math.floor(n * rate + 1e-9)

    @pytest.mark.tier(0)
    def test_rate_one_keeps_all(self) -> None:
        sampler = RateSampler(1.0)
        assert all(sampler.should_keep() for _ in range(50))

    @pytest.mark.tier(0)
    def test_rate_zero_keeps_none(self) -> None:
        sampler = RateSampler(0.0)
        assert not any(sampler.should_keep() for _ in range(50))

    @pytest.mark.tier(0)
    @pytest.mark.tra("Core.Sampling.EvenSpacing")
    def test_half_rate_keeps_every_second_event(self) -> None:
        sampler = RateSampler(0.5)
        assert [sampler.should_keep() for _ in range(6)] == [
            False,
            True,
            False,
            True,
            False,
            True,
        ]

    @pytest.mark.tier(0)
    def test_tenth_rate_is_exact_despite_float_error(self) -> None:
        sampler = RateSampler(0.1)
        assert sum(sampler.should_keep() for _ in range(100)) == 10

    @pytest.mark.tier(0)
    @pytest.mark.parametrize(("given_rate", "expected"), [(-0.5, 0.0), (1.7, 1.0)])
    def test_rate_is_clamped(self, given_rate: float, expected: float) -> None:
        assert RateSampler(given_rate).rate == expected

    @pytest.mark.tier(1)
    @pytest.mark.tra("Core.Sampling.ThreadSafe")
    def test_concurrent_callers_share_one_count(self) -> None:
        sampler = RateSampler(0.25)
        results: list[bool] = []
        lock = threading.Lock()

        def worker() -> None:
            local = [sampler.should_keep() for _ in range(100)]
            with lock:
                results.extend(local)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 800
        assert sum(results) == 200
