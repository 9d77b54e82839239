"""Tests for domain-aware politeness delays."""

import random
from unittest.mock import AsyncMock

import pytest

from config.settings import GlobalConfig
from pricescout.delay import DelayScheduler, extract_domain, select_delay_profile
from pricescout.models import DelayProfile, DelayRange


@pytest.fixture
def fixed_profile() -> DelayProfile:
    return DelayProfile(
        name="fixed",
        same_domain=DelayRange(min_ms=100, max_ms=100),
        different_domain=DelayRange(min_ms=7, max_ms=7),
    )


class TestExtractDomain:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://www.msci.com/indexes/1", "www.msci.com"),
            ("https://Markets.FT.com/data", "markets.ft.com"),
            ("not a url", ""),
            ("", ""),
            (None, ""),
        ],
    )
    def test_extract_domain(self, url: str | None, expected: str) -> None:
        assert extract_domain(url) == expected


class TestDelayComputation:
    """Test suite for DelayScheduler.compute."""

    def test_first_navigation_never_waits(self, fixed_profile: DelayProfile) -> None:
        assert DelayScheduler(fixed_profile).compute("", "markets.ft.com") == 0

    def test_same_and_different_domain_ranges(self, fixed_profile: DelayProfile) -> None:
        scheduler = DelayScheduler(fixed_profile)

        assert scheduler.compute("markets.ft.com", "markets.ft.com") == 100
        assert scheduler.compute("markets.ft.com", "www.msci.com") == 7

    def test_delay_within_profile_bounds(self, mock_config: GlobalConfig) -> None:
        profile = mock_config.delay_profiles["scheduled"]
        scheduler = DelayScheduler(profile, rng=random.Random(42))

        for _ in range(50):
            same = scheduler.compute("a.com", "a.com")
            different = scheduler.compute("a.com", "b.com")
            assert profile.same_domain.min_ms <= same <= profile.same_domain.max_ms
            assert profile.different_domain.min_ms <= different <= profile.different_domain.max_ms


class TestPauseSequence:
    """Test suite for the stateful pause_before sequence."""

    @pytest.mark.asyncio
    async def test_sequence_tracks_previous_domain(self, fixed_profile: DelayProfile) -> None:
        sleep = AsyncMock()
        scheduler = DelayScheduler(fixed_profile, sleep=sleep)

        delays = [
            await scheduler.pause_before("https://markets.ft.com/a"),
            await scheduler.pause_before("https://markets.ft.com/b"),
            await scheduler.pause_before("https://www.msci.com/c"),
        ]

        assert delays == [0, 100, 7]
        assert [c.args[0] for c in sleep.await_args_list] == [0.1, 0.007]
        assert scheduler.previous_domain == "www.msci.com"

    @pytest.mark.asyncio
    async def test_reset_starts_fresh_sequence(self, fixed_profile: DelayProfile) -> None:
        sleep = AsyncMock()
        scheduler = DelayScheduler(fixed_profile, sleep=sleep)

        await scheduler.pause_before("https://markets.ft.com/a")
        scheduler.reset()

        assert await scheduler.pause_before("https://markets.ft.com/b") == 0
        sleep.assert_not_awaited()


class TestProfileSelection:
    def test_known_profile(self, mock_config: GlobalConfig) -> None:
        profile = select_delay_profile("scheduled", mock_config.delay_profiles)

        assert profile.name == "scheduled"

    @pytest.mark.parametrize("name", ["turbo", None, ""])
    def test_unknown_or_missing_falls_back_to_interactive(
        self, mock_config: GlobalConfig, name: str | None
    ) -> None:
        assert select_delay_profile(name, mock_config.delay_profiles).name == "interactive"
