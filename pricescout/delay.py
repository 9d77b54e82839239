"""Domain-aware politeness delays between navigations.

Before each navigation the scheduler pauses for a random number of
milliseconds drawn from the active profile: one range when the next target
shares a hostname with the previous one, another when it does not. The
first navigation of a sequence never waits.

The active profile is passed in explicitly for each run; nothing here reads
or mutates process-wide state.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable, Mapping
from urllib.parse import urlsplit

from pricescout.logger import get_logger
from pricescout.models import DelayProfile

log = get_logger(__name__)

DEFAULT_PROFILE_NAME = "interactive"


def extract_domain(url: str | None) -> str:
    """Return the lower-case hostname of a URL, or ``""`` if there is none."""
    if not url:
        return ""
    try:
        return urlsplit(url.strip()).hostname or ""
    except ValueError:
        return ""


def select_delay_profile(
    name: str | None,
    profiles: Mapping[str, DelayProfile],
) -> DelayProfile:
    """Look up a profile by name, falling back to ``interactive``.

    Args:
        name: Requested profile name (may be None or unknown).
        profiles: Available profiles keyed by name.
    """
    if name and name in profiles:
        return profiles[name]
    if name:
        log.warning(
            "Unknown delay profile, using default",
            requested=name,
            default=DEFAULT_PROFILE_NAME,
        )
    return profiles[DEFAULT_PROFILE_NAME]


class DelayScheduler:
    """Computes and applies the pause before each navigation.

    Attributes:
        profile: Delay ranges for this run.
        previous_domain: Hostname of the last navigation, ``""`` at the start
            of a sequence.

    Example:
        scheduler = DelayScheduler(profile)
        for url in urls:
            await scheduler.pause_before(url)
            ...
    """

    def __init__(
        self,
        profile: DelayProfile,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.profile = profile
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.previous_domain = ""

    def compute(self, previous_domain: str, current_domain: str) -> int:
        """Return the delay in milliseconds between two hostnames."""
        if not previous_domain:
            return 0
        window = (
            self.profile.same_domain
            if previous_domain == current_domain
            else self.profile.different_domain
        )
        return self._rng.randint(window.min_ms, window.max_ms)

    async def wait(self, previous_domain: str, current_domain: str) -> int:
        """Sleep for the computed delay and return it."""
        delay_ms = self.compute(previous_domain, current_domain)
        if delay_ms > 0:
            log.debug(
                "Politeness delay",
                profile=self.profile.name,
                previous_domain=previous_domain,
                current_domain=current_domain,
                delay_ms=delay_ms,
            )
            await self._sleep(delay_ms / 1000)
        return delay_ms

    async def pause_before(self, url: str | None) -> int:
        """Wait before navigating to ``url`` and remember its hostname."""
        current = extract_domain(url)
        delay_ms = await self.wait(self.previous_domain, current)
        self.previous_domain = current
        return delay_ms

    def reset(self) -> None:
        """Start a fresh sequence; the next pause is zero."""
        self.previous_domain = ""
