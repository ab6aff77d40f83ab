import logging
import random
from urllib.parse import urlparse

from web2video.core.exceptions import ConfigurationError
from web2video.core.runtime_config import RetrievalConfig

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Baseline browser headers; every identity starts from these
# ---------------------------------------------------------------------------

_BASE_HEADERS: dict[str, str] = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate, br",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Cache-Control": "max-age=0",
}

# Platform domain → canonical referer. Matched against the host and its parents.
_PLATFORM_REFERERS: dict[str, str] = {
    "youtube.com": "https://www.youtube.com/",
    "youtu.be": "https://www.youtube.com/",
    "vimeo.com": "https://vimeo.com/",
    "dailymotion.com": "https://www.dailymotion.com/",
}

GENERIC_REFERER = "https://www.google.com/"


def _referer_for(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return GENERIC_REFERER
    for domain, referer in _PLATFORM_REFERERS.items():
        if host == domain or host.endswith("." + domain):
            return referer
    return GENERIC_REFERER


class IdentityPool:
    """Hands out browser identities (user agent + referer) for outgoing requests.

    Stateless apart from the config snapshot and the randomness source, so a
    single pool can be shared by concurrent retrievals.
    """

    def __init__(self, config: RetrievalConfig, rng: random.Random | None = None):
        self._user_agents = tuple(config.user_agents)
        self._rng = rng or random.Random()

    def next_user_agent(self) -> str:
        if not self._user_agents:
            raise ConfigurationError("User-agent pool is empty; configure requests.user_agents")
        return self._rng.choice(self._user_agents)

    def headers_for(self, url: str | None = None) -> dict[str, str]:
        headers = {"User-Agent": self.next_user_agent(), **_BASE_HEADERS}
        if url:
            headers["Referer"] = _referer_for(url)
        return headers
