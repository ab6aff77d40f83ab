import logging
import random
from dataclasses import dataclass
from urllib.parse import urlparse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Proxy:
    protocol: str  # http, https, socks5
    host: str
    port: int
    username: str | None = None
    password: str | None = None

    @classmethod
    def from_url(cls, url: str) -> "Proxy":
        """Parse a proxy URL into a Proxy object."""
        parsed = urlparse(url)
        return cls(
            protocol=parsed.scheme or "http",
            host=parsed.hostname or "",
            port=parsed.port or 8080,
            username=parsed.username,
            password=parsed.password,
        )

    def to_httpx(self) -> str:
        """Render as the proxy URL httpx expects."""
        auth = ""
        if self.username:
            auth = self.username
            if self.password:
                auth += f":{self.password}"
            auth += "@"
        return f"{self.protocol}://{auth}{self.host}:{self.port}"


class ProxyManager:
    """Pool of outbound proxies for the direct and header-rotation tiers."""

    def __init__(self, proxies: list[Proxy] | None = None, rng: random.Random | None = None):
        self._proxies = proxies or []
        self._rng = rng or random.Random()

    @classmethod
    def from_urls(cls, urls, rng: random.Random | None = None) -> "ProxyManager":
        """Create a ProxyManager from a list of proxy URLs."""
        proxies = []
        for url in urls:
            if not url.strip():
                continue
            proxy = Proxy.from_url(url.strip())
            if not proxy.host:
                logger.warning(f"Ignoring proxy without host: {url!r}")
                continue
            proxies.append(proxy)
        return cls(proxies, rng=rng)

    @property
    def has_proxies(self) -> bool:
        return len(self._proxies) > 0

    def get_random(self) -> Proxy | None:
        """Get a random proxy from the pool."""
        if not self._proxies:
            return None
        return self._rng.choice(self._proxies)
