import threading
from typing import List, Optional, Protocol
from urllib.parse import quote

import httpx

from config.config import ProxySettings
from config.constants import WEBSHARE_PAGE_SIZE, WEBSHARE_PROXY_LIST_URL
from config.logger import get_logger
from utils.exceptions import ProxyError

logger = get_logger(__name__)


def build_proxy_url(
    host: str, port: int, username: str = "", password: str = "", scheme: str = "http"
) -> str:
    credentials = ""
    if username:
        credentials = f"{quote(username, safe='')}:{quote(password, safe='')}@"
    return f"{scheme}://{credentials}{host}:{port}"


class ProxyProvider(Protocol):
    def get_proxy(self) -> Optional[str]: ...

    def describe(self) -> str: ...


class NullProxyProvider:
    """Direct connections"""

    def get_proxy(self) -> Optional[str]:
        return None

    def describe(self) -> str:
        return "Proxy: Disabled"


class StaticProxyProvider:
    """A single proxy endpoint, e.g. a rotating gateway that changes IPs itself"""

    def __init__(self, proxy_url: str, label: str = "Static"):
        self.proxy_url = proxy_url
        self.label = label

    def get_proxy(self) -> Optional[str]:
        return self.proxy_url

    def describe(self) -> str:
        # credentials stay out of logs
        return f"{self.label}: {self.proxy_url.rsplit('@', 1)[-1]}"


class WebshareProxyProvider:
    """Proxy pool loaded from the Webshare proxy list API, handed out round-robin.

    ``refresh()`` replaces the pool; ``get_proxy()`` is called from yt-dlp
    worker threads and returns ``None`` while the pool is empty.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str = WEBSHARE_PROXY_LIST_URL,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.api_url = api_url
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = http_client is None
        self._proxies: List[str] = []
        self._next = 0
        self._lock = threading.Lock()

    @property
    def proxy_count(self) -> int:
        return len(self._proxies)

    async def refresh(self) -> int:
        proxies: List[str] = []
        url: Optional[str] = self.api_url
        params = {"mode": "direct", "page": 1, "page_size": WEBSHARE_PAGE_SIZE}

        while url:
            try:
                response = await self._client.get(
                    url, params=params, headers={"Authorization": f"Token {self.api_key}"}
                )
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPStatusError as e:
                raise ProxyError(
                    f"Webshare proxy list request failed with status {e.response.status_code}"
                ) from e
            except (httpx.HTTPError, ValueError) as e:
                raise ProxyError(f"Failed to load Webshare proxy list: {str(e)}") from e

            for entry in payload.get("results") or []:
                if not entry.get("valid", True):
                    continue
                proxies.append(
                    build_proxy_url(
                        entry["proxy_address"],
                        entry["port"],
                        entry.get("username", ""),
                        entry.get("password", ""),
                    )
                )
            # the "next" link already carries its query string
            url = payload.get("next")
            params = None

        if not proxies:
            raise ProxyError("Webshare returned no usable proxies")

        with self._lock:
            self._proxies = proxies
            self._next = 0
        logger.info("Loaded Webshare proxy list", proxy_count=len(proxies))
        return len(proxies)

    def get_proxy(self) -> Optional[str]:
        with self._lock:
            if not self._proxies:
                return None
            proxy = self._proxies[self._next % len(self._proxies)]
            self._next += 1
            return proxy

    def describe(self) -> str:
        return f"Webshare (pool of {len(self._proxies)})"

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def create_proxy_provider(
    settings: ProxySettings, http_client: Optional[httpx.AsyncClient] = None
) -> ProxyProvider:
    if not settings.enabled:
        logger.info("Proxy disabled - direct connections will be used")
        return NullProxyProvider()
    if settings.webshare_api_key:
        return WebshareProxyProvider(
            settings.webshare_api_key, settings.webshare_api_url, http_client=http_client
        )
    provider = StaticProxyProvider(settings.proxy_url, label=settings.provider)
    logger.info("Proxy endpoint configured", proxy=provider.describe())
    return provider
