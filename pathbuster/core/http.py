import logging
import ssl
import time

import aiohttp
from yarl import URL

from pathbuster.core.models import Response

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:95.0) Gecko/20100101 Firefox/95.0"


class HttpClient:
    """
    aiohttp request executor.

    URLs are handed to aiohttp as already-encoded ``yarl.URL`` objects so
    traversal sequences such as ``../`` and ``%2f`` reach the wire unchanged.
    Transport failures never raise; they come back as a ``Response`` with
    status 0 and ``error`` set.
    """

    def __init__(self, config):
        self.config = config
        self.timeout = aiohttp.ClientTimeout(total=config.timeout)
        self.headers = dict(config.headers or {})
        self.proxy = config.proxy
        self.follow_redirects = config.follow_redirects
        self.session = None
        self.ssl_context = ssl.create_default_context()
        self.ssl_context.check_hostname = False
        self.ssl_context.verify_mode = ssl.CERT_NONE
        self.request_count = 0
        self.error_count = 0

    async def __aenter__(self):
        connector = aiohttp.TCPConnector(
            limit=self.config.concurrency,
            ssl=self.ssl_context,
            force_close=False,
            enable_cleanup_closed=True,
            ttl_dns_cache=300,
        )
        self.session = aiohttp.ClientSession(
            connector=connector,
            timeout=self.timeout,
            headers=self._get_headers(),
            auto_decompress=True,
        )
        return self

    async def __aexit__(self, *args):
        if self.session:
            await self.session.close()

    def _get_headers(self):
        headers = {
            "User-Agent": self.config.user_agent or DEFAULT_USER_AGENT,
            "Accept": "*/*",
            "Connection": "keep-alive",
        }
        headers.update(self.headers)
        return headers

    async def send(self, method, url, headers=None, timeout=None) -> Response:
        self.request_count += 1
        start = time.monotonic()
        kwargs = {}
        if timeout is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout)
        try:
            async with self.session.request(
                method,
                URL(url, encoded=True),
                headers=headers or None,
                proxy=self.proxy,
                allow_redirects=self.follow_redirects,
                **kwargs
            ) as resp:
                return await self._build_response(url, resp, start)
        except Exception as e:
            self.error_count += 1
            logger.debug("%s %s failed: %s", method, url, e)
            return Response.failed(url, str(e) or e.__class__.__name__, elapsed=time.monotonic() - start)

    async def _build_response(self, url, resp, start) -> Response:
        raw = await resp.read()
        return Response(
            url=url,
            status=resp.status,
            headers=dict(resp.headers),
            body=raw.decode("utf-8", errors="ignore"),
            size=len(raw),
            elapsed=time.monotonic() - start,
        )

    def get_stats(self):
        return {
            "requests": self.request_count,
            "errors": self.error_count,
        }
