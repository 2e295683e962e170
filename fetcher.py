#!/usr/bin/env python3
"""
Page fetching for synthesized feeds.

This module wraps aiohttp into the small stream interface the rest of the
pipeline uses (open a page, read it, close it, optionally aborting the
connection), keeps the conditional-GET cache keyed by URL, and implements the
listing fetch with its cancellation checkpoints.
"""

from asyncio import FIRST_COMPLETED, CancelledError, TimeoutError, create_task, gather, wait
from datetime import timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Dict, List, Optional, Tuple

from aiohttp import ClientError, ClientResponse, ClientSession, ClientTimeout

from config import config, get_logger
from errors import FetchCancelled, FetchError, NotModifiedError
from models import CancellationToken, ConditionalGetInfo
from telemetry import trace_span

# Module-specific logger
logger = get_logger("fetcher")

# HTTP status codes
HTTP_OK = 200
HTTP_NOT_MODIFIED = 304


def normalize_http_date(date_value: Optional[str]) -> Optional[str]:
    """Normalize HTTP date strings to RFC 7231 format (GMT)."""
    if not date_value:
        return None
    try:
        dt = parsedate_to_datetime(date_value)
        if not dt:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return format_datetime(dt.astimezone(timezone.utc), usegmt=True)
    except (TypeError, ValueError, OverflowError) as exc:
        logger.debug(f"Unable to normalize HTTP date '{date_value}': {exc}")
        return None


def format_client_error(error: BaseException) -> str:
    """Describe aiohttp client errors with any available status/errno."""
    parts: List[str] = [error.__class__.__name__]
    status = getattr(error, 'status', None)
    if status is not None:
        parts.append(f"status={status}")
    os_error = getattr(error, 'os_error', None)
    if os_error is not None:
        errno = getattr(os_error, 'errno', None)
        if errno is not None:
            parts.append(f"errno={errno}")
    message = str(error)
    if message:
        parts.append(message)
    return " ".join(parts)


class PageStream:
    """An open HTTP response for one page.

    Headers are available as soon as the stream is open; the body is only
    pulled by read().
    """

    def __init__(self, url: str, response: ClientResponse) -> None:
        self.url = url
        self.response = response
        self.closed = False

    @property
    def headers(self):
        return self.response.headers

    @property
    def status(self) -> int:
        return self.response.status

    async def read(self) -> bytes:
        try:
            return await self.response.read()
        except (ClientError, TimeoutError) as e:
            raise FetchError(f"Error reading {self.url}: {format_client_error(e)}", url=self.url) from e

    def close(self, abort: bool = False) -> None:
        if self.closed:
            return
        self.closed = True
        if abort:
            # Drops the connection instead of returning it to the pool
            self.response.close()
        else:
            self.response.release()


class PageOpener:
    """Opens page streams over a shared aiohttp session.

    Args:
        session: The aiohttp session to issue requests on.
        user_agent: User-Agent header (defaults to config.USER_AGENT).
        timeout: Total request timeout in seconds (defaults to config.HTTP_TIMEOUT).
        max_redirects: Redirect cap (defaults to config.MAX_REDIRECTS).
    """

    def __init__(
        self,
        session: ClientSession,
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
    ) -> None:
        self.session = session
        self.user_agent = user_agent or config.USER_AGENT
        self.timeout = config.HTTP_TIMEOUT if timeout is None else timeout
        self.max_redirects = config.MAX_REDIRECTS if max_redirects is None else max_redirects

    def _prepare_request_headers(self, url: str, conditional_get: Optional[ConditionalGetInfo]) -> Dict[str, str]:
        """Prepare HTTP headers, including conditional request headers."""
        headers = {'User-Agent': self.user_agent}
        if conditional_get is None:
            return headers

        etag = conditional_get.etag
        if etag:
            # Quote unquoted ETags; weak and strong ones pass through
            if not (etag.startswith('"') or etag.startswith('W/"')):
                etag = f'"{etag}"'
            headers['If-None-Match'] = etag
            logger.debug(f"Using If-None-Match: {etag} for {url}")

        if conditional_get.last_modified:
            normalized = normalize_http_date(conditional_get.last_modified)
            if normalized:
                headers['If-Modified-Since'] = normalized
                logger.debug(f"Using If-Modified-Since: {normalized} for {url}")
            else:
                logger.warning(
                    f"Invalid Last-Modified format for {url}, not sending header "
                    f"(stored value: {conditional_get.last_modified})"
                )
        return headers

    async def _request(self, url: str, headers: Dict[str, str]) -> ClientResponse:
        try:
            response = await self.session.get(
                url,
                headers=headers,
                timeout=ClientTimeout(total=self.timeout),
                max_redirects=self.max_redirects,
            )
        except TimeoutError as e:
            raise FetchError(f"Timed out fetching {url} (timeout={self.timeout}s)", url=url) from e
        except ClientError as e:
            raise FetchError(f"Error fetching {url}: {format_client_error(e)}", url=url) from e

        if response.status == HTTP_NOT_MODIFIED:
            response.release()
            raise NotModifiedError(url)
        if response.status != HTTP_OK:
            response.release()
            raise FetchError(f"HTTP {response.status} fetching {url}", url=url, status=response.status)
        return response

    async def _request_cancellable(self, url: str, headers: Dict[str, str], cancel: CancellationToken) -> ClientResponse:
        """Race the request against the cancellation token."""
        request = create_task(self._request(url, headers))
        waiter = create_task(cancel.wait())
        try:
            done, _ = await wait({request, waiter}, return_when=FIRST_COMPLETED)
        except CancelledError:
            request.cancel()
            raise
        finally:
            waiter.cancel()

        if request in done:
            return request.result()

        request.cancel()
        # The request may have completed while we were being woken up
        outcome = (await gather(request, return_exceptions=True))[0]
        if isinstance(outcome, ClientResponse):
            outcome.close()
        raise FetchCancelled(f"Fetch of {url} cancelled")

    async def open_stream(
        self,
        url: str,
        cancel: Optional[CancellationToken] = None,
        conditional_get: Optional[ConditionalGetInfo] = None,
    ) -> PageStream:
        """Open a stream to ``url``.

        Raises:
            FetchCancelled: if ``cancel`` fires before the response arrives.
            NotModifiedError: if a conditional request got HTTP 304.
            FetchError: on any other network or HTTP failure.
        """
        if cancel is not None and cancel.cancelled:
            raise FetchCancelled(f"Fetch of {url} cancelled before it started")

        headers = self._prepare_request_headers(url, conditional_get)
        if cancel is None:
            response = await self._request(url, headers)
        else:
            response = await self._request_cancellable(url, headers, cancel)
        return PageStream(url, response)

    def close_stream(self, stream: PageStream, abort: bool = False) -> None:
        stream.close(abort=abort)


class ConditionalGetCache:
    """ETag / Last-Modified values seen per URL.

    Lookups only look at response headers, never at the body, so they are
    safe to do on a stream that has not been read yet.

    Args:
        entries: Pairs stored by an earlier process, keyed by URL.
    """

    def __init__(self, entries: Optional[Dict[str, ConditionalGetInfo]] = None) -> None:
        self._entries: Dict[str, ConditionalGetInfo] = dict(entries or {})

    def lookup(self, url: str) -> Optional[ConditionalGetInfo]:
        return self._entries.get(url)

    def store(self, url: str, info: ConditionalGetInfo) -> None:
        self._entries[url] = info

    def entries(self) -> Dict[str, ConditionalGetInfo]:
        """Return a copy of every stored pair, keyed by URL."""
        return dict(self._entries)

    def get_conditional_get(self, url: str, stream: PageStream) -> Optional[ConditionalGetInfo]:
        """Record and return the conditional-GET pair carried by ``stream``.

        Falls back to the pair previously stored for ``url`` when the response
        carries neither header.
        """
        etag = stream.headers.get('ETag')
        last_modified = normalize_http_date(stream.headers.get('Last-Modified'))
        if etag or last_modified:
            info = ConditionalGetInfo(etag=etag, last_modified=last_modified)
            self.store(url, info)
            logger.debug(f"Stored conditional GET for {url}: etag={etag} last_modified={last_modified}")
            return info
        return self._entries.get(url)


class ListingFetcher:
    """Fetches the listing page, honouring cancellation before and after."""

    def __init__(self, opener: PageOpener, cache: ConditionalGetCache) -> None:
        self.opener = opener
        self.cache = cache

    @trace_span(
        "fetch_listing",
        tracer_name="fetcher",
        attr_from_args=lambda self, page_url, cancel=None, conditional_get=None: {
            "listing.url": page_url,
            "listing.conditional": bool(conditional_get and not conditional_get.is_empty),
        },
    )
    async def fetch(
        self,
        page_url: str,
        cancel: Optional[CancellationToken] = None,
        conditional_get: Optional[ConditionalGetInfo] = None,
    ) -> Optional[Tuple[PageStream, Optional[ConditionalGetInfo]]]:
        """Open the listing page.

        Returns:
            ``(stream, conditional_get_info)``, or None when cancelled.

        Raises:
            FetchError: when the page cannot be retrieved (not retried).
        """
        if cancel is not None and cancel.cancelled:
            logger.info(f"Listing fetch of {page_url} cancelled before start")
            return None

        logger.info(f"Fetching listing page: {page_url}")
        try:
            stream = await self.opener.open_stream(page_url, cancel=cancel, conditional_get=conditional_get)
        except FetchCancelled:
            logger.info(f"Listing fetch of {page_url} cancelled in flight")
            return None

        info = self.cache.get_conditional_get(page_url, stream)

        if cancel is not None and cancel.cancelled:
            logger.info(f"Listing fetch of {page_url} cancelled after open; aborting stream")
            self.opener.close_stream(stream, abort=True)
            return None

        return stream, info
