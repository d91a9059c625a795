import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Dict, Optional, Tuple, Union
from urllib.parse import urldefrag

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import DEFAULT_CHARSET, DEFAULT_HEADERS, TransportSettings
from .errors import FetchError, PersistError

CHUNK_SIZE = 64 * 1024

PostData = Union[bytes, str]


@dataclass
class FetchResult:
    body: bytes
    content_type: str = ""
    charset: Optional[str] = None
    url: str = ""


def strip_fragment(url: str) -> str:
    return urldefrag(url)[0]


def parse_content_type(header: Optional[str]) -> Tuple[str, Optional[str]]:
    if not header:
        return "", None
    parts = [p.strip() for p in header.split(";")]
    mime = parts[0].lower()
    charset: Optional[str] = None
    for param in parts[1:]:
        if "=" not in param:
            continue
        k, v = param.split("=", 1)
        if k.strip().lower() == "charset":
            charset = v.strip().strip("\"'") or None
    return mime, charset


def decode_body(
    body: bytes, known: Optional[str] = None, reported: Optional[str] = None
) -> Tuple[str, str]:
    # known charset beats the transport's, which beats the fixed default
    for charset in (known, reported, DEFAULT_CHARSET):
        if not charset:
            continue
        try:
            return body.decode(charset, errors="replace"), charset
        except LookupError:
            logging.debug("unknown charset %s", charset)
    return body.decode(DEFAULT_CHARSET), DEFAULT_CHARSET


def build_session(
    headers: Optional[Dict[str, str]] = None,
    *,
    retries: int = 5,
    backoff_factor: float = 0.5,
) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=16, pool_maxsize=16)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS if headers is None else headers)
    return s


# -------------------- Transport --------------------


class Transport:
    def fetch(
        self, url: str, charset: Optional[str] = None, post_data: Optional[PostData] = None
    ) -> FetchResult:
        raise NotImplementedError

    def remember(self, url: str, result: FetchResult) -> None:
        pass

    def forget(self, url: str) -> Optional[FetchResult]:
        return None

    def close(self) -> None:
        pass


class RequestsTransport(Transport):
    def __init__(
        self,
        settings: Optional[TransportSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or TransportSettings()
        self.session = session or build_session(
            self.settings.headers(),
            retries=self.settings.retries,
            backoff_factor=self.settings.backoff_factor,
        )
        self._cache: Dict[str, FetchResult] = {}
        self._lock = Lock()

    def remember(self, url: str, result: FetchResult) -> None:
        with self._lock:
            self._cache[strip_fragment(url)] = result

    def cached(self, url: str) -> Optional[FetchResult]:
        with self._lock:
            return self._cache.get(strip_fragment(url))

    def forget(self, url: str) -> Optional[FetchResult]:
        with self._lock:
            return self._cache.pop(strip_fragment(url), None)

    def fetch(
        self, url: str, charset: Optional[str] = None, post_data: Optional[PostData] = None
    ) -> FetchResult:
        url = strip_fragment(url)
        if self.settings.prefer_cache and post_data is None:
            hit = self.cached(url)
            if hit is not None:
                logging.debug("cache hit: %s", url)
                return hit
        try:
            if post_data is not None:
                r = self.session.post(
                    url,
                    data=post_data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.settings.timeout,
                    stream=True,
                )
            else:
                r = self.session.get(url, timeout=self.settings.timeout, stream=True)
            with r:
                if r.status_code >= 400:
                    raise FetchError(url, f"HTTP {r.status_code}")
                body = self._read_body(url, r)
                mime, reported = parse_content_type(r.headers.get("Content-Type"))
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e
        result = FetchResult(body, mime, reported, url)
        self.remember(url, result)
        logging.debug("fetched %s (%s, %d bytes)", url, mime or "?", len(body))
        return result

    def _read_body(self, url: str, r: requests.Response) -> bytes:
        cl = r.headers.get("Content-Length")
        if cl and cl.isdigit() and int(cl) > self.settings.max_bytes:
            raise FetchError(url, f"larger than {self.settings.max_bytes} bytes")
        chunks = []
        written = 0
        for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
            if not chunk:
                continue
            written += len(chunk)
            if written > self.settings.max_bytes:
                raise FetchError(url, f"larger than {self.settings.max_bytes} bytes")
            chunks.append(chunk)
        return b"".join(chunks)

    def close(self) -> None:
        self.session.close()


# -------------------- Generic persister --------------------


class GenericPersister:
    async def persist(self, url: str, destination: Path) -> None:
        raise NotImplementedError


class StreamingPersister(GenericPersister):
    """Byte-for-byte copy of a resource to disk, off the event loop."""

    def __init__(self, transport: Transport, timeout: float = 15.0):
        self.transport = transport
        self.timeout = timeout

    async def persist(self, url: str, destination: Path) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._copy, url, Path(destination))

    def _copy(self, url: str, destination: Path) -> None:
        url = strip_fragment(url)
        hit = self.transport.forget(url)
        try:
            if hit is not None:
                destination.write_bytes(hit.body)
                return
            session = getattr(self.transport, "session", None)
            if session is None:
                raise PersistError.persist_failed(url, RuntimeError("no cached body and no session"))
            with session.get(url, timeout=self.timeout, stream=True) as r:
                if r.status_code >= 400:
                    raise PersistError.persist_failed(url, RuntimeError(f"HTTP {r.status_code}"))
                with open(destination, "wb") as f:
                    for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
        except (requests.RequestException, OSError) as e:
            raise PersistError.persist_failed(url, e) from e
        logging.debug("persisted %s -> %s", url, destination)
