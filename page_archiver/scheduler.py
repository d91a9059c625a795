import asyncio
import functools
import logging
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urlencode

from .config import DEFAULT_CONCURRENCY
from .errors import FetchError
from .references import ResourceReference
from .transport import Transport, decode_body, parse_content_type

ProgressCallback = Callable[[int, int], None]


@dataclass
class DownloadRecord:
    reference: ResourceReference
    content: str = ""
    content_type: str = ""
    charset: str = ""
    failed: bool = False
    error: Optional[FetchError] = None

    def fail(self, error: FetchError) -> None:
        self.failed = True
        self.error = error
        self.content = ""

    def release(self) -> None:
        self.content = ""


class DownloadScheduler:
    """Fetches every non-duplicate reference with a bounded number in flight.

    Fetches start in reference order; ``run`` returns once nothing is in
    flight and the cursor has passed the end of the list.
    """

    def __init__(
        self,
        refs: List[ResourceReference],
        transport: Transport,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        index_charset: Optional[str] = None,
        post_data: Optional[Union[bytes, str, Mapping[str, str]]] = None,
        executor: Optional[Executor] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.refs = refs
        self.transport = transport
        self.concurrency = max(1, concurrency)
        self.index_charset = index_charset
        self.post_data = post_data
        self.executor = executor
        self.on_progress = on_progress
        self.records: List[DownloadRecord] = []
        self._cursor = 0
        self._pending: Dict[asyncio.Future, DownloadRecord] = {}
        self._cancelled = False

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def run(self) -> List[DownloadRecord]:
        self._fill()
        while self._pending and not self._cancelled:
            done, _ = await asyncio.wait(list(self._pending), return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                self._pending.pop(task, None)
            self._report()
            if not self._cancelled:
                self._fill()
        return self.records

    def cancel(self) -> None:
        self._cancelled = True
        for task in list(self._pending):
            task.cancel()

    def _fill(self) -> None:
        while len(self._pending) < self.concurrency and self._cursor < len(self.refs):
            ref = self.refs[self._cursor]
            self._cursor += 1
            if ref.is_duplicate:
                continue
            record = DownloadRecord(ref)
            self.records.append(record)
            task = asyncio.ensure_future(self._fetch(record))
            self._pending[task] = record

    def _report(self) -> None:
        if self.on_progress is None:
            return
        done = len(self.records) - len(self._pending)
        self.on_progress(done, len(self.refs))

    async def _fetch(self, record: DownloadRecord) -> None:
        ref = record.reference
        url = ref.fetch_url
        known = self.index_charset if ref.is_index else None
        post = self._post_body() if ref.is_index else None
        loop = asyncio.get_running_loop()
        call = functools.partial(self.transport.fetch, url, known, post)
        try:
            result = await loop.run_in_executor(self.executor, call)
        except asyncio.CancelledError:
            record.fail(FetchError(url, "canceled"))
            raise
        except FetchError as e:
            logging.warning("fetch failed %s: %s", url, e.cause or e)
            record.fail(e)
            return
        except Exception as e:
            # one broken fetch must not take the scheduler down
            logging.warning("fetch failed %s: %r", url, e)
            record.fail(FetchError(url, str(e)))
            return
        record.content, record.charset = decode_body(result.body, known, result.charset)
        record.content_type = parse_content_type(result.content_type)[0]
        logging.debug("downloaded %s (%s, %s)", url, record.content_type or "?", record.charset)

    def _post_body(self) -> Optional[bytes]:
        # best effort: a page re-fetched without its form data is still useful
        if self.post_data is None:
            return None
        try:
            if isinstance(self.post_data, bytes):
                return self.post_data
            if isinstance(self.post_data, str):
                return self.post_data.encode("utf-8")
            return urlencode(self.post_data, doseq=True).encode("ascii")
        except (TypeError, ValueError) as e:
            logging.debug("post data not attached: %s", e)
            return None
