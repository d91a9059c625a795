"""Shared fakes for the archiving pipeline tests."""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

import pytest

from page_archiver.document import CapturedDocument
from page_archiver.errors import FetchError
from page_archiver.transport import FetchResult, GenericPersister, Transport

PAGE_URL = "http://example.com/a/p.html"


class FakeTransport(Transport):
    """Serves canned results; unknown URLs fail like a 404."""

    def __init__(
        self,
        responses: Optional[Dict[str, Union[FetchResult, Exception]]] = None,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.responses = dict(responses or {})
        self.gate = gate
        self.calls: List[tuple] = []
        self.forgotten: List[str] = []
        self._lock = threading.Lock()

    def fetch(self, url, charset=None, post_data=None) -> FetchResult:
        with self._lock:
            self.calls.append((url, charset, post_data))
        if self.gate is not None:
            self.gate.wait(timeout=10)
        found = self.responses.get(url)
        if found is None:
            raise FetchError(url, "HTTP 404")
        if isinstance(found, Exception):
            raise found
        return found

    def forget(self, url):
        self.forgotten.append(url)
        return None

    @property
    def urls(self) -> List[str]:
        with self._lock:
            return [c[0] for c in self.calls]


class FakePersister(GenericPersister):
    """Writes canned bytes instead of streaming from the network."""

    def __init__(self, bodies: Optional[Dict[str, bytes]] = None) -> None:
        self.bodies = dict(bodies or {})
        self.calls: List[tuple] = []

    async def persist(self, url: str, destination: Path) -> None:
        self.calls.append((url, Path(destination)))
        if url not in self.bodies:
            raise RuntimeError("connection reset")
        Path(destination).write_bytes(self.bodies[url])


def html(body: str, head: str = "") -> str:
    return f"<html><head>{head}</head><body>{body}</body></html>"


def make_document(
    markup: str, url: str = PAGE_URL, styles: Optional[Dict[str, str]] = None, **kwargs
) -> CapturedDocument:
    styles = styles or {}
    return CapturedDocument.from_html(url, markup, fetch_style=styles.get, **kwargs)


@pytest.fixture
def page_url() -> str:
    return PAGE_URL
