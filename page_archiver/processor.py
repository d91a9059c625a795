import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Set

from .allocator import SavePathAllocator
from .config import DEFAULT_WRITE_CHARSET
from .errors import ArchiveError, FetchError, PersistError
from .references import OriginScope, ResourceReference
from .rewriter import (
    CSS_STRATEGIES,
    HTML_STRATEGIES,
    absolutize_anchors,
    comment_out_base,
    mark_source,
    rewrite_references,
)
from .scheduler import DownloadRecord
from .transport import GenericPersister, Transport

HTML_TYPES = {"text/html", "application/xhtml+xml"}
SCRIPT_TYPES = {
    "application/x-javascript",
    "application/javascript",
    "application/ecmascript",
    "application/x-ecmascript",
}


def is_text_like(content_type: str) -> bool:
    return content_type.startswith("text/") or content_type in SCRIPT_TYPES


def write_text(path: Path, contents: str, charset: Optional[str]) -> None:
    # unencodable characters become "?"
    charset = charset or DEFAULT_WRITE_CHARSET
    try:
        data = contents.encode(charset, errors="replace")
    except LookupError:
        data = contents.encode(DEFAULT_WRITE_CHARSET, errors="replace")
    try:
        path.write_bytes(data)
    except OSError as e:
        raise PersistError.write_failed(path, e) from e


class ProcessingEngine:
    """Rewrites and saves downloaded records one at a time, in reference order."""

    def __init__(
        self,
        refs: List[ResourceReference],
        records: List[DownloadRecord],
        allocator: SavePathAllocator,
        output_file: Path,
        persister: GenericPersister,
        *,
        page_url: str,
        rewrite_links: bool = False,
        errors: Optional[List[str]] = None,
        is_cancelled: Callable[[], bool] = lambda: False,
        transport: Optional[Transport] = None,
    ):
        self.refs = refs
        self.records = records
        self.allocator = allocator
        self.output_file = Path(output_file)
        self.persister = persister
        self.page_url = page_url
        self.rewrite_links = rewrite_links
        self.errors: List[str] = errors if errors is not None else []
        self.is_cancelled = is_cancelled
        self.transport = transport
        # keys whose save name could not be claimed, reported once
        self._unnamed: Set[str] = set()

    async def run(self) -> List[str]:
        for record in self.records:
            if self.is_cancelled():
                break
            await self.process(record)
            await asyncio.sleep(0)
        return self.errors

    async def process(self, record: DownloadRecord) -> None:
        ref = record.reference
        try:
            if record.failed:
                raise record.error or FetchError(ref.fetch_url)
            await self._persist(record)
        except ArchiveError as e:
            logging.warning("%s", e)
            self.errors.append(str(e))
        except OSError as e:
            if ref.key not in self._unnamed:
                self.errors.append(str(PersistError.write_failed(ref.fetch_url, e)))
        finally:
            record.release()
            if self.transport is not None:
                self.transport.forget(ref.fetch_url)

    async def _persist(self, record: DownloadRecord) -> None:
        ref = record.reference
        ctype = record.content_type
        if ref.is_index:
            write_text(self.output_file, self.rewrite_index(record), record.charset)
            logging.info("saved %s -> %s", ref.fetch_url, self.output_file)
            return
        if ctype in HTML_TYPES:
            data = self._rewrite(record.content, OriginScope.BASE, HTML_STRATEGIES)
            self._save_text(record, data)
        elif ctype == "text/css":
            data = self._rewrite(record.content, OriginScope.EXTCSS, CSS_STRATEGIES)
            self._save_text(record, data)
        elif is_text_like(ctype):
            self._save_text(record, record.content)
        elif ctype:
            path = self.allocator.path_for(ref)
            try:
                await self.persister.persist(ref.fetch_url, path)
            except PersistError:
                raise
            except Exception as e:
                raise PersistError.persist_failed(ref.fetch_url, e) from e
            logging.debug("saved %s -> %s", ref.fetch_url, path)
        else:
            raise PersistError.missing_content_type(ref.fetch_url)

    def rewrite_index(self, record: DownloadRecord) -> str:
        data = mark_source(record.content, record.reference.key)
        # a surviving <base> would redirect every rewritten relative path
        data = comment_out_base(data)
        data = rewrite_references(
            data,
            self.refs,
            OriginScope.BASE,
            HTML_STRATEGIES,
            lambda r: self._local_url(r, include_folder=True),
        )
        if self.rewrite_links:
            data = absolutize_anchors(data, self.page_url, self.allocator.folder.name + "/")
        return data

    def _rewrite(self, text: str, scope: OriginScope, strategies) -> str:
        return rewrite_references(text, self.refs, scope, strategies, self._local_url)

    def _local_url(self, ref: ResourceReference, include_folder: bool = False) -> Optional[str]:
        try:
            return self.allocator.relative_url(ref, include_folder=include_folder)
        except OSError as e:
            if ref.key not in self._unnamed:
                self._unnamed.add(ref.key)
                logging.warning("no save name for %s: %s", ref.fetch_url, e)
                self.errors.append(str(PersistError.write_failed(ref.fetch_url, e)))
            return None

    def _save_text(self, record: DownloadRecord, data: str) -> None:
        path = self.allocator.path_for(record.reference)
        write_text(path, data, record.charset)
        logging.debug("saved %s -> %s", record.reference.fetch_url, path)
