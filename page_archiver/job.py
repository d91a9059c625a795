import asyncio
import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .allocator import SavePathAllocator
from .config import ArchiveOptions, TransportSettings
from .dedup import deduplicate
from .document import CapturedDocument, data_folder_for
from .errors import CancellationError, ConfigError, ExtractionError, JobStateError
from .extractor import extract_references, index_reference
from .processor import ProcessingEngine
from .references import ResourceReference
from .scheduler import DownloadRecord, DownloadScheduler
from .transport import GenericPersister, RequestsTransport, StreamingPersister, Transport


class JobState(str, Enum):
    CREATED = "created"
    EXTRACTING = "extracting"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = {JobState.FINISHED, JobState.FAILED, JobState.CANCELLED}


class ArchiveStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


CompletionCallback = Callable[["ArchiveJob", ArchiveStatus, Dict[str, Any]], None]


@dataclass
class ArchiveServices:
    transport: Transport
    persister: GenericPersister

    @classmethod
    def default(cls, settings: Optional[TransportSettings] = None) -> "ArchiveServices":
        settings = settings or TransportSettings()
        transport = RequestsTransport(settings)
        return cls(transport, StreamingPersister(transport, timeout=settings.timeout))


class ProgressListener:
    def on_start(self, job: "ArchiveJob") -> None:
        pass

    def on_progress(self, current: int, maximum: int) -> None:
        pass

    def on_stop(self, job: "ArchiveJob", status: ArchiveStatus) -> None:
        pass


class LoggingProgressListener(ProgressListener):
    def on_start(self, job: "ArchiveJob") -> None:
        logging.info("archiving %s -> %s", job.document.url, job.output_file)

    def on_progress(self, current: int, maximum: int) -> None:
        logging.info("downloaded %d/%d", current, maximum)

    def on_stop(self, job: "ArchiveJob", status: ArchiveStatus) -> None:
        logging.info("archive %s: %s", job.state.value, status.value)


class ArchiveJob:
    """One capture of a document into an output file plus a data folder.

    The job runs once: extraction, bounded-concurrency downloads, then
    sequential rewrite and persist. The completion callback is invoked
    exactly once with ``(job, status, {"errors": [...], "timers": {...}})``.
    """

    def __init__(
        self,
        document: CapturedDocument,
        output_file: Union[str, Path],
        data_folder: Optional[Union[str, Path]] = None,
        options: Optional[Union[ArchiveOptions, Mapping[str, Any]]] = None,
        services: Optional[ArchiveServices] = None,
        callback: Optional[CompletionCallback] = None,
    ):
        if isinstance(options, Mapping):
            options = ArchiveOptions.from_mapping(options)
        self.document = document
        self.output_file = Path(output_file)
        self.data_folder = Path(data_folder) if data_folder else data_folder_for(self.output_file)
        if self.data_folder.resolve() in (
            self.output_file.resolve(),
            self.output_file.resolve().parent,
        ):
            raise ConfigError(f"data folder {self.data_folder} would clobber {self.output_file}")
        self.options = options or ArchiveOptions()
        self.services = services or ArchiveServices.default()
        self.callback = callback
        self.listener = self.options.progress_listener

        self.state = JobState.CREATED
        self.status: Optional[ArchiveStatus] = None
        self.errors: List[str] = []
        self.timers: Dict[str, Dict[str, Optional[datetime]]] = {}
        self.references: Optional[List[ResourceReference]] = None
        self.downloads: Optional[List[DownloadRecord]] = None
        self._scheduler: Optional[DownloadScheduler] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._ran = False

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def run(self) -> Optional[ArchiveStatus]:
        asyncio.run(self.arun())
        return self.status

    async def arun(self) -> Optional[ArchiveStatus]:
        if self._ran or self.finished:
            raise JobStateError("Cannot run more than once")
        self._ran = True
        self._notify("on_start", self)

        try:
            self._start("extract", JobState.EXTRACTING)
            self._prepare_output()
            refs = deduplicate(extract_references(self.document, self.options))
            # added after dedup so the document itself is never collapsed
            refs.insert(0, index_reference(self.document))
            self.references = refs
            self._stop("extract")
        except Exception as e:
            err = e if isinstance(e, ExtractionError) else ExtractionError(f"{type(e).__name__}: {e}")
            logging.error("extraction failed: %s", err)
            self.errors.append(str(err))
            self._finish(JobState.FAILED)
            return self.status

        logging.info("%d references, %d to fetch", len(refs), sum(1 for r in refs if not r.is_duplicate))
        self._start("download", JobState.DOWNLOADING)
        self._executor = ThreadPoolExecutor(
            max_workers=self.options.concurrency, thread_name_prefix="page-archiver"
        )
        self._scheduler = DownloadScheduler(
            refs,
            self.services.transport,
            concurrency=self.options.concurrency,
            index_charset=self.document.charset,
            post_data=self.document.post_data,
            executor=self._executor,
            on_progress=self._progress,
        )
        downloads = await self._scheduler.run()
        if self.finished:
            return self.status
        self.downloads = downloads
        self._stop("download")

        self._start("process", JobState.PROCESSING)
        engine = ProcessingEngine(
            refs,
            downloads,
            SavePathAllocator(self.data_folder),
            self.output_file,
            self.services.persister,
            page_url=self.document.url,
            rewrite_links=self.options.rewrite_links,
            errors=self.errors,
            is_cancelled=lambda: self.finished,
            transport=self.services.transport,
        )
        await engine.run()
        self._finish(JobState.FINISHED)
        return self.status

    def cancel(self, reason: Optional[str] = None) -> None:
        if self.finished:
            return
        if self._scheduler is not None:
            self._scheduler.cancel()
        self.errors.append(str(CancellationError(reason)))
        logging.warning("archive canceled: %s", self.document.url)
        self._finish(JobState.CANCELLED)

    # -------------------- internals --------------------

    def _prepare_output(self) -> None:
        if self.data_folder.exists():
            shutil.rmtree(self.data_folder)
        self.data_folder.mkdir(parents=True)
        self.output_file.parent.mkdir(parents=True, exist_ok=True)
        self.output_file.touch(exist_ok=True)

    def _start(self, phase: str, state: JobState) -> None:
        self.state = state
        self.timers[phase] = {"start": datetime.now(), "finish": None}

    def _stop(self, phase: str) -> None:
        self.timers[phase]["finish"] = datetime.now()

    def _progress(self, current: int, maximum: int) -> None:
        self._notify("on_progress", current, maximum)

    def _notify(self, event: str, *args: Any) -> None:
        handler = getattr(self.listener, event, None)
        if handler is not None:
            handler(*args)

    def _finish(self, state: JobState) -> None:
        if self.finished:
            return
        now = datetime.now()
        for marks in self.timers.values():
            if marks["finish"] is None:
                marks["finish"] = now
        self.state = state
        self.status = ArchiveStatus.SUCCESS if not self.errors else ArchiveStatus.FAILURE
        logging.info("archive %s with %d error(s)", state.value, len(self.errors))

        callback, self.callback = self.callback, None
        if callback is not None:
            callback(self, self.status, {"errors": list(self.errors), "timers": dict(self.timers)})
        self._notify("on_stop", self, self.status)
        self._release()

    def _release(self) -> None:
        # bodies primed by capture or left by an interrupted run
        for ref in self.references or []:
            self.services.transport.forget(ref.fetch_url)
        self.references = None
        self.downloads = None
        self._scheduler = None
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
