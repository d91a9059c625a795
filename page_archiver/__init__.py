from .config import ArchiveOptions, TransportSettings
from .document import CapturedDocument, capture_document, check_capturable
from .errors import (
    ArchiveError,
    CancellationError,
    ConfigError,
    ExtractionError,
    FetchError,
    JobStateError,
    PersistError,
)
from .job import (
    ArchiveJob,
    ArchiveServices,
    ArchiveStatus,
    JobState,
    LoggingProgressListener,
    ProgressListener,
)
from .references import ExtractionContext, OriginScope, ResourceReference
from .transport import FetchResult, GenericPersister, RequestsTransport, StreamingPersister, Transport

__version__ = "0.1.0"

__all__ = [
    "ArchiveError",
    "ArchiveJob",
    "ArchiveOptions",
    "ArchiveServices",
    "ArchiveStatus",
    "CancellationError",
    "CapturedDocument",
    "ConfigError",
    "ExtractionContext",
    "ExtractionError",
    "FetchError",
    "FetchResult",
    "GenericPersister",
    "JobState",
    "JobStateError",
    "LoggingProgressListener",
    "OriginScope",
    "PersistError",
    "ProgressListener",
    "RequestsTransport",
    "ResourceReference",
    "StreamingPersister",
    "Transport",
    "TransportSettings",
    "capture_document",
    "check_capturable",
]
