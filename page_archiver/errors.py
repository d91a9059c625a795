from typing import Optional


class ArchiveError(Exception):
    pass


class ConfigError(ArchiveError, ValueError):
    pass


class JobStateError(ArchiveError):
    pass


class ExtractionError(ArchiveError):
    pass


class FetchError(ArchiveError):
    def __init__(self, url: str, cause: Optional[str] = None):
        self.url = url
        self.cause = cause
        msg = f"Download failed for uri: {url}"
        if cause:
            msg = f"{msg} ({cause})"
        super().__init__(msg)


class PersistError(ArchiveError):
    def __init__(self, message: str, *, url: Optional[str] = None, path=None):
        self.url = url
        self.path = path
        super().__init__(message)

    @classmethod
    def write_failed(cls, path, cause: Exception) -> "PersistError":
        name = getattr(path, "name", str(path))
        return cls(f"Couldn't save {name}\n{cause}", path=path)

    @classmethod
    def persist_failed(cls, url: str, cause: Exception) -> "PersistError":
        return cls(f"Error persisting URI: {url}\n{cause}", url=url)

    @classmethod
    def missing_content_type(cls, url: str) -> "PersistError":
        return cls(f"Missing contentType: {url}", url=url)


class CancellationError(ArchiveError):
    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        msg = "Download canceled by user"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)
