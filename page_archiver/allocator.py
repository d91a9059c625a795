import itertools
import logging
import os
import re
from pathlib import Path
from typing import Dict
from urllib.parse import unquote, urlsplit

from .config import UNNAMED_FILE
from .references import ResourceReference

INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
# leaves room for a "-N" suffix under the usual 255 byte limit
MAX_NAME_BYTES = 200
MAX_EXT_BYTES = 16


def truncate_name(name: str, limit: int = MAX_NAME_BYTES) -> str:
    if len(name.encode("utf-8")) <= limit:
        return name
    stem, ext = os.path.splitext(name)
    if len(ext.encode("utf-8")) > MAX_EXT_BYTES:
        stem, ext = name, ""
    budget = limit - len(ext.encode("utf-8"))
    stem = stem.encode("utf-8")[:budget].decode("utf-8", errors="ignore")
    return stem + ext


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name).strip()
    if name in ("", ".", ".."):
        return UNNAMED_FILE
    if name.startswith("."):
        name = "_" + name[1:]
    return truncate_name(name)


def candidate_name(ref: ResourceReference) -> str:
    path = urlsplit(ref.resolved_uri).path
    last = unquote(path.split("/")[-1])
    return sanitize_filename(last) if last else UNNAMED_FILE


class SavePathAllocator:
    """Stable file names inside the data folder, one per unique target.

    A name is claimed by exclusively creating an empty placeholder file, so
    the filesystem decides what collides (case folding and the like).
    """

    def __init__(self, folder: Path):
        self.folder = Path(folder)
        self._names: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._names)

    def allocate(self, ref: ResourceReference) -> str:
        key = ref.key or ref.resolved_uri
        name = self._names.get(key)
        if name is None:
            name = self._claim(candidate_name(ref))
            self._names[key] = name
        return name

    def path_for(self, ref: ResourceReference) -> Path:
        return self.folder / self.allocate(ref)

    def relative_url(self, ref: ResourceReference, include_folder: bool = False) -> str:
        name = self.allocate(ref)
        if include_folder:
            name = f"{self.folder.name}/{name}"
        return name.replace(" ", "%20")

    def _claim(self, candidate: str) -> str:
        self.folder.mkdir(parents=True, exist_ok=True)
        stem, ext = os.path.splitext(candidate)
        for n in itertools.count():
            name = candidate if n == 0 else f"{stem}-{n}{ext}"
            try:
                fd = os.open(self.folder / name, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                continue
            os.close(fd)
            if n:
                logging.debug("name collision: %s saved as %s", candidate, name)
            return name
