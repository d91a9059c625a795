from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .errors import ConfigError

# -------------------- Constants --------------------

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

DEFAULT_CHARSET = "ISO-8859-1"
DEFAULT_WRITE_CHARSET = "UTF-8"
DEFAULT_CONCURRENCY = 4
DATA_FOLDER_SUFFIX = "_files"
UNNAMED_FILE = "unnamed"

# camelCase spellings accepted from embedders of the old options bag
_OPTION_ALIASES = {
    "saveIframes": "save_iframes",
    "saveObjects": "save_objects",
    "rewriteLinks": "rewrite_links",
    "progressListener": "progress_listener",
}


# -------------------- Settings --------------------


@dataclass
class ArchiveOptions:
    save_iframes: bool = False
    save_objects: bool = False
    rewrite_links: bool = False
    concurrency: int = DEFAULT_CONCURRENCY
    progress_listener: Optional[Any] = None

    def __post_init__(self) -> None:
        if not isinstance(self.concurrency, int) or self.concurrency < 1:
            raise ConfigError(f"concurrency must be a positive integer, got {self.concurrency!r}")

    @classmethod
    def from_mapping(cls, mapping: Optional[Mapping[str, Any]]) -> "ArchiveOptions":
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        unknown: List[str] = []
        for key, value in (mapping or {}).items():
            name = _OPTION_ALIASES.get(key, key)
            if name not in known:
                unknown.append(key)
                continue
            values[name] = value
        if unknown:
            raise ConfigError("unknown archive option(s): " + ", ".join(sorted(unknown)))
        return cls(**values)


@dataclass
class TransportSettings:
    timeout: float = 15.0
    max_bytes: int = 50_000_000
    retries: int = 5
    backoff_factor: float = 0.5
    prefer_cache: bool = True
    extra_headers: List[str] = field(default_factory=list)  # "Name: value"

    def headers(self) -> Dict[str, str]:
        out = dict(DEFAULT_HEADERS)
        for h in self.extra_headers:
            if ":" not in h:
                raise ConfigError(f"invalid header (no colon): {h}")
            k, v = h.split(":", 1)
            out[k.strip()] = v.strip()
        return out


# -------------------- Config loader --------------------


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        try:
            import tomllib  # py311+
        except ImportError:
            import tomli as tomllib  # backport
        with open(p, "rb") as f:
            data = tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    else:
        raise ConfigError("Unsupported config format. Use .toml or .yaml")
    if not isinstance(data, dict):
        raise ConfigError("Top-level config must be a mapping")
    return data


def flatten_config(cfg: Mapping[str, Any]) -> Dict[str, Any]:
    flat = {k: v for k, v in cfg.items() if not isinstance(v, dict)}
    for g in ("general", "archive", "transport"):
        if isinstance(cfg.get(g), dict):
            flat.update(cfg[g])
    return flat
