from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urljoin, urlsplit, urlunsplit

# schemes that never name a fetchable resource
NON_FETCHABLE_SCHEMES = {"data", "javascript", "mailto", "about", "blob", "tel"}


class ExtractionContext(str, Enum):
    ATTRIBUTE = "attribute"
    CSS = "css"
    IMPORT = "import"
    INDEX = "index"


class OriginScope(str, Enum):
    BASE = "base"
    EXTCSS = "extcss"


def resolve_uri(raw: str, base: str) -> str:
    raw = (raw or "").strip()
    try:
        scheme = urlsplit(raw).scheme.lower()
    except ValueError:
        scheme = ""
    if scheme in ("http", "https"):
        return raw
    if not base:
        return raw
    return urljoin(base, raw)


def canonical_key(uri: str) -> str:
    """Normalized string form of a resolved URI, or "" when it cannot be fetched."""
    try:
        parts = urlsplit(uri)
    except ValueError:
        return ""
    scheme = parts.scheme.lower()
    if not scheme or scheme in NON_FETCHABLE_SCHEMES:
        return ""
    if scheme in ("http", "https") and not parts.netloc:
        return ""
    path = parts.path
    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit((scheme, parts.netloc.lower(), path, parts.query, parts.fragment))


@dataclass
class ResourceReference:
    raw_text: str
    resolved_uri: str
    context: ExtractionContext
    scope: OriginScope
    is_duplicate: bool = False
    key: str = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.raw_text = self.raw_text or ""
        # an empty reference would otherwise resolve to its base
        self.key = canonical_key(self.resolved_uri) if self.raw_text.strip() else ""

    @classmethod
    def create(
        cls, raw: str, base: str, context: ExtractionContext, scope: OriginScope
    ) -> "ResourceReference":
        return cls(raw or "", resolve_uri(raw, base), context, scope)

    @property
    def is_index(self) -> bool:
        return self.context == ExtractionContext.INDEX

    @property
    def fetch_url(self) -> str:
        return self.key.split("#", 1)[0]

    def is_same_target(self, other: "ResourceReference") -> bool:
        return bool(self.key) and self.key == other.key

    def is_exact_duplicate(self, other: "ResourceReference") -> bool:
        return (
            self.is_same_target(other)
            and self.scope == other.scope
            and self.context == other.context
            and self.raw_text == other.raw_text
        )

    def __str__(self) -> str:
        return self.key or self.resolved_uri
