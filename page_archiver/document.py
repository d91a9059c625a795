import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from bs4 import BeautifulSoup, UnicodeDammit

from .config import DATA_FOLDER_SUFFIX
from .errors import ConfigError, FetchError
from .references import resolve_uri
from .stylesheets import StyleFetcher, StyleSheet, parse_stylesheet
from .transport import PostData, Transport, decode_body

CAPTURABLE_TYPES = {"text/html", "application/xhtml+xml"}
ILLEGAL_PROTOCOL_RE = re.compile(
    r"^(ftp|file|chrome|view-source|about|javascript|news|snews|ldap|ldaps|mailto"
    r"|finger|telnet|gopher|irc|mailbox)",
    re.IGNORECASE,
)
ILLEGAL_NAME_CHARS_RE = re.compile(r' *[:*?|<>"/]+ *')
HTML_NAME_RE = re.compile(r"\.x?html?$", re.IGNORECASE)


# -------------------- HTML utils --------------------


def bs4_parse(html: Union[str, bytes]) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except Exception:
        return BeautifulSoup(html, "html.parser")


def collect_stylesheets(
    soup: BeautifulSoup, page_url: str, fetch: Optional[StyleFetcher] = None
) -> List[StyleSheet]:
    sheets: List[StyleSheet] = []
    for tag in soup.find_all(["link", "style"]):
        if tag.name == "style":
            sheets.append(parse_stylesheet(tag.get_text(), page_url, fetch))
            continue
        rels = {r.lower() for r in (tag.get("rel") or [])}
        href = tag.get("href")
        if "stylesheet" not in rels or not href:
            continue
        target = resolve_uri(href, page_url)
        text = fetch(target) if fetch else None
        if text is None:
            sheets.append(StyleSheet(target, [], owner_href=href))
        else:
            sheets.append(parse_stylesheet(text, target, fetch, owner_href=href))
    return sheets


# -------------------- Document handle --------------------


@dataclass
class CapturedDocument:
    url: str
    soup: BeautifulSoup
    charset: Optional[str] = None
    stylesheets: List[StyleSheet] = field(default_factory=list)
    content_type: str = "text/html"
    post_data: Optional[PostData] = None

    @property
    def title(self) -> str:
        if self.soup.title and self.soup.title.string:
            return self.soup.title.string.strip()
        return ""

    @classmethod
    def from_html(
        cls,
        url: str,
        html: str,
        *,
        fetch_style: Optional[StyleFetcher] = None,
        charset: Optional[str] = None,
        content_type: str = "text/html",
        post_data: Optional[PostData] = None,
    ) -> "CapturedDocument":
        soup = bs4_parse(html)
        sheets = collect_stylesheets(soup, url, fetch_style)
        return cls(url, soup, charset, sheets, content_type, post_data)


def capture_document(
    url: str, transport: Transport, post_data: Optional[PostData] = None
) -> CapturedDocument:
    logging.info("GET %s", url)
    result = transport.fetch(url, post_data=post_data)
    transport.remember(url, result)
    known = [result.charset] if result.charset else []
    dammit = UnicodeDammit(result.body, known, is_html=True)
    html = dammit.unicode_markup
    charset = dammit.original_encoding
    if html is None:
        html, charset = decode_body(result.body, None, result.charset)

    def fetch_style(u: str) -> Optional[str]:
        try:
            r = transport.fetch(u)
        except FetchError as e:
            logging.warning("stylesheet unavailable %s: %s", u, e)
            return None
        return decode_body(r.body, None, r.charset)[0]

    return CapturedDocument.from_html(
        result.url or url,
        html,
        fetch_style=fetch_style,
        charset=charset,
        content_type=result.content_type or "text/html",
        post_data=post_data,
    )


# -------------------- Capture guards and naming --------------------


def check_capturable(document: CapturedDocument) -> None:
    if document.content_type not in CAPTURABLE_TYPES:
        raise ConfigError(f"Only HTML documents can be archived, got {document.content_type}")
    m = ILLEGAL_PROTOCOL_RE.match(document.url)
    if m:
        raise ConfigError(f"Cannot archive pages using the {m.group(1).lower()}:// protocol")


def default_save_name(url: str, title: str = "") -> str:
    path = url.split("#", 1)[0].split("?", 1)[0]
    last = path.split("/")[-1]
    if not last:
        name = (title or "index") + ".html"
    else:
        name = last if HTML_NAME_RE.search(last) else last + ".html"
    return ILLEGAL_NAME_CHARS_RE.sub(" ", name).strip() or "index.html"


def data_folder_for(output_file: Union[str, Path]) -> Path:
    p = Path(output_file)
    stem = re.sub(r"\.\w*$", "", p.name)
    return p.with_name(stem + DATA_FOLDER_SUFFIX)
