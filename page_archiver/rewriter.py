"""Literal text rewriting of references inside fetched HTML and CSS payloads.

Payloads are never re-parsed; each extraction context has a small set of
regex strategies that replace one raw reference with its local path.
"""

import re
from typing import Callable, Dict, Iterable, List, Optional, Pattern
from urllib.parse import urljoin, urlsplit

from .references import ExtractionContext, OriginScope, ResourceReference

TAG_RE = re.compile(r"<[^>]+>")
STYLE_ATTR_RE = re.compile(r"(?<![\w-])style\s*=\s*([\"'])(?:(?!\1).)*\1", re.IGNORECASE | re.DOTALL)
STYLE_BLOCK_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
HTML_OPEN_RE = re.compile(r"(<html[^>]*>)", re.IGNORECASE)
BASE_TAG_RE = re.compile(r"(<base\b[^>]*>)", re.IGNORECASE)
ANCHOR_RE = re.compile(r"(<a\s[^>]*?\bhref\s*=\s*)([\"'])([^\"']+)\2", re.IGNORECASE)


# -------------------- Strategies --------------------


class Rewrite:
    def apply(self, text: str, raw: str, replacement: str) -> str:
        raise NotImplementedError


class AttributeValueRewrite(Rewrite):
    # attr="raw" anywhere inside a tag, every attribute of every tag
    def apply(self, text: str, raw: str, replacement: str) -> str:
        value = re.compile(r"(=\s*([\"'])\s*)" + re.escape(raw) + r"(\s*\2)")

        def fix_tag(m: re.Match) -> str:
            return value.sub(lambda v: v.group(1) + replacement + v.group(3), m.group(0))

        return TAG_RE.sub(fix_tag, text)


class CssUrlRewrite(Rewrite):
    def apply(self, text: str, raw: str, replacement: str) -> str:
        pat = re.compile(r"url\((\s*([\"']?)\s*)" + re.escape(raw) + r"(\s*\2\s*)\)")
        return pat.sub(lambda m: "url(" + m.group(1) + replacement + m.group(3) + ")", text)


class CssImportRewrite(Rewrite):
    def apply(self, text: str, raw: str, replacement: str) -> str:
        found = re.escape(raw)
        bare = re.compile(r"(@import\s*([\"'])\s*)" + found + r"(\s*\2)")
        wrapped = re.compile(r"(@import\s+url\(\s*([\"']?)\s*)" + found + r"(\s*\2\s*)\)")
        text = bare.sub(lambda m: m.group(1) + replacement + m.group(3), text)
        return wrapped.sub(lambda m: m.group(1) + replacement + m.group(3) + ")", text)


class ScopedRewrite(Rewrite):
    """Runs inner strategies only within the regions matched by ``region``."""

    def __init__(self, region: Pattern, *inner: Rewrite):
        self.region = region
        self.inner = inner

    def apply(self, text: str, raw: str, replacement: str) -> str:
        def fix(m: re.Match) -> str:
            s = m.group(0)
            for strategy in self.inner:
                s = strategy.apply(s, raw, replacement)
            return s

        return self.region.sub(fix, text)


ATTRIBUTE_VALUE = AttributeValueRewrite()
CSS_URL = CssUrlRewrite()
CSS_IMPORT = CssImportRewrite()
INLINE_STYLE_URL = ScopedRewrite(TAG_RE, ScopedRewrite(STYLE_ATTR_RE, CSS_URL))
STYLE_BLOCK_URL = ScopedRewrite(STYLE_BLOCK_RE, CSS_URL)
STYLE_BLOCK_IMPORT = ScopedRewrite(STYLE_BLOCK_RE, CSS_IMPORT)

Strategies = Dict[ExtractionContext, List[Rewrite]]

HTML_STRATEGIES: Strategies = {
    ExtractionContext.ATTRIBUTE: [ATTRIBUTE_VALUE],
    ExtractionContext.CSS: [INLINE_STYLE_URL, STYLE_BLOCK_URL],
    ExtractionContext.IMPORT: [STYLE_BLOCK_IMPORT],
}

CSS_STRATEGIES: Strategies = {
    ExtractionContext.CSS: [CSS_URL],
    ExtractionContext.IMPORT: [CSS_IMPORT],
}


# -------------------- Payload passes --------------------


def rewrite_references(
    text: str,
    refs: Iterable[ResourceReference],
    scope: OriginScope,
    strategies: Strategies,
    local_path: Callable[[ResourceReference], Optional[str]],
) -> str:
    # a reference without a local path is left as it is
    for ref in refs:
        if not ref.raw_text or ref.is_index or ref.scope != scope:
            continue
        rules = strategies.get(ref.context)
        if not rules:
            continue
        replacement = local_path(ref)
        if replacement is None:
            continue
        for rule in rules:
            text = rule.apply(text, ref.raw_text, replacement)
    return text


def mark_source(html: str, source_url: str) -> str:
    note = f"<!-- Source is {source_url} -->"
    if HTML_OPEN_RE.search(html):
        return HTML_OPEN_RE.sub(lambda m: m.group(1) + note, html, count=1)
    return note + "\n" + html


def comment_out_base(html: str) -> str:
    return BASE_TAG_RE.sub(lambda m: "<!--" + m.group(1) + "-->", html, count=1)


def absolutize_anchors(html: str, page_url: str, local_prefix: Optional[str] = None) -> str:
    # hrefs under local_prefix already point into the data folder
    def fix(m: re.Match) -> str:
        href = m.group(3).strip()
        if href.startswith("#") or (local_prefix and href.startswith(local_prefix)):
            return m.group(0)
        absu = urljoin(page_url, href)
        if urlsplit(absu).scheme.lower() not in ("http", "https"):
            return m.group(0)
        return m.group(1) + m.group(2) + absu + m.group(2)

    return ANCHOR_RE.sub(fix, html)
