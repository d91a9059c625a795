import re
from typing import List

from bs4 import Comment

from .config import ArchiveOptions
from .document import CapturedDocument
from .references import ExtractionContext, OriginScope, ResourceReference
from .stylesheets import ImportRule, MediaRule, Rule, StyleRule

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"' \n\r\t]+)\1\s*\)", re.MULTILINE)
IE_CONDITIONAL_RE = re.compile(r"^\[if[^\]]+\]>")
CONDITIONAL_LINK_RE = re.compile(r"<link[^>]+href=([\"'])([^\"']*)\1", re.IGNORECASE | re.MULTILINE)
CONDITIONAL_SCRIPT_RE = re.compile(r"<script[^>]+src=([\"'])([^\"']*)\1", re.IGNORECASE | re.MULTILINE)

ATTRIBUTE = ExtractionContext.ATTRIBUTE
CSS = ExtractionContext.CSS
IMPORT = ExtractionContext.IMPORT
BASE = OriginScope.BASE
EXTCSS = OriginScope.EXTCSS


class ReferenceExtractor:
    """Collects every resource reference of a document and its stylesheets.

    Rules run in a fixed order and append to one list; the result is not
    deduplicated and does not contain the index reference.
    """

    def __init__(self, document: CapturedDocument, options: ArchiveOptions):
        self.document = document
        self.options = options
        self.base = document.url
        self.refs: List[ResourceReference] = []

    def _add(self, raw: str, base: str, context: ExtractionContext, scope: OriginScope) -> None:
        self.refs.append(ResourceReference.create(raw, base, context, scope))

    def extract(self) -> List[ResourceReference]:
        self._attributes()
        self._embedded()
        self._style_attributes()
        self._stylesheets()
        self._conditional_comments()
        return self.refs

    def _attributes(self) -> None:
        soup = self.document.soup
        for tag in soup.find_all(background=True):
            self._add(tag["background"], self.base, ATTRIBUTE, BASE)
        for tag in soup.find_all("img", src=True):
            self._add(tag["src"], self.base, ATTRIBUTE, BASE)
        for tag in soup.find_all("input", src=True):
            if (tag.get("type") or "").strip().lower() == "image":
                self._add(tag["src"], self.base, ATTRIBUTE, BASE)
        for tag in soup.find_all("script", src=True):
            self._add(tag["src"], self.base, ATTRIBUTE, BASE)

    def _embedded(self) -> None:
        soup = self.document.soup
        if self.options.save_iframes:
            # only the frame's own html, its document is not walked
            for tag in soup.find_all("iframe", src=True):
                self._add(tag["src"], self.base, ATTRIBUTE, BASE)
        if not self.options.save_objects:
            return
        for tag in soup.find_all("embed", src=True):
            self._add(tag["src"], self.base, ATTRIBUTE, BASE)
        for obj in soup.find_all("object"):
            if obj.get("data"):
                self._add(obj["data"], self.base, ATTRIBUTE, BASE)
            for param in obj.find_all("param", recursive=False):
                if (param.get("name") or "").lower() in ("movie", "src"):
                    if param.get("value"):
                        self._add(param["value"], self.base, ATTRIBUTE, BASE)
                    break

    def _style_attributes(self) -> None:
        for tag in self.document.soup.find_all(style=True):
            for m in CSS_URL_RE.finditer(tag["style"] or ""):
                self._add(m.group(2), self.base, CSS, BASE)

    def _stylesheets(self) -> None:
        for sheet in self.document.stylesheets:
            if sheet.inline:
                self._walk(sheet.rules, self.base, BASE)
            else:
                self._add(sheet.owner_href or "", self.base, ATTRIBUTE, BASE)
                self._walk(sheet.rules, sheet.href or self.base, EXTCSS)

    def _walk(self, rules: List[Rule], base: str, scope: OriginScope) -> None:
        for rule in rules:
            if isinstance(rule, ImportRule):
                self._add(rule.href, base, IMPORT, scope)
                self._walk(rule.sheet.rules, self.refs[-1].resolved_uri, EXTCSS)
            elif isinstance(rule, StyleRule):
                for m in CSS_URL_RE.finditer(rule.css_text):
                    self._add(m.group(2), base, CSS, scope)
            elif isinstance(rule, MediaRule):
                self._walk(rule.rules, base, scope)

    def _conditional_comments(self) -> None:
        # IE conditional comments are invisible to the tree, so scan their text
        for c in self.document.soup.find_all(string=lambda s: isinstance(s, Comment)):
            text = str(c)
            if not IE_CONDITIONAL_RE.match(text):
                continue
            for m in CONDITIONAL_LINK_RE.finditer(text):
                self._add(m.group(2), self.base, ATTRIBUTE, BASE)
            for m in CONDITIONAL_SCRIPT_RE.finditer(text):
                self._add(m.group(2), self.base, ATTRIBUTE, BASE)


def extract_references(document: CapturedDocument, options: ArchiveOptions) -> List[ResourceReference]:
    return ReferenceExtractor(document, options).extract()


def index_reference(document: CapturedDocument) -> ResourceReference:
    return ResourceReference.create(document.url, document.url, ExtractionContext.INDEX, BASE)
