"""Parsed stylesheet objects handed to the reference extractor.

Sheets are parsed with cssutils and reduced to three rule kinds (style,
import, media). Imported sheets are loaded through a caller supplied fetch
function so the whole import tree is available before extraction starts.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Union

import cssutils
from cssutils.css import CSSRule

from .references import resolve_uri

cssutils.log.setLevel(logging.CRITICAL)

StyleFetcher = Callable[[str], Optional[str]]


@dataclass
class StyleRule:
    css_text: str


@dataclass
class ImportRule:
    href: str
    sheet: "StyleSheet"


@dataclass
class MediaRule:
    rules: List["Rule"] = field(default_factory=list)


Rule = Union[StyleRule, ImportRule, MediaRule]


@dataclass
class StyleSheet:
    # href is the base for everything inside the sheet; owner_href is the raw
    # href attribute of the owning <link>, None for inline <style> content
    href: Optional[str]
    rules: List[Rule] = field(default_factory=list)
    owner_href: Optional[str] = None

    @property
    def inline(self) -> bool:
        return self.owner_href is None


def _no_fetch(url: str) -> None:
    # imports are resolved by load_import, never by cssutils itself
    return None


_parser = cssutils.CSSParser(fetcher=_no_fetch, validate=False)


def parse_stylesheet(
    text: str,
    href: Optional[str],
    fetch: Optional[StyleFetcher] = None,
    *,
    owner_href: Optional[str] = None,
    _chain: FrozenSet[str] = frozenset(),
) -> StyleSheet:
    chain = _chain | {href} if href else _chain
    try:
        parsed = _parser.parseString(text or "", href=href)
    except Exception as e:
        logging.warning("failed to parse stylesheet %s: %s", href or "<inline>", e)
        return StyleSheet(href, [], owner_href)
    rules = _convert_rules(parsed.cssRules, href, fetch, chain)
    return StyleSheet(href, rules, owner_href)


def _convert_rules(
    css_rules, base: Optional[str], fetch: Optional[StyleFetcher], chain: FrozenSet[str]
) -> List[Rule]:
    out: List[Rule] = []
    for rule in css_rules:
        if rule.type == CSSRule.IMPORT_RULE:
            href = rule.href or ""
            target = resolve_uri(href, base or "")
            out.append(ImportRule(href, load_import(target, fetch, chain)))
        elif rule.type == CSSRule.MEDIA_RULE:
            out.append(MediaRule(_convert_rules(rule.cssRules, base, fetch, chain)))
        elif rule.type in (CSSRule.STYLE_RULE, CSSRule.FONT_FACE_RULE):
            out.append(StyleRule(rule.cssText))
    return out


def load_import(
    target: str, fetch: Optional[StyleFetcher], chain: FrozenSet[str] = frozenset()
) -> StyleSheet:
    if fetch is None or not target or target in chain:
        if target in chain:
            logging.debug("import cycle at %s", target)
        return StyleSheet(target, [])
    text = fetch(target)
    if text is None:
        return StyleSheet(target, [])
    return parse_stylesheet(text, target, fetch, _chain=chain)
