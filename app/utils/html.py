"""Lenient HTML head scraping.

One pass over the document collects everything the scrapers need: meta tags
(first value per key wins), the ``<title>`` text, JSON-LD blocks and the
visible body text. Malformed markup never raises.
"""

import html
import json
import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Any

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")
_INVISIBLE_TAGS = {"script", "style", "noscript", "template", "svg"}


@dataclass
class HtmlDocument:
    meta: dict[str, str] = field(default_factory=dict)
    title: str | None = None
    json_ld: list[Any] = field(default_factory=list)
    text: str = ""

    def first_meta(self, *keys: str) -> str | None:
        for key in keys:
            value = self.meta.get(key.lower())
            if value:
                return value
        return None


class _DocumentParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.meta: dict[str, str] = {}
        self.title_parts: list[str] = []
        self.json_ld_blocks: list[str] = []
        self.text_parts: list[str] = []
        self._in_title = False
        self._json_ld_parts: list[str] | None = None
        self._invisible_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        attributes = {k.lower(): (v or "") for k, v in attrs}
        if tag == "meta":
            key = attributes.get("property") or attributes.get("name") or attributes.get("itemprop")
            content = attributes.get("content", "").strip()
            if key and content and key.lower() not in self.meta:
                self.meta[key.lower()] = content
        elif tag == "title":
            self._in_title = True
        elif tag == "script" and attributes.get("type", "").lower() == "application/ld+json":
            self._json_ld_parts = []
            self._invisible_depth += 1
        elif tag in _INVISIBLE_TAGS:
            self._invisible_depth += 1

    def handle_endtag(self, tag: str) -> None:
        if tag == "title":
            self._in_title = False
        elif tag == "script" and self._json_ld_parts is not None:
            self.json_ld_blocks.append("".join(self._json_ld_parts))
            self._json_ld_parts = None
            self._invisible_depth = max(0, self._invisible_depth - 1)
        elif tag in _INVISIBLE_TAGS:
            self._invisible_depth = max(0, self._invisible_depth - 1)

    def handle_data(self, data: str) -> None:
        if self._json_ld_parts is not None:
            self._json_ld_parts.append(data)
        elif self._in_title:
            self.title_parts.append(data)
        elif self._invisible_depth == 0:
            self.text_parts.append(data)


def _load_json_ld(block: str) -> list[Any]:
    try:
        parsed = json.loads(block.strip())
    except ValueError:
        return []
    items = parsed if isinstance(parsed, list) else [parsed]
    flattened: list[Any] = []
    for item in items:
        if isinstance(item, dict) and isinstance(item.get("@graph"), list):
            flattened.extend(item["@graph"])
        else:
            flattened.append(item)
    return [item for item in flattened if isinstance(item, dict)]


def parse_html(document: str) -> HtmlDocument:
    parser = _DocumentParser()
    try:
        parser.feed(document)
        parser.close()
    except Exception as e:
        # Keep whatever was collected before the parser gave up
        logger.debug(f"[HTML] Parser stopped early: {e}")

    json_ld: list[Any] = []
    for block in parser.json_ld_blocks:
        json_ld.extend(_load_json_ld(block))

    title = _WHITESPACE.sub(" ", "".join(parser.title_parts)).strip() or None
    text = _WHITESPACE.sub(" ", " ".join(parser.text_parts)).strip()
    return HtmlDocument(meta=parser.meta, title=title, json_ld=json_ld, text=text)


def clean_text(value: Any) -> str | None:
    """Unescape entities and trim. Non-strings and blanks become None."""
    if not isinstance(value, str):
        return None
    cleaned = html.unescape(value).strip()
    return cleaned or None
