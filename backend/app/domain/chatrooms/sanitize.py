"""Allow-list HTML sanitiser for chat messages and room metadata."""

from __future__ import annotations

import html
import re
from html.parser import HTMLParser
from typing import Dict, FrozenSet, List, Mapping, Optional, Tuple

_HEADINGS = ("h1", "h2", "h3", "h4", "h5", "h6")

MESSAGE_TAGS: Mapping[str, FrozenSet[str]] = {
	**{tag: frozenset() for tag in _HEADINGS},
	"p": frozenset(),
	"br": frozenset(),
	"strong": frozenset(),
	"b": frozenset(),
	"em": frozenset(),
	"i": frozenset(),
	"u": frozenset(),
	"s": frozenset(),
	"strike": frozenset(),
	"ul": frozenset(),
	"ol": frozenset(),
	"li": frozenset(),
	"blockquote": frozenset(),
	"code": frozenset(),
	"pre": frozenset(),
	"a": frozenset({"href", "target", "rel"}),
	"img": frozenset({"src", "alt", "width", "height"}),
	"span": frozenset({"style"}),
}

_VOID_TAGS = frozenset({"br", "img", "hr", "input", "meta", "link"})
_STRIPPED_BODIES = frozenset({"script", "style", "iframe", "object", "embed", "form", "textarea", "noscript"})
_URL_SCHEME = re.compile(r"^([a-z][a-z0-9+.\-]*):", re.IGNORECASE)
_SAFE_SCHEMES = frozenset({"http", "https", "mailto", "tel"})
_STYLE_PROPERTIES = frozenset({"color", "background-color", "font-weight", "font-style", "text-decoration"})


def _safe_url(value: str) -> Optional[str]:
	"""Return the trimmed URL when its scheme is allowed, otherwise None.

	Browsers ignore control and whitespace characters inside a scheme, so they
	are dropped before the scheme is compared. Relative URLs and fragments have
	no scheme and are kept.
	"""
	compact = "".join(ch for ch in value if ch.isprintable() and not ch.isspace())
	if not compact:
		return None
	match = _URL_SCHEME.match(compact)
	if match is None:
		return value.strip()
	return value.strip() if match.group(1).lower() in _SAFE_SCHEMES else None


def _clean_style(value: str) -> Optional[str]:
	kept: List[str] = []
	for declaration in value.split(";"):
		name, sep, prop_value = declaration.partition(":")
		name = name.strip().lower()
		prop_value = prop_value.strip()
		if not sep or name not in _STYLE_PROPERTIES or not prop_value:
			continue
		if "url(" in prop_value.lower() or "expression" in prop_value.lower():
			continue
		kept.append(f"{name}: {prop_value}")
	return "; ".join(kept) or None


class _AllowListParser(HTMLParser):
	def __init__(self, allowed: Mapping[str, FrozenSet[str]]) -> None:
		super().__init__(convert_charrefs=True)
		self._allowed = allowed
		self._parts: List[str] = []
		self._skip_depth = 0

	def _attributes(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> str:
		permitted = self._allowed[tag]
		cleaned: Dict[str, str] = {}
		for name, value in attrs:
			name = name.lower()
			if name not in permitted or value is None:
				continue
			if name in ("href", "src"):
				url = _safe_url(value)
				if url is None:
					continue
				value = url
			if name == "style":
				style = _clean_style(value)
				if style is None:
					continue
				value = style
			cleaned[name] = value
		if tag == "a":
			cleaned["target"] = "_blank"
			cleaned["rel"] = "noopener noreferrer"
		return "".join(f' {name}="{html.escape(value, quote=True)}"' for name, value in cleaned.items())

	def _open(self, tag: str, attrs: List[Tuple[str, Optional[str]]], *, self_closing: bool) -> None:
		tag = tag.lower()
		if tag in _STRIPPED_BODIES:
			if not self_closing and tag not in _VOID_TAGS:
				self._skip_depth += 1
			return
		if self._skip_depth or tag not in self._allowed:
			return
		self._parts.append(f"<{tag}{self._attributes(tag, attrs)}>")

	def handle_starttag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
		self._open(tag, attrs, self_closing=False)

	def handle_startendtag(self, tag: str, attrs: List[Tuple[str, Optional[str]]]) -> None:
		self._open(tag, attrs, self_closing=True)

	def handle_endtag(self, tag: str) -> None:
		tag = tag.lower()
		if tag in _STRIPPED_BODIES:
			self._skip_depth = max(0, self._skip_depth - 1)
			return
		if self._skip_depth or tag not in self._allowed or tag in _VOID_TAGS:
			return
		self._parts.append(f"</{tag}>")

	def handle_data(self, data: str) -> None:
		if self._skip_depth:
			return
		self._parts.append(html.escape(data, quote=False))

	def result(self) -> str:
		return "".join(self._parts)


def _run(value: str, allowed: Mapping[str, FrozenSet[str]]) -> str:
	parser = _AllowListParser(allowed)
	parser.feed(value or "")
	parser.close()
	return parser.result()


def sanitize_html(value: str) -> str:
	"""Keep basic formatting, links and images; strip everything else.

	Disallowed tags are removed but their text is kept (escaped). Script-like
	elements are dropped together with their contents.
	"""
	return _run(value, MESSAGE_TAGS)


def sanitize_plain_text(value: str) -> str:
	"""Remove all markup, returning escaped text only."""
	return _run(value, {})
