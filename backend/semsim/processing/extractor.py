"""
Text Extraction: XML document → ordered fragment texts
═════════════════════════════════════════════════════════

Extraction is deterministic and a pure function of (document, selectors):

  1. Parse the document (bytes or str) with xml.etree.ElementTree.  The
     orchestrator parses on the request path and hands the root to the
     worker, so each document is parsed exactly once.
  2. Walk every element in document order.
  3. Keep elements whose local tag name (namespace stripped) is one of the
     selectors.
  4. Fragment text = all descendant text, whitespace-normalised
     (leading/trailing trimmed, internal runs collapsed to one space).
  5. Empty fragments are skipped.

Selectors are a space-separated list of XML element names, e.g. "p li div".
They are validated up front by validate_selectors(), before any session is
created, so a bad request never reaches the worker pool.

This module is the only place that knows about the document format.
The orchestrator only sees the TextExtractor interface.
"""

from __future__ import annotations

import logging
import re
import time
import urllib.parse
from abc import ABC, abstractmethod
from typing import Any
from xml.etree import ElementTree as ET

from semsim.core.errors import ParseError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SELECTORS = "p"

# Each name starts with a letter or '_' and continues with letters, digits, '-' or '_'.
_SELECTORS_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_-]*(\s+[A-Za-z_][A-Za-z0-9_-]*)*$")
_WHITESPACE_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Selector validation
# ---------------------------------------------------------------------------

def validate_selectors(selectors: str | None, default: str = DEFAULT_SELECTORS) -> list[str]:
    """
    URL-decode, validate and split a selector list.

    None falls back to `default`.  Returns the element names in request order.

    Raises:
        ValidationError on an empty or malformed selector list.
    """
    raw = default if selectors is None else selectors
    decoded = urllib.parse.unquote_plus(raw).strip()

    if not decoded:
        raise ValidationError("elements", "Element list must not be empty.")

    if not _SELECTORS_RE.match(decoded):
        raise ValidationError(
            "elements",
            f"Invalid element names: '{decoded}'. Names must start with a letter or '_' "
            "and contain only letters, digits, '-' or '_'; separate names with spaces.",
        )

    return decoded.split()


def normalize_space(text: str) -> str:
    """XPath normalize-space(): trim and collapse internal whitespace runs."""
    return _WHITESPACE_RE.sub(" ", text).strip()


def _local_name(tag: object) -> str | None:
    # Comments and processing instructions carry a callable tag
    if not isinstance(tag, str):
        return None
    return tag.rsplit("}", 1)[-1]


# ---------------------------------------------------------------------------
# Extractor interface
# ---------------------------------------------------------------------------

class TextExtractor(ABC):
    """
    Swappable fragment extraction step.

    Implementations must be stateless and thread-safe: one instance is
    shared by every pipeline worker.
    """

    @abstractmethod
    def parse(self, document: bytes | str) -> Any:
        """
        Parse the raw document, raising ParseError if it cannot be parsed.

        The returned object can be handed to extract() in place of the raw
        document so it is not parsed a second time.
        """

    @abstractmethod
    def extract(self, document: Any, selectors: list[str]) -> list[str]:
        """Return the ordered, non-empty fragment texts matching selectors."""


class XmlTextExtractor(TextExtractor):
    """
    ElementTree-based extractor.

    Usage:
        extractor = XmlTextExtractor()
        root      = extractor.parse(body)              # fast fail before queuing
        fragments = extractor.extract(root, ["p", "li"])
    """

    def parse(self, document: bytes | str) -> ET.Element:
        if isinstance(document, (bytes, bytearray)):
            is_blank = not bytes(document).strip()
        else:
            is_blank = not document.strip()
        if is_blank:
            raise ParseError("XML content is empty.")

        try:
            return ET.fromstring(document)
        except ET.ParseError as exc:
            raise ParseError(f"Invalid XML: {exc}") from exc

    def extract(self, document: ET.Element | bytes | str, selectors: list[str]) -> list[str]:
        t0 = time.monotonic()
        root = document if isinstance(document, ET.Element) else self.parse(document)
        wanted = set(selectors)

        fragments: list[str] = []
        for element in root.iter():
            if _local_name(element.tag) not in wanted:
                continue
            text = normalize_space("".join(element.itertext()))
            if text:
                fragments.append(text)

        logger.debug(
            "Extraction | selectors=%s fragments=%d elapsed_ms=%.1f",
            " ".join(selectors), len(fragments), (time.monotonic() - t0) * 1000,
        )
        return fragments
