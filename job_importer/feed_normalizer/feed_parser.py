"""
Feed XML parsing and schema sniffing.

The XML document is converted to plain nested mappings before any field is
read, so the normalizers never deal with ElementTree objects:

- tag names are lower-cased, namespace prefixes are kept as written
  (`dc:creator`, `content:encoded`)
- attributes are merged into the element mapping
- element text goes under the `_` key when the element also has attributes
  or children; a text-only element becomes a plain string
- repeated children become lists, single children stay scalars
- the root element is unwrapped (its tag is kept on ParsedFeed.root)
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, Union

from .models import FeedEntry, GenericEntry, RssEntry

logger = logging.getLogger(__name__)

TEXT_KEY = "_"
XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"


class ParseError(Exception):
    """Raised when a feed body is not well-formed XML."""
    pass


@dataclass
class ParsedFeed:
    """Root tag plus the converted content of the root element."""

    root: str
    body: Any


def _qualified_name(name: str, prefixes: dict[str, str]) -> str:
    if not name.startswith("{"):
        return name
    uri, local = name[1:].split("}", 1)
    prefix = prefixes.get(uri)
    return f"{prefix}:{local}" if prefix else local


def _add_value(node: dict[str, Any], key: str, value: Any) -> None:
    if key not in node:
        node[key] = value
    elif isinstance(node[key], list):
        node[key].append(value)
    else:
        node[key] = [node[key], value]


def _element_to_value(element: ET.Element, prefixes: dict[str, str]) -> Any:
    children = list(element)
    text = (element.text or "") + "".join(child.tail or "" for child in children)

    if not children and not element.attrib:
        return text

    node: dict[str, Any] = {}
    for name, value in element.attrib.items():
        _add_value(node, _qualified_name(name, prefixes), value)
    for child in children:
        tag = _qualified_name(child.tag, prefixes).lower()
        _add_value(node, tag, _element_to_value(child, prefixes))
    if text.strip():
        node[TEXT_KEY] = text
    return node


def parse_feed(text: Union[str, bytes]) -> ParsedFeed:
    """
    Parse a feed body into nested mappings.

    Args:
        text: Raw XML document; bytes are decoded per the XML declaration
              (UTF-8 when there is none)

    Returns:
        ParsedFeed with the lower-cased root tag and the converted root content

    Raises:
        ParseError: If the document is empty or not well-formed
    """
    if not text or not text.strip():
        raise ParseError("Feed body is empty")

    parser = ET.XMLPullParser(events=("start", "start-ns"))
    prefixes: dict[str, str] = {XML_NAMESPACE: "xml"}
    root = None

    try:
        parser.feed(text)
        parser.close()
        for event, payload in parser.read_events():
            if event == "start-ns":
                prefix, uri = payload
                prefixes.setdefault(uri, prefix)
            elif event == "start" and root is None:
                root = payload
    except ET.ParseError as e:
        logger.error("Feed body is not well-formed XML", extra={"error": str(e)})
        raise ParseError(f"Malformed feed XML: {e}") from e

    if root is None:
        raise ParseError("Feed body has no root element")

    return ParsedFeed(
        root=_qualified_name(root.tag, prefixes).lower(),
        body=_element_to_value(root, prefixes),
    )


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else [value]


def sniff_entries(parsed: ParsedFeed) -> list[FeedEntry]:
    """
    Detect the feed schema and wrap its entries.

    Checked in order, first match wins:
    1. RSS `channel.item`
    2. generic `jobs.job` (also accepted when `<jobs>` is the root element)
    3. bare top-level `item` list

    Returns:
        List of RssEntry / GenericEntry; empty when no structure matches
    """
    body = parsed.body
    if not isinstance(body, dict):
        logger.warning("Feed has no recognizable entries", extra={"root": parsed.root})
        return []

    channel = body.get("channel")
    if isinstance(channel, dict) and channel.get("item"):
        return [RssEntry.from_mapping(item) for item in _as_list(channel["item"])]

    jobs = body.get("jobs")
    if isinstance(jobs, dict) and jobs.get("job"):
        return [GenericEntry.from_mapping(item) for item in _as_list(jobs["job"])]
    if parsed.root == "jobs" and body.get("job"):
        return [GenericEntry.from_mapping(item) for item in _as_list(body["job"])]

    if body.get("item"):
        return [RssEntry.from_mapping(item) for item in _as_list(body["item"])]

    logger.warning(
        "Feed has no recognizable entries",
        extra={"root": parsed.root, "keys": sorted(body.keys())[:20]},
    )
    return []
