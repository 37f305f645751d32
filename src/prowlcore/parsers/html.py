"""
HTML element wrapper handed to ``parse_html`` handlers.

Wraps a selectolax node with the traversal helpers crawler callbacks need:
attribute and text access, scoped CSS searches, and walking up the tree.
"""

from __future__ import annotations

from typing import Callable, List, Optional, Union

import structlog
from selectolax.parser import HTMLParser, Node

logger = structlog.get_logger(__name__)

TEXT_TAG = "-text"


def parse_html(body: Union[str, bytes]) -> HTMLParser:
    """Parse a response body into a selectolax tree."""
    if isinstance(body, (bytes, bytearray)):
        body = bytes(body).decode("utf-8", errors="replace")
    return HTMLParser(body)


def _first_text(node: Node) -> Optional[str]:
    first = node.child
    if first is not None and first.tag == TEXT_TAG:
        return first.text(deep=False)
    return None


class HTMLElement:
    """A matched HTML tag together with its position among the matches."""

    __slots__ = ("node", "index")

    def __init__(self, node: Node, index: int = 0):
        self.node = node
        self.index = index

    @property
    def name(self) -> str:
        return self.node.tag

    def attr(self, key: str) -> str:
        """Value of attribute ``key``, ``""`` when absent or valueless."""
        value = self.node.attributes.get(key)
        return value if value is not None else ""

    def text(self) -> str:
        """Combined text of the element and its descendants."""
        return self.node.text(deep=True)

    def texts(self) -> List[str]:
        """Every non-blank descendant text node, stripped, in document order."""
        texts = []
        for node in self.node.traverse(include_text=True):
            if node.tag != TEXT_TAG:
                continue
            text = node.text(deep=False).strip()
            if text:
                texts.append(text)
        return texts

    def inner_html(self) -> str:
        return "".join(child.html or "" for child in self.node.iter(include_text=True))

    def outer_html(self) -> str:
        return self.node.html or ""

    def child_text(self, selector: str) -> str:
        """Concatenated, stripped text of every element matching ``selector``."""
        return "".join(n.text(deep=True) for n in self.node.css(selector)).strip()

    def children_text(self, selector: str) -> List[str]:
        return [t.strip() for t in (n.text(deep=True) for n in self.node.css(selector)) if t]

    def child_attr(self, selector: str, attr_name: str) -> str:
        """Stripped attribute of the first element matching ``selector``."""
        first = self.node.css_first(selector)
        if first is None:
            return ""
        value = first.attributes.get(attr_name)
        return value.strip() if value else ""

    def children_attr(self, selector: str, attr_name: str) -> List[str]:
        values = []
        for node in self.node.css(selector):
            value = node.attributes.get(attr_name)
            if value:
                values.append(value.strip())
        return values

    def each(self, selector: str, callback: Callable[[int, "HTMLElement"], bool]) -> None:
        """
        Call ``callback(i, element)`` for every match of ``selector``.

        Iteration stops as soon as the callback returns True.
        """
        for i, node in enumerate(self.node.css(selector)):
            if callback(i, HTMLElement(node, i)):
                break

    def child(self, selector: str, num: int) -> Optional["HTMLElement"]:
        """
        The ``num``-th match of ``selector``, counting from 1.

        ``num=-1`` selects the last match. Returns None when there is no such
        match.
        """
        nodes = self.node.css(selector)
        if not nodes:
            return None
        if num == -1:
            num = len(nodes)
        if num < 1 or num > len(nodes):
            return None
        return HTMLElement(nodes[num - 1], num - 1)

    def first_child(self, selector: str) -> Optional["HTMLElement"]:
        return self.child(selector, 1)

    def last_child(self, selector: str) -> Optional["HTMLElement"]:
        return self.child(selector, -1)

    def children(self, selector: str) -> List["HTMLElement"]:
        return [HTMLElement(node, i) for i, node in enumerate(self.node.css(selector))]

    @property
    def parent(self) -> Optional["HTMLElement"]:
        """Direct parent element, None for ``<html>``."""
        if self.name == "html":
            return None
        parent = self.node.parent
        if parent is None or parent.tag in (None, "-undef", "-document"):
            return None
        return HTMLElement(parent, 0)

    @property
    def parents(self) -> List["HTMLElement"]:
        parents = []
        current = self.parent
        while current is not None:
            parents.append(current)
            current = current.parent
        return parents

    def find_child_by_text(self, selector: str, text: str) -> Optional["HTMLElement"]:
        """First match whose leading text node equals ``text``."""
        for element in self.children(selector):
            if _first_text(element.node) == text:
                return element
        return None

    def find_child_by_stripped_text(self, selector: str, text: str) -> Optional["HTMLElement"]:
        for element in self.children(selector):
            first = _first_text(element.node)
            if first is not None and first.strip() == text:
                return element
        return None

    def find_children_by_text(self, selector: str, text: str) -> List["HTMLElement"]:
        return [e for e in self.children(selector) if _first_text(e.node) == text]

    def find_children_by_stripped_text(self, selector: str, text: str) -> List["HTMLElement"]:
        matches = []
        for element in self.children(selector):
            first = _first_text(element.node)
            if first is not None and first.strip() == text:
                matches.append(element)
        return matches

    def __str__(self) -> str:
        attrs = "".join(
            f' {k}="{v}"' if v else f" {k}" for k, v in self.node.attributes.items()
        )
        first = _first_text(self.node)
        if first is None:
            preview = "..." if self.node.child is not None else ""
        else:
            stripped = first.strip()
            preview = "..." if not stripped else (stripped[:10] + "..." if len(stripped) > 10 else stripped)
        return f"<{self.name}{attrs}>{preview}</{self.name}>"

    def __repr__(self) -> str:
        return f"HTMLElement({self}, index={self.index})"


def select(tree: HTMLParser, selector: str) -> List[HTMLElement]:
    """All matches of ``selector`` in document order, indexed densely from 0."""
    return [HTMLElement(node, i) for i, node in enumerate(tree.css(selector))]
