"""HTML and JSON helpers handed to crawler callbacks."""

from .html import HTMLElement, parse_html, select
from .json_result import JSONResult, get_path, lookup_path

__all__ = ["HTMLElement", "JSONResult", "get_path", "lookup_path", "parse_html", "select"]
