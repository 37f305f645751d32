"""
multipart/form-data bodies (RFC 7578).

The default boundary mimics what browsers send: a run of dashes followed by a
29-digit random number.
"""

from __future__ import annotations

import mimetypes
import random
from io import BytesIO
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

DEFAULT_DASH = "-" * 27


def random_boundary_tail() -> str:
    """29 random digits, the first one non-zero."""
    return str(random.randint(1, 9)) + "".join(random.choices("0123456789", k=28))


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', "%22").replace("\r", "%0D").replace("\n", "%0A")


class MultipartForm:
    """Accumulates text and file parts and renders them into one body."""

    def __init__(self, dash: str = DEFAULT_DASH, boundary_func: Optional[Callable[[], str]] = None):
        self.boundary = dash + (boundary_func or random_boundary_tail)()
        self._parts: List[Tuple[str, Optional[str], Optional[str], bytes]] = []
        self._body_map: Dict[str, str] = {}

    @property
    def content_type(self) -> str:
        return f"multipart/form-data; boundary={self.boundary}"

    @property
    def body_map(self) -> Dict[str, str]:
        """Field name -> value for text parts, field name -> filename for file parts."""
        return dict(self._body_map)

    def append_string(self, field_name: str, value: str) -> None:
        self._parts.append((field_name, None, None, value.encode("utf-8")))
        self._body_map[field_name] = value

    def add_file(
        self,
        field_name: str,
        filename: str,
        source: Union[str, Path, bytes],
        content_type: Optional[str] = None,
    ) -> None:
        """Add a file part read from a path, or taken from ``bytes`` as is."""
        if isinstance(source, (bytes, bytearray)):
            data = bytes(source)
        else:
            data = Path(source).read_bytes()
        if content_type is None:
            content_type = mimetypes.guess_type(filename)[0] or "application/octet-stream"
        self._parts.append((field_name, filename, content_type, data))
        self._body_map[field_name] = filename

    def append_file(self, field_name: str, path: Union[str, Path]) -> None:
        """Add the file at ``path`` under its base name."""
        self.add_file(field_name, Path(path).name, path)

    def to_bytes(self) -> bytes:
        buf = BytesIO()
        for name, filename, content_type, data in self._parts:
            buf.write(f"--{self.boundary}\r\n".encode("ascii"))
            disposition = f'Content-Disposition: form-data; name="{_quote(name)}"'
            if filename is not None:
                disposition += f'; filename="{_quote(filename)}"'
            buf.write(disposition.encode("utf-8") + b"\r\n")
            if content_type is not None:
                buf.write(f"Content-Type: {content_type}\r\n".encode("ascii"))
            buf.write(b"\r\n")
            buf.write(data)
            buf.write(b"\r\n")
        buf.write(f"--{self.boundary}--\r\n".encode("ascii"))
        return buf.getvalue()

    def __len__(self) -> int:
        return len(self._parts)
