"""The application icon."""

from __future__ import annotations

import base64
from dataclasses import dataclass

_ICON_PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAABAAAAAQCAYAAAAf8/9hAAAAAXNSR0IArs4c6QAAAARnQU1BAACx"
    "jwv8YQUAAAAJcEhZcwAADsMAAA7DAcdvqGQAAAAsSURBVDhPYxCRVP5PCWZAFyAVU9cAl77/ROGR"
    "YAAuQD8DCOHhbAA5eOANAAB1WfOEdhKUUgAAAABJRU5ErkJggg=="
)


@dataclass(frozen=True)
class IconResource:
    """A named, in-memory image resource."""

    name: str
    content: bytes


def icon_resource() -> IconResource:
    """Return the 16x16 PNG application icon."""
    return IconResource("portshare.png", base64.b64decode(_ICON_PNG_BASE64, validate=True))