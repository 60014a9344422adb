"""Records kept by the object store and their XML forms."""

from __future__ import annotations

from dataclasses import dataclass, field

_INDENT = "  "

_ESCAPES = {
    '"': "&#34;",
    "'": "&#39;",
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    "\t": "&#x9;",
    "\n": "&#xA;",
    "\r": "&#xD;",
}


def _escape(text: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in text)


def _leaf(tag: str, value: object, depth: int) -> str:
    return f"{_INDENT * depth}<{tag}>{_escape(str(value))}</{tag}>"


def _block(tag: str, lines: list[str], depth: int) -> list[str]:
    pad = _INDENT * depth
    if not lines:
        return [f"{pad}<{tag}></{tag}>"]
    return [f"{pad}<{tag}>", *lines, f"{pad}</{tag}>"]


@dataclass
class Bucket:
    """A bucket as recorded in the bucket index."""

    name: str
    created_time: str = ""
    last_modified_time: str = ""
    status: str = ""

    def _xml_lines(self, depth: int) -> list[str]:
        children = [
            _leaf("Name", self.name, depth + 1),
            _leaf("CreatedTime", self.created_time, depth + 1),
            _leaf("LastModifiedTime", self.last_modified_time, depth + 1),
            _leaf("Status", self.status, depth + 1),
        ]
        return _block("Bucket", children, depth)

    def to_xml(self) -> str:
        """Return the bucket as an indented XML document."""
        return "\n".join(self._xml_lines(0))


@dataclass
class ObjectMeta:
    """An object as recorded in a bucket's object index."""

    object_key: str
    size: str = ""
    content_type: str = ""
    last_modified: str = ""


@dataclass
class BucketList:
    """The listing of every bucket in the store."""

    buckets: list[Bucket] = field(default_factory=list)

    def to_xml(self) -> str:
        """Return the listing as an indented XML document."""
        inner: list[str] = []
        if self.buckets:
            entries = [line for bucket in self.buckets for line in bucket._xml_lines(2)]
            inner = _block("Buckets", entries, 1)
        return "\n".join(_block("ListAllMyBucketsResult", inner, 0))


class StorageError(Exception):
    """A failure reported to a client with an HTTP status code."""

    def __init__(self, code: int, message: str, resource: str = "") -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.resource = resource

    def to_xml(self) -> str:
        """Return the error as an indented XML document."""
        children = [
            _leaf("Code", self.code, 1),
            _leaf("Message", self.message, 1),
            _leaf("Resource", self.resource, 1),
        ]
        return "\n".join(_block("Error", children, 0))