"""CSV-backed metadata for buckets and objects, and name validation."""

from __future__ import annotations

import csv
import os
import re
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional, Union

from gononymous.storage.models import Bucket, ObjectMeta

BUCKET_INDEX = "buckets.csv"
OBJECT_INDEX = "objects.csv"
BUCKET_HEADERS = ["Name", "CreatedTime", "LastModifiedTime", "Status"]
OBJECT_HEADERS = ["ObjectKey", "Size", "ContentType", "LastModified"]
ACTIVE = "Active"

_IPV4 = re.compile(r"^(((25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)(\.|$)){4})")
_DOUBLE_DOT = re.compile(r"[.]{2}")
_BUCKET_CHARS = re.compile(r"^[a-z0-9]+[a-z0-9.-]+[a-z0-9.]+$")
_OBJECT_CHARS = re.compile(r"^[0-9A-Za-z!\-.*_()]+$")

_HELP = (
    "Simple Storage Service.\n\n"
    "**Usage:**\n"
    "\ttriple-s [-port <N>] [-dir <S>]\n"
    "\ttriple-s --help\n\n"
    "**Options:**\n"
    "- --help     Show this screen.\n"
    "- --port N   Port number\n"
    "- --dir S    Path to the directory\n"
)

PathLike = Union[str, "os.PathLike[str]"]


def init_storage(base_path: PathLike) -> Path:
    """Create the storage directory if needed and return its absolute path."""
    path = Path(base_path).absolute()
    path.mkdir(mode=0o750, parents=True, exist_ok=True)
    return path


def create_csv(path: PathLike, headers: Iterable[str]) -> None:
    """Create (or truncate) a CSV file holding only a header row."""
    with open(path, "w", newline="", encoding="utf-8") as handle:
        csv.writer(handle, lineterminator="\n").writerow(list(headers))


def validate_bucket_name(name: str) -> bool:
    """Tell whether a bucket name is allowed."""
    if not 3 <= len(name) <= 63:
        return False
    if _IPV4.match(name):
        return False
    if _DOUBLE_DOT.search(name):
        return False
    return _BUCKET_CHARS.match(name) is not None


def validate_object_name(name: str) -> bool:
    """Tell whether an object key is made of allowed characters."""
    return _OBJECT_CHARS.match(name) is not None


def help_text() -> str:
    """Return the usage text of the storage server."""
    return _HELP


def _append_row(path: Path, row: list[str]) -> None:
    with open(path, "a", newline="", encoding="utf-8") as handle:
        csv.writer(handle, lineterminator="\n").writerow(row)


def _read_records(path: Path, width: int) -> list[list[str]]:
    """Read the data rows of a CSV index, skipping its header.

    A missing file reads as empty; reading stops at the first malformed row.
    """
    try:
        handle = open(path, newline="", encoding="utf-8")
    except FileNotFoundError:
        return []
    records: list[list[str]] = []
    with handle:
        for row in csv.reader(handle):
            if not row:
                continue
            if len(row) != width:
                break
            records.append(row)
    return records[1:]


def _rewrite(path: Path, headers: list[str], rows: list[list[str]]) -> None:
    """Replace an index with the given rows; with none left the file is removed."""
    path.unlink(missing_ok=True)
    if not rows:
        return
    with open(path, "w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle, lineterminator="\n")
        writer.writerow(headers)
        writer.writerows(rows)


def _bucket_row(bucket: Bucket) -> list[str]:
    return [bucket.name, bucket.created_time, bucket.last_modified_time, bucket.status]


def _object_row(obj: ObjectMeta) -> list[str]:
    return [obj.object_key, obj.size, obj.content_type, obj.last_modified]


class MetadataStore:
    """Bucket and object metadata kept as CSV files under a storage root."""

    def __init__(self, root: PathLike) -> None:
        self.root = Path(root)

    @property
    def index_path(self) -> Path:
        return self.root / BUCKET_INDEX

    def _objects_path(self, bucket: str) -> Path:
        return self.root / bucket / OBJECT_INDEX

    def ensure_index(self) -> None:
        """Create the bucket index with its header if it is missing."""
        if not self.index_path.exists():
            create_csv(self.index_path, BUCKET_HEADERS)

    def save_bucket(self, bucket: Bucket) -> None:
        """Append a bucket to the index, creating the index if needed."""
        self.ensure_index()
        _append_row(self.index_path, _bucket_row(bucket))

    def buckets(self) -> list[Bucket]:
        """Return every bucket in the index, in file order."""
        return [Bucket(*row) for row in _read_records(self.index_path, len(BUCKET_HEADERS))]

    def bucket_exists(self, name: str) -> bool:
        """Tell whether an active bucket of this name is recorded."""
        return any(b.name == name and b.status == ACTIVE for b in self.buckets())

    def is_empty(self, name: str) -> bool:
        """Tell whether a bucket directory holds no entries.

        Raises OSError when the directory cannot be read.
        """
        with os.scandir(self.root / name) as entries:
            return next(entries, None) is None

    def remove_bucket(self, name: str) -> None:
        """Drop the first bucket of this name from the index."""
        remaining = self.buckets()
        for position, bucket in enumerate(remaining):
            if bucket.name == name:
                del remaining[position]
                break
        _rewrite(self.index_path, BUCKET_HEADERS, [_bucket_row(b) for b in remaining])

    def update_bucket(self, bucket: Bucket) -> None:
        """Record a new modification time, keeping creation time and status."""
        updated = [
            replace(current, last_modified_time=bucket.last_modified_time)
            if current.name == bucket.name
            else current
            for current in self.buckets()
        ]
        _rewrite(self.index_path, BUCKET_HEADERS, [_bucket_row(b) for b in updated])

    def save_object(self, obj: ObjectMeta, bucket: str) -> None:
        """Record an object in its bucket, replacing an entry with the same key."""
        path = self._objects_path(bucket)
        if not path.exists():
            create_csv(path, OBJECT_HEADERS)
        if self.object_exists(obj.object_key, bucket):
            rows = [
                _object_row(obj if current.object_key == obj.object_key else current)
                for current in self.objects(bucket)
            ]
            _rewrite(path, OBJECT_HEADERS, rows)
            return
        _append_row(path, _object_row(obj))

    def objects(self, bucket: str) -> list[ObjectMeta]:
        """Return every object recorded in a bucket, in file order."""
        path = self._objects_path(bucket)
        return [ObjectMeta(*row) for row in _read_records(path, len(OBJECT_HEADERS))]

    def object_exists(self, key: str, bucket: str) -> bool:
        """Tell whether an object key is recorded in a bucket."""
        return any(obj.object_key == key for obj in self.objects(bucket))

    def object_metadata(self, bucket: str, key: str) -> Optional[ObjectMeta]:
        """Return the record of an object, or None when it is not recorded."""
        return next((obj for obj in self.objects(bucket) if obj.object_key == key), None)

    def remove_object(self, bucket: str, key: str) -> None:
        """Drop the first record of this key from a bucket's object index."""
        remaining = self.objects(bucket)
        for position, obj in enumerate(remaining):
            if obj.object_key == key:
                del remaining[position]
                break
        _rewrite(self._objects_path(bucket), OBJECT_HEADERS, [_object_row(o) for o in remaining])