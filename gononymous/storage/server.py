"""HTTP front end of the object store: buckets and objects over a directory."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from contextlib import suppress
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from werkzeug.exceptions import HTTPException
from werkzeug.routing import Map, Rule
from werkzeug.serving import run_simple
from werkzeug.wrappers import Request, Response
from werkzeug.wsgi import wrap_file

from gononymous.storage.metadata import MetadataStore, help_text, init_storage
from gononymous.storage.models import Bucket, BucketList, StorageError

log = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = "./s3-data"
DEFAULT_PORT = ":9000"
XML_TYPE = "application/xml"


def _now_rfc1123() -> str:
    return datetime.now().astimezone().strftime("%a, %d %b %Y %H:%M:%S %Z")


def _xml_response(body: str, status: int = 200) -> Response:
    return Response(body, status=status, content_type=XML_TYPE)


@dataclass
class Config:
    """Settings read from the environment."""

    port: str = ""
    storage_dir: str = ""
    debug: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        """Build a configuration from PORT, STORAGE_DIR and DEBUG."""
        return cls(
            port=os.environ.get("PORT", ""),
            storage_dir=os.environ.get("STORAGE_DIR", ""),
            debug=os.environ.get("DEBUG", "") == "true",
        )


class StorageApp:
    """WSGI application serving buckets and objects stored under a root directory."""

    def __init__(self, root) -> None:
        self.root = Path(root)
        self.metadata = MetadataStore(self.root)
        self._url_map = Map(
            [
                Rule("/health", methods=["GET"], endpoint="health"),
                Rule("/", methods=["GET"], endpoint="list_buckets"),
                Rule("/<bucket>", methods=["PUT"], endpoint="put_bucket"),
                Rule("/<bucket>", methods=["DELETE"], endpoint="delete_bucket"),
                Rule("/<bucket>/<key>", methods=["PUT"], endpoint="put_object"),
                Rule("/<bucket>/<key>", methods=["GET"], endpoint="get_object"),
                Rule("/<bucket>/<key>", methods=["DELETE"], endpoint="delete_object"),
                Rule("/<path:rest>", methods=["GET"], endpoint="list_buckets"),
            ]
        )
        self._views: dict[str, Callable[..., Response]] = {
            "health": self._health,
            "list_buckets": self._list_buckets,
            "put_bucket": self._put_bucket,
            "delete_bucket": self._delete_bucket,
            "put_object": self._put_object,
            "get_object": self._get_object,
            "delete_object": self._delete_object,
        }

    def __call__(self, environ, start_response) -> Iterable[bytes]:
        request = Request(environ)
        response = self._dispatch(request)
        return response(environ, start_response)

    def _dispatch(self, request: Request):
        adapter = self._url_map.bind_to_environ(request.environ)
        try:
            endpoint, values = adapter.match()
            return self._views[endpoint](request, **values)
        except StorageError as err:
            return _xml_response(err.to_xml(), err.code)
        except HTTPException as exc:
            return exc.get_response(request.environ)

    def _health(self, request: Request) -> Response:
        return Response(status=200)

    def _list_buckets(self, request: Request, **_ignored) -> Response:
        if not self.metadata.index_path.exists():
            raise StorageError(
                404, "The storage is empty, put something before getting", request.path
            )
        listing = BucketList(self.metadata.buckets())
        return _xml_response(listing.to_xml())

    def _put_bucket(self, request: Request, bucket: str) -> Response:
        try:
            (self.root / bucket).mkdir(parents=True, exist_ok=True)
        except OSError as err:
            log.error("could not create bucket %s: %s", bucket, err)
        stamp = _now_rfc1123()
        record = Bucket(name=bucket, created_time=stamp, last_modified_time=stamp, status="Active")
        return _xml_response(record.to_xml())

    def _delete_bucket(self, request: Request, bucket: str) -> Response:
        try:
            empty = self.metadata.is_empty(bucket)
        except OSError:
            empty = False
        if not empty:
            raise StorageError(409, "Conflict for a non-empty bucket: " + bucket, request.path)
        with suppress(OSError):
            (self.root / bucket).rmdir()
        self.metadata.remove_bucket(bucket)
        return Response(status=204)

    def _put_object(self, request: Request, bucket: str, key: str) -> Response:
        try:
            with open(self.root / bucket / key, "wb") as out:
                while chunk := request.stream.read(64 * 1024):
                    out.write(chunk)
        except OSError as err:
            log.error("could not store object %s/%s: %s", bucket, key, err)
        return Response(status=200)

    def _get_object(self, request: Request, bucket: str, key: str) -> Response:
        meta = self.metadata.object_metadata(bucket, key)
        content_type = meta.content_type if meta and meta.content_type else None
        try:
            handle = open(self.root / bucket / key, "rb")
        except OSError:
            return Response(b"", status=200, content_type=content_type)
        response = Response(
            wrap_file(request.environ, handle),
            status=200,
            content_type=content_type,
            direct_passthrough=True,
        )
        if meta and meta.size:
            response.headers["Content-Length"] = meta.size
        else:
            response.headers["Content-Length"] = str(os.fstat(handle.fileno()).st_size)
        return response

    def _delete_object(self, request: Request, bucket: str, key: str) -> Response:
        if not self.metadata.bucket_exists(bucket):
            raise StorageError(404, "The bucket doesn't exists: " + bucket, request.path)
        if not self.metadata.object_exists(key, bucket):
            raise StorageError(404, "The file doesn't exists: " + key, request.path)
        self.metadata.update_bucket(Bucket(name=bucket, last_modified_time=_now_rfc1123()))
        with suppress(OSError):
            (self.root / bucket / key).unlink()
        self.metadata.remove_object(bucket, key)
        return Response(status=204)


def create_app(storage_path) -> StorageApp:
    """Prepare the storage directory and its bucket index, and return the app."""
    root = init_storage(storage_path)
    app = StorageApp(root)
    app.metadata.ensure_index()
    return app


def _flag_value(argv: Optional[Sequence[str]], name: str, default: str) -> str:
    parser = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    parser.add_argument(f"-{name}", f"--{name}", dest="value", default=default)
    args, _unknown = parser.parse_known_args(list(sys.argv[1:] if argv is None else argv))
    return args.value


def ensure_colon_prefix(port: str) -> str:
    """Prefix a port with a colon unless it already has one or is empty."""
    if port and not port.startswith(":"):
        return ":" + port
    return port


def resolve_storage_path(argv=None) -> str:
    """Return STORAGE_PATH if set, else the -dir flag, else the default."""
    env_path = os.environ.get("STORAGE_PATH", "")
    if env_path:
        return env_path
    return _flag_value(argv, "dir", DEFAULT_STORAGE_PATH)


def resolve_port(argv=None) -> str:
    """Return PORT if set, else the -port flag, else the default, colon-prefixed."""
    env_port = os.environ.get("PORT", "")
    if env_port:
        return ensure_colon_prefix(env_port)
    return ensure_colon_prefix(_flag_value(argv, "port", DEFAULT_PORT))


def main(argv=None) -> int:
    """Run the storage server until it is stopped."""
    args = list(sys.argv[1:] if argv is None else argv)
    if any(arg in ("-h", "-help", "--help") for arg in args):
        print(help_text(), end="")
        return 0
    logging.basicConfig(level=logging.INFO)
    storage_path = resolve_storage_path(args)
    port = resolve_port(args)
    try:
        app = create_app(storage_path)
    except OSError as err:
        log.error("Storage initialization failed: %s", err)
        return 1
    host, _, port_number = port.rpartition(":")
    try:
        number = int(port_number)
    except ValueError:
        log.error("Server failed: invalid port %s", port)
        return 1
    log.info("Server starting on port %s", port)
    log.info("Storage directory: %s", app.root)
    try:
        run_simple(host or "0.0.0.0", number, app)
    except OSError as err:
        log.error("Server failed: %s", err)
        return 1
    return 0