"""Routing, the session middleware and the command that runs the board."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sqlite3
import sys
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Pattern

from werkzeug.http import dump_cookie
from werkzeug.serving import make_server
from werkzeug.wrappers import Request, Response

from gononymous.board.clients import ImageCollector
from gononymous.board.database import Repository, connect_db
from gononymous.board.domain import ImageStore, Session
from gononymous.board.handlers import SESSION_COOKIE, BaseHandler, Handlers, build_handlers
from gononymous.board.services import (
    CommentService,
    PostService,
    Services,
    SessionService,
    UserService,
)
from gononymous.board.utils import make_logger

log = logging.getLogger(__name__)

DEFAULT_PORT = "8080"
DEFAULT_DB_PATH = "gononymous.db"
DEFAULT_TEMPLATES = "web/templates"
ARCHIVE_INTERVAL = timedelta(minutes=1)
SESSION_LIFETIME = timedelta(hours=24)
PLAIN_TYPE = "text/plain; charset=utf-8"

HELP_TEXT = """gononymous - anonymous imageboard

Usage:
\tgononymous [--port <N>]
\tgononymous --help

Options:
\t--help       Show this screen.
\t--port N     Port number."""

_PORT_DIGITS = re.compile(r"[+-]?[0-9]+")

# (required method or None for any, path pattern, handler group, handler method)
_ROUTES: tuple[tuple[Optional[str], Pattern[str], str, str], ...] = (
    (None, re.compile(r"/create-post"), "posts", "create_page"),
    ("POST", re.compile(r"/submit-post"), "posts", "submit_post"),
    (None, re.compile(r"/post/(?P<post_id>[^/]+)"), "posts", "post_page"),
    ("POST", re.compile(r"/submit-comment"), "comments", "submit_comment"),
    (None, re.compile(r"/archive"), "archive", "archive_page"),
    (None, re.compile(r"/archive-post/(?P<post_id>[^/]+)"), "archive", "archive_post"),
    (None, re.compile(r"/profile"), "users", "profile_page"),
    (None, re.compile(r"/profile/update-name"), "users", "change_name"),
)


def _plain_error(message: str, status: int) -> Response:
    response = Response(message + "\n", status=status, content_type=PLAIN_TYPE)
    response.headers["X-Content-Type-Options"] = "nosniff"
    return response


class _Router:
    """Dispatches requests to the board's handlers; anything unmatched goes to the catalog."""

    def __init__(self, handlers: Handlers) -> None:
        self.handlers = handlers

    def _view(self, request: Request) -> Callable[[], Response]:
        for method, pattern, group, name in _ROUTES:
            if method is not None and request.method != method:
                continue
            match = pattern.fullmatch(request.path)
            if match is None:
                continue
            view = getattr(getattr(self.handlers, group), name)
            return lambda: view(request, *match.groupdict().values())
        return lambda: self.handlers.catalog.main_page(request)

    def __call__(self, environ, start_response) -> Iterable[bytes]:
        request = Request(environ)
        try:
            response = self._view(request)()
        except Exception:
            log.exception("handler failed for %s", request.path)
            response = _plain_error("Internal Server Error", 500)
        return response(environ, start_response)


class SessionMiddleware:
    """Gives every visitor without a known session a new anonymous user and its cookie."""

    def __init__(self, app, sessions) -> None:
        self.app = app
        self.sessions = sessions

    def _needs_session(self, request: Request) -> bool:
        user_id = request.cookies.get(SESSION_COOKIE)
        if user_id is None:
            return True
        try:
            session = self.sessions.session_by_id(user_id)
        except Exception:
            session = Session()
        return not session.name

    def __call__(self, environ, start_response) -> Iterable[bytes]:
        request = Request(environ)
        if not self._needs_session(request):
            return self.app(environ, start_response)
        try:
            new_id = self.sessions.create_session()
        except Exception as err:
            log.error("failed to create session: %s", err)
            return _plain_error("failed to create session", 500)(environ, start_response)
        cookie = dump_cookie(
            SESSION_COOKIE,
            new_id,
            expires=datetime.now(timezone.utc) + SESSION_LIFETIME,
            path="/",
            httponly=True,
        )

        def start_with_cookie(status, headers, exc_info=None):
            return start_response(status, [*headers, ("Set-Cookie", cookie)], exc_info)

        return self.app(environ, start_with_cookie)


def build_router(handlers: Handlers, sessions) -> SessionMiddleware:
    """Return the board's WSGI application: routes behind the session middleware."""
    return SessionMiddleware(_Router(handlers), sessions)


def build_services(repository: Repository, image_collector: Optional[ImageStore] = None) -> Services:
    """Wire the services to their stores; images default to the object store."""
    if image_collector is None:
        collector = ImageCollector()
        collector.ensure_bucket()
        image_collector = collector
    return Services(
        posts=PostService(repository.posts, image_collector),
        sessions=SessionService(repository.sessions, repository.characters),
        comments=CommentService(repository.comments, image_collector),
        users=UserService(repository.users),
    )


def parse_port(value: str) -> str:
    """Return ":N" for a port number 1..65535. Raises ValueError otherwise."""
    text = str(value)
    number = int(text) if _PORT_DIGITS.fullmatch(text) else 0
    if number <= 0 or number > 65535:
        raise ValueError(f"invalid port number '{text}'")
    return f":{number}"


def _parse_args(argv) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="gononymous", add_help=False, allow_abbrev=False)
    parser.add_argument("-port", "--port", default=DEFAULT_PORT)
    parser.add_argument("-help", "--help", action="store_true")
    return parser.parse_args(list(sys.argv[1:] if argv is None else argv))


def main(argv=None) -> int:
    """Run the board until interrupted."""
    args = _parse_args(argv)
    if args.help:
        print(HELP_TEXT)
        return 0
    try:
        port = parse_port(args.port)
    except ValueError as err:
        print(f"Error: {err}", file=sys.stderr)
        return 1

    logging.basicConfig(level=logging.INFO)
    try:
        conn = connect_db(os.environ.get("DB_PATH", DEFAULT_DB_PATH))
    except sqlite3.Error as err:
        log.error("Failed to connect to database: %s", err)
        return 1
    try:
        logger = make_logger()
    except OSError as err:
        print(err)
        conn.close()
        return 1

    base = BaseHandler(logger, DEFAULT_TEMPLATES)
    repository = Repository.from_connection(conn)
    services = build_services(repository)
    handlers = build_handlers(services, base)
    stop = threading.Event()
    services.posts.start_archiver(ARCHIVE_INTERVAL, stop)
    app = build_router(handlers, services.sessions)

    try:
        server = make_server("0.0.0.0", int(port[1:]), app, threaded=True)
    except OSError as err:
        print(f"error listening and serving: {err}", file=sys.stderr)
        stop.set()
        conn.close()
        return 1
    print("Server is running on port: http://localhost" + port)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        stop.set()
        server.server_close()
        conn.close()
    return 0