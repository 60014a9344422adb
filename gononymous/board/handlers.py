"""Page and form handlers of the board."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import jinja2
from werkzeug.datastructures import MultiDict
from werkzeug.wrappers import Request, Response

from gononymous.board.domain import Comment, PostDto, Session
from gononymous.board.utils import APIError

HTML_TYPE = "text/html; charset=utf-8"
PLAIN_TYPE = "text/plain; charset=utf-8"
JSON_TYPE = "application/json"
SESSION_COOKIE = "session_id"
MAX_IMAGE_SIZE = 10 << 20
MAX_NAME_LENGTH = 50
ERROR_TEMPLATE = "error.html"

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class Page:
    """A template file's name and raw contents."""

    title: str
    body: bytes = b""


def load_page(templates_dir: Union[str, "os.PathLike[str]"], title: str) -> Page:
    """Read a template file; an unreadable file gives an empty body."""
    try:
        body = (Path(templates_dir) / title).read_bytes()
    except OSError as err:
        logging.getLogger(__name__).warning("could not read page %s: %s", title, err)
        body = b""
    return Page(title=title, body=body)


@dataclass
class _PostPage:
    user: Session = field(default_factory=Session)
    post: PostDto = field(default_factory=PostDto)
    comments: list[Comment] = field(default_factory=list)


@dataclass
class _ProfilePage:
    user_data: Session = field(default_factory=Session)
    posts: list[PostDto] = field(default_factory=list)


def _compact_json(payload: Mapping[str, Any]) -> str:
    text = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return "".join(_JSON_ESCAPES.get(char, char) for char in text) + "\n"


def _multipart_values(request: Request) -> MultiDict:
    """Parse a multipart form and return its values, query values included."""
    if request.mimetype != "multipart/form-data":
        raise ValueError("request Content-Type isn't multipart/form-data")
    request.form  # parse the body now so that failures surface here
    return request.values


def _uploaded(request: Request, name: str) -> Optional[bytes]:
    upload = request.files.get(name)
    if upload is None or not upload.filename:
        return None
    return upload.read()


class BaseHandler:
    """Shared logging, template rendering and error replies."""

    def __init__(self, logger: logging.Logger, templates) -> None:
        self.logger = logger
        if isinstance(templates, jinja2.Environment):
            self.templates = templates
        else:
            self.templates = jinja2.Environment(
                loader=jinja2.FileSystemLoader(os.fspath(templates)), autoescape=True
            )

    def render(self, name: str, context: Optional[Mapping[str, Any]] = None) -> str:
        """Render a template. Raises jinja2.TemplateError when it is missing or fails."""
        return self.templates.get_template(name).render(dict(context or {}))

    def handle_error(
        self, request: Request, code: int, message: str, error: Optional[BaseException] = None
    ) -> Response:
        """Log a failure and return it as a JSON error reply."""
        fields: dict[str, Any] = {}
        if error is not None:
            fields["error"] = str(error)
        fields["code"] = code
        fields["url"] = request.path
        self.logger.error(message, extra={"fields": fields})
        return APIError(code=code, message=message, resource=request.path).send()

    def render_error(self, code: int, message: str) -> Response:
        """Return the error page for a status code and message."""
        try:
            template = self.templates.get_template(ERROR_TEMPLATE)
        except jinja2.TemplateError:
            return Response("Internal Server Error\n", status=code, content_type=PLAIN_TYPE)
        try:
            body = template.render({"Code": code, "Message": message})
        except jinja2.TemplateError:
            body = ""
        return Response(body, status=code, content_type=HTML_TYPE)

    def _fail(
        self,
        request: Request,
        code: int,
        message: str,
        error: Optional[BaseException] = None,
        page_message: Optional[str] = None,
    ) -> Response:
        """The JSON error reply followed by the error page, as one response."""
        response = self.handle_error(request, code, message, error)
        page = self.render_error(code, message if page_message is None else page_message)
        response.set_data(response.get_data() + page.get_data())
        return response

    def _page(
        self,
        request: Request,
        name: str,
        context: Mapping[str, Any],
        message: str,
        page_message: Optional[str] = None,
    ) -> Response:
        try:
            body = self.render(name, context)
        except jinja2.TemplateError as err:
            return self._fail(request, 500, message, err, page_message)
        return Response(body, status=200, content_type=HTML_TYPE)


class ArchiveHandler:
    """Pages listing every post, archived ones included."""

    def __init__(self, posts, base: BaseHandler, comments, sessions) -> None:
        self.posts = posts
        self.base = base
        self.comments = comments
        self.sessions = sessions

    def archive_page(self, request: Request) -> Response:
        """Render the list of all posts."""
        try:
            posts = self.posts.all()
        except Exception as err:
            return self.base._fail(request, 500, "Failed to get posts", err)
        response = self.base._page(
            request, "archive.html", {"Posts": posts}, "Failed to Execute", "Failes to Execute"
        )
        if response.status_code == 200:
            self.base.logger.info(
                "Archive page rendered successfully", extra={"fields": {"url": request.path}}
            )
        return response

    def archive_post(self, request: Request, post_id: str) -> Response:
        """Render one post with its author and comments."""
        page = _PostPage()
        try:
            page.post = self.posts.post_by_id(post_id)
        except Exception as err:
            return self.base._fail(request, 500, "Failed to get post", err)
        try:
            page.user = self.sessions.session_by_id(page.post.author_id)
        except Exception as err:
            return self.base._fail(request, 500, "Failed to get user", err, "Failde to get user")
        try:
            page.comments = self.comments.comments_for_post(post_id)
        except Exception as err:
            return self.base._fail(request, 500, "Failed to get comment", err)
        return self.base._page(
            request, "archive-post.html", {"PostPage": page}, "Failed to get comment"
        )


class CatalogHandler:
    """The front page listing active posts."""

    def __init__(self, posts, base: BaseHandler) -> None:
        self.posts = posts
        self.base = base

    def main_page(self, request: Request) -> Response:
        """Render the active posts."""
        try:
            posts = self.posts.active()
        except Exception as err:
            return self.base._fail(request, 500, "failed to get", err, "fail")
        return self.base._page(request, "catalog.html", {"Posts": posts}, "failed to get", "fail")


class CommentHandler:
    """Accepts comments submitted from a post page."""

    def __init__(self, comments, base: BaseHandler) -> None:
        self.comments = comments
        self.base = base

    def submit_comment(self, request: Request) -> Response:
        """Store a comment sent as a multipart form by the visitor's session."""
        try:
            values = _multipart_values(request)
            post_id = values["postID"]
            content = values["comment"]
            img = _uploaded(request, "file") or b""
        except Exception as err:
            return self.base._fail(request, 500, "fail", err)
        comment = Comment(post_id=post_id, content=content)
        parent_id = values.get("parentCommentID", "")
        if parent_id:
            comment.parent_id = parent_id
        user_id = request.cookies.get(SESSION_COOKIE)
        if user_id is None:
            return self.base._fail(request, 500, "fail", LookupError("missing session cookie"))
        comment.user_id = user_id
        try:
            self.comments.add_comment(comment, img)
        except Exception as err:
            return self.base._fail(request, 500, "fail", err)
        return Response(status=200)


class PostHandler:
    """Creating posts and showing a single post."""

    def __init__(self, posts, comments, sessions, base: BaseHandler) -> None:
        self.posts = posts
        self.comments = comments
        self.sessions = sessions
        self.base = base

    def create_page(self, request: Request) -> Response:
        """Render the form for a new post."""
        return Response(self.base.render("create-post.html"), content_type=HTML_TYPE)

    def submit_post(self, request: Request) -> Response:
        """Store a post sent as a multipart form by the visitor's session."""
        try:
            values = _multipart_values(request)
        except Exception as err:
            return self.base._fail(request, 500, "asd", err)
        post = PostDto(title=values.get("name", "").strip())
        if not post.title:
            return Response("Title cannot be empty\n", status=400, content_type=PLAIN_TYPE)
        post.subject = values.get("subject", "").strip()
        post.content = values.get("comment", "").strip()
        try:
            img = _uploaded(request, "file")
        except Exception as err:
            return self.base._fail(request, 500, "Fail", err)
        if img is not None and len(img) > MAX_IMAGE_SIZE:
            return self.base._fail(request, 500, "to much size of file")
        user_id = request.cookies.get(SESSION_COOKIE)
        if user_id is None:
            return self.base._fail(request, 500, "Fail", LookupError("missing session cookie"))
        post.author_id = user_id
        try:
            self.posts.add_post(post, img or b"")
        except Exception as err:
            return self.base._fail(request, 500, "Fail", err)
        return Response(status=200)

    def post_page(self, request: Request, post_id: str) -> Response:
        """Render one post with its author and comments."""
        page = _PostPage()
        try:
            page.post = self.posts.post_by_id(post_id)
            page.user = self.sessions.session_by_id(page.post.author_id)
            page.comments = self.comments.comments_for_post(post_id)
        except Exception as err:
            return self.base._fail(request, 500, "Fail", err)
        return self.base._page(request, "post.html", {"PostPage": page}, "Fail")


class UserHandler:
    """The visitor's profile page and name changes."""

    def __init__(self, users, base: BaseHandler, sessions, posts) -> None:
        self.users = users
        self.base = base
        self.sessions = sessions
        self.posts = posts

    def profile_page(self, request: Request) -> Response:
        """Render the visitor's name, avatar and latest posts."""
        user_id = request.cookies.get(SESSION_COOKIE)
        if user_id is None:
            return self.base._fail(request, 500, "Fail", LookupError("missing session cookie"))
        page = _ProfilePage()
        try:
            page.user_data = self.sessions.session_by_id(user_id)
            page.posts = self.posts.posts_by_user(user_id)
        except Exception as err:
            return self.base._fail(request, 401, "Fail", err)
        return self.base._page(request, "profile.html", {"PostPage": page}, "Fail")

    def change_name(self, request: Request) -> Response:
        """Rename the visitor from a JSON body {"name": ...}."""
        user_id = request.cookies.get(SESSION_COOKIE)
        if user_id is None:
            return self.base._fail(request, 401, "Fail", LookupError("missing session cookie"))
        try:
            name = self._requested_name(request.get_data(as_text=True))
        except ValueError as err:
            return self.base._fail(request, 400, "Fail", err)
        new_name = name.strip()
        if not new_name:
            return self.base._fail(request, 400, "Fail")
        if len(new_name.encode("utf-8")) > MAX_NAME_LENGTH:
            return self.base._fail(request, 400, "Fail <50")
        try:
            self.users.change_name(user_id, new_name)
        except Exception as err:
            self.base.logger.warning(
                "name change failed", extra={"fields": {"error": str(err), "user": user_id}}
            )
        body = _compact_json({"status": "success", "newName": new_name})
        return Response(body, status=200, content_type=JSON_TYPE)

    @staticmethod
    def _requested_name(text: str) -> str:
        """Read the first JSON value of a body and return its name field."""
        stripped = text.lstrip()
        if not stripped:
            raise ValueError("empty request body")
        payload, _end = json.JSONDecoder().raw_decode(stripped)
        if payload is None:
            return ""
        if not isinstance(payload, dict):
            raise ValueError("request body must be a JSON object")
        name = payload.get("name")
        if name is None:
            return ""
        if not isinstance(name, str):
            raise ValueError("name must be a string")
        return name


@dataclass
class Handlers:
    """Every handler of the board."""

    posts: PostHandler
    catalog: CatalogHandler
    comments: CommentHandler
    users: UserHandler
    archive: ArchiveHandler


def build_handlers(services, base: BaseHandler) -> Handlers:
    """Wire the handlers to the board's services."""
    return Handlers(
        posts=PostHandler(services.posts, services.comments, services.sessions, base),
        catalog=CatalogHandler(services.posts, base),
        comments=CommentHandler(services.comments, base),
        users=UserHandler(services.users, base, services.sessions, services.posts),
        archive=ArchiveHandler(services.posts, base, services.comments, services.sessions),
    )