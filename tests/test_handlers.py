import io
import json
import logging

import pytest
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request

from gononymous.board.domain import Comment, PostDto, Session
from gononymous.board.handlers import (
    MAX_IMAGE_SIZE,
    ArchiveHandler,
    BaseHandler,
    CatalogHandler,
    CommentHandler,
    Handlers,
    Page,
    PostHandler,
    UserHandler,
    build_handlers,
    load_page,
)
from gononymous.board.services import Services
from gononymous.board.utils import APIError

TEMPLATES = {
    "catalog.html": "{% for p in Posts %}[{{ p.title }}]{% endfor %}",
    "archive.html": "{% for p in Posts %}({{ p.id }}){% endfor %}",
    "archive-post.html": (
        "{{ PostPage.post.title }}|{{ PostPage.user.name }}|"
        "{% for c in PostPage.comments %}{{ c.content }};{% endfor %}"
    ),
    "post.html": (
        "{{ PostPage.post.title }}|{{ PostPage.user.name }}|"
        "{% for c in PostPage.comments %}{{ c.content }};{% endfor %}"
    ),
    "create-post.html": "create",
    "profile.html": "{{ PostPage.user_data.name }}:{% for p in PostPage.posts %}{{ p.title }};{% endfor %}",
    "error.html": "E{{ Code }}:{{ Message }}",
    "escape.html": "{{ value }}",
}


class FakePosts:
    def __init__(self, active=(), everything=(), error=None):
        self.active_posts = list(active)
        self.all_posts = list(everything)
        self.error = error
        self.added = []

    def _check(self):
        if self.error is not None:
            raise self.error

    def active(self):
        self._check()
        return self.active_posts

    def all(self):
        self._check()
        return self.all_posts

    def post_by_id(self, post_id):
        self._check()
        for post in self.all_posts:
            if post.id == post_id:
                return post
        raise LookupError(post_id)

    def posts_by_user(self, user_id):
        self._check()
        return [p for p in self.all_posts if p.author_id == user_id]

    def add_post(self, post, data):
        self._check()
        self.added.append((post, data))


class FakeSessions:
    def __init__(self, users=None):
        self.users = dict(users or {})

    def session_by_id(self, user_id):
        if user_id not in self.users:
            raise LookupError(user_id)
        return self.users[user_id]


class FakeComments:
    def __init__(self, comments=None, error=None):
        self.comments = dict(comments or {})
        self.error = error
        self.added = []

    def comments_for_post(self, post_id):
        if self.error is not None:
            raise self.error
        return self.comments.get(post_id, [])

    def add_comment(self, comment, img):
        if self.error is not None:
            raise self.error
        self.added.append((comment, img))


class FakeUsers:
    def __init__(self, error=None):
        self.error = error
        self.renamed = []

    def change_name(self, user_id, new_name):
        self.renamed.append((user_id, new_name))
        if self.error is not None:
            raise self.error


@pytest.fixture
def templates_dir(tmp_path):
    for name, text in TEMPLATES.items():
        (tmp_path / name).write_text(text, encoding="utf-8")
    return tmp_path


@pytest.fixture
def base(templates_dir):
    return BaseHandler(logging.getLogger("gononymous.tests.handlers"), templates_dir)


def make_request(method="GET", path="/", session_id=None, **kwargs):
    headers = {"Cookie": f"session_id={session_id}"} if session_id is not None else {}
    builder = EnvironBuilder(method=method, path=path, headers=headers, **kwargs)
    return Request(builder.get_environ())


def multipart(path, data, session_id="user-1"):
    return make_request(
        "POST", path, session_id=session_id, data=data, content_type="multipart/form-data"
    )


def sample_post(post_id="p1", title="Hello", author="user-1"):
    return PostDto(id=post_id, title=title, author_id=author)


# --- pages and base handler ---


def test_load_page_reads_template(templates_dir):
    page = load_page(templates_dir, "create-post.html")
    assert page == Page(title="create-post.html", body=b"create")


def test_load_page_missing_file_gives_empty_body(templates_dir):
    page = load_page(templates_dir, "absent.html")
    assert page.title == "absent.html"
    assert page.body == b""


def test_render_escapes_html(base):
    assert base.render("escape.html", {"value": "<b>"}) == "&lt;b&gt;"


def test_handle_error_returns_json_and_logs(base, caplog):
    request = make_request(path="/post/7")
    with caplog.at_level(logging.ERROR, logger="gononymous.tests.handlers"):
        response = base.handle_error(request, 500, "Fail", RuntimeError("boom"))
    assert response.status_code == 500
    assert response.content_type == "application/json"
    assert response.get_data(as_text=True) == APIError(500, "Fail", "/post/7").to_json()
    record = caplog.records[-1]
    assert record.getMessage() == "Fail"
    assert record.fields == {"error": "boom", "code": 500, "url": "/post/7"}


def test_render_error_uses_template(base):
    response = base.render_error(401, "Fail")
    assert response.status_code == 401
    assert response.get_data(as_text=True) == "E401:Fail"


def test_render_error_without_template(tmp_path):
    handler = BaseHandler(logging.getLogger("gononymous.tests.bare"), tmp_path)
    response = handler.render_error(400, "Fail")
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "Internal Server Error\n"


# --- catalog and archive ---


def test_catalog_lists_active_posts(base):
    posts = FakePosts(active=[sample_post("a", "One"), sample_post("b", "Two")])
    response = CatalogHandler(posts, base).main_page(make_request())
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "[One][Two]"


def test_catalog_failure_sends_json_then_error_page(base):
    posts = FakePosts(error=RuntimeError("db down"))
    response = CatalogHandler(posts, base).main_page(make_request(path="/"))
    expected = APIError(500, "failed to get", "/").to_json() + "E500:fail"
    assert response.status_code == 500
    assert response.get_data(as_text=True) == expected


def test_archive_page_lists_all_posts(base):
    posts = FakePosts(active=[sample_post("a")], everything=[sample_post("a"), sample_post("b")])
    response = ArchiveHandler(posts, base, FakeComments(), FakeSessions()).archive_page(
        make_request(path="/archive")
    )
    assert response.get_data(as_text=True) == "(a)(b)"


def test_archive_post_renders_post_user_and_comments(base):
    posts = FakePosts(everything=[sample_post("p1", "Title", "user-1")])
    sessions = FakeSessions({"user-1": Session(users_id="user-1", name="Rick")})
    comments = FakeComments({"p1": [Comment(content="first"), Comment(content="second")]})
    handler = ArchiveHandler(posts, base, comments, sessions)
    response = handler.archive_post(make_request(path="/archive-post/p1"), "p1")
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "Title|Rick|first;second;"


def test_archive_post_missing_user(base):
    posts = FakePosts(everything=[sample_post("p1", "Title", "ghost")])
    handler = ArchiveHandler(posts, base, FakeComments(), FakeSessions())
    response = handler.archive_post(make_request(path="/archive-post/p1"), "p1")
    body = response.get_data(as_text=True)
    assert response.status_code == 500
    assert body.startswith(APIError(500, "Failed to get user", "/archive-post/p1").to_json())
    assert body.endswith("E500:Failde to get user")


# --- posts ---


def test_create_page_renders_form(base):
    handler = PostHandler(FakePosts(), FakeComments(), FakeSessions(), base)
    response = handler.create_page(make_request(path="/create-post"))
    assert response.get_data(as_text=True) == "create"


def test_submit_post_stores_trimmed_post_with_image(base):
    posts = FakePosts()
    handler = PostHandler(posts, FakeComments(), FakeSessions(), base)
    image = b"\xff\xd8\xff\xe0" + b"\x00" * 8
    request = multipart(
        "/submit-post",
        {
            "name": "  Hello  ",
            "subject": " Sub ",
            "comment": " Body ",
            "file": (io.BytesIO(image), "pic.jpg"),
        },
    )
    response = handler.submit_post(request)
    assert response.status_code == 200
    stored, data = posts.added[0]
    assert (stored.title, stored.subject, stored.content) == ("Hello", "Sub", "Body")
    assert stored.author_id == "user-1"
    assert data == image


def test_submit_post_without_file_sends_no_image(base):
    posts = FakePosts()
    handler = PostHandler(posts, FakeComments(), FakeSessions(), base)
    response = handler.submit_post(multipart("/submit-post", {"name": "Hi"}))
    assert response.status_code == 200
    assert posts.added[0][1] == b""


def test_submit_post_rejects_empty_title(base):
    posts = FakePosts()
    handler = PostHandler(posts, FakeComments(), FakeSessions(), base)
    response = handler.submit_post(multipart("/submit-post", {"name": "   "}))
    assert response.status_code == 400
    assert response.get_data(as_text=True) == "Title cannot be empty\n"
    assert posts.added == []


def test_submit_post_requires_multipart(base):
    handler = PostHandler(FakePosts(), FakeComments(), FakeSessions(), base)
    request = make_request("POST", "/submit-post", session_id="u", data={"name": "x"})
    response = handler.submit_post(request)
    assert response.status_code == 500
    assert response.get_data(as_text=True).endswith("E500:asd")


def test_submit_post_rejects_large_file(base):
    posts = FakePosts()
    handler = PostHandler(posts, FakeComments(), FakeSessions(), base)
    big = b"\xff" * (MAX_IMAGE_SIZE + 1)
    request = multipart("/submit-post", {"name": "Hi", "file": (io.BytesIO(big), "big.jpg")})
    response = handler.submit_post(request)
    assert response.status_code == 500
    assert response.get_data(as_text=True).endswith("E500:to much size of file")
    assert posts.added == []


def test_submit_post_requires_session_cookie(base):
    posts = FakePosts()
    handler = PostHandler(posts, FakeComments(), FakeSessions(), base)
    response = handler.submit_post(multipart("/submit-post", {"name": "Hi"}, session_id=None))
    assert response.status_code == 500
    assert posts.added == []


def test_post_page_renders(base):
    posts = FakePosts(everything=[sample_post("p1", "Topic", "user-1")])
    sessions = FakeSessions({"user-1": Session(users_id="user-1", name="Morty")})
    comments = FakeComments({"p1": [Comment(content="hey")]})
    handler = PostHandler(posts, comments, sessions, base)
    response = handler.post_page(make_request(path="/post/p1"), "p1")
    assert response.get_data(as_text=True) == "Topic|Morty|hey;"


def test_post_page_unknown_post(base):
    handler = PostHandler(FakePosts(), FakeComments(), FakeSessions(), base)
    response = handler.post_page(make_request(path="/post/none"), "none")
    assert response.status_code == 500
    assert response.get_data(as_text=True).endswith("E500:Fail")


# --- comments ---


def test_submit_comment_stores_reply(base):
    comments = FakeComments()
    handler = CommentHandler(comments, base)
    request = multipart(
        "/submit-comment", {"postID": "p1", "parentCommentID": "c9", "comment": "nice"}
    )
    response = handler.submit_comment(request)
    assert response.status_code == 200
    stored, img = comments.added[0]
    assert (stored.post_id, stored.parent_id, stored.content) == ("p1", "c9", "nice")
    assert stored.user_id == "user-1"
    assert img == b""


def test_submit_comment_missing_post_id(base):
    comments = FakeComments()
    response = CommentHandler(comments, base).submit_comment(
        multipart("/submit-comment", {"comment": "nice"})
    )
    assert response.status_code == 500
    assert comments.added == []


def test_submit_comment_service_failure(base):
    comments = FakeComments(error=RuntimeError("no"))
    response = CommentHandler(comments, base).submit_comment(
        multipart("/submit-comment", {"postID": "p1", "comment": "x"})
    )
    assert response.status_code == 500
    assert response.get_data(as_text=True).endswith("E500:fail")


# --- users ---


def make_user_handler(base, users=None, sessions=None, posts=None):
    return UserHandler(users or FakeUsers(), base, sessions or FakeSessions(), posts or FakePosts())


def test_change_name_success(base):
    users = FakeUsers()
    handler = make_user_handler(base, users=users)
    request = make_request("POST", "/profile/update-name", session_id="u1", json={"name": "  Neo "})
    response = handler.change_name(request)
    assert response.status_code == 200
    assert json.loads(response.get_data(as_text=True)) == {"newName": "Neo", "status": "success"}
    assert users.renamed == [("u1", "Neo")]


def test_change_name_too_long(base):
    users = FakeUsers()
    request = make_request("POST", "/profile/update-name", session_id="u1", json={"name": "x" * 51})
    response = make_user_handler(base, users=users).change_name(request)
    assert response.status_code == 400
    assert response.get_data(as_text=True).endswith("E400:Fail <50")
    assert users.renamed == []


def test_change_name_blank(base):
    request = make_request("POST", "/profile/update-name", session_id="u1", json={"name": "  "})
    response = make_user_handler(base).change_name(request)
    assert response.status_code == 400


def test_change_name_invalid_json(base):
    request = make_request(
        "POST", "/profile/update-name", session_id="u1", data=b"{bad", content_type="application/json"
    )
    response = make_user_handler(base).change_name(request)
    assert response.status_code == 400


def test_change_name_needs_cookie(base):
    request = make_request("POST", "/profile/update-name", json={"name": "Neo"})
    response = make_user_handler(base).change_name(request)
    assert response.status_code == 401


def test_profile_page_renders_user_posts(base):
    sessions = FakeSessions({"u1": Session(users_id="u1", name="Summer")})
    posts = FakePosts(everything=[sample_post("a", "Mine", "u1"), sample_post("b", "Other", "u2")])
    handler = make_user_handler(base, sessions=sessions, posts=posts)
    response = handler.profile_page(make_request(path="/profile", session_id="u1"))
    assert response.get_data(as_text=True) == "Summer:Mine;"


def test_profile_page_unknown_user(base):
    handler = make_user_handler(base)
    response = handler.profile_page(make_request(path="/profile", session_id="nobody"))
    assert response.status_code == 401
    assert response.get_data(as_text=True).endswith("E401:Fail")


# --- wiring ---


def test_build_handlers_wires_services(base):
    posts, sessions, comments, users = FakePosts(), FakeSessions(), FakeComments(), FakeUsers()
    handlers = build_handlers(Services(posts, sessions, comments, users), base)
    assert isinstance(handlers, Handlers)
    assert handlers.catalog.posts is posts
    assert handlers.posts.comments is comments
    assert handlers.users.users is users
    assert handlers.archive.sessions is sessions
    assert handlers.comments.comments is comments