"""SQLite-backed storage of users, posts and comments."""

from __future__ import annotations

import logging
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from gononymous.board.domain import CharacterSource, Comment, PostDao, Session
from gononymous.board.services import ROOT_PARENT_ID

log = logging.getLogger(__name__)

ARCHIVED = "Archived"
USER_POST_LIMIT = 3
UNCOMMENTED_LIFETIME = timedelta(minutes=1)
COMMENTED_LIFETIME = timedelta(minutes=2)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id    TEXT PRIMARY KEY,
    name       TEXT NOT NULL DEFAULT '',
    avatar_url TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS posts (
    post_id    TEXT PRIMARY KEY,
    user_id    TEXT NOT NULL,
    title      TEXT NOT NULL DEFAULT '',
    subject    TEXT NOT NULL DEFAULT '',
    content    TEXT NOT NULL DEFAULT '',
    image_url  TEXT NOT NULL DEFAULT '',
    status     TEXT NOT NULL DEFAULT 'Active',
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS comments (
    comment_id TEXT PRIMARY KEY,
    post_id    TEXT NOT NULL,
    parent_id  TEXT NOT NULL,
    user_id    TEXT NOT NULL,
    content    TEXT NOT NULL DEFAULT '',
    image_url  TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

_POST_LISTING = """
SELECT p.post_id, p.created_at, u.name, u.avatar_url, p.title, p.subject, p.content, p.image_url
FROM posts AS p
JOIN users AS u ON u.user_id = p.user_id
"""

_COMMENT_LISTING = """
SELECT c.comment_id, c.post_id, c.parent_id, c.user_id, u.name, u.avatar_url, c.content, c.image_url
FROM comments AS c
JOIN users AS u ON u.user_id = c.user_id
"""


def _stamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_stamp(text: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(text) if text else None


def connect_db(path: Union[str, "os.PathLike[str]"]) -> sqlite3.Connection:
    """Open the database, check that it answers, and make sure the tables exist."""
    conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
    conn.execute("SELECT 1").fetchone()
    init_schema(conn)
    log.info("Successfully connected to the database!")
    return conn


def init_schema(conn: sqlite3.Connection) -> None:
    """Create the users, posts and comments tables when missing."""
    conn.executescript(_SCHEMA)


def _listed_post(row: tuple) -> PostDao:
    post_id, created_at, name, avatar_url, title, subject, content, image_url = row
    return PostDao(
        post_id=post_id,
        created_at=_parse_stamp(created_at),
        user_name=name,
        user_ava_url=avatar_url,
        title=title,
        subject=subject,
        content=content,
        image_url=image_url,
    )


def _listed_comment(row: tuple) -> Comment:
    comment_id, post_id, parent_id, user_id, name, avatar_url, content, image_url = row
    return Comment(
        comment_id=comment_id,
        post_id=post_id,
        parent_id=parent_id,
        user_id=user_id,
        user_name=name,
        user_avatar_link=avatar_url,
        content=content,
        image_url=image_url,
    )


class CommentRepository:
    """Comments stored in the comments table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def add_comment(self, comment: Comment) -> None:
        """Insert a comment."""
        self._conn.execute(
            "INSERT INTO comments(comment_id, post_id, parent_id, user_id, content, image_url)"
            " VALUES (?, ?, ?, ?, ?, ?)",
            (
                comment.comment_id,
                comment.post_id,
                comment.parent_id,
                comment.user_id,
                comment.content,
                comment.image_url,
            ),
        )

    def comments_by_post(self, post_id: str) -> list[Comment]:
        """Return a post's top-level comments with their authors."""
        rows = self._conn.execute(
            _COMMENT_LISTING + " WHERE c.post_id = ? AND c.parent_id = ? ORDER BY c.rowid",
            (post_id, ROOT_PARENT_ID),
        )
        return [_listed_comment(row) for row in rows]

    def replies(self, comment_id: str) -> list[Comment]:
        """Return the direct replies to a comment with their authors."""
        rows = self._conn.execute(
            _COMMENT_LISTING + " WHERE c.parent_id = ? ORDER BY c.rowid", (comment_id,)
        )
        return [_listed_comment(row) for row in rows]


class PostRepository:
    """Posts stored in the posts table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def add_post(self, post: PostDao) -> None:
        """Insert a post; it is stamped with the current time unless it has one."""
        created = post.created_at or datetime.now(timezone.utc)
        self._conn.execute(
            "INSERT INTO posts(post_id, user_id, title, subject, content, image_url, status,"
            " created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                post.post_id,
                post.user_id,
                post.title,
                post.subject,
                post.content,
                post.image_url,
                post.status,
                _stamp(created),
            ),
        )

    def active(self) -> list[PostDao]:
        """Return the posts whose status is Active."""
        rows = self._conn.execute(_POST_LISTING + " WHERE p.status = 'Active' ORDER BY p.rowid")
        return [_listed_post(row) for row in rows]

    def all(self) -> list[PostDao]:
        """Return every post."""
        rows = self._conn.execute(_POST_LISTING + " ORDER BY p.rowid")
        return [_listed_post(row) for row in rows]

    def post_by_id(self, post_id: str) -> PostDao:
        """Return one post. Raises LookupError when there is none."""
        row = self._conn.execute(
            "SELECT post_id, user_id, created_at, title, subject, content, image_url, status"
            " FROM posts WHERE post_id = ?",
            (post_id,),
        ).fetchone()
        if row is None:
            raise LookupError(f"no post with id {post_id!r}")
        pid, user_id, created_at, title, subject, content, image_url, status = row
        return PostDao(
            post_id=pid,
            user_id=user_id,
            created_at=_parse_stamp(created_at),
            title=title,
            subject=subject,
            content=content,
            image_url=image_url,
            status=status,
        )

    def archive_expired(self, now: Optional[datetime] = None) -> int:
        """Archive posts older than a minute without comments, or two minutes with some.

        Returns the number of posts archived.
        """
        moment = now or datetime.now(timezone.utc)
        cursor = self._conn.execute(
            """
            UPDATE posts
            SET status = 'Archived'
            WHERE status != 'Archived' AND (
                (NOT EXISTS (SELECT 1 FROM comments WHERE comments.post_id = posts.post_id)
                 AND created_at <= ?)
                OR
                (EXISTS (SELECT 1 FROM comments WHERE comments.post_id = posts.post_id)
                 AND created_at <= ?)
            )
            """,
            (_stamp(moment - UNCOMMENTED_LIFETIME), _stamp(moment - COMMENTED_LIFETIME)),
        )
        return cursor.rowcount

    def posts_by_user(self, user_id: str) -> list[PostDao]:
        """Return at most three posts written by a user."""
        rows = self._conn.execute(
            _POST_LISTING + " WHERE p.user_id = ? ORDER BY p.rowid LIMIT ?",
            (user_id, USER_POST_LIMIT),
        )
        return [_listed_post(row) for row in rows]


class SessionRepository:
    """Anonymous users stored in the users table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def add_session(self, session: Session) -> None:
        """Insert a user."""
        self._conn.execute(
            "INSERT INTO users(user_id, name, avatar_url) VALUES (?, ?, ?)",
            (session.users_id, session.name, session.avatar_url),
        )

    def session_by_id(self, user_id: str) -> Session:
        """Return a user. Raises LookupError when there is none."""
        row = self._conn.execute(
            "SELECT user_id, name, avatar_url, created_at FROM users WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            raise LookupError(f"no user with id {user_id!r}")
        uid, name, avatar_url, created_at = row
        return Session(users_id=uid, name=name, avatar_url=avatar_url, created_at=created_at)


class UserRepository:
    """Changes to rows of the users table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def change_name(self, user_id: str, new_name: str) -> None:
        """Set a user's display name."""
        self._conn.execute("UPDATE users SET name = ? WHERE user_id = ?", (new_name, user_id))


@dataclass
class Repository:
    """Every store the services need."""

    posts: PostRepository
    sessions: SessionRepository
    characters: CharacterSource
    comments: CommentRepository
    users: UserRepository

    @classmethod
    def from_connection(
        cls, conn: sqlite3.Connection, characters: Optional[CharacterSource] = None
    ) -> "Repository":
        """Build the stores over one connection; characters default to the public API."""
        if characters is None:
            from gononymous.board.clients import CharacterClient

            characters = CharacterClient()
        return cls(
            posts=PostRepository(conn),
            sessions=SessionRepository(conn),
            characters=characters,
            comments=CommentRepository(conn),
            users=UserRepository(conn),
        )