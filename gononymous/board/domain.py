"""Records of the board and the interfaces its services depend on."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Union, runtime_checkable

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


@dataclass
class PostDao:
    """A post as stored, joined with its author's name and avatar."""

    post_id: str = ""
    user_id: str = ""
    user_name: str = ""
    user_ava_url: str = ""
    created_at: Optional[datetime] = None
    title: str = ""
    subject: str = ""
    content: str = ""
    image_url: str = ""
    status: str = ""


@dataclass
class PostDto:
    """A post as shown to visitors."""

    id: str = ""
    author_id: str = ""
    author_name: str = ""
    author_ava_url: str = ""
    title: str = ""
    subject: str = ""
    content: str = ""
    image: str = ""
    created_at: Optional[datetime] = None


@dataclass
class Session:
    """An anonymous user behind a session cookie."""

    users_id: str = ""
    name: str = ""
    avatar_url: str = ""
    created_at: str = ""


@dataclass
class Comment:
    """A comment on a post, possibly a reply to another comment."""

    comment_id: str = ""
    post_id: str = ""
    parent_id: str = ""
    user_id: str = ""
    user_name: str = ""
    user_avatar_link: str = ""
    content: str = ""
    image_url: str = ""
    created_at: str = ""
    replies: list[Comment] = field(default_factory=list)


def _lookup(payload: dict, key: str) -> Any:
    if key in payload:
        return payload[key]
    for name, value in payload.items():
        if isinstance(name, str) and name.lower() == key:
            return value
    return None


def _string_field(payload: dict, key: str) -> str:
    value = _lookup(payload, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"character field {key!r} must be a string")
    return value


@dataclass
class Character:
    """A character whose name and picture become an anonymous identity."""

    name: str = ""
    avatar_url: str = ""

    def to_json(self) -> str:
        """Return the character as compact JSON with keys name and image."""
        text = json.dumps(
            {"name": self.name, "image": self.avatar_url},
            separators=(",", ":"),
            ensure_ascii=False,
        )
        return "".join(_JSON_ESCAPES.get(char, char) for char in text)

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Character":
        """Read a character from JSON; unknown keys are ignored, missing ones empty.

        Raises ValueError on malformed JSON or fields of the wrong type.
        """
        payload = json.loads(data)
        if payload is None:
            return cls()
        if not isinstance(payload, dict):
            raise ValueError("character JSON must be an object")
        return cls(name=_string_field(payload, "name"), avatar_url=_string_field(payload, "image"))


def post_dto_to_dao(post: PostDto) -> PostDao:
    """Carry the title, content and subject of a submitted post into a stored post."""
    return PostDao(title=post.title, content=post.content, subject=post.subject)


@runtime_checkable
class CharacterSource(Protocol):
    """Where characters are looked up by number."""

    def get_character(self, character_id: int) -> Character: ...


@runtime_checkable
class CommentStore(Protocol):
    """Storage of comments."""

    def add_comment(self, comment: Comment) -> None: ...

    def comments_by_post(self, post_id: str) -> list[Comment]: ...

    def replies(self, comment_id: str) -> list[Comment]: ...


@runtime_checkable
class ImageStore(Protocol):
    """Storage of uploaded images; returns the public URL, or "" for no image."""

    def save_image(self, img: bytes) -> str: ...


@runtime_checkable
class PostStore(Protocol):
    """Storage of posts."""

    def add_post(self, post: PostDao) -> None: ...

    def active(self) -> list[PostDao]: ...

    def all(self) -> list[PostDao]: ...

    def post_by_id(self, post_id: str) -> PostDao: ...

    def archive_expired(self, now: datetime) -> None: ...

    def posts_by_user(self, user_id: str) -> list[PostDao]: ...


@runtime_checkable
class SessionStore(Protocol):
    """Storage of anonymous users."""

    def add_session(self, session: Session) -> None: ...

    def session_by_id(self, user_id: str) -> Session: ...


@runtime_checkable
class UserStore(Protocol):
    """Changes to a user's record."""

    def change_name(self, user_id: str, new_name: str) -> None: ...