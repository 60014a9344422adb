"""Board services: posts, comments, anonymous sessions and user names."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

from gononymous.board.domain import (
    CharacterSource,
    Comment,
    CommentStore,
    ImageStore,
    PostDao,
    PostDto,
    PostStore,
    Session,
    SessionStore,
    UserStore,
    post_dto_to_dao,
)
from gononymous.board.utils import new_uuid

log = logging.getLogger(__name__)

ROOT_PARENT_ID = "00000000-0000-0000-0000-000000000000"
ACTIVE = "Active"
AVATAR_COUNT = 826


class CommentService:
    """Adds comments and gathers them with their replies."""

    def __init__(self, repo: CommentStore, image_collector: ImageStore) -> None:
        self._repo = repo
        self._images = image_collector

    def add_comment(self, comment: Comment, img: bytes) -> Comment:
        """Store a comment with a fresh id and its uploaded image; return it."""
        stored = replace(
            comment,
            comment_id=new_uuid(),
            parent_id=comment.parent_id or ROOT_PARENT_ID,
        )
        stored.image_url = self._images.save_image(img)
        self._repo.add_comment(stored)
        return stored

    def comments_for_post(self, post_id: str) -> list[Comment]:
        """Return a post's top-level comments, each with its direct replies."""
        comments = list(self._repo.comments_by_post(post_id) or [])
        for comment in comments:
            comment.replies = list(self._repo.replies(comment.comment_id) or [])
        return comments


def _listing(post: PostDao) -> PostDto:
    return PostDto(
        id=post.post_id,
        title=post.title,
        author_name=post.user_name,
        author_ava_url=post.user_ava_url,
        subject=post.subject,
        content=post.content,
        image=post.image_url,
    )


class PostService:
    """Creates, lists and archives posts."""

    def __init__(self, repo: PostStore, image_collector: ImageStore) -> None:
        self._repo = repo
        self._images = image_collector

    def add_post(self, post: PostDto, data: bytes) -> PostDao:
        """Store an active post by its author with a fresh id; return the stored record."""
        stored = post_dto_to_dao(post)
        stored.user_id = post.author_id
        stored.post_id = new_uuid()
        stored.status = ACTIVE
        stored.image_url = self._images.save_image(data)
        self._repo.add_post(stored)
        return stored

    def active(self) -> list[PostDto]:
        """Return the posts that are not archived."""
        return [_listing(post) for post in self._repo.active() or []]

    def all(self) -> list[PostDto]:
        """Return every post."""
        return [_listing(post) for post in self._repo.all() or []]

    def post_by_id(self, post_id: str) -> PostDto:
        """Return one post with its author id and creation time."""
        post = self._repo.post_by_id(post_id)
        return PostDto(
            id=post.post_id,
            image=post.image_url,
            author_id=post.user_id,
            content=post.content,
            subject=post.subject,
            title=post.title,
            created_at=post.created_at,
        )

    def posts_by_user(self, user_id: str) -> list[PostDto]:
        """Return the posts written by a user."""
        return [_listing(post) for post in self._repo.posts_by_user(user_id) or []]

    def start_archiver(
        self, interval: Union[float, timedelta], stop_event: threading.Event
    ) -> threading.Thread:
        """Archive expired posts every interval until stop_event is set.

        The interval is in seconds or a timedelta and must be positive.
        Returns the background thread doing the work.
        """
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            raise ValueError("archiver interval must be positive")

        def run() -> None:
            while not stop_event.wait(seconds):
                try:
                    self._repo.archive_expired(datetime.now(timezone.utc))
                except Exception:
                    log.exception("Archiver error")

        thread = threading.Thread(target=run, name="post-archiver", daemon=True)
        thread.start()
        return thread


class AvatarPicker:
    """Hands out avatar numbers 1..size without repeats until all are used, then starts over."""

    def __init__(self, size: int = AVATAR_COUNT) -> None:
        if size < 1:
            raise ValueError("picker size must be at least 1")
        self._lock = threading.Lock()
        self._ids = list(range(1, size + 1))
        self._right = size - 1

    def pick(self) -> int:
        """Return a number not handed out since the last full round."""
        with self._lock:
            if self._right < 0:
                self._right = len(self._ids) - 1
            index = random.randrange(self._right + 1)
            chosen = self._ids[index]
            self._ids[index] = self._ids[self._right]
            self._ids[self._right] = chosen
            self._right -= 1
            return chosen


class SessionService:
    """Creates anonymous users named after characters, and looks them up."""

    def __init__(
        self,
        session_repo: SessionStore,
        characters: CharacterSource,
        picker: Optional[AvatarPicker] = None,
    ) -> None:
        self._sessions = session_repo
        self._characters = characters
        self._picker = picker if picker is not None else AvatarPicker()

    def create_session(self) -> str:
        """Create a user from a freshly picked character and return its id."""
        character = self._characters.get_character(self._picker.pick())
        user_id = new_uuid()
        self._sessions.add_session(
            Session(users_id=user_id, name=character.name, avatar_url=character.avatar_url)
        )
        return user_id

    def session_by_id(self, user_id: str) -> Session:
        """Return the user with this id."""
        return self._sessions.session_by_id(user_id)


class UserService:
    """Changes to users."""

    def __init__(self, repo: UserStore) -> None:
        self._repo = repo

    def change_name(self, user_id: str, new_name: str) -> None:
        """Give a user a new display name."""
        self._repo.change_name(user_id, new_name)


@dataclass
class Services:
    """The board's services, wired together."""

    posts: PostService
    sessions: SessionService
    comments: CommentService
    users: UserService