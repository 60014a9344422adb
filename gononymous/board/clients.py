"""HTTP clients for the character directory and the image store."""

from __future__ import annotations

from http import HTTPStatus
from typing import Optional

import requests

from gononymous.board.domain import Character
from gononymous.board.utils import new_uuid

DEFAULT_CHARACTER_API = "https://rickandmortyapi.com/api"
DEFAULT_STORE_ENDPOINT = "http://s3:9000"
DEFAULT_PUBLIC_URL = "http://localhost:9000"
IMAGE_BUCKET = "images"
REQUEST_TIMEOUT = 10.0

_PNG = bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A])


class CharacterError(Exception):
    """A character could not be fetched."""


class ImageUploadError(Exception):
    """An image could not be stored."""


def _status_line(response: requests.Response) -> str:
    reason = response.reason
    if not reason:
        try:
            reason = HTTPStatus(response.status_code).phrase
        except ValueError:
            reason = ""
    return f"{response.status_code} {reason}".rstrip()


class CharacterClient:
    """Fetches characters by number from a character API."""

    def __init__(
        self, base_url: str = DEFAULT_CHARACTER_API, session: Optional[requests.Session] = None
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()

    def get_character(self, character_id: int) -> Character:
        """Return the character with this number. Raises CharacterError on failure."""
        url = f"{self.base_url}/character/{character_id}"
        try:
            response = self._session.get(url, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as err:
            raise CharacterError(f"failed to send request: {err}") from err
        with response:
            if response.status_code != HTTPStatus.OK:
                raise CharacterError(f"unexpected status: {_status_line(response)}")
            try:
                return Character.from_json(response.content)
            except ValueError as err:
                raise CharacterError(f"failed to decode character: {err}") from err


def detect_image_extension(img: bytes) -> str:
    """Return the file extension matching an image's signature.

    Raises ValueError when the data is too short or of an unknown kind.
    """
    if len(img) < 8:
        raise ValueError("file too small to determine type")
    if img.startswith(b"\xff\xd8"):
        return ".jpg"
    if img.startswith(_PNG):
        return ".png"
    if img.startswith((b"GIF87a", b"GIF89a")):
        return ".gif"
    if len(img) >= 12 and img.startswith(b"RIFF") and img[8:12] == b"WEBP":
        return ".webp"
    if img.startswith(b"BM"):
        return ".bmp"
    raise ValueError("unknown image format")


class ImageCollector:
    """Uploads images to the object store and hands back their public URLs."""

    def __init__(
        self,
        endpoint: str = DEFAULT_STORE_ENDPOINT,
        public_url: str = DEFAULT_PUBLIC_URL,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.public_url = public_url.rstrip("/")
        self._session = session or requests.Session()

    def ensure_bucket(self) -> bool:
        """Ask the store to create the image bucket; tell whether it accepted."""
        try:
            response = self._session.put(
                f"{self.endpoint}/{IMAGE_BUCKET}", timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException:
            return False
        with response:
            return response.status_code < 400

    def save_image(self, img: bytes) -> str:
        """Upload an image and return its public URL; no data means no image and "".

        Raises ImageUploadError when the type is unknown or the upload fails.
        """
        if not img:
            return ""
        try:
            extension = detect_image_extension(img)
        except ValueError as err:
            raise ImageUploadError(f"could not detect image type: {err}") from err
        file_path = f"{IMAGE_BUCKET}/{new_uuid()}{extension}"
        try:
            response = self._session.put(
                f"{self.endpoint}/{file_path}",
                data=bytes(img),
                headers={"Content-Type": "application/octet-stream"},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as err:
            raise ImageUploadError(f"could not send request: {err}") from err
        with response:
            if response.status_code >= 400:
                raise ImageUploadError(
                    f"server returned error status: {_status_line(response)}"
                )
        return f"{self.public_url}/{file_path}"