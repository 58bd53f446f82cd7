from __future__ import annotations
import base64
import binascii
import logging
import mimetypes
import re
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote_plus

import requests

from .errors import ImageError
from .normalize import clean_item_name, search_key


log = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 2 * 1024 * 1024
MAX_RETRY_WAIT = 60.0
IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}

_DATA_URI = re.compile(r"^data:(image/[A-Za-z0-9.+-]+);base64,(.*)$", re.DOTALL)


def validate_image_reference(ref: str) -> str:
    """Check an image reference before it is stored.

    Accepted forms are an ``http(s)://`` URL or a base64 ``data:image/...`` URI
    whose decoded payload is under :data:`MAX_IMAGE_BYTES`.
    """
    if not ref or not ref.strip():
        raise ImageError("Image reference is empty")
    ref = ref.strip()
    if ref.lower().startswith(("http://", "https://")):
        return ref
    m = _DATA_URI.match(ref)
    if not m:
        raise ImageError("Image must be an http(s) URL or a base64 data:image URI")
    try:
        payload = base64.b64decode(m.group(2), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageError(f"Invalid base64 image payload: {e}") from e
    if len(payload) >= MAX_IMAGE_BYTES:
        raise ImageError(f"Image is {len(payload)} bytes; limit is {MAX_IMAGE_BYTES}")
    return ref


def bytes_to_data_uri(data: bytes, mime: str) -> str:
    if len(data) >= MAX_IMAGE_BYTES:
        raise ImageError(f"Image is {len(data)} bytes; limit is {MAX_IMAGE_BYTES}")
    if not mime.startswith("image/"):
        raise ImageError(f"Not an image content type: {mime}")
    return f"data:{mime};base64," + base64.b64encode(data).decode("utf-8")


def to_data_uri(path: Path) -> str:
    if path.suffix.lower() not in IMAGE_EXTS:
        raise ImageError(f"Unsupported image type: {path.name}")
    mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    with open(path, "rb") as f:
        return bytes_to_data_uri(f.read(), mime)


def list_images(images_dir: Path) -> List[Path]:
    if not images_dir.exists() or not images_dir.is_dir():
        raise FileNotFoundError(f"Images directory not found: {images_dir}")
    files: List[Path] = []
    for p in sorted(images_dir.rglob("*")):
        if p.is_file() and p.suffix.lower() in IMAGE_EXTS:
            files.append(p)
    log.debug(f"list_images: dir={images_dir} count={len(files)}")
    return files


def search_key_from_path(path: Path) -> Optional[str]:
    # "clown_tang-sm.jpg" -> "CLOWN TANG"
    stem = re.sub(r"[_]+", " ", path.stem)
    key = search_key(clean_item_name(stem))
    return key or None


def retry_delay(value: Optional[str], default: float) -> float:
    """Seconds to wait for a Retry-After header given as seconds or an HTTP-date."""
    if not value:
        return default
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _get(session: requests.Session, url: str, timeout: float, max_retries: int = 5) -> requests.Response:
    backoff = 1.0
    attempts = 0
    while True:
        resp = session.get(url, timeout=timeout, stream=True)
        if resp.status_code == 429 and attempts < max_retries:
            delay = min(retry_delay(resp.headers.get("Retry-After"), backoff), MAX_RETRY_WAIT)
            resp.close()
            time.sleep(delay)
            backoff = min(backoff * 2, 10.0)
            attempts += 1
            continue
        return resp


def _read_capped(resp: requests.Response, url: str) -> bytes:
    chunks: List[bytes] = []
    size = 0
    for chunk in resp.iter_content(chunk_size=64 * 1024):
        size += len(chunk)
        if size >= MAX_IMAGE_BYTES:
            raise ImageError(f"Image at {url} is larger than {MAX_IMAGE_BYTES} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


def fetch_image_as_data_uri(url: str, session: Optional[requests.Session] = None, timeout: float = 15) -> str:
    if not url.lower().startswith(("http://", "https://")):
        raise ImageError(f"Not an http(s) URL: {url}")
    if session is None:
        with requests.Session() as s:
            return fetch_image_as_data_uri(url, session=s, timeout=timeout)
    try:
        resp = _get(session, url, timeout)
        try:
            if resp.status_code != 200:
                raise ImageError(f"Failed to fetch {url}: HTTP {resp.status_code}")
            mime = (resp.headers.get("Content-Type") or "").split(";")[0].strip().lower()
            content = _read_capped(resp, url)
        finally:
            resp.close()
    except requests.RequestException as e:
        raise ImageError(f"Failed to fetch {url}: {e}") from e
    return bytes_to_data_uri(content, mime)


def check_image_url(url: str, session: Optional[requests.Session] = None, timeout: float = 10) -> bool:
    if session is None:
        with requests.Session() as s:
            return check_image_url(url, session=s, timeout=timeout)
    try:
        resp = session.head(url, timeout=timeout, allow_redirects=True)
    except requests.RequestException as e:
        log.info(f"Image URL not reachable: {url} ({e})")
        return False
    if resp.status_code >= 400:
        return False
    ctype = (resp.headers.get("Content-Type") or "").lower()
    return not ctype or ctype.startswith("image/")


def image_search_url(key: str) -> str:
    return f"https://www.google.com/search?q={quote_plus(key + ' fish')}&tbm=isch"
