from __future__ import annotations

import hashlib
import threading
from types import TracebackType
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")

GRAVATAR_URL = "https://gravatar.com/avatar/{digest}?d=robohash"
DEFAULT_MAIL_DOMAIN = "gmail.com"

_UNSET = "unset"
_VALUE = "value"
_FAILED = "failed"


def hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_text(text: str) -> str:
    return hash_bytes(text.encode("utf-8"))


class Lazy(Generic[T]):
    """Compute-once cell.

    The first call evaluates ``compute`` under a lock; later calls return the
    stored value, or raise the stored exception if the evaluation failed.
    """

    def __init__(self, compute: Callable[[], T]):
        self._compute = compute
        self._lock = threading.Lock()
        self._state = _UNSET
        self._value: Optional[T] = None
        self._error: Optional[BaseException] = None
        self._traceback: Optional[TracebackType] = None

    @property
    def evaluated(self) -> bool:
        return self._state != _UNSET

    def __call__(self) -> T:
        if self._state == _UNSET:
            with self._lock:
                if self._state == _UNSET:
                    try:
                        self._value = self._compute()
                        self._state = _VALUE
                    except Exception as exc:
                        self._error = exc
                        self._traceback = exc.__traceback__
                        self._state = _FAILED
        if self._state == _FAILED:
            # traceback of the failed evaluation, without earlier re-raises
            raise self._error.with_traceback(self._traceback)
        return self._value


class GravatarCache:
    """Avatar URLs keyed by lower-cased e-mail.

    One instance lives for one build run. Two threads may compute the same
    entry concurrently; both produce the same URL so the last write wins.
    """

    def __init__(self) -> None:
        self._urls: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._urls)

    def url(self, email: str) -> str:
        key = email.strip().lower()
        cached = self._urls.get(key)
        if cached is not None:
            return cached
        value = GRAVATAR_URL.format(digest=hash_text(key))
        self._urls[key] = value
        return value

    def resolve(self, mail: Optional[str], author: Optional[str]) -> str:
        if mail and mail.strip():
            return self.url(mail)
        if author:
            name = author.split(",")[0].strip()
            if name:
                return self.url(f"{name}@{DEFAULT_MAIL_DOMAIN}")
        return ""
