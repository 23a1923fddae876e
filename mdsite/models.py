"""Data models shared by the loader, the emitters and the views."""

from __future__ import annotations

import datetime as dt
import html
import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from typing import Callable, Mapping, Optional

from markupsafe import Markup

from .cache import GravatarCache

logger = logging.getLogger(__name__)

PUBLISHED_ON_FORMAT = "%Y%m%d"
TAG_RE = re.compile(r"<[^>]+>")
BLANK_LINES_RE = re.compile(r"\n\s*\n+")


class SiteError(Exception):
    """Base class for build failures."""


class DocumentParseError(SiteError):
    pass


class LoadError(SiteError):
    """A source file could not be read or parsed."""

    def __init__(self, source: str, message: str):
        super().__init__(f"Can't load '{source}': {message}")
        self.source = source


class RenderError(SiteError):
    pass


class ConfigError(SiteError):
    pass


class PostProcessingError(SiteError):
    pass


@dataclass(frozen=True)
class Header:
    title: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    subtitle: Optional[str] = None
    author: Optional[str] = None


@dataclass(frozen=True)
class Document:
    header: Header
    body: str = ""


def _no_body() -> str:
    return ""


@dataclass(frozen=True)
class Page:
    """One loaded (or synthesized) page.

    ``body`` is a compute-once callable so the Markdown conversion only runs
    for pages a consumer actually needs the HTML of.
    """

    global_attributes: Mapping[str, str]
    document: Document
    slug: str
    source: str = ""
    body: Callable[[], str] = _no_body
    gravatars: GravatarCache = field(default_factory=GravatarCache, repr=False, compare=False)

    @property
    def title(self) -> str:
        return self.document.header.title

    @property
    def attributes(self) -> Mapping[str, str]:
        return self.document.header.attributes

    def attribute(self, key: str) -> Optional[str]:
        value = self.document.header.attributes.get(key)
        if value is not None:
            return value
        return self.global_attributes.get(key)

    @cached_property
    def published_on(self) -> dt.date:
        value = self.document.header.attributes.get("published-on")
        if value is None:
            logger.warning("'%s' has no published-on attribute, it is always published", self.source or self.slug)
            return dt.date.min
        return dt.datetime.strptime(value.strip(), PUBLISHED_ON_FORMAT).date()

    @cached_property
    def gravatar(self) -> str:
        return self.gravatars.resolve(self.attribute("mail"), self.attribute("author"))

    def plain_text(self) -> str:
        text = html.unescape(TAG_RE.sub("", self.body()))
        text = BLANK_LINES_RE.sub("\n", text).strip()
        return f"{self.title}\n{text}" if text else self.title


@dataclass(frozen=True)
class SitePage:
    """A page together with the pages it can list.

    Physical pages see every loaded page, virtual pages see their listing
    chunk. This is what views receive, so `body()` is already marked safe
    for the autoescaping environment.
    """

    page: Page
    pages: tuple[Page, ...] = ()

    @property
    def slug(self) -> str:
        return self.page.slug

    @property
    def title(self) -> str:
        return self.page.title

    @property
    def source(self) -> str:
        return self.page.source

    @property
    def document(self) -> Document:
        return self.page.document

    @property
    def attributes(self) -> Mapping[str, str]:
        return self.page.attributes

    @property
    def published_on(self) -> dt.date:
        return self.page.published_on

    @property
    def gravatar(self) -> str:
        return self.page.gravatar

    def attribute(self, key: str) -> Optional[str]:
        return self.page.attribute(key)

    def body(self) -> Markup:
        return Markup(self.page.body())


def finalize(pages: list[Page]) -> list[SitePage]:
    snapshot = tuple(pages)
    return [SitePage(page, snapshot) for page in snapshot]
