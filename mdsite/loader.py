from __future__ import annotations

import datetime as dt
import logging
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

from .cache import GravatarCache, Lazy
from .content import derive_slug, parse_document
from .models import Document, LoadError, Page, RenderError
from .render import render_markdown
from .utils import at_midnight

logger = logging.getLogger(__name__)

Parser = Callable[[Sequence[str]], Document]
BodyRenderer = Callable[[Document], str]


def is_published(page: Page, reference: Optional[dt.datetime]) -> bool:
    """``False`` when the page is dated strictly after ``reference``.

    Pages without a ``published-on`` attribute are always published.
    """
    if reference is None:
        return True
    if page.document.header.attributes.get("published-on") is None:
        return True
    published = at_midnight(page.published_on)
    if published > reference:
        logger.info("Ignoring %s since it is not yet published (%s)", page.source, published.date().isoformat())
        return False
    return True


class ContentLoader:
    def __init__(
        self,
        root: Path,
        global_attributes: Mapping[str, str],
        gravatars: GravatarCache,
        parse: Parser = parse_document,
        render_body: BodyRenderer = render_markdown,
    ):
        self.root = root
        self.global_attributes = dict(global_attributes)
        self.gravatars = gravatars
        self.parse = parse
        self.render_body = render_body

    def _body(self, source: str, document: Document) -> Lazy[str]:
        def compute() -> str:
            try:
                return self.render_body(document)
            except Exception as exc:
                logger.error("Can't render '%s'", source, exc_info=True)
                raise RenderError(f"Can't render '{source}': {exc}") from exc

        return Lazy(compute)

    def load(self, source: str) -> Page:
        path = self.root / source
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
            document = self.parse(lines)
            slug = derive_slug(source, document.header.attributes)
            page = Page(
                global_attributes=self.global_attributes,
                document=document,
                slug=slug,
                source=source,
                body=self._body(source, document),
                gravatars=self.gravatars,
            )
            # fail the load, not a later consumer, on a malformed date
            page.published_on
        except Exception as exc:
            logger.error("Can't load '%s'", source, exc_info=True)
            raise LoadError(source, str(exc)) from exc
        return page
