from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Sequence

from .cache import GravatarCache
from .config import PageDefinition
from .content import split_values
from .models import Document, Header, Page, RenderError, SitePage
from .render import ViewRenderer, write_text

logger = logging.getLogger(__name__)

DEFAULT_VIEW = "default"


@dataclass(frozen=True)
class VirtualPage:
    slug: str
    title: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    pages: tuple[Page, ...] = ()


def substitute(template: str, page: int, value: str) -> str:
    return template.replace("{Page}", str(page)).replace("{Value}", value)


def output_path(output_dir: Path, slug: str) -> Path:
    target = output_dir / f"{slug}.html"
    if not target.resolve().is_relative_to(output_dir.resolve()):
        raise RenderError(f"Slug '{slug}' resolves outside of the output directory '{output_dir}'")
    return target


def select_pages(definition: PageDefinition, pages: Sequence[Page]) -> list[Page]:
    handled = [page for page in pages if definition.criteria_attribute in page.attributes]
    handled.sort(key=lambda page: page.attributes.get(definition.order_by_attribute) or "")
    if definition.reverse_order_by:
        handled.reverse()
    return handled


def chunk(pages: list[Page], size: int) -> list[list[Page]]:
    size = max(1, size)
    return [pages[start : start + size] for start in range(0, len(pages), size)]


def paginate(definition: PageDefinition, pages: list[Page], value: str = "", per_value: bool = False) -> list[VirtualPage]:
    chunks = chunk(pages, definition.page_size) or [[]]
    total_pages = len(chunks)
    result = []
    for number, items in enumerate(chunks, start=1):
        attributes = dict(definition.attributes)
        attributes["paginationTotalPages"] = str(total_pages)
        attributes["paginationCurrentPage"] = str(number)
        if per_value:
            attributes["paginationAttributeValue"] = value
        result.append(
            VirtualPage(
                slug=substitute(definition.slug, number, value),
                title=substitute(definition.title, number, value),
                attributes=attributes,
                pages=tuple(items),
            )
        )
    return result


def group_by_value(attribute: str, pages: list[Page]) -> dict[str, list[Page]]:
    groups: dict[str, list[Page]] = {}
    for page in pages:
        for value in split_values(page.attributes[attribute]):
            groups.setdefault(value, []).append(page)
    return groups


def plan_virtual_pages(definition: PageDefinition, pages: Sequence[Page]) -> list[VirtualPage]:
    handled = select_pages(definition, pages)
    if not definition.paginated:
        return [
            VirtualPage(
                slug=substitute(definition.slug, 1, ""),
                title=substitute(definition.title, 1, ""),
                attributes=dict(definition.attributes),
                pages=tuple(handled),
            )
        ]
    if not definition.per_value:
        return paginate(definition, handled)
    planned = []
    for value, grouped in group_by_value(definition.criteria_attribute, handled).items():
        planned.extend(paginate(definition, grouped, value, per_value=True))
    return planned


def find_slug_collisions(pages: Sequence[Page], planned: Sequence[VirtualPage]) -> dict[str, int]:
    counts: dict[str, int] = {}
    for slug in [page.slug for page in pages] + [page.slug for page in planned]:
        counts[slug] = counts.get(slug, 0) + 1
    return {slug: count for slug, count in counts.items() if count > 1}


def render_page(views: ViewRenderer, output_dir: Path, page: SitePage) -> Path:
    view = page.attributes.get("view") or DEFAULT_VIEW
    target = output_path(output_dir, page.slug)
    html_doc = views.render(view, page)
    write_text(target, html_doc)
    return target


def render_virtual_pages(
    views: ViewRenderer,
    output_dir: Path,
    definition: PageDefinition,
    planned: Sequence[VirtualPage],
    global_attributes: Mapping[str, str],
    gravatars: GravatarCache,
) -> list[Path]:
    if not definition.paginated:
        logger.warning(
            "Using virtual pages when pagination is not needed is tolerated "
            "but a physical page would be saner, think to replace it %s",
            definition.slug,
        )
    elif not definition.per_value:
        logger.info("Generating paginated pages for %s", definition.criteria_attribute)
    written = []
    for item in planned:
        if definition.paginated and definition.per_value and item.attributes.get("paginationCurrentPage") == "1":
            logger.info(
                "Generating paginated pages for %s='%s'",
                definition.criteria_attribute,
                item.attributes.get("paginationAttributeValue", ""),
            )
        page = Page(
            global_attributes=global_attributes,
            document=Document(Header(title=item.title, attributes=item.attributes)),
            slug=item.slug,
            gravatars=gravatars,
        )
        target = output_path(output_dir, item.slug)
        html_doc = views.render(definition.view, SitePage(page, item.pages))
        write_text(target, html_doc)
        written.append(target)
    return written
