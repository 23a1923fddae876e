from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Iterable

import markdown
from jinja2 import Environment, FileSystemLoader, TemplateError, TemplateNotFound, select_autoescape
from pygments.formatters import HtmlFormatter
from pygments.util import ClassNotFound

from .models import ConfigError, Document, RenderError, SitePage

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = ["fenced_code", "tables", "toc", "codehilite"]
MARKDOWN_EXTENSION_CONFIGS = {"codehilite": {"guess_lang": False, "css_class": "codehilite"}}
HIGHLIGHT_CSS = "codehilite.css"
VIEW_SUFFIX = ".html"


def render_markdown(document: Document) -> str:
    # Markdown instances keep per-conversion state, one per call keeps workers independent
    md = markdown.Markdown(extensions=MARKDOWN_EXTENSIONS, extension_configs=MARKDOWN_EXTENSION_CONFIGS)
    return md.convert(document.body)


class ViewRenderer:
    """Renders pages with the Jinja2 views of the site.

    Compiled templates are cached by view name by the environment and
    reloaded when their file changes, so one renderer can serve several
    builds in watch mode.
    """

    def __init__(self, views_dir: Path):
        self.views_dir = views_dir
        logger.info("Using view directory '%s'", views_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(views_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            keep_trailing_newline=True,
        )

    @staticmethod
    def template_name(view: str) -> str:
        return view if Path(view).suffix else f"{view}{VIEW_SUFFIX}"

    def render(self, view: str, page: SitePage) -> str:
        try:
            template = self.env.get_template(self.template_name(view))
        except TemplateNotFound as exc:
            raise RenderError(f"View '{view}' not found in '{self.views_dir}'") from exc
        except TemplateError as exc:
            raise RenderError(f"Error compiling view '{view}': {exc}") from exc
        try:
            return template.render(page=page)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"Error rendering view '{view}' for '{page.slug}': {exc}") from exc


def write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def copy_assets(assets_dir: Path, files: Iterable[str], output_dir: Path) -> int:
    count = 0
    for relative in files:
        target = output_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(assets_dir / relative, target)
        count += 1
    return count


def write_highlight_css(output_dir: Path, style: str) -> Path:
    try:
        formatter = HtmlFormatter(style=style, cssclass="codehilite")
    except ClassNotFound as exc:
        raise ConfigError(f"Unknown highlight style '{style}'") from exc
    target = output_dir / HIGHLIGHT_CSS
    write_text(target, formatter.get_style_defs(".codehilite") + "\n")
    return target
