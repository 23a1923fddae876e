"""Build orchestration.

One run loads every source page with a bounded worker pool, freezes the
loaded set, then runs the emitters and renderers concurrently over that
snapshot. A failed task fails the run; files already written stay on disk.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import subprocess
import threading
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Iterable, Optional, TypeVar

from .cache import GravatarCache
from .config import PageDefinition, SiteConfig
from .feeds import write_index, write_rss
from .loader import ContentLoader, is_published
from .models import Page, PostProcessingError, RenderError, SitePage, finalize
from .pages import VirtualPage, find_slug_collisions, plan_virtual_pages, render_page, render_virtual_pages
from .render import ViewRenderer, copy_assets, write_highlight_css
from .scanner import SourceScanner

logger = logging.getLogger(__name__)

T = TypeVar("T")

QUEUE_CAPACITY = 1024


def run_bounded(
    executor: ThreadPoolExecutor,
    task: Callable[[T], object],
    items: Iterable[T],
    capacity: int = QUEUE_CAPACITY,
) -> list[object]:
    """Submit one task per item with at most ``capacity`` pending at once.

    Raises the first task failure; no new task is submitted after it.
    """
    slots = threading.BoundedSemaphore(max(1, capacity))
    failed = threading.Event()
    futures: list[Future] = []

    def release(future: Future) -> None:
        if future.exception() is not None:
            failed.set()
        slots.release()

    for item in items:
        slots.acquire()
        if failed.is_set():
            slots.release()
            break
        future = executor.submit(task, item)
        future.add_done_callback(release)
        futures.append(future)

    done, _ = wait(futures, return_when=FIRST_EXCEPTION)
    for future in done:
        if future.exception() is not None:
            raise future.exception()
    return [future.result() for future in futures]


class BuildPipeline:
    def __init__(self, config: SiteConfig, views: Optional[ViewRenderer] = None, scanner: Optional[SourceScanner] = None):
        self.config = config
        self.scanner = scanner or SourceScanner(config)
        self.views = views or ViewRenderer(config.input.views_dir)

    @property
    def output_dir(self) -> Path:
        return self.config.output_dir

    def run(self, now: Optional[dt.datetime] = None) -> int:
        now = now or dt.datetime.now(dt.timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=dt.timezone.utc)
        gravatars = GravatarCache()
        workers = self.config.worker_count
        self.output_dir.mkdir(parents=True, exist_ok=True)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="mdsite-worker") as pool:
            pages = self.load_pages(pool, gravatars, now)
            site_pages = finalize(pages)
            planned = {
                index: plan_virtual_pages(definition, pages)
                for index, definition in enumerate(self.config.input.virtual_pages)
            }
            self.check_slugs(pages, [item for items in planned.values() for item in items])

            with ThreadPoolExecutor(max_workers=5, thread_name_prefix="mdsite-stage") as stages:
                futures = [
                    stages.submit(write_rss, self.config.output.rss, self.output_dir, pages, now),
                    stages.submit(write_index, self.config.output.index, self.output_dir, pages),
                    stages.submit(self.render_pages, pool, site_pages),
                    stages.submit(self.render_virtual_pages, pool, planned, gravatars),
                    stages.submit(self.copy_assets),
                ]
                done, _ = wait(futures, return_when=FIRST_EXCEPTION)
                for future in done:
                    if future.exception() is not None:
                        raise future.exception()

        logger.info(
            "Found %d files in %s and rendered them in %s",
            len(pages),
            self.config.input.location,
            self.output_dir,
        )
        if self.config.post_processing:
            self.post_process()
        return len(pages)

    def load_pages(self, pool: ThreadPoolExecutor, gravatars: GravatarCache, now: dt.datetime) -> list[Page]:
        reference = now if self.config.output.not_before_today else None
        if reference is not None:
            logger.info("Using today=%s", reference.isoformat())
        loader = ContentLoader(self.config.input.root, self.config.output.attributes, gravatars)
        pages: list[Page] = []
        lock = threading.Lock()

        def load(source: str) -> None:
            page = loader.load(source)
            if not is_published(page, reference):
                return
            with lock:
                pages.append(page)

        run_bounded(pool, load, self.scanner.scan_sources())
        return pages

    def check_slugs(self, pages: list[Page], planned: list[VirtualPage]) -> None:
        collisions = find_slug_collisions(pages, planned)
        for slug, count in sorted(collisions.items()):
            logger.warning("Slug '%s' is produced by %d pages, output '%s.html' will be overwritten", slug, count, slug)
        if collisions and self.config.output.strict_slugs:
            raise RenderError(f"Duplicated slugs: {', '.join(sorted(collisions))}")

    def render_pages(self, pool: ThreadPoolExecutor, site_pages: list[SitePage]) -> None:
        run_bounded(pool, lambda page: render_page(self.views, self.output_dir, page), site_pages)

    def render_virtual_pages(
        self,
        pool: ThreadPoolExecutor,
        planned: dict[int, list[VirtualPage]],
        gravatars: GravatarCache,
    ) -> None:
        definitions = self.config.input.virtual_pages
        if not definitions:
            return

        def render(index: int) -> None:
            definition: PageDefinition = definitions[index]
            render_virtual_pages(
                self.views,
                self.output_dir,
                definition,
                planned[index],
                self.config.output.attributes,
                gravatars,
            )

        run_bounded(pool, render, range(len(definitions)))

    def copy_assets(self) -> None:
        assets = self.scanner.scan_assets()
        if assets:
            copy_assets(self.config.input.assets_dir, assets, self.output_dir)
            logger.info("Copied %d assets to %s", len(assets), self.output_dir)
        if self.config.output.highlight_style:
            write_highlight_css(self.output_dir, self.config.output.highlight_style)

    def post_process(self) -> None:
        for counter, step in enumerate(self.config.post_processing, start=1):
            if step.log_message:
                logger.info("%s", step.log_message)
            cwd = self.config.input.root
            if step.work_dir:
                cwd = cwd / step.work_dir
            env = dict(os.environ)
            for entry in step.environment:
                key, value = entry.split("=", 1)
                env[key] = value
            try:
                result = subprocess.run(step.command, cwd=cwd, env=env, check=False)
            except OSError as exc:
                raise PostProcessingError(f"Can't start process '{step.command[0]}' (#{counter}): {exc}") from exc
            if result.returncode != 0:
                raise PostProcessingError(
                    f"Invalid exit status for post-processing '{step.command[0]}' (#{counter}): {result.returncode}"
                )
