from __future__ import annotations

import argparse
import functools
import logging
import sys
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional

from .config import SiteConfig, load_config, site_config_from_dict
from .models import SiteError
from .pipeline import BuildPipeline
from .watcher import FileWatcher, RebuildCoordinator

logger = logging.getLogger("mdsite")

COMMANDS = ("build", "watch", "serve")
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str) -> None:
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level.upper())


def apply_overrides(config: SiteConfig, args: argparse.Namespace) -> SiteConfig:
    config.input.location = args.input
    config.output.location = args.output
    config.output.not_before_today = args.not_before_today
    config.workers = args.workers
    config.watch.debouncing = args.debounce
    config.serve.port = args.port
    return config


def build_once(pipeline: BuildPipeline) -> None:
    logger.info("Rebuilding '%s'", pipeline.config.input.location)
    start = time.perf_counter()
    try:
        pipeline.run()
    except Exception:
        logger.exception("Rendering failed")
        return
    logger.info("Build completed in %.2fs.", time.perf_counter() - start)


def build(config: SiteConfig) -> int:
    start = time.perf_counter()
    count = BuildPipeline(config).run()
    logger.info("Build completed in %.2fs, %d pages.", time.perf_counter() - start, count)
    return 0


def watch(config: SiteConfig, stop: Optional[threading.Event] = None) -> int:
    pipeline = BuildPipeline(config)
    build_once(pipeline)
    stop = stop or threading.Event()
    with RebuildCoordinator(functools.partial(build_once, pipeline), config.watch.debounce_seconds) as coordinator:
        with FileWatcher(config, coordinator.notify):
            try:
                while not stop.wait(1):
                    pass
            except KeyboardInterrupt:
                logger.info("Stopped watching.")
    return 0


def serve(config: SiteConfig) -> int:
    pipeline = BuildPipeline(config)
    build_once(pipeline)
    output_dir = config.output_dir.resolve()
    handler = functools.partial(SimpleHTTPRequestHandler, directory=str(output_dir))
    coordinator: Optional[RebuildCoordinator] = None
    watcher: Optional[FileWatcher] = None
    if config.serve.watch_enabled:
        coordinator = RebuildCoordinator(functools.partial(build_once, pipeline), config.watch.debounce_seconds).start()
        watcher = FileWatcher(config, coordinator.notify).start()
    else:
        logger.info("Not watching changes")
    try:
        with ThreadingHTTPServer((config.serve.host, config.serve.port), handler) as httpd:
            logger.info("Serving %s at http://%s:%d/", output_dir, config.serve.host, config.serve.port)
            try:
                httpd.serve_forever()
            except KeyboardInterrupt:
                logger.info("Stopping server.")
    finally:
        if watcher is not None:
            watcher.stop()
        if coordinator is not None:
            coordinator.stop()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    pre_parser = argparse.ArgumentParser(add_help=False)
    pre_parser.add_argument(
        "--config",
        default="site.toml",
        help="Path to site config file (TOML/YAML/JSON).",
    )
    pre_args, _ = pre_parser.parse_known_args(argv)
    try:
        config = site_config_from_dict(load_config(Path(pre_args.config)))
    except SiteError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    parser = argparse.ArgumentParser(description="Markdown static site builder.")
    parser.add_argument("command", nargs="?", default="build", choices=COMMANDS, help="What to do.")
    parser.add_argument("--config", default=pre_args.config, help="Path to site config file (TOML/YAML/JSON).")
    parser.add_argument("--input", default=config.input.location, help="Site source directory.")
    parser.add_argument("--output", default=config.output.location, help="Output directory for the site.")
    parser.add_argument(
        "--not-before-today",
        action=argparse.BooleanOptionalAction,
        default=config.output.not_before_today,
        help="Skip pages whose published-on date is in the future.",
    )
    parser.add_argument(
        "--workers",
        default=config.workers,
        type=int,
        help="Number of worker threads for loading/rendering (0 = auto).",
    )
    parser.add_argument(
        "--debounce",
        default=config.watch.debouncing,
        type=int,
        help="Milliseconds to wait for changes to settle before rebuilding.",
    )
    parser.add_argument("--port", default=config.serve.port, type=int, help="Port used by the serve command.")
    parser.add_argument("--log-level", default="INFO", help="Logging level.")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    config = apply_overrides(config, args)
    if not config.input.root.is_dir():
        print(f"Input directory not found: {config.input.root}", file=sys.stderr)
        return 1

    try:
        if args.command == "watch":
            return watch(config)
        if args.command == "serve":
            return serve(config)
        return build(config)
    except SiteError as exc:
        logger.error("%s", exc)
        return 1
