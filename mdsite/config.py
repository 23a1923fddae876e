from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from .models import ConfigError
from .utils import parse_bool, parse_int, resolve_workers

try:
    import tomllib as toml
except ImportError:
    import tomli as toml


def load_config(path: Path) -> dict:
    if not path.exists():
        return {}
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")
    if suffix == ".toml":
        try:
            data = toml.loads(text)
        except toml.TOMLDecodeError as exc:
            raise ConfigError(f"Invalid TOML in config file {path}: {exc}") from exc
    elif suffix in {".yml", ".yaml"}:
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in config file {path}: {exc}") from exc
        if data is None:
            return {}
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config must be a mapping: {path}")
    return data


@dataclass
class GlobbingConfig:
    includes: list[str] = field(default_factory=list)
    excludes: list[str] = field(default_factory=list)


@dataclass
class PageDefinition:
    """A page with no source file, usually a paginated listing.

    ``slug`` and ``title`` may use ``{Page}`` (1-based page number) and
    ``{Value}`` (the grouping value when ``per_value``). Slugs use ``/`` as
    separator and must not start with one.
    """

    slug: str = ""
    title: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    view: str = "default"
    paginated: bool = False
    per_value: bool = True
    page_size: int = 10
    criteria_attribute: str = "category"
    order_by_attribute: str = "published-on"
    reverse_order_by: bool = True


@dataclass
class InputConfig:
    location: str = "."
    view: str = "_views"
    assets_location: str = "_assets"
    sources: GlobbingConfig = field(
        default_factory=lambda: GlobbingConfig(
            includes=["**/*.md", "**/*.markdown"],
            excludes=["**/*.partial.md", "**/*.partial.markdown"],
        )
    )
    assets: GlobbingConfig = field(
        default_factory=lambda: GlobbingConfig(
            includes=["**/*.css", "**/*.js", "**/*.jpg", "**/*.png", "**/*.gif", "**/*.svg"],
            excludes=["**/_site/**"],
        )
    )
    virtual_pages: list[PageDefinition] = field(default_factory=list)

    @property
    def root(self) -> Path:
        return Path(self.location)

    @property
    def views_dir(self) -> Path:
        return self.root / self.view

    @property
    def assets_dir(self) -> Path:
        return self.root / self.assets_location


@dataclass
class RssConfig:
    enabled: bool = True
    location: str = "rss.xml"
    title: str = "Blog"
    description: str = "Blog"
    link: str = "http://localhost:4200"
    copyright: str = "Built with mdsite"
    ttl: int = 1800


@dataclass
class IndexConfig:
    enabled: bool = True
    location: str = "index.json"
    attributes: Optional[list[str]] = None


@dataclass
class OutputConfig:
    location: str = "_site"
    not_before_today: bool = True
    attributes: dict[str, str] = field(default_factory=dict)
    highlight_style: str = ""
    strict_slugs: bool = False
    rss: RssConfig = field(default_factory=RssConfig)
    index: IndexConfig = field(default_factory=IndexConfig)


@dataclass
class WatchConfig:
    debouncing: int = 250

    @property
    def debounce_seconds(self) -> float:
        return max(0, self.debouncing) / 1000.0


@dataclass
class ServeConfig:
    watch_enabled: bool = True
    host: str = "localhost"
    port: int = 4200


@dataclass
class PostProcessingStep:
    command: list[str] = field(default_factory=list)
    work_dir: str = ""
    environment: list[str] = field(default_factory=list)
    log_message: str = ""


@dataclass
class SiteConfig:
    input: InputConfig = field(default_factory=InputConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    serve: ServeConfig = field(default_factory=ServeConfig)
    post_processing: list[PostProcessingStep] = field(default_factory=list)
    workers: int = 0

    @property
    def output_dir(self) -> Path:
        location = Path(self.output.location)
        if location.is_absolute():
            return location
        return self.input.root / location

    @property
    def worker_count(self) -> int:
        return resolve_workers(self.workers)


def _normalize(data: object, where: str) -> dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"'{where}' must be a mapping")
    return {str(key).replace("-", "_").lower(): value for key, value in data.items()}


def _str_list(value: object, where: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{where}' must be a list")
    return [str(item) for item in value]


def _str_map(value: object, where: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{where}' must be a mapping")
    return {str(key): "" if item is None else str(item) for key, item in value.items()}


def _globbing(data: object, default: GlobbingConfig, where: str) -> GlobbingConfig:
    values = _normalize(data, where)
    if not values:
        return default
    return GlobbingConfig(
        includes=_str_list(values.get("includes", default.includes), f"{where}.includes"),
        excludes=_str_list(values.get("excludes", default.excludes), f"{where}.excludes"),
    )


def _page_definition(data: object, index: int) -> PageDefinition:
    where = f"input.virtual-pages[{index}]"
    values = _normalize(data, where)
    default = PageDefinition()
    definition = PageDefinition(
        slug=str(values.get("slug", default.slug)),
        title=str(values.get("title", default.title)),
        attributes=_str_map(values.get("attributes"), f"{where}.attributes"),
        view=str(values.get("view", default.view)),
        paginated=parse_bool(values.get("paginated", default.paginated)),
        per_value=parse_bool(values.get("per_value", default.per_value)),
        page_size=parse_int(values.get("page_size"), default.page_size),
        criteria_attribute=str(values.get("criteria_attribute", default.criteria_attribute)),
        order_by_attribute=str(values.get("order_by_attribute", default.order_by_attribute)),
        reverse_order_by=parse_bool(values.get("reverse_order_by", default.reverse_order_by)),
    )
    if not definition.slug:
        raise ConfigError(f"'{where}.slug' is required")
    if definition.slug.startswith("/"):
        raise ConfigError(f"'{where}.slug' must be relative: {definition.slug}")
    if definition.page_size <= 0:
        raise ConfigError(f"'{where}.page-size' must be positive")
    return definition


def _post_processing(data: object, index: int) -> PostProcessingStep:
    where = f"post-processing[{index}]"
    values = _normalize(data, where)
    command = _str_list(values.get("command"), f"{where}.command")
    if not command:
        raise ConfigError(f"'{where}.command' is required")
    environment = _str_list(values.get("environment"), f"{where}.environment")
    for entry in environment:
        if "=" not in entry:
            raise ConfigError(f"'{where}.environment' entries must look like KEY=VALUE: {entry}")
    return PostProcessingStep(
        command=command,
        work_dir=str(values.get("work_dir") or ""),
        environment=environment,
        log_message=str(values.get("log_message") or ""),
    )


def site_config_from_dict(data: dict) -> SiteConfig:
    root = _normalize(data, "config")
    input_values = _normalize(root.get("input"), "input")
    output_values = _normalize(root.get("output"), "output")
    rss_values = _normalize(output_values.get("rss"), "output.rss")
    index_values = _normalize(output_values.get("index"), "output.index")
    watch_values = _normalize(root.get("watch"), "watch")
    serve_values = _normalize(root.get("serve"), "serve")

    defaults = InputConfig()
    virtual_pages = root.get("virtual_pages", input_values.get("virtual_pages")) or []
    site_input = InputConfig(
        location=str(input_values.get("location", defaults.location)),
        view=str(input_values.get("view", defaults.view)),
        assets_location=str(input_values.get("assets_location", defaults.assets_location)),
        sources=_globbing(input_values.get("sources"), defaults.sources, "input.sources"),
        assets=_globbing(input_values.get("assets"), defaults.assets, "input.assets"),
        virtual_pages=[_page_definition(item, i) for i, item in enumerate(virtual_pages)],
    )

    rss_defaults = RssConfig()
    index_attributes = index_values.get("attributes")
    output_defaults = OutputConfig()
    site_output = OutputConfig(
        location=str(output_values.get("location", output_defaults.location)),
        not_before_today=parse_bool(output_values.get("not_before_today", output_defaults.not_before_today)),
        attributes=_str_map(output_values.get("attributes"), "output.attributes"),
        highlight_style=str(output_values.get("highlight_style") or ""),
        strict_slugs=parse_bool(output_values.get("strict_slugs", output_defaults.strict_slugs)),
        rss=RssConfig(
            enabled=parse_bool(rss_values.get("enabled", rss_defaults.enabled)),
            location=str(rss_values.get("location", rss_defaults.location)),
            title=str(rss_values.get("title", rss_defaults.title)),
            description=str(rss_values.get("description", rss_defaults.description)),
            link=str(rss_values.get("link", rss_defaults.link)),
            copyright=str(rss_values.get("copyright", rss_defaults.copyright)),
            ttl=parse_int(rss_values.get("ttl"), rss_defaults.ttl),
        ),
        index=IndexConfig(
            enabled=parse_bool(index_values.get("enabled", True)),
            location=str(index_values.get("location", IndexConfig().location)),
            attributes=None if index_attributes is None else _str_list(index_attributes, "output.index.attributes"),
        ),
    )

    return SiteConfig(
        input=site_input,
        output=site_output,
        watch=WatchConfig(debouncing=parse_int(watch_values.get("debouncing"), WatchConfig().debouncing)),
        serve=ServeConfig(
            watch_enabled=parse_bool(serve_values.get("watch_enabled", True)),
            host=str(serve_values.get("host", ServeConfig().host)),
            port=parse_int(serve_values.get("port"), ServeConfig().port),
        ),
        post_processing=[_post_processing(item, i) for i, item in enumerate(root.get("post_processing") or [])],
        workers=parse_int(root.get("workers"), 0),
    )
