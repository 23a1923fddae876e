"""Tests for configuration loading."""

import pytest

from mdsite.config import load_config, site_config_from_dict
from mdsite.models import ConfigError
from mdsite.utils import resolve_workers

TOML = """
workers = 4

[input]
location = "site"

[[input.virtual-pages]]
slug = "blog/{Page}"
title = "Posts"
view = "post-list"
paginated = true
per-value = false
page-size = 5

[output]
location = "public"
not-before-today = false

[output.attributes]
author = "Me"

[output.rss]
title = "My blog"
ttl = 60

[output.index]
attributes = ["index-title"]

[watch]
debouncing = 100

[[post-processing]]
command = ["npx", "pagefind"]
environment = ["NODE_ENV=production"]
log-message = "Indexing"
"""


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        assert load_config(tmp_path / "site.toml") == {}

    def test_toml(self, tmp_path):
        path = tmp_path / "site.toml"
        path.write_text(TOML, encoding="utf-8")

        config = site_config_from_dict(load_config(path))

        assert config.workers == 4
        assert config.input.location == "site"
        assert config.output_dir.as_posix() == "site/public"
        assert config.output.not_before_today is False
        assert config.output.attributes == {"author": "Me"}
        assert config.output.rss.title == "My blog"
        assert config.output.rss.ttl == 60
        assert config.output.index.attributes == ["index-title"]
        assert config.watch.debounce_seconds == 0.1
        assert config.post_processing[0].command == ["npx", "pagefind"]
        assert config.post_processing[0].log_message == "Indexing"

        definition = config.input.virtual_pages[0]
        assert definition.view == "post-list"
        assert definition.paginated is True
        assert definition.per_value is False
        assert definition.page_size == 5
        assert definition.criteria_attribute == "category"

    def test_yaml(self, tmp_path):
        path = tmp_path / "site.yaml"
        path.write_text("output:\n  location: out\n  rss:\n    enabled: false\n", encoding="utf-8")

        config = site_config_from_dict(load_config(path))

        assert config.output.location == "out"
        assert config.output.rss.enabled is False
        assert config.output.index.enabled is True

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "site.yml"
        path.write_text("", encoding="utf-8")

        assert load_config(path) == {}

    def test_json(self, tmp_path):
        path = tmp_path / "site.json"
        path.write_text('{"virtual-pages": [{"slug": "tags/{Value}", "criteria-attribute": "tags"}]}', encoding="utf-8")

        config = site_config_from_dict(load_config(path))

        assert config.input.virtual_pages[0].criteria_attribute == "tags"
        assert config.input.virtual_pages[0].per_value is True

    @pytest.mark.parametrize("name,text", [("site.toml", "[input"), ("site.yaml", "a: [b"), ("site.json", "{")])
    def test_invalid(self, tmp_path, name, text):
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "site.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ConfigError):
            load_config(path)


class TestSiteConfig:
    def test_defaults(self):
        config = site_config_from_dict({})

        assert config.input.sources.includes == ["**/*.md", "**/*.markdown"]
        assert config.output.location == "_site"
        assert config.output.not_before_today is True
        assert config.output.index.attributes is None
        assert config.watch.debouncing == 250
        assert config.serve.port == 4200
        assert config.input.virtual_pages == []

    @pytest.mark.parametrize(
        "definition",
        [
            {"title": "no slug"},
            {"slug": "/absolute"},
            {"slug": "blog/{Page}", "page-size": 0},
        ],
    )
    def test_invalid_virtual_page(self, definition):
        with pytest.raises(ConfigError):
            site_config_from_dict({"input": {"virtual-pages": [definition]}})

    def test_post_processing_needs_a_command(self):
        with pytest.raises(ConfigError):
            site_config_from_dict({"post-processing": [{"log-message": "nothing"}]})

    def test_post_processing_environment(self):
        with pytest.raises(ConfigError):
            site_config_from_dict({"post-processing": [{"command": ["true"], "environment": ["NOVALUE"]}]})

    def test_section_must_be_a_mapping(self):
        with pytest.raises(ConfigError):
            site_config_from_dict({"output": "public"})


class TestWorkers:
    def test_explicit(self):
        assert resolve_workers(3) == 3

    def test_clamped(self):
        assert resolve_workers(500) == 32

    def test_auto(self):
        assert 1 <= resolve_workers(0) <= 32
