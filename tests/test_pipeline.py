"""End to end builds over a temporary site."""

import datetime as dt
import json
import sys
from concurrent.futures import ThreadPoolExecutor

import pytest

from mdsite.config import PageDefinition, PostProcessingStep, SiteConfig
from mdsite.models import LoadError, PostProcessingError, RenderError
from mdsite.pipeline import BuildPipeline, run_bounded
from mdsite.scanner import SourceScanner, matches_any

NOW = dt.datetime(2024, 6, 15, 12, 0, tzinfo=dt.timezone.utc)

DEFAULT_VIEW = "<h1>{{ page.title }}</h1>\n{{ page.body() }}\n<p>{{ page.pages | length }} pages</p>\n"
LIST_VIEW = (
    "{{ page.title }} "
    "{{ page.attribute('paginationCurrentPage') }}/{{ page.attribute('paginationTotalPages') }}\n"
    "{% for item in page.pages %}{{ item.slug }}\n{% endfor %}"
)


def write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.fixture
def site(tmp_path):
    write(tmp_path / "_views" / "default.html", DEFAULT_VIEW)
    write(tmp_path / "_views" / "post-list.html", LIST_VIEW)
    write(tmp_path / "index.md", "# Index\n\nBla bla\n")
    write(
        tmp_path / "blog" / "first.md",
        "---\ntitle: First\nauthor: alice\npublished-on: 20240101\ncategory: java\n---\nHello *world*\n",
    )
    return tmp_path


def make_config(root, **output):
    config = SiteConfig()
    config.input.location = str(root)
    config.output.not_before_today = output.pop("not_before_today", False)
    for key, value in output.items():
        setattr(config.output, key, value)
    config.workers = 2
    return config


class TestBuild:
    def test_pages_feed_and_index(self, site):
        count = BuildPipeline(make_config(site)).run(NOW)

        out = site / "_site"
        assert count == 2
        assert (out / "index.html").read_text(encoding="utf-8") == "<h1>Index</h1>\n<p>Bla bla</p>\n<p>2 pages</p>\n"
        assert "<em>world</em>" in (out / "blog" / "first.html").read_text(encoding="utf-8")

        rss = (out / "rss.xml").read_text(encoding="utf-8")
        assert rss.count("<item>") == 2
        assert rss.index("<title>First</title>") < rss.index("<title>Index</title>")

        index = json.loads((out / "index.json").read_text(encoding="utf-8"))
        assert [item["slug"] for item in index["items"]] == ["blog/first", "index"]

    def test_body_is_not_escaped_but_title_is(self, site):
        write(site / "amp.md", "---\ntitle: A & B\n---\n*x*\n")

        BuildPipeline(make_config(site)).run(NOW)

        text = (site / "_site" / "amp.html").read_text(encoding="utf-8")
        assert text == "<h1>A &amp; B</h1>\n<p><em>x</em></p>\n<p>3 pages</p>\n"

    def test_views_and_output_are_not_sources(self, site):
        write(site / "_views" / "notes.md", "not a page")
        write(site / "_site" / "stale.md", "not a page")

        assert BuildPipeline(make_config(site)).run(NOW) == 2

    def test_future_pages_are_dropped(self, site):
        write(site / "blog" / "later.md", "---\npublished-on: 20240616\n---\nSoon\n")

        count = BuildPipeline(make_config(site, not_before_today=True)).run(NOW)

        assert count == 2
        assert not (site / "_site" / "blog" / "later.html").exists()

    def test_global_attributes(self, site):
        write(site / "_views" / "default.html", "{{ page.attribute('owner') }}")

        BuildPipeline(make_config(site, attributes={"owner": "me"})).run(NOW)

        assert (site / "_site" / "index.html").read_text(encoding="utf-8") == "me"

    def test_view_attribute(self, site):
        write(site / "_views" / "landing.html", "landing {{ page.slug }}")
        write(site / "home.md", "---\nview: landing\n---\nx\n")

        BuildPipeline(make_config(site)).run(NOW)

        assert (site / "_site" / "home.html").read_text(encoding="utf-8") == "landing home"

    def test_assets_and_highlight_css(self, site):
        write(site / "_assets" / "css" / "site.css", "body {}")
        write(site / "_assets" / "notes.txt", "ignored")

        BuildPipeline(make_config(site, highlight_style="default")).run(NOW)

        out = site / "_site"
        assert (out / "css" / "site.css").read_text(encoding="utf-8") == "body {}"
        assert not (out / "notes.txt").exists()
        assert ".codehilite" in (out / "codehilite.css").read_text(encoding="utf-8")

    def test_rebuild_overwrites(self, site):
        pipeline = BuildPipeline(make_config(site))
        pipeline.run(NOW)
        write(site / "index.md", "# Changed\n")

        pipeline.run(NOW)

        assert (site / "_site" / "index.html").read_text(encoding="utf-8").startswith("<h1>Changed</h1>")


class TestVirtualPages:
    def test_paginated_listing(self, site):
        for name in ("second", "third"):
            write(site / "blog" / f"{name}.md", f"---\ncategory: java\npublished-on: 2024020{len(name)}\n---\nx\n")
        config = make_config(site)
        config.input.virtual_pages = [
            PageDefinition(
                slug="blog/page-{Page}",
                title="Blog",
                view="post-list",
                paginated=True,
                per_value=False,
                page_size=1,
            )
        ]

        BuildPipeline(config).run(NOW)

        out = site / "_site" / "blog"
        pages = [(out / f"page-{number}.html").read_text(encoding="utf-8") for number in (1, 2, 3)]
        assert pages == [
            "Blog 1/3\nblog/second\n",
            "Blog 2/3\nblog/third\n",
            "Blog 3/3\nblog/first\n",
        ]
        assert not (out / "page-4.html").exists()

    def test_per_value_listing(self, site):
        write(site / "blog" / "other.md", "---\ncategory: python, java\n---\nx\n")
        config = make_config(site)
        config.input.virtual_pages = [
            PageDefinition(slug="category/{Value}/{Page}", title="{Value}", view="post-list", paginated=True)
        ]

        BuildPipeline(config).run(NOW)

        out = site / "_site" / "category"
        assert (out / "java" / "1.html").read_text(encoding="utf-8").startswith("java 1/1\n")
        assert (out / "python" / "1.html").read_text(encoding="utf-8") == "python 1/1\nblog/other\n"

    def test_per_value_slug_stays_in_output(self, site):
        write(site / "blog" / "other.md", "---\ncategory: ../../up\n---\nx\n")
        config = make_config(site)
        config.input.virtual_pages = [
            PageDefinition(slug="category/{Value}/{Page}", title="{Value}", view="post-list", paginated=True)
        ]

        with pytest.raises(RenderError):
            BuildPipeline(config).run(NOW)

        assert not (site / "up").exists()

    def test_strict_slug_collision(self, site):
        config = make_config(site, strict_slugs=True)
        config.input.virtual_pages = [PageDefinition(slug="index", title="Other")]

        with pytest.raises(RenderError):
            BuildPipeline(config).run(NOW)

    def test_slug_collision_is_tolerated(self, site):
        config = make_config(site)
        config.input.virtual_pages = [PageDefinition(slug="index", title="Other")]

        assert BuildPipeline(config).run(NOW) == 2


class TestFailures:
    def test_load_failure(self, site):
        write(site / "broken.md", "---\ntitle: broken\n")

        with pytest.raises(LoadError) as info:
            BuildPipeline(make_config(site)).run(NOW)

        assert info.value.source == "broken.md"
        assert not (site / "_site" / "index.html").exists()

    def test_missing_view(self, site):
        write(site / "other.md", "---\nview: nope\n---\nx\n")

        with pytest.raises(RenderError):
            BuildPipeline(make_config(site)).run(NOW)

    def test_slug_outside_output(self, site):
        write(site / "escape.md", "---\nslug: ../../escaped\n---\nx\n")

        with pytest.raises(RenderError, match="outside"):
            BuildPipeline(make_config(site)).run(NOW)

        assert not (site.parent / "escaped.html").exists()

    def test_post_processing(self, site):
        config = make_config(site)
        config.post_processing = [
            PostProcessingStep(
                command=[sys.executable, "-c", "import os; open('done.txt', 'w').write(os.environ['MARK'])"],
                work_dir="_site",
                environment=["MARK=ok"],
                log_message="Marking",
            )
        ]

        BuildPipeline(config).run(NOW)

        assert (site / "_site" / "done.txt").read_text(encoding="utf-8") == "ok"

    def test_post_processing_failure(self, site):
        config = make_config(site)
        config.post_processing = [PostProcessingStep(command=[sys.executable, "-c", "raise SystemExit(3)"])]

        with pytest.raises(PostProcessingError, match="3"):
            BuildPipeline(config).run(NOW)


class TestRunBounded:
    def test_results_in_order(self):
        with ThreadPoolExecutor(max_workers=4) as pool:
            assert run_bounded(pool, lambda value: value * 2, range(10), capacity=2) == list(range(0, 20, 2))

    def test_first_failure_is_raised(self):
        def task(value):
            if value == 3:
                raise ValueError("three")
            return value

        with ThreadPoolExecutor(max_workers=1) as pool:
            with pytest.raises(ValueError, match="three"):
                run_bounded(pool, task, range(100), capacity=1)


class TestScanner:
    def test_root_level_match(self):
        assert matches_any("index.md", ["**/*.md"])
        assert matches_any("blog/Post.MD", ["**/*.md"])
        assert not matches_any("index.markdown", ["**/*.md"])

    def test_partials_excluded(self, site):
        write(site / "blog" / "header.partial.md", "partial")
        write(site / "notes.markdown", "# Notes\n")

        sources = SourceScanner(make_config(site)).scan_sources()

        assert sources == ["blog/first.md", "index.md", "notes.markdown"]
