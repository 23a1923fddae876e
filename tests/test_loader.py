"""Tests for ContentLoader and the publish-date filter."""

import datetime as dt

import pytest

from mdsite.cache import GravatarCache
from mdsite.loader import ContentLoader, is_published
from mdsite.models import LoadError, RenderError

NOW = dt.datetime(2024, 6, 15, 12, 0, tzinfo=dt.timezone.utc)


class TestContentLoader:
    @pytest.fixture
    def loader(self, tmp_path):
        return ContentLoader(tmp_path, {"Key1": "global"}, GravatarCache())

    def test_load(self, tmp_path, loader):
        (tmp_path / "blog").mkdir()
        (tmp_path / "blog" / "post.md").write_text("---\ntitle: Post\nauthor: alice\n---\nSome *text*.\n")

        page = loader.load("blog/post.md")

        assert page.source == "blog/post.md"
        assert page.slug == "blog/post"
        assert page.title == "Post"
        assert page.attribute("Key1") == "global"
        assert page.body() == "<p>Some <em>text</em>.</p>"

    def test_explicit_slug(self, tmp_path, loader):
        (tmp_path / "post.md").write_text("---\nslug: archive/first.md\n---\nx\n")

        assert loader.load("post.md").slug == "archive/first"

    def test_body_is_rendered_once(self, tmp_path):
        calls = []

        def render(document):
            calls.append(document)
            return "<p>x</p>"

        loader = ContentLoader(tmp_path, {}, GravatarCache(), render_body=render)
        (tmp_path / "post.md").write_text("x\n")

        page = loader.load("post.md")
        assert calls == []
        page.body()
        page.body()
        assert len(calls) == 1

    def test_parse_failure_names_the_file(self, tmp_path, loader):
        (tmp_path / "broken.md").write_text("---\ntitle: never closed\n")

        with pytest.raises(LoadError) as info:
            loader.load("broken.md")

        assert info.value.source == "broken.md"
        assert "broken.md" in str(info.value)

    def test_invalid_date_fails_the_load(self, tmp_path, loader):
        (tmp_path / "post.md").write_text("---\npublished-on: tomorrow\n---\nx\n")

        with pytest.raises(LoadError):
            loader.load("post.md")

    def test_missing_file(self, loader):
        with pytest.raises(LoadError):
            loader.load("missing.md")

    def test_render_failure(self, tmp_path):
        def render(document):
            raise ValueError("bad markup")

        loader = ContentLoader(tmp_path, {}, GravatarCache(), render_body=render)
        (tmp_path / "post.md").write_text("x\n")
        page = loader.load("post.md")

        with pytest.raises(RenderError) as info:
            page.body()
        assert "post.md" in str(info.value)


class TestIsPublished:
    @pytest.fixture
    def loader(self, tmp_path):
        return ContentLoader(tmp_path, {}, GravatarCache())

    def write(self, tmp_path, loader, date=None):
        header = f"---\npublished-on: {date}\n---\n" if date else ""
        (tmp_path / "post.md").write_text(header + "x\n")
        return loader.load("post.md")

    def test_undated_is_always_published(self, tmp_path, loader):
        assert is_published(self.write(tmp_path, loader), NOW)

    def test_future_page_dropped(self, tmp_path, loader):
        assert not is_published(self.write(tmp_path, loader, "20240616"), NOW)

    def test_today_is_published(self, tmp_path, loader):
        assert is_published(self.write(tmp_path, loader, "20240615"), NOW)

    def test_past_is_published(self, tmp_path, loader):
        assert is_published(self.write(tmp_path, loader, "20200101"), NOW)

    def test_filter_disabled(self, tmp_path, loader):
        assert is_published(self.write(tmp_path, loader, "29990101"), None)
