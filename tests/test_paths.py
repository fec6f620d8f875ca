"""Unit tests for URL normalization and local path mapping."""

from __future__ import annotations

import hashlib
import re
from pathlib import Path

import pytest

from site_cloner import (
    asset_ref_for_page,
    is_skippable_href,
    local_asset_path_for_url,
    local_html_path_for_url,
    normalize_page_url,
    origin_of,
    page_relpath_for_url,
    sanitize_domain,
    validate_target_url,
    InvalidTargetUrl,
)


class TestPageMapping:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://example.test/", "index.html"),
            ("https://example.test", "index.html"),
            ("https://example.test/about/", "about/index.html"),
            ("https://example.test/about", "about/index.html"),
            ("https://example.test/docs/guide.html", "docs/guide.html"),
            ("https://example.test/blog/?page=2#top", "blog/index.html"),
            ("https://example.test/../../etc/passwd", "etc/passwd/index.html"),
        ],
    )
    def test_page_relpath(self, url: str, expected: str) -> None:
        assert page_relpath_for_url(url) == expected

    def test_local_html_path_stays_under_root(self, tmp_path: Path) -> None:
        path = local_html_path_for_url("https://example.test//nested/page", tmp_path)

        assert path == tmp_path / "nested" / "page" / "index.html"


class TestAssetMapping:
    def test_asset_path_format(self) -> None:
        url = "https://cdn.test/img/logo.png"
        expected_hash = hashlib.md5(url.encode("utf-8")).hexdigest()[:6]

        assert local_asset_path_for_url(url) == f"assets/{expected_hash}-img_logo.png"

    def test_asset_path_is_idempotent(self) -> None:
        url = "https://example.test/static/app.js?v=3"

        assert local_asset_path_for_url(url) == local_asset_path_for_url(url)

    def test_same_basename_different_urls_do_not_collide(self) -> None:
        a = local_asset_path_for_url("https://a.test/logo.png")
        b = local_asset_path_for_url("https://b.test/logo.png")

        assert a != b
        assert a.endswith("-logo.png") and b.endswith("-logo.png")

    def test_query_variants_get_distinct_paths(self) -> None:
        a = local_asset_path_for_url("https://example.test/style.css?v=1")
        b = local_asset_path_for_url("https://example.test/style.css?v=2")

        assert a != b

    def test_empty_path_falls_back_to_asset(self) -> None:
        assert re.fullmatch(
            r"assets/[0-9a-f]{6}-asset", local_asset_path_for_url("https://fonts.test")
        )

    def test_asset_ref_is_relative_to_page(self) -> None:
        asset = "https://example.test/app.js"
        local = local_asset_path_for_url(asset)

        assert asset_ref_for_page(asset, "https://example.test/") == local
        assert asset_ref_for_page(asset, "https://example.test/about/") == "../" + local
        assert (
            asset_ref_for_page(asset, "https://example.test/docs/a.html") == "../" + local
        )


class TestUrlHelpers:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://example.test/about?x=1#frag", "https://example.test/about/"),
            ("https://example.test/about/", "https://example.test/about/"),
            ("https://example.test/file.pdf?dl=1", "https://example.test/file.pdf"),
            ("https://Example.TEST", "https://example.test/"),
            ("https://example.test:443/about", "https://example.test/about/"),
            ("http://example.test:80/", "http://example.test/"),
            ("https://example.test:8443/a/", "https://example.test:8443/a/"),
        ],
    )
    def test_normalize_page_url(self, url: str, expected: str) -> None:
        assert normalize_page_url(url) == expected

    def test_origin_ignores_default_port(self) -> None:
        assert origin_of("https://example.test:443/a") == "https://example.test"
        assert origin_of("http://example.test:8080/a") == "http://example.test:8080"

    @pytest.mark.parametrize(
        "href", ["", "#top", "mailto:a@b.test", "tel:123", "javascript:void(0)"]
    )
    def test_skippable_hrefs(self, href: str) -> None:
        assert is_skippable_href(href)

    def test_regular_href_is_not_skippable(self) -> None:
        assert not is_skippable_href("/about/")

    def test_validate_target_url_adds_root_path(self) -> None:
        assert validate_target_url("https://example.test") == "https://example.test/"

    @pytest.mark.parametrize(
        "url", ["ftp://example.test/", "example.test", "https://", "", "http://[::1"]
    )
    def test_validate_target_url_rejects(self, url: str) -> None:
        with pytest.raises(InvalidTargetUrl):
            validate_target_url(url)

    def test_sanitize_domain(self) -> None:
        assert sanitize_domain("example.test:8080") == "example.test_8080"
