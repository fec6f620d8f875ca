#!/usr/bin/env python3
import argparse
import hashlib
import json
import logging
import os
import posixpath
import re
import shutil
import sys
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import (
    Callable,
    Deque,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)
from urllib.parse import parse_qs, urldefrag, urljoin, urlparse, urlunparse

import requests
from bs4 import BeautifulSoup, FeatureNotFound
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

# -------------------- Config --------------------

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; WebsiteCloner/1.0)"
ROBOTS_AGENT = "WebsiteCloner"

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.7",
}

ASSETS_DIRNAME = "assets"
METADATA_FILENAME = ".clone-metadata.json"
METADATA_VERSION = "1.0"
LEGACY_CLONED_AT = "Unknown (legacy clone)"

SKIPPABLE_HREF_PREFIXES = ("#", "mailto:", "tel:", "javascript:")
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
TRANSIENT_IMG_ATTRS = ("data-src", "data-nimg", "decoding", "loading")
DEFAULT_PORTS = {"http": 80, "https": 443}

SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")
INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*]')
UNSAFE_DOMAIN_CHARS_RE = re.compile(r"[^a-zA-Z0-9.-]")
CRAWL_DELAY_RE = re.compile(r"(\d+)")


# -------------------- Settings --------------------


@dataclass
class CloneSettings:
    out_dir: str = "cloned-websites"
    max_pages: int = 10
    mirror_external_assets: bool = True
    concurrency: int = 8
    respect_robots: bool = True

    # HTTP
    page_timeout: float = 20.0
    asset_timeout: float = 15.0
    robots_timeout: float = 10.0
    user_agent: str = DEFAULT_USER_AGENT
    robots_agent: str = ROBOTS_AGENT
    retries: int = 0


# -------------------- Errors / outcomes --------------------


class CloneError(Exception):
    """Raised when a clone cannot start at all."""


class InvalidTargetUrl(CloneError, ValueError):
    pass


class OutputDirectoryError(CloneError, OSError):
    pass


class FailureKind(str, Enum):
    NETWORK = "network"
    STATUS = "status"
    CONTENT_TYPE = "content_type"
    DECODE = "decode"
    SCHEME = "scheme"
    EXTERNAL = "external"
    FILESYSTEM = "filesystem"


# policy decisions, not failures
SKIP_KINDS = frozenset({FailureKind.SCHEME, FailureKind.EXTERNAL})


@dataclass
class Outcome:
    """Either a value or a classified failure; the caller decides whether to log."""

    value: object = None
    failure: Optional[FailureKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def skipped(self) -> bool:
        return self.failure in SKIP_KINDS

    @classmethod
    def success(cls, value: object) -> "Outcome":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: FailureKind, detail: str = "") -> "Outcome":
        return cls(failure=kind, detail=detail)


# -------------------- Utils --------------------


def sanitize_filename(name: str) -> str:
    name = INVALID_FILENAME_CHARS_RE.sub("_", name)
    name = name or "file"
    if name.startswith("."):
        name = "_" + name[1:]
    return name[:200]


def sanitize_domain(domain: str) -> str:
    return UNSAFE_DOMAIN_CHARS_RE.sub("_", domain)


def short_h(url: str, length: int = 6) -> str:
    return hashlib.md5(url.encode("utf-8")).hexdigest()[:length]


def origin_of(url: str) -> str:
    p = urlparse(url)
    scheme = p.scheme.lower()
    host = (p.hostname or "").lower()
    try:
        port = p.port
    except ValueError:
        port = None
    if port and port != DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"
    return f"{scheme}://{host}"


def is_skippable_href(href: Optional[str]) -> bool:
    if not href:
        return True
    return href.strip().lower().startswith(SKIPPABLE_HREF_PREFIXES)


def validate_target_url(url: str) -> str:
    try:
        p = urlparse((url or "").strip())
    except ValueError as e:
        raise InvalidTargetUrl(f"Invalid URL provided: {url!r} ({e})") from e
    if p.scheme.lower() not in ("http", "https"):
        raise InvalidTargetUrl(
            f"Invalid URL provided: {url!r} (only HTTP and HTTPS URLs are supported)"
        )
    if not p.hostname:
        raise InvalidTargetUrl(f"Invalid URL provided: {url!r} (missing host)")
    return urlunparse(p._replace(path=p.path or "/"))


def normalize_page_url(url: str) -> str:
    p = urlparse(url)
    path = p.path or "/"
    last = path.rsplit("/", 1)[-1]
    if not path.endswith("/") and not posixpath.splitext(last)[1]:
        path += "/"
    return origin_of(url) + path


def ensure_parent_dir(p: Path) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)


def utc_timestamp() -> str:
    # RFC3339 UTC timestamp without microseconds
    return (
        datetime.now(timezone.utc)
        .replace(microsecond=0)
        .isoformat()
        .replace("+00:00", "Z")
    )


def build_session(settings: CloneSettings) -> requests.Session:
    s = requests.Session()
    retry = Retry(
        total=settings.retries,
        backoff_factor=0.5,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods={"GET", "HEAD"},
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    pool_size = max(10, settings.concurrency)
    adapter = HTTPAdapter(
        max_retries=retry, pool_connections=pool_size, pool_maxsize=pool_size
    )
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update(DEFAULT_HEADERS)
    s.headers["User-Agent"] = settings.user_agent
    return s


# -------------------- HTML utils --------------------


def bs4_parse(html: str) -> BeautifulSoup:
    try:
        return BeautifulSoup(html, "lxml")
    except FeatureNotFound:
        return BeautifulSoup(html, "html.parser")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        return urljoin(fallback, tag["href"])
    return fallback


def serialize_html(soup: BeautifulSoup) -> str:
    return soup.decode(formatter="html")


# -------------------- Output layout --------------------


def page_relpath_for_url(page_url: str) -> str:
    path = urlparse(page_url).path or "/"
    segs = [seg for seg in path.split("/") if seg and seg not in (".", "..")]
    if path.endswith("/") or not segs:
        segs.append("index.html")
    elif not posixpath.splitext(segs[-1])[1]:
        segs.append("index.html")
    return "/".join(segs)


def local_html_path_for_url(page_url: str, output_root: Path) -> Path:
    return Path(output_root).joinpath(*page_relpath_for_url(page_url).split("/"))


def local_asset_path_for_url(asset_url: str) -> str:
    segs = [seg for seg in urlparse(asset_url).path.split("/") if seg]
    base = sanitize_filename("_".join(segs)) if segs else "asset"
    return f"{ASSETS_DIRNAME}/{short_h(asset_url)}-{base}"


def asset_ref_for_page(asset_url: str, page_url: str) -> str:
    page_dir = posixpath.dirname(page_relpath_for_url(page_url))
    return posixpath.relpath(local_asset_path_for_url(asset_url), page_dir or ".")


# -------------------- Robots --------------------


@dataclass
class RobotsPolicy:
    disallowed_paths: List[str] = field(default_factory=list)
    crawl_delay: int = 0

    def is_allowed(self, url: str) -> bool:
        path = urlparse(url).path or "/"
        return not any(path_disallowed(path, p) for p in self.disallowed_paths)


def path_disallowed(path: str, pattern: str) -> bool:
    if pattern.endswith("*"):
        return path.startswith(pattern[:-1])
    if path == pattern:
        return True
    prefix = pattern if pattern.endswith("/") else pattern + "/"
    return path.startswith(prefix)


def parse_robots_for_user_agent(text: str, user_agent: str) -> RobotsPolicy:
    current_agent: Optional[str] = None
    disallowed: List[str] = []
    crawl_delay = 0
    for raw in text.splitlines():
        line = raw.split("#", 1)[0].strip()
        if ":" not in line:
            continue
        directive, _, value = line.partition(":")
        directive = directive.strip().lower()
        value = value.strip()
        if directive == "user-agent":
            active = value == "*" or value.lower() == user_agent.lower()
            current_agent = value if active else None
        elif current_agent is None:
            continue
        elif directive == "disallow":
            # empty Disallow means "disallow nothing"
            if value:
                disallowed.append(value)
        elif directive == "crawl-delay":
            m = CRAWL_DELAY_RE.match(value)
            crawl_delay = int(m.group(1)) if m else 0
    return RobotsPolicy(disallowed_paths=disallowed, crawl_delay=crawl_delay)


def fetch_robots_policy(
    session: requests.Session, base_url: str, settings: CloneSettings
) -> RobotsPolicy:
    robots_url = urljoin(base_url, "/robots.txt")
    try:
        r = session.get(robots_url, timeout=settings.robots_timeout)
    except requests.RequestException as e:
        logging.debug("robots.txt unreachable (%s): %s", robots_url, e)
        return RobotsPolicy()
    if not 200 <= r.status_code < 300:
        logging.debug("robots.txt -> HTTP %s, assuming no rules", r.status_code)
        return RobotsPolicy()
    return parse_robots_for_user_agent(r.text, settings.robots_agent)


# -------------------- Resource URL unwrapping --------------------


@dataclass(frozen=True)
class QueryParamUnwrapRule:
    """Recovers the original resource from a proxy URL like ``/_next/image?url=...``."""

    path_marker: str
    param: str = "url"

    def matches(self, value: str) -> bool:
        return self.path_marker in value and f"{self.param}=" in value

    def unwrap(self, value: str) -> str:
        found = parse_qs(urlparse(value).query).get(self.param)
        if not found or not found[0]:
            raise ValueError(f"no {self.param}= parameter")
        return found[0]


DEFAULT_UNWRAP_RULES: Tuple[QueryParamUnwrapRule, ...] = (
    QueryParamUnwrapRule("/_next/image"),
    QueryParamUnwrapRule("/_vercel/image"),
)


def unwrap_resource_url(
    value: str, rules: Sequence[QueryParamUnwrapRule]
) -> Outcome:
    for rule in rules:
        if rule.matches(value):
            try:
                return Outcome.success(rule.unwrap(value))
            except ValueError as e:
                return Outcome.fail(FailureKind.DECODE, f"{value}: {e}")
    return Outcome.success(value)


# -------------------- Rewriters --------------------


@dataclass(frozen=True)
class RewriteRule:
    tag: str
    attribute: str
    strategy: str
    # attribute receiving the rewritten value, defaults to ``attribute``
    target: Optional[str] = None


# evaluated in order; data-src runs after src so the lazy image wins
REWRITE_RULES: Tuple[RewriteRule, ...] = (
    RewriteRule("img", "src", "image"),
    RewriteRule("img", "data-src", "image", target="src"),
    RewriteRule("img", "srcset", "srcset"),
    RewriteRule("link", "href", "asset"),
    RewriteRule("script", "src", "asset"),
    RewriteRule("a", "href", "page"),
)


@dataclass
class PageContext:
    page_url: str
    base: str
    assets: Set[str]
    discover: Callable[[str], None]


class DocumentRewriter:
    def __init__(
        self,
        root_origin: str,
        unwrap_rules: Sequence[QueryParamUnwrapRule] = DEFAULT_UNWRAP_RULES,
        rules: Sequence[RewriteRule] = REWRITE_RULES,
    ):
        self.root_origin = root_origin
        self.unwrap_rules = tuple(unwrap_rules)
        self.rules = tuple(rules)
        self._strategies = {
            "image": self._rewrite_image,
            "srcset": self._rewrite_srcset,
            "asset": self._rewrite_asset,
            "page": self._rewrite_page,
        }

    def rewrite(
        self,
        soup: BeautifulSoup,
        page_url: str,
        assets: Set[str],
        discover: Callable[[str], None],
    ) -> None:
        ctx = PageContext(
            page_url=page_url,
            base=effective_base_url(soup, page_url),
            assets=assets,
            discover=discover,
        )
        for rule in self.rules:
            strategy = self._strategies[rule.strategy]
            for tag in soup.find_all(rule.tag, attrs={rule.attribute: True}):
                value = (tag.get(rule.attribute) or "").strip()
                if value:
                    strategy(tag, rule, value, ctx)
        for img in soup.find_all("img"):
            for attr in TRANSIENT_IMG_ATTRS:
                if attr in img.attrs:
                    del img.attrs[attr]
        # local references must not resolve against the remote base
        for base_tag in soup.find_all("base", href=True):
            base_tag.decompose()

    def _resolve(self, ctx: PageContext, value: str) -> Optional[str]:
        try:
            return urljoin(ctx.base, value)
        except ValueError as e:
            logging.warning("cannot resolve %r on %s: %s", value, ctx.page_url, e)
            return None

    def _localize(self, ctx: PageContext, absolute: str) -> str:
        ctx.assets.add(absolute)
        return asset_ref_for_page(absolute, ctx.page_url)

    def _unwrap(self, ctx: PageContext, value: str) -> Optional[str]:
        outcome = unwrap_resource_url(value, self.unwrap_rules)
        if not outcome.ok:
            logging.warning(
                "failed to decode proxied image on %s: %s", ctx.page_url, outcome.detail
            )
            return None
        return outcome.value

    def _rewrite_image(
        self, tag, rule: RewriteRule, value: str, ctx: PageContext
    ) -> None:
        if value.startswith("data:"):
            return
        target = self._unwrap(ctx, value)
        if target is None:
            return
        absolute = self._resolve(ctx, target)
        if absolute:
            tag[rule.target or rule.attribute] = self._localize(ctx, absolute)

    def _rewrite_srcset(
        self, tag, rule: RewriteRule, value: str, ctx: PageContext
    ) -> None:
        parts: List[str] = []
        for candidate in SRCSET_SPLIT_RE.split(value):
            candidate = candidate.strip()
            if not candidate:
                continue
            comp = WS_RE.split(candidate)
            url_part, desc = comp[0], " ".join(comp[1:])
            if url_part.startswith("data:"):
                target = None
            else:
                target = self._unwrap(ctx, url_part)
            absolute = self._resolve(ctx, target) if target else None
            if not absolute:
                parts.append(candidate)
                continue
            parts.append(f"{self._localize(ctx, absolute)} {desc}".strip())
        tag[rule.target or rule.attribute] = ", ".join(parts)

    def _rewrite_asset(
        self, tag, rule: RewriteRule, value: str, ctx: PageContext
    ) -> None:
        if value.startswith("data:"):
            return
        absolute = self._resolve(ctx, value)
        if absolute:
            tag[rule.target or rule.attribute] = self._localize(ctx, absolute)

    def _rewrite_page(
        self, tag, rule: RewriteRule, value: str, ctx: PageContext
    ) -> None:
        if is_skippable_href(value):
            return
        absolute = self._resolve(ctx, value)
        if not absolute or origin_of(absolute) != self.root_origin:
            return
        page_url = normalize_page_url(absolute)
        tag[rule.target or rule.attribute] = urlparse(page_url).path
        ctx.discover(page_url)


# -------------------- Crawl --------------------


@dataclass
class CrawlSession:
    """Mutable state of one clone; never shared between invocations.

    The queue holds URLs exactly as they will be fetched; ``enqueued`` and
    ``visited`` hold their normalized forms.
    """

    output_root: Path
    queue: Deque[str] = field(default_factory=deque)
    enqueued: Set[str] = field(default_factory=set)
    visited: Set[str] = field(default_factory=set)
    assets: Set[str] = field(default_factory=set)
    pages_written: List[Path] = field(default_factory=list)

    def enqueue(self, url: str) -> bool:
        key = normalize_page_url(url)
        if key in self.visited or key in self.enqueued:
            return False
        self.queue.append(url)
        self.enqueued.add(key)
        return True


def fetch_page(
    session: requests.Session, url: str, settings: CloneSettings
) -> Outcome:
    try:
        r = session.get(url, timeout=settings.page_timeout)
    except requests.RequestException as e:
        return Outcome.fail(FailureKind.NETWORK, str(e))
    ct = (r.headers.get("Content-Type") or "").lower()
    if not any(t in ct for t in HTML_CONTENT_TYPES):
        return Outcome.fail(FailureKind.CONTENT_TYPE, ct or "no content-type")
    if r.status_code >= 400:
        # error pages served as HTML are kept like any other page
        logging.info("page %s returned HTTP %d", url, r.status_code)
    if "charset" not in ct:
        r.encoding = r.apparent_encoding or "utf-8"
    return Outcome.success(r.text)


def crawl_pages(
    session: requests.Session,
    crawl: CrawlSession,
    settings: CloneSettings,
    policy: RobotsPolicy,
    rewriter: DocumentRewriter,
) -> None:
    def discover(url: str) -> None:
        if settings.respect_robots and not policy.is_allowed(url):
            logging.debug("robots disallow link: %s", url)
            return
        crawl.enqueue(url)

    while crawl.queue and len(crawl.visited) < settings.max_pages:
        url = crawl.queue.popleft()
        key = normalize_page_url(url)
        if key in crawl.visited:
            continue
        if settings.respect_robots and not policy.is_allowed(url):
            logging.info("robots disallow page: %s", url)
            continue
        crawl.visited.add(key)
        logging.info(
            "Fetch page [%d/%d]: %s", len(crawl.visited), settings.max_pages, url
        )
        delay = policy.crawl_delay if settings.respect_robots else 0
        if delay > 0 and len(crawl.visited) > 1:
            logging.info("waiting %ds (crawl delay)", delay)
            time.sleep(delay)

        outcome = fetch_page(session, url, settings)
        if not outcome.ok:
            logging.warning(
                "skipping page %s (%s: %s)", url, outcome.failure.value, outcome.detail
            )
            continue

        soup = bs4_parse(outcome.value)
        rewriter.rewrite(soup, url, crawl.assets, discover)
        html_path = local_html_path_for_url(url, crawl.output_root)
        try:
            ensure_parent_dir(html_path)
            html_path.write_text(serialize_html(soup), encoding="utf-8")
        except OSError as e:
            logging.warning("failed to save page %s: %s", html_path, e)
            continue
        crawl.pages_written.append(html_path)
        logging.info("saved page: %s", html_path)


# -------------------- Downloaders --------------------


def download_asset(
    session: requests.Session,
    asset_url: str,
    root_origin: str,
    output_root: Path,
    settings: CloneSettings,
) -> Outcome:
    scheme = urlparse(asset_url).scheme.lower()
    if scheme not in ("http", "https"):
        return Outcome.fail(FailureKind.SCHEME, scheme or "no scheme")
    if not settings.mirror_external_assets and origin_of(asset_url) != root_origin:
        return Outcome.fail(FailureKind.EXTERNAL, origin_of(asset_url))
    try:
        r = session.get(asset_url, timeout=settings.asset_timeout)
    except requests.RequestException as e:
        return Outcome.fail(FailureKind.NETWORK, str(e))
    if not 200 <= r.status_code < 300:
        return Outcome.fail(FailureKind.STATUS, f"HTTP {r.status_code}")
    body = r.content
    local_path = Path(output_root) / local_asset_path_for_url(asset_url)
    try:
        ensure_parent_dir(local_path)
        local_path.write_bytes(body)
    except OSError as e:
        return Outcome.fail(FailureKind.FILESYSTEM, str(e))
    logging.info("downloaded asset: %s -> %s", asset_url, local_path)
    return Outcome.success(local_path)


def download_all(
    session: requests.Session,
    urls: Iterable[str],
    root_origin: str,
    output_root: Path,
    settings: CloneSettings,
) -> Dict[str, Outcome]:
    url_set: FrozenSet[str] = frozenset(urls)
    result: Dict[str, Outcome] = {}
    if not url_set:
        return result
    with ThreadPoolExecutor(max_workers=max(1, settings.concurrency)) as pool:
        future_map = {
            pool.submit(
                download_asset, session, u, root_origin, output_root, settings
            ): u
            for u in url_set
        }
        for fut in as_completed(future_map):
            u = future_map[fut]
            outcome = fut.result()
            if outcome.skipped:
                logging.debug("skip asset %s (%s)", u, outcome.failure.value)
            elif not outcome.ok:
                logging.warning("failed to download asset %s: %s", u, outcome.detail)
            result[u] = outcome
    return result


# -------------------- Clone --------------------


@dataclass
class CloneStatistics:
    pages_cloned: int = 0
    pages_visited: int = 0
    assets_downloaded: int = 0
    assets_failed: int = 0
    max_pages_reached: bool = False
    robots_respected: bool = True

    def to_dict(self) -> Dict[str, Union[int, bool]]:
        return {
            "pagesCloned": self.pages_cloned,
            "pagesVisited": self.pages_visited,
            "assetsDownloaded": self.assets_downloaded,
            "assetsFailed": self.assets_failed,
            "maxPagesReached": self.max_pages_reached,
            "robotsRespected": self.robots_respected,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "CloneStatistics":
        return cls(
            pages_cloned=int(data.get("pagesCloned", 0)),
            pages_visited=int(data.get("pagesVisited", 0)),
            assets_downloaded=int(data.get("assetsDownloaded", 0)),
            assets_failed=int(data.get("assetsFailed", 0)),
            max_pages_reached=bool(data.get("maxPagesReached", False)),
            robots_respected=bool(data.get("robotsRespected", True)),
        )


@dataclass
class CloneResult:
    output_path: Path
    statistics: CloneStatistics
    success: bool = True
    message: str = "Website cloned successfully"
    source_url: Optional[str] = None
    domain: Optional[str] = None
    cloned_at: Optional[str] = None
    is_existing: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "message": self.message,
            "outputPath": str(self.output_path),
            "sourceUrl": self.source_url,
            "domain": self.domain,
            "clonedAt": self.cloned_at,
            "isExisting": self.is_existing,
            "statistics": self.statistics.to_dict(),
        }


def prepare_output_dir(out_dir: Union[str, Path]) -> Path:
    out_root = Path(out_dir).resolve()
    try:
        if out_root.exists():
            for child in out_root.iterdir():
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        else:
            out_root.mkdir(parents=True)
    except OSError as e:
        raise OutputDirectoryError(
            f"cannot prepare output directory {out_root}: {e}"
        ) from e
    return out_root


def clone_website(
    target_url: str,
    settings: Optional[CloneSettings] = None,
    *,
    session: Optional[requests.Session] = None,
    unwrap_rules: Sequence[QueryParamUnwrapRule] = DEFAULT_UNWRAP_RULES,
) -> CloneResult:
    settings = settings or CloneSettings()
    source_url = validate_target_url(target_url)
    root_url = urldefrag(source_url)[0]
    root_origin = origin_of(root_url)
    out_root = prepare_output_dir(settings.out_dir)

    own_session = session is None
    http = build_session(settings) if own_session else session
    try:
        policy = RobotsPolicy()
        if settings.respect_robots:
            logging.info("checking robots.txt for %s", root_origin)
            policy = fetch_robots_policy(http, root_url, settings)
            if policy.disallowed_paths:
                logging.info(
                    "found %d disallowed paths in robots.txt",
                    len(policy.disallowed_paths),
                )
            if policy.crawl_delay > 0:
                logging.info("crawl delay: %d seconds", policy.crawl_delay)

        logging.info("starting clone of %s into %s", source_url, out_root)
        crawl = CrawlSession(output_root=out_root)
        crawl.enqueue(root_url)
        rewriter = DocumentRewriter(root_origin, unwrap_rules)
        crawl_pages(http, crawl, settings, policy, rewriter)

        logging.info("downloading %d assets", len(crawl.assets))
        outcomes = download_all(
            http, frozenset(crawl.assets), root_origin, out_root, settings
        )
    finally:
        if own_session:
            http.close()

    stats = CloneStatistics(
        pages_cloned=len(crawl.pages_written),
        pages_visited=len(crawl.visited),
        assets_downloaded=sum(1 for o in outcomes.values() if o.ok),
        assets_failed=sum(1 for o in outcomes.values() if not o.ok and not o.skipped),
        max_pages_reached=len(crawl.visited) >= settings.max_pages,
        robots_respected=settings.respect_robots,
    )
    logging.info(
        "clone complete: %d pages, %d assets -> %s",
        stats.pages_cloned,
        stats.assets_downloaded,
        out_root,
    )
    return CloneResult(
        output_path=out_root,
        statistics=stats,
        source_url=source_url,
        domain=urlparse(source_url).hostname,
    )


# -------------------- Metadata --------------------


@dataclass
class ExistingClone:
    path: Path
    cloned_at: str
    source_url: str
    statistics: Dict[str, object]
    is_legacy: bool


def atomic_write_json(path: Path, data: dict) -> None:
    ensure_parent_dir(path)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)


def check_existing_clone(
    out_dir: Union[str, Path], source_url: str
) -> Optional[ExistingClone]:
    out = Path(out_dir)
    if not out.is_dir():
        return None
    meta = out / METADATA_FILENAME
    if not meta.exists():
        if (out / "index.html").exists():
            return ExistingClone(
                path=out,
                cloned_at=LEGACY_CLONED_AT,
                source_url=source_url,
                statistics={},
                is_legacy=True,
            )
        return None
    try:
        data = json.loads(meta.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logging.warning("error checking existing clone %s: %s", meta, e)
        return None
    if not isinstance(data, dict) or data.get("sourceUrl") != source_url:
        return None
    stats = data.get("statistics") or {}
    try:
        if not isinstance(stats, dict):
            raise TypeError("statistics must be an object")
        CloneStatistics.from_dict(stats)
    except (TypeError, ValueError, OverflowError) as e:
        logging.warning("invalid statistics in %s: %s", meta, e)
        return None
    return ExistingClone(
        path=out,
        cloned_at=data.get("clonedAt") or LEGACY_CLONED_AT,
        source_url=data["sourceUrl"],
        statistics=stats,
        is_legacy=False,
    )


def save_clone_metadata(
    out_dir: Union[str, Path], result: CloneResult
) -> Optional[Path]:
    path = Path(out_dir) / METADATA_FILENAME
    data = {
        "sourceUrl": result.source_url,
        "domain": result.domain,
        "clonedAt": result.cloned_at,
        "statistics": result.statistics.to_dict(),
        "version": METADATA_VERSION,
    }
    try:
        atomic_write_json(path, data)
    except OSError as e:
        logging.warning("failed to save clone metadata %s: %s", path, e)
        return None
    logging.info("clone metadata saved to: %s", path)
    return path


def list_clones(
    base_dir: Union[str, Path] = "cloned-websites"
) -> List[Dict[str, object]]:
    base = Path(base_dir)
    if not base.is_dir():
        return []
    clones: List[Dict[str, object]] = []
    for d in sorted(base.iterdir()):
        meta = d / METADATA_FILENAME
        if not d.is_dir() or not meta.exists():
            continue
        try:
            data = json.loads(meta.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logging.warning("invalid metadata in %s", d.name)
            continue
        if not isinstance(data, dict):
            logging.warning("invalid metadata in %s", d.name)
            continue
        clones.append({"directory": d.name, "path": str(d), **data})
    return clones


def domain_for_url(url: str) -> str:
    host = urlparse(url).hostname or ""
    return host[4:] if host.startswith("www.") else host


def mirror_website(
    target_url: str,
    base_dir: Union[str, Path] = "cloned-websites",
    *,
    out_dir: Optional[Union[str, Path]] = None,
    force: bool = False,
    settings: Optional[CloneSettings] = None,
    session: Optional[requests.Session] = None,
) -> CloneResult:
    source_url = validate_target_url(target_url)
    domain = domain_for_url(source_url)
    target_dir = Path(out_dir) if out_dir else Path(base_dir) / sanitize_domain(domain)

    if not force:
        existing = check_existing_clone(target_dir, source_url)
        if existing:
            logging.info(
                "website already cloned at %s (%s), skipping re-clone",
                existing.path,
                existing.cloned_at,
            )
            return CloneResult(
                output_path=existing.path,
                statistics=CloneStatistics.from_dict(existing.statistics),
                message="Website already exists locally",
                source_url=source_url,
                domain=domain,
                cloned_at=existing.cloned_at,
                is_existing=True,
            )

    settings = replace(settings or CloneSettings(), out_dir=str(target_dir))
    logging.info("output directory: %s, max pages: %d", target_dir, settings.max_pages)
    result = clone_website(source_url, settings, session=session)
    result.cloned_at = utc_timestamp()
    result.domain = domain
    save_clone_metadata(result.output_path, result)
    return result


# -------------------- Config loader --------------------


def load_config_file(path: str) -> Dict[str, Union[str, int, float, bool, List[str]]]:
    p = Path(path)
    suf = p.suffix.lower()
    if suf in {".toml", ".tml"}:
        import tomllib

        with open(p, "rb") as f:
            return tomllib.load(f) or {}
    elif suf in {".yaml", ".yml"}:
        import yaml

        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise RuntimeError("Top-level YAML must be a mapping")
            return data
    else:
        raise RuntimeError("Unsupported config format. Use .toml or .yaml")


# -------------------- CLI --------------------


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Clone a website into a directory tree that works offline.",
        add_help=True,
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", nargs="?", help="http(s) URL")
    p.add_argument(
        "--base-dir",
        type=str,
        default="cloned-websites",
        help="parent directory for per-domain clones",
    )
    p.add_argument(
        "--out-dir", type=str, default=None, help="explicit output directory"
    )
    p.add_argument("--max-pages", type=int, default=10, help="max HTML pages")
    p.add_argument(
        "--concurrency", type=int, default=8, help="concurrent asset downloads"
    )
    p.add_argument(
        "--no-external", action="store_true", help="do not mirror third-party assets"
    )
    p.add_argument("--ignore-robots", action="store_true", help="ignore robots.txt")
    p.add_argument("--force", action="store_true", help="re-clone even if present")
    p.add_argument("--list", action="store_true", help="list existing clones and exit")
    p.add_argument("--verbose", action="store_true", help="debug logging")

    # http
    p.add_argument(
        "--page-timeout", type=float, default=20.0, help="page timeout seconds"
    )
    p.add_argument(
        "--asset-timeout", type=float, default=15.0, help="asset timeout seconds"
    )
    p.add_argument(
        "--robots-timeout", type=float, default=10.0, help="robots.txt timeout seconds"
    )
    p.add_argument("--user-agent", type=str, default=DEFAULT_USER_AGENT)
    p.add_argument(
        "--robots-agent",
        type=str,
        default=ROBOTS_AGENT,
        help="name matched against robots.txt User-agent lines",
    )
    p.add_argument("--retries", type=int, default=0, help="retries for 429/5xx")

    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        cfg = load_config_file(preliminary.config)
        if isinstance(cfg, dict):
            flat = dict(cfg)
            for g in ("crawl", "assets", "robots", "http", "general"):
                if isinstance(cfg.get(g), dict):
                    flat.update(cfg[g])
            parser.set_defaults(**flat)
    args = parser.parse_args(argv)
    return args


def settings_from_args(args: argparse.Namespace) -> CloneSettings:
    return CloneSettings(
        max_pages=max(1, args.max_pages),
        mirror_external_assets=not args.no_external,
        concurrency=max(1, args.concurrency),
        respect_robots=not args.ignore_robots,
        page_timeout=max(1.0, args.page_timeout),
        asset_timeout=max(1.0, args.asset_timeout),
        robots_timeout=max(1.0, args.robots_timeout),
        user_agent=args.user_agent,
        robots_agent=args.robots_agent,
        retries=max(0, args.retries),
    )


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if args.list:
        for c in list_clones(args.base_dir):
            print(f"{c['directory']}\t{c.get('sourceUrl')}\t{c.get('clonedAt')}")
        return 0

    try:
        validate_target_url(args.url)
    except InvalidTargetUrl:
        print("Invalid URL. Use http:// or https://")
        return 1

    print("Reminder: only clone content you own or have permission to copy.")
    try:
        result = mirror_website(
            args.url,
            args.base_dir,
            out_dir=args.out_dir,
            force=args.force,
            settings=settings_from_args(args),
        )
    except OutputDirectoryError as e:
        logging.error("%s", e)
        return 1

    stats = result.statistics
    print(result.message)
    print(f"Pages saved: {stats.pages_cloned}")
    print(f"Assets saved: {stats.assets_downloaded}")
    print(f"Root: {result.output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
