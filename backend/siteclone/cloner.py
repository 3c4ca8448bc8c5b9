"""
Clone orchestration: acquire the page, swap the identity, localize assets and
write the bundle (index.html, asset folders, debug reports).
"""

import asyncio
import logging
import re
import shutil
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from bs4 import BeautifulSoup
from bs4.element import Comment, Doctype
from pydantic import ValidationError

from .assets import AssetPipeline
from .config import ClonerSettings
from .detector import IdentityDetector
from .errors import CloneTimeoutError, CloneValidationError
from .events import EventLog
from .fallback import render_fallback_page
from .fetcher import AssetFetcher
from .injector import IdentityInjector
from .models import CloneRequest, IdentityRecord, PreviousIdentity
from .report import DOCTYPE, CloneReport, CloneStatistics
from .scraper import ContentAcquirer
from .urls import CATEGORY_DIRS, resolve_url

logger = logging.getLogger(__name__)

ESCAPE_RE = re.compile(r"\\u00(27|2[bB]|26|2[fF]|3[cC]|3[eE])")


@dataclass
class CloneResult:
    output_directory: Path
    report_summary: Dict[str, Any]
    is_fallback: bool
    injection_log: Optional[Dict[str, Any]] = None
    detected_identity: Optional[Dict[str, Any]] = None

    @property
    def folder_name(self) -> str:
        return self.output_directory.name


def slugify(value: str) -> str:
    ascii_value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return re.sub(r"[^a-z0-9]+", "-", ascii_value.lower()).strip("-") or "site"


def _unescape(value: str) -> str:
    return ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), value)


def _clear_directory(path: Path) -> None:
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child, ignore_errors=True)
        else:
            child.unlink(missing_ok=True)


def fix_broken_references(soup: BeautifulSoup) -> int:
    """
    Root-relative link and form targets would point at the filesystem root
    once the bundle is opened locally, so they are made bundle-relative.
    """
    fixed = 0
    for tag, attribute in [(a, "href") for a in soup.find_all("a", href=True)] + [
        (form, "action") for form in soup.find_all("form", action=True)
    ]:
        value = tag[attribute]
        if value.startswith("/") and not value.startswith("//"):
            tag[attribute] = value[1:]
            fixed += 1
    return fixed


def cleanup_html(soup: BeautifulSoup) -> str:
    """
    Serialize the page with JSON-style escapes (\\u0027, \\u0026, ...) decoded
    in text and attributes, leaving script and style bodies alone, and with a
    leading HTML5 doctype.
    """
    for node in list(soup.find_all(string=ESCAPE_RE)):
        if isinstance(node, (Comment, Doctype)) or node.parent is None:
            continue
        if node.parent.name in ("script", "style"):
            continue
        node.replace_with(_unescape(str(node)))

    for tag in soup.find_all(True):
        for attribute, value in list(tag.attrs.items()):
            if isinstance(value, str) and ESCAPE_RE.search(value):
                tag[attribute] = _unescape(value)

    markup = str(soup)
    if not markup.lstrip().lower().startswith("<!doctype"):
        markup = f"{DOCTYPE}\n{markup}"
    return markup


class WebsiteCloner:
    """
    Clones a live website into a self-contained local bundle carrying a new
    identity.
    """

    def __init__(
        self,
        settings: Optional[ClonerSettings] = None,
        acquirer: Optional[ContentAcquirer] = None,
        events: Optional[EventLog] = None,
        transport=None,
    ):
        self.settings = settings or ClonerSettings.from_env()
        self.events = events or EventLog()
        self.transport = transport
        self.acquirer = acquirer or ContentAcquirer(self.settings, self.events, transport)

    async def clone(
        self,
        source_url: str,
        identity: Union[IdentityRecord, Dict[str, Any]],
        output_dir: Optional[Path] = None,
        previous_identity: Optional[Union[PreviousIdentity, Dict[str, Any]]] = None,
    ) -> CloneResult:
        """
        Validate the inputs and clone ``source_url``

        Raises:
            CloneValidationError: if the URL is not absolute http(s) or the
                identity has no name
            CloneTimeoutError: if the clone exceeds the configured ceiling
        """
        try:
            request = CloneRequest(
                source_url=source_url,
                identity=identity,
                output_dir=output_dir,
                previous_identity=previous_identity,
            )
        except ValidationError as exc:
            messages = "; ".join(error["msg"] for error in exc.errors())
            raise CloneValidationError(messages) from exc
        return await self.clone_site(request)

    async def clone_site(self, request: CloneRequest) -> CloneResult:
        """
        Clone a website for a validated request

        Args:
            request: Source URL, identity and optional output directory

        Returns:
            CloneResult with the bundle directory and the asset summary
        """
        created = request.output_dir is None or not Path(request.output_dir).exists()
        output_dir = self.make_output_dir(request)
        try:
            return await asyncio.wait_for(
                self._run(request, output_dir),
                timeout=self.settings.clone_timeout,
            )
        except asyncio.TimeoutError as exc:
            if created:
                shutil.rmtree(output_dir, ignore_errors=True)
            else:
                _clear_directory(output_dir)
            self.events.emit(
                "clone.timeout",
                logging.ERROR,
                url=request.source_url,
                timeout=self.settings.clone_timeout,
            )
            raise CloneTimeoutError(request.source_url, self.settings.clone_timeout) from exc

    def make_output_dir(self, request: CloneRequest) -> Path:
        """
        Claim the bundle directory. An explicit directory must be new or
        empty; otherwise a unique one is created under sites_dir.

        Raises:
            CloneValidationError: if the explicit directory holds files
        """
        if request.output_dir is not None:
            output_dir = Path(request.output_dir)
            if output_dir.exists() and (not output_dir.is_dir() or any(output_dir.iterdir())):
                raise CloneValidationError(f"Output directory is not empty: {output_dir}")
            output_dir.mkdir(parents=True, exist_ok=True)
            return output_dir

        sites_dir = Path(self.settings.sites_dir)
        sites_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        base_name = f"{slugify(request.identity.name)}-cloned-{stamp}"
        suffix = 0
        while True:
            candidate = sites_dir / (base_name if suffix == 0 else f"{base_name}-{suffix}")
            try:
                candidate.mkdir()
            except FileExistsError:
                suffix += 1
                continue
            return candidate

    async def _run(self, request: CloneRequest, output_dir: Path) -> CloneResult:
        identity = request.identity
        stats = CloneStatistics()
        self.events.emit("clone.started", url=request.source_url, output=str(output_dir))
        for folder in CATEGORY_DIRS.values():
            (output_dir / folder).mkdir(exist_ok=True)

        self.events.emit("clone.phase", phase="acquire")
        html = await self.acquirer.acquire(request.source_url)
        is_fallback = html is None
        detected = None
        injection = None

        if is_fallback:
            self.events.emit("clone.fallback", logging.WARNING, url=request.source_url)
            soup = BeautifulSoup(render_fallback_page(identity), "html.parser")
            if identity.logo:
                async with self._make_fetcher() as fetcher:
                    pipeline = AssetPipeline(fetcher, output_dir, identity, self.settings, stats, self.events)
                    await pipeline.process_images(soup, request.source_url)
        else:
            soup = BeautifulSoup(html, "html.parser")
            base_url = self._base_url(soup, request.source_url)

            self.events.emit("clone.phase", phase="identity")
            detected = IdentityDetector(self.events).detect(soup).merged_with(request.previous_identity)
            injector = IdentityInjector(
                self.events,
                partial_min_ratio=self.settings.address_partial_min_ratio,
                partial_min_chars=self.settings.address_partial_min_chars,
            )
            injection = injector.inject(soup, detected, identity, base_url=base_url)

            self.events.emit("clone.phase", phase="assets")
            async with self._make_fetcher() as fetcher:
                pipeline = AssetPipeline(fetcher, output_dir, identity, self.settings, stats, self.events)
                await pipeline.process(soup, base_url)

            fixed = fix_broken_references(soup)
            self.events.emit("references.fixed", logging.DEBUG, count=fixed)

        self.events.emit("clone.phase", phase="save")
        markup = cleanup_html(soup)
        stats.finish()
        (output_dir / "index.html").write_text(markup, encoding="utf-8")

        report = CloneReport(
            source_url=request.source_url,
            identity=identity.model_dump(),
            statistics=stats,
            is_fallback=is_fallback,
            detected_identity=detected.to_dict() if detected else None,
            injection_log=injection.to_dict() if injection else None,
            markup=markup,
        )
        report.write(output_dir)

        summary = stats.summary()
        self.events.emit(
            "clone.finished",
            output=str(output_dir),
            fallback=is_fallback,
            total=summary["totalAssets"],
            success_rate=summary["successRate"],
        )
        return CloneResult(
            output_directory=output_dir,
            report_summary=summary,
            is_fallback=is_fallback,
            injection_log=report.injection_log,
            detected_identity=report.detected_identity,
        )

    def _make_fetcher(self) -> AssetFetcher:
        return AssetFetcher(
            timeout=self.settings.download_timeout,
            max_redirects=self.settings.max_redirects,
            max_concurrent=self.settings.max_concurrent_downloads,
            events=self.events,
            transport=self.transport,
        )

    @staticmethod
    def _base_url(soup: BeautifulSoup, source_url: str) -> str:
        # Local references must not be resolved against a remote <base>
        base = soup.find("base", href=True)
        if base is None:
            return source_url
        try:
            base_url = resolve_url(base["href"], source_url)
        except ValueError:
            base_url = source_url
        base.decompose()
        return base_url
