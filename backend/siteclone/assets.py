"""
Localizes the assets a page references: downloads each distinct URL once,
stores it under the bundle's category folders and rewrites the markup (and
downloaded stylesheets) to point at the local copies.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from bs4 import BeautifulSoup, Tag

from .config import ClonerSettings
from .errors import DownloadError
from .events import EventLog
from .fetcher import AssetFetcher
from .injector import LOGO_MARKER, ORIGINAL_SRC
from .models import IdentityRecord
from .report import AssetRecord, CloneStatistics
from .urls import (
    FONT,
    IMAGE,
    MEDIA,
    SAFE_NAME_RE,
    SCRIPT,
    STYLE,
    category_for_url,
    is_fetchable,
    local_filename,
    local_path_for,
    relative_path,
    resolve_url,
)

CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)([^'")]+?)\1\s*\)""", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)
SRCSET_RE = re.compile(r"\s*([^\s,][^\s]*?)(?:\s+([^,]*))?\s*(?:,|$)")

WEB_FONT_HOSTS = ("fonts.googleapis.com", "fonts.gstatic.com")
LAZY_IMAGE_ATTRIBUTES = ("data-src", "data-lazy-src", "data-original")
SRCSET_ATTRIBUTES = ("srcset", "data-srcset")

CSS_ASSET_TYPES = {IMAGE: "background-image", FONT: "font", STYLE: "css-import", MEDIA: "media"}

PRELOAD_RELS = ("preload", "prefetch", "modulepreload")
PRELOAD_TYPES = {"font": (FONT, "font"), "image": (IMAGE, "image"), "script": (SCRIPT, "js")}

# References that still point into the source site after localization
ASSET_ATTRIBUTES = {
    "link": ("href",),
    "script": ("src",),
    "img": ("src",) + LAZY_IMAGE_ATTRIBUTES,
    "source": ("src",),
    "input": ("src",),
    "video": ("src", "poster"),
    "audio": ("src",),
    "track": ("src",),
    "embed": ("src",),
    "object": ("data",),
    "iframe": ("src",),
}

Transform = Callable[[bytes], Awaitable[bytes]]


def is_absolute(ref: str) -> bool:
    return ref.strip().lower().startswith(("http://", "https://"))


def parse_srcset(value: str) -> List[Tuple[str, str]]:
    return [(m.group(1), (m.group(2) or "").strip()) for m in SRCSET_RE.finditer(value or "")]


def _rels(tag: Tag) -> List[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [value.lower() for value in rel]


def _follows_import(css: str, position: int) -> bool:
    return css[max(0, position - 32):position].rstrip().lower().endswith("@import")


class AssetPipeline:
    """
    Asset sweeps for one clone operation.

    Every distinct source URL maps to exactly one AssetRecord: a second
    reference to the same URL awaits the first download and receives the
    same local path. A failed download leaves the reference pointing at the
    original remote URL, made absolute when it was written relative.
    """

    def __init__(
        self,
        fetcher: AssetFetcher,
        output_dir: Path,
        identity: IdentityRecord,
        settings: Optional[ClonerSettings] = None,
        stats: Optional[CloneStatistics] = None,
        events: Optional[EventLog] = None,
    ):
        self.fetcher = fetcher
        self.output_dir = Path(output_dir)
        self.identity = identity
        self.settings = settings or ClonerSettings()
        self.stats = stats or CloneStatistics()
        self.events = events or EventLog()
        self._records: Dict[str, "asyncio.Future[AssetRecord]"] = {}
        self._local_paths: Set[str] = set()
        # stylesheet URL -> stylesheets it waits on through @import
        self._imports: Dict[str, Set[str]] = {}

    async def process(self, soup: BeautifulSoup, base_url: str) -> CloneStatistics:
        await asyncio.gather(
            self.process_stylesheets(soup, base_url),
            self.process_scripts(soup, base_url),
            self.process_images(soup, base_url),
            self.process_srcsets(soup, base_url),
            self.process_style_blocks(soup, base_url),
            self.process_inline_styles(soup, base_url),
            self.process_preloads(soup, base_url),
            self.process_media(soup, base_url),
        )
        absolutized = self.absolutize_references(soup, base_url)
        self.events.emit(
            "assets.processed",
            total=self.stats.total_assets,
            failed=self.stats.failed_downloads,
            absolutized=absolutized,
        )
        return self.stats

    # -- record bookkeeping -------------------------------------------------

    async def localize(
        self,
        url: str,
        category: str,
        asset_type: str,
        transform: Optional[Transform] = None,
    ) -> AssetRecord:
        """Download ``url`` once per operation and return its record"""
        future = self._records.get(url)
        if future is None:
            future = asyncio.ensure_future(self._store(url, category, asset_type, transform))
            self._records[url] = future
        return await future

    async def _store(
        self,
        url: str,
        category: str,
        asset_type: str,
        transform: Optional[Transform],
    ) -> AssetRecord:
        try:
            local_path = local_path_for(url, category)
            content = await self.fetcher.fetch(url)
            if transform is not None:
                content = await transform(content)
            self._write(local_path, content)
        except DownloadError as exc:
            record = self._failed(url, category, asset_type, exc.cause)
        except (OSError, ValueError) as exc:
            # unparsable URL or unwritable file: only this asset fails
            record = self._failed(url, category, asset_type, f"{type(exc).__name__}: {exc}")
        else:
            record = AssetRecord(url, category, asset_type, local_path=local_path)
            self._local_paths.add(local_path)
            self.events.emit("asset.saved", logging.DEBUG, url=url, path=local_path)
        self.stats.record(record)
        return record

    def _failed(self, url: str, category: str, asset_type: str, error: str) -> AssetRecord:
        self.events.emit("asset.failed", logging.WARNING, url=url, type=asset_type, error=error)
        return AssetRecord(url, category, asset_type, error=error)

    def _write(self, local_path: str, content: bytes) -> None:
        target = self.output_dir / local_path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)

    def _resolve(self, ref: str, base_url: str) -> Optional[str]:
        try:
            return resolve_url(ref, base_url)
        except ValueError as exc:
            self.events.emit("asset.skipped", logging.WARNING, ref=ref, error=str(exc))
            return None

    async def _rewrite_attribute(
        self,
        tag: Tag,
        attribute: str,
        base_url: str,
        category: str,
        asset_type: str,
        transform_for: Optional[Callable[[str], Transform]] = None,
    ) -> None:
        ref = tag.get(attribute)
        if not isinstance(ref, str) or not is_fetchable(ref):
            return
        url = self._resolve(ref, base_url)
        if url is None:
            return
        transform = transform_for(url) if transform_for is not None else None
        record = await self.localize(url, category, asset_type, transform)
        tag[attribute] = self._reference_for(ref, url, record)

    @staticmethod
    def _reference_for(ref: str, url: str, record: AssetRecord, from_file: Optional[str] = None) -> str:
        if record.ok:
            return relative_path(record.local_path, from_file) if from_file else record.local_path
        return ref if is_absolute(ref) else url

    # -- stylesheets --------------------------------------------------------

    def _stylesheet_transform(self, stylesheet_url: str) -> Transform:
        async def _transform(content: bytes) -> bytes:
            stylesheet_path = local_path_for(stylesheet_url, STYLE)
            # surrogateescape keeps undecodable bytes intact on the way back
            css = content.decode("utf-8", errors="surrogateescape")
            css = await self.rewrite_css(css, stylesheet_url, stylesheet_path, parent=stylesheet_url)
            return css.encode("utf-8", errors="surrogateescape")

        return _transform

    async def rewrite_css(
        self,
        css: str,
        base_url: str,
        from_file: Optional[str] = None,
        parent: Optional[str] = None,
    ) -> str:
        """
        Localize every url() and @import in a block of CSS. References are
        resolved against ``base_url`` (the stylesheet's own URL for downloaded
        files) and rewritten relative to ``from_file``, or to the bundle root
        when the CSS lives inside index.html. Imported stylesheets are
        rewritten the same way before they are stored; ``parent`` is the URL
        of the stylesheet this text belongs to.
        """
        references = [(m, "url") for m in CSS_URL_RE.finditer(css)]
        references += [(m, "import") for m in CSS_IMPORT_RE.finditer(css)]
        references = [(m, kind) for m, kind in references if is_fetchable(m.group(2))]
        if not references:
            return css
        references.sort(key=lambda item: item[0].start())

        async def _localize(match: "re.Match[str]", kind: str) -> str:
            ref = match.group(2).strip()
            url = self._resolve(ref, base_url)
            if url is None:
                return ref
            category = category_for_url(url, default=IMAGE)
            if kind == "import" or category == STYLE or _follows_import(css, match.start()):
                return await self._localize_import(ref, url, from_file, parent)
            record = await self.localize(url, category, CSS_ASSET_TYPES.get(category, category))
            return self._reference_for(ref, url, record, from_file)

        replacements = await asyncio.gather(*(_localize(match, kind) for match, kind in references))

        pieces: List[str] = []
        cursor = 0
        for (match, kind), reference in zip(references, replacements):
            pieces.append(css[cursor:match.start()])
            quote = match.group(1)
            if kind == "import":
                pieces.append(f"@import {quote}{reference}{quote}")
            else:
                pieces.append(f"url({quote}{reference}{quote})")
            cursor = match.end()
        pieces.append(css[cursor:])
        return "".join(pieces)

    async def _localize_import(self, ref: str, url: str, from_file: Optional[str], parent: Optional[str]) -> str:
        if not self.settings.rehost_web_fonts and any(host in url for host in WEB_FONT_HOSTS):
            return ref if is_absolute(ref) else url

        future = self._records.get(url)
        if parent is not None and not (future is not None and future.done()):
            if self._imports_reach(url, parent):
                # circular @import: url is already waiting on parent
                local_path = local_path_for(url, STYLE)
                return relative_path(local_path, from_file) if from_file else local_path
            self._imports.setdefault(parent, set()).add(url)

        record = await self.localize(url, STYLE, CSS_ASSET_TYPES[STYLE], self._stylesheet_transform(url))
        return self._reference_for(ref, url, record, from_file)

    def _imports_reach(self, start: str, target: str) -> bool:
        pending, seen = [start], set()
        while pending:
            node = pending.pop()
            if node == target:
                return True
            if node not in seen:
                seen.add(node)
                pending.extend(self._imports.get(node, ()))
        return False

    async def process_stylesheets(self, soup: BeautifulSoup, base_url: str) -> None:
        tasks = []
        for link in soup.find_all("link", href=True):
            rels = _rels(link)
            is_stylesheet = "stylesheet" in rels or ("preload" in rels and link.get("as") == "style")
            if not is_stylesheet:
                continue
            if not self.settings.rehost_web_fonts and any(host in link["href"] for host in WEB_FONT_HOSTS):
                continue
            tasks.append(self._rewrite_attribute(
                link, "href", base_url, STYLE, "css", transform_for=self._stylesheet_transform
            ))
        await asyncio.gather(*tasks)

    async def process_style_blocks(self, soup: BeautifulSoup, base_url: str) -> None:
        async def _rewrite(style: Tag) -> None:
            css = style.string
            if not css:
                return
            updated = await self.rewrite_css(str(css), base_url)
            if updated != css:
                style.string = updated

        await asyncio.gather(*(_rewrite(style) for style in soup.find_all("style")))

    async def process_inline_styles(self, soup: BeautifulSoup, base_url: str) -> None:
        async def _rewrite(tag: Tag) -> None:
            css = tag["style"]
            updated = await self.rewrite_css(css, base_url)
            if updated != css:
                tag["style"] = updated

        tags = [tag for tag in soup.find_all(style=True) if "url(" in tag["style"].lower()]
        await asyncio.gather(*(_rewrite(tag) for tag in tags))

    # -- scripts, images, fonts, media -------------------------------------

    async def process_scripts(self, soup: BeautifulSoup, base_url: str) -> None:
        await asyncio.gather(*(
            self._rewrite_attribute(script, "src", base_url, SCRIPT, "js")
            for script in soup.find_all("script", src=True)
        ))

    async def process_images(self, soup: BeautifulSoup, base_url: str) -> None:
        tasks = []
        for img in soup.find_all("img"):
            if img.get(LOGO_MARKER) == "true":
                tasks.append(self._apply_logo(img, "src"))
                continue
            if img.get("src"):
                tasks.append(self._rewrite_attribute(img, "src", base_url, IMAGE, "image"))
            for attribute in LAZY_IMAGE_ATTRIBUTES:
                if img.get(attribute):
                    tasks.append(self._rewrite_attribute(img, attribute, base_url, IMAGE, "image"))

        for button in soup.find_all("input", src=True):
            if str(button.get("type") or "").lower() == "image":
                tasks.append(self._rewrite_attribute(button, "src", base_url, IMAGE, "image"))

        for link in soup.find_all("link", href=True):
            if not any("icon" in rel for rel in _rels(link)):
                continue
            if link.get(LOGO_MARKER) == "true":
                tasks.append(self._apply_logo(link, "href"))
            else:
                tasks.append(self._rewrite_attribute(link, "href", base_url, IMAGE, "icon"))
        await asyncio.gather(*tasks)

    async def process_srcsets(self, soup: BeautifulSoup, base_url: str) -> None:
        async def _rewrite(tag: Tag, attribute: str) -> None:
            if tag.get(LOGO_MARKER) == "true":
                if tag.name == "source" and attribute == "srcset":
                    await self._apply_logo(tag, "srcset")
                return
            rewritten = []
            for ref, descriptor in parse_srcset(tag[attribute]):
                url = self._resolve(ref, base_url) if is_fetchable(ref) else None
                if url is not None:
                    record = await self.localize(url, category_for_url(url, default=IMAGE), "srcset")
                    ref = self._reference_for(ref, url, record)
                rewritten.append(f"{ref} {descriptor}".strip())
            tag[attribute] = ", ".join(rewritten)

        tasks = [
            _rewrite(tag, attribute)
            for attribute in SRCSET_ATTRIBUTES
            for tag in soup.find_all(["img", "source"], attrs={attribute: True})
        ]
        await asyncio.gather(*tasks)

    async def process_preloads(self, soup: BeautifulSoup, base_url: str) -> None:
        tasks = []
        for link in soup.find_all("link", href=True):
            rels = _rels(link)
            if not any(rel in PRELOAD_RELS for rel in rels):
                continue
            kind = "script" if "modulepreload" in rels else str(link.get("as") or "").lower()
            if kind not in PRELOAD_TYPES and category_for_url(link["href"], default="") == FONT:
                kind = "font"
            if kind in PRELOAD_TYPES:
                category, asset_type = PRELOAD_TYPES[kind]
                tasks.append(self._rewrite_attribute(link, "href", base_url, category, asset_type))
        await asyncio.gather(*tasks)

    async def process_media(self, soup: BeautifulSoup, base_url: str) -> None:
        tasks = []
        for tag in soup.find_all(["video", "audio"]):
            if tag.get("src"):
                tasks.append(self._rewrite_attribute(tag, "src", base_url, MEDIA, "media"))
            if tag.name == "video" and tag.get("poster"):
                tasks.append(self._rewrite_attribute(tag, "poster", base_url, IMAGE, "poster"))
        for source in soup.find_all("source", src=True):
            if source.get(LOGO_MARKER) == "true":
                tasks.append(self._apply_logo(source, "src"))
            elif source.find_parent(["video", "audio"]) is not None:
                tasks.append(self._rewrite_attribute(source, "src", base_url, MEDIA, "media"))
        await asyncio.gather(*tasks)

    # -- leftovers ----------------------------------------------------------

    def _points_at_source_site(self, value: str) -> bool:
        return is_fetchable(value) and not is_absolute(value) and value.strip() not in self._local_paths

    def absolutize_references(self, soup: BeautifulSoup, base_url: str) -> int:
        """
        Make every asset reference that was not localized absolute, so it
        keeps loading from the source site instead of a missing bundle path.
        Returns the number of attributes changed.
        """
        changed = 0
        for tag in soup.find_all(list(ASSET_ATTRIBUTES)):
            for attribute in ASSET_ATTRIBUTES[tag.name]:
                value = tag.get(attribute)
                if not isinstance(value, str) or not self._points_at_source_site(value):
                    continue
                url = self._resolve(value, base_url)
                if url is not None:
                    tag[attribute] = url
                    changed += 1

            if tag.name not in ("img", "source"):
                continue
            for attribute in SRCSET_ATTRIBUTES:
                value = tag.get(attribute)
                if not isinstance(value, str):
                    continue
                candidates = []
                for ref, descriptor in parse_srcset(value):
                    if self._points_at_source_site(ref):
                        ref = self._resolve(ref, base_url) or ref
                    candidates.append(f"{ref} {descriptor}".strip())
                updated = ", ".join(candidates)
                if updated != value:
                    tag[attribute] = updated
                    changed += 1
        return changed

    # -- logo ---------------------------------------------------------------

    def _logo_source(self, ref: str) -> Path:
        path = Path(ref)
        if path.is_absolute() and path.is_file():
            return path
        return Path(self.settings.upload_root) / ref.lstrip("/")

    async def _copy_logo(self) -> AssetRecord:
        ref = self.identity.logo
        try:
            if is_absolute(ref):
                local_path = f"images/{local_filename(ref, IMAGE)}"
                content = await self.fetcher.fetch(ref)
            else:
                source = self._logo_source(ref)
                local_path = f"images/{SAFE_NAME_RE.sub('-', source.name) or 'logo'}"
                content = source.read_bytes()
            self._write(local_path, content)
        except DownloadError as exc:
            record = AssetRecord(ref, IMAGE, "logo", error=exc.cause)
        except (OSError, ValueError) as exc:
            record = AssetRecord(ref, IMAGE, "logo", error=f"Logo not stored: {type(exc).__name__}: {exc}")
        else:
            record = AssetRecord(ref, IMAGE, "logo", local_path=local_path)
            self._local_paths.add(local_path)
        self.stats.record(record)
        return record

    async def _apply_logo(self, tag: Tag, attribute: str) -> None:
        if not self.identity.logo:
            return
        key = f"logo:{self.identity.logo}"
        future = self._records.get(key)
        if future is None:
            future = asyncio.ensure_future(self._copy_logo())
            self._records[key] = future
        record = await future

        if record.ok:
            tag[attribute] = record.local_path
            if tag.name == "img":
                tag["alt"] = f"{self.identity.name} logo"
            return

        self.events.emit("logo.failed", logging.WARNING, logo=self.identity.logo, error=record.error)
        original = tag.get(ORIGINAL_SRC)
        if is_absolute(self.identity.logo):
            tag[attribute] = self.identity.logo
        elif original:
            tag[attribute] = original
        else:
            tag.decompose()
