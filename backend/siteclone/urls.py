"""
URL resolution and local naming helpers for downloaded assets
"""

import hashlib
import posixpath
import re
from typing import Optional
from urllib.parse import unquote, urlparse

SKIPPED_PREFIXES = ("data:", "javascript:", "mailto:", "tel:", "callto:", "about:", "blob:", "#")

STYLE = "style"
SCRIPT = "script"
IMAGE = "image"
FONT = "font"
MEDIA = "media"
OTHER = "other"

CATEGORY_DIRS = {
    STYLE: "css",
    SCRIPT: "js",
    IMAGE: "images",
    FONT: "fonts",
    MEDIA: "media",
    OTHER: "assets",
}

DEFAULT_EXTENSIONS = {
    STYLE: ".css",
    SCRIPT: ".js",
    IMAGE: ".jpg",
    FONT: ".woff",
    MEDIA: ".mp4",
    OTHER: ".bin",
}

EXTENSION_CATEGORIES = {
    ".css": STYLE,
    ".js": SCRIPT,
    ".mjs": SCRIPT,
    ".png": IMAGE,
    ".jpg": IMAGE,
    ".jpeg": IMAGE,
    ".gif": IMAGE,
    ".webp": IMAGE,
    ".avif": IMAGE,
    ".svg": IMAGE,
    ".ico": IMAGE,
    ".bmp": IMAGE,
    ".woff": FONT,
    ".woff2": FONT,
    ".ttf": FONT,
    ".otf": FONT,
    ".eot": FONT,
    ".mp4": MEDIA,
    ".webm": MEDIA,
    ".ogg": MEDIA,
    ".ogv": MEDIA,
    ".mp3": MEDIA,
    ".wav": MEDIA,
    ".cur": OTHER,
}

SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def resolve_url(ref: str, base_url: str) -> str:
    """
    Resolve an asset reference against the URL of the page (or stylesheet)
    that contains it.

    Args:
        ref: The reference as written in the markup or CSS
        base_url: Absolute URL of the referencing document

    Returns:
        The absolute URL of the referenced asset

    Raises:
        ValueError: if base_url has no scheme or host
    """
    base = urlparse(base_url)
    if not base.scheme or not base.netloc:
        raise ValueError(f"Malformed base URL: {base_url!r}")

    ref = ref.strip()
    lowered = ref.lower()
    if lowered.startswith("http://") or lowered.startswith("https://"):
        return ref
    if ref.startswith("//"):
        return f"{base.scheme}:{ref}"
    if ref.startswith("/"):
        return f"{base.scheme}://{base.netloc}{ref}"

    # Only the directory part of the base path counts; a trailing file name
    # (page.html, style.css) is not a segment that "../" can climb out of.
    directory = base.path.rsplit("/", 1)[0] if "/" in base.path else ""
    base_segments = [segment for segment in directory.split("/") if segment]

    ref_segments = ref.split("/")
    parents = 0
    index = 0
    while index < len(ref_segments) and ref_segments[index] in ("..", "."):
        if ref_segments[index] == "..":
            parents += 1
        index += 1

    if parents:
        base_segments = base_segments[:-parents] if parents < len(base_segments) else []
    remainder = [segment for segment in ref_segments[index:] if segment != "."]

    return f"{base.scheme}://{base.netloc}/" + "/".join(base_segments + remainder)


def is_fetchable(ref: Optional[str]) -> bool:
    """True when a reference points at something we can download"""
    if not ref or not ref.strip():
        return False
    return not ref.strip().lower().startswith(SKIPPED_PREFIXES)


def url_extension(url: str) -> str:
    path = unquote(urlparse(url).path)
    ext = posixpath.splitext(posixpath.basename(path))[1].lower()
    return ext if re.fullmatch(r"\.[a-z0-9]{1,5}", ext) else ""


def category_for_url(url: str, default: str = IMAGE) -> str:
    return EXTENSION_CATEGORIES.get(url_extension(url), default)


def local_filename(url: str, category: str) -> str:
    """
    Collision-resistant file name for a downloaded asset: the original
    basename, the extension from the URL path (or a per-category default)
    and a short token derived from the full source URL.
    """
    path = unquote(urlparse(url).path)
    basename = posixpath.basename(path)
    ext = url_extension(url)
    if ext not in EXTENSION_CATEGORIES:
        # style.php, image.aspx and friends get a servable extension
        ext = DEFAULT_EXTENSIONS.get(category, ".bin")
    stem = basename[: -len(ext)] if basename.lower().endswith(ext) else posixpath.splitext(basename)[0]
    stem = SAFE_NAME_RE.sub("-", stem).strip("-.")[:60] or category
    token = hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]
    return f"{stem}-{token}{ext}"


def local_path_for(url: str, category: str) -> str:
    """Bundle-relative posix path where an asset of this category is stored"""
    return posixpath.join(CATEGORY_DIRS.get(category, "assets"), local_filename(url, category))


def relative_path(target: str, from_file: str) -> str:
    """Path to bundle file ``target`` as seen from bundle file ``from_file``"""
    start = posixpath.dirname(from_file) or "."
    return posixpath.relpath(target, start)
