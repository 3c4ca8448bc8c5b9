"""
Identity substitution across a parsed page: text, attributes, meta tags,
structured data and logo/icon references.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from bs4 import BeautifulSoup, Tag
from bs4.element import CData, Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

from .detector import DetectedIdentity, normalize_text
from .events import EventLog
from .models import IdentityRecord
from .urls import is_fetchable, resolve_url

LOGO_MARKER = "data-is-logo"
ORIGINAL_SRC = "data-original-src"

TEXT_ATTRIBUTES = ("alt", "title", "placeholder", "aria-label")

META_SELECTORS = [
    'meta[name="description"]',
    'meta[name="author"]',
    'meta[name="application-name"]',
    'meta[name="apple-mobile-web-app-title"]',
    'meta[property^="og:"]',
    'meta[name^="og:"]',
    'meta[name^="twitter:"]',
    'meta[property^="twitter:"]',
]

STRUCTURED_SCRIPT_TYPES = ("application/ld+json", "application/json")

BRANDING_CONTAINERS = ".logo, .brand, header, nav, .header, .navbar"

SKIPPED_STRINGS = (Comment, Doctype, Declaration, ProcessingInstruction, CData)

NAME_SUFFIX_RE = re.compile(r"\s*\b(?:Hotel|Otel)\s*$", re.IGNORECASE)
NAME_SUFFIX = r"(?:\s*(?:Hotel|Otel))"

PHONE_PATTERN = re.compile(
    r"(?<![\w+])(?:\+\d{1,3}[\s-]?)?(?:\(?\d{2,4}\)?[\s-]?)?\d{2,4}[\s-]?\d{2,4}[\s-]?\d{2,4}(?!\w)"
)
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

URL_LIKE_RE = re.compile(r"^\s*(?:[a-z][a-z0-9+.-]*://|//|/|\./|\.\./)", re.IGNORECASE)


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value or "")


def _looks_like_url(value: str) -> bool:
    if URL_LIKE_RE.match(value):
        return True
    stripped = value.strip()
    return " " not in stripped and "/" in stripped


def _class_string(tag: Tag) -> str:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        return classes
    return " ".join(classes)


def _is_branding_ancestor(tag: Tag, include_landmarks: bool = True) -> bool:
    class_string = _class_string(tag).lower()
    classes = class_string.split()
    if include_landmarks and (tag.name in ("header", "nav") or "navbar" in classes):
        return True
    return "brand" in classes or "logo" in class_string or "logo" in str(tag.get("id") or "").lower()


def is_logo_element(tag: Tag) -> bool:
    """
    Logo heuristic shared by the injector and the asset pipeline: the word
    "logo" in src/alt/class/id, or a branding ancestor (header, nav, .logo,
    .brand, .navbar, [class*=logo], [id*=logo]). Inline SVGs only count
    through explicit logo/brand containers, not every icon in a nav bar.
    """
    if tag.get(LOGO_MARKER) == "true":
        return True
    for value in (tag.get("src"), tag.get("srcset"), tag.get("alt"), tag.get("id"), _class_string(tag)):
        if value and "logo" in str(value).lower():
            return True
    include_landmarks = tag.name != "svg"
    for parent in tag.parents:
        if not isinstance(parent, Tag) or parent.name in ("body", "html", "[document]"):
            break
        if _is_branding_ancestor(parent, include_landmarks):
            return True
    return False


@dataclass
class InjectionLog:
    replaced: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[Dict[str, str]] = field(default_factory=list)

    def replace(self, kind: str, before: str, after: str) -> None:
        if before != after:
            self.replaced.append({"type": kind, "from": before, "to": after})

    def warn(self, kind: str, value: str) -> None:
        self.warnings.append({"type": kind, "value": value})

    def to_dict(self) -> dict:
        return {"replaced": self.replaced, "warnings": self.warnings}


def replace_outside(
    pattern: "re.Pattern[str]",
    text: str,
    replacement: str,
    accept: Optional[Callable[["re.Match[str]"], bool]] = None,
) -> str:
    """
    Substitute every match of ``pattern`` with ``replacement`` unless the
    match overlaps text that already reads ``replacement``. Running the same
    substitution twice therefore changes nothing the second time.
    """
    protected: List[Tuple[int, int]] = []
    if replacement:
        protected = [m.span() for m in re.finditer(re.escape(replacement), text, re.IGNORECASE)]

    def _substitute(match: "re.Match[str]") -> str:
        start, end = match.span()
        if any(start < p_end and p_start < end for p_start, p_end in protected):
            return match.group(0)
        if accept is not None and not accept(match):
            return match.group(0)
        return replacement

    return pattern.sub(_substitute, text)


def name_pattern(old_name: str) -> Optional["re.Pattern[str]"]:
    """Old name with an optional trailing Hotel/Otel suffix"""
    old_name = normalize_text(old_name)
    if not old_name:
        return None
    base = NAME_SUFFIX_RE.sub("", old_name).strip()
    had_suffix = bool(base) and base != old_name
    if not base:
        base = old_name
    body = r"\s+".join(re.escape(word) for word in base.split(" "))
    # A lone word such as "Grand" is too common to rewrite without its suffix
    suffix = NAME_SUFFIX if had_suffix and " " not in base else NAME_SUFFIX + "?"
    return re.compile(rf"(?<!\w){body}{suffix}(?!\w)", re.IGNORECASE)


class AddressMatcher:
    """
    Old address matching: a whole-string match first, then 3-word windows of
    the address, applied only when the matched spans cover enough of the text.
    """

    def __init__(self, old_address: str, min_ratio: float = 0.30, min_chars: int = 10):
        self.old_address = normalize_text(old_address)
        self.min_ratio = min_ratio
        self.min_chars = min_chars
        words = self.old_address.split(" ")
        self.full = re.compile(r"\s+".join(re.escape(word) for word in words), re.IGNORECASE)

        parts = [part for part in re.split(r"[,\s]+", self.old_address) if len(part) > 2]
        windows: List[List[str]] = []
        if len(parts) >= 3:
            windows = [parts[i:i + 3] for i in range(len(parts) - 2)]
        elif len(parts) == 2:
            windows = [parts]

        alternatives: List[str] = []
        for window in windows:
            alternative = r"[,\s]*".join(re.escape(part) for part in window)
            if alternative not in alternatives:
                alternatives.append(alternative)
        self.partial: Optional["re.Pattern[str]"] = None
        if alternatives:
            self.partial = re.compile(rf"(?<!\w)(?:{'|'.join(alternatives)})(?!\w)", re.IGNORECASE)

    def replace(self, text: str, new_address: str, log: Optional[InjectionLog] = None) -> str:
        if not text.strip():
            return text
        if new_address and normalize_text(new_address).lower() in normalize_text(text).lower():
            return text

        replaced = replace_outside(self.full, text, new_address)
        if replaced != text or self.partial is None:
            return replaced

        spans: List[List[int]] = []
        for match in self.partial.finditer(text):
            if spans and re.fullmatch(r"[,\s]*", text[spans[-1][1]:match.start()]):
                spans[-1][1] = match.end()
            else:
                spans.append([match.start(), match.end()])
        if not spans:
            return text

        matched = sum(end - start for start, end in spans)
        ratio = matched / max(len(text.strip()), 1)
        if ratio < self.min_ratio or matched < self.min_chars:
            if log is not None:
                log.warn("address-partial-skipped", f"{matched} chars ({ratio:.0%}) of {text.strip()!r}")
            return text

        pieces: List[str] = []
        cursor = 0
        for start, end in spans:
            pieces.append(text[cursor:start])
            pieces.append(new_address)
            cursor = end
        pieces.append(text[cursor:])
        return "".join(pieces)


class IdentityInjector:
    """Rewrites a parsed page so it advertises ``identity`` instead of ``old``"""

    def __init__(
        self,
        events: Optional[EventLog] = None,
        partial_min_ratio: float = 0.30,
        partial_min_chars: int = 10,
    ):
        self.events = events or EventLog()
        self.partial_min_ratio = partial_min_ratio
        self.partial_min_chars = partial_min_chars

    def inject(
        self,
        soup: BeautifulSoup,
        old: DetectedIdentity,
        identity: IdentityRecord,
        base_url: Optional[str] = None,
    ) -> InjectionLog:
        log = InjectionLog()
        counts: Dict[str, int] = {"name": 0, "address": 0, "phone": 0, "email": 0}
        rewriters = self._build_rewriters(old, identity, log, counts)

        def rewrite(text: str, allow_phone: bool = True) -> str:
            for kind, rewriter in rewriters:
                if kind == "phone" and not allow_phone:
                    continue
                updated = rewriter(text)
                if updated != text:
                    counts[kind] += 1
                text = updated
            return text

        if rewriters:
            self._rewrite_text_nodes(soup, rewrite, log)
            self._rewrite_attributes(soup, rewrite, log)
            self._rewrite_meta(soup, rewrite, log)
            self._rewrite_scripts(soup, rewrite, log)
        self._rewrite_contact_links(soup, identity, log)
        self._replace_logos(soup, identity, log, base_url)

        for kind, old_value in (("name", old.name), ("address", old.address)):
            new_value = getattr(identity, kind)
            if old_value and new_value is not None and counts[kind] == 0:
                log.warn(kind, f"Could not find/replace: {old_value}")

        for warning in log.warnings:
            self.events.emit("identity.warning", logging.WARNING, **warning)
        self.events.emit("identity.injected", replacements=len(log.replaced), warnings=len(log.warnings), **counts)
        return log

    def _build_rewriters(
        self,
        old: DetectedIdentity,
        identity: IdentityRecord,
        log: InjectionLog,
        counts: Dict[str, int],
    ) -> List[Tuple[str, Callable[[str], str]]]:
        rewriters: List[Tuple[str, Callable[[str], str]]] = []

        pattern = name_pattern(old.name) if old.name else None
        if pattern is not None:
            new_name = identity.name
            rewriters.append(("name", lambda text: replace_outside(pattern, text, new_name)))

        if old.address and identity.address is not None:
            matcher = AddressMatcher(old.address, self.partial_min_ratio, self.partial_min_chars)
            new_address = identity.address
            rewriters.append(("address", lambda text: matcher.replace(text, new_address, log)))

        if identity.phone is not None:
            new_phone = identity.phone
            new_digits = _digits(new_phone)

            def _is_foreign_phone(match: "re.Match[str]") -> bool:
                digits = _digits(match.group(0))
                return len(digits) >= 7 and not (new_digits and digits in new_digits)

            rewriters.append(("phone", lambda text: replace_outside(PHONE_PATTERN, text, new_phone, _is_foreign_phone)))

        if identity.email is not None:
            new_email = identity.email
            rewriters.append((
                "email",
                lambda text: replace_outside(
                    EMAIL_PATTERN, text, new_email, lambda m: m.group(0).lower() != new_email.lower()
                ),
            ))
        return rewriters

    def _rewrite_text_nodes(self, soup: BeautifulSoup, rewrite, log: InjectionLog) -> None:
        for node in list(soup.find_all(string=True)):
            if isinstance(node, SKIPPED_STRINGS) or node.parent is None:
                continue
            if node.parent.name in ("script", "style", "template"):
                continue
            original = str(node)
            if not original.strip():
                continue
            updated = rewrite(original)
            if updated != original:
                node.replace_with(NavigableString(updated))
                log.replace("text", original.strip(), updated.strip())

    def _rewrite_attributes(self, soup: BeautifulSoup, rewrite, log: InjectionLog) -> None:
        for tag in soup.find_all(True):
            for attr, value in list(tag.attrs.items()):
                if attr in (LOGO_MARKER, ORIGINAL_SRC) or not isinstance(value, str) or not value:
                    continue
                if attr in TEXT_ATTRIBUTES:
                    updated = rewrite(value)
                elif attr.startswith("data-") and not _looks_like_url(value):
                    updated = rewrite(value)
                else:
                    continue
                if updated != value:
                    tag[attr] = updated
                    log.replace(f"attr:{attr}", value, updated)

    def _rewrite_meta(self, soup: BeautifulSoup, rewrite, log: InjectionLog) -> None:
        for selector in META_SELECTORS:
            for meta in soup.select(selector):
                content = meta.get("content")
                if not content or _looks_like_url(content):
                    continue
                updated = rewrite(content)
                if updated != content:
                    meta["content"] = updated
                    log.replace(f"meta:{meta.get('property') or meta.get('name')}", content, updated)

    def _rewrite_scripts(self, soup: BeautifulSoup, rewrite, log: InjectionLog) -> None:
        for script in soup.find_all("script"):
            if script.get("src") or script.string is None:
                continue
            script_type = (script.get("type") or "").lower().strip()
            structured = script_type in STRUCTURED_SCRIPT_TYPES
            original = str(script.string)
            # Executable code is full of numbers that only look like phones
            updated = rewrite(original, allow_phone=structured)
            if updated != original:
                script.string = updated
                log.replace("json-ld" if structured else "script", original[:200], updated[:200])

    def _rewrite_contact_links(self, soup: BeautifulSoup, identity: IdentityRecord, log: InjectionLog) -> None:
        for link in soup.find_all(["a", "area", "link"], href=True):
            href = link["href"].strip()
            lowered = href.lower()
            updated = href
            if identity.phone is not None and (lowered.startswith("tel:") or lowered.startswith("callto:")):
                scheme = href.split(":", 1)[0]
                updated = f"{scheme}:{re.sub(r'[^0-9+]', '', identity.phone)}"
            elif identity.email is not None and lowered.startswith("mailto:"):
                updated = f"mailto:{identity.email}"
            if updated != href:
                link["href"] = updated
                log.replace("attr:href", href, updated)

    def _replace_logos(
        self,
        soup: BeautifulSoup,
        identity: IdentityRecord,
        log: InjectionLog,
        base_url: Optional[str],
    ) -> None:
        if identity.logo is None:
            return
        logo = identity.logo
        alt_text = f"{identity.name} logo"
        found = False

        def _remember(tag: Tag, original: Optional[str]) -> None:
            if original and base_url and is_fetchable(original):
                try:
                    original = resolve_url(original, base_url)
                except ValueError:
                    pass
            if original and tag.get(ORIGINAL_SRC) is None:
                tag[ORIGINAL_SRC] = original
            tag[LOGO_MARKER] = "true"

        def _replace_source(source: Tag) -> Optional[str]:
            original = source.get("srcset") or source.get("src")
            if source.get("srcset") is not None or source.find_parent("picture") is not None:
                _remember(source, (original or "").split(",")[0].strip().split(" ")[0])
                source["srcset"] = logo
                for attr in ("src", "data-srcset"):
                    if attr in source.attrs:
                        del source[attr]
            else:
                _remember(source, original)
                source["src"] = logo
            return original

        for element in list(soup.find_all(["img", "svg", "picture", "source"])):
            if element.name == "picture":
                continue
            if element.name == "svg" and element.find_parent("svg") is not None:
                continue
            if not is_logo_element(element):
                continue

            if element.name == "img":
                original = element.get("src")
                _remember(element, original)
                element["src"] = logo
                element["alt"] = alt_text
                for attr in ("srcset", "data-src", "data-srcset", "data-lazy"):
                    if attr in element.attrs:
                        del element[attr]
                # sibling sources take precedence over the img
                picture = element.find_parent("picture")
                if picture is not None:
                    for source in picture.find_all("source"):
                        if source.get(LOGO_MARKER) != "true":
                            log.replace("logo", _replace_source(source) or "source", logo)
            elif element.name == "source":
                original = _replace_source(element)
            else:
                original = None
                replacement = soup.new_tag("img", attrs={"src": logo, "alt": alt_text, LOGO_MARKER: "true"})
                for attr in ("class", "id", "width", "height"):
                    if element.get(attr):
                        replacement[attr] = element.get(attr)
                element.replace_with(replacement)

            log.replace("logo", original or element.name, logo)
            found = True

        for link in soup.find_all("link", href=True):
            rel = [value.lower() for value in (link.get("rel") or [])]
            if any("icon" in value for value in rel):
                original = link["href"]
                _remember(link, original)
                link["href"] = logo
                log.replace("icon", original, logo)

        if found:
            return
        container = soup.select_one(BRANDING_CONTAINERS)
        if container is not None:
            image = soup.new_tag("img", attrs={"src": logo, "alt": alt_text, LOGO_MARKER: "true"})
            container.insert(0, image)
            log.replace("logo-injected", "", logo)
        else:
            log.warn("logo", "No logo container found to inject logo")
