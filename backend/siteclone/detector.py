"""
Heuristic detection of the source site's identity (name, address, phone, email).

Everything found here is a candidate, not a fact. The injector gates what it
does with these strings, so false positives are tolerated.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup

from .events import EventLog
from .models import PreviousIdentity

NAME_SELECTORS = [
    "h1", "h2", ".hotel-name", ".brand-name", ".logo-text",
    '[class*="hotel"]', '[class*="brand"]', '[class*="logo"]',
    ".title", ".name", ".header-title", ".site-title",
]

ADDRESS_SELECTORS = [
    "address", ".address", ".location", ".contact-info",
    '[class*="address"]', '[id*="address"]', '[class*="location"]', '[class*="contact"]',
]

ADDRESS_CONTAINER_SELECTORS = ["footer", ".footer", ".contact", ".info", ".details"]

PHONE_SELECTORS = [
    ".phone", ".tel", '[class*="phone"]', '[class*="tel"]', ".contact", '[class*="contact"]',
    'a[href^="tel:"]', 'a[href^="callto:"]',
]

EMAIL_SELECTORS = [
    ".email", ".mail", '[class*="email"]', '[class*="mail"]', ".contact", '[class*="contact"]',
    'a[href^="mailto:"]',
]

HOSPITALITY_KEYWORDS = (
    "hotel", "resort", "inn", "lodge", "boutique", "luxury", "grand",
    "otel", "oteli", "konak", "pansiyon", "misafirhane",
)

NAME_PATTERN = re.compile(r"^[A-Z][a-z]+ (Hotel|Resort|Inn|Lodge|Otel)", re.IGNORECASE)

ADDRESS_PATTERNS = [
    re.compile(r"\d+[,\s]+[A-Za-z\s]+[,\s]+\d{5}"),
    re.compile(r"\b(Street|St\.|Ave\.?|Avenue|Blvd|Boulevard|Road|Rd\.|Lane|Drive|Suite|Apt\.?|Floor)\b", re.IGNORECASE),
    re.compile(r"(Mah\.|Mahallesi|Sok\.|Sokak|Cad\.|Caddesi|No:|Adres)", re.IGNORECASE),
    re.compile(r"\b\d{4,6}\b"),
]

ADDRESS_EXTRACTORS = [
    re.compile(r"[^\n\r<>|]{0,60}(Mah\.|Sok\.|Cad\.|No:)[^\n\r<>|]{5,140}", re.IGNORECASE),
    re.compile(r"\d+[\w .'-]{0,40}\b(Street|Ave|Avenue|Blvd|Boulevard|Road|Lane|Drive|Way)\b[^\n\r<>|]{0,140}", re.IGNORECASE),
    re.compile(r"[^\n\r<>|]{5,80}\b\d{5}\b[^\n\r<>|]{0,60}"),
]

PHONE_CANDIDATE = re.compile(r"\+?\(?\d[\d\s().\-]{5,}\d")
PHONE_SHAPES = [
    re.compile(r"\+?\d{1,4}\d{3}\d{3}\d{2}"),
    re.compile(r"\(\d{3}\)\d{3}\d{4}"),
    re.compile(r"\d{7,15}"),
]

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

WHITESPACE_RE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return WHITESPACE_RE.sub(" ", text or "").strip()


def is_hotel_name(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in HOSPITALITY_KEYWORDS) or bool(NAME_PATTERN.search(text))


def is_address(text: str) -> bool:
    return any(pattern.search(text) for pattern in ADDRESS_PATTERNS)


def is_phone_number(text: str) -> bool:
    digits = re.sub(r"\D", "", text)
    if len(digits) < 7 or len(digits) > 15:
        return False
    compact = re.sub(r"[\s\-().]", "", text)
    return any(shape.search(compact) for shape in PHONE_SHAPES)


@dataclass
class DetectedIdentity:
    names: List[str] = field(default_factory=list)
    addresses: List[str] = field(default_factory=list)
    phones: List[str] = field(default_factory=list)
    emails: List[str] = field(default_factory=list)

    @property
    def name(self) -> Optional[str]:
        return self.names[0] if self.names else None

    @property
    def address(self) -> Optional[str]:
        return self.addresses[0] if self.addresses else None

    @property
    def phone(self) -> Optional[str]:
        return self.phones[0] if self.phones else None

    @property
    def email(self) -> Optional[str]:
        return self.emails[0] if self.emails else None

    def merged_with(self, previous: Optional[PreviousIdentity]) -> "DetectedIdentity":
        """Caller-supplied values go first so they win over detection"""
        if previous is None:
            return self

        def _merge(known: Optional[str], found: List[str]) -> List[str]:
            if not known:
                return list(found)
            return [known] + [value for value in found if value != known]

        return DetectedIdentity(
            names=_merge(previous.name, self.names),
            addresses=_merge(previous.address, self.addresses),
            phones=_merge(previous.phone, self.phones),
            emails=_merge(previous.email, self.emails),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "candidates": {
                "names": self.names,
                "addresses": self.addresses,
                "phones": self.phones,
                "emails": self.emails,
            },
        }


class IdentityDetector:
    """Scans a parsed page for the identity it currently advertises"""

    def __init__(self, events: Optional[EventLog] = None):
        self.events = events or EventLog()

    def detect(self, soup: BeautifulSoup) -> DetectedIdentity:
        detected = DetectedIdentity(
            names=self._detect_names(soup),
            addresses=self._detect_addresses(soup),
            phones=self._detect_phones(soup),
            emails=self._detect_emails(soup),
        )
        self.events.emit(
            "identity.detected",
            name=detected.name,
            address=detected.address,
            phone=detected.phone,
            email=detected.email,
        )
        return detected

    def _texts(self, soup: BeautifulSoup, selectors: Iterable[str]):
        for selector in selectors:
            for element in soup.select(selector):
                yield element, normalize_text(element.get_text(" "))

    def _detect_names(self, soup: BeautifulSoup) -> List[str]:
        names: List[str] = []
        for _element, text in self._texts(soup, NAME_SELECTORS):
            if 4 <= len(text) <= 80 and is_hotel_name(text) and text not in names:
                names.append(text)

        if not names:
            site_name = soup.find("meta", attrs={"property": "og:site_name"})
            content = normalize_text(site_name.get("content", "")) if site_name else ""
            if 4 <= len(content) <= 80:
                names.append(content)
        return names

    def _detect_addresses(self, soup: BeautifulSoup) -> List[str]:
        addresses: List[str] = []
        for _element, text in self._texts(soup, ADDRESS_SELECTORS):
            if 10 <= len(text) <= 200 and is_address(text) and text not in addresses:
                addresses.append(text)

        # Generic containers are usually too long to be an address as a
        # whole, so only an address-shaped span inside them is taken.
        for _element, text in self._texts(soup, ADDRESS_CONTAINER_SELECTORS):
            for pattern in ADDRESS_EXTRACTORS:
                match = pattern.search(text)
                if not match:
                    continue
                candidate = match.group(0).strip(" ,;-")
                if 10 <= len(candidate) <= 200 and candidate not in addresses:
                    addresses.append(candidate)
                break
        return addresses

    def _detect_phones(self, soup: BeautifulSoup) -> List[str]:
        phones: List[str] = []
        for _element, text in self._texts(soup, PHONE_SELECTORS):
            if not text or len(text) >= 50:
                continue
            match = PHONE_CANDIDATE.search(text)
            if match and is_phone_number(match.group(0)):
                phone = match.group(0).strip()
                if phone not in phones:
                    phones.append(phone)

        for link in soup.select('a[href^="tel:"], a[href^="callto:"]'):
            phone = re.sub(r"^(tel:|callto:)", "", link.get("href", ""), flags=re.IGNORECASE).strip()
            if is_phone_number(phone) and phone not in phones:
                phones.append(phone)
        return phones

    def _detect_emails(self, soup: BeautifulSoup) -> List[str]:
        emails: List[str] = []
        for _element, text in self._texts(soup, EMAIL_SELECTORS):
            if "@" not in text or len(text) >= 100:
                continue
            for email in EMAIL_PATTERN.findall(text):
                if email not in emails:
                    emails.append(email)

        for link in soup.select('a[href^="mailto:"]'):
            address = link.get("href", "")[len("mailto:"):].split("?", 1)[0].strip()
            if EMAIL_PATTERN.fullmatch(address) and address not in emails:
                emails.append(address)
        return emails
