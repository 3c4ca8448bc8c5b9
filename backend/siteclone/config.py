"""
Runtime configuration loaded from the environment (and a local .env file)
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


@dataclass
class ClonerSettings:
    sites_dir: Path = BASE_DIR / "sites"
    upload_root: Path = BASE_DIR

    # Global ceiling for one clone operation (seconds)
    clone_timeout: float = 300.0

    # Asset downloads
    download_timeout: float = 15.0
    max_redirects: int = 5
    max_concurrent_downloads: int = 8
    rehost_web_fonts: bool = False

    # Headless rendering
    headless: bool = True
    scroll_cycles: int = 3
    scroll_delay_ms: int = 500
    # Upper bound per pass for pages that keep growing while scrolled
    max_scroll_steps: int = 200
    max_wait_ms: int = 30000
    region_wait_ms: int = 5000
    network_idle_timeout_ms: int = 15000
    loading_indicator_timeout_ms: int = 10000
    browserbase_api_key: Optional[str] = None
    browserbase_project_id: Optional[str] = None

    # Address partial-match gating
    address_partial_min_ratio: float = 0.30
    address_partial_min_chars: int = 10

    @classmethod
    def from_env(cls) -> "ClonerSettings":
        return cls(
            sites_dir=Path(os.getenv("SITES_DIR", str(BASE_DIR / "sites"))).expanduser(),
            upload_root=Path(os.getenv("UPLOAD_ROOT", str(BASE_DIR))).expanduser(),
            clone_timeout=_env_float("CLONE_TIMEOUT", 300.0),
            download_timeout=_env_float("DOWNLOAD_TIMEOUT", 15.0),
            max_redirects=_env_int("MAX_REDIRECTS", 5),
            max_concurrent_downloads=_env_int("MAX_CONCURRENT_DOWNLOADS", 8),
            rehost_web_fonts=_env_bool("REHOST_WEB_FONTS", False),
            headless=_env_bool("HEADLESS", True),
            scroll_cycles=_env_int("SCROLL_CYCLES", 3),
            scroll_delay_ms=_env_int("SCROLL_DELAY_MS", 500),
            max_scroll_steps=_env_int("MAX_SCROLL_STEPS", 200),
            max_wait_ms=_env_int("MAX_WAIT_MS", 30000),
            region_wait_ms=_env_int("REGION_WAIT_MS", 5000),
            network_idle_timeout_ms=_env_int("NETWORK_IDLE_TIMEOUT_MS", 15000),
            loading_indicator_timeout_ms=_env_int("LOADING_INDICATOR_TIMEOUT_MS", 10000),
            browserbase_api_key=os.getenv("BROWSERBASE_API_KEY") or None,
            browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID") or None,
            address_partial_min_ratio=_env_float("ADDRESS_PARTIAL_MIN_RATIO", 0.30),
            address_partial_min_chars=_env_int("ADDRESS_PARTIAL_MIN_CHARS", 10),
        )


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
