"""
Per-clone asset statistics and the debug reports written next to index.html
"""

import html
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

DOCTYPE = "<!DOCTYPE html>"


@dataclass(frozen=True)
class AssetRecord:
    """Outcome of one distinct asset URL"""
    source_url: str
    category: str
    asset_type: str
    local_path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.local_path is not None


class CloneStatistics:
    """Asset counters for a single clone operation"""

    def __init__(self):
        self.started = time.monotonic()
        self.finished: Optional[float] = None
        self.records: List[AssetRecord] = []

    def record(self, record: AssetRecord) -> None:
        self.records.append(record)

    def finish(self) -> None:
        self.finished = time.monotonic()

    @property
    def total_assets(self) -> int:
        return len(self.records)

    @property
    def successful_downloads(self) -> int:
        return sum(1 for record in self.records if record.ok)

    @property
    def failed_downloads(self) -> int:
        return self.total_assets - self.successful_downloads

    @property
    def failed_assets(self) -> List[Dict[str, str]]:
        return [
            {"type": record.asset_type, "url": record.source_url, "error": record.error or "unknown error"}
            for record in self.records
            if not record.ok
        ]

    @property
    def success_rate(self) -> float:
        if not self.records:
            return 0.0
        return round(self.successful_downloads / self.total_assets * 100, 1)

    @property
    def duration_ms(self) -> int:
        end = self.finished if self.finished is not None else time.monotonic()
        return int((end - self.started) * 1000)

    def summary(self) -> Dict[str, Any]:
        return {
            "totalAssets": self.total_assets,
            "successfulDownloads": self.successful_downloads,
            "failedDownloads": self.failed_downloads,
            "successRate": self.success_rate,
            "durationMs": self.duration_ms,
            "failedAssets": self.failed_assets,
        }


def html_info(markup: str) -> Dict[str, Any]:
    return {
        "length": len(markup),
        "hasDoctype": DOCTYPE.lower() in markup.lower(),
        "hasHtmlTag": "<html" in markup,
        "hasHead": "<head" in markup,
        "hasBody": "<body" in markup,
    }


@dataclass
class CloneReport:
    source_url: str
    identity: Dict[str, Any]
    statistics: CloneStatistics
    is_fallback: bool = False
    detected_identity: Optional[Dict[str, Any]] = None
    injection_log: Optional[Dict[str, Any]] = None
    markup: str = ""
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "sourceUrl": self.source_url,
            "identity": self.identity,
            "isFallback": self.is_fallback,
            "statistics": self.statistics.summary(),
            "failedAssets": self.statistics.failed_assets,
            "detectedIdentity": self.detected_identity,
            "injection": self.injection_log,
            "htmlInfo": html_info(self.markup),
        }

    def write(self, output_dir: Path) -> None:
        output_dir = Path(output_dir)
        (output_dir / "debug-report.json").write_text(
            json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8"
        )
        (output_dir / "debug-report.html").write_text(self.render_html(), encoding="utf-8")

    def render_html(self) -> str:
        def esc(value: Any) -> str:
            return html.escape("N/A" if value is None else str(value))

        summary = self.statistics.summary()
        info = html_info(self.markup)
        yes_no = {True: "Yes", False: "No"}

        failed_rows = "".join(
            f"<tr><td>{esc(asset['type'])}</td><td>{esc(asset['url'])}</td>"
            f"<td class=\"error\">{esc(asset['error'])}</td></tr>\n"
            for asset in summary["failedAssets"]
        )
        failed_section = ""
        if failed_rows:
            failed_section = (
                f"<div class=\"debug\"><h2>Failed Assets ({len(summary['failedAssets'])})</h2>\n"
                f"<table><tr><th>Type</th><th>URL</th><th>Error</th></tr>\n{failed_rows}</table></div>"
            )

        warnings = (self.injection_log or {}).get("warnings", [])
        warning_items = "".join(
            f"<li class=\"warning\">{esc(w.get('type'))}: {esc(w.get('value'))}</li>\n" for w in warnings
        )

        return f"""{DOCTYPE}
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Debug Report - {esc(self.identity.get('name'))}</title>
<style>
body {{ font-family: Arial, sans-serif; padding: 20px; background: #f0f0f0; }}
.debug {{ background: white; padding: 20px; border-radius: 5px; margin: 10px 0; }}
pre {{ background: #f5f5f5; padding: 10px; overflow-x: auto; }}
.success {{ color: green; }} .error {{ color: red; }} .warning {{ color: orange; }}
table {{ width: 100%; border-collapse: collapse; }}
th, td {{ border: 1px solid #ddd; padding: 8px; text-align: left; }}
</style>
</head>
<body>
<h1>Clone Debug Report</h1>
<div class="debug">
<h2>Source</h2>
<p><strong>URL:</strong> {esc(self.source_url)}</p>
<p><strong>Generated:</strong> {esc(self.timestamp)}</p>
<p><strong>Fallback page:</strong> {yes_no[self.is_fallback]}</p>
</div>
<div class="debug">
<h2>Identity</h2>
<p><strong>Name:</strong> {esc(self.identity.get('name'))}</p>
<p><strong>Address:</strong> {esc(self.identity.get('address'))}</p>
<p><strong>Phone:</strong> {esc(self.identity.get('phone'))}</p>
<p><strong>Email:</strong> {esc(self.identity.get('email'))}</p>
</div>
<div class="debug">
<h2>Asset Statistics</h2>
<table>
<tr><th>Metric</th><th>Value</th></tr>
<tr><td>Total Assets</td><td>{summary['totalAssets']}</td></tr>
<tr><td>Successful Downloads</td><td class="success">{summary['successfulDownloads']}</td></tr>
<tr><td>Failed Downloads</td><td class="error">{summary['failedDownloads']}</td></tr>
<tr><td>Success Rate</td><td>{summary['successRate']}%</td></tr>
<tr><td>Duration</td><td>{summary['durationMs']}ms</td></tr>
</table>
</div>
<div class="debug">
<h2>HTML File Info</h2>
<p><strong>File Size:</strong> {info['length']} characters</p>
<p><strong>Has DOCTYPE:</strong> {yes_no[info['hasDoctype']]}</p>
<p><strong>Has HTML tag:</strong> {yes_no[info['hasHtmlTag']]}</p>
<p><strong>Has Head:</strong> {yes_no[info['hasHead']]}</p>
<p><strong>Has Body:</strong> {yes_no[info['hasBody']]}</p>
</div>
{failed_section}
<div class="debug">
<h2>Injection Warnings ({len(warnings)})</h2>
<ul>
{warning_items}</ul>
</div>
<div class="debug">
<h2>First 1000 characters of index.html</h2>
<pre>{html.escape(self.markup[:1000])}</pre>
</div>
</body>
</html>
"""
