from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from bs4 import BeautifulSoup

from siteclone.assets import AssetPipeline, parse_srcset
from siteclone.config import ClonerSettings
from siteclone.events import EventLog
from siteclone.fetcher import AssetFetcher
from siteclone.injector import LOGO_MARKER, ORIGINAL_SRC
from siteclone.models import IdentityRecord
from siteclone.report import CloneStatistics
from siteclone.urls import IMAGE, SCRIPT, STYLE, local_path_for

from support import make_transport

BASE = "https://example.com/index.html"
PNG = b"\x89PNG\r\n\x1a\nfake"


class PipelineTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.output = self.root / "bundle"
        self.output.mkdir()
        self.settings = ClonerSettings(sites_dir=self.root / "sites", upload_root=self.root)
        self.identity = IdentityRecord(name="New Hotel", logo="/uploads/new.png")
        self.events = EventLog()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    async def run_pipeline(self, html: str, routes: dict, identity: IdentityRecord = None):
        transport, calls = make_transport(routes)
        soup = BeautifulSoup(html, "html.parser")
        stats = CloneStatistics()
        async with AssetFetcher(transport=transport, events=self.events) as fetcher:
            pipeline = AssetPipeline(
                fetcher, self.output, identity or self.identity, self.settings, stats, self.events
            )
            await pipeline.process(soup, BASE)
        return soup, stats, calls


class AssetPipelineTest(PipelineTestCase):
    async def test_repeated_script_downloads_once(self) -> None:
        url = "https://cdn.example.com/a.js"
        html = f'<script src="{url}"></script><p>x</p><script src="{url}"></script>'
        soup, stats, calls = await self.run_pipeline(html, {url: (200, b"var a = 1;", "application/javascript")})

        expected = local_path_for(url, SCRIPT)
        self.assertEqual(calls, [url])
        self.assertEqual([s["src"] for s in soup.find_all("script")], [expected, expected])
        self.assertEqual((self.output / expected).read_bytes(), b"var a = 1;")
        self.assertEqual(stats.total_assets, 1)

    async def test_failed_download_keeps_original_reference(self) -> None:
        html = (
            '<img src="https://img.example.com/gone.png">'
            '<img src="/relative/gone.png">'
        )
        soup, stats, _calls = await self.run_pipeline(html, {})

        sources = [img["src"] for img in soup.find_all("img")]
        self.assertEqual(sources, ["https://img.example.com/gone.png", "https://example.com/relative/gone.png"])
        self.assertEqual(stats.failed_downloads, 2)
        self.assertEqual(stats.success_rate, 0.0)
        failed_urls = {asset["url"] for asset in stats.failed_assets}
        self.assertEqual(failed_urls, {"https://img.example.com/gone.png", "https://example.com/relative/gone.png"})
        self.assertTrue(all(asset["error"] == "HTTP 404" for asset in stats.failed_assets))
        self.assertIn("asset.failed", self.events.names())

    async def test_stylesheet_urls_are_localized_relative_to_css_folder(self) -> None:
        css_url = "https://example.com/assets/css/style.css"
        bg_url = "https://example.com/assets/img/bg.jpg"
        css = b"body { background: url(../img/bg.jpg); }\n.x { background: url('data:image/png;base64,AA'); }"
        html = '<link rel="stylesheet" href="/assets/css/style.css">'
        soup, stats, calls = await self.run_pipeline(html, {
            css_url: (200, css, "text/css"),
            bg_url: (200, b"JPEGDATA", "image/jpeg"),
        })

        css_path = local_path_for(css_url, STYLE)
        bg_path = local_path_for(bg_url, IMAGE)
        self.assertEqual(soup.link["href"], css_path)
        self.assertIn(bg_url, calls)
        stored = (self.output / css_path).read_text(encoding="utf-8")
        self.assertIn(f"url(../{bg_path})", stored)
        self.assertIn("data:image/png;base64,AA", stored)
        self.assertEqual((self.output / bg_path).read_bytes(), b"JPEGDATA")
        self.assertEqual(stats.total_assets, 2)

    async def test_failed_css_reference_becomes_absolute(self) -> None:
        css_url = "https://example.com/assets/css/style.css"
        html = '<link rel="stylesheet" href="https://example.com/assets/css/style.css">'
        _soup, stats, _calls = await self.run_pipeline(html, {
            css_url: (200, b".hero { background-image: url(\"../img/missing.jpg\") }", "text/css"),
        })

        stored = (self.output / local_path_for(css_url, STYLE)).read_text(encoding="utf-8")
        self.assertIn('url("https://example.com/assets/img/missing.jpg")', stored)
        self.assertEqual(stats.failed_assets[0]["type"], "background-image")

    async def test_style_blocks_and_inline_styles(self) -> None:
        bg_url = "https://example.com/img/hero.jpg"
        font_url = "https://example.com/fonts/brand.woff2"
        html = (
            "<style>@font-face { font-family: B; src: url(/fonts/brand.woff2) format('woff2'); }</style>"
            '<div style="background-image: url(img/hero.jpg)"></div>'
        )
        soup, _stats, _calls = await self.run_pipeline(html, {
            bg_url: (200, b"JPEG", "image/jpeg"),
            font_url: (200, b"WOFF2", "font/woff2"),
        })

        self.assertIn(f"url({local_path_for(font_url, 'font')})", soup.style.string)
        self.assertTrue(local_path_for(font_url, "font").startswith("fonts/"))
        self.assertEqual(soup.div["style"], f"background-image: url({local_path_for(bg_url, IMAGE)})")

    async def test_srcset_candidates_are_rewritten(self) -> None:
        small = "https://example.com/img/room-480.jpg"
        large = "https://example.com/img/room-960.jpg"
        html = '<img src="/img/room-480.jpg" srcset="/img/room-480.jpg 480w, /img/room-960.jpg 960w">'
        soup, stats, calls = await self.run_pipeline(html, {
            small: (200, b"S", "image/jpeg"),
            large: (200, b"L", "image/jpeg"),
        })

        small_path = local_path_for(small, IMAGE)
        large_path = local_path_for(large, IMAGE)
        self.assertEqual(soup.img["src"], small_path)
        self.assertEqual(soup.img["srcset"], f"{small_path} 480w, {large_path} 960w")
        self.assertEqual(calls.count(small), 1)
        self.assertEqual(stats.total_assets, 2)

    async def test_media_and_font_preloads(self) -> None:
        video = "https://example.com/media/tour.mp4"
        poster = "https://example.com/media/poster.jpg"
        font = "https://example.com/f/icons.woff"
        html = (
            '<link rel="preload" as="font" href="/f/icons.woff" crossorigin>'
            '<video poster="/media/poster.jpg"><source src="/media/tour.mp4" type="video/mp4"></video>'
        )
        soup, _stats, _calls = await self.run_pipeline(html, {
            video: (200, b"MP4", "video/mp4"),
            poster: (200, b"JPG", "image/jpeg"),
            font: (200, b"WOFF", "font/woff"),
        })

        self.assertTrue(soup.source["src"].startswith("media/tour-"))
        self.assertTrue(soup.video["poster"].startswith("images/poster-"))
        self.assertTrue(soup.link["href"].startswith("fonts/icons-"))

    async def test_web_fonts_stay_remote_unless_rehosted(self) -> None:
        href = "https://fonts.googleapis.com/css2?family=Inter"
        html = f'<link rel="stylesheet" href="{href}">'
        soup, _stats, calls = await self.run_pipeline(html, {})
        self.assertEqual(soup.link["href"], href)
        self.assertEqual(calls, [])

        self.settings.rehost_web_fonts = True
        font = "https://fonts.gstatic.com/s/inter/v1/inter.woff2"
        soup, _stats, calls = await self.run_pipeline(html, {
            href: (200, f"@font-face {{ src: url({font}) format('woff2'); }}".encode(), "text/css"),
            font: (200, b"WOFF2", "font/woff2"),
        })
        self.assertTrue(soup.link["href"].startswith("css/"))
        self.assertIn(font, calls)

    async def test_logo_is_copied_from_upload_root(self) -> None:
        uploads = self.root / "uploads"
        uploads.mkdir()
        (uploads / "new.png").write_bytes(PNG)
        html = (
            f'<header><img src="/uploads/new.png" class="logo" {LOGO_MARKER}="true" '
            f'{ORIGINAL_SRC}="https://example.com/logo.png"></header>'
            f'<link rel="icon" href="/uploads/new.png" {LOGO_MARKER}="true" {ORIGINAL_SRC}="https://example.com/favicon.ico">'
        )
        soup, stats, calls = await self.run_pipeline(html, {})

        self.assertEqual(soup.img["src"], "images/new.png")
        self.assertEqual(soup.img["alt"], "New Hotel logo")
        self.assertEqual(soup.link["href"], "images/new.png")
        self.assertEqual((self.output / "images" / "new.png").read_bytes(), PNG)
        self.assertEqual(calls, [])
        self.assertEqual(stats.total_assets, 1)

    async def test_missing_logo_restores_original_image(self) -> None:
        html = (
            f'<img src="/uploads/new.png" class="logo" {LOGO_MARKER}="true" '
            f'{ORIGINAL_SRC}="https://example.com/logo.png">'
            f'<div class="brand"><img src="/uploads/new.png" {LOGO_MARKER}="true"></div>'
        )
        soup, stats, _calls = await self.run_pipeline(html, {})

        images = soup.find_all("img")
        self.assertEqual(len(images), 1)
        self.assertEqual(images[0]["src"], "https://example.com/logo.png")
        self.assertEqual(stats.failed_assets[0]["type"], "logo")
        self.assertIn("logo.failed", self.events.names())

    async def test_remote_logo_is_downloaded(self) -> None:
        logo = "https://brand.example.com/new-logo.svg"
        identity = IdentityRecord(name="New Hotel", logo=logo)
        html = f'<img src="{logo}" {LOGO_MARKER}="true">'
        soup, _stats, calls = await self.run_pipeline(html, {logo: (200, b"<svg/>", "image/svg+xml")}, identity)

        self.assertTrue(soup.img["src"].startswith("images/new-logo-"))
        self.assertEqual(calls, [logo])


class AssetFailureTest(PipelineTestCase):
    async def test_unparsable_url_fails_only_that_asset(self) -> None:
        ok = "https://example.com/ok.png"
        html = '<img src="http://[::1/a.png"><img src="/ok.png">'
        soup, stats, _calls = await self.run_pipeline(html, {ok: (200, PNG, "image/png")})

        broken, good = soup.find_all("img")
        self.assertEqual(broken["src"], "http://[::1/a.png")
        self.assertEqual(good["src"], local_path_for(ok, IMAGE))
        self.assertEqual(stats.total_assets, 2)
        self.assertEqual([asset["url"] for asset in stats.failed_assets], ["http://[::1/a.png"])
        self.assertTrue(stats.failed_assets[0]["error"].startswith("ValueError"))

    async def test_unwritable_asset_fails_only_that_asset(self) -> None:
        (self.output / "images").write_bytes(b"not a folder")
        image = "https://example.com/a.png"
        script = "https://example.com/app.js"
        html = '<img src="/a.png"><script src="/app.js"></script>'
        soup, stats, _calls = await self.run_pipeline(html, {
            image: (200, PNG, "image/png"),
            script: (200, b"1", "application/javascript"),
        })

        self.assertEqual(soup.img["src"], image)
        self.assertEqual(soup.script["src"], local_path_for(script, SCRIPT))
        self.assertEqual([asset["url"] for asset in stats.failed_assets], [image])
        self.assertIn("asset.failed", self.events.names())


class CssImportTest(PipelineTestCase):
    async def test_bare_import_in_style_block_is_localized_and_rewritten(self) -> None:
        extra = "https://example.com/css/extra.css"
        bg = "https://example.com/img/bg.png"
        html = '<style>@import "/css/extra.css"; body { color: red; }</style>'
        soup, stats, _calls = await self.run_pipeline(html, {
            extra: (200, b".x { background: url(../img/bg.png) }", "text/css"),
            bg: (200, PNG, "image/png"),
        })

        extra_path = local_path_for(extra, STYLE)
        self.assertIn(f'@import "{extra_path}";', soup.style.string)
        stored = (self.output / extra_path).read_text(encoding="utf-8")
        self.assertIn(f"url(../{local_path_for(bg, IMAGE)})", stored)
        self.assertEqual(stats.total_assets, 2)
        self.assertEqual({record.asset_type for record in stats.records}, {"css-import", "background-image"})

    async def test_circular_imports_complete(self) -> None:
        main = "https://example.com/css/main.css"
        part = "https://example.com/css/parts/part.css"
        html = '<link rel="stylesheet" href="/css/main.css"><link rel="stylesheet" href="/css/parts/part.css">'
        soup, stats, calls = await self.run_pipeline(html, {
            main: (200, b'@import url("parts/part.css");\nh1 { margin: 0 }', "text/css"),
            part: (200, b"@import '../main.css';\nh2 { margin: 0 }", "text/css"),
        })

        main_path = local_path_for(main, STYLE)
        part_path = local_path_for(part, STYLE)
        self.assertEqual([link["href"] for link in soup.find_all("link")], [main_path, part_path])
        self.assertIn(f'@import url("{part_path[4:]}");', (self.output / main_path).read_text(encoding="utf-8"))
        self.assertIn(f"@import '{main_path[4:]}';", (self.output / part_path).read_text(encoding="utf-8"))
        self.assertEqual(sorted(calls), [main, part])
        self.assertEqual(stats.failed_downloads, 0)

    async def test_web_font_imports_stay_remote(self) -> None:
        href = "https://fonts.googleapis.com/css2?family=Inter"
        html = f"<style>@import url('{href}');</style>"
        soup, _stats, calls = await self.run_pipeline(html, {})
        self.assertEqual(soup.style.string, f"@import url('{href}');")
        self.assertEqual(calls, [])


class ExtraReferenceTest(PipelineTestCase):
    async def test_preloads_lazy_srcsets_and_image_inputs(self) -> None:
        hero = "https://example.com/img/hero.jpg"
        script = "https://example.com/js/next.js"
        small = "https://example.com/img/a.jpg"
        large = "https://example.com/img/b.jpg"
        button = "https://example.com/img/go.png"
        html = (
            '<link rel="preload" as="image" href="/img/hero.jpg">'
            '<link rel="prefetch" as="script" href="/js/next.js">'
            '<img class="lazy" data-srcset="/img/a.jpg 1x, /img/b.jpg 2x">'
            '<form><input type="image" src="/img/go.png"></form>'
        )
        soup, stats, _calls = await self.run_pipeline(html, {
            hero: (200, b"H", "image/jpeg"),
            script: (200, b"1", "application/javascript"),
            small: (200, b"S", "image/jpeg"),
            large: (200, b"L", "image/jpeg"),
            button: (200, PNG, "image/png"),
        })

        preload, prefetch = soup.find_all("link")
        self.assertEqual(preload["href"], local_path_for(hero, IMAGE))
        self.assertEqual(prefetch["href"], local_path_for(script, SCRIPT))
        self.assertEqual(
            soup.img["data-srcset"],
            f"{local_path_for(small, IMAGE)} 1x, {local_path_for(large, IMAGE)} 2x",
        )
        self.assertEqual(soup.input["src"], local_path_for(button, IMAGE))
        self.assertEqual(stats.failed_downloads, 0)

    async def test_unhandled_relative_references_become_absolute(self) -> None:
        html = (
            '<link rel="manifest" href="/site.webmanifest">'
            '<link rel="alternate" hreflang="de" href="de/">'
            '<object data="media/plan.pdf"></object>'
            '<img src="/gone.png">'
        )
        soup, _stats, _calls = await self.run_pipeline(html, {})

        manifest, alternate = soup.find_all("link")
        self.assertEqual(manifest["href"], "https://example.com/site.webmanifest")
        self.assertEqual(alternate["href"], "https://example.com/de/")
        self.assertEqual(soup.object["data"], "https://example.com/media/plan.pdf")
        self.assertEqual(soup.img["src"], "https://example.com/gone.png")
        self.assertEqual(self.events.find("assets.processed")[0].fields["absolutized"], 3)


class SrcsetParserTest(unittest.TestCase):
    def test_parse(self) -> None:
        self.assertEqual(
            parse_srcset("a.jpg 1x, b.jpg 2x"),
            [("a.jpg", "1x"), ("b.jpg", "2x")],
        )
        self.assertEqual(parse_srcset("/img/one.png"), [("/img/one.png", "")])
        self.assertEqual(parse_srcset(""), [])


if __name__ == "__main__":
    unittest.main()
