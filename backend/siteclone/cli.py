"""
Command line entry point: clone one site and print its report summary
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .cloner import WebsiteCloner
from .config import LOG_LEVEL, ClonerSettings
from .errors import CloneError, CloneTimeoutError, CloneValidationError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="siteclone",
        description="Clone a website into a local bundle carrying a new identity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m siteclone https://example.com --name "New Hotel"

  python -m siteclone https://example.com --name "New Hotel" \\
      --phone "+90 555 000 0000" --logo uploads/logo.png --output ./out
        """
    )
    parser.add_argument("url", help="Source website URL (http or https)")
    parser.add_argument("--name", required=True, help="New organization name")
    parser.add_argument("--address", help="New postal address")
    parser.add_argument("--phone", help="New phone number")
    parser.add_argument("--email", help="New contact email")
    parser.add_argument("--description", help="Short description (used by the fallback page)")
    parser.add_argument("--logo", help="Logo file (relative to the upload root) or absolute logo URL")
    parser.add_argument("--old-name", help="Name currently shown by the source site, skips detection")
    parser.add_argument("--old-address", help="Address currently shown by the source site")
    parser.add_argument("--old-phone", help="Phone currently shown by the source site")
    parser.add_argument("--old-email", help="Email currently shown by the source site")
    parser.add_argument("--output", "-o", type=Path, help="New or empty output directory (default: a new folder under SITES_DIR)")
    parser.add_argument("--timeout", type=float, help="Overall clone timeout in seconds")
    parser.add_argument("--headful", action="store_true", help="Show the browser during dynamic capture")
    parser.add_argument("--rehost-web-fonts", action="store_true", help="Download Google Fonts into the bundle")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = ClonerSettings.from_env()
    if args.timeout is not None:
        settings.clone_timeout = args.timeout
    if args.headful:
        settings.headless = False
    if args.rehost_web_fonts:
        settings.rehost_web_fonts = True

    identity = {
        "name": args.name,
        "address": args.address,
        "phone": args.phone,
        "email": args.email,
        "description": args.description,
        "logo": args.logo,
    }
    previous = {
        "name": args.old_name,
        "address": args.old_address,
        "phone": args.old_phone,
        "email": args.old_email,
    }
    if not any(previous.values()):
        previous = None

    cloner = WebsiteCloner(settings=settings)
    try:
        result = asyncio.run(cloner.clone(args.url, identity, output_dir=args.output, previous_identity=previous))
    except CloneValidationError as e:
        print(f"[!] Invalid request: {e}", file=sys.stderr)
        return 2
    except CloneTimeoutError as e:
        print(f"[!] {e}", file=sys.stderr)
        return 3
    except CloneError as e:
        print(f"[!] Clone failed: {e}", file=sys.stderr)
        return 1

    print(json.dumps({
        "outputDirectory": str(result.output_directory),
        "isFallback": result.is_fallback,
        "reportSummary": result.report_summary,
    }, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
