# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""snaprelay CLI: search, encode, serve commands.

Usage:
    snaprelay search IMAGE [--url URL] [--endpoint WS] [-o result.json]
    snaprelay encode IMAGE
    snaprelay serve [--host HOST] [--port PORT] ...
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import sys
from dataclasses import replace
from pathlib import Path

from .config import UploadMode, load_settings
from .errors import InvalidImageError
from .image_data import decode_base64_image, detect_mime_type
from .orchestrator import VisualSearchWorkflow
from .upload import UploadRequest

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_BAD_INPUT = 2

_MIME_BY_SUFFIX = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


def _read_image(path: Path) -> tuple[bytes, str]:
    """Read a local image file (raw bytes or a .b64/.txt base64 dump)."""
    if not path.is_file():
        raise InvalidImageError(f"Image file not found: {path}")
    if path.suffix.lower() in (".b64", ".txt"):
        text = path.read_text(encoding="utf-8")
        return decode_base64_image(text), detect_mime_type(text)
    data = path.read_bytes()
    if not data:
        raise InvalidImageError(f"Image file is empty: {path}")
    return data, _MIME_BY_SUFFIX.get(path.suffix.lower(), "image/jpeg")


def cmd_search(args: argparse.Namespace) -> int:
    settings = load_settings()
    overrides: dict = {}
    if args.endpoint:
        overrides["browser_endpoint"] = args.endpoint
    if args.upload_mode:
        overrides["upload_mode"] = UploadMode(args.upload_mode)
    if args.no_diagnostics:
        overrides["diagnostics_enabled"] = False
    if overrides:
        settings = replace(settings, **overrides)

    try:
        image, mime_type = _read_image(Path(args.image))
        request = UploadRequest(
            target_url=args.url or settings.target_url,
            image=image,
            mime_type=mime_type,
            deadline=args.timeout or settings.timeouts.total,
        )
    except (InvalidImageError, ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT

    result = asyncio.run(VisualSearchWorkflow(settings).run(request))
    text = json.dumps(result.to_dict(), ensure_ascii=False, indent=2)

    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text + "\n", encoding="utf-8")
        print(f"Saved result to {out}", file=sys.stderr)
    else:
        print(text)

    if not result.success:
        print(f"Error: {result.error}" + (f" ({result.stage})" if result.stage else ""), file=sys.stderr)
        return EXIT_FAILED
    return EXIT_OK


def cmd_encode(args: argparse.Namespace) -> int:
    """Print an image as a data URL, ready for the HTTP API's ``imageBase64``."""
    try:
        image, mime_type = _read_image(Path(args.image))
    except (InvalidImageError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_BAD_INPUT
    print(f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}")
    return EXIT_OK


def cmd_serve(args: argparse.Namespace) -> int:
    from .server import main as server_main

    server_main(getattr(args, "_server_argv", []))
    return EXIT_OK


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="snaprelay CLI", prog="snaprelay")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_search = subparsers.add_parser(
        "search",
        help="Run one visual search with a local image",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
examples:
  %(prog)s shoe.jpg                                  Print result JSON to stdout
  %(prog)s shoe.jpg -o out/result.json               Save result to a file
  %(prog)s shoe.jpg --endpoint wss://user:pw@host:9222""",
    )
    p_search.add_argument("image", help="Image file (jpg/png/gif/webp, or .b64/.txt base64 dump)")
    p_search.add_argument("--url", type=str, metavar="URL", help="Visual-search page URL")
    p_search.add_argument("--endpoint", type=str, metavar="WS", help="Remote browser CDP WebSocket URL")
    p_search.add_argument("--timeout", type=float, metavar="SECONDS", help="Completion deadline")
    p_search.add_argument("--upload-mode", choices=[m.value for m in UploadMode], help="How the image reaches the page")
    p_search.add_argument("--no-diagnostics", action="store_true", help="Skip checkpoint screenshots")
    p_search.add_argument("-o", "--output", type=str, metavar="PATH", help="Write result JSON to PATH")

    p_encode = subparsers.add_parser("encode", help="Print an image file as a base64 data URL")
    p_encode.add_argument("image", help="Image file")

    subparsers.add_parser("serve", help="Start the HTTP server (extra args forwarded to server)", add_help=False)

    commands = {"search": cmd_search, "encode": cmd_encode, "serve": cmd_serve}

    args, remaining = parser.parse_known_args(argv)
    if args.command == "serve":
        args._server_argv = remaining
    elif remaining:
        parser.error(f"unrecognized arguments: {' '.join(remaining)}")

    if args.command != "serve":
        from .logging_config import configure as configure_logging

        settings = load_settings()
        configure_logging(json_output=settings.log_json, level="DEBUG" if args.verbose else settings.log_level)

    try:
        code = commands[args.command](args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    sys.exit(code)


if __name__ == "__main__":
    main()
