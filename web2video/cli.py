"""Command-line access to retrieval and extraction.

Usage:
    python -m web2video.cli fetch https://example.com/page
    python -m web2video.cli fetch example.com/page --config ./config.yml -o text
    python -m web2video.cli probe https://cdn.example.com/clip.mp4
"""

import argparse
import asyncio
import json
import logging
import sys


def _setup_logging(verbose: bool = False):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_config(path: str | None):
    from web2video.core.runtime_config import ConfigStore, get_config_store, set_config_store

    if path:
        set_config_store(ConfigStore(path))
    return get_config_store().current()


async def _cmd_fetch(args) -> int:
    """Fetch a page and print the videos found in it."""
    from web2video.core.exceptions import BadRequestError
    from web2video.schemas.videos import normalize_target_url
    from web2video.services.extractor import extract_videos
    from web2video.services.retrieval import RetrievalOrchestrator, Success

    config = _load_config(args.config)
    try:
        url = normalize_target_url(args.url)
    except BadRequestError as e:
        print(f"[ERROR] {e.message}", file=sys.stderr)
        return 2

    print(f"Fetching {url}...", file=sys.stderr)
    outcome = await RetrievalOrchestrator(config).fetch(url)
    if not isinstance(outcome, Success):
        if args.output == "json":
            print(json.dumps(
                {
                    "success": False,
                    "error": outcome.message,
                    "attempts": [a.to_dict() for a in outcome.attempts],
                },
                indent=2,
            ))
        else:
            print(outcome.message)
        return 1

    videos = extract_videos(outcome.body, url, config.video_extensions, config.image_extensions)
    if args.output == "json":
        print(json.dumps(
            {
                "success": True,
                "url": url,
                "tier": outcome.tier,
                "videos": [v.to_dict() for v in videos],
                "count": len(videos),
            },
            indent=2,
            ensure_ascii=False,
        ))
    else:
        for video in videos:
            print(f"{video.kind:15} {video.url}")
    print(f"\nFound {len(videos)} videos via {outcome.tier}", file=sys.stderr)
    return 0


async def _cmd_probe(args) -> int:
    """Read size and container format of a video URL."""
    from web2video.services.probe import probe_video
    from web2video.services.retrieval import RetrievalOrchestrator

    config = _load_config(args.config)
    metadata = await probe_video(args.url, RetrievalOrchestrator(config))
    if args.output == "json":
        print(json.dumps(metadata.model_dump(exclude_none=True), indent=2))
    else:
        print(f"URL: {metadata.url}")
        print(f"Format: {metadata.format or 'unknown'}")
        print(f"Size: {metadata.file_size if metadata.file_size is not None else 'unknown'}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="web2video",
        description="Web2Video CLI: fetch pages through the bypass cascade and list their videos",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "-o", "--output", default="json",
        choices=["json", "text"],
        help="Output format (default: json)",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to the retrieval config file (default: CONFIG_PATH or config.yml)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    fetch_parser = subparsers.add_parser("fetch", help="Fetch a page and extract video references")
    fetch_parser.add_argument("url", help="Page URL")

    probe_parser = subparsers.add_parser("probe", help="Probe a video URL for size and format")
    probe_parser.add_argument("url", help="Video URL")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    _setup_logging(args.verbose)

    if args.command == "fetch":
        return asyncio.run(_cmd_fetch(args))
    return asyncio.run(_cmd_probe(args))


if __name__ == "__main__":
    sys.exit(main())
