import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .config import (
    DEFAULT_CONCURRENCY,
    ArchiveOptions,
    TransportSettings,
    flatten_config,
    load_config_file,
)
from .document import capture_document, check_capturable, data_folder_for, default_save_name
from .errors import ArchiveError, ConfigError
from .job import ArchiveJob, ArchiveServices, ArchiveStatus, LoggingProgressListener


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        description="Save a web page together with every resource it references.",
    )
    p.add_argument("--config", type=str, help="path to config.toml|.yaml", default=None)

    p.add_argument("url", help="http(s) URL")
    p.add_argument(
        "output_file",
        nargs="?",
        default=None,
        help="HTML file to write (default: derived from the URL or page title)",
    )
    p.add_argument("--save-iframes", action="store_true", help="also save iframe documents")
    p.add_argument(
        "--save-objects", action="store_true", help="also save embed/object resources"
    )
    p.add_argument(
        "--rewrite-links",
        action="store_true",
        help="rewrite relative anchors to absolute http(s) links",
    )
    p.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help="simultaneous downloads",
    )
    p.add_argument("--timeout", type=float, default=15.0, help="request timeout seconds")
    p.add_argument(
        "--max-bytes", type=int, default=50_000_000, help="max bytes per resource"
    )
    p.add_argument(
        "--header",
        action="append",
        default=[],
        help="extra request header 'Name: value'",
    )
    p.add_argument(
        "--post-data", type=str, default=None, help="form body the page was requested with"
    )
    p.add_argument("--verbose", action="store_true", help="debug logging")
    return p


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = build_arg_parser()
    preliminary, _ = parser.parse_known_args(argv)
    if preliminary.config:
        flat = {
            k.replace("-", "_"): v
            for k, v in flatten_config(load_config_file(preliminary.config)).items()
        }
        known = {a.dest for a in parser._actions}
        unknown = sorted(set(flat) - known)
        if unknown:
            raise ConfigError("unknown config key(s): " + ", ".join(unknown))
        parser.set_defaults(**flat)
    return parser.parse_args(argv)


def print_summary(job: ArchiveJob, status: ArchiveStatus, messages: Dict[str, Any]) -> None:
    print(f"Archive {status.value}: {job.output_file}")
    for phase, marks in messages["timers"].items():
        start, finish = marks["start"], marks["finish"]
        if start and finish:
            print(f"  {phase}: {(finish - start).total_seconds():.2f}s")
    for err in messages["errors"]:
        print(f"  error: {err}")


async def run_job(job: ArchiveJob) -> Optional[ArchiveStatus]:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, job.cancel, "interrupted")
        handler = True
    except (NotImplementedError, RuntimeError):
        # no signal handlers on this event loop (Windows, non-main thread)
        handler = False
    try:
        return await job.arun()
    finally:
        if handler:
            loop.remove_signal_handler(signal.SIGINT)


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = parse_args(argv)
    except ArchiveError as e:
        print(f"Invalid config: {e}")
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    if urlparse(args.url).scheme not in {"http", "https"}:
        print("Invalid URL. Use http:// or https://")
        return 1

    try:
        settings = TransportSettings(
            timeout=args.timeout,
            max_bytes=max(1024, args.max_bytes),
            extra_headers=args.header or [],
        )
        options = ArchiveOptions(
            save_iframes=args.save_iframes,
            save_objects=args.save_objects,
            rewrite_links=args.rewrite_links,
            concurrency=max(1, args.concurrency),
            progress_listener=LoggingProgressListener(),
        )
        services = ArchiveServices.default(settings)
    except ConfigError as e:
        print(f"Invalid option: {e}")
        return 1

    try:
        try:
            document = capture_document(args.url, services.transport, post_data=args.post_data)
            check_capturable(document)
            output = Path(args.output_file or default_save_name(document.url, document.title))
            job = ArchiveJob(
                document,
                output,
                data_folder_for(output),
                options,
                services,
                callback=print_summary,
            )
        except ArchiveError as e:
            print(f"Critical error: {e}")
            return 1

        status = asyncio.run(run_job(job))
    finally:
        services.transport.close()
    return 0 if status == ArchiveStatus.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(main())
