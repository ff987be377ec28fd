import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from checkup import log_utils
from checkup.config import Settings, load_settings
from checkup.exceptions import CheckupError, ConfigurationError, InvalidRequestError
from checkup.releases.models import PlatformKind, RepositoryKey
from checkup.releases.orchestrator import ResolveResult, ResolveStatus
from checkup.routing import parse_repository_path, parse_repository_spec
from checkup.server import build_orchestrator, run_server
from checkup.utils import get_version


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--cache",
        dest="cache_dir",
        metavar="DIR",
        help="Cache directory (default: the user cache directory)",
    )
    parser.add_argument(
        "--cache-hours",
        type=float,
        metavar="HOURS",
        help="Hours before a cached release list is refreshed (default: 24)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Console log level",
    )
    parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Also write a rotating log file to this directory",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Checkup - caching proxy for release metadata of code-hosting platforms"
    )
    subparsers = parser.add_subparsers(dest="command")

    # Command to run the HTTP server (also the default)
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    _add_common_arguments(serve_parser)
    serve_parser.add_argument("--host", help="Address to bind (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, help="Port to bind (default: 3000)")
    serve_parser.add_argument(
        "--no-warm",
        action="store_true",
        help="Do not refresh the configured repositories at startup",
    )

    # Command to refresh repositories ahead of time
    warm_parser = subparsers.add_parser(
        "warm",
        help="Refresh cached releases for repositories",
        description="Refresh the given repositories, or the WARM list from the configuration.",
    )
    _add_common_arguments(warm_parser)
    warm_parser.add_argument(
        "repos",
        nargs="*",
        metavar="REPO",
        help="Repository as platform/path, e.g. github/sharkdp/bat",
    )

    # Command to fetch one repository and print the result
    fetch_parser = subparsers.add_parser(
        "fetch", help="Fetch one repository now and print its releases as JSON"
    )
    _add_common_arguments(fetch_parser)
    fetch_parser.add_argument(
        "platform", choices=[platform.value for platform in PlatformKind]
    )
    fetch_parser.add_argument(
        "path", help="Repository path, e.g. sharkdp/bat or git.kernel.org/pub/scm/git/git.git"
    )

    # Command to display version
    subparsers.add_parser("version", help="Display Checkup version")

    return parser


def _load_settings(args: argparse.Namespace) -> Settings:
    """
    Load settings for a command and apply its logging options.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    overrides = {
        "CACHE_DIR": getattr(args, "cache_dir", None),
        "CACHE_HOURS": getattr(args, "cache_hours", None),
        "HOST": getattr(args, "host", None),
        "PORT": getattr(args, "port", None),
        "LOG_LEVEL": getattr(args, "log_level", None),
        "LOG_DIR": getattr(args, "log_dir", None),
    }
    settings = load_settings(getattr(args, "config", None), overrides)

    if settings.log_level:
        log_utils.set_log_level(settings.log_level)
    if settings.log_dir:
        log_utils.add_file_logging(Path(settings.log_dir), settings.log_level or "INFO")
    return settings


async def _warm(settings: Settings, keys: List[RepositoryKey]) -> bool:
    orchestrator = build_orchestrator(settings)
    try:
        results = await orchestrator.warm(keys, settings.warm_concurrency)
    finally:
        await orchestrator.close()

    ok = True
    for key, result in results.items():
        if result.status is ResolveStatus.FAILED:
            ok = False
            log_utils.logger.error(f"{key}: {result.message}")
        else:
            log_utils.logger.info(f"{key}: {len(result.entry.releases)} releases cached")
    return ok


def run_warm(settings: Settings, specs: Sequence[str]) -> int:
    """
    Refresh the repositories named by `specs` (or the configured WARM list).

    Returns:
        int: Process exit code, 1 if any repository could not be refreshed.
    """
    specs = list(specs) or list(settings.warm)
    if not specs:
        log_utils.logger.error(
            "No repositories to warm. Pass platform/path arguments or set WARM in the configuration."
        )
        return 1

    keys: List[RepositoryKey] = []
    invalid = 0
    for spec in specs:
        try:
            keys.append(parse_repository_spec(spec))
        except InvalidRequestError as e:
            invalid += 1
            log_utils.logger.error(f"Invalid repository '{spec}': {e}")

    ok = asyncio.run(_warm(settings, keys)) if keys else True
    return 0 if ok and not invalid else 1


async def _fetch(settings: Settings, key: RepositoryKey) -> ResolveResult:
    orchestrator = build_orchestrator(settings)
    try:
        return await orchestrator.refresh(key)
    finally:
        await orchestrator.close()


def run_fetch(settings: Settings, platform: str, path: str) -> int:
    """Fetch one repository, print its CacheEntry JSON and return the exit code."""
    try:
        key = parse_repository_path(PlatformKind(platform), path)
    except InvalidRequestError as e:
        log_utils.logger.error(f"Invalid repository path '{path}': {e}")
        return 1

    result = asyncio.run(_fetch(settings, key))
    if result.status is ResolveStatus.FAILED:
        log_utils.logger.error(f"Failed to fetch {key}: {result.message}")
        return 1

    print(json.dumps(result.entry.to_dict(), indent=2))
    return 0


def main(argv: Optional[Sequence[str]] = None) -> None:
    # Logging is automatically initialized by importing log_utils

    """
    Entry point for the Checkup command-line interface.

    Parses command-line arguments and dispatches the subcommands serve (the
    default when none is given), warm, fetch and version. Exits with status 1
    when configuration is invalid or a warm/fetch operation fails.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        log_utils.logger.info(f"Checkup v{get_version()}")
        return

    try:
        settings = _load_settings(args)
    except ConfigurationError as e:
        log_utils.logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        if args.command == "warm":
            sys.exit(run_warm(settings, args.repos))
        elif args.command == "fetch":
            sys.exit(run_fetch(settings, args.platform, args.path))
        else:
            run_server(settings, warm=not getattr(args, "no_warm", False))
    except CheckupError as e:
        log_utils.logger.error(f"{e}")
        sys.exit(1)
    except KeyboardInterrupt:
        log_utils.logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
