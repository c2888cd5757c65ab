"""Command-line interface for matchcast."""

import argparse
import asyncio
import logging
import pathlib
import webbrowser

from .catalog import StreamedCatalog
from .config import Settings, load_settings
from .health import HealthRegistry
from .selector import StreamSelector
from .session import Session
from .types import FailoverStatus, HealthStatus, Match, ViewSlot

logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        debug: Enable debug level logging if True.
    """
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler("matchcast.log"),
            logging.StreamHandler(),
        ],
    )


def add_autoplay_to_url(url: str, muted: bool = False) -> str:
    """
    Add autoplay parameters to embed URLs for automatic playback.

    Args:
        url: The embed URL.
        muted: Whether playback should start muted.

    Returns:
        URL with autoplay parameters added.
    """
    separator = "&" if "?" in url else "?"
    mute = "1" if muted else "0"

    # YouTube embeds
    if "youtube.com/embed" in url or "youtube-nocookie.com/embed" in url:
        return f"{url}{separator}autoplay=1&mute={mute}"

    # Vimeo embeds
    if "vimeo.com" in url:
        return f"{url}{separator}autoplay=1&muted={mute}"

    # Twitch embeds
    if "twitch.tv" in url:
        return f"{url}{separator}autoplay=true&muted={str(muted).lower()}"

    # Default: return as-is for unknown platforms
    return url


def format_match(match: Match) -> str:
    live = "LIVE " if match.is_live else ""
    start = match.start_time.strftime("%Y-%m-%d %H:%M") if match.start_time else "TBD"
    return f"{live}[{match.id}] {match.title} ({match.league or match.sport}, {start})"


def open_slot(slot: ViewSlot) -> None:
    """Open a slot's selected stream in the system browser."""
    if slot.selected is None:
        logger.warning("No stream to open for %s", slot.match.title)
        return

    url = add_autoplay_to_url(slot.selected.playable_url, muted=slot.muted)
    logger.info("  Opening in browser: %s", url)
    webbrowser.open(url)


def list_matches(catalog: StreamedCatalog, sport: str | None) -> None:
    matches = catalog.fetch_matches(sport)
    if not matches:
        logger.error("No matches found!")
        return

    matches.sort(key=lambda m: not m.is_live)
    logger.info("Found %d matches:", len(matches))
    for match in matches:
        logger.info("  %s", format_match(match))


def check_slots(session: Session, open_browser: bool) -> None:
    """Fail over every slot whose current stream went offline."""
    for slot in list(session.slots):
        status = session.health_of(slot.match.id)
        logger.info("%s: %s", slot.match.title, status)
        if status != HealthStatus.OFFLINE or slot.exhausted:
            continue

        result = session.report_failure(slot.match.id)
        if result == FailoverStatus.SWITCHED:
            logger.info("Switched %s to next available stream", slot.match.title)
            if open_browser:
                open_slot(slot)
        elif result == FailoverStatus.EXHAUSTED:
            logger.error("All streams for %s are down", slot.match.title)


async def watch(
    catalog: StreamedCatalog,
    settings: Settings,
    match_ids: list[str],
    sport: str | None = None,
    open_browser: bool = True,
) -> None:
    """
    Watch one or more matches until interrupted.

    Args:
        catalog: Catalog used to find matches and resolve their streams.
        settings: Loaded settings.
        match_ids: Ids of the matches to watch; the first one has audio.
        sport: Restrict the match lookup to one sport.
        open_browser: Open selected streams in the system browser.
    """
    loop = asyncio.get_running_loop()
    matches = await loop.run_in_executor(None, catalog.fetch_matches, sport)
    by_id = {match.id: match for match in matches}

    wanted = [by_id[mid] for mid in match_ids if mid in by_id]
    for mid in match_ids:
        if mid not in by_id:
            logger.error("Match not found: %s", mid)
    if not wanted:
        return

    registry = HealthRegistry(
        probe_timeout=settings.probe_timeout,
        recovery_window=settings.recovery_window,
        max_workers=settings.max_workers,
    )
    selector = StreamSelector(registry, settings.preferred_language, settings.quality_preferences)

    try:
        session = await Session.create(
            wanted[0],
            catalog.resolve_candidates,
            registry,
            selector=selector,
            max_slots=settings.max_slots,
            probe_interval=settings.probe_interval,
            recovery_interval=settings.recovery_interval,
        )
        for match in wanted[1:]:
            if not await session.add_match(match):
                logger.warning("Could not add %s (session full or duplicate)", match.title)

        if open_browser:
            for slot in session.slots:
                open_slot(slot)

        async with session:
            logger.info("Watching %d matches (press Ctrl+C to exit)...", len(session))
            while session.slots:
                await asyncio.sleep(settings.probe_interval)
                check_slots(session, open_browser)
    finally:
        registry.close()


def main() -> None:
    """Main entry point for the matchcast CLI."""
    parser = argparse.ArgumentParser(
        description="Matchcast - Multi-view live match player with stream failover",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # List all matches, live ones first
  matchcast --list

  # List football matches only
  matchcast --list --sport football

  # Watch a match, plus two more muted alongside it
  matchcast --match abc123 --add def456 --add ghi789
        """,
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=pathlib.Path,
        help="Path to matchcast.yaml configuration file",
    )
    parser.add_argument(
        "--sport",
        "-s",
        type=str,
        help="Only consider matches of this sport",
    )
    parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List available matches and exit",
    )
    parser.add_argument(
        "--match",
        "-m",
        type=str,
        help="Id of the match to watch",
    )
    parser.add_argument(
        "--add",
        "-a",
        action="append",
        default=[],
        help="Id of another match to watch alongside (repeatable)",
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Track stream health without opening a browser",
    )

    args = parser.parse_args()
    setup_logging(args.debug)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError, TypeError):
        logger.exception("Error loading configuration")
        return

    catalog = StreamedCatalog(
        api_base=settings.api_base,
        timeout=settings.request_timeout,
        max_workers=settings.max_workers,
    )
    try:
        if args.list or not args.match:
            list_matches(catalog, args.sport)
            return

        asyncio.run(
            watch(
                catalog,
                settings,
                [args.match, *args.add],
                sport=args.sport,
                open_browser=not args.no_browser,
            )
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        catalog.close()


if __name__ == "__main__":
    main()
