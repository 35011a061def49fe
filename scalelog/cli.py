"""
CLI entrypoint for scalelog.

`/main.py` delegates to `scalelog.cli.main()` to keep service scripts stable.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from scalelog.collection import ScaleCollection
from scalelog.database import PracticeDatabase
from scalelog.exercise import ExerciseKey
from scalelog.facade import PracticeClient, RequestCancelled, RequestFailed
from scalelog.local_cache import LocalCache
from scalelog.sessions import SessionStore
from scalelog.tracker import PracticeTracker
from scalelog.web_server import ScaleLogWebServer
import scalelog.config as config


def _configure_logging():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler("scalelog.log"),
            logging.StreamHandler(sys.stdout),
        ],
    )


def _confirm(prompt: str) -> bool:
    response = input(f"{prompt}\nType 'yes' to confirm: ")
    return response.strip().lower() == "yes"


def _format_duration(seconds: int) -> str:
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def _show_sessions(db: PracticeDatabase):
    sessions = SessionStore(db).recent(limit=config.VIEW_ALL_SESSIONS_LIMIT)
    print("\nRecent Practice Sessions:")
    print("=" * 80)
    for session in sessions:
        print(
            f"{session['timestamp'][:19].replace('T', ' ')} | {session['scale']:10s} | "
            f"{session['practice_type']:16s} | {session['octaves']} oct | "
            f"{session['bpm']:3d} bpm | {_format_duration(session['duration'])}"
        )


def _show_stats(db: PracticeDatabase):
    stats = SessionStore(db).stats()
    print("\nPractice Stats:")
    print("=" * 80)
    print(f"Total sessions:   {stats['total_sessions']}")
    print(f"Today's sessions: {stats['today_sessions']}")
    print(f"Total practice:   {stats['total_practice_time_seconds'] / 60:.1f} min")
    print(f"Favorite scale:   {stats['favorite_scale'] or '-'}")


def _show_scales(db: PracticeDatabase):
    collection = ScaleCollection(db)
    collection.seed_defaults()
    print("\nScale Collection:")
    print("=" * 80)
    for scale in collection.list():
        if scale['sharps']:
            accidentals = f"{scale['sharps']} sharp{'s' if scale['sharps'] > 1 else ''}"
        elif scale['flats']:
            accidentals = f"{scale['flats']} flat{'s' if scale['flats'] > 1 else ''}"
        else:
            accidentals = "No accidentals"
        print(f"{scale['id']:3d} | {scale['name']:10s} | {scale['level']:12s} | {accidentals}")


async def _practice(args: argparse.Namespace) -> int:
    """Run a practice timer in the terminal until interrupted."""
    logger = logging.getLogger(__name__)
    exercise = ExerciseKey(args.practice, args.type, args.octaves)

    async with PracticeClient(base_url=args.server, cache=LocalCache(args.cache),
                              static_mode=args.static) as client:
        if not args.static:
            migrated = await client.migrate_local_data()
            if migrated:
                print(migrated.get("message"))

        tracker = PracticeTracker(client)
        tracker.on_daily_total = lambda date, seconds: print(
            f"\rToday: {_format_duration(seconds)}  This attempt: {_format_duration(tracker.session_seconds)}",
            end="", flush=True,
        )
        await tracker.load_today()
        await tracker.start_practice(exercise, bpm=args.bpm)

        print("\n" + "=" * 60)
        print(f"Practicing {exercise.scale} - {exercise.practice_type} - {exercise.octaves} octave(s)")
        print(f"Tempo: {tracker.bpm} bpm   Best: {tracker.best_bpm or '-'}")
        print("Press Ctrl+C to finish")
        print("=" * 60)

        loop = asyncio.get_running_loop()
        runner = asyncio.ensure_future(tracker.run())
        try:
            loop.add_signal_handler(signal.SIGTERM, runner.cancel)
        except NotImplementedError:
            pass

        try:
            await runner
        except asyncio.CancelledError:
            pass
        finally:
            saved = await tracker.stop_practice()

        print()
        if saved:
            print(f"Session saved: {saved['bpm']} bpm for {_format_duration(saved['duration'])}")
        else:
            print(f"Attempt shorter than {config.MIN_RECORDED_DURATION}s, not saved")
        logger.info("Practice timer finished")
    return 0


async def _clear_remote(args: argparse.Namespace) -> int:
    async with PracticeClient(base_url=args.server, cache=LocalCache(args.cache),
                              static_mode=args.static) as client:
        try:
            await client.clear_database()
        except (RequestFailed, RequestCancelled) as e:
            print(f"\n✗ Failed to clear database: {e}\n")
            return 1
    print("\n✓ All practice data cleared.\n")
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    _configure_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Scale Practice Log")
    parser.add_argument("--db", type=str, default=config.DATABASE_PATH, help="SQLite database path")
    parser.add_argument("--cache", type=str, default=config.LOCAL_CACHE_PATH, help="Local cache file path")
    parser.add_argument("--server", type=str, default=config.SERVER_URL, help="Practice server URL")
    parser.add_argument("--static", action="store_true",
                        help="No server available: keep everything in the local cache")
    parser.add_argument("--port", type=int, default=config.WEB_PORT, help="Port for --serve")
    parser.add_argument("--serve", action="store_true", help="Run the practice server")
    parser.add_argument("--show-sessions", action="store_true", help="Show recent sessions and exit")
    parser.add_argument("--show-stats", action="store_true", help="Show practice stats and exit")
    parser.add_argument("--show-scales", action="store_true", help="Show the scale collection and exit")
    parser.add_argument("--clear-database", action="store_true",
                        help="Clear all sessions, daily totals and scales through the server")
    parser.add_argument("--reset-scales", action="store_true", help="Reset the scale collection to the defaults")
    parser.add_argument("--practice", type=str, metavar="SCALE", help='Start a practice timer, e.g. "C Major"')
    parser.add_argument("--type", type=str, default="Right Hand", help="Practice type for --practice")
    parser.add_argument("--octaves", type=int, default=1, help="Octave count for --practice")
    parser.add_argument("--bpm", type=int, default=config.DEFAULT_BPM, help="Tempo for --practice")

    args = parser.parse_args(argv)

    if args.practice:
        if args.octaves < 1:
            parser.error("--octaves must be at least 1")
        return asyncio.run(_practice(args))

    if args.clear_database:
        if not _confirm("\n⚠️  WARNING: This will delete all practice sessions, daily totals and scales!\n"
                        "This action cannot be undone.\n"):
            print("\nCancelled. No data was deleted.\n")
            return 0
        return asyncio.run(_clear_remote(args))

    db = PracticeDatabase(args.db)
    try:
        if args.reset_scales:
            if _confirm("\nThis will replace your scale collection with the default scales."):
                ScaleCollection(db).reset_to_defaults()
                print("\n✓ Scale collection reset.\n")
            else:
                print("\nCancelled.\n")
            return 0

        if args.show_sessions or args.show_stats or args.show_scales:
            if args.show_sessions:
                _show_sessions(db)
            if args.show_stats:
                _show_stats(db)
            if args.show_scales:
                _show_scales(db)
            return 0

        if args.serve:
            ScaleCollection(db).seed_defaults()
            server = ScaleLogWebServer(db, port=args.port)

            def signal_handler(signum, frame):
                logger.info("Received signal %s", signum)
                db.close()
                sys.exit(0)

            signal.signal(signal.SIGTERM, signal_handler)
            server.run()
            return 0

        parser.print_help()
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
