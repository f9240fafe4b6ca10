#!/usr/bin/env python3
"""
shelfbridge - match Audiobookshelf books to Hardcover works and editions

A CLI tool that resolves each book in an Audiobookshelf library to the
matching Hardcover book and edition using ASIN, ISBN and title/author
matching.
"""

import argparse
import json
import logging
import sys
import time
from typing import Any, Dict, List, Optional

from .book_cache import BookCache
from .config import GLOBAL_DEFAULTS, Config
from .match_manager import MatchManager
from .models import SeriesInfo, SourceBook
from .utils import format_duration, normalize_asin, normalize_isbn, validate_isbn


def setup_logging(verbose: bool = False, log_file: str = GLOBAL_DEFAULTS["log_file"]) -> None:
    """Setup logging configuration with controlled verbosity"""
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    detailed_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    clean_format = "%(asctime)s - %(levelname)s - %(message)s"

    # File handler (always detailed for debugging)
    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(detailed_format))

    # Console handler (clean unless verbose)
    console_handler = logging.StreamHandler(sys.stdout)
    if verbose:
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(detailed_format))
    else:
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(clean_format))

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    if not verbose:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("requests").setLevel(logging.WARNING)


def _selected_users(config: Config, user_id: Optional[str]) -> List[dict]:
    return [config.get_user(user_id)] if user_id else config.get_users()


def _make_manager(config: Config, user: dict, dry_run: bool) -> MatchManager:
    return MatchManager(
        user,
        config.get_global(),
        title_author_config=config.get_title_author_config(),
        scoring_overrides=config.get_scoring_overrides(),
        dry_run=dry_run or config.get_global().get("dry_run", False),
    )


def log_match_summary(result: Dict[str, Any]) -> None:
    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info(f"📚 MATCH SUMMARY ({result['user_id']})")
    logger.info("=" * 50)
    logger.info(f"⏱️  Duration: {format_duration(result['duration'])}")
    logger.info(f"📖 Books processed: {result['books_processed']}")
    logger.info(f"✅ Matched: {result['matched']}")
    logger.info(f"➕ Need creating: {result['needs_create']}")
    logger.info(f"⏭ Unmatched: {result['unmatched']}")
    for tier, count in sorted(result["by_tier"].items()):
        logger.info(f"   Tier {tier}: {count}")

    if result["errors"]:
        logger.warning(f"❌ Errors encountered: {len(result['errors'])}")
        for error in result["errors"]:
            logger.error(f"  - {error}")
    logger.info("=" * 50)


def run_match(config: Config, args: argparse.Namespace) -> bool:
    """Run a matching pass (or one ad-hoc match); True when there were no errors"""
    results = []
    success = True

    if args.title and args.isbn and not validate_isbn(args.isbn):
        logging.getLogger(__name__).warning(f"ISBN {args.isbn} fails its checksum; it will only match an identical library ISBN")

    for user in _selected_users(config, args.user):
        manager = _make_manager(config, user, args.dry_run)

        if args.title:
            source = SourceBook(
                title=args.title,
                author=args.author or "",
                narrator=args.narrator,
                isbn=normalize_isbn(args.isbn),
                asin=normalize_asin(args.asin),
                series=SeriesInfo(),
            )
            outcome = manager.match_book(source)
            result = {
                "user_id": user["id"],
                "searched": outcome.metadata.to_dict(),
                "match": outcome.match.to_dict() if outcome.match else None,
            }
            if not args.json:
                _print_single_match(result)
        else:
            result = manager.match_library()
            success = success and not result["errors"]
            if not args.json:
                log_match_summary(result)

        results.append(result)

    if args.json:
        print(json.dumps(results if len(results) != 1 else results[0], indent=2, default=str))
    return success


def _print_single_match(result: Dict[str, Any]) -> None:
    searched = result["searched"]
    print(f"\n🔍 {searched['title']} by {searched['author']} ({result['user_id']})")
    match = result["match"]
    if not match:
        print("   No match found")
        return
    print(f"   {match['kind']} via tier {match['tier']} ({match['strategy']})")
    print(f"   Book: {match['book_title']} [{match['book_id']}]")
    print(f"   Edition: {match['edition_id']} ({match['edition_format'] or 'unknown format'})")
    if match["identity_score"] is not None:
        print(f"   Identity score: {match['identity_score']:.1f} ({match['confidence']})")
    if match["edition_score"] is not None:
        print(f"   Edition score: {match['edition_score']:.1f}")


def test_connections(config: Config, user_id: Optional[str] = None) -> bool:
    """Test connections to both APIs for every selected user"""
    logger = logging.getLogger(__name__)
    logger.info("🔍 Testing API connections...")

    all_ok = True
    for user in _selected_users(config, user_id):
        manager = _make_manager(config, user, dry_run=True)
        for service, ok in manager.test_connections().items():
            if ok:
                logger.info(f"✅ {user['id']}: {service} connection successful")
            else:
                logger.error(f"❌ {user['id']}: {service} connection failed")
            all_ok = all_ok and ok

    logger.info("=" * 40)
    if all_ok:
        logger.info("🎉 All connections successful!")
    else:
        logger.error("❌ Some connections failed!")
    logger.info("=" * 40)
    return all_ok


def run_cache_command(config: Config, args: argparse.Namespace) -> None:
    cache = BookCache(config.get_global()["cache_file"])

    if args.cache_command == "stats":
        stats = cache.get_cache_stats()
        if args.json:
            print(json.dumps(stats, indent=2))
            return
        print("📊 Cache statistics")
        print(f"   Total books: {stats['total_books']}")
        print(f"   With editions: {stats['books_with_editions']}")
        print(f"   With progress: {stats['books_with_progress']}")
        print(f"   Title/author matches: {stats['title_author_matches']}")
        print(f"   File size: {stats['cache_file_size'] / 1024:.1f} KB")

    elif args.cache_command == "clear":
        if _confirm("🗑️  Are you sure you want to clear the book cache? (y/N): ", args.yes):
            cache.clear_cache()
            print("✅ Book cache cleared successfully!")
        else:
            print("❌ Book cache clear cancelled.")

    elif args.cache_command == "clear-editions":
        if _confirm("🔄 Clear edition mappings but keep progress data? (y/N): ", args.yes):
            cleared = cache.clear_edition_mappings()
            print(f"✅ Edition mappings cleared for {cleared} books!")
        else:
            print("❌ Edition mapping clear cancelled.")

    elif args.cache_command == "export":
        exported = cache.export_to_json(args.output)
        print(f"✅ Exported {exported} cache entries to {args.output}")


def _confirm(prompt: str, assume_yes: bool) -> bool:
    if assume_yes:
        return True
    return input(prompt).strip().lower() in ("y", "yes")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shelfbridge",
        description="Match Audiobookshelf books to Hardcover books and editions",
    )
    parser.add_argument("--config", default="config/config.yaml", help="Path to the YAML configuration file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--json", action="store_true", help="Print machine-readable output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    match_parser = subparsers.add_parser("match", help="Match books for all users or one user")
    match_parser.add_argument("--user", help="Only match for this user id")
    match_parser.add_argument("--dry-run", action="store_true", help="Do not write matches to the cache")
    match_parser.add_argument("--title", help="Match one book with this title instead of the whole library")
    match_parser.add_argument("--author", help="Author of the ad-hoc book")
    match_parser.add_argument("--narrator", help="Narrator of the ad-hoc book")
    match_parser.add_argument("--asin", help="ASIN of the ad-hoc book")
    match_parser.add_argument("--isbn", help="ISBN of the ad-hoc book")

    test_parser = subparsers.add_parser("test", help="Test API connections")
    test_parser.add_argument("--user", help="Only test this user id")

    subparsers.add_parser("config", help="Show configuration status")

    cache_parser = subparsers.add_parser("cache", help="Inspect or clear the book cache")
    cache_parser.add_argument("cache_command", choices=["stats", "clear", "clear-editions", "export"])
    cache_parser.add_argument("--output", default="book_cache_export.json", help="Export file name")
    cache_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)
    logger = logging.getLogger(__name__)

    try:
        config = Config(args.config)
        log_file = config.get_global().get("log_file")
        if log_file and log_file != GLOBAL_DEFAULTS["log_file"]:
            setup_logging(verbose=args.verbose, log_file=log_file)

        if args.command == "config":
            print(config)
            return

        if args.command == "test":
            sys.exit(0 if test_connections(config, args.user) else 1)

        if args.command == "cache":
            run_cache_command(config, args)
            return

        if args.command == "match":
            start_time = time.time()
            success = run_match(config, args)
            logger.debug(f"Match command finished in {time.time() - start_time:.1f}s")
            sys.exit(0 if success else 1)

    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Application error: {str(e)}")
        if args.verbose:
            logger.exception("Full error details:")
        sys.exit(1)


if __name__ == "__main__":
    main()
