# sonium/cli.py

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path

from sonium.catalog.store import CatalogStore
from sonium.catalog.sync import CatalogSyncEngine
from sonium.config import Settings, load_settings
from sonium.domain.models import Album, RefreshStatus, SortOption
from sonium.errors import InvalidInput
from sonium.io.storage import JsonlStorage
from sonium.providers.base import AlbumProvider
from sonium.providers.covers import CoverArtArchiveClient, CoverResolver
from sonium.providers.local_api import LocalApiProvider
from sonium.providers.musicbrainz import MusicBrainzProvider
from sonium.providers.spotify import SpotifyProvider
from sonium.ratings.service import RatingService
from sonium.ratings.store import CollectionStore, RatingStore, UserStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class App:
    engine: CatalogSyncEngine
    ratings: RatingService
    users: UserStore


def main(argv: list[str] | None = None) -> None:
    """Entry point for the sonium CLI."""
    args = _build_arg_parser().parse_args(argv)

    _configure_logging(verbose=args.verbose)

    try:
        settings = load_settings(args.data_dir)
        with ExitStack() as stack:
            app = build_app(settings, stack)
            _dispatch(app, args)
    except InvalidInput as exc:
        logger.error("%s", exc)
        sys.exit(2)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user. Exiting.")
        sys.exit(1)


def build_app(settings: Settings, stack: ExitStack) -> App:
    """Wire stores, providers and services from settings.

    HTTP clients are registered on `stack` so they are closed on exit.
    """
    storage = JsonlStorage(settings.data_dir)
    store = CatalogStore(storage.load_catalog_snapshot())

    local = stack.enter_context(
        LocalApiProvider(settings.local_api_url, timeout=settings.http_timeout)
    )
    musicbrainz = MusicBrainzProvider(
        user_agent=settings.user_agent,
        window_months=settings.mb_window_months,
        timeout=settings.http_timeout,
        verify_tls=settings.mb_verify_tls,
    )
    providers: list[AlbumProvider] = [local, musicbrainz]
    client_id = settings.spotify_client_id
    client_secret = settings.spotify_client_secret
    if client_id and client_secret:
        spotify = stack.enter_context(
            SpotifyProvider(
                client_id,
                client_secret,
                market=settings.spotify_market,
                timeout=settings.http_timeout,
            )
        )
        providers.append(spotify)

    covers = CoverResolver(
        store,
        CoverArtArchiveClient(user_agent=settings.user_agent, timeout=settings.http_timeout),
    )
    engine = CatalogSyncEngine(
        store,
        providers,
        cover_resolver=covers,
        storage=storage,
        staleness=settings.staleness,
    )
    ratings = RatingService(
        RatingStore.from_storage(storage),
        CollectionStore.from_storage(storage),
        store,
    )
    return App(engine=engine, ratings=ratings, users=UserStore.from_storage(storage))


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sonium",
        description="Maintain the album catalog and personal ratings.",
    )

    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Directory for the JSONL stores (default: $SONIUM_DATA_DIR or ./data).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        help="Sub-command to run.",
    )

    refresh_parser = subparsers.add_parser(
        "refresh",
        help="Refresh the catalog if it is stale.",
    )
    refresh_parser.add_argument(
        "--force",
        action="store_true",
        help="Refresh even if the catalog is still fresh.",
    )

    search_parser = subparsers.add_parser("search", help="Search albums.")
    search_parser.add_argument("query", nargs="?", default="")

    rate_parser = subparsers.add_parser("rate", help="Rate an album (0-5).")
    rate_parser.add_argument("username")
    rate_parser.add_argument("album_id")
    rate_parser.add_argument("rating", type=float)

    collection_parser = subparsers.add_parser(
        "collection",
        help="Show a user's collection.",
    )
    collection_parser.add_argument("username")
    collection_parser.add_argument(
        "--sort",
        choices=[o.value for o in SortOption],
        default=SortOption.DATE_DESC.value,
        help="Sort order (default: %(default)s).",
    )

    stats_parser = subparsers.add_parser("stats", help="Show a user's statistics.")
    stats_parser.add_argument("username")

    top_parser = subparsers.add_parser("top", help="Show the top rated albums.")
    top_parser.add_argument(
        "--decade",
        default="all",
        help="Decade filter such as 1990s (default: %(default)s).",
    )
    top_parser.add_argument(
        "--limit",
        type=int,
        default=10,
        help="Number of albums to show (default: %(default)s).",
    )

    return parser


def _configure_logging(*, verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _format_album(album: Album | None, album_id: str) -> str:
    if album is None:
        return album_id
    return f"{album.artist} - {album.title} ({album.release_date})"


def _dispatch(app: App, args: argparse.Namespace) -> None:
    store = app.engine.store

    if args.command == "refresh":
        result = app.engine.refresh() if args.force else app.engine.refresh_if_stale()
        print(f"{result.status.value}: {result.merged} albums merged")
        if result.status is RefreshStatus.FAILED:
            sys.exit(1)
    elif args.command == "search":
        for album in app.engine.search(args.query):
            print(f"{album.album_id}\t{_format_album(album, album.album_id)}")
    elif args.command == "rate":
        user = app.users.get_or_create(args.username)
        record = app.ratings.rate(user.user_id, args.album_id, args.rating)
        print(f"{user.username} rated {args.album_id}: {record.rating:.1f}")
    elif args.command == "collection":
        user = app.users.get_or_create(args.username)
        for item in app.ratings.user_collection(user.user_id, args.sort):
            rating = "-" if item.rating is None else f"{item.rating:.1f}"
            listened = "listened" if item.listened else ""
            album = _format_album(store.get(item.album_id), item.album_id)
            print(f"{rating}\t{album}\t{listened}".rstrip())
    elif args.command == "stats":
        user = app.users.get_or_create(args.username)
        stats = app.ratings.user_stats(user.user_id)
        print(
            f"rated={stats.albums_rated} average={stats.average_rating} "
            f"listened={stats.albums_listened}"
        )
    elif args.command == "top":
        for rank, entry in enumerate(app.ratings.top_albums(args.decade, args.limit), start=1):
            album = _format_album(store.get(entry.album_id), entry.album_id)
            print(f"{rank}. {album}\t{entry.average_rating:.1f} ({entry.num_ratings})")
    else:
        msg = f"Unknown command: {args.command}"
        raise ValueError(msg)


if __name__ == "__main__":
    # python -m sonium.cli -v refresh
    # python -m sonium.cli search "ok computer"
    main()
