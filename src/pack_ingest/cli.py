"""Command line interface for pack ingestion."""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .common import ConfigLoader, ConfigurationError, LogContext, ToolNotFoundError, setup_logging
from .config import PackIngestConfig
from .ingest.archive_reader import BlobArchiveSource, LocalArchiveSource
from .ingest.categories import Category
from .ingest.context import IngestContext, build_context
from .ingest.errors import PackNotFoundError
from .ingest.job import IngestRequest, IngestionJob, SideAsset
from .ingest.progress import ErrorFrame, ResultFrame, encode_frame
from .ingest.synchronizer import MetadataSynchronizer
from .storage.errors import CommitError

APP_NAME = "pack-ingest"

logger = logging.getLogger(__package__ or __name__)


def _side_asset(value: Optional[str], from_store: bool) -> Optional[SideAsset]:
    if not value:
        return None
    if from_store:
        return SideAsset(file_name=value.rsplit('/', 1)[-1], blob_path=value)
    path = Path(value)
    return SideAsset(file_name=path.name, local_path=path)


def ingest_command(
    context: IngestContext,
    archive: str,
    category: Category,
    title: Optional[str] = None,
    thumbnail: Optional[str] = None,
    preview: Optional[str] = None,
    from_store: bool = False,
) -> int:
    """Ingest one archive, printing NDJSON frames to stdout.

    Args:
        context: Ingestion context
        archive: Local archive path, or blob path with ``from_store``
        category: Pack category
        title: Optional display title (derived from the file name otherwise)
        thumbnail: Optional thumbnail (local path, or blob path with ``from_store``)
        preview: Optional preview clip (local path, or blob path with ``from_store``)
        from_store: Read the archive and side assets from the blob store

    Returns:
        Exit code: 0 when the job completed, 1 when it failed
    """
    if from_store:
        source = BlobArchiveSource(context.blob_store, archive)
    else:
        archive_path = Path(archive)
        if not archive_path.is_file():
            logger.error(f"Archive does not exist: {{'path': {str(archive_path)!r}}}")
            return 1
        source = LocalArchiveSource(archive_path)

    request = IngestRequest(
        source=source,
        category=category,
        title=title,
        upload_archive=not from_store,
        thumbnail=_side_asset(thumbnail, from_store),
        preview_clip=_side_asset(preview, from_store),
    )

    exit_code = 1
    with LogContext(archive=request.archive_name, category=category.folder):
        for frame in IngestionJob(context, request).run():
            sys.stdout.write(encode_frame(frame))
            sys.stdout.flush()
            if isinstance(frame, ResultFrame):
                exit_code = 0
                results = frame.results
                logger.info(f"Ingestion complete: {{'pack_id': {results.pack_id!r}, 'files_processed': {results.files_processed}, 'documents_created': {results.documents_created}, 'skipped': {results.skipped}, 'errors': {len(results.errors)}}}")
            elif isinstance(frame, ErrorFrame):
                logger.error(f"Ingestion failed: {{'error': {frame.error!r}}}")
    return exit_code


def rename_command(context: IngestContext, pack_id: str, title: str) -> int:
    """Change a pack's title."""
    try:
        updated = MetadataSynchronizer(context.document_store).rename_pack(pack_id, title)
    except PackNotFoundError as e:
        logger.error(f"Rename failed: {{'pack_id': {pack_id!r}, 'error': {e.message!r}}}")
        return 1
    except CommitError as e:
        logger.error(f"Rename failed: {{'pack_id': {pack_id!r}, 'error': {e.message!r}}}")
        return 1

    print(json.dumps({"packId": pack_id, "title": title, "childrenUpdated": updated}))
    return 0


def serve_command(config: PackIngestConfig, host: Optional[str] = None, port: Optional[int] = None) -> int:
    """Run the HTTP API with uvicorn."""
    import uvicorn

    from .api.server import create_app

    app = create_app(config)
    uvicorn.run(
        app,
        host=host or config.api.host,
        port=port or config.api.port,
        log_config=None,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Ingest overlay, sound effect and LUT packs from archives",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (defaults.toml)"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (overrides config)"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest = subparsers.add_parser("ingest", help="Ingest one archive")
    ingest.add_argument("archive", help="Archive path (or blob path with --from-store)")
    ingest.add_argument(
        "--category",
        required=True,
        help="Pack category: overlays, sfx or luts (labels also accepted)"
    )
    ingest.add_argument("--title", help="Display title (default: derived from the file name)")
    ingest.add_argument("--thumbnail", help="Thumbnail image")
    ingest.add_argument("--preview", help="Preview clip")
    ingest.add_argument(
        "--from-store",
        action="store_true",
        help="Read the archive and side assets from the blob store"
    )

    rename = subparsers.add_parser("rename", help="Change a pack's title")
    rename.add_argument("pack_id", help="Pack identifier")
    rename.add_argument("title", help="New title")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", help="Bind address (overrides config)")
    serve.add_argument("--port", type=int, help="Bind port (overrides config)")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    loader = ConfigLoader(app_name=APP_NAME, config_class=PackIngestConfig)
    try:
        config = loader.load(defaults_path=args.config)
    except ConfigurationError as e:
        parser.error(e.message)

    setup_logging(config.logging, level=args.log_level)

    if args.command == "serve":
        return serve_command(config, args.host, args.port)

    try:
        context = build_context(config)
    except ToolNotFoundError as e:
        logger.error(f"Cannot start: {{'tool': {e.context.get('tool')!r}}}\n{e.message}")
        return 1

    try:
        if args.command == "ingest":
            try:
                category = Category.parse(args.category)
            except ValueError as e:
                parser.error(str(e))
            return ingest_command(
                context,
                args.archive,
                category,
                title=args.title,
                thumbnail=args.thumbnail,
                preview=args.preview,
                from_store=args.from_store,
            )
        return rename_command(context, args.pack_id, args.title)
    finally:
        context.close()


if __name__ == "__main__":
    sys.exit(main())
