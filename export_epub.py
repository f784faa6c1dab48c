"""
Command-line interface for EPUB export
"""
import os
import sys
import argparse
import asyncio

from epub_export.config import (
    ASSET_LOOKUP_TIMEOUT,
    EPUB_DEFAULT_LANGUAGE,
    IMAGE_CACHE_DIR,
    OUTPUT_DIR,
)
from epub_export.core.epub import (
    CancellationToken,
    ChapterOrder,
    ExportConfig,
    ExportOptions,
    NovelConfig,
    export_epub,
    load_session_snapshot,
)
from epub_export.core.epub.exceptions import EpubExportError
from epub_export.persistence import DirectoryBlobCache, SqliteBlobCache
from epub_export.utils.file_utils import get_unique_output_path, safe_filename, write_binary_file
from epub_export.utils.unified_logger import setup_cli_logger, LogType


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Export a translated novel session to EPUB.")
    parser.add_argument("-i", "--input", required=True, help="Path to the JSON session export.")
    parser.add_argument("-o", "--output", default=None, help=f"Path to the output .epub. If not specified, uses the book title inside {OUTPUT_DIR}/.")
    parser.add_argument("--order", default=ChapterOrder.NUMBER.value, choices=[o.value for o in ChapterOrder], help="Chapter ordering strategy (default: number).")
    parser.add_argument("--title", default=None, help="Book title (overrides the session's novel title).")
    parser.add_argument("--author", default=None, help="Book author.")
    parser.add_argument("--language", default=None, help=f"Book language code (default: {EPUB_DEFAULT_LANGUAGE}).")
    parser.add_argument("--description", default=None, help="Book description shown on the title page.")
    parser.add_argument("--no-title-page", action="store_true", help="Do not generate the title page.")
    parser.add_argument("--no-stats-page", action="store_true", help="Do not generate the statistics / acknowledgments page.")
    parser.add_argument("--cache-dir", default=None, help=f"Directory blob cache with illustration payloads (e.g. {IMAGE_CACHE_DIR}).")
    parser.add_argument("--sqlite-cache", default=None, help="SQLite blob cache database with illustration payloads.")
    parser.add_argument("--lookup-timeout", type=float, default=ASSET_LOOKUP_TIMEOUT, help=f"Seconds allowed per cache lookup (default: {ASSET_LOOKUP_TIMEOUT}).")
    parser.add_argument("--timeout", type=float, default=None, help="Abort the export after this many seconds.")
    parser.add_argument("--no-color", action="store_true", help="Disable colored output.")
    return parser


def build_cache(args):
    if args.cache_dir and args.sqlite_cache:
        raise ValueError("--cache-dir and --sqlite-cache are mutually exclusive")
    if args.sqlite_cache:
        return SqliteBlobCache(args.sqlite_cache)
    if args.cache_dir:
        return DirectoryBlobCache(args.cache_dir)
    return None


async def run_export(args, logger) -> int:
    """Load the session, export it and write the container. Returns an exit code."""
    snapshot = await load_session_snapshot(args.input)

    novel_config = NovelConfig(
        title=args.title,
        author=args.author,
        description=args.description,
        language=args.language,
    )
    options = ExportOptions(
        order=args.order,
        include_title_page=not args.no_title_page,
        include_stats_page=not args.no_stats_page,
        title=args.title,
        author=args.author,
        language=args.language,
        novel_config=novel_config,
    )

    if args.output is None:
        title = args.title or snapshot.novel_title or "export"
        args.output = os.path.join(OUTPUT_DIR, f"{safe_filename(title)}.epub")
    args.output = get_unique_output_path(args.output)

    result = await export_epub(
        options,
        snapshot,
        build_cache(args),
        progress_callback=logger.create_progress_callback(),
        cancel_token=CancellationToken(timeout=args.timeout),
        config=ExportConfig(lookup_timeout=args.lookup_timeout),
    )

    for warning in result.warnings:
        logger.warning(f"[{warning.kind}] {warning.message}", LogType.GENERAL, warning.to_dict())

    if not result.success:
        logger.error(f"Export failed: {result.error}", LogType.ERROR_DETAIL, {
            'details': result.error,
            'phase': 'error',
        })
        if result.data:
            diagnostic_path = get_unique_output_path(f"{os.path.splitext(args.output)[0]}.invalid.epub")
            await write_binary_file(diagnostic_path, result.data)
            logger.info(f"Diagnostic container written to {diagnostic_path}")
        return 1

    await write_binary_file(args.output, result.data)
    logger.info("EPUB Export Completed Successfully", LogType.EXPORT_END, {
        'output_file': args.output,
        'stats': result.stats.to_dict(),
    })
    return 0


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = setup_cli_logger(enable_colors=not args.no_color)

    try:
        return asyncio.run(run_export(args, logger))
    except (EpubExportError, OSError, ValueError) as e:
        logger.error(f"Export failed: {str(e)}", LogType.ERROR_DETAIL, {
            'details': str(e),
            'input_file': args.input
        })
        return 1


if __name__ == "__main__":
    sys.exit(main())
