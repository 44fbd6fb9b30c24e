"""Main module for the bundle pipeline CLI."""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

from .core.config_parser import parse_configuration
from .core.exceptions import BundlePipelineError, ConfigurationError, with_error_handling
from .core.factories import ProcessingPipelineFactory, RepositoryFactory, StorageFactory
from .core.logging_config import quiet_library_loggers, set_pipeline_level, setup_logger
from .core.models import PipelineSettings
from .core.progress import ProgressTracker

VERSION = "0.1.0"


@with_error_handling(ConfigurationError)
def load_configuration_document(path: Path) -> dict:
    """Parse a configuration document from disk into plain values."""
    text = path.read_text(encoding="utf-8", errors="replace")
    return parse_configuration(text).as_dict()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bundle-pipeline",
        description="Bundle Pipeline - archive ingestion with streamed progress",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ingest a bundle into an existing product, printing every progress event
  bundle-pipeline ingest --file bundle.zip --owner-id admin-1 --target-id product-1

  # Show the constants declared by a configuration document
  bundle-pipeline parse-config --file index.html

  # Run the HTTP API
  bundle-pipeline serve --host 0.0.0.0 --port 8000
        """,
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    ingest_parser = subparsers.add_parser(
        "ingest", help="Ingest a bundle into a product using the configured storage"
    )
    ingest_parser.add_argument("--file", required=True, type=Path, help="Bundle archive (.zip)")
    ingest_parser.add_argument("--owner-id", required=True, help="Owner of the product")
    ingest_parser.add_argument("--target-id", required=True, help="Product to finalize")
    ingest_parser.add_argument(
        "--batch-size", type=int, default=None, help="Assets uploaded concurrently per batch"
    )

    parse_parser = subparsers.add_parser(
        "parse-config", help="Print the constants of a configuration document as JSON"
    )
    parse_parser.add_argument("--file", required=True, type=Path, help="Configuration document")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)

    subparsers.add_parser("version", help="Show version information")
    return parser


async def run_ingest(settings: PipelineSettings, data: bytes, owner_id: str, target_id: str) -> int:
    store = RepositoryFactory.create_store(settings)
    tracker = ProgressTracker()
    try:
        async with StorageFactory.create_storage(settings) as storage:
            pipeline = ProcessingPipelineFactory.create_pipeline(storage, store, settings)
            runner = asyncio.create_task(pipeline.run(data, owner_id, target_id, tracker))
            async for event in tracker.channel:
                print(json.dumps(event.to_payload(), ensure_ascii=False), flush=True)
            await runner
    except BundlePipelineError:
        return 1
    finally:
        store.dispose()
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the command-line interface of the bundle pipeline."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "version":
        print("Bundle Pipeline CLI")
        print(f"Version {VERSION}")
        sys.exit(0)

    logger = setup_logger()
    quiet_library_loggers()
    if args.debug:
        set_pipeline_level("DEBUG")

    if args.command == "parse-config":
        try:
            constants = load_configuration_document(args.file)
        except ConfigurationError as e:
            logger.error(f"Could not read {args.file}: {e}")
            sys.exit(2)
        print(json.dumps(constants, indent=2, ensure_ascii=False))
        sys.exit(0)

    try:
        settings = PipelineSettings.from_env()
    except BundlePipelineError as e:
        logger.error(str(e))
        sys.exit(2)

    if args.command == "ingest":
        if args.batch_size is not None:
            settings = settings.model_copy(update={"batch_size": args.batch_size})
        sys.exit(asyncio.run(run_ingest(settings, args.file.read_bytes(), args.owner_id, args.target_id)))

    if args.command == "serve":
        import uvicorn

        from .api import create_app

        uvicorn.run(create_app(settings), host=args.host, port=args.port)
        return


if __name__ == "__main__":
    main()
