"""
Entry Point for the Ad Extraction Pipeline

    python entry_point.py serve            # start the HTTP service on $PORT
    python entry_point.py extract ad-123   # run one extraction and print the response
"""

import argparse
import logging
import sys

from app_server import configure_logging, create_app
from config import load_settings
from errors import InputError
from orchestrator import ExtractionOrchestrator
from storage import ObjectStore

logger = logging.getLogger(__name__)


def serve(settings) -> int:
    import uvicorn

    logger.info("ad-extraction-pipeline listening on :%d", settings.port)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)
    return 0


def extract(settings, ad_id: str) -> int:
    orchestrator = ExtractionOrchestrator(settings, ObjectStore.from_settings(settings))
    try:
        response = orchestrator.extract(ad_id)
    except InputError as e:
        logger.error("Extraction failed: %s", e)
        return 1

    print(response.model_dump_json(indent=2, exclude_none=True))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Extract transcripts and frame descriptions for stored ads")
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("serve", help="Run the HTTP service")
    extract_parser = commands.add_parser("extract", help="Run one extraction")
    extract_parser.add_argument("ad_id", help="Advertisement identifier")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        return serve(settings)
    return extract(settings, args.ad_id)


if __name__ == "__main__":
    sys.exit(main())
