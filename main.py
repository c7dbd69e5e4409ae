#!/usr/bin/env python3
"""
Event Listing Publisher
Description:
Validates an event description, publishes it on every configured ticketing
site concurrently (one headless browser per site, each under its own
deadline) and reports a per-site result.

Usage:
    python main.py event.json [--config config.json] [--targets eventim] [--dry-run] [--headed]
"""

import sys
import json
import asyncio
import logging
import argparse
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from base_exceptions import ListingValidationError
from config_manager import ConfigurationManager, EventPublisherConfig
from mapping import REQUIRED_FIELDS, listing_from_payload
from orchestrator import MultiTargetOrchestrator
from publisher import BrowserSession, SessionFactory, build_publishers
from targets import TargetDefinition, load_target_definitions

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

MISSING_DATA_ERROR = 'Données manquantes'
SERVER_ERROR = 'Erreur serveur'


def configure_logging(config: EventPublisherConfig):
    """Configure root logging from the automation settings"""
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if config.automation.log_file:
        handlers.append(logging.FileHandler(config.automation.log_file))

    logging.basicConfig(
        level=getattr(logging, config.automation.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def load_runtime(config_file: Optional[str] = None) -> Tuple[EventPublisherConfig, Dict[str, TargetDefinition]]:
    """
    Load configuration, then the target catalog it points to, then the
    per-target credentials and budgets for the targets found in the catalog.
    """
    manager = ConfigurationManager(config_file)
    config = manager.load_configuration()
    definitions = load_target_definitions(config.automation.targets_file)

    config = manager.load_target_environment(config, definitions.keys())
    manager.validate_configuration(config, {name: d.budget_ms for name, d in definitions.items()})
    return config, definitions


def _bad_request(error: ListingValidationError) -> Tuple[int, Dict[str, Any]]:
    body: Dict[str, Any] = {'error': MISSING_DATA_ERROR, 'required': list(REQUIRED_FIELDS)}
    if error.missing:
        body['missing'] = error.missing
    if error.invalid:
        body['invalid'] = error.invalid
    return 400, body


async def publish_event(payload: Any, config: EventPublisherConfig,
                        definitions: Mapping[str, TargetDefinition],
                        target_names: Optional[List[str]] = None,
                        session_factory: SessionFactory = BrowserSession) -> Tuple[int, Dict[str, Any]]:
    """
    Publish one event on every enabled target.

    Returns an HTTP-style ``(status, body)`` pair: 400 for a malformed event
    (no browser is launched), 200 with per-target results otherwise, and 500
    only when the handler itself breaks.
    """
    try:
        listing = listing_from_payload(payload)
    except ListingValidationError as e:
        logger.warning(f"Rejected event: {e}")
        return _bad_request(e)

    try:
        publishers = build_publishers(definitions, config, target_names, session_factory=session_factory)
        orchestrator = MultiTargetOrchestrator(cancel_on_timeout=config.automation.cancel_on_timeout)
        outcome = await orchestrator.publish_all(listing, publishers)
    except Exception as e:
        logger.exception(f"Publishing failed for '{listing.title}'")
        return 500, {'error': SERVER_ERROR, 'details': str(e)}

    return 200, {
        'success': outcome.success,
        'message': outcome.message,
        'eventData': listing.to_payload(),
        'results': outcome.to_dict(),
        'debug': {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'succeeded': outcome.success_count,
            'total': outcome.total,
            'dryRun': config.automation.dry_run,
        },
    }


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish an event on ticketing sites")
    parser.add_argument('event_file', help="JSON file with the event description ('-' for stdin)")
    parser.add_argument('--config', help="JSON configuration file")
    parser.add_argument('--targets', help="comma-separated target names (default: every enabled target)")
    parser.add_argument('--dry-run', action='store_true', help="run every wizard step except publishing")
    parser.add_argument('--headed', action='store_true', help="show the browser window")
    return parser.parse_args(argv)


def read_event(event_file: str) -> Any:
    if event_file == '-':
        return json.load(sys.stdin)
    with open(Path(event_file), 'r', encoding='utf-8') as f:
        return json.load(f)


def exit_code(status: int, body: Mapping[str, Any]) -> int:
    if status == 400:
        return 2
    if status == 200 and body.get('success'):
        return 0
    return 1


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the command line"""
    args = parse_args(argv)

    # Defaults until the configured level and log file are known
    configure_logging(EventPublisherConfig())
    config, definitions = load_runtime(args.config)
    if args.dry_run:
        config.automation.dry_run = True
    if args.headed:
        config.automation_mode.headless = False
    configure_logging(config)

    try:
        payload = read_event(args.event_file)
    except json.JSONDecodeError as e:
        logger.error(f"Event file is not valid JSON: {e}")
        status, body = 400, {'error': MISSING_DATA_ERROR, 'required': list(REQUIRED_FIELDS), 'invalid': ['body']}
    else:
        target_names = [name.strip() for name in args.targets.split(',')] if args.targets else None
        status, body = await publish_event(payload, config, definitions, target_names)

    print(json.dumps(body, indent=2, ensure_ascii=False))
    if status == 200 and body['success']:
        logger.info(body['message'])
    else:
        logger.error(f"Publishing failed with status {status}")
    return exit_code(status, body)


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
