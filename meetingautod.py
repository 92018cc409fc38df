#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "anthropic>=0.40.0",
#     "flask>=3.0.0",
#     "pydantic>=2.7.0",
#     "python-dotenv>=1.0.0",
#     "pyyaml>=6.0.0",
#     "requests>=2.31.0",
# ]
# ///
"""
Meeting Automator Daemon (meetingautod)

Watches today's macOS calendar and, a few minutes after each meeting ends,
finds its Granola notes, extracts action items with Claude, files JIRA
tickets and posts a Slack summary. Configuration comes from the environment
(.env supported) with config.yaml as an optional base layer.

Run with: uv run meetingautod.py

Endpoints:
  GET /       - Health check and scheduler status
  GET /tasks  - Calendar events currently tracked
"""

import argparse
import logging
import sys
from datetime import timedelta
from functools import partial

from flask import Flask, jsonify

from automator_config import Config, ConfigError, load_config
from granola_client import GranolaClient
from macos_calendar import fetch_todays_events
from meeting_pipeline import process_meeting
from meeting_scheduler import EventScheduler, RefreshLoop, RetryController
from processed_store import ProcessedStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = Flask(__name__)


class Automator:
    """Wires the scheduler, refresh loop and collaborators from a Config."""

    def __init__(self, config: Config, *, notes=None, store: ProcessedStore | None = None,
                 pipeline=None, fetch_events=fetch_todays_events):
        self.config = config
        self.store = store or ProcessedStore(config.state_file)
        self.notes = notes or GranolaClient(config.granola_data_dir)
        self.scheduler = EventScheduler(
            self.notes,
            self.store,
            pipeline or partial(process_meeting, config),
            delay_after_end=timedelta(seconds=config.delay_after_meeting_seconds),
            late_fire_floor=timedelta(seconds=config.late_fire_floor_seconds),
            retry=RetryController(config.retry_delay_seconds, config.max_retries),
            candidate_limit=config.candidate_limit,
        )
        self.refresh_loop = RefreshLoop(self.scheduler, config.calendar_refresh_seconds, fetch_events)

    def start(self) -> None:
        self.refresh_loop.start()

    def stop(self) -> None:
        self.refresh_loop.stop()
        self.scheduler.shutdown()

    def status(self) -> dict:
        last_refresh = self.refresh_loop.last_refresh_at
        return {
            'status': 'ok',
            'service': 'meetingautod',
            'granola_data_dir': str(self.config.granola_data_dir),
            'jira_project': self.config.jira_project_key,
            'delay_after_meeting_minutes': self.config.delay_after_meeting_minutes,
            'calendar_refresh_minutes': self.config.calendar_refresh_minutes,
            'last_calendar_refresh': last_refresh.isoformat() if last_refresh else None,
            'processed': {
                'state_file': str(self.store.path),
                'count': len(self.store.processed_ids()),
                'last_processed_at': self.store.last_poll_at().isoformat(),
            },
            'tracked_events': len(self.scheduler.snapshot()),
            'endpoints': {
                'health': '/',
                'tasks': '/tasks',
            },
        }


automator: Automator | None = None


@app.route('/', methods=['GET'])
def health_check():
    """Health check endpoint."""
    if automator is None:
        return jsonify({'status': 'starting', 'service': 'meetingautod'}), 503
    return jsonify(automator.status()), 200


@app.route('/tasks', methods=['GET'])
def tasks():
    """Calendar events with a pending or in-flight timer."""
    if automator is None:
        return jsonify({'status': 'starting', 'tasks': []}), 503
    return jsonify({'status': 'ok', 'tasks': automator.scheduler.snapshot()}), 200


def main(argv: list[str] | None = None) -> int:
    global automator

    parser = argparse.ArgumentParser(description='Meeting Automator Daemon (meetingautod)')
    parser.add_argument('--config', default=None, help='Path to config.yaml (default: $AUTOMATOR_CONFIG or ./config.yaml)')
    parser.add_argument('--refresh-once', action='store_true', help='Run one calendar refresh, report what was armed, and exit')
    parser.add_argument('--no-server', action='store_true', help='Run without the HTTP status endpoint')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    logging.getLogger().setLevel(logging.DEBUG if args.debug else logging.INFO)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(str(e))
        logger.error("Copy .env.example to .env and fill in your values.")
        return 1

    automator = Automator(config)

    logger.info("Starting meetingautod (calendar-driven)")
    logger.info(f"Granola data: {config.granola_data_dir}")
    logger.info(f"JIRA project: {config.jira_project_key}")
    logger.info(f"Process {config.delay_after_meeting_minutes:g} min after meeting ends")
    logger.info(f"Calendar refresh every {config.calendar_refresh_minutes:g} min")

    if args.refresh_once:
        armed = automator.refresh_loop.refresh()
        for task in automator.scheduler.snapshot():
            logger.info(f"Armed: \"{task['title']}\" at {task['fire_at']}")
        logger.info(f"refresh-once complete ({armed} armed); exiting")
        automator.stop()
        return 0

    automator.start()

    try:
        if args.no_server:
            automator.refresh_loop.join()
        else:
            logger.info(f"Status: http://{config.server_host}:{config.server_port}/")
            app.run(host=config.server_host, port=config.server_port, debug=False)
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")
    finally:
        automator.stop()
    return 0


if __name__ == '__main__':
    sys.exit(main())
