#!/usr/bin/env python3
# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "anthropic>=0.40.0",
#     "pydantic>=2.7.0",
#     "python-dotenv>=1.0.0",
#     "pyyaml>=6.0.0",
#     "requests>=2.31.0",
# ]
# ///
"""
Meeting Automator CLI

Manual operations against Granola, outside the calendar-driven daemon.

Usage:
  uv run automator_cli.py list [--limit N]     List recent meetings
  uv run automator_cli.py latest               Process the most recent meeting (skipped if already processed)
  uv run automator_cli.py process <title>      Process the meeting matching a title
  uv run automator_cli.py process --id <id>    Process a meeting by Granola doc ID
  uv run automator_cli.py reset                Reset processed state (re-process all)
"""

import argparse
import logging
import sys

from automator_config import ConfigError, load_config
from granola_client import GranolaClient, GranolaError
from meeting_matcher import find_by_title
from meeting_pipeline import process_meeting
from processed_store import ProcessedStore

LOOKUP_LIMIT = 100


def cmd_list(client: GranolaClient, store: ProcessedStore, limit: int) -> int:
    print("Fetching recent meetings from Granola...\n")
    docs = client.fetch_documents(limit)
    for i, doc in enumerate(docs, 1):
        when = doc.updated_at.astimezone().strftime('%b %d %H:%M')
        marker = ' [processed]' if store.has(doc.id) else ''
        print(f"  {i:>2}. {doc.title}{marker}")
        print(f"      {when}  |  ID: {doc.id}")
    print(f"\n  {len(docs)} meetings found.")
    return 0


def _process(config, client: GranolaClient, store: ProcessedStore, doc, *, skip_processed: bool) -> int:
    if skip_processed and store.has(doc.id):
        print(f"Already processed: \"{doc.title}\". Use \"reset\" to re-process.")
        return 0

    meeting = client.fetch_meeting(doc)
    if not meeting.is_ready:
        print(f"Warning: \"{doc.title}\" has no notes or transcript yet; processing anyway.")

    result = process_meeting(config, meeting)
    store.mark_done(meeting.id)

    tickets = ', '.join(t.key for t in result.jira_tickets) or 'none'
    print("\nResults:")
    print(f"   Tickets: {tickets}")
    print(f"   Action items: {len(result.extraction.action_items)}")
    print(f"   Slack message: {result.slack_message_ts}")
    return 0


def cmd_latest(config, client: GranolaClient, store: ProcessedStore) -> int:
    """Process only the newest document. Older unprocessed ones are not searched."""
    print("Fetching latest meeting from Granola...\n")
    docs = client.fetch_documents(1)
    if not docs:
        print("No meetings found.")
        return 0
    return _process(config, client, store, docs[0], skip_processed=True)


def cmd_process(config, client: GranolaClient, store: ProcessedStore, title: list[str], doc_id: str | None) -> int:
    if doc_id:
        print(f"Fetching meeting {doc_id}...\n")
        docs = client.fetch_documents(LOOKUP_LIMIT)
        doc = next((d for d in docs if d.id == doc_id), None)
        if doc is None:
            print(f"Error: Meeting with ID \"{doc_id}\" not found.", file=sys.stderr)
            return 1
        return _process(config, client, store, doc, skip_processed=True)

    search = ' '.join(title).strip()
    if not search:
        print("Error: Please provide a meeting title to search for.", file=sys.stderr)
        return 1

    print(f"Searching for meeting: \"{search}\"...\n")
    docs = client.fetch_documents(LOOKUP_LIMIT)
    doc = find_by_title(docs, search)
    if doc is None:
        print(f"Error: No meeting found matching \"{search}\".", file=sys.stderr)
        print("\nRecent meetings:")
        for d in docs[:5]:
            print(f"  - {d.title}")
        return 1

    print(f"Found: \"{doc.title}\"")
    # An explicit title search re-processes on purpose
    return _process(config, client, store, doc, skip_processed=False)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Granola Meeting Automator CLI')
    parser.add_argument('--config', default=None, help='Path to config.yaml')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    sub = parser.add_subparsers(dest='command')

    list_parser = sub.add_parser('list', help='List recent meetings')
    list_parser.add_argument('--limit', type=int, default=20, help='How many meetings to list (default 20)')

    sub.add_parser('latest', help='Process the single most recent meeting; does nothing if it is already processed')

    process_parser = sub.add_parser('process', help='Process a meeting by title search or ID')
    process_parser.add_argument('title', nargs='*', help='Text to search for in meeting titles')
    process_parser.add_argument('--id', dest='doc_id', default=None, help='Granola document ID')

    sub.add_parser('reset', help='Reset processed state (re-process all)')
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.command:
        parser.print_help()
        return 0

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy .env.example to .env and fill in your values.", file=sys.stderr)
        return 1

    store = ProcessedStore(config.state_file)

    if args.command == 'reset':
        store.reset()
        print("State reset. All meetings will be re-evaluated on the next calendar refresh.")
        return 0

    client = GranolaClient(config.granola_data_dir)
    try:
        if args.command == 'list':
            return cmd_list(client, store, args.limit)
        if args.command == 'latest':
            return cmd_latest(config, client, store)
        return cmd_process(config, client, store, args.title, args.doc_id)
    except GranolaError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: processing failed: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
