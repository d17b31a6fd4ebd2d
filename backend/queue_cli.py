#!/usr/bin/env python3
"""
Dig Queue command line

Scripted access to the queue configured by the environment. Use
QUEUE_STORE=postgres to work against the shared database; the default
in-memory store only lives for one invocation.
"""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from config import QueueSettings, configure_logging
from queue_errors import QueueError

logger = logging.getLogger(__name__)


def cmd_enqueue(service, args):
    entry, created = service.add_entry(args.artist, args.title, args.catalog, play_next=args.next)
    status = 'Queued' if created else 'Already queued'
    print(f"{status}: {entry.id}  {entry.artist} - {entry.title}")
    return 0


def cmd_up_next(service, args):
    page = service.up_next(args.limit)
    if args.json:
        print(json.dumps(page.to_dict(), indent=2))
        return 0

    for item in page.items:
        print(f"{item.position:>3}. [{item.match_kind.value:<7}] {item.confidence:.2f}  "
              f"{item.artist} - {item.title}")
    print(f"\n{page.playable} playable of {page.total} entries")
    if page.pending:
        print(f"Still resolving: {', '.join(page.pending)}")
    for error in page.errors:
        print(f"Transport error for {error['entry_id']}: {error['detail']}")
    return 0


def cmd_export(service, args):
    rows = service.export_all()
    payload = json.dumps(rows, indent=2)
    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            f.write(payload)
        logger.info(f"Exported {len(rows)} entries to {args.output}")
    else:
        print(payload)
    return 0


COMMANDS = {
    'enqueue': cmd_enqueue,
    'up-next': cmd_up_next,
    'export': cmd_export,
}


def build_parser():
    parser = argparse.ArgumentParser(
        description='Work the digging queue from the command line',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Queue a track with a Discogs release id
  python queue_cli.py enqueue --artist "Shari Vari" --title "A Number Of Names" --catalog 1049470

  # Resolve due entries and show the top 10
  python queue_cli.py up-next --limit 10

  # Export the whole queue
  python queue_cli.py export --output digqueue-export.json
        """
    )
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    enqueue = subparsers.add_parser('enqueue', help='Add an item to the queue')
    enqueue.add_argument('--artist', help='Artist name')
    enqueue.add_argument('--title', help='Track or release title')
    enqueue.add_argument('--catalog', help='Catalog text: release id, release URL or label/catno')
    enqueue.add_argument('--next', action='store_true', help='Play this item before everything else queued')

    up_next = subparsers.add_parser('up-next', help='Resolve due entries and print the ranking')
    up_next.add_argument('--limit', help='Number of items (1-100, default 24)')
    up_next.add_argument('--json', action='store_true', help='Print the page as JSON')

    export = subparsers.add_parser('export', help='Dump every entry as JSON')
    export.add_argument('--output', help='File to write (stdout when omitted)')

    return parser


def main(argv=None, service=None):
    load_dotenv()
    configure_logging()
    args = build_parser().parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    if service is None:
        from queue_service import build_queue_service
        service = build_queue_service(QueueSettings.from_env())

    try:
        return COMMANDS[args.command](service, args)
    except QueueError as e:
        logger.error(f"{e.code}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("\nCancelled by user")
        return 1
    finally:
        service.shutdown()


if __name__ == "__main__":
    sys.exit(main())
