#!/usr/bin/env python3
"""
askgraph - Natural language search over a Roam Research graph

Main entry point for askgraph. Imports a Roam export into the local graph
store, then answers search requests or questions about it, one at a time or
as a conversation.
"""

import logging
import sys
import argparse
from typing import Optional

from askgraph.agents import AgentRunner
from askgraph.cancellation import CancelToken
from askgraph.config import config
from askgraph.conversation import ConversationSession
from askgraph.database import GraphStore
from askgraph.errors import AskGraphError, UserChoiceTimeoutError
from askgraph.importers import RoamEDNImporter, RoamJSONImporter, SampleImporter
from askgraph.orchestration import (
    MORE, RETRY, SearchAgent, SearchOutcome, await_user_choice, stdin_reader
)


def setup_logging():
    """Configure logging for the application."""
    level = getattr(logging, config.get("logging.level", "INFO").upper())
    format_str = config.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = config.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def load_pages(store: GraphStore, importer) -> None:
    pages, blocks = store.import_pages(importer.get_all_pages())
    logging.info(f"Imported {pages} pages and {blocks} blocks")
    print(f"Imported {pages} pages and {blocks} blocks into {store.db_path}")


def run_import(store: GraphStore, path: str, export_format: str) -> None:
    """
    Import a Roam export into the graph store.

    Args:
        store: Connected graph store
        path: Path of the export file
        export_format: 'json' or 'edn'
    """
    importer = RoamEDNImporter(path) if export_format == "edn" else RoamJSONImporter(path)
    load_pages(store, importer)


def print_outcome(outcome: SearchOutcome) -> None:
    if outcome.display_header:
        print(outcome.display_header)
    print(outcome.stringified_result_to_display)
    if outcome.status == "error":
        print("\nThe search could not be completed, see the log for details.")


def ask_choice(prompt: str) -> str:
    """Prompt for a choice, bounded by the configured timeout."""
    return await_user_choice(prompt, config.user_choice_timeout).strip().lower()


def follow_continuations(outcome: SearchOutcome, resume) -> None:
    """
    Offer the choices of a paused search until the user stops.

    Args:
        outcome: Outcome of the first run
        resume: Callable(token, decision, retry_instruction) -> SearchOutcome
    """
    while outcome.continuation is not None:
        token = outcome.continuation
        try:
            if token.kind == "pagination":
                answer = ask_choice("\nShow more results? (y/n): ")
                if answer not in ("y", "yes"):
                    return
                outcome = resume(token, MORE, None)
            else:
                choices = "/".join(token.options)
                answer = ask_choice(f"\nNo results. Broaden the search? ({choices}/no): ")
                if answer not in token.options:
                    return
                hint = None
                if answer == RETRY:
                    hint = ask_choice("What should be done better? ") or None
                outcome = resume(token, answer, hint)
        except UserChoiceTimeoutError as e:
            print(f"\n{e}")
            return
        except EOFError:
            return
        print_outcome(outcome)


def run_search(store: GraphStore, runner: AgentRunner, query: str, search_only: bool,
               interactive: bool) -> int:
    agent = SearchAgent(store, runner, config)
    cancel_token = CancelToken()
    try:
        outcome = agent.run(query, search_only=search_only, cancel_token=cancel_token)
    except KeyboardInterrupt:
        cancel_token.cancel()
        print("\nSearch cancelled.")
        return 1
    print_outcome(outcome)
    if interactive:
        follow_continuations(
            outcome,
            lambda token, decision, hint: agent.resume(token, decision, hint, cancel_token)
        )
    return 0 if outcome.status in ("completed", "empty") else 1


def run_chat(store: GraphStore, runner: AgentRunner, search_only: bool, private_mode: bool) -> int:
    """Interactive conversation, reusing the results of previous turns."""
    session = ConversationSession(SearchAgent(store, runner, config), config_manager=config,
                                  private_mode=private_mode)
    print("askgraph conversation. Empty line or Ctrl-D to quit.")
    while True:
        try:
            query = stdin_reader.read_line("\n> ").strip()
        except EOFError:
            break
        if not query:
            break
        cancel_token = CancelToken()
        try:
            outcome = session.ask(query, search_only=search_only, cancel_token=cancel_token)
        except KeyboardInterrupt:
            cancel_token.cancel()
            print("\nSearch cancelled.")
            continue
        except AskGraphError as e:
            logging.error(f"Turn failed: {e}")
            print(f"\nError: {e}")
            continue
        print_outcome(outcome)
        follow_continuations(
            outcome,
            lambda token, decision, hint: session.resume(token, decision, hint, cancel_token)
        )
    return 0


def parse_arguments(argv: Optional[list] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="askgraph - Natural language search over a Roam Research graph",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py import export.json                     # Import a Roam JSON export
  python main.py import graph.edn --format edn          # Import a Roam EDN export
  python main.py --sample search "recipes + sugar|vanilla"
  python main.py ask "which of my recipes is the easiest?"
  python main.py chat                                   # Conversation with cached results
        """
    )

    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help=f"DuckDB database file (default: {config.database_filename})"
    )

    parser.add_argument(
        "--sample",
        action="store_true",
        help="Load the built-in sample graph before running the command"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="askgraph 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    import_parser = subparsers.add_parser("import", help="Import a Roam export")
    import_parser.add_argument("path", help="Path of the export file")
    import_parser.add_argument(
        "--format",
        choices=["json", "edn"],
        default="json",
        help="Export format (default: json)"
    )

    search_parser = subparsers.add_parser("search", help="List the blocks matching a request")
    search_parser.add_argument("query", help="Request in natural language or symbolic query")
    search_parser.add_argument("--no-interactive", action="store_true",
                               help="Do not offer more results or a broader search")

    ask_parser = subparsers.add_parser("ask", help="Answer a question from the matching blocks")
    ask_parser.add_argument("query", help="Question in natural language")
    ask_parser.add_argument("--no-interactive", action="store_true",
                            help="Do not offer more results or a broader search")

    chat_parser = subparsers.add_parser("chat", help="Conversation reusing previous results")
    chat_parser.add_argument("--search-only", action="store_true",
                             help="Only list matching blocks, never post-process them")
    chat_parser.add_argument("--private", action="store_true",
                             help="Never process cached content, always run a new search")

    return parser.parse_args(argv)


def main():
    """Main entry point."""
    args = parse_arguments()
    setup_logging()

    logging.info("askgraph - Natural language search over a Roam Research graph")

    try:
        with GraphStore(args.db or config.database_filename) as store:
            store.initialize_database()
            if args.sample:
                load_pages(store, SampleImporter())

            if args.command == "import":
                run_import(store, args.path, args.format)
                return

            with AgentRunner(store=store) as runner:
                if args.command == "chat":
                    status = run_chat(store, runner, args.search_only, args.private)
                else:
                    status = run_search(store, runner, args.query, args.command == "search",
                                        not args.no_interactive)
            sys.exit(status)

    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")

    except (AskGraphError, OSError, ValueError) as e:
        logging.error(f"askgraph failed: {e}")
        print(f"\naskgraph failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
