#!/usr/bin/env python3
"""
GitOps Migration Pipeline - Main CLI entrypoint

Operator commands for the pipeline that otherwise runs behind the webhook
server: replay a saved push payload, sync project sheets from the
repository, and open the pull request that sets up SQL review CI.

Usage:
    python main.py serve --port 8080
    python main.py replay push.json --endpoint ws-1700000000 --vcs github
    python main.py sync-sheet 101
    python main.py setup-sql-review-ci 101
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from gitops.oauth import repository_oauth_context
from gitops.push_processor import PushEventProcessor
from gitops.sheet_sync import SheetSyncService
from gitops.sql_review_ci import setup_sql_review_ci
from gitops.webhook_auth import filter_repositories, push_event_predicate
from models.data_models import SYSTEM_BOT_ID
from models.vcs_models import VCSType
from storage.supabase_client import SupabaseStore
from utils.config_loader import load_config
from utils.errors import GitOpsError
from utils.license import LicenseService
from utils.logger import setup_logger
from vcs.registry import get_provider

logger = logging.getLogger(__name__)

VCS_TYPES = {
    "github": VCSType.GITHUB_COM,
    "gitlab": VCSType.GITLAB_SELF_HOST,
}


def replay_push_event(config, store: SupabaseStore, payload_path: str, endpoint_id: str, vcs: str) -> bool:
    """
    Re-run a saved push payload through the pipeline.

    The payload is trusted: no webhook secret is checked, but repository
    links still have to match the endpoint, repository and branch filter.

    Returns:
        True if at least one issue was created
    """
    payload = json.loads(Path(payload_path).read_text())
    vcs_type = VCS_TYPES[vcs]
    provider_factory = lambda t: get_provider(t, config.server.vcs_request_timeout)  # noqa: E731

    push_event = provider_factory(vcs_type).to_push_event(payload)
    logger.info(
        f"Replaying push {push_event.before[:8]}...{push_event.after[:8]} to {push_event.repository_full_path} "
        f"({len(push_event.commit_list)} commits)"
    )

    repositories = filter_repositories(
        store, endpoint_id, push_event.repository_id, push_event_predicate(lambda repository: True, push_event.ref),
    )
    if not repositories:
        logger.warning(f"No repository link of endpoint {endpoint_id} accepts this push")
        return False

    processor = PushEventProcessor(store, config.server, LicenseService(config.server.license_plan), provider_factory)
    messages = processor.process_push_event(repositories, push_event)
    for message in messages:
        print(message)
    return bool(messages)


def sync_project_sheets(config, store: SupabaseStore, project_id: int, principal_id: int) -> bool:
    sheets = SheetSyncService(store, config.server).sync_sheets(project_id, principal_id)
    for sheet in sheets:
        print(f"  • {sheet.name}")
    logger.info(f"Synced {len(sheets)} sheets for project {project_id}")
    return True


def open_sql_review_ci_pull_request(config, store: SupabaseStore, project_id: int) -> bool:
    repositories = store.find_repositories(project_id=project_id)
    if not repositories:
        logger.error(f"Repository not found by project ID: {project_id}")
        return False
    repository = repositories[0]

    provider = get_provider(repository.vcs.type, config.server.vcs_request_timeout)
    pull_request = setup_sql_review_ci(
        provider,
        repository_oauth_context(store, repository),
        repository,
        config.server,
        LicenseService(config.server.license_plan),
    )
    print(f"Merge {pull_request.url} to enable SQL review CI")
    return True


def main():
    """Main CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="GitOps Migration Pipeline - migration issues and SQL review from VCS events",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the webhook server
  python main.py serve --host 0.0.0.0 --port 8080

  # Replay a push payload saved from the provider's delivery log
  python main.py replay push.json --endpoint ws-1700000000 --vcs gitlab

  # Sync sheets of project 101 as principal 7
  python main.py sync-sheet 101 --principal 7
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Start the webhook server"
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="Port to run the server on (default: 8080)"
    )
    serve_parser.add_argument(
        "--host",
        type=str,
        default="127.0.0.1",
        help="Host to bind the server to (default: 127.0.0.1)"
    )

    replay_parser = subparsers.add_parser(
        "replay",
        help="Re-run a saved push event payload"
    )
    replay_parser.add_argument(
        "payload",
        help="Path to the JSON push payload"
    )
    replay_parser.add_argument(
        "--endpoint",
        required=True,
        help="Webhook endpoint ID the push was delivered to"
    )
    replay_parser.add_argument(
        "--vcs",
        choices=sorted(VCS_TYPES),
        required=True,
        help="Provider that sent the payload"
    )

    sync_parser = subparsers.add_parser(
        "sync-sheet",
        help="Sync project sheets from the linked repository"
    )
    sync_parser.add_argument(
        "project_id",
        type=int,
        help="Project ID"
    )
    sync_parser.add_argument(
        "--principal",
        type=int,
        default=SYSTEM_BOT_ID,
        help=f"Principal recorded on the sheets (default: {SYSTEM_BOT_ID}, the system bot)"
    )

    ci_parser = subparsers.add_parser(
        "setup-sql-review-ci",
        help="Open the pull request that adds SQL review CI to the linked repository"
    )
    ci_parser.add_argument(
        "project_id",
        type=int,
        help="Project ID"
    )

    args = parser.parse_args()
    setup_logger()

    # Show help if no command provided
    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        import uvicorn
        logger.info(f"Starting webhook server on http://{args.host}:{args.port}")
        uvicorn.run("backend.app:app", host=args.host, port=args.port, log_level="info")
        sys.exit(0)

    config = load_config()
    setup_logger(config.log_level)

    try:
        store = SupabaseStore(config.credentials.supabase_url, config.credentials.supabase_key)
    except Exception as e:
        logger.error(f"Failed to initialize Supabase client: {e}")
        sys.exit(1)

    try:
        if args.command == "replay":
            success = replay_push_event(config, store, args.payload, args.endpoint, args.vcs)
        elif args.command == "sync-sheet":
            success = sync_project_sheets(config, store, args.project_id, args.principal)
        else:
            success = open_sql_review_ci_pull_request(config, store, args.project_id)
    except GitOpsError as e:
        logger.error(f"{args.command} failed: {e.message}")
        sys.exit(1)
    except (OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
