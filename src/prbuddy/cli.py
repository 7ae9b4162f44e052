from __future__ import annotations

import argparse
from collections.abc import Sequence
from dataclasses import asdict
import json
from pathlib import Path
import sys

from prbuddy.comments import SubjectNotFoundError, aggregate_comments
from prbuddy.config import AppConfig, ConfigError, load_config
from prbuddy.formatting import format_comments
from prbuddy.github_cli import GitHubCli, GitHubCliError
from prbuddy.highlights import HighlightStore
from prbuddy.models import GROUP_BY_CHOICES, CommentQueryOptions
from prbuddy.observability import configure_logging
from prbuddy.server import serve


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prbuddy")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser(
        "serve", help="Run the MCP tool server over stdio"
    )
    _add_common_arguments(serve_parser)

    comments_parser = subparsers.add_parser(
        "comments", help="Print the aggregated comments of one pull request"
    )
    _add_common_arguments(comments_parser)
    comments_parser.add_argument("pr_number", type=int, help="Pull request number")
    comments_parser.add_argument("--repo", type=str, help="Repository as owner/name")
    comments_parser.add_argument(
        "--group-by",
        choices=GROUP_BY_CHOICES,
        help="Ordering strategy (defaults to [comments].group_by)",
    )
    comments_parser.add_argument("--author", type=str, help="Only comments by this login")
    comments_parser.add_argument(
        "--include-resolved",
        action="store_true",
        help="Include comments on resolved review threads",
    )
    comments_parser.add_argument(
        "--no-general", action="store_true", help="Skip top-level PR comments"
    )
    comments_parser.add_argument(
        "--no-reviews", action="store_true", help="Skip review summary comments"
    )
    comments_parser.add_argument(
        "--no-inline", action="store_true", help="Skip inline code comments"
    )
    comments_parser.add_argument(
        "--max-comments", type=int, help="Page size per collection (1-100)"
    )
    comments_parser.add_argument(
        "--json", action="store_true", help="Print the aggregated result as JSON"
    )

    seed_parser = subparsers.add_parser(
        "seed-values", help="Create the highlight database and seed company values"
    )
    _add_common_arguments(seed_parser)

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to prbuddy.toml (defaults to ./prbuddy.toml when present)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        choices=("low", "high"),
        default=None,
        help="Log to stderr; 'low' keeps only key events",
    )


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        config = load_config(args.config)
    except (ConfigError, OSError) as exc:
        print(f"prbuddy: invalid configuration: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    configure_logging(args.verbose or config.logging.verbose, log_dir=config.logging.log_dir)

    if args.command == "serve":
        serve(config)
        return
    if args.command == "comments":
        _cmd_comments(config, args)
        return
    if args.command == "seed-values":
        _cmd_seed_values(config)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_comments(config: AppConfig, args: argparse.Namespace) -> None:
    try:
        options = CommentQueryOptions.from_arguments(
            include_general_comments=False if args.no_general else None,
            include_review_comments=False if args.no_reviews else None,
            include_inline_comments=False if args.no_inline else None,
            include_resolved=True if args.include_resolved else None,
            filter_by_author=args.author,
            group_by=args.group_by,
            max_comments=args.max_comments,
            defaults=config.comments.default_options(),
        )
        github = GitHubCli(repo=args.repo or config.github.repo)
        document = github.fetch_pr_comments_document(args.pr_number, options)
        result = aggregate_comments(args.pr_number, document, options)
    except (GitHubCliError, SubjectNotFoundError, ValueError) as exc:
        print(f"prbuddy: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    if args.json:
        print(json.dumps(asdict(result), indent=2, sort_keys=True))
        return
    print(format_comments(result))


def _cmd_seed_values(config: AppConfig) -> None:
    store = HighlightStore(config.highlights.db_path)
    count = store.seed_values()
    print(f"Seeded {count} company values into {config.highlights.db_path}")
