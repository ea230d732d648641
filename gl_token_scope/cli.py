"""CLI entry point for gl-token-scope."""

from __future__ import annotations

import argparse
import asyncio
import sys

from gl_token_scope.adjuster import AdjustAllProjectsOptions, AdjustProjectOptions, TokenScopeAdjuster
from gl_token_scope.client import GitLabClient
from gl_token_scope.config import load_config
from gl_token_scope.errors import AdjustAllProjectsError, GlTokenScopeError
from gl_token_scope.logging_utils import format_error, set_debug_errors, setup_logging
from gl_token_scope.models import (
    ACCESS_LEVELS,
    DEFAULT_CONCURRENCY,
    DEFAULT_PROJECT_CONCURRENCY,
    DEFAULT_REPORT_PATH,
    ORDER_BY_FIELDS,
    VISIBILITY_LEVELS,
    ProjectListOptions,
)
from gl_token_scope.progress import ProgressReporter
from gl_token_scope.reconciler import AllowlistReconciler
from gl_token_scope.report import DryRunReporter


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gl-token-scope",
        description="Allowlist CI_JOB_TOKEN access from projects to the GitLab-hosted projects they depend on.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Scans go.mod, composer.json, composer.lock and package-lock.json files for
dependencies hosted on the same GitLab instance, then adds the scanned project
to the CI/CD job token allowlist of each dependency project.

Environment:
    GITLAB_TOKEN               - GitLab Personal Access Token (required)
    GITLAB_URL                 - GitLab instance URL (default: https://gitlab.com)
    GITLAB_HTTP_TIMEOUT_MS     - Per-request timeout (default: 10000)
    GITLAB_HTTP_MAX_RETRIES    - Retries for transient errors (default: 2)
    GITLAB_HTTP_RETRY_DELAY_MS - Base delay between retries (default: 500)

Examples:
    # Allowlist one project in all of its dependencies
    gl-token-scope --project-id 123

    # Preview every project, writing a YAML report
    gl-token-scope --all --dry-run --report

    # Monorepo: look for manifests below the repository root
    gl-token-scope --project-id 123 --monorepo --dry-run
""",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("-p", "--project-id", type=int, default=None, help="The project ID")
    target.add_argument(
        "--all", action="store_true", dest="all_projects", help="Process all projects available to the configured token"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print out which projects will be updated for access without performing the actual update",
    )
    parser.add_argument(
        "--report",
        nargs="?",
        const=DEFAULT_REPORT_PATH,
        default=None,
        metavar="PATH",
        help=f"Generate a YAML report when used with --all and --dry-run (default path: {DEFAULT_REPORT_PATH})",
    )
    parser.add_argument("--monorepo", action="store_true", help="Consider project as a monorepo and find files recursively")
    parser.add_argument("--debug", action="store_true", help="Print full error stack traces for troubleshooting")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--json", action="store_true", dest="json_output", help="Output log lines as JSON (to stderr)")
    parser.add_argument(
        "--gitlab-url", default=None, help="GitLab instance URL (default: from GITLAB_URL env or https://gitlab.com)"
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Maximum retry attempts for transient errors (default: from GITLAB_HTTP_MAX_RETRIES or 2)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=DEFAULT_CONCURRENCY,
        help=f"Dependency projects updated in parallel (default: {DEFAULT_CONCURRENCY})",
    )
    parser.add_argument(
        "--search-files",
        action="store_true",
        help="Locate manifests with the GitLab blob search API, falling back to the repository tree",
    )

    bulk = parser.add_argument_group("project selection (with --all)")
    bulk.add_argument(
        "--project-concurrency",
        type=int,
        default=DEFAULT_PROJECT_CONCURRENCY,
        help=f"Projects processed in parallel (default: {DEFAULT_PROJECT_CONCURRENCY})",
    )
    bulk.add_argument("--project-timeout", type=float, default=None, help="Give up on a single project after N seconds")
    bulk.add_argument("--search", default=None, help="Only projects whose name or path matches")
    bulk.add_argument("--membership", action="store_true", default=None, help="Only projects the token is a member of")
    bulk.add_argument("--owned", action="store_true", default=None, help="Only projects owned by the token user")
    bulk.add_argument("--archived", action="store_true", default=None, help="Only archived projects")
    bulk.add_argument(
        "--min-access-level", choices=list(ACCESS_LEVELS.keys()), default=None, help="Minimum access level of the token"
    )
    bulk.add_argument("--order-by", choices=ORDER_BY_FIELDS, default=None, help="Sort field")
    bulk.add_argument("--sort", choices=("asc", "desc"), default=None, help="Sort direction")
    bulk.add_argument("--visibility", choices=VISIBILITY_LEVELS, default=None, help="Only projects with this visibility")
    bulk.add_argument("--page-limit", type=int, default=None, help="Stop listing projects after N pages")
    bulk.add_argument("--per-page", type=int, default=None, help="Projects per page, 1-100 (default: 100)")
    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject option combinations that make no sense; exits with status 2 like argparse."""
    if not args.all_projects and args.project_id is None:
        parser.error("one of --project-id or --all is required")
    if args.report and not args.all_projects:
        parser.error("--report can only be used together with --all")
    if args.report and not args.dry_run:
        parser.error("--report requires --dry-run to be enabled")
    if args.concurrency < 1 or args.project_concurrency < 1:
        parser.error("--concurrency and --project-concurrency must be at least 1")


def project_query_from_args(args: argparse.Namespace) -> ProjectListOptions:
    return ProjectListOptions(
        per_page=args.per_page,
        search=args.search,
        membership=args.membership,
        owned=args.owned,
        archived=args.archived,
        min_access_level=ACCESS_LEVELS[args.min_access_level] if args.min_access_level else None,
        page_limit=args.page_limit,
        order_by=args.order_by,
        sort=args.sort,
        visibility=args.visibility,
    )


async def run(args: argparse.Namespace, client: GitLabClient) -> None:
    adjuster = TokenScopeAdjuster(client, reconciler=AllowlistReconciler(client, concurrency=args.concurrency))

    if not args.all_projects:
        options = AdjustProjectOptions(dry_run=args.dry_run, monorepo=args.monorepo)
        await adjuster.adjust_project(args.project_id, options, require_project=True)
        return

    progress = ProgressReporter("Listing projects")
    options = AdjustAllProjectsOptions(
        dry_run=args.dry_run,
        monorepo=args.monorepo,
        reporter=DryRunReporter(args.report) if args.report else None,
        project_query=project_query_from_args(args),
        concurrency=args.project_concurrency,
        project_timeout=args.project_timeout,
        on_list_progress=progress,
    )
    try:
        await adjuster.adjust_all_projects(options)
    finally:
        progress.finish()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    validate_args(parser, args)

    logger = setup_logging(json_mode=args.json_output, verbose=args.verbose or args.debug)
    set_debug_errors(args.debug)

    try:
        config = load_config(gitlab_url=args.gitlab_url)
    except GlTokenScopeError as e:
        logger.error(f"ERROR: {e}")
        return 1

    client = GitLabClient(
        base_url=config.url,
        token=config.token,
        max_retries=config.max_retries if args.max_retries is None else args.max_retries,
        retry_delay=config.retry_delay_ms / 1000,
        timeout=config.timeout_ms / 1000,
        search_files=args.search_files,
    )

    if args.dry_run:
        logger.info("DRY-RUN MODE - no changes will be made")

    try:
        asyncio.run(run(args, client))
    except AdjustAllProjectsError as e:
        logger.error(f"Failed to adjust token scope for {len(e.failures)} project(s):")
        for failure in e.failures:
            logger.error(f"  project {failure.project_id}: {format_error(failure.cause)}")
        return 1
    except GlTokenScopeError as e:
        logger.error(f"Failed to adjust token scope: {format_error(e)}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130

    logger.info("Finished adjusting token scope for all projects!" if args.all_projects else "Finished adjusting token scope!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
