"""
CLI entry point for git-changelog-jira. Wires the pipeline: git log -> changelog -> jira filter -> render -> output
"""

import argparse
import contextlib
import json
import logging
import os
import sys
import tempfile
import threading
from typing import Any, Dict, List, Optional

from correlate.processors import JiraFilterChangelogProcessor
from errors import ChangelogError, ConfigError, OutputSinkError
from ingest.jira import JiraClient
from normalize.models import ProcessorConfig
from normalize.util import expand_env
from pipeline import run
from report.renderer import FORMATS, normalize_format, render
from settings import load_settings, resolve_settings
from storage.cache import Cache

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

# settings that may contain $VAR placeholders
_EXPANDABLE = ("repo", "from_rev", "to_rev", "jira_base_url", "jira_prefix", "out_file")


def _print_json(obj):
    print(json.dumps(obj, indent=2, default=str))


def _clear_cache(cache: Cache, force: bool):
    if not force:
        confirm = input(f"Are you sure you want to clear the cache at {cache.path}? This cannot be undone. [y/N]: ")
        if confirm.strip().lower() not in ("y", "yes"):
            print("Aborted cache clear.")
            return
    cache.clear()
    print(f"Cleared cache at {cache.path}")


def _wants_cache_action(args) -> bool:
    return bool(args.cache_info or args.cache_clear or args.cache_list)


def _handle_cache_actions(args, cache_path: str):
    """Run the cache inspection/maintenance flag that was given."""
    with Cache(cache_path or "changelog-cache.db") as cache:
        if args.cache_info:
            _print_json(cache.stats())
        elif args.cache_list:
            _print_json(cache.list_keys(limit=1000))
        elif args.cache_clear:
            _clear_cache(cache, args.force)


def _configure_logging(verbosity: int):
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(stream=sys.stderr, level=level, format="%(levelname)s %(name)s: %(message)s")


def _cli_values(args) -> Dict[str, Any]:
    return {
        "repo": args.repo,
        "from_rev": args.from_rev,
        "to_rev": args.to_rev,
        "jira_base_url": args.jira_base_url,
        "jira_prefix": args.jira_prefix,
        "jira_token": args.jira_token,
        "out_file": args.out_file,
        "format": args.format,
        "cache": args.cache,
        "cache_max_age": args.cache_max_age,
        "max_workers": args.max_workers,
        "lookup_timeout": args.lookup_timeout,
        "max_retries": args.max_retries,
        "backoff_base": args.backoff_base,
        "backoff_jitter": args.backoff_jitter,
        "max_backoff": args.max_backoff,
    }


def build_settings(args, env=None) -> Dict[str, Any]:
    """Resolve settings from flags, environment and --config, then expand $VAR placeholders."""
    env = os.environ if env is None else env
    settings = resolve_settings(_cli_values(args), env, load_settings(args.config))
    for key in _EXPANDABLE:
        settings[key] = expand_env(settings[key], env)
    try:
        settings["format"] = normalize_format(settings["format"])
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc
    return settings


def build_processor(settings: Dict[str, Any], cache: Optional[Cache] = None) -> JiraFilterChangelogProcessor:
    config = ProcessorConfig.from_strings(settings["jira_base_url"], settings["jira_prefix"])
    client = JiraClient(
        config.jira_base_url,
        token=settings["jira_token"],
        cache=cache,
        timeout=settings["lookup_timeout"],
        max_retries=settings["max_retries"],
        max_age=settings["cache_max_age"],
        backoff_base=settings["backoff_base"],
        backoff_jitter=settings["backoff_jitter"],
        max_backoff=settings["max_backoff"],
    )
    return JiraFilterChangelogProcessor(config, client=client, max_workers=settings["max_workers"], lookup_timeout=settings["lookup_timeout"])


def write_output(rendered: str, out_file: str):
    """Write to stdout, or atomically to out_file (temp file in the same directory, then os.replace)."""
    if not out_file:
        try:
            sys.stdout.write(rendered)
            sys.stdout.flush()
        except OSError as exc:
            raise OutputSinkError(f"cannot write to stdout: {exc}") from exc
        return

    out_path = os.path.abspath(out_file)
    out_dir = os.path.dirname(out_path)
    try:
        os.makedirs(out_dir, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".changelog-", suffix=".tmp", dir=out_dir)
    except OSError as exc:
        raise OutputSinkError(f"cannot write {out_path}: {exc}") from exc
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(rendered)
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, out_path)
    except OSError as exc:
        with contextlib.suppress(OSError):
            os.remove(tmp_path)
        raise OutputSinkError(f"cannot write {out_path}: {exc}") from exc
    except BaseException:
        with contextlib.suppress(OSError):
            os.remove(tmp_path)
        raise
    print(f"Wrote changelog to {out_path}", file=sys.stderr)


def run_pipeline(settings: Dict[str, Any], cache: Optional[Cache] = None, cancel_event: Optional[threading.Event] = None) -> str:
    """Execute read -> process -> render and return the rendered text."""
    processor = build_processor(settings, cache)
    changelog = run(settings["repo"], settings["from_rev"], settings["to_rev"], [processor], cancel_event=cancel_event)
    return render(changelog, settings["format"])


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="git-changelog-jira", description="Generate a git changelog annotated with Jira issues")
    parser.add_argument("--repo", type=str, default=None, help="Path to the git repository (default: current directory)")
    parser.add_argument("--from", dest="from_rev", type=str, default=None, help="Start revision, exclusive (default: beginning of history)")
    parser.add_argument("--to", dest="to_rev", type=str, default=None, help="End revision, inclusive (default: HEAD)")
    parser.add_argument("--jira-base-url", type=str, default=None, help="Jira base URL, e.g. https://issues.example.com (env CHANGELOG_JIRA_BASE_URL)")
    parser.add_argument("--jira-prefix", type=str, default=None, help='Project prefixes, comma or space separated, e.g. "ABC,XYZ" (env CHANGELOG_JIRA_PREFIX)')
    parser.add_argument("--jira-token", type=str, default=None, help="Jira API token sent as a Bearer token (env JIRA_TOKEN)")
    parser.add_argument("--out-file", type=str, default=None, help="Output file path. If omitted the changelog is written to stdout")
    parser.add_argument("--format", type=str, default=None, help=f"Output format ({', '.join(FORMATS)}; default text)")
    parser.add_argument("--config", type=str, default="", help="YAML file with default settings")
    parser.add_argument("--cache", type=str, default=None, help="Path to SQLite cache file for issue lookups (optional)")
    parser.add_argument("--cache-max-age", type=float, default=None, help="Ignore cached lookups older than this many seconds")
    parser.add_argument("--max-workers", type=int, default=None, help="Maximum concurrent issue lookups (env CHANGELOG_MAX_WORKERS, default 4)")
    parser.add_argument("--lookup-timeout", type=float, default=None, help="Per-lookup timeout in seconds, retries included (env CHANGELOG_LOOKUP_TIMEOUT, default 10)")
    # retry/backoff knobs: CLI overrides for CHANGELOG_MAX_RETRIES, CHANGELOG_BACKOFF_BASE, CHANGELOG_BACKOFF_JITTER, CHANGELOG_MAX_BACKOFF
    parser.add_argument("--max-retries", type=int, default=None, help="Maximum attempts per issue lookup")
    parser.add_argument("--backoff-base", type=float, default=None, help="Base backoff seconds")
    parser.add_argument("--backoff-jitter", type=float, default=None, help="Jitter seconds added to backoff")
    parser.add_argument("--max-backoff", type=float, default=None, help="Maximum backoff cap in seconds")
    parser.add_argument("--cache-info", action="store_true", help="Show cache statistics and exit")
    parser.add_argument("--cache-list", action="store_true", help="List cache keys and exit")
    parser.add_argument("--cache-clear", action="store_true", help="Clear the cache and exit")
    parser.add_argument("--force", action="store_true", help="Do not ask for confirmation (use with --cache-clear)")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase log verbosity (-v info, -vv debug)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    cache = None
    try:
        settings = build_settings(args)

        if _wants_cache_action(args):
            _handle_cache_actions(args, settings["cache"])
            return EXIT_OK

        cache = Cache(settings["cache"]) if settings["cache"] else None
        rendered = run_pipeline(settings, cache, threading.Event())
        write_output(rendered, settings["out_file"])
        return EXIT_OK
    except ChangelogError as exc:
        print(f"error: {exc.stage}: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("error: cancelled", file=sys.stderr)
        return EXIT_CANCELLED
    finally:
        if cache:
            cache.close()


if __name__ == "__main__":
    sys.exit(main())
