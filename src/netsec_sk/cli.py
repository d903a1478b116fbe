#!/usr/bin/env python3
"""netsec-sk command line.

Usage:
    netsec-sk [--repo REPO] [--env ENV] init
    netsec-sk [--repo REPO] env create <env_id> | env list
    netsec-sk [--repo REPO] [--env ENV] ingest <paths...> [--rdns] [--keep-extract]
    netsec-sk [--repo REPO] [--env ENV] export
    netsec-sk [--repo REPO] [--env ENV] devices | panorama
    netsec-sk [--repo REPO] [--env ENV] show device|panorama <id>
    netsec-sk [--repo REPO] [--env ENV] history state | history commits [--limit N]
    netsec-sk [--repo REPO] [--env ENV] topology

Errors are printed to stderr as "ERROR <code> <message>" and mapped to a
stable exit status.

Environment variables:
    NETSEC_SK_REPO, NETSEC_SK_ENV, NETSEC_SK_RDNS, NETSEC_SK_KEEP_EXTRACT
    NETSEC_SK_LOG_LEVEL, NETSEC_SK_LOG_FILE
"""
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .commit import GitError, GitManager
from .config import Settings
from .export import run_export
from .export.pipeline import OVERRIDES_FILE, load_firewalls
from .ingest import IngestOptions, LockHeldError, NoInputsError, run_ingest
from .repo import (
    EnvironmentRegistry,
    GitMissingError,
    InvalidEnvIDError,
    RepoUnsafeError,
    init_repo,
    normalize_env_id,
    validate_env_id,
)
from .repo.layout import (
    UnsafeEntityIDError,
    commit_ledger_path,
    entity_dir_name,
    entity_paths,
    env_dir,
)
from .state import read_snapshot
from .topology import infer_shared_subnet_edges, merge_override_edges
from .utils.audit_log import read_commit_ledger
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)

# Error codes and exit statuses
E_USAGE = "E_USAGE"
E_GIT_MISSING = "E_GIT_MISSING"
E_REPO_UNSAFE = "E_REPO_UNSAFE"
E_LOCK_HELD = "E_LOCK_HELD"
E_PARSE_FATAL = "E_PARSE_FATAL"
E_PARSE_PARTIAL = "E_PARSE_PARTIAL"
E_IO = "E_IO"
E_INTERNAL = "E_INTERNAL"

EXIT_CODES = {
    E_USAGE: 2,
    E_GIT_MISSING: 3,
    E_REPO_UNSAFE: 4,
    E_LOCK_HELD: 5,
    E_PARSE_FATAL: 6,
    E_IO: 6,
    E_PARSE_PARTIAL: 7,
    E_INTERNAL: 9,
}


class AppError(Exception):
    """An error with a stable code for the command line."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    @property
    def exit_code(self) -> int:
        return EXIT_CODES.get(self.code, EXIT_CODES[E_INTERNAL])


def _env_id(args: argparse.Namespace) -> str:
    env_id = normalize_env_id(args.env)
    try:
        validate_env_id(env_id)
    except InvalidEnvIDError as e:
        raise AppError(E_USAGE, str(e))
    return env_id


def _print_rows(header: list[str], rows: list[list[str]]) -> None:
    print("\t".join(header))
    for row in rows:
        print("\t".join(row))


def cmd_init(args: argparse.Namespace) -> int:
    try:
        repo = init_repo(args.repo)
    except GitMissingError as e:
        raise AppError(E_GIT_MISSING, str(e))
    except (OSError, GitError) as e:
        raise AppError(E_IO, str(e))
    print(f"Initialized repository: {repo}")
    return 0


def cmd_env(args: argparse.Namespace) -> int:
    registry = EnvironmentRegistry(args.repo)
    try:
        if args.env_command == "list":
            for env_id in registry.list():
                print(env_id)
            return 0

        env_id, created = registry.create(args.env_id)
    except InvalidEnvIDError as e:
        raise AppError(E_USAGE, str(e))
    except OSError as e:
        raise AppError(E_IO, str(e))

    if created:
        print(f"Environment created: {env_id}")
    else:
        print(f"Environment already exists: {env_id}")
    return 0


def cmd_ingest(args: argparse.Namespace) -> int:
    options = IngestOptions(
        repo_path=Path(args.repo),
        env_id=args.env,
        inputs=list(args.paths),
        enable_rdns=args.rdns or args.settings.enable_rdns,
        keep_extract=args.keep_extract or args.settings.keep_extract,
    )
    try:
        summary = run_ingest(options)
    except (NoInputsError, InvalidEnvIDError) as e:
        raise AppError(E_USAGE, str(e))
    except RepoUnsafeError as e:
        raise AppError(E_REPO_UNSAFE, str(e))
    except LockHeldError as e:
        raise AppError(E_LOCK_HELD, str(e))
    except (OSError, GitError, ValueError) as e:
        raise AppError(E_IO, str(e))

    for warning in summary.warnings:
        logger.warning(f"Ingest warning: {warning}")
    print(summary.line())

    if summary.parse_error_fatal > 0:
        return EXIT_CODES[E_PARSE_FATAL]
    if summary.parse_error_partial > 0:
        return EXIT_CODES[E_PARSE_PARTIAL]
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    env_id = _env_id(args)
    try:
        run_export(Path(args.repo), env_id)
    except (OSError, ValueError) as e:
        raise AppError(E_IO, str(e))
    print(f"Export complete: {env_id}")
    return 0


def _read_latest_docs(repo: Path, env_id: str, entity_type: str) -> list[tuple[str, dict]]:
    base = env_dir(repo, env_id) / "state" / entity_dir_name(entity_type)
    if not base.exists():
        return []
    docs = []
    for entity_dir in sorted(p for p in base.iterdir() if p.is_dir()):
        doc = read_snapshot(entity_dir / "latest.json")
        if doc is not None:
            docs.append((entity_dir.name, doc))
    return docs


def cmd_devices(args: argparse.Namespace) -> int:
    env_id = _env_id(args)
    try:
        docs = _read_latest_docs(Path(args.repo), env_id, "firewall")
    except (OSError, ValueError) as e:
        raise AppError(E_IO, str(e))

    rows = []
    for device_id, doc in docs:
        device = doc.get("device", {})
        rows.append([
            device_id,
            device.get("hostname", ""),
            device.get("model", ""),
            device.get("sw_version", ""),
            device.get("mgmt_ip", ""),
        ])
    _print_rows(["DEVICE_ID", "HOSTNAME", "MODEL", "SW_VERSION", "MGMT_IP"], rows)
    return 0


def cmd_panorama(args: argparse.Namespace) -> int:
    env_id = _env_id(args)
    try:
        docs = _read_latest_docs(Path(args.repo), env_id, "panorama")
    except (OSError, ValueError) as e:
        raise AppError(E_IO, str(e))

    rows = []
    for panorama_id, doc in docs:
        inst = doc.get("panorama_instance", {})
        rows.append([
            panorama_id,
            inst.get("hostname", ""),
            inst.get("model", ""),
            inst.get("version", ""),
            inst.get("mgmt_ip", ""),
        ])
    _print_rows(["PANORAMA_ID", "HOSTNAME", "MODEL", "VERSION", "MGMT_IP"], rows)
    return 0


def cmd_show(args: argparse.Namespace) -> int:
    env_id = _env_id(args)
    entity_type = "firewall" if args.kind == "device" else "panorama"
    try:
        latest, _ = entity_paths(Path(args.repo), env_id, entity_type, args.entity_id)
    except UnsafeEntityIDError as e:
        raise AppError(E_USAGE, str(e))
    try:
        doc = read_snapshot(latest)
    except (OSError, ValueError) as e:
        raise AppError(E_IO, str(e))
    if doc is None:
        raise AppError(E_IO, f"no snapshot for {args.kind} {args.entity_id}")
    print(json.dumps(doc, indent=2, sort_keys=True))
    return 0


def cmd_history(args: argparse.Namespace) -> int:
    env_id = _env_id(args)
    repo = Path(args.repo)

    if args.history_command == "commits":
        commits = GitManager(repo).get_history(path=f"envs/{env_id}", limit=args.limit)
        _print_rows(
            ["COMMITTED_AT", "GIT_COMMIT", "SUBJECT"],
            [[c.date.isoformat(), c.hash, c.message] for c in commits],
        )
        return 0

    try:
        entries = read_commit_ledger(commit_ledger_path(repo, env_id))
    except (OSError, ValueError) as e:
        raise AppError(E_IO, str(e))

    entries.sort(key=lambda e: (e.committed_at_utc, e.git_commit))
    _print_rows(
        ["COMMITTED_AT_UTC", "GIT_COMMIT", "TSF_ID", "TSF_ORIGINAL_NAME", "CHANGED_SCOPE"],
        [
            [e.committed_at_utc, e.git_commit, e.tsf_id, e.tsf_original_name, e.changed_scope]
            for e in entries
        ],
    )
    return 0


def cmd_topology(args: argparse.Namespace) -> int:
    env_id = _env_id(args)
    base = env_dir(Path(args.repo), env_id)
    try:
        firewalls = load_firewalls(base / "state", env_id)
        edges = infer_shared_subnet_edges(firewalls.interfaces)
        edges = merge_override_edges(edges, base / "overrides" / OVERRIDES_FILE)
    except (OSError, ValueError) as e:
        raise AppError(E_IO, str(e))

    connected = {f"{e.src_device_id}|{e.src_zone}" for e in edges}
    connected |= {f"{e.dst_device_id}|{e.dst_zone}" for e in edges}
    orphans = len(firewalls.zones - connected)
    print(f"Topology edges: {len(edges)}")
    print(f"Zones without edges: {orphans}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    # --repo/--env are accepted before or after the command
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--repo", type=Path, default=argparse.SUPPRESS, help="State repository path")
    common.add_argument("--env", default=argparse.SUPPRESS, help="Environment id")

    parser = argparse.ArgumentParser(
        prog="netsec-sk",
        description="Ingest firewall and Panorama tech-support files into a git-backed state repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    netsec-sk --repo ./state init
    netsec-sk --repo ./state --env prod ingest ./tsf/
    netsec-sk --repo ./state --env prod devices

Exit codes:
    0 ok, 2 usage, 3 git missing, 4 repo unsafe, 5 lock held,
    6 fatal parse or IO error, 7 partial parse, 9 internal error
""",
    )
    parser.add_argument("--repo", type=Path, default=None, help="State repository path")
    parser.add_argument("--env", default=None, help="Environment id")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", parents=[common], help="Initialize the state repository")
    init.set_defaults(func=cmd_init)

    env = sub.add_parser("env", parents=[common], help="Manage environments")
    env_sub = env.add_subparsers(dest="env_command", required=True)
    create = env_sub.add_parser("create", parents=[common], help="Create an environment")
    create.add_argument("env_id")
    env_sub.add_parser("list", parents=[common], help="List environments")
    env.set_defaults(func=cmd_env)

    ingest = sub.add_parser("ingest", parents=[common], help="Ingest TSF archives")
    ingest.add_argument("paths", nargs="*", help="Archives or directories")
    ingest.add_argument("--rdns", action="store_true", help="Reverse DNS for new devices")
    ingest.add_argument("--keep-extract", action="store_true", help="Keep scratch directories")
    ingest.set_defaults(func=cmd_ingest)

    for name, func, text in (
        ("export", cmd_export, "Regenerate exports"),
        ("devices", cmd_devices, "List firewalls"),
        ("panorama", cmd_panorama, "List Panorama instances"),
        ("topology", cmd_topology, "Summarize inferred topology"),
    ):
        sub.add_parser(name, parents=[common], help=text).set_defaults(func=func)

    show = sub.add_parser("show", parents=[common], help="Print the latest snapshot of an entity")
    show.add_argument("kind", choices=["device", "panorama"])
    show.add_argument("entity_id")
    show.set_defaults(func=cmd_show)

    history = sub.add_parser("history", parents=[common], help="Show state history")
    history_sub = history.add_subparsers(dest="history_command", required=True)
    history_sub.add_parser("state", parents=[common], help="Commit ledger entries")
    commits = history_sub.add_parser(
        "commits", parents=[common], help="Git commits touching the environment"
    )
    commits.add_argument("--limit", type=int, default=20)
    history.set_defaults(func=cmd_history)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the netsec-sk CLI."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits 2 on usage errors and 0 for --help
        return int(e.code or 0)

    setup_logging()
    if args.verbose:
        for handler in logging.getLogger("netsec_sk").handlers:
            handler.setLevel(logging.DEBUG)

    settings = Settings.load(args.repo)
    args.settings = settings
    args.repo = settings.repo_path
    if args.env is None:
        args.env = settings.env_id

    try:
        return args.func(args)
    except AppError as e:
        print(f"ERROR {e.code} {e.message}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        return 130
    except Exception as e:
        logger.exception(f"Unexpected failure: {e}")
        print(f"ERROR {E_INTERNAL} {e}", file=sys.stderr)
        return EXIT_CODES[E_INTERNAL]


if __name__ == "__main__":
    sys.exit(main())
