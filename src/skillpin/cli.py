from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import asdict
from pathlib import Path
from typing import Any

from ._version import __version__
from .client import GitHubClient, SkillpinError
from .config import Config, apply_env, config_path, load_config, redact_token, save_config
from .local_skills import DisambiguationRequiredError, LocalSkillManager
from .snapshot import GitSnapshotProvider
from .stores import DECLARED_FILENAME, RESOLVED_FILENAME


def _print_table(rows: list[list[str]]) -> None:
    if not rows:
        return
    widths = [0] * len(rows[0])
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    for r in rows:
        line = "  ".join(c.ljust(widths[i]) for i, c in enumerate(r))
        print(line.rstrip())


def _short(commit: str | None) -> str:
    return commit[:8] if commit else "-"


def _merge_cfg(base: Config, args: argparse.Namespace) -> Config:
    # Env overrides config; CLI overrides both.
    cfg = apply_env(base)
    timeout_s = getattr(args, "timeout_s", None)
    return Config(
        api_url=getattr(args, "api_url", None) or cfg.api_url,
        token=getattr(args, "token", None) or cfg.token,
        timeout_s=float(timeout_s) if timeout_s else cfg.timeout_s,
    )


def _client_from_cfg(cfg: Config) -> GitHubClient:
    return GitHubClient(api_url=cfg.api_url, token=cfg.token, timeout_s=cfg.timeout_s)


def _project_dir(args: argparse.Namespace) -> Path:
    return Path(getattr(args, "project_dir", None) or ".").expanduser().resolve()


def _make_manager(args: argparse.Namespace, client: GitHubClient) -> LocalSkillManager:
    return LocalSkillManager(project_dir=_project_dir(args), provider=GitSnapshotProvider(client))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="skillpin",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description="Declare agent skills from git repositories, pin them to commits and install them.",
        epilog=textwrap.dedent(
            f"""\
            Files (in the project directory):
              {DECLARED_FILENAME}        skills you asked for
              {RESOLVED_FILENAME}   exact commits they resolved to

            Environment variables:
              SKILLPIN_API_URL, SKILLPIN_TOKEN (or GITHUB_TOKEN), SKILLPIN_TIMEOUT_S, SKILLPIN_CONFIG_PATH
            """
        ),
    )

    def _add_runtime_overrides(parser: argparse.ArgumentParser, *, default: Any = None) -> None:
        # Accepted before and after the subcommand, e.g.:
        #   skillpin -C ./proj install
        #   skillpin install -C ./proj
        parser.add_argument("-C", "--project-dir", default=default, help="Project directory (default: current directory)")
        parser.add_argument("--api-url", default=default, help="Hosting API base URL for commit lookups")
        parser.add_argument("--token", default=default, help="Hosting API token (overrides config/env)")
        parser.add_argument("--timeout-s", type=float, default=default, help="HTTP timeout in seconds")
        parser.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            default=default if default is not None else False,
            help="Log git commands and lookups to stderr",
        )

    _add_runtime_overrides(p)
    p.add_argument("--version", action="version", version=f"skillpin {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)
    suppress = argparse.SUPPRESS

    add = sub.add_parser("add", help=f"Add a skill from a git repository to {DECLARED_FILENAME}")
    _add_runtime_overrides(add, default=suppress)
    add.add_argument("source", help="owner/repo[/path], repository URL (optionally /tree/<ref>/<path>) or local path")
    add.add_argument("-s", "--skill", help="Skill name to add when the source holds several")
    add.add_argument("--json", action="store_true", help="Output JSON")

    install = sub.add_parser("install", aliases=["i"], help=f"Resolve {DECLARED_FILENAME}, write the lock file and copy skills")
    _add_runtime_overrides(install, default=suppress)
    install.add_argument("--json", action="store_true", help="Output JSON")

    update = sub.add_parser("update", aliases=["up"], help="Move lock entries to the latest upstream commits")
    _add_runtime_overrides(update, default=suppress)
    update.add_argument("skill", nargs="?", default=None, help="Only update this skill")
    update.add_argument("--json", action="store_true", help="Output JSON")

    remove = sub.add_parser("remove", aliases=["rm", "uninstall"], help="Remove a skill everywhere")
    _add_runtime_overrides(remove, default=suppress)
    remove.add_argument("skill", help="Skill name to remove")
    remove.add_argument("--json", action="store_true", help="Output JSON")

    ls = sub.add_parser("list", aliases=["ls"], help="List declared skills and their lock status")
    _add_runtime_overrides(ls, default=suppress)
    ls.add_argument("--json", action="store_true", help="Output JSON")

    cfg = sub.add_parser("config", help="Manage user config")
    cfg_sub = cfg.add_subparsers(dest="subcmd", required=True)
    cfg_sub.add_parser("path", help="Print config path")
    cfg_sub.add_parser("show", help="Show config (token redacted)")
    cfg_set = cfg_sub.add_parser("set", help="Set config fields")
    cfg_set.add_argument("--api-url", dest="set_api_url")
    cfg_set.add_argument("--token", dest="set_token")
    cfg_set.add_argument("--timeout-s", dest="set_timeout_s", type=float)

    return p


def cmd_config(args: argparse.Namespace) -> int:
    if args.subcmd == "path":
        print(str(config_path()))
        return 0

    if args.subcmd == "show":
        cfg = load_config()
        d = asdict(cfg)
        d["token"] = redact_token(cfg.token)
        print(json.dumps(d, indent=2, sort_keys=True))
        return 0

    if args.subcmd == "set":
        cfg = load_config()
        new_cfg = Config(
            api_url=args.set_api_url or cfg.api_url,
            token=args.set_token if args.set_token is not None else cfg.token,
            timeout_s=args.set_timeout_s if args.set_timeout_s is not None else cfg.timeout_s,
        )
        path = save_config(new_cfg)
        print(f"Saved: {path}")
        return 0

    raise AssertionError("unreachable")


def cmd_add(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    with _client_from_cfg(cfg) as client:
        manager = _make_manager(args, client)
        result = manager.add(source=args.source, skill=args.skill)

    if args.json:
        payload = {
            "added": list(result.added),
            "replaced": list(result.replaced),
            "source": result.source,
            "commit_id": result.commit_id,
            "manifest_path": str(result.manifest_path),
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    print(f"source: {result.source} @ {_short(result.commit_id)}")
    for name in result.added:
        verb = "updated" if name in result.replaced else "added"
        print(f"{verb}: {name}")
    print(f"manifest: {result.manifest_path}")
    print("Run 'skillpin install' to install the skill(s).")
    return 0


def cmd_install(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    with _client_from_cfg(cfg) as client:
        manager = _make_manager(args, client)
        result = manager.install()
        lock = manager.resolved.load()

    if args.json:
        payload = {
            "installed": {n: lock.skills[n].commit_id for n in result.installed if n in lock.skills},
            "targets": [t.skills_dir for t in manager.targets],
            "lock_path": str(result.lock_path),
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    if not result.installed:
        print(f"No skills configured in {DECLARED_FILENAME}")
        print("Run 'skillpin add <source>' to add skills.")
        return 0

    rows = [["SKILL", "COMMIT"]]
    for name in result.installed:
        locked = lock.skills.get(name)
        rows.append([name, _short(locked.commit_id if locked else None)])
    _print_table(rows)
    print(f"{len(result.installed)} skill(s) installed into: {', '.join(t.skills_dir for t in manager.targets)}")
    print(f"lock: {result.lock_path}")
    return 0


def cmd_update(args: argparse.Namespace) -> int:
    cfg = _merge_cfg(load_config(), args)
    with _client_from_cfg(cfg) as client:
        manager = _make_manager(args, client)
        result = manager.update(skill=args.skill)

    if args.json:
        payload = {
            "updated": list(result.updated),
            "unchanged": list(result.unchanged),
            "lock_path": str(result.lock_path),
        }
        print(json.dumps(payload, indent=2, sort_keys=True))
        return 0

    for name in result.updated:
        print(f"updated: {name}")
    for name in result.unchanged:
        print(f"unchanged: {name}")
    if result.updated:
        print(f"{len(result.updated)} skill(s) updated in {RESOLVED_FILENAME}.")
        print("Run 'skillpin install' to apply updates.")
    else:
        print("All skills are up to date.")
    return 0


def cmd_remove(args: argparse.Namespace) -> int:
    manager = LocalSkillManager(project_dir=_project_dir(args), provider=GitSnapshotProvider())
    result = manager.remove(name=args.skill)

    if args.json:
        print(json.dumps(asdict(result), indent=2, sort_keys=True))
        return 0

    if result.removed_from_manifest:
        print(f"Removed '{result.name}' from {DECLARED_FILENAME}")
    for market in result.disabled_in:
        print(f"Disabled '{result.name}' in marketplace '{market}'")
    if result.removed_from_lock:
        print(f"Removed '{result.name}' from {RESOLVED_FILENAME}")
    for target in result.removed_from_targets:
        print(f"Removed '{result.name}' from {target}")
    if not result.found:
        print(f"Skill '{result.name}' not found in {DECLARED_FILENAME}")
    return 0


def cmd_list(args: argparse.Namespace) -> int:
    manager = LocalSkillManager(project_dir=_project_dir(args), provider=GitSnapshotProvider())
    rows = manager.list_skills()

    if args.json:
        print(json.dumps([asdict(r) for r in rows], indent=2, sort_keys=True))
        return 0

    if not rows:
        print("No skills configured.")
        print("Run 'skillpin add <source>' to add skills.")
        return 0

    table = [["SKILL", "COMMIT", "SOURCE", "TARGETS", "DESCRIPTION"]]
    for r in rows:
        source = r.source if r.marketplace is None else f"{r.source} ({r.marketplace})"
        if r.ref:
            source += f"@{r.ref}"
        table.append(
            [
                r.name,
                _short(r.commit_id) if r.commit_id else "not installed",
                source,
                str(len(r.targets)),
                r.description or "",
            ]
        )
    _print_table(table)
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if getattr(args, "verbose", False):
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        if args.cmd == "config":
            return cmd_config(args)
        if args.cmd == "add":
            return cmd_add(args)
        if args.cmd in ("install", "i"):
            return cmd_install(args)
        if args.cmd in ("update", "up"):
            return cmd_update(args)
        if args.cmd in ("remove", "rm", "uninstall"):
            return cmd_remove(args)
        if args.cmd in ("list", "ls"):
            return cmd_list(args)
        raise AssertionError("unreachable")
    except DisambiguationRequiredError as e:
        print(f"error: {e}", file=sys.stderr)
        for candidate in e.candidates:
            print(f"  - {candidate.name}: {candidate.description}", file=sys.stderr)
        return 2
    except SkillpinError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
