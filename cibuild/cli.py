"""Command line interface for the CI build orchestrator."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable, List
import sys

import yaml

from core.command_runner import CommandError, RecordingCommandRunner, SubprocessCommandRunner
from core.config_loader import load_config_file
from core.console import Console

from .errors import CIError, ConfigurationError
from .layout import ProjectLayout, find_project_root
from .orchestrator import InvocationGuard, Orchestrator
from .prompts import PromptCancelled, is_valid_target_name, pick_targets, prompt_new_target
from .targets import DEFAULT_CONFIG_NAME, CIConfig, TargetStore, derive_target, describe_platform
from .validation import validate_document, validate_target_files


def _make_console(args: Namespace) -> Console:
    level = "info"
    if args.verbose:
        level = "debug"
    elif args.quiet:
        level = "error"
    return Console(level, dry_run=getattr(args, "dry_run", False))


def _make_runner(console: Console) -> SubprocessCommandRunner | RecordingCommandRunner:
    return RecordingCommandRunner(echo=console.dry) if console.dry_run else SubprocessCommandRunner()


def _resolve_paths(args: Namespace, workspace: Path) -> tuple[Path, Path]:
    """Return the project root and the configuration file path."""

    if args.config:
        config_path = Path(args.config).expanduser()
        if not config_path.is_absolute():
            config_path = workspace / config_path
        return find_project_root(config_path.parent, config_name=config_path.name), config_path
    root = find_project_root(workspace)
    return root, root / DEFAULT_CONFIG_NAME


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(prog="cibuild", description="Cross-compilation CI build orchestrator")
    parser.add_argument("--config", metavar="PATH", help=f"Configuration file (default: {DEFAULT_CONFIG_NAME})")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only show errors")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_parser = subparsers.add_parser("build", help="Build all active targets or a single target")
    build_parser.add_argument("-t", "--target", help="Build only this target (even when inactive)")
    build_parser.add_argument("--rebuild", action="store_true", help="Refresh the container image before building")
    build_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")

    run_parser = subparsers.add_parser("run", help="Build a target and run its program")
    run_parser.add_argument("-t", "--target", required=True, help="Target to build and run")
    run_parser.add_argument("--rebuild", action="store_true", help="Refresh the container image before building")
    run_parser.add_argument("-n", "--dry-run", action="store_true", help="Print commands without executing them")

    add_parser = subparsers.add_parser("add-target", help="Add targets to the configuration")
    add_parser.add_argument(
        "names",
        nargs="*",
        help="Targets to derive from predefined Dockerfiles; omit to answer prompts",
    )
    add_parser.add_argument("--dockerfiles-dir", metavar="PATH", help="Directory holding Dockerfile.<name> files")

    rm_parser = subparsers.add_parser("rm-target", help="Remove targets from the configuration")
    rm_parser.add_argument("names", nargs="*", help="Targets to remove, or 'list' to pick from a list")

    subparsers.add_parser("validate", help="Validate the configuration file")
    subparsers.add_parser("list", help="List configured targets")

    return parser.parse_args(list(argv))


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(argv if argv is not None else sys.argv[1:])
    console = _make_console(args)
    workspace = Path.cwd()

    try:
        if args.command in ("build", "run"):
            return _handle_build(args, workspace, console)
        if args.command == "add-target":
            return _handle_add_target(args, workspace, console)
        if args.command == "rm-target":
            return _handle_rm_target(args, workspace, console)
        if args.command == "validate":
            return _handle_validate(args, workspace, console)
        if args.command == "list":
            return _handle_list(args, workspace, console)
    except (CIError, CommandError) as exc:
        console.error(f"Error: {exc}")
        return 1
    raise ValueError(f"Unknown command: {args.command}")


def _handle_build(args: Namespace, workspace: Path, console: Console) -> int:
    root, config_path = _resolve_paths(args, workspace)
    config = TargetStore(config_path).load()
    layout = ProjectLayout.for_project(root, config.output)
    orchestrator = Orchestrator(layout, _make_runner(console), console, dry_run=console.dry_run)
    orchestrator.run(
        config,
        target_name=args.target,
        rebuild=args.rebuild,
        run_after=args.command == "run",
        guard=InvocationGuard(),
    )
    return 0


def _handle_add_target(args: Namespace, workspace: Path, console: Console) -> int:
    _, config_path = _resolve_paths(args, workspace)
    store = TargetStore(config_path)
    config = store.load_or_default()

    if args.names:
        dockerfiles_dir = Path(args.dockerfiles_dir).expanduser() if args.dockerfiles_dir else None
        added = 0
        for name in args.names:
            if not is_valid_target_name(name):
                console.warn(f"'{name}' is not a valid target name, skipping")
                continue
            if config.find(name) is not None:
                console.warn(f"Target '{name}' already exists, skipping")
                continue
            config.add_target(derive_target(name, dockerfiles_dir))
            console.success(f"Added target: {name}")
            added += 1
        if not added:
            return 0
    else:
        try:
            target = prompt_new_target(config.names(), console=console)
        except PromptCancelled:
            console.info("Cancelled.")
            return 1
        config.add_target(target)
        console.success(f"Added target: {target.name}")

    store.save(config)
    console.success(f"Saved {config_path.name} with {len(config.targets)} target(s)")
    return 0


def _handle_rm_target(args: Namespace, workspace: Path, console: Console) -> int:
    _, config_path = _resolve_paths(args, workspace)
    store = TargetStore(config_path)
    config = store.load()
    if not config.targets:
        console.warn(f"No targets in {config_path.name} to remove")
        return 0

    names: List[str] = list(args.names)
    if not names or names == ["list"]:
        try:
            names = pick_targets(config.names(), console=console, describe=bool(names))
        except PromptCancelled:
            console.info("Cancelled.")
            return 1
        if not names:
            console.warn("No targets selected for removal")
            return 0

    removed = config.remove_targets(names)
    if not removed:
        console.warn("No matching targets found to remove")
        console.info(f"Available targets in {config_path.name}:")
        for name in config.names():
            console.info(f"  - {name}")
        return 0

    for name in removed:
        console.info(f"- Removed target: {name}")
    store.save(config)
    console.success(f"Saved {config_path.name} with {len(config.targets)} target(s)")
    return 0


def _handle_validate(args: Namespace, workspace: Path, console: Console) -> int:
    root, config_path = _resolve_paths(args, workspace)
    if not config_path.is_file():
        raise ConfigurationError(f"Configuration file '{config_path}' not found")
    try:
        data = load_config_file(config_path)
    except (OSError, ValueError, TypeError, yaml.YAMLError) as exc:
        raise ConfigurationError(f"Failed to load '{config_path}': {exc}") from exc

    errors = validate_document(data)
    if not errors:
        config = CIConfig.from_mapping(data)
        layout = ProjectLayout.for_project(root, config.output)
        for target in config.targets:
            errors.extend(validate_target_files(target, layout))

    if errors:
        console.error("Validation failed:")
        for message in errors:
            console.error(f"  {message}")
        return 1

    console.success("Validation successful")
    return 0


def _handle_list(args: Namespace, workspace: Path, console: Console) -> int:
    _, config_path = _resolve_paths(args, workspace)
    config = TargetStore(config_path).load()
    if not config.targets:
        console.info("No targets defined")
        return 0

    headers = ["Name", "Runner", "Environment", "Platform", "Active"]
    rows: List[List[str]] = []
    for target in config.targets:
        docker = target.docker
        if docker is None:
            environment = "host"
        elif docker.image:
            environment = f"{docker.mode.value}: {docker.image}"
        else:
            environment = docker.mode.value
        platform = (docker.platform if docker else None) or describe_platform(target.name) or "-"
        rows.append([target.name, target.runner.value, environment, platform, "yes" if target.is_active() else "no"])

    widths = [max(len(header), *(len(row[index]) for row in rows)) for index, header in enumerate(headers)]

    def _format(values: List[str]) -> str:
        return "  ".join(value.ljust(widths[index]) for index, value in enumerate(values)).rstrip()

    console.info(_format(headers))
    console.info("  ".join("-" * width for width in widths))
    for row in rows:
        console.info(_format(row))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
