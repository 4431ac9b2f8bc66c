from __future__ import annotations

import argparse
import json
from pathlib import Path

from overlaymerger import (
    ConflictResolver,
    DirectoryPackageHost,
    ResolutionStatus,
    export_report,
    load_mod_config,
    load_program_config,
    print_conflict_details,
)
from overlaymerger.logging_utils import log_info, log_warn, set_debug_logging


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Detect files that several mods provide at the same path, merge them "
            "and write the merged versions to an overlay directory."
        )
    )
    parser.add_argument(
        "--mods-config",
        required=True,
        type=Path,
        help="Path to the mod list TOML file (mods directory, inactive mods, priority).",
    )
    parser.add_argument(
        "--config-path",
        type=Path,
        default=Path("config.toml"),
        help="Path to the program configuration TOML file.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        default=False,
        help="Re-check every conflict even if the last run was moments ago.",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        default=False,
        help="Print the stored resolutions and cache statistics, then exit.",
    )
    parser.add_argument(
        "--clear",
        action="store_true",
        default=False,
        help="Remove all merged output, the resolution index and caches, then exit.",
    )
    parser.add_argument(
        "--verbose-conflict",
        action="store_true",
        default=False,
        help="Print the contributors of each conflicting path.",
    )
    parser.add_argument(
        "--export-path",
        type=Path,
        default=Path(""),
        help="Path to save the resolution report Excel file.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug logging.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    mods_config_path = args.mods_config.expanduser().resolve()

    try:
        mod_list = load_mod_config(mods_config_path)
        config = load_program_config(args.config_path.expanduser())
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    mods_root = mod_list.mods_root.resolve()
    if not mods_root.is_dir():
        raise SystemExit(f"Mods directory {mods_root} does not exist.")
    config = config.anchored(mods_root)
    set_debug_logging(args.debug or config.debug)

    host = DirectoryPackageHost(
        mods_root,
        inactive=mod_list.inactive,
        priority=mod_list.priority,
        excluded=[config.overlay_root, config.cache_dir],
    )
    resolver = ConflictResolver(host, config)

    if args.clear:
        resolver.clear_resolved()
        return

    if args.status:
        print(json.dumps(resolver.status(), indent=2, default=str))
        return

    packages = host.list_active_packages()
    log_info(f"Found {len(packages)} active mods in {mods_root}")
    if len(packages) < 2:
        log_warn("Fewer than two active mods. Nothing can conflict.")

    result = resolver.resolve(force=args.force)

    if args.verbose_conflict:
        print_conflict_details(resolver.last_conflicts)

    for status in ResolutionStatus:
        for path in result.paths_with_status(status):
            log_info(f"{status.value}: {path} ({result.per_path[path].detail})", indent=2)

    export_path = args.export_path
    if not export_path == Path(""):
        if export_path.suffix.lower() != ".xlsx":
            export_path = export_path / "conflict_report.xlsx"
        export_report(
            output_path=export_path,
            result=result,
            conflicts=resolver.last_conflicts,
            resolutions=resolver.index.resolutions,
        )
        log_info(f"Report saved to {export_path}")

    if not result.success:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
