from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import toml

from .logging_utils import log_warn
from .models import FormatExtensions
from .script_merge import PatchMode, ScoringRule
from .state import CacheLimits


@dataclass(slots=True)
class EngineConfig:
    overlay_root: Path = Path("ModConflictResolutions")
    cache_dir: Path = Path(".overlaymerger")
    debounce_seconds: float = 2.0
    debug: bool = False
    max_workers: int = 1
    extensions: FormatExtensions = field(default_factory=FormatExtensions)
    cache_limits: CacheLimits = field(default_factory=CacheLimits)
    scoring_rules: List[ScoringRule] = field(default_factory=list)

    def anchored(self, mods_root: Path) -> "EngineConfig":
        """Copy with relative output and cache directories placed under ``mods_root``."""

        return EngineConfig(
            overlay_root=self.overlay_root if self.overlay_root.is_absolute() else mods_root / self.overlay_root,
            cache_dir=self.cache_dir if self.cache_dir.is_absolute() else mods_root / self.cache_dir,
            debounce_seconds=self.debounce_seconds,
            debug=self.debug,
            max_workers=self.max_workers,
            extensions=self.extensions,
            cache_limits=self.cache_limits,
            scoring_rules=list(self.scoring_rules),
        )


@dataclass(slots=True)
class ModListConfig:
    mods_root: Path
    inactive: List[str] = field(default_factory=list)
    priority: List[str] = field(default_factory=list)


def _read_toml(config_path: Path, label: str) -> Dict[str, Any]:
    raw_text = config_path.read_text(encoding="utf-8")
    try:
        return toml.loads(raw_text)
    except toml.TomlDecodeError as exc:
        raise ValueError(f"Invalid TOML in {label}: {config_path}") from exc


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config.get(name, {})
    if not isinstance(section, dict):
        raise ValueError(f"[{name}] must be a table")
    return section


def _value(section: Dict[str, Any], key: str, default: Any, expected: type | tuple) -> Any:
    value = section.get(key, default)
    # bool is an int subclass, reject it where a number is expected
    if isinstance(value, bool) and bool not in (expected if isinstance(expected, tuple) else (expected,)):
        raise ValueError(f"'{key}' has invalid type bool")
    if not isinstance(value, expected):
        raise ValueError(f"'{key}' has invalid type {type(value).__name__}")
    return value


def _string_list(section: Dict[str, Any], key: str, default: List[str]) -> List[str]:
    values = _value(section, key, default, list)
    if not all(isinstance(item, str) for item in values):
        raise ValueError(f"'{key}' must be a list of strings")
    return list(values)


def _extensions(section: Dict[str, Any]) -> FormatExtensions:
    defaults = FormatExtensions()
    return FormatExtensions(
        records=[ext.lower() for ext in _string_list(section, "records", defaults.records)],
        hierarchical=[ext.lower() for ext in _string_list(section, "hierarchical", defaults.hierarchical)],
        scripts=[ext.lower() for ext in _string_list(section, "scripts", defaults.scripts)],
    )


def _cache_limits(section: Dict[str, Any]) -> CacheLimits:
    defaults = CacheLimits()
    limits = CacheLimits(
        content_entries=_value(section, "content_entries", defaults.content_entries, int),
        archive_indexes=_value(section, "archive_indexes", defaults.archive_indexes, int),
        parsed_documents=_value(section, "parsed_documents", defaults.parsed_documents, int),
        archive_handles=_value(section, "archive_handles", defaults.archive_handles, int),
    )
    for name in ("content_entries", "archive_indexes", "parsed_documents", "archive_handles"):
        if getattr(limits, name) < 1:
            raise ValueError(f"[cache] {name} must be positive")
    return limits


def _compile(pattern: str, rule_name: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid pattern in scoring rule '{rule_name}': {exc}") from exc


def _scoring_rules(section: Dict[str, Any]) -> List[ScoringRule]:
    raw_rules = _value(section, "rules", [], list)
    rules: List[ScoringRule] = []
    for raw in raw_rules:
        if not isinstance(raw, dict):
            raise ValueError("[[scoring.rules]] entries must be tables")
        name = _value(raw, "name", "", str)
        if not name:
            raise ValueError("Scoring rule without a name")
        mode = raw.get("mode")
        if mode not in (None, PatchMode.REPLACE_LINE, PatchMode.SPLICE_BLOCK):
            raise ValueError(f"Scoring rule '{name}' has unknown mode {mode!r}")
        anchor = raw.get("anchor")
        patch_pattern = raw.get("patch_pattern")
        rules.append(
            ScoringRule(
                name=name,
                pattern=_compile(_value(raw, "pattern", "", str), name),
                weight=_value(raw, "weight", 0, int),
                mode=mode,
                anchor=_compile(anchor, name) if anchor else None,
                patch_pattern=_compile(patch_pattern, name) if patch_pattern else None,
            )
        )
    return rules


def load_program_config(config_path: Path) -> EngineConfig:
    """Load engine settings from the program TOML file; a missing file yields defaults."""

    if not config_path.exists():
        log_warn(f"Config file {config_path} not found. Proceeding with defaults.")
        return EngineConfig()
    config = _read_toml(config_path, "config file")

    engine = _section(config, "engine")
    defaults = EngineConfig()
    max_workers = _value(engine, "max_workers", defaults.max_workers, int)
    if max_workers < 1:
        raise ValueError("[engine] max_workers must be at least 1")
    return EngineConfig(
        overlay_root=Path(_value(engine, "overlay_root", str(defaults.overlay_root), str)),
        cache_dir=Path(_value(engine, "cache_dir", str(defaults.cache_dir), str)),
        debounce_seconds=float(_value(engine, "debounce_seconds", defaults.debounce_seconds, (int, float))),
        debug=_value(engine, "debug", defaults.debug, bool),
        max_workers=max_workers,
        extensions=_extensions(_section(config, "extensions")),
        cache_limits=_cache_limits(_section(config, "cache")),
        scoring_rules=_scoring_rules(_section(config, "scoring")),
    )


def load_mod_config(mod_config_path: Path) -> ModListConfig:
    """Load the mods directory, inactive mods and optional load priority.

    ``mods`` is resolved against the directory holding the file. Without a
    file, ``mods/`` beside it is used and every mod is active.
    """

    if not mod_config_path.exists():
        log_warn(f"Mod list file {mod_config_path} not found. Treating every mod as active.")
        return ModListConfig(mods_root=mod_config_path.parent / "mods")
    config = _read_toml(mod_config_path, "mod list file")

    mods_root = mod_config_path.parent / _value(config, "mods", "mods", str)
    return ModListConfig(
        mods_root=mods_root,
        inactive=_string_list(config, "inactive", []),
        priority=_string_list(config, "priority", []),
    )
