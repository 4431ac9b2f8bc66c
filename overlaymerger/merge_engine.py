from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, List, Mapping, Sequence

import toml

from . import document_merge
from .content_store import ContentStore
from .file_utils import is_within, write_bytes_atomic
from .hashing import compute_hash, hash_lines
from .logging_utils import log_debug, log_error, log_warn
from .models import (
    FORMAT_HIERARCHICAL,
    FORMAT_RECORDS,
    FORMAT_SCRIPTS,
    Contributor,
    FormatExtensions,
    MergeOutcome,
    MergeStatus,
    PackageHandle,
)
from .script_merge import ScoringRule, default_scoring_rules, merge_layouts, render_layout
from .script_scanner import scan_script
from .state import EngineState

PARSE_ERRORS = (ValueError, TypeError, toml.TomlDecodeError)

STRATEGY_IDENTICAL = "identical"
STRATEGY_PASSTHROUGH = "passthrough"
STRATEGY_RECORDS = "tagged-records"
STRATEGY_DOCUMENT = "deep-merge"
STRATEGY_HIERARCHICAL = "hierarchical"
STRATEGY_SCRIPT = "script-blocks"


class MergeError(Exception):
    pass


@dataclass(slots=True)
class SourceContent:
    package_name: str
    data: bytes
    content_hash: str

    @property
    def text(self) -> str:
        """Strict UTF-8 text; invalid bytes raise ``UnicodeDecodeError``, a ``ValueError``."""
        return self.data.decode("utf-8-sig")

    @property
    def script_text(self) -> str:
        # undecodable bytes ride along as surrogates and are restored on encode
        return self.data.decode("utf-8-sig", errors="surrogateescape")


def _is_line_delimited(source: SourceContent) -> bool:
    try:
        text = source.text
    except UnicodeDecodeError:
        return False
    return document_merge.is_line_delimited(text)


def output_path_for(output_root: Path, path: str) -> Path:
    """Overlay location of ``path``; raises :class:`MergeError` if it would leave ``output_root``."""

    destination = output_root / path.lstrip("/")
    if not is_within(destination, output_root):
        raise MergeError(f"{path} resolves outside the overlay root")
    return destination


class MergeEngine:
    """Turns the contributors of one conflicting path into a single overlay file."""

    def __init__(
        self,
        store: ContentStore,
        state: EngineState,
        output_root: Path,
        extensions: FormatExtensions | None = None,
        scoring_rules: Sequence[ScoringRule] | None = None,
    ) -> None:
        self.store = store
        self.state = state
        self.output_root = output_root
        self.extensions = extensions or FormatExtensions()
        self.scoring_rules = list(scoring_rules) if scoring_rules is not None else default_scoring_rules()

    # reading

    def _read_sources(
        self,
        path: str,
        contributors: Sequence[Contributor],
        packages: Mapping[str, PackageHandle],
    ) -> List[SourceContent]:
        sources: List[SourceContent] = []
        for contributor in contributors:
            package = packages.get(contributor.package_name)
            if package is None:
                log_warn(f"Package {contributor.package_name} is no longer available for {path}")
                continue
            found = self.store.read_with_hash(path, package, contributor.content_hash)
            if found is None:
                log_warn(f"Could not read {path} from {contributor.package_name}")
                continue
            data, content_hash = found
            sources.append(SourceContent(contributor.package_name, data, content_hash))
        return sources

    def _all_identical(self, sources: Sequence[SourceContent], merge_format: str | None) -> bool:
        if len({source.content_hash for source in sources}) == 1:
            return True
        if merge_format != FORMAT_RECORDS:
            return False
        if not all(_is_line_delimited(source) for source in sources):
            return False
        texts = [source.text for source in sources]
        line_hashes = {
            tuple(hash_lines(document_merge.split_record_lines(text))) for text in texts
        }
        return len(line_hashes) == 1

    # parsing with exclusion of malformed contributors

    def _parse_each(
        self,
        path: str,
        kind: str,
        sources: Sequence[SourceContent],
        parser: Callable[[str], Any],
        preserve_bytes: bool = False,
    ) -> List[Any]:
        parsed: List[Any] = []
        for source in sources:
            cached = self.state.parsed(kind, source.content_hash)
            if cached is not None:
                log_debug(f"Parsed {kind} cache hit for {source.package_name}:{path}")
                parsed.append(cached)
                continue
            try:
                document = parser(source.script_text if preserve_bytes else source.text)
            except PARSE_ERRORS as exc:
                log_error(f"Malformed {kind} document {path} in {source.package_name}: {exc}")
                continue
            self.state.remember_parsed(kind, source.content_hash, document)
            parsed.append(document)
        if not parsed:
            raise MergeError(f"no valid data for {path}")
        return parsed

    # strategies

    def _merge_records(self, path: str, sources: Sequence[SourceContent]) -> tuple[str, str]:
        if any(_is_line_delimited(source) for source in sources):
            contributions = self._parse_each(path, "records", sources, document_merge.parse_records)
            merged = document_merge.merge_records(contributions)
            return STRATEGY_RECORDS, document_merge.serialize_records(merged)

        documents = self._parse_each(path, "json", sources, json.loads)
        merged = document_merge.merge_documents(documents)
        return STRATEGY_DOCUMENT, document_merge.serialize_json_document(merged)

    def _merge_hierarchical(self, path: str, sources: Sequence[SourceContent]) -> tuple[str, str]:
        documents = self._parse_each(path, "toml", sources, document_merge.parse_toml_document)
        merged = document_merge.merge_documents(documents)
        return STRATEGY_HIERARCHICAL, document_merge.serialize_toml_document(merged)

    def _merge_scripts(self, path: str, sources: Sequence[SourceContent]) -> tuple[str, str]:
        layouts = self._parse_each(path, "script", sources, scan_script, preserve_bytes=True)
        return STRATEGY_SCRIPT, render_layout(merge_layouts(layouts, self.scoring_rules))

    def merge_content(self, path: str, sources: Sequence[SourceContent]) -> tuple[str, bytes]:
        """Dispatch on the path's extension; returns the strategy name and merged bytes."""

        merge_format = self.extensions.format_for(path)
        if merge_format == FORMAT_RECORDS:
            strategy, text = self._merge_records(path, sources)
        elif merge_format == FORMAT_HIERARCHICAL:
            strategy, text = self._merge_hierarchical(path, sources)
        elif merge_format == FORMAT_SCRIPTS:
            strategy, text = self._merge_scripts(path, sources)
        else:
            raise MergeError(f"unsupported file type: {path}")
        errors = "surrogateescape" if merge_format == FORMAT_SCRIPTS else "strict"
        try:
            return strategy, text.encode("utf-8", errors=errors)
        except UnicodeEncodeError as exc:
            raise MergeError(f"cannot encode merged {path}: {exc}") from exc

    # entry point

    def merge_path(
        self,
        path: str,
        contributors: Sequence[Contributor],
        packages: Mapping[str, PackageHandle],
    ) -> MergeOutcome:
        outcome = MergeOutcome(
            path=path,
            status=MergeStatus.FAILED,
            source_mods=[item.package_name for item in contributors],
            source_hashes=[item.content_hash for item in contributors],
        )
        sources = self._read_sources(path, contributors, packages)
        if not sources:
            log_error(f"No valid data for {path}")
            outcome.reason = "no readable contributors"
            return outcome

        merge_format = self.extensions.format_for(path)
        try:
            if len(sources) == 1:
                status, strategy, data = MergeStatus.MERGED, STRATEGY_PASSTHROUGH, sources[0].data
            elif self._all_identical(sources, merge_format):
                status, strategy, data = MergeStatus.COPIED_IDENTICAL, STRATEGY_IDENTICAL, sources[0].data
            else:
                strategy, data = self.merge_content(path, sources)
                status = MergeStatus.MERGED
            destination = output_path_for(self.output_root, path)
        except MergeError as exc:
            log_error(f"Merge failed for {path}: {exc}")
            outcome.reason = str(exc)
            return outcome

        try:
            write_bytes_atomic(destination, data)
        except OSError as exc:
            log_error(f"Failed to write merged file {destination}: {exc}")
            outcome.reason = f"write failed: {exc}"
            return outcome

        outcome.status = status
        outcome.strategy = strategy
        outcome.output_path = destination
        outcome.output_hash = compute_hash(data)
        log_debug(f"{path}: {strategy} from {len(sources)} contributors -> {destination}")
        return outcome


__all__ = [
    "MergeEngine",
    "MergeError",
    "SourceContent",
    "output_path_for",
]
