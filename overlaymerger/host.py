from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Protocol, Sequence, Set

from .logging_utils import log_debug, log_error, log_info
from .models import PackageHandle, StorageKind

CHANGE_MODIFIED = "modified"
CHANGE_DELETED = "deleted"


@dataclass(slots=True, frozen=True)
class FileChange:
    path: str
    change: str


class PackageHost(Protocol):
    """What the resolver needs from the program hosting the packages."""

    def list_active_packages(self) -> Dict[str, PackageHandle]: ...

    def mount(self, root: Path) -> bool: ...

    def unmount(self, root: Path) -> bool: ...

    def is_mounted(self, root: Path) -> bool: ...

    def notify_files_changed(self, changes: Sequence[FileChange]) -> None: ...


class DirectoryPackageHost:
    """Packages laid out in one mods directory.

    Every sub-directory is a directory package and every ``.zip`` file an
    archive package. Hidden entries and the excluded directories (the overlay
    output, the cache) are skipped. Mounting only records state; the overlay
    itself is whatever reads the output directory.
    """

    def __init__(
        self,
        mods_root: Path,
        inactive: Iterable[str] = (),
        priority: Sequence[str] = (),
        excluded: Iterable[Path] = (),
    ) -> None:
        self.mods_root = mods_root
        self.inactive: Set[str] = set(inactive)
        self.priority = list(priority)
        self.excluded = {path.resolve() for path in excluded}
        self.mounted: Set[str] = set()
        self.last_changes: List[FileChange] = []

    def _order_key(self, name: str) -> tuple[int, str]:
        if name in self.priority:
            return self.priority.index(name), name
        return len(self.priority), name

    def list_packages(self) -> Dict[str, PackageHandle]:
        if not self.mods_root.is_dir():
            log_error(f"Mods directory {self.mods_root} does not exist")
            return {}

        found: Dict[str, PackageHandle] = {}
        for entry in self.mods_root.iterdir():
            if entry.name.startswith(".") or entry.resolve() in self.excluded:
                continue
            if entry.is_dir():
                handle = PackageHandle(
                    name=entry.name,
                    storage_kind=StorageKind.DIRECTORY,
                    directory_root=entry,
                )
            elif entry.is_file() and entry.suffix.lower() == ".zip":
                handle = PackageHandle(
                    name=entry.stem,
                    storage_kind=StorageKind.ARCHIVE,
                    archive_path=entry,
                )
            else:
                continue
            if handle.name in found:
                log_error(f"Duplicate package name {handle.name}, ignoring {entry}")
                continue
            handle.is_active = handle.name not in self.inactive
            found[handle.name] = handle
        return {name: found[name] for name in sorted(found, key=self._order_key)}

    def list_active_packages(self) -> Dict[str, PackageHandle]:
        return {name: handle for name, handle in self.list_packages().items() if handle.is_active}

    def set_active(self, name: str, active: bool) -> None:
        if active:
            self.inactive.discard(name)
        else:
            self.inactive.add(name)

    def mount(self, root: Path) -> bool:
        if not root.is_dir():
            log_error(f"Cannot mount missing overlay directory {root}")
            return False
        self.mounted.add(str(root))
        log_info(f"Mounted overlay {root}")
        return True

    def unmount(self, root: Path) -> bool:
        if str(root) not in self.mounted:
            return False
        self.mounted.discard(str(root))
        log_info(f"Unmounted overlay {root}")
        return True

    def is_mounted(self, root: Path) -> bool:
        return str(root) in self.mounted

    def notify_files_changed(self, changes: Sequence[FileChange]) -> None:
        self.last_changes = list(changes)
        log_info(f"Notified {len(self.last_changes)} changed overlay files")
        for change in self.last_changes:
            log_debug(f"{change.change}: {change.path}", indent=2)
