"""Transactional single-file edits with guaranteed, verified rollback.

Original bytes are copied under the backup directory before a mutated file
is written, so a process killed mid-cycle leaves enough behind for
`recover()` to restore the tree on the next start.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from mutagraph.cast.address import node_at, replace_at, resolve
from mutagraph.cast.models import ParsedModule, leaf
from mutagraph.exceptions import LocationError, MutationApplyFailure, RevertFailure
from mutagraph.mutation.models import MutationSite

logger = logging.getLogger("mutagraph.applier")

BACKUP_SUFFIX = ".orig"


@dataclass
class MutationHandle:
    """Everything needed to undo one write."""

    file: str
    path: Path
    original: bytes
    backup: Path
    label: str = ""


def check_syntax(text: str, file: str) -> None:
    """Raise MutationApplyFailure unless `text` compiles."""
    try:
        compile(text, file, "exec", dont_inherit=True)
    except (SyntaxError, ValueError) as e:
        raise MutationApplyFailure(f"Mutated {file} does not compile: {e}") from e


class MutationApplier:
    """Applies and reverts mutations against files parsed into `modules`.

    Every apply is checked against the snapshot the sites were scanned
    from; if the file changed on disk in between, nothing is written.
    At most one mutated state per file is outstanding at a time.
    """

    def __init__(self, root: str | Path, modules: dict[str, ParsedModule], backup_dir: str | Path) -> None:
        self.root = Path(root)
        self.modules = modules
        self.backup_dir = Path(backup_dir)
        self._active: dict[str, MutationHandle] = {}

    # ------------------------------------------------------------------
    # Pure rendering
    # ------------------------------------------------------------------

    def render_site(self, site: MutationSite) -> str:
        """Full text of the site's file with just this mutation spliced in."""
        if site.replacement is None:
            raise MutationApplyFailure(f"No replacement generated for {site.id}")
        module = self._module(site.file)
        try:
            form = module.form(site.form_id)
            path = resolve(form.tree, site.coordinate)
        except (KeyError, LocationError) as e:
            raise MutationApplyFailure(f"Cannot locate {site.id}: {e}") from e
        target = node_at(form.tree, path)
        mutant = leaf(site.replacement, label="Mutant", role=target.role)
        text = replace_at(module.root, (form.index,) + path, mutant).text
        check_syntax(text, site.file)
        return text

    # ------------------------------------------------------------------
    # File transactions
    # ------------------------------------------------------------------

    def apply(self, site: MutationSite) -> MutationHandle:
        """Write the mutated file and return a handle for `revert`."""
        return self.install(site.file, self.render_site(site), label=site.id)

    def install(self, file: str, text: str, label: str = "") -> MutationHandle:
        """Replace a file's content with `text`, keeping a verified backup."""
        if file in self._active:
            raise MutationApplyFailure(
                f"{file} already carries {self._active[file].label or 'a mutation'}"
            )
        module = self._module(file)
        path = self.root / file
        try:
            original = path.read_bytes()
        except OSError as e:
            raise MutationApplyFailure(f"Cannot read {file}: {e}") from e
        if original != module.render().encode("utf-8"):
            raise MutationApplyFailure(f"{file} changed on disk since it was parsed")

        backup = self._backup_path(file)
        try:
            backup.parent.mkdir(parents=True, exist_ok=True)
            backup.write_bytes(original)
        except OSError as e:
            raise MutationApplyFailure(f"Cannot back up {file}: {e}") from e

        handle = MutationHandle(file=file, path=path, original=original, backup=backup, label=label)
        self._active[file] = handle
        try:
            path.write_bytes(text.encode("utf-8"))
        except OSError as e:
            # the original may be partially overwritten, so restore it before failing
            self.revert(handle)
            raise MutationApplyFailure(f"Cannot write {file}: {e}") from e
        return handle

    def revert(self, handle: MutationHandle) -> None:
        """Restore the original bytes and verify them. Raises RevertFailure."""
        try:
            handle.path.write_bytes(handle.original)
            restored = handle.path.read_bytes()
        except OSError as e:
            raise RevertFailure(f"Could not restore {handle.file}: {e}") from e
        if restored != handle.original:
            raise RevertFailure(f"Restored {handle.file} does not match its original bytes")
        handle.backup.unlink(missing_ok=True)
        self._active.pop(handle.file, None)

    @contextmanager
    def mutated(self, site: MutationSite) -> Iterator[MutationHandle]:
        """Scope in which the site's mutation is on disk; always reverted on exit."""
        handle = self.apply(site)
        try:
            yield handle
        finally:
            self.revert(handle)

    @contextmanager
    def installed(self, file: str, text: str, label: str = "") -> Iterator[MutationHandle]:
        handle = self.install(file, text, label)
        try:
            yield handle
        finally:
            self.revert(handle)

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def recover(self) -> list[str]:
        """Restore files from backups left behind by an interrupted run."""
        return recover_backups(self.root, self.backup_dir)

    def _backup_path(self, file: str) -> Path:
        return self.backup_dir / (file + BACKUP_SUFFIX)

    def _module(self, file: str) -> ParsedModule:
        try:
            return self.modules[file]
        except KeyError:
            raise MutationApplyFailure(f"{file} was not parsed in this run") from None


def recover_backups(root: str | Path, backup_dir: str | Path) -> list[str]:
    """Write every leftover backup over its file and delete it.

    Returns the relative paths restored. A backup that cannot be written
    back raises RevertFailure, leaving the backup in place.
    """
    root, backup_dir = Path(root), Path(backup_dir)
    if not backup_dir.is_dir():
        return []
    restored = []
    for backup in sorted(backup_dir.rglob(f"*{BACKUP_SUFFIX}")):
        rel = backup.relative_to(backup_dir).as_posix()[: -len(BACKUP_SUFFIX)]
        target = root / rel
        original = backup.read_bytes()
        try:
            target.write_bytes(original)
        except OSError as e:
            raise RevertFailure(f"Could not restore {rel} from backup: {e}") from e
        if target.read_bytes() != original:
            raise RevertFailure(f"Restored {rel} does not match its backup")
        backup.unlink()
        logger.warning(f"Restored {rel} from a backup left by an interrupted run")
        restored.append(rel)
    return restored
