"""
Staged merge of a generated file tree into a user-owned directory.

The tree is first written to a temporary staging directory. Staged files are
then compared with what already exists at the destination: missing files are
copied, identical files are left alone and files that differ in bytes or
in mode are handed to the conflict resolver all at once. Nothing outside
the accepted set is touched, and the staging directory is removed however
the merge ends.
"""
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence

from rich.console import Console

from infrasynth.errors import MergeError
from infrasynth.models.files import VirtualFileTree

console = Console(stderr=True)

Resolver = Callable[[Sequence[str]], Dict[str, bool]]

STAGING_PREFIX = "infrasynth-"


@dataclass
class MergeResult:
    created: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    overwritten: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    pending: List[str] = field(default_factory=list)   # dry run: conflicts left unresolved

    @property
    def written(self) -> List[str]:
        return sorted(self.created + self.overwritten)

    def rows(self):
        """(path, action) pairs sorted by path."""
        actions = []
        for label, paths in (
            ("created", self.created),
            ("unchanged", self.unchanged),
            ("overwritten", self.overwritten),
            ("kept", self.kept),
            ("conflict", self.pending),
        ):
            actions.extend((p, label) for p in paths)
        return sorted(actions)


def _native(rel: str) -> str:
    return os.path.join(*rel.split("/"))


def stage(tree: VirtualFileTree, staging: str) -> None:
    for rel, f in tree.items():
        target = os.path.join(staging, _native(rel))
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, "wb") as fh:
            fh.write(f.contents)
        os.chmod(target, f.mode)


def _same_file(a: str, b: str) -> bool:
    """Same bytes and same permission bits."""
    sa, sb = os.stat(a), os.stat(b)
    if sa.st_size != sb.st_size or stat.S_IMODE(sa.st_mode) != stat.S_IMODE(sb.st_mode):
        return False
    with open(a, "rb") as fa, open(b, "rb") as fb:
        return fa.read() == fb.read()


def _copy(src: str, dest: str) -> None:
    os.makedirs(os.path.dirname(dest), exist_ok=True)
    shutil.copyfile(src, dest)
    shutil.copymode(src, dest)


def merge(
    tree: VirtualFileTree,
    dest: str,
    resolve_conflicts: Resolver,
    dry_run: bool = False,
) -> MergeResult:
    """
    Merge `tree` into `dest`.

    `resolve_conflicts` receives every conflicting relative path in one call
    and returns True for the ones to overwrite. With `dry_run` the result
    reports what would happen; conflicts are listed as pending and nothing
    is written or asked.
    """
    result = MergeResult()
    with tempfile.TemporaryDirectory(prefix=STAGING_PREFIX) as staging:
        stage(tree, staging)

        conflicts = []
        for rel in tree:
            staged = os.path.join(staging, _native(rel))
            existing = os.path.join(dest, _native(rel))
            if not os.path.exists(existing):
                result.created.append(rel)
            elif os.path.isdir(existing):
                console.print(f"[yellow]Warning:[/yellow] '{existing}' is a directory, skipping.")
                result.kept.append(rel)
            elif _same_file(staged, existing):
                result.unchanged.append(rel)
            else:
                conflicts.append(rel)

        if dry_run:
            result.pending.extend(conflicts)
            return result

        decisions = resolve_conflicts(conflicts) if conflicts else {}
        for rel in conflicts:
            if decisions.get(rel, False):
                result.overwritten.append(rel)
            else:
                result.kept.append(rel)

        copied: List[str] = []
        for rel in result.written:
            target = os.path.join(dest, _native(rel))
            try:
                _copy(os.path.join(staging, _native(rel)), target)
            except OSError as exc:
                raise MergeError(target, exc, copied) from exc
            copied.append(rel)

    result.kept.sort()
    return result
