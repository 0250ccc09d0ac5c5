from dataclasses import dataclass
from typing import Dict, Iterator, List, Tuple

from infrasynth.errors import IdentifierCollisionError

DEFAULT_MODE = 0o644


@dataclass(frozen=True)
class GeneratedFile:
    contents: bytes
    mode: int = DEFAULT_MODE


class VirtualFileTree:
    """Rendered artifacts keyed by relative POSIX path."""

    def __init__(self):
        self._files: Dict[str, GeneratedFile] = {}
        self._owners: Dict[str, str] = {}

    def add(self, path: str, contents, mode: int = DEFAULT_MODE, owner: str = "") -> None:
        if path.startswith("/") or ".." in path.split("/"):
            raise ValueError(f"generated path must be relative and inside the tree: {path}")
        if path in self._files:
            raise IdentifierCollisionError(self._owners[path], owner, path, "output path")
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        self._files[path] = GeneratedFile(contents, mode)
        self._owners[path] = owner

    def __getitem__(self, path: str) -> GeneratedFile:
        return self._files[path]

    def __contains__(self, path: str) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._files))

    def items(self) -> List[Tuple[str, GeneratedFile]]:
        return [(p, self._files[p]) for p in sorted(self._files)]

    def text(self, path: str) -> str:
        return self._files[path].contents.decode("utf-8")

    def __eq__(self, other) -> bool:
        if not isinstance(other, VirtualFileTree):
            return NotImplemented
        return self._files == other._files
