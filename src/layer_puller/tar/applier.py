"""Apply layer archives onto a root filesystem directory."""

import logging
import os
import posixpath
import shutil
import tarfile
from pathlib import Path
from typing import BinaryIO, Iterable, Union

from ..exceptions import ApplyError

logger = logging.getLogger(__name__)

WHITEOUT_PREFIX = ".wh."
WHITEOUT_OPAQUE = ".wh..wh..opq"
MAX_SYMLINK_HOPS = 40

_CAN_MKNOD = hasattr(os, "geteuid") and os.geteuid() == 0


def normalize_member_name(name: str) -> str:
    """Return an archive path relative to the layer root.

    Leading slashes and ``.`` components are dropped; the layer root
    itself normalizes to an empty string.

    Raises:
        ApplyError: If the path contains ``..`` components
    """
    parts = [part for part in name.split("/") if part not in ("", ".")]
    if ".." in parts:
        raise ApplyError(f"Archive member escapes the destination: {name}")
    return "/".join(parts)


def resolve_in_root(root: Path, relpath: str) -> str:
    """Resolve symlinks in the parent components of a path under root.

    Symlinks are followed as if ``root`` were ``/``, so absolute link
    targets and ``..`` never leave the root. The last component is kept
    as is.
    """
    if not relpath:
        return relpath

    parts = relpath.split("/")
    pending = list(reversed(parts[:-1]))
    resolved: list[str] = []
    hops = 0

    while pending:
        part = pending.pop()
        if part in ("", "."):
            continue
        if part == "..":
            if resolved:
                resolved.pop()
            continue

        candidate = root.joinpath(*resolved, part)
        if candidate.is_symlink():
            hops += 1
            if hops > MAX_SYMLINK_HOPS:
                raise ApplyError(f"Too many levels of symbolic links in {relpath}")
            target = os.readlink(candidate)
            if target.startswith("/"):
                resolved = []
            pending.extend(reversed(target.split("/")))
            continue
        resolved.append(part)

    return "/".join(resolved + parts[-1:])


def apply_layer(
    stream: BinaryIO,
    dest: Union[str, Path],
    preserve: Iterable[str] = (),
) -> int:
    """Apply one layer archive on top of the current destination contents.

    Args:
        stream: Readable (optionally compressed) tar stream
        dest: Existing root filesystem directory
        preserve: Top-level names the layer may not touch (e.g. ``.git``)

    Returns:
        Number of archive entries applied

    Raises:
        ApplyError: If the archive is invalid or cannot be written
    """
    root = Path(dest)
    preserved = tuple(preserve)
    applied: set[str] = set()
    directories: list[tuple[tarfile.TarInfo, Path]] = []
    count = 0

    try:
        with tarfile.open(fileobj=stream, mode="r|*") as tar:
            for member in tar:
                name = resolve_in_root(root, normalize_member_name(member.name))
                if not name:
                    continue
                if _is_preserved(name, preserved):
                    logger.debug("Skipping preserved path %s", name)
                    continue

                parent, base = posixpath.split(name)
                if base == WHITEOUT_OPAQUE:
                    _clear_directory(root, parent, applied, preserved)
                elif base.startswith(WHITEOUT_PREFIX):
                    hidden = posixpath.join(parent, base[len(WHITEOUT_PREFIX) :])
                    if _is_preserved(hidden, preserved):
                        logger.debug("Skipping whiteout of preserved path %s", hidden)
                        continue
                    _remove(root / hidden)
                elif _extract(tar, member, root, name, directories):
                    applied.add(name)
                else:
                    continue
                count += 1

            # Directory attributes last, so read-only directories still get
            # their children written.
            for member, target in reversed(directories):
                if _CAN_MKNOD:
                    tar.chown(member, str(target), True)
                tar.utime(member, str(target))
                tar.chmod(member, str(target))
    except (tarfile.TarError, OSError) as e:
        raise ApplyError(f"Failed to apply layer to {root}: {e}") from e

    return count


def _is_preserved(name: str, preserved: tuple[str, ...]) -> bool:
    return any(name == p or name.startswith(p + "/") for p in preserved)


def _extract(
    tar: tarfile.TarFile,
    member: tarfile.TarInfo,
    root: Path,
    name: str,
    directories: list,
) -> bool:
    if (member.ischr() or member.isblk()) and not _CAN_MKNOD:
        logger.debug("Skipping device node %s", name)
        return False

    target = root / name
    if os.path.lexists(target):
        if not member.isdir() or target.is_symlink() or not target.is_dir():
            _remove(target)

    if member.islnk():
        member.linkname = resolve_in_root(
            root, normalize_member_name(member.linkname)
        )
    member.name = name

    # Names are already contained; modes (setuid, group write) are kept as
    # archived.
    if member.isdir():
        tar.extract(
            member, path=str(root), set_attrs=False, filter="fully_trusted"
        )
        directories.append((member, target))
    else:
        tar.extract(
            member, path=str(root), numeric_owner=True, filter="fully_trusted"
        )
    return True


def _remove(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    elif os.path.lexists(path):
        path.unlink()


def _clear_directory(
    root: Path, relpath: str, applied: set[str], preserved: tuple[str, ...]
) -> None:
    """Remove lower-layer entries of a directory, keeping this layer's."""
    directory = root / relpath if relpath else root
    if directory.is_symlink() or not directory.is_dir():
        return

    for child in list(directory.iterdir()):
        rel = posixpath.join(relpath, child.name) if relpath else child.name
        if _is_preserved(rel, preserved):
            continue
        is_dir = child.is_dir() and not child.is_symlink()
        if not is_dir:
            if rel not in applied:
                _remove(child)
            continue
        prefix = rel + "/"
        if rel in applied or any(a.startswith(prefix) for a in applied):
            _clear_directory(root, rel, applied, preserved)
        else:
            _remove(child)
