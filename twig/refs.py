# refs.py -- For dealing with refs
# Copyright (C) 2025 Twig contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# Twig is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Ref handling.

A ref is a mutable name for a commit id. Refs only ever move through a
compare-and-swap: the caller states the value it expects, and loses with
RefChanged if another writer got there first. Every move is recorded in the
reflog before the new value becomes visible.
"""

__all__ = [
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "LOCAL_TAG_PREFIX",
    "SYMREF",
    "DictRefsContainer",
    "DiskRefsContainer",
    "RefsContainer",
    "SymrefLoop",
    "check_ref_format",
    "extract_branch_name",
    "local_branch_name",
    "local_tag_name",
    "parse_symref_value",
    "shorten_ref_name",
]

import os
import threading
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING

from . import log_utils
from .errors import NoSuchRef, RefChanged, RefFormatError
from .file import FileLocked, GitFile, ensure_dir_exists
from .objects import ObjectID, valid_hexsha

if TYPE_CHECKING:
    from .reflog import BaseReflog

logger = log_utils.getLogger(__name__)

Ref = bytes

HEADREF = b"HEAD"
SYMREF = b"ref: "
LOCAL_BRANCH_PREFIX = b"refs/heads/"
LOCAL_TAG_PREFIX = b"refs/tags/"
BAD_REF_CHARS = set(b"\177 ~^:?*[")

# Maximum number of symbolic refs followed before giving up.
MAX_SYMREF_DEPTH = 5


class SymrefLoop(Exception):
    """There is a loop between one or more symrefs."""

    def __init__(self, ref: bytes, depth: int) -> None:
        self.ref = ref
        self.depth = depth
        super().__init__(f"symref loop at {ref!r} after {depth} steps")


def parse_symref_value(contents: bytes) -> bytes:
    """Parse a symref value.

    Args:
      contents: Contents to parse
    Returns: Destination
    """
    if contents.startswith(SYMREF):
        return contents[len(SYMREF) :].rstrip(b"\r\n")
    raise ValueError(contents)


def check_ref_format(refname: Ref) -> bool:
    """Check if a refname is correctly formatted.

    Implements all the same rules as git-check-ref-format[1].

    [1]
    http://www.kernel.org/pub/software/scm/git/docs/git-check-ref-format.html

    Args:
      refname: The refname to check
    Returns: True if refname is valid, False otherwise
    """
    # These could be combined into one big expression, but are listed
    # separately to parallel [1].
    if b"/." in refname or refname.startswith(b"."):
        return False
    if b"/" not in refname:
        return False
    if b".." in refname:
        return False
    for i, c in enumerate(refname):
        if ord(refname[i : i + 1]) < 0o40 or c in BAD_REF_CHARS:
            return False
    if refname[-1] in b"/.":
        return False
    if refname.endswith(b".lock"):
        return False
    if b"@{" in refname:
        return False
    if b"\\" in refname:
        return False
    if b"//" in refname:
        return False
    return True


class RefsContainer:
    """A container for refs.

    Subclasses provide storage through read_loose_ref, allkeys and the
    _swap/_write_symref primitives; everything else is shared.
    """

    def __init__(
        self,
        reflog: "BaseReflog | None" = None,
        committer: Callable[[], bytes] | None = None,
    ) -> None:
        """Initialize a RefsContainer.

        Args:
          reflog: Where ref moves are recorded
          committer: Returns the identity recorded for moves that do not
            name one
        """
        self.reflog = reflog
        self._default_committer = committer

    def _log(
        self,
        ref: bytes,
        old_sha: bytes | None,
        new_sha: bytes | None,
        op: bytes,
        message: bytes = b"",
        committer: bytes | None = None,
        timestamp: int | None = None,
        timezone: int | None = None,
    ) -> None:
        if self.reflog is None:
            return
        zero = b"0" * len(old_sha or new_sha or b"0" * 40)
        if old_sha is None:
            old_sha = zero
        if new_sha is None:
            new_sha = zero
        if committer is None and self._default_committer is not None:
            committer = self._default_committer()
        targets = [ref]
        if ref != HEADREF and self.read_loose_ref(HEADREF) == SYMREF + ref:
            targets.append(HEADREF)
        for target in targets:
            self.reflog.record(
                target,
                old_sha,
                new_sha,
                op,
                message,
                committer=committer,
                timestamp=timestamp,
                timezone=timezone,
            )

    def allkeys(self) -> set[Ref]:
        """All refs present in this container."""
        raise NotImplementedError(self.allkeys)

    def __iter__(self) -> Iterator[Ref]:
        return iter(self.allkeys())

    def keys(self, base: bytes | None = None) -> set[bytes]:
        """Refs present in this container.

        Args:
          base: An optional base to return refs under.
        Returns: An unsorted set of valid refs in this container; with a base,
            the base prefix is stripped from the names returned.
        """
        if base is None:
            return self.allkeys()
        keys = set()
        base = base.rstrip(b"/") + b"/"
        for refname in self.allkeys():
            if refname.startswith(base):
                keys.add(refname[len(base) :])
        return keys

    def as_dict(self, base: bytes | None = None) -> dict[Ref, ObjectID]:
        """Return the contents of this container as a dictionary."""
        ret = {}
        keys = self.keys(base)
        if base is None:
            base = b""
        else:
            base = base.rstrip(b"/")
        for key in keys:
            try:
                ret[key] = self.read((base + b"/" + key).strip(b"/"))
            except (SymrefLoop, NoSuchRef):
                continue  # Unable to resolve
        return ret

    def _check_refname(self, name: bytes) -> None:
        """Ensure a refname is valid and lives in refs or is HEAD.

        Raises:
          RefFormatError: if a refname is not HEAD or is otherwise not valid.
        """
        if name == HEADREF:
            return
        if not name.startswith(b"refs/") or not check_ref_format(name[5:]):
            raise RefFormatError(name)

    def _check_ref_conflict(self, name: bytes) -> None:
        """Refuse to create a ref that is a directory of another, or vice versa."""
        for other in self.allkeys():
            if other.startswith(name + b"/") or name.startswith(other + b"/"):
                raise RefFormatError(f"{name!r} conflicts with existing {other!r}")

    def read_loose_ref(self, name: bytes) -> bytes | None:
        """Read a reference and return its raw contents.

        Returns: The contents of the ref, or None if it does not exist.
        """
        raise NotImplementedError(self.read_loose_ref)

    def read_ref(self, refname: bytes) -> bytes | None:
        """Read a reference without following any references.

        Args:
          refname: The name of the reference
        Returns: The raw value (an id, or b"ref: " plus a target), or None if
            it does not exist.
        """
        return self.read_loose_ref(refname)

    def follow(self, name: bytes) -> tuple[list[bytes], bytes | None]:
        """Follow a reference name.

        Returns: a tuple of (refnames, sha), wheres refnames are the names of
            references in the chain
        """
        contents: bytes | None = SYMREF + name
        depth = 0
        refnames = []
        while contents and contents.startswith(SYMREF):
            refname = contents[len(SYMREF) :]
            refnames.append(refname)
            contents = self.read_ref(refname)
            if not contents:
                break
            depth += 1
            if depth > MAX_SYMREF_DEPTH:
                raise SymrefLoop(name, depth)
        return refnames, contents

    def read(self, name: bytes) -> ObjectID:
        """Return the commit id a ref points at, following symbolic refs.

        Raises:
          NoSuchRef: if the ref (or the ref it points at) does not exist
        """
        _, sha = self.follow(name)
        if sha is None:
            raise NoSuchRef(name)
        return sha

    def __getitem__(self, name: bytes) -> ObjectID:
        return self.read(name)

    def __contains__(self, refname: bytes) -> bool:
        if self.read_ref(refname):
            return True
        return False

    def _current_value(self, realname: bytes) -> bytes | None:
        raw = self.read_loose_ref(realname)
        if raw is not None and raw.startswith(SYMREF):
            return self.follow(realname)[1]
        return raw

    def _swap(
        self,
        realname: bytes,
        expected_old: bytes | None,
        new_value: bytes | None,
        before_write: Callable[[bytes | None], None],
    ) -> None:
        """Replace the value of realname if it still equals expected_old.

        Compare, before_write and write happen as one critical section.
        A new_value of None deletes the ref.

        Raises:
          RefChanged: if the current value differs from expected_old, or
            another writer holds the ref
        """
        raise NotImplementedError(self._swap)

    def _write_symref(
        self, name: bytes, target: bytes, before_write: Callable[[], None]
    ) -> None:
        raise NotImplementedError(self._write_symref)

    def update(
        self,
        name: bytes,
        expected_old: ObjectID | None,
        new_sha: ObjectID,
        op: bytes = b"update",
        message: bytes = b"",
        committer: bytes | None = None,
        timestamp: int | None = None,
        timezone: int | None = None,
        deref: bool = True,
    ) -> None:
        """Atomically move a ref from expected_old to new_sha.

        Symbolic refs are followed, so updating an attached HEAD moves the
        branch it points at. The move is recorded in the reflog of the
        updated ref (and of HEAD, if HEAD is attached to it) before the new
        value becomes visible.

        Args:
          name: The refname to set.
          expected_old: The value the ref must currently have, or None if
            the ref must not exist yet.
          new_sha: The new id the ref will point at.
          op: Operation kind recorded in the reflog (commit, merge, ...)
          message: Free-form reflog message
          committer: Identity recorded in the reflog
          timestamp: Time recorded in the reflog (defaults to now)
          timezone: Timezone recorded in the reflog
          deref: Whether to follow symbolic refs; with False a symbolic
            name (such as an attached HEAD) is replaced by new_sha

        Raises:
          RefChanged: if the ref does not have the expected value
          RefFormatError: if name is not a valid ref name
        """
        self._check_refname(name)
        if not valid_hexsha(new_sha):
            raise ValueError(f"{new_sha!r} is not a valid object id")
        if deref:
            realnames, _ = self.follow(name)
            realname = realnames[-1]
            self._check_refname(realname)
        else:
            realname = name
        if expected_old is None:
            self._check_ref_conflict(realname)

        def before_write(current: bytes | None) -> None:
            self._log(
                realname,
                current,
                new_sha,
                op,
                message,
                committer=committer,
                timestamp=timestamp,
                timezone=timezone,
            )

        self._swap(realname, expected_old, new_sha, before_write)
        logger.debug(
            "Moved %s from %s to %s (%s)", realname, expected_old, new_sha, op
        )

    def remove(
        self,
        name: bytes,
        expected_old: ObjectID | None,
        op: bytes = b"delete",
        message: bytes = b"",
        committer: bytes | None = None,
        timestamp: int | None = None,
        timezone: int | None = None,
    ) -> None:
        """Remove a ref if it currently equals expected_old.

        This does not follow symbolic references.

        Args:
          name: The refname to delete.
          expected_old: The value the ref must have, or None to delete
            whatever value it has.

        Raises:
          RefChanged: if the ref does not have the expected value
          NoSuchRef: if the ref does not exist
        """
        self._check_refname(name)
        current = self._current_value(name)
        if current is None:
            raise NoSuchRef(name)
        if expected_old is None:
            expected_old = current

        def before_write(current: bytes | None) -> None:
            self._log(
                name,
                current,
                None,
                op,
                message,
                committer=committer,
                timestamp=timestamp,
                timezone=timezone,
            )

        self._swap(name, expected_old, None, before_write)
        logger.debug("Removed %s (was %s)", name, expected_old)

    def __setitem__(self, name: bytes, ref: bytes) -> None:
        """Set a reference name to point to the given id.

        Note: This unconditionally overwrites the current value, as far as
            that is possible without racing: it is an update from whatever
            value was just read. Use update() to state the expected value.
        """
        self._check_refname(name)
        realname = self.follow(name)[0][-1]
        self.update(name, self._current_value(realname), ref, op=b"update")

    def __delitem__(self, name: bytes) -> None:
        self.remove(name, None)

    def set_symbolic_ref(
        self,
        name: bytes,
        other: bytes,
        op: bytes = b"checkout",
        message: bytes = b"",
        committer: bytes | None = None,
        timestamp: int | None = None,
        timezone: int | None = None,
    ) -> None:
        """Make a ref point at another ref.

        The move is logged when the id name resolves to changes.

        Args:
          name: Name of the ref to set
          other: Name of the ref to point at
        """
        self._check_refname(name)
        self._check_refname(other)

        def before_write() -> None:
            old = self.follow(name)[1]
            new = self.follow(other)[1]
            if old != new:
                self._log(
                    name,
                    old,
                    new,
                    op,
                    message,
                    committer=committer,
                    timestamp=timestamp,
                    timezone=timezone,
                )

        self._write_symref(name, other, before_write)
        logger.debug("Pointed %s at %s", name, other)

    def get_symrefs(self) -> dict[bytes, bytes]:
        """Get a dict with all symrefs in this container.

        Returns: Dictionary mapping source ref to target ref
        """
        ret = {}
        for src in self.allkeys():
            ref_value = self.read_ref(src)
            if ref_value is None:
                continue
            try:
                dst = parse_symref_value(ref_value)
            except ValueError:
                pass
            else:
                ret[src] = dst
        return ret


class DictRefsContainer(RefsContainer):
    """RefsContainer backed by a simple dict.

    A lock makes each compare-and-swap a single critical section, so the
    container can be shared between threads.
    """

    def __init__(
        self,
        refs: dict[bytes, bytes] | None = None,
        reflog: "BaseReflog | None" = None,
        committer: Callable[[], bytes] | None = None,
    ) -> None:
        super().__init__(reflog=reflog, committer=committer)
        self._refs = refs if refs is not None else {}
        self._lock = threading.Lock()

    def allkeys(self) -> set[bytes]:
        return set(self._refs.keys())

    def read_loose_ref(self, name: bytes) -> bytes | None:
        return self._refs.get(name, None)

    def _swap(
        self,
        realname: bytes,
        expected_old: bytes | None,
        new_value: bytes | None,
        before_write: Callable[[bytes | None], None],
    ) -> None:
        with self._lock:
            current = self._current_value(realname)
            if current != expected_old:
                raise RefChanged(realname, expected_old, current)
            before_write(current)
            if new_value is None:
                del self._refs[realname]
            else:
                self._refs[realname] = new_value

    def _write_symref(
        self, name: bytes, target: bytes, before_write: Callable[[], None]
    ) -> None:
        with self._lock:
            before_write()
            self._refs[name] = SYMREF + target


class DiskRefsContainer(RefsContainer):
    """Refs container that keeps each ref in its own file.

    Writers hold ``<ref>.lock`` while they compare and write. A writer that
    finds the lock taken loses immediately with RefChanged.
    """

    def __init__(
        self,
        path: str | bytes | os.PathLike[str],
        reflog: "BaseReflog | None" = None,
        committer: Callable[[], bytes] | None = None,
    ) -> None:
        super().__init__(reflog=reflog, committer=committer)
        self.path = os.fsencode(os.fspath(path))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"

    def refpath(self, name: bytes) -> bytes:
        """Return the disk path of a ref."""
        path = name
        if os.path.sep != "/":
            path = path.replace(b"/", os.fsencode(os.path.sep))
        return os.path.join(self.path, path)

    def allkeys(self) -> set[bytes]:
        allkeys = set()
        if os.path.exists(self.refpath(HEADREF)):
            allkeys.add(HEADREF)
        refspath = os.path.join(self.path, b"refs")
        prefix_len = len(os.path.join(self.path, b""))
        for root, _dirs, files in os.walk(refspath):
            directory = root[prefix_len:]
            if os.path.sep != "/":
                directory = directory.replace(os.fsencode(os.path.sep), b"/")
            for filename in files:
                refname = b"/".join([directory, filename])
                if refname.startswith(b"refs/") and check_ref_format(refname[5:]):
                    allkeys.add(refname)
        return allkeys

    def read_loose_ref(self, name: bytes) -> bytes | None:
        """Read a reference file and return its contents.

        Returns: The contents of the ref file, or None if the file does not
            exist.
        """
        filename = self.refpath(name)
        try:
            with GitFile(filename, "rb") as f:
                contents = f.readline()
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return None
        contents = contents.rstrip(b"\r\n")
        return contents or None

    def _lock(self, realname: bytes, expected_old: bytes | None):  # noqa: ANN202
        filename = self.refpath(realname)
        ensure_dir_exists(os.path.dirname(filename))
        try:
            return GitFile(filename, "wb")
        except FileLocked as exc:
            logger.info("%r is locked by another writer", realname)
            raise RefChanged(realname, expected_old, None) from exc

    def _swap(
        self,
        realname: bytes,
        expected_old: bytes | None,
        new_value: bytes | None,
        before_write: Callable[[bytes | None], None],
    ) -> None:
        f = self._lock(realname, expected_old)
        try:
            # read again while holding the lock
            current = self._current_value(realname)
            if current != expected_old:
                raise RefChanged(realname, expected_old, current)
            before_write(current)
            if new_value is None:
                os.remove(self.refpath(realname))
            else:
                f.write(new_value + b"\n")
                f.close()
        finally:
            f.abort()
        if new_value is None:
            self._remove_empty_parents(realname)

    def _remove_empty_parents(self, name: bytes) -> None:
        # Clean up parent directories that are now empty, so that a ref of
        # the same name as a previous directory can be created later.
        parent = name
        while True:
            try:
                parent, _ = parent.rsplit(b"/", 1)
            except ValueError:
                break
            if parent == b"refs":
                break
            try:
                os.rmdir(self.refpath(parent))
            except OSError:
                break

    def _write_symref(
        self, name: bytes, target: bytes, before_write: Callable[[], None]
    ) -> None:
        f = self._lock(name, None)
        try:
            before_write()
            f.write(SYMREF + target + b"\n")
            f.close()
        finally:
            f.abort()


def local_branch_name(name: bytes) -> bytes:
    """Build a full branch ref from a short name.

    Examples:
      >>> local_branch_name(b"main")
      b'refs/heads/main'
      >>> local_branch_name(b"refs/heads/main")
      b'refs/heads/main'
    """
    if name.startswith(LOCAL_BRANCH_PREFIX):
        return name
    return LOCAL_BRANCH_PREFIX + name


def local_tag_name(name: bytes) -> bytes:
    """Build a full tag ref from a short name.

    Examples:
      >>> local_tag_name(b"v1.0")
      b'refs/tags/v1.0'
    """
    if name.startswith(LOCAL_TAG_PREFIX):
        return name
    return LOCAL_TAG_PREFIX + name


def extract_branch_name(ref: bytes) -> bytes:
    """Extract branch name from a full branch ref.

    Raises:
      ValueError: If ref is not a local branch

    Examples:
      >>> extract_branch_name(b"refs/heads/feature/foo")
      b'feature/foo'
    """
    if not ref.startswith(LOCAL_BRANCH_PREFIX):
        raise ValueError(f"Not a local branch ref: {ref!r}")
    return ref[len(LOCAL_BRANCH_PREFIX) :]


def shorten_ref_name(ref: bytes) -> bytes:
    """Convert a full ref name to its short form.

    Examples:
      >>> shorten_ref_name(b"refs/heads/main")
      b'main'
      >>> shorten_ref_name(b"refs/tags/v1.0")
      b'v1.0'
      >>> shorten_ref_name(b"HEAD")
      b'HEAD'
    """
    if ref.startswith(LOCAL_BRANCH_PREFIX):
        return ref[len(LOCAL_BRANCH_PREFIX) :]
    elif ref.startswith(LOCAL_TAG_PREFIX):
        return ref[len(LOCAL_TAG_PREFIX) :]
    return ref
