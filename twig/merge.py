# merge.py -- Three-way merge of trees and commits
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

"""Merging of commits.

Paths are merged by comparing ``(mode, id)`` pairs only: a path changed on
one side takes that side, a path changed identically on both sides is
taken once, and anything else is a conflict handed back to the caller with
all three contents. Nothing is committed and no ref moves until every
conflict has a resolution.
"""

__all__ = [
    "ConflictKind",
    "MergeConflict",
    "MergeError",
    "MergeResult",
    "MergeStatus",
    "Merger",
    "TreeMerge",
    "apply_resolutions",
    "complete_merge",
    "merge",
    "render_conflict",
    "three_way_merge",
]

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import merge3

from . import log_utils
from .config import Config
from .errors import ConflictError
from .graph import ShouldAbort, check_abort
from .index import DEFAULT_FILE_MODE, build_tree, flatten_tree, pathsplit
from .object_store import BaseObjectStore
from .objects import Commit, ObjectID, valid_hexsha
from .refs import LOCAL_BRANCH_PREFIX, shorten_ref_name

if TYPE_CHECKING:
    from .repo import BaseRepo

logger = log_utils.getLogger(__name__)

Entry = tuple[int, ObjectID]
Resolution = bytes | tuple[int, bytes] | None


class MergeError(Exception):
    """A merge could not be attempted."""


class MergeStatus(Enum):
    """Outcome of a merge."""

    ALREADY_UP_TO_DATE = "already-up-to-date"
    FAST_FORWARD = "fast-forward"
    MERGED = "merged"
    CONFLICTED = "conflicted"


class ConflictKind(Enum):
    """How the two sides disagree about a path."""

    BOTH_MODIFIED = "both-modified"
    ADD_ADD = "add/add"
    MODIFY_DELETE = "modify/delete"
    FILE_DIRECTORY = "file/directory"


@dataclass(frozen=True)
class MergeConflict:
    """A path the two sides changed in different ways.

    Contents are None where that side has no file at path.
    """

    path: bytes
    kind: ConflictKind
    base: bytes | None
    ours: bytes | None
    theirs: bytes | None
    base_mode: int | None = None
    ours_mode: int | None = None
    theirs_mode: int | None = None


@dataclass
class TreeMerge:
    """Result of merging three trees.

    entries holds the merged flat ``path -> (mode, id)`` mapping for every
    path that merged cleanly; conflicted paths are left out of it.
    """

    entries: dict[bytes, Entry]
    conflicts: list[MergeConflict] = field(default_factory=list)


@dataclass
class MergeResult:
    """Outcome of merge().

    For a conflicted merge this carries everything complete_merge() needs;
    nothing has been committed and the ref has not moved.
    """

    status: MergeStatus
    ref: bytes
    ours: ObjectID | None
    theirs: ObjectID
    base: ObjectID | None = None
    commit: ObjectID | None = None
    conflicts: list[MergeConflict] = field(default_factory=list)
    entries: dict[bytes, Entry] = field(default_factory=dict)
    message: bytes | None = None

    @property
    def conflicted_paths(self) -> list[bytes]:
        """Paths that need a resolution."""
        return [c.path for c in self.conflicts]


def _parent_dirs(path: bytes) -> list[bytes]:
    dirs = []
    dirname, _ = pathsplit(path)
    while dirname:
        dirs.append(dirname)
        dirname, _ = pathsplit(dirname)
    return dirs


class Merger:
    """Handles three-way merges of trees."""

    def __init__(self, object_store: BaseObjectStore) -> None:
        """Initialize merger.

        Args:
            object_store: Object store to read objects from and write trees to
        """
        self.object_store = object_store

    def _content(self, entry: Entry | None) -> bytes | None:
        if entry is None:
            return None
        return self.object_store.get(entry[1])

    def _conflict(
        self,
        path: bytes,
        kind: ConflictKind,
        base: Entry | None,
        ours: Entry | None,
        theirs: Entry | None,
    ) -> MergeConflict:
        return MergeConflict(
            path=path,
            kind=kind,
            base=self._content(base),
            ours=self._content(ours),
            theirs=self._content(theirs),
            base_mode=base[0] if base else None,
            ours_mode=ours[0] if ours else None,
            theirs_mode=theirs[0] if theirs else None,
        )

    def merge_trees(
        self,
        base_tree: ObjectID | None,
        ours_tree: ObjectID,
        theirs_tree: ObjectID,
        should_abort: ShouldAbort = None,
    ) -> TreeMerge:
        """Perform three-way merge on trees.

        Args:
            base_tree: Common ancestor tree (None for no common ancestor)
            ours_tree: Our version of the tree
            theirs_tree: Their version of the tree
            should_abort: Polled between paths

        Returns:
            TreeMerge with the cleanly merged entries and the conflicts
        """
        base = flatten_tree(self.object_store, base_tree)
        ours = flatten_tree(self.object_store, ours_tree)
        theirs = flatten_tree(self.object_store, theirs_tree)

        merged: dict[bytes, Entry] = {}
        conflicts: list[MergeConflict] = []

        for path in sorted(set(base) | set(ours) | set(theirs)):
            check_abort(should_abort)
            base_entry = base.get(path)
            ours_entry = ours.get(path)
            theirs_entry = theirs.get(path)

            if ours_entry == theirs_entry:
                # Unchanged, or changed identically on both sides
                result = ours_entry
            elif base_entry == ours_entry:
                result = theirs_entry
            elif base_entry == theirs_entry:
                result = ours_entry
            else:
                if base_entry is None:
                    kind = ConflictKind.ADD_ADD
                elif ours_entry is None or theirs_entry is None:
                    kind = ConflictKind.MODIFY_DELETE
                else:
                    kind = ConflictKind.BOTH_MODIFIED
                conflicts.append(
                    self._conflict(path, kind, base_entry, ours_entry, theirs_entry)
                )
                continue
            if result is not None:
                merged[path] = result

        # A file on one side where the other side now has a directory.
        conflicted = {c.path for c in conflicts}
        dirs: set[bytes] = set()
        for path in list(merged) + list(conflicted):
            dirs.update(_parent_dirs(path))
        for path in sorted(merged):
            if path in dirs:
                conflicts.append(
                    self._conflict(
                        path,
                        ConflictKind.FILE_DIRECTORY,
                        base.get(path),
                        ours.get(path),
                        theirs.get(path),
                    )
                )
                del merged[path]

        conflicts.sort(key=lambda c: c.path)
        return TreeMerge(merged, conflicts)


def three_way_merge(
    object_store: BaseObjectStore,
    base_commit: Commit | None,
    ours_commit: Commit,
    theirs_commit: Commit,
    should_abort: ShouldAbort = None,
) -> TreeMerge:
    """Perform a three-way merge between commits.

    Args:
        object_store: Object store to read/write objects
        base_commit: Common ancestor commit (None if no common ancestor)
        ours_commit: Our commit
        theirs_commit: Their commit
        should_abort: Polled between paths

    Returns:
        TreeMerge of the three commit trees
    """
    merger = Merger(object_store)
    base_tree = base_commit.tree if base_commit is not None else None
    return merger.merge_trees(
        base_tree, ours_commit.tree, theirs_commit.tree, should_abort=should_abort
    )


def _ensure_newline(lines: Sequence[bytes]) -> list[bytes]:
    lines = list(lines)
    if lines and not lines[-1].endswith(b"\n"):
        lines[-1] += b"\n"
    return lines


def render_conflict(
    conflict: MergeConflict,
    style: bytes | None = None,
    labels: tuple[bytes, bytes, bytes] = (b"ours", b"base", b"theirs"),
    config: Config | None = None,
) -> bytes:
    """Render a conflict as text with conflict markers.

    Regions that only one side changed are merged line by line; regions
    changed on both sides are shown between ``<<<<<<<`` and ``>>>>>>>``.

    Args:
      conflict: The conflict to render
      style: b"merge" or b"diff3" (which also shows the base lines); defaults
        to merge.conflictStyle from config, then b"merge"
      labels: Marker labels for ours, base and theirs
      config: Configuration to read merge.conflictStyle from
    Returns: The rendered content
    """
    if style is None:
        style = b"merge"
        if config is not None:
            try:
                style = config.get((b"merge",), b"conflictStyle").lower()
            except KeyError:
                pass
    if style not in (b"merge", b"diff3"):
        raise ValueError(f"unknown conflict style {style!r}")
    ours_label, base_label, theirs_label = labels

    m = merge3.Merge3(
        (conflict.base or b"").splitlines(True),
        (conflict.ours or b"").splitlines(True),
        (conflict.theirs or b"").splitlines(True),
    )
    result: list[bytes] = []
    for group in m.merge_groups():
        if group[0] == "conflict":
            base_lines, a_lines, b_lines = group[1], group[2], group[3]
            result.append(b"<<<<<<< " + ours_label + b"\n")
            result.extend(_ensure_newline(a_lines))
            if style == b"diff3":
                result.append(b"||||||| " + base_label + b"\n")
                result.extend(_ensure_newline(base_lines))
            result.append(b"=======\n")
            result.extend(_ensure_newline(b_lines))
            result.append(b">>>>>>> " + theirs_label + b"\n")
        else:
            result.extend(group[1])
    return b"".join(result)


def _default_message(theirs_spec: bytes, theirs: ObjectID) -> bytes:
    if valid_hexsha(theirs_spec):
        return b"Merge commit '" + theirs + b"'"
    if theirs_spec.startswith(LOCAL_BRANCH_PREFIX) or b"/" not in theirs_spec:
        return b"Merge branch '" + shorten_ref_name(theirs_spec) + b"'"
    return b"Merge '" + shorten_ref_name(theirs_spec) + b"'"


def merge(
    repo: "BaseRepo",
    theirs: bytes,
    ref: bytes = b"HEAD",
    message: bytes | None = None,
    author: bytes | None = None,
    committer: bytes | None = None,
    allow_unrelated: bool = False,
    no_ff: bool = False,
    should_abort: ShouldAbort = None,
) -> MergeResult:
    """Merge a commit into a ref.

    Args:
      repo: Repository to merge in
      theirs: Commit to merge (id, ref name or branch name)
      ref: Ref to merge into; HEAD follows to the branch it is attached to
      message: Merge commit message (defaults to "Merge branch '...'")
      author: Author of the merge commit
      committer: Committer of the merge commit
      allow_unrelated: Merge histories without a common ancestor, using
        the empty tree as base
      no_ff: Create a merge commit even if a fast-forward is possible
      should_abort: Polled during the merge-base search and the tree merge

    Returns:
      MergeResult; on CONFLICTED nothing has been committed

    Raises:
      MergeError: if the histories are unrelated and allow_unrelated is False
      RefChanged: if ref moved while merging
    """
    theirs_id = repo.resolve_commit(theirs)
    _, ours_id = repo.refs.follow(ref)
    if message is None:
        message = _default_message(theirs, theirs_id)

    if ours_id is None:
        # Merging into an unborn branch just creates it.
        repo.refs.update(ref, None, theirs_id, op=b"merge", message=b"Fast-forward")
        logger.info("Created %s at %s", ref, theirs_id)
        return MergeResult(MergeStatus.FAST_FORWARD, ref, None, theirs_id)

    graph = repo.graph
    base = graph.merge_base(ours_id, theirs_id, should_abort=should_abort)
    if ours_id == theirs_id or base == theirs_id:
        logger.debug("%s already contains %s", ref, theirs_id)
        return MergeResult(
            MergeStatus.ALREADY_UP_TO_DATE, ref, ours_id, theirs_id, base=base
        )

    if base == ours_id and not no_ff:
        repo.refs.update(
            ref, ours_id, theirs_id, op=b"merge", message=b"Fast-forward"
        )
        logger.info("Fast-forwarded %s from %s to %s", ref, ours_id, theirs_id)
        return MergeResult(
            MergeStatus.FAST_FORWARD, ref, ours_id, theirs_id, base=base
        )

    if base is None and not allow_unrelated:
        raise MergeError(
            f"refusing to merge unrelated histories {ours_id!r} and {theirs_id!r}"
        )

    base_commit = graph.get_commit(base) if base is not None else None
    tree_merge = three_way_merge(
        repo.object_store,
        base_commit,
        graph.get_commit(ours_id),
        graph.get_commit(theirs_id),
        should_abort=should_abort,
    )
    result = MergeResult(
        MergeStatus.CONFLICTED,
        ref,
        ours_id,
        theirs_id,
        base=base,
        conflicts=tree_merge.conflicts,
        entries=tree_merge.entries,
        message=message,
    )
    if tree_merge.conflicts:
        logger.info(
            "Merge of %s into %s has %d conflicts",
            theirs_id,
            ref,
            len(tree_merge.conflicts),
        )
        return result

    result.commit = _commit_merge(repo, result, tree_merge.entries, author, committer)
    result.status = MergeStatus.MERGED
    return result


def _commit_merge(
    repo: "BaseRepo",
    result: MergeResult,
    entries: Mapping[bytes, Entry],
    author: bytes | None,
    committer: bytes | None,
    message: bytes | None = None,
) -> ObjectID:
    assert result.ours is not None
    tree_id = build_tree(repo.object_store, entries)
    commit_id = repo.do_commit(
        message if message is not None else result.message,
        tree=tree_id,
        ref=result.ref,
        author=author,
        committer=committer,
        parents=[result.ours, result.theirs],
        op=b"merge",
    )
    logger.info("Merged %s into %s as %s", result.theirs, result.ref, commit_id)
    return commit_id


def apply_resolutions(
    object_store: BaseObjectStore,
    entries: Mapping[bytes, Entry],
    conflicts: Sequence[MergeConflict],
    resolutions: Mapping[bytes, Resolution],
) -> dict[bytes, Entry]:
    """Store resolved content and fold it into the cleanly merged entries.

    A resolution without a mode keeps the mode of the merged entry, or
    for a conflicted path the mode of our side (then theirs).

    Returns: the complete flat ``path -> (mode, id)`` mapping

    Raises:
      ConflictError: if a conflicted path has no resolution
    """
    missing = [c for c in conflicts if c.path not in resolutions]
    if missing:
        raise ConflictError(missing)

    modes = {}
    for c in conflicts:
        modes[c.path] = c.ours_mode or c.theirs_mode or DEFAULT_FILE_MODE
    ret = dict(entries)
    for path, resolution in resolutions.items():
        if resolution is None:
            ret.pop(path, None)
            continue
        if isinstance(resolution, tuple):
            mode, data = resolution
        else:
            data = resolution
            if path in ret:
                mode = ret[path][0]
            else:
                mode = modes.get(path, DEFAULT_FILE_MODE)
        ret[path] = (mode, object_store.put(data))
    return ret


def complete_merge(
    repo: "BaseRepo",
    result: MergeResult,
    resolutions: Mapping[bytes, Resolution],
    message: bytes | None = None,
    author: bytes | None = None,
    committer: bytes | None = None,
) -> ObjectID:
    """Complete a conflicted merge with caller-supplied content.

    Args:
      repo: Repository the merge was started in
      result: The CONFLICTED result returned by merge()
      resolutions: Content for every conflicted path: bytes, (mode, bytes),
        or None to delete the path. Other paths may be given as well to
        override the merged content.
      message: Merge commit message (defaults to the one merge() chose)
      author: Author of the merge commit
      committer: Committer of the merge commit

    Returns: id of the merge commit

    Raises:
      ConflictError: if a conflicted path has no resolution
      RefChanged: if the ref moved since merge() was called
      ValueError: if the resolved paths do not form a valid tree
    """
    if result.status is not MergeStatus.CONFLICTED:
        raise MergeError(f"merge is {result.status.value}, nothing to complete")
    entries = apply_resolutions(
        repo.object_store, result.entries, result.conflicts, resolutions
    )
    return _commit_merge(repo, result, entries, author, committer, message=message)
