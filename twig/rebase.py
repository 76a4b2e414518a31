# rebase.py -- Replaying commits onto a new base
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

"""Rebase implementation.

Rewritten commits are kept by the Rebaser until the whole sequence has been
replayed; only then is the branch moved, with a single compare-and-swap.
"""

__all__ = [
    "RebaseConflict",
    "RebaseError",
    "RebaseResult",
    "RebaseStatus",
    "Rebaser",
    "rebase",
]

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from . import log_utils
from .errors import OperationAborted
from .graph import ShouldAbort, check_abort
from .index import build_tree
from .merge import MergeConflict, Merger, Resolution, TreeMerge, apply_resolutions
from .objects import Commit, ObjectID
from .refs import HEADREF, local_branch_name

if TYPE_CHECKING:
    from .repo import BaseRepo

logger = log_utils.getLogger(__name__)


class RebaseError(Exception):
    """Base class for rebase errors."""


class RebaseConflict(RebaseError):
    """Raised when a rebase conflict occurs."""

    def __init__(self, commit: ObjectID, conflicts: list[MergeConflict]) -> None:
        """Initialize RebaseConflict.

        Args:
          commit: The commit that could not be replayed
          conflicts: The conflicts found while replaying it
        """
        self.commit = commit
        self.conflicts = conflicts
        self.conflicted_files = [c.path for c in conflicts]
        super().__init__(
            f"Conflicts in: {', '.join(f.decode('utf-8', 'replace') for f in self.conflicted_files)}"
        )


class RebaseStatus(Enum):
    """Outcome of a rebase step."""

    UP_TO_DATE = "up-to-date"
    FAST_FORWARD = "fast-forward"
    COMPLETED = "completed"
    CONFLICTED = "conflicted"


@dataclass
class RebaseResult:
    """Outcome of Rebaser.continue_().

    On CONFLICTED, ``commit`` is the commit being replayed and ``conflicts``
    what needs resolving; the branch has not moved.
    """

    status: RebaseStatus
    new_tip: ObjectID | None = None
    commits: list[ObjectID] = field(default_factory=list)
    commit: ObjectID | None = None
    conflicts: list[MergeConflict] = field(default_factory=list)


class Rebaser:
    """Handles rebase operations."""

    def __init__(self, repo: "BaseRepo") -> None:
        """Initialize rebaser.

        Args:
            repo: Repository to perform rebase in
        """
        self.repo = repo
        self.object_store = repo.object_store
        self._reset()

    def _reset(self) -> None:
        self._branch: bytes | None = None
        self._original_tip: ObjectID | None = None
        self._onto: ObjectID | None = None
        self._todo: list[ObjectID] = []
        self._done: list[ObjectID] = []
        self._stopped: tuple[Commit, TreeMerge] | None = None
        self._up_to_date = False
        self._fast_forward = False

    def is_in_progress(self) -> bool:
        """Check if a rebase is currently in progress."""
        return self._branch is not None

    def _resolve_branch(self, branch: bytes) -> bytes:
        if branch != HEADREF and not branch.startswith(b"refs/"):
            branch = local_branch_name(branch)
        refnames, _ = self.repo.refs.follow(branch)
        return refnames[-1]

    def start(
        self,
        onto: bytes,
        branch: bytes = HEADREF,
        should_abort: ShouldAbort = None,
    ) -> list[ObjectID]:
        """Start a rebase.

        Args:
            onto: Commit (or ref, or branch name) to replay the branch onto
            branch: Branch to rebase; HEAD rebases the branch it is attached
              to, or HEAD itself when detached
            should_abort: Polled while collecting commits

        Returns:
            Ids of the commits that will be replayed, oldest first

        Raises:
            RebaseError: if a rebase is already in progress
            NoSuchRef: if the branch does not exist
        """
        if self.is_in_progress():
            raise RebaseError("A rebase is already in progress")
        graph = self.repo.graph
        realname = self._resolve_branch(branch)
        tip = self.repo.refs.read(realname)
        onto_id = self.repo.resolve_commit(onto)

        if graph.is_ancestor(onto_id, tip, should_abort=should_abort):
            todo = []
            self._up_to_date = True
        else:
            # Merge commits are dropped, as git does without --rebase-merges.
            todo = [
                sha
                for sha in graph.commits_between(onto_id, tip, should_abort=should_abort)
                if len(graph.get_parents(sha)) <= 1
            ]

        self._branch = realname
        self._original_tip = tip
        self._onto = onto_id
        self._todo = todo
        self._done = []
        self._fast_forward = not todo and not self._up_to_date
        logger.info(
            "Rebasing %s (%s) onto %s: %d commits", realname, tip, onto_id, len(todo)
        )
        return list(todo)

    def _new_parent(self) -> ObjectID:
        assert self._onto is not None
        if self._done:
            return self._done[-1]
        return self._onto

    def _replay(self, commit: Commit, tree_merge: TreeMerge) -> None:
        graph = self.repo.graph
        parent = self._new_parent()
        tree_id = build_tree(self.object_store, tree_merge.entries)
        if tree_id == graph.get_commit(parent).tree:
            logger.info("Skipping %s: changes already present", commit.id)
            return
        new_id = graph.commit(
            tree_id,
            [parent],
            commit.message,
            commit.author,
            committer=commit.committer,
            author_time=commit.author_time,
            commit_time=commit.commit_time,
            author_timezone=commit.author_timezone,
            commit_timezone=commit.commit_timezone,
            encoding=commit.encoding,
        )
        logger.debug("Replayed %s as %s", commit.id, new_id)
        self._done.append(new_id)

    def _merge(self, commit: Commit) -> TreeMerge:
        graph = self.repo.graph
        if commit.parents:
            base_tree: ObjectID | None = graph.get_commit(commit.parents[0]).tree
        else:
            base_tree = None
        theirs_tree = graph.get_commit(self._new_parent()).tree
        return Merger(self.object_store).merge_trees(
            base_tree, commit.tree, theirs_tree
        )

    def continue_(
        self,
        resolutions: Mapping[bytes, Resolution] | None = None,
        should_abort: ShouldAbort = None,
    ) -> RebaseResult:
        """Replay the remaining commits.

        Args:
            resolutions: Content for every conflicted path of the commit the
              rebase stopped at
            should_abort: Polled between replayed commits

        Returns:
            RebaseResult; CONFLICTED if a commit could not be replayed

        Raises:
            RebaseError: if no rebase is in progress
            ConflictError: if the rebase stopped at a conflict that the
              resolutions do not cover
            RefChanged: if the branch moved since start(); the rebase stays
              in progress
            OperationAborted: if should_abort fired; the rebase stays in
              progress
        """
        if not self.is_in_progress():
            raise RebaseError("No rebase in progress")
        assert self._branch is not None and self._onto is not None

        if self._stopped is not None:
            commit, tree_merge = self._stopped
            entries = apply_resolutions(
                self.object_store,
                tree_merge.entries,
                tree_merge.conflicts,
                resolutions or {},
            )
            self._replay(commit, TreeMerge(entries))
            self._stopped = None
            self._todo.pop(0)

        graph = self.repo.graph
        while self._todo:
            check_abort(should_abort)
            commit = graph.get_commit(self._todo[0])
            tree_merge = self._merge(commit)
            if tree_merge.conflicts:
                self._stopped = (commit, tree_merge)
                logger.info(
                    "Rebase stopped at %s with %d conflicts",
                    commit.id,
                    len(tree_merge.conflicts),
                )
                return RebaseResult(
                    RebaseStatus.CONFLICTED,
                    commits=list(self._done),
                    commit=commit.id,
                    conflicts=tree_merge.conflicts,
                )
            self._replay(commit, tree_merge)
            self._todo.pop(0)

        return self._finish()

    def _finish(self) -> RebaseResult:
        assert self._branch is not None and self._onto is not None
        done = list(self._done)
        if self._up_to_date:
            status = RebaseStatus.UP_TO_DATE
            new_tip = self._original_tip
        else:
            new_tip = self._new_parent()
            if self._fast_forward:
                status = RebaseStatus.FAST_FORWARD
            else:
                status = RebaseStatus.COMPLETED
            self.repo.refs.update(
                self._branch,
                self._original_tip,
                new_tip,
                op=b"rebase",
                message=b"finished onto " + self._onto,
                deref=False,
            )
            logger.info("Rebased %s to %s", self._branch, new_tip)
        self._reset()
        return RebaseResult(status, new_tip=new_tip, commits=done)

    def abort(self) -> ObjectID:
        """Abort an in-progress rebase.

        The branch was never moved, so this only discards the rewritten
        commits (which stay in the object store, unreferenced).

        Returns: the original tip of the branch
        """
        if not self.is_in_progress():
            raise RebaseError("No rebase in progress")
        original_tip = self._original_tip
        assert original_tip is not None
        logger.info("Aborted rebase of %s", self._branch)
        self._reset()
        return original_tip


def rebase(
    repo: "BaseRepo",
    onto: bytes,
    branch: bytes = HEADREF,
    should_abort: ShouldAbort = None,
) -> ObjectID:
    """Rebase a branch onto another commit.

    Args:
        repo: Repository to rebase in
        onto: Commit, ref or branch name to replay the branch onto
        branch: Branch to rebase (defaults to the one HEAD is attached to)
        should_abort: Polled between replayed commits

    Returns:
        The new tip of the branch

    Raises:
        RebaseConflict: If conflicts occur; the branch is left untouched
        OperationAborted: If should_abort fired; the branch is left untouched
    """
    rebaser = Rebaser(repo)
    rebaser.start(onto, branch, should_abort=should_abort)
    try:
        result = rebaser.continue_(should_abort=should_abort)
    except OperationAborted:
        rebaser.abort()
        raise
    if result.status is RebaseStatus.CONFLICTED:
        rebaser.abort()
        assert result.commit is not None
        raise RebaseConflict(result.commit, result.conflicts)
    assert result.new_tip is not None
    return result.new_tip
