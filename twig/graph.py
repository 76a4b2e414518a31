# graph.py -- Commit creation and traversal of the commit graph
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

"""Commit creation and merge-base search following the approach of git.

Commits are addressed by id only; the graph is the parent links stored in
the commits themselves. Nothing here modifies a ref, so every traversal can
be abandoned at any point: long walks take a ``should_abort`` callable that
is polled between steps.
"""

__all__ = [
    "CommitGraph",
    "ShouldAbort",
    "WorkList",
    "check_abort",
]

import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from heapq import heappop, heappush
from typing import Generic, TypeVar

from . import log_utils
from .errors import InvalidParent, NotCommitError, NotFound, NotTreeError, OperationAborted
from .object_store import BaseObjectStore
from .objects import Commit, ObjectID, Tree, check_identity

logger = log_utils.getLogger(__name__)

T = TypeVar("T")

ShouldAbort = Callable[[], bool] | None


def check_abort(should_abort: ShouldAbort) -> None:
    """Raise OperationAborted if should_abort asks for it."""
    if should_abort is not None and should_abort():
        raise OperationAborted("traversal aborted")


# priority queue using builtin python minheap tools
# why they do not have a builtin maxheap is simply ridiculous but
# liveable with integer time stamps using negation
class WorkList(Generic[T]):
    """Priority queue for commit processing, most recent commit first."""

    def __init__(self) -> None:
        self.pq: list[tuple[int, T]] = []

    def __len__(self) -> int:
        return len(self.pq)

    def add(self, item: tuple[int, T]) -> None:
        """Add an item to the work list.

        Args:
            item: Tuple of (timestamp, commit)
        """
        dt, cmt = item
        heappush(self.pq, (-dt, cmt))

    def get(self) -> tuple[int, T] | None:
        """Get the highest priority item from the work list.

        Returns:
            Tuple of (timestamp, commit) or None if empty
        """
        if not self.pq:
            return None
        pr, cmt = heappop(self.pq)
        return -pr, cmt

    def iter(self) -> Iterator[tuple[int, T]]:
        """Iterate over items in the work list.

        Yields:
            Tuples of (timestamp, commit)
        """
        for pr, cmt in self.pq:
            yield (-pr, cmt)


def _find_lcas(
    lookup_parents: Callable[[ObjectID], list[ObjectID]],
    c1: ObjectID,
    c2s: Sequence[ObjectID],
    lookup_stamp: Callable[[ObjectID], int],
    min_stamp: int = 0,
    should_abort: ShouldAbort = None,
) -> list[ObjectID]:
    """Find lowest common ancestors between commits.

    Args:
        lookup_parents: Function to get parent commits
        c1: First commit
        c2s: List of second commits
        lookup_stamp: Function to get commit timestamp
        min_stamp: Minimum timestamp to consider
        should_abort: Polled before each commit is visited

    Returns:
        List of lowest common ancestor commit IDs, oldest first
    """
    cands = []
    cstates: dict[ObjectID, int] = {}

    # Flags to Record State
    _ANC_OF_1 = 1  # ancestor of commit 1
    _ANC_OF_2 = 2  # ancestor of commit 2
    _DNC = 4  # Do Not Consider
    _LCA = 8  # potential LCA (Lowest Common Ancestor)

    def _has_candidates(
        wlst: WorkList[ObjectID], cstates: Mapping[ObjectID, int]
    ) -> bool:
        for dt, cmt in wlst.iter():
            if cmt in cstates:
                if not ((cstates[cmt] & _DNC) == _DNC):
                    return True
        return False

    # initialize the working list states with ancestry info
    # note possibility of c1 being one of c2s should be handled
    wlst: WorkList[ObjectID] = WorkList()
    cstates[c1] = _ANC_OF_1
    wlst.add((lookup_stamp(c1), c1))

    for c2 in c2s:
        cflags = cstates.get(c2, 0)
        cstates[c2] = cflags | _ANC_OF_2
        wlst.add((lookup_stamp(c2), c2))

    # loop while at least one working list commit is still viable (not marked as _DNC)
    # adding any parents to the list in a breadth first manner
    while _has_candidates(wlst, cstates):
        check_abort(should_abort)
        result = wlst.get()
        if result is None:
            break
        dt, cmt = result
        # Look only at ANCESTRY and _DNC flags so that already
        # found _LCAs can still be marked _DNC by lower _LCAS
        cflags = cstates[cmt] & (_ANC_OF_1 | _ANC_OF_2 | _DNC)
        if cflags == (_ANC_OF_1 | _ANC_OF_2):
            # potential common ancestor if not already in candidates add it
            if not (cstates[cmt] & _LCA) == _LCA:
                cstates[cmt] = cstates[cmt] | _LCA
                cands.append((dt, cmt))
            # mark any parents of this node _DNC as all parents
            # would be one generation further removed common ancestors
            cflags = cflags | _DNC
        for pcmt in lookup_parents(cmt):
            pflags = cstates.get(pcmt, 0)
            # if this parent was already visited with no new ancestry/flag information
            # do not add it to the working list again
            if (pflags & cflags) == cflags:
                continue
            pdt = lookup_stamp(pcmt)
            if pdt < min_stamp:
                continue
            cstates[pcmt] = pflags | cflags
            wlst.add((pdt, pcmt))

    # walk final candidates removing any superseded by _DNC by later lower _LCAs
    # remove any duplicates and sort it so that earliest is first
    results = []
    for dt, cmt in cands:
        if not ((cstates[cmt] & _DNC) == _DNC) and (dt, cmt) not in results:
            results.append((dt, cmt))
    results.sort(key=lambda x: x[0])
    return [cmt for dt, cmt in results]


# Number of parsed commits kept in memory by each CommitGraph.
DEFAULT_COMMIT_CACHE_SIZE = 10000


class CommitGraph:
    """The parent DAG formed by the commits in an object store."""

    def __init__(
        self,
        object_store: BaseObjectStore,
        cache_size: int = DEFAULT_COMMIT_CACHE_SIZE,
    ) -> None:
        """Create a view of the commit graph in object_store.

        Args:
          object_store: Store commits are read from and written to
          cache_size: Maximum number of parsed commits to keep; the least
            recently used is dropped first
        """
        self.object_store = object_store
        self._cache_size = cache_size
        self._cache: dict[ObjectID, Commit] = {}

    def get_commit(self, sha: ObjectID) -> Commit:
        """Return the commit with the given id.

        Raises:
          NotFound: if there is no such object
          NotCommitError: if the object is not a commit
        """
        try:
            # Re-insert so dict order runs from least to most recently used.
            obj = self._cache.pop(sha)
        except KeyError:
            found = self.object_store[sha]
            if not isinstance(found, Commit):
                raise NotCommitError(sha)
            obj = found
            while self._cache and len(self._cache) >= self._cache_size:
                del self._cache[next(iter(self._cache))]
        if self._cache_size > 0:
            self._cache[sha] = obj
        return obj

    def get_parents(self, sha: ObjectID) -> list[ObjectID]:
        """Return the parents of a commit, in order."""
        return self.get_commit(sha).parents

    def _commit_time(self, sha: ObjectID) -> int:
        return self.get_commit(sha).commit_time

    def commit(
        self,
        tree: ObjectID,
        parents: Sequence[ObjectID],
        message: bytes,
        author: bytes,
        committer: bytes | None = None,
        author_time: int | None = None,
        commit_time: int | None = None,
        author_timezone: int = 0,
        commit_timezone: int | None = None,
        encoding: bytes | None = None,
    ) -> ObjectID:
        """Create and store a new commit.

        Args:
          tree: id of the tree the commit records
          parents: ids of the parent commits, in order
          message: Commit message
          author: Author identity, b"Name <email>"
          committer: Committer identity (defaults to author)
          author_time: Author timestamp (defaults to now)
          commit_time: Commit timestamp (defaults to author_time)
          author_timezone: Author timezone, in seconds east of UTC
          commit_timezone: Commit timezone (defaults to author_timezone)
          encoding: Encoding of the message, if not UTF-8
        Returns: id of the new commit

        Raises:
          NotFound: if the tree does not exist
          NotTreeError: if tree is not a tree
          InvalidParent: if a parent does not resolve to a commit
          ObjectFormatException: if an identity is malformed
        """
        obj = self.object_store[tree]
        if not isinstance(obj, Tree):
            raise NotTreeError(tree)
        for parent in parents:
            try:
                self.get_commit(parent)
            except NotFound as exc:
                raise InvalidParent(parent, "no such commit") from exc
            except NotCommitError as exc:
                raise InvalidParent(parent, "not a commit") from exc
        if committer is None:
            committer = author
        check_identity(author, "invalid author")
        check_identity(committer, "invalid committer")
        if author_time is None:
            author_time = int(time.time())
        if commit_time is None:
            commit_time = author_time
        if commit_timezone is None:
            commit_timezone = author_timezone

        c = Commit(self.object_store.object_format)
        c.tree = tree
        c.parents = list(parents)
        c.author = author
        c.committer = committer
        c.author_time = author_time
        c.commit_time = commit_time
        c.author_timezone = author_timezone
        c.commit_timezone = commit_timezone
        c.encoding = encoding
        c.message = message
        self.object_store.add_object(c)
        logger.debug("Created commit %s with parents %r", c.id, list(parents))
        return c.id

    def merge_bases(
        self, a: ObjectID, b: ObjectID, should_abort: ShouldAbort = None
    ) -> list[ObjectID]:
        """Find all lowest common ancestors of two commits.

        Returns: list of commit ids, oldest first; empty if the histories
          are unrelated
        """
        if a == b:
            return [a]
        return _find_lcas(
            self.get_parents, a, [b], self._commit_time, should_abort=should_abort
        )

    def merge_base(
        self, a: ObjectID, b: ObjectID, should_abort: ShouldAbort = None
    ) -> ObjectID | None:
        """Find the single best common ancestor of two commits.

        When there are several lowest common ancestors (criss-cross merges)
        the one with the most recent commit time is chosen; equal times are
        decided by the smallest id.

        Returns: commit id, or None if the histories are unrelated
        """
        lcas = self.merge_bases(a, b, should_abort=should_abort)
        if not lcas:
            return None
        return min(lcas, key=lambda sha: (-self._commit_time(sha), sha))

    def is_ancestor(
        self, a: ObjectID, b: ObjectID, should_abort: ShouldAbort = None
    ) -> bool:
        """Check whether a is reachable from b.

        A commit is its own ancestor.
        """
        if a == b:
            return True
        self.get_commit(a)
        for sha in self.iter_ancestors(b, should_abort=should_abort):
            if sha == a:
                return True
        return False

    def can_fast_forward(
        self, c1: ObjectID, c2: ObjectID, should_abort: ShouldAbort = None
    ) -> bool:
        """Is it possible to fast-forward from c1 to c2?"""
        return self.is_ancestor(c1, c2, should_abort=should_abort)

    def independent(
        self, commit_ids: Sequence[ObjectID], should_abort: ShouldAbort = None
    ) -> list[ObjectID]:
        """Filter commits to only those that are not reachable from others.

        Args:
          commit_ids: list of commit ids to filter
          should_abort: Polled between steps

        Returns:
          commit ids that are not ancestors of any other commit in the list
        """
        unique = list(dict.fromkeys(commit_ids))
        independent_commits = []
        for i, commit_id in enumerate(unique):
            for j, other_id in enumerate(unique):
                if i == j:
                    continue
                if self.is_ancestor(commit_id, other_id, should_abort=should_abort):
                    break
            else:
                independent_commits.append(commit_id)
        return independent_commits

    def iter_ancestors(
        self, *tips: ObjectID, should_abort: ShouldAbort = None
    ) -> Iterator[ObjectID]:
        """Walk every commit reachable from tips, most recent first.

        Yields: commit ids, each exactly once
        """
        seen: set[ObjectID] = set()
        wlst: WorkList[ObjectID] = WorkList()
        for tip in tips:
            if tip not in seen:
                seen.add(tip)
                wlst.add((self._commit_time(tip), tip))
        while len(wlst):
            check_abort(should_abort)
            item = wlst.get()
            assert item is not None
            _dt, cmt = item
            yield cmt
            for parent in self.get_parents(cmt):
                if parent not in seen:
                    seen.add(parent)
                    wlst.add((self._commit_time(parent), parent))

    def commits_between(
        self,
        exclude: ObjectID | Sequence[ObjectID] | None,
        tip: ObjectID,
        should_abort: ShouldAbort = None,
    ) -> list[ObjectID]:
        """List commits reachable from tip but not from exclude.

        Args:
          exclude: Commit (or commits) whose history is left out; None to
            include the whole history of tip
          tip: Commit to start from
          should_abort: Polled between steps
        Returns: commit ids in topological order, parents before children
        """
        if exclude is None:
            excluded: set[ObjectID] = set()
        else:
            if isinstance(exclude, bytes):
                exclude = [exclude]
            excluded = set(self.iter_ancestors(*exclude, should_abort=should_abort))

        order: list[ObjectID] = []
        visited: set[ObjectID] = set()
        stack: list[tuple[ObjectID, bool]] = [(tip, False)]
        while stack:
            check_abort(should_abort)
            sha, expanded = stack.pop()
            if expanded:
                order.append(sha)
                continue
            if sha in visited or sha in excluded:
                continue
            visited.add(sha)
            stack.append((sha, True))
            for parent in reversed(self.get_parents(sha)):
                if parent not in visited and parent not in excluded:
                    stack.append((parent, False))
        return order
