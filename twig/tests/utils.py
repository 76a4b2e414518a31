# utils.py -- Test utilities for twig.
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

"""Utility functions common to twig tests."""

__all__ = [
    "F",
    "TEST_IDENTITY",
    "build_commit_graph",
    "commit_files",
    "make_commit",
    "make_object",
]

import datetime
import time
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, TypeVar

from twig.index import ContentValue, build_tree_from_contents, commit_tree
from twig.object_store import BaseObjectStore
from twig.objects import Blob, Commit, ObjectID, ShaFile
from twig.refs import HEADREF

# Plain files are very frequently used in tests, so let the mode be very short.
F = 0o100644  # Shorthand mode for Files.

TEST_IDENTITY = b"Test Author <test@nodomain.com>"

T = TypeVar("T", bound=ShaFile)


def make_object(cls: type[T], **attrs: Any) -> T:  # noqa: ANN401
    """Make an object for testing and assign some members.

    This method creates a new subclass to allow arbitrary attribute
    reassignment, which is not otherwise possible with objects having
    __slots__.

    Args:
      cls: The class of the object to create
      attrs: dict of attributes to set on the new object.
    Returns: A newly initialized object of type cls.
    """

    class TestObject(cls):  # type: ignore[valid-type,misc]
        """Class that inherits from the given class, but without __slots__.

        Note that classes with __slots__ can't have arbitrary attributes
        monkey-patched in, so this is a class that is exactly the same only
        with a __dict__ instead of __slots__.
        """

    TestObject.__name__ = "TestObject_" + cls.__name__

    obj = TestObject()
    for name, value in attrs.items():
        setattr(obj, name, value)
    return obj


def make_commit(**attrs: Any) -> Commit:  # noqa: ANN401
    """Make a Commit object with a default set of members.

    Args:
      attrs: dict of attributes to overwrite from the default values.
    Returns: A newly initialized Commit object.
    """
    default_time = int(time.mktime(datetime.datetime(2010, 1, 1).timetuple()))
    all_attrs = {
        "author": TEST_IDENTITY,
        "author_time": default_time,
        "author_timezone": 0,
        "committer": b"Test Committer <test@nodomain.com>",
        "commit_time": default_time,
        "commit_timezone": 0,
        "message": b"Test message.",
        "parents": [],
        "tree": b"0" * 40,
    }
    all_attrs.update(attrs)
    return make_object(Commit, **all_attrs)


def build_commit_graph(
    object_store: BaseObjectStore,
    commit_spec: Iterable[Sequence[int]],
    trees: Mapping[int, Iterable[tuple[Any, ...]]] | None = None,
    attrs: Mapping[int, Mapping[str, Any]] | None = None,
) -> list[Commit]:
    """Build a commit graph from a concise specification.

    Sample usage:
    >>> c1, c2, c3 = build_commit_graph(store, [[1], [2, 1], [3, 1, 2]])
    >>> store[store[c3].parents[0]] == c1
    True
    >>> store[store[c3].parents[1]] == c2
    True

    If not otherwise specified, commits will refer to the empty tree and have
    commit times increasing in the same order as the commit spec.

    Args:
      object_store: An ObjectStore to commit objects to.
      commit_spec: An iterable of iterables of ints defining the commit
        graph. Each entry defines one commit, and entries must be in
        topological order. The first element of each entry is a commit number,
        and the remaining elements are its parents. The commit numbers are only
        meaningful for the call to make_commits; since real commit objects are
        created, they will get created with real, opaque ids.
      trees: An optional dict of commit number -> tree spec for building
        trees for commits. The tree spec is an iterable of (path, blob, mode)
        or (path, blob) entries; if mode is omitted, it defaults to the normal
        file mode (0100644).
      attrs: A dict of commit number -> (dict of attribute -> value) for
        assigning additional values to the commits.
    Returns: The list of commit objects created.

    Raises:
      ValueError: If an undefined commit identifier is listed as a parent.
    """
    if trees is None:
        trees = {}
    if attrs is None:
        attrs = {}
    commit_time = 0
    nums: dict[int, ObjectID] = {}
    commits = []

    for commit in commit_spec:
        commit_num = commit[0]
        try:
            parent_ids = [nums[pn] for pn in commit[1:]]
        except KeyError as exc:
            (missing_parent,) = exc.args
            raise ValueError(f"Unknown parent {missing_parent}") from exc

        blobs = []
        for entry in trees.get(commit_num, []):
            if len(entry) == 2:
                path, blob = entry
                entry = (path, blob, F)
            path, blob, mode = entry
            if isinstance(blob, bytes):
                blob = Blob.from_string(blob, object_store.object_format)
            blobs.append((path, blob.id, mode))
            object_store.add_object(blob)
        tree_id = commit_tree(object_store, blobs)

        commit_attrs = {
            "message": b"Commit " + str(commit_num).encode("ascii"),
            "parents": parent_ids,
            "tree": tree_id,
            "commit_time": commit_time,
        }
        commit_attrs.update(attrs.get(commit_num, {}))
        commit_obj = make_commit(**commit_attrs)

        # By default, increment the time by a lot. Out-of-order commits should
        # be closer together than this because their main cause is clock skew.
        commit_time = commit_attrs["commit_time"] + 100
        nums[commit_num] = commit_obj.id
        object_store.add_object(commit_obj)
        commits.append(commit_obj)

    return commits


def commit_files(
    repo: Any,  # noqa: ANN401
    contents: Mapping[bytes, ContentValue],
    message: bytes = b"Test commit",
    ref: bytes | None = HEADREF,
    parents: list[ObjectID] | None = None,
    commit_time: int = 1000000,
) -> ObjectID:
    """Commit a complete set of file contents to a repository.

    Args:
      repo: Repository to commit in
      contents: The whole tree, as path -> content or (mode, content)
      message: Commit message
      ref: Ref to move; None for a dangling commit
      parents: Explicit parents (defaults to the current value of ref)
      commit_time: Commit and author time
    Returns: id of the new commit
    """
    tree_id = build_tree_from_contents(repo.object_store, contents)
    return repo.do_commit(
        message,
        tree=tree_id,
        ref=ref,
        author=TEST_IDENTITY,
        committer=TEST_IDENTITY,
        commit_time=commit_time,
        parents=parents,
    )
