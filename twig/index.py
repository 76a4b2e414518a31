# index.py -- Building trees from flat path mappings
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

"""Building nested trees from flat path mappings, and back.

A working-directory synchronizer hands over a flat ``path -> content``
mapping; the functions here store that as blobs and the minimal set of
nested trees. Tree entries are always serialized in canonical order, so
the resulting root id does not depend on the order of the input.
"""

__all__ = [
    "build_tree",
    "build_tree_from_contents",
    "commit_tree",
    "flatten_tree",
    "stage_contents",
    "validate_path",
]

import stat
from collections.abc import Iterable, Mapping
from typing import Any

from .object_store import BaseObjectStore, iter_tree_contents
from .objects import Blob, ObjectID, Tree, check_tree_name

DEFAULT_FILE_MODE = stat.S_IFREG | 0o644

EntryValue = ObjectID | tuple[int, ObjectID]
ContentValue = bytes | tuple[int, bytes]


def pathsplit(path: bytes) -> tuple[bytes, bytes]:
    """Split a /-delimited path into a directory part and a basename.

    Args:
      path: The path to split.

    Returns:
      Tuple with directory name and basename
    """
    try:
        (dirname, basename) = path.rsplit(b"/", 1)
    except ValueError:
        return (b"", path)
    else:
        return (dirname, basename)


def pathjoin(*args: bytes) -> bytes:
    """Join a /-delimited path."""
    return b"/".join([p for p in args if p])


def validate_path(path: bytes) -> None:
    """Check that path can be stored in a tree.

    Raises:
      ValueError: if the path is empty or absolute, or has an empty, ``.`` or
        ``..`` component
    """
    if not isinstance(path, bytes):
        raise TypeError(f"Expected bytes for path, got {path!r}")
    if not path:
        raise ValueError("empty path")
    if path.startswith(b"/"):
        raise ValueError(f"absolute path {path!r}")
    for part in path.split(b"/"):
        try:
            check_tree_name(part)
        except ValueError as exc:
            raise ValueError(f"invalid path {path!r}: {exc}") from None


def commit_tree(
    object_store: BaseObjectStore, blobs: Iterable[tuple[bytes, ObjectID, int]]
) -> ObjectID:
    """Write a new tree hierarchy.

    Args:
      object_store: Object store to add trees to
      blobs: Iterable over blob path, sha, mode entries
    Returns:
      id of the created root tree.

    Raises:
      ValueError: if a path is invalid, appears twice, or is both a file
        and the directory of another path
    """
    trees: dict[bytes, Any] = {b"": {}}

    def add_tree(path: bytes) -> dict[bytes, Any]:
        if path in trees:
            return trees[path]
        dirname, basename = pathsplit(path)
        t = add_tree(dirname)
        if basename in t:
            raise ValueError(f"{path!r} is both a file and a directory")
        newtree: dict[bytes, Any] = {}
        t[basename] = newtree
        trees[path] = newtree
        return newtree

    for path, sha, mode in blobs:
        validate_path(path)
        tree_path, basename = pathsplit(path)
        tree = add_tree(tree_path)
        if basename in tree:
            if isinstance(tree[basename], dict):
                raise ValueError(f"{path!r} is both a file and a directory")
            raise ValueError(f"duplicate path {path!r}")
        tree[basename] = (mode, sha)

    def build_tree(path: bytes) -> ObjectID:
        tree = Tree(object_store.object_format)
        for basename, entry in trees[path].items():
            if isinstance(entry, dict):
                mode = stat.S_IFDIR
                sha = build_tree(pathjoin(path, basename))
            else:
                (mode, sha) = entry
            tree.add(basename, mode, sha)
        object_store.add_object(tree)
        return tree.id

    return build_tree(b"")


def build_tree(
    object_store: BaseObjectStore, entries: Mapping[bytes, EntryValue]
) -> ObjectID:
    """Build the nested trees for a flat path mapping.

    Args:
      object_store: Object store to add trees to
      entries: Mapping of path to an id, or to a (mode, id) tuple. Plain ids
        are stored as regular files.
    Returns: id of the root tree; the empty tree for an empty mapping
    """
    blobs = []
    for path, value in entries.items():
        if isinstance(value, tuple):
            mode, sha = value
        else:
            mode, sha = DEFAULT_FILE_MODE, value
        blobs.append((path, sha, mode))
    return commit_tree(object_store, blobs)


def stage_contents(
    object_store: BaseObjectStore, contents: Mapping[bytes, ContentValue]
) -> dict[bytes, tuple[int, ObjectID]]:
    """Store file contents as blobs.

    Args:
      object_store: Object store to add blobs to
      contents: Mapping of path to file content, or to (mode, content)
    Returns: Mapping of path to (mode, blob id), suitable for build_tree
    """
    ret = {}
    for path, value in contents.items():
        validate_path(path)
        if isinstance(value, tuple):
            mode, data = value
        else:
            mode, data = DEFAULT_FILE_MODE, value
        blob = Blob.from_string(data, object_store.object_format)
        object_store.add_object(blob)
        ret[path] = (mode, blob.id)
    return ret


def build_tree_from_contents(
    object_store: BaseObjectStore, contents: Mapping[bytes, ContentValue]
) -> ObjectID:
    """Store file contents and the trees that hold them.

    Returns: id of the root tree
    """
    return build_tree(object_store, stage_contents(object_store, contents))


def flatten_tree(
    object_store: BaseObjectStore, tree_id: ObjectID | None
) -> dict[bytes, tuple[int, ObjectID]]:
    """Return the flat path mapping of a tree.

    Only leaves are included; directories are implied by the paths.

    Args:
      object_store: Object store to read trees from
      tree_id: id of the root tree, or None for an empty mapping
    Returns: Mapping of path to (mode, sha)
    """
    return {
        entry.path: (entry.mode, entry.sha)
        for entry in iter_tree_contents(object_store, tree_id)
    }
