# test_index.py -- Tests for building trees from flat path mappings
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

"""Tests for the tree building helpers."""

import stat

from twig.index import (
    DEFAULT_FILE_MODE,
    build_tree,
    build_tree_from_contents,
    commit_tree,
    flatten_tree,
    pathjoin,
    pathsplit,
    stage_contents,
    validate_path,
)
from twig.object_store import MemoryObjectStore
from twig.objects import EMPTY_TREE_SHA, Blob, Tree

from . import TestCase


class PathTests(TestCase):
    def test_pathsplit(self) -> None:
        self.assertEqual((b"", b"foo"), pathsplit(b"foo"))
        self.assertEqual((b"foo", b"bar"), pathsplit(b"foo/bar"))
        self.assertEqual((b"foo/bar", b"baz"), pathsplit(b"foo/bar/baz"))

    def test_pathjoin(self) -> None:
        self.assertEqual(b"foo/bar", pathjoin(b"foo", b"bar"))
        self.assertEqual(b"bar", pathjoin(b"", b"bar"))

    def test_validate_path(self) -> None:
        validate_path(b"a")
        validate_path(b"a/b/c.txt")
        for bad in (b"", b"/a", b"a//b", b"a/./b", b"a/../b", b"a/", b"a\0b"):
            self.assertRaises(ValueError, validate_path, bad)
        self.assertRaises(TypeError, validate_path, "a")


class CommitTreeTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryObjectStore()

    def test_single_blob(self) -> None:
        blob = Blob.from_string(b"foo")
        self.store.add_object(blob)
        rootid = commit_tree(self.store, [(b"bla", blob.id, DEFAULT_FILE_MODE)])
        self.assertEqual((DEFAULT_FILE_MODE, blob.id), self.store[rootid][b"bla"])
        self.assertEqual({rootid, blob.id}, set(self.store))

    def test_nested(self) -> None:
        blob = Blob.from_string(b"foo")
        self.store.add_object(blob)
        rootid = commit_tree(self.store, [(b"bla/bar", blob.id, DEFAULT_FILE_MODE)])
        dirid = self.store[rootid][b"bla"][1]
        self.assertEqual((stat.S_IFDIR, dirid), self.store[rootid][b"bla"])
        self.assertEqual((DEFAULT_FILE_MODE, blob.id), self.store[dirid][b"bar"])
        self.assertEqual({rootid, dirid, blob.id}, set(self.store))

    def test_empty(self) -> None:
        self.assertEqual(EMPTY_TREE_SHA, commit_tree(self.store, []))

    def test_file_and_directory(self) -> None:
        blob = Blob.from_string(b"foo")
        self.store.add_object(blob)
        self.assertRaises(
            ValueError,
            commit_tree,
            self.store,
            [(b"a", blob.id, DEFAULT_FILE_MODE), (b"a/b", blob.id, DEFAULT_FILE_MODE)],
        )
        self.assertRaises(
            ValueError,
            commit_tree,
            self.store,
            [(b"a/b", blob.id, DEFAULT_FILE_MODE), (b"a", blob.id, DEFAULT_FILE_MODE)],
        )

    def test_duplicate(self) -> None:
        blob = Blob.from_string(b"foo")
        self.assertRaises(
            ValueError,
            commit_tree,
            self.store,
            [(b"a", blob.id, DEFAULT_FILE_MODE), (b"a", blob.id, DEFAULT_FILE_MODE)],
        )


class BuildTreeTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.store = MemoryObjectStore()

    def test_stage_contents(self) -> None:
        entries = stage_contents(
            self.store, {b"a": b"one", b"b/c": (0o100755, b"two")}
        )
        self.assertEqual(
            {
                b"a": (DEFAULT_FILE_MODE, Blob.from_string(b"one").id),
                b"b/c": (0o100755, Blob.from_string(b"two").id),
            },
            entries,
        )
        self.assertEqual(b"two", self.store.get(entries[b"b/c"][1]))

    def test_build_tree_plain_ids(self) -> None:
        blob = self.store.put(b"x")
        tree_id = build_tree(self.store, {b"x": blob})
        self.assertEqual({b"x": (DEFAULT_FILE_MODE, blob)}, flatten_tree(self.store, tree_id))

    def test_order_independent(self) -> None:
        contents = {b"z": b"1", b"a/b": b"2", b"a/c": b"3", b"m": b"4"}
        t1 = build_tree_from_contents(self.store, contents)
        t2 = build_tree_from_contents(
            self.store, dict(reversed(list(contents.items())))
        )
        self.assertEqual(t1, t2)

    def test_flatten_roundtrip(self) -> None:
        contents = {b"dir/sub/file": b"deep", b"top": b"level"}
        tree_id = build_tree_from_contents(self.store, contents)
        flat = flatten_tree(self.store, tree_id)
        self.assertEqual(set(contents), set(flat))
        self.assertEqual(tree_id, build_tree(self.store, flat))
        root = self.store[tree_id]
        self.assertIsInstance(root, Tree)
        self.assertEqual(stat.S_IFDIR, root[b"dir"][0])

    def test_flatten_none(self) -> None:
        self.assertEqual({}, flatten_tree(self.store, None))

    def test_empty_contents(self) -> None:
        self.assertEqual(EMPTY_TREE_SHA, build_tree_from_contents(self.store, {}))

    def test_invalid_path(self) -> None:
        self.assertRaises(ValueError, stage_contents, self.store, {b"../x": b"1"})
