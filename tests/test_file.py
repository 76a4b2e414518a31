# test_file.py -- Test for file.py
# Copyright (C) 2010 Google, Inc.
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

"""Tests for twig.file."""

import io
import os

from twig.file import FileLocked, GitFile, LockedFile, ensure_dir_exists

from . import TestCase


class GitFileTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self._tempdir = self.mkdtemp()
        with open(self.path("foo"), "wb") as f:
            f.write(b"foo contents")

    def path(self, filename: str) -> str:
        return os.path.join(self._tempdir, filename)

    def read(self, filename: str) -> bytes:
        with open(self.path(filename), "rb") as f:
            return f.read()

    def test_invalid(self) -> None:
        foo = self.path("foo")
        self.assertRaises(OSError, GitFile, foo, mode="r")
        self.assertRaises(OSError, GitFile, foo, mode="ab")
        self.assertRaises(OSError, GitFile, foo, mode="r+b")
        self.assertRaises(OSError, GitFile, foo, mode="w+b")
        self.assertRaises(OSError, GitFile, foo, mode="a+bU")

    def test_readonly(self) -> None:
        f = GitFile(self.path("foo"), "rb")
        self.assertIsInstance(f, io.IOBase)
        self.assertEqual(b"foo contents", f.read())
        self.assertEqual(b"", f.read())
        f.seek(4)
        self.assertEqual(b"contents", f.read())
        f.close()

    def test_default_mode(self) -> None:
        f = GitFile(self.path("foo"))
        self.assertEqual(b"foo contents", f.read())
        f.close()

    def test_write(self) -> None:
        foo = self.path("foo")
        foo_lock = f"{foo}.lock"

        self.assertFalse(os.path.exists(foo_lock))
        f = GitFile(foo, "wb")
        self.assertIsInstance(f, LockedFile)
        self.assertFalse(f.closed)
        self.assertRaises(AttributeError, getattr, f, "not_a_file_property")
        self.assertEqual(foo_lock, f.lockfilename)

        self.assertTrue(os.path.exists(foo_lock))
        f.write(b"new stuff")
        f.seek(4)
        f.write(b"contents")
        # The target is untouched until close.
        self.assertEqual(b"foo contents", self.read("foo"))
        f.close()
        self.assertTrue(f.closed)
        self.assertFalse(os.path.exists(foo_lock))
        self.assertEqual(b"new contents", self.read("foo"))

    def test_write_new_file(self) -> None:
        bar = self.path("bar")
        with GitFile(bar, "wb", fsync=False) as f:
            f.write(b"bar")
        self.assertEqual(b"bar", self.read("bar"))

    def test_write_bytes_path(self) -> None:
        foo = os.fsencode(self.path("foo"))
        with GitFile(foo, "wb") as f:
            self.assertEqual(foo + b".lock", f.lockfilename)
            self.assertEqual(foo, os.fspath(f))
            f.write(b"bytes")
        self.assertEqual(b"bytes", self.read("foo"))

    def test_open_twice(self) -> None:
        foo = self.path("foo")
        f1 = GitFile(foo, "wb")
        f1.write(b"new")
        with self.assertRaises(FileLocked) as cm:
            GitFile(foo, "wb")
        self.assertEqual(foo, cm.exception.filename)
        self.assertEqual(f"{foo}.lock", cm.exception.lockfilename)
        f1.write(b" contents")
        f1.close()

        # Ensure trying to open twice doesn't affect original.
        self.assertEqual(b"new contents", self.read("foo"))

    def test_abort(self) -> None:
        foo = self.path("foo")
        foo_lock = f"{foo}.lock"

        f = GitFile(foo, "wb")
        f.write(b"new contents")
        f.abort()
        self.assertTrue(f.closed)
        self.assertFalse(os.path.exists(foo_lock))
        self.assertEqual(b"foo contents", self.read("foo"))

    def test_abort_close(self) -> None:
        foo = self.path("foo")
        f = GitFile(foo, "wb")
        f.abort()
        f.close()

        f = GitFile(foo, "wb")
        f.close()
        f.abort()

    def test_abort_close_removed(self) -> None:
        foo = self.path("foo")
        f = GitFile(foo, "wb")
        os.remove(f"{foo}.lock")
        f.abort()
        self.assertTrue(f.closed)

    def test_context_manager_error_aborts(self) -> None:
        foo = self.path("foo")
        with self.assertRaises(RuntimeError):
            with GitFile(foo, "wb") as f:
                f.write(b"partial")
                raise RuntimeError("interrupted")
        self.assertFalse(os.path.exists(f"{foo}.lock"))
        self.assertEqual(b"foo contents", self.read("foo"))

    def test_lock_released_after_close(self) -> None:
        foo = self.path("foo")
        with GitFile(foo, "wb") as f:
            f.write(b"first")
        with GitFile(foo, "wb") as f:
            f.write(b"second")
        self.assertEqual(b"second", self.read("foo"))


class EnsureDirExistsTests(TestCase):
    def test_creates_parents(self) -> None:
        path = os.path.join(self.mkdtemp(), "a", "b")
        ensure_dir_exists(path)
        self.assertTrue(os.path.isdir(path))

    def test_existing(self) -> None:
        path = self.mkdtemp()
        ensure_dir_exists(path)
        self.assertTrue(os.path.isdir(path))
