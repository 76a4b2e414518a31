# test_repository.py -- tests for repository.py
# Copyright (C) 2007 James Westby <jw+debian@jameswestby.net>
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

"""Tests for the repository."""

import os

from twig.config import ConfigFile
from twig.errors import (
    NoSuchRef,
    NotCommitError,
    NotFound,
    RefChanged,
    RefFormatError,
)
from twig.objects import EMPTY_TREE_SHA, Commit, Tag
from twig.repo import (
    InvalidUserIdentity,
    MemoryRepo,
    NotTwigRepository,
    Repo,
    UnsupportedExtension,
    UnsupportedVersion,
    check_user_identity,
    get_user_identity,
)
from twig.tests.utils import TEST_IDENTITY, commit_files

from . import TestCase


class IdentityTests(TestCase):
    def test_check_user_identity(self) -> None:
        check_user_identity(b"Me <me@example.com>")
        for bad in (
            b"Me",
            b"Me <me@example.com",
            b"<me@example.com>",
            b"Me <me<@example.com>",
            b"Me <me@example.com>\n",
        ):
            self.assertRaises(InvalidUserIdentity, check_user_identity, bad)

    def test_from_environment(self) -> None:
        self.overrideEnv("TWIG_COMMITTER_NAME", "Env Committer")
        self.overrideEnv("TWIG_COMMITTER_EMAIL", "env@example.com")
        self.assertEqual(
            b"Env Committer <env@example.com>",
            get_user_identity(ConfigFile(), kind="COMMITTER"),
        )

    def test_from_config(self) -> None:
        config = ConfigFile()
        config.set(("user",), "name", "Config User")
        config.set(("user",), "email", "<config@example.com>")
        self.assertEqual(
            b"Config User <config@example.com>", get_user_identity(config)
        )

    def test_environment_overrides_config(self) -> None:
        self.overrideEnv("TWIG_AUTHOR_NAME", "Env Author")
        config = ConfigFile()
        config.set(("user",), "name", "Config User")
        config.set(("user",), "email", "config@example.com")
        self.assertEqual(
            b"Env Author <config@example.com>",
            get_user_identity(config, kind="AUTHOR"),
        )
        self.assertEqual(
            b"Config User <config@example.com>",
            get_user_identity(config, kind="COMMITTER"),
        )

    def test_invalid_identity(self) -> None:
        config = ConfigFile()
        config.set(("user",), "name", "Bad <Name>")
        config.set(("user",), "email", "bad@example.com")
        self.assertRaises(InvalidUserIdentity, get_user_identity, config)


class CommitTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = MemoryRepo()

    def commit(self, message: bytes = b"Test commit", **kwargs) -> bytes:
        kwargs.setdefault("author", TEST_IDENTITY)
        kwargs.setdefault("committer", TEST_IDENTITY)
        kwargs.setdefault("commit_time", 1000)
        return self.repo.do_commit(message, **kwargs)

    def test_unborn(self) -> None:
        self.assertRaises(NoSuchRef, self.repo.head)
        self.assertEqual(b"master", self.repo.active_branch())
        self.assertEqual([], self.repo.list_branches())

    def test_initial_commit(self) -> None:
        c1 = self.commit(b"Initial\n\nWith a body\n")
        self.assertEqual(c1, self.repo.head())
        commit = self.repo[c1]
        self.assertIsInstance(commit, Commit)
        self.assertEqual([], commit.parents)
        self.assertEqual(EMPTY_TREE_SHA, commit.tree)
        self.assertEqual(1000, commit.author_time)
        [entry] = self.repo.get_reflog()
        self.assertEqual(b"commit (initial): Initial", entry.message)
        self.assertEqual((b"0" * 40, c1), (entry.old_sha, entry.new_sha))
        self.assertEqual(TEST_IDENTITY, entry.committer)
        self.assertEqual(1000, entry.timestamp)
        self.assertEqual([entry], self.repo.get_reflog(b"master"))

    def test_second_commit_keeps_tree(self) -> None:
        c1 = commit_files(self.repo, {b"a": b"1"})
        c2 = self.commit(b"Second")
        self.assertEqual([c1], self.repo[c2].parents)
        self.assertEqual(self.repo[c1].tree, self.repo[c2].tree)
        self.assertEqual(b"commit", self.repo.get_reflog()[0].operation)

    def test_merge_heads(self) -> None:
        c1 = self.commit(b"One")
        c2 = self.commit(b"Two", ref=b"refs/heads/other", parents=[])
        merge_id = self.commit(b"Merge", merge_heads=[c2])
        self.assertEqual([c1, c2], self.repo[merge_id].parents)
        self.assertEqual(b"commit (merge)", self.repo.get_reflog()[0].operation)

    def test_dangling(self) -> None:
        c1 = self.commit(b"One")
        c2 = self.commit(b"Dangling", ref=None, parents=[c1])
        self.assertEqual(c1, self.repo.head())
        self.assertIn(c2, self.repo)
        self.assertEqual([c1], self.repo[c2].parents)
        self.assertEqual(1, len(self.repo.get_reflog()))

    def test_stale_parents(self) -> None:
        c1 = self.commit(b"One")
        c2 = self.commit(b"Two")
        self.assertRaises(RefChanged, self.commit, b"Stale", parents=[c1])
        self.assertEqual(c2, self.repo.head())

    def test_invalid_author(self) -> None:
        self.assertRaises(InvalidUserIdentity, self.commit, author=b"no email")
        self.assertRaises(NoSuchRef, self.repo.head)

    def test_identity_from_environment(self) -> None:
        self.overrideEnv("TWIG_COMMITTER_NAME", "Env Committer")
        self.overrideEnv("TWIG_COMMITTER_EMAIL", "env@example.com")
        self.overrideEnv("TWIG_AUTHOR_NAME", "Env Author")
        self.overrideEnv("TWIG_AUTHOR_EMAIL", "author@example.com")
        c1 = self.repo.do_commit(b"Env", commit_time=1)
        commit = self.repo[c1]
        self.assertEqual(b"Env Committer <env@example.com>", commit.committer)
        self.assertEqual(b"Env Author <author@example.com>", commit.author)
        self.assertEqual(commit.committer, self.repo.get_reflog()[0].committer)

    def test_sha256(self) -> None:
        repo = MemoryRepo(object_format="sha256")
        c1 = commit_files(repo, {b"a": b"1"})
        self.assertEqual(64, len(c1))
        self.assertEqual(b"0" * 64, repo.get_reflog()[0].old_sha)
        self.assertEqual(c1, repo.resolve_commit(c1[:8]))

    def test_sha256_branch_delete_logs_zero_id(self) -> None:
        repo = MemoryRepo(object_format="sha256")
        c1 = commit_files(repo, {b"a": b"1"})
        repo.create_branch(b"topic")
        repo.delete_branch(b"topic")
        entry = repo.get_reflog(b"topic")[0]
        self.assertEqual(
            (c1, repo.object_format.zero_sha), (entry.old_sha, entry.new_sha)
        )

    def test_default_branch(self) -> None:
        repo = MemoryRepo(default_branch=b"main")
        commit_files(repo, {b"a": b"1"})
        self.assertEqual([b"main"], repo.list_branches())


class BranchTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = MemoryRepo()
        self.c1 = commit_files(self.repo, {b"a": b"1"})
        self.c2 = commit_files(self.repo, {b"a": b"2"})

    def test_create_branch(self) -> None:
        self.assertEqual(self.c2, self.repo.create_branch(b"topic"))
        self.assertEqual(self.c2, self.repo.refs[b"refs/heads/topic"])
        [entry] = self.repo.get_reflog(b"topic")
        self.assertEqual(b"branch: Created from HEAD", entry.message)
        self.assertEqual([b"master", b"topic"], self.repo.list_branches())

    def test_create_existing_branch(self) -> None:
        self.repo.create_branch(b"topic", self.c1)
        self.assertRaises(RefChanged, self.repo.create_branch, b"topic")
        self.assertEqual(self.c1, self.repo.refs[b"refs/heads/topic"])
        self.repo.create_branch(b"topic", force=True)
        self.assertEqual(self.c2, self.repo.refs[b"refs/heads/topic"])

    def test_create_branch_invalid_name(self) -> None:
        self.assertRaises(RefFormatError, self.repo.create_branch, b"bad..name")
        self.assertNotIn(b"bad..name", self.repo.list_branches())

    def test_delete_branch(self) -> None:
        self.repo.create_branch(b"topic", self.c1)
        self.repo.delete_branch(b"topic")
        self.assertEqual([b"master"], self.repo.list_branches())
        [entry, _] = self.repo.get_reflog(b"refs/heads/topic")
        self.assertEqual(b"branch: deleted", entry.message)
        self.assertRaises(NoSuchRef, self.repo.delete_branch, b"topic")

    def test_delete_current_branch(self) -> None:
        self.assertRaises(ValueError, self.repo.delete_branch, b"master")
        self.assertEqual(self.c2, self.repo.head())

    def test_recoverable_after_delete(self) -> None:
        self.repo.create_branch(b"topic", self.c1)
        lost = commit_files(self.repo, {b"lost": b"x"}, ref=b"refs/heads/topic")
        self.repo.delete_branch(b"topic")
        self.assertNotIn(lost, self.repo.get_refs().values())
        self.assertIn(lost, self.repo.recoverable())
        self.assertIn(lost, self.repo.object_store)

    def test_set_head(self) -> None:
        self.repo.create_branch(b"topic", self.c1)
        self.repo.set_head(b"topic")
        self.assertEqual(b"topic", self.repo.active_branch())
        self.assertEqual(self.c1, self.repo.head())
        [entry, *_] = self.repo.get_reflog()
        self.assertEqual((self.c2, self.c1), (entry.old_sha, entry.new_sha))
        self.assertEqual(b"checkout", entry.operation)
        self.assertRaises(NoSuchRef, self.repo.set_head, b"missing")
        self.assertEqual(b"topic", self.repo.active_branch())

    def test_detach_head(self) -> None:
        self.assertEqual(self.c1, self.repo.detach_head(self.c1))
        self.assertIsNone(self.repo.active_branch())
        self.assertEqual(self.c1, self.repo.refs.read_ref(b"HEAD"))
        self.assertEqual(self.c2, self.repo.refs[b"refs/heads/master"])
        c3 = commit_files(self.repo, {b"a": b"3"})
        self.assertEqual(c3, self.repo.head())
        self.assertEqual(self.c2, self.repo.refs[b"refs/heads/master"])

    def test_reflog_records_every_move(self) -> None:
        self.repo.refs.update(
            b"refs/heads/master", self.c2, self.c1, op=b"reset", message=b"back"
        )
        c3 = commit_files(self.repo, {b"a": b"3"})
        self.assertEqual(
            [self.c1, self.c2, self.c1, c3],
            self.repo.reflog.values(b"refs/heads/master"),
        )
        self.assertEqual(
            [b"commit", b"reset", b"commit", b"commit (initial)"],
            [e.operation for e in self.repo.get_reflog(b"master")],
        )


class TagTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = MemoryRepo()
        self.c1 = commit_files(self.repo, {b"a": b"1"})

    def test_lightweight(self) -> None:
        self.assertEqual(self.c1, self.repo.create_tag(b"light"))
        self.assertEqual(self.c1, self.repo.refs[b"refs/tags/light"])
        self.assertEqual([b"light"], self.repo.list_tags())
        self.assertEqual(b"tag", self.repo.get_reflog(b"refs/tags/light")[0].operation)

    def test_annotated(self) -> None:
        tag_id = self.repo.create_tag(
            b"v1.0", message=b"Release\n", tagger=TEST_IDENTITY, tag_time=42
        )
        tag = self.repo[tag_id]
        self.assertIsInstance(tag, Tag)
        self.assertEqual((Commit, self.c1), tag.object)
        self.assertEqual(b"v1.0", tag.name)
        self.assertEqual(42, tag.tag_time)
        self.assertEqual(tag_id, self.repo.refs[b"refs/tags/v1.0"])
        self.assertEqual(self.c1, self.repo.resolve_commit(b"v1.0"))

    def test_existing(self) -> None:
        self.repo.create_tag(b"v1")
        c2 = commit_files(self.repo, {b"a": b"2"})
        self.assertRaises(RefChanged, self.repo.create_tag, b"v1", c2)
        self.assertEqual(self.c1, self.repo.refs[b"refs/tags/v1"])


class ResolveTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.repo = MemoryRepo()
        self.c1 = commit_files(self.repo, {b"a": b"1"})
        self.c2 = commit_files(self.repo, {b"a": b"2"})

    def test_full_id(self) -> None:
        self.assertEqual(self.c1, self.repo.resolve_commit(self.c1))
        self.assertEqual(self.c1, self.repo.resolve_commit(self.c1.decode("ascii")))

    def test_refs(self) -> None:
        self.assertEqual(self.c2, self.repo.resolve_commit(b"HEAD"))
        self.assertEqual(self.c2, self.repo.resolve_commit(b"master"))
        self.assertEqual(self.c2, self.repo.resolve_commit(b"heads/master"))
        self.assertEqual(self.c2, self.repo.resolve_commit(b"refs/heads/master"))

    def test_tag_before_branch(self) -> None:
        self.repo.create_tag(b"both", self.c1)
        self.repo.create_branch(b"both", self.c2)
        self.assertEqual(self.c1, self.repo.resolve_commit(b"both"))

    def test_abbreviated(self) -> None:
        self.assertEqual(self.c1, self.repo.resolve_commit(self.c1[:10]))
        self.assertRaises(NotFound, self.repo.resolve_commit, self.c1[:3])

    def test_reflog_spec(self) -> None:
        self.assertEqual(self.c2, self.repo.resolve_commit(b"HEAD@{0}"))
        self.assertEqual(self.c1, self.repo.resolve_commit(b"master@{1}"))
        self.assertEqual(self.c1, self.repo.resolve_commit(b"@{1}"))
        self.assertRaises(NoSuchRef, self.repo.resolve_commit, b"master@{5}")

    def test_not_a_commit(self) -> None:
        tree_id = self.repo[self.c1].tree
        self.assertRaises(NotCommitError, self.repo.resolve_commit, tree_id)

    def test_unknown(self) -> None:
        self.assertRaises(NotFound, self.repo.resolve_commit, b"nosuchthing")
        self.assertRaises(KeyError, self.repo.resolve_commit, b"0" * 40)

    def test_getitem(self) -> None:
        self.assertEqual(self.c2, self.repo[b"HEAD"].id)
        self.assertEqual(self.c1, self.repo[self.c1].id)
        self.assertRaises(KeyError, self.repo.__getitem__, b"refs/heads/missing")
        self.assertRaises(TypeError, self.repo.__getitem__, "HEAD")

    def test_contains(self) -> None:
        self.assertIn(self.c1, self.repo)
        self.assertIn(b"refs/heads/master", self.repo)
        self.assertNotIn(b"refs/heads/missing", self.repo)


class DiskRepoTests(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.path = os.path.join(self.mkdtemp(), "repo.twig")

    def test_init_layout(self) -> None:
        repo = Repo.init(self.path, mkdir=True)
        self.addCleanup(repo.close)
        for d in ("objects", "refs", "refs/heads", "refs/tags", "logs"):
            self.assertTrue(os.path.isdir(os.path.join(self.path, d)), d)
        with open(os.path.join(self.path, "HEAD"), "rb") as f:
            self.assertEqual(b"ref: refs/heads/master\n", f.read())
        config = ConfigFile.from_path(os.path.join(self.path, "config"))
        self.assertEqual(0, config.get_int("core", "repositoryformatversion"))
        self.assertTrue(config.get_boolean("core", "bare"))
        self.assertEqual("sha1", repo.object_format.name)

    def test_not_a_repository(self) -> None:
        os.mkdir(self.path)
        self.assertRaises(NotTwigRepository, Repo, self.path)

    def test_reopen(self) -> None:
        with Repo.init(self.path, mkdir=True) as repo:
            c1 = commit_files(repo, {b"dir/file": b"content\n"})
            repo.create_branch(b"topic")
        with Repo(self.path) as repo:
            self.assertEqual(c1, repo.head())
            self.assertEqual([b"master", b"topic"], repo.list_branches())
            self.assertEqual(2, len(repo.get_reflog()) + len(repo.get_reflog(b"topic")))
            tree = repo[repo[c1].tree]
            self.assertIn(b"dir", tree)

    def test_commit_race_between_instances(self) -> None:
        with Repo.init(self.path, mkdir=True) as repo:
            c1 = commit_files(repo, {b"a": b"1"})
        one = Repo(self.path)
        self.addCleanup(one.close)
        two = Repo(self.path)
        self.addCleanup(two.close)
        c2 = commit_files(one, {b"a": b"2"}, parents=[c1])
        self.assertRaises(
            RefChanged, commit_files, two, {b"a": b"3"}, parents=[c1]
        )
        self.assertEqual(c2, two.head())

    def test_missing_config(self) -> None:
        Repo.init(self.path, mkdir=True).close()
        os.remove(os.path.join(self.path, "config"))
        with Repo(self.path) as repo:
            self.assertEqual("sha1", repo.object_format.name)

    def test_unsupported_version(self) -> None:
        Repo.init(self.path, mkdir=True).close()
        config_path = os.path.join(self.path, "config")
        config = ConfigFile.from_path(config_path)
        config.set("core", "repositoryformatversion", 2)
        config.write_to_path()
        with self.assertRaises(UnsupportedVersion) as cm:
            Repo(self.path)
        self.assertEqual(2, cm.exception.version)

    def test_unsupported_extension(self) -> None:
        Repo.init(self.path, mkdir=True).close()
        config_path = os.path.join(self.path, "config")
        config = ConfigFile.from_path(config_path)
        config.set("core", "repositoryformatversion", 1)
        config.set("extensions", "worktreeConfig", True)
        config.write_to_path()
        self.assertRaises(UnsupportedExtension, Repo, self.path)

    def test_objectformat_requires_version_1(self) -> None:
        Repo.init(self.path, mkdir=True).close()
        config_path = os.path.join(self.path, "config")
        config = ConfigFile.from_path(config_path)
        config.set("extensions", "objectformat", "sha256")
        config.write_to_path()
        self.assertRaises(UnsupportedVersion, Repo, self.path)

    def test_sha256(self) -> None:
        Repo.init(self.path, mkdir=True, object_format="sha256").close()
        with Repo(self.path) as repo:
            self.assertEqual("sha256", repo.object_format.name)
            self.assertEqual(
                1, repo.get_config().get_int("core", "repositoryformatversion")
            )
            c1 = commit_files(repo, {b"a": b"1"})
            self.assertEqual(64, len(c1))
            self.assertEqual(c1, repo.head())

    def test_default_branch_from_config(self) -> None:
        config = ConfigFile()
        config.set("init", "defaultBranch", "main")
        with Repo.init(self.path, mkdir=True, config=config) as repo:
            self.assertEqual(b"main", repo.active_branch())
        with Repo.init(
            self.path + "2", mkdir=True, config=config, default_branch=b"trunk"
        ) as repo:
            self.assertEqual(b"trunk", repo.active_branch())
