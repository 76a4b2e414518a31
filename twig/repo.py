# repo.py -- For dealing with twig repositories.
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

"""Repository access.

A repository ties an object store, a refs container, a reflog and a
configuration together. Repo works on a bare on-disk layout; MemoryRepo
keeps everything in memory.
"""

__all__ = [
    "BASE_DIRECTORIES",
    "DEFAULT_BRANCH",
    "BaseRepo",
    "InvalidUserIdentity",
    "MemoryRepo",
    "NotTwigRepository",
    "Repo",
    "UnsupportedExtension",
    "UnsupportedVersion",
    "check_user_identity",
    "get_user_identity",
]

import os
import socket
import time
from types import TracebackType

from . import log_utils
from .config import Config, ConfigFile
from .errors import NotCommitError, NotFound, RefFormatError
from .graph import CommitGraph
from .object_format import ObjectFormat, get_object_format
from .object_store import (
    BaseObjectStore,
    DiskObjectStore,
    MemoryObjectStore,
    peel_sha,
)
from .objects import (
    Commit,
    ObjectID,
    ShaFile,
    Tag,
    Tree,
    valid_hexsha,
)
from .reflog import BaseReflog, DiskReflog, Entry, MemoryReflog, parse_reflog_spec
from .refs import (
    HEADREF,
    LOCAL_BRANCH_PREFIX,
    LOCAL_TAG_PREFIX,
    SYMREF,
    DictRefsContainer,
    DiskRefsContainer,
    RefsContainer,
    extract_branch_name,
    local_branch_name,
    local_tag_name,
)

logger = log_utils.getLogger(__name__)

OBJECTDIR = "objects"
REFSDIR = "refs"
REFSDIR_TAGS = "tags"
REFSDIR_HEADS = "heads"
LOGSDIR = "logs"
CONFIGFILE = "config"

BASE_DIRECTORIES = [
    [OBJECTDIR],
    [REFSDIR],
    [REFSDIR, REFSDIR_TAGS],
    [REFSDIR, REFSDIR_HEADS],
    [LOGSDIR],
]

DEFAULT_BRANCH = b"master"

# Shortest abbreviated id resolve_commit() accepts.
MIN_ABBREV_LENGTH = 4


class InvalidUserIdentity(Exception):
    """User identity is not of the format 'user <email>'."""

    def __init__(self, identity: str) -> None:
        """Initialize InvalidUserIdentity exception."""
        self.identity = identity
        super().__init__(f"invalid identity: {identity!r}")


class NotTwigRepository(Exception):
    """Indicates that no repository was found at a path."""


class UnsupportedVersion(Exception):
    """Unsupported repository version."""

    def __init__(self, version: int) -> None:
        """Initialize UnsupportedVersion exception.

        Args:
            version: The unsupported repository version
        """
        self.version = version
        super().__init__(f"unsupported repository format version {version}")


class UnsupportedExtension(Exception):
    """Unsupported repository extension."""

    def __init__(self, extension: str) -> None:
        """Initialize UnsupportedExtension exception.

        Args:
            extension: The unsupported repository extension
        """
        self.extension = extension
        super().__init__(f"unsupported repository extension {extension!r}")


def _get_default_identity() -> tuple[str, str]:
    for name in ("LOGNAME", "USER", "LNAME", "USERNAME"):
        username = os.environ.get(name)
        if username:
            break
    else:
        username = None

    try:
        import pwd
    except ImportError:
        fullname = None
    else:
        try:
            entry = pwd.getpwuid(os.getuid())
        except KeyError:
            fullname = None
        else:
            if getattr(entry, "pw_gecos", None):
                fullname = entry.pw_gecos.split(",")[0]
            else:
                fullname = None
            if username is None:
                username = entry.pw_name
    if username is None:
        username = "unknown"
    if not fullname:
        fullname = username
    email = os.environ.get("EMAIL")
    if email is None:
        email = f"{username}@{socket.gethostname()}"
    return (fullname, email)


def get_user_identity(config: Config, kind: str | None = None) -> bytes:
    """Determine the identity to use for new commits.

    If kind is set, this first checks
    TWIG_${KIND}_NAME and TWIG_${KIND}_EMAIL.

    If those variables are not set, then it will fall back
    to reading the user.name and user.email settings from
    the specified configuration.

    If that also fails, then it will fall back to using
    the current users' identity as obtained from the host
    system (e.g. the gecos field, $EMAIL, $USER@$(hostname -f).

    Args:
      config: Configuration to read from
      kind: Optional kind to return identity for,
        usually either "AUTHOR" or "COMMITTER".

    Returns:
      A user identity

    Raises:
      InvalidUserIdentity: if the resulting identity is malformed
    """
    user: bytes | None = None
    email: bytes | None = None
    if kind:
        user_uc = os.environ.get("TWIG_" + kind + "_NAME")
        if user_uc is not None:
            user = user_uc.encode("utf-8")
        email_uc = os.environ.get("TWIG_" + kind + "_EMAIL")
        if email_uc is not None:
            email = email_uc.encode("utf-8")
    if user is None:
        try:
            user = config.get(("user",), "name")
        except KeyError:
            user = None
    if email is None:
        try:
            email = config.get(("user",), "email")
        except KeyError:
            email = None
    if user is None or email is None:
        default_user, default_email = _get_default_identity()
        if user is None:
            user = default_user.encode("utf-8")
        if email is None:
            email = default_email.encode("utf-8")
    if email.startswith(b"<") and email.endswith(b">"):
        email = email[1:-1]
    identity = user + b" <" + email + b">"
    check_user_identity(identity)
    return identity


def check_user_identity(identity: bytes) -> None:
    """Verify that a user identity is formatted correctly.

    Args:
      identity: User identity bytestring
    Raises:
      InvalidUserIdentity: Raised when identity is invalid
    """
    try:
        fst, snd = identity.split(b" <", 1)
    except ValueError as exc:
        raise InvalidUserIdentity(identity.decode("utf-8", "replace")) from exc
    if not fst or not snd.endswith(b">") or b"<" in snd or b">" in snd[:-1]:
        raise InvalidUserIdentity(identity.decode("utf-8", "replace"))
    if b"\0" in identity or b"\n" in identity:
        raise InvalidUserIdentity(identity.decode("utf-8", "replace"))


def _first_line(message: bytes) -> bytes:
    return message.split(b"\n", 1)[0]


class BaseRepo:
    """Base class for a twig repository.

    Attributes:
      object_store: Dictionary-like object for accessing
        the objects
      refs: Dictionary-like object with the refs in this
        repository
      reflog: Log of every ref movement
      graph: Commit graph over object_store
    """

    def __init__(
        self,
        object_store: BaseObjectStore,
        refs: RefsContainer,
        reflog: BaseReflog,
        config: ConfigFile,
    ) -> None:
        """Open a repository.

        This shouldn't be called directly, but rather through one of the
        subclasses, such as MemoryRepo or Repo.

        Args:
          object_store: Object store to use
          refs: Refs container to use; it should record into reflog
          reflog: Reflog to use
          config: Repository configuration
        """
        self.object_store = object_store
        self.refs = refs
        self.reflog = reflog
        self._config = config
        self.graph = CommitGraph(object_store)

    @property
    def object_format(self) -> ObjectFormat:
        """The object format of this repository's object store."""
        return self.object_store.object_format

    def _committer_identity(self) -> bytes:
        return get_user_identity(self.get_config(), kind="COMMITTER")

    def get_config(self) -> ConfigFile:
        """Retrieve the config object.

        Returns: `ConfigFile` object for the repository configuration.
        """
        return self._config

    def get_refs(self) -> dict[bytes, ObjectID]:
        """Get dictionary with all refs.

        Returns: A ``dict`` mapping ref names to ids
        """
        return self.refs.as_dict()

    def head(self) -> ObjectID:
        """Return the id pointed at by HEAD."""
        return self.refs[HEADREF]

    def __getitem__(self, name: bytes) -> ShaFile:
        """Retrieve an object by id or ref.

        Args:
          name: An object id or a ref name
        Returns: A `ShaFile` object, such as a Commit or Blob
        Raises:
          KeyError: when the specified ref or object does not exist
        """
        if not isinstance(name, bytes):
            raise TypeError(f"'name' must be bytestring, not {type(name).__name__:.80}")
        if valid_hexsha(name, self.object_format):
            try:
                return self.object_store[name]
            except KeyError:
                pass
        try:
            return self.object_store[self.refs[name]]
        except RefFormatError as exc:
            raise KeyError(name) from exc

    def __contains__(self, name: bytes) -> bool:
        """Check if a specific object or ref is present.

        Args:
          name: object id or ref name
        """
        if valid_hexsha(name, self.object_format) and name in self.object_store:
            return True
        return name in self.refs

    def _expand_ref(self, name: bytes) -> bytes:
        """Return the full name of an existing ref given a possibly short name."""
        if name == HEADREF or name.startswith(b"refs/"):
            return name
        for candidate in (
            b"refs/" + name,
            LOCAL_TAG_PREFIX + name,
            LOCAL_BRANCH_PREFIX + name,
        ):
            if candidate in self.refs:
                return candidate
        return LOCAL_BRANCH_PREFIX + name

    def _resolve(self, spec: bytes) -> ObjectID:
        if b"@{" in spec:
            ref, index = parse_reflog_spec(spec)
            return self.reflog.lookup(self._expand_ref(ref), index)
        if valid_hexsha(spec, self.object_format) and spec in self.object_store:
            return spec
        if spec == HEADREF or spec.startswith(b"refs/"):
            return self.refs.read(spec)
        for candidate in (
            b"refs/" + spec,
            LOCAL_TAG_PREFIX + spec,
            LOCAL_BRANCH_PREFIX + spec,
        ):
            try:
                return self.refs.read(candidate)
            except (NotFound, RefFormatError):
                continue
        if len(spec) >= MIN_ABBREV_LENGTH:
            try:
                matches = list(self.object_store.iter_prefix(spec.lower()))
            except ValueError:
                matches = []
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                raise ValueError(f"ambiguous object name {spec!r}")
        raise NotFound(spec)

    def resolve_commit(self, spec: bytes | str) -> ObjectID:
        """Resolve a commit specification to a commit id.

        Accepted are full and abbreviated ids, ref names, short branch and
        tag names, and reflog specs such as ``main@{2}``. Tags are peeled.

        Raises:
          NotFound: if nothing matches spec
          NotCommitError: if spec names something other than a commit
          ValueError: if an abbreviated id is ambiguous
        """
        if isinstance(spec, str):
            spec = spec.encode("utf-8")
        sha = self._resolve(spec)
        _, obj = peel_sha(self.object_store, sha)
        if not isinstance(obj, Commit):
            raise NotCommitError(obj.id)
        return obj.id

    def do_commit(
        self,
        message: bytes,
        tree: ObjectID | None = None,
        ref: bytes | None = HEADREF,
        author: bytes | None = None,
        committer: bytes | None = None,
        author_time: int | None = None,
        commit_time: int | None = None,
        author_timezone: int | None = None,
        commit_timezone: int | None = None,
        encoding: bytes | None = None,
        merge_heads: list[ObjectID] | None = None,
        parents: list[ObjectID] | None = None,
        op: bytes | None = None,
    ) -> ObjectID:
        """Create a new commit and move a ref to it.

        If not specified, committer and author default to
        get_user_identity(..., 'COMMITTER')
        and get_user_identity(..., 'AUTHOR') respectively.

        Args:
          message: Commit message
          tree: id of the root tree; defaults to the tree of the current
            commit, or the empty tree on an unborn branch
          ref: Ref to commit to (defaults to HEAD, which follows to the
            current branch). If None, creates a dangling commit.
          author: Author identity
          committer: Committer identity
          author_time: Author timestamp (defaults to commit time)
          commit_time: Commit timestamp (defaults to now)
          author_timezone: Author timezone (defaults to commit timezone)
          commit_timezone: Commit timezone (defaults to UTC)
          encoding: Encoding of the message
          merge_heads: Additional parents after the current commit
          parents: Explicit parents; the ref must still point at the first
            one (or not exist, for no parents)
          op: Operation recorded in the reflog

        Returns:
          New commit id

        Raises:
          RefChanged: if the ref moved while committing
        """
        config = self.get_config()
        if parents is None:
            old_head = self.refs.follow(ref)[1] if ref is not None else None
            parents = ([old_head] if old_head is not None else []) + list(
                merge_heads or []
            )
        else:
            old_head = parents[0] if parents else None
        if tree is None:
            if old_head is not None:
                tree = self.graph.get_commit(old_head).tree
            else:
                empty = Tree(self.object_format)
                self.object_store.add_object(empty)
                tree = empty.id
        if committer is None:
            committer = get_user_identity(config, kind="COMMITTER")
        check_user_identity(committer)
        if author is None:
            author = get_user_identity(config, kind="AUTHOR")
        check_user_identity(author)
        if commit_time is None:
            commit_time = int(time.time())
        if commit_timezone is None:
            commit_timezone = 0
        if author_time is None:
            author_time = commit_time
        if author_timezone is None:
            author_timezone = commit_timezone

        commit_id = self.graph.commit(
            tree,
            parents,
            message,
            author,
            committer=committer,
            author_time=author_time,
            commit_time=commit_time,
            author_timezone=author_timezone,
            commit_timezone=commit_timezone,
            encoding=encoding,
        )
        if ref is None:
            return commit_id

        if op is None:
            if not parents:
                op = b"commit (initial)"
            elif len(parents) > 1:
                op = b"commit (merge)"
            else:
                op = b"commit"
        self.refs.update(
            ref,
            old_head,
            commit_id,
            op=op,
            message=_first_line(message),
            committer=committer,
            timestamp=commit_time,
            timezone=commit_timezone,
        )
        return commit_id

    def create_branch(
        self,
        name: bytes,
        commitish: bytes | None = None,
        force: bool = False,
    ) -> ObjectID:
        """Create a branch.

        Args:
          name: Short or full branch name
          commitish: Where the branch starts (defaults to HEAD)
          force: Move the branch if it already exists

        Returns: the id the branch points at

        Raises:
          RefChanged: if the branch already exists and force is False
        """
        ref = local_branch_name(name)
        start = commitish if commitish is not None else HEADREF
        sha = self.resolve_commit(start)
        expected = None
        if force:
            expected = self.refs.follow(ref)[1]
        self.refs.update(
            ref, expected, sha, op=b"branch", message=b"Created from " + start
        )
        return sha

    def delete_branch(self, name: bytes) -> None:
        """Delete a branch.

        Raises:
          ValueError: if HEAD is attached to the branch
          NoSuchRef: if the branch does not exist
        """
        ref = local_branch_name(name)
        if self.refs.read_ref(HEADREF) == SYMREF + ref:
            raise ValueError(f"cannot delete the current branch {name!r}")
        self.refs.remove(ref, None, op=b"branch", message=b"deleted")

    def list_branches(self) -> list[bytes]:
        """Return the short names of all local branches, sorted."""
        return sorted(self.refs.keys(base=LOCAL_BRANCH_PREFIX))

    def list_tags(self) -> list[bytes]:
        """Return the short names of all tags, sorted."""
        return sorted(self.refs.keys(base=LOCAL_TAG_PREFIX))

    def active_branch(self) -> bytes | None:
        """Return the short name of the branch HEAD is attached to.

        Returns: branch name, or None if HEAD is detached
        """
        refnames, _ = self.refs.follow(HEADREF)
        if len(refnames) < 2:
            return None
        return extract_branch_name(refnames[-1])

    def set_head(self, branch: bytes) -> None:
        """Attach HEAD to an existing branch.

        Raises:
          NoSuchRef: if the branch does not exist
        """
        ref = local_branch_name(branch)
        self.refs.read(ref)
        self.refs.set_symbolic_ref(
            HEADREF, ref, op=b"checkout", message=b"moving to " + branch
        )

    def detach_head(self, commitish: bytes) -> ObjectID:
        """Point HEAD directly at a commit.

        Returns: the commit id HEAD now points at
        """
        sha = self.resolve_commit(commitish)
        current = self.refs.follow(HEADREF)[1]
        self.refs.update(
            HEADREF,
            current,
            sha,
            op=b"checkout",
            message=b"moving to " + commitish,
            deref=False,
        )
        return sha

    def create_tag(
        self,
        name: bytes,
        commitish: bytes | None = None,
        message: bytes | None = None,
        tagger: bytes | None = None,
        tag_time: int | None = None,
        tag_timezone: int | None = None,
    ) -> ObjectID:
        """Create a tag.

        Without a message this creates a lightweight tag (a ref pointing at
        the commit); with one it stores an annotated Tag object.

        Returns: the id the tag ref points at

        Raises:
          RefChanged: if the tag already exists
        """
        ref = local_tag_name(name)
        sha = self.resolve_commit(commitish if commitish is not None else HEADREF)
        if message is not None:
            if tagger is None:
                tagger = get_user_identity(self.get_config(), kind="COMMITTER")
            check_user_identity(tagger)
            tag = Tag(self.object_format)
            tag.object = (Commit, sha)
            tag.name = name
            tag.tagger = tagger
            tag.tag_time = tag_time if tag_time is not None else int(time.time())
            tag.tag_timezone = tag_timezone if tag_timezone is not None else 0
            tag.message = message
            self.object_store.add_object(tag)
            sha = tag.id
        self.refs.update(ref, None, sha, op=b"tag", message=name)
        return sha

    def get_reflog(self, ref: bytes = HEADREF) -> list[Entry]:
        """Return the moves of a ref, most recent first.

        Args:
          ref: Full or short ref name
        """
        return self.reflog.history(self._expand_ref(ref))

    def recoverable(self) -> set[ObjectID]:
        """Return every commit id recorded in any reflog."""
        return self.reflog.recoverable()

    def close(self) -> None:
        """Close any files opened by this repository."""
        self.object_store.close()

    def __enter__(self) -> "BaseRepo":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class MemoryRepo(BaseRepo):
    """Repo that stores refs, objects, reflogs and config in memory."""

    def __init__(
        self,
        object_format: str | None = None,
        default_branch: bytes | None = None,
    ) -> None:
        """Create a new repository in memory.

        Args:
          object_format: "sha1" (default) or "sha256"
          default_branch: Branch HEAD is attached to initially
        """
        reflog = MemoryReflog()
        refs = DictRefsContainer({}, reflog=reflog, committer=self._committer_identity)
        config = ConfigFile()
        fmt = get_object_format(object_format)
        _init_config(config, fmt)
        super().__init__(MemoryObjectStore(object_format=fmt), refs, reflog, config)
        refs.set_symbolic_ref(
            HEADREF, local_branch_name(default_branch or DEFAULT_BRANCH)
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


def _init_config(config: ConfigFile, object_format: ObjectFormat) -> None:
    if object_format.name == "sha1":
        config.set("core", "repositoryformatversion", 0)
    else:
        # Any other object format requires version 1
        config.set("core", "repositoryformatversion", 1)
        config.set("extensions", "objectformat", object_format.name)
    config.set("core", "bare", True)
    config.set("core", "logallrefupdates", True)


class Repo(BaseRepo):
    """A bare repository backed by local disk.

    To open an existing repository, call the constructor with
    the path of the repository.

    To create a new repository, use the Repo.init class method.

    Attributes:
      path: Path to the repository directory
    """

    path: str
    object_store: DiskObjectStore

    def __init__(self, root: str | bytes | os.PathLike[str]) -> None:
        """Open a repository on disk.

        Args:
          root: Path to the repository's root.

        Raises:
          NotTwigRepository: if root does not hold a repository
          UnsupportedVersion: for an unknown repository format version
          UnsupportedExtension: for a repository extension twig does not know
        """
        root = os.fspath(root)
        if isinstance(root, bytes):
            root = os.fsdecode(root)
        if not (
            os.path.isdir(os.path.join(root, OBJECTDIR))
            and os.path.isdir(os.path.join(root, REFSDIR))
        ):
            raise NotTwigRepository(f"No twig repository was found at {root}")
        self.path = root

        config_path = os.path.join(root, CONFIGFILE)
        try:
            config = ConfigFile.from_path(config_path)
        except FileNotFoundError:
            config = ConfigFile()
            config.path = config_path

        format_version = config.get_int("core", "repositoryformatversion", 0)
        if format_version not in (0, 1):
            raise UnsupportedVersion(format_version)

        object_format_name = None
        for extension, value in config.items((b"extensions",)):
            if extension.lower() == b"objectformat":
                object_format_name = value.decode("ascii").lower()
            else:
                raise UnsupportedExtension(extension.decode("utf-8"))
        if object_format_name is not None and format_version != 1:
            raise UnsupportedVersion(format_version)
        fmt = get_object_format(object_format_name)

        object_store = DiskObjectStore.from_config(
            os.path.join(root, OBJECTDIR), config, object_format=fmt
        )
        reflog = DiskReflog(os.path.join(root, LOGSDIR))
        refs = DiskRefsContainer(root, reflog=reflog, committer=self._committer_identity)
        super().__init__(object_store, refs, reflog, config)

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    @classmethod
    def init(
        cls,
        path: str | bytes | os.PathLike[str],
        *,
        mkdir: bool = False,
        object_format: str | None = None,
        default_branch: bytes | None = None,
        config: Config | None = None,
    ) -> "Repo":
        """Create a new bare repository.

        Args:
          path: Path in which to create the repository
          mkdir: Whether to create the directory
          object_format: Object format to use ("sha1" or "sha256", defaults to "sha1")
          default_branch: Default branch name; falls back to
            init.defaultBranch from config, then DEFAULT_BRANCH
          config: Configuration to read init.defaultBranch from
        Returns: `Repo` instance
        """
        path = os.fspath(path)
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        if mkdir:
            os.mkdir(path)
        fmt = get_object_format(object_format)
        for d in BASE_DIRECTORIES:
            os.makedirs(os.path.join(path, *d), exist_ok=True)
        DiskObjectStore.init(os.path.join(path, OBJECTDIR), object_format=fmt)

        cf = ConfigFile()
        _init_config(cf, fmt)
        cf.write_to_path(os.path.join(path, CONFIGFILE))

        if default_branch is None:
            default_branch = DEFAULT_BRANCH
            if config is not None:
                try:
                    default_branch = config.get("init", "defaultBranch")
                except KeyError:
                    pass
        ret = cls(path)
        ret.refs.set_symbolic_ref(HEADREF, local_branch_name(default_branch))
        logger.debug("Initialized %s repository at %s", fmt, path)
        return ret
