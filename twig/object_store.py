# object_store.py -- Object store interfaces and implementation
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

"""Object store interfaces and implementation.

An object store maps ids to immutable objects. Writes are idempotent: an id
is a function of the content, so storing the same content twice is the same
as storing it once. Every read re-hashes the content and refuses to return
data that does not match the id it was requested under.
"""

__all__ = [
    "BaseObjectStore",
    "DiskObjectStore",
    "MemoryObjectStore",
    "iter_reachable_objects",
    "iter_tree_contents",
    "peel_sha",
    "tree_lookup_path",
]

import os
import stat
import zlib
from collections.abc import Callable, Iterable, Iterator
from typing import TYPE_CHECKING

from . import log_utils
from .errors import (
    IntegrityViolation,
    NotFound,
    NotTreeError,
    ObjectFormatException,
)
from .file import FileLocked, GitFile
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat
from .objects import (
    Blob,
    Commit,
    ObjectID,
    ShaFile,
    Tag,
    Tree,
    TreeEntry,
    object_class,
    valid_hexsha,
)

if TYPE_CHECKING:
    from .config import Config

logger = log_utils.getLogger(__name__)

PACK_MODE = 0o444


class BaseObjectStore:
    """Object store interface."""

    def __init__(self, *, object_format: ObjectFormat | None = None) -> None:
        """Initialize object store.

        Args:
            object_format: Object format to use (defaults to DEFAULT_OBJECT_FORMAT)
        """
        self.object_format = object_format if object_format else DEFAULT_OBJECT_FORMAT

    def _read_raw(self, sha: ObjectID) -> tuple[int, bytes]:
        """Read the stored type and body of an object without verifying it.

        Raises:
          NotFound: if no object is stored under sha
        """
        raise NotImplementedError(self._read_raw)

    def _write_raw(self, sha: ObjectID, type_num: int, body: bytes) -> None:
        """Store an object that is not yet present."""
        raise NotImplementedError(self._write_raw)

    def __contains__(self, sha: ObjectID) -> bool:
        """Check if a particular object is present."""
        raise NotImplementedError(self.__contains__)

    def __iter__(self) -> Iterator[ObjectID]:
        """Iterate over the ids that are present in this store."""
        raise NotImplementedError(self.__iter__)

    def _hash(self, type_num: int, body: bytes) -> ObjectID:
        type_name = object_class(type_num).type_name
        header = type_name + b" " + str(len(body)).encode("ascii") + b"\0"
        return self.object_format.hash_object_hex(header, body)

    def get_raw(self, sha: ObjectID) -> tuple[int, bytes]:
        """Obtain the raw text for an object.

        Args:
          sha: id of the object.
        Returns: tuple with numeric type and object contents.

        Raises:
          NotFound: if the object is not present
          IntegrityViolation: if the stored content does not hash to sha
        """
        type_num, body = self._read_raw(sha)
        actual = self._hash(type_num, body)
        if actual != sha:
            logger.error("Object %s hashes to %s; store is corrupt", sha, actual)
            raise IntegrityViolation(sha, actual)
        return type_num, body

    def get(self, sha: ObjectID) -> bytes:
        """Return the body of an object.

        Raises:
          NotFound: if the object is not present
          IntegrityViolation: if the stored content does not hash to sha
        """
        return self.get_raw(sha)[1]

    def __getitem__(self, sha: ObjectID) -> ShaFile:
        """Obtain an object by id."""
        type_num, body = self.get_raw(sha)
        return ShaFile.from_raw_string(type_num, body, self.object_format)

    def put(self, data: bytes, type_name: bytes = b"blob") -> ObjectID:
        """Store content and return its id.

        Storing identical content again returns the same id and has no
        further effect.

        Args:
          data: Serialized object body
          type_name: Type of the object (blob, tree, commit or tag)
        Returns: id of the stored object

        Raises:
          ObjectFormatException: if a tree, commit or tag body is malformed
          IntegrityViolation: if the id is already taken by other content
          FileLocked: if another writer holds the lock on an object that is
            not yet stored
        """
        obj = ShaFile.from_raw_string(type_name, data, self.object_format)
        if not isinstance(obj, Blob):
            obj.check()
        self.add_object(obj)
        return obj.id

    def add_object(self, obj: ShaFile) -> None:
        """Add a single object to this object store.

        Raises:
          IntegrityViolation: if the id is already taken by other content
        """
        if obj.object_format is not self.object_format:
            obj = ShaFile.from_raw_string(
                obj.type_num, obj.as_raw_string(), self.object_format
            )
        sha = obj.id
        body = obj.as_raw_string()
        try:
            existing = self._read_raw(sha)
        except NotFound:
            self._write_raw(sha, obj.type_num, body)
            return
        if existing != (obj.type_num, body):
            logger.error("Refusing to overwrite %s with different content", sha)
            raise IntegrityViolation(
                sha, self._hash(*existing), "id already stored with different content"
            )

    def add_objects(self, objects: Iterable[ShaFile]) -> None:
        """Add a set of objects to this object store.

        Args:
          objects: Iterable over objects, e.g. as received by a transport
        """
        for obj in objects:
            self.add_object(obj)

    def iter_objects(self, shas: Iterable[ObjectID]) -> Iterator[ShaFile]:
        """Iterate over the objects with the given ids.

        Raises:
          NotFound: if any of the objects is missing
        """
        for sha in shas:
            yield self[sha]

    def iter_prefix(self, prefix: bytes) -> Iterator[ObjectID]:
        """Iterate over all ids that start with prefix."""
        for sha in self:
            if sha.startswith(prefix):
                yield sha

    def close(self) -> None:
        """Close any files opened by this object store."""


class MemoryObjectStore(BaseObjectStore):
    """Object store that keeps all objects in memory.

    Objects are stored as (type, body) pairs; a single dict assignment
    makes each write atomic.
    """

    def __init__(self, *, object_format: ObjectFormat | None = None) -> None:
        """Initialize a MemoryObjectStore.

        Args:
            object_format: Hash algorithm to use (defaults to SHA1)
        """
        super().__init__(object_format=object_format)
        self._data: dict[ObjectID, tuple[int, bytes]] = {}

    def __contains__(self, sha: ObjectID) -> bool:
        return sha in self._data

    def __iter__(self) -> Iterator[ObjectID]:
        return iter(list(self._data.keys()))

    def __len__(self) -> int:
        return len(self._data)

    def _read_raw(self, sha: ObjectID) -> tuple[int, bytes]:
        try:
            return self._data[sha]
        except KeyError:
            raise NotFound(sha) from None

    def _write_raw(self, sha: ObjectID, type_num: int, body: bytes) -> None:
        self._data[sha] = (type_num, body)

    def __delitem__(self, sha: ObjectID) -> None:
        """Delete an object from this store, for testing only."""
        del self._data[sha]


def hex_to_filename(path: str | bytes, hex: bytes | str) -> str | bytes:
    """Takes a hex sha and returns its filename relative to the given path."""
    if isinstance(path, str) and isinstance(hex, bytes):
        hex = hex.decode("ascii")
    elif isinstance(path, bytes) and isinstance(hex, str):
        hex = hex.encode("ascii")
    dir_name = hex[:2]
    file_name = hex[2:]
    return os.path.join(path, dir_name, file_name)  # type: ignore[arg-type]


class DiskObjectStore(BaseObjectStore):
    """Store of zlib-compressed loose objects in a directory.

    Objects live in ``<path>/xx/yyyy...`` where ``xx`` are the first two hex
    digits of the id. Each file is the compressed header and body.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        loose_compression_level: int = -1,
        fsync_object_files: bool = False,
        object_format: ObjectFormat | None = None,
    ) -> None:
        """Open an object store.

        Args:
          path: Path of the object store.
          loose_compression_level: zlib compression level for loose objects
          fsync_object_files: whether to fsync object files for durability
          object_format: Hash algorithm to use (SHA1 or SHA256)
        """
        super().__init__(object_format=object_format)
        self.path = os.fspath(path)
        self.loose_compression_level = loose_compression_level
        self.fsync_object_files = fsync_object_files

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    @classmethod
    def from_config(
        cls,
        path: str | os.PathLike[str],
        config: "Config",
        object_format: ObjectFormat | None = None,
    ) -> "DiskObjectStore":
        """Create a DiskObjectStore using settings from a configuration.

        ``core.looseCompression`` wins over ``core.compression``; both
        default to zlib's default level.
        """
        default_compression_level = config.get_int(b"core", b"compression", -1)
        loose_compression_level = config.get_int(
            b"core", b"looseCompression", default_compression_level
        )
        assert loose_compression_level is not None
        if not -1 <= loose_compression_level <= 9:
            raise ValueError(
                f"invalid compression level {loose_compression_level!r}"
            )
        return cls(
            path,
            loose_compression_level=loose_compression_level,
            object_format=object_format,
        )

    @classmethod
    def init(
        cls,
        path: str | os.PathLike[str],
        *,
        object_format: ObjectFormat | None = None,
    ) -> "DiskObjectStore":
        """Initialize a new disk object store.

        Args:
          path: Path where the object store should be created
          object_format: Hash algorithm to use (SHA1 or SHA256)

        Returns:
          New DiskObjectStore instance
        """
        try:
            os.mkdir(path)
        except FileExistsError:
            pass
        return cls(path, object_format=object_format)

    def _get_shafile_path(self, sha: ObjectID) -> str:
        path = hex_to_filename(self.path, sha)
        assert isinstance(path, str)
        return path

    def __contains__(self, sha: ObjectID) -> bool:
        if not valid_hexsha(sha, self.object_format):
            return False
        return os.path.exists(self._get_shafile_path(sha))

    def __iter__(self) -> Iterator[ObjectID]:
        for base in sorted(os.listdir(self.path)):
            if len(base) != 2:
                continue
            for rest in sorted(os.listdir(os.path.join(self.path, base))):
                if rest.endswith(".lock"):
                    continue
                sha = os.fsencode(base + rest)
                if not valid_hexsha(sha, self.object_format):
                    continue
                yield sha

    def iter_prefix(self, prefix: bytes) -> Iterator[ObjectID]:
        """Iterate over all ids that start with prefix."""
        if len(prefix) < 2:
            yield from super().iter_prefix(prefix)
            return
        dir = os.path.join(self.path, prefix[:2].decode("ascii"))
        try:
            names = sorted(os.listdir(dir))
        except FileNotFoundError:
            return
        rest = prefix[2:].decode("ascii")
        for name in names:
            if name.startswith(rest) and not name.endswith(".lock"):
                sha = prefix[:2] + name.encode("ascii")
                if valid_hexsha(sha, self.object_format):
                    yield sha

    def _read_raw(self, sha: ObjectID) -> tuple[int, bytes]:
        if not valid_hexsha(sha, self.object_format):
            raise NotFound(sha)
        path = self._get_shafile_path(sha)
        try:
            with GitFile(path, "rb") as f:
                compressed = f.read()
        except FileNotFoundError:
            raise NotFound(sha) from None
        try:
            text = zlib.decompress(compressed)
            header, body = text.split(b"\0", 1)
            type_name, size = header.split(b" ", 1)
            type_num = object_class(type_name).type_num
            if int(size) != len(body):
                raise ValueError(f"expected {int(size)} bytes, got {len(body)}")
        except (zlib.error, ValueError, ObjectFormatException) as exc:
            logger.error("Unreadable object file %s: %s", path, exc)
            raise IntegrityViolation(sha, b"", f"unreadable object file: {exc}") from exc
        return type_num, body

    def _write_raw(self, sha: ObjectID, type_num: int, body: bytes) -> None:
        path = self._get_shafile_path(sha)
        dir = os.path.dirname(path)
        try:
            os.mkdir(dir)
        except FileExistsError:
            pass
        if os.path.exists(path):
            return  # Already there, no need to write again
        type_name = object_class(type_num).type_name
        header = type_name + b" " + str(len(body)).encode("ascii") + b"\0"
        data = zlib.compress(header + body, self.loose_compression_level)
        try:
            with GitFile(path, "wb", mask=PACK_MODE, fsync=self.fsync_object_files) as f:
                f.write(data)
        except FileLocked:
            # Only a finished write by another writer counts as stored.
            if os.path.exists(path):
                logger.debug("Object %s was written concurrently", sha)
                return
            logger.warning("Object %s is locked by another writer", sha)
            raise


def tree_lookup_path(
    lookup_obj: Callable[[ObjectID], ShaFile],
    root_sha: ObjectID,
    path: bytes,
) -> tuple[int, ObjectID]:
    """Look up an object in a tree.

    Args:
      lookup_obj: Callback for retrieving object by id
      root_sha: id of the root tree
      path: Path to lookup
    Returns: A tuple of (mode, id) of the resulting path.

    Raises:
      NotFound: if the path does not exist in the tree
    """
    tree = lookup_obj(root_sha)
    if not isinstance(tree, Tree):
        raise NotTreeError(root_sha)
    try:
        return tree.lookup_path(lookup_obj, path)
    except NotFound:
        raise
    except KeyError:
        raise NotFound(path) from None


def iter_tree_contents(
    store: BaseObjectStore, tree_id: ObjectID | None, *, include_trees: bool = False
) -> Iterator[TreeEntry]:
    """Iterate the contents of a tree and all subtrees.

    Iteration is depth-first pre-order, as in e.g. os.walk.

    Args:
      store: Object store to get trees from
      tree_id: id of the tree.
      include_trees: If True, include tree objects in the iteration.

    Yields: TreeEntry namedtuples for all the objects in a tree.
    """
    if tree_id is None:
        return
    todo = [TreeEntry(b"", stat.S_IFDIR, tree_id)]
    while todo:
        entry = todo.pop()
        if stat.S_ISDIR(entry.mode):
            extra = []
            tree = store[entry.sha]
            if not isinstance(tree, Tree):
                raise NotTreeError(entry.sha)
            for subentry in tree.iteritems():
                extra.append(subentry.in_path(entry.path))
            todo.extend(reversed(extra))
        if entry.path and (not stat.S_ISDIR(entry.mode) or include_trees):
            yield entry


def peel_sha(store: BaseObjectStore, sha: ObjectID) -> tuple[ShaFile, ShaFile]:
    """Peel all tags from an id.

    Args:
      store: Object store to get objects from
      sha: The object id to peel.
    Returns: Tuple of (unpeeled object, object after following all tags);
      if sha does not point at a tag both are the same object.
    """
    unpeeled = obj = store[sha]
    while isinstance(obj, Tag):
        _obj_class, sha = obj.object
        obj = store[sha]
    return unpeeled, obj


def iter_reachable_objects(
    store: BaseObjectStore, heads: Iterable[ObjectID]
) -> Iterator[ObjectID]:
    """Iterate over every object reachable from heads.

    This is the object set a transport layer has to ship for heads to be
    complete on the other side: commits, their trees and blobs, and any
    tags on the way.

    Args:
      store: Object store to read from
      heads: ids of commits or tags
    Yields: each reachable id exactly once
    """
    seen: set[ObjectID] = set()
    todo = list(heads)
    while todo:
        sha = todo.pop()
        if sha in seen:
            continue
        seen.add(sha)
        obj = store[sha]
        yield sha
        if isinstance(obj, Tag):
            todo.append(obj.object[1])
        elif isinstance(obj, Commit):
            todo.append(obj.tree)
            todo.extend(obj.parents)
        elif isinstance(obj, Tree):
            for entry in obj.iteritems():
                if entry.sha not in seen:
                    if stat.S_ISDIR(entry.mode):
                        todo.append(entry.sha)
                    else:
                        seen.add(entry.sha)
                        yield entry.sha
