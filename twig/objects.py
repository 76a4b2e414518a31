# objects.py -- Access to base objects
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

"""Access to base objects: blobs, trees, commits and tags.

Objects use the git loose-object serialization. The id of an object is the
hex digest of ``<type name> <length>\\0<body>``, so two objects of different
types never share an id even when their bodies are equal.

Objects are mutable builders until they are added to a store. Parsing of a
raw body is deferred until an attribute is first read.
"""

__all__ = [
    "EMPTY_TREE_SHA",
    "SUPPORTED_MODES",
    "Blob",
    "Commit",
    "ObjectID",
    "ShaFile",
    "Tag",
    "Tree",
    "TreeEntry",
    "check_hexsha",
    "check_identity",
    "format_timezone",
    "hex_to_sha",
    "key_entry",
    "object_class",
    "parse_timezone",
    "parse_tree",
    "serialize_tree",
    "sha_to_hex",
    "sorted_tree_items",
    "valid_hexsha",
]

import binascii
import stat
from collections.abc import Callable, Iterable, Iterator
from typing import Any, NamedTuple, TypeVar

from .errors import NotTreeError, ObjectFormatException
from .object_format import DEFAULT_OBJECT_FORMAT, ObjectFormat

ObjectID = bytes

# Id of the tree with no entries, in the default format.
EMPTY_TREE_SHA: ObjectID = b"4b825dc642cb6eb9a060e54bf8d69288fbee4904"

# Header fields for commits
_TREE_HEADER = b"tree"
_PARENT_HEADER = b"parent"
_AUTHOR_HEADER = b"author"
_COMMITTER_HEADER = b"committer"
_ENCODING_HEADER = b"encoding"

# Header fields for objects
_OBJECT_HEADER = b"object"
_TYPE_HEADER = b"type"
_TAG_HEADER = b"tag"
_TAGGER_HEADER = b"tagger"

SUPPORTED_MODES = frozenset(
    [
        stat.S_IFREG | 0o644,
        stat.S_IFREG | 0o755,
        stat.S_IFLNK,
        stat.S_IFDIR,
    ]
)


def sha_to_hex(sha: bytes) -> ObjectID:
    """Takes a binary sha and returns its hex representation."""
    return binascii.hexlify(sha)


def hex_to_sha(hex: bytes | str) -> bytes:
    """Takes a hex sha and returns a binary sha."""
    try:
        return binascii.unhexlify(hex)
    except (TypeError, binascii.Error) as exc:
        raise ValueError(exc.args[0]) from exc


def valid_hexsha(hex: bytes | str, object_format: ObjectFormat | None = None) -> bool:
    """Check whether hex is a well-formed object id."""
    if isinstance(hex, str):
        hex = hex.encode("ascii")
    if object_format is None:
        return len(hex) in (40, 64) and _is_lower_hex(hex)
    return len(hex) == object_format.hex_length and _is_lower_hex(hex)


def _is_lower_hex(hex: bytes) -> bool:
    return not hex.strip(b"0123456789abcdef")


def check_hexsha(hex: bytes | str, error_msg: str) -> None:
    """Check if a string is a valid hex sha string.

    Args:
      hex: Hex string to check
      error_msg: Error message to use in exception

    Raises:
      ObjectFormatException: Raised when the string is not valid
    """
    if not valid_hexsha(hex):
        raise ObjectFormatException(f"{error_msg} {hex!r}")


def check_identity(identity: bytes | None, error_msg: str) -> None:
    """Check if the specified identity is valid.

    This will raise an exception if the identity is not valid.

    Args:
      identity: Identity string, of the form b"Name <email>"
      error_msg: Error message to use in exception
    """
    if identity is None:
        raise ObjectFormatException(error_msg)
    email_start = identity.find(b"<")
    email_end = identity.find(b">")
    if not all(
        [
            email_start >= 1,
            identity[email_start - 1 : email_start] == b" ",
            identity.find(b"<", email_start + 1) == -1,
            email_end == len(identity) - 1,
            b"\0" not in identity,
            b"\n" not in identity,
        ]
    ):
        raise ObjectFormatException(error_msg)


def parse_timezone(text: bytes) -> int:
    """Parse a timezone text fragment (e.g. b'+0100').

    Args:
      text: Text to parse.
    Returns: Offset in seconds east of UTC.
    """
    if not (text[0] in b"+-" and len(text) == 5 and text[1:].isdigit()):
        raise ValueError(f"Invalid timezone: {text!r}")
    offset = int(text[1:])
    signum = -1 if text.startswith(b"-") else 1
    hours = offset // 100
    minutes = offset % 100
    return signum * (hours * 3600 + minutes * 60)


def format_timezone(offset: int) -> bytes:
    """Format a timezone for git serialization.

    Args:
      offset: Timezone offset as seconds difference to UTC
    """
    if offset % 60 != 0:
        raise ValueError("Unable to handle non-minute offset.")
    if offset < 0:
        offset = -offset
        sign = "-"
    else:
        sign = "+"
    return f"{sign}{offset // 3600:02d}{(offset // 60) % 60:02d}".encode("ascii")


def _parse_time_entry(value: bytes) -> tuple[bytes, int, int]:
    """Parse an identity entry with time and timezone.

    Returns: tuple of (identity, time, timezone)
    """
    try:
        sep = value.rindex(b"> ")
    except ValueError as exc:
        raise ObjectFormatException(f"missing timestamp in {value!r}") from exc
    person = value[: sep + 1]
    rest = value[sep + 2 :]
    try:
        timetext, timezonetext = rest.rsplit(b" ", 1)
        return person, int(timetext), parse_timezone(timezonetext)
    except ValueError as exc:
        raise ObjectFormatException(str(exc)) from exc


def _format_time_entry(person: bytes, time: int, timezone: int) -> bytes:
    return b" ".join([person, str(time).encode("ascii"), format_timezone(timezone)])


def _parse_headers(text: bytes) -> tuple[list[tuple[bytes, bytes]], bytes]:
    """Split serialized commit or tag text into header fields and a message."""
    headers: list[tuple[bytes, bytes]] = []
    pos = 0
    while pos < len(text):
        end = text.find(b"\n", pos)
        if end == -1:
            raise ObjectFormatException("unterminated header line")
        line = text[pos:end]
        pos = end + 1
        if line == b"":
            return headers, text[pos:]
        field, sep, value = line.partition(b" ")
        if not sep:
            raise ObjectFormatException(f"malformed header line {line!r}")
        headers.append((field, value))
    return headers, b""


def serializable_property(name: str, docstring: str | None = None) -> property:
    """A property that helps tracking whether serialization is necessary."""

    def set(obj: "ShaFile", value: object) -> None:
        obj._ensure_parsed()
        setattr(obj, "_" + name, value)
        obj._needs_serialization = True

    def get(obj: "ShaFile") -> Any:  # noqa: ANN401
        obj._ensure_parsed()
        return getattr(obj, "_" + name)

    return property(get, set, doc=docstring)


def object_class(type: bytes | int) -> type["ShaFile"]:
    """Get the object class corresponding to the given type.

    Args:
      type: Either a type name string or a numeric type.
    Returns: The ShaFile subclass corresponding to the given type.

    Raises:
      ObjectFormatException: if the type is unknown
    """
    try:
        return _TYPE_MAP[type]
    except KeyError as exc:
        raise ObjectFormatException(f"Not a known type: {type!r}") from exc


_T = TypeVar("_T", bound="ShaFile")


class ShaFile:
    """A content-addressed object."""

    __slots__ = (
        "_chunked_text",
        "_needs_parsing",
        "_needs_serialization",
        "_sha",
        "object_format",
    )

    type_name: bytes
    type_num: int
    _needs_parsing: bool
    _needs_serialization: bool
    _chunked_text: list[bytes] | None
    _sha: ObjectID | None

    def __init__(self, object_format: ObjectFormat | None = None) -> None:
        """Initialize an empty object in the given object format."""
        self.object_format = object_format or DEFAULT_OBJECT_FORMAT
        self._sha = None
        self._chunked_text = []
        self._needs_parsing = False
        self._needs_serialization = True

    def _deserialize(self, chunks: list[bytes]) -> None:
        raise NotImplementedError(self._deserialize)

    def _serialize(self) -> list[bytes]:
        raise NotImplementedError(self._serialize)

    def _ensure_parsed(self) -> None:
        if self._needs_parsing:
            assert self._chunked_text is not None
            try:
                self._deserialize(self._chunked_text)
            except (ValueError, IndexError) as exc:
                raise ObjectFormatException(
                    f"malformed {self.type_name.decode('ascii')}: {exc}"
                ) from exc
            self._needs_parsing = False

    def as_raw_chunks(self) -> list[bytes]:
        """Return chunks with serialization of the object."""
        if self._needs_serialization:
            self._sha = None
            self._chunked_text = self._serialize()
            self._needs_serialization = False
        assert self._chunked_text is not None
        return self._chunked_text

    def as_raw_string(self) -> bytes:
        """Return raw string with serialization of the object."""
        return b"".join(self.as_raw_chunks())

    def __bytes__(self) -> bytes:
        return self.as_raw_string()

    def set_raw_string(self, text: bytes) -> None:
        """Set the contents of this object from a serialized string."""
        if not isinstance(text, bytes):
            raise TypeError(f"Expected bytes for text, got {text!r}")
        self.set_raw_chunks([text])

    def set_raw_chunks(self, chunks: list[bytes]) -> None:
        """Set the contents of this object from a list of chunks."""
        self._chunked_text = chunks
        self._sha = None
        self._needs_parsing = True
        self._needs_serialization = False

    @staticmethod
    def from_raw_string(
        type: bytes | int,
        string: bytes,
        object_format: ObjectFormat | None = None,
    ) -> "ShaFile":
        """Creates an object of the indicated type from the raw string given.

        Args:
          type: The type name or numeric type of the object.
          string: The raw uncompressed contents.
          object_format: Object format the id is computed in.
        """
        obj = object_class(type)(object_format)
        obj.set_raw_string(string)
        return obj

    @classmethod
    def from_string(
        cls: type[_T], string: bytes, object_format: ObjectFormat | None = None
    ) -> _T:
        """Create a ShaFile of this class from a serialized body."""
        obj = cls(object_format)
        obj.set_raw_string(string)
        return obj

    def _header(self) -> bytes:
        return self.type_name + b" " + str(self.raw_length()).encode("ascii") + b"\0"

    def raw_length(self) -> int:
        """Returns the length of the raw string of this object."""
        return sum(len(chunk) for chunk in self.as_raw_chunks())

    def sha(self) -> ObjectID:
        """The hex id of this object."""
        if self._needs_serialization or self._sha is None:
            chunks = self.as_raw_chunks()
            self._sha = self.object_format.hash_object_hex(self._header(), *chunks)
        return self._sha

    @property
    def id(self) -> ObjectID:
        """The hex id of this object."""
        return self.sha()

    def check(self) -> None:
        """Check this object for internal consistency.

        Raises:
          ObjectFormatException: if the object is malformed in some way
        """
        self._ensure_parsed()

    def copy(self) -> "ShaFile":
        """Create a new copy of this object."""
        return ShaFile.from_raw_string(
            self.type_num, self.as_raw_string(), self.object_format
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id!r}>"

    def __hash__(self) -> int:
        return hash(self.id)

    def __eq__(self, other: object) -> bool:
        """Return true if the ids of the two objects match."""
        return isinstance(other, ShaFile) and self.id == other.id

    def __ne__(self, other: object) -> bool:
        return not isinstance(other, ShaFile) or self.id != other.id


class Blob(ShaFile):
    """Raw file content, without name or metadata."""

    __slots__ = ()

    type_name = b"blob"
    type_num = 3

    def __init__(self, object_format: ObjectFormat | None = None) -> None:
        super().__init__(object_format)
        self._needs_serialization = False

    def _get_data(self) -> bytes:
        return self.as_raw_string()

    def _set_data(self, data: bytes) -> None:
        self.set_raw_string(data)

    data = property(
        _get_data, _set_data, doc="The text contained within the blob object."
    )

    def _deserialize(self, chunks: list[bytes]) -> None:
        self._chunked_text = chunks

    def _serialize(self) -> list[bytes]:
        assert self._chunked_text is not None
        return self._chunked_text

    def splitlines(self) -> list[bytes]:
        """Return list of lines in this blob, keeping line endings."""
        return self.data.splitlines(True)


class TreeEntry(NamedTuple):
    """Named tuple encapsulating a single tree entry."""

    path: bytes
    mode: int
    sha: ObjectID

    def in_path(self, path: bytes) -> "TreeEntry":
        """Return a copy of this entry with the given path prepended."""
        return TreeEntry(posixpath_join(path, self.path), self.mode, self.sha)


def posixpath_join(prefix: bytes, name: bytes) -> bytes:
    """Join a tree path prefix and an entry name."""
    if not prefix:
        return name
    return prefix + b"/" + name


def check_tree_name(name: bytes) -> None:
    """Check that name is usable as a single tree entry name.

    Raises:
      ValueError: if the name is empty, contains a slash or NUL, or is . or ..
    """
    if not isinstance(name, bytes):
        raise TypeError(f"Expected bytes for name, got {name!r}")
    if name in (b"", b".", b".."):
        raise ValueError(f"invalid tree entry name {name!r}")
    if b"/" in name or b"\0" in name:
        raise ValueError(f"invalid tree entry name {name!r}")


def parse_tree(text: bytes, oid_length: int = 20) -> Iterator[tuple[bytes, int, bytes]]:
    """Parse a tree text.

    Args:
      text: Serialized text to parse
      oid_length: Length of the binary ids in the tree
    Returns: iterator of tuples of (name, mode, sha)

    Raises:
      ObjectFormatException: if the object was malformed in some way
    """
    count = 0
    length = len(text)
    while count < length:
        mode_end = text.find(b" ", count)
        if mode_end == -1:
            raise ObjectFormatException("missing mode separator in tree entry")
        mode_text = text[count:mode_end]
        if mode_text.startswith(b"0"):
            raise ObjectFormatException(f"Invalid mode {mode_text!r}")
        try:
            mode = int(mode_text, 8)
        except ValueError as exc:
            raise ObjectFormatException(f"Invalid mode {mode_text!r}") from exc
        name_end = text.find(b"\0", mode_end)
        if name_end == -1:
            raise ObjectFormatException("missing name terminator in tree entry")
        name = text[mode_end + 1 : name_end]
        count = name_end + 1 + oid_length
        sha = text[name_end + 1 : count]
        if len(sha) != oid_length:
            raise ObjectFormatException("Sha has invalid length")
        yield (name, mode, sha_to_hex(sha))


def serialize_tree(items: Iterable[tuple[bytes, int, bytes]]) -> Iterator[bytes]:
    """Serialize the items in a tree to a text.

    Args:
      items: Sorted iterable over (name, mode, sha) tuples
    Returns: Serialized tree text as chunks
    """
    for name, mode, hexsha in items:
        yield (f"{mode:o}".encode("ascii") + b" " + name + b"\0" + hex_to_sha(hexsha))


def key_entry(entry: tuple[bytes, tuple[int, ObjectID]]) -> bytes:
    """Sort key for tree entry.

    Directory names sort as if they had a trailing slash.

    Args:
      entry: (name, value) tuple
    """
    (name, (mode, _sha)) = entry
    if stat.S_ISDIR(mode):
        name += b"/"
    return name


def sorted_tree_items(
    entries: dict[bytes, tuple[int, ObjectID]],
) -> Iterator[TreeEntry]:
    """Iterate over a tree entries dictionary in canonical order.

    Args:
      entries: Dictionary mapping names to (mode, sha) tuples
    Returns: Iterator over (name, mode, hexsha)
    """
    for name, entry in sorted(entries.items(), key=key_entry):
        mode, hexsha = entry
        yield TreeEntry(name, mode, hexsha)


class Tree(ShaFile):
    """A directory snapshot: a mapping from names to (mode, sha)."""

    __slots__ = "_entries"

    type_name = b"tree"
    type_num = 2

    def __init__(self, object_format: ObjectFormat | None = None) -> None:
        super().__init__(object_format)
        self._entries: dict[bytes, tuple[int, ObjectID]] = {}

    def __contains__(self, name: bytes) -> bool:
        self._ensure_parsed()
        return name in self._entries

    def __getitem__(self, name: bytes) -> tuple[int, ObjectID]:
        self._ensure_parsed()
        return self._entries[name]

    def __setitem__(self, name: bytes, value: tuple[int, ObjectID]) -> None:
        """Set a tree entry by name.

        Args:
          name: The name of the entry, as a string.
          value: A tuple of (mode, hexsha), where mode is the mode of the
            entry as an integral type and hexsha is the hex id of the
            entry.
        """
        mode, hexsha = value
        self.add(name, mode, hexsha)

    def __delitem__(self, name: bytes) -> None:
        self._ensure_parsed()
        del self._entries[name]
        self._needs_serialization = True

    def __len__(self) -> int:
        self._ensure_parsed()
        return len(self._entries)

    def __iter__(self) -> Iterator[bytes]:
        self._ensure_parsed()
        return iter(self._entries)

    def add(self, name: bytes, mode: int, hexsha: ObjectID) -> None:
        """Add an entry to the tree.

        Args:
          name: The name of the entry, as a string.
          mode: The mode of the entry as an integral type. Not all
            possible modes are supported by git; see check() for details.
          hexsha: The hex id of the entry.

        Raises:
          ValueError: if the name or mode cannot appear in a tree
        """
        check_tree_name(name)
        if mode not in SUPPORTED_MODES:
            raise ValueError(f"unsupported mode {mode:o} for {name!r}")
        self._ensure_parsed()
        self._entries[name] = (mode, hexsha)
        self._needs_serialization = True

    def iteritems(self) -> Iterator[TreeEntry]:
        """Iterate over entries in canonical order.

        Returns: Iterator over TreeEntry namedtuples for (name, mode, sha)
        """
        self._ensure_parsed()
        return sorted_tree_items(self._entries)

    def items(self) -> list[TreeEntry]:
        """Return the sorted entries in this tree.

        Returns: List with (name, mode, sha) tuples
        """
        return list(self.iteritems())

    def _deserialize(self, chunks: list[bytes]) -> None:
        """Grab the entries in the tree."""
        parsed_entries = parse_tree(b"".join(chunks), self.object_format.oid_length)
        self._entries = {n: (m, s) for n, m, s in parsed_entries}

    def _serialize(self) -> list[bytes]:
        return list(serialize_tree(self.iteritems()))

    def check(self) -> None:
        """Check this object for internal consistency.

        Raises:
          ObjectFormatException: if the object is malformed in some way
        """
        super().check()
        last = None
        raw = self.as_raw_string()
        for name, mode, sha in parse_tree(raw, self.object_format.oid_length):
            try:
                check_tree_name(name)
            except ValueError as exc:
                raise ObjectFormatException(str(exc)) from exc
            if mode not in SUPPORTED_MODES:
                raise ObjectFormatException(f"invalid mode {mode:06o}")
            entry = (name, (mode, sha))
            if last:
                if key_entry(last) > key_entry(entry):
                    raise ObjectFormatException("entries not sorted")
                if name == last[0]:
                    raise ObjectFormatException(f"duplicate entry {name!r}")
            last = entry

    def lookup_path(
        self, lookup_obj: Callable[[ObjectID], "ShaFile"], path: bytes
    ) -> tuple[int, ObjectID]:
        """Look up an object in a tree hierarchy.

        Args:
          lookup_obj: Callback for retrieving object by id
          path: Path to look up
        Returns: A tuple of (mode, sha)

        Raises:
          KeyError: if the path is not present
        """
        parts = [p for p in path.split(b"/") if p]
        sha = self.id
        mode: int = stat.S_IFDIR
        for i, p in enumerate(parts):
            obj = lookup_obj(sha)
            if not isinstance(obj, Tree):
                raise NotTreeError(sha)
            mode, sha = obj[p]
            if i < len(parts) - 1 and not stat.S_ISDIR(mode):
                raise KeyError(path)
        return mode, sha


class Commit(ShaFile):
    """A snapshot reference with parent links and metadata."""

    __slots__ = (
        "_author",
        "_author_time",
        "_author_timezone",
        "_commit_time",
        "_commit_timezone",
        "_committer",
        "_encoding",
        "_message",
        "_parents",
        "_tree",
    )

    type_name = b"commit"
    type_num = 1

    def __init__(self, object_format: ObjectFormat | None = None) -> None:
        super().__init__(object_format)
        self._parents: list[ObjectID] = []
        self._encoding: bytes | None = None
        self._tree: ObjectID | None = None
        self._author: bytes | None = None
        self._committer: bytes | None = None
        self._author_time: int | None = None
        self._commit_time: int | None = None
        self._author_timezone = 0
        self._commit_timezone = 0
        self._message = b""

    def _deserialize(self, chunks: list[bytes]) -> None:
        self._parents = []
        self._encoding = None
        self._tree = None
        self._author = self._committer = None
        headers, self._message = _parse_headers(b"".join(chunks))
        for field, value in headers:
            if field == _TREE_HEADER:
                self._tree = value
            elif field == _PARENT_HEADER:
                self._parents.append(value)
            elif field == _AUTHOR_HEADER:
                (
                    self._author,
                    self._author_time,
                    self._author_timezone,
                ) = _parse_time_entry(value)
            elif field == _COMMITTER_HEADER:
                (
                    self._committer,
                    self._commit_time,
                    self._commit_timezone,
                ) = _parse_time_entry(value)
            elif field == _ENCODING_HEADER:
                self._encoding = value
            else:
                raise ObjectFormatException(f"unknown commit header {field!r}")

    def _serialize(self) -> list[bytes]:
        if self._tree is None:
            raise ObjectFormatException("commit has no tree")
        if self._author is None or self._author_time is None:
            raise ObjectFormatException("commit has no author")
        if self._committer is None or self._commit_time is None:
            raise ObjectFormatException("commit has no committer")
        chunks = [_TREE_HEADER + b" " + self._tree + b"\n"]
        for p in self._parents:
            chunks.append(_PARENT_HEADER + b" " + p + b"\n")
        chunks.append(
            _AUTHOR_HEADER
            + b" "
            + _format_time_entry(
                self._author, self._author_time, self._author_timezone
            )
            + b"\n"
        )
        chunks.append(
            _COMMITTER_HEADER
            + b" "
            + _format_time_entry(
                self._committer, self._commit_time, self._commit_timezone
            )
            + b"\n"
        )
        if self._encoding:
            chunks.append(_ENCODING_HEADER + b" " + self._encoding + b"\n")
        chunks.append(b"\n")  # There must be a new line after the headers
        chunks.append(self._message)
        return chunks

    def check(self) -> None:
        """Check this object for internal consistency.

        Raises:
          ObjectFormatException: if the object is malformed in some way
        """
        super().check()
        if self._tree is None:
            raise ObjectFormatException("missing tree")
        check_hexsha(self._tree, "invalid tree sha")
        for parent in self._parents:
            check_hexsha(parent, "invalid parent sha")
        check_identity(self._author, "invalid author")
        check_identity(self._committer, "invalid committer")
        if self._author_time is None or self._commit_time is None:
            raise ObjectFormatException("missing timestamp")

    tree = serializable_property("tree", "Tree that is the state of this commit")

    def _get_parents(self) -> list[ObjectID]:
        """Return a list of parents of this commit."""
        self._ensure_parsed()
        return self._parents

    def _set_parents(self, value: list[ObjectID]) -> None:
        """Set a list of parents of this commit."""
        self._ensure_parsed()
        self._needs_serialization = True
        self._parents = list(value)

    parents = property(
        _get_parents,
        _set_parents,
        doc="Parents of this commit, by their id.",
    )

    author = serializable_property(
        "author", "The name of the author of the commit"
    )

    committer = serializable_property(
        "committer", "The name of the committer of the commit"
    )

    message = serializable_property("message", "The commit message")

    commit_time = serializable_property(
        "commit_time",
        "The timestamp of the commit. As the number of seconds since the epoch.",
    )

    commit_timezone = serializable_property(
        "commit_timezone", "The zone the commit time is in"
    )

    author_time = serializable_property(
        "author_time",
        "The timestamp the commit was written. As the number of "
        "seconds since the epoch.",
    )

    author_timezone = serializable_property(
        "author_timezone", "Returns the zone the author time is in."
    )

    encoding = serializable_property("encoding", "Encoding of the commit message.")


class Tag(ShaFile):
    """An annotated tag bound to a single object."""

    __slots__ = (
        "_message",
        "_name",
        "_object_class",
        "_object_sha",
        "_tag_time",
        "_tag_timezone",
        "_tagger",
    )

    type_name = b"tag"
    type_num = 4

    def __init__(self, object_format: ObjectFormat | None = None) -> None:
        super().__init__(object_format)
        self._tagger: bytes | None = None
        self._tag_time: int | None = None
        self._tag_timezone = 0
        self._name: bytes | None = None
        self._object_class: type[ShaFile] | None = None
        self._object_sha: ObjectID | None = None
        self._message = b""

    def _serialize(self) -> list[bytes]:
        if self._object_class is None or self._object_sha is None:
            raise ObjectFormatException("tag has no object")
        if self._name is None:
            raise ObjectFormatException("tag has no name")
        chunks = [
            _OBJECT_HEADER + b" " + self._object_sha + b"\n",
            _TYPE_HEADER + b" " + self._object_class.type_name + b"\n",
            _TAG_HEADER + b" " + self._name + b"\n",
        ]
        if self._tagger:
            if self._tag_time is None:
                chunks.append(_TAGGER_HEADER + b" " + self._tagger + b"\n")
            else:
                chunks.append(
                    _TAGGER_HEADER
                    + b" "
                    + _format_time_entry(
                        self._tagger, self._tag_time, self._tag_timezone
                    )
                    + b"\n"
                )
        chunks.append(b"\n")  # To close headers
        chunks.append(self._message)
        return chunks

    def _deserialize(self, chunks: list[bytes]) -> None:
        """Grab the metadata attached to the tag."""
        self._tagger = None
        self._tag_time = None
        self._tag_timezone = 0
        headers, self._message = _parse_headers(b"".join(chunks))
        for field, value in headers:
            if field == _OBJECT_HEADER:
                self._object_sha = value
            elif field == _TYPE_HEADER:
                self._object_class = object_class(value)
            elif field == _TAG_HEADER:
                self._name = value
            elif field == _TAGGER_HEADER:
                if b"> " in value:
                    (
                        self._tagger,
                        self._tag_time,
                        self._tag_timezone,
                    ) = _parse_time_entry(value)
                else:
                    self._tagger = value
            else:
                raise ObjectFormatException(f"unknown tag header {field!r}")

    def check(self) -> None:
        """Check this object for internal consistency.

        Raises:
          ObjectFormatException: if the object is malformed in some way
        """
        super().check()
        if self._object_sha is None:
            raise ObjectFormatException("missing object sha")
        check_hexsha(self._object_sha, "invalid object sha")
        if self._object_class is None:
            raise ObjectFormatException("missing object type")
        if not self._name:
            raise ObjectFormatException("missing tag name")
        if self._tagger is not None:
            check_identity(self._tagger, "invalid tagger")

    def _get_object(self) -> tuple[type[ShaFile], ObjectID]:
        """Get the object pointed to by this tag.

        Returns: tuple of (object class, sha).
        """
        self._ensure_parsed()
        assert self._object_class is not None and self._object_sha is not None
        return (self._object_class, self._object_sha)

    def _set_object(self, value: tuple[type[ShaFile], ObjectID]) -> None:
        self._ensure_parsed()
        (self._object_class, self._object_sha) = value
        self._needs_serialization = True

    object = property(_get_object, _set_object)

    name = serializable_property("name", "The name of this tag")
    tagger = serializable_property(
        "tagger", "Returns the name of the person who created this tag"
    )
    tag_time = serializable_property(
        "tag_time",
        "The creation timestamp of the tag.  As the number of seconds "
        "since the epoch",
    )
    tag_timezone = serializable_property(
        "tag_timezone", "The timezone that tag_time is in."
    )
    message = serializable_property("message", "the message attached to this tag")


OBJECT_CLASSES = (
    Commit,
    Tree,
    Blob,
    Tag,
)

_TYPE_MAP: dict[bytes | int, type[ShaFile]] = {}

for cls in OBJECT_CLASSES:
    _TYPE_MAP[cls.type_name] = cls
    _TYPE_MAP[cls.type_num] = cls