# config.py - Reading and writing configuration files.
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


"""Reading and writing git-style configuration files.

Sections are tuples of (section name, optional subsection). Section and
variable names are case-insensitive; subsection names are not.

Keys read by twig:

* ``user.name``, ``user.email``: default identity for commits and reflogs
* ``core.compression``, ``core.looseCompression``: zlib level for loose
  objects
* ``core.repositoryformatversion``, ``extensions.objectformat``: repository
  layout and hash algorithm
* ``init.defaultBranch``: branch HEAD points at in a new repository
* ``merge.conflictStyle``: ``merge`` or ``diff3`` conflict rendering

Only the syntax needed for those keys is understood: ``[section]`` and
``[section "subsection"]`` headers, ``name = value`` lines, quoting,
escapes and comments. Values continued over several lines, includes and
the old ``[section.subsection]`` header form are rejected or not supported.
"""

__all__ = [
    "CaseInsensitiveOrderedDict",
    "Config",
    "ConfigDict",
    "ConfigFile",
]

import os
import re
from collections.abc import Iterator, MutableMapping
from typing import IO, Generic, TypeVar

from .file import GitFile, LockedFile

Section = tuple[bytes, ...]
Name = bytes
NameLike = bytes | str
SectionLike = bytes | str | tuple[bytes | str, ...]
Value = bytes
ValueLike = bytes | str

K = TypeVar("K", bytes, tuple[bytes, ...])
V = TypeVar("V")

_TRUE_VALUES = (b"true", b"yes", b"on", b"1")
_FALSE_VALUES = (b"false", b"no", b"off", b"0", b"")


def _fold(key: bytes | Section) -> bytes | Section:
    # Subsection names keep their case.
    if isinstance(key, bytes):
        return key.lower()
    return tuple(part.lower() if i == 0 else part for i, part in enumerate(key))


class CaseInsensitiveOrderedDict(MutableMapping[K, V], Generic[K, V]):
    """An insertion-ordered dictionary with case-insensitive keys.

    The last assignment to a key wins; the original spelling of the first
    assignment is kept for writing the file back.
    """

    def __init__(self) -> None:
        self._real: dict[bytes | Section, tuple[K, V]] = {}

    def __len__(self) -> int:
        return len(self._real)

    def __iter__(self) -> Iterator[K]:
        return (key for key, _ in self._real.values())

    def __getitem__(self, key: K) -> V:
        return self._real[_fold(key)][1]

    def __setitem__(self, key: K, value: V) -> None:
        folded = _fold(key)
        if folded in self._real:
            key = self._real[folded][0]
        self._real[folded] = (key, value)

    def __delitem__(self, key: K) -> None:
        del self._real[_fold(key)]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({dict(self.items())!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CaseInsensitiveOrderedDict):
            return NotImplemented
        return list(self.items()) == list(other.items())


class Config:
    """A git-style configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: bool | None = None
    ) -> bool | None:
        """Retrieve a configuration setting as a boolean.

        Raises:
          ValueError: if the value is set but is not a boolean
        """
        try:
            value = self.get(section, name).lower()
        except KeyError:
            return default
        if value in _TRUE_VALUES:
            return True
        if value in _FALSE_VALUES:
            return False
        raise ValueError(f"not a valid boolean string: {value!r}")

    def get_int(
        self, section: SectionLike, name: NameLike, default: int | None = None
    ) -> int | None:
        """Retrieve a configuration setting as an integer.

        Raises:
          ValueError: if the value is set but is not an integer
        """
        try:
            return int(self.get(section, name))
        except KeyError:
            return default

    def set(
        self, section: SectionLike, name: NameLike, value: ValueLike | bool | int
    ) -> None:
        """Set a configuration value; booleans and integers are formatted."""
        raise NotImplementedError(self.set)

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        """Iterate over the (name, value) pairs of one section."""
        raise NotImplementedError(self.items)

    def sections(self) -> Iterator[Section]:
        """Iterate over the section tuples."""
        raise NotImplementedError(self.sections)

    def has_section(self, name: Section) -> bool:
        """Check whether a section exists, ignoring the case of its name."""
        folded = _fold(name)
        return any(_fold(s) == folded for s in self.sections())


def _to_bytes(value: bytes | str) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


def _section_key(section: SectionLike) -> Section:
    if not isinstance(section, tuple):
        section = (section,)
    return tuple(_to_bytes(part) for part in section)


class ConfigDict(Config):
    """Configuration stored in a dictionary."""

    def __init__(self) -> None:
        self._values: CaseInsensitiveOrderedDict[
            Section, CaseInsensitiveOrderedDict[Name, Value]
        ] = CaseInsensitiveOrderedDict()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, self.__class__) and other._values == self._values

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Get a configuration value.

        A setting in a subsection falls back to the plain section.

        Raises:
            KeyError: if the value is not set
        """
        key = _section_key(section)
        name = _to_bytes(name)
        if len(key) > 1 and key in self._values and name in self._values[key]:
            return self._values[key][name]
        return self._values[key[:1]][name]

    def set(
        self,
        section: SectionLike,
        name: NameLike,
        value: ValueLike | bool | int,
    ) -> None:
        """Set a configuration value."""
        if isinstance(value, bool):
            value = b"true" if value else b"false"
        elif isinstance(value, int):
            value = str(value).encode("ascii")
        key = _section_key(section)
        if key not in self._values:
            self._values[key] = CaseInsensitiveOrderedDict()
        self._values[key][_to_bytes(name)] = _to_bytes(value)

    def remove(self, section: SectionLike, name: NameLike) -> None:
        """Remove a configuration setting.

        Raises:
            KeyError: If the section or name doesn't exist
        """
        del self._values[_section_key(section)][_to_bytes(name)]

    def items(self, section: SectionLike) -> Iterator[tuple[Name, Value]]:
        """Get items in a section."""
        key = _section_key(section)
        if key not in self._values:
            return iter([])
        return iter(self._values[key].items())

    def sections(self) -> Iterator[Section]:
        """Get all sections."""
        return iter(self._values)


_SECTION_HEADER_RE = re.compile(
    rb'\[\s*([A-Za-z0-9-]+)(?:\s+"((?:[^"\\]|\\.)*)")?\s*\](.*)', re.DOTALL
)
_NAME_RE = re.compile(rb"[A-Za-z][A-Za-z0-9-]*")
_UNESCAPE = {
    ord("\\"): b"\\",
    ord('"'): b'"',
    ord("n"): b"\n",
    ord("t"): b"\t",
    ord("b"): b"\b",
}


def _strip_comment(line: bytes) -> bytes:
    quoted = False
    for i, c in enumerate(line):
        if c == ord('"'):
            quoted = not quoted
        elif c in b"#;" and not quoted:
            return line[:i]
    return line


def _unquote(raw: bytes) -> bytes:
    """Decode a value: drop quotes, expand escapes, cut trailing comments.

    Unquoted whitespace is kept only between other characters.
    """
    out = bytearray()
    spaces = bytearray()
    quoted = False
    chars = iter(raw.strip())
    for c in chars:
        if c == ord("\\"):
            escaped = next(chars, None)
            if escaped is None:
                raise ValueError(f"escape character at end of value {raw!r}")
            if escaped not in _UNESCAPE:
                raise ValueError(f"unknown escape \\{chr(escaped)} in {raw!r}")
            out += spaces + _UNESCAPE[escaped]
            spaces.clear()
        elif c == ord('"'):
            quoted = not quoted
        elif quoted:
            out.append(c)
        elif c in b"#;":
            break
        elif c in b" \t":
            spaces.append(c)
        else:
            out += spaces
            spaces.clear()
            out.append(c)
    if quoted:
        raise ValueError(f"missing end quote in {raw!r}")
    return bytes(out)


def _quote(value: bytes) -> bytes:
    escaped = (
        value.replace(b"\\", b"\\\\")
        .replace(b"\n", b"\\n")
        .replace(b"\t", b"\\t")
        .replace(b'"', b'\\"')
    )
    if value != value.strip(b" \t") or b"#" in value or b";" in value:
        return b'"' + escaped + b'"'
    return escaped


def _parse_header(line: bytes) -> tuple[Section, bytes]:
    """Split a ``[section "sub"]`` header from whatever follows it."""
    m = _SECTION_HEADER_RE.fullmatch(line)
    if m is None:
        raise ValueError(f"invalid section header {line!r}")
    name, subsection, rest = m.groups()
    if subsection is None:
        return (name,), rest
    return (name, re.sub(rb"\\(.)", rb"\1", subsection)), rest


class ConfigFile(ConfigDict):
    """A configuration file, like <repo>/config or ~/.gitconfig."""

    def __init__(self) -> None:
        super().__init__()
        self.path: str | None = None

    def _parse_line(self, section: Section | None, line: bytes) -> Section | None:
        if line.startswith(b"["):
            section, line = _parse_header(line)
            if section not in self._values:
                self._values[section] = CaseInsensitiveOrderedDict()
        if not _strip_comment(line).strip():
            return section
        if section is None:
            raise ValueError(f"setting {line!r} without section")
        name, sep, raw = line.partition(b"=")
        if not sep:
            name = _strip_comment(name)
        name = name.strip()
        if _NAME_RE.fullmatch(name) is None:
            raise ValueError(f"invalid variable name {name!r}")
        self._values[section][name] = _unquote(raw) if sep else b"true"
        return section

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ValueError: if the file is not a valid configuration file
        """
        ret = cls()
        section: Section | None = None
        for lineno, line in enumerate(f):
            if lineno == 0:
                line = line.removeprefix(b"\xef\xbb\xbf")
            section = ret._parse_line(section, line.strip())
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with GitFile(abs_path, "rb") as f:
            ret = cls.from_file(f)
        ret.path = abs_path
        return ret

    def write_to_path(self, path: str | os.PathLike[str] | None = None) -> None:
        """Write configuration to a file on disk, through a lock file."""
        if path is None:
            if self.path is None:
                raise ValueError("No path specified and no default path available")
            path = self.path
        with GitFile(path, "wb") as f:
            self.write_to_file(f)

    def write_to_file(self, f: "IO[bytes] | LockedFile") -> None:
        """Write configuration to a file-like object."""
        for section, values in self._values.items():
            if len(section) == 1:
                f.write(b"[" + section[0] + b"]\n")
            else:
                subsection = section[1].replace(b"\\", b"\\\\").replace(b'"', b'\\"')
                f.write(b"[" + section[0] + b' "' + subsection + b'"]\n')
            for name, value in values.items():
                f.write(b"\t" + name + b" = " + _quote(value) + b"\n")
