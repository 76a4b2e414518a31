# reflog.py -- Append-only log of ref movements
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

"""Utilities for reading and recording reflogs."""

__all__ = [
    "BaseReflog",
    "DiskReflog",
    "Entry",
    "MemoryReflog",
    "format_reflog_line",
    "parse_reflog_line",
    "parse_reflog_spec",
    "read_reflog",
]

import collections
import os
import threading
import time
from collections.abc import Generator, Iterable
from typing import IO, BinaryIO

from . import log_utils
from .errors import NoSuchRef
from .file import ensure_dir_exists
from .objects import ObjectID, format_timezone, parse_timezone

logger = log_utils.getLogger(__name__)

UNKNOWN_COMMITTER = b"unknown <unknown>"


class Entry(
    collections.namedtuple(
        "Entry",
        ["old_sha", "new_sha", "committer", "timestamp", "timezone", "message"],
    )
):
    """A single reflog entry."""

    __slots__ = ()

    @property
    def operation(self) -> bytes:
        """The kind of operation that moved the ref (commit, merge, ...)."""
        return self.message.split(b": ", 1)[0]


def _is_zero(sha: bytes) -> bool:
    return not sha.strip(b"0")


def parse_reflog_spec(refspec: str | bytes) -> tuple[bytes, int]:
    """Parse a reflog specification like 'HEAD@{1}' or 'refs/heads/main@{2}'.

    Args:
        refspec: Reflog specification (e.g., 'HEAD@{1}', 'main@{0}')

    Returns:
        Tuple of (ref_name, index) where index is in reflog order (0 = newest)

    Raises:
        ValueError: If the refspec is not a valid reflog specification
    """
    if isinstance(refspec, str):
        refspec = refspec.encode("utf-8")

    if b"@{" not in refspec:
        raise ValueError(
            f"Invalid reflog spec: {refspec!r}. Expected format: ref@{{n}}"
        )

    ref, rest = refspec.split(b"@{", 1)
    if not rest.endswith(b"}"):
        raise ValueError(
            f"Invalid reflog spec: {refspec!r}. Expected format: ref@{{n}}"
        )

    index_str = rest[:-1]
    if not index_str.isdigit():
        raise ValueError(
            f"Invalid reflog index: {index_str!r}. Expected integer in ref@{{n}}"
        )

    # Use HEAD if no ref specified (e.g., "@{1}")
    if not ref:
        ref = b"HEAD"

    return ref, int(index_str)


def format_reflog_line(
    old_sha: bytes | None,
    new_sha: bytes,
    committer: bytes,
    timestamp: int | float,
    timezone: int,
    message: bytes,
) -> bytes:
    """Generate a single reflog line.

    Args:
      old_sha: Old commit id, or None for a newly created ref
      new_sha: New commit id
      committer: Committer name and e-mail
      timestamp: Timestamp
      timezone: Timezone
      message: Message
    """
    if old_sha is None:
        old_sha = b"0" * len(new_sha)
    if b"\n" in message or b"\n" in committer:
        raise ValueError("reflog fields may not contain newlines")
    return (
        old_sha
        + b" "
        + new_sha
        + b" "
        + committer
        + b" "
        + str(int(timestamp)).encode("ascii")
        + b" "
        + format_timezone(timezone)
        + b"\t"
        + message
    )


def parse_reflog_line(line: bytes) -> Entry:
    """Parse a reflog line.

    Args:
      line: Line to parse
    Returns: Entry with (old_sha, new_sha, committer, timestamp, timezone,
        message)
    """
    (begin, message) = line.split(b"\t", 1)
    (old_sha, new_sha, rest) = begin.split(b" ", 2)
    (committer, timestamp_str, timezone_str) = rest.rsplit(b" ", 2)
    return Entry(
        old_sha,
        new_sha,
        committer,
        int(timestamp_str),
        parse_timezone(timezone_str),
        message,
    )


def read_reflog(
    f: BinaryIO | IO[bytes],
) -> Generator[Entry, None, None]:
    """Read reflog.

    Args:
      f: File-like object
    Returns: Iterator over Entry objects
    """
    for line in f:
        yield parse_reflog_line(line.rstrip(b"\n"))


class BaseReflog:
    """Append-only store of ref movements.

    Entries are never rewritten or dropped; any id a ref ever pointed at
    can be recovered from here.
    """

    def _append(self, ref: bytes, entry: Entry) -> None:
        raise NotImplementedError(self._append)

    def _entries(self, ref: bytes) -> list[Entry]:
        """Return the entries for ref, oldest first."""
        raise NotImplementedError(self._entries)

    def refs(self) -> set[bytes]:
        """Return the names of all refs that have a log."""
        raise NotImplementedError(self.refs)

    def record(
        self,
        ref: bytes,
        old_sha: ObjectID,
        new_sha: ObjectID,
        op: bytes,
        message: bytes = b"",
        committer: bytes | None = None,
        timestamp: int | None = None,
        timezone: int | None = None,
    ) -> Entry:
        """Append a movement of ref to its log.

        Args:
          ref: Name of the ref that moved
          old_sha: Previous value (all zeros if the ref was created)
          new_sha: New value (all zeros if the ref was deleted)
          op: Operation kind, such as b"commit" or b"merge"
          message: Free-form description
          committer: Identity of whoever moved the ref
          timestamp: Seconds since the epoch; defaults to now
          timezone: Offset in seconds east of UTC
        Returns: The recorded entry
        """
        if committer is None:
            committer = UNKNOWN_COMMITTER
        if timestamp is None:
            timestamp = int(time.time())
        if timezone is None:
            timezone = 0
        full_message = op + b": " + message if message else op
        entry = Entry(old_sha, new_sha, committer, timestamp, timezone, full_message)
        self._append(ref, entry)
        logger.debug("reflog %s: %s -> %s (%s)", ref, old_sha, new_sha, full_message)
        return entry

    def history(self, ref: bytes) -> list[Entry]:
        """Return all recorded moves of ref, most recent first."""
        return list(reversed(self._entries(ref)))

    def values(self, ref: bytes) -> list[ObjectID]:
        """Return every value ref has held, oldest first.

        The sequence is rebuilt by replaying the old/new pairs of the log.
        Deletions do not contribute a value.
        """
        values = []
        for entry in self._entries(ref):
            if not values and not _is_zero(entry.old_sha):
                values.append(entry.old_sha)
            if not _is_zero(entry.new_sha):
                values.append(entry.new_sha)
        return values

    def lookup(self, ref: bytes, index: int) -> ObjectID:
        """Resolve ``ref@{index}``: the value ref had index moves ago.

        Raises:
          NoSuchRef: if the log has fewer entries, or the ref did not exist
            at that point
        """
        history = self.history(ref)
        spec = ref + b"@{" + str(index).encode("ascii") + b"}"
        if index < 0 or index >= len(history):
            raise NoSuchRef(spec)
        sha = history[index].new_sha
        if _is_zero(sha):
            raise NoSuchRef(spec)
        return sha

    def recoverable(self) -> set[ObjectID]:
        """Return every non-zero id recorded in any log."""
        ret = set()
        for ref in self.refs():
            for entry in self._entries(ref):
                for sha in (entry.old_sha, entry.new_sha):
                    if not _is_zero(sha):
                        ret.add(sha)
        return ret


class MemoryReflog(BaseReflog):
    """Reflog kept in memory."""

    def __init__(self) -> None:
        self._logs: dict[bytes, list[Entry]] = {}
        self._lock = threading.Lock()

    def _append(self, ref: bytes, entry: Entry) -> None:
        # Validates the fields the same way the on-disk format does.
        format_reflog_line(*entry)
        with self._lock:
            self._logs.setdefault(ref, []).append(entry)

    def _entries(self, ref: bytes) -> list[Entry]:
        with self._lock:
            return list(self._logs.get(ref, []))

    def refs(self) -> set[bytes]:
        with self._lock:
            return set(self._logs)


class DiskReflog(BaseReflog):
    """Reflog stored as one git-format log file per ref under ``logs/``."""

    def __init__(self, path: str | bytes | os.PathLike[str]) -> None:
        self.path = os.fsencode(os.fspath(path))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.path!r})"

    def _log_path(self, ref: bytes) -> bytes:
        path = ref
        if os.path.sep != "/":
            path = path.replace(b"/", os.fsencode(os.path.sep))
        return os.path.join(self.path, path)

    def _append(self, ref: bytes, entry: Entry) -> None:
        line = format_reflog_line(*entry) + b"\n"
        path = self._log_path(ref)
        ensure_dir_exists(os.path.dirname(path))
        with open(path, "ab") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    def _entries(self, ref: bytes) -> list[Entry]:
        try:
            with open(self._log_path(ref), "rb") as f:
                return list(read_reflog(f))
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            return []

    def refs(self) -> set[bytes]:
        return set(_iter_log_names(self.path))


def _iter_log_names(logs_dir: bytes) -> Iterable[bytes]:
    prefix_len = len(os.path.join(logs_dir, b""))
    for root, _dirs, files in os.walk(logs_dir):
        directory = root[prefix_len:]
        if os.path.sep != "/":
            directory = directory.replace(os.fsencode(os.path.sep), b"/")
        for filename in files:
            yield b"/".join([directory, filename]) if directory else filename
