# file.py -- Safe access to repository files
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

"""Safe access to repository files.

Writes follow the git lock-file protocol: data for ``foo`` is written to
``foo.lock``, created exclusively, and renamed over ``foo`` on close. The
lock file doubles as a mutex: a second writer fails immediately with
FileLocked instead of waiting.
"""

__all__ = [
    "FileLocked",
    "GitFile",
    "LockedFile",
    "ensure_dir_exists",
]

import os
import warnings
from types import TracebackType
from typing import IO, Any, ClassVar

PathType = str | bytes | os.PathLike[str] | os.PathLike[bytes]


def ensure_dir_exists(dirname: PathType) -> None:
    """Ensure a directory exists, creating if necessary."""
    try:
        os.makedirs(dirname)
    except FileExistsError:
        pass


def GitFile(
    filename: PathType,
    mode: str = "rb",
    bufsize: int = -1,
    mask: int = 0o644,
    fsync: bool = True,
) -> "IO[bytes] | LockedFile":
    """Create a file object that obeys the lock-file protocol.

    Only read-only and write-only binary modes are supported. Opening for
    write does not touch the target until the returned file is closed.

    Args:
      filename: Path to the file
      mode: File mode (only 'rb' and 'wb' are supported)
      bufsize: Buffer size for file operations
      mask: File mask for created files
      fsync: Whether to call fsync() before closing (default: True)

    Returns: a builtin file object or a LockedFile object
    """
    if "a" in mode:
        raise OSError("append mode not supported for locked files")
    if "+" in mode:
        raise OSError("read/write mode not supported for locked files")
    if "b" not in mode:
        raise OSError("text mode not supported for locked files")
    if "w" in mode:
        return LockedFile(filename, mode, bufsize, mask, fsync)
    return open(filename, mode, bufsize)


class FileLocked(Exception):
    """File is already locked."""

    def __init__(self, filename: PathType, lockfilename: str | bytes) -> None:
        """Initialize FileLocked.

        Args:
          filename: Name of the file that is locked
          lockfilename: Name of the lock file
        """
        self.filename = filename
        self.lockfilename = lockfilename
        super().__init__(filename, lockfilename)


class LockedFile:
    """File that follows the lock-file protocol for writes.

    All writes to a file foo go into foo.lock in the same directory, and
    the lock file is renamed to overwrite the original file on close.

    Note: You *must* call close() or abort() for the lock to be released.
        Typically this happens by using the file as a context manager.
    """

    PROXY_METHODS: ClassVar[set[str]] = {
        "flush",
        "fileno",
        "seek",
        "tell",
        "write",
        "writelines",
    }

    def __init__(
        self,
        filename: PathType,
        mode: str,
        bufsize: int = -1,
        mask: int = 0o644,
        fsync: bool = True,
    ) -> None:
        self._filename: str | bytes = os.fspath(filename)
        self._fsync = fsync
        if isinstance(self._filename, bytes):
            self._lockfilename: str | bytes = self._filename + b".lock"
        else:
            self._lockfilename = self._filename + ".lock"
        try:
            fd = os.open(
                self._lockfilename,
                os.O_RDWR | os.O_CREAT | os.O_EXCL | getattr(os, "O_BINARY", 0),
                mask,
            )
        except FileExistsError as exc:
            raise FileLocked(filename, self._lockfilename) from exc
        self._file = os.fdopen(fd, mode, bufsize)
        self._closed = False

    @property
    def lockfilename(self) -> str | bytes:
        """Path of the lock file currently held."""
        return self._lockfilename

    def abort(self) -> None:
        """Close and discard the lockfile without overwriting the target.

        If the file is already closed, this is a no-op.
        """
        if self._closed:
            return
        self._file.close()
        try:
            os.remove(self._lockfilename)
        except FileNotFoundError:
            # The file may have been removed already, which is ok.
            pass
        self._closed = True

    def close(self) -> None:
        """Close this file, saving the lockfile over the original.

        Raises:
          OSError: if the original file could not be overwritten. The
            lock file is removed in that case.
        """
        if self._closed:
            return
        self._file.flush()
        if self._fsync:
            os.fsync(self._file.fileno())
        self._file.close()
        try:
            os.replace(self._lockfilename, self._filename)
        finally:
            self.abort()

    def __del__(self) -> None:
        if not getattr(self, "_closed", True):
            warnings.warn(f"unclosed {self!r}", ResourceWarning, stacklevel=2)
            self.abort()

    def __enter__(self) -> "LockedFile":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()

    def __fspath__(self) -> str | bytes:
        return self._filename

    @property
    def closed(self) -> bool:
        """Return whether the file is closed."""
        return self._closed

    def __getattr__(self, name: str) -> Any:  # noqa: ANN401
        """Proxy method calls to the underlying file."""
        if name in self.PROXY_METHODS:
            return getattr(self._file, name)
        raise AttributeError(name)
