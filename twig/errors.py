# errors.py -- errors for twig
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

"""Twig-related exception classes."""

# Please do not add more errors here, but instead add them close to the code
# that raises the error.

from collections.abc import Sequence
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .merge import MergeConflict


def _to_str(value: Union[bytes, str, None]) -> str:
    if value is None:
        return "None"
    if isinstance(value, bytes):
        return value.decode("ascii", "replace")
    return value


class NotFound(KeyError):
    """An object or ref that was asked for does not exist.

    Subclasses KeyError so that mapping-style lookups on stores and ref
    containers behave like any other Python mapping.
    """

    def __init__(self, sha: bytes, *args: object) -> None:
        """Initialize NotFound.

        Args:
          sha: Id of the missing object.
          *args: Additional positional arguments.
        """
        self.sha = sha
        KeyError.__init__(self, sha, *args)

    def __str__(self) -> str:
        return f"{_to_str(self.sha)} not found"


class NoSuchRef(NotFound):
    """The named ref does not exist."""

    def __init__(self, name: bytes) -> None:
        """Initialize NoSuchRef.

        Args:
          name: Name of the missing ref.
        """
        self.name = name
        super().__init__(name)

    def __str__(self) -> str:
        return f"no such ref: {_to_str(self.name)}"


class InvalidParent(Exception):
    """A commit refers to a parent that is not a commit in the store."""

    def __init__(self, sha: bytes, reason: Optional[str] = None) -> None:
        """Initialize InvalidParent.

        Args:
          sha: The dangling parent id.
          reason: Optional extra detail.
        """
        self.sha = sha
        message = f"invalid parent {_to_str(sha)}"
        if reason is not None:
            message += f": {reason}"
        Exception.__init__(self, message)


class RefChanged(Exception):
    """A compare-and-swap on a ref lost a race.

    This is always retryable: re-read the ref, recompute and try again.
    """

    def __init__(
        self,
        name: bytes,
        expected: Optional[bytes],
        actual: Optional[bytes],
    ) -> None:
        """Initialize RefChanged.

        Args:
          name: Name of the ref.
          expected: Value the caller expected (None for "absent").
          actual: Value found (None if absent or unknown).
        """
        self.name = name
        self.expected = expected
        self.actual = actual
        Exception.__init__(
            self,
            f"ref {_to_str(name)} changed: expected {_to_str(expected)}, "
            f"found {_to_str(actual)}",
        )


class ConflictError(Exception):
    """Divergent content needs a resolution from the caller."""

    def __init__(self, conflicts: Sequence["MergeConflict"]) -> None:
        """Initialize ConflictError.

        Args:
          conflicts: The unresolved conflicts.
        """
        self.conflicts = list(conflicts)
        paths = ", ".join(c.path.decode("utf-8", "replace") for c in self.conflicts)
        Exception.__init__(self, f"Conflicts in: {paths}")

    @property
    def paths(self) -> list[bytes]:
        """Paths of the unresolved conflicts."""
        return [c.path for c in self.conflicts]


class IntegrityViolation(Exception):
    """Stored content does not hash to its id. Never repaired."""

    def __init__(
        self,
        expected: Union[bytes, str],
        got: Union[bytes, str],
        extra: Optional[str] = None,
    ) -> None:
        """Initialize IntegrityViolation.

        Args:
          expected: The id the content was stored or requested under.
          got: The id the content actually hashes to.
          extra: Optional additional error information.
        """
        self.expected = _to_str(expected)
        self.got = _to_str(got)
        self.extra = extra
        message = f"Integrity violation: expected {self.expected}, got {self.got}"
        if extra is not None:
            message += f"; {extra}"
        Exception.__init__(self, message)


class OperationAborted(Exception):
    """A traversal or rebase was cancelled between two steps."""


class RefFormatError(Exception):
    """Indicates an invalid ref name."""


class ObjectFormatException(Exception):
    """Indicates an error parsing an object."""


class WrongObjectException(Exception):
    """Baseclass for all the _ is not a _ exceptions on objects.

    Do not instantiate directly.

    Subclasses should define a type_name attribute that indicates what
    was expected if they were raised.
    """

    type_name: str

    def __init__(self, sha: bytes, *args: object, **kwargs: object) -> None:
        """Initialize a WrongObjectException.

        Args:
          sha: The id of the object that was not of the expected type.
          *args: Additional positional arguments.
          **kwargs: Additional keyword arguments.
        """
        self.sha = sha
        Exception.__init__(self, f"{_to_str(sha)} is not a {self.type_name}")


class NotCommitError(WrongObjectException):
    """Indicates that the sha requested does not point to a commit."""

    type_name = "commit"


class NotTreeError(WrongObjectException):
    """Indicates that the sha requested does not point to a tree."""

    type_name = "tree"


class NotTagError(WrongObjectException):
    """Indicates that the sha requested does not point to a tag."""

    type_name = "tag"


class NotBlobError(WrongObjectException):
    """Indicates that the sha requested does not point to a blob."""

    type_name = "blob"
