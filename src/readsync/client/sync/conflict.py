"""Last-write-wins conflict resolution.

Decision table for one key:

| Local   | Remote  | Versions          | Decision     |
|---------|---------|-------------------|--------------|
| present | absent  | -                 | NO_CONFLICT  |
| absent  | present | -                 | NO_CONFLICT  |
| present | present | local newer       | KEEP_LOCAL   |
| present | present | remote newer      | KEEP_REMOTE  |
| present | present | equal, same data  | NO_CONFLICT  |
| present | present | equal, different  | KEEP_REMOTE  |

Equal versions with different payloads resolve to the remote copy. Every
replica reconciles against the same remote, so they all converge on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Generic, TypeVar

from readsync.core.entities import VersionedRecord
from readsync.core.timestamps import versions_equal

R = TypeVar("R", bound=VersionedRecord)


class Decision(Enum):
    """Outcome of comparing the two copies of a key."""

    KEEP_LOCAL = auto()  # local overwrites remote
    KEEP_REMOTE = auto()  # remote overwrites local
    NO_CONFLICT = auto()  # one side missing, or both identical


@dataclass(frozen=True)
class Resolution(Generic[R]):
    """A decision together with the record both replicas should hold."""

    decision: Decision
    winner: R


def resolve(local: R | None, remote: R | None) -> Resolution[R]:
    """Resolve two copies of the same key.

    Raises:
        ValueError: If both sides are missing.
    """
    if remote is None:
        if local is None:
            raise ValueError("resolve() needs at least one record")
        return Resolution(Decision.NO_CONFLICT, local)
    if local is None:
        return Resolution(Decision.NO_CONFLICT, remote)

    if versions_equal(local.version, remote.version):
        if local.payload() == remote.payload():
            return Resolution(Decision.NO_CONFLICT, remote)
        return Resolution(Decision.KEEP_REMOTE, remote)

    if local.version > remote.version:
        return Resolution(Decision.KEEP_LOCAL, local)
    return Resolution(Decision.KEEP_REMOTE, remote)
