"""
Reconciliation of storage users and teams against the console.

The console is authoritative. Each pass is a one-way set difference between
two lists of differently shaped records, followed by one storage call per
item found. A failing item is logged and skipped; only the initial storage
reads are fatal.
"""

import logging
from typing import Callable, Iterable, List, TypeVar

from salsa_sync.clients.base import ApiError
from salsa_sync.models import ConsoleTeam, ConsoleUser

logger = logging.getLogger(__name__)

A = TypeVar('A')
B = TypeVar('B')

# Built-in storage teams that are never deleted. Compared case-insensitively.
PROTECTED_TEAMS = ('Portfolio Managers', 'Administrator', 'Automation')
_PROTECTED_UPPER = frozenset(team.upper() for team in PROTECTED_TEAMS)


class StorageReadError(Exception):
    """Raised when current users or teams cannot be read from storage."""
    pass


def difference(items: Iterable[A], others: Iterable[B], matches: Callable[[A, B], bool]) -> List[A]:
    """
    Return the items that match none of the others, in input order.

    Linear scan per item; duplicates are kept.
    """
    others = list(others)
    return [item for item in items if not any(matches(item, other) for other in others)]


def is_protected_team(name: str) -> bool:
    return name.upper() in _PROTECTED_UPPER


class SyncResult:
    """Counters for one reconciliation pass."""

    FIELDS = (
        'users_created', 'users_deleted', 'teams_created', 'teams_deleted',
        'users_create_failed', 'users_delete_failed', 'teams_create_failed', 'teams_delete_failed',
    )

    def __init__(self):
        for name in self.FIELDS:
            setattr(self, name, 0)

    @property
    def failures(self) -> int:
        return (self.users_create_failed + self.users_delete_failed
                + self.teams_create_failed + self.teams_delete_failed)

    def as_dict(self) -> dict:
        return {name: getattr(self, name) for name in self.FIELDS}


class Reconciler:
    """Applies the console's users and teams to the storage API."""

    def __init__(self, storage):
        """
        Args:
            storage: StorageClient (or anything with the same user/team methods)
        """
        self.storage = storage

    def synchronize(self, console_teams: List[ConsoleTeam], console_users: List[ConsoleUser]) -> SyncResult:
        """
        Run one reconciliation pass.

        Passes run in order: create users, delete users, create teams, delete teams.

        Raises:
            StorageReadError: If the storage users or teams cannot be read; nothing is written
        """
        try:
            storage_users = self.storage.get_users()
            storage_teams = self.storage.get_teams()
        except ApiError as e:
            raise StorageReadError(f"getting users or teams from storage: {e}") from e

        result = SyncResult()

        for user in difference(console_users, storage_users,
                               lambda cu, su: cu.email == su.username):
            logger.info(f"User not in storage {user.email}, creating...")
            if self._apply(self.storage.create_user, user.email, f"failed to create user {user.email}"):
                result.users_created += 1
            else:
                result.users_create_failed += 1

        for user in difference(storage_users, console_users,
                               lambda su, cu: su.username == cu.email):
            logger.info(f"User not in console {user.username}, deleting...")
            if self._apply(self.storage.delete_user, user.username, f"failed to delete user {user.username}"):
                result.users_deleted += 1
            else:
                result.users_delete_failed += 1

        for team in difference(console_teams, storage_teams,
                               lambda ct, st: ct.slug == st.name):
            logger.info(f"Team not in storage {team.slug}, creating...")
            if self._apply(self.storage.create_team, team.slug, f"failed to create team {team.slug}"):
                result.teams_created += 1
            else:
                result.teams_create_failed += 1

        for team in difference(storage_teams, console_teams,
                               lambda st, ct: st.name == ct.slug):
            if is_protected_team(team.name):
                logger.debug(f"Keeping protected team {team.name}")
                continue
            logger.info(f"Team not in console {team.name}, deleting...")
            if self._apply(self.storage.delete_team, team.uuid, f"failed to delete team {team.name}"):
                result.teams_deleted += 1
            else:
                result.teams_delete_failed += 1

        return result

    def _apply(self, operation, argument: str, failure_message: str) -> bool:
        try:
            operation(argument)
            return True
        except ApiError as e:
            logger.warning(f"{failure_message}: {e}")
            return False
