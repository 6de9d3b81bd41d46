#!/usr/bin/env python3
"""
Unit tests for the reconciler.

Runs reconciliation passes against an in-memory storage double that records
every write and can be told to fail specific calls.
"""

import unittest
from unittest.mock import Mock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from salsa_sync.clients.base import ApiError, MalformedResponseError
from salsa_sync.models import ConsoleTeam, ConsoleUser, TargetTeam, TargetUser
from salsa_sync.reconcile import (
    Reconciler,
    StorageReadError,
    difference,
    is_protected_team,
)


class FakeStorage:
    """Storage double that applies writes to its own state."""

    def __init__(self, users=None, teams=None):
        self.users = list(users or [])
        self.teams = list(teams or [])
        self.calls = []
        self.fail_on = set()
        self.read_error = None
        self._next_uuid = 1000

    def _record(self, name, arg):
        self.calls.append((name, arg))
        if (name, arg) in self.fail_on:
            raise ApiError(f"{name} {arg} failed", status=500, body='boom')

    def get_users(self):
        if self.read_error == 'users':
            raise ApiError("users unavailable", status=503)
        return list(self.users)

    def get_teams(self):
        if self.read_error == 'teams':
            raise ApiError("teams unavailable", status=503)
        return list(self.teams)

    def create_user(self, email):
        self._record('create_user', email)
        self.users.append(TargetUser(username=email, email=email))

    def delete_user(self, username):
        self._record('delete_user', username)
        self.users = [u for u in self.users if u.username != username]

    def create_team(self, name):
        self._record('create_team', name)
        self._next_uuid += 1
        self.teams.append(TargetTeam(uuid=f'uuid-{self._next_uuid}', name=name))

    def delete_team(self, uuid):
        self._record('delete_team', uuid)
        self.teams = [t for t in self.teams if t.uuid != uuid]

    def writes(self, name):
        return [arg for call, arg in self.calls if call == name]


def users(*emails):
    return [ConsoleUser(email=e, name=e.split('@')[0]) for e in emails]


def teams(*slugs):
    return [ConsoleTeam(slug=s) for s in slugs]


class TestDifference(unittest.TestCase):
    """Test cases for the generic set difference."""

    def test_keeps_unmatched_in_order(self):
        result = difference([3, 1, 2, 5], [2, 3], lambda a, b: a == b)
        self.assertEqual(result, [1, 5])

    def test_keeps_duplicates(self):
        result = difference(['a', 'a', 'b'], ['b'], lambda a, b: a == b)
        self.assertEqual(result, ['a', 'a'])

    def test_across_types(self):
        result = difference(users('a@x.no', 'b@x.no'), [TargetUser('b@x.no')],
                            lambda cu, su: cu.email == su.username)
        self.assertEqual([u.email for u in result], ['a@x.no'])

    def test_empty_others(self):
        self.assertEqual(difference([1, 2], [], lambda a, b: True), [1, 2])


class TestProtectedTeams(unittest.TestCase):

    def test_case_insensitive(self):
        for name in ('Portfolio Managers', 'portfolio managers', 'ADMINISTRATOR', 'automation'):
            self.assertTrue(is_protected_team(name), name)

    def test_other_names(self):
        for name in ('Automations', 'admin', 'team-a', ''):
            self.assertFalse(is_protected_team(name), name)


class TestReconciler(unittest.TestCase):
    """Test cases for Reconciler.synchronize."""

    def test_creates_missing_users(self):
        storage = FakeStorage(users=[TargetUser('b@x.no', 'b@x.no')])
        result = Reconciler(storage).synchronize([], users('a@x.no', 'b@x.no', 'c@x.no'))

        self.assertEqual(storage.writes('create_user'), ['a@x.no', 'c@x.no'])
        self.assertEqual(result.users_created, 2)
        self.assertIn(TargetUser('a@x.no', 'a@x.no'), storage.users)

    def test_deletes_users_missing_from_console(self):
        storage = FakeStorage(users=[TargetUser('a@x.no'), TargetUser('gone@x.no'), TargetUser('old@x.no')])
        result = Reconciler(storage).synchronize([], users('a@x.no'))

        self.assertEqual(storage.writes('delete_user'), ['gone@x.no', 'old@x.no'])
        self.assertEqual(storage.writes('create_user'), [])
        self.assertEqual(result.users_deleted, 2)

    def test_user_match_is_case_sensitive(self):
        storage = FakeStorage(users=[TargetUser('Alice@x.no')])
        Reconciler(storage).synchronize([], users('alice@x.no'))

        self.assertEqual(storage.writes('create_user'), ['alice@x.no'])
        self.assertEqual(storage.writes('delete_user'), ['Alice@x.no'])

    def test_team_create_delete_symmetry(self):
        storage = FakeStorage(teams=[TargetTeam('uuid-b', 'B'), TargetTeam('uuid-c', 'C')])
        result = Reconciler(storage).synchronize(teams('A', 'B'), [])

        self.assertEqual(storage.writes('create_team'), ['A'])
        self.assertEqual(storage.writes('delete_team'), ['uuid-c'])
        self.assertEqual(result.teams_created, 1)
        self.assertEqual(result.teams_deleted, 1)

    def test_protected_teams_never_deleted(self):
        storage = FakeStorage(teams=[
            TargetTeam('uuid-1', 'Portfolio Managers'),
            TargetTeam('uuid-2', 'administrator'),
            TargetTeam('uuid-3', 'AUTOMATION'),
            TargetTeam('uuid-4', 'stale-team'),
        ])
        Reconciler(storage).synchronize([], [])

        self.assertEqual(storage.writes('delete_team'), ['uuid-4'])

    def test_pass_order(self):
        storage = FakeStorage(
            users=[TargetUser('old@x.no')],
            teams=[TargetTeam('uuid-old', 'old-team')]
        )
        Reconciler(storage).synchronize(teams('new-team'), users('new@x.no'))

        self.assertEqual([call for call, _ in storage.calls],
                         ['create_user', 'delete_user', 'create_team', 'delete_team'])

    def test_item_failure_does_not_stop_pass(self):
        storage = FakeStorage(
            users=[TargetUser('old@x.no')],
            teams=[TargetTeam('uuid-old', 'old-team')]
        )
        storage.fail_on.add(('create_user', 'a@x.no'))

        result = Reconciler(storage).synchronize(teams('new-team'), users('a@x.no', 'b@x.no'))

        self.assertEqual(storage.writes('create_user'), ['a@x.no', 'b@x.no'])
        self.assertEqual(storage.writes('delete_user'), ['old@x.no'])
        self.assertEqual(storage.writes('create_team'), ['new-team'])
        self.assertEqual(storage.writes('delete_team'), ['uuid-old'])
        self.assertEqual(result.users_created, 1)
        self.assertEqual(result.users_create_failed, 1)
        self.assertEqual(result.failures, 1)

    def test_every_kind_of_failure_is_counted(self):
        storage = FakeStorage(users=[TargetUser('old@x.no')], teams=[TargetTeam('u1', 'old')])
        storage.fail_on.update({
            ('create_user', 'a@x.no'), ('delete_user', 'old@x.no'),
            ('create_team', 'new'), ('delete_team', 'u1'),
        })

        result = Reconciler(storage).synchronize(teams('new'), users('a@x.no'))

        self.assertEqual(result.failures, 4)
        self.assertEqual(result.as_dict()['teams_delete_failed'], 1)

    def test_users_read_failure_is_fatal(self):
        storage = FakeStorage(users=[TargetUser('old@x.no')], teams=[TargetTeam('u1', 'old')])
        storage.read_error = 'users'

        with self.assertRaises(StorageReadError):
            Reconciler(storage).synchronize(teams('new'), users('a@x.no'))
        self.assertEqual(storage.calls, [])

    def test_teams_read_failure_is_fatal(self):
        storage = FakeStorage(users=[TargetUser('old@x.no')])
        storage.read_error = 'teams'

        with self.assertRaises(StorageReadError):
            Reconciler(storage).synchronize(teams('new'), users('a@x.no'))
        self.assertEqual(storage.calls, [])

    def test_malformed_read_is_fatal(self):
        storage = FakeStorage()
        storage.get_users = Mock(side_effect=MalformedResponseError("not json"))

        with self.assertRaises(StorageReadError):
            Reconciler(storage).synchronize([], users('a@x.no'))
        self.assertEqual(storage.calls, [])

    def test_second_run_is_noop(self):
        storage = FakeStorage(
            users=[TargetUser('old@x.no'), TargetUser('keep@x.no')],
            teams=[TargetTeam('u1', 'old'), TargetTeam('u2', 'keep'), TargetTeam('u3', 'Automation')]
        )
        console_teams = teams('keep', 'new')
        console_users = users('keep@x.no', 'new@x.no')

        Reconciler(storage).synchronize(console_teams, console_users)
        self.assertTrue(storage.calls)

        storage.calls = []
        result = Reconciler(storage).synchronize(console_teams, console_users)

        self.assertEqual(storage.calls, [])
        self.assertEqual(sum(result.as_dict().values()), 0)

    def test_duplicate_console_users_each_processed(self):
        storage = FakeStorage()
        Reconciler(storage).synchronize([], users('a@x.no', 'a@x.no'))

        self.assertEqual(storage.writes('create_user'), ['a@x.no', 'a@x.no'])


if __name__ == '__main__':
    unittest.main()
