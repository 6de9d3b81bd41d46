"""
Typed snapshots of console and storage entities.

Each model has a from_api constructor that validates the JSON shape returned
by the remote API and raises MalformedResponseError when it does not match.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from salsa_sync.clients.base import MalformedResponseError


def _require_str(data: Dict[str, Any], key: str, entity: str, optional: bool = False) -> str:
    if not isinstance(data, dict):
        raise MalformedResponseError(f"Expected object for {entity}, got {type(data).__name__}")
    value = data.get(key)
    if value is None and optional:
        return ''
    if not isinstance(value, str):
        raise MalformedResponseError(f"{entity} field '{key}' missing or not a string: {data!r}")
    return value


def _require_list(data: Any, entity: str) -> List[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedResponseError(f"Expected list of {entity}, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class ConsoleUser:
    email: str
    name: str = ''

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'ConsoleUser':
        return cls(
            email=_require_str(data, 'email', 'console user'),
            name=_require_str(data, 'name', 'console user', optional=True),
        )


@dataclass(frozen=True)
class ConsoleTeam:
    slug: str
    members: Tuple[ConsoleUser, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'ConsoleTeam':
        slug = _require_str(data, 'slug', 'console team')
        members = []
        for member in _require_list(data.get('members'), 'team members'):
            if not isinstance(member, dict):
                raise MalformedResponseError(f"Malformed member in team {slug}: {member!r}")
            members.append(ConsoleUser.from_api(member.get('user')))
        return cls(slug=slug, members=tuple(members))


@dataclass(frozen=True)
class TargetUser:
    """OIDC user as stored by the storage API. username is the console email."""
    username: str
    email: str = ''

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'TargetUser':
        return cls(
            username=_require_str(data, 'username', 'storage user'),
            email=_require_str(data, 'email', 'storage user', optional=True),
        )


@dataclass(frozen=True)
class TargetTeam:
    uuid: str
    name: str
    oidc_users: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'TargetTeam':
        name = _require_str(data, 'name', 'storage team')
        usernames = []
        for user in _require_list(data.get('oidcUsers'), 'team oidcUsers'):
            usernames.append(_require_str(user, 'username', f'oidc user of team {name}'))
        return cls(
            uuid=_require_str(data, 'uuid', 'storage team'),
            name=name,
            oidc_users=tuple(usernames),
        )


@dataclass(frozen=True)
class Project:
    name: str
    uuid: str
    version: str = ''

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> 'Project':
        return cls(
            name=_require_str(data, 'name', 'project'),
            uuid=_require_str(data, 'uuid', 'project'),
            version=_require_str(data, 'version', 'project', optional=True),
        )


def decode_list(data: Any, model, entity: str) -> list:
    """Decode a JSON array into a list of model instances. A null body is an empty list."""
    if data is None:
        return []
    if not isinstance(data, list):
        raise MalformedResponseError(f"Expected list of {entity}, got {type(data).__name__}")
    return [model.from_api(item) for item in data]
