"""
Salsa storage REST client.

Implements user, team, ACL mapping and project operations against the
Dependency-Track style storage API. Every request carries the X-API-Key header.
"""

import logging
from typing import Any, Dict, List, Optional

from salsa_sync.clients.base import ApiClientBase, MalformedResponseError
from salsa_sync.models import Project, TargetTeam, TargetUser, decode_list
from salsa_sync.signals import CancellationToken

logger = logging.getLogger(__name__)


class StorageClient(ApiClientBase):
    """Client for the Salsa storage API."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 30,
                 verify_ssl: bool = True, ca_file: Optional[str] = None,
                 cancellation: Optional[CancellationToken] = None):
        super().__init__('storage', base_url, timeout=timeout, verify_ssl=verify_ssl,
                         ca_file=ca_file, cancellation=cancellation)
        self.api_key = api_key

    @classmethod
    def from_config(cls, config: Dict[str, Any], cancellation: Optional[CancellationToken] = None) -> 'StorageClient':
        return cls(
            config['storage_api'],
            config['storage_api_key'],
            timeout=config.get('http_timeout', 30),
            verify_ssl=config.get('verify_ssl', True),
            ca_file=config.get('ca_file'),
            cancellation=cancellation,
        )

    def auth_headers(self) -> Dict[str, str]:
        return {'X-API-Key': self.api_key}

    # Users

    def get_users(self) -> List[TargetUser]:
        users = decode_list(self.request_json('GET', 'user/oidc'), TargetUser, 'storage users')
        logger.debug(f"Retrieved {len(users)} OIDC users from storage")
        return users

    def create_user(self, email: str):
        """Create an OIDC user whose username and email are both the console email."""
        self.request('PUT', 'user/oidc', {'username': email, 'email': email})

    def delete_user(self, username: str):
        self.request('DELETE', 'user/oidc', {'username': username})

    # Teams

    def get_teams(self) -> List[TargetTeam]:
        teams = decode_list(self.request_json('GET', 'team'), TargetTeam, 'storage teams')
        logger.debug(f"Retrieved {len(teams)} teams from storage")
        return teams

    def create_team(self, name: str):
        self.request('PUT', 'team', {'name': name})

    def delete_team(self, uuid: str):
        self.request('DELETE', 'team', {'uuid': uuid})

    # Projects and ACL

    def map_team_with_project(self, team: str, project: str):
        """Give a team access to a project. Both arguments are uuids."""
        self.request('PUT', 'acl/mapping', {'team': team, 'project': project})

    def lookup_project(self, name: str, version: str) -> Project:
        data = self.request_json('GET', 'project/lookup', params={'name': name, 'version': version})
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected project object, got {type(data).__name__}")
        return Project.from_api(data)

    def update_project_tags(self, uuid: str, tags: List[str]):
        """Replace the tags of a project."""
        self.request('PATCH', f'project/{uuid}', {'tags': [{'name': tag} for tag in tags]})
