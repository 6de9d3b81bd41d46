"""
Console GraphQL client.

Reads the authoritative team and user lists from the console query endpoint.
"""

import logging
from typing import Any, Dict, List, Optional

from salsa_sync.clients.base import ApiClientBase, ApiError, MalformedResponseError
from salsa_sync.models import ConsoleTeam, ConsoleUser, decode_list
from salsa_sync.signals import CancellationToken

logger = logging.getLogger(__name__)

TEAMS_QUERY = """query {
  teams {
    slug
    members {
      user {
        email
      }
    }
  }
}"""

USERS_QUERY = """query {
  users {
    name
    email
  }
}"""


class ConsoleClient(ApiClientBase):
    """Client for the console GraphQL API."""

    def __init__(self, query_endpoint: str, api_key: str, timeout: float = 30,
                 verify_ssl: bool = True, ca_file: Optional[str] = None,
                 cancellation: Optional[CancellationToken] = None):
        super().__init__('console', query_endpoint, timeout=timeout, verify_ssl=verify_ssl,
                         ca_file=ca_file, cancellation=cancellation)
        self.api_key = api_key

    @classmethod
    def from_config(cls, config: Dict[str, Any], cancellation: Optional[CancellationToken] = None) -> 'ConsoleClient':
        return cls(
            config['console_api'],
            config['console_api_key'],
            timeout=config.get('http_timeout', 30),
            verify_ssl=config.get('verify_ssl', True),
            ca_file=config.get('ca_file'),
            cancellation=cancellation,
        )

    def auth_headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.api_key}'}

    def query(self, query: str, field: str) -> Any:
        """
        Run a GraphQL query and return data[field].

        Raises:
            ApiError: On a non-200 status or a non-empty errors array
            MalformedResponseError: If the envelope cannot be decoded
        """
        envelope = self.request_json('POST', body={'query': query}, expected_status=200)

        if not isinstance(envelope, dict):
            raise MalformedResponseError(f"Unexpected console response: {envelope!r}")

        errors = envelope.get('errors')
        if errors:
            raise ApiError(f"console: {errors}")

        data = envelope.get('data')
        if not isinstance(data, dict) or field not in data:
            raise MalformedResponseError(f"Console response has no data.{field}")

        return data[field]

    def get_teams(self) -> List[ConsoleTeam]:
        """Fetch every console team with its members."""
        teams = decode_list(self.query(TEAMS_QUERY, 'teams'), ConsoleTeam, 'console teams')
        logger.info(f"Retrieved {len(teams)} teams from console")
        return teams

    def get_users(self) -> List[ConsoleUser]:
        """Fetch every console user."""
        users = decode_list(self.query(USERS_QUERY, 'users'), ConsoleUser, 'console users')
        logger.info(f"Retrieved {len(users)} users from console")
        return users
