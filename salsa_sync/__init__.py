"""
Salsa Sync - Synchronize users and teams from the console into the Salsa storage API.

This package reads the authoritative team and user lists from the console GraphQL
API and brings the Dependency-Track style storage platform in line with them.
"""

__version__ = "1.0.0"
__author__ = "Salsa Sync Team"
