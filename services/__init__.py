"""
External collaborators of the attendance engine.

This package provides:
- PhotoStore: enrollment photo storage (local disk or http(s) refs)
- DatabaseRosterProvider: course rosters read from the SQLite database
"""

from .photo_store import PhotoStore
from .roster import DatabaseRosterProvider

__all__ = [
	'PhotoStore',
	'DatabaseRosterProvider',
]
