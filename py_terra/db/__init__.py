"""
Database utilities and models.

This package provides:
- SQLAlchemy models for runs, territories, history and stats
- Database connection management
- The transactional territory repository used by the conquest engine
- Read queries for the API
"""

from .connection import Database, db
from .models import (
    Base, Run, Territory, TerritoryHistory, TerritoryClaim,
    UserStats, TeamMember, TeamStats
)
from .queries import TerritoryQueries
from .repository import SqlTerritoryRepository, insert_ignore

__all__ = [
    # Connection management
    'Database', 'db',

    # Repository and queries
    'SqlTerritoryRepository', 'insert_ignore', 'TerritoryQueries',

    # Models
    'Base', 'Run', 'Territory', 'TerritoryHistory', 'TerritoryClaim',
    'UserStats', 'TeamMember', 'TeamStats'
]
