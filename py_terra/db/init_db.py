#!/usr/bin/env python3
"""Initialize the database for py-terra."""

import sys

import structlog

from .connection import db

logger = structlog.get_logger()


def main():
    """Initialize the database."""
    try:
        print("Initializing database...")
        db.initialize()
        print("✓ Database initialized successfully!")
        print("✓ Tables created")

    except Exception as e:
        logger.error("Database initialization failed", error=str(e))
        print(f"✗ Database initialization failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
