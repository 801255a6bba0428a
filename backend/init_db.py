#!/usr/bin/env python3
# backend/init_db.py
"""
Create the value history tables.

Runnable from any directory:
    python backend/init_db.py
    cd backend && python init_db.py

Existing tables are left untouched.
"""
import logging
import sys
from pathlib import Path

# Make 'portfolio_history' importable without installing the project
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))

from portfolio_history.database import engine
from portfolio_history.models import Base
from portfolio_history.utils import setup_logging

logger = logging.getLogger("init_db")


def init_db() -> list[str]:
    """Create every table declared on Base; return their names."""
    Base.metadata.create_all(bind=engine)
    tables = sorted(Base.metadata.tables)
    logger.info(f"Tables ready: {', '.join(tables)}")
    return tables


if __name__ == "__main__":
    setup_logging()
    init_db()
