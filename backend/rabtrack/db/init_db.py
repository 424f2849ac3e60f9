"""
Database initialization script.
"""
from rabtrack.core.logging_config import configure_logging
from rabtrack.db.session import engine, init_db

if __name__ == "__main__":
    logger = configure_logging()
    logger.info(f"Initializing database at {engine.url!r}...")
    init_db()
    logger.info("Database initialized successfully!")
