# create_db_tables.py
import logging

from data.database import engine
from data.db_models import Base
from utils.helpers import setup_main_logging

logger = logging.getLogger(__name__)


def main():
    """
    Connects to the database and creates all tables defined by the SQLAlchemy models.
    Existing tables are left untouched.
    """
    setup_main_logging()
    if not engine:
        logger.critical("Database engine is not configured. Cannot create tables. Check your .env and config settings.")
        return False

    try:
        logger.info("Connecting to the database to create tables...")
        Base.metadata.create_all(bind=engine)
        logger.info(f"All tables created successfully (or already exist): {', '.join(sorted(Base.metadata.tables))}")
        return True
    except Exception as e:
        logger.critical(f"An error occurred while creating database tables: {e}", exc_info=True)
        return False


if __name__ == "__main__":
    main()
