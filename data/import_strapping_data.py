# data/import_strapping_data.py
import os
import sys
import pandas as pd
import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from config import settings
from data.database import get_db
from data.db_models import StrappingData, Asset
from utils.helpers import setup_main_logging

logger = logging.getLogger(__name__)

# Filenames are the tank asset ids, e.g. "T01.csv"
STRAPPING_TABLES_DIR = os.path.join(settings.project_root, 'data', 'strapping_tables')


def clear_existing_strapping_data(db: Session, asset_id: str) -> int:
    """Deletes old strapping data for a specific asset before import."""
    num_deleted = db.query(StrappingData).filter(StrappingData.asset_id == asset_id).delete()
    if num_deleted > 0:
        logger.info(f"Cleared {num_deleted} existing strapping records for asset '{asset_id}'.")
    return num_deleted


def read_strapping_csv(file_path: str) -> pd.DataFrame:
    """
    Reads a strapping CSV into a two-column frame (level_mm, volume_litres),
    ascending by level with one row per level.
    """
    df = pd.read_csv(file_path)
    # Standardize column names ('Level (mm)' -> 'level_mm', 'Volume (Litres)' -> 'volume_litres')
    df.columns = [c.lower().strip().replace(' ', '_').replace('(', '').replace(')', '') for c in df.columns]
    if 'level_mm' not in df.columns or 'volume_litres' not in df.columns:
        raise ValueError(f"CSV file '{os.path.basename(file_path)}' must contain 'level_mm' and 'volume_litres' columns.")

    df = df[['level_mm', 'volume_litres']].apply(pd.to_numeric, errors='coerce')
    invalid = df.isna().any(axis=1)
    if invalid.any():
        logger.warning(f"Skipping {int(invalid.sum())} non-numeric rows in '{os.path.basename(file_path)}'.")
        df = df[~invalid]
    return df.sort_values('level_mm', kind='mergesort').drop_duplicates(subset='level_mm', keep='last').reset_index(drop=True)


def import_strapping_table(db: Session, asset_id: str, file_path: str) -> int:
    """Imports a single strapping table CSV into the database. Returns the number of rows stored."""
    if not os.path.exists(file_path):
        logger.warning(f"File not found: {file_path}. Skipping import for asset '{asset_id}'.")
        return 0

    asset = db.query(Asset).filter(Asset.asset_id == asset_id).first()
    if not asset or asset.asset_type != 'Tank':
        logger.warning(f"Tank '{asset_id}' not found in the 'assets' table. Skipping strapping data import.")
        return 0

    logger.info(f"Processing strapping table for tank '{asset_id}' from file '{os.path.basename(file_path)}'...")
    try:
        df = read_strapping_csv(file_path)
    except (ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        logger.error(f"Could not read strapping table for '{asset_id}': {e}")
        return 0

    if df.empty:
        logger.warning(f"No data to insert for asset '{asset_id}'.")
        return 0

    records_to_insert = [
        StrappingData(asset_id=asset_id, level_mm=float(row.level_mm), volume_litres=float(row.volume_litres))
        for row in df.itertuples(index=False)
    ]
    try:
        clear_existing_strapping_data(db, asset_id)
        db.bulk_save_objects(records_to_insert)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"An error occurred during import for asset '{asset_id}': {e}", exc_info=True)
        raise
    logger.info(f"Successfully imported {len(records_to_insert)} strapping records for asset '{asset_id}'.")
    return len(records_to_insert)


def main():
    """Main function to iterate through CSVs and import them."""
    setup_main_logging()
    if not os.path.isdir(STRAPPING_TABLES_DIR):
        logger.critical(f"Strapping tables directory not found at: '{STRAPPING_TABLES_DIR}'")
        sys.exit(1)

    with get_db() as db:
        if not db:
            logger.critical("Could not establish a database session. Exiting.")
            sys.exit(1)

        for filename in sorted(os.listdir(STRAPPING_TABLES_DIR)):
            if filename.lower().endswith('.csv'):
                asset_id = os.path.splitext(filename)[0]
                import_strapping_table(db, asset_id, os.path.join(STRAPPING_TABLES_DIR, filename))

    logger.info("Strapping data import process finished.")


if __name__ == "__main__":
    main()
