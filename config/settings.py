# File: config/settings.py
import os
import logging
from dotenv import load_dotenv

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper(),
                    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
dotenv_path = os.path.join(project_root, '.env')
try:
    logger.debug(f"Attempting to load .env file from: {dotenv_path}")

    if os.path.exists(dotenv_path):
        if load_dotenv(dotenv_path=dotenv_path):
            logger.info(f"Successfully loaded .env file from {dotenv_path}")
        else:
            logger.info(f".env file at {dotenv_path} processed but might be empty or set no new vars.")
    else:
        logger.debug(f".env file not found at {dotenv_path}. Using system environment variables or defaults.")
except OSError as e:
    logger.error(f"Error loading .env file from {dotenv_path}: {e}", exc_info=True)


# --- API Configuration ---
API_KEY = os.getenv("API_KEY")
if not API_KEY:
    logger.warning("API_KEY is not set. The API will not be accessible without it.")

FLASK_PORT = int(os.getenv("FLASK_PORT", "5000"))


# --- Database Configuration (For SQLAlchemy) ---
DB_NAME = os.getenv("DB_NAME", "wetstock_db")
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")

DATABASE_URL = os.getenv("DATABASE_URL")
if DATABASE_URL:
    logger.info("DATABASE_URL taken from environment.")
elif DB_PASSWORD:
    DATABASE_URL = f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    masked_db_url = f"postgresql+psycopg2://{DB_USER}:***@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    logger.info(f"DATABASE_URL constructed: {masked_db_url}")
else:
    DATABASE_URL = f"sqlite:///{os.path.join(project_root, 'wetstock.db')}"
    logger.warning(f"DB_PASSWORD is not set. Falling back to local SQLite database: {DATABASE_URL}")


# --- Reconciliation Settings ---
# Tolerance applied when neither the station nor the company supplies one.
DEFAULT_TOLERANCE_PERCENTAGE = float(os.getenv("DEFAULT_TOLERANCE_PERCENTAGE", "0.5"))
logger.info(f"DEFAULT_TOLERANCE_PERCENTAGE = {DEFAULT_TOLERANCE_PERCENTAGE}%")

# Reference temperature for volume correction (15°C convention for retail wet stock)
REFERENCE_TEMPERATURE_CELSIUS = float(os.getenv("REFERENCE_TEMPERATURE_CELSIUS", "15.0"))
logger.info(f"REFERENCE_TEMPERATURE_CELSIUS = {REFERENCE_TEMPERATURE_CELSIUS}°C")

TEMPERATURE_CORRECTION_ENABLED = os.getenv("TEMPERATURE_CORRECTION_ENABLED", "true").lower() == "true"
logger.info(f"TEMPERATURE_CORRECTION_ENABLED = {TEMPERATURE_CORRECTION_ENABLED}")


# --- Batch Service Settings ---
RECONCILIATION_INTERVAL_SECONDS = int(os.getenv("RECONCILIATION_INTERVAL_SECONDS", "300"))
logger.info(f"RECONCILIATION_INTERVAL_SECONDS = {RECONCILIATION_INTERVAL_SECONDS}")

logger.info("Configuration settings loaded.")
