# survey_api/config.py
"""
Runtime configuration, read from the environment (and a local .env file).
"""
import os

from dotenv import load_dotenv

load_dotenv()

# memory:// | local:///path/to/dir | dynamodb://<region>/<table_prefix>
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Upper bound, in seconds, for a single store call
DB_TIMEOUT = float(os.getenv("DB_TIMEOUT", "5"))

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5050"))

CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
