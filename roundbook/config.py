import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./roundbook.db")

# Document store backend: "sql" (SQLAlchemy) or "firestore"
STORE_BACKEND = os.getenv("STORE_BACKEND", "sql").lower()

# Firebase Configuration (Firestore + Auth)
FIREBASE_PROJECT_ID = os.getenv("FIREBASE_PROJECT_ID")

# Local development only - skips Firebase token verification
AUTH_DISABLED = os.getenv("AUTH_DISABLED", "false").lower() == "true"
DEV_OWNER_ID = os.getenv("DEV_OWNER_ID")

# Job generation
# When false every client is generated from its legacy frequency/nextVisit fields
USE_SERVICE_PLANS_GENERATION = os.getenv("USE_SERVICE_PLANS_GENERATION", "true").lower() == "true"
GENERATION_HORIZON_WEEKS = int(os.getenv("GENERATION_HORIZON_WEEKS", "52"))
ROLLOVER_LOOKAHEAD_WEEKS = int(os.getenv("ROLLOVER_LOOKAHEAD_WEEKS", "8"))
TOP_UP_MONTHS_AHEAD = int(os.getenv("TOP_UP_MONTHS_AHEAD", "24"))

DEFAULT_JOB_PRICE = float(os.getenv("DEFAULT_JOB_PRICE", "25"))
JOB_TIME_OF_DAY = os.getenv("JOB_TIME_OF_DAY", "09:00:00")
DEFAULT_PROVIDER_ID = os.getenv("DEFAULT_PROVIDER_ID", "test-provider-1")
# Service identifier used for the base service stored on legacy client records
LEGACY_SERVICE_ID = os.getenv("LEGACY_SERVICE_ID", "window-cleaning")

# Store limits (Firestore: 30 values per "in" filter, 500 writes per batch)
FIRESTORE_IN_QUERY_LIMIT = int(os.getenv("FIRESTORE_IN_QUERY_LIMIT", "30"))
MAX_BATCH_OPERATIONS = int(os.getenv("MAX_BATCH_OPERATIONS", "500"))
