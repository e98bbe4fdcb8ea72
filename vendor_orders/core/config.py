import os

# Database Configuration
# Uses default credentials for local Docker Compose setup
DB_URL = os.getenv("DATABASE_URL", "postgres://user:password@db:5432/vendor_orders_db")

# Application Metadata
PROJECT_NAME = "Vendor Order Lifecycle Service"
VERSION = "1.0.0"

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# API keys: vendor staff use API_KEY, admin-only commands (cancel) need ADMIN_API_KEY
API_KEY = os.getenv("API_KEY", "dev-vendor-key")
ADMIN_API_KEY = os.getenv("ADMIN_API_KEY", "dev-admin-key")

# Outbox Poller Configuration (delivers lifecycle events to subscribers)
POLLING_INTERVAL = int(os.getenv("POLLING_INTERVAL", 1)) # Poller checks for new events every N seconds
MAX_ATTEMPTS = int(os.getenv("MAX_ATTEMPTS", 5)) # Max retries for an event
BATCH_SIZE = int(os.getenv("BATCH_SIZE", 50)) # How many events to fetch per poll
RUN_OUTBOX_POLLER = os.getenv("RUN_OUTBOX_POLLER", "false").lower() in ("1", "true", "yes")

# Query pagination
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", 20))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", 100))

# Allow a driver to be assigned while the kitchen is still PREPARING
ALLOW_EARLY_DRIVER_ASSIGNMENT = os.getenv("ALLOW_EARLY_DRIVER_ASSIGNMENT", "false").lower() in ("1", "true", "yes")
