APP_NAME = "LexNotar"

DATA_DIR = "data"
DB_FILE_NAME = "lexnotar.db"

TABLE_SCHEMA_VERSION = "schema_version"
SCHEMA_VERSION = "1.0.0"

# smallest currency unit used when rounding money (PYG/USD cents)
CURRENCY_STEP = 0.01

# IVA percentage applied to budget snapshots unless the caller overrides it
DEFAULT_TAX_RATE = 10.0

LOGGER_NAME = "lexnotar"
