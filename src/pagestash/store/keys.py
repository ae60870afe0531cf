"""Backend keys shared by the store components."""

PAGES_KEY = "pages"
SETTINGS_KEY = "settings"
METADATA_KEY = "metadata"
BACKUP_PREFIX = "backup_"

SCHEMA_VERSION = "1.0.0"
