"""Shared constants: engine names, default schemas, limits, archive names."""

from enum import Enum


class EngineName(str, Enum):
    """Canonical names of the supported database engines."""

    SQLSERVER = "SqlServer"
    MYSQL = "MySQL"
    POSTGRESQL = "PostgreSQL"
    FIREBIRD = "Firebird"


# Schema/owner a table lands in when none is given
DEFAULT_SCHEMAS: dict[EngineName, str] = {
    EngineName.SQLSERVER: "dbo",
    EngineName.MYSQL: "",
    EngineName.POSTGRESQL: "public",
    EngineName.FIREBIRD: "",
}

DEFAULT_BATCH_SIZE = 100_000
MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 1_000_000

DEFAULT_COMMAND_TIMEOUT = 300
MIN_COMMAND_TIMEOUT = 30
MAX_COMMAND_TIMEOUT = 3600

# Row-count / size estimation sentinels
ESTIMATE_PERMISSION_DENIED = -2
ESTIMATE_ERROR = -1

# Archive layout
FORMAT_VERSION = "2.0"
MANIFEST_FILE = "export_manifest.json"
DEPENDENCIES_FILE = "dependencies.json"
DATA_DIR = "data"
METADATA_DIR = "table_metadata"
DATA_EXTENSION = ".bin"
METADATA_EXTENSION = ".meta"
LOG_PATTERNS = ("export_log*.txt", "import_log*.txt", "*.log")
