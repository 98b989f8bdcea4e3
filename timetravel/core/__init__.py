"""Core domain - configuration, database, tables, journable kinds and timestamps."""

# Configuration
from timetravel.core.config import Settings, configure_logging, get_settings

# Database
from timetravel.core.database import (
    get_db,
    get_db_path,
    set_db_path,
    get_engine,
    reset_engine,
    get_session,
    init_db,
    reset_db,
    use_connection,
)

# Tables
from timetravel.core.models import (
    Journal,
    JournalEntryRecord,
    Project,
    ProjectJournal,
    UTCDateTime,
    WorkPackage,
    WorkPackageJournal,
    utc_now,
)

# Journable kinds
from timetravel.core.journables import (
    JOURNABLES_ALIAS,
    JOURNALS_TABLE,
    PROJECT,
    WORK_PACKAGE,
    JournableKind,
    all_kinds,
    get_kind,
    kind_for_entity,
    kind_for_table,
)

# Timestamps
from timetravel.core.timestamp import (
    Duration,
    TimestampValue,
    parse_duration,
    to_utc,
)

__all__ = [
    # Configuration
    "Settings",
    "configure_logging",
    "get_settings",
    # Database
    "get_db",
    "get_db_path",
    "set_db_path",
    "get_engine",
    "reset_engine",
    "get_session",
    "init_db",
    "reset_db",
    "use_connection",
    # Tables
    "Journal",
    "JournalEntryRecord",
    "Project",
    "ProjectJournal",
    "UTCDateTime",
    "WorkPackage",
    "WorkPackageJournal",
    "utc_now",
    # Journable kinds
    "JOURNABLES_ALIAS",
    "JOURNALS_TABLE",
    "PROJECT",
    "WORK_PACKAGE",
    "JournableKind",
    "all_kinds",
    "get_kind",
    "kind_for_entity",
    "kind_for_table",
    # Timestamps
    "Duration",
    "TimestampValue",
    "parse_duration",
    "to_utc",
]
