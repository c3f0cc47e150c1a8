from enum import Enum


class BackendType(Enum):
    """Supported result store backends."""

    IN_MEMORY = "in_memory"
    SQLITE = "sqlite"
