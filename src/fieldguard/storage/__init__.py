from .keystore import (
    ENTRY_NAMES,
    FileKeyStorage,
    KeyStorage,
    MemoryKeyStorage,
    build_storage,
)

__all__ = ["ENTRY_NAMES", "FileKeyStorage", "KeyStorage", "MemoryKeyStorage", "build_storage"]
