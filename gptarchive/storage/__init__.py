"""Storage layer: output directory layout and the persisted failure memory."""

from gptarchive.storage.failures import PermanentFailureSet
from gptarchive.storage.store import StorageService

__all__ = ["PermanentFailureSet", "StorageService"]
