"""Retrieval pipeline: orchestration, conversation backup and file materialization."""

from gptarchive.pipeline.backup import (
    BackupOptions,
    BackupRunResult,
    BackupService,
    CollectionResult,
    Project,
    backup_everything,
    sum_results,
)
from gptarchive.pipeline.files import FileDownloadResult, FileService, build_file_map
from gptarchive.pipeline.orchestrator import BatchStats, DownloadOrchestrator, ItemFailure, ItemStatus
from gptarchive.pipeline.references import FileReference, Provenance, extract_file_references

__all__ = [
    "BackupOptions",
    "BackupRunResult",
    "BackupService",
    "BatchStats",
    "CollectionResult",
    "DownloadOrchestrator",
    "FileDownloadResult",
    "FileReference",
    "FileService",
    "ItemFailure",
    "ItemStatus",
    "Project",
    "Provenance",
    "backup_everything",
    "build_file_map",
    "extract_file_references",
    "sum_results",
]
