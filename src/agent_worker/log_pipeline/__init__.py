"""Composable log pipeline: destinations, batching and job-scoped context."""

from agent_worker.log_pipeline.base import Destination
from agent_worker.log_pipeline.batching import BatchingDestination
from agent_worker.log_pipeline.console import ConsoleDestination
from agent_worker.log_pipeline.file import FileDestination, JobLogFile, job_log_path
from agent_worker.log_pipeline.pipeline import ChildLogger, LogPipeline, OperationTimer
from agent_worker.log_pipeline.records import LogLevel, LogRecord
from agent_worker.log_pipeline.remote import (
    ProgressDestination,
    RemoteDestination,
    progress_destination,
)

__all__ = [
    "BatchingDestination",
    "ChildLogger",
    "ConsoleDestination",
    "Destination",
    "FileDestination",
    "JobLogFile",
    "LogLevel",
    "LogPipeline",
    "LogRecord",
    "OperationTimer",
    "ProgressDestination",
    "RemoteDestination",
    "job_log_path",
    "progress_destination",
]
