"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("QUEUED", not "ExecutionStatus.QUEUED")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters
"""

import enum


class ExecutionStatus(str, enum.Enum):
    QUEUED = "QUEUED"      # scheduler created the record and enqueued a work item
    RUNNING = "RUNNING"    # a worker picked it up and is executing the task
    SUCCESS = "SUCCESS"    # last attempt finished successfully
    FAILED = "FAILED"      # last attempt failed (may still be retried by the queue)


class TaskType(str, enum.Enum):
    API_CALL = "API_CALL"  # outbound HTTP request described by the payload config
