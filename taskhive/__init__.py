"""
TaskHive Review Core

Project/task tracker with a review workflow.

- Tasks move through Todo -> In Progress -> Done with progress kept in sync
- Every status change and review decision is appended to an immutable changelog
- Review state is always derived by replaying a task's changelog, never stored
- A project is marked Completed only once every one of its tasks is approved,
  writing exactly one project-level completion record
"""

__version__ = "1.4.0"
