"""tacks: a small task tracker with blocking dependencies, subtasks and epics."""

__version__ = "0.3.0"
