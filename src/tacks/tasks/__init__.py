"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, CloseReason, Comment, Dependency)
- task_filter.py: typed list filters compiled to bound SQL predicates
- task_store.py: SQLite-backed storage, migrations and the change counter
- task_ids.py: top-level and subtask id allocation
- task_graph.py: dependency edges, cycle checks, ready/blocked sets
- task_lifecycle.py: create/update/claim/close rules
- task_stats.py: grouped counts, epic progress, summary and board views
"""
