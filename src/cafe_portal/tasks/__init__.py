"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskStatus, WorkerRef)
- task_store.py: SQLite-backed storage with atomic per-task transitions
- catalog.py: service catalog used to price tasks
- coordinator.py: claim/assign/advance flow with ledger and event side effects
"""
