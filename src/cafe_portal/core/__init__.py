"""
Core plumbing shared by every subsystem.

Components:
- errors.py: typed error hierarchy (PortalError and subclasses)
- ports.py: Protocol interfaces between components
- runner.py: asyncio loop in a background thread
- state.py: AppState container built by the composition root
"""
