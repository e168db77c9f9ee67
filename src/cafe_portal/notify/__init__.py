"""
Notification subsystem.

Components:
- events.py: PortalEvent, EventKind, Audience
- fanout.py: subscriber registry and isolated background delivery
- webhook.py: httpx sink that POSTs events to a URL
"""
