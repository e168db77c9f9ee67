# src/cafe_portal/tasks/catalog.py

"""
Service catalog: read-only reference data used when pricing new tasks.

A task created for a known service takes that service's price and name.
Nothing else about pricing is derived here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Service:
    id: str
    name: str
    category: str
    price: float
    unit: str = "flat"
    is_active: bool = True


DEFAULT_SERVICES: tuple[Service, ...] = (
    Service("svc-1", "Computer Usage", "usage", 200, "per_hour"),
    Service("svc-2", "B&W Printing", "printing", 10, "per_page"),
    Service("svc-3", "Color Printing", "printing", 50, "per_page"),
    Service("svc-4", "Document Scanning", "scanning", 20, "per_page"),
    Service("svc-5", "Photocopying B&W", "photocopy", 8, "per_copy"),
    Service("svc-6", "Photocopying Color", "photocopy", 40, "per_copy"),
    Service("svc-7", "Typing Services", "typing", 50, "per_page"),
    Service("svc-8", "CV Creation", "document", 500, "flat"),
    Service("svc-9", "Email Setup", "service", 200, "flat"),
    Service("svc-10", "Internet Browsing", "usage", 100, "per_hour"),
)


class ServiceCatalog:
    def __init__(self, services: Iterable[Service] = DEFAULT_SERVICES) -> None:
        self._services = {s.id: s for s in services}

    def get(self, service_id: str | None) -> Service | None:
        if not service_id:
            return None
        svc = self._services.get(service_id)
        if svc is None:
            logger.warning("Unknown service id=%s", service_id)
        return svc

    def list_active(self) -> list[Service]:
        return [s for s in self._services.values() if s.is_active]
