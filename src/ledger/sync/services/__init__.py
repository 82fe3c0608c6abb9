"""Shared services used by the entity sync operations."""

from .audit import AuditTrail
from .create_or_link import (
    BatchLinkTarget,
    CreateOrLinkResolver,
    CultivarLinkTarget,
    LinkOutcome,
    LinkTarget,
    RoomLocationTarget,
)
from .location_resolver import LocationResolver
from .tags import generate_tag_range
from .validation import ValidationResult

__all__ = [
    "AuditTrail",
    "BatchLinkTarget",
    "CreateOrLinkResolver",
    "CultivarLinkTarget",
    "LinkOutcome",
    "LinkTarget",
    "LocationResolver",
    "RoomLocationTarget",
    "ValidationResult",
    "generate_tag_range",
]
