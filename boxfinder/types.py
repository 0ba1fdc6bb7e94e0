"""
Shared types for boxfinder.

Entity dataclasses mirror what the BoxFinder API returns. The cache and the
mutation queue only ever persist the wire form (camelCase JSON dicts); these
classes convert at the edges via ``from_dict`` / ``to_dict``.
"""

import random
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

# === Shared Utility Functions ===


def utc_now() -> str:
    """Get current timestamp as ISO string in UTC."""
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO datetime string, returning None for empty or malformed input."""
    if not s:
        return None
    try:
        return datetime.fromisoformat(s.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None


_BASE36 = string.digits + string.ascii_lowercase


def _random_suffix(length: int = 9) -> str:
    return "".join(random.choice(_BASE36) for _ in range(length))


def generate_operation_id() -> str:
    """Unique id for a queued operation: ``<epoch millis>-<random>``."""
    return f"{int(time.time() * 1000)}-{_random_suffix()}"


# === Temporary identifiers ===

# Reserved prefix for ids minted locally while offline. Server ids never carry it.
TEMP_ID_PREFIX = "temp-"


def generate_temp_id() -> str:
    """Mint a provisional identifier for an entity created while offline."""
    return f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{_random_suffix()}"


def is_temp_id(entity_id: Optional[str]) -> bool:
    """True if ``entity_id`` was minted locally and not yet confirmed by the server."""
    return bool(entity_id) and entity_id.startswith(TEMP_ID_PREFIX)


# === Enums ===


class MutationKind(str, Enum):
    """Kind of write intent recorded in the mutation queue."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class EntityKind(str, Enum):
    """Entity kinds the mutation queue accepts."""

    CONTAINER = "container"
    ITEM = "item"


class CollectionKind(str, Enum):
    """Cached collections, one storage blob each."""

    CONTAINERS = "containers"
    BORROWED_ITEMS = "borrowed_items"
    TEAMS = "teams"


# === Entities ===


@dataclass
class Item:
    """An inventory item photographed into a container."""

    id: str
    name: str = ""
    description: Optional[str] = None
    category: Optional[str] = None
    image_url: str = ""
    thumbnail_url: Optional[str] = None
    ai_tags: List[str] = field(default_factory=list)
    ai_confidence: Optional[float] = None
    container_id: str = ""
    container_name: str = ""
    container_location: str = ""
    # Borrow tracking
    is_borrowed: bool = False
    borrowed_to: Optional[str] = None
    borrowed_at: Optional[str] = None
    borrowed_note: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Item":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            description=data.get("description"),
            category=data.get("category"),
            image_url=data.get("imageUrl") or "",
            thumbnail_url=data.get("thumbnailUrl"),
            ai_tags=list(data.get("aiTags") or []),
            ai_confidence=data.get("aiConfidence"),
            container_id=data.get("containerId") or "",
            container_name=data.get("containerName") or "",
            container_location=data.get("containerLocation") or "",
            is_borrowed=bool(data.get("isBorrowed", False)),
            borrowed_to=data.get("borrowedTo"),
            borrowed_at=data.get("borrowedAt"),
            borrowed_note=data.get("borrowedNote"),
            created_at=data.get("createdAt") or "",
            updated_at=data.get("updatedAt") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "imageUrl": self.image_url,
            "thumbnailUrl": self.thumbnail_url,
            "aiTags": list(self.ai_tags),
            "aiConfidence": self.ai_confidence,
            "containerId": self.container_id,
            "containerName": self.container_name,
            "containerLocation": self.container_location,
            "isBorrowed": self.is_borrowed,
            "borrowedTo": self.borrowed_to,
            "borrowedAt": self.borrowed_at,
            "borrowedNote": self.borrowed_note,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class Container:
    """A physical container addressed by a QR code and a grid location."""

    id: str
    name: str
    location: str = ""
    row: int = 0
    column: str = ""
    description: Optional[str] = None
    qr_code: str = ""
    color: Optional[str] = None
    item_count: int = 0
    parent_id: Optional[str] = None
    parent_name: Optional[str] = None
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Container":
        return cls(**_container_kwargs(data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "row": self.row,
            "column": self.column,
            "description": self.description,
            "qrCode": self.qr_code,
            "color": self.color,
            "itemCount": self.item_count,
            "parentId": self.parent_id,
            "parentName": self.parent_name,
            "teamId": self.team_id,
            "teamName": self.team_name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


def _container_kwargs(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": data["id"],
        "name": data.get("name") or "",
        "location": data.get("location") or "",
        "row": int(data.get("row") or 0),
        "column": data.get("column") or "",
        "description": data.get("description"),
        "qr_code": data.get("qrCode") or "",
        "color": data.get("color"),
        "item_count": int(data.get("itemCount") or 0),
        "parent_id": data.get("parentId"),
        "parent_name": data.get("parentName"),
        "team_id": data.get("teamId"),
        "team_name": data.get("teamName"),
        "created_at": data.get("createdAt") or "",
        "updated_at": data.get("updatedAt") or "",
    }


@dataclass
class ContainerChild:
    """Lightweight reference to a sub-container."""

    id: str
    name: str
    location: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContainerChild":
        return cls(id=data["id"], name=data.get("name") or "", location=data.get("location"))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"id": self.id, "name": self.name}
        if self.location is not None:
            result["location"] = self.location
        return result


@dataclass
class ContainerDetail(Container):
    """A container expanded with its items and sub-containers."""

    items: List[Item] = field(default_factory=list)
    children: List[ContainerChild] = field(default_factory=list)
    path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContainerDetail":
        return cls(
            **_container_kwargs(data),
            items=[Item.from_dict(i) for i in data.get("items") or []],
            children=[ContainerChild.from_dict(c) for c in data.get("children") or []],
            path=data.get("path"),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["items"] = [i.to_dict() for i in self.items]
        result["children"] = [c.to_dict() for c in self.children]
        if self.path is not None:
            result["path"] = self.path
        return result


@dataclass
class Team:
    """A team sharing containers."""

    id: str
    name: str
    owner_id: str = ""
    owner_name: str = ""
    member_count: int = 0
    created_at: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Team":
        return cls(
            id=data["id"],
            name=data.get("name") or "",
            owner_id=data.get("ownerId") or "",
            owner_name=data.get("ownerName") or "",
            member_count=int(data.get("memberCount") or 0),
            created_at=data.get("createdAt") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "ownerId": self.owner_id,
            "ownerName": self.owner_name,
            "memberCount": self.member_count,
            "createdAt": self.created_at,
        }


# Entity class stored in each cached collection
COLLECTION_ENTITY_TYPES = {
    CollectionKind.CONTAINERS: Container,
    CollectionKind.BORROWED_ITEMS: Item,
    CollectionKind.TEAMS: Team,
}


# === Sync records ===


@dataclass
class QueuedOperation:
    """A not-yet-confirmed write intent, one slot per (entity, entity_id)."""

    id: str
    kind: MutationKind
    entity: EntityKind
    entity_id: str
    payload: Optional[Dict[str, Any]] = None  # opaque to the queue
    timestamp: str = field(default_factory=utc_now)
    retries: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuedOperation":
        return cls(
            id=data["id"],
            kind=MutationKind(data["type"]),
            entity=EntityKind(data["entity"]),
            entity_id=data["entityId"],
            payload=data.get("data"),
            timestamp=data.get("timestamp") or utc_now(),
            retries=int(data.get("retries") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.kind.value,
            "entity": self.entity.value,
            "entityId": self.entity_id,
            "data": self.payload,
            "timestamp": self.timestamp,
            "retries": self.retries,
        }


@dataclass
class SyncOutcome:
    """Aggregate result of one drain pass."""

    success: int = 0  # operations confirmed by the server
    failed: int = 0  # operations that raised or exhausted their retries

    def to_dict(self) -> Dict[str, int]:
        return {"success": self.success, "failed": self.failed}
