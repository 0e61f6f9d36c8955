"""
Entity Metadata Records - Types Shared by Every Backend

📦 Generic Record and Typed Entity Base:
Backends only ever see ``EntityMetadata``: an entity type tag, an identifier
and a flat dictionary of backend-native columns. Business code only ever sees
``MetadataEntity`` subclasses. Providers translate between the two.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class EntityMetadataType(Enum):
    """Closed set of entity types known to the metadata layer"""
    REPOSITORY_METADATA = "RepositoryMetadata"
    TEAM_JOIN_REQUEST = "TeamJoinRequest"
    AUDIT_LOG_RECORD = "AuditLogRecord"
    TOKEN = "Token"
    ORGANIZATION_SETTING = "OrganizationSetting"
    ORGANIZATION_MEMBER_CACHE = "OrganizationMemberCache"

    def __str__(self) -> str:
        return self.value


@dataclass
class EntityMetadata:
    """Backend-neutral record: type, identifier, stored columns and insert time"""
    entity_type: EntityMetadataType
    entity_id: str
    fields: Dict[str, Any] = field(default_factory=dict)
    created: Optional[datetime] = None

    def __repr__(self) -> str:
        return f"EntityMetadata({self.entity_type.value}:{self.entity_id}, {len(self.fields)} fields)"


class MetadataEntity(BaseModel):
    """
    Base class for typed business entities stored through the metadata layer.

    Subclasses must give every field a default so a registered factory can
    build an empty instance before stored values are assigned. Fields declared
    with ``Field(exclude=True)`` and private attributes are transient.
    """

    model_config = ConfigDict(validate_assignment=True, extra="forbid")

    @classmethod
    def declared_field_names(cls) -> List[str]:
        """Names of the fields that are persisted"""
        return [name for name, info in cls.model_fields.items() if not info.exclude]

    def persisted_values(self) -> Dict[str, Any]:
        """Persisted field values, used to compare entities across a round trip"""
        return {name: getattr(self, name) for name in self.declared_field_names()}


__all__ = ['EntityMetadataType', 'EntityMetadata', 'MetadataEntity']
