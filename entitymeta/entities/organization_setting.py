"""
Organization Settings - Per-Organization Configuration Adopted by the Portal

🏢 Organization Setting Entity:
Identified by the numeric organization id. Holds feature flags, free-form
properties, app installations and the special teams with system-wide access.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from ..persistence.backends.memory import memory_filter, memory_sort_descending
from ..persistence.backends.postgres import (
    PostgresQuery, PostgresQueryContext, postgres_get_all_entities, postgres_json_entity_query,
)
from ..persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings,
)
from ..persistence.errors import ConfigurationError
from ..persistence.provider import EntityMetadataProvider
from ..persistence.queries import FixedQuery, FixedQueryType
from ..persistence.records import EntityMetadata, EntityMetadataType, MetadataEntity

ENTITY_TYPE = EntityMetadataType.ORGANIZATION_SETTING
ID_FIELD = "organization_id"


class SpecialTeam(Enum):
    EVERYONE = "everyone"
    SUDO = "sudo"
    GLOBAL_SUDO = "globalSudo"
    SYSTEM_WRITE = "systemWrite"
    SYSTEM_READ = "systemRead"
    SYSTEM_ADMIN = "systemAdmin"


class GitHubAppInstallation(BaseModel):
    app_id: int
    installation_id: int


class SpecialTeamAssignment(BaseModel):
    special_team: SpecialTeam
    team_id: int


# static configuration keys that turn into features, special teams or properties
STATIC_FEATURE_FLAGS = (
    "preventLargeTeamPermissions", "hidden", "locked", "ignore", "createReposDirect",
    "externalMembersPermitted", "privateEngineering", "noPrivateEngineeringNags",
)
STATIC_SPECIAL_TEAMS = {
    "teamAllMembers": SpecialTeam.EVERYONE,
    "teamAllReposRead": SpecialTeam.SYSTEM_READ,
    "teamAllReposWrite": SpecialTeam.SYSTEM_WRITE,
    "teamAllReposAdmin": SpecialTeam.SYSTEM_ADMIN,
    "teamSudoers": SpecialTeam.SUDO,
    "teamPortalSudoers": SpecialTeam.GLOBAL_SUDO,
}
STATIC_PROPERTIES = ("type", "1es", "priority")
STATIC_IGNORED = ("ownerToken", "__special__note__", "__special_note___")


class OrganizationSetting(MetadataEntity):
    organization_id: Optional[int] = None
    organization_name: Optional[str] = None
    active: Optional[bool] = None
    setup_date: Optional[datetime] = None
    updated: Optional[datetime] = None
    setup_by_corporate_display_name: Optional[str] = None
    setup_by_corporate_id: Optional[str] = None
    setup_by_corporate_username: Optional[str] = None
    portal_description: Optional[str] = None
    operations_notes: Optional[str] = None
    installations: List[GitHubAppInstallation] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    properties: Dict[str, Any] = Field(default_factory=dict)
    special_teams: List[SpecialTeamAssignment] = Field(default_factory=list)
    templates: List[str] = Field(default_factory=list)
    legal_entities: List[str] = Field(default_factory=list)

    def has_feature(self, feature: str) -> bool:
        return feature in self.features

    def get_property(self, key: str) -> Union[str, bool, int, None]:
        return self.properties.get(key)

    @classmethod
    def create_from_static_settings(cls, static_settings: Dict[str, Any]) -> "OrganizationSetting":
        """
        Adopt an organization from its static configuration entry.

        Raises:
            ValueError: if the entry has keys this conversion does not know
        """
        remaining = dict(static_settings)
        for key in STATIC_IGNORED:
            remaining.pop(key, None)

        settings = cls(
            organization_id=remaining.pop("id", None),
            organization_name=remaining.pop("name", None),
            portal_description=remaining.pop("description", None) or "",
        )
        templates = remaining.pop("templates", None)
        settings.templates = list(templates) if isinstance(templates, list) else []

        for flag in STATIC_FEATURE_FLAGS:
            if remaining.pop(flag, None) is True:
                settings.features.append(flag)

        properties = {}
        if remaining.pop("hookSecrets", None):
            properties["hookSecretsNotTransferred"] = "hook shared secrets were not migrated"
        for key in STATIC_PROPERTIES:
            value = remaining.pop(key, None)
            if value:
                properties[key] = value
        settings.properties = properties

        special_teams = []
        for key, special_team in STATIC_SPECIAL_TEAMS.items():
            value = remaining.pop(key, None)
            if not value:
                continue
            for team_id in value if isinstance(value, list) else [value]:
                special_teams.append(SpecialTeamAssignment(special_team=special_team, team_id=int(team_id)))
        settings.special_teams = special_teams

        settings.legal_entities = list(remaining.pop("legalEntities", None) or [])

        if remaining:
            raise ValueError(
                "Static configuration keys are not recognized by the settings migration: "
                f"{', '.join(sorted(remaining))}")
        return settings


@dataclass(frozen=True)
class OrganizationSettingFixedQueryAll(FixedQuery):
    fixed_query_type = FixedQueryType.ORGANIZATION_SETTING_GET_ALL


@dataclass(frozen=True)
class OrganizationSettingFixedQueryMostRecentlyUpdatedActive(FixedQuery):
    fixed_query_type = FixedQueryType.ORGANIZATION_SETTING_MOST_RECENT_ACTIVE


def _unsupported(query: FixedQuery, backend: str) -> ConfigurationError:
    return ConfigurationError(
        f"Fixed query {query.fixed_query_type} is not implemented for {ENTITY_TYPE} on the {backend} backend")


def postgres_queries(query: FixedQuery, context: PostgresQueryContext) -> PostgresQuery:
    if query.fixed_query_type is FixedQueryType.ORGANIZATION_SETTING_GET_ALL:
        return postgres_get_all_entities(context)
    if query.fixed_query_type is FixedQueryType.ORGANIZATION_SETTING_MOST_RECENT_ACTIVE:
        return postgres_json_entity_query(context, {"active": True}, "updated", descending=True, limit=1)
    raise _unsupported(query, "postgres")


def memory_queries(query: FixedQuery, records: List[EntityMetadata]) -> List[EntityMetadata]:
    if query.fixed_query_type is FixedQueryType.ORGANIZATION_SETTING_GET_ALL:
        return records
    if query.fixed_query_type is FixedQueryType.ORGANIZATION_SETTING_MOST_RECENT_ACTIVE:
        return memory_sort_descending(memory_filter(records, active=True), "updated")[:1]
    raise _unsupported(query, "memory")


def register(registry: EntityMetadataMappings) -> None:
    field_names = OrganizationSetting.declared_field_names()
    columns = {name: name.replace("_", "") for name in field_names if name != ID_FIELD}
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_INSTANTIATE, OrganizationSetting)
    registry.register(ENTITY_TYPE, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, ID_FIELD)

    registry.register(ENTITY_TYPE, MemorySettings.MAPPING, dict(columns))
    registry.register(ENTITY_TYPE, MemorySettings.QUERIES, memory_queries)
    registry.validate_mappings(ENTITY_TYPE, MemorySettings.MAPPING, field_names, [ID_FIELD])

    registry.register(ENTITY_TYPE, PostgresSettings.DEFAULT_TABLE_NAME, "organizationsettings")
    registry.register(ENTITY_TYPE, PostgresSettings.TYPE_COLUMN_VALUE, "organizationsetting")
    registry.register(ENTITY_TYPE, PostgresSettings.MAPPING, dict(columns))
    registry.register(ENTITY_TYPE, PostgresSettings.QUERIES, postgres_queries)
    registry.validate_mappings(ENTITY_TYPE, PostgresSettings.MAPPING, field_names, [ID_FIELD])


class OrganizationSettingProvider(EntityMetadataProvider[OrganizationSetting]):
    entity_type = ENTITY_TYPE

    async def get_organization_setting(self, organization_id: Union[int, str]) -> OrganizationSetting:
        return await self.get_entity(str(organization_id))

    async def create_organization_setting(self, setting: OrganizationSetting) -> str:
        return await self.create_entity(setting)

    async def update_organization_setting(self, setting: OrganizationSetting) -> None:
        await self.update_entity(setting)

    async def delete_organization_setting(self, setting: OrganizationSetting) -> None:
        await self.delete_entity(setting)

    async def query_all_organization_settings(self) -> List[OrganizationSetting]:
        return await self.fixed_query(OrganizationSettingFixedQueryAll())

    async def query_most_recently_updated_active_setting(self) -> Optional[OrganizationSetting]:
        settings = await self.fixed_query(OrganizationSettingFixedQueryMostRecentlyUpdatedActive())
        return settings[0] if settings else None
