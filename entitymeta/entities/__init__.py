"""
Entities - Typed Business Records Stored Through the Metadata Layer

Each module declares one entity type: the model, its fixed queries, a
``register`` function with its per-backend mappings, and a provider.
"""

import logging
from dataclasses import dataclass

from ..persistence.declarations import EntityMetadataMappings
from ..persistence.manager import PersistenceManager
from . import (
    audit_log_record,
    organization_member_cache,
    organization_setting,
    repository_metadata,
    team_join_approval,
    token,
)
from .audit_log_record import AuditLogRecordProvider
from .organization_member_cache import OrganizationMemberCacheProvider
from .organization_setting import OrganizationSettingProvider
from .repository_metadata import RepositoryMetadataProvider
from .team_join_approval import TeamJoinApprovalProvider
from .token import TokenProvider

logger = logging.getLogger(__name__)

ENTITY_MODULES = (
    repository_metadata,
    team_join_approval,
    audit_log_record,
    token,
    organization_setting,
    organization_member_cache,
)


def register_all_entities(registry: EntityMetadataMappings) -> None:
    for module in ENTITY_MODULES:
        module.register(registry)


def build_registry() -> EntityMetadataMappings:
    """Register and validate every entity type, then freeze the registry"""
    registry = EntityMetadataMappings()
    register_all_entities(registry)
    registry.freeze()
    return registry


@dataclass
class EntityProviders:
    repository_metadata: RepositoryMetadataProvider
    team_join_approvals: TeamJoinApprovalProvider
    audit_log_records: AuditLogRecordProvider
    tokens: TokenProvider
    organization_settings: OrganizationSettingProvider
    organization_member_cache: OrganizationMemberCacheProvider

    def all(self):
        return [
            self.repository_metadata,
            self.team_join_approvals,
            self.audit_log_records,
            self.tokens,
            self.organization_settings,
            self.organization_member_cache,
        ]


async def create_providers(manager: PersistenceManager) -> EntityProviders:
    """
    Build one provider per entity type on the backend the manager routes it to.

    Raises:
        ConfigurationError: if a backend cannot serve an entity type routed to it
    """
    await manager.initialize()

    def build(provider_class):
        return provider_class(manager.backend_for(provider_class.entity_type))

    providers = EntityProviders(
        repository_metadata=build(RepositoryMetadataProvider),
        team_join_approvals=build(TeamJoinApprovalProvider),
        audit_log_records=build(AuditLogRecordProvider),
        tokens=build(TokenProvider),
        organization_settings=build(OrganizationSettingProvider),
        organization_member_cache=build(OrganizationMemberCacheProvider),
    )
    for provider in providers.all():
        await provider.initialize()
    logger.info("Entity metadata providers ready")
    return providers


__all__ = [
    'ENTITY_MODULES',
    'EntityProviders',
    'build_registry',
    'create_providers',
    'register_all_entities',
]
