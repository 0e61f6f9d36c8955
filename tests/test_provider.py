"""
Provider behavior against every backend: CRUD, fixed queries, point query
fallback and round trips of each entity type.
"""

from datetime import datetime, timedelta, timezone

import pytest

from entitymeta.entities.audit_log_record import AuditLogRecord, AuditLogRecordProvider, AuditLogSource
from entitymeta.entities.organization_member_cache import (
    OrganizationMemberCacheEntity, OrganizationMemberCacheProvider, OrganizationMembershipRole,
)
from entitymeta.entities.organization_setting import (
    GitHubAppInstallation, OrganizationSetting, OrganizationSettingProvider, SpecialTeam, SpecialTeamAssignment,
)
from entitymeta.entities.repository_metadata import (
    GitHubRepositoryPermission, GitHubRepositoryVisibility, InitialTeamPermission, RepositoryLockdownState,
    RepositoryMetadataEntity, RepositoryMetadataProvider,
)
from entitymeta.entities.team_join_approval import TeamJoinApprovalEntity, TeamJoinApprovalProvider
from entitymeta.entities.token import PersonalAccessToken, TokenProvider
from entitymeta.persistence.errors import (
    AmbiguousEntityError, ConfigurationError, EntityAlreadyExistsError, EntityNotFoundError,
)
from entitymeta.persistence.provider import EntityMetadataProvider
from entitymeta.persistence.records import EntityMetadata, EntityMetadataType

from .conftest import make_backend

START = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


async def provider_on(backend, provider_class):
    if not backend.supports_entity_type(provider_class.entity_type):
        pytest.skip(f"{provider_class.entity_type} is not mapped for the {backend.name} backend")
    provider = provider_class(backend)
    await provider.initialize()
    return provider


def repository(repository_id="123", organization_id="A", **values):
    return RepositoryMetadataEntity(
        repository_id=repository_id,
        organization_id=organization_id,
        organization_name="contoso",
        **values,
    )


class TestRepositoryMetadata:

    @pytest.mark.asyncio
    async def test_create_read_delete(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)

        created_id = await provider.create_repository_metadata(repository())
        assert created_id == "123"

        loaded = await provider.get_repository_metadata("123")
        assert loaded.repository_id == "123"
        assert loaded.organization_name == "contoso"

        await provider.delete_repository_metadata(loaded)
        with pytest.raises(EntityNotFoundError):
            await provider.get_repository_metadata("123")

    @pytest.mark.asyncio
    async def test_query_by_organization(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)
        for repository_id, organization_id in (("1", "A"), ("2", "A"), ("3", "B")):
            await provider.create_repository_metadata(repository(repository_id, organization_id))

        in_a = await provider.query_repository_metadatas_by_organization_id("A")
        assert sorted(entity.repository_id for entity in in_a) == ["1", "2"]
        assert await provider.query_repository_metadatas_by_organization_id("C") == []
        assert len(await provider.query_all_repository_metadatas()) == 3

    @pytest.mark.asyncio
    async def test_missing_records_fail_the_same_way_everywhere(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)

        with pytest.raises(EntityNotFoundError):
            await provider.get_repository_metadata("404")
        with pytest.raises(EntityNotFoundError):
            await provider.update_repository_metadata(repository("404"))
        with pytest.raises(EntityNotFoundError):
            await provider.delete_repository_metadata(repository("404"))

    @pytest.mark.asyncio
    async def test_duplicate_create_fails(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)
        await provider.create_repository_metadata(repository())

        with pytest.raises(EntityAlreadyExistsError):
            await provider.create_repository_metadata(repository())

    @pytest.mark.asyncio
    async def test_update_replaces_stored_values(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)
        await provider.create_repository_metadata(repository())

        entity = await provider.get_repository_metadata("123")
        entity.lockdown_state = RepositoryLockdownState.LOCKED
        await provider.update_repository_metadata(entity)

        reloaded = await provider.get_repository_metadata("123")
        assert reloaded.lockdown_state is RepositoryLockdownState.LOCKED

    @pytest.mark.asyncio
    async def test_clear_all(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)
        await provider.create_repository_metadata(repository("1"))
        await provider.create_repository_metadata(repository("2"))

        await provider.clear_all_repository_metadatas()

        assert await provider.query_all_repository_metadatas() == []

    @pytest.mark.asyncio
    async def test_initial_team_names_are_kept(self, backend):
        provider = await provider_on(backend, RepositoryMetadataProvider)
        await provider.create_repository_metadata(repository(initial_team_permissions=[
            InitialTeamPermission(team_id="42", permission=GitHubRepositoryPermission.ADMIN, team_name="Maintainers"),
            InitialTeamPermission(team_id="7", permission=GitHubRepositoryPermission.PULL),
        ]))

        loaded = await provider.get_repository_metadata("123")

        assert [(team.team_id, team.team_name) for team in loaded.initial_team_permissions] == [
            ("42", "Maintainers"), ("7", None)]

    def test_entity_without_identifier_cannot_be_serialized(self, registry):
        provider = RepositoryMetadataProvider(make_backend("memory", registry))

        with pytest.raises(ValueError):
            provider.serialize(RepositoryMetadataEntity(organization_name="contoso"))


class TestPointQueryFallback:

    @pytest.mark.asyncio
    async def test_table_lookups_use_the_fallback_query(self, registry, table_service):
        backend = make_backend("table", registry, table_service)
        await backend.initialize()
        provider = await provider_on(backend, RepositoryMetadataProvider)

        assert not provider.supports_point_query
        await provider.create_repository_metadata(repository())
        assert (await provider.get_repository_metadata("123")).organization_id == "A"

    @pytest.mark.asyncio
    async def test_duplicate_rows_are_ambiguous(self, registry, table_service):
        backend = make_backend("table", registry, table_service)
        await backend.initialize()
        provider = await provider_on(backend, RepositoryMetadataProvider)
        record = EntityMetadata(EntityMetadataType.REPOSITORY_METADATA, "123", {"orgid": "A"})
        await backend.set_metadata(record, uniqueness_verified=True)
        await backend.set_metadata(record, uniqueness_verified=True)

        with pytest.raises(AmbiguousEntityError):
            await provider.get_repository_metadata("123")
        with pytest.raises(EntityAlreadyExistsError):
            await provider.create_repository_metadata(repository())

    @pytest.mark.asyncio
    async def test_provider_without_fallback_fails_to_initialize(self, registry):
        class BareRepositoryProvider(EntityMetadataProvider[RepositoryMetadataEntity]):
            entity_type = EntityMetadataType.REPOSITORY_METADATA

        table = make_backend("table", registry)
        await table.initialize()
        with pytest.raises(ConfigurationError, match="fallback"):
            await BareRepositoryProvider(table).initialize()

        memory = make_backend("memory", registry)
        await memory.initialize()
        await BareRepositoryProvider(memory).initialize()

    @pytest.mark.asyncio
    async def test_unmapped_entity_type_fails_to_initialize(self, registry):
        table = make_backend("table", registry)
        await table.initialize()

        with pytest.raises(ConfigurationError):
            await AuditLogRecordProvider(table).initialize()


def full_repository():
    return RepositoryMetadataEntity(
        repository_id="123",
        repository_name="widgets",
        organization_id="A",
        organization_name="contoso",
        created_by_third_party_id="9",
        created_by_third_party_username="octocat",
        created=START,
        initial_team_permissions=[
            InitialTeamPermission(
                team_id="42", permission=GitHubRepositoryPermission.ADMIN, team_name="Maintainers"),
            InitialTeamPermission(team_id="7", permission=GitHubRepositoryPermission.PULL),
        ],
        initial_administrators=["alice", "bob"],
        initial_repository_visibility=GitHubRepositoryVisibility.PRIVATE,
        lockdown_state=RepositoryLockdownState.ADMINISTRATOR_LOCKED,
    )


def full_team_join():
    return TeamJoinApprovalEntity(
        third_party_id="9",
        third_party_username="octocat",
        active=True,
        created=START,
        justification="I work on this",
        organization_name="contoso",
        team_id="7",
        team_name="Maintainers",
    )


def full_audit_log_record():
    return AuditLogRecord(
        record_source=AuditLogSource.WEBHOOK,
        action="team.add_member",
        additional_data={"undoCandidate": True, "permission": "admin"},
        organization_name="contoso",
        created=START,
        actor_id="9",
        user_id="10",
        team_id="7",
    )


def full_token():
    return PersonalAccessToken.create_new_token(
        active=True,
        corporate_id="user-1",
        description="CI",
        expires=START + timedelta(days=30),
        source="build",
        organization_scopes="contoso",
        scopes="extension,links",
    )


def full_organization_setting():
    return OrganizationSetting(
        organization_id=42,
        organization_name="contoso",
        active=True,
        updated=START,
        installations=[GitHubAppInstallation(app_id=1, installation_id=2)],
        features=["locked"],
        properties={"type": "public", "priority": 1},
        special_teams=[SpecialTeamAssignment(special_team=SpecialTeam.SUDO, team_id=5)],
        templates=["mit"],
    )


def full_member():
    return OrganizationMemberCacheEntity.for_member("42", "9", OrganizationMembershipRole.ADMIN)


ROUND_TRIPS = [
    (RepositoryMetadataProvider, full_repository),
    (TeamJoinApprovalProvider, full_team_join),
    (AuditLogRecordProvider, full_audit_log_record),
    (TokenProvider, full_token),
    (OrganizationSettingProvider, full_organization_setting),
    (OrganizationMemberCacheProvider, full_member),
]


class TestRoundTrip:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_class, build", ROUND_TRIPS)
    async def test_stored_entity_reads_back_equal(self, backend, provider_class, build):
        provider = await provider_on(backend, provider_class)
        entity = build()

        entity_id = await provider.create_entity(entity)
        loaded = await provider.get_entity(entity_id)

        assert loaded.persisted_values() == entity.persisted_values()


class TestUnsetTimestamps:

    @pytest.mark.asyncio
    async def test_token_without_created_reads_back_unset(self, backend):
        provider = await provider_on(backend, TokenProvider)
        token = PersonalAccessToken.create_new_token(corporate_id="user-1", created=None)
        await provider.save_new_token(token)

        assert (await provider.get_token(token.token)).created is None

    @pytest.mark.asyncio
    async def test_member_without_cache_time_reads_back_unset(self, backend):
        provider = await provider_on(backend, OrganizationMemberCacheProvider)
        member = OrganizationMemberCacheEntity(
            unique_id="42:9", organization_id="42", user_id="9", role=OrganizationMembershipRole.ADMIN)
        await provider.create_organization_member_cache(member)

        assert (await provider.get_organization_member_cache("42:9")).cache_updated is None


class TestTeamJoinApprovals:

    @pytest.mark.asyncio
    async def test_pending_approvals_for_teams(self, backend):
        provider = await provider_on(backend, TeamJoinApprovalProvider)
        for team_id, active in (("1", True), ("2", True), ("3", True), ("1", False)):
            await provider.create_team_join_approval_entity(TeamJoinApprovalEntity(team_id=team_id, active=active))

        pending = await provider.query_pending_approvals_for_teams(["1", "2"])
        assert sorted(approval.team_id for approval in pending) == ["1", "2"]
        assert len(await provider.query_pending_approvals_for_team("1")) == 1
        assert len(await provider.query_all_active_approvals()) == 3
        assert len(await provider.query_all_approvals()) == 4

    @pytest.mark.asyncio
    async def test_empty_team_list_returns_nothing(self, backend):
        provider = await provider_on(backend, TeamJoinApprovalProvider)
        await provider.create_team_join_approval_entity(TeamJoinApprovalEntity(team_id="1", active=True))

        assert await provider.query_pending_approvals_for_teams([]) == []

    @pytest.mark.asyncio
    async def test_pending_approvals_for_third_party_id(self, backend):
        provider = await provider_on(backend, TeamJoinApprovalProvider)
        await provider.create_team_join_approval_entity(TeamJoinApprovalEntity(third_party_id="9", active=True))
        await provider.create_team_join_approval_entity(TeamJoinApprovalEntity(third_party_id="9", active=False))
        await provider.create_team_join_approval_entity(TeamJoinApprovalEntity(third_party_id="8", active=True))

        pending = await provider.query_pending_approvals_for_third_party_id("9")
        assert [approval.third_party_id for approval in pending] == ["9"]


class TestAuditLog:

    @pytest.mark.asyncio
    async def test_records_come_back_newest_first(self, backend):
        provider = await provider_on(backend, AuditLogRecordProvider)
        for days in (1, 3, 2):
            await provider.insert_record(AuditLogRecord(repository_id="r1", created=START + timedelta(days=days)))
        await provider.insert_record(AuditLogRecord(repository_id="r2", created=START))

        records = await provider.query_audit_log_for_repository_operations("r1")
        assert [record.created for record in records] == [
            START + timedelta(days=3), START + timedelta(days=2), START + timedelta(days=1)]

    @pytest.mark.asyncio
    async def test_naive_timestamps_sort_as_utc(self, registry):
        backend = make_backend("memory", registry)
        await backend.initialize()
        provider = await provider_on(backend, AuditLogRecordProvider)
        await provider.insert_record(AuditLogRecord(repository_id="r1", created=START))
        await provider.insert_record(AuditLogRecord(repository_id="r1", created=datetime(2024, 3, 2, 12, 0)))
        await provider.insert_record(AuditLogRecord(repository_id="r1", created=START + timedelta(days=2)))

        records = await provider.query_audit_log_for_repository_operations("r1")

        assert [record.created.day for record in records] == [3, 2, 1]

    @pytest.mark.asyncio
    async def test_undo_candidates(self, backend):
        provider = await provider_on(backend, AuditLogRecordProvider)
        await provider.insert_record(AuditLogRecord(actor_id="9", created=START, additional_data={"undoCandidate": True}))
        await provider.insert_record(AuditLogRecord(actor_id="9", created=START, additional_data={"undoCandidate": False}))
        await provider.insert_record(AuditLogRecord(actor_id="8", created=START, additional_data={"undoCandidate": True}))

        candidates = await provider.query_audit_log_for_third_party_id_undo_operations("9")
        assert len(candidates) == 1
        assert candidates[0].additional_data == {"undoCandidate": True}
        assert len(await provider.query_audit_log_for_actor_third_party_id("9")) == 2

    @pytest.mark.asyncio
    async def test_queries_by_user_and_team(self, backend):
        provider = await provider_on(backend, AuditLogRecordProvider)
        await provider.insert_record(AuditLogRecord(user_id="10", team_id="7", created=START))

        assert len(await provider.query_audit_log_for_user_third_party_id("10")) == 1
        assert len(await provider.query_audit_log_for_team_operations("7")) == 1
        assert await provider.query_audit_log_for_team_operations("8") == []


class TestTokens:

    @pytest.mark.asyncio
    async def test_lookup_by_plain_key(self, backend):
        provider = await provider_on(backend, TokenProvider)
        token = full_token()
        await provider.save_new_token(token)

        loaded = await provider.get_token_by_key(token.get_private_key())

        assert loaded.token == token.token
        assert loaded.get_private_key() is None

    @pytest.mark.asyncio
    async def test_tokens_for_corporate_id(self, backend):
        provider = await provider_on(backend, TokenProvider)
        older = PersonalAccessToken.create_new_token(corporate_id="user-1", created=START)
        newer = PersonalAccessToken.create_new_token(corporate_id="user-1", created=START + timedelta(days=1))
        other = PersonalAccessToken.create_new_token(corporate_id="user-2", created=START)
        for token in (older, newer, other):
            await provider.save_new_token(token)

        tokens = await provider.query_tokens_for_corporate_id("user-1")

        assert {token.token for token in tokens} == {older.token, newer.token}
        if backend.name != "table":
            assert [token.token for token in tokens] == [newer.token, older.token]
        assert len(await provider.get_all_tokens()) == 3

    @pytest.mark.asyncio
    async def test_revocation_is_persisted(self, backend):
        provider = await provider_on(backend, TokenProvider)
        token = full_token()
        await provider.save_new_token(token)

        token.active = False
        await provider.update_token(token)

        assert (await provider.get_token(token.token)).is_revoked()
        await provider.delete_token(token)
        with pytest.raises(EntityNotFoundError):
            await provider.get_token(token.token)


class TestOrganizationSettings:

    @pytest.mark.asyncio
    async def test_numeric_identifier(self, backend):
        provider = await provider_on(backend, OrganizationSettingProvider)
        await provider.create_organization_setting(full_organization_setting())

        loaded = await provider.get_organization_setting(42)

        assert loaded.organization_id == 42
        assert loaded.has_feature("locked")

    @pytest.mark.asyncio
    async def test_most_recently_updated_active_setting(self, backend):
        provider = await provider_on(backend, OrganizationSettingProvider)
        assert await provider.query_most_recently_updated_active_setting() is None

        for organization_id, active, days in ((1, True, 1), (2, True, 5), (3, False, 9)):
            await provider.create_organization_setting(
                OrganizationSetting(organization_id=organization_id, active=active, updated=START + timedelta(days=days)))

        latest = await provider.query_most_recently_updated_active_setting()
        assert latest.organization_id == 2
        assert len(await provider.query_all_organization_settings()) == 3

    @pytest.mark.asyncio
    async def test_settings_without_updated_do_not_win(self, backend):
        provider = await provider_on(backend, OrganizationSettingProvider)
        await provider.create_organization_setting(OrganizationSetting(organization_id=1, active=True))
        await provider.create_organization_setting(
            OrganizationSetting(organization_id=2, active=True, updated=START))

        latest = await provider.query_most_recently_updated_active_setting()

        assert latest.organization_id == 2


class TestOrganizationMemberCache:

    @pytest.mark.asyncio
    async def test_lookup_and_queries(self, backend):
        provider = await provider_on(backend, OrganizationMemberCacheProvider)
        await provider.create_organization_member_cache(full_member())
        await provider.create_organization_member_cache(
            OrganizationMemberCacheEntity.for_member("43", "9", OrganizationMembershipRole.MEMBER))

        member = await provider.get_organization_member_cache_by_user_id("42", "9")
        assert member.role is OrganizationMembershipRole.ADMIN
        assert len(await provider.query_organization_members_by_user_id("9")) == 2
        assert len(await provider.query_organization_members_by_organization_id("43")) == 1
        assert len(await provider.query_all_organization_members()) == 2

        member.role = OrganizationMembershipRole.MEMBER
        await provider.update_organization_member_cache(member)
        assert (await provider.get_organization_member_cache("42:9")).role is OrganizationMembershipRole.MEMBER

        await provider.delete_organization_member_cache(member)
        with pytest.raises(EntityNotFoundError):
            await provider.get_organization_member_cache("42:9")
