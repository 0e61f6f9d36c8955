"""
Tests for the mapping registry and startup validation of entity declarations.
"""

import pytest

from entitymeta.entities import ENTITY_MODULES, build_registry
from entitymeta.entities.repository_metadata import RepositoryMetadataEntity
from entitymeta.entities.token import PersonalAccessToken
from entitymeta.persistence.codecs import JsonStringCodec
from entitymeta.persistence.declarations import (
    EntityMetadataMappings, MemorySettings, MetadataMappingDefinition, PostgresSettings, TableSettings,
)
from entitymeta.persistence.errors import ConfigurationError
from entitymeta.persistence.records import EntityMetadataType, MetadataEntity


class SampleEntity(MetadataEntity):
    sample_id: str = ""
    name: str = ""
    tags: list = []


SAMPLE = EntityMetadataType.ORGANIZATION_MEMBER_CACHE


class TestRegistry:

    def test_register_and_lookup(self):
        registry = EntityMetadataMappings()
        registry.register(SAMPLE, PostgresSettings.DEFAULT_TABLE_NAME, "samples")

        assert registry.lookup(SAMPLE, PostgresSettings.DEFAULT_TABLE_NAME) == "samples"
        assert registry.lookup(SAMPLE, PostgresSettings.TYPE_COLUMN_VALUE) is None
        assert registry.has(SAMPLE, PostgresSettings.DEFAULT_TABLE_NAME)
        assert registry.registered_types() == [SAMPLE]

    def test_duplicate_registration_is_rejected(self):
        registry = EntityMetadataMappings()
        registry.register(SAMPLE, PostgresSettings.DEFAULT_TABLE_NAME, "samples")

        with pytest.raises(ConfigurationError):
            registry.register(SAMPLE, PostgresSettings.DEFAULT_TABLE_NAME, "other")

    def test_same_dimension_name_on_different_backends_is_distinct(self):
        registry = EntityMetadataMappings()
        registry.register(SAMPLE, PostgresSettings.MAPPING, {"name": "name"})
        registry.register(SAMPLE, MemorySettings.MAPPING, {"name": "n"})

        assert registry.lookup(SAMPLE, MemorySettings.MAPPING) == {"name": "n"}

    def test_required_lookup_raises_when_missing(self):
        registry = EntityMetadataMappings()

        with pytest.raises(ConfigurationError):
            registry.lookup(SAMPLE, TableSettings.FIXED_PARTITION_KEY, required=True)

    def test_frozen_registry_rejects_registration(self):
        registry = EntityMetadataMappings()
        registry.freeze()

        assert registry.is_frozen
        with pytest.raises(ConfigurationError):
            registry.register(SAMPLE, PostgresSettings.DEFAULT_TABLE_NAME, "samples")

    def test_instantiate_uses_registered_factory(self):
        registry = EntityMetadataMappings()
        registry.register(SAMPLE, MetadataMappingDefinition.ENTITY_INSTANTIATE, SampleEntity)

        instance = registry.instantiate(SAMPLE)
        assert isinstance(instance, SampleEntity)
        assert instance.name == ""


class TestValidateMappings:

    def _registry(self, mapping, codecs=None):
        registry = EntityMetadataMappings()
        registry.register(SAMPLE, TableSettings.MAPPING, mapping)
        if codecs is not None:
            registry.register(SAMPLE, TableSettings.FIELD_CODECS, codecs)
        return registry

    def test_complete_mapping_passes(self):
        registry = self._registry({"name": "n", "tags": "t"})
        registry.validate_mappings(SAMPLE, TableSettings.MAPPING, ["sample_id", "name", "tags"], ["sample_id"])

    def test_missing_field_fails(self):
        registry = self._registry({"name": "n"})

        with pytest.raises(ConfigurationError, match="tags"):
            registry.validate_mappings(SAMPLE, TableSettings.MAPPING, ["sample_id", "name", "tags"], ["sample_id"])

    def test_unvisited_mapping_fails(self):
        registry = self._registry({"name": "n", "tags": "t", "legacy": "l"})

        with pytest.raises(ConfigurationError, match="legacy"):
            registry.validate_mappings(SAMPLE, TableSettings.MAPPING, ["sample_id", "name", "tags"], ["sample_id"])

    def test_exempt_identifier_may_be_mapped(self):
        registry = self._registry({"sample_id": "id", "name": "n", "tags": "t"})
        registry.validate_mappings(SAMPLE, TableSettings.MAPPING, ["sample_id", "name", "tags"], ["sample_id"])

    def test_none_column_requires_codec(self):
        registry = self._registry({"name": "n", "tags": None})

        with pytest.raises(ConfigurationError, match="codec"):
            registry.validate_mappings(
                SAMPLE, TableSettings.MAPPING, ["sample_id", "name", "tags"], ["sample_id"], TableSettings.FIELD_CODECS)

    def test_none_column_with_codec_passes(self):
        registry = self._registry({"name": "n", "tags": None}, {"tags": JsonStringCodec("tags")})
        registry.validate_mappings(
            SAMPLE, TableSettings.MAPPING, ["sample_id", "name", "tags"], ["sample_id"], TableSettings.FIELD_CODECS)

    def test_missing_mapping_dimension_fails(self):
        registry = EntityMetadataMappings()

        with pytest.raises(ConfigurationError):
            registry.validate_mappings(SAMPLE, PostgresSettings.MAPPING, ["name"])


class TestEntityDeclarations:

    def test_build_registry_registers_every_entity_type(self):
        registry = build_registry()

        assert registry.is_frozen
        assert set(registry.registered_types()) == set(EntityMetadataType)

    def test_every_type_declares_identifier_and_factory(self):
        registry = build_registry()

        for entity_type in EntityMetadataType:
            id_field = registry.lookup(entity_type, MetadataMappingDefinition.ENTITY_ID_FIELD_NAME, required=True)
            entity = registry.instantiate(entity_type)
            assert id_field in type(entity).model_fields

    def test_registering_twice_fails(self):
        registry = EntityMetadataMappings()
        ENTITY_MODULES[0].register(registry)

        with pytest.raises(ConfigurationError):
            ENTITY_MODULES[0].register(registry)

    def test_transient_fields_are_not_declared(self):
        assert "display_username" not in PersonalAccessToken.declared_field_names()
        assert "token" in PersonalAccessToken.declared_field_names()

    def test_repository_metadata_is_mapped_for_all_backends(self):
        registry = build_registry()
        entity_type = EntityMetadataType.REPOSITORY_METADATA
        fields = set(RepositoryMetadataEntity.declared_field_names()) - {"repository_id"}

        for definition in (TableSettings.MAPPING, PostgresSettings.MAPPING, MemorySettings.MAPPING):
            assert set(registry.lookup(entity_type, definition)) == fields
