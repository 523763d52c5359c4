"""
Tests for Module Manifests and the Manifest Catalog.

This test suite covers:
1. Manifest parsing (current, legacy and flat activation shapes)
2. Manifest validation errors
3. Activation migration (and its idempotence)
4. Catalog loading from JSON files and module directories
"""

import json
import tempfile
from pathlib import Path

import pytest

from modula.module.catalog import ManifestCatalog, load_catalog, read_manifest_data
from modula.module.errors import ConfigurationError
from modula.module.manifest import (
    ActivationKind,
    ActivationRule,
    ModuleManifest,
    migrate_activation,
    migrate_manifest_data,
    parse_activation,
    parse_manifest,
    parse_manifest_data,
)


class TestManifestParsing:
    """Test manifest parsing and validation."""

    def test_parse_valid_manifest(self):
        """Test parsing a complete manifest."""
        manifest = parse_manifest_data({
            'id': 'sales',
            'version': '1.2.0',
            'name': 'Sales',
            'description': 'Sales orders',
            'dependsOn': ['core-accounting', 'inventory'],
            'activation': {
                'activatedBy': 'sales_order_management',
                'enhancedBy': ['sales_discounts'],
            },
            'hooks': {'provide': ['sales.order_actions'], 'consume': ['inventory.*']},
            'exports': {'api_version': 2},
            'entry': 'myhost.sales:create',
        })

        assert manifest.id == 'sales'
        assert manifest.version == '1.2.0'
        assert manifest.depends_on == ('core-accounting', 'inventory')
        assert manifest.activation.kind is ActivationKind.FEATURE
        assert manifest.activation.activated_by == 'sales_order_management'
        assert manifest.activation.enhanced_by == ('sales_discounts',)
        assert manifest.provides == ('sales.order_actions',)
        assert manifest.consumes == ('inventory.*',)
        assert manifest.exports == {'api_version': 2}
        assert manifest.entry == 'myhost.sales:create'

    def test_parse_minimal_manifest(self):
        """A manifest without activation fields is always-on."""
        manifest = parse_manifest_data({'id': 'core-accounting', 'version': '1.0.0'})

        assert manifest.name == 'core-accounting'
        assert manifest.depends_on == ()
        assert manifest.activation.kind is ActivationKind.ALWAYS_ON
        assert manifest.is_foundation

    def test_parse_legacy_activation(self):
        """requiredFeatures parses into a legacy rule."""
        manifest = parse_manifest_data({
            'id': 'reports',
            'version': '1.0.0',
            'activation': {
                'requiredFeatures': ['reporting', 'sales_order_management'],
                'optionalFeatures': ['charts'],
            },
        })

        rule = manifest.activation
        assert rule.kind is ActivationKind.LEGACY
        assert rule.required_features == ('reporting', 'sales_order_management')
        assert rule.enhancing_features == ('charts',)

    def test_parse_flat_activation_keys(self):
        """Top-level activation keys are folded into the activation rule."""
        manifest = parse_manifest_data({
            'id': 'reports',
            'version': '1.0.0',
            'requiredFeatures': ['reporting'],
        })

        assert manifest.activation.kind is ActivationKind.LEGACY
        assert manifest.activation.required_features == ('reporting',)

    def test_depends_alias(self):
        """'depends' is accepted as an alias of 'dependsOn'."""
        manifest = parse_manifest_data({
            'id': 'sales', 'version': '1.0.0', 'depends': ['core'],
        })
        assert manifest.depends_on == ('core',)

    def test_duplicate_dependencies_collapse(self):
        """Repeated dependency ids keep their first position."""
        manifest = ModuleManifest('sales', depends_on=['core', 'inventory', 'core'])
        assert manifest.depends_on == ('core', 'inventory')

    def test_activation_precedence(self):
        """alwaysOn wins over activatedBy, which wins over requiredFeatures."""
        assert parse_activation({
            'alwaysOn': True, 'activatedBy': 'x', 'requiredFeatures': ['y'],
        }).kind is ActivationKind.ALWAYS_ON
        assert parse_activation({
            'activatedBy': 'x', 'requiredFeatures': ['y'],
        }).kind is ActivationKind.FEATURE

    def test_empty_required_features_is_always_eligible(self):
        """A legacy rule with no required features gates nothing."""
        rule = parse_activation({'requiredFeatures': []})
        assert rule.kind is ActivationKind.LEGACY
        assert rule.required_features == ()

    def test_parse_missing_required_field(self):
        """Test parsing fails when required fields are missing."""
        with pytest.raises(ConfigurationError, match="Missing required field: version"):
            parse_manifest_data({'id': 'sales'})

    def test_parse_invalid_module_id(self):
        """Test parsing fails with an invalid module id."""
        with pytest.raises(ConfigurationError, match="Invalid module id"):
            parse_manifest_data({'id': 'Sales Module', 'version': '1.0.0'})

    def test_parse_invalid_version(self):
        """Test parsing fails with an invalid version."""
        with pytest.raises(ConfigurationError, match="Invalid version"):
            parse_manifest_data({'id': 'sales', 'version': '1.0'})

    def test_parse_invalid_consumed_pattern(self):
        """Consumed patterns must be valid event patterns."""
        with pytest.raises(ConfigurationError, match="Invalid consumed pattern"):
            parse_manifest_data({
                'id': 'sales', 'version': '1.0.0', 'hooks': {'consume': ['sales.order*']},
            })

    def test_parse_invalid_entry(self):
        """Test parsing fails with a malformed entry point."""
        with pytest.raises(ConfigurationError, match="Invalid entry"):
            parse_manifest_data({'id': 'sales', 'version': '1.0.0', 'entry': 'no-colon'})

    def test_parse_wrong_list_type(self):
        """dependsOn must be a list of strings."""
        with pytest.raises(ConfigurationError):
            parse_manifest_data({'id': 'sales', 'version': '1.0.0', 'dependsOn': 'core'})
        with pytest.raises(ConfigurationError):
            ModuleManifest('sales', depends_on='core')

    def test_feature_rule_needs_feature(self):
        """A feature-gated rule must name its feature."""
        catalog = ManifestCatalog()
        manifest = ModuleManifest('sales', activation=ActivationRule(ActivationKind.FEATURE))
        with pytest.raises(ConfigurationError, match="names no feature"):
            catalog.add(manifest)

    def test_parse_manifest_file(self):
        """Test parsing a manifest.json from disk."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / 'manifest.json'
            path.write_text(json.dumps({'id': 'sales', 'version': '1.0.0'}))

            assert parse_manifest(path).id == 'sales'

    def test_parse_manifest_file_not_found(self):
        """Test parsing fails when the file doesn't exist."""
        with pytest.raises(ConfigurationError, match="Manifest file not found"):
            parse_manifest(Path('/nonexistent/manifest.json'))

    def test_parse_invalid_json(self, tmp_path):
        """Test parsing fails with invalid JSON."""
        path = tmp_path / 'manifest.json'
        path.write_text('{invalid json')
        with pytest.raises(ConfigurationError):
            parse_manifest(path)


class TestMigration:
    """Test legacy activation migration."""

    def test_first_required_becomes_activated_by(self):
        """The first required feature gates; the rest enhance."""
        migrated = migrate_activation({
            'requiredFeatures': ['sales', 'inventory'],
            'optionalFeatures': ['charts'],
        })

        assert migrated == {'activatedBy': 'sales', 'enhancedBy': ['inventory', 'charts']}

    def test_empty_required_becomes_always_on(self):
        """No required features migrates to alwaysOn."""
        migrated = migrate_activation({'requiredFeatures': [], 'optionalFeatures': ['x']})
        assert migrated == {'alwaysOn': True, 'enhancedBy': ['x']}

    def test_current_shape_untouched(self):
        """A manifest already in the current shape comes back unchanged."""
        current = {'activatedBy': 'sales', 'enhancedBy': ['charts']}
        assert migrate_activation(current) == current
        assert migrate_activation({'alwaysOn': True}) == {'alwaysOn': True}

    def test_migration_is_idempotent(self):
        """Migrating twice equals migrating once."""
        legacy = {
            'id': 'reports',
            'version': '1.0.0',
            'requiredFeatures': ['reporting', 'sales'],
            'optionalFeatures': ['charts'],
        }
        once = migrate_manifest_data(legacy)
        twice = migrate_manifest_data(once)

        assert once == twice
        assert once['activation'] == {
            'activatedBy': 'reporting', 'enhancedBy': ['sales', 'charts'],
        }
        assert 'requiredFeatures' not in once

    def test_migrated_manifest_still_parses(self):
        """A migrated manifest parses into a feature rule."""
        migrated = migrate_manifest_data({
            'id': 'reports',
            'version': '1.0.0',
            'activation': {'requiredFeatures': ['reporting']},
        })
        manifest = parse_manifest_data(migrated)

        assert manifest.activation.kind is ActivationKind.FEATURE
        assert manifest.activation.activated_by == 'reporting'

    def test_rule_migrated(self):
        """ActivationRule.migrated() maps a legacy rule to its current form."""
        rule = ActivationRule.legacy(('a', 'b'), ('c',)).migrated()
        assert rule == ActivationRule.feature('a', ('b', 'c'))


class TestCatalog:
    """Test ManifestCatalog and load_catalog."""

    def test_duplicate_id_rejected(self):
        """Registering the same id twice raises ConfigurationError."""
        catalog = ManifestCatalog([ModuleManifest('sales')])
        with pytest.raises(ConfigurationError, match="already registered"):
            catalog.add(ModuleManifest('sales'))
        assert len(catalog) == 1

    def test_revision_increments(self):
        """Each added manifest bumps the catalog revision."""
        catalog = ManifestCatalog()
        catalog.add(ModuleManifest('a'))
        catalog.add(ModuleManifest('b'))
        assert catalog.revision == 2
        assert catalog.ids() == ['a', 'b']
        assert 'a' in catalog

    def test_load_from_json_list(self, tmp_path):
        """A JSON list loads; bad entries are reported, not fatal."""
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps([
            {'id': 'core', 'version': '1.0.0'},
            {'id': 'sales', 'version': 'bad'},
            {'id': 'core', 'version': '1.0.0'},
            {'id': 'inventory', 'version': '1.0.0', 'dependsOn': ['core']},
        ]))

        catalog, errors = load_catalog(path)

        assert catalog.ids() == ['core', 'inventory']
        assert len(errors) == 2

    def test_load_from_modules_object(self, tmp_path):
        """{"modules": [...]} is accepted too."""
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps({'modules': [{'id': 'core', 'version': '1.0.0'}]}))

        catalog, errors = load_catalog(path)
        assert catalog.ids() == ['core']
        assert errors == []
        assert read_manifest_data(path) == [{'id': 'core', 'version': '1.0.0'}]

    def test_load_from_directory(self, tmp_path):
        """Each sub-directory with a manifest.json contributes one manifest."""
        for module_id in ['core', 'sales']:
            module_dir = tmp_path / module_id
            module_dir.mkdir()
            (module_dir / 'manifest.json').write_text(
                json.dumps({'id': module_id, 'version': '1.0.0'})
            )
        (tmp_path / 'empty').mkdir()

        catalog, errors = load_catalog(tmp_path)

        assert sorted(catalog.ids()) == ['core', 'sales']
        assert errors == []

    def test_load_missing_file(self, tmp_path):
        """A missing catalog file raises ConfigurationError."""
        with pytest.raises(ConfigurationError, match="not found"):
            load_catalog(tmp_path / 'missing.json')

    def test_load_wrong_shape(self, tmp_path):
        """A JSON object without 'modules' is rejected."""
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps({'id': 'core'}))
        with pytest.raises(ConfigurationError):
            load_catalog(path)
