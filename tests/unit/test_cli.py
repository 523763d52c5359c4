"""
Tests for the modctl command-line tool.
"""

import json
import logging

import pytest

from modctl.cli import main, parse_features
from modula.config import load_config


@pytest.fixture(autouse=True)
def reset_logging():
    """modctl installs a handler on the "modula" logger; drop it after each test."""
    yield
    logger = logging.getLogger('modula')
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / 'catalog.json'
    path.write_text(json.dumps([
        {'id': 'core', 'version': '1.0.0'},
        {'id': 'sales', 'version': '1.0.0', 'dependsOn': ['core'],
         'activation': {'activatedBy': 'sales_order_management'}},
        {'id': 'reports', 'version': '1.0.0', 'dependsOn': ['sales'],
         'activation': {'requiredFeatures': ['reporting'], 'optionalFeatures': ['charts']}},
    ]))
    return path


class TestHelp:
    """Test help output."""

    def test_no_operation_prints_help(self, capsys):
        assert main([]) == 0
        assert 'modctl - Modula module catalog tool' in capsys.readouterr().out

    def test_parse_features(self):
        assert parse_features(None) is None
        assert parse_features('a, b,,c') == ['a', 'b', 'c']


class TestDiagnose:
    """Test -D."""

    def test_clean_catalog(self, catalog_file, capsys):
        assert main(['-D', str(catalog_file)]) == 0
        out = capsys.readouterr().out
        assert 'Modules: 3' in out
        assert 'No problems found' in out

    def test_problems_exit_nonzero(self, tmp_path, capsys):
        path = tmp_path / 'catalog.json'
        path.write_text(json.dumps([
            {'id': 'a', 'version': '1.0.0', 'dependsOn': ['b']},
            {'id': 'b', 'version': '1.0.0', 'dependsOn': ['a']},
            {'id': 'c', 'version': 'oops'},
        ]))

        assert main(['-D', '--json', str(path)]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report['cycles'] == [['a', 'b', 'a']]
        assert len(report['invalid']) == 1

    def test_missing_catalog(self, tmp_path, capsys):
        assert main(['-D', str(tmp_path / 'missing.json')]) == 1
        assert 'Error:' in capsys.readouterr().err

    def test_requires_target(self, capsys):
        assert main(['-D']) == 1
        assert 'Expected exactly one target' in capsys.readouterr().err


class TestMigrate:
    """Test -M."""

    def test_migrate_to_file(self, catalog_file, tmp_path):
        output = tmp_path / 'out' / 'migrated.json'

        assert main(['-M', str(catalog_file), '-o', str(output)]) == 0

        migrated = json.loads(output.read_text())
        reports = next(m for m in migrated if m['id'] == 'reports')
        assert reports['activation'] == {'activatedBy': 'reporting', 'enhancedBy': ['charts']}
        core = next(m for m in migrated if m['id'] == 'core')
        assert core == {'id': 'core', 'version': '1.0.0'}

    def test_migrate_is_idempotent(self, catalog_file, tmp_path):
        once = tmp_path / 'once.json'
        twice = tmp_path / 'twice.json'

        assert main(['-M', str(catalog_file), '-o', str(once)]) == 0
        assert main(['-M', str(once), '-o', str(twice)]) == 0
        assert json.loads(once.read_text()) == json.loads(twice.read_text())

    def test_migrate_directory_to_stdout(self, tmp_path, capsys):
        module_dir = tmp_path / 'modules' / 'hr'
        module_dir.mkdir(parents=True)
        (module_dir / 'manifest.json').write_text(json.dumps(
            {'id': 'hr', 'version': '1.0.0', 'requiredFeatures': []}
        ))

        assert main(['-M', str(tmp_path / 'modules')]) == 0
        migrated = json.loads(capsys.readouterr().out)
        assert migrated == [{
            'id': 'hr', 'version': '1.0.0',
            'activation': {'alwaysOn': True, 'enhancedBy': []},
        }]


class TestPlan:
    """Test -P."""

    def test_plan_with_features(self, catalog_file, capsys):
        assert main(['-P', str(catalog_file), '--features', 'sales_order_management']) == 0
        out = capsys.readouterr().out
        assert 'core [active]' in out
        assert 'sales [active]' in out
        assert 'reports [disabled]' in out

    def test_plan_json(self, catalog_file, capsys):
        assert main([
            '-P', '--json', str(catalog_file),
            '--features', 'reporting,charts',
        ]) == 0
        plan = json.loads(capsys.readouterr().out)['plan']
        statuses = {entry['id']: entry['status'] for entry in plan}
        assert statuses == {'core': 'active', 'sales': 'disabled', 'reports': 'waiting'}

    def test_plan_reads_config(self, catalog_file, tmp_path, capsys):
        config = tmp_path / 'modula.toml'
        config.write_text('[kernel]\nenabled_features = ["sales_order_management"]\n')

        assert main(['-P', str(catalog_file), '-c', str(config)]) == 0
        assert 'sales [active]' in capsys.readouterr().out


class TestInitConfig:
    """Test -I."""

    def test_writes_config(self, tmp_path):
        path = tmp_path / 'config' / 'modula.toml'

        assert main(['-I', str(path), '--features', 'sales,inventory']) == 0

        config = load_config(path)
        assert config.enabled_features == frozenset({'sales', 'inventory'})
        assert '# Feature ids enabled at boot' in path.read_text()

    def test_refuses_overwrite(self, tmp_path, capsys):
        path = tmp_path / 'modula.toml'
        path.write_text('# mine\n')

        assert main(['-I', str(path)]) == 1
        assert path.read_text() == '# mine\n'

        assert main(['-I', '--force', str(path)]) == 0
        assert load_config(path).enabled_features == frozenset()
