"""
Tests for Dependency Resolution and the Feature Gate.

This test suite covers:
1. Topological ordering with foundation-tier preference
2. Cycle detection and reporting
3. Unresolved dependencies and modules blocked by cycles
4. Transitive dependency/dependent queries
5. Eligibility rules
6. Offline diagnostics
"""

import pytest

from modula.module.catalog import ManifestCatalog
from modula.module.diagnostics import build_report, format_report
from modula.module.errors import BlockedModuleError, CycleError, UnresolvedDependencyError
from modula.module.gate import FeatureGate, enhancements, is_eligible
from modula.module.manifest import ActivationRule, ModuleManifest
from modula.module.resolver import DependencyResolver, resolve


def manifests(**deps):
    """Build manifests from id=[dependencies] keyword arguments."""
    return [ModuleManifest(module_id.replace('_', '-'), depends_on=d) for module_id, d in deps.items()]


class TestOrdering:
    """Test activation order."""

    def test_dependencies_before_dependents(self):
        """Every module comes after all of its dependencies."""
        result = resolve(manifests(
            sales=['inventory', 'core'],
            inventory=['core'],
            core=[],
            reports=['sales'],
        ))

        order = result.order
        assert order.index('core') < order.index('inventory') < order.index('sales')
        assert order.index('sales') < order.index('reports')
        assert result.ok

    def test_foundation_tier_first(self):
        """Zero-dependency modules come before everything else."""
        result = resolve(manifests(
            zeta=[],
            alpha=['zeta'],
            beta=[],
        ))

        assert result.foundation == ['beta', 'zeta']
        assert result.order == ['beta', 'zeta', 'alpha']

    def test_ties_broken_by_id(self):
        """Independent modules are ordered by id."""
        result = resolve(manifests(c=['a'], b=['a'], a=[]))
        assert result.order == ['a', 'b', 'c']

    def test_resolver_accepts_catalog(self):
        """A ManifestCatalog can be resolved directly."""
        catalog = ManifestCatalog(manifests(a=[], b=['a']))
        assert DependencyResolver(catalog).resolve().order == ['a', 'b']


class TestCycles:
    """Test cycle detection."""

    def test_cycle_reported_and_excluded(self):
        """A cycle is reported as a closed chain; its members are not ordered."""
        result = resolve(manifests(a=['b'], b=['a'], c=[]))

        assert result.cycles == [['a', 'b', 'a']]
        assert result.in_cycle == {'a', 'b'}
        assert result.order == ['c']
        assert not result.ok

    def test_dependents_of_cycle_blocked(self):
        """A module depending on a cycle is blocked, not ordered."""
        result = resolve(manifests(a=['b'], b=['a'], d=['a'], e=['d'], f=[]))

        assert result.blocked == ['d', 'e']
        assert result.order == ['f']

    def test_self_dependency(self):
        """A module depending on itself is a one-node cycle."""
        result = resolve(manifests(a=['a']))
        assert result.cycles == [['a', 'a']]
        assert result.order == []

    def test_every_cycle_reported(self):
        """Disjoint cycles are each reported."""
        result = resolve(manifests(a=['b'], b=['a'], x=['y'], y=['x']))
        assert len(result.cycles) == 2
        assert result.in_cycle == {'a', 'b', 'x', 'y'}

    def test_cycle_through_finished_module(self):
        """A cycle closing through an already visited module is still reported."""
        result = resolve(manifests(a=['x', 'c'], x=['a'], c=['x']))

        assert result.in_cycle == {'a', 'c', 'x'}
        assert result.cycles == [['a', 'x', 'a'], ['c', 'x', 'a', 'c']]
        assert result.blocked == []
        assert result.order == []

    def test_dependent_of_overlapping_cycles_blocked(self):
        result = resolve(manifests(a=['x', 'c'], x=['a'], c=['x'], d=['c']))

        assert 'c' in result.in_cycle
        assert result.blocked == ['d']

    def test_errors(self):
        """errors() returns one diagnostic per problem."""
        result = resolve(manifests(a=['b'], b=['a'], c=['a'], d=['missing']))
        errors = result.errors()

        assert any(isinstance(e, CycleError) and e.cycle == ['a', 'b', 'a'] for e in errors)
        assert any(isinstance(e, BlockedModuleError) and e.module_id == 'c' for e in errors)
        assert any(
            isinstance(e, UnresolvedDependencyError) and e.missing == 'missing'
            for e in errors
        )


class TestUnresolved:
    """Test unknown dependency ids."""

    def test_unresolved_reported_not_fatal(self):
        """An unknown id is reported; the module is still ordered."""
        result = resolve(manifests(core=[], sales=['core', 'ghost']))

        assert result.unresolved == {'sales': ['ghost']}
        assert result.order == ['core', 'sales']
        assert result.cycles == []


class TestQueries:
    """Test transitive queries."""

    def test_dependencies_of(self):
        resolver = DependencyResolver(manifests(
            core=[], inventory=['core'], sales=['inventory', 'core'],
        ))
        assert resolver.dependencies_of('sales') == ['inventory', 'core']
        assert resolver.dependencies_of('core') == []

    def test_dependents_of(self):
        resolver = DependencyResolver(manifests(
            core=[], inventory=['core'], sales=['inventory'], hr=[],
        ))
        assert resolver.dependents_of(['core']) == {'inventory', 'sales'}
        assert resolver.dependents_of(['hr']) == set()


class TestFeatureGate:
    """Test eligibility evaluation."""

    def test_always_on(self):
        assert is_eligible(ActivationRule.always_on(), frozenset())

    def test_feature_rule(self):
        rule = ActivationRule.feature('sales', ('charts',))
        assert is_eligible(rule, {'sales'})
        assert not is_eligible(rule, {'charts'})

    def test_legacy_requires_all(self):
        rule = ActivationRule.legacy(('sales', 'inventory'), ('charts',))
        assert is_eligible(rule, {'sales', 'inventory'})
        assert not is_eligible(rule, {'sales', 'charts'})

    def test_legacy_empty_required(self):
        """No required features means always eligible."""
        assert is_eligible(ActivationRule.legacy(()), frozenset())

    def test_enhancing_features_never_gate(self):
        """Enabling or disabling enhancers never changes eligibility."""
        manifest = ModuleManifest('reports', activation=ActivationRule.feature('reporting', ('charts',)))
        assert is_eligible(manifest, {'reporting'}) == is_eligible(manifest, {'reporting', 'charts'})
        assert enhancements(manifest, {'reporting', 'charts'}) == {'charts'}

    def test_gate_object(self):
        gate = FeatureGate(['sales'])
        manifest = ModuleManifest('sales', activation=ActivationRule.feature('sales'))
        assert gate.evaluate(manifest)
        assert gate.has_feature('sales')
        assert repr(gate) == "FeatureGate(['sales'])"


class TestDiagnostics:
    """Test the offline diagnostic report."""

    def test_report(self):
        catalog = ManifestCatalog(manifests(a=['b'], b=['a'], c=['a'], core=[], d=['ghost']))
        report = build_report(catalog)

        assert report.modules == 5
        assert report.cycles == [['a', 'b', 'a']]
        assert report.blocked == ['c']
        assert report.unresolved == {'d': ['ghost']}
        assert report.foundation == ['core']
        assert report.has_problems

        text = format_report(report)
        assert 'a -> b -> a' in text
        assert 'd: ghost' in text

    @pytest.mark.parametrize('deps', [{'a': []}, {'a': [], 'b': ['a']}])
    def test_clean_report(self, deps):
        report = build_report(ManifestCatalog(manifests(**deps)))
        assert not report.has_problems
        assert report.to_dict()['cycles'] == []
