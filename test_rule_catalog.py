import json

import pytest

from malwareguard.core.recommendations import (
    URL_RECOMMENDATIONS,
    MESSAGE_RECOMMENDATIONS,
    validate_bundle,
)
from malwareguard.core.rule_catalog import (
    CatalogValidationError,
    RuleCatalog,
    RuleKind,
    ThresholdBand,
    ThresholdTable,
    build_catalogs,
    validate_catalog,
    validate_thresholds,
    _category,
)
from malwareguard.schemas import RiskTier


class TestBuiltinCatalogs:
    def test_builtin_bundle_is_valid(self):
        validate_bundle(build_catalogs())

    def test_every_catalog_has_a_version(self):
        bundle = build_catalogs()
        assert bundle.url.version == bundle.version
        assert bundle.message.version == bundle.version
        assert bundle.email.version == bundle.version

    def test_url_exclusive_group_is_ordered_by_priority(self):
        catalog = build_catalogs().url
        assert catalog.exclusive_groups == (("malicious_domain", "suspicious_domain", "safe_domain"),)

    def test_catalogs_are_immutable(self):
        catalog = build_catalogs().message
        with pytest.raises(Exception):
            catalog.domain = "other"


class TestIntelFile:
    def test_intel_file_extends_domain_lists(self, tmp_path):
        path = tmp_path / "intel.json"
        path.write_text(json.dumps({
            "bad_domains": ["Evil-Example.test"],
            "suspicious_domains": ["short.test"],
            "safe_domains": ["trusted.test"],
        }))

        catalog = build_catalogs(str(path)).url

        assert "evil-example.test" in [r.pattern for r in catalog.get("malicious_domain").rules]
        assert "short.test" in [r.pattern for r in catalog.get("suspicious_domain").rules]
        assert "trusted.test" in [r.pattern for r in catalog.get("safe_domain").rules]

    def test_duplicate_intel_entries_do_not_duplicate_rules(self, tmp_path):
        path = tmp_path / "intel.json"
        path.write_text(json.dumps({"bad_domains": ["badsite.cc", "badsite.cc"]}))

        bundle = build_catalogs(str(path))

        validate_bundle(bundle)
        patterns = [r.pattern for r in bundle.url.get("malicious_domain").rules]
        assert patterns.count("badsite.cc") == 1


def _catalog(*categories, exclusive_groups=()):
    return RuleCatalog(domain="test", categories=categories, exclusive_groups=exclusive_groups)


class TestValidateCatalog:
    def test_category_without_advice_is_rejected(self):
        catalog = _catalog(_category("urgency", "Urgency", [("urgent", 10)]))
        with pytest.raises(CatalogValidationError, match="has no recommendation"):
            validate_catalog(catalog, {})

    def test_advice_for_unknown_category_is_rejected(self):
        catalog = _catalog(_category("urgency", "Urgency", [("urgent", 10)]))
        with pytest.raises(CatalogValidationError, match="unknown category"):
            validate_catalog(catalog, {"urgency": ("a",), "ghost": ("b",)})

    def test_benign_category_needs_no_advice(self):
        catalog = _catalog(_category("safe", "Safe", [("ok.test", 0)], kind=RuleKind.DOMAIN, benign=True))
        validate_catalog(catalog, {})

    def test_duplicate_rule_is_rejected(self):
        catalog = _catalog(_category("urgency", "Urgency", [("urgent", 10), ("urgent", 5)]))
        with pytest.raises(CatalogValidationError, match="duplicate"):
            validate_catalog(catalog, {"urgency": ("a",)})

    def test_invalid_regex_is_rejected(self):
        catalog = _catalog(_category("urgency", "Urgency", [("(unclosed", 10)], kind=RuleKind.REGEX))
        with pytest.raises(CatalogValidationError, match="invalid pattern"):
            validate_catalog(catalog, {"urgency": ("a",)})

    def test_negative_weight_is_rejected(self):
        catalog = _catalog(_category("urgency", "Urgency", [("urgent", -5)]))
        with pytest.raises(CatalogValidationError, match="negative weight"):
            validate_catalog(catalog, {"urgency": ("a",)})

    def test_misordered_exclusive_group_is_rejected(self):
        catalog = _catalog(
            _category("low", "Low", [("a.test", 5)], kind=RuleKind.DOMAIN),
            _category("high", "High", [("b.test", 95)], kind=RuleKind.DOMAIN),
            exclusive_groups=(("low", "high"),),
        )
        with pytest.raises(CatalogValidationError, match="not ordered"):
            validate_catalog(catalog, {"low": ("a",), "high": ("b",)})

    def test_validation_error_is_a_value_error(self):
        assert issubclass(CatalogValidationError, ValueError)

    def test_recommendation_tables_cover_builtin_catalogs(self):
        bundle = build_catalogs()
        validate_catalog(bundle.url, URL_RECOMMENDATIONS)
        validate_catalog(bundle.message, MESSAGE_RECOMMENDATIONS)


class TestValidateThresholds:
    def test_table_must_end_at_zero(self):
        table = ThresholdTable(name="t", bands=(
            ThresholdBand(minimum=50, tier=RiskTier.HIGH, label="High"),
            ThresholdBand(minimum=10, tier=RiskTier.LOW, label="Low"),
        ))
        with pytest.raises(CatalogValidationError, match="end at 0"):
            validate_thresholds(table)

    def test_table_must_be_strictly_descending(self):
        table = ThresholdTable(name="t", bands=(
            ThresholdBand(minimum=50, tier=RiskTier.HIGH, label="High"),
            ThresholdBand(minimum=50, tier=RiskTier.MEDIUM, label="Medium"),
            ThresholdBand(minimum=0, tier=RiskTier.LOW, label="Low"),
        ))
        with pytest.raises(CatalogValidationError, match="descending"):
            validate_thresholds(table)
