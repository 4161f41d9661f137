"""
Tests for PII rule matching and rule file loading.
"""

import json

import pytest

from autodbadmin.domain.errors import ConfigurationError
from autodbadmin.domain.pii import (
    DataPattern,
    KnownName,
    filter_patterns,
    is_sampleable,
    match_known_name,
    match_values,
)
from autodbadmin.infrastructure.pii_rules import load_known_names, load_patterns


class TestKnownNames:

    def test_from_dict_accepts_single_pattern(self):
        rule = KnownName.from_dict({"Name": "Email", "Pattern": "e_?mail"})

        assert rule.patterns == ["e_?mail"]
        assert rule.category == "Personal"

    def test_match_is_case_insensitive(self):
        rule = KnownName.from_dict({"Name": "Email", "Pattern": ["e_?mail"]})

        assert rule.matches("CustomerEMail")
        assert rule.matches("e_mail_address")
        assert not rule.matches("Mailbox")

    def test_first_matching_rule_wins(self):
        rules = [
            KnownName(name="Password", category="Technical", patterns=["^pwd$"]),
            KnownName(name="Anything", category="Other", patterns=[".*"]),
        ]

        assert match_known_name("pwd", rules).name == "Password"
        assert match_known_name("Quantity", rules).name == "Anything"
        assert match_known_name("x", []) is None


class TestDataPatterns:

    def test_ignores_empty_values(self):
        pattern = DataPattern(name="Email", category="Personal", pattern=r"@")

        assert not pattern.matches(None)
        assert not pattern.matches("   ")
        assert pattern.matches(" a@b.com ")

    def test_numbers_are_matched_as_text(self):
        pattern = DataPattern(name="Zip", category="Personal", pattern=r"^\d{5}$")

        assert pattern.matches(90210)

    def test_match_values_keeps_rule_order(self):
        email = DataPattern(name="Email", category="Personal", pattern=r"@")
        digits = DataPattern(name="Digits", category="Other", pattern=r"^\d+$")
        never = DataPattern(name="Never", category="Other", pattern=r"^zzz$")

        hits = match_values(["123", "a@b.com"], [email, digits, never])

        assert [h.name for h in hits] == ["Email", "Digits"]

    def test_filter_by_country_keeps_global_patterns(self):
        patterns = [
            DataPattern(name="Email", category="Personal", pattern="@"),
            DataPattern(name="SSN", category="National ID", pattern="x",
                        country="United States", country_code="US"),
            DataPattern(name="NINO", category="National ID", pattern="x",
                        country="United Kingdom", country_code="GB"),
        ]

        assert [p.name for p in filter_patterns(patterns, countries=["united states"])] == ["Email", "SSN"]
        assert [p.name for p in filter_patterns(patterns, country_codes=["GB"])] == ["Email", "NINO"]
        assert len(filter_patterns(patterns)) == 3

    def test_sampleable_types(self):
        assert is_sampleable("NVARCHAR")
        assert is_sampleable("int")
        assert not is_sampleable("varbinary")
        assert not is_sampleable("xml")


class TestRuleFiles:

    def test_default_rules_load(self):
        names = load_known_names()
        patterns = load_patterns()

        assert any(r.name == "Email" for r in names)
        assert any(p.name == "Social Security Number" and p.country_code == "US" for p in patterns)

    def test_default_ssn_pattern(self):
        ssn = next(p for p in load_patterns() if p.name == "Social Security Number")

        assert ssn.matches("123-45-6789")
        assert not ssn.matches("000-45-6789")

    def test_extra_file_is_appended(self, tmp_path):
        extra = tmp_path / "names.json"
        extra.write_text(json.dumps([{"Name": "Badge", "Pattern": ["^badge_?no$"]}]), encoding="utf-8")

        rules = load_known_names(extra, include_defaults=False)

        assert [r.name for r in rules] == ["Badge"]
        assert rules[0].matches("BadgeNo")

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_patterns(tmp_path / "missing.json")

    def test_file_must_hold_an_array(self, tmp_path):
        extra = tmp_path / "patterns.json"
        extra.write_text(json.dumps({"Name": "x"}), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="JSON array"):
            load_patterns(extra, include_defaults=False)

    def test_rule_missing_field(self, tmp_path):
        extra = tmp_path / "patterns.json"
        extra.write_text(json.dumps([{"Name": "NoPattern"}]), encoding="utf-8")

        with pytest.raises(ConfigurationError, match="missing field"):
            load_patterns(extra, include_defaults=False)
