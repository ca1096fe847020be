"""
Unit tests for match reporting and presentation.
"""

import pytest

from service_dedup.app.rules.reporter import (
    find_matched_fields, display_name, summarize, describe_record
)


class TestFindMatchedFields:
    """Test cases for find_matched_fields."""

    def test_reports_overlap_across_all_groups(self):
        existing = {"id": "lead-1", "email": "JANE@example.com", "phone": "555-0100", "last_name": "Doe"}
        candidate = {"email": "jane@example.com", "phone": "555-0100", "last_name": "Smith"}

        matched = find_matched_fields(existing, candidate, [["email"], ["phone"], ["first_name", "last_name"]])

        assert matched == {"email": "jane@example.com", "phone": "555-0100"}

    def test_uses_candidate_raw_value(self):
        matched = find_matched_fields({"email": "jane@example.com"}, {"email": "  Jane@Example.COM "}, [["email"]])

        assert matched == {"email": "  Jane@Example.COM "}

    def test_falsy_candidate_values_are_excluded(self):
        existing = {"email": None, "phone": "", "score": 0}
        candidate = {"phone": "", "score": 0}

        assert find_matched_fields(existing, candidate, [["email"], ["phone"], ["score"]]) == {}

    def test_nested_paths(self):
        existing = {"address": {"city": "Austin"}}
        candidate = {"address": {"city": "austin"}}

        assert find_matched_fields(existing, candidate, [["address.city"]]) == {"address.city": "austin"}


class TestDescribeRecord:
    """Test cases for record display helpers."""

    @pytest.mark.parametrize("record, entity_type, expected", [
        ({"first_name": "Jane", "last_name": "Doe"}, "leads", "Jane Doe"),
        ({"first_name": "Jane"}, "leads", "Jane"),
        ({"email": "jane@example.com"}, "leads", "jane@example.com"),
        ({"phone": "555-0100"}, "leads", "555-0100"),
        ({}, "leads", "Unnamed Lead"),
        ({"phone": "555-0100"}, "contacts", "Unnamed Contact"),
        ({"last_name": "Doe", "email": "x@y.z"}, "contacts", "Doe"),
        ({"name": "Acme", "website": "acme.com"}, "accounts", "Acme"),
        ({"website": "acme.com"}, "accounts", "acme.com"),
        ({}, "accounts", "Unnamed Account"),
        ({"title": "Renewal"}, "deals", "Renewal"),
        ({}, "tickets", "Unnamed Record"),
    ])
    def test_display_name(self, record, entity_type, expected):
        assert display_name(record, entity_type) == expected

    def test_summary_uses_entity_fields(self):
        record = {"company": "Acme", "status": "", "created_at": "2024-01-15T00:00:00Z", "email": "x"}

        assert summarize(record, "leads") == {"company": "Acme", "created_at": "2024-01-15T00:00:00Z"}

    def test_summary_for_unknown_entity(self):
        assert summarize({"created_at": "2024-01-15"}, "widgets") == {"created_at": "2024-01-15"}

    def test_describe_record(self):
        name, summary = describe_record({"name": "Acme", "industry": "Retail", "city": "Austin"}, "accounts")

        assert name == "Acme"
        assert summary == {"industry": "Retail", "city": "Austin"}
