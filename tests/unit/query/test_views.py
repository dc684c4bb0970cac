"""Unit tests for lead search, filtering and sorting."""

import copy

import pytest

from ghl_dashboard.connectors.base.records import Snapshot
from ghl_dashboard.query.views import (
    AppointmentIndex,
    AuxiliaryCollections,
    FilterState,
    LeadFilters,
    SortDirection,
    SortSpec,
    display_name,
    find_resume_link,
    matches_search,
    query_records,
    sort_records,
)

pytestmark = pytest.mark.unit


RESUME_URL = "https://files.example.com/resume-jane.pdf"


@pytest.fixture
def leads() -> list[dict]:
    return [
        {
            "id": "c1",
            "firstName": "Jane",
            "lastName": "Smith",
            "email": "jane@example.com",
            "phone": "+15550001",
            "source": "Website",
            "dateAdded": "2024-01-03T00:00:00Z",
            "customFields": [{"id": "f1", "value": RESUME_URL}],
        },
        {
            "id": "c2",
            "firstName": "bob",
            "lastName": "Jones",
            "email": "bob@example.com",
            "source": "Referral",
            "dateAdded": "2024-01-01T00:00:00Z",
        },
        {
            "id": "c3",
            "contactName": "Alice Cooper",
            "email": "alice@example.com",
            "source": "Website",
        },
    ]


@pytest.fixture
def aux() -> AuxiliaryCollections:
    return AuxiliaryCollections(
        custom_fields=[{"id": "f1", "name": "Resume Upload"}],
        appointments=[{"id": "e1", "contactId": "c2"}, {"id": "e2", "contact": {"email": "ALICE@example.com"}}],
    )


# =============================================================================
# Field Helpers
# =============================================================================


class TestDisplayName:
    @pytest.mark.parametrize(
        ("record", "expected"),
        [
            ({"firstName": "Jane", "lastName": "Smith"}, "Jane Smith"),
            ({"firstName": "Jane"}, "Jane"),
            ({"firstName": " ", "contactName": "J. Smith"}, "J. Smith"),
            ({"email": "x@example.com"}, "x@example.com"),
            ({}, ""),
        ],
    )
    def test_fallbacks(self, record, expected):
        assert display_name(record) == expected


class TestMatchesSearch:
    @pytest.mark.parametrize("query", ["jane", "SMITH", "example.com", "5550001", "website", "  jane  "])
    def test_matches(self, leads, query):
        assert matches_search(leads[0], query)

    def test_blank_query_matches_everything(self, leads):
        assert matches_search(leads[0], "")
        assert matches_search(leads[0], None)

    def test_no_match(self, leads):
        assert not matches_search(leads[0], "zebra")


class TestFindResumeLink:
    def test_by_custom_field_definition_name(self, leads):
        assert find_resume_link(leads[0], {"f1": "Resume Upload"}) == RESUME_URL

    def test_by_inline_field_name(self):
        record = {"customFields": [{"id": "x", "name": "Candidate Resume", "value": "https://a/b.pdf"}]}

        assert find_resume_link(record) == "https://a/b.pdf"

    def test_by_field_id(self):
        record = {"customFields": [{"id": "contact.resume_file", "value": "https://a/b.pdf"}]}

        assert find_resume_link(record) == "https://a/b.pdf"

    def test_by_url_value(self):
        record = {"customFields": [{"id": "x", "value": "https://cdn.example.com/uploads/resume.pdf"}]}

        assert find_resume_link(record) == "https://cdn.example.com/uploads/resume.pdf"

    def test_file_upload_value(self):
        record = {
            "customFields": [
                {"id": "f1", "value": {"a1b2": {"url": "https://cdn.example.com/f.pdf", "meta": {"name": "f.pdf"}}}}
            ]
        }

        assert find_resume_link(record, {"f1": "Resume"}) == "https://cdn.example.com/f.pdf"

    def test_unrelated_fields(self):
        record = {"customFields": [{"id": "f9", "value": "https://example.com/portfolio"}]}

        assert find_resume_link(record, {"f9": "Portfolio"}) is None

    def test_no_custom_fields(self):
        assert find_resume_link({}) is None


class TestAppointmentIndex:
    def test_matches_by_contact_id(self):
        index = AppointmentIndex([{"contactId": "c2"}])

        assert index.has_appointment({"id": "c2"})
        assert not index.has_appointment({"id": "c1"})

    def test_matches_by_email_case_insensitively(self):
        index = AppointmentIndex(
            [
                {"email": "A@example.com"},
                {"contact": {"email": "b@example.com"}},
                {"attendees": [{"email": "c@example.com"}, "D@example.com"]},
            ]
        )

        for email in ("a@example.com", "B@EXAMPLE.COM", "c@example.com", "d@example.com"):
            assert index.has_appointment({"id": "x", "email": email})

    def test_blank_email_never_matches(self):
        index = AppointmentIndex([{"email": ""}])

        assert not index.has_appointment({"id": "x", "email": ""})


# =============================================================================
# Sorting
# =============================================================================


class TestSortRecords:
    def test_name_ascending_is_case_insensitive(self, leads):
        ordered = sort_records(leads, SortSpec())

        assert [r["id"] for r in ordered] == ["c3", "c2", "c1"]

    def test_descending(self, leads):
        ordered = sort_records(leads, SortSpec(direction=SortDirection.DESC))

        assert [r["id"] for r in ordered] == ["c1", "c2", "c3"]

    @pytest.mark.parametrize("direction", [SortDirection.ASC, SortDirection.DESC])
    def test_missing_values_last(self, leads, direction):
        ordered = sort_records(leads, SortSpec(field="dateAdded", direction=direction))

        assert ordered[-1]["id"] == "c3"

    def test_stable_for_equal_keys(self):
        records = [{"id": str(i), "source": "Website"} for i in range(5)]

        for direction in SortDirection:
            ordered = sort_records(records, SortSpec(field="source", direction=direction))
            assert [r["id"] for r in ordered] == ["0", "1", "2", "3", "4"]

    def test_numbers_before_strings(self):
        records = [{"id": "a", "score": "high"}, {"id": "b", "score": 3}, {"id": "c", "score": 1}]

        ordered = sort_records(records, SortSpec(field="score"))

        assert [r["id"] for r in ordered] == ["c", "b", "a"]


# =============================================================================
# Query
# =============================================================================


class TestQueryRecords:
    def test_annotates_records(self, leads, aux):
        results = {r["id"]: r for r in query_records(leads, aux)}

        assert results["c1"]["displayName"] == "Jane Smith"
        assert results["c1"]["hasResume"] is True
        assert results["c1"]["resumeLink"] == RESUME_URL
        assert results["c1"]["hasAppointment"] is False
        assert results["c2"]["hasAppointment"] is True
        assert results["c3"]["hasAppointment"] is True
        assert results["c3"]["resumeLink"] is None

    def test_search(self, leads, aux):
        results = query_records(leads, aux, search="website")

        assert {r["id"] for r in results} == {"c1", "c3"}

    @pytest.mark.parametrize(
        ("resume", "expected"),
        [(FilterState.ANY, {"c1", "c2", "c3"}), (FilterState.HAS, {"c1"}), (FilterState.NONE, {"c2", "c3"})],
    )
    def test_resume_filter(self, leads, aux, resume, expected):
        results = query_records(leads, aux, filters=LeadFilters(resume=resume))

        assert {r["id"] for r in results} == expected

    @pytest.mark.parametrize(
        ("appointment", "expected"),
        [(FilterState.ANY, {"c1", "c2", "c3"}), (FilterState.HAS, {"c2", "c3"}), (FilterState.NONE, {"c1"})],
    )
    def test_appointment_filter(self, leads, aux, appointment, expected):
        results = query_records(leads, aux, filters=LeadFilters(appointment=appointment))

        assert {r["id"] for r in results} == expected

    def test_filters_combine(self, leads, aux):
        results = query_records(
            leads,
            aux,
            search="example.com",
            filters=LeadFilters(resume=FilterState.NONE, appointment=FilterState.HAS),
            sort=SortSpec(direction=SortDirection.DESC),
        )

        assert [r["id"] for r in results] == ["c2", "c3"]

    def test_does_not_mutate_snapshot(self, leads, aux):
        snapshot = Snapshot()
        snapshot.merge(leads)
        before = copy.deepcopy(snapshot.records())

        query_records(snapshot, aux, search="jane", sort=SortSpec(field="dateAdded"))

        assert snapshot.records() == before
        assert "displayName" not in snapshot.get("c1")

    def test_empty_snapshot(self):
        assert query_records(Snapshot()) == []
