from datetime import date

from timeline_engine.core.io.contracts import DateRange, parse_date, parse_request


def _codes(warnings):
    return [w.code for w in warnings]


def test_parse_request_camel_case():
    request, warnings = parse_request(
        {
            "projectId": "P",
            "items": [
                {"id": "A", "title": "First", "estimatedDurationDays": 3, "startDate": "2024-01-02"},
                {"id": "B", "summary": "Second", "dueDate": "2024-01-09T10:00:00Z", "assignee": "ann"},
            ],
            "links": [{"sourceId": "A", "targetId": "B", "typeLabel": "FS", "lagDays": 1}],
            "options": {"includeCompleted": False, "hierarchicalView": True},
        }
    )
    assert warnings == []
    assert request.project_id == "P"
    a, b = request.items
    assert a.estimated_duration_days == 3.0
    assert a.start_date == date(2024, 1, 2)
    assert b.title == "Second"
    assert b.estimated_duration_days is None
    assert b.due_date == date(2024, 1, 9)
    assert b.assignee == "ann"
    link = request.links[0]
    assert (link.source_id, link.target_id, link.type_label, link.lag_days) == ("A", "B", "FS", 1.0)
    assert request.options.include_completed is False
    assert request.options.hierarchical_view is True
    assert request.options.include_network is True


def test_parse_request_snake_case_aliases():
    request, warnings = parse_request(
        {
            "items": [{"id": "A", "estimated_duration_days": 2}],
            "links": [{"source_id": "A", "target_id": "B", "type": "blocks"}],
            "options": {"include_critical_path": True, "project_start_date": "2024-05-01"},
        }
    )
    assert warnings == []
    assert request.items[0].title == "A"
    assert request.links[0].type_label == "blocks"
    assert request.options.include_critical_path is True
    assert request.options.project_start_date == date(2024, 5, 1)


def test_malformed_records_are_skipped_with_warnings():
    request, warnings = parse_request(
        {
            "items": [
                "not-an-object",
                {"title": "no id"},
                {"id": "A", "estimatedDurationDays": "three"},
                {"id": "B", "startDate": "yesterday"},
            ],
            "links": [
                {"sourceId": "A"},
                {"sourceId": "A", "targetId": "B", "lagDays": "x", "constraint": "maybe"},
            ],
        }
    )
    assert [it.id for it in request.items] == ["A", "B"]
    assert request.items[0].estimated_duration_days is None
    assert request.items[1].start_date is None
    assert len(request.links) == 1
    assert request.links[0].lag_days == 0.0
    assert request.links[0].constraint == "hard"
    codes = _codes(warnings)
    assert codes.count("W_INVALID_ITEM") == 2
    assert "W_INVALID_DURATION" in codes
    assert "W_INVALID_DATE" in codes
    assert codes.count("W_INVALID_LINK") == 3


def test_numeric_ids_are_stringified():
    request, _ = parse_request({"items": [{"id": 42}]})
    assert request.items[0].id == "42"


def test_non_list_collections_warn():
    request, warnings = parse_request({"items": {"id": "A"}, "links": "A->B"})
    assert request.items == [] and request.links == []
    assert _codes(warnings) == ["W_INVALID_ITEM", "W_INVALID_LINK"]


def test_swapped_date_range_is_corrected_with_warning():
    request, warnings = parse_request(
        {"options": {"dateRange": {"start": "2024-02-01", "end": "2024-01-01"}}}
    )
    assert request.options.date_range == DateRange(date(2024, 1, 1), date(2024, 2, 1))
    assert _codes(warnings) == ["W_DATE_RANGE_SWAPPED"]


def test_open_ended_date_range():
    request, warnings = parse_request({"options": {"dateRange": {"start": "2024-02-01"}}})
    assert warnings == []
    assert request.options.date_range.start == date(2024, 2, 1)
    assert request.options.date_range.end == date.max


def test_invalid_options_fall_back_to_defaults():
    request, warnings = parse_request({"options": {"overloadThresholdDays": -1}})
    assert request.options.overload_threshold_days is None
    assert _codes(warnings) == ["W_INVALID_OPTION"]

    request, warnings = parse_request({"options": []})
    assert request.options.include_network is True
    assert _codes(warnings) == ["W_INVALID_OPTION"]


def test_parse_date_forms():
    assert parse_date(None) is None
    assert parse_date("2024-03-01") == date(2024, 3, 1)
    assert parse_date("2024-03-01T23:00:00+00:00") == date(2024, 3, 1)
    assert parse_date(date(2024, 3, 1)) == date(2024, 3, 1)
    # 2024-03-01T00:00:00Z in epoch milliseconds
    assert parse_date(1709251200000) == date(2024, 3, 1)


def test_date_range_overlap():
    r = DateRange(date(2024, 1, 10), date(2024, 1, 20))
    assert r.overlaps(date(2024, 1, 1), date(2024, 1, 10))
    assert r.overlaps(date(2024, 1, 15), date(2024, 2, 1))
    assert not r.overlaps(date(2024, 1, 21), date(2024, 1, 25))


def test_fingerprint_is_stable_and_option_sensitive():
    r1, _ = parse_request({"options": {"includeCompleted": False}})
    r2, _ = parse_request({"options": {"includeCompleted": False}})
    r3, _ = parse_request({"options": {"includeCompleted": True}})
    assert r1.options.fingerprint() == r2.options.fingerprint()
    assert r1.options.fingerprint() != r3.options.fingerprint()


def test_non_finite_numbers_are_rejected():
    request, warnings = parse_request(
        {
            "items": [
                {"id": "A", "estimatedDurationDays": float("inf")},
                {"id": "B", "estimatedDurationDays": float("nan")},
            ],
            "links": [{"sourceId": "A", "targetId": "B", "lagDays": float("inf")}],
        }
    )
    assert [it.estimated_duration_days for it in request.items] == [None, None]
    assert request.links[0].lag_days == 0.0
    codes = _codes(warnings)
    assert codes.count("W_INVALID_DURATION") == 2
    assert codes.count("W_INVALID_LINK") == 1
