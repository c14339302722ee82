from __future__ import annotations

import json

import pytest

from worksync_app.importer.contracts import (
    EntityType,
    FieldType,
    UnknownEntityTypeError,
    describe_entity,
    get_entity_fields,
    normalize_header,
)
from worksync_app.importer.mapping import (
    ColumnMapping,
    MappingLoadError,
    apply_mapping,
    load_mapping_file,
    parse_mapping_payload,
    suggest_mappings,
)


def test_every_entity_has_exactly_the_documented_required_fields():
    required = {
        entity: [field.key for field in get_entity_fields(entity) if field.required] for entity in EntityType
    }
    assert required == {
        EntityType.CLIENTS: ["companyName"],
        EntityType.PROJECTS: ["name"],
        EntityType.TASKS: ["title"],
        EntityType.USERS: ["email"],
        EntityType.ADMINS: ["email"],
        EntityType.TIME_ENTRIES: ["userEmail", "startTime"],
    }


def test_describe_entity_payload_shape():
    payload = describe_entity("tasks")
    assert payload["entityType"] == "tasks"
    assert payload["label"] == "Tasks"
    by_key = {field["key"]: field for field in payload["fields"]}
    assert by_key["priority"]["enumValues"] == ["low", "medium", "high", "urgent"]
    assert by_key["assigneeEmail"]["isResolver"] is True
    assert by_key["title"]["required"] is True
    assert by_key["dueDate"]["type"] == "datetime"


def test_unknown_entity_type_lists_choices():
    with pytest.raises(UnknownEntityTypeError) as excinfo:
        get_entity_fields("invoices")
    assert "Must be one of: clients, projects, tasks, users, admins, time_entries" in str(excinfo.value)


def test_entity_type_is_case_insensitive():
    assert describe_entity(" Time_Entries ")["entityType"] == "time_entries"


def test_normalize_header_strips_separators_and_punctuation():
    assert normalize_header(" Parent-Client_Name ") == "parentclientname"
    assert normalize_header("Budget (minutes)") == "budgetminutes"


def test_suggest_mappings_for_client_sheet():
    columns = ["Company", "Industry", "Parent Company", "Zip"]
    suggested = {m.target_field: m.source_column for m in suggest_mappings(columns, get_entity_fields("clients"))}
    assert suggested == {
        "companyName": "Company",
        "industry": "Industry",
        "parentClientName": "Parent Company",
        "postalCode": "Zip",
    }


def test_suggest_mappings_claims_columns_first_fit_and_sets_default_transforms():
    columns = ["Email", "Date", "Hours", "Project"]
    suggested = suggest_mappings(columns, get_entity_fields("time_entries"))
    by_field = {m.target_field: m for m in suggested}

    assert by_field["userEmail"].source_column == "Email"
    assert by_field["userEmail"].transform == "lowercase"
    assert by_field["startTime"].source_column == "Date"
    assert by_field["startTime"].transform == "parseDate"
    # "Date" also matches endTime, but startTime claimed it first.
    assert "endTime" not in by_field
    assert by_field["durationHours"].transform == "parseNumber"
    assert by_field["projectName"].source_column == "Project"


def test_suggest_mappings_ignores_unrelated_columns():
    assert suggest_mappings(["Widget", "Sprocket"], get_entity_fields("projects")) == []


def test_exact_key_beats_alias_match():
    fields = get_entity_fields("tasks")
    suggested = {m.target_field: m.source_column for m in suggest_mappings(["name", "title"], fields)}
    assert suggested["title"] == "title"


def test_apply_mapping_uses_static_value_and_enum_map():
    mappings = [
        ColumnMapping(source_column="Company", target_field="companyName", transform="trim"),
        ColumnMapping(source_column="", target_field="industry", static_value="Retail"),
        ColumnMapping(source_column="State", target_field="status", transform="enumMap", enum_map={"Current": "active"}),
        ColumnMapping(source_column="Missing", target_field="notes"),
    ]
    mapped = apply_mapping({"Company": "  Acme  ", "State": "current"}, mappings)
    assert mapped == {"companyName": "Acme", "industry": "Retail", "status": "active", "notes": ""}


def test_column_mapping_round_trips_camel_case():
    payload = {"sourceColumn": "Due", "targetField": "dueDate", "transform": "parseDate"}
    mapping = ColumnMapping.from_dict(payload)
    assert mapping.to_dict() == payload
    assert ColumnMapping.from_dict({"source_column": "Due", "target_field": "dueDate"}).source_column == "Due"


def test_parse_mapping_payload_rejects_bad_input():
    with pytest.raises(MappingLoadError, match="mapping must be an array"):
        parse_mapping_payload({"sourceColumn": "a"})
    with pytest.raises(MappingLoadError, match="targetField"):
        parse_mapping_payload([{"sourceColumn": "a"}])
    with pytest.raises(MappingLoadError, match="Unknown transform"):
        parse_mapping_payload([{"sourceColumn": "a", "targetField": "b", "transform": "shout"}])


def test_load_mapping_file_accepts_yaml_and_json(tmp_path):
    yaml_path = tmp_path / "mapping.yaml"
    yaml_path.write_text(
        "mapping:\n"
        "  - sourceColumn: Company\n"
        "    targetField: companyName\n"
        "  - sourceColumn: Status\n"
        "    targetField: status\n"
        "    transform: enumMap\n"
        "    enumMap:\n"
        "      Current: active\n",
        encoding="utf-8",
    )
    json_path = tmp_path / "mapping.json"
    json_path.write_text(json.dumps([{"sourceColumn": "Company", "targetField": "companyName"}]), encoding="utf-8")

    from_yaml = load_mapping_file(yaml_path)
    assert [m.target_field for m in from_yaml] == ["companyName", "status"]
    assert from_yaml[1].enum_map == {"Current": "active"}
    assert load_mapping_file(json_path)[0].source_column == "Company"


def test_load_mapping_file_missing(tmp_path):
    with pytest.raises(MappingLoadError, match="not found"):
        load_mapping_file(tmp_path / "absent.yaml")


def test_field_types_cover_boolean_fields():
    users = {field.key: field for field in get_entity_fields("users")}
    assert users["isActive"].type is FieldType.BOOLEAN
