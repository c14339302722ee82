from __future__ import annotations

import pytest

from worksync_app.importer.pipeline import (
    AsanaImportCancelled,
    AsanaImportOptions,
    AsanaImportPipeline,
    AsanaOptionsError,
)
from worksync_app.models import Client, IntegrationEntityMap, Project, Section, Subtask, Task, TaskAssignee, User, db


def _pipeline(tenant, workspace_id, client, **options):
    return AsanaImportPipeline(tenant.id, workspace_id, None, AsanaImportOptions.from_dict(options), client)


def _counts(result):
    return {kind: counts for kind, counts in result.counts.to_dict().items() if any(counts.values())}


def test_options_accept_camel_and_snake_case():
    camel = AsanaImportOptions.from_dict({"autoCreateUsers": True, "clientMappingStrategy": "team"})
    snake = AsanaImportOptions.from_dict({"auto_create_users": True, "client_mapping_strategy": "team"})
    assert camel == snake
    assert camel.to_dict()["autoCreateUsers"] is True
    defaults = AsanaImportOptions.from_dict(None)
    assert (defaults.auto_create_projects, defaults.auto_create_users, defaults.fallback_unassigned) == (
        True,
        False,
        True,
    )


def test_options_reject_bad_strategy_and_client_map():
    with pytest.raises(AsanaOptionsError, match="Invalid client mapping strategy"):
        AsanaImportOptions.from_dict({"clientMappingStrategy": "random"})
    with pytest.raises(AsanaOptionsError, match="projectClientMap"):
        AsanaImportOptions.from_dict({"clientMappingStrategy": "per_project", "projectClientMap": ["Acme"]})


def test_validate_counts_without_writing(tenant, workspace_id, make_user, asana_client):
    make_user("ada@acme.test")

    result = _pipeline(tenant, workspace_id, asana_client).validate("ws-1", ["p-1"])

    assert _counts(result) == {
        "users": {"create": 0, "update": 1, "skip": 1, "error": 0},
        "projects": {"create": 1, "update": 0, "skip": 0, "error": 0},
        "sections": {"create": 2, "update": 0, "skip": 0, "error": 0},
        "tasks": {"create": 2, "update": 0, "skip": 0, "error": 0},
    }
    assert result.errors == []
    assert Project.query.count() == 0
    assert IntegrationEntityMap.query.count() == 0


def test_validate_previews_auto_created_clients_and_users(tenant, workspace_id, asana_client):
    result = _pipeline(
        tenant, workspace_id, asana_client, autoCreateUsers=True, clientMappingStrategy="team"
    ).validate("ws-1", ["p-1", "p-404"])

    payload = result.to_dict()
    assert payload["autoCreatePreview"] == {
        "clients": ["Design"],
        "users": ["ada@acme.test", "grace@elsewhere.test"],
    }
    assert payload["errors"] == [
        {"entityType": "project", "asanaGid": "p-404", "name": "p-404", "message": "Project not found in Asana"}
    ]


def test_execute_imports_everything_then_updates_on_rerun(tenant, workspace_id, make_user, asana_client):
    ada = make_user("ada@acme.test")

    first = _pipeline(tenant, workspace_id, asana_client).execute("ws-1", ["p-1"])

    assert first.errors == []
    assert _counts(first) == {
        "users": {"create": 0, "update": 1, "skip": 1, "error": 0},
        "projects": {"create": 1, "update": 0, "skip": 0, "error": 0},
        "sections": {"create": 2, "update": 0, "skip": 0, "error": 0},
        "tasks": {"create": 2, "update": 0, "skip": 0, "error": 0},
        "subtasks": {"create": 1, "update": 0, "skip": 0, "error": 0},
    }
    project = Project.query.one()
    assert project.name == "Website Redesign"
    assert project.description == "Q1 refresh"
    assert project.client_id is None
    wireframes = Task.query.filter_by(title="Wireframes").one()
    kickoff = Task.query.filter_by(title="Kickoff").one()
    assert wireframes.status == "todo" and kickoff.status == "done"
    assert db.session.get(Section, wireframes.section_id).name == "To do"
    assert TaskAssignee.query.filter_by(task_id=wireframes.id, user_id=ada.id).count() == 1
    subtask = Subtask.query.one()
    assert subtask.task_id == wireframes.id
    assert subtask.assignee_id == ada.id

    asana_client.tasks["p-1"][1]["name"] = "Kickoff meeting"
    second = _pipeline(tenant, workspace_id, asana_client).execute("ws-1", ["p-1"])

    assert _counts(second) == {
        "users": {"create": 0, "update": 0, "skip": 2, "error": 0},
        "projects": {"create": 0, "update": 1, "skip": 0, "error": 0},
        "sections": {"create": 0, "update": 2, "skip": 0, "error": 0},
        "tasks": {"create": 0, "update": 2, "skip": 0, "error": 0},
        "subtasks": {"create": 0, "update": 1, "skip": 0, "error": 0},
    }
    assert (Project.query.count(), Section.query.count(), Task.query.count(), Subtask.query.count()) == (1, 2, 2, 1)
    assert TaskAssignee.query.count() == 1
    assert Task.query.filter_by(title="Kickoff meeting").count() == 1


def test_single_client_strategy_creates_client_once(tenant, workspace_id, asana_client):
    asana_client.projects.append({"gid": "p-2", "name": "Brand Refresh", "archived": True})

    result = _pipeline(tenant, workspace_id, asana_client, singleClientName="Acme").execute("ws-1", ["p-1", "p-2"])

    assert result.counts.clients.create == 1
    client = Client.query.one()
    assert client.company_name == "Acme"
    assert {project.client_id for project in Project.query.all()} == {client.id}
    assert Project.query.filter_by(name="Brand Refresh").one().status == "completed"


def test_single_client_id_is_used_as_is(tenant, workspace_id, make_client, asana_client):
    existing = make_client("Existing Co")
    result = _pipeline(
        tenant, workspace_id, asana_client, singleClientId=existing.id, singleClientName="Existing Co"
    ).execute("ws-1", ["p-1"])
    assert result.counts.clients.skip == 1
    assert Project.query.one().client_id == existing.id


def test_single_client_id_from_another_tenant_is_rejected(
    tenant, other_tenant, workspace_id, make_client, asana_client
):
    foreign = make_client("Other Co", tenant_id=other_tenant.id)
    options = {"singleClientId": foreign.id, "singleClientName": "Other Co"}

    preview = _pipeline(tenant, workspace_id, asana_client, **options).validate("ws-1", ["p-1"])
    assert preview.counts.clients.error == 1
    assert preview.errors[0].message == "Configured client not found for this tenant"

    result = _pipeline(tenant, workspace_id, asana_client, **options).execute("ws-1", ["p-1"])
    assert result.counts.clients.error == 1
    assert [error.to_dict()["entityType"] for error in result.errors] == ["client"]
    assert Project.query.filter_by(tenant_id=tenant.id).one().client_id is None


def test_per_project_strategy_reuses_existing_client(tenant, workspace_id, make_client, asana_client):
    acme = make_client("Acme")
    result = _pipeline(
        tenant, workspace_id, asana_client, clientMappingStrategy="per_project", projectClientMap={"p-1": "Acme"}
    ).execute("ws-1", ["p-1"])
    assert result.counts.clients.skip == 1
    assert Project.query.one().client_id == acme.id


def test_missing_client_without_auto_create_records_error_and_continues(tenant, workspace_id, asana_client):
    result = _pipeline(
        tenant, workspace_id, asana_client, clientMappingStrategy="team", autoCreateClients=False
    ).execute("ws-1", ["p-1"])

    assert result.has_errors
    assert result.errors[0].to_dict() == {
        "entityType": "client",
        "asanaGid": "n/a",
        "name": "Design",
        "message": "Client not found and auto-create disabled",
    }
    assert Project.query.one().client_id is None


def test_unknown_and_unmapped_projects_are_errors(tenant, workspace_id, asana_client):
    result = _pipeline(tenant, workspace_id, asana_client, autoCreateProjects=False).execute("ws-1", ["p-404", "p-1"])
    messages = [(error.asana_gid, error.message) for error in result.errors]
    assert messages == [
        ("p-404", "Project not found in Asana workspace"),
        ("p-1", "Project not mapped and auto-create disabled"),
    ]
    assert result.counts.projects.error == 2
    assert Project.query.count() == 0


def test_users_auto_create_and_strict_mapping(tenant, workspace_id, asana_client):
    strict = _pipeline(tenant, workspace_id, asana_client, fallbackUnassigned=False).execute("ws-1", [])
    assert [error.message for error in strict.errors] == [
        "Cannot map user (email: ada@acme.test)",
        "Cannot map user (email: grace@elsewhere.test)",
    ]

    created = _pipeline(tenant, workspace_id, asana_client, autoCreateUsers=True).execute("ws-1", [])
    assert created.counts.users.create == 2
    grace = User.query.filter_by(email="grace@elsewhere.test").one()
    assert (grace.first_name, grace.last_name, grace.role) == ("Grace", "Hopper", "employee")


def test_subtasks_without_parent_are_errors(tenant, workspace_id, asana_client):
    asana_client.tasks["p-1"].append({"gid": "st-9", "name": "Orphan", "parent": {"gid": "t-missing"}})

    result = _pipeline(tenant, workspace_id, asana_client).execute("ws-1", ["p-1"])

    orphan = [error for error in result.errors if error.asana_gid == "st-9"]
    assert orphan[0].message == "Parent task not imported yet"
    assert orphan[0].entity_type == "subtask"
    assert result.counts.subtasks.create == 1


def test_tasks_skipped_when_auto_create_disabled(tenant, workspace_id, asana_client):
    result = _pipeline(tenant, workspace_id, asana_client, autoCreateTasks=False).execute("ws-1", ["p-1"])
    assert result.counts.tasks.skip == 2
    assert Task.query.count() == 0
    assert result.errors[0].message == "Parent task missing and auto-create disabled"


def test_phase_updates_and_cancellation(tenant, workspace_id, make_user, asana_client):
    make_user("ada@acme.test")
    phases = []
    polls = iter([False, True])

    pipeline = AsanaImportPipeline(
        tenant.id,
        workspace_id,
        None,
        AsanaImportOptions(),
        asana_client,
        update_phase=phases.append,
        is_cancelled=lambda: next(polls),
    )
    with pytest.raises(AsanaImportCancelled):
        pipeline.execute("ws-1", ["p-1"])

    assert phases == ["Importing users..."]
    # Work committed before the checkpoint stays committed.
    assert IntegrationEntityMap.query.filter_by(entity_type="user").count() == 1
    assert Project.query.count() == 0
