from __future__ import annotations

from datetime import datetime, timezone

import pytest

from worksync_app.importer.mapping import ColumnMapping
from worksync_app.importer.pipeline import ImportJobStatus, execute_job, validate_job
from worksync_app.importer.pipeline.execution import RowImporter
from worksync_app.models import Client, Project, Task, TaskAssignee, TimeEntry, User, db


def _mapping(*pairs):
    return [ColumnMapping(source_column=source, target_field=target) for source, target in pairs]


def _job(job_store, tenant, entity_type, rows, mapping, **changes):
    job = job_store.create(tenant.id, entity_type)
    job_store.update(job.id, raw_rows=rows, mapping=mapping, **changes)
    return job


def test_clients_import_creates_parent_and_skips_duplicates(tenant, job_store):
    rows = [
        {"Company": "Acme East", "Parent": "Acme Holdings", "Status": "Prospect"},
        {"Company": "acme east"},
        {"Company": "Globex", "Industry": "Energy"},
    ]
    mapping = _mapping(
        ("Company", "companyName"), ("Parent", "parentClientName"), ("Status", "status"), ("Industry", "industry")
    )
    job = _job(job_store, tenant, "clients", rows, mapping)

    summary = execute_job(job, store=job_store)

    assert (summary.created, summary.skipped, summary.failed) == (2, 1, 0)
    assert job.status is ImportJobStatus.COMPLETED
    east = Client.query.filter_by(company_name="Acme East").one()
    parent = Client.query.filter_by(company_name="Acme Holdings").one()
    assert east.parent_client_id == parent.id
    assert east.status == "prospect"
    assert Client.query.filter_by(company_name="Globex").one().industry == "Energy"


def test_rerun_is_idempotent(tenant, job_store):
    rows = [{"Company": "Acme"}, {"Company": "Globex"}]
    mapping = _mapping(("Company", "companyName"))

    first = execute_job(_job(job_store, tenant, "clients", rows, mapping), store=job_store)
    second = execute_job(_job(job_store, tenant, "clients", rows, mapping), store=job_store)

    assert first.created == 2
    assert (second.created, second.skipped) == (0, 2)
    assert Client.query.count() == 2


def test_tasks_without_auto_create_fail_unresolved_rows(tenant, job_store, make_project, make_user):
    project = make_project("Website")
    make_user("ada@acme.test")
    rows = [
        {"Title": "Homepage", "Project": "Website", "Assignee": "ADA@acme.test", "Due": "2026-02-01"},
        {"Title": "Logo", "Project": "Branding"},
        {"Title": "Palette", "Project": "Website", "Assignee": "ghost@acme.test"},
    ]
    mapping = _mapping(("Title", "title"), ("Project", "projectName"), ("Assignee", "assigneeEmail"), ("Due", "dueDate"))
    job = _job(job_store, tenant, "tasks", rows, mapping, auto_create_missing=False)

    summary = execute_job(job, store=job_store)

    assert (summary.created, summary.failed) == (1, 2)
    assert [error.code for error in summary.errors] == ["PROJECT_NOT_FOUND", "ASSIGNEE_NOT_FOUND"]
    assert job.status is ImportJobStatus.COMPLETED
    assert job.error_rows == [
        {"row": 3, "primaryKey": "Logo", "errorCode": "PROJECT_NOT_FOUND", "message": 'Project "Branding" not found'},
        {
            "row": 4,
            "primaryKey": "Palette",
            "errorCode": "ASSIGNEE_NOT_FOUND",
            "message": 'User "ghost@acme.test" not found',
        },
    ]
    task = Task.query.filter_by(title="Homepage").one()
    assert task.project_id == project.id
    assert task.due_date.replace(tzinfo=timezone.utc) == datetime(2026, 2, 1, tzinfo=timezone.utc)
    assert TaskAssignee.query.filter_by(task_id=task.id).count() == 1
    assert Task.query.count() == 1


def test_auto_create_missing_creates_each_dependency_once(tenant, job_store):
    rows = [
        {"Title": "Logo", "Project": "Branding", "Assignee": "ada@acme.test"},
        {"Title": "Palette", "Project": "branding", "Assignee": "Ada@acme.test"},
    ]
    mapping = _mapping(("Title", "title"), ("Project", "projectName"), ("Assignee", "assigneeEmail"))
    job = _job(job_store, tenant, "tasks", rows, mapping, auto_create_missing=True)

    summary = execute_job(job, store=job_store)

    assert summary.failed == 0
    # Two tasks plus the auto-created project and user.
    assert summary.created == 4
    assert Project.query.count() == 1
    user = User.query.one()
    assert user.email == "ada@acme.test"
    assert user.first_name == "ada"
    assert TaskAssignee.query.count() == 2


def test_job_fails_when_nothing_is_written(tenant, job_store):
    rows = [{"Title": "Logo", "Project": "Branding"}]
    job = _job(
        job_store, tenant, "tasks", rows, _mapping(("Title", "title"), ("Project", "projectName")), auto_create_missing=False
    )
    summary = execute_job(job, store=job_store)
    assert summary.failed == 1
    assert job.status is ImportJobStatus.FAILED


def test_progress_is_reported_per_batch(tenant, job_store):
    rows = [{"Company": f"Client {i}"} for i in range(5)]
    job = _job(job_store, tenant, "clients", rows, _mapping(("Company", "companyName")))
    seen = []

    execute_job(job, store=job_store, batch_size=2, progress_callback=lambda current, total: seen.append((current, total)))

    assert seen == [(2, 5), (4, 5), (5, 5)]
    assert job.progress == {"processed": 5, "total": 5}


def test_store_failure_on_one_row_rolls_back_only_that_row(tenant, job_store, monkeypatch):
    rows = [{"Company": "Acme"}, {"Company": "Boom"}, {"Company": "Globex"}]
    job = _job(job_store, tenant, "clients", rows, _mapping(("Company", "companyName")))
    original = RowImporter.create_client

    def flaky_create(self, company_name, **kwargs):
        client_id = original(self, company_name, **kwargs)
        if company_name == "Boom":
            raise RuntimeError("disk full")
        return client_id

    monkeypatch.setattr(RowImporter, "create_client", flaky_create)

    summary = execute_job(job, store=job_store)

    assert (summary.created, summary.failed) == (2, 1)
    assert summary.errors[0].code == "DB_ERROR"
    assert summary.errors[0].message == "disk full"
    assert sorted(c.company_name for c in Client.query.all()) == ["Acme", "Globex"]


def test_users_and_admins_get_role_defaults(tenant, job_store):
    mapping = _mapping(("Email", "email"), ("Role", "role"), ("Active", "isActive"))
    execute_job(
        _job(
            job_store,
            tenant,
            "users",
            [{"Email": "Ada@Acme.test", "Role": "Manager"}, {"Email": "bob@acme.test", "Active": "false"}],
            mapping,
        ),
        store=job_store,
    )
    execute_job(_job(job_store, tenant, "admins", [{"Email": "root@acme.test"}], mapping[:1]), store=job_store)

    roles = {user.email: (user.role, user.is_active) for user in User.query.all()}
    assert roles == {
        "ada@acme.test": ("manager", True),
        "bob@acme.test": ("employee", False),
        "root@acme.test": ("admin", True),
    }


def test_time_entries_duration_and_end_before_start(tenant, job_store, make_user, make_project):
    make_user("ada@acme.test")
    make_project("Website")
    mapping = _mapping(
        ("Email", "userEmail"),
        ("Start", "startTime"),
        ("End", "endTime"),
        ("Hours", "durationHours"),
        ("Project", "projectName"),
        ("Manual", "isManual"),
        ("Scope", "scope"),
    )
    rows = [
        {"Email": "ada@acme.test", "Start": "2026-01-28T09:00:00Z", "End": "2026-01-28T10:30:00Z", "Project": "Website"},
        {"Email": "ada@acme.test", "Start": "2026-01-29T09:00:00Z", "Hours": "1.5", "Manual": "false", "Scope": "internal"},
        {"Email": "ada@acme.test", "Start": "2026-01-30T09:00:00Z", "End": "2026-01-30T08:00:00Z"},
    ]

    summary = execute_job(_job(job_store, tenant, "time_entries", rows, mapping), store=job_store)

    assert summary.created == 3
    entries = TimeEntry.query.order_by(TimeEntry.start_time).all()
    assert [entry.duration_seconds for entry in entries] == [5400, 5400, 0]
    assert entries[0].project_id is not None
    assert entries[1].is_manual is False and entries[1].scope == "internal"
    assert entries[2].end_time is None


def test_time_entries_with_unusable_durations_fail_as_field_errors(tenant, job_store, make_user):
    make_user("ada@acme.test")
    mapping = _mapping(("Email", "userEmail"), ("Start", "startTime"), ("Hours", "durationHours"))
    rows = [
        {"Email": "ada@acme.test", "Start": "2026-01-28T09:00:00Z", "Hours": "inf"},
        {"Email": "ada@acme.test", "Start": "2026-01-28T09:00:00Z", "Hours": "1e300"},
        {"Email": "ada@acme.test", "Start": "9999-12-31T20:00:00Z", "Hours": "10"},
        {"Email": "ada@acme.test", "Start": "2026-01-28T09:00:00Z", "Hours": "2"},
    ]
    job = _job(job_store, tenant, "time_entries", rows, mapping)

    preview = validate_job(job)
    assert (preview.would_create, preview.would_fail) == (1, 3)

    summary = execute_job(job, store=job_store)

    assert (summary.created, summary.failed) == (1, 3)
    assert {error.code for error in summary.errors} == {"INVALID_NUMBER"}
    assert [error.row for error in summary.errors] == [2, 3, 4]
    assert TimeEntry.query.one().duration_seconds == 7200


def test_validation_prediction_matches_execution(tenant, job_store, make_project):
    make_project("Website")
    rows = [
        {"Title": "Homepage", "Project": "Website"},
        {"Title": "homepage", "Project": "website"},
        {"Title": "", "Project": "Website"},
        {"Title": "Logo", "Project": "Website", "Priority": "Critical"},
    ]
    mapping = _mapping(("Title", "title"), ("Project", "projectName"), ("Priority", "priority"))
    job = _job(job_store, tenant, "tasks", rows, mapping)

    predicted = validate_job(job)
    actual = execute_job(job, store=job_store)

    assert predicted.would_create == actual.created == 1
    assert predicted.would_skip == actual.skipped == 1
    assert predicted.would_fail == actual.failed == 2


@pytest.mark.parametrize("entity_type", ["clients", "projects", "users"])
def test_missing_required_field_is_reported(tenant, job_store, entity_type):
    key = {"clients": "companyName", "projects": "name", "users": "email"}[entity_type]
    job = _job(job_store, tenant, entity_type, [{"Key": "  "}], _mapping(("Key", key)))
    summary = execute_job(job, store=job_store)
    assert summary.errors[0].code == "REQUIRED"
    assert db.session.query(Client).count() == 0
