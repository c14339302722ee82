# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so config classes and the
# importer registration in app.py see the testing values.
os.environ["FLASK_ENV"] = "testing"
os.environ["IMPORTER_ENABLED"] = "true"
os.environ["IMPORTER_ADAPTERS"] = "csv,asana"
os.environ["IMPORTER_WORKER_ENABLED"] = "true"
os.environ["IMPORTER_ASANA_ACCESS_TOKEN"] = "test-token"
os.environ["IMPORTER_ASANA_REQUEST_INTERVAL_MS"] = "0"
os.environ["CELERY_CONFIG"] = '{"task_always_eager": true, "task_eager_propagates": true}'

# Now import app and other modules after environment is set
from app import app as flask_app
from worksync_app.importer.pipeline.job_store import ImportJobStore
from worksync_app.models import Client, Project, Tenant, User, Workspace, db


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "IMPORTER_ENABLED": True,
            "IMPORTER_ADAPTERS": ("csv", "asana"),
            "IMPORTER_WORKER_ENABLED": True,
            "IMPORTER_ASANA_ACCESS_TOKEN": "test-token",
            "IMPORTER_ASANA_REQUEST_INTERVAL_MS": 0,
            "IMPORTER_BATCH_SIZE": 200,
        }
    )
    # Jobs are process-local; start every test with an empty store.
    flask_app.extensions["importer"]["job_store"] = ImportJobStore()

    with flask_app.app_context():
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask application"""
    return app.test_cli_runner()


def _create_tenant(slug: str, name: str) -> Tenant:
    tenant = Tenant(name=name, slug=slug, is_active=True)
    db.session.add(tenant)
    db.session.flush()
    db.session.add(Workspace(tenant_id=tenant.id, name=f"{name} Workspace", is_primary=True))
    db.session.commit()
    return tenant


@pytest.fixture
def tenant(app):
    """Tenant with a primary workspace."""
    return _create_tenant("acme-agency", "Acme Agency")


@pytest.fixture
def other_tenant(app):
    return _create_tenant("other-agency", "Other Agency")


@pytest.fixture
def workspace_id(tenant):
    return Workspace.primary_id_for_tenant(tenant.id)


@pytest.fixture
def make_user(tenant):
    def _factory(email: str, *, tenant_id: int | None = None, role: str = "employee") -> User:
        local = email.split("@")[0]
        user = User(
            tenant_id=tenant_id or tenant.id,
            email=email.lower(),
            name=local.title(),
            first_name=local.title(),
            last_name="",
            role=role,
            is_active=True,
        )
        db.session.add(user)
        db.session.commit()
        return user

    return _factory


@pytest.fixture
def make_client(tenant, workspace_id):
    def _factory(company_name: str, *, tenant_id: int | None = None) -> Client:
        target_tenant = tenant_id or tenant.id
        record = Client(
            tenant_id=target_tenant,
            workspace_id=Workspace.primary_id_for_tenant(target_tenant),
            company_name=company_name,
            status="active",
        )
        db.session.add(record)
        db.session.commit()
        return record

    return _factory


@pytest.fixture
def make_project(tenant, workspace_id):
    def _factory(name: str, *, client_id: int | None = None) -> Project:
        project = Project(
            tenant_id=tenant.id,
            workspace_id=workspace_id,
            client_id=client_id,
            name=name,
            status="active",
            color="#3B82F6",
        )
        db.session.add(project)
        db.session.commit()
        return project

    return _factory
