import itertools
from datetime import datetime

import pytest

from tenantguard import create_app, db
from tenantguard.models import Developer, Project, ProjectCap, UsageSample
from tenantguard.utils.auth import generate_token

_emails = itertools.count(1)


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv('EMAIL_BACKEND', 'console')
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret-key',
        'JWT_SECRET_KEY': 'test-jwt-secret',
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'tenantguard.db'}",
        'AUDIT_LOG_FILE': str(tmp_path / 'audit.log'),
    })
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_developer(app):
    def factory(role='developer', is_active=True, email=None, name=None):
        developer = Developer(
            email=email or f'dev{next(_emails)}@example.com',
            name=name or role.title(),
            role=role,
            is_active=is_active,
        )
        db.session.add(developer)
        db.session.commit()
        return developer
    return factory


@pytest.fixture
def make_project(app, make_developer):
    def factory(owner=None, name='Acme API', status='active', data_access='full', caps=None):
        owner = owner or make_developer()
        project = Project(name=name, owner_id=owner.id, status=status, data_access=data_access)
        db.session.add(project)
        db.session.commit()
        for cap_type, (limit_value, hard_cap) in (caps or {}).items():
            db.session.add(ProjectCap(project_id=project.id, cap_type=cap_type,
                                      limit_value=limit_value, hard_cap=hard_cap))
        db.session.commit()
        return project
    return factory


@pytest.fixture
def add_usage(app):
    def factory(project, cap_type, amount, occurred_at=None):
        sample = UsageSample(project_id=project.id, cap_type=cap_type, amount=amount,
                             occurred_at=occurred_at or datetime.utcnow())
        db.session.add(sample)
        db.session.commit()
        return sample
    return factory


@pytest.fixture
def auth_headers(app):
    def factory(developer):
        token = generate_token(developer.id, developer.email)
        return {'Authorization': f'Bearer {token}'}
    return factory


@pytest.fixture
def operator(make_developer):
    return make_developer(role='operator', email='operator@example.com')
