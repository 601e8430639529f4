import pytest

from tenantguard import db
from tenantguard.models import AuditLogEntry, Developer, ManualOverride
from tenantguard.services import suspensions
from tenantguard.utils import audit_logger

DB_QUERIES = 'db_queries_per_day'


def test_health(client):
    response = client.get('/health')
    assert response.status_code == 200
    assert response.get_json() == {'status': 'healthy'}
    assert response.headers['X-Content-Type-Options'] == 'nosniff'


class TestAdminAuth:
    def test_missing_token_is_401(self, client):
        response = client.get('/admin/overrides')
        assert response.status_code == 401
        assert response.get_json()['error'] == 'Unauthorized'

    def test_developer_token_is_403_and_audited(self, client, make_developer, auth_headers):
        developer = make_developer(role='developer')

        response = client.get('/admin/overrides', headers=auth_headers(developer))

        assert response.status_code == 403
        [entry] = AuditLogEntry.query.all()
        assert entry.log_type == 'auth_failure'
        assert entry.developer_id == developer.id

    def test_post_requires_json(self, client, operator, auth_headers):
        response = client.post('/admin/spike-detection/check', data='x',
                               headers=auth_headers(operator))
        assert response.status_code == 415


class TestOverrideRoutes:
    def test_operator_unsuspends(self, client, operator, auth_headers, make_project):
        project = make_project(caps={DB_QUERIES: (10_000, True)})
        suspensions.suspend_project(project.id, DB_QUERIES, 55_000, 10_000)

        response = client.post(f'/admin/projects/{project.id}/override',
                               json={'action': 'unsuspend', 'reason': 'false positive'},
                               headers=auth_headers(operator))

        assert response.status_code == 201
        body = response.get_json()
        assert body['success'] is True
        assert body['override']['new_status'] == 'active'

        listing = client.get('/admin/overrides', headers=auth_headers(operator)).get_json()
        assert listing['total'] == 1

    def test_invalid_action_is_400(self, client, operator, auth_headers, make_project):
        project = make_project()

        response = client.post(f'/admin/projects/{project.id}/override',
                               json={'action': 'delete', 'reason': 'x'},
                               headers=auth_headers(operator))

        assert response.status_code == 400
        assert 'errors' in response.get_json()
        assert ManualOverride.query.count() == 0


def test_spike_check_is_rate_limited(client, operator, auth_headers):
    headers = auth_headers(operator)
    for _ in range(10):
        assert client.post('/admin/spike-detection/check', json={},
                           headers=headers).status_code == 200

    response = client.post('/admin/spike-detection/check', json={}, headers=headers)

    assert response.status_code == 429
    assert int(response.headers['Retry-After']) > 0
    assert AuditLogEntry.query.filter_by(log_type='rate_limit_exceeded').count() == 1


def test_project_spike_config_update(client, operator, auth_headers, make_project):
    project = make_project()
    url = f'/admin/projects/{project.id}/spike-config'

    response = client.put(url, json={'enabled': False}, headers=auth_headers(operator))

    assert response.status_code == 200
    assert response.get_json()['effective']['enabled'] is False
    assert client.put(url, json={'suspend_multiplier': 1.5},
                      headers=auth_headers(operator)).status_code == 400


class TestProjectRoutes:
    def test_owner_reads_quotas(self, client, auth_headers, make_project):
        project = make_project(caps={DB_QUERIES: (100, True)})

        response = client.get(f'/projects/{project.id}/quotas',
                              headers=auth_headers(project.owner))

        assert response.status_code == 200
        [quota] = [q for q in response.get_json()['quotas'] if q['cap_type'] == DB_QUERIES]
        assert quota['limit'] == 100
        assert quota['status'] == 'ok'

    def test_other_developer_is_forbidden(self, client, auth_headers, make_developer,
                                          make_project):
        project = make_project()
        stranger = make_developer()

        response = client.get(f'/projects/{project.id}/quotas', headers=auth_headers(stranger))

        assert response.status_code == 403
        entry = AuditLogEntry.query.filter_by(log_type='auth_failure').one()
        assert entry.details['reason'] == 'not_project_owner'

    def test_record_usage(self, client, auth_headers, make_project):
        project = make_project()

        response = client.post(f'/projects/{project.id}/usage',
                               json={'cap_type': DB_QUERIES, 'amount': 5},
                               headers=auth_headers(project.owner))

        assert response.status_code == 201
        assert response.get_json()['amount'] == 5
        assert 'X-RateLimit-Remaining' in response.headers

    def test_usage_on_suspended_project_names_cap(self, client, auth_headers, make_project):
        project = make_project()
        suspensions.suspend_project(project.id, DB_QUERIES, 12_000, 10_000)

        response = client.post(f'/projects/{project.id}/usage',
                               json={'cap_type': DB_QUERIES, 'amount': 1},
                               headers=auth_headers(project.owner))

        assert response.status_code == 403
        body = response.get_json()
        assert body['cap_type'] == DB_QUERIES
        assert body['limit'] == 10_000

    def test_invalid_usage_is_400(self, client, auth_headers, make_project):
        project = make_project()

        response = client.post(f'/projects/{project.id}/usage',
                               json={'cap_type': 'bandwidth', 'amount': 0},
                               headers=auth_headers(project.owner))

        assert response.status_code == 400
        assert len(response.get_json()['errors']) == 2

    def test_notification_preferences(self, client, auth_headers, make_project):
        project = make_project()
        url = f'/projects/{project.id}/notification-preferences'
        headers = auth_headers(project.owner)

        response = client.put(url, headers=headers, json={'preferences': [
            {'notification_type': 'spike_warning', 'enabled': False, 'global': True},
            {'notification_type': 'quota_warning', 'channels': ['in_app']},
        ]})
        assert response.status_code == 200

        effective = client.get(url, headers=headers).get_json()['effective']
        assert effective['spike_warning']['enabled'] is False
        assert effective['quota_warning'] == {'enabled': True, 'channels': ['in_app']}


@pytest.mark.parametrize('body', [{'limit': -5}, {'limit': 'lots'}, {'limit': 10, 'hard_cap': 'y'}])
def test_invalid_quota_update_is_400(client, operator, auth_headers, make_project, body):
    project = make_project()

    response = client.put(f'/admin/projects/{project.id}/quotas/{DB_QUERIES}', json=body,
                          headers=auth_headers(operator))

    assert response.status_code == 400
    assert AuditLogEntry.query.filter_by(log_type='validation_failure').count() == 1


def test_quota_update(client, operator, auth_headers, make_project):
    project = make_project()

    response = client.put(f'/admin/projects/{project.id}/quotas/{DB_QUERIES}',
                          json={'limit': 25_000, 'hard_cap': False},
                          headers=auth_headers(operator))

    assert response.status_code == 200
    assert response.get_json()['limit_value'] == 25_000


def test_audit_log_filters(client, operator, auth_headers, make_project):
    first = make_project(name='one')
    second = make_project(name='two')
    suspensions.suspend_project(first.id, DB_QUERIES, 2, 1)
    suspensions.suspend_project(second.id, DB_QUERIES, 2, 1)

    response = client.get(f'/admin/audit-logs?log_type=suspension&project_id={second.id}',
                          headers=auth_headers(operator))

    body = response.get_json()
    assert body['total'] == 1
    assert body['entries'][0]['project_id'] == second.id
    assert client.get('/admin/audit-logs?severity=loud',
                      headers=auth_headers(operator)).status_code == 400


class TestForceDeveloper:
    def test_operator_disables_developer(self, client, operator, auth_headers, make_developer):
        target = make_developer()

        response = client.post(f'/admin/developers/{target.id}/force',
                               json={'is_active': False, 'reason': 'abuse'},
                               headers=auth_headers(operator))

        assert response.status_code == 200
        assert db.session.get(Developer, target.id).is_active is False
        entry = AuditLogEntry.query.filter_by(log_type='manual_intervention').one()
        assert entry.details['target_developer_id'] == target.id

    def test_operator_cannot_touch_admin(self, client, operator, auth_headers, make_developer):
        admin = make_developer(role='admin')

        response = client.post(f'/admin/developers/{admin.id}/force',
                               json={'is_active': False, 'reason': 'coup'},
                               headers=auth_headers(operator))

        assert response.status_code == 403
        assert db.session.get(Developer, admin.id).is_active is True

    def test_cannot_force_self(self, client, operator, auth_headers):
        response = client.post(f'/admin/developers/{operator.id}/force',
                               json={'is_active': False, 'reason': 'x'},
                               headers=auth_headers(operator))
        assert response.status_code == 400


class TestAbuseDashboard:
    def test_summarises_recent_abuse(self, client, operator, auth_headers, make_project,
                                     add_usage):
        busy = make_project(name='busy', caps={DB_QUERIES: (100, True)})
        add_usage(busy, DB_QUERIES, 85)
        suspended = make_project(name='noisy')
        suspensions.suspend_project(suspended.id, DB_QUERIES, 12_000, 10_000)
        audit_logger.log_rate_limit_exceeded('org:42', 'manual_override', 30)

        response = client.get('/admin/abuse/dashboard?time_range=7d',
                              headers=auth_headers(operator))

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['time_range'] == '7d'
        assert data['suspensions'] == {'total': 1, 'active': 1, 'by_type': {DB_QUERIES: 1}}
        assert data['rate_limits']['by_type'] == {'org': 1}
        assert data['cap_violations']['violations'][0]['project_name'] == 'noisy'
        [near] = data['approaching_caps']['projects']
        assert near['project_id'] == busy.id
        assert near['usage_percentage'] == 85.0
        assert near['status'] == 'warning'

    def test_rejects_unknown_time_range(self, client, operator, auth_headers):
        response = client.get('/admin/abuse/dashboard?time_range=1y',
                              headers=auth_headers(operator))
        assert response.status_code == 400

    def test_requires_operator(self, client, make_developer, auth_headers):
        response = client.get('/admin/abuse/dashboard',
                              headers=auth_headers(make_developer()))
        assert response.status_code == 403
