"""HTTP-level tests for the feedback routes on the server configuration."""

import math

import pytest

from app import create_app
from config import TestingConfig

TOURIST = 'tourist-utility-service-system'
STROKE = 'stroke-hand-recovery-system'


@pytest.fixture
def app(tmp_path):
    app = create_app(
        TestingConfig,
        DATABASE_PATH=str(tmp_path / 'feedback.sqlite'),
        API_PREFIX='/api',
        CORS_ORIGINS='http://localhost:3000',
    )
    yield app
    app.extensions['db_adapter'].close()


@pytest.fixture
def client(app):
    with app.test_client() as c:
        yield c


def create(client, **fields):
    body = {'projectType': TOURIST, 'rating': 4}
    body.update(fields)
    resp = client.post('/api/feedback', json=body)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()['data']


def age_entry(app, entry_id, timestamp='2020-01-01 00:00:00.000'):
    app.extensions['db_adapter'].execute(
        'UPDATE feedback SET created_at = ?, updated_at = ? WHERE id = ?',
        (timestamp, timestamp, entry_id),
    )


def test_index_lists_endpoints(client):
    resp = client.get('/')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['backend'] == 'sqlite'
    assert body['endpoints']['health'] == '/api/health'
    assert body['endpoints']['feedback']['getStats'] == 'GET /api/feedback/stats/summary'


def test_health(client):
    resp = client.get('/api/health')
    assert resp.status_code == 200
    assert resp.get_json()['status'] == 'OK'


def test_create_returns_inserted_row(client):
    resp = client.post('/api/feedback', json={
        'projectType': STROKE,
        'rating': 4,
        'innovation': 'high',
    })
    assert resp.status_code == 201
    body = resp.get_json()
    assert body['success'] is True
    assert body['message'] == 'Feedback submitted successfully'
    data = body['data']
    assert isinstance(data['id'], int)
    assert data['projectType'] == STROKE
    assert data['rating'] == 4
    assert data['innovation'] == 'high'
    assert data['comments'] is None
    assert data['createdAt'] and data['updatedAt']


def test_create_requires_project_type_and_rating(client):
    for body in ({'rating': 3}, {'projectType': TOURIST}, {}, {'projectType': TOURIST, 'rating': 0}):
        resp = client.post('/api/feedback', json=body)
        assert resp.status_code == 400
        assert resp.get_json() == {'success': False, 'error': 'Project type and rating are required'}


def test_create_without_json_body_is_rejected(client):
    resp = client.post('/api/feedback', data='not json', content_type='text/plain')
    assert resp.status_code == 400
    assert resp.get_json()['success'] is False


def test_schema_rejects_out_of_range_rating(client):
    resp = client.post('/api/feedback', json={'projectType': TOURIST, 'rating': 9})
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['success'] is False
    assert 'CHECK constraint failed' in body['error']


def test_oversized_rating_reports_engine_error(client):
    resp = client.post('/api/feedback', json={'projectType': TOURIST, 'rating': 2 ** 70})
    assert resp.status_code == 500
    body = resp.get_json()
    assert body['success'] is False
    assert 'too large' in body['error']


def test_schema_rejects_unknown_project_type(client):
    resp = client.post('/api/feedback', json={'projectType': 'other-project', 'rating': 3})
    assert resp.status_code == 500
    assert 'CHECK constraint failed' in resp.get_json()['error']


def test_ids_are_unique_and_increasing(client):
    ids = [create(client, rating=r)['id'] for r in (1, 2, 3, 4, 5)]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)


def test_get_by_id(client):
    entry = create(client, comments='Very useful')
    resp = client.get(f"/api/feedback/{entry['id']}")
    assert resp.status_code == 200
    assert resp.get_json() == {'success': True, 'data': entry}


def test_get_missing_id_returns_404(client):
    resp = client.get('/api/feedback/999999')
    assert resp.status_code == 404
    assert resp.get_json() == {'success': False, 'error': 'Feedback not found'}


def test_partial_update_keeps_other_fields(app, client):
    entry = create(client, projectType=STROKE, rating=2, innovation='medium', comments='ok')
    age_entry(app, entry['id'])

    resp = client.put(f"/api/feedback/{entry['id']}", json={'rating': 5})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['message'] == 'Feedback updated successfully'
    updated = body['data']
    assert updated['rating'] == 5
    assert updated['projectType'] == STROKE
    assert updated['innovation'] == 'medium'
    assert updated['comments'] == 'ok'
    assert updated['createdAt'] == '2020-01-01 00:00:00.000'
    assert updated['updatedAt'] != '2020-01-01 00:00:00.000'


def test_update_with_null_fields_keeps_values(client):
    entry = create(client, innovation='low', comments='first')
    resp = client.put(f"/api/feedback/{entry['id']}", json={'innovation': None, 'comments': 'second'})
    data = resp.get_json()['data']
    assert data['innovation'] == 'low'
    assert data['comments'] == 'second'


def test_update_missing_id_returns_404(client):
    resp = client.put('/api/feedback/424242', json={'rating': 3})
    assert resp.status_code == 404
    assert resp.get_json()['success'] is False


def test_delete(client):
    entry = create(client)
    resp = client.delete(f"/api/feedback/{entry['id']}")
    assert resp.status_code == 200
    assert resp.get_json() == {'success': True, 'message': 'Feedback deleted successfully'}
    assert client.get(f"/api/feedback/{entry['id']}").status_code == 404


def test_delete_missing_id_returns_404(client):
    resp = client.delete('/api/feedback/999999')
    assert resp.status_code == 404
    assert resp.get_json() == {'success': False, 'error': 'Feedback not found'}


def test_list_pagination(client):
    for i in range(23):
        create(client, rating=(i % 5) + 1)

    resp = client.get('/api/feedback?limit=10&page=3')
    body = resp.get_json()
    assert resp.status_code == 200
    assert len(body['data']) == 3
    assert body['pagination'] == {
        'currentPage': 3,
        'totalPages': math.ceil(23 / 10),
        'totalItems': 23,
        'itemsPerPage': 10,
    }


def test_list_defaults(client):
    create(client)
    body = client.get('/api/feedback').get_json()
    assert body['pagination']['currentPage'] == 1
    assert body['pagination']['itemsPerPage'] == 10


def test_page_past_the_end_is_empty(client):
    create(client)
    resp = client.get('/api/feedback?page=5&limit=10')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['data'] == []
    assert body['pagination']['totalPages'] == 1


def test_huge_page_number_is_an_empty_page(client):
    create(client)
    create(client, projectType=STROKE)

    resp = client.get('/api/feedback?page=10000000000000000000&limit=10')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['data'] == []
    assert body['pagination']['totalItems'] == 2

    resp = client.get(f'/api/feedback/project/{TOURIST}?page=10000000000000000000')
    assert resp.status_code == 200
    body = resp.get_json()
    assert body['data'] == []
    assert body['pagination']['totalItems'] == 1


def test_list_sorting(client):
    for rating in (3, 1, 5, 2):
        create(client, rating=rating)

    asc = client.get('/api/feedback?sortBy=rating&order=asc').get_json()['data']
    assert [e['rating'] for e in asc] == [1, 2, 3, 5]

    desc = client.get('/api/feedback?sortBy=rating&order=DESC').get_json()['data']
    assert [e['rating'] for e in desc] == [5, 3, 2, 1]

    by_api_name = client.get('/api/feedback?sortBy=createdAt&order=asc').get_json()['data']
    by_column = client.get('/api/feedback?sortBy=created_at&order=asc').get_json()['data']
    assert by_column == by_api_name
    assert [e['id'] for e in by_column] == sorted(e['id'] for e in by_column)


def test_default_order_is_newest_first(client):
    ids = [create(client)['id'] for _ in range(3)]
    data = client.get('/api/feedback').get_json()['data']
    assert [e['id'] for e in data] == list(reversed(ids))


def test_unrecognized_order_sorts_descending(client):
    create(client, rating=1)
    create(client, rating=5)
    data = client.get('/api/feedback?sortBy=rating&order=sideways').get_json()['data']
    assert [e['rating'] for e in data] == [5, 1]


def test_list_rejects_unknown_sort_field(client):
    resp = client.get('/api/feedback?sortBy=rating;DROP TABLE feedback')
    assert resp.status_code == 400
    assert 'Invalid sortBy field' in resp.get_json()['error']
    assert client.get('/api/feedback').status_code == 200


@pytest.mark.parametrize('query', ['page=0', 'limit=abc', 'limit=-1', 'limit=1000'])
def test_list_rejects_bad_pagination(client, query):
    resp = client.get(f'/api/feedback?{query}')
    assert resp.status_code == 400
    assert resp.get_json()['success'] is False


def test_feedback_by_project(app, client):
    for i in range(7):
        entry = create(client, projectType=TOURIST, rating=(i % 5) + 1)
        age_entry(app, entry['id'], f'2024-01-0{i + 1} 12:00:00.000')
    create(client, projectType=STROKE)
    create(client, projectType=STROKE)

    resp = client.get(f'/api/feedback/project/{TOURIST}?page=1&limit=5')
    assert resp.status_code == 200
    body = resp.get_json()
    data = body['data']
    assert len(data) == 5
    assert all(e['projectType'] == TOURIST for e in data)
    created = [e['createdAt'] for e in data]
    assert created == sorted(created, reverse=True)
    assert created[0] == '2024-01-07 12:00:00.000'
    assert body['pagination'] == {
        'currentPage': 1,
        'totalPages': 2,
        'totalItems': 7,
        'itemsPerPage': 5,
    }


def test_feedback_by_unknown_project_is_empty(client):
    body = client.get('/api/feedback/project/nope').get_json()
    assert body['data'] == []
    assert body['pagination']['totalItems'] == 0
    assert body['pagination']['totalPages'] == 0


def test_stats_with_no_rows(client):
    resp = client.get('/api/feedback/stats/summary')
    assert resp.status_code == 200
    assert resp.get_json()['data'] == {
        'totalFeedback': 0,
        'overallAverageRating': 0,
        'projectStats': [],
        'innovationDistribution': [],
    }


def test_stats_summary(client):
    create(client, projectType=TOURIST, rating=5, innovation='high')
    create(client, projectType=TOURIST, rating=4, innovation='high')
    create(client, projectType=TOURIST, rating=4)
    create(client, projectType=STROKE, rating=2, innovation='breakthrough')

    data = client.get('/api/feedback/stats/summary').get_json()['data']
    assert data['totalFeedback'] == 4
    assert data['overallAverageRating'] == round((5 + 4 + 4 + 2) / 4, 2)
    assert data['projectStats'] == [
        {
            'projectType': STROKE,
            'totalFeedback': 1,
            'averageRating': 2.0,
            'highestRating': 2,
            'lowestRating': 2,
        },
        {
            'projectType': TOURIST,
            'totalFeedback': 3,
            'averageRating': 4.33,
            'highestRating': 5,
            'lowestRating': 4,
        },
    ]
    assert data['innovationDistribution'] == [
        {'innovation': 'breakthrough', 'count': 1},
        {'innovation': 'high', 'count': 2},
    ]


def test_unknown_route_returns_json_404(client):
    resp = client.get('/api/nothing-here')
    assert resp.status_code == 404
    assert resp.get_json() == {'success': False, 'error': 'Not Found'}


def test_wrong_method_returns_405(client):
    resp = client.patch('/api/feedback/1', json={})
    assert resp.status_code == 405
    assert resp.get_json()['success'] is False


def test_unexpected_error_does_not_leak(app, client, monkeypatch):
    def boom():
        raise RuntimeError('secret internals')

    monkeypatch.setattr(app.extensions['feedback_repository'], 'stats', boom)
    resp = client.get('/api/feedback/stats/summary')
    assert resp.status_code == 500
    assert resp.get_json() == {'success': False, 'error': 'Something went wrong!'}


def test_cors_preflight_for_allowed_origin(client):
    resp = client.options('/api/feedback', headers={
        'Origin': 'http://localhost:3000',
        'Access-Control-Request-Method': 'PUT',
        'Access-Control-Request-Headers': 'Content-Type',
    })
    assert resp.status_code == 200
    assert resp.headers['Access-Control-Allow-Origin'] == 'http://localhost:3000'
    allowed_methods = resp.headers['Access-Control-Allow-Methods']
    for method in ('GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'):
        assert method in allowed_methods
    assert 'content-type' in resp.headers['Access-Control-Allow-Headers'].lower()


def test_cors_rejects_unlisted_origin(client):
    resp = client.get('/api/health', headers={'Origin': 'https://evil.example'})
    assert 'Access-Control-Allow-Origin' not in resp.headers


def test_metrics_counts_requests(client):
    client.get('/api/health')
    client.get('/api/feedback/999999')
    body = client.get('/metrics').get_json()
    assert body['requests_total'] == 2
    assert body['errors_total'] == 1


def test_write_rate_limit_returns_json_429(tmp_path):
    app = create_app(
        TestingConfig,
        DATABASE_PATH=str(tmp_path / 'limited.sqlite'),
        RATELIMIT_ENABLED=True,
        RATELIMIT_STORAGE_URI='memory://',
        RATELIMIT_DEFAULT='1000 per hour',
        RATELIMIT_WRITE='2 per minute',
    )
    try:
        client = app.test_client()
        body = {'projectType': TOURIST, 'rating': 3}
        assert client.post('/api/feedback', json=body).status_code == 201
        assert client.post('/api/feedback', json=body).status_code == 201
        resp = client.post('/api/feedback', json=body)
        assert resp.status_code == 429
        assert resp.get_json()['success'] is False
    finally:
        app.extensions['db_adapter'].close()


def test_building_another_app_keeps_first_apps_write_limit(tmp_path):
    limited = create_app(
        TestingConfig,
        DATABASE_PATH=str(tmp_path / 'limited.sqlite'),
        RATELIMIT_ENABLED=True,
        RATELIMIT_STORAGE_URI='memory://',
        RATELIMIT_DEFAULT='1000 per hour',
        RATELIMIT_WRITE='2 per minute',
    )
    other = create_app(TestingConfig, DATABASE_PATH=str(tmp_path / 'other.sqlite'))
    try:
        assert limited.extensions['rate_limiter'] is not other.extensions['rate_limiter']
        body = {'projectType': TOURIST, 'rating': 3}

        other_client = other.test_client()
        for _ in range(3):
            assert other_client.post('/api/feedback', json=body).status_code == 201

        client = limited.test_client()
        assert client.post('/api/feedback', json=body).status_code == 201
        assert client.post('/api/feedback', json=body).status_code == 201
        assert client.post('/api/feedback', json=body).status_code == 429
    finally:
        limited.extensions['db_adapter'].close()
        other.extensions['db_adapter'].close()
