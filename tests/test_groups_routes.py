from datetime import timedelta

from google.api_core.exceptions import ServiceUnavailable

from app import firestore_dao as dao
from app.errors import DownstreamError


def test_groups_require_admin(client, portal_headers):
    assert client.get('/groups').status_code == 401
    assert client.get('/groups', headers={'Authorization': 'Bearer bogus'}).status_code == 401
    response = client.get('/groups', headers=portal_headers)
    assert response.status_code == 403
    assert response.get_json() == {'error': 'Forbidden'}


def test_list_groups_sorted_and_active_only(client, admin_headers, make_group):
    make_group([], name='Strings')
    make_group([], name='beginners')
    make_group([], name='Archived', active=False)

    response = client.get('/groups', headers=admin_headers)

    assert response.status_code == 200
    assert [g['name'] for g in response.get_json()] == ['beginners', 'Strings']


def test_create_group(client, admin_headers, make_student):
    a = make_student('A')

    response = client.post('/groups', headers=admin_headers,
                           json={'name': ' Saturday ', 'member_ids': [a, a]})

    assert response.status_code == 201
    body = response.get_json()
    assert body['name'] == 'Saturday'
    assert body['member_ids'] == [a]
    assert body['active'] is True


def test_create_group_validation(client, admin_headers):
    missing_name = client.post('/groups', headers=admin_headers, json={'member_ids': []})
    assert missing_name.status_code == 400
    assert 'name' in missing_name.get_json()['details']

    unknown = client.post('/groups', headers=admin_headers, json={'name': 'G', 'member_ids': ['ghost']})
    assert unknown.status_code == 400
    assert unknown.get_json()['details'] == {'member_ids': ['ghost']}

    not_json = client.post('/groups', headers=admin_headers, data='nope')
    assert not_json.status_code == 400


def test_create_group_rejects_wrong_json_types(client, admin_headers, make_student):
    a = make_student('A')

    numeric_name = client.post('/groups', headers=admin_headers, json={'name': 123, 'member_ids': []})
    object_name = client.post('/groups', headers=admin_headers,
                              json={'name': {'en': 'G'}, 'member_ids': []})
    bare_id = client.post('/groups', headers=admin_headers, json={'name': 'G', 'member_ids': a})

    assert numeric_name.status_code == 400
    assert 'name' in numeric_name.get_json()['details']
    assert object_name.status_code == 400
    assert bare_id.status_code == 400
    assert bare_id.get_json()['details'] == {'member_ids': ['Must be a list.']}
    assert dao.get_groups() == []


def test_replace_members_syncs_lessons(client, admin_headers, make_student, make_group,
                                       make_lesson, future):
    a, b, c = make_student('A'), make_student('B'), make_student('C')
    group_id = make_group([a, b])
    make_lesson(a, future, group_id=group_id)
    make_lesson(b, future, group_id=group_id)
    past = make_lesson(a, future - timedelta(days=30), group_id=group_id)

    response = client.put(f'/groups/{group_id}', headers=admin_headers,
                          json={'name': 'Renamed', 'member_ids': [b, c]})

    assert response.status_code == 200
    body = response.get_json()
    assert body['group']['member_ids'] == [b, c]
    assert body['group']['name'] == 'Renamed'
    assert body['meta'] == {
        'created_lessons': 1,
        'removed_lessons': 1,
        'added_members': [c],
        'removed_members': [a],
    }
    remaining_a = [l['id'] for l in db_lessons(a)]
    assert remaining_a == [past]
    assert [l['start'] for l in db_lessons(c)] == [future]


def db_lessons(student_id):
    return dao.find_lessons(student_ids=[student_id])


def test_replace_members_keeps_membership_when_sync_fails(client, admin_headers, make_student,
                                                          make_group, monkeypatch):
    a, b = make_student('A'), make_student('B')
    group_id = make_group([a])

    def boom(*args, **kwargs):
        raise DownstreamError('store down')

    monkeypatch.setattr('app.routes.groups.sync_membership_change', boom)
    response = client.put(f'/groups/{group_id}', headers=admin_headers,
                          json={'name': 'G', 'member_ids': [a, b]})

    assert response.status_code == 200
    assert response.get_json()['meta']['created_lessons'] == 0
    assert dao.get_group(group_id)['member_ids'] == [a, b]


def test_replace_unknown_group(client, admin_headers):
    response = client.put('/groups/missing', headers=admin_headers, json={'name': 'G'})
    assert response.status_code == 404


def test_add_members(client, admin_headers, make_student, make_group, make_lesson, future):
    a, b = make_student('A'), make_student('B')
    group_id = make_group([a])
    make_lesson(a, future, group_id=group_id, notes='Sight reading')

    first = client.post(f'/groups/{group_id}/add-members', headers=admin_headers,
                        json={'member_ids': [b, a]})
    again = client.post(f'/groups/{group_id}/add-members', headers=admin_headers,
                        json={'member_ids': [b]})

    assert first.status_code == 200
    assert first.get_json()['meta']['added_members'] == [b]
    assert first.get_json()['meta']['created_lessons'] == 1
    assert again.get_json()['meta'] == {
        'created_lessons': 0, 'removed_lessons': 0, 'added_members': [], 'removed_members': [],
    }
    assert dao.get_group(group_id)['member_ids'] == [a, b]
    assert [l['notes'] for l in db_lessons(b)] == ['Sight reading']


def test_add_members_requires_members(client, admin_headers, make_group):
    group_id = make_group([])
    response = client.post(f'/groups/{group_id}/add-members', headers=admin_headers,
                           json={'member_ids': []})
    assert response.status_code == 400


def test_schedule_group(client, admin_headers, make_student, make_group, future):
    a, b = make_student('A'), make_student('B')
    group_id = make_group([a, b])

    response = client.post(f'/groups/{group_id}/schedule', headers=admin_headers,
                           json={'dates': [future.isoformat()], 'duration_minutes': 30})

    assert response.get_json() == {'ok': True, 'created': 2}
    lesson = db_lessons(a)[0]
    assert lesson['end'] - lesson['start'] == timedelta(minutes=30)


def test_schedule_group_validation(client, admin_headers, make_group, future):
    empty_group = make_group([])

    no_dates = client.post(f'/groups/{empty_group}/schedule', headers=admin_headers, json={'dates': []})
    bad_duration = client.post(f'/groups/{empty_group}/schedule', headers=admin_headers,
                               json={'dates': [future.isoformat()], 'duration_minutes': 5})
    no_members = client.post(f'/groups/{empty_group}/schedule', headers=admin_headers,
                             json={'dates': [future.isoformat()]})

    assert no_dates.status_code == 400
    assert bad_duration.status_code == 400
    assert no_members.status_code == 400
    assert no_members.get_json()['error'] == 'Group has no members'


def test_delete_group_is_soft(client, admin_headers, make_group):
    group_id = make_group([], name='Old')

    response = client.delete(f'/groups/{group_id}', headers=admin_headers)

    assert response.status_code == 200
    assert dao.get_group(group_id)['active'] is False
    assert client.get('/groups', headers=admin_headers).get_json() == []


def test_store_failure_is_503(client, admin_headers, monkeypatch):
    def unavailable(*args, **kwargs):
        raise ServiceUnavailable('firestore down')

    monkeypatch.setattr(dao, 'get_groups', unavailable)
    response = client.get('/groups', headers=admin_headers)

    assert response.status_code == 503
    assert 'firestore' not in response.get_json()['error']


def test_unexpected_error_is_generic_500(client, admin_headers, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError('secret detail')

    monkeypatch.setattr(dao, 'get_groups', broken)
    response = client.get('/groups', headers=admin_headers)

    assert response.status_code == 500
    assert response.get_json() == {'error': 'Server error'}
