from datetime import datetime, timedelta, timezone

import pytest

from app import firestore_dao as dao
from app.errors import ConflictError
from app.firestore_models import LESSON_TYPE_GROUP, LESSON_TYPE_ONE, Lesson

START = datetime(2030, 3, 5, 15, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=1)


def _lesson(student_id='s1', lesson_type=LESSON_TYPE_ONE, group_id=None, start=START, end=END):
    return Lesson(type=lesson_type, student_id=student_id, group_id=group_id,
                  start=start, end=end).to_dict()


def test_create_lesson_unique_rejects_same_slot(db):
    lesson_id = dao.create_lesson_unique(_lesson())

    assert lesson_id == dao.lesson_key('s1', LESSON_TYPE_ONE, START, END)
    with pytest.raises(ConflictError):
        dao.create_lesson_unique(_lesson())
    assert len(db.docs('lessons')) == 1


def test_create_lesson_unique_after_the_key_holder_moved(db):
    moved = dao.create_lesson_unique(_lesson())
    dao.update_lesson(moved, {'start': START + timedelta(days=1), 'end': END + timedelta(days=1)})

    new_id = dao.create_lesson_unique(_lesson())

    assert new_id != moved
    assert len(db.docs('lessons')) == 2


def test_find_duplicate_lesson_group_relaxation(db):
    dao.create_lesson(_lesson(lesson_type=LESSON_TYPE_GROUP))
    dao.create_lesson(_lesson(student_id='s2', lesson_type=LESSON_TYPE_GROUP, group_id='other'))

    assert dao.find_duplicate_lesson('s1', LESSON_TYPE_GROUP, START, END, group_id='g1') is not None
    assert dao.find_duplicate_lesson('s2', LESSON_TYPE_GROUP, START, END, group_id='g1') is None
    assert dao.find_duplicate_lesson('s2', LESSON_TYPE_GROUP, START, END) is not None
    assert dao.find_duplicate_lesson('s1', LESSON_TYPE_ONE, START, END) is None


def test_find_lessons_by_students_in_chunks(db):
    student_ids = [f's{i}' for i in range(45)]
    for i, student_id in enumerate(student_ids):
        dao.create_lesson(_lesson(student_id=student_id, start=START + timedelta(hours=i),
                                  end=END + timedelta(hours=i)))

    found = dao.find_lessons(student_ids=student_ids)

    assert len(found) == 45
    assert [l['student_id'] for l in found] == student_ids
    assert dao.find_lessons(student_ids=[]) == []


def test_update_lessons_commits_in_batches_of_500(db):
    ids = [dao.create_lesson(_lesson(student_id=f's{i}')) for i in range(501)]

    assert dao.update_lessons(ids, {'notes': 'bulk'}) == 501
    assert db.commits == 2
    assert {l['notes'] for l in db.docs('lessons')} == {'bulk'}


def test_add_group_members_is_a_set_add(db):
    group_id = dao.create_group({'name': 'G', 'member_ids': ['a'], 'active': True})

    dao.add_group_members(group_id, ['b', 'a'])

    assert dao.get_group(group_id)['member_ids'] == ['a', 'b']


def test_notification_settings_document(db):
    assert dao.get_notification_settings() is None

    dao.save_notification_settings({'enabled': False})
    dao.save_notification_settings({'lead_minutes': 30})

    stored = dao.get_notification_settings()
    assert (stored['enabled'], stored['lead_minutes']) == (False, 30)
