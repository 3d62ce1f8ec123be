from datetime import datetime, timedelta, timezone

import pytest

from app import firestore_dao as dao
from app.errors import AmbiguousStateError
from app.firestore_models import LESSON_TYPE_ONE, STATUS_CANCELLED, STATUS_COMPLETED, STATUS_SCHEDULED
from app.services.group_lessons import (
    LessonMatch,
    OccurrenceKey,
    active_group_for_student,
    bucket_occurrences,
    build_membership_index,
    plan_link_repair,
    resolve_group_lessons,
    resolve_status,
)

START = datetime(2030, 3, 2, 15, 0, tzinfo=timezone.utc)


def test_resolver_links_unlinked_member_lessons(db, make_student, make_group, make_lesson):
    a = make_student('A')
    b = make_student('B')
    group_id = make_group([a, b])
    linked = make_lesson(a, START, group_id=group_id)
    stray = make_lesson(b, START)

    result = resolve_group_lessons(dao.get_group(group_id))

    assert sorted(result.ids) == sorted([linked, stray])
    assert result.linked_ids == [stray]
    assert dao.get_lesson(stray)['group_id'] == group_id
    assert all(l['group_id'] == group_id for l in result.lessons)


def test_resolver_is_idempotent(db, make_student, make_group, make_lesson):
    a = make_student('A')
    group_id = make_group([a])
    make_lesson(a, START)

    resolve_group_lessons(dao.get_group(group_id))
    second = resolve_group_lessons(dao.get_group(group_id))

    assert second.linked_ids == []
    assert len(second.lessons) == 1


def test_resolver_leaves_ambiguous_lessons_unlinked(db, make_student, make_group, make_lesson):
    a = make_student('A')
    group_id = make_group([a])
    make_group([a])
    stray = make_lesson(a, START)

    result = resolve_group_lessons(dao.get_group(group_id))

    assert result.ambiguous_ids == [stray]
    assert result.linked_ids == []
    assert 'group_id' not in dao.get_lesson(stray)


def test_resolver_ignores_other_groups_and_lesson_types(db, make_student, make_group, make_lesson):
    a = make_student('A')
    b = make_student('B')
    group_id = make_group([a])
    other_id = make_group([b])
    mine = make_lesson(a, START, group_id=group_id)
    make_lesson(b, START, group_id=other_id)
    make_lesson(a, START + timedelta(days=1), lesson_type=LESSON_TYPE_ONE)

    result = resolve_group_lessons(dao.get_group(group_id))

    assert result.ids == [mine]


def test_resolver_scoping_and_match(db, make_student, make_group, make_lesson):
    a = make_student('A')
    b = make_student('B')
    group_id = make_group([a, b])
    a1 = make_lesson(a, START, group_id=group_id)
    b1 = make_lesson(b, START, group_id=group_id)
    b2 = make_lesson(b, START + timedelta(days=7), group_id=group_id, status=STATUS_CANCELLED)
    group = dao.get_group(group_id)

    assert resolve_group_lessons(group, limit_to_members=[]).lessons == []
    assert resolve_group_lessons(group, limit_to_members=[b]).ids == [b1, b2]
    scheduled = resolve_group_lessons(group, match=LessonMatch(status=STATUS_SCHEDULED))
    assert sorted(scheduled.ids) == sorted([a1, b1])
    at_start = resolve_group_lessons(group, match=LessonMatch(starts=(START,)))
    assert sorted(at_start.ids) == sorted([a1, b1])


def test_plan_link_repair_splits_by_conflict():
    lessons = [
        {'id': 'l1', 'student_id': 's1'},
        {'id': 'l2', 'student_id': 's2'},
        {'id': 'l3', 'student_id': 's3', 'group_id': 'g'},
        {'id': 'l4'},
    ]
    assert plan_link_repair(lessons, {'s2'}) == (['l1'], ['l2'])


def test_active_group_for_student(db, make_student, make_group):
    a = make_student('A')
    b = make_student('B')
    first = make_group([a, b])
    second = make_group([a])

    assert active_group_for_student(b) == first
    assert active_group_for_student(make_student('C')) is None
    with pytest.raises(AmbiguousStateError) as excinfo:
        active_group_for_student(a)
    assert excinfo.value.candidates == [first, second]


def test_active_group_ignores_inactive_groups(db, make_student, make_group):
    a = make_student('A')
    make_group([a], active=False)
    current = make_group([a])

    assert active_group_for_student(a) == current


def test_membership_index_keeps_group_order():
    groups = [{'id': 'g1', 'member_ids': ['a', 'b']}, {'id': 'g2', 'member_ids': ['a']}]
    assert build_membership_index(groups) == {'a': ['g1', 'g2'], 'b': ['g1']}


@pytest.mark.parametrize('statuses, expected', [
    ([STATUS_SCHEDULED, STATUS_COMPLETED, STATUS_CANCELLED], STATUS_COMPLETED),
    ([STATUS_SCHEDULED, STATUS_CANCELLED], STATUS_CANCELLED),
    ([STATUS_SCHEDULED], STATUS_SCHEDULED),
    ([], STATUS_SCHEDULED),
])
def test_resolve_status(statuses, expected):
    assert resolve_status(statuses) == expected


def test_bucket_occurrences():
    end = START + timedelta(hours=1)
    lessons = [
        {'id': '1', 'group_id': 'g', 'start': START, 'end': end},
        {'id': '2', 'group_id': 'g', 'start': START, 'end': end},
        {'id': '3', 'group_id': 'g', 'start': end, 'end': end + timedelta(hours=1)},
    ]
    buckets = bucket_occurrences(lessons)
    assert [len(b) for b in buckets.values()] == [2, 1]
    assert OccurrenceKey('g', START, end) in buckets
