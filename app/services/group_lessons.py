"""
Group-lesson resolution.

A group session is stored as one lesson document per member. Nothing in the
store ties those documents together except the shared ``group_id`` and time
window, and older documents may be missing ``group_id`` altogether. Every
component that needs "the lessons of this group" or "the lessons of this
occurrence" goes through this module so they all agree on the answer.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple

from app import firestore_dao as dao
from app.errors import AmbiguousStateError
from app.firestore_models import (
    LESSON_TYPE_GROUP,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_SCHEDULED,
    unique_ids,
)

logger = logging.getLogger(__name__)

# When members of one occurrence disagree, the most final status wins.
STATUS_PRIORITY = {
    STATUS_SCHEDULED: 0,
    STATUS_CANCELLED: 1,
    STATUS_COMPLETED: 2,
}


class OccurrenceKey(NamedTuple):
    """Identity of one group session: group (or None) plus time window."""
    group_id: Optional[str]
    start: datetime
    end: datetime

    @classmethod
    def of(cls, lesson, group_id=None) -> 'OccurrenceKey':
        return cls(group_id or lesson.get('group_id'), lesson['start'], lesson['end'])


@dataclass(frozen=True)
class LessonMatch:
    """Extra constraints applied on top of group membership."""
    status: Optional[str] = None
    start_from: Optional[datetime] = None
    start_before: Optional[datetime] = None
    starts: Optional[Tuple[datetime, ...]] = None

    def query_range(self):
        start_from, start_before = self.start_from, self.start_before
        if self.starts:
            if start_from is None:
                start_from = min(self.starts)
            if start_before is None:
                start_before = max(self.starts) + timedelta(microseconds=1)
        return start_from, start_before

    def accepts(self, lesson) -> bool:
        if self.starts is not None and lesson.get('start') not in self.starts:
            return False
        return True


@dataclass
class ResolveResult:
    lessons: List[dict] = field(default_factory=list)
    linked_ids: List[str] = field(default_factory=list)
    ambiguous_ids: List[str] = field(default_factory=list)

    @property
    def ids(self) -> List[str]:
        return [lesson['id'] for lesson in self.lessons]


def students_in_other_active_groups(group_id, student_ids) -> Set[str]:
    """Members of ``student_ids`` that also belong to another active group."""
    student_ids = set(student_ids)
    if not student_ids:
        return set()
    conflicts = set()
    for other in dao.get_active_groups_for_students(sorted(student_ids)):
        if other['id'] == group_id:
            continue
        conflicts.update(student_ids.intersection(other.get('member_ids') or []))
    return conflicts


def plan_link_repair(lessons, conflicting_student_ids) -> Tuple[List[str], List[str]]:
    """Split unlinked lessons into (linkable ids, ambiguous ids).

    A lesson is linkable when its student is not a member of any other active
    group. Lessons that already carry a group, or have no student, are ignored.
    """
    linkable, ambiguous = [], []
    for lesson in lessons:
        if lesson.get('group_id') or not lesson.get('student_id'):
            continue
        if lesson['student_id'] in conflicting_student_ids:
            ambiguous.append(lesson['id'])
        else:
            linkable.append(lesson['id'])
    return linkable, ambiguous


def resolve_group_lessons(group, match=None, limit_to_members=None) -> ResolveResult:
    """Return the group-type lessons that belong to ``group``.

    A lesson belongs to the group when it is linked to it, or when it is not
    linked to any group and its student is a member. Unlinked lessons whose
    student is in no other active group get ``group_id`` written back, both in
    the store and in the returned dicts.

    ``limit_to_members`` restricts the result to those students; an empty list
    yields an empty result.
    """
    match = match or LessonMatch()
    group_id = group['id']
    member_ids = unique_ids(group.get('member_ids') or [])
    if limit_to_members is not None:
        scoped_ids = unique_ids(limit_to_members)
        if not scoped_ids:
            return ResolveResult()
    else:
        scoped_ids = member_ids

    start_from, start_before = match.query_range()
    query = dict(
        lesson_type=LESSON_TYPE_GROUP,
        status=match.status,
        start_from=start_from,
        start_before=start_before,
    )

    found: Dict[str, dict] = {}
    for lesson in dao.find_lessons(group_id=group_id, **query):
        found[lesson['id']] = lesson
    if scoped_ids:
        for lesson in dao.find_lessons(student_ids=scoped_ids, **query):
            if not lesson.get('group_id'):
                found.setdefault(lesson['id'], lesson)
        scoped = set(scoped_ids)
        found = {k: v for k, v in found.items() if v.get('student_id') in scoped}

    lessons = [lesson for lesson in found.values() if match.accepts(lesson)]
    lessons.sort(key=lambda l: (l['start'], l.get('student_id') or '', l['id']))
    result = ResolveResult(lessons=lessons)

    unlinked = [l for l in lessons if not l.get('group_id') and l.get('student_id')]
    if not unlinked:
        return result

    conflicts = students_in_other_active_groups(group_id, {l['student_id'] for l in unlinked})
    result.linked_ids, result.ambiguous_ids = plan_link_repair(unlinked, conflicts)
    if result.ambiguous_ids:
        logger.debug('Group %s: leaving %d lesson(s) unlinked, students are in other groups',
                     group_id, len(result.ambiguous_ids))
    if result.linked_ids:
        dao.update_lessons(result.linked_ids, {'group_id': group_id})
        linked = set(result.linked_ids)
        for lesson in unlinked:
            if lesson['id'] in linked:
                lesson['group_id'] = group_id
        logger.info('Group %s: linked %d lesson(s)', group_id, len(linked))
    return result


def build_membership_index(groups) -> Dict[str, List[str]]:
    """Map student ID -> IDs of the given groups containing it, in group order."""
    membership: Dict[str, List[str]] = {}
    for group in groups:
        for member_id in unique_ids(group.get('member_ids') or []):
            membership.setdefault(member_id, []).append(group['id'])
    return membership


def active_group_for_student(student_id, membership=None) -> Optional[str]:
    """The single active group the student belongs to, or None.

    Raises AmbiguousStateError, listing the candidates in storage order, when
    the student belongs to more than one active group.
    """
    if membership is None:
        groups = dao.get_active_groups_for_students([student_id])
        group_ids = [g['id'] for g in groups]
    else:
        group_ids = membership.get(student_id, [])
    if not group_ids:
        return None
    if len(group_ids) > 1:
        raise AmbiguousStateError(
            f'Student {student_id} belongs to {len(group_ids)} active groups',
            candidates=group_ids,
        )
    return group_ids[0]


def resolve_status(statuses: Iterable[str]) -> str:
    """Highest-priority status among ``statuses``; first one wins ties."""
    best = None
    for status in statuses:
        if best is None or STATUS_PRIORITY.get(status, 0) > STATUS_PRIORITY.get(best, 0):
            best = status
    return best or STATUS_SCHEDULED


def bucket_occurrences(lessons, group_id=None) -> Dict[OccurrenceKey, List[dict]]:
    """Group lessons into occurrences keyed by (group, start, end)."""
    buckets: Dict[OccurrenceKey, List[dict]] = {}
    for lesson in lessons:
        buckets.setdefault(OccurrenceKey.of(lesson, group_id), []).append(lesson)
    return buckets
