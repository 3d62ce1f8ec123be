"""
Lesson edits that fan out to the rest of a group occurrence.

Changing the time, status or notes of one member's group lesson applies the
same change to every sibling lesson at that time in that group.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from app import firestore_dao as dao
from app.errors import AmbiguousStateError, NotFoundError, ValidationError
from app.firestore_models import LESSON_TYPE_GROUP, unique_ids
from app.services.group_lessons import (
    LessonMatch,
    active_group_for_student,
    resolve_group_lessons,
)

logger = logging.getLogger(__name__)

SHARED_FIELDS = ('start', 'end', 'status', 'notes')


@dataclass
class PropagationResult:
    group_id: Optional[str] = None
    sibling_ids: List[str] = field(default_factory=list)


def update_lesson(lesson_id, changes):
    """Update one lesson and propagate shared fields to its siblings.

    Only the keys present in ``changes`` are written. Returns the updated
    lesson dict and the number of sibling lessons changed.
    """
    before = dao.get_lesson(lesson_id)
    if not before:
        raise NotFoundError('Lesson not found')

    changes = {k: v for k, v in changes.items() if k in SHARED_FIELDS}
    start = changes.get('start', before.get('start'))
    end = changes.get('end', before.get('end'))
    if start and end and end <= start:
        raise ValidationError('end must be after start')

    if not changes:
        return before, 0

    dao.update_lesson(lesson_id, dict(changes))
    lesson = dict(before, **changes)

    if before.get('type') != LESSON_TYPE_GROUP:
        return lesson, 0

    result = propagate_shared_fields(before, changes)
    if result.group_id:
        lesson['group_id'] = result.group_id
    return lesson, len(result.sibling_ids)


def propagate_shared_fields(before, changes):
    """Apply ``changes`` to the siblings of ``before`` (the pre-edit lesson)."""
    changes = {k: v for k, v in changes.items() if k in SHARED_FIELDS}
    if not changes:
        return PropagationResult()

    group_id, group = _effective_group(before)
    if not group_id:
        return PropagationResult()

    # Siblings may sit at either the old or the new start.
    starts = tuple(dict.fromkeys(
        s for s in (before.get('start'), changes.get('start')) if s is not None
    ))
    if not starts:
        return PropagationResult(group_id=group_id)

    member_ids = unique_ids((group or {}).get('member_ids') or [])
    if not member_ids:
        siblings = [
            l for l in dao.find_lessons(
                lesson_type=LESSON_TYPE_GROUP,
                group_id=group_id,
                start_from=min(starts),
                start_before=max(starts) + timedelta(microseconds=1),
            )
            if l['start'] in starts
        ]
    else:
        others = [m for m in member_ids if m != before.get('student_id')]
        if not others:
            return PropagationResult(group_id=group_id)
        resolved = resolve_group_lessons(
            group, match=LessonMatch(starts=starts), limit_to_members=others,
        )
        siblings = [l for l in resolved.lessons if l.get('group_id') == group_id]

    sibling_ids = unique_ids(l['id'] for l in siblings if l['id'] != before['id'])
    if sibling_ids:
        dao.update_lessons(sibling_ids, dict(changes))
        logger.info('Lesson %s: propagated %s to %d sibling(s)',
                    before['id'], ', '.join(sorted(changes)), len(sibling_ids))
    return PropagationResult(group_id=group_id, sibling_ids=sibling_ids)


def _effective_group(lesson):
    """(group_id, group dict) for the lesson, linking it when unambiguous."""
    if lesson.get('group_id'):
        return lesson['group_id'], dao.get_group(lesson['group_id'])
    student_id = lesson.get('student_id')
    if not student_id:
        return None, None
    try:
        group_id = active_group_for_student(student_id)
    except AmbiguousStateError as e:
        logger.warning('Lesson %s not propagated: %s', lesson['id'], e)
        return None, None
    if not group_id:
        return None, None
    dao.update_lesson(lesson['id'], {'group_id': group_id})
    return group_id, dao.get_group(group_id)
