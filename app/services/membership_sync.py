"""
Keeps upcoming group lessons in line with group membership.

Membership is the source of truth. Callers save the membership change first
and then run the sync; if the sync fails part way the group is still
correct and the backfill job repairs the lessons later. Every step checks
for existing lessons before creating one, so re-running after a partial
failure is safe.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from app import firestore_dao as dao
from app.errors import ConflictError, DownstreamError, StudioError
from app.firestore_models import LESSON_TYPE_GROUP, STATUS_SCHEDULED, Lesson, unique_ids
from app.services.group_lessons import LessonMatch, resolve_group_lessons

logger = logging.getLogger(__name__)


@dataclass
class MembershipSyncResult:
    created_count: int = 0
    removed_count: int = 0


def diff_members(before, after):
    """Return (added, removed) student IDs between two member lists."""
    before_ids = unique_ids(before or [])
    after_ids = unique_ids(after or [])
    before_set, after_set = set(before_ids), set(after_ids)
    added = [m for m in after_ids if m not in before_set]
    removed = [m for m in before_ids if m not in after_set]
    return added, removed


def occurrence_templates(lessons):
    """Distinct (start, end, notes) tuples, in first-seen order."""
    templates = []
    seen = set()
    for lesson in lessons:
        key = (lesson['start'], lesson['end'], lesson.get('notes'))
        if key not in seen:
            seen.add(key)
            templates.append(key)
    return templates


def sync_membership_change(group, before_ids, added, removed, now=None):
    """Clone or delete upcoming scheduled lessons after a membership edit.

    ``group`` is the saved group; ``before_ids`` is the member list as it was
    before the edit. Occurrence templates are read from the pre-edit members
    before anything is deleted, so replacing every member still carries the
    schedule over. An inactive group gets no new lessons; removals still run.
    """
    now = now or datetime.now(timezone.utc)
    result = MembershipSyncResult()
    if not added and not removed:
        return result

    group_id = group['id']
    snapshot = dict(group, member_ids=unique_ids(before_ids))
    upcoming = LessonMatch(status=STATUS_SCHEDULED, start_from=now)

    templates = []
    if added and group.get('active') is False:
        logger.info('Group %s is inactive, not scheduling lessons for new members', group_id)
    elif added:
        current = resolve_group_lessons(snapshot, match=upcoming)
        templates = occurrence_templates(
            l for l in current.lessons if l.get('group_id') == group_id
        )

    if removed:
        leaving = resolve_group_lessons(snapshot, match=upcoming, limit_to_members=removed)
        doomed = [l['id'] for l in leaving.lessons if l.get('group_id') == group_id]
        result.removed_count = dao.delete_lessons(doomed)

    for student_id in added:
        for start, end, notes in templates:
            try:
                if _clone_lesson(group_id, student_id, start, end, notes):
                    result.created_count += 1
            except ConflictError:
                logger.debug('Lesson for %s at %s already exists', student_id, start)
            except DownstreamError:
                raise
            except (StudioError, ValueError, KeyError):
                logger.exception('Could not add lesson for %s at %s to group %s',
                                 student_id, start, group_id)

    logger.info('Group %s membership sync: %d created, %d removed',
                group_id, result.created_count, result.removed_count)
    return result


def _clone_lesson(group_id, student_id, start, end, notes):
    existing = dao.find_duplicate_lesson(
        student_id, LESSON_TYPE_GROUP, start, end,
        group_id=group_id, status=STATUS_SCHEDULED,
    )
    if existing:
        return False
    lesson = Lesson(
        type=LESSON_TYPE_GROUP,
        student_id=student_id,
        group_id=group_id,
        start=start,
        end=end,
        status=STATUS_SCHEDULED,
        notes=notes,
    )
    dao.create_lesson_unique(lesson.to_dict())
    return True
