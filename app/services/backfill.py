"""
Group-lesson repair job.

Scans every group and brings its lessons back to a consistent state:

* unlinked lessons of members are linked to the group when unambiguous,
* every occurrence ends up with a single status (the most final one),
* members of an active group who are missing an upcoming occurrence get a
  lesson for it.

Running the job against consistent data changes nothing.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from app import firestore_dao as dao
from app.errors import ConflictError, DownstreamError, StudioError
from app.firestore_models import LESSON_TYPE_GROUP, Lesson, unique_ids
from app.services.group_lessons import (
    bucket_occurrences,
    resolve_group_lessons,
    resolve_status,
)

logger = logging.getLogger(__name__)


@dataclass
class BackfillReport:
    linked: int = 0
    status_aligned: int = 0
    created: int = 0
    groups_scanned: int = 0

    @property
    def mutations(self):
        return self.linked + self.status_aligned + self.created


def run_backfill(now=None):
    now = now or datetime.now(timezone.utc)
    report = BackfillReport()

    for group in dao.get_groups():
        member_ids = unique_ids(group.get('member_ids') or [])
        if not member_ids:
            continue
        try:
            repair_group(group, member_ids, now, report)
        except DownstreamError:
            raise
        except (StudioError, ValueError, KeyError):
            logger.exception('Backfill failed for group %s', group['id'])
        report.groups_scanned += 1

    logger.info('Backfill: %d group(s), %d linked, %d status aligned, %d created',
                report.groups_scanned, report.linked, report.status_aligned, report.created)
    return report


def repair_group(group, member_ids, now, report):
    group_id = group['id']
    resolved = resolve_group_lessons(dict(group, member_ids=member_ids))
    report.linked += len(resolved.linked_ids)

    # Lessons left ambiguous belong to whichever group claims them later.
    lessons = [l for l in resolved.lessons if l.get('group_id') == group_id]

    for key, bucket in bucket_occurrences(lessons).items():
        target = resolve_status(l.get('status') for l in bucket)
        stale = [l['id'] for l in bucket if l.get('status') != target]
        if stale:
            report.status_aligned += dao.update_lessons(stale, {'status': target})
            for lesson in bucket:
                lesson['status'] = target

        if group.get('active') is False or key.start < now:
            continue

        notes = bucket[0].get('notes')
        have = {l.get('student_id') for l in bucket}
        for student_id in member_ids:
            if student_id in have:
                continue
            duplicate = dao.find_duplicate_lesson(
                student_id, LESSON_TYPE_GROUP, key.start, key.end, group_id=group_id,
            )
            if duplicate:
                continue
            lesson = Lesson(
                type=LESSON_TYPE_GROUP,
                student_id=student_id,
                group_id=group_id,
                start=key.start,
                end=key.end,
                status=target,
                notes=notes,
            )
            try:
                dao.create_lesson_unique(lesson.to_dict())
            except ConflictError:
                continue
            report.created += 1
