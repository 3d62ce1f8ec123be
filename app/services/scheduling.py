"""
Recurring lesson generation.

Students with a default weekly slot get one lesson per week of the
requested month. Group-program students get group lessons in their active
group; everyone else gets one-on-one lessons. Re-running for the same month
creates nothing new.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app import firestore_dao as dao
from app.errors import (
    AmbiguousStateError,
    ConflictError,
    DownstreamError,
    StudioError,
    ValidationError,
)
from app.firestore_models import (
    LESSON_TYPE_GROUP,
    LESSON_TYPE_ONE,
    STATUS_SCHEDULED,
    Lesson,
    Student,
    unique_ids,
)
from app.services.group_lessons import active_group_for_student, build_membership_index

logger = logging.getLogger(__name__)


def resolve_zone(name, default='UTC'):
    """ZoneInfo for ``name``, falling back to ``default`` when unknown."""
    for candidate in (name, default, 'UTC'):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning('Unknown timezone %r', candidate)
    return timezone.utc


def month_occurrences(year, month, weekday, hour, minute, tz, include_fifth=False) -> List[datetime]:
    """UTC start times of the weekly slot within the given month.

    ``weekday`` counts from 0 = Sunday. Four occurrences are returned, or five
    when ``include_fifth`` is set and the fifth one still falls in the month.
    """
    if not 0 <= weekday <= 6:
        raise ValueError(f'weekday must be 0-6, got {weekday}')
    first = date(year, month, 1)
    first_weekday = (first.weekday() + 1) % 7
    first_match = first + timedelta(days=(weekday - first_weekday) % 7)

    starts = []
    for i in range(5 if include_fifth else 4):
        day = first_match + timedelta(weeks=i)
        if day.month != month:
            break
        local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=tz)
        starts.append(local.astimezone(timezone.utc))
    return starts


def generate_month(year, month, duration_minutes, include_fifth=False, default_tz='UTC'):
    """Create the month's lessons for every active student with a default slot.

    Returns the number of lessons created.
    """
    if not 1 <= month <= 12:
        raise ValidationError('month must be between 1 and 12')
    if duration_minutes <= 0:
        raise ValidationError('duration_minutes must be positive')

    students = [Student.from_dict(s) for s in dao.get_active_students()]
    membership = build_membership_index(dao.get_active_groups())

    created = 0
    for student in students:
        if not student.default_slot:
            continue
        try:
            created += _generate_for_student(
                student, membership, year, month, duration_minutes, include_fifth, default_tz,
            )
        except DownstreamError:
            raise
        except (StudioError, ValueError, KeyError):
            logger.exception('Could not generate lessons for student %s', student.id)

    logger.info('Generated %d lesson(s) for %04d-%02d', created, year, month)
    return created


def _generate_for_student(student, membership, year, month, duration_minutes,
                          include_fifth, default_tz):
    group_id = None
    if student.is_group_program:
        try:
            group_id = active_group_for_student(student.id, membership)
        except AmbiguousStateError as e:
            group_id = e.candidates[0]
            logger.warning('Student %s is in multiple groups; using %s',
                           student.name or student.id, group_id)
        if not group_id:
            logger.warning('Skipping group lessons for %s: no active group membership',
                           student.name or student.id)
            return 0

    hour, minute = student.default_slot.hour_minute
    tz = resolve_zone(student.timezone, default_tz)
    lesson_type = LESSON_TYPE_GROUP if group_id else LESSON_TYPE_ONE

    created = 0
    for start in month_occurrences(year, month, student.default_slot.weekday,
                                   hour, minute, tz, include_fifth):
        end = start + timedelta(minutes=duration_minutes)
        if dao.find_duplicate_lesson(student.id, lesson_type, start, end, group_id=group_id):
            continue
        lesson = Lesson(
            type=lesson_type,
            student_id=student.id,
            group_id=group_id,
            start=start,
            end=end,
            status=STATUS_SCHEDULED,
        )
        try:
            dao.create_lesson_unique(lesson.to_dict())
        except ConflictError:
            continue
        created += 1
    return created


def schedule_group_sessions(group, starts, duration_minutes=60, notes=None):
    """Create one lesson per member for each start time. Returns the count."""
    member_ids = unique_ids(group.get('member_ids') or [])
    if not member_ids:
        raise ValidationError('Group has no members')
    if group.get('active') is False:
        raise ValidationError('Group is inactive')

    created = 0
    for start in starts:
        end = start + timedelta(minutes=duration_minutes)
        for student_id in member_ids:
            if dao.find_duplicate_lesson(student_id, LESSON_TYPE_GROUP, start, end,
                                         group_id=group['id']):
                continue
            lesson = Lesson(
                type=LESSON_TYPE_GROUP,
                student_id=student_id,
                group_id=group['id'],
                start=start,
                end=end,
                status=STATUS_SCHEDULED,
                notes=notes,
            )
            try:
                dao.create_lesson_unique(lesson.to_dict())
            except ConflictError:
                continue
            created += 1
    logger.info('Group %s: scheduled %d lesson(s)', group['id'], created)
    return created
