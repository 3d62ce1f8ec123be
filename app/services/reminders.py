"""
Lesson reminder planning.

Works out which lessons are due a reminder right now, honouring the
studio's lead time and quiet hours in each student's timezone. Sending the
push notifications is left to the external sender that polls this plan.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from app import firestore_dao as dao
from app.firestore_models import STATUS_SCHEDULED, NotificationSettings
from app.services.scheduling import resolve_zone

logger = logging.getLogger(__name__)

LOOKBACK = timedelta(hours=1)
HORIZON = timedelta(hours=30)


@dataclass(frozen=True)
class ReminderPlan:
    lesson_id: str
    student_id: str
    user_id: str
    lesson_start: datetime
    send_at: datetime

    @property
    def key(self):
        """Stable per lesson and send time; the same reminder keeps it across polls."""
        return f'{self.lesson_id}:{self.send_at.isoformat()}'

    def to_api(self):
        return {
            'key': self.key,
            'lesson_id': self.lesson_id,
            'student_id': self.student_id,
            'user_id': self.user_id,
            'lesson_start': self.lesson_start.isoformat(),
            'send_at': self.send_at.isoformat(),
        }


def load_notification_settings() -> NotificationSettings:
    return NotificationSettings.from_dict(dao.get_notification_settings())


def save_notification_settings(settings: NotificationSettings) -> NotificationSettings:
    dao.save_notification_settings(settings.to_dict())
    return settings


def is_in_quiet_hours(hour, quiet_start, quiet_end):
    if quiet_start == quiet_end:
        return False  # disabled
    if quiet_start < quiet_end:
        return quiet_start <= hour < quiet_end
    # spans midnight (e.g. 22 -> 7)
    return hour >= quiet_start or hour < quiet_end


def adjust_for_quiet_hours(target, quiet_start, quiet_end):
    """Move a local send time out of quiet hours to the next quiet-hours end."""
    if not is_in_quiet_hours(target.hour, quiet_start, quiet_end):
        return target
    wake = target.replace(hour=quiet_end, minute=0, second=0, microsecond=0)
    if quiet_start < quiet_end:
        return wake if target.hour < quiet_end else wake + timedelta(days=1)
    return wake + timedelta(days=1) if target.hour >= quiet_start else wake


def reminder_send_time(lesson_start, settings, tz):
    """UTC time the reminder for a lesson starting at ``lesson_start`` goes out."""
    local_start = lesson_start.astimezone(tz)
    target = local_start - timedelta(minutes=settings.lead_minutes)
    send_local = adjust_for_quiet_hours(target, settings.quiet_start, settings.quiet_end)
    return send_local.astimezone(timezone.utc)


def plan_due_reminders(now=None, settings: Optional[NotificationSettings] = None,
                       default_tz='UTC', window_minutes=30) -> List[ReminderPlan]:
    """Reminders whose send window ``[send_at, send_at + window)`` contains now.

    Nothing is recorded here, so every poll inside the window returns the
    same reminder again. The sender dedups on ``ReminderPlan.key``.
    """
    now = now or datetime.now(timezone.utc)
    settings = settings or load_notification_settings()
    if not settings.enabled:
        return []

    lessons = dao.find_lessons(
        status=STATUS_SCHEDULED,
        start_from=now - LOOKBACK,
        start_before=now + HORIZON + timedelta(microseconds=1),
    )
    student_ids = [l['student_id'] for l in lessons if l.get('student_id')]
    students = {s['id']: s for s in dao.get_students_by_ids(student_ids)}
    users = {}
    window = timedelta(minutes=window_minutes)

    plans = []
    for lesson in lessons:
        student = students.get(lesson.get('student_id'))
        if not student or not student.get('user_id'):
            continue
        user_id = student['user_id']
        if user_id not in users:
            users[user_id] = dao.get_user(user_id)
        user = users[user_id]
        if not user or user.get('active') is False:
            continue
        if (user.get('preferences') or {}).get('lesson_reminders') is False:
            continue

        tz = resolve_zone(student.get('timezone'), default_tz)
        send_at = reminder_send_time(lesson['start'], settings, tz)
        if send_at <= now < send_at + window:
            plans.append(ReminderPlan(
                lesson_id=lesson['id'],
                student_id=student['id'],
                user_id=user_id,
                lesson_start=lesson['start'],
                send_at=send_at,
            ))

    logger.info('Reminder plan: %d of %d lesson(s) due', len(plans), len(lessons))
    return plans
