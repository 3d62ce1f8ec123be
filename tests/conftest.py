from datetime import datetime, timedelta, timezone

import pytest

from app import create_app
from app import firestore_dao as dao
from app.firestore_models import (
    LESSON_TYPE_GROUP,
    PROGRAM_GROUP,
    STATUS_SCHEDULED,
    DefaultSlot,
    Group,
    Lesson,
    Student,
)
from config import TestConfig
from fakes import FakeAuth, FakeFirestore


@pytest.fixture
def db(monkeypatch):
    fake = FakeFirestore()
    monkeypatch.setattr('app.firestore_dao.get_db', lambda: fake)
    return fake


@pytest.fixture
def app(db):
    return create_app(TestConfig)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth(monkeypatch, db):
    fake = FakeAuth()
    monkeypatch.setattr('app.decorators.get_auth', lambda: fake)
    return fake


@pytest.fixture
def admin_headers(auth):
    dao.create_user('admin-1', {'email': 'admin@studio.local', 'role': 'admin', 'active': True})
    auth.add_token('admin-token', 'admin-1', role='admin')
    return {'Authorization': 'Bearer admin-token'}


@pytest.fixture
def portal_headers(auth):
    dao.create_user('parent-1', {'email': 'parent@studio.local', 'role': 'portal', 'active': True})
    auth.add_token('portal-token', 'parent-1')
    return {'Authorization': 'Bearer portal-token'}


@pytest.fixture
def future():
    """A whole-hour start time safely in the future."""
    base = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return base + timedelta(days=7)


@pytest.fixture
def make_student(db):
    def _make(name, program=PROGRAM_GROUP, slot=None, user_id=None, tz=None, active=True):
        student = Student(
            name=name,
            program=program,
            user_id=user_id,
            timezone=tz,
            active=active,
            default_slot=DefaultSlot(*slot) if slot else None,
        )
        return dao.create_student(student.to_dict())
    return _make


@pytest.fixture
def make_group(db):
    counter = {'n': 0}

    def _make(member_ids, name=None, active=True):
        counter['n'] += 1
        created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=counter['n'])
        group = Group(
            name=name or f"Group {counter['n']}",
            member_ids=list(member_ids),
            active=active,
            created_at=created,
            updated_at=created,
        )
        return dao.create_group(group.to_dict())
    return _make


@pytest.fixture
def make_lesson(db):
    def _make(student_id, start, group_id=None, status=STATUS_SCHEDULED, notes=None,
              minutes=60, lesson_type=LESSON_TYPE_GROUP):
        lesson = Lesson(
            type=lesson_type,
            student_id=student_id,
            group_id=group_id,
            start=start,
            end=start + timedelta(minutes=minutes),
            status=status,
            notes=notes,
        )
        return dao.create_lesson(lesson.to_dict())
    return _make
