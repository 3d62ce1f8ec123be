"""
Firestore Data Access Object (DAO) layer.

Route and service modules call functions from this module instead of
querying the database directly. Every read returns plain dicts carrying
an ``id`` key; every write stamps ``created_at``/``updated_at``.
"""

from datetime import datetime, timezone

from google.api_core.exceptions import Conflict
from google.cloud.firestore_v1 import ArrayUnion, FieldFilter

from app.errors import ConflictError
from app.firebase_init import get_db

# Firestore 'in' / 'array_contains_any' filters support max 30 values per query
IN_QUERY_LIMIT = 30
# Firestore batches are limited to 500 writes
BATCH_LIMIT = 500


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _doc_to_dict(doc_snapshot):
    """Convert a Firestore DocumentSnapshot to a dict with 'id' field."""
    if not doc_snapshot.exists:
        return None
    d = doc_snapshot.to_dict()
    d['id'] = doc_snapshot.id
    return d


def _query_to_list(query_ref):
    """Run a query and return a list of dicts."""
    return [_doc_to_dict(doc) for doc in query_ref.stream()]


def _now():
    return datetime.now(timezone.utc)


def _chunks(values, size=IN_QUERY_LIMIT):
    values = list(values)
    for i in range(0, len(values), size):
        yield values[i:i + size]


def _batched_write(refs, apply):
    """Apply ``apply(batch, ref)`` to every ref, committing every 500 writes."""
    batch = get_db().batch()
    count = 0
    for ref in refs:
        apply(batch, ref)
        count += 1
        if count % BATCH_LIMIT == 0:
            batch.commit()
            batch = get_db().batch()
    if count % BATCH_LIMIT != 0:
        batch.commit()
    return count


def _start_key(lesson):
    start = lesson.get('start')
    return start or datetime.min.replace(tzinfo=timezone.utc)


# ========================================================================
# Lessons  (collection: lessons)
# ========================================================================

def lesson_key(student_id, lesson_type, start, end):
    """Composite document ID enforcing one lesson per student/type/time window."""
    return (
        f"{student_id}_{lesson_type}_"
        f"{int(start.timestamp() * 1000)}_{int(end.timestamp() * 1000)}"
    )


def _same_slot(existing, data):
    return (
        existing.get('student_id') == data.get('student_id')
        and existing.get('type') == data.get('type')
        and existing.get('start') == data.get('start')
        and existing.get('end') == data.get('end')
    )


def get_lesson(lesson_id):
    """Get a lesson by ID. Returns dict or None."""
    doc = get_db().collection('lessons').document(lesson_id).get()
    return _doc_to_dict(doc)


def create_lesson(data):
    """Create a lesson with a generated ID. Returns the doc ID."""
    data.setdefault('created_at', _now())
    data.setdefault('updated_at', data['created_at'])
    _, doc_ref = get_db().collection('lessons').add(data)
    return doc_ref.id


def create_lesson_unique(data):
    """Create a student lesson under its composite key.

    Raises ConflictError when a lesson for the same student, type, start and
    end already exists. If the key is taken by a lesson that has since been
    moved to another time, the new lesson falls back to a generated ID.
    """
    if not data.get('student_id'):
        return create_lesson(data)

    data.setdefault('created_at', _now())
    data.setdefault('updated_at', data['created_at'])
    doc_ref = get_db().collection('lessons').document(
        lesson_key(data['student_id'], data['type'], data['start'], data['end'])
    )
    try:
        doc_ref.create(data)
        return doc_ref.id
    except Conflict:
        existing = _doc_to_dict(doc_ref.get())
        if existing is None or _same_slot(existing, data):
            raise ConflictError(
                f"Lesson already exists for student {data['student_id']} at {data['start'].isoformat()}"
            )
    _, doc_ref = get_db().collection('lessons').add(data)
    return doc_ref.id


def update_lesson(lesson_id, data):
    """Update fields on an existing lesson."""
    data.setdefault('updated_at', _now())
    get_db().collection('lessons').document(lesson_id).update(data)


def update_lessons(lesson_ids, data):
    """Apply the same field update to many lessons. Returns the write count."""
    if not lesson_ids:
        return 0
    data = dict(data)
    data.setdefault('updated_at', _now())
    collection = get_db().collection('lessons')
    refs = [collection.document(lesson_id) for lesson_id in dict.fromkeys(lesson_ids)]
    return _batched_write(refs, lambda batch, ref: batch.update(ref, data))


def delete_lesson(lesson_id):
    """Delete a lesson."""
    get_db().collection('lessons').document(lesson_id).delete()


def delete_lessons(lesson_ids):
    """Delete many lessons. Returns the delete count."""
    if not lesson_ids:
        return 0
    collection = get_db().collection('lessons')
    refs = [collection.document(lesson_id) for lesson_id in dict.fromkeys(lesson_ids)]
    return _batched_write(refs, lambda batch, ref: batch.delete(ref))


def find_lessons(lesson_type=None, group_id=None, student_ids=None, status=None,
                 start_from=None, start_before=None):
    """Query lessons by the given filters, sorted by start.

    ``student_ids=None`` means any student; an empty list matches nothing.
    """
    if student_ids is not None and not student_ids:
        return []

    q = get_db().collection('lessons')
    if lesson_type is not None:
        q = q.where(filter=FieldFilter('type', '==', lesson_type))
    if group_id is not None:
        q = q.where(filter=FieldFilter('group_id', '==', group_id))
    if status is not None:
        q = q.where(filter=FieldFilter('status', '==', status))
    if start_from is not None:
        q = q.where(filter=FieldFilter('start', '>=', start_from))
    if start_before is not None:
        q = q.where(filter=FieldFilter('start', '<', start_before))

    if student_ids is None:
        results = _query_to_list(q)
    else:
        results = []
        seen = set()
        for batch in _chunks(dict.fromkeys(student_ids)):
            for lesson in _query_to_list(q.where(filter=FieldFilter('student_id', 'in', batch))):
                if lesson['id'] not in seen:
                    seen.add(lesson['id'])
                    results.append(lesson)
    results.sort(key=_start_key)
    return results


def get_lessons_in_range(start_from, start_before, student_ids=None):
    """All lessons starting in [start_from, start_before), sorted by start."""
    return find_lessons(student_ids=student_ids, start_from=start_from, start_before=start_before)


def find_duplicate_lesson(student_id, lesson_type, start, end, group_id=None, status=None):
    """Find a lesson for the student at exactly this time window.

    When ``group_id`` is given, a match must be linked to that group or not
    linked to any group. Returns dict or None.
    """
    q = (
        get_db().collection('lessons')
        .where(filter=FieldFilter('student_id', '==', student_id))
        .where(filter=FieldFilter('type', '==', lesson_type))
        .where(filter=FieldFilter('start', '==', start))
        .where(filter=FieldFilter('end', '==', end))
    )
    if status is not None:
        q = q.where(filter=FieldFilter('status', '==', status))
    for lesson in _query_to_list(q):
        if group_id is None or lesson.get('group_id') in (None, group_id):
            return lesson
    return None


# ========================================================================
# Groups  (collection: groups)
# ========================================================================

def get_group(group_id):
    """Get a group by ID. Returns dict or None."""
    doc = get_db().collection('groups').document(group_id).get()
    return _doc_to_dict(doc)


def get_groups(active=None):
    """Get groups, optionally only active/inactive ones, sorted by name."""
    q = get_db().collection('groups')
    if active is not None:
        q = q.where(filter=FieldFilter('active', '==', active))
    groups = _query_to_list(q)
    groups.sort(key=lambda g: (g.get('name') or '').lower())
    return groups


def get_active_groups():
    """Active groups in storage order (creation time, then ID)."""
    groups = _query_to_list(
        get_db().collection('groups')
        .where(filter=FieldFilter('active', '==', True))
    )
    groups.sort(key=lambda g: (g.get('created_at') or _now(), g['id']))
    return groups


def get_active_groups_for_students(student_ids):
    """Active groups having any of the given students as a member."""
    results = []
    seen = set()
    for batch in _chunks(dict.fromkeys(student_ids)):
        docs = _query_to_list(
            get_db().collection('groups')
            .where(filter=FieldFilter('active', '==', True))
            .where(filter=FieldFilter('member_ids', 'array_contains_any', batch))
        )
        for group in docs:
            if group['id'] not in seen:
                seen.add(group['id'])
                results.append(group)
    results.sort(key=lambda g: (g.get('created_at') or _now(), g['id']))
    return results


def create_group(data):
    """Create a new group. Returns the generated doc ID."""
    data.setdefault('created_at', _now())
    data.setdefault('updated_at', data['created_at'])
    _, doc_ref = get_db().collection('groups').add(data)
    return doc_ref.id


def update_group(group_id, data):
    """Update fields on an existing group."""
    data.setdefault('updated_at', _now())
    get_db().collection('groups').document(group_id).update(data)


def add_group_members(group_id, member_ids):
    """Add members with set semantics; existing members are left in place."""
    get_db().collection('groups').document(group_id).update({
        'member_ids': ArrayUnion(list(member_ids)),
        'updated_at': _now(),
    })


# ========================================================================
# Students  (collection: students)
# ========================================================================

def get_student(student_id):
    """Get a student by ID. Returns dict or None."""
    doc = get_db().collection('students').document(student_id).get()
    return _doc_to_dict(doc)


def create_student(data):
    """Create a new student. Returns the generated doc ID."""
    data.setdefault('created_at', _now())
    _, doc_ref = get_db().collection('students').add(data)
    return doc_ref.id


def get_active_students():
    """Get all active students."""
    return _query_to_list(
        get_db().collection('students')
        .where(filter=FieldFilter('active', '==', True))
    )


def get_students_by_user(user_id):
    """Students owned by a portal account."""
    return _query_to_list(
        get_db().collection('students')
        .where(filter=FieldFilter('user_id', '==', user_id))
    )


def get_students_by_ids(student_ids):
    """Fetch multiple students by ID. Returns list of dicts."""
    results = []
    for student_id in dict.fromkeys(student_ids):
        student = get_student(student_id)
        if student:
            results.append(student)
    return results


# ========================================================================
# Users  (collection: users)
# ========================================================================

def get_user(uid):
    """Get a user document by UID. Returns dict or None."""
    doc = get_db().collection('users').document(uid).get()
    return _doc_to_dict(doc)


def create_user(uid, data):
    """Create a user document with the given UID as the document ID."""
    data.setdefault('created_at', _now())
    get_db().collection('users').document(uid).set(data)


# ========================================================================
# Settings  (collection: settings)
# ========================================================================

def get_notification_settings():
    """Get the studio notification settings document. Returns dict or None."""
    doc = get_db().collection('settings').document('notifications').get()
    return _doc_to_dict(doc)


def save_notification_settings(data):
    """Create or replace the studio notification settings document."""
    data.setdefault('updated_at', _now())
    get_db().collection('settings').document('notifications').set(data, merge=True)
