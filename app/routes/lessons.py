import logging
import re
from datetime import datetime, timedelta, timezone

from flask import Blueprint, current_app, jsonify, request

from app import firestore_dao as dao
from app.decorators import ROLE_ADMIN, ROLE_PORTAL, get_current_user, role_required
from app.errors import ValidationError
from app.firestore_models import LESSON_TYPE_DEMO, STATUS_SCHEDULED, Lesson
from app.forms import DOC_ID_RE, GenerateMonthForm, LessonCreateForm, LessonUpdateForm
from app.services import lesson_propagation
from app.services.scheduling import generate_month, resolve_zone

logger = logging.getLogger(__name__)

bp = Blueprint('lessons', __name__, url_prefix='/lessons')

VIEWS = ('week', 'month')
DATE_RE = re.compile(r'^\d{4}-\d{2}-\d{2}$')


def _view_range(view, start_str, tz):
    """UTC [from, to) for a week or month view starting on a local date."""
    if not DATE_RE.match(start_str):
        raise ValidationError('start must be YYYY-MM-DD')
    try:
        day = datetime.strptime(start_str, '%Y-%m-%d')
    except ValueError:
        raise ValidationError('start must be YYYY-MM-DD')
    local_from = day.replace(tzinfo=tz)
    if view == 'week':
        local_to = local_from + timedelta(days=7)
    elif day.month == 12:
        local_to = datetime(day.year + 1, 1, 1, tzinfo=tz)
    else:
        local_to = datetime(day.year, day.month + 1, 1, tzinfo=tz)
    return local_from.astimezone(timezone.utc), local_to.astimezone(timezone.utc)


@bp.route('', methods=['GET'])
@role_required(ROLE_ADMIN, ROLE_PORTAL)
def list_lessons():
    user = get_current_user()
    view = request.args.get('view', 'month')
    if view not in VIEWS:
        raise ValidationError('view must be week or month')
    tz = resolve_zone(current_app.config.get('STUDIO_TIMEZONE'))
    start_from, start_before = _view_range(view, request.args.get('start', ''), tz)

    requested = request.args.get('student_id', '').strip()
    if requested and not DOC_ID_RE.match(requested):
        raise ValidationError('Invalid student_id')

    student_ids = None
    if not user.is_admin():
        mine = [s['id'] for s in dao.get_students_by_user(user.uid)]
        if not mine:
            return jsonify([])
        if requested and requested not in mine:
            return jsonify({'error': 'Forbidden'}), 403
        student_ids = [requested] if requested else mine
    elif requested:
        student_ids = [requested]

    lessons = dao.get_lessons_in_range(start_from, start_before, student_ids=student_ids)
    return jsonify([Lesson.from_dict(l).to_api() for l in lessons])


@bp.route('', methods=['POST'])
@role_required(ROLE_ADMIN)
def create_lesson():
    form = LessonCreateForm.from_request()
    lesson = Lesson(
        type=form.type.data,
        start=form.start.data,
        end=form.end.data,
        status=STATUS_SCHEDULED,
        notes=form.notes.data or None,
    )

    if lesson.type == LESSON_TYPE_DEMO:
        lesson.demo_name = form.demo_name.data.strip()
        lesson_id = dao.create_lesson(lesson.to_dict())
    else:
        if not dao.get_student(form.student_id.data):
            return jsonify({'error': 'Student not found'}), 404
        if form.group_id.data and not dao.get_group(form.group_id.data):
            return jsonify({'error': 'Group not found'}), 404
        lesson.student_id = form.student_id.data
        lesson.group_id = form.group_id.data or None
        lesson_id = dao.create_lesson_unique(lesson.to_dict())

    logger.info('Created %s lesson %s', lesson.type, lesson_id)
    return jsonify(Lesson.from_dict(dao.get_lesson(lesson_id), lesson_id).to_api()), 201


@bp.route('/<lesson_id>', methods=['PUT'])
@role_required(ROLE_ADMIN)
def update_lesson(lesson_id):
    form = LessonUpdateForm.from_request()
    lesson, propagated = lesson_propagation.update_lesson(lesson_id, form.changes())
    if propagated:
        logger.info('Lesson %s update applied to %d sibling(s)', lesson_id, propagated)
    return jsonify(Lesson.from_dict(lesson).to_api())


@bp.route('/<lesson_id>', methods=['DELETE'])
@role_required(ROLE_ADMIN)
def delete_lesson(lesson_id):
    if not dao.get_lesson(lesson_id):
        return jsonify({'error': 'Lesson not found'}), 404
    dao.delete_lesson(lesson_id)
    return jsonify({'ok': True})


@bp.route('/generate-month', methods=['POST'])
@role_required(ROLE_ADMIN)
def generate():
    form = GenerateMonthForm.from_request()
    created = generate_month(
        form.year.data,
        form.month.data,
        form.duration_minutes.data,
        include_fifth=form.include_fifth.data,
        default_tz=current_app.config.get('STUDIO_TIMEZONE', 'UTC'),
    )
    return jsonify({'ok': True, 'created': created})
