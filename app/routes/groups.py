import logging

from flask import Blueprint, jsonify
from google.api_core.exceptions import GoogleAPICallError, RetryError

from app import firestore_dao as dao
from app.decorators import ROLE_ADMIN, role_required
from app.errors import StudioError, ValidationError
from app.firestore_models import Group
from app.forms import AddMembersForm, GroupForm, ScheduleGroupForm
from app.services.membership_sync import MembershipSyncResult, diff_members, sync_membership_change
from app.services.scheduling import schedule_group_sessions

logger = logging.getLogger(__name__)

bp = Blueprint('groups', __name__, url_prefix='/groups')


def _require_students(student_ids):
    found = {s['id'] for s in dao.get_students_by_ids(student_ids)}
    missing = [sid for sid in student_ids if sid not in found]
    if missing:
        raise ValidationError('Unknown student(s)', details={'member_ids': missing})


def _sync_members(group, before_ids, added, removed):
    """Run the lesson sync; the saved membership stands even if it fails."""
    try:
        return sync_membership_change(group, before_ids, added, removed)
    except (StudioError, GoogleAPICallError, RetryError):
        logger.exception('Lesson sync failed for group %s; backfill will repair it', group['id'])
        return MembershipSyncResult()


def _membership_response(group, added, removed, sync):
    return jsonify({
        'group': Group.from_dict(group).to_api(),
        'meta': {
            'created_lessons': sync.created_count,
            'removed_lessons': sync.removed_count,
            'added_members': added,
            'removed_members': removed,
        },
    })


@bp.route('', methods=['GET'])
@role_required(ROLE_ADMIN)
def list_groups():
    groups = dao.get_groups(active=True)
    return jsonify([Group.from_dict(g).to_api() for g in groups])


@bp.route('', methods=['POST'])
@role_required(ROLE_ADMIN)
def create_group():
    form = GroupForm.from_request()
    member_ids = form.member_ids.data or []
    _require_students(member_ids)

    group = Group(
        name=form.name.data.strip(),
        description=form.description.data or None,
        member_ids=member_ids,
    )
    group_id = dao.create_group(group.to_dict())
    logger.info('Created group %s with %d member(s)', group_id, len(member_ids))
    return jsonify(Group.from_dict(dao.get_group(group_id)).to_api()), 201


@bp.route('/<group_id>', methods=['PUT'])
@role_required(ROLE_ADMIN)
def update_group(group_id):
    before = dao.get_group(group_id)
    if not before:
        return jsonify({'error': 'Group not found'}), 404

    form = GroupForm.from_request()
    member_ids = form.member_ids.data or []
    before_ids = before.get('member_ids') or []
    added, removed = diff_members(before_ids, member_ids)
    _require_students(added)

    dao.update_group(group_id, {
        'name': form.name.data.strip(),
        'description': form.description.data or None,
        'member_ids': member_ids,
    })
    group = dao.get_group(group_id)

    sync = _sync_members(group, before_ids, added, removed)
    return _membership_response(group, added, removed, sync)


@bp.route('/<group_id>/add-members', methods=['POST'])
@role_required(ROLE_ADMIN)
def add_members(group_id):
    before = dao.get_group(group_id)
    if not before:
        return jsonify({'error': 'Group not found'}), 404

    form = AddMembersForm.from_request()
    before_ids = before.get('member_ids') or []
    added, _ = diff_members(before_ids, before_ids + form.member_ids.data)
    _require_students(added)

    if added:
        dao.add_group_members(group_id, added)
    group = dao.get_group(group_id)

    sync = _sync_members(group, before_ids, added, [])
    return _membership_response(group, added, [], sync)


@bp.route('/<group_id>/schedule', methods=['POST'])
@role_required(ROLE_ADMIN)
def schedule(group_id):
    group = dao.get_group(group_id)
    if not group:
        return jsonify({'error': 'Group not found'}), 404

    form = ScheduleGroupForm.from_request()
    created = schedule_group_sessions(
        group,
        form.dates.data,
        duration_minutes=form.duration_minutes.data or 60,
        notes=form.notes.data or None,
    )
    return jsonify({'ok': True, 'created': created})


@bp.route('/<group_id>', methods=['DELETE'])
@role_required(ROLE_ADMIN)
def delete_group(group_id):
    group = dao.get_group(group_id)
    if not group:
        return jsonify({'error': 'Group not found'}), 404

    dao.update_group(group_id, {'active': False})
    logger.info('Deactivated group %s', group_id)
    return jsonify({'ok': True})
