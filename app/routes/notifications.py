from dataclasses import replace
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify

from app.decorators import ROLE_ADMIN, role_required
from app.forms import NotificationSettingsForm
from app.services import reminders

bp = Blueprint('notifications', __name__, url_prefix='/notifications')


@bp.route('/settings', methods=['GET'])
@role_required(ROLE_ADMIN)
def get_settings():
    return jsonify(reminders.load_notification_settings().to_dict())


@bp.route('/settings', methods=['PUT'])
@role_required(ROLE_ADMIN)
def update_settings():
    form = NotificationSettingsForm.from_request()
    changes = {
        name: form[name].data
        for name in ('enabled', 'lead_minutes', 'quiet_start', 'quiet_end')
        if form.present(name)
    }
    settings = replace(reminders.load_notification_settings(), **changes)
    reminders.save_notification_settings(settings)
    return jsonify(settings.to_dict())


@bp.route('/due-reminders', methods=['GET'])
@role_required(ROLE_ADMIN)
def due_reminders():
    now = datetime.now(timezone.utc)
    plans = reminders.plan_due_reminders(
        now=now,
        default_tz=current_app.config.get('STUDIO_TIMEZONE', 'UTC'),
        window_minutes=current_app.config.get('REMINDER_WINDOW_MINUTES', 30),
    )
    return jsonify({
        'now': now.isoformat(),
        'reminders': [p.to_api() for p in plans],
    })
