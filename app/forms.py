import re

from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, Field, IntegerField, StringField
from wtforms.fields.core import UnboundField
from wtforms.validators import (AnyOf, DataRequired, InputRequired, Length,
                                NumberRange, Optional, ValidationError as FieldError)

from app.errors import ValidationError
from app.firestore_models import LESSON_STATUSES, LESSON_TYPES, LESSON_TYPE_DEMO, parse_datetime

DOC_ID_RE = re.compile(r'^[\w-]{1,128}$')


class TextField(StringField):
    """String field that refuses numbers, booleans and other JSON types."""

    def process_formdata(self, valuelist):
        if valuelist and valuelist[0] is not None and not isinstance(valuelist[0], str):
            raise ValueError(self.gettext('Not a valid string value.'))
        super().process_formdata(valuelist)


class ListField(Field):
    """Base for fields that take a JSON array."""


class IdListField(ListField):
    """List of document IDs, deduplicated in order."""

    def process_formdata(self, valuelist):
        ids = []
        for value in valuelist:
            if value in (None, ''):
                continue
            value = str(value)
            if not DOC_ID_RE.match(value):
                raise ValueError(self.gettext('Not a valid id.'))
            if value not in ids:
                ids.append(value)
        self.data = ids


class IsoDateTimeField(Field):
    """ISO-8601 timestamp, converted to an aware UTC datetime."""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ''):
            self.data = None
            return
        self.data = parse_datetime(str(valuelist[0]))
        if self.data is None:
            raise ValueError(self.gettext('Not a valid ISO datetime value.'))


class IsoDateTimeListField(ListField):

    def process_formdata(self, valuelist):
        values = []
        for raw in valuelist:
            value = parse_datetime(str(raw)) if raw not in (None, '') else None
            if value is None:
                raise ValueError(self.gettext('Not a valid ISO datetime value.'))
            values.append(value)
        self.data = values


def doc_id(form, field):
    if field.data and not DOC_ID_RE.match(str(field.data)):
        raise FieldError('Not a valid id.')


class ApiForm(FlaskForm):
    """Form bound to the JSON request body."""

    class Meta:
        csrf = False

    @classmethod
    def from_request(cls):
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValidationError('Request body must be a JSON object')
        cls.check_shapes(payload)
        form = cls(formdata=MultiDict(payload))
        if not form.validate():
            raise ValidationError('Invalid request', details=form.errors)
        return form

    @classmethod
    def check_shapes(cls, payload):
        """Arrays only for list fields, no nested objects anywhere."""
        errors = {}
        for name, value in payload.items():
            unbound = getattr(cls, name, None)
            if not isinstance(unbound, UnboundField):
                continue
            wants_list = issubclass(unbound.field_class, ListField)
            if isinstance(value, dict) or isinstance(value, list) != wants_list:
                errors[name] = ['Must be a list.' if wants_list else 'Must be a single value.']
        if errors:
            raise ValidationError('Invalid request', details=errors)

    def present(self, name):
        """Whether the field was sent in the request body at all."""
        return bool(self[name].raw_data)


class GroupForm(ApiForm):
    name = TextField('name', validators=[DataRequired(message='name is required'), Length(max=120)])
    description = TextField('description', validators=[Optional(), Length(max=2000)])
    member_ids = IdListField('member_ids')


class AddMembersForm(ApiForm):
    member_ids = IdListField('member_ids')

    def validate_member_ids(self, field):
        if not field.data:
            raise FieldError('At least one member is required.')


class ScheduleGroupForm(ApiForm):
    dates = IsoDateTimeListField('dates')
    duration_minutes = IntegerField('duration_minutes', default=60,
                                    validators=[Optional(), NumberRange(min=15, max=240)])
    notes = TextField('notes', validators=[Optional(), Length(max=2000)])

    def validate_dates(self, field):
        if not field.data:
            raise FieldError('At least one date is required.')


class LessonCreateForm(ApiForm):
    type = TextField('type', validators=[DataRequired(), AnyOf(LESSON_TYPES)])
    student_id = TextField('student_id', validators=[doc_id])
    group_id = TextField('group_id', validators=[Optional(), doc_id])
    demo_name = TextField('demo_name', validators=[Length(max=200)])
    start = IsoDateTimeField('start', validators=[InputRequired()])
    end = IsoDateTimeField('end', validators=[InputRequired()])
    notes = TextField('notes', validators=[Optional(), Length(max=2000)])

    def validate_demo_name(self, field):
        if self.type.data == LESSON_TYPE_DEMO and not field.data:
            raise FieldError('demo_name is required for demo lessons.')

    def validate_student_id(self, field):
        if self.type.data != LESSON_TYPE_DEMO and not field.data:
            raise FieldError('student_id is required.')

    def validate_end(self, field):
        if self.start.data and field.data and field.data <= self.start.data:
            raise FieldError('end must be after start.')


class LessonUpdateForm(ApiForm):
    start = IsoDateTimeField('start', validators=[Optional()])
    end = IsoDateTimeField('end', validators=[Optional()])
    status = TextField('status', validators=[Optional(), AnyOf(LESSON_STATUSES)])
    notes = TextField('notes', validators=[Optional(), Length(max=2000)])

    def changes(self):
        """Only the shared fields that were actually sent."""
        changes = {}
        for name in ('start', 'end', 'status'):
            if self[name].data:
                changes[name] = self[name].data
        if self.present('notes'):
            changes['notes'] = self.notes.data
        return changes


class GenerateMonthForm(ApiForm):
    year = IntegerField('year', validators=[InputRequired(), NumberRange(min=2000, max=2100)])
    month = IntegerField('month', validators=[InputRequired(), NumberRange(min=1, max=12)])
    duration_minutes = IntegerField('duration_minutes',
                                    validators=[InputRequired(), NumberRange(min=15, max=180)])
    include_fifth = BooleanField('include_fifth', default=False)


class NotificationSettingsForm(ApiForm):
    enabled = BooleanField('enabled')
    lead_minutes = IntegerField('lead_minutes', validators=[Optional(), NumberRange(min=0, max=7 * 24 * 60)])
    quiet_start = IntegerField('quiet_start', validators=[Optional(), NumberRange(min=0, max=23)])
    quiet_end = IntegerField('quiet_end', validators=[Optional(), NumberRange(min=0, max=23)])
