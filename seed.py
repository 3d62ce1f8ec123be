from app import create_app
from app.firebase_init import get_auth
from app import firestore_dao as dao
from app.firestore_models import (
    PROGRAM_GROUP,
    PROGRAM_ONE_ON_ONE,
    DefaultSlot,
    Group,
    Student,
)


def seed_database():
    app = create_app()
    with app.app_context():
        auth = get_auth()

        password = 'password123'

        if dao.get_active_students():
            print("Students already exist, skipping seed.")
            return

        print("Creating users...")

        def create_firebase_user(email, display_name, role):
            try:
                fb_user = auth.create_user(email=email, password=password, display_name=display_name)
            except auth.EmailAlreadyExistsError:
                fb_user = auth.get_user_by_email(email)
            uid = fb_user.uid
            dao.create_user(uid, {
                'email': email,
                'full_name': display_name,
                'role': role,
                'active': True,
                'preferences': {'lesson_reminders': True},
            })
            auth.set_custom_user_claims(uid, {'role': role})
            return uid

        create_firebase_user('admin@studio.local', 'Studio Admin', 'admin')
        parent1_uid = create_firebase_user('parent1@studio.local', 'Parent One', 'portal')
        parent2_uid = create_firebase_user('parent2@studio.local', 'Parent Two', 'portal')

        print("Creating students...")
        students = [
            ('Alice Zhou', parent1_uid, PROGRAM_ONE_ON_ONE, DefaultSlot(weekday=2, time='16:30')),
            ('Bob Singh', parent1_uid, PROGRAM_GROUP, DefaultSlot(weekday=6, time='10:00')),
            ('Chloe Martin', parent2_uid, PROGRAM_GROUP, DefaultSlot(weekday=6, time='10:00')),
            ('Dev Patel', parent2_uid, PROGRAM_ONE_ON_ONE, DefaultSlot(weekday=4, time='17:00')),
        ]
        student_ids = {}
        for name, user_id, program, slot in students:
            student = Student(
                name=name,
                user_id=user_id,
                program=program,
                timezone='America/Halifax',
                default_slot=slot,
            )
            student_ids[name] = dao.create_student(student.to_dict())

        print("Creating groups...")
        dao.create_group(Group(
            name='Saturday Beginners',
            description='Weekly beginner group lesson',
            member_ids=[student_ids['Bob Singh'], student_ids['Chloe Martin']],
        ).to_dict())

        print("\n" + "=" * 60)
        print("    Test accounts")
        print("=" * 60)
        print("\n[admin]")
        print("  email: admin@studio.local")
        print("\n[portal]")
        print("  parent1@studio.local (Alice, Bob)")
        print("  parent2@studio.local (Chloe, Dev)")
        print(f"  password: {password}")
        print("\nRun POST /lessons/generate-month to create the first month of lessons.")


if __name__ == '__main__':
    seed_database()
