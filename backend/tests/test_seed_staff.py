import importlib.util
import os
from repair_tracker import get_db
from repair_tracker.models.staff import StaffUser

SCRIPT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'scripts', 'seed_staff.py'))


def _load_script():
    module_spec = importlib.util.spec_from_file_location('seed_staff', SCRIPT)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module


def test_ensure_staff_user_idempotent(app_context, capsys):
    seed = _load_script()
    session = get_db()
    user, created = seed.ensure_staff_user(session, ' Seeded@Example.com ', 'Seeded', 'staff', 'pw')
    session.commit()
    assert created is True
    assert user.email == 'seeded@example.com'
    again, created_again = seed.ensure_staff_user(session, 'seeded@example.com', 'Other', 'admin', 'x')
    assert created_again is False
    assert again.id == user.id and again.role == 'staff'
    assert session.query(StaffUser).filter_by(email='seeded@example.com').count() == 1
    seed.print_staff(session)
    assert 'seeded@example.com' in capsys.readouterr().out


def test_parse_args_defaults():
    seed = _load_script()
    args = seed.parse_args(['--email', 'desk@example.com', '--role', 'staff', '--dry-run'])
    assert args.email == 'desk@example.com'
    assert args.role == 'staff'
    assert args.dry_run is True and args.list is False
