import os, sys, pytest
# Ensure backend directory is on path so 'repair_tracker' and 'tests' can be imported
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from sqlalchemy import delete
from repair_tracker import create_app, get_db, limiter
from repair_tracker.models.base import Base
# Import all model modules to ensure tables are registered before create_all
import repair_tracker.models.customer  # noqa: F401
import repair_tracker.models.repair  # noqa: F401
import repair_tracker.models.status_change  # noqa: F401
import repair_tracker.models.staff  # noqa: F401
import repair_tracker.models.audit  # noqa: F401
from repair_tracker.models.customer import Customer
from repair_tracker.models.repair import Repair
from repair_tracker.models.status_change import StatusChangeLog
from repair_tracker.models.audit import AuditLog
from repair_tracker.models.staff import StaffUser
from tests.test_utils_seed import RecordingNotifier, FakeClock

NOTIFIER = RecordingNotifier()
CLOCK = FakeClock()


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    app = create_app({
        'DATABASE_URL': 'sqlite+pysqlite:///:memory:',
        'JWT_SECRET_KEY': 'test-secret-key-with-enough-length-for-hs256',
        'NOTIFIER': NOTIFIER,
        'CLOCK': CLOCK,
        'LOCK_TIMEOUT_SECONDS': 1,
        'LOG_LEVEL': 'DEBUG',
    })
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture(autouse=True)
def clean_state(app_instance):
    """Each test starts with no repairs or audit rows, a quiet notifier, a reset clock and empty caches."""
    session = get_db()
    session.execute(delete(StatusChangeLog))
    session.execute(delete(Repair))
    session.execute(delete(Customer))
    session.execute(delete(AuditLog))
    session.execute(delete(StaffUser))
    session.commit()
    session.expunge_all()
    NOTIFIER.reset()
    CLOCK.reset()
    app_instance.extensions['repair_views'].cache.clear()
    limiter.reset()
    yield


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()


@pytest.fixture()
def app_context(app_instance):
    with app_instance.app_context():
        yield app_instance


@pytest.fixture()
def notifier():
    return NOTIFIER


@pytest.fixture()
def clock():
    return CLOCK
