import os, sys, pytest
# Ensure the backend directory is on path so 'quantum_crm' can be imported from a checkout
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
from quantum_crm import create_app, get_db
from quantum_crm.models.authz import Base
# Import all model modules to ensure tables are registered before create_all
import quantum_crm.models.lead  # noqa: F401
import quantum_crm.models.activity  # noqa: F401
from quantum_crm.services.cache import MemoryStorage
from quantum_crm.services.profiles import permission_fetch_breaker


@pytest.fixture(scope='session', autouse=True)
def app_instance():
    os.environ['DATABASE_URL'] = 'sqlite+pysqlite:///:memory:'
    app = create_app({
        'PERMISSION_CACHE_URL': '',
        # fail fast: no sleeping between profile fetch retries
        'PERMISSION_FETCH_RETRIES': 1,
        'PERMISSION_FETCH_BASE_DELAY': 0.0,
    })
    # After app and blueprints are registered, ensure all tables exist
    with app.app_context():
        engine = get_db().get_bind()
        Base.metadata.create_all(engine)
    yield app


@pytest.fixture(autouse=True)
def fresh_permission_cache(app_instance):
    app_instance.extensions['permission_cache_storage'] = MemoryStorage()
    permission_fetch_breaker.reset()
    yield app_instance.extensions['permission_cache_storage']
    get_db().rollback()


@pytest.fixture()
def client(app_instance):
    return app_instance.test_client()
