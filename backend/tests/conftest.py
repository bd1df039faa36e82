"""
Pytest fixtures for the atelier backend tests.

Provides an in-memory database, seeded roles/permissions, a branch with
its cashbox, and helpers that log users in and build clothes and orders.
"""

import io
from datetime import timedelta
from itertools import count

import pytest
from app import create_app
from app.extensions import db
from app.models import User, ClothType, Employee, EmployeeEntityAssignment
from app.models.entities import ENTITY_BRANCH, ENTITY_FACTORY, ENTITY_WORKSHOP
from app.services.auth_service import create_user, create_default_roles
from app.services import permission_service, entity_service, cloth_service
from app.time_utils import today


PASSWORD = "Password123!"

_seq = count(1)


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PRIVATE_STORAGE_PATH': str(tmp_path_factory.mktemp("private")),
        'RENT_BUFFER_DAYS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def setup_roles(db_session):
    """Setup default roles and permissions."""
    create_default_roles()
    db_session.commit()
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions()


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/v1/auth/login', json={'email': email, 'password': password})
    assert response.status_code == 200, response.get_json()
    return response.get_json()['token']


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def make_user(db_session, setup_roles):
    """
    Create a user with one role.

    With `assignments` the user also gets an Employee record assigned to
    each (entity_type, entity_id); use the `login` fixture for headers.
    """
    def _make(role: str, assignments: list[tuple[str, int]] | None = None, email: str | None = None) -> User:
        n = next(_seq)
        user = create_user(f"{role.title()} {n}", email or f"{role}{n}@atelier.test", PASSWORD, roles=[role])
        if assignments is not None:
            employee = Employee(user_id=user.id, employee_code=f"EMP-{n:04d}", hire_date=today())
            db_session.add(employee)
            db_session.flush()
            for entity_type, entity_id in assignments:
                employee.entity_assignments.append(
                    EmployeeEntityAssignment(entity_type=entity_type, entity_id=entity_id, is_primary=True)
                )
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def login(client):
    def _login(user: User) -> dict:
        return auth_headers(get_auth_token(client, user.email))
    return _login


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin")


@pytest.fixture(scope='function')
def admin_headers(admin, login):
    return login(admin)


@pytest.fixture(scope='function')
def make_entity(db_session):
    def _make(entity_type: str, **fields):
        n = next(_seq)
        code_field = entity_service.ENTITY_CODE_FIELDS[entity_type]
        payload = {"name": f"{entity_type.title()} {n}", code_field: f"{entity_type[:2].upper()}-{n:03d}"}
        payload.update(fields)
        entity = entity_service.create_entity(entity_type, payload)
        db_session.commit()
        return entity
    return _make


@pytest.fixture(scope='function')
def branch(make_entity):
    """Branch with inventory and a cashbox holding 1000.00."""
    return make_entity(ENTITY_BRANCH, initial_balance=1000)


@pytest.fixture(scope='function')
def other_branch(make_entity):
    return make_entity(ENTITY_BRANCH, initial_balance=0)


@pytest.fixture(scope='function')
def factory(make_entity):
    return make_entity(ENTITY_FACTORY, max_capacity=2)


@pytest.fixture(scope='function')
def workshop(make_entity, branch):
    return make_entity(ENTITY_WORKSHOP, branch_id=branch.id)


@pytest.fixture(scope='function')
def cloth_type(db_session):
    cloth_type = ClothType(code="WD", name="Wedding dress")
    db_session.add(cloth_type)
    db_session.commit()
    return cloth_type


@pytest.fixture(scope='function')
def make_cloth(db_session, cloth_type, branch):
    def _make(entity_type: str = ENTITY_BRANCH, entity_id: int | None = None, **fields):
        n = next(_seq)
        payload = {
            "code": f"CL-{n:04d}",
            "name": f"Dress {n}",
            "cloth_type_id": cloth_type.id,
            "entity_type": entity_type,
            "entity_id": entity_id or branch.id,
        }
        payload.update(fields)
        cloth = cloth_service.create_cloth(payload)
        db_session.commit()
        return cloth
    return _make


@pytest.fixture(scope='function')
def client_payload():
    def _payload(**overrides) -> dict:
        n = next(_seq)
        data = {
            "first_name": "Mona",
            "last_name": f"Client{n}",
            "national_id": f"{29901010000000 + n:014d}",
            "phones": [{"phone": f"0100{n:07d}", "type": "mobile"}],
        }
        data.update(overrides)
        return data
    return _payload


@pytest.fixture(scope='function')
def rent_item():
    def _item(cloth, *, delivery=None, days: int = 3, price: float = 500, paid: float = 0) -> dict:
        delivery = delivery or today() + timedelta(days=10)
        return {
            "cloth_id": cloth.id,
            "type": "rent",
            "price": price,
            "paid": paid,
            "delivery_date": delivery.isoformat(),
            "days_of_rent": days,
        }
    return _item


@pytest.fixture(scope='function')
def create_order(client, branch, client_payload):
    """POST an order at the branch for a new client; returns the response."""
    def _create(headers: dict, items: list[dict], **extra):
        body = {
            "entity_type": ENTITY_BRANCH,
            "entity_id": branch.id,
            "existing_client": False,
            "client": client_payload(),
            "items": items,
        }
        body.update(extra)
        return client.post("/api/v1/orders", json=body, headers=headers)
    return _create


@pytest.fixture(scope='function')
def photo():
    """Build a small fake JPEG upload tuple for multipart requests."""
    def _photo(name: str = "receipt.jpg") -> tuple:
        return (io.BytesIO(b"\xff\xd8\xff\xe0 fake jpeg body"), name)
    return _photo


@pytest.fixture(scope='function')
def money_custody(client):
    """POST a money custody on an order; returns the response."""
    def _create(headers: dict, order_id: int, value: float = 300):
        return client.post(
            f"/api/v1/orders/{order_id}/custody",
            json={"type": "money", "value": value, "description": "Cash deposit"},
            headers=headers,
        )
    return _create


@pytest.fixture(scope='function')
def return_custody(client, photo):
    """Settle a custody with one acknowledgement photo; returns the response."""
    def _return(headers: dict, custody_id: int, action: str = "returned_to_user", **fields):
        data = {"custody_action": action, "acknowledgement_receipt_photos": [photo()]}
        data.update(fields)
        return client.post(
            f"/api/v1/custody/{custody_id}/return",
            data=data,
            headers=headers,
            content_type="multipart/form-data",
        )
    return _return
