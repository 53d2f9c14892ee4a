import fnmatch
import json
import os
import time
from decimal import Decimal
from functools import partial

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.api.deps import get_gateway_factories
from storefront.celery_worker import celery_app
from storefront.data import models
from storefront.data.database import Base, get_db
from storefront.domain.schemas import ProcessPaymentIn
from storefront.domain.types import GatewayProvider, PaymentState
from storefront.gateways.base import (
    CHARGE_CARD,
    CREATE_CARD_TOKEN,
    FIND_BY_REFERENCE,
    GET_BANKS,
    PROCESS_PSE_PAYMENT,
    VERIFY_TRANSACTION,
    Bank,
    CardToken,
    PaymentGateway,
    PaymentResult,
)
from storefront.gateways.gou import GouGateway
from storefront.gateways.registry import GatewayRegistry
from storefront.main import create_app
from storefront.repos.catalog_repo import CatalogRepo
from storefront.services.cart_service import CartService
from storefront.services.cart_session_manager import CartSessionManager
from storefront.services.checkout_service import CheckoutService
from storefront.services.lock_service import LockService
from storefront.services.payment_service import PaymentService
from storefront.services.session_store import SessionStore
from storefront.utils.security import hash_password

celery_app.conf.update(task_always_eager=True)


class InMemoryStore(SessionStore):
    """SessionStore na slowniku, z TTL liczonym zegarem procesu."""

    def __init__(self):
        super().__init__(url="memory://")
        self.data = {}

    def init(self) -> None:
        pass

    def shutdown(self) -> None:
        pass

    def _alive(self, key):
        entry = self.data.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and expires <= time.monotonic():
            del self.data[key]
            return None
        return entry

    def get(self, key):
        entry = self._alive(key)
        return json.loads(entry[0]) if entry else None

    def set(self, key, value, ttl_seconds):
        self.data[key] = (json.dumps(value, default=str), time.monotonic() + ttl_seconds)

    def delete(self, key):
        self.data.pop(key, None)

    def scan(self, pattern):
        return [k for k in list(self.data) if fnmatch.fnmatch(k, pattern) and self._alive(k)]

    def acquire(self, key, owner, ttl_seconds):
        if self._alive(key):
            return False
        self.data[key] = (owner, time.monotonic() + ttl_seconds)
        return True

    def release(self, key, owner):
        entry = self._alive(key)
        if entry and entry[0] == owner:
            del self.data[key]
            return True
        return False

    # pomocnicze dla testow
    def patch(self, key, **fields):
        value, expires = self.data[key]
        self.data[key] = (json.dumps({**json.loads(value), **fields}), expires)


def approved(request):
    return PaymentResult(
        transaction_id=f"tr-{request.reference}",
        state=PaymentState.APPROVED,
        amount=request.amount,
        currency=request.currency,
        raw={"status": "completed"},
    )


class GatewayScript:
    """Zachowanie FakeGateway ustawiane z testu: wynik, wyjatek albo funkcja od requestu."""

    def __init__(self):
        self.charge = approved
        self.verify = None
        self.lookup = None
        self.requests = []

    def play(self, value, request):
        self.requests.append(request)
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(request)
        return value


class FakeGateway(PaymentGateway):
    provider = GatewayProvider.OPENPAY
    capabilities = frozenset({
        CREATE_CARD_TOKEN,
        CHARGE_CARD,
        PROCESS_PSE_PAYMENT,
        VERIFY_TRANSACTION,
        FIND_BY_REFERENCE,
        GET_BANKS,
    })

    def __init__(self, config, script=None, **kwargs):
        super().__init__(config, **kwargs)
        self.script = script

    def create_card_token(self, request):
        return CardToken(id="tok-1", card_number="411111XXXXXX1111", holder_name=request.holder_name, brand="visa")

    def charge_card(self, request):
        return self.script.play(self.script.charge, request)

    def process_pse_payment(self, request):
        return self.script.play(self.script.charge, request)

    def verify_transaction(self, transaction_id):
        return self.script.play(self.script.verify, transaction_id)

    def find_by_reference(self, reference):
        return self.script.play(self.script.lookup, reference)

    def get_banks(self):
        return [Bank(id="1022", name="BANCO UNION COLOMBIANO", code="1022", status="active")]


# ---------------- baza ----------------
@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def store():
    return InMemoryStore()


@pytest.fixture()
def script():
    return GatewayScript()


@pytest.fixture()
def factories(script):
    return {
        GatewayProvider.OPENPAY: partial(FakeGateway, script=script),
        GatewayProvider.GOU: GouGateway,
    }


# ---------------- serwisy ----------------
@pytest.fixture()
def cart_sessions(store):
    return CartSessionManager(store)


@pytest.fixture()
def cart_service(db, cart_sessions):
    return CartService(db=db, cart_sessions=cart_sessions)


@pytest.fixture()
def checkout_service(db, store, cart_service):
    return CheckoutService(db=db, store=store, cart_service=cart_service, lock_service=LockService(store))


@pytest.fixture()
def registry(db, factories):
    return GatewayRegistry(CatalogRepo(db), factories=factories)


class RecordingNotifications:
    def __init__(self):
        self.sent = []

    def send_order_notification(self, user_id, order_id, state):
        self.sent.append((user_id, order_id, state))


@pytest.fixture()
def notifications():
    return RecordingNotifications()


@pytest.fixture()
def payment_service(db, registry, cart_sessions, notifications):
    return PaymentService(db, registry, cart_sessions=cart_sessions, notifications=notifications)


# ---------------- dane ----------------
class Seed:
    def __init__(self, db):
        self.db = db

    def _add(self, obj):
        self.db.add(obj)
        self.db.commit()
        return obj

    def user(self, email="ana@example.com", name="Ana", password="secret-pass"):
        return self._add(models.UserModel(name=name, email=email, password_hash=hash_password(password)))

    def product(self, name="Cafe", price="10.00", stock=10, is_active=True):
        return self._add(models.ProductModel(name=name, price=Decimal(price), stock=stock, is_active=is_active))

    def promotion(self, product, discount, start=None, end=None, state="ACTIVE"):
        return self._add(
            models.PromotionModel(
                product_id=product.id,
                discount=Decimal(str(discount)),
                start_date=start,
                end_date=end,
                state=state,
            )
        )

    def address(self, user):
        return self._add(models.AddressModel(user_id=user.id, department="Antioquia", city="Medellin", line1="Cra 1"))

    def agency(self, is_active=True):
        return self._add(models.AgencyModel(name="Agencia Centro", is_active=is_active))

    def gateway_config(self, gateway="OPENPAY", config=None, is_active=True):
        config = config or {
            "api_key": "m123",
            "api_secret": "sk_test",
            "endpoint": "https://sandbox-api.openpay.co",
            "webhook_secret": "whsec",
        }
        return self._add(
            models.GatewayConfigModel(
                gateway=gateway,
                name=gateway.title(),
                config=json.dumps(config),
                is_active=is_active,
                test_mode=True,
            )
        )

    def payment_method(self, gateway_config, type="CREDIT_CARD", enabled=True, min_amount=None, max_amount=None):
        return self._add(
            models.PaymentMethodConfigModel(
                type=type,
                name=type.replace("_", " ").title(),
                enabled=enabled,
                min_amount=Decimal(str(min_amount)) if min_amount is not None else None,
                max_amount=Decimal(str(max_amount)) if max_amount is not None else None,
                payment_gateway=gateway_config.gateway,
                gateway_config_id=gateway_config.id,
            )
        )


@pytest.fixture()
def seed(db):
    return Seed(db)


@pytest.fixture()
def catalog(seed):
    """Dwa produkty, bramka OpenPay z karta i PSE, agencja odbioru."""
    gateway = seed.gateway_config()
    return {
        "a": seed.product("Cafe", "10.00", stock=10),
        "b": seed.product("Panela", "5.50", stock=10),
        "card": seed.payment_method(gateway, "CREDIT_CARD"),
        "pse": seed.payment_method(gateway, "PSE"),
        "agency": seed.agency(),
    }


@pytest.fixture()
def user(seed):
    return seed.user()


@pytest.fixture()
def ready_checkout(cart_service, checkout_service, catalog, user):
    """Sesja checkoutu z dostawa (odbior) i metoda karta, gotowa do create_order."""
    cart_service.add_item(user.id, None, catalog["a"].id, 2)
    session = checkout_service.initiate(user.id)
    checkout_service.set_delivery(session["id"], user.id, "PICKUP", agency_id=catalog["agency"].id)
    return checkout_service.set_payment_method(session["id"], user.id, catalog["card"].id)


def card_payment():
    return ProcessPaymentIn.model_validate(
        {
            "card": {
                "token_id": "tok-1",
                "device_session_id": "dev-1",
                "customer": {
                    "name": "Ana",
                    "last_name": "Lopez",
                    "email": "ana@example.com",
                    "phone_number": "3001234567",
                },
            }
        }
    )


@pytest.fixture()
def card_payload():
    return card_payment()


# ---------------- http ----------------
@pytest.fixture()
def client(session_factory, store, factories):
    app = create_app(store=store, create_tables=False)

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway_factories] = lambda: factories
    with TestClient(app) as c:
        yield c
