import os

# Configuration de test, posée avant tout import de storefront.config
os.environ.setdefault("USE_FAKE_REDIS_FOR_TESTS", "1")
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("PAYSTACK_PUBLIC_KEY", "pk_test_storefront")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("SUPPORT_ADMIN_TOKEN", "support-secret")
os.environ.setdefault("ORDER_SUBMIT_BACKOFF_BASE", "0")
os.environ.setdefault("ORDER_SUBMIT_BACKOFF_JITTER", "0")

import asyncio
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient

from storefront.app_setup.factory import create_app
from storefront.cart.models import CartLineIn
from storefront.cart.service import Cart
from storefront.checkout.models import PayRequest
from storefront.infra.kv_store import MemoryStore
from storefront.payments.orders import OrderSubmitter
from storefront.payments.verification import VerificationClient
from storefront.payments.workflow import CheckoutWorkflow

BACKEND_URL = "http://backend.test/api"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class FakeBackend:
    """
    Backend de commandes simulé (httpx.MockTransport).
    - verify: (status, body) ou exception à lever; verify_delay pour simuler la lenteur
    - orders: file de réponses consommées dans l'ordre, la dernière est réutilisée
    """

    def __init__(self):
        self.verify: Any = (200, {"verified": True, "data": {"status": "success", "amount": 465000}})
        self.verify_delay = 0.0
        self.orders: List[Any] = [(201, {"order": {"_id": "ord_1", "orderNumber": "ORD-0001"}})]
        self.me: Optional[Dict[str, Any]] = None
        self.requests: List[httpx.Request] = []

    def calls(self, suffix: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/orders/verify-payment"):
            if self.verify_delay:
                await asyncio.sleep(self.verify_delay)
            return self._reply(self.verify, request)
        if path.endswith("/orders"):
            outcome = self.orders.pop(0) if len(self.orders) > 1 else self.orders[0]
            return self._reply(outcome, request)
        if path.endswith("/auth/me"):
            if self.me is None:
                return httpx.Response(401, json={"message": "unauthorized"})
            return httpx.Response(200, json={"user": self.me})
        return httpx.Response(404, json={"message": "not found"})

    @staticmethod
    def _reply(outcome: Any, request: httpx.Request) -> httpx.Response:
        if isinstance(outcome, Exception):
            raise outcome
        status, body = outcome
        return httpx.Response(status, json=body)


def make_line(product_id: str = "P1", price: str = "1000", quantity: Optional[int] = 2, max_stock: int = 10, size: str = "M", color: str = "Red") -> CartLineIn:
    return CartLineIn(
        product_id=product_id,
        name=f"Produit {product_id}",
        unit_price=Decimal(price),
        image_ref=f"/img/{product_id}.jpg",
        size=size,
        color=color,
        quantity=quantity,
        max_stock=max_stock,
    )

def make_pay_request(**overrides) -> PayRequest:
    data = {
        "email": "ada@example.com",
        "firstName": "Ada",
        "lastName": "Obi",
        "phone": "08030000000",
        "address": "12 Marina Road",
        "city": "Lagos",
        "state": "Lagos",
        "zipCode": "100001",
    }
    data.update(overrides)
    return PayRequest.model_validate(data)

@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()

@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()

@pytest.fixture
def seed_cart(store):
    async def _seed(scope: str, *lines: CartLineIn) -> Cart:
        cart = await Cart.load(store.scope(scope))
        for line in lines or (make_line(),):
            await cart.add_line(line)
        return cart
    return _seed

@pytest.fixture
def make_workflow(store, backend):
    """Workflow branché sur le backend simulé; les attentes de backoff sont enregistrées, pas exécutées."""
    def _make(verify_timeout: float = 5.0, max_attempts: int = 3) -> Tuple[CheckoutWorkflow, List[float]]:
        http = httpx.AsyncClient(base_url=BACKEND_URL, transport=httpx.MockTransport(backend.handler))
        delays: List[float] = []

        async def _record_sleep(delay: float) -> None:
            delays.append(delay)

        submitter = OrderSubmitter(http, max_attempts=max_attempts, sleep=_record_sleep)
        verifier = VerificationClient(http, timeout=verify_timeout)
        return CheckoutWorkflow(store, verifier, submitter, default_gateway="paystack"), delays
    return _make

@pytest.fixture
def app(store, backend):
    fastapi_app = create_app()
    fastapi_app.state.store = store
    fastapi_app.state.backend_transport = httpx.MockTransport(backend.handler)
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture
def cart_line():
    return make_line

@pytest.fixture
def pay_request():
    return make_pay_request
