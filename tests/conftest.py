"""
Shared pytest fixtures for all test modules.

Gateways run against httpx.MockTransport and persistence is replaced by
in-memory stores, so no network or MongoDB is needed.
"""
import asyncio
import copy
import hashlib
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import parse_qs

import httpx
import pytest
from fastapi.testclient import TestClient
from jose import jwt

from app.core.config import Settings
from app.models.payment.transaction import (
    ReconciliationEntry,
    ReconciliationSource,
    TransactionInDB,
    TransactionStatus,
)
from app.services.payment.gateways.easebuzz import RESPONSE_HASH_FIELDS
from app.services.payment.gateways.registry import GatewayRegistry
from app.services.payment.payment_service import PaymentOrchestrator
from app.services.payment.transaction_store import sanitize_fragment

EASEBUZZ_KEY = "EBKEY123"
EASEBUZZ_SALT = "EBSALT456"
EKQR_KEY = "upi-key-789"
MERCHANT_EMAIL = "merchant@shop.in"

EASEBUZZ_BASE = "https://testpay.easebuzz.in"
EASEBUZZ_DASHBOARD = "https://dashboard.easebuzz.in"
UPI_BASE = "https://api.ekqr.in/api"


# ---------------------------------------------------------------------------
# In-memory stores with the same contract as the MongoDB ones
# ---------------------------------------------------------------------------
class InMemoryTransactionStore:
    """Dict-backed TransactionStore; merges are serialized per store with a lock."""

    def __init__(self):
        self.documents: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def _find(self, predicate: Callable[[Dict[str, Any]], bool]) -> Optional[Dict[str, Any]]:
        for document in self.documents.values():
            if predicate(document):
                return copy.deepcopy(document)
        return None

    async def find_by_reference(self, reference):
        return self._find(lambda d: d["transaction_id"] == reference) if reference else None

    async def find_by_either_id(self, reference, echo_id=None):
        if reference:
            found = self._find(lambda d: reference in (d["transaction_id"], d["internal_id"]))
            if found is None:
                found = self._find(lambda d: d.get("gateway_transaction_id") == reference)
            if found:
                return found
        if echo_id:
            return self._find(lambda d: d.get("gateway_transaction_id") == echo_id)
        return None

    async def insert(self, transaction: TransactionInDB):
        document = transaction.model_dump()
        document["_id"] = f"oid-{len(self.documents) + 1}"
        document["payment_response"] = sanitize_fragment(document["payment_response"])
        self.documents[document["transaction_id"]] = document
        return copy.deepcopy(document)

    async def update_status_and_merge(self, transaction_id, new_status, fragment, source,
                                      echo_id=None, previous_status=None):
        async with self._lock:
            document = self.documents.get(transaction_id)
            if document is None:
                return None

            now = datetime.utcnow()
            clean = sanitize_fragment(fragment)
            document["payment_response"].update(clean)
            document["payment_response"]["last_reconciliation"] = {
                "source": ReconciliationSource(source).value,
                "received_at": now,
            }
            document["updated_at"] = now
            if new_status is not None:
                document["status"] = TransactionStatus(new_status).value
            if echo_id:
                document["gateway_transaction_id"] = echo_id

            entry = ReconciliationEntry(
                source=ReconciliationSource(source).value,
                received_at=now,
                status=new_status,
                previous_status=previous_status or TransactionStatus.PENDING,
                status_changed=new_status is not None,
                payload=clean,
            )
            document["reconciliation_log"].append(entry.model_dump())
            return copy.deepcopy(document)

    async def find_pending(self, created_before, limit=50):
        pending = [
            d for d in self.documents.values()
            if d["status"] == TransactionStatus.PENDING.value and d["created_at"] < created_before
        ]
        pending.sort(key=lambda d: d["created_at"])
        return copy.deepcopy(pending[:limit])

    async def exists_with_client_reference(self, reference):
        return self._find(lambda d: reference in (d["transaction_id"], d["internal_id"])) is not None

    def _matching(self, filters):
        filters = filters or {}
        return [d for d in self.documents.values() if all(d.get(k) == v for k, v in filters.items())]

    async def find_many(self, filters=None, skip=0, limit=20):
        matching = sorted(self._matching(filters), key=lambda d: d["created_at"], reverse=True)
        return copy.deepcopy(matching[skip:skip + limit])

    async def count(self, filters=None):
        return len(self._matching(filters))


class InMemoryPaymentMethodStore:
    def __init__(self, methods: Optional[List[Dict[str, Any]]] = None):
        self.methods = methods or []

    async def find_active(self, gateway=None):
        for method in sorted(self.methods, key=lambda m: m["created_at"]):
            if method.get("is_active") and (gateway is None or method["gateway"] == gateway):
                return dict(method)
        return None


# ---------------------------------------------------------------------------
# Gateway HTTP stub
# ---------------------------------------------------------------------------
Responder = Union[Dict[str, Any], httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class GatewayStub:
    """
    MockTransport handler routing by URL path.
    Each route answers with a JSON dict, a prepared Response, a callable, or
    raises the given exception.
    """

    def __init__(self):
        self.routes: Dict[str, Responder] = {}
        self.requests: List[httpx.Request] = []

    def on(self, path: str, responder: Responder):
        self.routes[path] = responder
        return self

    def requests_to(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        responder = self.routes.get(request.url.path)
        if responder is None:
            return httpx.Response(404, json={"status": False, "msg": f"No route for {request.url.path}"})
        if isinstance(responder, Exception):
            raise responder
        if isinstance(responder, httpx.Response):
            return responder
        if callable(responder):
            return responder(request)
        return httpx.Response(200, json=responder)


def form_of(request: httpx.Request) -> Dict[str, str]:
    """Decode a form-encoded request body"""
    return {k: v[0] for k, v in parse_qs(request.content.decode(), keep_blank_values=True).items()}


def easebuzz_callback(key: str = EASEBUZZ_KEY, salt: str = EASEBUZZ_SALT, **fields) -> Dict[str, str]:
    """Easebuzz callback payload signed with the reverse hash"""
    payload = {name: "" for name in RESPONSE_HASH_FIELDS}
    payload.update({
        "txnid": "TXN1",
        "amount": "100.00",
        "productinfo": "Payment",
        "firstname": "Customer",
        "email": "a@b.com",
        "status": "success",
        "easepayid": "E2401010001",
    })
    payload.update(fields)
    reverse = [payload[name] for name in reversed(RESPONSE_HASH_FIELDS)]
    payload["hash"] = hashlib.sha512("|".join([salt, *reverse, key]).encode()).hexdigest()
    return payload


def make_transaction(store: InMemoryTransactionStore, transaction_id: str, **fields) -> Dict[str, Any]:
    """Place a transaction directly into the in-memory store"""
    document = TransactionInDB(
        internal_id=fields.pop("internal_id", transaction_id),
        transaction_id=transaction_id,
        user_id=fields.pop("user_id", "user-1"),
        gateway=fields.pop("gateway", "upigateway"),
        amount=fields.pop("amount", 100.0),
        **fields,
    ).model_dump()
    document["_id"] = f"oid-{transaction_id}"
    store.documents[transaction_id] = document
    return document


def issue_token(claims: Dict[str, Any], secret: str = "test-secret", algorithm: str = "HS256",
                expires_delta: timedelta = timedelta(minutes=30), token_type: str = "access") -> str:
    """Mint a JWT the way the external auth service does"""
    payload = dict(claims)
    payload.update({"exp": datetime.utcnow() + expires_delta, "type": token_type})
    return jwt.encode(payload, secret, algorithm=algorithm)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
def build_settings(**overrides) -> Settings:
    values = dict(
        app_env="test",
        secret_key="test-secret",
        easebuzz_key=EASEBUZZ_KEY,
        easebuzz_salt=EASEBUZZ_SALT,
        easebuzz_base_url=EASEBUZZ_BASE,
        easebuzz_dashboard_url=EASEBUZZ_DASHBOARD,
        easebuzz_merchant_email=MERCHANT_EMAIL,
        ekqr_key=EKQR_KEY,
        upigateway_base_url=UPI_BASE,
        verification_policy_override="strict",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings():
    return build_settings()


@pytest.fixture
def stub():
    return GatewayStub()


@pytest.fixture
def registry(settings, stub):
    return GatewayRegistry.from_settings(settings, transport=httpx.MockTransport(stub))


@pytest.fixture
def transaction_store():
    return InMemoryTransactionStore()


@pytest.fixture
def payment_method_store():
    now = datetime.utcnow()
    return InMemoryPaymentMethodStore([
        {"_id": "pm-upi", "name": "UPI Gateway Payment", "code": "UPIGATEWAY",
         "gateway": "upigateway", "is_active": True, "created_at": now},
        {"_id": "pm-eb", "name": "Easebuzz Payment", "code": "EASEBUZZ",
         "gateway": "easebuzz", "is_active": True, "created_at": now + timedelta(seconds=1)},
    ])


@pytest.fixture
def orchestrator(registry, transaction_store, payment_method_store):
    return PaymentOrchestrator(registry, transaction_store, payment_method_store)


@pytest.fixture
def user():
    return {
        "_id": "user-1",
        "email": "a@b.com",
        "username": "alice",
        "is_admin": False,
        "is_active": True,
        "payment_gateway": None,
        "allowed_gateways": [],
    }


@pytest.fixture
def admin():
    return {"_id": "admin-1", "email": "admin@shop.in", "is_admin": True, "is_active": True}


@pytest.fixture
def auth(user):
    """Mutable holder for the user the API sees as authenticated"""
    return {"user": user}


@pytest.fixture
def client(orchestrator, registry, auth):
    """
    FastAPI TestClient with orchestrator and auth dependencies overridden.
    The TestClient is NOT used as a context manager so the lifespan hook
    (MongoDB connection) is skipped.
    """
    from app.main import app
    from app.routes.auth.dependencies import get_current_user
    from app.routes.payment.dependencies import get_payment_orchestrator

    app.dependency_overrides[get_payment_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_current_user] = lambda: auth["user"]
    app.state.gateway_registry = registry
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
