"""
HTTP tests for the API routes.

Tests cover:
1. Bid placement and history
2. Auction window and the secret-gated scheduler trigger
3. Buy-now purchases
4. Admin mark-sold
5. Payment method endpoints
"""

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import conf
from clients.couchbase import InMemoryDocumentStore
from clients.email import LogNotifier
from engine import AuctionEngine
from main import create_app
from models.entities.couchbase.listings import Listing, ListingStatus

from support import NOW, FakePaymentProcessor, FrozenClock, create_listing

CRON_SECRET = "cron-s3cret"
ADMIN_KEY = "admin-k3y"
ALICE = {"X-User-Id": "bidder-1", "X-User-Email": "Alice@Example.com"}


def build_engine(cron_secret=CRON_SECRET, admin_api_key=ADMIN_KEY) -> AuctionEngine:
    return AuctionEngine.create(
        store=InMemoryDocumentStore(),
        payments=FakePaymentProcessor(),
        notifier=LogNotifier(),
        clock=FrozenClock(),
        auction_conf=conf.AuctionConf(
            cron_secret=cron_secret,
            admin_api_key=admin_api_key,
            scheduler_interval_minutes=0,
        ),
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def engine():
    engine = build_engine()
    asyncio.run(create_listing(engine.store, "l-1", starting_price=100))
    return engine


@pytest.fixture
def client(engine):
    with TestClient(create_app(engine)) as client:
        yield client


def load(engine, listing_id="l-1") -> Listing:
    return asyncio.run(Listing.get(engine.store, listing_id))


# =============================================================================
# Bids
# =============================================================================


class TestPlaceBid:
    """POST /api/listings/{id}/bids"""

    def test_accepted(self, client):
        response = client.post("/api/listings/l-1/bids", json={"amount": 110}, headers=ALICE)

        assert response.status_code == 201
        body = response.json()
        assert body["bid"]["sequence"] == 1
        assert body["bid"]["bidder_id"] == "bidder-1"
        assert body["listing"]["current_bid"] == 110
        assert body["listing"]["minimum_bid"] == 120
        assert body["listing"]["reserve_met"] is True
        assert body["auction_extended"] is False

    def test_bidder_email_normalized(self, client, engine):
        client.post("/api/listings/l-1/bids", json={"amount": 110}, headers=ALICE)

        assert load(engine).data.highest_bidder_email == "alice@example.com"

    def test_requires_identity(self, client):
        response = client.post("/api/listings/l-1/bids", json={"amount": 110})

        assert response.status_code == 401

    def test_too_low_reports_minimum(self, client):
        response = client.post("/api/listings/l-1/bids", json={"amount": 109}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "bid_too_low"
        assert response.json()["detail"]["minimum_bid"] == 110

    def test_payment_method_required(self, client, engine):
        engine.payments.without_card.add("alice@example.com")

        response = client.post("/api/listings/l-1/bids", json={"amount": 110}, headers=ALICE)

        assert response.status_code == 402
        assert response.json()["detail"]["error"] == "payment_method_required"

    def test_unknown_listing(self, client):
        response = client.post("/api/listings/nope/bids", json={"amount": 110}, headers=ALICE)

        assert response.status_code == 404

    def test_non_positive_amount(self, client):
        response = client.post("/api/listings/l-1/bids", json={"amount": 0}, headers=ALICE)

        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "invalid_bid_amount"

    def test_ended_auction(self, client, engine):
        engine.clock.set(NOW + timedelta(days=3))

        response = client.post("/api/listings/l-1/bids", json={"amount": 110}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "auction_ended"

    def test_processor_timeout_is_retryable(self, client, engine):
        engine.payments.lookup_timeout = True

        response = client.post("/api/listings/l-1/bids", json={"amount": 110}, headers=ALICE)

        assert response.status_code == 503
        assert response.headers["retry-after"] == "1"


class TestBidHistory:
    """GET /api/listings/{id}/bids"""

    def test_newest_first(self, client):
        for amount in (110, 120, 130):
            client.post("/api/listings/l-1/bids", json={"amount": amount}, headers=ALICE)

        response = client.get("/api/listings/l-1/bids", params={"limit": 2})

        assert response.status_code == 200
        assert [b["amount"] for b in response.json()["bids"]] == [130, 120]

    def test_unknown_listing(self, client):
        assert client.get("/api/listings/nope/bids").status_code == 404


# =============================================================================
# Auction cycle
# =============================================================================


class TestAuctionWindow:
    """GET /api/auction-window"""

    def test_current_window(self, client):
        body = client.get("/api/auction-window").json()

        assert body["is_live"] is True
        assert body["is_coming"] is False
        assert body["current_start"].startswith("2024-03-11T01:00:00")
        assert body["next_start"].startswith("2024-03-18T01:00:00")


class TestSchedulerTrigger:
    """GET|POST /api/auction-scheduler/run"""

    def test_secret_not_configured(self):
        with TestClient(create_app(build_engine(cron_secret=None))) as client:
            response = client.post("/api/auction-scheduler/run", headers={"X-Cron-Secret": "anything"})

        assert response.status_code == 503
        assert response.json()["detail"]["error"] == "cron_secret_not_configured"

    def test_missing_secret(self, client):
        assert client.post("/api/auction-scheduler/run").status_code == 403

    def test_wrong_secret(self, client):
        response = client.post("/api/auction-scheduler/run", headers={"Authorization": "Bearer wrong"})

        assert response.status_code == 403

    @pytest.mark.parametrize(
        "method, kwargs",
        [
            ("post", {"headers": {"Authorization": f"Bearer {CRON_SECRET}"}}),
            ("post", {"headers": {"X-Cron-Secret": CRON_SECRET}}),
            ("get", {"params": {"secret": CRON_SECRET}}),
            ("get", {"headers": {"Authorization": f"Bearer {CRON_SECRET}"}}),
        ],
    )
    def test_accepted_secret_forms(self, client, method, kwargs):
        response = getattr(client, method)("/api/auction-scheduler/run", **kwargs)

        assert response.status_code == 200
        assert response.json()["promoted"] == 0

    def test_run_closes_ended_listing(self, client, engine):
        client.post("/api/listings/l-1/bids", json={"amount": 110}, headers=ALICE)
        engine.clock.set(NOW + timedelta(days=3))

        response = client.post("/api/auction-scheduler/run", headers={"X-Cron-Secret": CRON_SECRET})

        body = response.json()
        assert body["completed"] == 1
        assert body["winner_charges"][0]["charged"] is True
        assert load(engine).data.sale_status == "winner_charged"


# =============================================================================
# Admin
# =============================================================================


class TestMarkSold:
    """POST /api/admin/listings/{id}/mark-sold"""

    URL = "/api/admin/listings/l-1/mark-sold"
    BODY = {"final_price": 6000, "buyer_email": "Carol@Example.com"}

    def test_requires_key(self, client):
        assert client.post(self.URL, json=self.BODY).status_code == 403
        assert client.post(self.URL, json=self.BODY, headers={"X-Admin-API-Key": "wrong"}).status_code == 403

    def test_admin_api_not_configured(self):
        with TestClient(create_app(build_engine(admin_api_key=None))) as client:
            response = client.post(self.URL, json=self.BODY, headers={"X-Admin-API-Key": ADMIN_KEY})

        assert response.status_code == 503

    def test_marks_sold(self, client, engine):
        response = client.post(self.URL, json=self.BODY, headers={"X-Admin-API-Key": ADMIN_KEY})

        assert response.status_code == 200
        body = response.json()
        assert body["sale_price"] == 6000
        assert body["commission_amount"] == 480
        assert body["payment_status"] == "pending"
        listing = load(engine)
        assert listing.data.status == ListingStatus.SOLD
        assert listing.data.buyer_email == "carol@example.com"

    def test_second_sale_conflicts(self, client):
        headers = {"X-Admin-API-Key": ADMIN_KEY}
        client.post(self.URL, json=self.BODY, headers=headers)

        response = client.post(self.URL, json=self.BODY, headers=headers)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "listing_already_sold"

    @pytest.mark.parametrize(
        "body",
        [
            {"final_price": 0, "buyer_email": "carol@example.com"},
            {"final_price": 100, "buyer_email": "not-an-email"},
            {"buyer_email": "carol@example.com"},
        ],
    )
    def test_invalid_body(self, client, body):
        response = client.post(self.URL, json=body, headers={"X-Admin-API-Key": ADMIN_KEY})

        assert response.status_code == 422


# =============================================================================
# Buy-now
# =============================================================================


def paid_intent(engine, listing_id="l-1", amount=50_000, buyer_email="alice@example.com") -> str:
    charge = asyncio.run(engine.payments.create_charge(
        amount=amount,
        currency="gbp",
        customer_id="cus_alice",
        payment_method_id="pm_alice",
        idempotency_key=f"buy-now-{listing_id}-{amount}",
        metadata={"listing_id": listing_id, "buyer_email": buyer_email},
    ))
    return charge.id


class TestBuyNow:
    """POST /api/listings/{id}/buy-now"""

    URL = "/api/listings/l-2/buy-now"

    @pytest.fixture(autouse=True)
    def buy_now_listing(self, engine):
        asyncio.run(create_listing(engine.store, "l-2", buy_now_price=500))

    def test_purchase(self, client, engine):
        intent = paid_intent(engine, "l-2")

        response = client.post(self.URL, json={"payment_intent_id": intent}, headers=ALICE)

        assert response.status_code == 200
        body = response.json()
        assert body["sale_price"] == 500
        assert body["amount_charged"] == 50_000
        assert body["payment_intent_id"] == intent
        assert body["payment_status"] == "paid"
        listing = load(engine, "l-2")
        assert listing.data.status == ListingStatus.SOLD
        assert listing.data.sale_status == "sold_buy_now"

    def test_requires_identity(self, client):
        assert client.post(self.URL, json={"payment_intent_id": "pi_1"}).status_code == 401

    def test_amount_mismatch(self, client, engine):
        intent = paid_intent(engine, "l-2", amount=100)

        response = client.post(self.URL, json={"payment_intent_id": intent}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "payment_mismatch"
        assert load(engine, "l-2").data.status == ListingStatus.LIVE

    def test_without_buy_now_price(self, client, engine):
        intent = paid_intent(engine, "l-1")

        response = client.post("/api/listings/l-1/buy-now", json={"payment_intent_id": intent}, headers=ALICE)

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "buy_now_unavailable"

    def test_second_buyer_conflicts(self, client, engine):
        client.post(self.URL, json={"payment_intent_id": paid_intent(engine, "l-2")}, headers=ALICE)
        bob = {"X-User-Id": "bidder-2", "X-User-Email": "bob@example.com"}
        intent = paid_intent(engine, "l-2", buyer_email="bob@example.com")

        response = client.post(self.URL, json={"payment_intent_id": intent}, headers=bob)

        assert response.status_code == 409

    def test_empty_intent_rejected(self, client):
        assert client.post(self.URL, json={"payment_intent_id": ""}, headers=ALICE).status_code == 422


# =============================================================================
# Payments
# =============================================================================


class TestPayments:
    """GET /api/payments/method, POST /api/payments/setup-intent"""

    def test_has_payment_method(self, client):
        body = client.get("/api/payments/method", headers=ALICE).json()

        assert body["has_payment_method"] is True
        assert body["customer_id"].startswith("cus_")

    def test_no_payment_method(self, client, engine):
        engine.payments.without_card.add("alice@example.com")

        body = client.get("/api/payments/method", headers=ALICE).json()

        assert body == {"has_payment_method": False, "customer_id": None}

    def test_setup_intent(self, client):
        response = client.post("/api/payments/setup-intent", headers=ALICE)

        assert response.status_code == 201
        body = response.json()
        assert body["setup_intent_id"].startswith("seti_")
        assert body["client_secret"]


class TestHealth:
    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}
