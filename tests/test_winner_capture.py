import asyncio
import unittest

from clients.couchbase import InMemoryDocumentStore
from clients.email import LogNotifier
from models.entities.couchbase.bids import Bid, BidData, bid_key
from models.entities.couchbase.listings import Listing, ListingData, ListingStatus
from models.entities.couchbase.transactions import Transaction, TransactionData, transaction_key
from models.operations.bids import BidAdmissionService, Bidder
from models.operations.listings import listing_cas_update
from models.operations.transactions import transaction_create_once
from models.operations.winner_capture import (
    SKIP_HISTORY_MISMATCH,
    SKIP_IN_PROGRESS,
    SKIP_MISSING_BUYER,
    SKIP_NO_BID_HISTORY,
    SKIP_NO_BIDS,
    SKIP_NO_PAYMENT_METHOD,
    SKIP_RESERVE_NOT_MET,
    SKIP_UNSETTLEABLE,
    WinnerCapture,
    charge_idempotency_key,
    to_minor_units,
)

from support import (
    ADMIN_EMAIL,
    NOW,
    FakePaymentProcessor,
    FrozenClock,
    YieldingDocumentStore,
    create_listing,
    make_notifications,
)

ALICE = Bidder(id="bidder-1", email="alice@example.com")
BOB = Bidder(id="bidder-2", email="bob@example.com")


def _complete(d: ListingData) -> None:
    d.status = ListingStatus.COMPLETED


class WinnerCaptureTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.build(InMemoryDocumentStore())

    def build(self, store) -> None:
        self.store = store
        self.clock = FrozenClock()
        self.payments = FakePaymentProcessor()
        self.notifier = LogNotifier()
        notifications = make_notifications(self.notifier)
        self.bids = BidAdmissionService(self.store, self.payments, notifications, self.clock)
        self.capture = WinnerCapture(self.store, self.payments, notifications, self.clock)

    async def won_listing(self, amounts=(110, 250), **fields) -> Listing:
        await create_listing(self.store, "l-1", **fields)
        for i, amount in enumerate(amounts):
            await self.bids.place_bid("l-1", (ALICE, BOB)[i % 2], amount)
        self.notifier.sent.clear()
        self.clock.advance(days=3)
        return await listing_cas_update(self.store, "l-1", _complete, self.clock.now())

    async def reload(self) -> Listing:
        return await Listing.get(self.store, "l-1")


class CaptureChargeTestCase(WinnerCaptureTestCase):
    async def test_charges_winner_and_records_sale(self):
        listing = await self.won_listing(surcharge=20, listing_fee=5)

        result = await self.capture.capture_winner(listing)

        self.assertTrue(result.charged)
        self.assertFalse(result.skipped)
        charge = self.payments.charges[charge_idempotency_key("l-1")]
        self.assertEqual(charge.amount, 27_000)
        self.assertEqual(charge.currency, "gbp")
        self.assertEqual(charge.metadata["listing_id"], "l-1")
        self.assertEqual(charge.metadata["winner_id"], BOB.id)
        self.assertEqual(result.charge_id, charge.id)

        txn = await Transaction.get(self.store, transaction_key("l-1"))
        self.assertEqual(txn.data.source, "auction")
        self.assertEqual(txn.data.buyer_id, BOB.id)
        self.assertEqual(txn.data.sale_price, 250)
        self.assertEqual(txn.data.commission_rate, 10)
        self.assertEqual(txn.data.commission_amount, 25)
        self.assertEqual(txn.data.listing_fee_applied, 5)
        self.assertEqual(txn.data.seller_payout, 220)
        self.assertEqual(txn.data.amount_charged, 27_000)
        self.assertEqual(txn.data.payment_status, "paid")

        updated = await self.reload()
        self.assertEqual(updated.data.status, ListingStatus.COMPLETED)
        self.assertEqual(updated.data.sale_status, "winner_charged")
        self.assertEqual(updated.data.buyer_id, BOB.id)
        self.assertEqual(updated.data.sold_price, 250)
        self.assertEqual(updated.data.sale_fee, 25)
        self.assertEqual(updated.data.seller_net_amount, 220)
        self.assertEqual(updated.data.payout_status, "pending")
        self.assertEqual(updated.data.payment_intent_id, charge.id)
        self.assertEqual(updated.data.sold_at, self.clock.now())

    async def test_sale_emails_sent_once(self):
        listing = await self.won_listing()

        await self.capture.capture_winner(listing)
        recipients = sorted(m.recipient for m in self.notifier.sent)
        self.assertEqual(recipients, sorted([BOB.email, "seller@example.com", ADMIN_EMAIL]))

        await self.capture.capture_winner(listing)
        self.assertEqual(len(self.notifier.sent), 3)

    async def test_capturing_twice_charges_once(self):
        listing = await self.won_listing()

        first = await self.capture.capture_winner(listing)
        second = await self.capture.capture_winner(listing)

        self.assertTrue(first.charged)
        self.assertTrue(second.charged)
        self.assertEqual(second.reason, "already settled")
        self.assertEqual(second.transaction.id, first.transaction.id)
        self.assertEqual(self.store.count("transactions"), 1)
        self.assertEqual(len(self.payments.charges), 1)
        self.assertEqual(self.payments.charge_attempts, ["winner-charge-l-1"])

    async def test_existing_transaction_completes_listing_record(self):
        # A previous run charged and wrote the transaction, then failed before updating the listing
        listing = await self.won_listing()
        await transaction_create_once(self.store, TransactionData(
            listing_id="l-1",
            listing_title=listing.data.title,
            seller_id=listing.data.seller_id,
            buyer_id=BOB.id,
            buyer_email=BOB.email,
            sale_price=250,
            commission_rate=10,
            commission_amount=25,
            listing_fee_applied=0,
            seller_payout=225,
            amount_charged=25_000,
            currency="gbp",
            charge_id="pi_earlier",
            payment_status="paid",
        ), NOW)

        result = await self.capture.capture_winner(listing)

        self.assertTrue(result.charged)
        self.assertEqual(result.charge_id, "pi_earlier")
        self.assertEqual(self.payments.charge_attempts, [])
        updated = await self.reload()
        self.assertEqual(updated.data.sale_status, "winner_charged")
        self.assertEqual(updated.data.payment_intent_id, "pi_earlier")

    async def test_withdrawn_bid_record_is_ignored(self):
        listing = await self.won_listing()
        await Bid.create(self.store, BidData(
            listing_id="l-1", bidder_id=ALICE.id, bidder_email=ALICE.email, amount=300, placed_at=NOW, sequence=3,
        ), key=bid_key("l-1", 3), now=NOW)

        result = await self.capture.capture_winner(listing)

        self.assertTrue(result.charged)
        self.assertEqual(result.transaction.data.buyer_id, BOB.id)
        self.assertEqual(result.transaction.data.sale_price, 250)

    async def test_buy_now_transaction_is_recorded_not_charged(self):
        # A buy-now purchase wrote its transaction but not its listing update before the auction closed
        listing = await self.won_listing(buy_now_price=400)
        await transaction_create_once(self.store, TransactionData(
            listing_id="l-1",
            listing_title=listing.data.title,
            source="buy_now",
            seller_id=listing.data.seller_id,
            buyer_id=ALICE.id,
            buyer_email=ALICE.email,
            sale_price=400,
            commission_rate=10,
            commission_amount=40,
            listing_fee_applied=0,
            seller_payout=360,
            amount_charged=40_000,
            currency="gbp",
            charge_id="pi_buy_now",
            payment_status="paid",
        ), NOW)

        result = await self.capture.capture_winner(listing)

        self.assertFalse(result.charged)
        self.assertEqual(result.charge_id, "pi_buy_now")
        self.assertEqual(self.payments.charge_attempts, [])
        updated = await self.reload()
        self.assertEqual(updated.data.status, ListingStatus.SOLD)
        self.assertEqual(updated.data.sale_status, "sold_buy_now")
        self.assertEqual(updated.data.buyer_id, ALICE.id)

    async def test_minor_units(self):
        self.assertEqual(to_minor_units(250), 25_000)
        self.assertEqual(to_minor_units(19.99), 1_999)
        self.assertEqual(to_minor_units(0.005), 1)


class CaptureSkipTestCase(WinnerCaptureTestCase):
    async def assert_skipped(self, listing: Listing, reason: str):
        result = await self.capture.capture_winner(listing)

        self.assertTrue(result.skipped)
        self.assertFalse(result.charged)
        self.assertEqual(result.reason, reason)
        self.assertEqual(self.payments.charge_attempts, [])
        self.assertEqual(self.store.count("transactions"), 0)
        self.assertIsNone((await self.reload()).data.sale_status)

    async def test_no_bids(self):
        listing = await create_listing(self.store, "l-1", status=ListingStatus.COMPLETED)

        await self.assert_skipped(listing, SKIP_NO_BIDS)

    async def test_reserve_not_met(self):
        listing = await create_listing(
            self.store, "l-1", status=ListingStatus.COMPLETED, reserve_price=500, current_bid=300, bids=1
        )

        await self.assert_skipped(listing, SKIP_RESERVE_NOT_MET)

    async def test_no_bid_history(self):
        listing = await create_listing(
            self.store, "l-1", status=ListingStatus.COMPLETED, current_bid=300, bids=1, highest_bidder_id=BOB.id
        )

        await self.assert_skipped(listing, SKIP_NO_BID_HISTORY)

    async def test_history_disagrees_with_listing(self):
        listing = await create_listing(
            self.store, "l-1", status=ListingStatus.COMPLETED, current_bid=300, bids=1, highest_bidder_id=BOB.id
        )
        await Bid.create(self.store, BidData(
            listing_id="l-1", bidder_id=BOB.id, bidder_email=BOB.email, amount=290, placed_at=NOW, sequence=1,
        ), key=bid_key("l-1", 1), now=NOW)

        await self.assert_skipped(listing, SKIP_HISTORY_MISMATCH)

    async def test_missing_buyer_identity(self):
        listing = await create_listing(self.store, "l-1", status=ListingStatus.COMPLETED, current_bid=300, bids=1)
        await Bid.create(self.store, BidData(
            listing_id="l-1", bidder_id=BOB.id, bidder_email="", amount=300, placed_at=NOW, sequence=1,
        ), key=bid_key("l-1", 1), now=NOW)

        await self.assert_skipped(listing, SKIP_MISSING_BUYER)

    async def test_winner_without_card(self):
        listing = await self.won_listing()
        self.payments.without_card.add(BOB.email)

        await self.assert_skipped(listing, SKIP_NO_PAYMENT_METHOD)

    async def test_fractional_winning_bid_is_not_charged(self):
        listing = await create_listing(
            self.store, "l-1", status=ListingStatus.COMPLETED, current_bid=112.5, bids=1,
            highest_bidder_id=BOB.id, highest_bidder_email=BOB.email,
        )
        await Bid.create(self.store, BidData(
            listing_id="l-1", bidder_id=BOB.id, bidder_email=BOB.email, amount=112.5, placed_at=NOW, sequence=1,
        ), key=bid_key("l-1", 1), now=NOW)

        await self.assert_skipped(listing, SKIP_UNSETTLEABLE)
        self.assertEqual(self.payments.lookups, [])


class CaptureFailureTestCase(WinnerCaptureTestCase):
    async def test_decline_reported_with_intent(self):
        listing = await self.won_listing()
        self.payments.decline = True

        result = await self.capture.capture_winner(listing)

        self.assertFalse(result.charged)
        self.assertFalse(result.skipped)
        self.assertEqual(result.error, "Your card has insufficient funds.")
        self.assertEqual(result.charge_id, "pi_declined")
        self.assertEqual(result.charge_status, "requires_payment_method")
        self.assertEqual(self.store.count("transactions"), 0)
        self.assertIsNone((await self.reload()).data.sale_status)

    async def test_unsettled_intent_is_not_a_sale(self):
        listing = await self.won_listing()
        self.payments.charge_status = "requires_action"

        result = await self.capture.capture_winner(listing)

        self.assertFalse(result.charged)
        self.assertEqual(result.reason, "payment not succeeded (status: requires_action)")
        self.assertEqual(result.charge_status, "requires_action")
        self.assertEqual(self.store.count("transactions"), 0)
        self.assertEqual(self.notifier.sent, [])

    async def test_notification_failure_keeps_sale(self):
        listing = await self.won_listing()
        self.notifier.send = _raise

        result = await self.capture.capture_winner(listing)

        self.assertTrue(result.charged)
        self.assertEqual((await self.reload()).data.sale_status, "winner_charged")


async def _raise(recipient, subject, body):
    raise ConnectionError("SMTP server unreachable")


class CaptureTimingTestCase(WinnerCaptureTestCase):
    async def test_stale_listing_snapshot_is_reloaded(self):
        await self.won_listing()
        stale = await create_listing(InMemoryDocumentStore(), "l-1", status=ListingStatus.COMPLETED)

        result = await self.capture.capture_winner(stale)

        self.assertTrue(result.charged)
        self.assertEqual(result.transaction.data.sale_price, 250)


class ConcurrentCaptureTestCase(WinnerCaptureTestCase):
    async def asyncSetUp(self) -> None:
        self.build(YieldingDocumentStore())

    async def test_overlapping_captures_charge_once(self):
        listing = await self.won_listing()

        results = await asyncio.gather(
            self.capture.capture_winner(listing),
            self.capture.capture_winner(listing),
        )

        self.assertEqual(sorted(r.charged for r in results), [False, True])
        self.assertEqual([r.reason for r in results if not r.charged], [SKIP_IN_PROGRESS])
        self.assertEqual(self.payments.charge_attempts, ["winner-charge-l-1"])
        self.assertEqual(self.store.count("transactions"), 1)

    async def test_capture_can_run_again_after_finishing(self):
        listing = await self.won_listing()

        await self.capture.capture_winner(listing)
        again = await self.capture.capture_winner(listing)

        self.assertEqual(again.reason, "already settled")
