"""
Outbound auction emails.

Delivery is always best-effort: a failed send is logged and counted, and never
undoes the bid, transition or sale that triggered it.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from clients.email import Notifier

from models.entities.couchbase.bids import Bid
from models.entities.couchbase.listings import Listing
from models.entities.couchbase.transactions import Transaction

logger = logging.getLogger(__name__)


@dataclass
class Email:
    recipient: str
    subject: str
    body: str


def format_money(amount: float, symbol: str = "£") -> str:
    return f"{symbol}{amount:,.2f}"


def listing_label(listing: Listing) -> str:
    return listing.data.title or f"Listing {listing.id[:8]}"


_ADMIN_SUMMARY = {
    "auction": "A sale was completed and the winner was charged.",
    "buy_now": "A buy-now purchase was paid.",
    "manual": "A sale was recorded manually.",
}


class AuctionNotifications:
    def __init__(
        self,
        notifier: Notifier,
        site_url: str = "",
        admin_email: Optional[str] = None,
        team_name: str = "The Auctions Team",
    ):
        self._notifier = notifier
        self._site_url = site_url.rstrip("/")
        self._admin_email = admin_email
        self._team_name = team_name

    def _listing_link(self, listing: Listing) -> str:
        return f"{self._site_url}/listing/{listing.id}"

    def _dashboard_link(self) -> str:
        return f"{self._site_url}/dashboard?tab=transactions"

    async def deliver(self, emails: List[Email]) -> int:
        """Send each email independently; returns how many were delivered."""
        sent = 0
        for email in emails:
            try:
                await self._notifier.send(email.recipient, email.subject, email.body)
                sent += 1
            except Exception as e:
                logger.warning(f"Failed to send {email.subject!r} to {email.recipient}: {e}")
        return sent

    # -----------------------------------------------------------------------
    # Bids
    # -----------------------------------------------------------------------

    def bid_placed_emails(self, listing: Listing, bid: Bid) -> List[Email]:
        label = listing_label(listing)
        amount = format_money(bid.data.amount)
        emails = [
            Email(
                recipient=bid.data.bidder_email,
                subject=f"Bid placed on {label}: {amount}",
                body="\n".join([
                    f"Thank you for your bid on {label}.",
                    "",
                    f"Bid amount: {amount}",
                    "",
                    "If you're the highest bidder when the auction ends, you'll be contacted with the next steps.",
                    "",
                    "If you did not place this bid, please contact support immediately.",
                ]),
            ),
        ]
        if listing.data.seller_email:
            emails.append(Email(
                recipient=listing.data.seller_email,
                subject=f"New bid on {label}",
                body="\n".join([
                    f"A new bid has been placed on {label}.",
                    "",
                    f"Bid amount: {amount}",
                    "",
                    f"See the current bids and auction status: {self._listing_link(listing)}",
                ]),
            ))
        else:
            logger.info(f"Listing {listing.id} has no seller email; skipping seller bid notification")
        return emails

    async def bid_placed(self, listing: Listing, bid: Bid) -> int:
        return await self.deliver(self.bid_placed_emails(listing, bid))

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def relisted_emails(self, listing: Listing) -> List[Email]:
        if not listing.data.seller_email:
            return []
        label = listing_label(listing)
        return [Email(
            recipient=listing.data.seller_email,
            subject=f"{label} has been re-listed",
            body="\n".join([
                f'Your listing "{label}" did not sell this week, so we have automatically '
                "re-listed it for the next auction window.",
                "",
                f"Next auction starts: {listing.data.auction_start:%A %d %B %Y %H:%M} UTC",
                f"View listing: {self._listing_link(listing)}",
                "",
                f"- {self._team_name}",
            ]),
        )]

    async def relisted(self, listing: Listing) -> int:
        return await self.deliver(self.relisted_emails(listing))

    # -----------------------------------------------------------------------
    # Sales
    # -----------------------------------------------------------------------

    def sale_emails(self, listing: Listing, transaction: Transaction) -> List[Email]:
        label = listing_label(listing)
        txn = transaction.data
        paid = txn.payment_status == "paid"
        amount = format_money(txn.amount_charged / 100 if txn.amount_charged is not None else txn.sale_price)
        reference = txn.charge_id or transaction.id
        buy_now = txn.source == "buy_now"

        if buy_now:
            buyer_lines = [f"Thank you for your purchase. You bought {label} with Buy Now.", ""]
        else:
            buyer_lines = [f"Congratulations, you won the auction for: {label}", ""]
        if paid:
            buyer_lines.append(f"Payment received: {amount}")
        else:
            buyer_lines.append(f"Sale price: {amount}. We will be in touch about payment.")
        buyer_lines += [
            "",
            "Next steps:",
            "1) The seller will dispatch your item within the delivery window.",
            "2) You'll be able to track progress in your dashboard.",
            "",
            f"Go to your dashboard: {self._dashboard_link()}",
            f"View listing: {self._listing_link(listing)}",
            "",
            f"Payment reference: {reference}",
            "",
            f"- {self._team_name}",
        ]
        if buy_now:
            buyer_subject = f"Purchase confirmed: {label}"
        else:
            buyer_subject = f"You won: {label}" + (" - payment received" if paid else "")
        emails = [Email(
            recipient=txn.buyer_email,
            subject=buyer_subject,
            body="\n".join(buyer_lines),
        )]

        if txn.seller_email:
            emails.append(Email(
                recipient=txn.seller_email,
                subject=f"Sold: {label}" + (" - buyer payment received" if paid else ""),
                body="\n".join([
                    f"Good news, your item has sold: {label}",
                    "",
                    f"Sale price: {format_money(txn.sale_price)}",
                    f"Commission ({txn.commission_rate:g}%): {format_money(txn.commission_amount)}",
                    f"Listing fee: {format_money(txn.listing_fee_applied)}",
                    f"Your payout: {format_money(txn.seller_payout)}",
                    "",
                    "Next steps:",
                    "1) Prepare your item for dispatch.",
                    "2) Add dispatch details (carrier/tracking) in your dashboard.",
                    "",
                    f"Go to your dashboard: {self._dashboard_link()}",
                    "",
                    f"- {self._team_name}",
                ]),
            ))

        if self._admin_email:
            emails.append(Email(
                recipient=self._admin_email,
                subject=f"Sale: {label} - {amount} {'paid' if paid else 'payment pending'}",
                body="\n".join([
                    _ADMIN_SUMMARY[txn.source],
                    "",
                    f"Item: {label}",
                    f"Amount: {amount}",
                    f"Buyer: {txn.buyer_email}",
                    f"Seller: {txn.seller_email or 'unknown'}",
                    f"Listing: {self._listing_link(listing)}",
                    f"Reference: {reference}",
                ]),
            ))
        return emails

    async def sale_completed(self, listing: Listing, transaction: Transaction) -> int:
        return await self.deliver(self.sale_emails(listing, transaction))
