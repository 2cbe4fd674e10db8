"""initial schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ENUM, UUID

from alembic import op

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_ENUMS = {
    "listing_availability": ("pending_review", "listed", "rejected", "sold"),
    "listing_type": ("sale", "borrow"),
    "offer_status": ("pending", "completed", "cancelled"),
    "offer_kind": ("purchase", "borrow"),
    "notification_kind": ("purchase_request", "borrow_request", "purchase_confirmed", "item_sold"),
}


def _enum(name: str) -> ENUM:
    return ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in _ENUMS.items():
        ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "listings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(512), nullable=False),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("listing_type", _enum("listing_type"), nullable=False),
        sa.Column("borrow_duration_days", sa.Integer(), nullable=True),
        sa.Column("availability", _enum("listing_availability"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("price >= 0", name="ck_listings_price_non_negative"),
    )
    op.create_index("ix_listings_owner_id", "listings", ["owner_id"])
    op.create_index("ix_listings_availability", "listings", ["availability"])

    # Offers outlive their listing: deleting a listing only clears listing_id
    op.create_table(
        "offers",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "listing_id",
            UUID(as_uuid=True),
            sa.ForeignKey("listings.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("buyer_id", UUID(as_uuid=True), nullable=False),
        sa.Column("seller_id", UUID(as_uuid=True), nullable=False),
        sa.Column("kind", _enum("offer_kind"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False, server_default="cash"),
        sa.Column("status", _enum("offer_status"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("borrow_due_date", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("amount >= 0", name="ck_offers_amount_non_negative"),
    )
    op.create_index("ix_offers_listing_status", "offers", ["listing_id", "status"])
    op.create_index("ix_offers_buyer_id", "offers", ["buyer_id"])
    op.create_index("ix_offers_seller_id", "offers", ["seller_id"])

    op.create_table(
        "ratings",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "offer_id",
            UUID(as_uuid=True),
            sa.ForeignKey("offers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rater_id", UUID(as_uuid=True), nullable=False),
        sa.Column("rated_user_id", UUID(as_uuid=True), nullable=False),
        sa.Column("communication", sa.SmallInteger(), nullable=False),
        sa.Column("transaction_speed", sa.SmallInteger(), nullable=False),
        sa.Column("product_quality", sa.SmallInteger(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("offer_id", "rater_id", name="uq_ratings_offer_rater"),
        sa.CheckConstraint("communication BETWEEN 1 AND 5", name="ck_ratings_communication"),
        sa.CheckConstraint("transaction_speed BETWEEN 1 AND 5", name="ck_ratings_transaction_speed"),
        sa.CheckConstraint(
            "product_quality IS NULL OR product_quality BETWEEN 1 AND 5",
            name="ck_ratings_product_quality",
        ),
    )
    op.create_index("ix_ratings_rated_user_id", "ratings", ["rated_user_id"])

    op.create_table(
        "notifications",
        sa.Column("id", UUID(as_uuid=True), primary_key=True),
        sa.Column("recipient_id", UUID(as_uuid=True), nullable=False),
        sa.Column("kind", _enum("notification_kind"), nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "listing_id",
            UUID(as_uuid=True),
            sa.ForeignKey("listings.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index(
        "ix_notifications_recipient_created", "notifications", ["recipient_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("ratings")
    op.drop_table("offers")
    op.drop_table("listings")
    bind = op.get_bind()
    for name in reversed(list(_ENUMS)):
        ENUM(name=name).drop(bind, checkfirst=True)
