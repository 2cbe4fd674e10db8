"""
SQLAlchemy ORM models.

These are purely infrastructure concerns: domain entities are mapped to/from
these models inside the repository implementations.
"""
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from marketplace_core.domain.enums.listing_availability import ListingAvailability, ListingType
from marketplace_core.domain.enums.notification_kind import NotificationKind
from marketplace_core.domain.enums.offer_status import OfferKind, OfferStatus
from marketplace_core.infrastructure.database.connection import Base


def _pg_enum(enum_cls: type, name: str) -> SAEnum:
    return SAEnum(enum_cls, name=name, values_callable=lambda obj: [e.value for e in obj])


_availability_enum = _pg_enum(ListingAvailability, "listing_availability")
_listing_type_enum = _pg_enum(ListingType, "listing_type")
_offer_status_enum = _pg_enum(OfferStatus, "offer_status")
_offer_kind_enum = _pg_enum(OfferKind, "offer_kind")
_notification_kind_enum = _pg_enum(NotificationKind, "notification_kind")


class ListingModel(Base):
    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(512), nullable=False)
    price: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    listing_type: Mapped[ListingType] = mapped_column(_listing_type_enum, nullable=False)
    borrow_duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    availability: Mapped[ListingAvailability] = mapped_column(
        _availability_enum, nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )
    sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("price >= 0", name="ck_listings_price_non_negative"),
    )


class OfferModel(Base):
    __tablename__ = "offers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("listings.id", ondelete="SET NULL"),
        nullable=True,
    )
    buyer_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    seller_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    kind: Mapped[OfferKind] = mapped_column(_offer_kind_enum, nullable=False)
    amount: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="cash")

    status: Mapped[OfferStatus] = mapped_column(_offer_status_enum, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    borrow_due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_offers_listing_status", "listing_id", "status"),
        CheckConstraint("amount >= 0", name="ck_offers_amount_non_negative"),
    )


class RatingModel(Base):
    __tablename__ = "ratings"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    offer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("offers.id", ondelete="CASCADE"), nullable=False
    )
    rater_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    rated_user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)

    communication: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    transaction_speed: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    product_quality: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("offer_id", "rater_id", name="uq_ratings_offer_rater"),
        CheckConstraint("communication BETWEEN 1 AND 5", name="ck_ratings_communication"),
        CheckConstraint("transaction_speed BETWEEN 1 AND 5", name="ck_ratings_transaction_speed"),
        CheckConstraint(
            "product_quality IS NULL OR product_quality BETWEEN 1 AND 5",
            name="ck_ratings_product_quality",
        ),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    recipient_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    kind: Mapped[NotificationKind] = mapped_column(_notification_kind_enum, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    listing_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("listings.id", ondelete="CASCADE"), nullable=True
    )
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_recipient_created", "recipient_id", "created_at"),
    )
