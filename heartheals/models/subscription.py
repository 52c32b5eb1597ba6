"""
Subscription and feature usage models.

One row per account in ``subscriptions``; usage counters live in
``feature_usage`` keyed by (account_id, feature_id). Rows are written only by
confirmed billing events and explicit usage recording.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from heartheals.db_base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)


class SubscriptionRecord(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    account_id = Column(String(255), primary_key=True)
    tier = Column(String(32), nullable=False, default="free")
    status = Column(String(32), nullable=False, default="inactive")
    provider_customer_id = Column(String(255), nullable=True, index=True)
    provider_subscription_id = Column(String(255), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    usage = relationship(
        "FeatureUsageRecord",
        back_populates="subscription",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<SubscriptionRecord(account_id={self.account_id}, "
            f"tier={self.tier}, status={self.status})>"
        )


class FeatureUsageRecord(Base):
    __tablename__ = "feature_usage"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(
        String(255),
        ForeignKey("subscriptions.account_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    feature_id = Column(String(255), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    subscription = relationship("SubscriptionRecord", back_populates="usage")

    __table_args__ = (
        UniqueConstraint("account_id", "feature_id", name="uq_feature_usage_account_feature"),
    )
