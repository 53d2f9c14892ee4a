# storefront/repos/payment_repo.py
from datetime import datetime
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from storefront.data.models.payment import PaymentModel, WebhookEventModel


class PaymentRepo:
    def __init__(self, db: Session):
        self.db = db

    def add_payment(self, payment: PaymentModel) -> PaymentModel:
        self.db.add(payment)
        self.db.flush()
        return payment

    def get_payment(self, payment_id: int, for_update: bool = False) -> PaymentModel | None:
        stmt = select(PaymentModel).where(PaymentModel.id == payment_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_transaction_id(self, transaction_id: str) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel).where(PaymentModel.transaction_id == transaction_id)
        ).scalar_one_or_none()

    def get_pending_for_order(self, order_id: int) -> PaymentModel | None:
        return self.db.execute(
            select(PaymentModel)
            .where(PaymentModel.order_id == order_id, PaymentModel.state.in_(("PENDING", "PROCESSING")))
            .order_by(PaymentModel.id.desc())
            .limit(1)
        ).scalar_one_or_none()

    def list_pending_before(self, cutoff: datetime, limit: int = 100) -> List[PaymentModel]:
        return list(
            self.db.execute(
                select(PaymentModel)
                .where(
                    PaymentModel.state.in_(("PENDING", "PROCESSING")),
                    PaymentModel.created_at < cutoff,
                )
                .order_by(PaymentModel.id)
                .limit(limit)
            ).scalars()
        )

    def has_webhook_event(self, provider: str, dedup_key: str) -> bool:
        return self.db.execute(
            select(WebhookEventModel.id).where(
                WebhookEventModel.provider == provider,
                WebhookEventModel.dedup_key == dedup_key,
            )
        ).first() is not None

    def add_webhook_event(self, event: WebhookEventModel) -> None:
        # unikalny (provider, dedup_key), rownolegly duplikat wywali IntegrityError na commit
        self.db.add(event)
        self.db.flush()

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
