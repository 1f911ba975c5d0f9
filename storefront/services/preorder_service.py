"""Preorder service — release matured preorders and report on upcoming ones.

Business Rules:
- A preorder matures when is_preorder AND preorder_status='active' AND
  preorder_release_date <= today (calendar date, not timestamp).
- Release and preview share one predicate (_matured_filter).
- Each row is flipped with its own guarded UPDATE ... WHERE
  preorder_status='active' and committed on its own: a failure on one row
  leaves earlier rows released and is reported in ReleaseResult.failed.
- Re-entrant: a second run on the same day writes nothing.

Called by: scheduler.py (preorder-release job), routers/admin_sync.py
Depends on: models/product.py, cache/regions.py
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from loguru import logger
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..cache.regions import CacheInvalidationManager
from ..models import PreorderStatus, Product
from ..schemas.product import ProductRecord


@dataclass
class ReleaseResult:
    released: list[str] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)  # {"id": ..., "error": ...}

    def as_dict(self) -> dict:
        return {"released": self.released, "failed": self.failed}


def _today() -> date:
    return datetime.now(timezone.utc).date()


def _matured_filter(today: date):
    return and_(
        Product.is_preorder.is_(True),
        Product.preorder_status == PreorderStatus.ACTIVE.value,
        Product.preorder_release_date.is_not(None),
        Product.preorder_release_date <= today,
    )


def preview_matured_preorders(db: Session, today: date | None = None) -> list[ProductRecord]:
    """What release_matured_preorders would flip right now. Never writes."""
    rows = db.scalars(
        select(Product)
        .where(_matured_filter(today or _today()))
        .order_by(Product.preorder_release_date, Product.id)
    ).all()
    return [ProductRecord.model_validate(r) for r in rows]


def release_matured_preorders(
    db: Session, cache: CacheInvalidationManager, today: date | None = None
) -> ReleaseResult:
    today = today or _today()
    result = ReleaseResult()

    ids = db.scalars(
        select(Product.id).where(_matured_filter(today)).order_by(Product.preorder_release_date, Product.id)
    ).all()

    for product_id in ids:
        try:
            res = db.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.preorder_status == PreorderStatus.ACTIVE.value,
                )
                .values(
                    preorder_status=PreorderStatus.RELEASED.value,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Failed to release preorder {}: {}", product_id, e)
            result.failed.append({"id": product_id, "error": str(e)})
            continue
        if res.rowcount:
            result.released.append(product_id)

    if result.released:
        cache.invalidate_products()
        logger.info("Released {} matured preorders: {}", len(result.released), result.released)
    if result.failed:
        logger.warning("{} preorders could not be released", len(result.failed))
    return result


def get_preorders_by_status(db: Session, status: PreorderStatus | str) -> list[ProductRecord]:
    status = PreorderStatus(status)
    stmt = select(Product).where(Product.preorder_status == status.value)
    if status is not PreorderStatus.NONE:
        stmt = stmt.where(Product.is_preorder.is_(True))
    rows = db.scalars(stmt.order_by(Product.preorder_release_date, Product.title)).all()
    return [ProductRecord.model_validate(r) for r in rows]


def get_preorders_releasing_soon(
    db: Session, days_ahead: int = 7, today: date | None = None
) -> list[ProductRecord]:
    """Active preorders releasing after today and within days_ahead days."""
    today = today or _today()
    rows = db.scalars(
        select(Product)
        .where(
            Product.is_preorder.is_(True),
            Product.preorder_status == PreorderStatus.ACTIVE.value,
            Product.preorder_release_date > today,
            Product.preorder_release_date <= today + timedelta(days=days_ahead),
        )
        .order_by(Product.preorder_release_date, Product.title)
    ).all()
    return [ProductRecord.model_validate(r) for r in rows]


def days_until_release(release_date: date | None, today: date | None = None) -> int:
    """Whole days until release; 0 once the date has arrived (never negative)."""
    if release_date is None:
        return 0
    return max(0, (release_date - (today or _today())).days)


def preorder_stats(db: Session, today: date | None = None) -> dict:
    counts = dict(
        db.execute(
            select(Product.preorder_status, func.count())
            .where(Product.is_preorder.is_(True))
            .group_by(Product.preorder_status)
        ).all()
    )
    active = counts.get(PreorderStatus.ACTIVE.value, 0)
    released = counts.get(PreorderStatus.RELEASED.value, 0)
    matured = db.scalar(select(func.count()).select_from(Product).where(_matured_filter(today or _today())))
    return {
        "total": active + released,
        "active": active,
        "released": released,
        "ready_to_release": matured or 0,
    }
