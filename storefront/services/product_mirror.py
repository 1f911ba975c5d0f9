"""Product mirror — idempotent upserts and reads against the products table.

Business Rules:
- Upsert keyed by product id (INSERT ... ON CONFLICT(id) DO UPDATE).
- last_synced_at only moves forward.
- A sync never turns a hidden row visible and never reverts a released preorder.
- product_type and slug are admin-owned once set; artist, image_url and
  preorder_release_date keep the mirror value when the platform sends none.
- Slugs are assigned once, on insert (or when a row has none), probing every
  slug already in the table and appending -1, -2, ... on collision.

Nothing here commits: the caller owns the transaction so a whole sync pass
lands atomically.

Called by: services/catalog_service.py, services/preorder_service.py
Depends on: models/product.py, models/sync.py, utils/slugs.py
"""

from datetime import datetime, timezone

from loguru import logger
from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import MirrorError
from ..models import PreorderStatus, Product, SyncLog
from ..schemas.product import ProductRecord
from ..utils.slugs import generate_slug, generate_unique_slug
from .catalog_normalizer import stock_status_for


def _assign_slugs(db: Session, records: list[ProductRecord]) -> dict[str, str]:
    """Slugs for records that are new or have no slug yet, keyed by product id."""
    ids = [r.id for r in records]
    current = dict(db.execute(select(Product.id, Product.slug).where(Product.id.in_(ids))).all())
    taken = {s for s in db.scalars(select(Product.slug).where(Product.slug.is_not(None)))}

    assigned = {}
    for record in records:
        if current.get(record.id):
            continue
        slug = generate_unique_slug(record.title, record.artist, taken)
        if not slug:
            slug = generate_unique_slug(generate_slug(record.id) or "product", None, taken)
        taken.add(slug)
        assigned[record.id] = slug
    return assigned


def _row_values(record: ProductRecord, slug: str | None, synced_at: datetime) -> dict:
    values = record.model_dump(mode="python", exclude={"slug", "last_synced_at", "preorder_status"})
    values["product_type"] = record.product_type.value
    values["stock_status"] = record.stock_status.value
    values["slug"] = slug
    values["is_from_square"] = True
    values["preorder_status"] = (
        PreorderStatus.ACTIVE.value if record.is_preorder else PreorderStatus.NONE.value
    )
    values["last_synced_at"] = synced_at
    values["created_at"] = synced_at
    values["updated_at"] = synced_at
    return values


def upsert_products(db: Session, records: list[ProductRecord], synced_at: datetime) -> int:
    """Insert or update records in the current transaction. Returns rows written."""
    if not records:
        return 0

    slugs = _assign_slugs(db, records)
    rows = [_row_values(r, slugs.get(r.id), synced_at) for r in records]

    table = Product.__table__
    stmt = sqlite_insert(table)
    ex = stmt.excluded
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.id],
        set_={
            "title": ex.title,
            "description": ex.description,
            "price": ex.price,
            "currency": ex.currency,
            "stock_quantity": ex.stock_quantity,
            "stock_status": ex.stock_status,
            "in_stock": ex.in_stock,
            "available_at_location": ex.available_at_location,
            "platform_updated_at": ex.platform_updated_at,
            "is_from_square": True,
            "updated_at": ex.updated_at,
            "artist": func.coalesce(ex.artist, table.c.artist),
            "image_url": func.coalesce(ex.image_url, table.c.image_url),
            "preorder_release_date": func.coalesce(ex.preorder_release_date, table.c.preorder_release_date),
            "product_type": func.coalesce(table.c.product_type, ex.product_type),
            "slug": func.coalesce(table.c.slug, ex.slug),
            "is_visible": and_(table.c.is_visible, ex.is_visible),
            "is_preorder": or_(table.c.is_preorder, ex.is_preorder),
            "preorder_status": case(
                (table.c.preorder_status == PreorderStatus.RELEASED.value, PreorderStatus.RELEASED.value),
                (or_(table.c.is_preorder, ex.is_preorder), PreorderStatus.ACTIVE.value),
                else_=PreorderStatus.NONE.value,
            ),
            "last_synced_at": case(
                (
                    or_(table.c.last_synced_at.is_(None), table.c.last_synced_at < ex.last_synced_at),
                    ex.last_synced_at,
                ),
                else_=table.c.last_synced_at,
            ),
        },
    )
    db.execute(stmt, rows)
    return len(rows)


def mark_missing_unavailable(db: Session, seen_ids: set[str]) -> int:
    """Flag platform rows absent from a complete pass as unavailable at the location."""
    if not seen_ids:
        return 0
    result = db.execute(
        update(Product)
        .where(
            Product.is_from_square.is_(True),
            Product.available_at_location.is_(True),
            Product.id.not_in(list(seen_ids)),
        )
        .values(available_at_location=False, in_stock=False, updated_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def _scope(stmt, for_admin: bool):
    if for_admin:
        return stmt
    return stmt.where(Product.available_at_location.is_(True), Product.is_visible.is_(True))


def read_products(db: Session, for_admin: bool, ids=None) -> list[ProductRecord]:
    """Mirror rows in the caller's visibility scope, ordered by title then id."""
    stmt = _scope(select(Product), for_admin)
    if ids is not None:
        stmt = stmt.where(Product.id.in_(list(ids)))
    stmt = stmt.order_by(Product.title, Product.id)
    try:
        rows = db.scalars(stmt).all()
    except SQLAlchemyError as e:
        raise MirrorError(f"Mirror read failed: {e}") from e
    return [ProductRecord.model_validate(row) for row in rows]


def latest_sync_time(db: Session) -> datetime | None:
    """Newest last_synced_at across platform-sourced rows."""
    try:
        return db.scalar(
            select(func.max(Product.last_synced_at)).where(Product.is_from_square.is_(True))
        )
    except SQLAlchemyError as e:
        raise MirrorError(f"Mirror read failed: {e}") from e


def mirror_counts(db: Session) -> dict:
    def _count(*criteria) -> int:
        return db.scalar(select(func.count()).select_from(Product).where(*criteria)) or 0

    return {
        "total": _count(),
        "visible": _count(Product.is_visible.is_(True)),
        "from_square": _count(Product.is_from_square.is_(True)),
        "available": _count(Product.available_at_location.is_(True)),
    }


def update_inventory(product: Product, quantity: int | None, low_stock_threshold: int = 3) -> Product:
    """Apply a single live inventory count to a row. None means no record at the location."""
    qty = max(0, quantity or 0)
    product.stock_quantity = qty
    product.stock_status = stock_status_for(qty, low_stock_threshold).value
    product.in_stock = qty > 0
    if quantity is not None:
        product.available_at_location = True
    return product


def record_sync_log(
    db: Session,
    status: str,
    started_at: datetime,
    counts: dict,
    errors: list[str],
    source: str = "square",
) -> SyncLog:
    """Add a sync log row to the current transaction."""
    finished = datetime.now(timezone.utc)
    entry = SyncLog(
        source=source,
        status=status,
        started_at=started_at,
        finished_at=finished,
        duration_seconds=round((finished - started_at).total_seconds(), 1),
        row_counts=counts,
        errors=errors or None,
    )
    db.add(entry)
    return entry


def write_failed_sync_log(session_factory, started_at: datetime, errors: list[str], source: str = "square") -> None:
    """Persist an error log entry in its own session; the failed pass wrote nothing."""
    db = session_factory()
    try:
        record_sync_log(db, "error", started_at, {}, errors, source=source)
        db.commit()
    except SQLAlchemyError:
        logger.exception("Failed to write sync log")
        db.rollback()
    finally:
        db.close()


def last_sync_log(db: Session, source: str = "square") -> SyncLog | None:
    return db.scalars(
        select(SyncLog).where(SyncLog.source == source).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(1)
    ).first()
