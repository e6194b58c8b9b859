"""
Basic example of using sqlalchemy-bulk-upsert.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, create_engine, select
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from sqlalchemy_bulk_upsert import BulkUpsertEngine, HookPhase, HookRegistry


class Base(DeclarativeBase):
    pass


class Product(Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sku: Mapped[str] = mapped_column(String(32))
    name: Mapped[str] = mapped_column(String(255))
    stock: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)


hooks = HookRegistry()


@hooks.on(HookPhase.BEFORE_SAVE)
def normalize_names(rows):
    """Trim names before they are compared and written."""
    for row in rows:
        if row.get("name"):
            row["name"] = row["name"].strip()


@hooks.on(HookPhase.BEFORE_CREATE)
def skip_out_of_stock(rows):
    """Never create products that have no stock."""
    return [row for row in rows if row.get("stock", 0) > 0]


@hooks.on(HookPhase.AFTER_SAVE)
def report(rows):
    for row in rows:
        print(f"{row['sku']}: {row.state.value}")


def main():
    engine = create_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        upserter = BulkUpsertEngine.for_session(session, Product, hooks=hooks)

        result = upserter.upsert(
            [
                {"sku": "A-1", "name": "Ball ", "stock": 10},
                {"sku": "B-2", "name": "Kite", "stock": 0},
            ],
            unique_attributes=["sku"],
        )
        print(f"First batch: created={result.created}")

        # Same rows again plus a change: only the changed row is written
        result = upserter.upsert(
            [
                {"sku": "A-1", "name": "Ball", "stock": 12},
                {"sku": "C-3", "name": "Yo-yo", "stock": 5},
            ],
            unique_attributes=["sku"],
            update_attributes=["stock"],
        )
        print(f"Second batch: created={result.created}, updated={result.updated}")

        session.commit()

        for product in session.scalars(select(Product).order_by(Product.id)):
            print(product.sku, product.name, product.stock, product.updated_at)


if __name__ == "__main__":
    main()
