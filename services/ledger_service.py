from __future__ import annotations

from decimal import Decimal
from typing import Set

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.asset import Asset


def find_distinct_held_asset_names(db: Session) -> Set[str]:
    """CoinCap ids held by any wallet; one entry per id however many wallets hold it."""
    rows = db.execute(select(Asset.name).distinct()).scalars().all()
    return {name for name in rows if name}


def update_price_by_name(db: Session, name: str, price: Decimal) -> int:
    """Set ``price_usd`` on every position of ``name``. Commits; returns affected rows."""
    result = db.execute(
        update(Asset)
        .where(Asset.name == name)
        .values(price_usd=price)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0
