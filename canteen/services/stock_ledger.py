"""
Canteen API — Stock ledger

Authoritative current/daily stock counters per menu item. The only writers
of current_stock are `decrement` (order settlement) and the reset/set
operations (morning reset, kitchen admin).

Decrements are compare-and-swap writes on version_id:
  - READ:  current_stock + version_id
  - WRITE: UPDATE ... WHERE version_id = <read_version>
  - If another writer committed first → StaleDataError → retry with backoff
Unlike a reservation, a decrement never fails for lack of stock: the order
was already validated, so the counter floors at zero.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from canteen.core.exceptions import NotFoundError
from canteen.core.optimistic_lock import StaleDataError, with_optimistic_retry
from canteen.models.menu import MenuItem

logger = logging.getLogger(__name__)

# 0 < current <= 20% of daily, expressed without floats: current * 5 <= daily
LOW_STOCK_DIVISOR = 5


@dataclass(frozen=True)
class StockCheck:
    ok: bool
    available: int | None  # None for untracked items


@dataclass(frozen=True)
class StockStatus:
    low_stock: list[MenuItem]
    out_of_stock: list[MenuItem]
    all_tracked: list[MenuItem]

    @property
    def summary(self) -> dict[str, int]:
        return {
            "total_tracked": len(self.all_tracked),
            "low_stock": len(self.low_stock),
            "out_of_stock": len(self.out_of_stock),
            "in_stock": sum(1 for i in self.all_tracked if i.current_stock > 0),
        }


def availability(item: MenuItem, requested: int) -> StockCheck:
    if not item.is_tracked:
        return StockCheck(ok=item.is_available, available=None if item.is_available else 0)
    return StockCheck(ok=item.current_stock >= requested, available=item.current_stock)


def stock_flags(current_stock: int) -> dict[str, bool]:
    return {"is_out_of_stock": current_stock <= 0, "is_available": current_stock > 0}


class StockLedger:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get(self, item_id: str) -> MenuItem:
        item = await self.db.get(MenuItem, item_id, populate_existing=True)
        if item is None:
            raise NotFoundError(f"Menu item '{item_id}' not found.")
        return item

    async def reserve_check(self, item_id: str, requested: int) -> StockCheck:
        """Read-only availability check."""
        return availability(await self._get(item_id), requested)

    @with_optimistic_retry()
    async def decrement(self, item_id: str, quantity: int) -> int | None:
        """
        Take `quantity` out of the item's current stock, flooring at zero.
        Returns the new stock, or None when the item is untracked.
        The caller owns the transaction (commit happens in the lifecycle hook).
        """
        row = (
            await self.db.execute(
                select(MenuItem.name, MenuItem.daily_stock, MenuItem.current_stock, MenuItem.version_id)
                .where(MenuItem.id == item_id)
            )
        ).one_or_none()
        if row is None:
            raise NotFoundError(f"Menu item '{item_id}' not found.")
        if row.daily_stock <= 0:
            return None

        new_stock = max(0, row.current_stock - quantity)
        result = await self.db.execute(
            update(MenuItem)
            .where(MenuItem.id == item_id, MenuItem.version_id == row.version_id)
            .values(current_stock=new_stock, version_id=row.version_id + 1, **stock_flags(new_stock))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise StaleDataError("Optimistic lock conflict: menu item version changed concurrently.")

        logger.info("Stock for %s: %d → %d", row.name, row.current_stock, new_stock)
        return new_stock

    async def reset_daily(self) -> int:
        """Refill every tracked item to its daily allotment. Idempotent."""
        result = await self.db.execute(
            update(MenuItem)
            .where(MenuItem.daily_stock > 0)
            .values(
                current_stock=MenuItem.daily_stock,
                is_out_of_stock=False,
                is_available=True,
                version_id=MenuItem.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        logger.info("Daily stock reset completed. Updated %d items.", result.rowcount)
        return result.rowcount

    async def _tracked(self, *criteria) -> list[MenuItem]:
        result = await self.db.execute(
            select(MenuItem)
            .where(MenuItem.daily_stock > 0, *criteria)
            .order_by(MenuItem.name)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def low_stock_scan(self) -> list[MenuItem]:
        return await self._tracked(
            MenuItem.current_stock > 0,
            MenuItem.current_stock * LOW_STOCK_DIVISOR <= MenuItem.daily_stock,
        )

    async def out_of_stock_scan(self) -> list[MenuItem]:
        return await self._tracked(MenuItem.current_stock <= 0)

    async def stock_status(self) -> StockStatus:
        tracked = await self._tracked()
        return StockStatus(
            low_stock=[
                i for i in tracked
                if i.current_stock > 0 and i.current_stock * LOW_STOCK_DIVISOR <= i.daily_stock
            ],
            out_of_stock=[i for i in tracked if i.current_stock <= 0],
            all_tracked=tracked,
        )

    async def set_item_stock(self, item_id: str, daily_stock: int, current_stock: int) -> MenuItem:
        item = await self._get(item_id)
        item.daily_stock = daily_stock
        item.current_stock = current_stock
        item.version_id += 1
        if daily_stock > 0:
            item.is_out_of_stock = current_stock <= 0
            item.is_available = current_stock > 0
        else:
            item.is_out_of_stock = False
        await self.db.commit()
        logger.info("Stock updated for %s: %d/%d", item.name, current_stock, daily_stock)
        return item

    async def bulk_set_daily(self, updates: list[tuple[str, int]]) -> int:
        """Set new daily allotments and refill to them. Unknown ids reject the batch."""
        ids = {item_id for item_id, _ in updates}
        found = set(
            (await self.db.execute(select(MenuItem.id).where(MenuItem.id.in_(ids)))).scalars().all()
        )
        missing = sorted(ids - found)
        if missing:
            raise NotFoundError(f"Menu items not found: {', '.join(missing)}")

        for item_id, daily_stock in updates:
            await self.db.execute(
                update(MenuItem)
                .where(MenuItem.id == item_id)
                .values(
                    daily_stock=daily_stock,
                    current_stock=daily_stock,
                    is_out_of_stock=False,
                    is_available=True,
                    version_id=MenuItem.version_id + 1,
                )
                .execution_options(synchronize_session=False)
            )
        await self.db.commit()
        return len(updates)
