"""
Order data access repository.

Orders are looked up by their human order number and always loaded together
with their yards. Yard writes rely on the yard ``version`` column: SQLAlchemy
issues ``UPDATE ... WHERE version = :old`` and a stale row surfaces here as
YardVersionConflictError.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from yardops.core.logging import get_logger
from yardops.database.models.order import Order, Yard

logger = get_logger(__name__)

ORDER_SEARCH_COLUMNS = (
    Order.order_no,
    Order.customer_name,
    Order.f_name,
    Order.l_name,
    Order.phone,
    Order.email,
    Order.vin,
    Order.description,
)

YARD_SEARCH_COLUMNS = (
    Yard.yard_name,
    Yard.stock_no,
    Yard.tracking_no,
    Yard.customer_tracking_number_replacement,
    Yard.yard_tracking_number,
    Yard.return_tracking_cust,
)


@dataclass(frozen=True)
class OrderView:
    """
    Filter narrowing a window listing to one dashboard view.

    An empty ``statuses`` set means any order status; ``escalated`` keeps only
    orders with at least one yard whose ``esc_ticked`` flag is set.
    """

    statuses: frozenset = frozenset()
    escalated: bool = False


class OrderRepositoryError(Exception):
    """Base exception for order repository errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.context = context


class OrderNotFoundError(OrderRepositoryError):
    """Raised when no order has the requested order number."""

    pass


class YardNotFoundError(OrderRepositoryError):
    """Raised when a yard index is outside an order's yard list."""

    pass


class DuplicateOrderError(OrderRepositoryError):
    """Raised when an order number is already taken."""

    pass


class YardVersionConflictError(OrderRepositoryError):
    """Raised when a yard was modified by someone else since it was read."""

    pass


class OrderRepository:
    """
    Repository for order and yard persistence.

    Methods flush but never commit; the request session commits once the
    whole workflow action has succeeded.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session
        """
        self.session = session

    async def get_order_by_no(self, order_no: str) -> Optional[Order]:
        """
        Get order by order number with its yards.

        Returns:
            Order if found, None otherwise

        Raises:
            OrderRepositoryError: If query fails
        """
        try:
            stmt = (
                select(Order)
                .where(Order.order_no == order_no)
                .options(selectinload(Order.yards))
            )
            result = await self.session.execute(stmt)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Failed to fetch order", order_no=order_no, error=str(e))
            raise OrderRepositoryError(
                "Failed to fetch order", order_no=order_no, error=str(e)
            ) from e

    async def get_order(self, order_no: str) -> Order:
        """
        Get order by order number or raise.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.get_order_by_no(order_no)
        if order is None:
            raise OrderNotFoundError("Order not found", order_no=order_no)
        return order

    @staticmethod
    def get_yard(order: Order, yard_index: int) -> Yard:
        """
        Resolve a 1-based yard index on a loaded order.

        Raises:
            YardNotFoundError: If the index is out of range
        """
        yard = order.yard_at(yard_index)
        if yard is None:
            raise YardNotFoundError(
                f"No yard found at index {yard_index}",
                order_no=order.order_no,
                yard_index=yard_index,
                yard_count=len(order.yards),
            )
        return yard

    async def create_order(self, data: dict[str, Any]) -> Order:
        """
        Insert a new order.

        Raises:
            DuplicateOrderError: If the order number already exists
            OrderRepositoryError: If the insert fails
        """
        order_no = data["order_no"]
        existing = await self.session.scalar(
            select(func.count()).select_from(Order).where(Order.order_no == order_no)
        )
        if existing:
            raise DuplicateOrderError("Order No already exists", order_no=order_no)

        order = Order(**data)
        order.yards = []
        order.gross_profit = order.compute_gross_profit()
        self.session.add(order)
        try:
            await self.session.flush()
        except IntegrityError as e:
            logger.warning("Order insert hit unique constraint", order_no=order_no)
            raise DuplicateOrderError("Order No already exists", order_no=order_no) from e
        except SQLAlchemyError as e:
            logger.error("Order creation failed", order_no=order_no, error=str(e))
            raise OrderRepositoryError(
                "Order creation failed due to database error",
                order_no=order_no,
                error=str(e),
            ) from e

        logger.info("Order created", order_id=order.id, order_no=order_no)
        return order

    async def add_yard(self, order: Order, data: dict[str, Any]) -> Yard:
        """Append a yard at the next position."""
        yard = Yard(position=len(order.yards) + 1, **data)
        order.yards.append(yard)
        await self.flush(order)
        logger.info(
            "Yard attached",
            order_no=order.order_no,
            yard_index=yard.position,
            yard_name=yard.yard_name,
        )
        return yard

    async def flush(self, order: Order) -> None:
        """
        Flush pending changes for an order.

        Raises:
            YardVersionConflictError: If a yard row changed underneath us
            OrderRepositoryError: If the write fails
        """
        try:
            await self.session.flush()
        except StaleDataError as e:
            logger.warning("Stale yard write rejected", order_no=order.order_no)
            raise YardVersionConflictError(
                "Yard was modified by another user; reload and try again",
                order_no=order.order_no,
            ) from e
        except SQLAlchemyError as e:
            logger.error("Order write failed", order_no=order.order_no, error=str(e))
            raise OrderRepositoryError(
                "Order update failed due to database error",
                order_no=order.order_no,
                error=str(e),
            ) from e

    # ------------------------------------------------------------------
    # Listing and search
    # ------------------------------------------------------------------

    @staticmethod
    def _window_conditions(
        start: datetime, end: datetime, view: Optional[OrderView] = None
    ) -> list:
        conditions = [Order.order_date >= start, Order.order_date < end]
        if view is not None:
            if view.statuses:
                conditions.append(Order.order_status.in_(view.statuses))
            if view.escalated:
                conditions.append(Order.yards.any(Yard.esc_ticked == "Yes"))
        return conditions

    async def list_window(
        self,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
        view: Optional[OrderView] = None,
    ) -> Sequence[Order]:
        """Orders placed in ``[start, end)`` matching ``view``, newest first."""
        stmt = (
            select(Order)
            .where(and_(*self._window_conditions(start, end, view)))
            .options(selectinload(Order.yards))
            .order_by(Order.order_date.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_window(
        self, start: datetime, end: datetime, view: Optional[OrderView] = None
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(Order)
            .where(and_(*self._window_conditions(start, end, view)))
        )
        return int(await self.session.scalar(stmt) or 0)

    def _term_condition(self, term: str):
        pattern = f"%{term}%"
        return or_(
            *(column.ilike(pattern) for column in ORDER_SEARCH_COLUMNS),
            Order.yards.any(or_(*(column.ilike(pattern) for column in YARD_SEARCH_COLUMNS))),
        )

    async def search_window(
        self,
        term: str,
        start: datetime,
        end: datetime,
        offset: int,
        limit: int,
        view: Optional[OrderView] = None,
    ) -> tuple[Sequence[Order], int]:
        """
        Substring search used when the search index is unavailable.

        Returns:
            Tuple of (orders, total_count)
        """
        conditions = and_(
            *self._window_conditions(start, end, view),
            self._term_condition(term),
        )
        stmt = (
            select(Order)
            .where(conditions)
            .options(selectinload(Order.yards))
            .order_by(Order.order_date.desc(), Order.id.desc())
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count()).select_from(Order).where(conditions)

        result = await self.session.execute(stmt)
        total = await self.session.scalar(count_stmt)
        return result.scalars().all(), int(total or 0)

    async def get_orders_by_nos(self, order_nos: Sequence[str]) -> list[Order]:
        """Load orders by number, preserving the order of ``order_nos``."""
        if not order_nos:
            return []
        stmt = (
            select(Order)
            .where(Order.order_no.in_(order_nos))
            .options(selectinload(Order.yards))
        )
        result = await self.session.execute(stmt)
        by_no = {order.order_no: order for order in result.scalars().all()}
        return [by_no[no] for no in order_nos if no in by_no]

    async def list_store_credits(self) -> list[tuple[Order, Yard]]:
        """Yards holding a positive store credit, newest order first."""
        stmt = (
            select(Order, Yard)
            .join(Yard, Yard.order_id == Order.id)
            .where(Yard.store_credit > 0)
            .order_by(Order.order_date.desc(), Yard.position)
        )
        result = await self.session.execute(stmt)
        return [(order, yard) for order, yard in result.all()]

    async def orders_between(
        self,
        column_name: str,
        start: datetime,
        end: datetime,
    ) -> Sequence[Order]:
        """Orders whose ``column_name`` timestamp falls in ``[start, end)``."""
        column = getattr(Order, column_name)
        stmt = (
            select(Order)
            .where(and_(column >= start, column < end))
            .options(selectinload(Order.yards))
            .order_by(column.desc(), Order.id.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
