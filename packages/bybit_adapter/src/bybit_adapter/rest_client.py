"""Read-only REST client for the Bybit account activity used by the trade sync.

This module provides paginated access to:
- Execution list (fills)
- Order history
- Transaction log (funding settlements and other income)
- Closed P&L (venue-reported realized P&L, used for reconciliation)

All endpoints are queried for the linear (USDT/USDC perpetual) category.

Reference:
- Execution List: https://bybit-exchange.github.io/docs/v5/order/execution
- Order History: https://bybit-exchange.github.io/docs/v5/order/order-list
- Transaction Log: https://bybit-exchange.github.io/docs/v5/account/transaction-log
- Closed PnL: https://bybit-exchange.github.io/docs/v5/position/close-pnl
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from pybit.unified_trading import HTTP

from bybit_adapter.rate_limiter import RateLimiter, RateLimitConfig


logger = logging.getLogger(__name__)

Page = tuple[list[dict], Optional[str]]


class BybitApiError(Exception):
    """Bybit returned a non-zero retCode."""

    def __init__(self, method: str, ret_code: int, ret_msg: str):
        super().__init__(f"Bybit API error in {method}: [{ret_code}] {ret_msg}")
        self.method = method
        self.ret_code = ret_code
        self.ret_msg = ret_msg


@dataclass
class BybitRestClient:
    """Paginated, rate-limited access to Bybit account history.

    Example:
        client = BybitRestClient(api_key="xxx", api_secret="yyy", testnet=False)

        executions, truncated = client.get_executions_all(
            start_time=1704639600000,
            end_time=1704726000000,
        )
    """

    api_key: str
    api_secret: str
    testnet: bool = True
    rate_limit_config: RateLimitConfig = field(default_factory=RateLimitConfig)

    _session: Optional[HTTP] = field(default=None, init=False, repr=False)
    _rate_limiter: RateLimiter = field(default=None, init=False, repr=False)

    def __post_init__(self):
        """Initialize HTTP session and rate limiter."""
        self._session = HTTP(
            testnet=self.testnet,
            api_key=self.api_key,
            api_secret=self.api_secret,
        )
        self._rate_limiter = RateLimiter(config=self.rate_limit_config)

    def _query(self, method: str, **params) -> dict:
        """Call a pybit session method under the rate limiter and return its result."""
        waited = self._rate_limiter.acquire()
        if waited > 0:
            logger.debug(f"Rate limit: waited {waited:.3f}s before {method}")

        response = getattr(self._session, method)(**params)
        self._check_response(response, method)
        return response.get("result", {})

    @staticmethod
    def _window_params(
        limit: int,
        symbol: Optional[str],
        start_time: Optional[int],
        end_time: Optional[int],
        cursor: Optional[str],
        **extra,
    ) -> dict:
        params = {"category": "linear", "limit": limit}
        if symbol:
            params["symbol"] = symbol
        if start_time:
            params["startTime"] = start_time
        if end_time:
            params["endTime"] = end_time
        if cursor:
            params["cursor"] = cursor
        params.update({k: v for k, v in extra.items() if v})
        return params

    def _page(self, method: str, params: dict) -> Page:
        result = self._query(method, **params)
        records = result.get("list", [])
        next_cursor = result.get("nextPageCursor")
        logger.debug(f"{method}: fetched {len(records)} records, has_more={bool(next_cursor)}")
        return records, next_cursor if next_cursor else None

    @staticmethod
    def _paginate(fetch_page: Callable[[Optional[str]], Page], max_pages: int, label: str) -> tuple[list[dict], bool]:
        """Follow nextPageCursor until exhausted or max_pages reached.

        Returns:
            Tuple of (all records, truncated flag).
            truncated is True when max_pages was reached but more data exists.
        """
        records: list[dict] = []
        cursor = None
        page = 0

        while page < max_pages:
            batch, cursor = fetch_page(cursor)
            records.extend(batch)
            page += 1
            if not cursor:
                break

        truncated = page >= max_pages and cursor is not None
        if truncated:
            logger.warning(f"{label} reached max_pages={max_pages} with more data available")
        logger.info(f"Fetched {len(records)} total {label} across {page} pages (truncated={truncated})")
        return records, truncated

    def get_executions(
        self,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: int = 100,
        cursor: Optional[str] = None,
    ) -> Page:
        """Fetch one page of private executions (max 100 per page).

        Returns:
            Tuple of (executions list, next_cursor or None)

        Raises:
            BybitApiError: If API call fails
        """
        params = self._window_params(min(limit, 100), symbol, start_time, end_time, cursor)
        return self._page("get_executions", params)

    def get_executions_all(
        self,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        max_pages: int = 50,
    ) -> tuple[list[dict], bool]:
        """Fetch all executions in the window with automatic pagination."""
        return self._paginate(
            lambda cursor: self.get_executions(symbol, start_time, end_time, cursor=cursor),
            max_pages,
            "executions",
        )

    def get_order_history(
        self,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Page:
        """Fetch one page of order history (max 50 per page).

        Returns:
            Tuple of (orders list, next_cursor or None)

        Raises:
            BybitApiError: If API call fails
        """
        params = self._window_params(min(limit, 50), symbol, start_time, end_time, cursor)
        return self._page("get_order_history", params)

    def get_order_history_all(
        self,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        max_pages: int = 50,
    ) -> tuple[list[dict], bool]:
        """Fetch all orders in the window with automatic pagination."""
        return self._paginate(
            lambda cursor: self.get_order_history(symbol, start_time, end_time, cursor=cursor),
            max_pages,
            "orders",
        )

    def get_transaction_log(
        self,
        symbol: Optional[str] = None,
        type: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Page:
        """Fetch one page of the unified account transaction log.

        Args:
            type: Transaction type filter (e.g., "SETTLEMENT" for funding)

        Returns:
            Tuple of (transactions list, next_cursor or None)

        Raises:
            BybitApiError: If API call fails
        """
        params = self._window_params(min(limit, 50), symbol, start_time, end_time, cursor, type=type)
        params["accountType"] = "UNIFIED"
        return self._page("get_transaction_log", params)

    def get_transaction_log_all(
        self,
        symbol: Optional[str] = None,
        type: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        max_pages: int = 20,
    ) -> tuple[list[dict], bool]:
        """Fetch all transaction log entries with automatic pagination."""
        return self._paginate(
            lambda cursor: self.get_transaction_log(symbol, type, start_time, end_time, cursor=cursor),
            max_pages,
            "transactions",
        )

    def get_closed_pnl(
        self,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        limit: int = 100,
        cursor: Optional[str] = None,
    ) -> Page:
        """Fetch one page of closed P&L records (max 100 per page).

        Each record's ``closedPnl`` is the venue's realized P&L of one closing
        order net of opening and closing fees.

        Returns:
            Tuple of (closed pnl list, next_cursor or None)

        Raises:
            BybitApiError: If API call fails
        """
        params = self._window_params(min(limit, 100), symbol, start_time, end_time, cursor)
        return self._page("get_closed_pnl", params)

    def get_closed_pnl_all(
        self,
        symbol: Optional[str] = None,
        start_time: Optional[int] = None,
        end_time: Optional[int] = None,
        max_pages: int = 50,
    ) -> tuple[list[dict], bool]:
        """Fetch all closed P&L records in the window with automatic pagination."""
        return self._paginate(
            lambda cursor: self.get_closed_pnl(symbol, start_time, end_time, cursor=cursor),
            max_pages,
            "closed pnl records",
        )

    def _check_response(self, response: dict, method: str) -> None:
        """Raise BybitApiError when the response carries a non-zero retCode."""
        ret_code = response.get("retCode", -1)
        if ret_code != 0:
            error = BybitApiError(method, ret_code, response.get("retMsg", "Unknown error"))
            logger.error(str(error))
            raise error
