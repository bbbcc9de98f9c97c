"""
Pagination for Sales Doctor list methods.

List methods take `page`/`limit` params and answer with the records under a
method-specific key of `result` (getOrder -> "order", getPurchase ->
"warehouse", ...). Iteration stops on a short or empty page, or at the
page ceiling, whichever comes first.
"""
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from salesdoctor.exceptions import DataShapeError
from salesdoctor.observability import get_logger

logger = get_logger(__name__)

PageFetcher = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class AsyncPaginator:
    """
    Paginator over one RPC list method.

    Usage:
        paginator = AsyncPaginator(
            lambda params: client.request("getOrder", params),
            result_key="order",
            page_size=1000,
            max_pages=20,
        )
        orders = await paginator.fetch_all({"filter": {"status": "all"}})
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        result_key: str,
        page_size: int = 1000,
        max_pages: int = 20,
    ):
        """
        Initialize paginator.

        Args:
            fetch_page: Async function returning the `result` object of one page
            result_key: Key of the record list inside `result`
            page_size: Records requested per page
            max_pages: Hard ceiling on pages fetched
        """
        if page_size <= 0 or max_pages <= 0:
            raise ValueError("page_size and max_pages must be positive")
        self.fetch_page = fetch_page
        self.result_key = result_key
        self.page_size = page_size
        self.max_pages = max_pages
        self.pages_fetched = 0

    def _extract(self, result: Any, page: int) -> List[Dict[str, Any]]:
        if result is None:
            return []

        if not isinstance(result, dict):
            raise DataShapeError(
                f"Invalid result on page {page}",
                expected="dict",
                got=type(result).__name__
            )

        batch = result.get(self.result_key)
        if batch is None:
            return []

        if not isinstance(batch, list):
            raise DataShapeError(
                f"Result '{self.result_key}' field is not a list",
                expected="list",
                got=type(batch).__name__
            )

        return batch

    async def paginate(self, params: Optional[Dict[str, Any]] = None) -> AsyncIterator[List[Dict[str, Any]]]:
        """
        Yield one batch of raw records per page.

        Raises:
            DataShapeError: If a page has an unexpected structure
        """
        params = dict(params or {})  # Don't modify original
        params["limit"] = self.page_size
        self.pages_fetched = 0

        for page in range(1, self.max_pages + 1):
            params["page"] = page
            result = await self.fetch_page(dict(params))
            self.pages_fetched = page

            batch = self._extract(result, page)
            if batch:
                yield batch

            if len(batch) < self.page_size:
                return

        logger.warning(
            f"Pagination for '{self.result_key}' stopped at the {self.max_pages}-page ceiling",
            extra={"result_key": self.result_key, "max_pages": self.max_pages}
        )

    async def fetch_all(self, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch every page and return the combined records."""
        items: List[Dict[str, Any]] = []
        async for batch in self.paginate(params):
            items.extend(batch)
        return items
