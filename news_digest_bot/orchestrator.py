"""Concurrent per-item summarization with order-preserving reassembly."""

from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextvars import copy_context

from .config import OrchestratorConfig
from .errors import BatchFailedError, SummaryError
from .logging_config import create_execution_logger
from .models import FeedItem, SummarizedItem


class SummarizationOrchestrator:
    """Fans summarize_single out over a bounded thread pool.

    Each submitted future remembers the index of its item and its result is
    written into that slot, so the output always follows input order whatever
    the completion order was.
    """

    def __init__(
        self,
        summarizer,
        config: OrchestratorConfig | None = None,
        execution_id: str | None = None,
    ):
        self.summarizer = summarizer
        self.config = config or OrchestratorConfig()
        self.logger = create_execution_logger("orchestrator", execution_id)

    def summarize_all(self, items: list[FeedItem]) -> list[SummarizedItem]:
        """Summarize every item; failures become placeholders, never gaps.

        Raises:
            BatchFailedError: Only when max_failure_ratio is set and exceeded
        """
        if not items:
            return []

        workers = max(1, min(self.config.max_workers, len(items)))
        self.logger.log_execution_start(
            items_count=len(items),
            max_workers=workers,
            deadline_seconds=self.config.deadline_seconds,
        )

        slots: list[SummarizedItem | None] = [None] * len(items)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="summarize")
        try:
            future_map: dict[Future, int] = {}
            for idx, item in enumerate(items):
                ctx = copy_context()
                future_map[executor.submit(ctx.run, self._summarize_one, item)] = idx

            done, not_done = wait(future_map, timeout=self.config.deadline_seconds)

            for future in done:
                idx = future_map[future]
                error = future.exception()
                if error is None:
                    slots[idx] = future.result()
                else:
                    self.logger.error(
                        f"Unexpected error summarizing item: {type(error).__name__}",
                        item_rank=items[idx].rank,
                    )
                    slots[idx] = self._placeholder(items[idx], "error")

            for future in not_done:
                # Running calls cannot be interrupted; their results are dropped
                future.cancel()
                idx = future_map[future]
                self.logger.log_item_processing(
                    items[idx].rank, "abandoned_at_deadline", success=False
                )
                slots[idx] = self._placeholder(items[idx], "deadline")
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        results = [slot for slot in slots if slot is not None]
        if len(results) != len(items):
            raise RuntimeError("Summarization results incomplete")

        failed = sum(1 for result in results if not result.ok)
        self.logger.log_execution_end(
            success=failed == 0, items_count=len(results), failed_count=failed
        )

        ratio = self.config.max_failure_ratio
        if ratio is not None and failed / len(results) > ratio:
            raise BatchFailedError(failed, len(results))

        return results

    def _summarize_one(self, item: FeedItem) -> SummarizedItem:
        try:
            summary = self.summarizer.summarize_single(item.title, item.link)
        except SummaryError as e:
            self.logger.log_item_processing(
                item.rank, "summary_failed", success=False, error_kind=e.kind
            )
            return self._placeholder(item, e.kind)

        self.logger.log_item_processing(item.rank, "summarized")
        return SummarizedItem(item=item, summary=summary)

    def _placeholder(self, item: FeedItem, reason: str) -> SummarizedItem:
        return SummarizedItem(
            item=item, summary=self.config.fallback_summary, error=reason
        )
