"""
Pipeline Orchestrator.

Drives batching, extraction, merging and consolidation for one run, with
progress snapshots, cooperative cancellation and chunk checkpoints.
"""

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Sequence

from src.agents.batching import create_batches
from src.agents.consolidation import InsightConsolidator
from src.agents.extraction import BatchExecutor, BatchResult
from src.agents.ingestion import ReviewImporter
from src.agents.merger import InsightMerger
from src.models.insight import (
    category_insights_from_dict,
    category_insights_to_dict,
    count_insights,
)
from src.models.progress import (
    CancellationToken,
    ProcessingUpdate,
    ProgressSink,
    RunContext,
    RunResult,
    RunStatus,
)
from src.models.review import Review
from src.utils.llm_client import (
    CompletionTimeoutError,
    GeminiCompletionClient,
    ModelPricing,
    RateLimitError,
)
from src.utils.prompts import DEFAULT_PROMPT_TEMPLATE
from src.utils.storage import StorageManager
import config.settings as settings

logger = logging.getLogger(__name__)

ABORTED_MESSAGE = "Analysis stopped by user"


@dataclass(frozen=True)
class PipelineStrategy:
    """
    Execution parameters for one run.

    chunk_size=None processes every batch in a single round-trip;
    intermediate_consolidation_every=None disables intermediate passes.
    """
    name: str
    batch_size: int
    chunk_size: Optional[int] = None
    intermediate_consolidation_every: Optional[int] = None
    consolidation_granularity: str = "global"
    inter_batch_delay: float = settings.INTER_BATCH_DELAY_SECONDS
    inter_chunk_delay: float = settings.INTER_CHUNK_DELAY_SECONDS
    rate_limit_backoff: float = settings.RATE_LIMIT_BACKOFF_SECONDS
    max_rate_limit_retries: Optional[int] = settings.MAX_RATE_LIMIT_RETRIES

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"Invalid batch size: {self.batch_size}")
        if self.chunk_size is not None and self.chunk_size < 1:
            raise ValueError(f"Invalid chunk size: {self.chunk_size}")
        if self.intermediate_consolidation_every is not None and self.intermediate_consolidation_every < 1:
            raise ValueError(
                f"Invalid intermediate consolidation threshold: {self.intermediate_consolidation_every}"
            )


SINGLE_PASS = PipelineStrategy(
    name="single",
    batch_size=settings.SINGLE_PASS_BATCH_SIZE,
    consolidation_granularity="auto"
)

CHUNKED = PipelineStrategy(
    name="chunked",
    batch_size=settings.CHUNKED_BATCH_SIZE,
    chunk_size=settings.CHUNK_SIZE,
    intermediate_consolidation_every=settings.INTERMEDIATE_CONSOLIDATION_EVERY,
    consolidation_granularity="category"
)

STRATEGIES = {"single": SINGLE_PASS, "chunked": CHUNKED}


def select_strategy(total_reviews: int) -> PipelineStrategy:
    """Pick the execution strategy by review volume."""
    if total_reviews > settings.CHUNKED_STRATEGY_THRESHOLD:
        return CHUNKED
    return SINGLE_PASS


class RunCancelled(Exception):
    """Internal signal: cancellation observed at a work boundary."""


class PipelineOrchestrator:
    """
    Orchestrates one review-insight run.

    Coordinates:
    1. Batching → 2. Batch extraction (with rate-limit retry / timeout skip)
    → 3. Progressive merge (+ intermediate consolidation when chunked)
    → 4. Final consolidation

    The orchestrator holds only collaborators; all run state lives in a
    RunContext created per run().
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        client=None,
        storage: Optional[StorageManager] = None,
        executor: Optional[BatchExecutor] = None,
        merger: Optional[InsightMerger] = None,
        consolidator: Optional[InsightConsolidator] = None,
        importer: Optional[ReviewImporter] = None,
        allowed_categories: Optional[Iterable[str]] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize pipeline orchestrator.

        Args:
            api_key: Google API key, used when no client is given
            client: Completion collaborator shared by extraction and consolidation
            storage: Optional storage for chunk checkpoints
            executor: Batch executor override
            merger: Progressive merger override
            consolidator: Consolidator override
            importer: Review importer override
            allowed_categories: Category labels to keep from extraction output
                (None keeps every category the model returns)
            sleep: Sleep function (injectable for tests)
        """
        if client is None and (executor is None or consolidator is None):
            if not api_key:
                raise ValueError("Either api_key or client must be provided")
            client = GeminiCompletionClient(
                api_key=api_key,
                timeout_seconds=settings.REQUEST_TIMEOUT_SECONDS
            )

        self.storage = storage
        self.sleep = sleep
        self.importer = importer or ReviewImporter()

        self.merger = merger or InsightMerger(
            threshold=settings.SIMILARITY_THRESHOLD,
            min_token_length=settings.SIMILARITY_MIN_TOKEN_LENGTH
        )

        self.executor = executor or BatchExecutor(
            client=client,
            model_name=settings.EXTRACTION_MODEL,
            pricing=ModelPricing(settings.EXTRACTION_INPUT_RATE, settings.EXTRACTION_OUTPUT_RATE),
            temperature=settings.LLM_TEMPERATURE,
            allowed_categories=allowed_categories
        )

        self.consolidator = consolidator or InsightConsolidator(
            client=client,
            merger=self.merger,
            model_name=settings.CONSOLIDATION_MODEL,
            pricing=ModelPricing(settings.CONSOLIDATION_INPUT_RATE, settings.CONSOLIDATION_OUTPUT_RATE),
            temperature=settings.LLM_TEMPERATURE,
            skip_threshold=settings.CONSOLIDATION_SKIP_THRESHOLD,
            target_min=settings.TARGET_INSIGHTS_MIN,
            target_max=settings.TARGET_INSIGHTS_MAX,
            per_category_min_insights=settings.PER_CATEGORY_CONSOLIDATION_MIN_INSIGHTS,
            max_retries=settings.CONSOLIDATION_MAX_RETRIES,
            rate_limit_backoff=settings.RATE_LIMIT_BACKOFF_SECONDS,
            sleep=sleep
        )

        logger.info("Pipeline initialized successfully")

    def run_file(
        self,
        data: bytes,
        filename: str,
        progress: Optional[ProgressSink] = None,
        **kwargs
    ) -> RunResult:
        """Import a review file, then run the pipeline on its reviews."""
        run_id = kwargs.pop("run_id", None)
        ctx = RunContext(run_id=run_id) if run_id else RunContext()
        ctx.status = RunStatus.UPLOADING
        self._emit(progress, ctx.snapshot(f"Importing {filename}..."))

        try:
            reviews = self.importer.parse_file(data, filename)
        except Exception as e:
            logger.error(f"Import failed for {filename}: {e}", exc_info=True)
            ctx.status = RunStatus.FAILED
            self._emit(progress, ctx.snapshot(f"Error: {e}"))
            return self._result(ctx, error=str(e))

        return self.run(reviews, progress=progress, run_id=ctx.run_id, **kwargs)

    def run(
        self,
        reviews: Sequence[Review],
        prompt_template: Optional[str] = None,
        strategy: Optional[PipelineStrategy] = None,
        progress: Optional[ProgressSink] = None,
        cancel_token: Optional[CancellationToken] = None,
        run_id: Optional[str] = None,
        resume: bool = False
    ) -> RunResult:
        """
        Run the complete pipeline over a review set.

        Args:
            reviews: Imported reviews (empty content already filtered)
            prompt_template: Extraction template with {{reviews}} placeholder
            strategy: Execution strategy, chosen by volume when omitted
            progress: Optional progress sink
            cancel_token: Optional cooperative cancellation token
            run_id: Run identifier (used for checkpoints)
            resume: Continue from the stored checkpoint for run_id

        Returns:
            RunResult with status complete, aborted or failed. Aborted and
            failed runs still carry the merged partial insights.
        """
        strategy = strategy or select_strategy(len(reviews))
        template = prompt_template or DEFAULT_PROMPT_TEMPLATE

        ctx = RunContext(run_id=run_id) if run_id else RunContext()
        ctx.total_reviews = len(reviews)

        logger.info(
            f"Starting run {ctx.run_id}: {len(reviews)} reviews, "
            f"strategy={strategy.name}, batch_size={strategy.batch_size}"
        )

        try:
            ctx.status = RunStatus.BATCHING
            batches = create_batches(reviews, strategy.batch_size)
            ctx.total_batches = len(batches)
            self._emit(progress, ctx.snapshot(
                f"Split {len(reviews)} reviews into {len(batches)} batches"
            ))

            if resume:
                self._restore_checkpoint(ctx)

            self._process_batches(ctx, batches, template, strategy, progress, cancel_token)

            self._check_cancelled(cancel_token)
            self._flush_pending(ctx)

            ctx.status = RunStatus.FINAL_CONSOLIDATION
            self._emit(progress, ctx.snapshot("Consolidating insights with AI..."))
            self._consolidate(ctx, strategy.consolidation_granularity, progress, cancel_token)

        except RunCancelled:
            return self._abort(ctx, progress)

        except Exception as e:
            logger.error(f"Run {ctx.run_id} failed: {e}", exc_info=True)
            self._flush_pending(ctx)
            ctx.status = RunStatus.FAILED
            self._emit(progress, ctx.snapshot(f"Error: {e}"))
            return self._result(ctx, error=str(e))

        ctx.status = RunStatus.COMPLETE
        ctx.current_batch = ctx.total_batches
        self._emit(progress, ctx.snapshot(
            f"Analysis complete! Processed {ctx.reviews_processed} of {ctx.total_reviews} reviews."
        ))
        if self.storage is not None:
            self.storage.delete_checkpoint(ctx.run_id)

        logger.info(
            f"Run {ctx.run_id} complete: {count_insights(ctx.accumulated)} insights, "
            f"{ctx.tokens_used} tokens, ${ctx.cost:.4f}"
        )
        return self._result(ctx)

    def _process_batches(
        self,
        ctx: RunContext,
        batches: List[List[Review]],
        template: str,
        strategy: PipelineStrategy,
        progress: Optional[ProgressSink],
        cancel_token: Optional[CancellationToken]
    ) -> None:
        """Process batches chunk by chunk from ctx.next_batch_index."""
        chunk_size = strategy.chunk_size or max(len(batches), 1)

        for chunk_start in range(ctx.next_batch_index, len(batches), chunk_size):
            self._check_cancelled(cancel_token)
            chunk_end = min(chunk_start + chunk_size, len(batches))

            if strategy.chunk_size:
                logger.info(f"Processing batches {chunk_start + 1} to {chunk_end} of {len(batches)}")

            for index in range(chunk_start, chunk_end):
                self._check_cancelled(cancel_token)
                result = self._run_batch(ctx, index, batches[index], template, strategy, progress)
                if result is not None:
                    ctx.pending.append(result.insights)

                if index < chunk_end - 1 and strategy.inter_batch_delay > 0:
                    self.sleep(strategy.inter_batch_delay)

            ctx.next_batch_index = chunk_end

            threshold = strategy.intermediate_consolidation_every
            if threshold and len(ctx.pending) >= threshold:
                self._intermediate_consolidation(ctx, progress, cancel_token)

            self._save_checkpoint(ctx)

            if chunk_end < len(batches) and strategy.inter_chunk_delay > 0:
                self.sleep(strategy.inter_chunk_delay)

    def _run_batch(
        self,
        ctx: RunContext,
        index: int,
        batch: List[Review],
        template: str,
        strategy: PipelineStrategy,
        progress: Optional[ProgressSink]
    ) -> Optional[BatchResult]:
        """
        Execute one batch under the failure policy.

        Rate limits: wait and retry the same batch without advancing progress.
        Timeouts: report and skip the batch (returns None).
        Anything else propagates and fails the run.
        """
        number = index + 1
        first = index * strategy.batch_size + 1
        last = first + len(batch) - 1
        rate_limit_hits = 0

        while True:
            ctx.current_batch = number
            ctx.status = RunStatus.EXECUTING_BATCH
            self._emit(progress, ctx.snapshot(
                f"Processing batch {number} of {ctx.total_batches} "
                f"({first}-{last} of {ctx.total_reviews} reviews)..."
            ))

            try:
                result = self.executor.execute_batch(batch, template)

            except RateLimitError as e:
                rate_limit_hits += 1
                limit = strategy.max_rate_limit_retries
                if limit is not None and rate_limit_hits > limit:
                    logger.error(f"Batch {number} still rate limited after {limit} retries")
                    raise

                logger.warning(f"Rate limit hit in batch {number}: {e}")
                ctx.status = RunStatus.RATE_LIMITED_RETRY
                self._emit(progress, ctx.snapshot(
                    f"Rate limit hit. Waiting {strategy.rate_limit_backoff:g} seconds before retry..."
                ))
                self.sleep(strategy.rate_limit_backoff)
                continue

            except CompletionTimeoutError as e:
                logger.error(f"Timeout in batch {number}, skipping: {e}")
                ctx.failed_batches.append(number)
                self._emit(progress, ctx.snapshot(
                    f"Timeout in batch {number}. Skipping and continuing with next batch."
                ))
                return None

            break

        ctx.add_usage(result.tokens_used, result.cost)
        ctx.reviews_processed += len(batch)
        self._emit(progress, ctx.snapshot(
            f"Completed batch {number} of {ctx.total_batches} "
            f"({ctx.reviews_processed}/{ctx.total_reviews} reviews)"
        ))
        return result

    def _flush_pending(self, ctx: RunContext) -> None:
        """Merge pending batch results into the accumulator."""
        if not ctx.pending:
            return
        for batch_insights in ctx.pending:
            self.merger.merge(ctx.accumulated, batch_insights)
        ctx.pending = []

    def _intermediate_consolidation(
        self,
        ctx: RunContext,
        progress: Optional[ProgressSink],
        cancel_token: Optional[CancellationToken]
    ) -> None:
        merged_count = len(ctx.pending)
        self._flush_pending(ctx)

        ctx.status = RunStatus.INTERMEDIATE_CONSOLIDATION
        self._emit(progress, ctx.snapshot(
            f"Intermediate consolidation after {merged_count} batch results "
            f"({count_insights(ctx.accumulated)} insights)..."
        ))
        self._consolidate(ctx, "category", progress, cancel_token)

    def _consolidate(
        self,
        ctx: RunContext,
        granularity: str,
        progress: Optional[ProgressSink],
        cancel_token: Optional[CancellationToken]
    ) -> None:
        """Replace the accumulator with its consolidated form and account usage."""
        base_tokens = ctx.tokens_used
        base_cost = ctx.cost

        def on_category(category, position, total, tokens_so_far, cost_so_far):
            snapshot = ctx.snapshot(f"Consolidated category {position} of {total}: {category}")
            self._emit(progress, dataclasses.replace(
                snapshot,
                tokens_used=base_tokens + tokens_so_far,
                estimated_cost=base_cost + cost_so_far
            ))

        result = self.consolidator.consolidate(
            ctx.accumulated,
            granularity=granularity,
            cancel_token=cancel_token,
            on_category=on_category
        )
        ctx.accumulated = result.insights
        ctx.add_usage(result.tokens_used, result.cost)

        if result.interrupted:
            raise RunCancelled()

    def _check_cancelled(self, cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is not None and cancel_token.is_cancelled:
            raise RunCancelled()

    def _abort(self, ctx: RunContext, progress: Optional[ProgressSink]) -> RunResult:
        self._flush_pending(ctx)
        ctx.status = RunStatus.ABORTED
        self._emit(progress, ctx.snapshot(ABORTED_MESSAGE))
        logger.warning(
            f"Run {ctx.run_id} aborted by user after {ctx.reviews_processed} reviews "
            f"({count_insights(ctx.accumulated)} partial insights kept)"
        )
        return self._result(ctx)

    def _save_checkpoint(self, ctx: RunContext) -> None:
        if self.storage is None:
            return
        self.storage.save_checkpoint(ctx.run_id, {
            "run_id": ctx.run_id,
            "next_batch_index": ctx.next_batch_index,
            "total_batches": ctx.total_batches,
            "reviews_processed": ctx.reviews_processed,
            "tokens_used": ctx.tokens_used,
            "cost": ctx.cost,
            "failed_batches": ctx.failed_batches,
            "accumulated": category_insights_to_dict(ctx.accumulated),
            "pending": [category_insights_to_dict(p) for p in ctx.pending]
        })

    def _restore_checkpoint(self, ctx: RunContext) -> None:
        if self.storage is None:
            logger.warning("Resume requested without storage, starting from the beginning")
            return

        state = self.storage.load_checkpoint(ctx.run_id)
        if state is None:
            logger.warning(f"No checkpoint for run {ctx.run_id}, starting from the beginning")
            return

        if state.get("total_batches") != ctx.total_batches:
            raise ValueError(
                f"Checkpoint for {ctx.run_id} has {state.get('total_batches')} batches, "
                f"current input has {ctx.total_batches}"
            )

        ctx.next_batch_index = state["next_batch_index"]
        ctx.current_batch = ctx.next_batch_index
        ctx.reviews_processed = state.get("reviews_processed", 0)
        ctx.tokens_used = state.get("tokens_used", 0)
        ctx.cost = state.get("cost", 0.0)
        ctx.failed_batches = list(state.get("failed_batches", []))
        ctx.accumulated = category_insights_from_dict(state.get("accumulated", {}))
        ctx.pending = [category_insights_from_dict(p) for p in state.get("pending", [])]

        logger.info(f"Resuming run {ctx.run_id} at batch {ctx.next_batch_index + 1}")

    def _emit(self, progress: Optional[ProgressSink], update: ProcessingUpdate) -> None:
        logger.debug(update.status)
        if progress is not None:
            progress(update)

    def _result(self, ctx: RunContext, error: Optional[str] = None) -> RunResult:
        return RunResult(
            run_id=ctx.run_id,
            status=ctx.status,
            insights=ctx.accumulated,
            tokens_used=ctx.tokens_used,
            cost=ctx.cost,
            reviews_processed=ctx.reviews_processed,
            total_reviews=ctx.total_reviews,
            total_batches=ctx.total_batches,
            failed_batches=list(ctx.failed_batches),
            error=error
        )
