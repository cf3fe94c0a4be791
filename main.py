"""
InsightMiner - Review Insight Extraction

CLI entry point for running the batch extraction and consolidation pipeline.
"""

import argparse
import dataclasses
import logging
import os
import signal
import sys

from src.agents.ingestion import ReviewImporter
from src.models.progress import CancellationToken, ProcessingUpdate, RunStatus
from src.orchestrator import STRATEGIES, PipelineOrchestrator, select_strategy
from src.utils.prompts import (
    DEFAULT_PROMPT_TEMPLATE,
    REVIEWS_PLACEHOLDER,
    build_extraction_template,
    estimate_tokens,
    render_batch_prompt,
)
from src.utils.storage import StorageManager
import config.settings as settings


def setup_logging(log_level: str = "INFO"):
    """Configure logging for the entire application."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format=settings.LOG_FORMAT,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(settings.LOG_FILE)
        ]
    )


def log_progress(update: ProcessingUpdate) -> None:
    """Progress sink that writes each snapshot to the log."""
    logging.getLogger("insightminer.progress").info(
        f"[{update.state.value}] {update.status} "
        f"(batch {update.current_batch}/{update.total_batches}, "
        f"reviews {update.reviews_processed or 0}/{update.total_reviews or 0}, "
        f"tokens {update.tokens_used or 0}, ${update.estimated_cost or 0:.4f})"
    )


def estimate_run(reviews, template: str, batch_size: int) -> dict:
    """Rough extraction-only token and cost preview."""
    prompt_tokens = 0
    for start in range(0, len(reviews), batch_size):
        prompt_tokens += estimate_tokens(render_batch_prompt(template, reviews[start:start + batch_size]))
    # Completion size is roughly a quarter of the prompt for extraction
    completion_tokens = prompt_tokens // 4
    cost = (
        prompt_tokens / 1_000_000 * settings.EXTRACTION_INPUT_RATE
        + completion_tokens / 1_000_000 * settings.EXTRACTION_OUTPUT_RATE
    )
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "estimated_cost": cost
    }


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="InsightMiner - Categorized insights from customer reviews",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze a review export with the strategy chosen by volume
  python main.py --input reviews.xlsx

  # Force the chunked strategy and a custom prompt
  python main.py --input reviews.csv --strategy chunked --prompt-file prompt.txt

  # Resume an interrupted chunked run
  python main.py --input reviews.xlsx --strategy chunked --run-id abc123 --resume

  # Only extract two categories
  python main.py --input reviews.csv --category "Product Quality Issues" --category "Value for Money Judgments"

  # Preview token usage without calling the API
  python main.py --input reviews.xlsx --estimate

Note: Set GOOGLE_API_KEY environment variable before running.
        """
    )

    parser.add_argument(
        "--input",
        required=True,
        action="append",
        help="Review file (.xlsx or .csv). Repeat for multiple files"
    )

    parser.add_argument(
        "--strategy",
        default="auto",
        choices=["auto", "single", "chunked"],
        help="Execution strategy (default: auto, chosen by review volume)"
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        help="Override the strategy's batch size"
    )

    parser.add_argument(
        "--prompt-file",
        help=f"Extraction prompt template; must contain {REVIEWS_PLACEHOLDER}"
    )

    parser.add_argument(
        "--category",
        action="append",
        dest="categories",
        help="Category label to extract (repeatable). Builds the default prompt for "
             "these labels and drops any other category from extraction output"
    )

    parser.add_argument(
        "--data-root",
        default=str(settings.DATA_ROOT),
        help=f"Data directory for checkpoints (default: {settings.DATA_ROOT})"
    )

    parser.add_argument(
        "--output-dir",
        default=str(settings.OUTPUT_ROOT),
        help=f"Report directory (default: {settings.OUTPUT_ROOT})"
    )

    parser.add_argument("--run-id", help="Run identifier (needed for --resume)")

    parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume the run given by --run-id from its last checkpoint"
    )

    parser.add_argument(
        "--estimate",
        action="store_true",
        help="Print a token/cost estimate and exit"
    )

    parser.add_argument(
        "--log-level",
        default=settings.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {settings.LOG_LEVEL})"
    )

    args = parser.parse_args()

    setup_logging(args.log_level)
    logger = logging.getLogger(__name__)

    if args.resume and not args.run_id:
        parser.error("--resume requires --run-id")

    categories = None
    if args.categories:
        categories = [c.strip() for c in args.categories if c.strip()]
        if not categories:
            parser.error("--category must not be blank")

    template = build_extraction_template(categories) if categories else DEFAULT_PROMPT_TEMPLATE
    if args.prompt_file:
        with open(args.prompt_file, "r", encoding="utf-8") as f:
            template = f.read()
        if REVIEWS_PLACEHOLDER not in template:
            parser.error(f"Prompt template must contain {REVIEWS_PLACEHOLDER}")

    # Import reviews
    importer = ReviewImporter()
    files = []
    for path in args.input:
        with open(path, "rb") as f:
            files.append((f.read(), os.path.basename(path)))
    try:
        reviews = importer.parse_files(files)
    except ValueError as e:
        logger.error(f"Failed to import reviews: {e}")
        sys.exit(1)

    if not reviews:
        logger.error("No reviews with content found in input files")
        sys.exit(1)

    strategy = STRATEGIES.get(args.strategy) or select_strategy(len(reviews))
    if args.batch_size:
        strategy = dataclasses.replace(strategy, batch_size=args.batch_size)

    if args.estimate:
        estimate = estimate_run(reviews, template, strategy.batch_size)
        print(f"Reviews: {len(reviews)}")
        print(f"Strategy: {strategy.name} (batch size {strategy.batch_size})")
        print(f"Estimated prompt tokens: {estimate['prompt_tokens']:,}")
        print(f"Estimated extraction cost: ${estimate['estimated_cost']:.4f}")
        sys.exit(0)

    # Validate API key
    if not settings.GOOGLE_API_KEY:
        logger.error(
            "GOOGLE_API_KEY environment variable not set. "
            "Please set it before running InsightMiner."
        )
        sys.exit(1)

    # Print banner
    print("=" * 60)
    print("InsightMiner - Review Insight Extraction")
    print("=" * 60)
    print(f"Files: {', '.join(args.input)}")
    print(f"Reviews: {len(reviews)}")
    print(f"Strategy: {strategy.name} (batch size {strategy.batch_size})")
    if args.run_id:
        print(f"Run ID: {args.run_id}{' (resume)' if args.resume else ''}")
    print("=" * 60)
    print()

    cancel_token = CancellationToken()

    def handle_interrupt(signum, frame):
        logger.warning("Interrupt received, stopping after the current unit of work")
        cancel_token.cancel()

    signal.signal(signal.SIGINT, handle_interrupt)

    storage = StorageManager(args.data_root, output_root=args.output_dir)
    orchestrator = PipelineOrchestrator(
        api_key=settings.GOOGLE_API_KEY,
        storage=storage,
        allowed_categories=categories
    )

    result = orchestrator.run(
        reviews,
        prompt_template=template,
        strategy=strategy,
        progress=log_progress,
        cancel_token=cancel_token,
        run_id=args.run_id,
        resume=args.resume
    )

    report_path = storage.save_report(result.insights, result.run_id, metadata={
        "status": result.status.value,
        "tokens_used": result.tokens_used,
        "cost": result.cost,
        "reviews_processed": result.reviews_processed,
        "total_reviews": result.total_reviews,
        "total_batches": result.total_batches,
        "failed_batches": result.failed_batches,
        "error": result.error
    })

    print()
    print("=" * 60)
    if result.status == RunStatus.COMPLETE:
        print("✅ Analysis completed successfully!")
    elif result.status == RunStatus.ABORTED:
        print("⚠️  Analysis stopped by user (partial results saved)")
    else:
        print(f"❌ Analysis failed: {result.error}")
    print("=" * 60)
    print(f"Run ID: {result.run_id}")
    print(f"Reviews processed: {result.reviews_processed}/{result.total_reviews}")
    print(f"Tokens used: {result.tokens_used:,} (${result.cost:.4f})")
    print(f"Report: {report_path}")
    print("=" * 60)

    if result.status == RunStatus.COMPLETE:
        sys.exit(0)
    if result.status == RunStatus.ABORTED:
        sys.exit(130)
    print(f"Check {settings.LOG_FILE} for details")
    sys.exit(1)


if __name__ == "__main__":
    main()
