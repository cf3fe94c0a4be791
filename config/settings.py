"""
Configuration settings for InsightMiner.

Centralized configuration for all agents and pipeline parameters.
"""

import os
from pathlib import Path

# Project paths
PROJECT_ROOT = Path(__file__).parent.parent
DATA_ROOT = PROJECT_ROOT / "data"
OUTPUT_ROOT = PROJECT_ROOT / "output"
CHECKPOINT_DIR = DATA_ROOT / "checkpoints"

# API Configuration
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY", "")

# LLM Models
EXTRACTION_MODEL = "gemini-1.5-flash"  # Low-cost, one call per batch
CONSOLIDATION_MODEL = "gemini-1.5-pro"  # More capable, few calls per run

# Pricing in USD per 1M tokens (input, output)
EXTRACTION_INPUT_RATE = 0.075
EXTRACTION_OUTPUT_RATE = 0.30
CONSOLIDATION_INPUT_RATE = 1.25
CONSOLIDATION_OUTPUT_RATE = 5.00

# Low temperature for near-deterministic structured output
LLM_TEMPERATURE = 0.1
REQUEST_TIMEOUT_SECONDS = 120

# Batching
SINGLE_PASS_BATCH_SIZE = 200
CHUNKED_BATCH_SIZE = 100
CHUNK_SIZE = 5  # Batches per round-trip
INTERMEDIATE_CONSOLIDATION_EVERY = 10  # Accumulated batch results
CHUNKED_STRATEGY_THRESHOLD = 2000  # Strictly more reviews than this use the chunked strategy

# Rate limiting
RATE_LIMIT_BACKOFF_SECONDS = 10.0
MAX_RATE_LIMIT_RETRIES = 10
INTER_BATCH_DELAY_SECONDS = 0.5
INTER_CHUNK_DELAY_SECONDS = 1.0

# Progressive Merger
SIMILARITY_THRESHOLD = 0.5  # Share of the shorter pattern's tokens
SIMILARITY_MIN_TOKEN_LENGTH = 3  # Tokens must be longer than this

# Consolidator
CONSOLIDATION_SKIP_THRESHOLD = 3  # Categories at or below are passed through
TARGET_INSIGHTS_MIN = 3
TARGET_INSIGHTS_MAX = 7
PER_CATEGORY_CONSOLIDATION_MIN_INSIGHTS = 60  # "auto" switches to per-category above this
CONSOLIDATION_MAX_RETRIES = 2

# Logging
LOG_LEVEL = "INFO"  # DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE = "insightminer.log"
