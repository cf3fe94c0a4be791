"""
Agent implementations for InsightMiner.

Contains the pipeline stages that turn reviews into consolidated insights:
- Review Importer
- Batcher
- Batch Executor
- Progressive Merger
- Insight Consolidation Agent
"""
