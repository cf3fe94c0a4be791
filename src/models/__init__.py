"""
Data models for InsightMiner.

- Review: one imported customer review
- Insight / CategoryInsights: the exchange structure between pipeline stages
- Progress: run state, progress snapshots and results
"""
