"""
Utility modules for InsightMiner.

Cross-cutting concerns:
- LLM client: Gemini completion calls and the error taxonomy
- Prompts: extraction and consolidation templates
- Storage: checkpoints and report export
"""
