"""
Storage utility.

File I/O helpers for run checkpoints and final insight reports.
"""

import json
import os
import logging
from typing import Dict, Optional
from datetime import datetime

import pandas as pd

from src.models.insight import CategoryInsights, category_insights_to_dict

logger = logging.getLogger(__name__)


class StorageManager:
    """
    Manages file I/O for pipeline persistence.

    Handles:
    - Chunk checkpoints (data/checkpoints/<run_id>.json)
    - Reports (output/insights_<run_id>.json and .csv)
    """

    def __init__(self, data_root: str, output_root: Optional[str] = None):
        """
        Initialize storage manager.

        Args:
            data_root: Root data directory (checkpoints live below it)
            output_root: Report directory, defaults to <data_root>/output
        """
        self.data_root = data_root
        self.checkpoint_dir = os.path.join(data_root, "checkpoints")
        self.output_dir = output_root or os.path.join(data_root, "output")

        os.makedirs(self.checkpoint_dir, exist_ok=True)
        os.makedirs(self.output_dir, exist_ok=True)

        logger.info(f"Initialized StorageManager with data_root={data_root}")

    def _checkpoint_path(self, run_id: str) -> str:
        return os.path.join(self.checkpoint_dir, f"{run_id}.json")

    def save_checkpoint(self, run_id: str, state: Dict) -> None:
        """
        Persist chunk-level run state with an atomic write.

        Args:
            run_id: Run identifier
            state: JSON-serializable checkpoint dict
        """
        filepath = self._checkpoint_path(run_id)
        temp_path = f"{filepath}.tmp"

        try:
            with open(temp_path, 'w', encoding='utf-8') as f:
                json.dump(state, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, filepath)
            logger.debug(f"Saved checkpoint for {run_id} at batch {state.get('next_batch_index')}")
        except Exception as e:
            logger.error(f"Failed to save checkpoint for {run_id}: {e}")
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def load_checkpoint(self, run_id: str) -> Optional[Dict]:
        """
        Load a run checkpoint.

        Returns:
            Checkpoint dict, or None if missing or unreadable
        """
        filepath = self._checkpoint_path(run_id)

        if not os.path.exists(filepath):
            logger.debug(f"No checkpoint found for {run_id}")
            return None

        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except Exception as e:
            logger.error(f"Failed to load checkpoint for {run_id}: {e}")
            return None

    def delete_checkpoint(self, run_id: str) -> None:
        filepath = self._checkpoint_path(run_id)
        if os.path.exists(filepath):
            os.remove(filepath)
            logger.debug(f"Deleted checkpoint for {run_id}")

    def save_report(self, insights: CategoryInsights, run_id: str, metadata: Optional[Dict] = None) -> str:
        """
        Write insights as JSON (with run metadata) and a flat CSV.

        Returns:
            Path to the JSON report
        """
        json_path = os.path.join(self.output_dir, f"insights_{run_id}.json")
        csv_path = os.path.join(self.output_dir, f"insights_{run_id}.csv")

        report = {
            "run_id": run_id,
            "generated_at": datetime.utcnow().isoformat() + "Z",
            "metadata": metadata or {},
            "insights": category_insights_to_dict(insights)
        }

        with open(json_path, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, ensure_ascii=False)

        rows = []
        for category, items in insights.items():
            for insight in items:
                rows.append({
                    "Category": category,
                    "Pattern": insight.pattern,
                    "Context": insight.context,
                    "Quote Count": len(insight.quotes),
                    "Quotes": " | ".join(insight.quotes)
                })

        df = pd.DataFrame(rows, columns=["Category", "Pattern", "Context", "Quote Count", "Quotes"])
        if not df.empty:
            df = df.sort_values(["Category", "Quote Count"], ascending=[True, False])
        df.to_csv(csv_path, index=False, encoding='utf-8')

        logger.info(f"Report saved to {json_path} ({len(df)} insights)")
        return json_path
