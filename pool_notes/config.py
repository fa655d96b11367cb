# pool_notes/config.py
from __future__ import annotations

import os
import pathlib

# =========================
# Paths
# =========================

REPO_ROOT = str(pathlib.Path(__file__).resolve().parents[1])
DATA_DIR = os.getenv("DATA_DIR", os.path.join(REPO_ROOT, "data"))

# =========================
# Indexer (activity feed)
# =========================

INDEXER_URL = os.getenv("INDEXER_URL", "http://127.0.0.1:42069/graphql")
INDEXER_PAGE_SIZE: int = int(os.getenv("INDEXER_PAGE_SIZE", "100"))
INDEXER_TIMEOUT_S: float = float(os.getenv("INDEXER_TIMEOUT_S", "10"))
# Minimum spacing between two requests to the indexer (5 req/s by default)
INDEXER_MIN_INTERVAL_S: float = float(os.getenv("INDEXER_MIN_INTERVAL_S", "0.2"))
INDEXER_MAX_RETRIES: int = int(os.getenv("INDEXER_MAX_RETRIES", "3"))

# =========================
# Discovery
# =========================

# 0 = scan the full history for the next index, never skip one
DISCOVERY_GAP_LOOKAHEAD: int = int(os.getenv("DISCOVERY_GAP_LOOKAHEAD", "0"))
