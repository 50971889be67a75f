from __future__ import annotations
import os

DATABASE_URL = os.environ.get("MONORUN_CLOUD_DATABASE_URL", "sqlite+aiosqlite:///./monorun-cache.db")
MAX_ARTIFACT_BYTES = int(os.environ.get("MONORUN_CLOUD_MAX_ARTIFACT_BYTES", str(512 * 1024 * 1024)))
