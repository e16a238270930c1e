"""Global pytest configuration."""

import os

# Settings are read from the environment on first use; keep tests local and offline
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("BLOB_BASE_URL", None)
