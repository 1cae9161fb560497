from __future__ import annotations

import os
import tempfile
from pathlib import Path


# Settings are cached on first import, so the test environment is fixed before
# any railfleet module loads.
_DB_DIR = Path(tempfile.mkdtemp(prefix="railfleet-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'railfleet.db'}"
os.environ["AUTH_ENABLED"] = "true"
os.environ["AUTH_DEV_BYPASS"] = "true"
os.environ["SUPER_ADMIN_EMAILS"] = "fleet-admin@railfleet.app"
os.environ["SEARCH_PROVIDER"] = "none"
os.environ["COMPLETION_PROVIDER"] = "none"
os.environ.pop("AUTH_JWKS_URL", None)
os.environ.pop("TENANT_MAPPING_JSON", None)
