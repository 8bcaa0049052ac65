import os
import tempfile
from pathlib import Path

# Settings and the engine are built at first import; point them at a local
# SQLite file and keep background threads off for the whole test session.
_DB_PATH = Path(tempfile.gettempdir()) / f"ticketing_test_{os.getpid()}.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{_DB_PATH}")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
os.environ.setdefault("ENABLE_SLA_MONITOR", "false")
os.environ.setdefault("TKT_AUTH_DISABLED", "true")
os.environ.setdefault("TKT_JWT_SECRET", "test-jwt-secret-strong-value-123456")
os.environ.setdefault("CRON_SECRET", "test-cron-secret-strong-value-1234")
for _name in ("SMTP_HOST", "EMAIL_API_URL", "ADMIN_EMAIL", "OPERATIONAL_TEAM_EMAILS"):
    os.environ.pop(_name, None)
