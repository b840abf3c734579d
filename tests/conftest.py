import os
import tempfile

# settings are cached on first import, so these must be set before any app module loads
os.environ.setdefault("FINANCE_DATA_DIR", tempfile.mkdtemp(prefix="finance-tests-"))
os.environ.setdefault("FINANCE_SCHEDULER_ENABLED", "false")
os.environ.setdefault("FINANCE_TIMEZONE", "UTC")
