"""Test configuration: in-memory database, stats off."""
import os

# Must be set before flagkit.config caches its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STATS_ENABLED"] = "false"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
