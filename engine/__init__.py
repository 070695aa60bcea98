"""Resolution engine and sync orchestration."""
