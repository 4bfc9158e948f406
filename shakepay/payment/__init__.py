"""Payment gate, executors and the append-only payment ledger."""
