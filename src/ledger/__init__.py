"""Regulatory ledger sync engine.

Keeps the internal cultivation ledger (cultivars, batches, harvests,
packages, lab tests, waste destructions) consistent with an external,
authoritative state traceability system.

Packages:
    api/   - Ledger HTTP client, error taxonomy, retry policy, database helpers
    sync/  - Domain entities, ports, adapters, services and use cases
"""
