"""
Merkle Tree SQL Storage (mtsql)

Relational persistence backend for sparse Merkle trees:
- Node records keyed by content hash
- Current root pointer per tree instance
- SQLite handle with cancellation-aware statements
"""
