"""
Operations Layer

Business logic operations that compose services for the admin workflows.

Architecture:
- Database layer: document store reads, writes, batches and live queries
- Services layer: submission processing, recalculation, username sync
- Operations layer: composition and conversion to user-facing reports
- Command layer: Discord integration and user interface
"""
