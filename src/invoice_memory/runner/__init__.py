"""
CLI runner module.

Provides commands:
- process: Run invoices through the memory pipeline
- feedback: Learn from human review
- memories: List stored memories
- seed: Bootstrap memories from YAML
- status: Memory store statistics
- init-config: Write default configuration
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
