"""
Clinical Kernel - workflow core for clinical records

A role-gated, append-only workflow engine for medical records with:
- Declarative workflow definitions
- Role and assignment based authorization
- Content-based business-rule preconditions
- Optimistic concurrency on every transition
- Append-only step history and audit trail
"""

__version__ = "0.1.0"
