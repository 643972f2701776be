"""
Medlink Triage - Emergency Call Triage Core

This package contains the per-call triage logic:
- Deterministic fact extraction from caller utterances
- Urgency classification (rule tree and additive score)
- Phone-guidance protocols (CPR, choking relief, bleeding control)
- Session orchestration and collaborator adapters
"""

__version__ = "0.1.0"
