"""
coachflow.integrations - External Service Adapters
====================================================

Sub-packages:
    llm/   - AI providers used by the built-in tools (Mock)
"""

__all__: list[str] = []
