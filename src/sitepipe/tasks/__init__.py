"""Task modules live here.

Each module declares its tasks with ``@orchestrator.task(name=..., inputs=..., output=...)``;
``discover_tasks`` imports every module in this package and collects them.
"""
