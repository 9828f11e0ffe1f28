# src/plancheck/__init__.py

"""
Paquete principal del plan check.

Los analizadores individuales viven en `plancheck.checks`.
El punto de entrada es `plancheck.engine.evaluate_plan`.
"""

from .engine import evaluate_plan  # noqa: F401
