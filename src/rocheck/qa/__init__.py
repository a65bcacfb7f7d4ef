# src/rocheck/qa/__init__.py

"""
Paquete principal de QA.

La lógica de checks individuales vive en `rocheck.qa.checks`.
El motor de evaluación de snapshots está en `rocheck.qa.engine`.
"""

from .checks import run_all_checks  # noqa: F401
