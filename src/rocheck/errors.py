# src/rocheck/errors.py

"""
Excepciones estructuradas de rocheck.

Sólo se lanzan en los bordes del sistema (carga de snapshots, carga de
configuración) y para los deadlines cooperativos de los checks. Los checks
nunca propagan excepciones más allá de qa.checks.run_all_checks.
"""

from __future__ import annotations

from typing import Optional


class RocheckError(Exception):
    """Base de todas las excepciones propias de rocheck."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        suggested_action: Optional[str] = None,
    ):
        super().__init__(message)
        self.error_type = self.__class__.__name__
        self.source = source or "unknown"
        self.suggested_action = suggested_action

    def __str__(self) -> str:
        base = f"[{self.error_type}] {self.args[0]}"
        if self.source:
            base += f" (source={self.source})"
        if self.suggested_action:
            base += f" | action: {self.suggested_action}"
        return base


class SnapshotError(RocheckError):
    """Snapshot de entrada mal formado o inconsistente (JSON / DICOM)."""


class ConfigError(RocheckError):
    """Perfil de clínica inexistente o parámetro de configuración inválido."""


class ValidationTimeout(RocheckError):
    """Un check superó su tiempo límite (Deadline expirado)."""
