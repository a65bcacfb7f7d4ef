"""
rocheck: motor de QA basado en reglas para planes de radioterapia.

Valida naming de estructuras, relaciones espaciales (contención, solape,
proximidad), resolución de contorneo y unidades de dosis de los clinical
goals, y devuelve findings etiquetados por severidad.
"""

__version__ = "0.3.0"
