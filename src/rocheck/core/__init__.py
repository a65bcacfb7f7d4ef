"""
Modelo de datos y primitivas del motor de QA: snapshot inmutable,
clasificación de estructuras, parseo de clinical goals y geometría.
"""
