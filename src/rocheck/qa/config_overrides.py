"""
rocheck.qa.config_overrides
---------------------------

Capa muy ligera para manejar overrides de configuración sin tocar los
diccionarios base definidos en rocheck.qa.config.

Schema del JSON (qa_overrides.json):

{
  "clinics": {
    "CLINIC_E": {
      "ptv_body_proximity_threshold_mm": 5.0,
      "excluded_structures": ["Bones", "Couch", "..."]
    }
  },
  "checks": {
    "SIB_DOSE_UNITS": {"enabled": false}
  },
  "engine": {
    "check_timeout_s": 60,
    "run_in_parallel": true
  }
}
"""

from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger("rocheck.qa.config")

# Ruta por defecto (mismo directorio que qa/config.py)
OVERRIDES_FILE = Path(__file__).resolve().parent / "qa_overrides.json"

OVERRIDE_SECTIONS = ("clinics", "checks", "engine")

DEFAULT_OVERRIDES: Dict[str, Any] = {section: {} for section in OVERRIDE_SECTIONS}


# ---------------------------------------------------------------------
# Carga
# ---------------------------------------------------------------------

def load_overrides(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Lee el archivo de overrides (JSON) y devuelve un dict siempre con las
    claves 'clinics', 'checks' y 'engine'.

    Si no existe o está roto, devuelve DEFAULT_OVERRIDES (y lo avisa en el log).
    """
    p = Path(path) if path is not None else OVERRIDES_FILE

    if not p.exists():
        return copy.deepcopy(DEFAULT_OVERRIDES)

    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("No se pudo leer el archivo de overrides %s: %s", p, exc)
        return copy.deepcopy(DEFAULT_OVERRIDES)

    if not isinstance(data, dict):
        logger.warning("Overrides ignorados: %s no contiene un objeto JSON", p)
        return copy.deepcopy(DEFAULT_OVERRIDES)

    for section in OVERRIDE_SECTIONS:
        if not isinstance(data.get(section), dict):
            data[section] = {}
    return data


# ---------------------------------------------------------------------
# Aplicar overrides sobre dicts ya clonados
# ---------------------------------------------------------------------

def apply_overrides_to_configs(
    clinics_cfg: Dict[str, Dict[str, Any]],
    checks_cfg: Dict[str, Dict[str, Any]],
    engine_cfg: Dict[str, Any],
    overrides: Dict[str, Any],
) -> None:
    """
    Modifica IN PLACE los dicts de configuración aplicando los overrides.

    - clinics_cfg: CLINIC_PROFILES clonado
    - checks_cfg:  GLOBAL_CHECK_CONFIG clonado
    - engine_cfg:  ENGINE_CONFIG clonado

    Clínicas y checks desconocidos se ignoran; la validación de tipos y
    valores se hace al construir el ValidationConfig.
    """
    # ---- Clínicas ----
    for clinic_id, clinic_override in overrides.get("clinics", {}).items():
        base = clinics_cfg.get(str(clinic_id).strip().upper())
        if base is None or not isinstance(clinic_override, dict):
            logger.debug("Override de clínica ignorado: %s", clinic_id)
            continue
        for k, v in clinic_override.items():
            base[k] = v

    # ---- Checks ----
    for check_id, ck_override in overrides.get("checks", {}).items():
        base_cfg = checks_cfg.get(check_id)
        if base_cfg is None or not isinstance(ck_override, dict):
            logger.debug("Override de check ignorado: %s", check_id)
            continue
        for attr, val in ck_override.items():
            base_cfg[attr] = val

    # ---- Motor ----
    for k, v in overrides.get("engine", {}).items():
        if k in engine_cfg:
            engine_cfg[k] = v
