from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, TypedDict, Union

from rocheck.errors import ConfigError
from rocheck.qa.config_overrides import (
    apply_overrides_to_configs,
    load_overrides,
)


def _normalize_clinic_key(clinic_id: Optional[str]) -> str:
    """
    Normaliza la clave de clínica a algo seguro tipo 'CLINIC_E' o 'DEFAULT'.

    - Si clinic_id es None o cadena vacía → 'DEFAULT'
    - strip() + mayúsculas
    """
    return (clinic_id or "DEFAULT").strip().upper()


# ============================================================
# 1) CHECKS
#    - Activación de cada check
#    - Categoría que verá el usuario (ValidationFinding.category)
#    - El orden de este dict es el orden de ejecución y de reporte
# ============================================================

class CheckConfig(TypedDict, total=False):
    # Debe coincidir con ValidationFinding.category de ese check
    result_name: str

    # Encendido/apagado de este check
    enabled: bool

    # Descripción corta para UI / tooltips
    description: str


GLOBAL_CHECK_CONFIG: Dict[str, CheckConfig] = {
    "CLINICAL_GOALS_COVERAGE": {
        "result_name": "Clinical Goals existence",
        "enabled": True,
        "description": "Toda estructura aplicable tiene al menos un clinical goal.",
    },
    "TARGET_CONTAINMENT": {
        "result_name": "Target Containment",
        "enabled": True,
        "description": "CTV/GTV contenidos en el PTV con el mismo sufijo.",
    },
    "TARGET_OAR_OVERLAP": {
        "result_name": "Target-OAR Overlap",
        "enabled": True,
        "description": "Targets con dosis mínima mayor que el Dmax de un OAR solapado.",
    },
    "TARGET_RESOLUTION": {
        "result_name": "Target Resolution",
        "enabled": True,
        "description": "PTVs pequeños contorneados en alta resolución.",
    },
    "STRUCTURE_TYPES": {
        "result_name": "Structure Types",
        "enabled": True,
        "description": "Prefijo PTV/CTV/GTV coherente con el tipo DICOM.",
    },
    "SIB_DOSE_UNITS": {
        "result_name": "SIB Dose Units",
        "enabled": True,
        "description": "En planes SIB los goals de dosis deben ir en Gy, no en %.",
    },
    "PTV_BODY_PROXIMITY": {
        "result_name": "PTV-Body Proximity",
        "enabled": True,
        "description": "Distancia mínima de cada PTV a la superficie del BODY.",
    },
}


def get_check_category(check_id: str) -> str:
    """Categoría (result_name) de un check; el propio id si no está configurado."""
    return GLOBAL_CHECK_CONFIG.get(check_id, {}).get("result_name", check_id)


# ============================================================
# 2) PERFILES DE CLÍNICA
#    Umbrales y reglas de exclusión; las diferencias entre clínicas
#    son datos, no ramas de código.
# ============================================================

class ClinicProfile(TypedDict, total=False):
    label: str

    # Naming
    target_prefixes: List[str]
    body_structure_id: str
    excluded_structures: List[str]
    excluded_patterns: List[str]
    trim_suffix_separator: bool

    # Umbrales
    ptv_body_proximity_threshold_mm: float
    high_res_volume_threshold_cc: float
    high_res_critical_threshold_cc: float
    sib_dose_percent_threshold: float


_DEFAULT_EXCLUDED_STRUCTURES = [
    "Bones",
    "CouchInterior",
    "CouchSurface",
    "Clips",
    "Scar_Wire",
    "Sternum",
]

_DEFAULT_EXCLUDED_PATTERNS = [
    "z_*",
    "*wire*",
    "*Encompass*",
    "*Enc Marker*",
    "*Dose*",
    "Implant*",
    "Lymph*",
    "LN_*",
]

CLINIC_PROFILES: Dict[str, ClinicProfile] = {
    "DEFAULT": {
        "label": "Default",
        "target_prefixes": ["PTV", "CTV", "GTV"],
        "body_structure_id": "BODY",
        "excluded_structures": list(_DEFAULT_EXCLUDED_STRUCTURES),
        "excluded_patterns": list(_DEFAULT_EXCLUDED_PATTERNS),
        "trim_suffix_separator": False,
        "ptv_body_proximity_threshold_mm": 4.0,
        "high_res_volume_threshold_cc": 10.0,
        "high_res_critical_threshold_cc": 5.0,
        "sib_dose_percent_threshold": 6.0,
    },
    "CLINIC_E": {
        "label": "Clinic E",
        "target_prefixes": ["PTV", "CTV", "GTV"],
        "body_structure_id": "BODY",
        "excluded_structures": list(_DEFAULT_EXCLUDED_STRUCTURES),
        "excluded_patterns": list(_DEFAULT_EXCLUDED_PATTERNS),
        "trim_suffix_separator": False,
        "ptv_body_proximity_threshold_mm": 4.0,
        "high_res_volume_threshold_cc": 10.0,
        "high_res_critical_threshold_cc": 5.0,
        "sib_dose_percent_threshold": 6.0,
    },
}


def get_clinic_profile(clinic_id: Optional[str]) -> ClinicProfile:
    key = _normalize_clinic_key(clinic_id)
    if key not in CLINIC_PROFILES:
        raise ConfigError(
            f"Perfil de clínica desconocido: {clinic_id!r}",
            source="qa.config",
            suggested_action=f"Usa uno de: {', '.join(sorted(CLINIC_PROFILES))}",
        )
    return CLINIC_PROFILES[key]


# ============================================================
# 3) MOTOR
# ============================================================

ENGINE_CONFIG: Dict[str, Any] = {
    # Tiempo límite por check (s); None = sin límite
    "check_timeout_s": 120.0,
    # Ejecutar los checks en un ThreadPoolExecutor
    "run_in_parallel": False,
    # Pares de vértices por slice a partir de los cuales min_distance usa KDTree
    "kdtree_min_pairs": 250_000,
}


# ============================================================
# 4) VALIDATION CONFIG (valor inmutable que reciben los checks)
# ============================================================

@dataclass(frozen=True)
class ValidationConfig:
    """
    Configuración resuelta (perfil + overrides) de una validación.

    Es inmutable y se comparte entre todos los checks.
    """
    clinic_id: str
    clinic_name: str
    target_prefixes: Tuple[str, ...]
    body_structure_id: str
    excluded_structures: FrozenSet[str]     # ids en casefold
    excluded_patterns: Tuple[str, ...]
    trim_suffix_separator: bool
    ptv_body_proximity_threshold_mm: float
    high_res_volume_threshold_cc: float
    high_res_critical_threshold_cc: float
    sib_dose_percent_threshold: float
    disabled_checks: FrozenSet[str]
    check_timeout_s: Optional[float]
    run_in_parallel: bool
    kdtree_min_pairs: int

    def is_check_enabled(self, check_id: str) -> bool:
        return check_id not in self.disabled_checks


def _as_float(name: str, value: Any, allow_none: bool = False) -> Optional[float]:
    if value is None and allow_none:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"Valor no numérico para '{name}': {value!r}",
            source="qa.config",
        ) from None
    if out < 0:
        raise ConfigError(f"'{name}' no puede ser negativo: {out}", source="qa.config")
    return out


def _as_str_list(name: str, value: Any) -> List[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
        raise ConfigError(f"'{name}' debe ser una lista de strings", source="qa.config")
    return [str(v) for v in value]


def _build_validation_config(
    clinic_id: str,
    profile: Dict[str, Any],
    checks_cfg: Dict[str, Dict[str, Any]],
    engine_cfg: Dict[str, Any],
) -> ValidationConfig:
    critical = _as_float("high_res_critical_threshold_cc", profile.get("high_res_critical_threshold_cc", 5.0))
    warning = _as_float("high_res_volume_threshold_cc", profile.get("high_res_volume_threshold_cc", 10.0))
    if critical > warning:
        raise ConfigError(
            f"Umbral crítico de resolución ({critical} cc) mayor que el de aviso ({warning} cc)",
            source="qa.config",
            suggested_action="Revisa high_res_critical_threshold_cc / high_res_volume_threshold_cc",
        )

    prefixes = tuple(_as_str_list("target_prefixes", profile.get("target_prefixes", ["PTV", "CTV", "GTV"])))
    if not prefixes:
        raise ConfigError("target_prefixes no puede estar vacío", source="qa.config")

    disabled = frozenset(
        check_id for check_id, ck in checks_cfg.items() if not bool(ck.get("enabled", True))
    )

    return ValidationConfig(
        clinic_id=clinic_id,
        clinic_name=str(profile.get("label", clinic_id)),
        target_prefixes=prefixes,
        body_structure_id=str(profile.get("body_structure_id", "BODY")),
        excluded_structures=frozenset(
            s.casefold() for s in _as_str_list("excluded_structures", profile.get("excluded_structures", []))
        ),
        excluded_patterns=tuple(_as_str_list("excluded_patterns", profile.get("excluded_patterns", []))),
        trim_suffix_separator=bool(profile.get("trim_suffix_separator", False)),
        ptv_body_proximity_threshold_mm=_as_float(
            "ptv_body_proximity_threshold_mm", profile.get("ptv_body_proximity_threshold_mm", 4.0)
        ),
        high_res_volume_threshold_cc=warning,
        high_res_critical_threshold_cc=critical,
        sib_dose_percent_threshold=_as_float(
            "sib_dose_percent_threshold", profile.get("sib_dose_percent_threshold", 6.0)
        ),
        disabled_checks=disabled,
        check_timeout_s=_as_float("check_timeout_s", engine_cfg.get("check_timeout_s"), allow_none=True),
        run_in_parallel=bool(engine_cfg.get("run_in_parallel", False)),
        kdtree_min_pairs=int(_as_float("kdtree_min_pairs", engine_cfg.get("kdtree_min_pairs", 250_000))),
    )


def get_validation_config(
    clinic_id: Optional[str] = None,
    use_overrides: bool = True,
    overrides_path: Optional[Union[str, Path]] = None,
) -> ValidationConfig:
    """
    Devuelve el ValidationConfig de una clínica.

    Se clonan los dicts base, se aplican encima los overrides del JSON
    (si use_overrides=True) y se valida el resultado. Los dicts base de
    este módulo nunca se modifican.
    """
    key = _normalize_clinic_key(clinic_id)
    get_clinic_profile(key)

    clinics_cfg = copy.deepcopy(CLINIC_PROFILES)
    checks_cfg = copy.deepcopy(GLOBAL_CHECK_CONFIG)
    engine_cfg = copy.deepcopy(ENGINE_CONFIG)

    if use_overrides:
        apply_overrides_to_configs(clinics_cfg, checks_cfg, engine_cfg, load_overrides(overrides_path))

    return _build_validation_config(key, clinics_cfg[key], checks_cfg, engine_cfg)


# ============================================================
# 5) REPORTING
# ============================================================

REPORTING_CONFIG: Dict[str, Any] = {
    "use_colors": True,
    "color_error": "\033[91m",
    "color_warn": "\033[93m",
    "color_info": "\033[92m",
    "color_reset": "\033[0m",
    # "category" agrupa por categoría en orden de ejecución; "none" = lista plana
    "group_findings_by": "category",
    "include_severities": ["Error", "Warning", "Info"],
    # Colapsar categorías con sólo resultados Info individuales
    "collapse_field_results": True,
    "header_width": 70,
    "labels": {
        "title": "ROCHECK QA REPORT",
        "plan_prefix": "Plan",
        "clinic_prefix": "Clínica",
        "summary": "Resumen",
        "findings_section": "Findings",
        "no_findings": "Sin findings.",
        "end": "FIN DEL REPORTE",
    },
}


def get_reporting_config() -> Dict[str, Any]:
    return REPORTING_CONFIG


# ============================================================
# 6) LOGGING CONFIG
# ============================================================

# Esta sección NO configura el logging de Python por sí sola, sólo define
# un dict estilo logging.config.dictConfig que la app (CLI) aplica al
# arrancar.

LOGGING_CONFIG: Dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
            "level": "INFO",
        },
    },
    "loggers": {
        # Logger principal (motor, config, core)
        "rocheck": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "rocheck.qa.checks": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
    # Metadatos propios del motor (no estándar de logging); dictConfig
    # ignora claves desconocidas de primer nivel
    "extra": {
        "event_types": {
            "check_start": False,
            "check_end": True,
        },
    },
}


def get_logging_config() -> Dict[str, Any]:
    """
    Devuelve la configuración pensada para logging.config.dictConfig().
    """
    return LOGGING_CONFIG


def is_event_logging_enabled(event_type: str) -> bool:
    """True/False según LOGGING_CONFIG['extra']['event_types'] (True si no está)."""
    events = LOGGING_CONFIG.get("extra", {}).get("event_types", {})
    return bool(events.get(event_type, True))


def get_qa_logger(name: str = "rocheck.qa") -> logging.Logger:
    """
    Helper simple para obtener un logger consistente en todo el proyecto.
    No llama a dictConfig; se asume que la app lo hará en el arranque.
    """
    return logging.getLogger(name)
