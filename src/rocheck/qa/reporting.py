# src/rocheck/qa/reporting.py

"""
reporting.py
============

Utilidades para imprimir un reporte legible del resultado del QA
(QAResult) en consola.

Controlado vía rocheck.qa.config.get_reporting_config():
  - Colores ANSI por severidad (use_colors)
  - Agrupación por categoría en orden de ejecución o lista plana
  - Filtro por severidad (include_severities)
  - Colapso de resultados individuales (collapse_field_results)
"""

from typing import Any, Dict, Iterator, List, Optional, Tuple

from rocheck.core.snapshot import Severity, ValidationFinding
from rocheck.qa.aggregation import QAResult, collapse_field_results, count_by_severity
from rocheck.qa.config import get_reporting_config


_SEVERITY_COLOR_KEYS = {
    Severity.ERROR: ("color_error", "\033[91m"),
    Severity.WARNING: ("color_warn", "\033[93m"),
    Severity.INFO: ("color_info", "\033[92m"),
}


# ------------------------------------------------------------
# Helpers de estilo
# ------------------------------------------------------------

def _color(text: str, severity: Severity, cfg: Dict[str, Any]) -> str:
    """Aplica color según la severidad si use_colors=True."""
    if not cfg.get("use_colors", True):
        return text
    key, default = _SEVERITY_COLOR_KEYS[severity]
    reset = cfg.get("color_reset", "\033[0m")
    return f"{cfg.get(key, default)}{text}{reset}"


def _iter_grouped(
    findings: List[ValidationFinding],
    mode: str,
) -> Iterator[Tuple[str, str, Optional[ValidationFinding]]]:
    """
    Produce tuplas:
      - ("GROUP_HEADER", categoria, None)
      - ("FINDING", categoria, finding)

    mode "category": agrupa por categoría en orden de primera aparición
    (orden de ejecución de los checks). Cualquier otro valor: lista plana.
    """
    if mode != "category":
        for f in findings:
            yield ("FINDING", f.category, f)
        return

    grouped: Dict[str, List[ValidationFinding]] = {}
    for f in findings:
        grouped.setdefault(f.category, []).append(f)

    for category, items in grouped.items():
        yield ("GROUP_HEADER", category, None)
        for f in items:
            yield ("FINDING", category, f)


# ------------------------------------------------------------
# Formateo / impresión
# ------------------------------------------------------------

def format_qa_report(report: QAResult, cfg: Optional[Dict[str, Any]] = None) -> str:
    """Devuelve el texto del reporte (lo que imprime print_qa_report)."""
    cfg = get_reporting_config() if cfg is None else cfg
    labels = cfg.get("labels", {})
    width = int(cfg.get("header_width", 70))
    include = set(cfg.get("include_severities", [s.value for s in Severity]))

    findings = list(report.findings)
    if cfg.get("collapse_field_results", True):
        findings = collapse_field_results(findings)
    shown = [f for f in findings if f.severity.value in include]

    lines: List[str] = []
    lines.append("=" * width)
    lines.append(
        f" {labels.get('title', 'ROCHECK QA REPORT')}  |  "
        f"{labels.get('plan_prefix', 'Plan')}: {report.plan_id or '<unknown>'}  |  "
        f"{labels.get('clinic_prefix', 'Clínica')}: {report.clinic_id}"
    )
    lines.append("=" * width)

    counts = count_by_severity(report.findings)
    status = report.status
    status_sev = {"FAIL": Severity.ERROR, "WARN": Severity.WARNING}.get(status, Severity.INFO)
    lines.append(
        f"{labels.get('summary', 'Resumen')}: {_color(status, status_sev, cfg)}  "
        f"(errors={counts['Error']}, warnings={counts['Warning']}, info={counts['Info']})"
    )

    lines.append("")
    lines.append(f"{labels.get('findings_section', 'Findings')}:")
    lines.append("-" * width)

    if not shown:
        lines.append(labels.get("no_findings", "Sin findings."))

    for item_type, category, f in _iter_grouped(shown, cfg.get("group_findings_by", "category")):
        if item_type == "GROUP_HEADER":
            lines.append("")
            lines.append(f"[{category}]")
            continue
        tag = _color(f"[{f.severity.value.upper()}]", f.severity, cfg)
        if cfg.get("group_findings_by", "category") == "category":
            lines.append(f"  {tag} {f.message}")
        else:
            lines.append(f"{tag} {f.category}: {f.message}")

    lines.append("")
    lines.append("=" * width)
    lines.append(f" {labels.get('end', 'FIN DEL REPORTE')} ")
    lines.append("=" * width)
    return "\n".join(lines)


def print_qa_report(report: QAResult, cfg: Optional[Dict[str, Any]] = None) -> None:
    """Pretty printer principal para QAResult."""
    print(format_qa_report(report, cfg))
