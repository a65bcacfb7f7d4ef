# src/rocheck/app/cli.py

"""
CLI de rocheck (QA de planes de radioterapia).

Uso típico:

    rocheck --snapshot ./plan_snapshot.json --clinic CLINIC_E
    rocheck --ct-folder ./pac01/CT --rtstruct ./pac01/RTSTRUCT.dcm \\
            --goals ./pac01/goals.json [--rtplan ./pac01/RTPLAN.dcm]

Qué hace:
  1) Construye el PlanSnapshot (JSON o DICOM + JSON de goals).
  2) Resuelve el ValidationConfig de la clínica (perfil + overrides).
  3) Ejecuta evaluate_snapshot.
  4) Imprime el reporte en consola (o el JSON de findings con --json).

Códigos de salida: 0 sin errores, 1 si hay algún finding Error,
2 si la entrada o la configuración no son válidas.
"""

import argparse
import copy
import dataclasses
import json
import logging.config
import sys
from typing import List, Optional

from rocheck.core.build_snapshot import build_snapshot_from_dicom, load_snapshot_json
from rocheck.errors import RocheckError
from rocheck.qa.config import (
    CLINIC_PROFILES,
    get_logging_config,
    get_reporting_config,
    get_validation_config,
)
from rocheck.qa.engine import evaluate_snapshot
from rocheck.qa.reporting import print_qa_report

EXIT_OK = 0
EXIT_ERRORS = 1
EXIT_INPUT = 2


def _configure_logging(level: Optional[str]) -> None:
    cfg = copy.deepcopy(get_logging_config())
    cfg.pop("extra", None)
    if level:
        for logger_cfg in cfg.get("loggers", {}).values():
            logger_cfg["level"] = level.upper()
        for handler_cfg in cfg.get("handlers", {}).values():
            handler_cfg["level"] = level.upper()
    logging.config.dictConfig(cfg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rocheck",
        description="QA basado en reglas para estructuras y clinical goals de planes de RT.",
    )
    src = parser.add_argument_group("entrada")
    src.add_argument("--snapshot", type=str, default=None, help="Snapshot del plan en JSON.")
    src.add_argument("--ct-folder", type=str, default=None, help="Carpeta con la serie CT (DICOM).")
    src.add_argument("--rtstruct", type=str, default=None, help="Ruta al RTSTRUCT.")
    src.add_argument("--rtplan", type=str, default=None, help="Ruta al RTPLAN (opcional).")
    src.add_argument("--goals", type=str, default=None, help="JSON con clinical goals y prescripción.")

    parser.add_argument(
        "--clinic",
        type=str,
        default="DEFAULT",
        help=f"Perfil de clínica ({', '.join(sorted(CLINIC_PROFILES))}).",
    )
    parser.add_argument("--no-overrides", action="store_true", help="Ignorar qa_overrides.json.")
    parser.add_argument("--overrides", type=str, default=None, help="Ruta alternativa de overrides JSON.")
    parser.add_argument("--parallel", action="store_true", help="Ejecutar los checks en paralelo.")
    parser.add_argument("--json", action="store_true", help="Imprimir el resultado como JSON.")
    parser.add_argument("--no-color", action="store_true", help="Reporte sin colores ANSI.")
    parser.add_argument("--log-level", type=str, default=None, help="Nivel de logging (DEBUG, INFO...).")
    return parser


def run(args: argparse.Namespace) -> int:
    config = get_validation_config(
        args.clinic,
        use_overrides=not args.no_overrides,
        overrides_path=args.overrides,
    )
    if args.parallel:
        config = dataclasses.replace(config, run_in_parallel=True)

    if args.snapshot:
        snapshot = load_snapshot_json(args.snapshot)
    else:
        snapshot = build_snapshot_from_dicom(
            ct_folder=args.ct_folder,
            rtstruct_path=args.rtstruct,
            goals_path=args.goals,
            rtplan_path=args.rtplan,
        )

    result = evaluate_snapshot(snapshot, config)

    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    else:
        report_cfg = dict(get_reporting_config())
        if args.no_color:
            report_cfg["use_colors"] = False
        print_qa_report(result, report_cfg)

    return EXIT_OK if result.is_valid else EXIT_ERRORS


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.snapshot and not (args.ct_folder and args.rtstruct):
        parser.print_usage(sys.stderr)
        print("[ERROR] Indica --snapshot o bien --ct-folder y --rtstruct.", file=sys.stderr)
        return EXIT_INPUT

    _configure_logging(args.log_level)

    try:
        return run(args)
    except RocheckError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return EXIT_INPUT


if __name__ == "__main__":
    sys.exit(main())
