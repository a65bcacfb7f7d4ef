"""Tests for the check orchestrator: ordering, fault isolation, timeouts and parallel runs."""

from __future__ import annotations

import dataclasses

from conftest import box, goal, snapshot
from rocheck.core.snapshot import Severity, ValidationFinding
from rocheck.qa.aggregation import QAResult
from rocheck.qa.checks import CHECK_REGISTRY, run_all_checks
from rocheck.qa.engine import evaluate_snapshot


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _plan():
    return snapshot(
        [
            box("BODY", "EXTERNAL", 0, 0, 100, 100),
            box("PTV_70", "PTV", 20.5, 20.5, 40.5, 40.5, volume_cc=30.0),
            box("CTV_70", "CTV", 25.5, 25.5, 35.5, 35.5, volume_cc=20.0),
            box("Cord", "ORGAN", 35.5, 20.5, 60.5, 40.5),
        ],
        goals=[
            goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
            goal("CTV_70", "D 98 % ≥ 66.5 Gy"),
            goal("Cord", "Dmax < 45 Gy"),
            goal("BODY", "Dmax < 77 Gy"),
        ],
        reviewed=["PTV_70", "CTV_70"],
        plan_id="Prostata_70",
    )


def _categories(findings):
    out = []
    for f in findings:
        if f.category not in out:
            out.append(f.category)
    return out


def _ok_check(ctx):
    return [ValidationFinding("OK", "todo bien", Severity.INFO)]


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------

class TestRunAllChecks:

    def test_findings_follow_registry_order(self, config):
        findings = run_all_checks(_plan(), config)

        assert _categories(findings) == [
            "Clinical Goals existence",
            "Target Containment",
            "Target-OAR Overlap",
            "Target Resolution",
            "Structure Types",
            "PTV-Body Proximity",
        ]
        warnings = [f for f in findings if f.severity is Severity.WARNING]
        assert len(warnings) == 1
        assert "'Cord'" in warnings[0].message
        assert not any(f.severity is Severity.ERROR for f in findings)

    def test_registry_has_seven_checks(self):
        assert list(CHECK_REGISTRY) == [
            "CLINICAL_GOALS_COVERAGE",
            "TARGET_CONTAINMENT",
            "TARGET_OAR_OVERLAP",
            "TARGET_RESOLUTION",
            "STRUCTURE_TYPES",
            "SIB_DOSE_UNITS",
            "PTV_BODY_PROXIMITY",
        ]

    def test_runs_are_idempotent(self, config):
        snap = _plan()
        assert run_all_checks(snap, config) == run_all_checks(snap, config)

    def test_parallel_matches_sequential(self, config):
        snap = _plan()
        parallel = dataclasses.replace(config, run_in_parallel=True)
        assert run_all_checks(snap, parallel) == run_all_checks(snap, config)

    def test_disabled_check_is_skipped(self, config):
        cfg = dataclasses.replace(config, disabled_checks=frozenset({"TARGET_CONTAINMENT"}))
        assert "Target Containment" not in _categories(run_all_checks(_plan(), cfg))

    def test_empty_snapshot_gives_no_findings(self, config):
        snap = snapshot(structures=None, goals=None, grid=None)
        assert run_all_checks(snap, config) == []


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------

class TestFaultIsolation:

    def test_exception_becomes_sanitized_warning(self, config):
        def _broken(ctx):
            raise RuntimeError("Paciente Juan Pérez, HC 12345")

        findings = run_all_checks(_plan(), config, registry={"BROKEN": _broken, "OK": _ok_check})

        assert [f.severity for f in findings] == [Severity.WARNING, Severity.INFO]
        assert findings[0].category == "BROKEN"
        assert findings[0].message == "Se produjo un error de validación en la categoría 'BROKEN'."
        assert "Pérez" not in findings[0].message
        assert findings[1].message == "todo bien"

    def test_known_check_uses_its_category(self, config):
        def _broken(ctx):
            raise ValueError("boom")

        findings = run_all_checks(_plan(), config, registry={"TARGET_RESOLUTION": _broken})
        assert findings[0].category == "Target Resolution"
        assert "'Target Resolution'" in findings[0].message

    def test_timeout_becomes_info(self, config):
        def _slow(ctx):
            ctx.deadline.check("slow")
            return [ValidationFinding("SLOW", "no debería llegar", Severity.ERROR)]

        cfg = dataclasses.replace(config, check_timeout_s=0.0)
        findings = run_all_checks(_plan(), cfg, registry={"SLOW": _slow, "OK": _ok_check})

        assert findings[0].severity is Severity.INFO
        assert findings[0].message == "Validación omitida: se superó el tiempo límite de 0 s."
        assert findings[1].message == "todo bien"

    def test_geometry_timeout_inside_real_check(self, config):
        cfg = dataclasses.replace(config, check_timeout_s=0.0)
        findings = run_all_checks(_plan(), cfg, registry={"TARGET_CONTAINMENT": CHECK_REGISTRY["TARGET_CONTAINMENT"]})
        assert [f.severity for f in findings] == [Severity.INFO]
        assert findings[0].message.startswith("Validación omitida")

    def test_no_timeout_when_disabled(self, config):
        def _slow(ctx):
            ctx.deadline.check("slow")
            return []

        cfg = dataclasses.replace(config, check_timeout_s=None)
        assert run_all_checks(_plan(), cfg, registry={"SLOW": _slow}) == []


# ---------------------------------------------------------------------------
# evaluate_snapshot
# ---------------------------------------------------------------------------

class TestEvaluateSnapshot:

    def test_returns_qa_result(self, config):
        result = evaluate_snapshot(_plan(), config)

        assert isinstance(result, QAResult)
        assert result.plan_id == "Prostata_70"
        assert result.clinic_id == "DEFAULT"
        assert result.status == "WARN"
        assert result.is_valid
        assert result.num_warnings == 1
