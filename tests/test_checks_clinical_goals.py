"""Tests for the clinical-goal driven checks (coverage, target-OAR overlap, SIB units)."""

from __future__ import annotations

import dataclasses

import pytest

from conftest import bare, box, context, goal, snapshot
from rocheck.core.snapshot import Severity
from rocheck.qa.checks import clinical_goals
from rocheck.qa.checks.clinical_goals import (
    check_clinical_goals_coverage,
    check_sib_dose_units,
    check_target_oar_overlap,
)


def _severities(findings):
    return [f.severity for f in findings]


# ---------------------------------------------------------------------------
# Coverage
# ---------------------------------------------------------------------------

class TestClinicalGoalsCoverage:

    STRUCTURES = [
        bare("BODY", "EXTERNAL"),
        bare("PTV_70", "PTV"),
        bare("PTV_eval", "PTV"),
        bare("Rectum"),
        bare("Bladder"),
        bare("z_ring"),
        bare("CouchSurface", "SUPPORT"),
    ]

    def test_missing_goal_is_warning(self, config):
        snap = snapshot(
            self.STRUCTURES,
            goals=[
                goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
                goal("Rectum", "Dmax < 70 Gy"),
                goal("body", "Dmax < 77 Gy"),
            ],
            reviewed=["PTV_70"],
        )
        findings = check_clinical_goals_coverage(context(snap, config))

        assert len(findings) == 1
        assert findings[0].severity is Severity.WARNING
        assert findings[0].category == "Clinical Goals existence"
        assert "'Bladder'" in findings[0].message

    def test_unusable_goal_does_not_cover(self, config):
        snap = snapshot(
            [bare("Bladder")],
            goals=[goal("Bladder", "Mean as low as possible")],
        )
        findings = check_clinical_goals_coverage(context(snap, config))
        assert _severities(findings) == [Severity.WARNING, Severity.INFO]
        assert "'Bladder'" in findings[0].message

    def test_all_covered_gives_summary(self, config):
        snap = snapshot(
            [bare("PTV_70", "PTV"), bare("Rectum"), bare("Bladder")],
            goals=[
                goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
                goal("Rectum", "Dmax < 70 Gy"),
                goal("Bladder", "Mean < 40 Gy"),
            ],
            reviewed=["ptv_70"],
        )
        findings = check_clinical_goals_coverage(context(snap, config))
        assert _severities(findings) == [Severity.INFO]
        assert "Las 3 estructuras" in findings[0].message

    def test_without_reviewed_prescription_targets_are_skipped(self, config):
        snap = snapshot(
            [bare("PTV_70", "PTV"), bare("Rectum")],
            goals=[goal("Rectum", "Dmax < 70 Gy")],
        )
        findings = check_clinical_goals_coverage(context(snap, config))

        assert _severities(findings) == [Severity.INFO]
        assert "Reviewed" in findings[0].message

    def test_without_reviewed_prescription_and_no_targets(self, config):
        snap = snapshot([bare("Rectum")], goals=[goal("Rectum", "Dmax < 70 Gy")])
        findings = check_clinical_goals_coverage(context(snap, config))

        assert _severities(findings) == [Severity.INFO]
        assert "Reviewed" in findings[0].message

    def test_reviewed_prescription_allows_summary(self, config):
        snap = snapshot(
            [bare("Rectum")], goals=[goal("Rectum", "Dmax < 70 Gy")], reviewed=["PTV_1"],
        )
        findings = check_clinical_goals_coverage(context(snap, config))

        assert _severities(findings) == [Severity.INFO]
        assert "Las 1 estructuras" in findings[0].message

    def test_everything_excluded(self, config):
        snap = snapshot([bare("z_ring"), bare("CouchSurface", "SUPPORT")], goals=[])
        findings = check_clinical_goals_coverage(context(snap, config))
        assert _severities(findings) == [Severity.INFO, Severity.INFO]
        assert "Reviewed" in findings[0].message
        assert "excluidas" in findings[1].message

    @pytest.mark.parametrize("kwargs", [{"goals": None}, {"structures": None}])
    def test_missing_prerequisite_gives_no_findings(self, config, kwargs):
        snap = snapshot(**kwargs)
        assert check_clinical_goals_coverage(context(snap, config)) == []


# ---------------------------------------------------------------------------
# Target-OAR overlap
# ---------------------------------------------------------------------------

class TestTargetOarOverlap:

    GOALS = [
        goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
        goal("Cord", "Dmax < 45 Gy"),
    ]

    def test_overlap_with_dose_conflict(self, config):
        snap = snapshot(
            [
                box("PTV_70", "PTV", 20.5, 20.5, 40.5, 40.5),
                box("Cord", "ORGAN", 35.5, 20.5, 60.5, 40.5),
            ],
            goals=self.GOALS,
        )
        findings = check_target_oar_overlap(context(snap, config))

        assert _severities(findings) == [Severity.WARNING, Severity.INFO]
        assert findings[0].message == (
            "PTV_70 (lower goal: 66.50 Gy) se solapa con el OAR 'Cord' (Dmax: 45.00 Gy)."
        )
        assert findings[1].message.startswith("Recomendación")

    def test_dose_conflict_without_overlap(self, config):
        snap = snapshot(
            [
                box("PTV_70", "PTV", 20.5, 20.5, 40.5, 40.5),
                box("Cord", "ORGAN", 50.5, 20.5, 70.5, 40.5),
            ],
            goals=self.GOALS,
        )
        findings = check_target_oar_overlap(context(snap, config))
        assert _severities(findings) == [Severity.INFO]
        assert "Hay 1 par(es)" in findings[0].message

    def test_no_dose_conflict_skips_geometry(self, config, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("overlaps no debería llamarse")

        monkeypatch.setattr(clinical_goals, "overlaps", _fail)
        snap = snapshot(
            [
                box("PTV_70", "PTV", 20.5, 20.5, 40.5, 40.5),
                box("Cord", "ORGAN", 35.5, 20.5, 60.5, 40.5),
            ],
            goals=[goal("PTV_70", "D 95 % ≥ 66.5 Gy"), goal("Cord", "Dmax < 70 Gy")],
        )
        findings = check_target_oar_overlap(context(snap, config))
        assert _severities(findings) == [Severity.INFO]
        assert "No se detectaron" in findings[0].message

    def test_structure_is_not_compared_with_itself(self, config):
        snap = snapshot(
            [box("PTV_70", "PTV", 20.5, 20.5, 40.5, 40.5)],
            goals=[goal("PTV_70", "D 95 % ≥ 60 Gy"), goal("PTV_70", "Dmax < 50 Gy")],
        )
        findings = check_target_oar_overlap(context(snap, config))
        assert "No se detectaron" in findings[0].message

    def test_missing_grid_gives_no_findings(self, config):
        snap = snapshot([bare("PTV_70", "PTV")], goals=self.GOALS, grid=None)
        assert check_target_oar_overlap(context(snap, config)) == []


# ---------------------------------------------------------------------------
# SIB dose units
# ---------------------------------------------------------------------------

class TestSibDoseUnits:

    def test_percentage_goal_in_sib_plan_is_error(self, config):
        snap = snapshot(
            [bare("PTV_70", "PTV"), bare("PTV_56", "PTV")],
            goals=[
                goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
                goal("PTV_56", "D 95 % ≥ 53.2 Gy"),
                goal("PTV_56", "Dmax < 107 %"),
            ],
        )
        findings = check_sib_dose_units(context(snap, config))

        assert _severities(findings) == [Severity.ERROR]
        assert findings[0].category == "SIB Dose Units"
        assert "'PTV_56'" in findings[0].message

    def test_gy_only_sib_plan_is_clean(self, config):
        snap = snapshot(
            [bare("PTV_70", "PTV"), bare("PTV_56", "PTV")],
            goals=[goal("PTV_70", "D 95 % ≥ 66.5 Gy"), goal("PTV_56", "D 95 % ≥ 53.2 Gy")],
        )
        assert check_sib_dose_units(context(snap, config)) == []

    def test_close_doses_are_not_sib(self, config):
        snap = snapshot(
            [bare("PTV_70", "PTV"), bare("PTV_70b", "PTV")],
            goals=[
                goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
                goal("PTV_70b", "D 95 % ≥ 66.0 Gy"),
                goal("PTV_70b", "Dmax < 107 %"),
            ],
        )
        assert check_sib_dose_units(context(snap, config)) == []

    def test_single_target_is_not_sib(self, config):
        snap = snapshot(
            [bare("PTV_70", "PTV")],
            goals=[goal("PTV_70", "D 95 % ≥ 66.5 Gy"), goal("PTV_70", "Dmax < 107 %")],
        )
        assert check_sib_dose_units(context(snap, config)) == []

    def test_threshold_comes_from_config(self, config):
        cfg = dataclasses.replace(config, sib_dose_percent_threshold=30.0)
        snap = snapshot(
            [bare("PTV_70", "PTV"), bare("PTV_56", "PTV")],
            goals=[
                goal("PTV_70", "D 95 % ≥ 66.5 Gy"),
                goal("PTV_56", "D 95 % ≥ 53.2 Gy"),
                goal("PTV_56", "Dmax < 107 %"),
            ],
        )
        assert check_sib_dose_units(context(snap, cfg)) == []
