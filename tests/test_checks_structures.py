"""Tests for the structure-set checks (containment, resolution, DICOM types, BODY proximity)."""

from __future__ import annotations

import dataclasses

import pytest

from conftest import bare, box, context, snapshot
from rocheck.core.snapshot import Severity
from rocheck.qa.checks.structures import (
    check_ptv_body_proximity,
    check_structure_types,
    check_target_containment,
    check_target_resolution,
)


def _severities(findings):
    return [f.severity for f in findings]


# ---------------------------------------------------------------------------
# Containment
# ---------------------------------------------------------------------------

class TestTargetContainment:

    def test_contained_targets_give_summary(self, config):
        snap = snapshot([
            box("PTV_1", "PTV", 20.5, 20.5, 40.5, 40.5),
            box("CTV_1", "CTV", 25.5, 25.5, 35.5, 35.5),
            box("GTV_1", "GTV", 28.5, 28.5, 32.5, 32.5),
        ])
        findings = check_target_containment(context(snap, config))

        assert _severities(findings) == [Severity.INFO]
        assert "Los 2 volúmenes" in findings[0].message

    def test_leaking_ctv_is_error(self, config):
        snap = snapshot([
            box("PTV_1", "PTV", 20.5, 20.5, 40.5, 40.5),
            box("CTV_1", "CTV", 15.5, 25.5, 35.5, 35.5),
        ])
        findings = check_target_containment(context(snap, config))

        assert _severities(findings) == [Severity.ERROR]
        assert findings[0].category == "Target Containment"
        assert findings[0].message == "CTV 'CTV_1' se extiende fuera del PTV 'PTV_1'."

    def test_separator_mismatch_depends_on_config(self, config):
        snap = snapshot([
            box("PTV59.4", "PTV", 20.5, 20.5, 40.5, 40.5),
            box("CTV_59.4", "CTV", 15.5, 25.5, 35.5, 35.5),
        ])
        assert check_target_containment(context(snap, config)) == []

        trimmed = dataclasses.replace(config, trim_suffix_separator=True)
        findings = check_target_containment(context(snap, trimmed))
        assert _severities(findings) == [Severity.ERROR]

    def test_support_ptv_is_ignored(self, config):
        snap = snapshot([
            box("PTV_1", "SUPPORT", 20.5, 20.5, 40.5, 40.5),
            box("CTV_1", "CTV", 15.5, 25.5, 35.5, 35.5),
        ])
        assert check_target_containment(context(snap, config)) == []

    def test_marker_named_like_ctv_is_not_checked(self, config):
        snap = snapshot([
            box("PTV_1", "PTV", 20.5, 20.5, 40.5, 40.5),
            box("CTV_1", "MARKER", 60.5, 60.5, 62.5, 62.5),
        ])
        assert check_target_containment(context(snap, config)) == []

    def test_missing_grid_gives_no_findings(self, config):
        snap = snapshot([bare("PTV_1", "PTV"), bare("CTV_1", "CTV")], grid=None)
        assert check_target_containment(context(snap, config)) == []


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestTargetResolution:

    def test_thresholds(self, config):
        snap = snapshot([
            bare("PTV_a", "PTV", volume_cc=4.9),
            bare("PTV_b", "PTV", volume_cc=7.0),
            bare("PTV_c", "PTV", volume_cc=10.0),
        ])
        findings = check_target_resolution(context(snap, config))

        assert _severities(findings) == [Severity.ERROR, Severity.WARNING]
        assert "'PTV_a'" in findings[0].message
        assert "'PTV_b'" in findings[1].message

    def test_high_resolution_target_family_passes(self, config):
        snap = snapshot([
            bare("PTV_1", "PTV", volume_cc=4.9, is_high_resolution=True),
            bare("CTV_1", "CTV", volume_cc=2.0, is_high_resolution=True),
        ])
        findings = check_target_resolution(context(snap, config))

        assert _severities(findings) == [Severity.INFO]
        assert "1 PTV(s) por debajo de 10.0 cc" in findings[0].message
        assert "'PTV_1' (4.90 cc)" in findings[0].message

    def test_linked_ctv_in_standard_resolution_fails(self, config):
        snap = snapshot([
            bare("PTV_1", "PTV", volume_cc=4.9, is_high_resolution=True),
            bare("CTV_1", "CTV", volume_cc=2.0),
        ])
        findings = check_target_resolution(context(snap, config))
        assert _severities(findings) == [Severity.ERROR]

    def test_marker_named_like_ctv_is_not_linked(self, config):
        snap = snapshot([
            bare("PTV_1", "PTV", volume_cc=4.9, is_high_resolution=True),
            bare("CTV_1", "MARKER", volume_cc=0.1),
        ])
        findings = check_target_resolution(context(snap, config))
        assert _severities(findings) == [Severity.INFO]

    def test_no_ptv_gives_no_findings(self, config):
        snap = snapshot([bare("CTV_1", "CTV", volume_cc=1.0)])
        assert check_target_resolution(context(snap, config)) == []


# ---------------------------------------------------------------------------
# Structure types
# ---------------------------------------------------------------------------

class TestStructureTypes:

    def test_prefix_type_mismatch(self, config):
        snap = snapshot([
            bare("PTV_1", "CTV"),
            bare("CTV_1", "CTV"),
            bare("GTV_1", ""),
            bare("PTV_couch", "SUPPORT"),
            bare("Rectum", "ORGAN"),
        ])
        findings = check_structure_types(context(snap, config))

        assert _severities(findings) == [Severity.ERROR, Severity.ERROR]
        assert "'PTV_1'" in findings[0].message
        assert "vacío" in findings[1].message

    def test_all_correct(self, config):
        snap = snapshot([bare("PTV_1", "PTV"), bare("ctv_1", "ctv"), bare("Rectum")])
        findings = check_structure_types(context(snap, config))
        assert _severities(findings) == [Severity.INFO]
        assert "Las 2 estructuras target" in findings[0].message

    def test_no_targets_no_findings(self, config):
        assert check_structure_types(context(snapshot([bare("Rectum")]), config)) == []


# ---------------------------------------------------------------------------
# PTV-BODY proximity
# ---------------------------------------------------------------------------

class TestPtvBodyProximity:

    BODY = box("BODY", "EXTERNAL", 0, 0, 100, 100)

    @pytest.mark.parametrize("edge,dist", [(3, "3.0"), (4, "4.0")])
    def test_close_ptv_is_warning(self, config, edge, dist):
        snap = snapshot([self.BODY, box("PTV_1", "PTV", edge, edge, 30, 30)])
        findings = check_ptv_body_proximity(context(snap, config))

        assert _severities(findings) == [Severity.WARNING]
        assert findings[0].message == (
            f"El PTV PTV_1 está a {dist} mm de la superficie del Body. "
            "Considera crear una estructura EVAL."
        )

    def test_far_ptvs_report_closest(self, config):
        snap = snapshot([
            self.BODY,
            box("PTV_far", "PTV", 30, 30, 60, 60),
            box("PTV_1", "PTV", 20, 20, 40, 40),
        ])
        findings = check_ptv_body_proximity(context(snap, config))

        assert _severities(findings) == [Severity.INFO]
        assert findings[0].message == "PTV más cercano: PTV_1 a 20.0 mm de la superficie del Body."

    @pytest.mark.parametrize("body", [None, box("BODY", "ORGAN", 0, 0, 100, 100)])
    def test_missing_body_is_warning(self, config, body):
        structures = [box("PTV_1", "PTV", 3, 3, 30, 30)]
        if body is not None:
            structures.append(body)
        findings = check_ptv_body_proximity(context(snapshot(structures), config))
        assert _severities(findings) == [Severity.WARNING]
        assert "'BODY'" in findings[0].message

    def test_no_ptvs(self, config):
        assert check_ptv_body_proximity(context(snapshot([self.BODY]), config)) == []

    def test_ptv_without_shared_slices(self, config):
        snap = snapshot([self.BODY, box("PTV_1", "PTV", 3, 3, 30, 30, slices=(8,))])
        assert check_ptv_body_proximity(context(snap, config)) == []

    def test_threshold_comes_from_config(self, config):
        cfg = dataclasses.replace(config, ptv_body_proximity_threshold_mm=25.0)
        snap = snapshot([self.BODY, box("PTV_1", "PTV", 20, 20, 40, 40)])
        assert _severities(check_ptv_body_proximity(context(snap, cfg))) == [Severity.WARNING]
