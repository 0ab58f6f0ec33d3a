"""
Tests for ``python -m approval_config``.
"""

from pathlib import Path

import approval_config
from approval_config.__main__ import main

EXAMPLE = Path(approval_config.__file__).parent / "sets" / "example.yaml"

TWO_DEFAULTS = """
tenant_id: 3b2f6f3e-8a4b-4c1e-9a57-6d1f0b9c2e11
workflows:
  - name: A
    is_default: true
    steps: [{step_order: 1, approver_role: manager}]
  - name: B
    is_default: true
    steps: [{step_order: 1, approver_role: manager}]
"""

UNKNOWN_ROLE = """
tenant_id: 3b2f6f3e-8a4b-4c1e-9a57-6d1f0b9c2e11
workflows:
  - name: A
    steps: [{step_order: 1, approver_role: controller}]
"""


class TestConfigCli:
    def test_example_passes(self, capsys):
        assert main([str(EXAMPLE)]) == 0
        out = capsys.readouterr().out
        assert "Standard v1 [default]: 1 step(s)" in out
        assert "checksum:" in out
        assert out.rstrip().endswith("OK")

    def test_invalid_set_fails(self, tmp_path, capsys):
        path = tmp_path / "bad.yaml"
        path.write_text(TWO_DEFAULTS)

        assert main([str(path)]) == 1
        captured = capsys.readouterr()
        assert "ERROR:" in captured.out
        assert "VALIDATION FAILED" in captured.err

    def test_warnings_fail_only_in_strict_mode(self, tmp_path):
        path = tmp_path / "warn.yaml"
        path.write_text(UNKNOWN_ROLE)

        assert main([str(path)]) == 0
        assert main(["--strict", str(path)]) == 1

    def test_missing_file(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.yaml")]) == 1
        assert "LOAD FAILED" in capsys.readouterr().out

    def test_malformed_condition(self, tmp_path, capsys):
        path = tmp_path / "cond.yaml"
        path.write_text(
            "tenant_id: 3b2f6f3e-8a4b-4c1e-9a57-6d1f0b9c2e11\n"
            "workflows:\n"
            "  - name: A\n"
            "    selection_conditions: [{field: total_amount, operator: gt, value: lots}]\n"
            "    steps: [{step_order: 1, approver_role: manager}]\n"
        )
        assert main([str(path)]) == 1
        assert "LOAD FAILED" in capsys.readouterr().out
