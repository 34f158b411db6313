"""
Tests for the command-line harnesses and the ComparisonCircuit facade.
"""

import pytest

import comparison_circuit
import psm_circuit
from comparison_circuit import ComparisonCircuit
from fq_compare import ComparisonParams


class TestComparisonCircuit:

    def test_facade_runs_comparisons(self):
        params = ComparisonParams(circuit_type="U", p=7, nslots=12, expansion_len=3, runs=2, seed=1)
        circuit = ComparisonCircuit(params)
        report = circuit.run()
        assert report.runs == 2
        assert report.passed

    def test_facade_runs_psm(self):
        params = ComparisonParams(circuit_type="P", p=17, nslots=16, set_size=4, seed=1)
        report = ComparisonCircuit(params).run(runs=1)
        assert report.passed

    def test_facade_from_cyclotomic_order(self):
        params = ComparisonParams(circuit_type="U", p=7, d=2, m=8, expansion_len=1, seed=3)
        circuit = ComparisonCircuit(params)
        assert circuit.fhe.slot_count == 2
        assert circuit.run().passed

    def test_verbose_logging(self, capsys):
        params = ComparisonParams(circuit_type="U", p=5, nslots=4, expansion_len=2, verbose=True)
        ComparisonCircuit(params)
        out = capsys.readouterr().out
        assert "[MAIN] Initialisation complete" in out
        assert "[CMP]" in out
        assert "[FHE-OPS]" in out


class TestCommandLine:

    def test_compare_main(self, capsys):
        code = comparison_circuit.main(["U", "7", "1", "--nslots", "12", "--expansion-len", "3",
                                        "--runs", "2", "--seed", "4"])
        assert code == 0
        assert "PASS" in capsys.readouterr().out

    def test_bivariate_main(self, capsys):
        code = comparison_circuit.main(["B", "13", "1", "--nslots", "8", "--expansion-len", "2"])
        assert code == 0

    def test_adjust_needs_order(self, capsys):
        assert comparison_circuit.main(["U", "7", "1", "--nslots", "4", "--adjust"]) == 2

    def test_adjusted_parameters(self, capsys):
        code = comparison_circuit.main(["U", "8", "2", "--m", "8", "--adjust", "--expansion-len", "1"])
        assert code == 0
        assert "Adjusted parameters: p=11 m=8" in capsys.readouterr().out

    def test_compare_main_psm(self, capsys):
        code = comparison_circuit.main(["P", "17", "1", "--nslots", "16", "--set-size", "4",
                                        "--seed", "2"])
        assert code == 0
        assert "PASS" in capsys.readouterr().out

    def test_compare_main_psm_adjusts_order(self, capsys):
        # 16 -> 17, and 17 = 1 mod 16 so slots stay in F_17
        code = comparison_circuit.main(["P", "16", "1", "--m", "16", "--set-size", "4"])
        assert code == 0
        assert "Adjusted parameters: p=17 m=16 d=1" in capsys.readouterr().out

    def test_compare_main_psm_takes_slot_degree(self, capsys):
        # ord_32(17) = 2
        code = comparison_circuit.main(["P", "17", "1", "--m", "32", "--set-size", "2",
                                        "--expansion-len", "1", "--seed", "3"])
        assert code == 0
        assert "Adjusted parameters: p=17 m=32 d=2" in capsys.readouterr().out

    def test_rejects_string_psm_type(self):
        with pytest.raises(SystemExit):
            comparison_circuit.main(["S", "11", "1", "--nslots", "24"])

    def test_psm_main(self, capsys):
        code = psm_circuit.main(["P", "17", "1", "--nslots", "16", "--set-size", "4", "--seed", "2"])
        assert code == 0

    def test_string_psm_main(self, capsys):
        code = psm_circuit.main(["S", "11", "1", "--nslots", "24", "--expansion-len", "3",
                                 "--set-size", "4", "--runs", "2"])
        assert code == 0
