"""Tests for the formulas-backed engine."""

import numpy as np
import pytest

from workbook_preview.services.formula_engine import (
    FormulaEngineError,
    FormulasEngine,
    sanitize_sheet_name,
    unwrap_result,
)
from workbook_preview.workbook import ErrorValue


class TestFormulasEngine:
    """Tests for FormulasEngine."""

    def test_arithmetic(self) -> None:
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [[5, 3, "=A1*2+B1"]])

        assert engine.get_cell_value(sheet, 1, 3) == 13

    def test_dependency_chain(self) -> None:
        """Formulas see the recomputed values of formulas they reference."""
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [["=B1+1", "=C1*3", 2]])

        assert engine.get_cell_value(sheet, 1, 2) == 6
        assert engine.get_cell_value(sheet, 1, 1) == 7

    def test_range_function(self) -> None:
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [[1], [2], [3], ["=SUM(A1:A3)"]])

        assert engine.get_cell_value(sheet, 4, 1) == 6

    def test_cross_sheet_reference(self) -> None:
        """Sheets are referenced by their sanitized names."""
        engine = FormulasEngine()
        inputs = engine.add_sheet("Input Data")
        summary = engine.add_sheet("Summary")
        engine.set_sheet_content(inputs, [[10]])
        engine.set_sheet_content(summary, [["=InputData!A1*2"]])

        assert engine.get_cell_value(summary, 1, 1) == 20

    def test_origin_offsets_content(self) -> None:
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [[4, "=B3*B3"]], origin=(3, 2))

        assert engine.get_cell_value(sheet, 3, 3) == 16
        assert engine.get_cell_value(sheet, 3, 2) == 4
        assert engine.get_cell_value(sheet, 1, 1) is None

    def test_error_inputs_propagate(self) -> None:
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [[ErrorValue("#N/A"), "=A1+1"]])

        assert engine.get_cell_value(sheet, 1, 2) == ErrorValue("#N/A")

    def test_division_by_zero(self) -> None:
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [[0, "=1/A1"]])

        assert engine.get_cell_value(sheet, 1, 2) == ErrorValue("#DIV/0!")

    def test_circular_reference(self) -> None:
        engine = FormulasEngine()
        sheet = engine.add_sheet("Sheet1")
        engine.set_sheet_content(sheet, [["=B1", "=A1", "=1+1"]])

        with pytest.raises(FormulaEngineError, match="Circular"):
            engine.get_cell_value(sheet, 1, 1)
        assert engine.get_cell_value(sheet, 1, 3) == 2

    def test_content_limit(self) -> None:
        engine = FormulasEngine(max_rows=2, max_columns=2)
        sheet = engine.add_sheet("Sheet1")

        with pytest.raises(FormulaEngineError, match="exceeds"):
            engine.set_sheet_content(sheet, [[1], [2], [3]])

    def test_whole_column_into_empty_sheet(self) -> None:
        """A range into a sheet without content is a single blank cell."""
        engine = FormulasEngine()
        engine.add_sheet("Inputs")
        main = engine.add_sheet("Main")
        engine.set_sheet_content(main, [["=SUM(Inputs!A:C)", "=SUM(Inputs!A:XFD)"]])

        assert engine.get_cell_value(main, 1, 1) == 0
        assert engine.get_cell_value(main, 1, 2) == 0

    def test_whole_column_clamped_to_content(self) -> None:
        engine = FormulasEngine()
        inputs = engine.add_sheet("Inputs")
        main = engine.add_sheet("Main")
        engine.set_sheet_content(inputs, [[1, 10], [2, 20]])
        engine.set_sheet_content(main, [["=SUM(Inputs!A:A)", "=SUM(Inputs!A1:B5)"]])

        assert engine.get_cell_value(main, 1, 1) == 3
        assert engine.get_cell_value(main, 1, 2) == 33

    def test_reference_over_engine_limit(self) -> None:
        """A clamped range still larger than the engine limit fails the cell."""
        engine = FormulasEngine(max_rows=10, max_columns=10)
        inputs = engine.add_sheet("Inputs")
        main = engine.add_sheet("Main")
        engine.set_sheet_content(inputs, [[1]], origin=(50, 1))
        engine.set_sheet_content(main, [["=SUM(Inputs!A1:A60)", 7]])

        with pytest.raises(FormulaEngineError, match="engine limit"):
            engine.get_cell_value(main, 1, 1)
        assert engine.get_cell_value(main, 1, 2) == 7

    def test_aliases_win_over_sanitized_names(self) -> None:
        engine = FormulasEngine()
        first = engine.add_sheet("PL", aliases=("P&L",))
        second = engine.add_sheet("PL_2", aliases=("PL",))
        engine.set_sheet_content(first, [[1]])
        engine.set_sheet_content(second, [[2, "='P&L'!A1*10", "=PL!A1*10"]])

        assert engine.get_cell_value(second, 1, 2) == 10
        assert engine.get_cell_value(second, 1, 3) == 20

    def test_sheet_registration(self) -> None:
        engine = FormulasEngine()
        engine.add_sheet("P&L")

        with pytest.raises(FormulaEngineError, match="Duplicate"):
            engine.add_sheet("pl")
        with pytest.raises(FormulaEngineError, match="empty"):
            engine.add_sheet("!!")
        with pytest.raises(FormulaEngineError, match="Unknown sheet"):
            engine.get_cell_value(5, 1, 1)


class TestHelpers:
    """Tests for module helpers."""

    def test_sanitize_sheet_name(self) -> None:
        assert sanitize_sheet_name("Q1 P&L (2024)") == "Q1PL2024"

    def test_unwrap_result(self) -> None:
        assert unwrap_result(np.array([[4.5]])) == 4.5
        assert unwrap_result(np.float64(2.0)) == 2.0
        assert unwrap_result(np.bool_(True)) is True
        assert unwrap_result("#REF!") == ErrorValue("#REF!")
        assert unwrap_result("text") == "text"
        assert unwrap_result(np.array([])) is None
