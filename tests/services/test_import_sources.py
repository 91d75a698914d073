"""
Tests for reading bulk-import spreadsheets (.csv and .xlsx).
"""

import openpyxl
import pytest

from asset_kernel.domain.values import AssetKind, AssetStatus
from asset_kernel.exceptions import ImportRowError
from asset_services.import_sources import read_import_rows


def write_csv(tmp_path, text: str, name: str = "machines.csv"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestCsv:
    def test_headers_are_matched_loosely(self, tmp_path):
        path = write_csv(
            tmp_path,
            "Serial Number,MODEL,manufacturer,Status,Notes\n"
            "SN-1,POS-X1,Acme,defective,scratched\n"
            "SN-2,POS-X2,,,\n",
        )
        rows = read_import_rows(path)

        assert [r.serial_number for r in rows] == ["SN-1", "SN-2"]
        assert rows[0].model == "POS-X1"
        assert rows[0].manufacturer == "Acme"
        assert rows[0].status == "defective"
        assert rows[1].manufacturer is None
        assert rows[1].status == AssetStatus.NEW
        assert rows[1].kind == AssetKind.MACHINE

    def test_blank_status_takes_the_kind_default(self, tmp_path):
        path = write_csv(tmp_path, "serial_number,type\nSIM-1,sim\n")
        (row,) = read_import_rows(path)
        assert row.kind == "sim"
        assert row.status == AssetStatus.ACTIVE

    def test_default_kind_applies_without_a_type_column(self, tmp_path):
        path = write_csv(tmp_path, "Serial\nSIM-7\n")
        (row,) = read_import_rows(path, default_kind=AssetKind.SIM)
        assert row.kind == AssetKind.SIM
        assert row.status == AssetStatus.ACTIVE

    def test_empty_rows_are_skipped(self, tmp_path):
        path = write_csv(tmp_path, "Serial Number,Model\nSN-1,A\n,\n\nSN-2,B\n")
        assert [r.serial_number for r in read_import_rows(path)] == ["SN-1", "SN-2"]

    def test_byte_order_mark_is_ignored(self, tmp_path):
        path = tmp_path / "bom.csv"
        path.write_bytes("\ufeffSerial Number\nSN-1\n".encode("utf-8"))
        assert read_import_rows(path)[0].serial_number == "SN-1"

    def test_serial_column_is_required(self, tmp_path):
        path = write_csv(tmp_path, "Model,Status\nPOS-X1,NEW\n")
        with pytest.raises(ValueError, match="Serial Number"):
            read_import_rows(path)

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "machines.txt"
        path.write_text("Serial Number\nSN-1\n")
        with pytest.raises(ValueError, match="Unsupported"):
            read_import_rows(path)

    def test_empty_file(self, tmp_path):
        assert read_import_rows(write_csv(tmp_path, "")) == []


class TestXlsx:
    def test_numeric_serials_keep_their_digits(self, tmp_path):
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.append(["Serial Number", "Model", "Status"])
        ws.append([100234.0, "POS-X1", "STANDBY"])
        ws.append([None, None, None])
        ws.append(["SN-9", "POS-X2", None])
        path = tmp_path / "machines.xlsx"
        wb.save(path)

        rows = read_import_rows(path)
        assert [r.serial_number for r in rows] == ["100234", "SN-9"]
        assert rows[0].status == "STANDBY"
        assert rows[1].status == AssetStatus.NEW


class TestImportFromFile:
    def test_file_rows_go_through_registry_validation(
        self, service, machine, branch_a, branch_a_actor, tmp_path
    ):
        path = write_csv(
            tmp_path,
            "Serial Number,Type,Status\nSN-NEW,machine,\nSN-1000,machine,\nSN-BAD,toaster,\n",
        )
        with pytest.raises(ImportRowError) as exc_info:
            service.import_assets_from_file(branch_a_actor, branch_a.id, path)
        assert [number for number, _ in exc_info.value.errors] == [2, 3]

    def test_valid_file_is_imported(self, service, branch_a, branch_a_actor, tmp_path):
        path = write_csv(tmp_path, "Serial Number,Model\nF-1,POS-X1\nF-2,POS-X1\n")
        assets = service.import_assets_from_file(branch_a_actor, branch_a.id, path)
        assert {a.serial_number for a in assets} == {"F-1", "F-2"}
        assert all(a.status == AssetStatus.NEW for a in assets)
