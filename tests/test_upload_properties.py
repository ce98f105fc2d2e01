import pytest

import upload_properties
from conftest import FakeDynamoDBClient
from errors import ValidationError
from upload_properties import ct_row_to_property, load_csv, parse_currency, parse_sale_date

HEADER = ("Serial Number,List Year,Date Recorded,Town,Address,Assessed Value,Sale Amount,"
          "Sales Ratio,Property Type,Residential Type,Location\n")

ROWS = [
    '2100123,2021,04/14/2022,Hartford,12 MAIN ST,"150,000.00","$248,400.00",0.6039,Residential,Single Family,'
    'POINT (-72.68 41.76)\n',
    ',2021,05/02/2022,Avon,7 OAK RD,200000,525000,0.38,Residential,Condo,\n',
    '2100125,2021,06/01/2022,Hartford,,100000,90000,1.1,Residential,Single Family,\n',
    '2100126,2021,06/03/2022,Hartford,9 ELM ST,100000,0,0,Residential,Single Family,\n',
]


@pytest.fixture
def sales_csv(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_text(HEADER + "".join(ROWS), encoding="utf-8")
    return path


@pytest.mark.parametrize("raw,expected", [
    ("248,400.00", 248400.0),
    ("$1,000", 1000.0),
    ("", None),
    (None, None),
    ("n/a", None),
    ("NaN", None),
    ("inf", None),
    ("-Infinity", None),
])
def test_parse_currency(raw, expected):
    assert parse_currency(raw) == expected


def test_parse_sale_date():
    assert parse_sale_date("04/14/2022") == "2022-04-14"
    assert parse_sale_date("2022-04-14") == "2022-04-14"
    assert parse_sale_date("someday") is None


def test_ct_row_to_property():
    record = ct_row_to_property({
        "Serial Number": "2100123", "List Year": "2021", "Date Recorded": "04/14/2022",
        "Town": "Hartford", "Address": "12 MAIN ST", "Assessed Value": "150,000.00",
        "Sale Amount": "248,400.00", "Sales Ratio": "0.6039", "Property Type": "Residential",
        "Residential Type": "Single Family", "Location": "",
    })

    assert record == {
        "id": "ct-hartford-2100123",
        "address": "12 MAIN ST, Hartford",
        "city": "Hartford",
        "state": "CT",
        "price": 248400,
        "propertyType": "Residential",
        "saleDate": "2022-04-14",
        "metadata": {
            "residentialType": "Single Family",
            "assessedValue": 150000,
            "listYear": 2021,
            "salesRatio": 0.6039,
            "serialNumber": "2100123",
        },
    }


def test_ct_row_without_serial_gets_stable_id():
    row = {"Town": "Avon", "Address": "7 OAK RD", "Sale Amount": "525000", "Date Recorded": "05/02/2022"}
    first = ct_row_to_property(row)
    second = ct_row_to_property(dict(row))

    assert first["id"].startswith("ct-")
    assert first["id"] == second["id"]


@pytest.mark.parametrize("row", [
    {"Town": "Avon", "Address": "", "Sale Amount": "1"},
    {"Town": "", "Address": "1 A ST", "Sale Amount": "1"},
    {"Town": "Avon", "Address": "1 A ST", "Sale Amount": "0"},
    {"Town": "Avon", "Address": "1 A ST", "Sale Amount": "free"},
    {"Town": "Avon", "Address": "1 A ST", "Sale Amount": "NaN"},
    {"Town": "Avon", "Address": "1 A ST", "Sale Amount": "inf"},
])
def test_ct_row_validation(row):
    with pytest.raises(ValidationError):
        ct_row_to_property(row)


def test_load_csv_collects_records_and_errors(sales_csv):
    records, errors = load_csv(str(sales_csv))

    assert [r["city"] for r in records] == ["Hartford", "Avon"]
    assert records[0]["metadata"]["location"] == "POINT (-72.68 41.76)"
    assert [e["line"] for e in errors] == [4, 5]


def test_non_finite_metadata_values_are_dropped():
    record = ct_row_to_property({
        "Town": "Avon", "Address": "7 OAK RD", "Sale Amount": "525000",
        "Assessed Value": "NaN", "Sales Ratio": "inf",
    })

    assert "assessedValue" not in record["metadata"]
    assert "salesRatio" not in record["metadata"]


def test_load_csv_reports_non_finite_sale_amounts(tmp_path):
    path = tmp_path / "sales.csv"
    path.write_text(HEADER + ROWS[0]
                    + '2100130,2021,06/05/2022,Avon,1 A ST,100000,NaN,0,Residential,Condo,\n'
                    + '2100131,2021,06/06/2022,Avon,2 B ST,100000,inf,0,Residential,Condo,\n',
                    encoding="utf-8")

    records, errors = load_csv(str(path))

    assert [r["id"] for r in records] == ["ct-hartford-2100123"]
    assert errors == [
        {"line": 3, "error": "Sale Amount must be positive"},
        {"line": 4, "error": "Sale Amount must be positive"},
    ]


def test_same_serial_in_two_towns_loads_both(tmp_path, monkeypatch):
    path = tmp_path / "sales.csv"
    path.write_text(HEADER
                    + '2100123,2021,04/14/2022,Hartford,12 MAIN ST,100000,248400,0.4,Residential,Condo,\n'
                    + '2100123,2021,04/20/2022,West Hartford,5 FERN ST,100000,310000,0.3,Residential,Condo,\n'
                    + '2100123,2021,05/01/2022,Hartford,12 MAIN ST,100000,250000,0.4,Residential,Condo,\n',
                    encoding="utf-8")
    client = FakeDynamoDBClient()
    monkeypatch.setattr(upload_properties, "create_dynamodb_client", lambda: client)

    assert upload_properties.main(["--file", str(path), "--table", "props"]) == 0
    assert set(client.tables["props"]) == {("ct-hartford-2100123",), ("ct-west-hartford-2100123",)}
    assert client.tables["props"][("ct-hartford-2100123",)]["price"] == {"N": "250000"}


def test_load_csv_limit(sales_csv):
    records, errors = load_csv(str(sales_csv), limit=1)
    assert len(records) == 1
    assert errors == []


def test_main_dry_run_writes_nothing(sales_csv, monkeypatch):
    def fail():
        raise AssertionError("dry run must not create a client")

    monkeypatch.setattr(upload_properties, "create_dynamodb_client", fail)
    assert upload_properties.main(["--file", str(sales_csv), "--dry-run"]) == 0


def test_main_writes_to_table(sales_csv, monkeypatch):
    client = FakeDynamoDBClient()
    monkeypatch.setattr(upload_properties, "create_dynamodb_client", lambda: client)

    assert upload_properties.main(["--file", str(sales_csv), "--table", "props"]) == 0
    assert set(client.tables["props"]) == {("ct-hartford-2100123",), (ct_row_to_property({
        "Town": "Avon", "Address": "7 OAK RD", "Sale Amount": "525000", "Date Recorded": "05/02/2022"
    })["id"],)}


def test_main_missing_file_fails(tmp_path):
    assert upload_properties.main(["--file", str(tmp_path / "missing.csv"), "--dry-run"]) == 1
