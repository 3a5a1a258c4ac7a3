"""
Unit tests for the SalesInvoicePrint record normalizer.
"""
import pytest
from datetime import date
from decimal import Decimal

from pydantic import ValidationError

from invoice_transformer.core.models import InvoiceRecord
from invoice_transformer.core.parsers import (
    FormatError,
    SalesInvoiceParser,
    load_invoice_record,
    invoice_file_generator,
    parse_decimal,
    parse_source_date,
)

from conftest import DATA_DIR, WRONG_ROOT_INVOICE


def wrap(body: str) -> str:
    return f"<SalesInvoicePrint>{body}</SalesInvoicePrint>"


@pytest.fixture
def parser(today):
    return SalesInvoiceParser(today=today)


@pytest.fixture
def record(parser, sample_xml):
    return parser.parse(sample_xml)


class TestRootCheck:
    """The only structural validation performed"""

    def test_wrong_root_is_rejected(self, parser):
        with pytest.raises(FormatError) as exc_info:
            parser.parse(WRONG_ROOT_INVOICE)

        assert "Unexpected root element 'PurchaseOrderPrint'" in str(exc_info.value)
        assert "'SalesInvoicePrint'" in str(exc_info.value)

    def test_malformed_xml_is_rejected(self, parser):
        with pytest.raises(FormatError) as exc_info:
            parser.parse("<SalesInvoicePrint><Invoice></SalesInvoicePrint>")

        assert "Failed to parse XML" in str(exc_info.value)

    def test_empty_input_is_rejected(self, parser):
        with pytest.raises(FormatError):
            parser.parse(b"")

    def test_namespaced_root_uses_local_name(self, parser):
        record = parser.parse('<ns:SalesInvoicePrint xmlns:ns="urn:example"/>')

        assert record.line_items == []


class TestSampleInvoice:
    """Field extraction from a complete document"""

    def test_company_details(self, record):
        assert record.company_name == "Acme Supplies Ltd"
        assert record.vat_registration_no == "GB123456789"
        assert record.company_registration_no == "01234567"
        assert record.company_address.lines == ["1 High Street", "Leeds"]
        assert record.company_address.postcode == "LS1 1AA"
        assert record.company_address.country_code == "GB"

    def test_invoice_number_keeps_digits_only(self, record):
        assert record.invoice_number == "001001"
        assert record.customer_order_number == "PO-7781"
        assert record.your_reference == "REF-55"

    def test_dates_are_iso(self, record):
        assert record.invoice_date == date(2024, 3, 15)
        assert record.order_date == date(2024, 3, 10)
        assert record.despatch_date == date(2024, 3, 14)

    def test_payment_days_from_due_date(self, record):
        assert record.payment_days == 30
        assert record.early_payment_discount_percent == Decimal("2.5")

    def test_customer_and_addresses(self, record):
        assert record.customer_account == "CUST01"
        assert record.customer_name == "Buyer Co"
        assert record.invoice_to_name == "Buyer Co Accounts"
        assert record.invoice_to_address.lines == ["PO Box 9", "Manchester"]
        assert record.deliver_to_address.contact_name == "Goods In"
        assert record.deliver_to_address.postcode == "M1 2BB"

    def test_currency(self, record):
        assert record.currency_code == "GBP"
        assert record.currency_name == "Sterling"

    def test_totals(self, record):
        assert record.net_total == Decimal("130.00")
        assert record.vat_total == Decimal("25.00")
        assert record.gross_total == record.net_total + record.vat_total

    def test_despatch_references(self, record):
        assert record.despatch_number == "DN-3301"
        assert record.sales_order_number == "SO-9001"

    def test_line_items_include_positive_charges(self, record):
        # 2 order items + 2 charges above zero (the 0.00 charge is dropped)
        assert [line.item_number for line in record.line_items] == ["10", "20", "C1", "C2"]
        assert record.charge_count == 2

    def test_order_item_fields(self, record):
        item = record.line_items[1]
        assert item.product_code == "BOLT-9"
        assert item.description == "Bolt pack"
        assert item.quantity == Decimal("2")
        assert item.unit_of_measure == "BOX"
        assert item.unit_price == Decimal("2.5")
        assert item.line_total == Decimal("5.00")
        assert item.vat_code == "AZERO"
        assert not item.is_charge

    def test_charge_fields(self, record):
        charge = record.line_items[2]
        assert charge.is_charge
        assert charge.product_code == "CARR"
        assert charge.description == "Carriage"
        assert charge.quantity == Decimal("1")
        assert charge.unit_price == charge.line_total == Decimal("20.00")
        assert charge.vat_value == Decimal("4.00")

    def test_vat_groups_keep_source_order(self, record):
        assert [group.code for group in record.vat_groups] == ["ASTD", "AZERO"]
        assert record.vat_groups[0].principal_value == Decimal("125.00")
        assert record.vat_groups[0].gross_value == Decimal("150.00")


class TestDefaults:
    """Missing optional data degrades to defaults, never to errors"""

    def test_empty_document(self, parser, today):
        record = parser.parse("<SalesInvoicePrint/>")

        assert record.invoice_number == ""
        assert record.line_items == []
        assert record.vat_groups == []
        assert record.invoice_date == today
        assert record.order_date == today
        assert record.despatch_date == today
        assert record.payment_days == 30
        assert record.currency_code == "GBP"
        assert record.gross_total == Decimal("0")

    def test_no_despatch_section(self, parser):
        record = parser.parse(wrap('<Invoice Number="7"/>'))

        assert record.line_items == []
        assert record.vat_groups == []

    def test_bad_date_uses_processing_date(self, parser, today):
        record = parser.parse(wrap(
            '<Invoice><Dates><InvoiceDate Date="2024-03-15"/></Dates></Invoice>'
        ))

        assert record.invoice_date == today

    def test_bad_due_date_keeps_default_payment_days(self, parser):
        record = parser.parse(wrap(
            '<Invoice><Dates><InvoiceDate Date="01/03/2024"/>'
            '<PaymentDueDate Date="31/02/2024"/></Dates></Invoice>'
        ))

        assert record.invoice_date == date(2024, 3, 1)
        assert record.payment_days == 30

    def test_unparsable_decimals_become_zero(self, parser):
        record = parser.parse(wrap(
            '<Invoice><PricingDetails><Value DocumentValue="abc"/>'
            '<VAT><Value DocumentValue="NaN"/></VAT></PricingDetails></Invoice>'
        ))

        assert record.net_total == Decimal("0")
        assert record.vat_total == Decimal("0")

    def test_unknown_currency_name_is_code(self, parser):
        record = parser.parse(wrap(
            '<Invoice><PricingDetails><DocumentCurrency DocumentCurrencyCode="CHF"/>'
            '</PricingDetails></Invoice>'
        ))

        assert record.currency_code == "CHF"
        assert record.currency_name == "CHF"

    def test_invoice_to_name_falls_back_to_customer(self, parser):
        record = parser.parse(wrap(
            '<Invoice><CustomerDetails><Customer Name="Buyer Co"/>'
            '<InvoiceTo><Address Line1="x"/></InvoiceTo></CustomerDetails></Invoice>'
        ))

        assert record.invoice_to_name == "Buyer Co"

    def test_item_defaults(self, parser):
        record = parser.parse(wrap(
            '<Despatches><Despatch><SalesOrders><SalesOrder><Items><Item/>'
            '</Items></SalesOrder></SalesOrders></Despatch></Despatches>'
        ))

        item = record.line_items[0]
        assert item.item_number == "1"
        assert item.unit_of_measure == "EACH"
        assert item.vat_code == "ASTD"
        assert item.quantity == Decimal("0")


class TestCharges:
    """Charges become numbered synthetic lines"""

    def test_each_charge_gets_its_own_number(self, parser):
        charges = ''.join(
            f'<Charge><ChargeValue DocumentValue="{value}"/></Charge>'
            for value in ("3.00", "-1.00", "4.50", "0")
        )
        record = parser.parse(wrap(
            f'<Despatches><Despatch><Charges>{charges}</Charges></Despatch></Despatches>'
        ))

        assert [line.item_number for line in record.line_items] == ["C1", "C2"]
        assert [line.line_total for line in record.line_items] == [Decimal("3.00"), Decimal("4.50")]
        assert record.line_items[0].product_code == "CHARGE"
        assert record.line_items[0].description == "Charge"

    def test_items_across_despatches_and_orders(self, parser):
        item = '<Item ItemNumber="{n}"/>'
        order = '<SalesOrder><SalesOrderDetails SalesOrderNumber="{so}"/><Items>{items}</Items></SalesOrder>'
        despatch = (
            '<Despatch><DespatchDetails DespatchNumber="{dn}"/>'
            '<SalesOrders>{orders}</SalesOrders></Despatch>'
        )
        body = (
            despatch.format(dn="D1", orders=order.format(so="S1", items=item.format(n=1) + item.format(n=2)))
            + despatch.format(dn="D2", orders=order.format(so="S2", items=item.format(n=3)))
        )
        record = parser.parse(wrap(f'<Despatches>{body}</Despatches>'))

        assert [line.item_number for line in record.line_items] == ["1", "2", "3"]
        assert record.despatch_number == "D1"
        assert record.sales_order_number == "S1"


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        ("12.50", Decimal("12.50")),
        (" 7 ", Decimal("7")),
        ("1,234.5", Decimal("1234.5")),
        ("", Decimal("0")),
        (None, Decimal("0")),
        ("twelve", Decimal("0")),
        ("Infinity", Decimal("0")),
        ("1e30", Decimal("0")),
        ("-79228162514264337593543950336", Decimal("0")),
        ("79228162514264337593543950335", Decimal("79228162514264337593543950335")),
    ])
    def test_parse_decimal(self, value, expected):
        assert parse_decimal(value) == expected

    def test_out_of_range_total_becomes_zero(self, parser):
        record = parser.parse(wrap(
            '<Invoice><PricingDetails><Value DocumentValue="1e30"/>'
            '<VAT><Value DocumentValue="2.00"/></VAT></PricingDetails></Invoice>'
        ))

        assert record.net_total == Decimal("0")
        assert record.gross_total == Decimal("2.00")

    @pytest.mark.parametrize("value,expected", [
        ("05/01/2024", date(2024, 1, 5)),
        ("5/1/2024", None),
        ("2024-01-05", None),
        ("32/01/2024", None),
        ("", None),
    ])
    def test_parse_source_date(self, value, expected):
        assert parse_source_date(value) == expected

    def test_load_invoice_record_from_file(self, today):
        record = load_invoice_record(DATA_DIR / 'sales_invoice.xml', today=today)

        assert record.invoice_number == "001001"

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_invoice_record(tmp_path / 'missing.xml')

    def test_file_generator_filters_pattern(self, tmp_path):
        (tmp_path / 'a.xml').write_text('<x/>')
        (tmp_path / 'b.txt').write_text('x')
        (tmp_path / 'sub.xml').mkdir()

        assert [p.name for p in invoice_file_generator(tmp_path)] == ['a.xml']


class TestRecordInvariant:

    def test_gross_must_equal_net_plus_vat(self, today):
        with pytest.raises(ValidationError):
            InvoiceRecord(
                invoice_date=today, order_date=today, despatch_date=today,
                net_total=Decimal("100"), vat_total=Decimal("20"),
                gross_total=Decimal("150"),
            )

    def test_rounding_tolerance(self, today):
        record = InvoiceRecord(
            invoice_date=today, order_date=today, despatch_date=today,
            net_total=Decimal("100.004"), vat_total=Decimal("20"),
            gross_total=Decimal("120.00"),
        )

        assert record.gross_total == Decimal("120.00")
