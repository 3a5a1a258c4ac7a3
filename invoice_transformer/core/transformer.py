"""
Transformation engine: InvoiceRecord -> BASDA commercial invoice document.

The mapping is a pure function of the record. Section order, namespaces and
per-field decimal places are fixed because downstream consumers compare the
output byte for byte.
"""
import os
import zlib
from decimal import ROUND_HALF_UP, Decimal, localcontext
from pathlib import Path
from typing import List, Union

from lxml import etree

from invoice_transformer.core.models import AddressInfo, InvoiceRecord, LineItem, VatGroup
from invoice_transformer.utils.decorators import measure_performance


BASDA_NS = 'urn:schemas-basda-org:2000:salesInvoice:xdr:3.01'
OP_NS = 'urn:schemas-bossfed-co-uk:OP-Invoice-v1'
NSMAP = {None: BASDA_NS, 'op': OP_NS}

SCHEMA_VERSION = '3.05'
LANGUAGE = 'en-GB'
DECIMAL_SEPARATOR = '.'
PRECISION = '20.4'
INVOICE_TYPE_CODE = 'INV'
INVOICE_TYPE_NAME = 'Commercial Invoice'
SALES_ORDER_REFERENCE_TYPE = 'KWOS'
STANDARD_TAX_CODE = 'S'
CHECKSUM_MODULUS = 100000


def format_decimal(value: Decimal, places: int) -> str:
    """Fixed-point text with half-away-from-zero rounding"""
    value = Decimal(value)
    with localcontext() as ctx:
        # Room for every integer digit plus the fixed places
        ctx.prec = max(ctx.prec, max(value.adjusted(), 0) + places + 2)
        exponent = Decimal(1).scaleb(-places)
        rounded = value.quantize(exponent, rounding=ROUND_HALF_UP)
    if rounded.is_zero():
        rounded = rounded.copy_abs()
    return f'{rounded:f}'


def compute_checksum(invoice_number: str, gross_total: Decimal) -> int:
    """
    Checksum carried in the invoice head.

    CRC-32 of the invoice number followed by the 2dp gross total, reduced
    modulo 100000. Stable across runs and platforms.
    """
    data = f'{invoice_number}{format_decimal(gross_total, 2)}'.encode('utf-8')
    return zlib.crc32(data) % CHECKSUM_MODULUS


def _q(tag: str) -> str:
    return f'{{{BASDA_NS}}}{tag}'


def _op(tag: str) -> str:
    return f'{{{OP_NS}}}{tag}'


def _el(parent, tag: str, text=None, **attrib):
    element = etree.SubElement(parent, tag, attrib)
    if text is not None:
        element.text = str(text)
    return element


class TargetDocument:
    """
    Serializable BASDA invoice tree.

    Has no identity beyond the output file it is written to.
    """

    def __init__(self, root):
        self.root = root

    def to_bytes(self) -> bytes:
        return etree.tostring(
            self.root,
            xml_declaration=True,
            encoding='utf-8',
            pretty_print=True,
        )

    def write(self, path: Union[str, Path]) -> None:
        """Write the document and flush it to disk"""
        with open(path, 'wb') as f:
            f.write(self.to_bytes())
            f.flush()
            os.fsync(f.fileno())

    @property
    def line_count(self) -> int:
        return len(self.root.findall(_q('InvoiceLine')))

    def section_names(self) -> List[str]:
        return [etree.QName(child).localname for child in self.root]


class InvoiceTransformer:
    """
    Maps an InvoiceRecord onto the BASDA schema.
    Stateless; one instance can be reused for every file.
    """

    @measure_performance
    def transform(self, record: InvoiceRecord) -> TargetDocument:
        """
        Build the target document for a record.

        Args:
            record: Normalized invoice

        Returns:
            TargetDocument ready to be serialized
        """
        root = etree.Element(_q('Invoice'), nsmap=NSMAP)

        self._invoice_head(root, record)
        self._invoice_references(root, record)
        self._additional_references(root, record)
        self._additional_dates(root, record)
        _el(root, _q('InvoiceDate'), record.invoice_date.isoformat())
        self._supplier(root, record)
        self._buyer(root, record)
        self._invoice_to(root, record)
        for line_number, item in enumerate(record.line_items, start=1):
            self._invoice_line(root, item, line_number)
        self._settlement(root, record)
        for group in record.vat_groups:
            self._tax_subtotal(root, group, record)
        self._invoice_total(root, record)

        return TargetDocument(root)

    # Head and references

    @staticmethod
    def _currency(parent, record: InvoiceRecord):
        _el(parent, _q('Currency'), record.currency_name, Code=record.currency_code)

    def _invoice_head(self, root, record: InvoiceRecord):
        head = _el(root, _q('InvoiceHead'))
        schema = _el(head, _q('Schema'))
        _el(schema, _q('Version'), SCHEMA_VERSION)
        params = _el(head, _q('Parameters'))
        _el(params, _q('Language'), LANGUAGE)
        _el(params, _q('DecimalSeparator'), DECIMAL_SEPARATOR)
        _el(params, _q('Precision'), PRECISION)
        _el(head, _q('InvoiceType'), INVOICE_TYPE_NAME, Code=INVOICE_TYPE_CODE)
        self._currency(_el(head, _q('InvoiceCurrency')), record)
        _el(head, _q('Checksum'), compute_checksum(record.invoice_number, record.gross_total))

    @staticmethod
    def _invoice_references(root, record: InvoiceRecord):
        refs = _el(root, _q('InvoiceReferences'))
        _el(refs, _q('BuyersOrderNumber'), record.customer_order_number)
        _el(refs, _q('SuppliersInvoiceNumber'), record.invoice_number)
        _el(refs, _q('DeliveryNoteNumber'), record.despatch_number)

    @staticmethod
    def _additional_references(root, record: InvoiceRecord):
        refs = _el(root, _op('AdditionalInvoiceReferences'))
        ref = _el(refs, _op('InvoiceReference'), ReferenceType=SALES_ORDER_REFERENCE_TYPE)
        _el(ref, _op('Reference'), record.sales_order_number)

    @staticmethod
    def _additional_dates(root, record: InvoiceRecord):
        dates = _el(root, _op('AdditionalInvoiceDates'))
        _el(dates, _op('InvoiceDateTime'), record.order_date.isoformat(),
            DateTimeType='ORD', DateTimeDesc='Order Date')
        _el(dates, _op('InvoiceDateTime'), record.despatch_date.isoformat(),
            DateTimeType='DEL', DateTimeDesc='Delivery date')

    # Parties

    @staticmethod
    def _address(parent, address: AddressInfo):
        element = _el(parent, _q('Address'))
        for line in address.lines:
            _el(element, _q('AddressLine'), line)
        if address.postcode.strip():
            _el(element, _q('PostCode'), address.postcode)
        return element

    def _supplier(self, root, record: InvoiceRecord):
        supplier = _el(root, _q('Supplier'))
        refs = _el(supplier, _q('SupplierReferences'))
        _el(refs, _q('TaxNumber'), record.vat_registration_no)
        _el(refs, _q('GLN'), record.company_registration_no)
        _el(supplier, _q('Party'), record.company_name)
        self._address(supplier, record.company_address)

    def _buyer(self, root, record: InvoiceRecord):
        buyer = _el(root, _q('Buyer'))
        refs = _el(buyer, _q('BuyerReferences'))
        _el(refs, _q('SuppliersCodeForBuyer'), record.customer_account)
        _el(buyer, _q('Party'), record.customer_name)
        self._address(buyer, record.invoice_to_address)

    @staticmethod
    def _invoice_to(root, record: InvoiceRecord):
        invoice_to = _el(root, _q('InvoiceTo'))
        _el(invoice_to, _q('Party'), record.invoice_to_name)

    # Lines

    @staticmethod
    def _invoice_line(root, item: LineItem, line_number: int):
        line = _el(root, _q('InvoiceLine'))
        _el(line, _q('LineNumber'), line_number)

        refs = _el(line, _q('InvoiceLineReferences'))
        _el(refs, _q('OrderLineNumber'), item.item_number)
        _el(refs, _q('BuyersOrderLineReference'), f'{item.item_number} {item.product_code}')

        extra = _el(line, _op('AdditionalInvoiceLineReferences'))
        flag = _el(extra, _op('InvoiceLineReference'),
                   ReferenceType='SETFLG', ReferenceDesc='Settlement Discount Flag')
        _el(flag, _op('Reference'), 'Y')

        product = _el(line, _q('Product'))
        _el(product, _q('SuppliersProductCode'), item.product_code)
        _el(product, _q('Description'), item.description)

        quantity = _el(line, _q('Quantity'))
        _el(quantity, _q('Packsize'), '1')
        _el(quantity, _q('Amount'), format_decimal(item.quantity, 0))

        price = _el(line, _q('Price'))
        _el(price, _q('UnitPrice'), format_decimal(item.unit_price, 3))

        tax = _el(line, _q('LineTax'))
        _el(tax, _q('TaxRate'), format_decimal(item.vat_rate, 2), Code=STANDARD_TAX_CODE)

        _el(line, _q('LineTotal'), format_decimal(item.line_total, 3))

    # Settlement and totals

    @staticmethod
    def _settlement(root, record: InvoiceRecord):
        settlement = _el(root, _q('Settlement'))
        terms = _el(settlement, _q('SettlementTerms'))
        _el(terms, _q('DaysFromInvoice'), record.payment_days)
        discount = _el(settlement, _q('SettlementDiscount'))
        percent = _el(discount, _q('PercentDiscount'))
        _el(percent, _q('Percentage'), format_decimal(record.early_payment_discount_percent, 2))
        amount = _el(discount, _q('AmountDiscount'))
        _el(amount, _q('Amount'), '0.00')

    def _tax_subtotal(self, root, group: VatGroup, record: InvoiceRecord):
        subtotal = _el(root, _q('TaxSubTotal'))
        _el(subtotal, _q('TaxRate'), format_decimal(group.rate, 2), Code=STANDARD_TAX_CODE)
        _el(subtotal, _q('NumberOfLinesAtRate'), len(record.line_items))
        _el(subtotal, _q('TotalValueAtRate'), format_decimal(group.principal_value, 3))
        _el(subtotal, _q('TaxableValueAtRate'), format_decimal(group.principal_value, 1))
        _el(subtotal, _q('TaxAtRate'), format_decimal(group.vat_value, 2))
        _el(subtotal, _q('NetPaymentAtRate'), format_decimal(group.principal_value, 3))
        _el(subtotal, _q('GrossPaymentAtRate'), format_decimal(group.gross_value, 3))
        self._currency(_el(subtotal, _q('TaxCurrency')), record)

    @staticmethod
    def _invoice_total(root, record: InvoiceRecord):
        total = _el(root, _q('InvoiceTotal'))
        _el(total, _q('NumberOfLines'), len(record.line_items))
        _el(total, _q('NumberOfTaxRates'), len(record.vat_groups))
        _el(total, _q('LineValueTotal'), format_decimal(record.net_total, 3))
        _el(total, _q('TaxableTotal'), format_decimal(record.net_total, 2))
        _el(total, _q('TaxTotal'), format_decimal(record.vat_total, 2))
        _el(total, _q('NetPaymentTotal'), format_decimal(record.gross_total, 2))
        _el(total, _q('GrossPaymentTotal'), format_decimal(record.gross_total, 2))


def transform_record(record: InvoiceRecord) -> TargetDocument:
    """Convenience wrapper around InvoiceTransformer.transform"""
    return InvoiceTransformer().transform(record)
