"""
Record normalizer for SalesInvoicePrint XML documents.

The source is parsed once into a dictionary tree (xmltodict) and folded into
a fully-defaulted InvoiceRecord. Only the root element is checked; every
other lookup degrades to an empty string or zero instead of failing.
"""
import fnmatch
import logging
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Generator, List, Optional, Union
from xml.parsers.expat import ExpatError

import xmltodict

from invoice_transformer.core.models import AddressInfo, InvoiceRecord, LineItem, VatGroup
from invoice_transformer.utils.decorators import audit_log, measure_performance


logger = logging.getLogger(__name__)

SOURCE_ROOT_TAG = 'SalesInvoicePrint'
SOURCE_DATE_FORMAT = '%d/%m/%Y'
DEFAULT_PAYMENT_DAYS = 30
CHARGE_ITEM_PREFIX = 'C'
# Largest magnitude the upstream system can carry in a decimal field
MAX_DECIMAL_MAGNITUDE = Decimal('79228162514264337593543950335')

_STRICT_DATE = re.compile(r'^\d{2}/\d{2}/\d{4}$')

CURRENCY_NAMES = {
    'GBP': 'Sterling',
    'EUR': 'Euro',
    'USD': 'US Dollar',
}


class TransformerError(Exception):
    """Base class for per-file processing failures"""
    pass


class FormatError(TransformerError):
    """Raised when the input is not XML or not a SalesInvoicePrint document"""
    pass


def _child(node, name: str):
    """First child element called ``name``, or None"""
    if not isinstance(node, dict):
        return None
    value = node.get(name)
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _children(node, name: str) -> list:
    """All child elements called ``name`` (xmltodict collapses singletons)"""
    if not isinstance(node, dict) or name not in node:
        return []
    # Empty elements such as <Item/> come back as None but still count
    value = node[name]
    if isinstance(value, list):
        return value
    return [value]


def _path(node, *names: str):
    for name in names:
        node = _child(node, name)
        if node is None:
            return None
    return node


def _attr(node, name: str, default: str = "") -> str:
    if not isinstance(node, dict):
        return default
    value = node.get(f'@{name}')
    return default if value is None else value


def parse_decimal(value: Optional[str]) -> Decimal:
    """Culture-invariant decimal parsing; anything unusable or out of range becomes zero"""
    if not value:
        return Decimal('0')
    try:
        result = Decimal(value.strip().replace(',', ''))
    except InvalidOperation:
        return Decimal('0')
    if not result.is_finite() or result.copy_abs() > MAX_DECIMAL_MAGNITUDE:
        return Decimal('0')
    return result


def parse_source_date(value: Optional[str]) -> Optional[date]:
    """Parse a ``dd/mm/yyyy`` date, returning None on any mismatch"""
    if not value:
        return None
    value = value.strip()
    if not _STRICT_DATE.match(value):
        return None
    try:
        return datetime.strptime(value, SOURCE_DATE_FORMAT).date()
    except ValueError:
        return None


def extract_digits(value: str) -> str:
    return ''.join(ch for ch in value if ch.isdigit())


def currency_name(code: str) -> str:
    return CURRENCY_NAMES.get(code, code)


def parse_document(data: Union[bytes, str]) -> dict:
    """
    Parse raw XML and check the root element.

    Raises:
        FormatError: If the XML is malformed or the root is not SalesInvoicePrint
    """
    try:
        document = xmltodict.parse(data)
    except (ExpatError, ValueError) as e:
        raise FormatError(f"Failed to parse XML: {e}") from e

    if not document:
        raise FormatError("Input XML has no root element")

    root_name = next(iter(document))
    local_name = root_name.rsplit(':', 1)[-1]
    if local_name != SOURCE_ROOT_TAG:
        raise FormatError(
            f"Unexpected root element '{local_name}'. Expected '{SOURCE_ROOT_TAG}'."
        )

    root = document[root_name]
    return root if isinstance(root, dict) else {}


class SalesInvoiceParser:
    """
    Builds an InvoiceRecord from a parsed SalesInvoicePrint tree.

    Args:
        today: Processing date used whenever a source date is missing or
               malformed. Defaults to the wall-clock date at parse time.
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today

    def _date_or_today(self, value: Optional[str], field: str) -> date:
        parsed = parse_source_date(value)
        if parsed is not None:
            return parsed
        today = self.today or date.today()
        logger.debug(f"Date field {field} missing or malformed ({value!r}), using {today}")
        return today

    @staticmethod
    def _parse_address(element) -> AddressInfo:
        if not isinstance(element, dict):
            return AddressInfo()
        lines = [_attr(element, f'Line{i}') for i in range(1, 7)]
        return AddressInfo(
            lines=lines,
            postcode=_attr(element, 'Postcode'),
            country_code=_attr(element, 'CountryCode'),
            country=_attr(element, 'Country'),
        )

    @staticmethod
    def _parse_line_item(item) -> LineItem:
        product = _child(item, 'Product')
        quantities = _path(item, 'Quantities', 'OrderQuantity')
        prices = _path(item, 'Prices', 'UnitPrice')
        line_values = _path(item, 'LineValues', 'NetLineValue')
        vat = _child(item, 'VAT')

        return LineItem(
            item_number=_attr(item, 'ItemNumber', '1'),
            product_code=_attr(product, 'Code'),
            description=_attr(product, 'Description1'),
            quantity=parse_decimal(_attr(quantities, 'Quantity')),
            unit_of_measure=_attr(quantities, 'UOM', 'EACH'),
            unit_price=parse_decimal(_attr(prices, 'DocumentPrice')),
            line_total=parse_decimal(_attr(line_values, 'DocumentValue')),
            vat_code=_attr(vat, 'Code', 'ASTD'),
            vat_rate=parse_decimal(_attr(vat, 'Rate')),
            vat_value=parse_decimal(_attr(_child(vat, 'VATValue'), 'DocumentValue')),
        )

    @staticmethod
    def _parse_charge(charge, sequence: int) -> Optional[LineItem]:
        value = parse_decimal(_attr(_child(charge, 'ChargeValue'), 'DocumentValue'))
        if value <= 0:
            return None

        code = _child(charge, 'ChargeCode')
        vat = _child(charge, 'VAT')

        return LineItem(
            item_number=f'{CHARGE_ITEM_PREFIX}{sequence}',
            product_code=_attr(code, 'Code', 'CHARGE'),
            description=_attr(code, 'Description', 'Charge'),
            quantity=Decimal('1'),
            unit_of_measure='EACH',
            unit_price=value,
            line_total=value,
            vat_code=_attr(vat, 'Code', 'ASTD'),
            vat_rate=parse_decimal(_attr(vat, 'Rate')),
            vat_value=parse_decimal(_attr(_child(vat, 'VATValue'), 'DocumentValue')),
            is_charge=True,
        )

    def _company_fields(self, root: dict) -> dict:
        company = _child(root, 'CompanyDetails')
        return {
            'company_name': _attr(company, 'Name'),
            'vat_registration_no': _attr(company, 'VATRegistrationNo'),
            'company_registration_no': _attr(company, 'CoRegistrationNo'),
            'company_address': self._parse_address(_child(company, 'Address')),
        }

    def _invoice_fields(self, root: dict) -> dict:
        invoice = _child(root, 'Invoice')
        dates = _child(invoice, 'Dates')
        invoice_date_str = _attr(_child(dates, 'InvoiceDate'), 'Date')
        due_date_str = _attr(_child(dates, 'PaymentDueDate'), 'Date')

        payment_days = DEFAULT_PAYMENT_DAYS
        start = parse_source_date(invoice_date_str)
        end = parse_source_date(due_date_str)
        if start is not None and end is not None:
            payment_days = (end - start).days

        pricing = _child(invoice, 'PricingDetails')
        currency_code = _attr(_child(pricing, 'DocumentCurrency'), 'DocumentCurrencyCode', 'GBP')
        net_total = parse_decimal(_attr(_child(pricing, 'Value'), 'DocumentValue'))
        vat_total = parse_decimal(_attr(_path(pricing, 'VAT', 'Value'), 'DocumentValue'))

        return {
            'invoice_number': extract_digits(_attr(invoice, 'Number')),
            'customer_order_number': _attr(invoice, 'OurReference'),
            'your_reference': _attr(invoice, 'YourReference'),
            'invoice_date': self._date_or_today(invoice_date_str, 'InvoiceDate'),
            'payment_days': payment_days,
            'early_payment_discount_percent': parse_decimal(
                _attr(_child(pricing, 'PaymentTerms'), 'EarlyPercent')
            ),
            'currency_code': currency_code,
            'currency_name': currency_name(currency_code),
            'net_total': net_total,
            'vat_total': vat_total,
            'gross_total': net_total + vat_total,
        }

    def _customer_fields(self, root: dict) -> dict:
        details = _path(root, 'Invoice', 'CustomerDetails')
        customer = _child(details, 'Customer')
        customer_name = _attr(customer, 'Name')

        deliver_to = _child(details, 'DeliverTo')
        deliver_to_address = self._parse_address(_child(deliver_to, 'Address'))
        deliver_to_address.contact_name = _attr(deliver_to, 'Name')

        invoice_to = _child(details, 'InvoiceTo')
        invoice_to_name = _attr(_child(invoice_to, 'Customer'), 'Name', customer_name)

        return {
            'customer_account': _attr(customer, 'Account'),
            'customer_name': customer_name,
            'invoice_to_name': invoice_to_name,
            'deliver_to_address': deliver_to_address,
            'invoice_to_address': self._parse_address(_child(invoice_to, 'Address')),
        }

    def _despatch_fields(self, root: dict) -> dict:
        despatches = _children(_child(root, 'Despatches'), 'Despatch')

        despatch_number = ""
        despatch_date_str = None
        sales_order_number = ""
        order_date_str = None
        items: List[LineItem] = []
        charges: List[LineItem] = []

        for index, despatch in enumerate(despatches):
            if index == 0:
                details = _child(despatch, 'DespatchDetails')
                despatch_number = _attr(details, 'DespatchNumber')
                despatch_date_str = _attr(_path(details, 'Dates', 'DespatchDate'), 'Date')

            for sales_order in _children(_child(despatch, 'SalesOrders'), 'SalesOrder'):
                order_details = _child(sales_order, 'SalesOrderDetails')
                if order_details is not None and not sales_order_number:
                    sales_order_number = _attr(order_details, 'SalesOrderNumber')
                    order_date_str = _attr(_path(order_details, 'Dates', 'Document'), 'Date')

                for item in _children(_child(sales_order, 'Items'), 'Item'):
                    items.append(self._parse_line_item(item))

            for charge in _children(_child(despatch, 'Charges'), 'Charge'):
                line = self._parse_charge(charge, len(charges) + 1)
                if line is not None:
                    charges.append(line)

        return {
            'despatch_number': despatch_number,
            'despatch_date': self._date_or_today(despatch_date_str, 'DespatchDate'),
            'sales_order_number': sales_order_number,
            'order_date': self._date_or_today(order_date_str, 'OrderDate'),
            'line_items': items + charges,
        }

    @staticmethod
    def _vat_groups(root: dict) -> List[VatGroup]:
        groups = []
        for vat in _children(_child(root, 'VATDetails'), 'VAT'):
            groups.append(VatGroup(
                code=_attr(vat, 'Code'),
                description=_attr(vat, 'Description'),
                rate=parse_decimal(_attr(vat, 'Rate')),
                principal_value=parse_decimal(_attr(_child(vat, 'VATPrinciple'), 'DocumentValue')),
                vat_value=parse_decimal(_attr(_child(vat, 'VATValue'), 'DocumentValue')),
            ))
        return groups

    def normalize(self, root: dict) -> InvoiceRecord:
        """
        Fold a parsed SalesInvoicePrint tree into an InvoiceRecord.

        Args:
            root: Contents of the root element as returned by parse_document

        Returns:
            InvoiceRecord with every field defaulted
        """
        fields = {}
        fields.update(self._company_fields(root))
        fields.update(self._invoice_fields(root))
        fields.update(self._customer_fields(root))
        fields.update(self._despatch_fields(root))
        fields['vat_groups'] = self._vat_groups(root)
        return InvoiceRecord(**fields)

    @measure_performance
    @audit_log
    def parse(self, data: Union[bytes, str]) -> InvoiceRecord:
        """
        Parse raw SalesInvoicePrint XML.

        Raises:
            FormatError: If the document is not well-formed or has the wrong root
        """
        return self.normalize(parse_document(data))


def load_invoice_record(file_path: Union[str, Path],
                        today: Optional[date] = None) -> InvoiceRecord:
    """
    Convenience function to read and normalize a single source file.
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"Invoice file not found: {file_path}")
    return SalesInvoiceParser(today).parse(path.read_bytes())


def invoice_file_generator(directory: Union[str, Path],
                           pattern: str = "*.xml") -> Generator[Path, None, None]:
    """
    Yield candidate source files in discovery order (oldest first).

    Args:
        directory: Directory to scan
        pattern: Glob pattern matched case-insensitively against file names

    Yields:
        Paths of regular files matching the pattern
    """
    dir_path = Path(directory)

    if not dir_path.exists():
        raise FileNotFoundError(f"Directory not found: {directory}")

    candidates = []
    for file_path in dir_path.iterdir():
        if not fnmatch.fnmatch(file_path.name.lower(), pattern.lower()):
            continue
        try:
            if file_path.is_file():
                candidates.append((file_path.stat().st_mtime, file_path.name, file_path))
        except OSError:
            # Vanished between glob and stat
            continue

    for _, _, file_path in sorted(candidates):
        yield file_path
