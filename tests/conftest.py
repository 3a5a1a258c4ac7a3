"""
Shared fixtures for the invoice transformer tests.
"""
import os
from datetime import date, datetime
from pathlib import Path

import pytest

from invoice_transformer.processing.lifecycle import InvoiceProcessor
from invoice_transformer.processing.notifications import NotificationDispatcher
from invoice_transformer.processing.stats import ProcessingStats


DATA_DIR = Path(__file__).parent / 'data'

FIXED_NOW = datetime(2024, 6, 1, 9, 30, 15)
FIXED_TIMESTAMP = '20240601_093015'

MINIMAL_INVOICE = """<?xml version="1.0" encoding="utf-8"?>
<SalesInvoicePrint>
  <CompanyDetails Name="Acme Supplies Ltd" VATRegistrationNo="GB123456789"/>
  <Invoice Number="INV-42" OurReference="PO-1">
    <Dates><InvoiceDate Date="01/05/2024"/></Dates>
    <PricingDetails>
      <Value DocumentValue="10.00"/>
      <VAT><Value DocumentValue="2.00"/></VAT>
    </PricingDetails>
  </Invoice>
  <Despatches>
    <Despatch>
      <SalesOrders>
        <SalesOrder>
          <Items>
            <Item ItemNumber="1">
              <Product Code="P1" Description1="Thing"/>
              <Quantities><OrderQuantity Quantity="1"/></Quantities>
              <Prices><UnitPrice DocumentPrice="10.00"/></Prices>
              <LineValues><NetLineValue DocumentValue="10.00"/></LineValues>
              <VAT Code="ASTD" Rate="20.00"><VATValue DocumentValue="2.00"/></VAT>
            </Item>
          </Items>
        </SalesOrder>
      </SalesOrders>
    </Despatch>
  </Despatches>
  <VATDetails>
    <VAT Code="ASTD" Description="Standard" Rate="20.00">
      <VATPrinciple DocumentValue="10.00"/>
      <VATValue DocumentValue="2.00"/>
    </VAT>
  </VATDetails>
</SalesInvoicePrint>
"""

WRONG_ROOT_INVOICE = """<?xml version="1.0" encoding="utf-8"?>
<PurchaseOrderPrint>
  <Invoice Number="1"/>
</PurchaseOrderPrint>
"""


@pytest.fixture
def sample_xml() -> bytes:
    """Full SalesInvoicePrint document with items, charges and two VAT groups"""
    return (DATA_DIR / 'sales_invoice.xml').read_bytes()


@pytest.fixture
def minimal_xml() -> str:
    """One order line and one VAT group"""
    return MINIMAL_INVOICE


@pytest.fixture
def today() -> date:
    return FIXED_NOW.date()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def folders(tmp_path):
    """Input/output/archive/error folder layout under tmp_path"""
    layout = {
        name: tmp_path / name
        for name in ('input', 'output', 'archive', 'errors')
    }
    for path in layout.values():
        path.mkdir()
    return layout


class RecordingNotifier:
    """Collects every event it is given"""

    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


class FailingNotifier:
    """Raises on every event"""

    def __init__(self):
        self.calls = 0

    def notify(self, event):
        self.calls += 1
        raise RuntimeError("SMTP server unavailable")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    # Not started: tests call flush() to deliver on the test thread
    return NotificationDispatcher(notifier)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_processor(folders, fixed_clock, dispatcher, sleeps):
    """Factory for processors wired to the tmp folders and a fixed clock"""
    def factory(**overrides):
        options = dict(
            output_dir=folders['output'],
            archive_dir=folders['archive'],
            error_dir=folders['errors'],
            archive_processed_files=True,
            stats=ProcessingStats(fixed_clock),
            dispatcher=dispatcher,
            lock_retry_attempts=3,
            lock_retry_delay=0.01,
            clock=fixed_clock,
            sleep=sleeps.append,
        )
        options.update(overrides)
        return InvoiceProcessor(**options)
    return factory


@pytest.fixture
def processor(make_processor):
    return make_processor()


def drop_file(folder: Path, name: str, content) -> Path:
    """Write a source file into a folder"""
    path = folder / name
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding='utf-8')
    return path


posix_only = pytest.mark.skipif(os.name == 'nt', reason="uses fcntl.flock to hold the file")


class HeldLock:
    """Holds an exclusive flock on a file from a separate open file description"""

    def __init__(self, path):
        import fcntl
        self._fcntl = fcntl
        self._file = open(path, 'rb')
        fcntl.flock(self._file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

    def release(self):
        if not self._file.closed:
            self._fcntl.flock(self._file.fileno(), self._fcntl.LOCK_UN)
            self._file.close()
