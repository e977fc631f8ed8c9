# Overview: Electronic invoice (DTE) issuer seam; invoked after a sale commits via the sale_completed signal.

"""
Electronic document issuing.

The provider wire format is outside this service. An issuer is any object
with issue(sale: dict). create_app() installs LoggingInvoiceIssuer unless a
real one is registered with register_invoice_issuer().

Failures of the issuer are logged by signals.emit and never affect the sale,
which is already committed when the signal is sent.
"""

from __future__ import annotations

from flask import Flask, current_app

from .. import signals

EXTENSION_KEY = "valepos.invoice_issuer"

# ticket is an internal slip; receipts (boletas) and invoices (facturas) are
# electronic tax documents
ELECTRONIC_DOCUMENT_TYPES = frozenset({"receipt", "invoice"})


class InvoiceIssuer:
    """Interface for electronic document providers."""

    def issue(self, sale: dict) -> None:
        raise NotImplementedError


class LoggingInvoiceIssuer(InvoiceIssuer):
    """Default issuer: records what would have been sent."""

    def issue(self, sale: dict) -> None:
        current_app.logger.info(
            "Electronic document pending for sale=%s type=%s total=%s tax=%s",
            sale.get("sale_number"), sale.get("document_type"), sale.get("total"), sale.get("tax"),
        )


def _on_sale_completed(sender, sale=None, **extra):
    if not sale or sale.get("document_type") not in ELECTRONIC_DOCUMENT_TYPES:
        return
    issuer = sender.extensions.get(EXTENSION_KEY) if isinstance(sender, Flask) else None
    if issuer is not None:
        issuer.issue(sale)


def register_invoice_issuer(app: Flask, issuer: InvoiceIssuer) -> None:
    """Install issuer for app; the signal receiver is connected once per app."""
    app.extensions[EXTENSION_KEY] = issuer
    signals.sale_completed.connect(_on_sale_completed, sender=app, weak=False)
