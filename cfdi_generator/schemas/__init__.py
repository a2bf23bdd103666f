"""
Document model for CFDI 4.0 electronic invoices
"""

from .base import CfdiNode, Emisor, Receptor, InformacionGlobal, CfdiRelacionado, CfdiRelacionados
from .document_items import (
    OpaqueExtension, TaxEntry, Traslado, Retencion, ConceptoImpuestos,
    ACuentaTerceros, InformacionAduanera, CuentaPredial, ComplementoConcepto, Concepto
)
from .documents import TimbreFiscalDigital, Complemento, Impuestos, Comprobante, SealResult
from .validation import Violation, RuleViolation, InvariantMismatch, ValidationReport

__all__ = [
    "CfdiNode",
    "Emisor",
    "Receptor",
    "InformacionGlobal",
    "CfdiRelacionado",
    "CfdiRelacionados",
    "OpaqueExtension",
    "TaxEntry",
    "Traslado",
    "Retencion",
    "ConceptoImpuestos",
    "ACuentaTerceros",
    "InformacionAduanera",
    "CuentaPredial",
    "ComplementoConcepto",
    "Concepto",
    "TimbreFiscalDigital",
    "Complemento",
    "Impuestos",
    "Comprobante",
    "SealResult",
    "Violation",
    "RuleViolation",
    "InvariantMismatch",
    "ValidationReport",
]
