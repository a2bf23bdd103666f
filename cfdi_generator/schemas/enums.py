"""
Core enums for the CFDI 4.0 document model.
Based on the SAT Anexo 20 catalogs. Node fields keep plain code strings;
these enums name the codes the rules and validators branch on.
"""
from enum import Enum


class DocumentState(str, Enum):
    """Lifecycle of a document inside the builder."""
    DRAFT = "draft"
    VALIDATED = "validated"
    SEALED = "sealed"


class ComprobanteType(str, Enum):
    """c_TipoDeComprobante"""
    INGRESO = "I"
    EGRESO = "E"
    TRASLADO = "T"
    NOMINA = "N"
    PAGO = "P"


class ExportCode(str, Enum):
    """c_Exportacion"""
    NO_APLICA = "01"
    DEFINITIVA_A1 = "02"
    TEMPORAL = "03"
    DEFINITIVA_NO_A1 = "04"


class PaymentMethod(str, Enum):
    """c_MetodoPago"""
    PUE = "PUE"
    PPD = "PPD"


class CurrencyCode(str, Enum):
    """c_Moneda values with special treatment."""
    MXN = "MXN"
    XXX = "XXX"


class TaxCode(str, Enum):
    """c_Impuesto"""
    ISR = "001"
    IVA = "002"
    IEPS = "003"


class FactorType(str, Enum):
    """c_TipoFactor"""
    TASA = "Tasa"
    CUOTA = "Cuota"
    EXENTO = "Exento"


class TaxKind(str, Enum):
    """Direction of a tax entry."""
    TRASLADO = "traslado"
    RETENCION = "retencion"


class TaxObject(str, Enum):
    """c_ObjetoImp"""
    NO_OBJETO = "01"
    SI_OBJETO = "02"
    SI_OBJETO_NO_DESGLOSE = "03"
    SI_OBJETO_NO_CAUSA = "04"
    SI_OBJETO_IVA_CREDITO_PODEBI = "05"


class ConstraintKind(str, Enum):
    """Kinds of violation reported by the validators."""
    REQUIRED = "Required"
    FORBIDDEN = "Forbidden"
    PATTERN = "Pattern"
    RANGE = "Range"
    LENGTH = "Length"
    INVARIANT_MISMATCH = "InvariantMismatch"
