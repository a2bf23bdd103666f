"""
Root document (Comprobante) models for CFDI 4.0.
Includes the tax summary, the complement container with the digital
stamp and the shape returned by the signing collaborator.
"""
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .base import CfdiNode, CfdiRelacionados, Emisor, InformacionGlobal, Receptor, exact_decimal
from .document_items import Concepto, OpaqueExtension, Retencion, Traslado

CFDI_NAMESPACE = "http://www.sat.gob.mx/cfd/4"
TFD_NAMESPACE = "http://www.sat.gob.mx/TimbreFiscalDigital"
XSI_NAMESPACE = "http://www.w3.org/2001/XMLSchema-instance"
XS_NAMESPACE = "http://www.w3.org/2001/XMLSchema"
FOREIGN_TRADE_NAMESPACE = "http://www.sat.gob.mx/ComercioExterior20"


class TimbreFiscalDigital(CfdiNode):
    """
    Digital stamp appended by the certifying provider (PAC).

    Never produced locally; it arrives from the stamping exchange after the
    document has been sealed.
    """
    ELEMENT: ClassVar[str] = "TimbreFiscalDigital"

    version: Optional[str] = Field(None, alias="Version")
    uuid: Optional[str] = Field(None, alias="UUID", description="Folio fiscal")
    fecha_timbrado: Optional[datetime] = Field(None, alias="FechaTimbrado")
    rfc_prov_certif: Optional[str] = Field(None, alias="RfcProvCertif")
    leyenda: Optional[str] = Field(None, alias="Leyenda")
    sello_cfd: Optional[str] = Field(None, alias="SelloCFD", description="Copy of the document seal")
    no_certificado_sat: Optional[str] = Field(None, alias="NoCertificadoSAT")
    sello_sat: Optional[str] = Field(None, alias="SelloSAT")


Extension = Union[TimbreFiscalDigital, OpaqueExtension]


class Complemento(CfdiNode):
    """Container for document-level extensions."""
    ELEMENT: ClassVar[str] = "Complemento"

    extensiones: Tuple[Extension, ...] = Field((), alias="Extensiones")

    @property
    def timbre_fiscal_digital(self) -> Optional[TimbreFiscalDigital]:
        for extension in self.extensiones:
            if isinstance(extension, TimbreFiscalDigital):
                return extension
        return None


class Impuestos(CfdiNode):
    """Document tax summary. Withholdings precede transfers."""
    ELEMENT: ClassVar[str] = "Impuestos"

    total_impuestos_retenidos: Optional[Decimal] = Field(None, alias="TotalImpuestosRetenidos")
    total_impuestos_trasladados: Optional[Decimal] = Field(None, alias="TotalImpuestosTrasladados")

    retenciones: Tuple[Retencion, ...] = Field((), alias="Retenciones")
    traslados: Tuple[Traslado, ...] = Field((), alias="Traslados")

    @field_validator('total_impuestos_retenidos', 'total_impuestos_trasladados', mode='before')
    @classmethod
    def validate_amounts(cls, v):
        return exact_decimal(v)


class Comprobante(CfdiNode):
    """
    Root fiscal receipt.

    Attribute and child declaration order follows cfdv40.xsd; the XML codec
    relies on it. NAMESPACES is the fixed set of declarations written on every
    encoded root whether or not a stamp is present.
    """
    ELEMENT: ClassVar[str] = "Comprobante"
    PREFIX: ClassVar[str] = "cfdi"
    NAMESPACES: ClassVar[Tuple[Tuple[str, str], ...]] = (
        ("cfdi", CFDI_NAMESPACE),
        ("tfd", TFD_NAMESPACE),
        ("xsi", XSI_NAMESPACE),
        ("xs", XS_NAMESPACE),
    )
    SCHEMA_LOCATION: ClassVar[str] = (
        "http://www.sat.gob.mx/cfd/4 "
        "http://www.sat.gob.mx/sitio_internet/cfd/4/cfdv40.xsd "
        "http://www.sat.gob.mx/TimbreFiscalDigital "
        "http://www.sat.gob.mx/sitio_internet/cfd/TimbreFiscalDigital/TimbreFiscalDigitalv11.xsd"
    )

    version: Optional[str] = Field("4.0", alias="Version")
    serie: Optional[str] = Field(None, alias="Serie")
    folio: Optional[str] = Field(None, alias="Folio")
    fecha: Optional[datetime] = Field(None, alias="Fecha", description="Issuance timestamp, local time")
    sello: Optional[str] = Field(None, alias="Sello")
    forma_pago: Optional[str] = Field(None, alias="FormaPago", description="c_FormaPago code")
    no_certificado: Optional[str] = Field(None, alias="NoCertificado")
    certificado: Optional[str] = Field(None, alias="Certificado", description="Base64 certificate")
    condiciones_de_pago: Optional[str] = Field(None, alias="CondicionesDePago")
    sub_total: Optional[Decimal] = Field(None, alias="SubTotal")
    descuento: Optional[Decimal] = Field(None, alias="Descuento")
    moneda: Optional[str] = Field(None, alias="Moneda", description="c_Moneda code")
    tipo_cambio: Optional[Decimal] = Field(None, alias="TipoCambio")
    total: Optional[Decimal] = Field(None, alias="Total")
    tipo_de_comprobante: Optional[str] = Field(None, alias="TipoDeComprobante")
    exportacion: Optional[str] = Field(None, alias="Exportacion")
    metodo_pago: Optional[str] = Field(None, alias="MetodoPago")
    lugar_expedicion: Optional[str] = Field(None, alias="LugarExpedicion", description="Postal code")
    confirmacion: Optional[str] = Field(None, alias="Confirmacion")

    informacion_global: Optional[InformacionGlobal] = Field(None, alias="InformacionGlobal")
    cfdi_relacionados: Tuple[CfdiRelacionados, ...] = Field((), alias="CfdiRelacionados")
    emisor: Optional[Emisor] = Field(None, alias="Emisor")
    receptor: Optional[Receptor] = Field(None, alias="Receptor")
    conceptos: Tuple[Concepto, ...] = Field((), alias="Conceptos")
    impuestos: Optional[Impuestos] = Field(None, alias="Impuestos")
    complemento: Optional[Complemento] = Field(None, alias="Complemento")

    @field_validator('sub_total', 'descuento', 'tipo_cambio', 'total', mode='before')
    @classmethod
    def validate_amounts(cls, v):
        return exact_decimal(v)

    @property
    def timbre_fiscal_digital(self) -> Optional[TimbreFiscalDigital]:
        if self.complemento is None:
            return None
        return self.complemento.timbre_fiscal_digital

    @property
    def is_stamped(self) -> bool:
        return self.timbre_fiscal_digital is not None


class SealResult(BaseModel):
    """Values returned by the signing collaborator for a pre-seal document."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sello: str = Field(..., alias="Sello", min_length=1)
    certificado: str = Field(..., alias="Certificado", min_length=1)
    no_certificado: Optional[str] = Field(None, alias="NoCertificado")
