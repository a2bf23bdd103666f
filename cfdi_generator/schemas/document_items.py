"""
Line item (Concepto) and tax entry models for CFDI 4.0 documents.
Covers per-item taxes, third-party accounts, customs and property data and
opaque per-item complements.
"""
import xml.etree.ElementTree as ET
from decimal import Decimal
from typing import ClassVar, Optional, Tuple
from pydantic import Field, field_validator

from .base import CfdiNode, exact_decimal
from .enums import TaxKind


class OpaqueExtension(CfdiNode):
    """
    Extension element this package does not model, kept as XML bytes.

    The payload is normalized to its canonical ElementTree serialization on
    construction so two extensions with the same content compare equal no
    matter how the source document spelled prefixes or quotes.
    """
    raw: bytes = Field(..., description="Serialized extension element")

    @field_validator('raw', mode='before')
    @classmethod
    def normalize_raw(cls, v):
        if isinstance(v, str):
            v = v.encode('utf-8')
        if not isinstance(v, bytes):
            raise ValueError('Extension content must be XML bytes')
        try:
            element = ET.fromstring(v)
        except ET.ParseError as e:
            raise ValueError(f'Extension content is not well-formed XML: {e}') from e
        element.tail = None
        return ET.tostring(element)

    def element(self) -> ET.Element:
        return ET.fromstring(self.raw)

    @property
    def namespace(self) -> Optional[str]:
        tag = self.element().tag
        return tag[1:].split('}', 1)[0] if tag.startswith('{') else None


class TaxEntry(CfdiNode):
    """Transfer or withholding tax, either per line item or in the summary."""
    KIND: ClassVar[TaxKind]

    base: Optional[Decimal] = Field(None, alias="Base", description="Taxable base")
    impuesto: Optional[str] = Field(None, alias="Impuesto", description="c_Impuesto code")
    tipo_factor: Optional[str] = Field(None, alias="TipoFactor", description="Tasa, Cuota or Exento")
    tasa_o_cuota: Optional[Decimal] = Field(None, alias="TasaOCuota", description="Rate or fixed fee")
    importe: Optional[Decimal] = Field(None, alias="Importe", description="Tax amount")

    @field_validator('base', 'tasa_o_cuota', 'importe', mode='before')
    @classmethod
    def validate_amounts(cls, v):
        return exact_decimal(v)

    @property
    def kind(self) -> TaxKind:
        return self.KIND


class Traslado(TaxEntry):
    ELEMENT: ClassVar[str] = "Traslado"
    KIND: ClassVar[TaxKind] = TaxKind.TRASLADO


class Retencion(TaxEntry):
    ELEMENT: ClassVar[str] = "Retencion"
    KIND: ClassVar[TaxKind] = TaxKind.RETENCION


class ConceptoImpuestos(CfdiNode):
    """Taxes of a single line item. Transfers precede withholdings."""
    ELEMENT: ClassVar[str] = "Impuestos"

    traslados: Tuple[Traslado, ...] = Field((), alias="Traslados")
    retenciones: Tuple[Retencion, ...] = Field((), alias="Retenciones")


class ACuentaTerceros(CfdiNode):
    """Item billed on behalf of a third party."""
    ELEMENT: ClassVar[str] = "ACuentaTerceros"

    rfc_a_cuenta_terceros: Optional[str] = Field(None, alias="RfcACuentaTerceros")
    nombre_a_cuenta_terceros: Optional[str] = Field(None, alias="NombreACuentaTerceros")
    regimen_fiscal_a_cuenta_terceros: Optional[str] = Field(None, alias="RegimenFiscalACuentaTerceros")
    domicilio_fiscal_a_cuenta_terceros: Optional[str] = Field(None, alias="DomicilioFiscalACuentaTerceros")


class InformacionAduanera(CfdiNode):
    ELEMENT: ClassVar[str] = "InformacionAduanera"

    numero_pedimento: Optional[str] = Field(None, alias="NumeroPedimento", description="Customs entry number")


class CuentaPredial(CfdiNode):
    ELEMENT: ClassVar[str] = "CuentaPredial"

    numero: Optional[str] = Field(None, alias="Numero", description="Property tax account")


class ComplementoConcepto(CfdiNode):
    ELEMENT: ClassVar[str] = "ComplementoConcepto"

    extensiones: Tuple[OpaqueExtension, ...] = Field((), alias="Extensiones")


class Concepto(CfdiNode):
    """One billed product or service line."""
    ELEMENT: ClassVar[str] = "Concepto"

    clave_prod_serv: Optional[str] = Field(None, alias="ClaveProdServ", description="c_ClaveProdServ code")
    no_identificacion: Optional[str] = Field(None, alias="NoIdentificacion")
    cantidad: Optional[Decimal] = Field(None, alias="Cantidad")
    clave_unidad: Optional[str] = Field(None, alias="ClaveUnidad", description="c_ClaveUnidad code")
    unidad: Optional[str] = Field(None, alias="Unidad", description="Free-text unit label")
    descripcion: Optional[str] = Field(None, alias="Descripcion")
    valor_unitario: Optional[Decimal] = Field(None, alias="ValorUnitario")
    importe: Optional[Decimal] = Field(None, alias="Importe")
    descuento: Optional[Decimal] = Field(None, alias="Descuento")
    objeto_imp: Optional[str] = Field(None, alias="ObjetoImp", description="c_ObjetoImp code")

    impuestos: Optional[ConceptoImpuestos] = Field(None, alias="Impuestos")
    a_cuenta_terceros: Optional[ACuentaTerceros] = Field(None, alias="ACuentaTerceros")
    informacion_aduanera: Tuple[InformacionAduanera, ...] = Field((), alias="InformacionAduanera")
    cuenta_predial: Tuple[CuentaPredial, ...] = Field((), alias="CuentaPredial")
    complemento_concepto: Optional[ComplementoConcepto] = Field(None, alias="ComplementoConcepto")

    @field_validator('cantidad', 'valor_unitario', 'importe', 'descuento', mode='before')
    @classmethod
    def validate_amounts(cls, v):
        return exact_decimal(v)
