"""
Base node model for CFDI 4.0 documents.

Nodes only check the *shape* of their values (a string is a string, an
amount is a Decimal). Format and requiredness live in the conditional rule
engine so partial documents can be built and inspected before validation.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, get_args, get_origin
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from cfdi_generator.core.numeric import format_decimal
from cfdi_generator.utils.error_responses import StateTransitionError


def render_value(value: Any) -> str:
    """Text form of a field value as written in the XML."""
    if isinstance(value, Decimal):
        return format_decimal(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def exact_decimal(value: Any) -> Any:
    """Reject binary floats before pydantic turns them into Decimals."""
    if isinstance(value, float):
        raise ValueError("Binary floating point amounts are not accepted, use a string or Decimal")
    return value


def _holds_nodes(annotation: Any) -> bool:
    """True when a field annotation refers to child nodes rather than a scalar."""
    if get_origin(annotation) is not None:
        return any(_holds_nodes(arg) for arg in get_args(annotation))
    return isinstance(annotation, type) and issubclass(annotation, BaseModel)


class CfdiNode(BaseModel):
    """Base class for every element of the document tree."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        extra="forbid",
    )

    ELEMENT: ClassVar[str] = ""

    _frozen: bool = PrivateAttr(default=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if not name.startswith("_") and getattr(self, "_frozen", False):
            raise StateTransitionError(
                f"{type(self).__name__}.{name} cannot change after validation, rebuild the document instead",
                current_state="frozen",
                attempted=f"set {name}",
            )
        super().__setattr__(name, value)

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, CfdiNode):
            return NotImplemented
        return type(self) is type(other) and self.model_dump() == other.model_dump()

    @classmethod
    def attribute_fields(cls) -> Dict[str, str]:
        """Map XML attribute name -> field name, in schema order."""
        return {
            (info.alias or name): name
            for name, info in cls.model_fields.items()
            if not _holds_nodes(info.annotation)
        }

    @classmethod
    def child_fields(cls) -> Dict[str, str]:
        """Map child element name -> field name, in schema order."""
        return {
            (info.alias or name): name
            for name, info in cls.model_fields.items()
            if _holds_nodes(info.annotation)
        }

    def attribute_items(self) -> List[Tuple[str, Any]]:
        """Populated scalar fields as ``(xml_name, value)`` pairs."""
        items = []
        for xml_name, name in self.attribute_fields().items():
            value = getattr(self, name)
            if value is not None:
                items.append((xml_name, value))
        return items

    def present_fields(self) -> List[str]:
        return [name for name in type(self).model_fields if not self._is_absent(getattr(self, name))]

    def absent_fields(self) -> List[str]:
        return [name for name in type(self).model_fields if self._is_absent(getattr(self, name))]

    @staticmethod
    def _is_absent(value: Any) -> bool:
        return value is None or value == ()

    def walk(self, path: str = "") -> Iterator[Tuple[str, "CfdiNode"]]:
        """Yield ``(path, node)`` for this node and every descendant, in document order."""
        yield path, self
        for xml_name, name in self.child_fields().items():
            value = getattr(self, name)
            prefix = f"{path}.{xml_name}" if path else xml_name
            if isinstance(value, CfdiNode):
                yield from value.walk(prefix)
            elif isinstance(value, tuple):
                for index, item in enumerate(value):
                    yield from item.walk(f"{prefix}[{index}]")

    def freeze(self) -> "CfdiNode":
        """Lock this node and all its descendants against assignment."""
        for _, node in self.walk():
            node._frozen = True
        return self

    @property
    def is_frozen(self) -> bool:
        return self._frozen

    def thaw_copy(self) -> "CfdiNode":
        """Deep copy with every node unlocked."""
        copy = self.model_copy(deep=True)
        for _, node in copy.walk():
            node._frozen = False
        return copy


class Emisor(CfdiNode):
    """Taxpayer issuing the document."""
    ELEMENT: ClassVar[str] = "Emisor"

    rfc: Optional[str] = Field(None, alias="Rfc")
    nombre: Optional[str] = Field(None, alias="Nombre")
    regimen_fiscal: Optional[str] = Field(None, alias="RegimenFiscal")
    fac_atr_adquirente: Optional[str] = Field(None, alias="FacAtrAdquirente")


class Receptor(CfdiNode):
    """Taxpayer receiving the document."""
    ELEMENT: ClassVar[str] = "Receptor"

    rfc: Optional[str] = Field(None, alias="Rfc")
    nombre: Optional[str] = Field(None, alias="Nombre")
    domicilio_fiscal_receptor: Optional[str] = Field(None, alias="DomicilioFiscalReceptor")
    residencia_fiscal: Optional[str] = Field(None, alias="ResidenciaFiscal")
    num_reg_id_trib: Optional[str] = Field(None, alias="NumRegIdTrib")
    regimen_fiscal_receptor: Optional[str] = Field(None, alias="RegimenFiscalReceptor")
    uso_cfdi: Optional[str] = Field(None, alias="UsoCFDI")


class InformacionGlobal(CfdiNode):
    """Periodic (global) receipt information."""
    ELEMENT: ClassVar[str] = "InformacionGlobal"

    periodicidad: Optional[str] = Field(None, alias="Periodicidad")
    meses: Optional[str] = Field(None, alias="Meses")
    anio: Optional[int] = Field(None, alias="Año")


class CfdiRelacionado(CfdiNode):
    ELEMENT: ClassVar[str] = "CfdiRelacionado"

    uuid: Optional[str] = Field(None, alias="UUID")


class CfdiRelacionados(CfdiNode):
    """Group of related documents sharing one relation type."""
    ELEMENT: ClassVar[str] = "CfdiRelacionados"

    tipo_relacion: Optional[str] = Field(None, alias="TipoRelacion")
    cfdi_relacionado: Tuple[CfdiRelacionado, ...] = Field((), alias="CfdiRelacionado")
