"""
Cross-field arithmetic checks for CFDI 4.0 documents.

All five checks always run, so one pass reports every inconsistency:

1. each line item Importe against Cantidad x ValorUnitario - Descuento
2. SubTotal against the sum of line item Importe
3. each rate-based line item transfer against Base x TasaOCuota
4. the tax summary against the line item taxes grouped by tax and rate
5. Total against SubTotal - Descuento + transfers - withholdings
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from cfdi_generator.core.config import settings
from cfdi_generator.core.numeric import MONETARY, RATE, NumericPolicy, exact_arithmetic
from cfdi_generator.schemas.document_items import Concepto, TaxEntry
from cfdi_generator.schemas.documents import Comprobante
from cfdi_generator.schemas.enums import FactorType, TaxKind
from cfdi_generator.schemas.validation import InvariantMismatch

logger = logging.getLogger(__name__)

GroupKey = Tuple[TaxKind, Optional[str], Optional[str], Optional[Decimal]]

_ZERO = Decimal("0")


@dataclass
class TaxGroup:
    """Line item taxes sharing kind, tax code, factor type and rate."""
    kind: TaxKind
    impuesto: Optional[str]
    tipo_factor: Optional[str] = None
    tasa_o_cuota: Optional[Decimal] = None
    base: Decimal = _ZERO
    importe: Optional[Decimal] = None

    def add(self, entry: TaxEntry) -> None:
        if entry.base is not None:
            self.base += entry.base
        if entry.importe is not None:
            self.importe = (self.importe or _ZERO) + entry.importe


def group_key(entry: TaxEntry) -> GroupKey:
    """Transfers group by tax, factor and rate; withholdings by tax alone."""
    if entry.kind == TaxKind.RETENCION:
        return (TaxKind.RETENCION, entry.impuesto, None, None)
    rate = NumericPolicy.round(entry.tasa_o_cuota, RATE) if entry.tasa_o_cuota is not None else None
    return (TaxKind.TRASLADO, entry.impuesto, entry.tipo_factor, rate)


def aggregate_taxes(conceptos: Iterable[Concepto]) -> Dict[GroupKey, TaxGroup]:
    """
    Group line item taxes the way the document summary lists them.

    Returns groups in order of first appearance; transfers and withholdings
    share the mapping and are told apart by ``TaxGroup.kind``.
    """
    groups: Dict[GroupKey, TaxGroup] = {}
    for concepto in conceptos:
        if concepto.impuestos is None:
            continue
        for entry in (*concepto.impuestos.traslados, *concepto.impuestos.retenciones):
            key = group_key(entry)
            if key not in groups:
                groups[key] = TaxGroup(kind=key[0], impuesto=key[1], tipo_factor=key[2], tasa_o_cuota=key[3])
            groups[key].add(entry)
    return groups


def derived_tax_totals(groups: Dict[GroupKey, TaxGroup]) -> Tuple[Decimal, Decimal]:
    """Transferred and withheld totals from grouped line item taxes."""
    transferred = sum((g.importe or _ZERO for g in groups.values() if g.kind == TaxKind.TRASLADO), _ZERO)
    withheld = sum((g.importe or _ZERO for g in groups.values() if g.kind == TaxKind.RETENCION), _ZERO)
    return transferred, withheld


class InvariantValidator:
    """Arithmetic consistency checks over a whole document."""

    def __init__(self, policy: Optional[NumericPolicy] = None):
        self.policy = policy or NumericPolicy(settings.NUMERIC_TOLERANCE)

    def validate(self, document: Comprobante) -> List[InvariantMismatch]:
        mismatches: List[InvariantMismatch] = []
        with exact_arithmetic():
            mismatches.extend(self.check_line_amounts(document))
            mismatches.extend(self.check_subtotal(document))
            mismatches.extend(self.check_line_taxes(document))
            mismatches.extend(self.check_tax_summary(document))
            mismatches.extend(self.check_total(document))
        logger.debug("Invariant validation finished with %d mismatches", len(mismatches))
        return mismatches

    def _compare(
        self,
        path: str,
        field: str,
        expected: Optional[Decimal],
        actual: Optional[Decimal],
        max_decimals: int = MONETARY,
        message: Optional[str] = None,
    ) -> List[InvariantMismatch]:
        if self.policy.equals_within_tolerance(expected, actual, max_decimals):
            return []
        if expected is not None:
            expected = self.policy.round(expected, max_decimals)
        return [InvariantMismatch(
            path=path,
            field=field,
            expected=expected,
            actual=actual,
            message=message or f"{field} expected {expected} but found {actual}",
        )]

    def check_line_amounts(self, document: Comprobante) -> List[InvariantMismatch]:
        mismatches = []
        for index, concepto in enumerate(document.conceptos):
            if concepto.cantidad is None or concepto.valor_unitario is None or concepto.importe is None:
                continue
            expected = self.policy.round(
                concepto.cantidad * concepto.valor_unitario - (concepto.descuento or _ZERO), MONETARY
            )
            mismatches.extend(self._compare(
                f"Conceptos[{index}].Importe", "Importe", expected, concepto.importe,
                message=f"Importe expected {expected} (Cantidad x ValorUnitario - Descuento) but found {concepto.importe}",
            ))
        return mismatches

    def check_subtotal(self, document: Comprobante) -> List[InvariantMismatch]:
        expected = self.policy.total(concepto.importe for concepto in document.conceptos)
        return self._compare(
            "SubTotal", "SubTotal", expected, document.sub_total,
            message=f"SubTotal expected {self.policy.round(expected, MONETARY)} (sum of line items) but found {document.sub_total}",
        )

    def check_line_taxes(self, document: Comprobante) -> List[InvariantMismatch]:
        mismatches = []
        for index, concepto in enumerate(document.conceptos):
            if concepto.impuestos is None:
                continue
            for position, entry in enumerate(concepto.impuestos.traslados):
                if entry.tipo_factor != FactorType.TASA.value:
                    continue
                if entry.base is None or entry.tasa_o_cuota is None or entry.importe is None:
                    continue
                expected = self.policy.multiply(entry.base, entry.tasa_o_cuota, MONETARY)
                mismatches.extend(self._compare(
                    f"Conceptos[{index}].Impuestos.Traslados[{position}].Importe", "Importe",
                    expected, entry.importe,
                    message=f"Importe expected {expected} (Base x TasaOCuota) but found {entry.importe}",
                ))
        return mismatches

    def check_tax_summary(self, document: Comprobante) -> List[InvariantMismatch]:
        summary = document.impuestos
        if summary is None:
            return []

        mismatches = []
        groups = aggregate_taxes(document.conceptos)
        matched = set()

        for label, entries in (("Traslados", summary.traslados), ("Retenciones", summary.retenciones)):
            for position, entry in enumerate(entries):
                path = f"Impuestos.{label}[{position}]"
                key = group_key(entry)
                group = groups.get(key)
                if group is None:
                    mismatches.append(InvariantMismatch(
                        path=f"{path}.Importe",
                        field="Importe",
                        expected=None,
                        actual=entry.importe,
                        message=f"Summary {entry.ELEMENT} for Impuesto {entry.impuesto} has no matching line item taxes",
                    ))
                    continue
                matched.add(key)
                mismatches.extend(self._compare(f"{path}.Importe", "Importe", group.importe, entry.importe))
                if group.kind == TaxKind.TRASLADO:
                    mismatches.extend(self._compare(f"{path}.Base", "Base", group.base, entry.base))

        for key, group in groups.items():
            if key in matched:
                continue
            label = "Traslados" if group.kind == TaxKind.TRASLADO else "Retenciones"
            mismatches.append(InvariantMismatch(
                path=f"Impuestos.{label}",
                field=label,
                expected=group.importe,
                actual=None,
                message=f"Line item taxes for Impuesto {group.impuesto} are missing from the summary",
            ))

        mismatches.extend(self._compare(
            "Impuestos.TotalImpuestosTrasladados", "TotalImpuestosTrasladados",
            self._summary_total(summary.traslados), summary.total_impuestos_trasladados,
        ))
        mismatches.extend(self._compare(
            "Impuestos.TotalImpuestosRetenidos", "TotalImpuestosRetenidos",
            self._summary_total(summary.retenciones), summary.total_impuestos_retenidos,
        ))
        return mismatches

    def _summary_total(self, entries: Sequence[TaxEntry]) -> Optional[Decimal]:
        amounts = [entry.importe for entry in entries if entry.importe is not None]
        if not amounts:
            return None
        return self.policy.total(amounts)

    def check_total(self, document: Comprobante) -> List[InvariantMismatch]:
        transferred, withheld = derived_tax_totals(aggregate_taxes(document.conceptos))
        subtotal = self.policy.total(concepto.importe for concepto in document.conceptos)
        expected = self.policy.round(
            subtotal - (document.descuento or _ZERO) + transferred - withheld, MONETARY
        )
        return self._compare(
            "Total", "Total", expected, document.total,
            message=f"Total expected {expected} (SubTotal - Descuento + taxes) but found {document.total}",
        )
