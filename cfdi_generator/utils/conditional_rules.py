"""
Conditional requiredness and format rules for CFDI 4.0 documents.

Rules are declarative records evaluated over an already built node tree.
A single pass collects every violation; nothing is raised for a failed rule.
"""
import dataclasses
import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from itertools import chain
from typing import Any, Callable, ClassVar, List, Mapping, Optional, Sequence, Type, Union

from cfdi_generator.core.config import settings
from cfdi_generator.schemas.base import (
    CfdiNode, CfdiRelacionado, CfdiRelacionados, Emisor, InformacionGlobal, Receptor, render_value
)
from cfdi_generator.schemas.document_items import (
    ACuentaTerceros, Concepto, CuentaPredial, InformacionAduanera, OpaqueExtension,
    Retencion, TaxEntry, Traslado
)
from cfdi_generator.schemas.documents import (
    FOREIGN_TRADE_NAMESPACE, Comprobante, Impuestos, TimbreFiscalDigital
)
from cfdi_generator.schemas.enums import (
    ComprobanteType, ConstraintKind, CurrencyCode, FactorType, TaxObject
)
from cfdi_generator.schemas.validation import RuleViolation

logger = logging.getLogger(__name__)


RFC_PATTERN = r"[A-ZÑ&]{3,4}[0-9]{6}[A-Z0-9]{3}"
UUID_PATTERN = r"[a-fA-F0-9]{8}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{4}-[a-fA-F0-9]{12}"
POSTAL_CODE_PATTERN = r"[0-9]{5}"
DATETIME_PATTERN = r"[0-9]{4}-[0-9]{2}-[0-9]{2}T[0-9]{2}:[0-9]{2}:[0-9]{2}"
CERTIFICATE_NUMBER_PATTERN = r"[0-9]{20}"
NO_PIPE_PATTERN = r"[^|]*"


def decimals_pattern(max_decimals: int) -> str:
    """Lexical form of a decimal with at most 18 integer digits and ``max_decimals`` places."""
    return rf"-?[0-9]{{1,18}}(\.[0-9]{{1,{max_decimals}}})?"


# Constraints

@dataclass(frozen=True)
class Required:
    kind: ClassVar[ConstraintKind] = ConstraintKind.REQUIRED

    def check(self, value: Any) -> Optional[str]:
        if value is None or value == "" or value == ():
            return "is required"
        return None


@dataclass(frozen=True)
class Forbidden:
    kind: ClassVar[ConstraintKind] = ConstraintKind.FORBIDDEN

    def check(self, value: Any) -> Optional[str]:
        if value is None or value == ():
            return None
        return "must not be present"


@dataclass(frozen=True)
class Pattern:
    regex: str
    kind: ClassVar[ConstraintKind] = ConstraintKind.PATTERN

    def check(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = render_value(value)
        if re.fullmatch(self.regex, text) is None:
            return f"value {text!r} does not match pattern {self.regex}"
        return None


@dataclass(frozen=True)
class Range:
    minimum: Optional[Decimal] = None
    maximum: Optional[Decimal] = None
    exclusive_minimum: bool = False
    kind: ClassVar[ConstraintKind] = ConstraintKind.RANGE

    def check(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        if self.minimum is not None:
            if self.exclusive_minimum and value <= self.minimum:
                return f"must be greater than {self.minimum}"
            if not self.exclusive_minimum and value < self.minimum:
                return f"must be at least {self.minimum}"
        if self.maximum is not None and value > self.maximum:
            return f"must be at most {self.maximum}"
        return None


@dataclass(frozen=True)
class Length:
    minimum: Optional[int] = None
    maximum: Optional[int] = None
    kind: ClassVar[ConstraintKind] = ConstraintKind.LENGTH

    def check(self, value: Any) -> Optional[str]:
        if value is None:
            return None
        size = len(render_value(value))
        if self.minimum is not None and size < self.minimum:
            return f"must be at least {self.minimum} characters long"
        if self.maximum is not None and size > self.maximum:
            return f"must be at most {self.maximum} characters long"
        return None


Constraint = Union[Required, Forbidden, Pattern, Range, Length]


@dataclass(frozen=True)
class RuleContext:
    """
    External values the rules depend on.

    Args:
        total_threshold: Total above which Confirmacion is required
        exchange_rate_references: reference rate per currency code
        variation_percent: band around the reference rate that needs no confirmation
        foreign_trade_complement: whether a foreign trade complement accompanies the document
    """
    total_threshold: Decimal = Decimal("20000000.00")
    exchange_rate_references: Mapping[str, Decimal] = dataclasses.field(default_factory=dict)
    variation_percent: Decimal = Decimal("35")
    foreign_trade_complement: bool = False

    @classmethod
    def from_settings(cls, config=None) -> "RuleContext":
        config = config or settings
        return cls(
            total_threshold=config.CONFIRMATION_TOTAL_THRESHOLD,
            exchange_rate_references=dict(config.EXCHANGE_RATE_REFERENCES),
            variation_percent=config.EXCHANGE_RATE_VARIATION_PERCENT,
        )


Predicate = Callable[[CfdiNode, RuleContext], bool]


@dataclass(frozen=True)
class Rule:
    """
    One declarative rule.

    ``when`` gates the rule on sibling values; ``within`` restricts it to
    nodes under a top-level element (``Conceptos`` or ``Impuestos``) so the
    same node type can follow different rules per location.
    """
    scope: Type[CfdiNode]
    field: str
    constraint: Constraint
    when: Optional[Predicate] = None
    within: Optional[str] = None
    message: Optional[str] = None

    def __post_init__(self):
        if self.field not in self.scope.model_fields:
            raise ValueError(f"{self.scope.__name__} has no field {self.field!r}")

    @property
    def xml_name(self) -> str:
        return self.scope.model_fields[self.field].alias or self.field

    def matches(self, path: str, node: CfdiNode) -> bool:
        if not isinstance(node, self.scope):
            return False
        if self.within is not None:
            root = re.split(r"[.\[]", path, maxsplit=1)[0]
            if root != self.within:
                return False
        return True


# Predicates

def value_in(field_name: str, *values: str) -> Predicate:
    def predicate(node: CfdiNode, context: RuleContext) -> bool:
        return getattr(node, field_name) in values
    return predicate


def value_not_in(field_name: str, *values: str) -> Predicate:
    def predicate(node: CfdiNode, context: RuleContext) -> bool:
        value = getattr(node, field_name)
        return value is not None and value not in values
    return predicate


def present(field_name: str) -> Predicate:
    def predicate(node: CfdiNode, context: RuleContext) -> bool:
        value = getattr(node, field_name)
        return value is not None and value != "" and value != ()
    return predicate


def needs_confirmation(node: Comprobante, context: RuleContext) -> bool:
    """Total over the threshold, or exchange rate outside the band for its currency."""
    if node.total is not None and node.total > context.total_threshold:
        return True
    if node.tipo_cambio is None or node.moneda is None:
        return False
    reference = context.exchange_rate_references.get(node.moneda)
    if not reference:
        return False
    variation = abs(node.tipo_cambio - reference) / reference * 100
    return variation > context.variation_percent


def carries_line_taxes(node: Comprobante, context: RuleContext) -> bool:
    return any(
        concepto.impuestos is not None
        and (concepto.impuestos.traslados or concepto.impuestos.retenciones)
        for concepto in node.conceptos
    )


def foreign_tax_id_required(node: Receptor, context: RuleContext) -> bool:
    return context.foreign_trade_complement or present("residencia_fiscal")(node, context)


def required(scope: Type[CfdiNode], *fields: str, **options) -> List[Rule]:
    return [Rule(scope, name, Required(), **options) for name in fields]


def patterned(scope: Type[CfdiNode], regex: str, *fields: str, **options) -> List[Rule]:
    return [Rule(scope, name, Pattern(regex), **options) for name in fields]


def free_text(scope: Type[CfdiNode], field_name: str, maximum: int) -> List[Rule]:
    return [
        Rule(scope, field_name, Pattern(NO_PIPE_PATTERN), message=f"{scope.model_fields[field_name].alias} must not contain '|'"),
        Rule(scope, field_name, Length(1, maximum)),
    ]


_FACTOR_WITH_AMOUNT = (FactorType.TASA.value, FactorType.CUOTA.value)
_NO_PAYMENT_DATA = (ComprobanteType.TRASLADO.value, ComprobanteType.PAGO.value)
_ZERO = Decimal("0")

DEFAULT_RULES: Sequence[Rule] = tuple(chain(
    # Comprobante
    required(
        Comprobante, "version", "fecha", "sub_total", "moneda", "total",
        "tipo_de_comprobante", "exportacion", "lugar_expedicion",
        "emisor", "receptor", "conceptos",
    ),
    [
        Rule(Comprobante, "version", Pattern(r"4\.0")),
        Rule(Comprobante, "fecha", Pattern(DATETIME_PATTERN)),
        Rule(Comprobante, "tipo_cambio", Required(),
             when=value_not_in("moneda", CurrencyCode.MXN.value, CurrencyCode.XXX.value),
             message="TipoCambio is required when Moneda is neither MXN nor XXX"),
        Rule(Comprobante, "tipo_cambio", Forbidden(),
             when=value_in("moneda", CurrencyCode.MXN.value),
             message="TipoCambio must be omitted when Moneda is MXN"),
        Rule(Comprobante, "confirmacion", Required(), when=needs_confirmation,
             message="Confirmacion is required when Total or TipoCambio exceed the regulator limits"),
        Rule(Comprobante, "forma_pago", Forbidden(), when=value_in("tipo_de_comprobante", *_NO_PAYMENT_DATA),
             message="FormaPago must be omitted for TipoDeComprobante T and P"),
        Rule(Comprobante, "metodo_pago", Forbidden(), when=value_in("tipo_de_comprobante", *_NO_PAYMENT_DATA),
             message="MetodoPago must be omitted for TipoDeComprobante T and P"),
        Rule(Comprobante, "impuestos", Required(), when=carries_line_taxes,
             message="Impuestos summary is required when line items carry taxes"),
        Rule(Comprobante, "tipo_de_comprobante", Pattern(r"[IETNP]")),
        Rule(Comprobante, "exportacion", Pattern(r"0[1-4]")),
        Rule(Comprobante, "metodo_pago", Pattern(r"PUE|PPD")),
        Rule(Comprobante, "forma_pago", Pattern(r"[0-9]{2}")),
        Rule(Comprobante, "moneda", Pattern(r"[A-Z]{3}")),
        Rule(Comprobante, "lugar_expedicion", Pattern(POSTAL_CODE_PATTERN)),
        Rule(Comprobante, "confirmacion", Pattern(r"[0-9a-zA-Z]{5}")),
        Rule(Comprobante, "no_certificado", Pattern(CERTIFICATE_NUMBER_PATTERN)),
    ],
    free_text(Comprobante, "serie", 25),
    free_text(Comprobante, "folio", 40),
    free_text(Comprobante, "condiciones_de_pago", 1000),
    patterned(Comprobante, decimals_pattern(2), "sub_total", "descuento", "total"),
    patterned(Comprobante, decimals_pattern(6), "tipo_cambio"),
    [
        Rule(Comprobante, "sub_total", Range(_ZERO)),
        Rule(Comprobante, "descuento", Range(_ZERO)),
        Rule(Comprobante, "total", Range(_ZERO)),
        Rule(Comprobante, "tipo_cambio", Range(_ZERO, exclusive_minimum=True)),
    ],

    # InformacionGlobal
    required(InformacionGlobal, "periodicidad", "meses", "anio"),
    [
        Rule(InformacionGlobal, "periodicidad", Pattern(r"0[1-5]")),
        Rule(InformacionGlobal, "meses", Pattern(r"0[1-9]|1[0-8]")),
        Rule(InformacionGlobal, "anio", Range(Decimal("2019"))),
    ],

    # CfdiRelacionados
    required(CfdiRelacionados, "tipo_relacion", "cfdi_relacionado"),
    [Rule(CfdiRelacionados, "tipo_relacion", Pattern(r"0[1-9]"))],
    required(CfdiRelacionado, "uuid"),
    patterned(CfdiRelacionado, UUID_PATTERN, "uuid"),

    # Emisor
    required(Emisor, "rfc", "nombre", "regimen_fiscal"),
    patterned(Emisor, RFC_PATTERN, "rfc"),
    free_text(Emisor, "nombre", 300),
    [
        Rule(Emisor, "regimen_fiscal", Pattern(r"[0-9]{3}")),
        Rule(Emisor, "fac_atr_adquirente", Pattern(r"[0-9]{10}")),
    ],

    # Receptor
    required(Receptor, "rfc", "domicilio_fiscal_receptor", "regimen_fiscal_receptor", "uso_cfdi"),
    [
        Rule(Receptor, "num_reg_id_trib", Required(), when=foreign_tax_id_required,
             message="NumRegIdTrib is required for foreign recipients"),
        Rule(Receptor, "residencia_fiscal", Required(), when=present("num_reg_id_trib"),
             message="ResidenciaFiscal is required when NumRegIdTrib is present"),
    ],
    patterned(Receptor, RFC_PATTERN, "rfc"),
    free_text(Receptor, "nombre", 300),
    [
        Rule(Receptor, "domicilio_fiscal_receptor", Pattern(POSTAL_CODE_PATTERN)),
        Rule(Receptor, "regimen_fiscal_receptor", Pattern(r"[0-9]{3}")),
        Rule(Receptor, "residencia_fiscal", Pattern(r"[A-Z]{3}")),
        Rule(Receptor, "num_reg_id_trib", Length(1, 40)),
    ],

    # Concepto
    required(
        Concepto, "clave_prod_serv", "cantidad", "clave_unidad", "descripcion",
        "valor_unitario", "importe", "objeto_imp",
    ),
    [
        Rule(Concepto, "impuestos", Required(), when=value_in("objeto_imp", TaxObject.SI_OBJETO.value),
             message="Impuestos is required when ObjetoImp is 02"),
        Rule(Concepto, "impuestos", Forbidden(), when=value_in("objeto_imp", TaxObject.NO_OBJETO.value),
             message="Impuestos must be omitted when ObjetoImp is 01"),
        Rule(Concepto, "objeto_imp", Pattern(r"0[1-5]")),
        Rule(Concepto, "clave_prod_serv", Pattern(r"[0-9]{8}")),
        Rule(Concepto, "no_identificacion", Length(1, 100)),
        Rule(Concepto, "unidad", Length(1, 20)),
    ],
    free_text(Concepto, "descripcion", 1000),
    patterned(Concepto, decimals_pattern(6), "cantidad", "valor_unitario", "importe", "descuento"),
    [
        Rule(Concepto, "cantidad", Range(_ZERO, exclusive_minimum=True)),
        Rule(Concepto, "valor_unitario", Range(_ZERO)),
        Rule(Concepto, "importe", Range(_ZERO)),
        Rule(Concepto, "descuento", Range(_ZERO)),
    ],
    required(ACuentaTerceros, "rfc_a_cuenta_terceros", "nombre_a_cuenta_terceros",
             "regimen_fiscal_a_cuenta_terceros", "domicilio_fiscal_a_cuenta_terceros"),
    patterned(ACuentaTerceros, RFC_PATTERN, "rfc_a_cuenta_terceros"),
    patterned(ACuentaTerceros, POSTAL_CODE_PATTERN, "domicilio_fiscal_a_cuenta_terceros"),
    free_text(ACuentaTerceros, "nombre_a_cuenta_terceros", 300),
    required(InformacionAduanera, "numero_pedimento"),
    patterned(InformacionAduanera, r"[0-9]{2}  [0-9]{2}  [0-9]{4}  [0-9]{7}", "numero_pedimento"),
    required(CuentaPredial, "numero"),
    patterned(CuentaPredial, r"[0-9a-zA-Z]{1,150}", "numero"),

    # Tax entries, line items and summary
    required(TaxEntry, "impuesto"),
    required(TaxEntry, "base", "tipo_factor", within="Conceptos"),
    required(Traslado, "base", "tipo_factor", within="Impuestos"),
    [
        Rule(TaxEntry, "importe", Required(), when=value_in("tipo_factor", *_FACTOR_WITH_AMOUNT),
             message="Importe is required when TipoFactor is Tasa or Cuota"),
        Rule(TaxEntry, "importe", Forbidden(), when=value_in("tipo_factor", FactorType.EXENTO.value),
             message="Importe must be omitted when TipoFactor is Exento"),
        Rule(TaxEntry, "tasa_o_cuota", Required(), when=value_in("tipo_factor", *_FACTOR_WITH_AMOUNT),
             message="TasaOCuota is required when TipoFactor is Tasa or Cuota"),
        Rule(TaxEntry, "tasa_o_cuota", Forbidden(), when=value_in("tipo_factor", FactorType.EXENTO.value),
             message="TasaOCuota must be omitted when TipoFactor is Exento"),
        Rule(Retencion, "tipo_factor", Pattern(r"Tasa|Cuota"), within="Conceptos",
             message="Line item withholdings cannot use TipoFactor Exento"),
        Rule(Retencion, "base", Forbidden(), within="Impuestos"),
        Rule(Retencion, "tipo_factor", Forbidden(), within="Impuestos"),
        Rule(Retencion, "tasa_o_cuota", Forbidden(), within="Impuestos"),
        Rule(Retencion, "importe", Required(), within="Impuestos"),
        Rule(TaxEntry, "impuesto", Pattern(r"00[1-3]")),
        Rule(TaxEntry, "tipo_factor", Pattern(r"Tasa|Cuota|Exento")),
        Rule(TaxEntry, "base", Range(_ZERO, exclusive_minimum=True)),
        Rule(TaxEntry, "tasa_o_cuota", Range(_ZERO)),
        Rule(TaxEntry, "importe", Range(_ZERO)),
    ],
    patterned(TaxEntry, decimals_pattern(6), "base", "tasa_o_cuota", "importe"),
    patterned(Impuestos, decimals_pattern(2), "total_impuestos_retenidos", "total_impuestos_trasladados"),

    # TimbreFiscalDigital
    required(
        TimbreFiscalDigital, "version", "uuid", "fecha_timbrado", "rfc_prov_certif",
        "sello_cfd", "no_certificado_sat", "sello_sat",
    ),
    [
        Rule(TimbreFiscalDigital, "version", Pattern(r"1\.1")),
        Rule(TimbreFiscalDigital, "uuid", Pattern(UUID_PATTERN)),
        Rule(TimbreFiscalDigital, "fecha_timbrado", Pattern(DATETIME_PATTERN)),
        Rule(TimbreFiscalDigital, "rfc_prov_certif", Pattern(RFC_PATTERN)),
        Rule(TimbreFiscalDigital, "no_certificado_sat", Pattern(CERTIFICATE_NUMBER_PATTERN)),
        Rule(TimbreFiscalDigital, "leyenda", Length(12, 150)),
    ],
))


def has_foreign_trade_complement(document: Comprobante) -> bool:
    if document.complemento is None:
        return False
    return any(
        isinstance(extension, OpaqueExtension) and extension.namespace == FOREIGN_TRADE_NAMESPACE
        for extension in document.complemento.extensiones
    )


class ConditionalRuleEngine:
    """
    Evaluates an ordered rule set against a document.

    Rules run in declaration order; for each rule the matching nodes are
    visited in document order, so reports are stable for a given tree.
    """

    def __init__(self, rules: Optional[Sequence[Rule]] = None, context: Optional[RuleContext] = None):
        self.rules = tuple(rules) if rules is not None else DEFAULT_RULES
        self.context = context

    def evaluate(self, document: Comprobante, context: Optional[RuleContext] = None) -> List[RuleViolation]:
        context = context or self.context or RuleContext.from_settings()
        if has_foreign_trade_complement(document) and not context.foreign_trade_complement:
            context = dataclasses.replace(context, foreign_trade_complement=True)

        nodes = list(document.walk())
        violations: List[RuleViolation] = []

        for rule in self.rules:
            for path, node in nodes:
                if not rule.matches(path, node):
                    continue
                if rule.when is not None and not rule.when(node, context):
                    continue

                problem = rule.constraint.check(getattr(node, rule.field))
                if problem is None:
                    continue

                violations.append(RuleViolation(
                    path=f"{path}.{rule.xml_name}" if path else rule.xml_name,
                    field=rule.xml_name,
                    constraint_kind=rule.constraint.kind,
                    message=rule.message or f"{rule.xml_name} {problem}",
                ))

        logger.debug("Rule evaluation finished with %d violations", len(violations))
        return violations

