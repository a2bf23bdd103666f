"""
Tests for the conditional requiredness and format rules
"""
from datetime import datetime
from decimal import Decimal

import pytest

from cfdi_generator.schemas import (
    CfdiRelacionado, CfdiRelacionados, Complemento, Comprobante, Emisor, InformacionGlobal,
    OpaqueExtension, Retencion
)
from cfdi_generator.schemas.enums import ConstraintKind
from cfdi_generator.utils.conditional_rules import (
    ConditionalRuleEngine, Required, Rule, RuleContext, has_foreign_trade_complement
)

FOREIGN_TRADE = (
    b'<cce20:ComercioExterior xmlns:cce20="http://www.sat.gob.mx/ComercioExterior20" Version="2.0"/>'
)


def summary(violations):
    return [(v.path, v.constraint_kind) for v in violations]


def test_valid_document_has_no_violations(rule_engine, valid_document):
    assert rule_engine.evaluate(valid_document) == []


def test_foreign_currency_requires_exchange_rate(rule_engine, valid_document):
    valid_document.moneda = "USD"
    violations = rule_engine.evaluate(valid_document)
    assert summary(violations) == [("TipoCambio", ConstraintKind.REQUIRED)]
    assert violations[0].field == "TipoCambio"


def test_mxn_forbids_exchange_rate(rule_engine, valid_document):
    valid_document.tipo_cambio = Decimal("17.5")
    assert summary(rule_engine.evaluate(valid_document)) == [("TipoCambio", ConstraintKind.FORBIDDEN)]


def test_exchange_rate_rules_satisfied(rule_engine, valid_document):
    valid_document.moneda = "USD"
    valid_document.tipo_cambio = Decimal("17.5")
    assert rule_engine.evaluate(valid_document) == []

    valid_document.moneda = "XXX"
    valid_document.tipo_cambio = None
    assert rule_engine.evaluate(valid_document) == []


def test_confirmation_required_above_total_threshold(valid_document):
    engine = ConditionalRuleEngine(context=RuleContext(total_threshold=Decimal("400.00")))
    assert summary(engine.evaluate(valid_document)) == [("Confirmacion", ConstraintKind.REQUIRED)]

    valid_document.confirmacion = "ECVH1"
    assert engine.evaluate(valid_document) == []


def test_confirmation_required_outside_exchange_rate_band(valid_document):
    engine = ConditionalRuleEngine(context=RuleContext(
        exchange_rate_references={"USD": Decimal("17.00")},
        variation_percent=Decimal("35"),
    ))
    valid_document.moneda = "USD"
    valid_document.tipo_cambio = Decimal("30.00")
    assert summary(engine.evaluate(valid_document)) == [("Confirmacion", ConstraintKind.REQUIRED)]

    valid_document.tipo_cambio = Decimal("18.00")
    assert engine.evaluate(valid_document) == []


def test_context_passed_to_evaluate_overrides_engine_context(rule_engine, valid_document):
    context = RuleContext(total_threshold=Decimal("100.00"))
    assert summary(rule_engine.evaluate(valid_document, context)) == [("Confirmacion", ConstraintKind.REQUIRED)]


def test_confirmation_pattern(rule_engine, valid_document):
    valid_document.confirmacion = "ABC"
    assert summary(rule_engine.evaluate(valid_document)) == [("Confirmacion", ConstraintKind.PATTERN)]


def test_foreign_tax_id_needs_residence(rule_engine, valid_document):
    valid_document.receptor.num_reg_id_trib = "121585958"
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Receptor.ResidenciaFiscal", ConstraintKind.REQUIRED)
    ]


def test_residence_needs_foreign_tax_id(rule_engine, valid_document):
    valid_document.receptor.residencia_fiscal = "USA"
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Receptor.NumRegIdTrib", ConstraintKind.REQUIRED)
    ]


def test_foreign_trade_context_needs_foreign_tax_id(valid_document):
    engine = ConditionalRuleEngine(context=RuleContext(foreign_trade_complement=True))
    assert summary(engine.evaluate(valid_document)) == [("Receptor.NumRegIdTrib", ConstraintKind.REQUIRED)]


def test_foreign_trade_complement_detected(rule_engine, valid_document):
    valid_document.complemento = Complemento(extensiones=(OpaqueExtension(raw=FOREIGN_TRADE),))
    assert has_foreign_trade_complement(valid_document)
    assert summary(rule_engine.evaluate(valid_document)) == [("Receptor.NumRegIdTrib", ConstraintKind.REQUIRED)]


def test_exempt_transfer_forbids_rate_and_amount(rule_engine, valid_document):
    valid_document.conceptos[0].impuestos.traslados[0].tipo_factor = "Exento"
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Conceptos[0].Impuestos.Traslados[0].Importe", ConstraintKind.FORBIDDEN),
        ("Conceptos[0].Impuestos.Traslados[0].TasaOCuota", ConstraintKind.FORBIDDEN),
    ]


def test_rate_transfer_requires_amount(rule_engine, valid_document):
    valid_document.conceptos[1].impuestos.traslados[0].importe = None
    violations = rule_engine.evaluate(valid_document)
    assert summary(violations) == [("Conceptos[1].Impuestos.Traslados[0].Importe", ConstraintKind.REQUIRED)]
    assert "Tasa or Cuota" in violations[0].message


def test_tax_object_02_requires_item_taxes(rule_engine, valid_document):
    valid_document.conceptos[0].impuestos = None
    assert summary(rule_engine.evaluate(valid_document)) == [("Conceptos[0].Impuestos", ConstraintKind.REQUIRED)]


def test_tax_object_01_forbids_item_taxes(rule_engine, valid_document):
    valid_document.conceptos[2].objeto_imp = "01"
    assert summary(rule_engine.evaluate(valid_document)) == [("Conceptos[2].Impuestos", ConstraintKind.FORBIDDEN)]


def test_summary_withholding_forbids_base(rule_engine, valid_document):
    valid_document.impuestos.retenciones = (Retencion(base="10.00", impuesto="002", importe="1.00"),)
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Impuestos.Retenciones[0].Base", ConstraintKind.FORBIDDEN)
    ]


def test_line_item_withholding_cannot_be_exempt(rule_engine, valid_document):
    valid_document.conceptos[0].impuestos.retenciones = (
        Retencion(base="100.00", impuesto="002", tipo_factor="Exento"),
    )
    violations = rule_engine.evaluate(valid_document)
    assert summary(violations) == [("Conceptos[0].Impuestos.Retenciones[0].TipoFactor", ConstraintKind.PATTERN)]
    assert violations[0].message == "Line item withholdings cannot use TipoFactor Exento"


@pytest.mark.parametrize("tipo", ["T", "P"])
def test_payment_fields_forbidden_for_transfer_and_payment(rule_engine, valid_document, tipo):
    valid_document.tipo_de_comprobante = tipo
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("FormaPago", ConstraintKind.FORBIDDEN),
        ("MetodoPago", ConstraintKind.FORBIDDEN),
    ]


def test_fecha_without_fractional_seconds(rule_engine, valid_document):
    valid_document.fecha = datetime(2024, 1, 15, 10, 30, 0, 123)
    assert summary(rule_engine.evaluate(valid_document)) == [("Fecha", ConstraintKind.PATTERN)]


def test_rfc_pattern(rule_engine, valid_document):
    valid_document.emisor.rfc = "bad"
    assert summary(rule_engine.evaluate(valid_document)) == [("Emisor.Rfc", ConstraintKind.PATTERN)]


def test_names_cannot_contain_pipe(rule_engine, valid_document):
    valid_document.emisor.nombre = "ESCUELA|KEMPER"
    violations = rule_engine.evaluate(valid_document)
    assert summary(violations) == [("Emisor.Nombre", ConstraintKind.PATTERN)]
    assert "|" in violations[0].message


def test_identifiers_cannot_contain_pipe(rule_engine, valid_document):
    valid_document.serie = "A|B"
    valid_document.folio = "1|2"
    valid_document.condiciones_de_pago = "30|dias"
    violations = rule_engine.evaluate(valid_document)
    assert summary(violations) == [
        ("Serie", ConstraintKind.PATTERN),
        ("Folio", ConstraintKind.PATTERN),
        ("CondicionesDePago", ConstraintKind.PATTERN),
    ]
    assert violations[0].message == "Serie must not contain '|'"


def test_integer_digits_limited(rule_engine, valid_document):
    valid_document.total = Decimal("1234567890123456789.00")
    valid_document.conceptos[0].valor_unitario = Decimal("123456789012345678")
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Confirmacion", ConstraintKind.REQUIRED),
        ("Total", ConstraintKind.PATTERN),
    ]
    valid_document.conceptos[0].valor_unitario = Decimal("1234567890123456789")
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Confirmacion", ConstraintKind.REQUIRED),
        ("Total", ConstraintKind.PATTERN),
        ("Conceptos[0].ValorUnitario", ConstraintKind.PATTERN),
    ]


def test_decimal_places_limited(rule_engine, valid_document):
    valid_document.sub_total = Decimal("383.830")
    valid_document.conceptos[0].cantidad = Decimal("1.0000001")
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("SubTotal", ConstraintKind.PATTERN),
        ("Conceptos[0].Cantidad", ConstraintKind.PATTERN),
    ]


def test_related_document_uuid_pattern(rule_engine, valid_document):
    valid_document.cfdi_relacionados = (
        CfdiRelacionados(tipo_relacion="04", cfdi_relacionado=(CfdiRelacionado(uuid="not-a-uuid"),)),
    )
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("CfdiRelacionados[0].CfdiRelacionado[0].UUID", ConstraintKind.PATTERN)
    ]

    valid_document.cfdi_relacionados = (
        CfdiRelacionados(
            tipo_relacion="04",
            cfdi_relacionado=(CfdiRelacionado(uuid="5FB2822E-396D-4725-8521-CDC4BDD20CCF"),),
        ),
    )
    assert rule_engine.evaluate(valid_document) == []


def test_global_information_rules(rule_engine, valid_document):
    valid_document.informacion_global = InformacionGlobal(periodicidad="01", meses="13", anio=2018)
    assert summary(rule_engine.evaluate(valid_document)) == [("InformacionGlobal.Año", ConstraintKind.RANGE)]


def test_violations_accumulate_in_rule_order(rule_engine, valid_document):
    valid_document.emisor = None
    valid_document.receptor.rfc = "bad"
    valid_document.moneda = "USD"
    assert summary(rule_engine.evaluate(valid_document)) == [
        ("Emisor", ConstraintKind.REQUIRED),
        ("TipoCambio", ConstraintKind.REQUIRED),
        ("Receptor.Rfc", ConstraintKind.PATTERN),
    ]


def test_empty_document_reports_required_fields(rule_engine):
    paths = [v.path for v in rule_engine.evaluate(Comprobante())]
    assert paths == [
        "Fecha", "SubTotal", "Moneda", "Total", "TipoDeComprobante", "Exportacion",
        "LugarExpedicion", "Emisor", "Receptor", "Conceptos",
    ]


def test_custom_rule_set(valid_document):
    engine = ConditionalRuleEngine(rules=[Rule(Emisor, "fac_atr_adquirente", Required())], context=RuleContext())
    assert summary(engine.evaluate(valid_document)) == [("Emisor.FacAtrAdquirente", ConstraintKind.REQUIRED)]


def test_rule_with_unknown_field_rejected():
    with pytest.raises(ValueError):
        Rule(Emisor, "telefono", Required())
