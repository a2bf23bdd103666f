"""
Shared fixtures: a valid three-item income receipt (100.00, 250.50, 33.33)
with 16% IVA transferred on every line.
"""
from datetime import datetime

import pytest

from cfdi_generator.schemas import (
    Comprobante, Concepto, ConceptoImpuestos, Emisor, Impuestos, Receptor,
    SealResult, TimbreFiscalDigital, Traslado
)
from cfdi_generator.utils.conditional_rules import ConditionalRuleEngine, RuleContext

SELLO = "Y29tcHJvYmFudGUgZmlybWFkbw=="
CERTIFICADO = "TUlJRmFEQ0NBMUNnQXdJQkFnSVVNekF3TURFd01EQXdNREExTURBd01EUXdNakF3RFFZSktvWklodmNOQVFFTA=="
NO_CERTIFICADO = "30001000000500003416"
STAMP_UUID = "3fa85f64-5717-4562-b3fc-2c963f66afa6"


def make_concepto(descripcion, cantidad, valor_unitario, importe, iva):
    return Concepto(
        clave_prod_serv="84111506",
        cantidad=cantidad,
        clave_unidad="E48",
        unidad="Servicio",
        descripcion=descripcion,
        valor_unitario=valor_unitario,
        importe=importe,
        objeto_imp="02",
        impuestos=ConceptoImpuestos(traslados=(
            Traslado(base=importe, impuesto="002", tipo_factor="Tasa", tasa_o_cuota="0.160000", importe=iva),
        )),
    )


@pytest.fixture
def conceptos():
    return (
        make_concepto("Consultoria", "1", "100.00", "100.00", "16.00"),
        make_concepto("Licencia anual", "2", "125.25", "250.50", "40.08"),
        make_concepto("Soporte", "1", "33.33", "33.33", "5.33"),
    )


@pytest.fixture
def valid_document(conceptos):
    return Comprobante(
        serie="A",
        folio="1001",
        fecha=datetime(2024, 1, 15, 10, 30, 0),
        forma_pago="01",
        sub_total="383.83",
        moneda="MXN",
        total="445.24",
        tipo_de_comprobante="I",
        exportacion="01",
        metodo_pago="PUE",
        lugar_expedicion="20000",
        emisor=Emisor(rfc="EKU9003173C9", nombre="ESCUELA KEMPER URGATE", regimen_fiscal="601"),
        receptor=Receptor(
            rfc="URE180429TM6",
            nombre="UNIVERSIDAD ROBOTICA ESPAÑOLA",
            domicilio_fiscal_receptor="86991",
            regimen_fiscal_receptor="601",
            uso_cfdi="G01",
        ),
        conceptos=conceptos,
        impuestos=Impuestos(
            total_impuestos_trasladados="61.41",
            traslados=(
                Traslado(base="383.83", impuesto="002", tipo_factor="Tasa", tasa_o_cuota="0.160000", importe="61.41"),
            ),
        ),
    )


@pytest.fixture
def rule_engine():
    return ConditionalRuleEngine(context=RuleContext())


@pytest.fixture
def seal_result():
    return SealResult(sello=SELLO, certificado=CERTIFICADO, no_certificado=NO_CERTIFICADO)


@pytest.fixture
def timbre():
    return TimbreFiscalDigital(
        version="1.1",
        uuid=STAMP_UUID,
        fecha_timbrado=datetime(2024, 1, 15, 10, 31, 5),
        rfc_prov_certif="SPR190613I52",
        sello_cfd=SELLO,
        no_certificado_sat="30001000000500003456",
        sello_sat="c2VsbG8gZGVsIFNBVA==",
    )
