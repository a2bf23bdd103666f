"""
Document API endpoints for CFDI 4.0 documents.
Thin transport over the document builder: validate, preview, decode.
"""
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse, Response

from cfdi_generator.schemas.documents import Comprobante
from cfdi_generator.schemas.validation import ValidationReport
from cfdi_generator.schemas.document_items import ConceptoImpuestos, Traslado
from cfdi_generator.services.document_builder import DocumentBuilder
from cfdi_generator.utils.xml_parser import decode_document

XML_MEDIA_TYPE = "application/xml"

router = APIRouter(
    prefix="/documents",
    tags=["CFDI Documents"],
)


def _report_body(report: ValidationReport) -> Dict[str, Any]:
    return {
        "is_valid": report.is_valid,
        "violation_count": len(report),
        "violations": [violation.model_dump(mode="json") for violation in report.violations],
    }


def build_example() -> DocumentBuilder:
    """Three-item income receipt with 16% IVA on every line."""
    builder = DocumentBuilder()
    builder.set(
        serie="A",
        folio="1001",
        fecha=datetime(2024, 1, 15, 10, 30, 0),
        forma_pago="01",
        moneda="MXN",
        tipo_de_comprobante="I",
        exportacion="01",
        metodo_pago="PUE",
        lugar_expedicion="20000",
    )
    builder.set_emisor(rfc="EKU9003173C9", nombre="ESCUELA KEMPER URGATE", regimen_fiscal="601")
    builder.set_receptor(
        rfc="URE180429TM6",
        nombre="UNIVERSIDAD ROBOTICA ESPAÑOLA",
        domicilio_fiscal_receptor="86991",
        regimen_fiscal_receptor="601",
        uso_cfdi="G01",
    )
    for descripcion, cantidad, valor_unitario, importe, iva in (
        ("Consultoria", "1", "100.00", "100.00", "16.00"),
        ("Licencia anual", "2", "125.25", "250.50", "40.08"),
        ("Soporte", "1", "33.33", "33.33", "5.33"),
    ):
        builder.add_concepto(
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
    return builder.calculate_totals()


@router.post(
    "/validate",
    summary="Validate document",
    description="Run the conditional rules and arithmetic invariants over a document and return every violation"
)
async def validate_document(document: Comprobante) -> Dict[str, Any]:
    report = DocumentBuilder(document).validate()
    return _report_body(report)


@router.post(
    "/preview",
    summary="Preview document XML",
    description="Validate a document and return its unsealed XML, or the violation report when invalid",
    responses={
        200: {"content": {XML_MEDIA_TYPE: {}}, "description": "Unsealed CFDI XML"},
        422: {"description": "Validation report"},
    }
)
async def preview_document(document: Comprobante, pretty: bool = Query(False)) -> Response:
    builder = DocumentBuilder(document)
    report = builder.validate()
    if not report.is_valid:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_report_body(report))
    return Response(content=builder.preview_xml(pretty=pretty), media_type=XML_MEDIA_TYPE)


@router.post(
    "/decode",
    summary="Decode document XML",
    description="Map CFDI 4.0 XML onto the document model without validating it"
)
async def decode_xml(request: Request) -> Dict[str, Any]:
    document = decode_document(await request.body())
    return document.model_dump(mode="json", by_alias=True, exclude_none=True)


@router.get(
    "/example",
    summary="Example document",
    description="Unsealed XML of a validated sample receipt"
)
async def example_document() -> Response:
    builder = build_example()
    builder.validate()
    return Response(content=builder.preview_xml(), media_type=XML_MEDIA_TYPE)
