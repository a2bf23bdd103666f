"""
Basic tests for application setup and the document endpoints
"""
import json

import pytest
from fastapi.testclient import TestClient

from cfdi_generator.core.error_handler import error_handler
from cfdi_generator.core.logging import audit_logger
from cfdi_generator.main import app
from cfdi_generator.utils.error_responses import CfdiError, StateTransitionError, StructuralError

client = TestClient(app)


@pytest.fixture
def payload(valid_document):
    return valid_document.model_dump(mode="json", by_alias=True, exclude_none=True)


def test_health_check():
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "cfdi-generator"


def test_api_root():
    """Test API root endpoint"""
    response = client.get("/api/v1/")
    assert response.status_code == 200
    data = response.json()
    assert "CFDI 4.0 XML Generator v1" in data["message"]
    assert data["version"] == "1.0.0"


def test_docs_available():
    """Test that API documentation is available"""
    response = client.get("/docs")
    assert response.status_code == 200


def test_validate_valid_document(payload):
    """Valid document produces an empty report"""
    response = client.post("/api/v1/documents/validate", json=payload)
    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is True
    assert data["violation_count"] == 0
    assert "X-Correlation-ID" in response.headers


def test_validate_reports_violations(payload):
    """Violations are returned, not raised"""
    payload["Moneda"] = "USD"
    payload["SubTotal"] = "383.84"
    response = client.post("/api/v1/documents/validate", json=payload)
    assert response.status_code == 200
    data = response.json()
    assert data["is_valid"] is False
    assert [v["path"] for v in data["violations"]] == ["TipoCambio", "SubTotal"]
    assert data["violations"][1]["constraint_kind"] == "InvariantMismatch"
    assert data["violations"][1]["expected"] == "383.83"


def test_float_amounts_rejected(payload):
    payload["Total"] = 445.24
    response = client.post("/api/v1/documents/validate", json=payload)
    assert response.status_code == 422


def test_preview_valid_document(payload):
    response = client.post("/api/v1/documents/preview", json=payload)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert response.text.startswith('<?xml version="1.0" encoding="UTF-8"?><cfdi:Comprobante ')


def test_preview_pretty(payload):
    response = client.post("/api/v1/documents/preview", params={"pretty": "true"}, json=payload)
    assert response.status_code == 200
    assert response.text.split("\n")[1].startswith("<cfdi:Comprobante ")


def test_preview_invalid_document(payload):
    payload.pop("Emisor")
    response = client.post("/api/v1/documents/preview", json=payload)
    assert response.status_code == 422
    data = response.json()
    assert data["is_valid"] is False
    assert data["violations"][0]["path"] == "Emisor"


def test_decode_document():
    """Example XML decodes back to the JSON model"""
    xml = client.get("/api/v1/documents/example").content
    response = client.post("/api/v1/documents/decode", content=xml)
    assert response.status_code == 200
    data = response.json()
    assert data["Emisor"]["Rfc"] == "EKU9003173C9"
    assert data["Conceptos"][1]["Importe"] == "250.50"
    assert data["Impuestos"]["TotalImpuestosTrasladados"] == "61.41"


def test_decode_malformed_xml():
    response = client.post("/api/v1/documents/decode", content=b"<cfdi:Comprobante")
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["error_code"] == "STRUCTURAL_ERROR"
    assert error["suggestions"]


def test_example_document():
    response = client.get("/api/v1/documents/example")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    assert 'xmlns:tfd="http://www.sat.gob.mx/TimbreFiscalDigital"' in response.text
    assert 'Total="445.24"' in response.text


@pytest.mark.parametrize("exc,status_code", [
    (StructuralError("bad xml", path="Emisor"), 400),
    (StateTransitionError("sealed", current_state="sealed", attempted="set"), 409),
    (CfdiError("stamp", error_code="STAMP_MISMATCH"), 422),
])
def test_error_status_mapping(exc, status_code):
    response = error_handler._handle_cfdi_error(exc, "error-id")
    assert response.status_code == status_code
    body = json.loads(response.body)
    assert body["error"]["error_code"] == exc.error_code


def test_correlation_id_cleared_after_request(payload):
    response = client.post(
        "/api/v1/documents/validate", json=payload, headers={"X-Correlation-ID": "req-123"}
    )
    assert response.headers["X-Correlation-ID"] == "req-123"
    assert audit_logger.correlation_id is None
