"""
Document builder for CFDI 4.0 documents.
Orchestrates construction, validation, sealing and encoding.

Lifecycle: DRAFT -> VALIDATED -> SEALED. A validated document is frozen;
any correction means starting a new builder from the old document.
"""
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from cfdi_generator.core.logging import LogCategory, LogLevel, audit_logger, log_operation_context
from cfdi_generator.core.numeric import MONETARY, NumericPolicy, exact_arithmetic
from cfdi_generator.schemas.base import CfdiRelacionado, CfdiRelacionados, Emisor, InformacionGlobal, Receptor
from cfdi_generator.schemas.document_items import Concepto, OpaqueExtension, Retencion, Traslado
from cfdi_generator.schemas.documents import (
    Complemento, Comprobante, Impuestos, SealResult, TimbreFiscalDigital
)
from cfdi_generator.schemas.enums import DocumentState, TaxKind
from cfdi_generator.schemas.validation import ValidationReport
from cfdi_generator.utils.conditional_rules import ConditionalRuleEngine
from cfdi_generator.utils.error_responses import CfdiError, StateTransitionError
from cfdi_generator.utils.invariants import InvariantValidator, aggregate_taxes, derived_tax_totals
from cfdi_generator.utils.xml_generator import XMLGenerator


class DocumentBuilder:
    """
    Builder and state machine for a single document.

    A builder instance owns its draft exclusively; concurrent generation
    uses one builder per document.
    """

    def __init__(
        self,
        document: Optional[Comprobante] = None,
        rule_engine: Optional[ConditionalRuleEngine] = None,
        invariant_validator: Optional[InvariantValidator] = None,
        generator: Optional[XMLGenerator] = None,
    ):
        """
        Initialize a builder in DRAFT state.

        Args:
            document: starting content, copied and unlocked (defaults to an empty Comprobante)
            rule_engine: conditional rule engine (defaults to the standard rule set)
            invariant_validator: arithmetic checks (defaults to settings tolerance)
            generator: XML encoder
        """
        self._document = document.thaw_copy() if document is not None else Comprobante()
        self.rule_engine = rule_engine or ConditionalRuleEngine()
        self.invariant_validator = invariant_validator or InvariantValidator()
        self.generator = generator or XMLGenerator()
        self._state = DocumentState.DRAFT
        self.document_id = str(uuid.uuid4())
        self.last_report: Optional[ValidationReport] = None

    @classmethod
    def from_document(cls, document: Comprobante, **kwargs) -> "DocumentBuilder":
        """Start a new draft from an existing (possibly validated or sealed) document."""
        return cls(document=document, **kwargs)

    @property
    def state(self) -> DocumentState:
        return self._state

    @property
    def document(self) -> Comprobante:
        return self._document

    # State handling

    def _require_state(self, attempted: str, *allowed: DocumentState) -> None:
        if self._state in allowed:
            return
        reason = f"{attempted} requires state {' or '.join(s.value for s in allowed)}, document is {self._state.value}"
        audit_logger.log_state_transition(
            from_state=self._state.value,
            to_state=attempted,
            success=False,
            document_id=self.document_id,
            reason=reason,
        )
        raise StateTransitionError(reason, current_state=self._state.value, attempted=attempted)

    def _check_new_fields(self, candidate: Comprobante, attempted: str, error_code: str, *paths: str) -> None:
        """Run the rules on a candidate document, keeping only violations under ``paths``."""
        violations = [
            violation for violation in self.rule_engine.evaluate(candidate)
            if any(violation.path == path or violation.path.startswith(f"{path}.") for path in paths)
        ]
        if not violations:
            return
        reason = "; ".join(violation.message for violation in violations)
        audit_logger.log_state_transition(
            from_state=self._state.value,
            to_state=attempted,
            success=False,
            document_id=self.document_id,
            reason=reason,
        )
        raise CfdiError(
            f"{attempted} rejected: {reason}",
            error_code=error_code,
            suggestions=["Check the values returned by the collaborator"],
            context={
                "document_id": self.document_id,
                "violations": [violation.model_dump(mode="json") for violation in violations],
            },
        )

    def _transition(self, new_state: DocumentState) -> None:
        audit_logger.log_state_transition(
            from_state=self._state.value,
            to_state=new_state.value,
            success=True,
            document_id=self.document_id,
        )
        self._state = new_state

    # Draft population

    def set(self, **fields: Any) -> "DocumentBuilder":
        """Assign root fields by field name or XML name."""
        self._require_state("set", DocumentState.DRAFT)
        names: Dict[str, str] = {**Comprobante.attribute_fields(), **Comprobante.child_fields()}
        for key, value in fields.items():
            setattr(self._document, names.get(key, key), value)
        return self

    def set_emisor(self, emisor: Optional[Emisor] = None, **fields: Any) -> "DocumentBuilder":
        self._require_state("set_emisor", DocumentState.DRAFT)
        self._document.emisor = emisor if emisor is not None else Emisor(**fields)
        return self

    def set_receptor(self, receptor: Optional[Receptor] = None, **fields: Any) -> "DocumentBuilder":
        self._require_state("set_receptor", DocumentState.DRAFT)
        self._document.receptor = receptor if receptor is not None else Receptor(**fields)
        return self

    def set_informacion_global(
        self, informacion_global: Optional[InformacionGlobal] = None, **fields: Any
    ) -> "DocumentBuilder":
        self._require_state("set_informacion_global", DocumentState.DRAFT)
        self._document.informacion_global = (
            informacion_global if informacion_global is not None else InformacionGlobal(**fields)
        )
        return self

    def add_cfdi_relacionados(
        self,
        group: Optional[CfdiRelacionados] = None,
        tipo_relacion: Optional[str] = None,
        uuids: Sequence[str] = (),
    ) -> "DocumentBuilder":
        """Add a related documents group, either as a node or as a relation type plus UUIDs."""
        self._require_state("add_cfdi_relacionados", DocumentState.DRAFT)
        if group is None:
            group = CfdiRelacionados(
                tipo_relacion=tipo_relacion,
                cfdi_relacionado=tuple(CfdiRelacionado(uuid=value) for value in uuids),
            )
        self._document.cfdi_relacionados = (*self._document.cfdi_relacionados, group)
        return self

    def add_concepto(self, concepto: Optional[Concepto] = None, **fields: Any) -> "DocumentBuilder":
        self._require_state("add_concepto", DocumentState.DRAFT)
        concepto = concepto if concepto is not None else Concepto(**fields)
        self._document.conceptos = (*self._document.conceptos, concepto)
        return self

    def set_impuestos(self, impuestos: Optional[Impuestos]) -> "DocumentBuilder":
        self._require_state("set_impuestos", DocumentState.DRAFT)
        self._document.impuestos = impuestos
        return self

    def add_extension(self, extension: OpaqueExtension) -> "DocumentBuilder":
        """Add a document-level complement other than the digital stamp."""
        self._require_state("add_extension", DocumentState.DRAFT)
        if not isinstance(extension, OpaqueExtension):
            raise StateTransitionError(
                "The digital stamp can only be attached to a sealed document",
                current_state=self._state.value,
                attempted="add_extension",
            )
        complemento = self._document.complemento or Complemento()
        self._document.complemento = Complemento(extensiones=(*complemento.extensiones, extension))
        return self

    def calculate_totals(self) -> "DocumentBuilder":
        """
        Derive the tax summary, SubTotal and Total from the line items.

        Line item amounts themselves are taken as given; Descuento is left
        as set by the caller.
        """
        self._require_state("calculate_totals", DocumentState.DRAFT)
        with exact_arithmetic():
            policy = self.invariant_validator.policy
            document = self._document

            groups = aggregate_taxes(document.conceptos)
            traslados = []
            retenciones = []
            for group in groups.values():
                importe = policy.round(group.importe, MONETARY) if group.importe is not None else None
                if group.kind == TaxKind.TRASLADO:
                    traslados.append(Traslado(
                        base=policy.round(group.base, MONETARY),
                        impuesto=group.impuesto,
                        tipo_factor=group.tipo_factor,
                        tasa_o_cuota=group.tasa_o_cuota,
                        importe=importe,
                    ))
                else:
                    retenciones.append(Retencion(impuesto=group.impuesto, importe=importe))

            if groups:
                document.impuestos = Impuestos(
                    total_impuestos_retenidos=self._sum_amounts(policy, retenciones),
                    total_impuestos_trasladados=self._sum_amounts(policy, traslados),
                    retenciones=tuple(retenciones),
                    traslados=tuple(traslados),
                )
            else:
                document.impuestos = None

            subtotal = policy.total(concepto.importe for concepto in document.conceptos)
            transferred, withheld = derived_tax_totals(groups)
            document.sub_total = policy.round(subtotal, MONETARY)
            document.total = policy.round(
                subtotal - (document.descuento or Decimal("0")) + transferred - withheld, MONETARY
            )
        return self

    @staticmethod
    def _sum_amounts(policy: NumericPolicy, entries: Sequence[Any]) -> Optional[Decimal]:
        amounts = [entry.importe for entry in entries if entry.importe is not None]
        if not amounts:
            return None
        return policy.round(policy.total(amounts), MONETARY)

    # Transitions

    def validate(self) -> ValidationReport:
        """
        Run the rule engine and the invariant validator.

        Moves to VALIDATED and freezes the document only when both report
        nothing; otherwise stays in DRAFT.
        """
        self._require_state("validate", DocumentState.DRAFT)

        with log_operation_context("validate_document", LogCategory.VALIDATION):
            rule_violations = self.rule_engine.evaluate(self._document)
            mismatches = self.invariant_validator.validate(self._document)

        report = ValidationReport(violations=[*rule_violations, *mismatches])
        self.last_report = report
        audit_logger.log_validation_result(
            rule_violations=len(rule_violations),
            invariant_mismatches=len(mismatches),
            document_id=self.document_id,
        )

        if report.is_valid:
            self._document.freeze()
            self._transition(DocumentState.VALIDATED)
        return report

    def to_draft(self) -> None:
        """Always rejected: corrections require a new builder."""
        audit_logger.log_state_transition(
            from_state=self._state.value,
            to_state=DocumentState.DRAFT.value,
            success=False,
            document_id=self.document_id,
            reason="documents never return to draft",
        )
        raise StateTransitionError(
            "A document cannot return to draft; start a new builder with DocumentBuilder.from_document()",
            current_state=self._state.value,
            attempted="to_draft",
        )

    def pre_seal_xml(self) -> str:
        """Compact XML handed to the signing collaborator."""
        self._require_state("pre_seal_xml", DocumentState.VALIDATED)
        return self.generator.generate_xml(self._document, pretty=False)

    def seal(
        self,
        result: Optional[SealResult] = None,
        sello: Optional[str] = None,
        certificado: Optional[str] = None,
        no_certificado: Optional[str] = None,
    ) -> "DocumentBuilder":
        """
        Apply the issuer seal and certificate.

        Args:
            result: values returned by the signing collaborator
            sello: seal value when no result is given
            certificado: base64 certificate when no result is given
            no_certificado: certificate serial when no result is given
        """
        self._require_state("seal", DocumentState.VALIDATED)
        if result is None:
            if not sello or not certificado:
                raise StateTransitionError(
                    "Sello and Certificado are required to seal a document",
                    current_state=self._state.value,
                    attempted="seal",
                )
            result = SealResult(sello=sello, certificado=certificado, no_certificado=no_certificado)

        sealed = self._document.thaw_copy()
        sealed.sello = result.sello
        sealed.certificado = result.certificado
        if result.no_certificado is not None:
            sealed.no_certificado = result.no_certificado
        self._check_new_fields(sealed, "seal", "SEAL_REJECTED", "Sello", "Certificado", "NoCertificado")
        self._document = sealed.freeze()
        self._transition(DocumentState.SEALED)
        return self

    def attach_stamp(self, timbre: TimbreFiscalDigital) -> "DocumentBuilder":
        """Append the digital stamp returned by the certifying provider."""
        self._require_state("attach_stamp", DocumentState.SEALED)
        if self._document.is_stamped:
            raise StateTransitionError(
                "Document already carries a digital stamp",
                current_state=self._state.value,
                attempted="attach_stamp",
            )
        if timbre.sello_cfd != self._document.sello:
            raise CfdiError(
                "SelloCFD of the stamp does not match the document Sello",
                error_code="STAMP_MISMATCH",
                suggestions=["Verify the stamp was issued for this document"],
                context={"document_id": self.document_id},
            )

        stamped = self._document.thaw_copy()
        complemento = stamped.complemento or Complemento()
        stamped.complemento = Complemento(
            extensiones=(*complemento.extensiones, timbre.model_copy(deep=True))
        )
        self._check_new_fields(
            stamped, "attach_stamp", "STAMP_REJECTED", f"Complemento.Extensiones[{len(complemento.extensiones)}]"
        )
        self._document = stamped.freeze()
        audit_logger.log_structured(
            level=LogLevel.INFO,
            category=LogCategory.DOCUMENT_LIFECYCLE,
            message="Digital stamp attached",
            document_id=self.document_id,
            uuid=timbre.uuid,
        )
        return self

    # Encoding

    def preview_xml(self, pretty: Optional[bool] = None) -> str:
        """XML for inspection; unsealed documents carry no seal nor stamp."""
        self._require_state("preview_xml", DocumentState.VALIDATED, DocumentState.SEALED)
        return self.generator.generate_xml(self._document, pretty=pretty)

    def issue_xml(self) -> str:
        """Final compact XML, only for sealed documents."""
        self._require_state("issue_xml", DocumentState.SEALED)
        return self.generator.generate_xml(self._document, pretty=False)
