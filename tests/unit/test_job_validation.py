import pytest

from registry_worker.database.models import JobPayload
from registry_worker.database.validation import validate_job_payload
from registry_worker.exceptions import FatalJobError, JobValidationError


def _make_payload(**overrides) -> JobPayload:
    values = {
        "document_source": "index",
        "document_number": "1 234 567",
        "circonscription_fonciere": "Montréal",
        "cadastre": "Cadastre du Québec",
    }
    values.update(overrides)
    return JobPayload(**values)


class TestValidIndex:
    def test_accepts_index_with_cadastre(self) -> None:
        cleaned = validate_job_payload(_make_payload())
        assert cleaned.document_source == "index"
        assert cleaned.cadastre == "Cadastre du Québec"

    def test_collapses_whitespace(self) -> None:
        cleaned = validate_job_payload(
            _make_payload(document_number="  1  234\t567 ", circonscription_fonciere="Montréal\n")
        )
        assert cleaned.document_number == "1 234 567"
        assert cleaned.circonscription_fonciere == "Montréal"

    def test_normalizes_source_case(self) -> None:
        assert validate_job_payload(_make_payload(document_source=" INDEX ")).document_source == "index"

    def test_plan_cadastraux_requires_cadastre(self) -> None:
        with pytest.raises(JobValidationError, match="cadastre is required"):
            validate_job_payload(_make_payload(document_source="plan_cadastraux", cadastre="  "))

    def test_index_rejects_acte_type(self) -> None:
        with pytest.raises(JobValidationError, match="acte_type is not allowed"):
            validate_job_payload(_make_payload(acte_type="Acte"))


class TestValidActe:
    def test_accepts_known_acte_type(self) -> None:
        cleaned = validate_job_payload(
            _make_payload(document_source="acte", cadastre=None, acte_type="Radiation")
        )
        assert cleaned.acte_type == "Radiation"

    def test_rejects_unknown_acte_type(self) -> None:
        with pytest.raises(JobValidationError, match="acte_type must be one of"):
            validate_job_payload(_make_payload(document_source="acte", cadastre=None, acte_type="Bail"))

    def test_rejects_missing_acte_type(self) -> None:
        with pytest.raises(JobValidationError):
            validate_job_payload(_make_payload(document_source="acte", cadastre=None))

    def test_rejects_cadastre(self) -> None:
        with pytest.raises(JobValidationError, match="cadastre is not allowed"):
            validate_job_payload(_make_payload(document_source="acte", acte_type="Acte"))


class TestCommonFields:
    def test_unknown_source(self) -> None:
        with pytest.raises(JobValidationError, match="Unknown document_source"):
            validate_job_payload(_make_payload(document_source="registre"))

    def test_blank_number(self) -> None:
        with pytest.raises(JobValidationError, match="document_number is required"):
            validate_job_payload(_make_payload(document_number="   "))

    def test_blank_circonscription(self) -> None:
        with pytest.raises(JobValidationError, match="circonscription_fonciere is required"):
            validate_job_payload(_make_payload(circonscription_fonciere=""))

    def test_validation_errors_are_fatal(self) -> None:
        with pytest.raises(FatalJobError):
            validate_job_payload(_make_payload(document_number=""))
