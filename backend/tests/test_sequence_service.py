import pytest

from stockflow.errors import ValidationError
from stockflow.models import DocumentSequence
from stockflow.services import sequence_service
from stockflow.services.sequence_service import SEQUENCE_ADJUSTMENT, format_code, next_code


def test_format_code_pads():
    assert format_code("ADJ", 1) == "ADJ-00001"
    assert format_code("TR", 123456) == "TR-123456"
    assert format_code("IT", 7, pad=3) == "IT-007"


def test_next_code_is_monotonic_per_sequence(db_session):
    assert next_code(*SEQUENCE_ADJUSTMENT) == "ADJ-00001"
    assert next_code(*SEQUENCE_ADJUSTMENT) == "ADJ-00002"
    assert next_code(*sequence_service.SEQUENCE_TRANSFER) == "TR-00001"
    db_session.commit()

    counter = db_session.query(DocumentSequence).filter_by(name="adjustment").one()
    assert counter.next_number == 3


def test_rolled_back_allocation_is_released(db_session):
    next_code("scratch", "SC")
    db_session.commit()

    assert next_code("scratch", "SC") == "SC-00002"
    db_session.rollback()

    assert next_code("scratch", "SC") == "SC-00002"
    db_session.commit()


def test_name_and_prefix_required(db_session):
    with pytest.raises(ValidationError):
        next_code("", "X")
    with pytest.raises(ValidationError):
        next_code("x", "")
