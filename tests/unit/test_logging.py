import logging
from core.exceptions import RequestValidationError
from core.logging import ContextFormatter, LOG_FORMAT


def make_record(**extra):
    record = logging.LogRecord("ingestion.runner", logging.ERROR, __file__, 1, "Sync failed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_error_context_is_appended():
    error = RequestValidationError("Invalid start_date", context={"field_name": "start_date"})
    
    line = ContextFormatter(LOG_FORMAT).format(make_record(error_context=error.to_dict()))
    
    assert "| ingestion.runner | Sync failed | context=" in line
    assert '"error_type": "RequestValidationError"' in line
    assert '"field_name": "start_date"' in line


def test_plain_records_are_unchanged():
    line = ContextFormatter(LOG_FORMAT).format(make_record())
    
    assert line.endswith("| ingestion.runner | Sync failed")
