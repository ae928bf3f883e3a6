import io
import json
import logging

from storefront.logging_filters import JsonStreamHandler, configure_logging
from storefront.middleware import REQUEST_ID_CTX


def test_configure_logging_installs_one_json_handler():
    logger = configure_logging("INFO")
    configure_logging("DEBUG")

    handlers = [h for h in logger.handlers if isinstance(h, JsonStreamHandler)]
    assert len(handlers) == 1
    assert logger.level == logging.DEBUG
    configure_logging("WARNING")


def test_json_records_carry_the_request_id():
    stream = io.StringIO()
    handler = JsonStreamHandler(stream)
    logger = logging.getLogger("storefront.test_logging")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    token = REQUEST_ID_CTX.set("rid-42")
    try:
        logger.info("order approved", extra={"order_id": "o-1"})
    finally:
        REQUEST_ID_CTX.reset(token)
        logger.removeHandler(handler)

    record = json.loads(stream.getvalue().splitlines()[-1])
    assert record["message"] == "order approved"
    assert record["request_id"] == "rid-42"
    assert record["order_id"] == "o-1"
