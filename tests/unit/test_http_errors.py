import pytest

from booking_engine.api.routes.routes import _http_error
from booking_engine.domain.exceptions import (
    BookingEngineError,
    BookingNotPayableError,
    GatewayUnavailableError,
    InconsistentStateError,
    InsufficientInventoryError,
    InvalidQuantityError,
    UnverifiedWebhookError,
)


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (InvalidQuantityError(0), 422),
        (InsufficientInventoryError("event-1", 5, 4), 409),
        (BookingNotPayableError("already paid"), 409),
        (GatewayUnavailableError("timeout"), 503),
        (UnverifiedWebhookError("bad signature"), 400),
        (InconsistentStateError("missing booking"), 500),
        (BookingEngineError("unclassified"), 500),
    ],
)
def test_domain_errors_map_to_http_status(error, status_code):
    http_error = _http_error(error)

    assert http_error.status_code == status_code
    assert http_error.detail == str(error)
