"""``/api/v0/pin/ls`` served from the ownership store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasicCredentials

from ..types import StoreError, ValidationError
from .helpers import OTHER_PARAM, PIN_LS_ENDPOINT, basic_auth, first_invalid_param, require_user
from .messages import PinLsResponseMessage

if TYPE_CHECKING:
    from fastapi import FastAPI

    from .server import ProxyState

logger = logging.getLogger(__name__)


def register_pin_ls_routes(app: FastAPI, state: ProxyState) -> None:
    metrics = state.metrics

    @app.post(PIN_LS_ENDPOINT)
    async def handle_pin_ls(
        request: Request,
        credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    ):
        """List the user's pins. The backend is not consulted."""
        user = require_user(credentials)

        invalid = first_invalid_param(request.query_params.multi_items())
        if invalid is not None:
            metrics.incr("pin_ls_handler_invalid_query_param", param=OTHER_PARAM)
            logger.error("Invalid query param user=%s param=%s", user, invalid)
            raise ValidationError("no arguments are allowed")

        try:
            hashes = await state.run_store(state.store.list_active_content_by_user, user)
        except StoreError as e:
            metrics.incr("pin_ls_handler_error_db_list_content")
            logger.error("Error listing content user=%s: %s", user, e)
            raise

        metrics.incr("pin_ls_handler_response_codes", code=200)
        return JSONResponse(PinLsResponseMessage.recursive(hashes).to_json())
