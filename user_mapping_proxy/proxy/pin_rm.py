"""``/api/v0/pin/rm``: unpin for one user without breaking everyone else.

The backend has a single pin set shared by all users. Removing a pin for one
user must therefore only reach the backend when no other user still holds an
active pin on the same content; otherwise the removal is bookkeeping only.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasicCredentials

from ..types import OwnershipError, StoreError, UserHashPair, ValidationError
from .capture import BufferedResponse, relay
from .helpers import (
    OTHER_PARAM,
    PIN_RM_ENDPOINT,
    basic_auth,
    encode_query,
    first_invalid_param,
    require_user,
)
from .messages import PinRmResponseMessage

if TYPE_CHECKING:
    from fastapi import FastAPI

    from .server import ProxyState

logger = logging.getLogger(__name__)

ARG = "arg"


@dataclass
class PinRmPlan:
    """Outcome of reconciling a removal request against current owners.

    ``unowned``: requested hashes the caller holds no active pin on.
    ``forward``: requested hashes no other user holds an active pin on,
    i.e. the ones the backend must actually unpin.
    Both keep request order.
    """
    unowned: list[str]
    forward: list[str]


def reconcile(user: str, requested: list[str], owners: Iterable[UserHashPair]) -> PinRmPlan:
    check = dict.fromkeys(requested)
    forward = dict.fromkeys(requested)
    for pair in owners:
        if pair.user != user:
            # Someone else still needs it pinned upstream.
            forward.pop(pair.hash, None)
            continue
        check.pop(pair.hash, None)
    return PinRmPlan(unowned=list(check), forward=list(forward))


def _success(pins: list[str]) -> JSONResponse:
    return JSONResponse(PinRmResponseMessage(pins=pins).to_json())


def register_pin_rm_routes(app: FastAPI, state: ProxyState) -> None:
    metrics = state.metrics

    @app.post(PIN_RM_ENDPOINT)
    async def handle_pin_rm(
        request: Request,
        credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    ):
        """Unpin content for the user, and on the backend if nobody else pins it."""
        user = require_user(credentials)
        params = request.query_params.multi_items()

        invalid = first_invalid_param(params, {ARG})
        if invalid is not None:
            metrics.incr("pin_rm_handler_invalid_query_param", param=OTHER_PARAM)
            logger.error("Invalid query param user=%s param=%s", user, invalid)
            raise ValidationError("only arg arguments are allowed")

        to_remove = [value for _, value in params]
        if not to_remove:
            metrics.incr("pin_rm_handler_no_args")
            logger.error("No args user=%s", user)
            raise ValidationError('argument "ipfs-path" is required')

        try:
            owners = await state.run_store(state.store.list_active_content_by_hash, to_remove)
        except StoreError as e:
            metrics.incr("pin_rm_handler_error_db_list_content")
            logger.error("Error listing content owners user=%s: %s", user, e)
            raise

        plan = reconcile(user, to_remove, owners)
        if plan.unowned:
            metrics.incr("pin_rm_handler_error_content_not_pinned")
            logger.info("Content not pinned by user=%s hashes=%s", user, plan.unowned)
            raise OwnershipError(plan.unowned)

        try:
            await state.run_store(state.store.remove_content_by_hash_for_user, user, to_remove)
        except StoreError as e:
            metrics.incr("pin_rm_handler_error_db_remove_content")
            logger.error("Error removing content user=%s hashes=%s: %s", user, to_remove, e)
            raise

        metrics.record("pin_rm", requested=len(to_remove), forwarded=len(plan.forward))

        if not plan.forward:
            # Everything is still pinned by other users.
            return _success(to_remove)

        url = state.backend_url(
            PIN_RM_ENDPOINT, encode_query((ARG, h) for h in plan.forward),
        )
        try:
            upstream = await state.client.send(
                state.client.build_request("POST", url), stream=True,
            )
        except httpx.TransportError as e:
            # The store is authoritative; the backend keeps an orphan pin.
            metrics.incr("pin_rm_handler_error_backend_request")
            logger.error("Error requesting backend user=%s hashes=%s: %s", user, plan.forward, e)
            return _success(to_remove)

        code = upstream.status_code
        metrics.incr("pin_rm_handler_response_codes", code=code)

        if code != 200:
            sink = BufferedResponse()
            try:
                await relay(upstream, sink)
            except httpx.TransportError as e:
                metrics.incr("pin_rm_handler_error_relay_backend_response")
                logger.error("Error reading backend error response user=%s: %s", user, e)
            logger.error("Backend pin/rm error user=%s code=%d", user, code)
            return sink.to_response()

        try:
            await upstream.aread()
        except httpx.TransportError as e:
            metrics.incr("pin_rm_handler_error_discard_backend_response")
            logger.error("Error discarding backend response user=%s: %s", user, e)
        finally:
            await upstream.aclose()

        return _success(to_remove)
