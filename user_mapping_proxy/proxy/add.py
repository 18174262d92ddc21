"""Interception of ``/api/v0/add`` uploads."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.security import HTTPBasicCredentials

from ..types import Content, DecodeError, StoreError, ValidationError
from .helpers import (
    ADD_ENDPOINT,
    OTHER_PARAM,
    basic_auth,
    first_invalid_param,
    flag_enabled,
    require_user,
)
from .messages import AddResponseMessage, decode_messages

if TYPE_CHECKING:
    from fastapi import FastAPI

    from .server import ProxyState

logger = logging.getLogger(__name__)

WRAP_WITH_DIRECTORY = "wrap-with-directory"
WRAPPED_SUFFIX = " (wrapped)"


def wrap_with_directory(params) -> bool:
    return flag_enabled(params, WRAP_WITH_DIRECTORY)


def canonical_content(
    user: str,
    messages: list[AddResponseMessage],
    wrapped: bool,
) -> Content:
    """Pick the record to store for one upload.

    The backend reports one entry per file, then the enclosing directory,
    then (with ``wrap-with-directory``) the wrapper. The last entry is the
    root of what was uploaded, so its hash and size are the ones that count.
    A wrapper has no name of its own; it is named after the first entry.
    """
    if not messages:
        raise DecodeError("no response message")

    last = messages[-1]
    name = messages[0].name + WRAPPED_SUFFIX if wrapped else last.name
    return Content(user=user, hash=last.hash, name=name, size=last.size_int())


def register_add_routes(app: FastAPI, state: ProxyState) -> None:
    metrics = state.metrics

    @app.post(ADD_ENDPOINT)
    async def handle_add(
        request: Request,
        credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    ):
        """Forward an upload and map the resulting root hash to the user."""
        user = require_user(credentials)
        params = request.query_params.multi_items()

        invalid = first_invalid_param(params, {WRAP_WITH_DIRECTORY})
        if invalid is not None:
            metrics.incr("add_handler_invalid_query_param", param=OTHER_PARAM)
            logger.error("Invalid query param user=%s param=%s", user, invalid)
            raise ValidationError("only wrap-with-directory argument is allowed")

        capture, sink = await state.forward_and_capture(request, route="add", user=user)
        if not capture.ok:
            return sink.to_response()

        try:
            messages = list(decode_messages(capture.body, AddResponseMessage))
            content = canonical_content(user, messages, wrap_with_directory(params))
        except DecodeError as e:
            metrics.incr("add_handler_error_decode_response")
            logger.error(
                "Add response decode error user=%s body=%r: %s", user, capture.body[:512], e,
            )
            raise

        try:
            await state.run_store(state.store.add, content)
        except StoreError as e:
            metrics.incr("add_handler_error_db_add")
            # The backend already has the content; only the mapping is missing.
            logger.error(
                "Error adding content to database user=%s hash=%s name=%s size=%d: %s",
                user, content.hash, content.name, content.size, e,
            )
            raise

        metrics.record("add", size=content.size)
        return sink.to_response()
