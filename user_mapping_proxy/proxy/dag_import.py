"""Interception of ``/api/v0/dag/import`` archive imports."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from fastapi import Depends, Request
from fastapi.security import HTTPBasicCredentials

from ..types import BackendError, Content, DecodeError, StoreError, ValidationError
from .helpers import (
    DAG_IMPORT_ENDPOINT,
    OTHER_PARAM,
    basic_auth,
    encode_query,
    first_invalid_param,
    flag_enabled,
    require_user,
)
from .messages import DAGImportResponseMessage, decode_messages

if TYPE_CHECKING:
    from fastapi import FastAPI

    from .server import ProxyState

logger = logging.getLogger(__name__)

STATS = "stats"
DAG_IMPORT_SUFFIX = " (dag import)"


def stats_enabled(params: Iterable[tuple[str, str]]) -> bool:
    return flag_enabled(params, STATS)


def imported_contents(
    user: str,
    messages: Iterable[DAGImportResponseMessage],
) -> list[Content] | None:
    """Collect the records to store from an import response stream.

    Returns None when the stream ends without a stats message, in which
    case nothing may be stored. Stops reading at the first stats message.

    The backend reports only the total byte count of the request, so every
    root of a multi-archive import is charged the full total.
    """
    cids: list[str] = []
    for msg in messages:
        if msg.root is not None:
            if msg.root.pin_error_msg:
                raise BackendError(msg.root.pin_error_msg, 500)
            cid = msg.root.root_cid()
            if cid is None:
                raise DecodeError("no root CID in response")
            cids.append(cid)

        if msg.stats is not None:
            size = msg.stats.block_bytes_count
            return [
                Content(user=user, hash=cid, name=cid + DAG_IMPORT_SUFFIX, size=size)
                for cid in cids
            ]
    return None


def register_dag_import_routes(app: FastAPI, state: ProxyState) -> None:
    metrics = state.metrics

    @app.post(DAG_IMPORT_ENDPOINT)
    async def handle_dag_import(
        request: Request,
        credentials: HTTPBasicCredentials | None = Depends(basic_auth),
    ):
        """Forward a DAG import and map every imported root to the user."""
        user = require_user(credentials)
        params = request.query_params.multi_items()

        invalid = first_invalid_param(params, {STATS})
        if invalid is not None:
            metrics.incr("dag_import_handler_invalid_query_param", param=OTHER_PARAM)
            logger.error("Invalid query param user=%s param=%s", user, invalid)
            raise ValidationError("only stats argument is allowed")

        query = None
        if any(name == STATS for name, _ in params):
            if not stats_enabled(params):
                metrics.incr("dag_import_handler_invalid_query_param", param=STATS)
                logger.error("Invalid query param user=%s param=%s", user, STATS)
                raise ValidationError("stats argument cannot be false")
        else:
            # Sizes come from the stats message only.
            query = encode_query([*params, (STATS, "true")])

        capture, sink = await state.forward_and_capture(
            request, route="dag_import", user=user, query=query,
        )
        if not capture.ok:
            return sink.to_response()

        try:
            contents = imported_contents(
                user, decode_messages(capture.body, DAGImportResponseMessage),
            )
        except DecodeError as e:
            metrics.incr("dag_import_handler_error_decode_response")
            logger.error(
                "DAG import decode error user=%s body=%r: %s", user, capture.body[:512], e,
            )
            raise
        except BackendError as e:
            metrics.incr("dag_import_handler_pin_error_msg")
            logger.error("DAG import pin error user=%s: %s", user, e)
            raise

        if contents is None:
            metrics.incr("dag_import_handler_no_stats")
            logger.warning("DAG import response has no stats, nothing stored user=%s", user)
            return sink.to_response()

        for content in contents:
            try:
                await state.run_store(state.store.add, content)
            except StoreError as e:
                metrics.incr("dag_import_handler_error_db_add")
                logger.error(
                    "Error adding content to database user=%s hash=%s name=%s size=%d: %s",
                    user, content.hash, content.name, content.size, e,
                )
                raise

        metrics.record(
            "dag_import", roots=len(contents), size=contents[0].size if contents else 0,
        )
        return sink.to_response()
