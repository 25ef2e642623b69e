from __future__ import annotations

import logging

from nanochat.observability.context import (
    request_id_ctx,
    entity_kind_ctx,
    conversation_id_ctx,
)


class ContextFilter(logging.Filter):
    """Injects request id, entity kind and conversation id into every LogRecord."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_ctx.get() or "-"
        record.entity_kind = entity_kind_ctx.get() or "-"
        record.conversation_id = conversation_id_ctx.get() or "-"
        return True
