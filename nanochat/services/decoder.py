"""
DTO decoder: turns raw JSON payloads into typed wire models.

Decoding is pure. Failures surface as SchemaViolation (wrong type, missing
required key, not an object) or MalformedTimestamp (unparseable required
date), both carrying the entity kind, id when known and offending field.
List decoding isolates failures per item so one bad entry never aborts the
rest of the list.
"""
import enum
import json
import logging
from typing import Any, Dict, List, Type, Union

from pydantic import BaseModel, ValidationError

from nanochat.core.exceptions import DecodeError, MalformedTimestamp, SchemaViolation
from nanochat.observability.metrics import inc_counter
from nanochat.schemas import (
    AssistantResponse,
    BranchConversationResponse,
    ConversationResponse,
    FollowUpQuestionsResponse,
    GenerateMessageResponse,
    MessageResponse,
    ModelInfoResponse,
    ModelProvidersResponse,
    NanoGPTModelResponse,
    ProjectFileResponse,
    ProjectMemberResponse,
    ProjectResponse,
    StorageUploadResponse,
    UserModel,
    UserSettings,
)
from nanochat.schemas.common import MALFORMED_TIMESTAMP, DecodeFailure, DecodeResult

logger = logging.getLogger(__name__)


class EntityKind(str, enum.Enum):
    CONVERSATION = "conversation"
    MESSAGE = "message"
    PROJECT = "project"
    PROJECT_MEMBER = "project_member"
    PROJECT_FILE = "project_file"
    ASSISTANT = "assistant"
    USER_SETTINGS = "user_settings"
    USER_MODEL = "user_model"
    CATALOG_MODEL = "catalog_model"
    MODEL_INFO = "model_info"
    MODEL_PROVIDERS = "model_providers"
    GENERATE_MESSAGE = "generate_message"
    BRANCH_CONVERSATION = "branch_conversation"
    FOLLOW_UP_QUESTIONS = "follow_up_questions"
    STORAGE_UPLOAD = "storage_upload"


SCHEMAS: Dict[EntityKind, Type[BaseModel]] = {
    EntityKind.CONVERSATION: ConversationResponse,
    EntityKind.MESSAGE: MessageResponse,
    EntityKind.PROJECT: ProjectResponse,
    EntityKind.PROJECT_MEMBER: ProjectMemberResponse,
    EntityKind.PROJECT_FILE: ProjectFileResponse,
    EntityKind.ASSISTANT: AssistantResponse,
    EntityKind.USER_SETTINGS: UserSettings,
    EntityKind.USER_MODEL: UserModel,
    EntityKind.CATALOG_MODEL: NanoGPTModelResponse,
    EntityKind.MODEL_INFO: ModelInfoResponse,
    EntityKind.MODEL_PROVIDERS: ModelProvidersResponse,
    EntityKind.GENERATE_MESSAGE: GenerateMessageResponse,
    EntityKind.BRANCH_CONVERSATION: BranchConversationResponse,
    EntityKind.FOLLOW_UP_QUESTIONS: FollowUpQuestionsResponse,
    EntityKind.STORAGE_UPLOAD: StorageUploadResponse,
}


def _entity_id(payload: Any) -> Union[str, None]:
    if isinstance(payload, dict):
        value = payload.get("id")
        if isinstance(value, str):
            return value
    return None


def _translate(exc: ValidationError, kind: EntityKind, payload: Any) -> DecodeError:
    entity_id = _entity_id(payload)
    errors = exc.errors()
    for err in errors:
        if err["type"] == MALFORMED_TIMESTAMP:
            return MalformedTimestamp(
                "Cannot decode ISO 8601 date string",
                entity_kind=kind.value,
                entity_id=entity_id,
                field=".".join(str(p) for p in err["loc"]),
            )
    first = errors[0]
    field = ".".join(str(p) for p in first["loc"]) or None
    return SchemaViolation(
        first["msg"],
        entity_kind=kind.value,
        entity_id=entity_id,
        field=field,
    )


def decode(kind: EntityKind, payload: Any) -> Any:
    """Decode one payload into the DTO registered for `kind`"""
    schema = SCHEMAS[kind]
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        error = _translate(e, kind, payload)
        inc_counter("decode_failures_total", kind=kind.value, error=type(error).__name__)
        logger.warning(f"Decode failed: {error}")
        raise error from e


def decode_list(kind: EntityKind, payloads: Any) -> DecodeResult:
    """Decode a list payload, isolating failures per item"""
    if not isinstance(payloads, list):
        raise SchemaViolation(
            f"Expected a list of {kind.value} payloads, got {type(payloads).__name__}",
            entity_kind=kind.value,
        )
    result: DecodeResult = DecodeResult()
    for index, payload in enumerate(payloads):
        try:
            result.items.append(decode(kind, payload))
        except DecodeError as e:
            result.failures.append(DecodeFailure(index=index, error=e, payload=payload))
    if result.failures:
        logger.warning(
            f"Decoded {len(result.items)}/{len(payloads)} {kind.value} item(s); "
            f"{len(result.failures)} skipped"
        )
    return result


def decode_json(kind: EntityKind, raw: Union[str, bytes]) -> Any:
    """Decode raw JSON text; lists are decoded with per-item isolation"""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise SchemaViolation(f"Invalid JSON: {e}", entity_kind=kind.value) from e
    if isinstance(payload, list):
        return decode_list(kind, payload)
    return decode(kind, payload)


def decode_catalog(payloads: Any) -> DecodeResult:
    """Decode the raw /api/models listing into UserModel entries"""
    raw = decode_list(EntityKind.CATALOG_MODEL, payloads)
    models: List[UserModel] = [item.to_user_model() for item in raw.items]
    return DecodeResult(items=models, failures=raw.failures)
