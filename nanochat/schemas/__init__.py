from nanochat.schemas.common import (
    DecodeFailure, DecodeResult, WireModel, format_timestamp, parse_timestamp
)
from nanochat.schemas.json_value import JSONKind, JSONValue
from nanochat.schemas.conversation import (
    ConversationResponse, CreateConversationRequest,
    BranchConversationRequest, BranchConversationResponse
)
from nanochat.schemas.message import (
    MessageResponse, MessageImageResponse, MessageDocumentResponse,
    CreateMessageRequest, UpdateMessageContentRequest,
    ImageAttachment, DocumentAttachment,
    GenerateMessageRequest, GenerateMessageResponse,
    FollowUpQuestionsRequest, FollowUpQuestionsResponse
)
from nanochat.schemas.project import (
    ProjectResponse, ProjectMemberResponse, ProjectMemberUser,
    ProjectFileResponse, ProjectFileStorage,
    CreateProjectRequest, UpdateProjectRequest, AddProjectMemberRequest
)
from nanochat.schemas.assistant import AssistantResponse, CreateAssistantRequest
from nanochat.schemas.user_settings import UserSettings, UpdateUserSettingsRequest
from nanochat.schemas.model_catalog import (
    UserModel, ModelCapabilities, ModelResolution, ModelParamDefinition,
    ModelDefaultSettings, NanoGPTModelResponse, ModelInfo, ModelInfoResponse,
    ModelPricing, ModelSubscription, ModelBenchmarks, LlmBenchmark,
    ImageBenchmark, ProviderInfo, ProviderPricing, ModelProvidersResponse,
    ModelGroup, filter_enabled, group_by_provider
)
from nanochat.schemas.records import (
    ConversationRecord, MessageRecord, ConversationFilter, MessageSearch
)
from nanochat.schemas.storage import StorageUploadResponse

__all__ = [
    # Common
    "DecodeFailure", "DecodeResult", "WireModel", "format_timestamp", "parse_timestamp",
    "JSONKind", "JSONValue",
    # Conversation
    "ConversationResponse", "CreateConversationRequest",
    "BranchConversationRequest", "BranchConversationResponse",
    # Message
    "MessageResponse", "MessageImageResponse", "MessageDocumentResponse",
    "CreateMessageRequest", "UpdateMessageContentRequest",
    "ImageAttachment", "DocumentAttachment",
    "GenerateMessageRequest", "GenerateMessageResponse",
    "FollowUpQuestionsRequest", "FollowUpQuestionsResponse",
    # Project
    "ProjectResponse", "ProjectMemberResponse", "ProjectMemberUser",
    "ProjectFileResponse", "ProjectFileStorage",
    "CreateProjectRequest", "UpdateProjectRequest", "AddProjectMemberRequest",
    # Assistant
    "AssistantResponse", "CreateAssistantRequest",
    # Settings
    "UserSettings", "UpdateUserSettingsRequest",
    # Model catalog
    "UserModel", "ModelCapabilities", "ModelResolution", "ModelParamDefinition",
    "ModelDefaultSettings", "NanoGPTModelResponse", "ModelInfo", "ModelInfoResponse",
    "ModelPricing", "ModelSubscription", "ModelBenchmarks", "LlmBenchmark",
    "ImageBenchmark", "ProviderInfo", "ProviderPricing", "ModelProvidersResponse",
    "ModelGroup", "filter_enabled", "group_by_provider",
    # Local records
    "ConversationRecord", "MessageRecord", "ConversationFilter", "MessageSearch",
    # Storage
    "StorageUploadResponse",
]
