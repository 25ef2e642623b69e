"""
Model catalog value objects. These are fetched on demand and cached
read-through; the only writes back to the server are enable/pin toggles.
"""
import logging
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BeforeValidator, Field, RootModel, StrictBool, StrictInt, StrictStr, ValidationError
from pydantic_core import PydanticCustomError

from nanochat.schemas.common import JSONNumber, SnakeWireModel, WireModel
from nanochat.schemas.json_value import JSONValue

logger = logging.getLogger(__name__)

NANOGPT_PROVIDER = "nanogpt"


def _bool_or_flag(value: Any) -> Any:
    # Some endpoints send pinned as 0/1
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return value == 1
    raise PydanticCustomError("bool_type", "Input should be a boolean or 0/1")


FlagBool = Annotated[bool, BeforeValidator(_bool_or_flag)]


class ModelCapabilities(WireModel):
    vision: Optional[StrictBool] = None
    reasoning: Optional[StrictBool] = None
    images: Optional[StrictBool] = None
    video: Optional[StrictBool] = None


class ModelResolution(WireModel):
    value: StrictStr
    label: Optional[StrictStr] = None
    width: Optional[StrictInt] = None
    height: Optional[StrictInt] = None


class ModelParamDefinition(WireModel):
    type: StrictStr
    label: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    default: Optional[JSONValue] = None
    min: Optional[JSONNumber] = None
    max: Optional[JSONNumber] = None
    step: Optional[JSONNumber] = None
    options: Optional[List[JSONValue]] = None


class ModelDefaultSettings(RootModel[Dict[str, JSONValue]]):
    def get(self, key: str) -> Optional[JSONValue]:
        return self.root.get(key)


class UserModel(WireModel):
    model_id: StrictStr
    provider: StrictStr
    enabled: FlagBool
    pinned: FlagBool
    name: Optional[StrictStr] = None
    description: Optional[StrictStr] = None
    capabilities: Optional[ModelCapabilities] = None
    cost_estimate: Optional[JSONNumber] = None
    subscription_included: Optional[StrictBool] = None
    resolutions: Optional[List[ModelResolution]] = None
    additional_params: Optional[Dict[str, ModelParamDefinition]] = None
    max_images: Optional[StrictInt] = None
    default_settings: Optional[ModelDefaultSettings] = None

    @property
    def id(self) -> str:
        return self.model_id

    @property
    def display_name(self) -> str:
        return self.name or self.model_id


class ModelPricing(WireModel):
    prompt: Optional[StrictStr] = None
    completion: Optional[StrictStr] = None
    image: Optional[StrictStr] = None
    request: Optional[StrictStr] = None


class ModelSubscription(WireModel):
    included: StrictBool
    note: Optional[StrictStr] = None


class NanoGPTModelResponse(WireModel):
    """Raw entry of the /api/models listing"""
    id: StrictStr
    name: StrictStr
    description: StrictStr = ""
    enabled: FlagBool = False
    pinned: FlagBool = False
    capabilities: Optional[ModelCapabilities] = None
    pricing: Optional[ModelPricing] = None
    subscription: Optional[ModelSubscription] = None
    resolutions: Optional[List[ModelResolution]] = None
    additional_params: Optional[Dict[str, JSONValue]] = None
    max_images: Optional[StrictInt] = None
    default_settings: Optional[ModelDefaultSettings] = None

    def to_user_model(self) -> UserModel:
        return UserModel(
            model_id=self.id,
            provider=NANOGPT_PROVIDER,
            enabled=self.enabled,
            pinned=self.pinned,
            name=self.name,
            description=self.description,
            capabilities=self.capabilities,
            cost_estimate=_parse_price(self.pricing.prompt if self.pricing else None),
            subscription_included=self.subscription.included if self.subscription else None,
            resolutions=self.resolutions,
            additional_params=self._clean_params(),
            max_images=self.max_images,
            default_settings=self.default_settings,
        )

    def _clean_params(self) -> Optional[Dict[str, ModelParamDefinition]]:
        if not self.additional_params:
            return None
        clean: Dict[str, ModelParamDefinition] = {}
        for key, value in self.additional_params.items():
            # Boolean markers such as requiresSwapImage are not parameters
            if value.bool_value is not None:
                continue
            if value.object_value is None:
                continue
            try:
                clean[key] = ModelParamDefinition.model_validate(value.to_python())
            except ValidationError as e:
                logger.warning(f"Failed to decode param {key} for model {self.id}: {e.error_count()} error(s)")
        return clean or None


def _parse_price(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class ModelInfo(SnakeWireModel):
    id: StrictStr
    name: StrictStr
    description: Optional[StrictStr] = None
    icon_url: Optional[StrictStr] = None
    owned_by: Optional[StrictStr] = None
    context_length: Optional[StrictInt] = None
    max_output_tokens: Optional[StrictInt] = None
    created: Optional[JSONNumber] = None
    pricing: Optional[ModelPricing] = None
    cost_estimate: Optional[JSONNumber] = None
    subscription: Optional[ModelSubscription] = None
    capabilities: Optional[ModelCapabilities] = None


class LlmBenchmark(SnakeWireModel):
    name: StrictStr
    slug: StrictStr
    intelligence: Optional[JSONNumber] = None
    coding: Optional[JSONNumber] = None
    math: Optional[JSONNumber] = None
    speed_tokens_per_second: Optional[JSONNumber] = None


class ImageBenchmark(SnakeWireModel):
    name: StrictStr
    slug: StrictStr
    elo: Optional[JSONNumber] = None
    rank: Optional[StrictInt] = None


class ModelBenchmarks(SnakeWireModel):
    available: StrictBool
    stale: Optional[StrictBool] = None
    source: Optional[StrictStr] = None
    source_url: Optional[StrictStr] = None
    llm: Optional[LlmBenchmark] = None
    image: Optional[ImageBenchmark] = None


class ModelInfoResponse(SnakeWireModel):
    model: ModelInfo
    benchmarks: ModelBenchmarks


class ProviderPricing(WireModel):
    input_per_1k_tokens: JSONNumber = Field(alias="inputPer1kTokens")
    output_per_1k_tokens: JSONNumber = Field(alias="outputPer1kTokens")


class ProviderInfo(WireModel):
    provider: StrictStr
    pricing: ProviderPricing
    available: StrictBool

    @property
    def id(self) -> str:
        return self.provider


class ModelProvidersResponse(WireModel):
    canonical_id: StrictStr
    display_name: StrictStr
    supports_provider_selection: StrictBool
    default_price: Optional[ProviderPricing] = None
    providers: List[ProviderInfo] = Field(default_factory=list)
    error: Optional[StrictStr] = None

    def available_providers(self) -> List[ProviderInfo]:
        return [p for p in self.providers if p.available]


class ModelGroup(WireModel):
    name: str
    models: List[UserModel]


def filter_enabled(models: List[UserModel]) -> List[UserModel]:
    return [m for m in models if m.enabled]


def group_by_provider(models: List[UserModel]) -> List[ModelGroup]:
    """Group by provider: providers holding a pinned model first, then by name"""
    grouped: Dict[str, List[UserModel]] = {}
    for model in models:
        grouped.setdefault(model.provider, []).append(model)

    def provider_key(provider: str):
        has_pinned = any(m.pinned for m in grouped[provider])
        return (not has_pinned, provider)

    def model_key(model: UserModel):
        return (not model.pinned, model.display_name)

    return [
        ModelGroup(name=provider, models=sorted(grouped[provider], key=model_key))
        for provider in sorted(grouped, key=provider_key)
    ]
