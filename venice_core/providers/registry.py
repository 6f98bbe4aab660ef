"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体模型 ID”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "chat"。
- provider_model：Venice 实际提供的模型 ID，例如 "llama-3.3-70b"。

上层只关心逻辑名，具体用哪个底层模型由这里集中配置，便于后续升级或切换。
未登记的名称由 resolve_model 原样透传，方便多模型对比时直接写模型 ID。"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: Optional[int] = None
    default_temperature: Optional[float] = None


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


VENICE_CONFIG = ProviderConfig(
    name="venice",
    base_url="https://api.venice.ai/api/v1",
    models={
        "chat": ModelConfig(
            logical_name="chat",
            provider_model="llama-3.3-70b",
            max_tokens=4096,
            default_temperature=0.7,
        ),
        "chat-fast": ModelConfig(
            logical_name="chat-fast",
            provider_model="qwen3-4b",
            max_tokens=2048,
            default_temperature=0.7,
        ),
        "image": ModelConfig(
            logical_name="image",
            provider_model="venice-sd35",
        ),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "venice": VENICE_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def resolve_model(name: str, provider: ProviderConfig = VENICE_CONFIG) -> ModelConfig:
    """逻辑名 -> ModelConfig；未登记的名称视为真实模型 ID。"""

    cfg = provider.models.get(name)
    if cfg is not None:
        return cfg
    return ModelConfig(logical_name=name, provider_model=name)
