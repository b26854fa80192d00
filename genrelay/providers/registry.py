from __future__ import annotations
from typing import Dict, List, Optional

import httpx

try:
    from ..chain import FallbackChainExecutor
    from ..errors import ConfigError
    from ..notifier import ProgressNotifier
    from ..poller import JobPoller
    from ..settings import Settings, load_chain_overrides
    from .base import JOB, SYNC, ProviderCandidate
    from .huggingface import HuggingFaceInferenceProvider, HuggingFaceSpaceProvider
    from .lookup import LookupProvider
    from .media import ElevenLabsProvider, PixabayProvider, RunwayProvider, StabilityProvider
    from .replicate import ReplicateProvider
    from .types import Capability
except ImportError:
    from genrelay.chain import FallbackChainExecutor
    from genrelay.errors import ConfigError
    from genrelay.notifier import ProgressNotifier
    from genrelay.poller import JobPoller
    from genrelay.settings import Settings, load_chain_overrides
    from genrelay.providers.base import JOB, SYNC, ProviderCandidate
    from genrelay.providers.huggingface import HuggingFaceInferenceProvider, HuggingFaceSpaceProvider
    from genrelay.providers.lookup import LookupProvider
    from genrelay.providers.media import ElevenLabsProvider, PixabayProvider, RunwayProvider, StabilityProvider
    from genrelay.providers.replicate import ReplicateProvider
    from genrelay.providers.types import Capability

CHAT_MODELS = ("llama2", "mistral", "flan_t5", "falcon", "gpt2", "bloom")
REPLICATE_CHAT_MODELS = {
    "llama2": "REPLICATE_CHAT_MODEL_LLAMA2",
    "mistral": "REPLICATE_CHAT_MODEL_MISTRAL",
    "gpt5": "REPLICATE_CHAT_MODEL_GPT5",
    "gpt4": "REPLICATE_CHAT_MODEL_GPT4",
    "gpt35": "REPLICATE_CHAT_MODEL_GPT35",
}

# capability -> (env suffix, generic input key)
RUNWAY_MODES = {
    Capability.TEXT_TO_IMAGE: ("TEXT_TO_IMAGE", "prompt"),
    Capability.TEXT_TO_VIDEO: ("TEXT_TO_VIDEO", "prompt"),
    Capability.IMAGE_TO_VIDEO: ("IMAGE_TO_VIDEO", "image_url"),
    Capability.VIDEO_TO_VIDEO: ("VIDEO_TO_VIDEO", "video_url"),
    Capability.VIDEO_UPSCALE: ("VIDEO_UPSCALE", "video_url"),
    Capability.CHARACTER_PERFORMANCE: ("CHARACTER_PERFORMANCE", "video_url"),
}

# capability -> (model env var, replicate input field, generic input key)
REPLICATE_MODES = {
    Capability.TEXT_TO_IMAGE: ("REPLICATE_IMAGE_MODEL", "prompt", "prompt"),
    Capability.IMAGE_RESTORE: ("REPLICATE_UPSCALE_MODEL", "image", "image_url"),
    Capability.VIDEO_CAPTION: ("REPLICATE_VIDEO_CAPTION_MODEL", "video", "video_url"),
    Capability.VIDEO_BURN_CAPTION: ("REPLICATE_VIDEO_CAPTIONED_MODEL", "video", "video_url"),
    Capability.RECONSTRUCT_3D: ("REPLICATE_3D_MODEL", "video", "video_url"),
    Capability.TEXT_TO_SPEECH: ("REPLICATE_TTS_MODEL", "text", "text"),
}


class ProviderRegistry:
    """Builds the ordered fallback candidates of every capability from settings.

    Order follows provider preference: free or cheap inline providers first,
    job-based ones next, and best-effort lookups last. A ``CHAIN_CONFIG`` file
    may reorder or drop candidates per capability.
    """

    def __init__(self, settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.settings = settings
        self._transport = transport
        self.lookup = LookupProvider(transport=transport)
        self._chains = self._default_chains()
        self._apply_overrides(load_chain_overrides(settings.chain_config))

    def _replicate(self, model: Optional[str], **kwargs) -> ReplicateProvider:
        return ReplicateProvider(
            self.settings.get("REPLICATE_API_KEY"),
            model,
            transport=self._transport,
            **kwargs,
        )

    def _runway(self, cap: Capability) -> RunwayProvider:
        suffix, key = RUNWAY_MODES[cap]
        return RunwayProvider(
            self.settings.get("RUNWAY_API_KEY"),
            self.settings.get(f"RUNWAY_URL_{suffix}"),
            self.settings.get(f"RUNWAY_MODEL_{suffix}"),
            input_map={key: key},
            transport=self._transport,
        )

    def _default_chains(self) -> Dict[Capability, List[ProviderCandidate]]:
        s = self.settings
        t = self._transport
        chains: Dict[Capability, List[ProviderCandidate]] = {cap: [] for cap in Capability}

        default_hf = s.get("MODEL") or s.get("HF_URL") or s.get("HF_MODEL")
        hf_urls = {m: s.get(f"MODEL_{m.upper()}") or s.get("HF_URL") for m in CHAT_MODELS}
        hf_urls["default"] = default_hf
        chains[Capability.CHAT_COMPLETION] = [
            ProviderCandidate("hf_space", HuggingFaceSpaceProvider(s.get("HF_SPACE_URL"), transport=t), SYNC),
            ProviderCandidate("hf_api", HuggingFaceInferenceProvider(hf_urls, s.get("HUGGINGFACE_API_KEY"), transport=t), SYNC),
            ProviderCandidate(
                "replicate",
                self._replicate(
                    s.get("REPLICATE_CHAT_MODEL_GPT5"),
                    models={k: s.get(v) for k, v in REPLICATE_CHAT_MODELS.items()},
                    input_map={"prompt": "prompt"},
                ),
                JOB,
            ),
            ProviderCandidate("lookup", self.lookup, SYNC),
        ]

        for cap in RUNWAY_MODES:
            chains[cap].append(ProviderCandidate("runway", self._runway(cap), SYNC))
        for cap, (model_env, field, key) in REPLICATE_MODES.items():
            if cap is Capability.TEXT_TO_SPEECH:
                continue
            chains[cap].append(ProviderCandidate("replicate", self._replicate(s.get(model_env), input_map={field: key}), JOB))
        chains[Capability.TEXT_TO_IMAGE] += [
            ProviderCandidate("stability", StabilityProvider(s.get("STABILITY_KEY"), transport=t), SYNC),
            ProviderCandidate("pixabay", PixabayProvider(s.get("PIXABAY_KEY"), transport=t), SYNC),
        ]

        tts_env, tts_field, tts_key = REPLICATE_MODES[Capability.TEXT_TO_SPEECH]
        chains[Capability.TEXT_TO_SPEECH] = [
            ProviderCandidate(
                "elevenlabs",
                ElevenLabsProvider(
                    s.get("ELEVENLABS_API_KEY"),
                    s.get("ELEVENLABS_VOICE_ID"),
                    api_url=s.get("ELEVENLABS_API_URL"),
                    transport=t,
                ),
                SYNC,
            ),
            ProviderCandidate("replicate", self._replicate(s.get(tts_env), input_map={tts_field: tts_key}), JOB),
        ]

        # "/ai replicate <ENV_VAR> <prompt>": any REPLICATE_* model variable may be named directly
        custom_models = {k: v for k, v in s.env.items() if k.startswith("REPLICATE_") and "MODEL" in k and v}
        chains[Capability.CUSTOM] = [
            ProviderCandidate("replicate", self._replicate(None, models=custom_models, input_map={"prompt": "prompt"}), JOB),
        ]
        return chains

    def _apply_overrides(self, overrides: Dict[str, List[Dict]]) -> None:
        for cap_value, entries in overrides.items():
            cap = Capability(cap_value)
            by_name = {c.name: c for c in self._chains[cap]}
            ordered: List[ProviderCandidate] = []
            for entry in entries:
                cand = by_name.get(entry["provider"])
                if cand is None:
                    raise ConfigError(
                        f"unknown provider {entry['provider']!r} for {cap.value}",
                        [f"{cap.value}: known providers are {', '.join(sorted(by_name)) or 'none'}"],
                    )
                if entry.get("deadline_s") is not None:
                    cand = ProviderCandidate(cand.name, cand.client, cand.kind, float(entry["deadline_s"]))
                ordered.append(cand)
            self._chains[cap] = ordered

    def chains(self) -> Dict[Capability, List[ProviderCandidate]]:
        return {cap: list(cands) for cap, cands in self._chains.items()}

    def get(self, capability: Capability, provider: str) -> ProviderCandidate:
        for cand in self._chains.get(Capability(capability), []):
            if cand.name == provider:
                return cand
        raise KeyError(f"Unknown provider: {provider} for {Capability(capability).value}")

    def build_executor(self) -> FallbackChainExecutor:
        s = self.settings
        poller = JobPoller(poll_interval_s=s.poll_interval_ms / 1000.0, deadline_s=float(s.job_deadline_s))

        def notifier_factory(sink):
            return ProgressNotifier(sink, min_delta=s.notify_min_delta, min_interval_ms=s.notify_min_interval_ms)

        return FallbackChainExecutor(self.chains(), poller=poller, notifier_factory=notifier_factory)
