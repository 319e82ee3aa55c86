"""Agent Q responder: builds generative-content requests for commands and chat.

When no API key is configured the client runs offline and returns the
deterministic simulated replies of the demo persona instead.
"""

import logging
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from .api_gateway import RetryingApiGateway
from .audio import AudioClip, inline_audio_to_wav
from .errors import MalformedResponse, ServiceUnavailable
from .models import GenerateContentResponse

logger = logging.getLogger(__name__)

AGENT_NAME = "Agent Q"
DEFAULT_OPTIMIZE_TARGET = "App Component"

SYSTEM_PROMPT = (
    "You are Agent Q, the assistant inside the QVoiceTxt secure channel. "
    "Answer concisely and directly. If you do not know something, say so briefly."
)


def format_history(history: list[dict]) -> str:
    """Render ``[{sender, text}]`` turns as a plain transcript."""
    return "\n".join(f"{turn['sender']}: {turn['text']}" for turn in history)


class AgentClient:
    """Client for the Agent Q text and speech models."""

    def __init__(
        self,
        gateway: Optional[RetryingApiGateway] = None,
        api_key: str = "",
        api_base_url: str = "https://generativelanguage.googleapis.com/v1beta/models",
        text_model: str = "gemini-2.5-flash-preview-09-2025",
        tts_model: str = "gemini-2.5-flash-preview-tts",
        tts_voice: str = "Kore",
    ):
        self.gateway = gateway
        self.api_key = api_key
        self.api_base_url = api_base_url.rstrip("/")
        self.text_model = text_model
        self.tts_model = tts_model
        self.tts_voice = tts_voice

    @property
    def is_live(self) -> bool:
        """True when requests go to the real API."""
        return self.gateway is not None and bool(self.api_key)

    def endpoint(self, model: str) -> str:
        return f"{self.api_base_url}/{model}:generateContent?key={self.api_key}"

    async def close(self):
        if self.gateway is not None:
            await self.gateway.close()

    async def _generate_text(self, prompt: str) -> str:
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "systemInstruction": {"parts": [{"text": SYSTEM_PROMPT}]},
        }
        text = await self.gateway.call(self.endpoint(self.text_model), payload, expect_text=True)
        return text.strip()

    async def ask(self, question: str, history: Optional[list[dict]] = None) -> str:
        if not self.is_live:
            return (
                f'{AGENT_NAME}: Processing your query: "{question}" with QNN-enhanced search. '
                "My intuitive layer is now scanning for real-time data."
            )
        prompt = question
        if history:
            prompt = f"Conversation so far:\n{format_history(history)}\n\nQuestion: {question}"
        return await self._generate_text(prompt)

    async def summarize(self, history: list[dict]) -> str:
        if not history:
            return f"{AGENT_NAME}: There is nothing to summarize yet."
        if not self.is_live:
            senders = {turn["sender"] for turn in history}
            return (
                f"{AGENT_NAME}: Summary of the last {len(history)} messages between "
                f"{' and '.join(sorted(senders))}. Most recent: \"{history[-1]['text']}\""
            )
        prompt = (
            "Summarize this conversation in three sentences or fewer, "
            f"focusing on decisions and open questions:\n{format_history(history)}"
        )
        return await self._generate_text(prompt)

    async def optimize(self, target: str) -> str:
        target = target or DEFAULT_OPTIMIZE_TARGET
        if not self.is_live:
            return (
                f'{AGENT_NAME}: Initiating QNN-guided optimization analysis for "{target}". '
                "My QNN's intuitive layer identifies bottlenecks, while the instinctive layer "
                "suggests optimal quantum-inspired solutions."
            )
        return await self._generate_text(
            f"List the three most likely performance bottlenecks in \"{target}\" and how to fix each."
        )

    async def weather(self, location: str) -> str:
        if not self.is_live:
            return f"{AGENT_NAME}: Weather telemetry for {location} is unavailable offline. Connect the API for live conditions."
        return await self._generate_text(
            f"Give a one-paragraph current weather report for {location}: temperature, conditions, high and low."
        )

    async def crypto(self, symbol: str) -> str:
        if not self.is_live:
            return f"{AGENT_NAME}: Market feed for {symbol} is unavailable offline. Connect the API for live prices."
        return await self._generate_text(
            f"Give the latest known price and 24h trend for the cryptocurrency {symbol} in one short paragraph."
        )

    async def chat(self, message: str, history: Optional[list[dict]] = None) -> str:
        if not self.is_live:
            return (
                f"{AGENT_NAME}: Your message has been processed by my QNN's intuitive and instinctive layers. "
                "How else can I assist you within the QCOS environment?"
            )
        prompt = message
        if history:
            prompt = f"{format_history(history)}\nuser: {message}"
        return await self._generate_text(prompt)

    async def synthesize_speech(self, text: str) -> AudioClip:
        """Synthesize ``text`` and return it as a WAV clip.

        Raises:
            ServiceUnavailable: Offline, or the API could not be reached
            MalformedResponse: The response carried no audio part
        """
        if not self.is_live:
            raise ServiceUnavailable("Speech synthesis requires an API key")

        payload = {
            "contents": [{"parts": [{"text": f"Say in a calm, clear voice: {text}"}]}],
            "generationConfig": {
                "responseModalities": ["AUDIO"],
                "speechConfig": {
                    "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self.tts_voice}},
                },
            },
        }
        data = await self.gateway.call(self.endpoint(self.tts_model), payload)
        try:
            part = GenerateContentResponse.model_validate(data).first_part()
        except PydanticValidationError as e:
            raise MalformedResponse("Speech response has an unexpected shape") from e
        inline = part.inline_data if part else None
        if inline is None or not inline.mime_type.startswith("audio/"):
            raise MalformedResponse("Speech response did not contain audio")
        logger.debug(f"Received speech audio ({inline.mime_type})")
        return inline_audio_to_wav({"data": inline.data, "mimeType": inline.mime_type})
