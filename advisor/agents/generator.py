"""
Answer generators. The generator is an opaque text-in/text-out function:
it receives the fixed policy, the rendered verified data and bounded
history, and returns answer text. Failures surface as GenerationFailed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

import httpx
import ollama

from ..core.errors import GenerationFailed
from ..util.logging import logger


@dataclass
class GenerationRequest:
    policy: str
    facts: str
    question: str
    history: List[Dict[str, str]] = field(default_factory=list)
    corrective_instruction: Optional[str] = None
    rejected_answer: Optional[str] = None

    def to_messages(self) -> List[Dict[str, str]]:
        """Build the chat message list in Ollama format."""
        messages = [{'role': 'system', 'content': self.policy}]
        for turn in self.history:
            messages.append({'role': turn['role'], 'content': turn['content']})
        messages.append({'role': 'user', 'content': f"{self.facts}\n\nQUESTION: {self.question}"})
        if self.corrective_instruction:
            messages.append({'role': 'assistant', 'content': self.rejected_answer or ''})
            messages.append({'role': 'user', 'content': self.corrective_instruction})
        return messages


class TextGenerator(ABC):
    """Base class for answer generators."""

    model_name: str = "unknown"

    @abstractmethod
    def generate(self, request: GenerationRequest) -> str:
        """Return answer text or raise GenerationFailed."""

    def is_available(self) -> bool:
        return True


class OllamaGenerator(TextGenerator):
    """Generator backed by a local Ollama model."""

    def __init__(self, model_name: str, temperature: float = 0.3):
        self.model_name = model_name
        self.temperature = temperature

    def generate(self, request: GenerationRequest) -> str:
        start_time = datetime.now()
        try:
            response = ollama.chat(
                model=self.model_name,
                messages=request.to_messages(),
                options={'temperature': self.temperature, 'top_p': 0.9}
            )
        except ollama.ResponseError as e:
            logger.log_generation(self.model_name, 0, "error", {"error": str(e)})
            raise GenerationFailed(f"Ollama model error: {e.error}")
        except ollama.RequestError as e:
            logger.log_generation(self.model_name, 0, "error", {"error": str(e)})
            raise GenerationFailed(f"Ollama request rejected: {e.error}")
        except (ConnectionError, httpx.HTTPError) as e:
            logger.log_generation(self.model_name, 0, "error", {"error": str(e)})
            raise GenerationFailed("Answer generator is unreachable")

        duration_ms = (datetime.now() - start_time).total_seconds() * 1000
        content = (response['message']['content'] or '').strip()
        if not content:
            logger.log_generation(self.model_name, duration_ms, "empty")
            raise GenerationFailed("Answer generator returned no text")

        logger.log_generation(self.model_name, duration_ms, "success", {"response_length": len(content)})
        return content

    def is_available(self) -> bool:
        """Check if Ollama is reachable and the model is pulled."""
        try:
            models = ollama.list()
        except (ollama.ResponseError, ConnectionError, httpx.HTTPError):
            return False
        names = [m.get('model') or m.get('name') for m in models.get('models', [])]
        return self.model_name in names


class MockGenerator(TextGenerator):
    """
    Deterministic generator for development and tests.

    Without scripted responses it restates the verified data block, which
    keeps every figure exact. Scripted responses are returned in order and
    the last one repeats.
    """

    model_name = "mock-generator"

    def __init__(self, responses: Optional[List[str]] = None):
        self.responses = list(responses or [])
        self.requests: List[GenerationRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def generate(self, request: GenerationRequest) -> str:
        self.requests.append(request)
        if self.responses:
            index = min(len(self.requests), len(self.responses)) - 1
            content = self.responses[index]
        else:
            content = f"Here are the verified figures.\n\n{request.facts}"
        logger.log_generation(self.model_name, 0, "success", {"response_length": len(content)})
        return content
