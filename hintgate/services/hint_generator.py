"""Generated hint text collaborator."""
import asyncio
from typing import List
from openai import AsyncOpenAI
from hintgate.core.logging import logger
from hintgate.detection.models import LabelDefinition
from hintgate.services.interfaces import HintGenerator

FALLBACK_EMPTY_HINT = "ヒントを生成できませんでした"
FALLBACK_ERROR_HINT = "ヒント生成エラー"


def build_hint_prompt(prompt: str, label: LabelDefinition, quoted_expression: str, history: List[str]) -> str:
    history_block = ""
    if history:
        history_block = "[Conversation history]\n" + "\n".join(history) + "\n\n"
    return (
        "You write short hints for a person in a live conversation.\n\n"
        f"[Instructions]\n{prompt}\n\n"
        f"[Detected label]\n{label.display_name}\n\n"
        f"[What was actually said]\n{quoted_expression or label.display_name}\n\n"
        f"{history_block}"
        "Follow the instructions and output only the hint, without explanation or preamble."
    )


class OpenAIHintGenerator(HintGenerator):
    """Chat Completions backed hint writer."""

    def __init__(
        self,
        client: AsyncOpenAI,
        prompt: str,
        model: str = "gpt-4o-mini",
        timeout_s: float = 10.0,
        history_limit: int = 10
    ):
        self.client = client
        self.prompt = prompt
        self.model = model
        self.timeout_s = timeout_s
        self.history_limit = history_limit

    async def generate(self, label: LabelDefinition, quoted_expression: str, history: List[str]) -> str:
        recent = history[-self.history_limit:] if self.history_limit else []
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": build_hint_prompt(self.prompt, label, quoted_expression, recent)},
                        {"role": "user", "content": "Write the hint."},
                    ],
                    max_tokens=50,
                    temperature=0.7,
                ),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            logger.warning(f"Hint generation for {label.display_name!r} timed out")
            return FALLBACK_ERROR_HINT
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Hint generation for {label.display_name!r} failed: {e}")
            return FALLBACK_ERROR_HINT

        content = response.choices[0].message.content if response.choices else None
        hint = (content or "").strip()
        return hint or FALLBACK_EMPTY_HINT
