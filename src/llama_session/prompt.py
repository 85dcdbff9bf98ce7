"""Prompt formatting for instruction-tuned chat models."""

from __future__ import annotations

from dataclasses import dataclass

# Llama 3 chat markers. BOS (<|begin_of_text|>) is not part of the template;
# the tokenizer adds it when add_special is enabled.
START_HEADER = "<|start_header_id|>"
END_HEADER = "<|end_header_id|>"
END_OF_TURN = "<|eot_id|>"


def translation_instruction(source: str = "English", target: str = "French") -> str:
    return (
        f"You are a translator. Translate the user's {source} text into {target}. "
        f"Output ONLY the {target} translation, nothing else."
    )


DEFAULT_SYSTEM_PROMPT = translation_instruction()


def _turn(role: str, content: str) -> str:
    return f"{START_HEADER}{role}{END_HEADER}\n\n{content}{END_OF_TURN}"


@dataclass(frozen=True)
class PromptTemplate:
    """Fixed system instruction plus user text, in the model's turn format.

    The formatted prompt ends with an open assistant header so the model
    continues with its reply.
    """

    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    def format(self, user_text: str) -> str:
        return (
            _turn("system", self.system_prompt)
            + _turn("user", user_text)
            + f"{START_HEADER}assistant{END_HEADER}\n\n"
        )


def translation_template(source: str = "English", target: str = "French") -> PromptTemplate:
    """Template that translates ``source`` text into ``target``."""
    return PromptTemplate(system_prompt=translation_instruction(source, target))
