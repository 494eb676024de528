from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple, Union


class Role(str, Enum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


@dataclass(frozen=True)
class TextPart:
    text: str = ""


@dataclass(frozen=True)
class FunctionCallPart:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


@dataclass(frozen=True)
class FunctionResponsePart:
    name: str
    response: Dict[str, Any] = field(default_factory=dict)
    call_id: Optional[str] = None


Part = Union[TextPart, FunctionCallPart, FunctionResponsePart]
Content = Union[str, Part, Sequence[Union[str, Part]]]


@dataclass(frozen=True)
class UsageMetadata:
    """Token usage reported by a backend; zero when the backend can't say."""
    prompt_tokens: int = 0
    candidate_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class Turn:
    """
    One message in a conversation.
    Parts keep their order; non-text parts ride along untouched.
    """
    role: Role
    parts: Tuple[Part, ...] = ()
    usage: UsageMetadata = field(default_factory=UsageMetadata)

    def __post_init__(self) -> None:
        if not self.role:
            raise ValueError("Turn role must not be empty")
        if not isinstance(self.role, Role):
            object.__setattr__(self, "role", normalize_role(self.role))
        object.__setattr__(self, "parts", tuple(self.parts))

    @property
    def text(self) -> str:
        return flatten_text(self.parts)

    @property
    def function_calls(self) -> Tuple[FunctionCallPart, ...]:
        return tuple(p for p in self.parts if isinstance(p, FunctionCallPart))


_MODEL_ROLES = {"model", "assistant", "bot", "ai"}
_SYSTEM_ROLES = {"system", "developer"}


def normalize_role(native: Union[str, Role, None]) -> Role:
    """Map a backend role label onto the canonical roles. Unknown labels become USER."""
    if isinstance(native, Role):
        return native
    key = str(native or "").strip().lower()
    if key in _MODEL_ROLES:
        return Role.MODEL
    if key in _SYSTEM_ROLES:
        return Role.SYSTEM
    return Role.USER


def wire_role(role: Role) -> str:
    # chat-completions backends call the model "assistant"
    return "assistant" if role is Role.MODEL else role.value


def flatten_text(parts: Iterable[Union[str, Part]]) -> str:
    out = []
    for p in parts or ():
        if isinstance(p, str):
            out.append(p)
        elif isinstance(p, TextPart):
            out.append(p.text or "")
    return "".join(out)


def to_parts(content: Content) -> Tuple[Part, ...]:
    if content is None:
        return ()
    if isinstance(content, str):
        return (TextPart(content),)
    if isinstance(content, (TextPart, FunctionCallPart, FunctionResponsePart)):
        return (content,)
    return tuple(TextPart(p) if isinstance(p, str) else p for p in content)


def user_turn(content: Content) -> Turn:
    return Turn(Role.USER, to_parts(content))


def model_turn(text: str, usage: Optional[UsageMetadata] = None) -> Turn:
    return Turn(Role.MODEL, (TextPart(text),), usage or UsageMetadata())
