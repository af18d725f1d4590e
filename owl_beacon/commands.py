"""Text command dispatch for the ``cmd`` channel.

One inbound payload is one command line: a command name followed by
space-separated arguments whose types are fixed when the command is
registered. Every payload yields exactly one response string, capped at the
configured size. Malformed input produces a ``parse error: ...`` response
instead of an exception.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Sequence, Tuple, Union

if TYPE_CHECKING:
    from .reboot import RebootTimer

LOGGER = logging.getLogger(__name__)

CommandHandler = Callable[..., str]

UINT64_MAX = 2**64 - 1
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_WHITESPACE = " \t"
_UNSIGNED_RE = re.compile(r"\d+")
_SIGNED_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", '"': '"', "\\": "\\"}


class CommandConfigurationError(RuntimeError):
    """Raised when the command registry is configured incorrectly."""


class CommandParseError(ValueError):
    """Raised when an inbound command line cannot be matched or decoded."""


class ArgType(str, Enum):
    STRING = "s"
    UNSIGNED = "u"
    SIGNED = "i"
    FLOAT = "d"

    @property
    def label(self) -> str:
        return _TYPE_LABELS[self]


_TYPE_LABELS = {
    ArgType.STRING: "string",
    ArgType.UNSIGNED: "unsigned integer",
    ArgType.SIGNED: "signed integer",
    ArgType.FLOAT: "float",
}


@dataclass(frozen=True, slots=True)
class CommandSignature:
    name: str
    arg_types: Tuple[ArgType, ...]
    handler: CommandHandler


@dataclass(slots=True)
class CommandInvocation:
    signature: CommandSignature
    args: List[Any]

    @property
    def name(self) -> str:
        return self.signature.name


def _coerce_arg_types(arg_types: Union[str, Sequence[ArgType]]) -> Tuple[ArgType, ...]:
    try:
        return tuple(ArgType(code) for code in arg_types)
    except ValueError as exc:
        raise CommandConfigurationError(f"Unknown argument type in {arg_types!r}") from exc


def _token_end(text: str, pos: int) -> int:
    end = pos
    while end < len(text) and text[end] not in _WHITESPACE:
        end += 1
    return end


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def _read_quoted(text: str, pos: int) -> Tuple[str, int]:
    chars: List[str] = []
    index = pos + 1
    while index < len(text):
        char = text[index]
        if char == "\\" and index + 1 < len(text):
            following = text[index + 1]
            chars.append(_ESCAPES.get(following, following))
            index += 2
            continue
        if char == '"':
            return "".join(chars), index + 1
        chars.append(char)
        index += 1
    raise ValueError("unterminated string")


def _decode_arg(arg_type: ArgType, text: str, pos: int) -> Tuple[Any, int]:
    if arg_type is ArgType.STRING:
        if text[pos] == '"':
            return _read_quoted(text, pos)
        end = _token_end(text, pos)
        return text[pos:end], end

    end = _token_end(text, pos)
    token = text[pos:end]

    if arg_type is ArgType.UNSIGNED:
        if not _UNSIGNED_RE.fullmatch(token):
            raise ValueError(token)
        value = int(token, 10)
        if value > UINT64_MAX:
            raise ValueError(token)
        return value, end

    if arg_type is ArgType.SIGNED:
        if not _SIGNED_RE.fullmatch(token):
            raise ValueError(token)
        value = int(token, 10)
        if not INT64_MIN <= value <= INT64_MAX:
            raise ValueError(token)
        return value, end

    if not _FLOAT_RE.fullmatch(token):
        raise ValueError(token)
    return float(token), end


class CommandDispatcher:
    """Registry of named commands plus the parse/dispatch pipeline.

    Commands are registered during startup; :meth:`seal` freezes the registry.
    """

    def __init__(self, *, max_response_size: int = 64) -> None:
        if max_response_size < 1:
            raise CommandConfigurationError("max_response_size must be positive")
        self._max_response_size = max_response_size
        self._commands: Dict[str, CommandSignature] = {}
        self._sealed = False

    @property
    def max_response_size(self) -> int:
        return self._max_response_size

    @property
    def commands(self) -> Tuple[str, ...]:
        return tuple(self._commands)

    def register(
        self,
        name: str,
        arg_types: Union[str, Sequence[ArgType]],
        handler: CommandHandler,
    ) -> CommandSignature:
        if self._sealed:
            raise CommandConfigurationError(
                f"Cannot register '{name}': command registry is sealed"
            )
        key = name.strip().lower()
        if not key or any(char in _WHITESPACE for char in key):
            raise CommandConfigurationError(f"Invalid command name {name!r}")
        if key in self._commands:
            raise CommandConfigurationError(f"Command '{key}' already registered")

        signature = CommandSignature(
            name=key, arg_types=_coerce_arg_types(arg_types), handler=handler
        )
        self._commands[key] = signature
        return signature

    def seal(self) -> None:
        self._sealed = True

    @staticmethod
    def normalize(payload: Union[bytes, str]) -> str:
        if isinstance(payload, bytes):
            text = payload.decode("utf-8", errors="replace")
        else:
            text = payload
        return text.replace("\x00", "").rstrip("\r\n").lower()

    def parse(self, text: str) -> CommandInvocation:
        start = _skip_whitespace(text, 0)
        name_end = _token_end(text, start)
        name = text[start:name_end]

        signature = self._commands.get(name)
        if signature is None:
            raise CommandParseError(f"parse error: unknown command name {name}")

        args: List[Any] = []
        pos = name_end
        for index, arg_type in enumerate(signature.arg_types, start=1):
            next_pos = _skip_whitespace(text, pos)
            if next_pos >= len(text):
                raise CommandParseError(f"parse error: missing arg {index}")
            if next_pos == pos:
                raise CommandParseError(
                    f"parse error: missing whitespace before arg {index}"
                )
            try:
                value, pos = _decode_arg(arg_type, text, next_pos)
            except ValueError as exc:
                raise CommandParseError(
                    f"parse error: invalid {arg_type.label} for arg {index}"
                ) from exc
            args.append(value)

        if text[pos:].strip(_WHITESPACE):
            raise CommandParseError("parse error: too many args")

        return CommandInvocation(signature=signature, args=args)

    def dispatch(self, payload: Union[bytes, str]) -> str:
        """Run one command line and return its (size-capped) response."""

        text = self.normalize(payload)
        LOGGER.info('Received command: "%s"', text)

        try:
            invocation = self.parse(text)
        except CommandParseError as exc:
            LOGGER.warning("Rejected command %r: %s", text, exc)
            return self._cap(str(exc))

        try:
            response = invocation.signature.handler(*invocation.args)
        except Exception:
            LOGGER.exception("Command '%s' failed", invocation.name)
            return self._cap(f"error: {invocation.name} failed")

        return self._cap("" if response is None else str(response))

    def _cap(self, response: str) -> str:
        if len(response) <= self._max_response_size:
            return response
        LOGGER.warning(
            "Response of %d characters truncated to %d",
            len(response),
            self._max_response_size,
        )
        return response[: self._max_response_size]


def register_builtin_commands(
    dispatcher: CommandDispatcher, reboot_timer: RebootTimer
) -> None:
    """Register the agent's stock commands: hello, helloadd, helloecho, reset."""

    def hello() -> str:
        return "world"

    def helloadd(first: int, second: int) -> str:
        return f"The Answer is: {first + second}"

    def helloecho(text: str) -> str:
        return text

    def reset() -> str:
        reboot_timer.arm()
        return (
            f"Rebooting in {reboot_timer.delay_seconds:g} seconds ... "
            "[please standby]: "
        )

    dispatcher.register("hello", "", hello)
    dispatcher.register("helloadd", "uu", helloadd)
    dispatcher.register("helloecho", "s", helloecho)
    dispatcher.register("reset", "", reset)
