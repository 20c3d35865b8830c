"""Redaction of sensitive values in JSON payloads and free-form log text.

:class:`SensitiveDataMasker` takes two paths. Text that parses as JSON is
walked structurally and every member whose key matches a configured field
name (exact match, case-insensitive) has its value replaced by
:data:`MASKED_VALUE`, whatever its type. Text that does not parse goes through
a regex pass that redacts ``"name": value`` and ``name=value`` shapes plus
card-number sequences. The regex pass is best effort: it cannot recognise
every way a secret can be written into unstructured text.

Neither path raises. A masker is immutable once built and may be shared
between concurrent requests.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

import orjson

if TYPE_CHECKING:
    from ..config import Settings

MASKED_VALUE: Final[str] = "***MASKED***"

DEFAULT_SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "password",
        "pwd",
        "secret",
        "token",
        "accessToken",
        "refreshToken",
        "apiKey",
        "api_key",
        "authorization",
        "auth",
        "credential",
        "creditCard",
        "credit_card",
        "cardNumber",
        "card_number",
        "cvv",
        "cvc",
        "pin",
        "otp",
        "ssn",
        "socialSecurity",
        "tckn",
        "tcKimlikNo",
        "identityNumber",
        "nationalId",
        "privateKey",
        "private_key",
        "connectionString",
        "connection_string",
    }
)

_CREDIT_CARD_PATTERN = re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b")
_EMAIL_PATTERN = re.compile(r"\b([\w.-]+)@([\w.-]+\.\w+)\b")
_PHONE_PATTERN = re.compile(r"(?<![\w+])(?:\+90|0)?5\d{9}\b")
_IBAN_PATTERN = re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{11,30}\b")

# orjson reads integers outside the int64/uint64 range as floats.
_INTEGER_RANGE = (-(2**63), 2**64 - 1)
_LONG_DIGITS_PATTERN = re.compile(r"\d{19,}")
_JSON_TOKEN_PATTERN = re.compile(
    r'"(?:[^"\\]|\\.)*"|(?P<number>-?\d+)(?P<fraction>[.eE][-+.eE\d]*)?'
)

_ANSI_ESCAPE_PATTERN = re.compile(
    r"""
    (?:\x1b\[|\x9b)[0-?]*[ -/]*[@-~]     # CSI: colours, cursor movement
    | \x1b\][^\x07\x1b]*(?:\x07|\x1b\\)  # OSC, terminated by BEL or ST
    | \x1b[@-_]                          # remaining two-byte escapes
    """,
    re.VERBOSE,
)

# Quoted string (possibly cut off by truncation) or a bare scalar.
_MEMBER_VALUE = r"""(?:"(?:[^"\\]|\\.)*(?:"|$)|'(?:[^'\\]|\\.)*(?:'|$)|[^\s,{}\[\]"']+)"""


def _mask_card(match: re.Match[str]) -> str:
    digits = re.sub(r"\D", "", match.group(0))
    return f"****-****-****-{digits[-4:]}"


def _mask_email(match: re.Match[str]) -> str:
    local, domain = match.group(1), match.group(2)
    if len(local) > 2:
        return f"{local[:2]}***@{domain}"
    return f"***@{domain}"


def _mask_phone(match: re.Match[str]) -> str:
    return f"***{match.group(0)[-4:]}"


def _mask_iban(match: re.Match[str]) -> str:
    value = match.group(0)
    return f"{value[:4]}***{value[-4:]}"


def _try_parse_json(text: str) -> tuple[bool, Any]:
    try:
        return True, orjson.loads(text)
    except orjson.JSONDecodeError:
        return False, None


def _has_wide_integer(text: str) -> bool:
    """Return True when ``text`` holds an integer literal outside 64 bits."""

    if not _LONG_DIGITS_PATTERN.search(text):
        return False
    for match in _JSON_TOKEN_PATTERN.finditer(text):
        number = match.group("number")
        if number is None or match.group("fraction"):
            continue
        if len(number.lstrip("-")) > 20:
            return True
        if not _INTEGER_RANGE[0] <= int(number) <= _INTEGER_RANGE[1]:
            return True
    return False


def _try_render_json(document: Any) -> tuple[bool, str]:
    try:
        return True, orjson.dumps(document).decode("utf-8")
    except orjson.JSONEncodeError:
        # orjson refuses documents nested deeper than it can serialise.
        return False, ""


def sanitize_for_logging(text: str | None) -> str | None:
    """Strip line breaks and terminal escape sequences from ``text``.

    Removing CR/LF stops a value from forging extra log lines; removing ANSI
    sequences stops it from driving the terminal that renders the logs. Every
    other character is kept in its original order.
    """

    if not text:
        return text
    without_breaks = text.replace("\r", "").replace("\n", "")
    return _ANSI_ESCAPE_PATTERN.sub("", without_breaks).replace("\x1b", "")


@dataclass(frozen=True)
class SensitiveDataOptions:
    """Immutable masking configuration.

    The value-pattern switches only affect values whose key is *not* a
    sensitive field. They are off by default so that masking JSON changes
    nothing but the sensitive members.
    """

    sensitive_fields: frozenset[str] = DEFAULT_SENSITIVE_FIELDS
    mask_credit_cards: bool = False
    mask_emails: bool = False
    mask_phone_numbers: bool = False
    mask_ibans: bool = False

    def __post_init__(self) -> None:
        cleaned = frozenset(
            name.strip() for name in self.sensitive_fields if name and name.strip()
        )
        object.__setattr__(self, "sensitive_fields", cleaned)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "SensitiveDataOptions":
        base: Iterable[str] = (
            settings.sensitive_fields
            if settings.sensitive_fields is not None
            else DEFAULT_SENSITIVE_FIELDS
        )
        return cls(sensitive_fields=frozenset(base) | frozenset(settings.sensitive_fields_extra))


class SensitiveDataMasker:
    """Mask configured field names in JSON and log text."""

    def __init__(self, options: SensitiveDataOptions | None = None) -> None:
        self._options = options or SensitiveDataOptions()
        self._fields = frozenset(name.casefold() for name in self._options.sensitive_fields)
        self._member_pattern: re.Pattern[str] | None = None
        self._assignment_pattern: re.Pattern[str] | None = None
        if self._options.sensitive_fields:
            names = "|".join(
                re.escape(name)
                for name in sorted(self._options.sensitive_fields, key=len, reverse=True)
            )
            self._member_pattern = re.compile(
                r"""(?P<key>(?P<quote>["'])(?:""" + names + r""")(?P=quote)\s*:\s*)"""
                + _MEMBER_VALUE,
                re.IGNORECASE,
            )
            self._assignment_pattern = re.compile(
                r"(?<![\w.-])(?P<key>" + names + r")=[^&\s\"',;]*",
                re.IGNORECASE,
            )

    @property
    def options(self) -> SensitiveDataOptions:
        return self._options

    def is_sensitive_field(self, name: Any) -> bool:
        return isinstance(name, str) and name.casefold() in self._fields

    def mask_json(self, text: str | None) -> str | None:
        """Return ``text`` with every sensitive member's value redacted."""

        if not text:
            return text
        parsed, document = _try_parse_json(text)
        if parsed and not _has_wide_integer(text):
            rendered, masked = _try_render_json(self._mask_document(document))
            if rendered:
                return masked
        # Not JSON, holds integers orjson would turn into floats, or too deeply
        # nested to re-serialise.
        return self.mask_text(text)

    def mask_text(self, text: str | None) -> str | None:
        """Best-effort redaction for text that is not valid JSON."""

        if not text:
            return text
        result = text
        if self._member_pattern is not None:
            result = self._member_pattern.sub(self._replace_member, result)
        if self._assignment_pattern is not None:
            result = self._assignment_pattern.sub(
                lambda match: f"{match.group('key')}={MASKED_VALUE}", result
            )
        return self._mask_patterns(result, force_cards=True)

    def mask_dictionary(self, values: Mapping[str, Any] | None) -> dict[str, Any]:
        """Return a copy of a flat mapping (headers, form fields) with secrets masked."""

        if not values:
            return {}
        masked: dict[str, Any] = {}
        for key, value in values.items():
            if self.is_sensitive_field(key):
                masked[key] = MASKED_VALUE
            elif isinstance(value, str):
                masked[key] = self._mask_patterns(value)
            else:
                masked[key] = value
        return masked

    def mask_value(self, value: Any, key: Any = None) -> Any:
        """Redact sensitive keys inside already decoded Python structures."""

        if key is not None and self.is_sensitive_field(key):
            return MASKED_VALUE
        if isinstance(value, Mapping):
            return {k: self.mask_value(v, k) for k, v in value.items()}
        if hasattr(value, "_fields") and isinstance(value, tuple):
            # Named tuples take their fields positionally.
            return type(value)(
                *(self.mask_value(item, name) for name, item in zip(value._fields, value))
            )
        if isinstance(value, (list, tuple, set, frozenset)):
            masked = [self.mask_value(item) for item in value]
            if isinstance(value, list):
                return masked
            if isinstance(value, tuple):
                return tuple(masked)
            if isinstance(value, frozenset):
                return frozenset(masked)
            return set(masked)
        if isinstance(value, str):
            return self._mask_patterns(value)
        return value

    def sanitize_for_logging(self, text: str | None) -> str | None:
        return sanitize_for_logging(text)

    def _mask_document(self, document: Any) -> Any:
        if isinstance(document, str):
            return self._mask_patterns(document)
        pending = [document]
        while pending:
            node = pending.pop()
            if isinstance(node, dict):
                for key, value in node.items():
                    if self.is_sensitive_field(key):
                        node[key] = MASKED_VALUE
                    else:
                        node[key] = self._visit(value, pending)
            elif isinstance(node, list):
                for index, item in enumerate(node):
                    node[index] = self._visit(item, pending)
        return document

    def _visit(self, value: Any, pending: list[Any]) -> Any:
        if isinstance(value, (dict, list)):
            pending.append(value)
            return value
        if isinstance(value, str):
            return self._mask_patterns(value)
        return value

    def _replace_member(self, match: re.Match[str]) -> str:
        quote = match.group("quote")
        return f"{match.group('key')}{quote}{MASKED_VALUE}{quote}"

    def _mask_patterns(self, text: str, *, force_cards: bool = False) -> str:
        options = self._options
        if options.mask_credit_cards or force_cards:
            text = _CREDIT_CARD_PATTERN.sub(_mask_card, text)
        if options.mask_emails:
            text = _EMAIL_PATTERN.sub(_mask_email, text)
        if options.mask_phone_numbers:
            text = _PHONE_PATTERN.sub(_mask_phone, text)
        if options.mask_ibans:
            text = _IBAN_PATTERN.sub(_mask_iban, text)
        return text

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(fields={len(self._fields)})"


DEFAULT_MASKER: Final[SensitiveDataMasker] = SensitiveDataMasker()
