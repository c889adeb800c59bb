# Copyright (c) Microsoft. All rights reserved.

"""Settings for the group chat orchestrator.

``load_settings()`` fills a ``TypedDict`` from keyword overrides, the process
environment, a ``.env`` file and defaults. ``GroupChatSettings`` declares the
limits ``GroupChat`` reads at construction.

Usage::

    settings = load_settings(
        GroupChatSettings,
        env_prefix="GROUPCHAT_",
        defaults=GROUP_CHAT_DEFAULTS,
        max_round=20,
    )
    settings["max_round"]  # 20
    settings["retry_delay"]  # GROUPCHAT_RETRY_DELAY if set, else 1.0
"""

import os
from collections.abc import Mapping, Sequence
from contextlib import suppress
from typing import Any, TypedDict, TypeVar, get_args, get_origin, get_type_hints

from dotenv import load_dotenv

from ._logging import get_logger
from .exceptions import GroupChatValidationError, SettingNotFoundError

__all__ = ["GROUP_CHAT_DEFAULTS", "GroupChatSettings", "load_settings"]

logger = get_logger("agent_groupchat.settings")

SettingsT = TypeVar("SettingsT")


class GroupChatSettings(TypedDict, total=False):
    """Limits applied by the group chat orchestrator.

    Environment variables use the ``GROUPCHAT_`` prefix, e.g. ``GROUPCHAT_MAX_ROUND``.

    Keys:
        max_round: Round budget used when ``run`` is called without one.
        max_attempts: Total attempts for a reply when the provider reports a transient error.
        retry_delay: Base delay in seconds between transient retries, multiplied by the attempt number.
        speaker_selection_attempts: Total role-play arbitration attempts before giving up.
        arbitration_max_tokens: Token cap for the admin's arbitration reply.
    """

    max_round: int
    max_attempts: int
    retry_delay: float
    speaker_selection_attempts: int
    arbitration_max_tokens: int


GROUP_CHAT_DEFAULTS: GroupChatSettings = {
    "max_round": 10,
    "max_attempts": 3,
    "retry_delay": 1.0,
    "speaker_selection_attempts": 3,
    "arbitration_max_tokens": 128,
}


def _coerce_value(value: str, target_type: Any) -> Any:
    """Convert an environment string to the annotated type."""
    args = get_args(target_type)

    # Handle Optional types (e.g., int | None): try each non-None arm
    if args and type(None) in args:
        for arg in args:
            if arg is not type(None):
                with suppress(ValueError, TypeError):
                    return _coerce_value(value, arg)
        return value

    if target_type is str:
        return value
    if target_type is bool:
        return value.lower() in ("true", "1", "yes", "on")
    if target_type is int:
        return int(value)
    if target_type is float:
        return float(value)

    return value


def _check_override_type(value: Any, field_type: Any, field_name: str) -> None:
    """Validate that an explicit override is compatible with the annotated type."""
    origin = get_origin(field_type)
    allowed = tuple(a for a in get_args(field_type) if isinstance(a, type)) if origin else (field_type,)
    if not allowed or not all(isinstance(a, type) for a in allowed):
        return
    # bool is an int subclass, never accept it for numeric settings
    if isinstance(value, bool):
        compatible = bool in allowed
    else:
        compatible = isinstance(value, allowed) or (isinstance(value, int) and float in allowed)
    if compatible:
        return
    names = ", ".join(t.__name__ for t in allowed)
    raise GroupChatValidationError(
        f"Invalid type for setting '{field_name}': expected {names}, got {type(value).__name__}."
    )


def load_settings(
    settings_type: type[SettingsT],
    *,
    env_prefix: str = "",
    env_file_path: str | None = None,
    env_file_encoding: str | None = None,
    defaults: Mapping[str, Any] | None = None,
    required_fields: Sequence[str] | None = None,
    **overrides: Any,
) -> SettingsT:
    """Resolve a ``TypedDict`` of settings from several sources.

    Each field takes the first value found, in this order:

    1. A keyword in *overrides*; a ``None`` keyword counts as absent.
    2. The environment variable ``<env_prefix><FIELD_NAME>``.
    3. The ``.env`` file, which python-dotenv copies into the environment without
       replacing variables that are already set.
    4. *defaults*, else ``None``.

    Args:
        settings_type: The ``TypedDict`` class that declares the fields and their types.
        env_prefix: Prepended to the upper-cased field name, e.g. ``"GROUPCHAT_"``.
        env_file_path: The ``.env`` file to read, ``".env"`` in the working directory by default.
        env_file_encoding: Encoding of the ``.env`` file, ``"utf-8"`` by default.
        defaults: Values for fields no other source provides.
        required_fields: Fields that must end up with a value.
        **overrides: Explicit field values, checked against the declared types.

    Returns:
        The resolved settings.

    Raises:
        SettingNotFoundError: A required field has no value.
        GroupChatValidationError: An override is unknown or mistyped, or an environment value cannot be coerced.
    """
    env_path = env_file_path or ".env"
    if os.path.isfile(env_path):
        load_dotenv(dotenv_path=env_path, encoding=env_file_encoding or "utf-8")

    overrides = {k: v for k, v in overrides.items() if v is not None}
    hints = get_type_hints(settings_type)

    unknown = set(overrides) - set(hints)
    if unknown:
        raise GroupChatValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}.")

    defaults = defaults or {}
    result: dict[str, Any] = {}
    for field_name, field_type in hints.items():
        if field_name in overrides:
            _check_override_type(overrides[field_name], field_type, field_name)
            result[field_name] = overrides[field_name]
            continue

        env_var_name = f"{env_prefix}{field_name.upper()}"
        env_value = os.getenv(env_var_name)
        if env_value is not None:
            try:
                result[field_name] = _coerce_value(env_value, field_type)
            except (ValueError, TypeError) as ex:
                raise GroupChatValidationError(
                    f"Environment variable '{env_var_name}' has an invalid value: {env_value!r}.", ex
                ) from ex
            logger.debug(f"Setting '{field_name}' resolved from '{env_var_name}'.")
            continue

        result[field_name] = defaults.get(field_name)

    for field_name in required_fields or ():
        if result.get(field_name) is None:
            raise SettingNotFoundError(
                f"Required setting '{field_name}' was not provided. Set it via the '{field_name}' "
                f"parameter or the '{env_prefix}{field_name.upper()}' environment variable."
            )

    return result  # type: ignore[return-value]
