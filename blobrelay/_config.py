# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.

from __future__ import annotations
import os
import typing
import logging
import dataclasses
from ._error import InvalidConfigurationError


ENVIRONMENT_VARIABLE_PREFIX = "BLOBRELAY__"

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RelayConfig:
    """
    Configuration shared by the sender and the receiver sides.
    All durations are in seconds, all sizes are in bytes of the *encoded* payload.

    >>> RelayConfig().fragment_size
    1024
    >>> RelayConfig(fragment_size=0)
    Traceback (most recent call last):
    ...
    ValueError: Invalid fragment_size: 0
    """

    fragment_size: int = 1024
    """
    Nominal encoded bytes per fragment. The default leaves headroom for the envelope fields
    under common broker message size limits.
    """

    ack_deadline: float = 2.0
    """
    How long the dispatcher waits for one publish (and its acknowledgment, if supported) to complete.
    """

    max_retries: int = 3
    """
    Retries per message per transport, not counting the first attempt.
    """

    idle_timeout: float = 30.0
    """
    Incomplete transfers with no activity for this long are expired by the receiver.
    """

    max_transfer_size: int = 16 * 1024 * 1024
    """
    Ceiling of the encoded payload size. The sender refuses larger blobs;
    the receiver never buffers more than this for a transfer whose envelope is not yet known.
    """

    grace_window_after_terminal: float = 60.0
    """
    Resolved transfers are remembered this long so that late duplicates are discarded instead of reopening state.
    """

    backoff_base: float = 0.1
    backoff_max: float = 2.0

    max_transfer_duration: float = 300.0
    """
    Wall-clock ceiling for a single transfer on the receiver side, measured from its first arrival.
    """

    sweep_interval: float = 1.0

    topic: str = "blobrelay/fragments"
    endpoint: str = "/blobrelay/fragments"

    def __post_init__(self) -> None:
        for name in ("fragment_size", "max_transfer_size"):
            if getattr(self, name) < 1:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}")
        if self.max_retries < 0:
            raise ValueError(f"Invalid max_retries: {self.max_retries}")
        for name in (
            "ack_deadline",
            "idle_timeout",
            "backoff_max",
            "max_transfer_duration",
            "sweep_interval",
        ):
            if not getattr(self, name) > 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}")
        for name in ("grace_window_after_terminal", "backoff_base"):
            if getattr(self, name) < 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}")
        if not self.topic:
            raise ValueError("The topic cannot be empty")

    @staticmethod
    def get_environment_variable_name(field_name: str) -> str:
        """
        >>> RelayConfig.get_environment_variable_name("idle_timeout")
        'BLOBRELAY__IDLE_TIMEOUT'
        """
        return ENVIRONMENT_VARIABLE_PREFIX + field_name.upper()

    @staticmethod
    def from_environment(
        environment_variables: typing.Optional[typing.Mapping[str, str]] = None, **overrides: typing.Any
    ) -> RelayConfig:
        """
        Constructs the configuration from the default values updated from the environment variables
        named like ``BLOBRELAY__FRAGMENT_SIZE``, then from the keyword overrides.

        :param environment_variables: If None (default), :data:`os.environ` is used.
            Pass an empty dict to disable environment variable processing.

        :raises: :class:`InvalidConfigurationError` if a variable cannot be converted to the field type.

        >>> RelayConfig.from_environment({"BLOBRELAY__MAX_RETRIES": "7"}).max_retries
        7
        >>> RelayConfig.from_environment({"BLOBRELAY__MAX_RETRIES": "seven"})
        Traceback (most recent call last):
        ...
        blobrelay._error.InvalidConfigurationError: BLOBRELAY__MAX_RETRIES: cannot convert 'seven' to int
        """
        if environment_variables is None:
            environment_variables = os.environ
        values: typing.Dict[str, typing.Any] = {}
        for fld in dataclasses.fields(RelayConfig):
            env_name = RelayConfig.get_environment_variable_name(fld.name)
            raw = environment_variables.get(env_name)
            if raw is None:
                continue
            ty = type(fld.default)
            try:
                values[fld.name] = ty(raw)
            except ValueError:
                raise InvalidConfigurationError(f"{env_name}: cannot convert {raw!r} to {ty.__name__}") from None
            _logger.debug("Config %s=%r from %s", fld.name, values[fld.name], env_name)
        values.update(overrides)
        try:
            return RelayConfig(**values)
        except (TypeError, ValueError) as ex:
            raise InvalidConfigurationError(str(ex)) from ex


def _unittest_config() -> None:
    from pytest import raises

    cfg = RelayConfig.from_environment(
        {
            "BLOBRELAY__FRAGMENT_SIZE": "1500",
            "BLOBRELAY__IDLE_TIMEOUT": "2.5",
            "BLOBRELAY__TOPIC": "camera/0",
            "UNRELATED": "whatever",
        },
        max_retries=0,
    )
    assert cfg.fragment_size == 1500
    assert cfg.idle_timeout == 2.5
    assert cfg.topic == "camera/0"
    assert cfg.max_retries == 0
    assert cfg.ack_deadline == RelayConfig().ack_deadline

    with raises(InvalidConfigurationError):
        RelayConfig.from_environment({"BLOBRELAY__IDLE_TIMEOUT": "-1"})

    with raises(ValueError):
        RelayConfig(ack_deadline=0)

    with raises(ValueError):
        RelayConfig(topic="")

    with raises(dataclasses.FrozenInstanceError):
        cfg.fragment_size = 1  # type: ignore
