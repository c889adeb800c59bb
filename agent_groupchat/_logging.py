# Copyright (c) Microsoft. All rights reserved.

import logging

from .exceptions import GroupChatException

__all__ = ["get_logger", "setup_logging"]

ROOT_LOGGER_NAME = "agent_groupchat"


def setup_logging(level: int | str = logging.INFO) -> None:
    """Setup the logging configuration for group chat orchestration.

    Args:
        level: The level applied to the ``agent_groupchat`` logger hierarchy.
    """
    logging.basicConfig(
        format="[%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger(ROOT_LOGGER_NAME).setLevel(level)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger with the specified name, defaulting to 'agent_groupchat'.

    Args:
        name (str): The name of the logger. Must live under the 'agent_groupchat' namespace.

    Returns:
        logging.Logger: The configured logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        raise GroupChatException(f"Logger name must start with '{ROOT_LOGGER_NAME}'.")
    return logging.getLogger(name)
