"""
Tests for the command-line interface.
"""

from unittest.mock import patch

import pytest

from echo_agent.cli import run_chat
from echo_agent.config import Settings


@pytest.mark.asyncio
async def test_chat_requires_a_task(tmp_path):
    """The chat loop refuses to run without a task to route signals to."""
    settings = Settings(_env_file=None, data_dir=tmp_path)

    with patch("echo_agent.cli.asyncio.current_task", return_value=None):
        with pytest.raises(RuntimeError, match="asyncio task"):
            await run_chat(settings)
