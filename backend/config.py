"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables (optionally seeded from a .env file)
- Provide a typed, immutable config object

Non-responsibilities:
- No wire constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from constants import DTMF_DEFAULT_VOLUME, DTMF_VOLUME_MAX
from media.compiler import CompilerOptions
from media.payloads import DtmfDurationMode


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup and passed down to whatever builds
    compilers.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str

    # ------------------------------------------------------------------
    # DTMF
    # ------------------------------------------------------------------

    dtmf_volume: int
    dtmf_duration_mode: DtmfDurationMode

    # ------------------------------------------------------------------
    # Derived
    # ------------------------------------------------------------------

    def compiler_options(self) -> CompilerOptions:
        return CompilerOptions(
            dtmf_volume=self.dtmf_volume,
            dtmf_duration_mode=self.dtmf_duration_mode,
        )

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env(dotenv_path: Optional[str] = None) -> AppConfig:
        """
        Load configuration from environment variables.

        Variables already set in the process environment win over the
        .env file.

        Raises:
            ValueError if a variable is present but invalid.
        """
        load_dotenv(dotenv_path=dotenv_path, override=False)

        raw_volume = os.environ.get("MEDIA_DTMF_VOLUME", str(DTMF_DEFAULT_VOLUME))
        try:
            volume = int(raw_volume)
        except ValueError:
            raise ValueError(f"MEDIA_DTMF_VOLUME must be an integer, got {raw_volume!r}") from None
        if not 0 <= volume <= DTMF_VOLUME_MAX:
            raise ValueError(f"MEDIA_DTMF_VOLUME must be within 0..{DTMF_VOLUME_MAX}, got {volume}")

        raw_mode = os.environ.get(
            "MEDIA_DTMF_DURATION_MODE", DtmfDurationMode.CUMULATIVE.value
        ).strip().lower()
        try:
            mode = DtmfDurationMode(raw_mode)
        except ValueError:
            choices = ", ".join(m.value for m in DtmfDurationMode)
            raise ValueError(
                f"MEDIA_DTMF_DURATION_MODE must be one of {choices}, got {raw_mode!r}"
            ) from None

        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            dtmf_volume=volume,
            dtmf_duration_mode=mode,
        )
