"""
Media timeline builder.

Collects steps for one call leg, validating each as it is appended, and
compiles them to a capture on demand. This is the object a scenario
builder holds while it walks its call flow:

    timeline = MediaTimeline("192.168.5.1:13579", "192.168.10.2:24680")
    timeline.append("silence:1000")
    timeline.append(Dtmf("5"))
    path = timeline.write("call.pcap")
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional, Union

from config import AppConfig
from media.actions import Action, coerce_action, parse_steps
from media.compiler import (
    CompileResult,
    CompilerOptions,
    MediaTimelineCompiler,
    SilenceFactory,
)
from media.frames import Endpoint, FrameAssembler
from media.payloads import PcmuSilence
from protocol.pcap import PcapFile

Step = Union[str, Action]


class MediaTimeline:
    """
    Ordered, validated list of media actions bound to one endpoint pair.
    """

    def __init__(
        self,
        source: Union[str, Endpoint],
        destination: Union[str, Endpoint],
        *,
        silence_generator: SilenceFactory = PcmuSilence,
        options: Optional[CompilerOptions] = None,
    ) -> None:
        self.source = _as_endpoint(source)
        self.destination = _as_endpoint(destination)
        self._compiler = MediaTimelineCompiler(
            FrameAssembler(self.source, self.destination),
            silence_generator=silence_generator,
            options=options or CompilerOptions(),
        )
        self._actions: List[Action] = []

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        source: Union[str, Endpoint],
        destination: Union[str, Endpoint],
        *,
        silence_generator: SilenceFactory = PcmuSilence,
    ) -> MediaTimeline:
        return cls(
            source,
            destination,
            silence_generator=silence_generator,
            options=config.compiler_options(),
        )

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    @property
    def actions(self) -> List[Action]:
        return list(self._actions)

    def append(self, step: Step) -> MediaTimeline:
        """Validate and append one step. Raises InvalidAction."""
        self._actions.append(coerce_action(step, len(self._actions)))
        return self

    def extend(self, steps: Iterable[Step]) -> MediaTimeline:
        """
        Validate and append many steps atomically.

        On error nothing is appended and ActionValidationError lists every
        bad step by the timeline position it would have taken.
        """
        self._actions.extend(parse_steps(steps, len(self._actions)))
        return self

    def is_empty(self) -> bool:
        return not self._actions

    def __len__(self) -> int:
        return len(self._actions)

    def reset(self) -> None:
        self._actions = []

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def compile(
        self,
        *,
        ssrc: Optional[int] = None,
        start_time: Optional[float] = None,
    ) -> CompileResult:
        return self._compiler.compile(self._actions, ssrc=ssrc, start_time=start_time)

    def to_capture(self, **kwargs) -> PcapFile:
        return self.compile(**kwargs).capture

    def to_bytes(self, **kwargs) -> bytes:
        return self.compile(**kwargs).to_bytes()

    def write(self, path: Union[str, Path], **kwargs) -> Path:
        """
        Compile and write to `path`. Returns the path written.

        Raises:
            MediaIOError if the file cannot be written.
        """
        return self.to_capture(**kwargs).write(path)


def _as_endpoint(value: Union[str, Endpoint]) -> Endpoint:
    if isinstance(value, Endpoint):
        return value
    return Endpoint.from_string(value)
