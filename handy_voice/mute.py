"""System output muting while recording.

Uses the platform's command line mixer: ``wpctl`` (PipeWire) or ``pactl``
(PulseAudio) on Linux and ``osascript`` on macOS. When none is available
muting is silently disabled.
"""

import logging
import platform
import shutil
import subprocess

logger = logging.getLogger(__name__)


class AudioMuteError(RuntimeError):
    """Raised when a mixer command fails."""


class _MuteStrategy:
    def read_muted(self) -> bool:
        raise NotImplementedError

    def set_muted(self, muted: bool) -> None:
        raise NotImplementedError


class _WpctlStrategy(_MuteStrategy):
    TARGET = "@DEFAULT_AUDIO_SINK@"

    def read_muted(self) -> bool:
        try:
            output = subprocess.check_output(["wpctl", "get-volume", self.TARGET], text=True)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise AudioMuteError(f"wpctl get-volume failed: {exc}") from exc
        return "[muted]" in output.lower()

    def set_muted(self, muted: bool) -> None:
        try:
            subprocess.run(["wpctl", "set-mute", self.TARGET, "1" if muted else "0"], check=True)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise AudioMuteError(f"wpctl set-mute failed: {exc}") from exc


class _PactlStrategy(_MuteStrategy):
    SINK = "@DEFAULT_SINK@"

    def read_muted(self) -> bool:
        try:
            output = subprocess.check_output(["pactl", "get-sink-mute", self.SINK], text=True)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise AudioMuteError(f"pactl get-sink-mute failed: {exc}") from exc
        return "yes" in output.lower()

    def set_muted(self, muted: bool) -> None:
        try:
            subprocess.run(["pactl", "set-sink-mute", self.SINK, "1" if muted else "0"], check=True)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise AudioMuteError(f"pactl set-sink-mute failed: {exc}") from exc


class _OsascriptStrategy(_MuteStrategy):
    def read_muted(self) -> bool:
        try:
            output = subprocess.check_output(
                ["osascript", "-e", "output muted of (get volume settings)"], text=True
            )
        except (subprocess.CalledProcessError, OSError) as exc:
            raise AudioMuteError(f"osascript get volume failed: {exc}") from exc
        return output.strip() == "true"

    def set_muted(self, muted: bool) -> None:
        value = "true" if muted else "false"
        try:
            subprocess.run(["osascript", "-e", f"set volume output muted {value}"], check=True)
        except (subprocess.CalledProcessError, OSError) as exc:
            raise AudioMuteError(f"osascript set volume failed: {exc}") from exc


def _detect_strategy() -> _MuteStrategy | None:
    if platform.system() == "Darwin":
        return _OsascriptStrategy()
    if shutil.which("wpctl"):
        return _WpctlStrategy()
    if shutil.which("pactl"):
        return _PactlStrategy()
    logger.info("Mute while recording unavailable: no supported mixer found")
    return None


class SystemAudioMute:
    """Mutes system output and restores the user's previous mute state."""

    def __init__(self, strategy: _MuteStrategy | None = None, detect: bool = True):
        self._strategy = strategy if strategy is not None or not detect else _detect_strategy()
        self._previously_muted: bool | None = None

    @property
    def available(self) -> bool:
        return self._strategy is not None

    def mute(self) -> None:
        if not self._strategy or self._previously_muted is not None:
            return
        try:
            self._previously_muted = self._strategy.read_muted()
            if not self._previously_muted:
                self._strategy.set_muted(True)
        except AudioMuteError as exc:
            logger.warning(f"Failed to mute system audio: {exc}")
            self._strategy = None
            self._previously_muted = None

    def restore(self) -> None:
        if not self._strategy or self._previously_muted is None:
            return
        try:
            if not self._previously_muted:
                self._strategy.set_muted(False)
        except AudioMuteError as exc:
            logger.warning(f"Failed to restore system audio: {exc}")
        finally:
            self._previously_muted = None
